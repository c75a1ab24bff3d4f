"""Adapters — thin bindings to the host tools the engine drives.

Public re-exports for convenient access.
"""

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
]
