"""
Domain models — Pydantic types for the convergence engine.

All models are re-exported here for convenient access:

    from hostconverge.core.models import HostConfig, ResourceDescriptor, Step, RunReport
"""

from hostconverge.core.models.config import (
    AppConfig,
    FirewallConfig,
    HostConfig,
    PlatformConfig,
    RunnerConfig,
    ServiceConfig,
    SysctlConfig,
    WireGuardConfig,
)
from hostconverge.core.models.resource import (
    Observation,
    ObservedState,
    Presence,
    ResourceDescriptor,
    ResourceKind,
    TargetState,
)
from hostconverge.core.models.step import ExecutionResult, RunReport, Step, StepAction

__all__ = [
    # config.py
    "AppConfig",
    "ExecutionResult",
    "FirewallConfig",
    "HostConfig",
    # resource.py
    "Observation",
    "ObservedState",
    "PlatformConfig",
    "Presence",
    "ResourceDescriptor",
    "ResourceKind",
    "RunReport",
    "RunnerConfig",
    "ServiceConfig",
    # step.py
    "Step",
    "StepAction",
    "SysctlConfig",
    "TargetState",
    "WireGuardConfig",
]
