"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from hostconverge.adapters.shell.filesystem import cleanup_pending
from hostconverge.core.models.config import HostConfig
from hostconverge.core.use_cases.converge import build_registry
from tests.fakes import FakeHost, make_config


@pytest.fixture
def host_config(tmp_path: Path) -> HostConfig:
    """HostConfig whose managed paths all live under tmp_path."""
    return make_config(tmp_path)


@pytest.fixture
def fake_host(host_config: HostConfig) -> FakeHost:
    """A fresh host with nothing installed."""
    return FakeHost(host_config)


@pytest.fixture
def registry():
    """Registry with every production adapter."""
    return build_registry()


@pytest.fixture(autouse=True)
def _no_leftover_temp_files():
    yield
    cleanup_pending()
