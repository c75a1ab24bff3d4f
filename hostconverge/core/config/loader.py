"""
Configuration loader — reads hostconverge.yml into HostConfig.

Sources, lowest to highest precedence: built-in defaults, the YAML
file, HCV_* environment variables, CLI options (applied by the caller
through ``HostConfig.with_app_overrides``).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from hostconverge.core.errors import ConfigError
from hostconverge.core.models.config import HostConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "hostconverge.yml"

# System-wide fallback when nothing is found above the cwd
SYSTEM_CONFIG = Path("/etc/hostconverge") / CONFIG_FILE

ENV_BIND_ADDRESS = "HCV_BIND_ADDRESS"
ENV_PORT = "HCV_PORT"

__all__ = ["CONFIG_FILE", "ConfigError", "find_config_file", "load_config"]


def find_config_file(
    start_dir: Path | None = None,
    system_config: Path | None = SYSTEM_CONFIG,
) -> Path | None:
    """Search for hostconverge.yml starting from ``start_dir``, walking up.

    Falls back to ``system_config`` if it exists.

    Returns:
        Path to the config file, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    if system_config is not None and system_config.is_file():
        return system_config
    return None


def _read_yaml(path: Path) -> dict:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def _env_overrides(env: Mapping[str, str]) -> tuple[str | None, int | None]:
    bind = env.get(ENV_BIND_ADDRESS) or None
    port: int | None = None
    raw_port = env.get(ENV_PORT)
    if raw_port:
        try:
            port = int(raw_port)
        except ValueError as e:
            raise ConfigError(f"{ENV_PORT} must be an integer, got {raw_port!r}") from e
    return bind, port


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    search: bool = True,
) -> HostConfig:
    """Load and validate the host configuration.

    Args:
        path: Explicit config path. Must exist if given.
        env: Environment to read HCV_* overrides from (default: os.environ).
        search: If no path is given, look for hostconverge.yml upward from
            the cwd and in /etc/hostconverge. Defaults apply if none is found.

    Returns:
        Validated, immutable HostConfig.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    if path is None and search:
        path = find_config_file()

    data: dict = _read_yaml(path) if path is not None else {}
    if path is None:
        logger.debug("No %s found; using built-in defaults", CONFIG_FILE)

    try:
        config = HostConfig.model_validate(data)
        bind, port = _env_overrides(os.environ if env is None else env)
        if bind is not None or port is not None:
            config = config.with_app_overrides(bind_address=bind, port=port)
    except ValidationError as e:
        source = path or "defaults"
        raise ConfigError(f"Invalid configuration ({source}): {e}") from e

    return config
