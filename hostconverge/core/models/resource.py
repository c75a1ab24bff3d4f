"""
Resource models — what the engine manages and what it sees.

ResourceDescriptors are built once per invocation from static
declarations plus runtime facts. Observations are produced fresh by
the probe on every run and never persisted.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TargetState(str, Enum):
    """Desired end state of the managed application."""

    ABSENT = "absent"
    INSTALLED = "installed"
    RUNNING = "running"
    STOPPED = "stopped"


class ResourceKind(str, Enum):
    PACKAGES = "packages"
    REPOSITORY = "repository"
    CONFIG_FILE = "config_file"
    KERNEL_PARAM = "kernel_param"
    WG_INTERFACE = "wg_interface"
    APP_SETUP = "app_setup"
    SERVICE_UNIT = "service_unit"
    SERVICE_RUN = "service_run"
    SERVICE_ENABLE = "service_enable"
    FIREWALL = "firewall"


class Presence(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


class ResourceDescriptor(BaseModel):
    """One managed resource.

    ``key`` is the identity used in observed state, dependencies and
    step ids. ``target`` is the thing on the host (path, unit name,
    package list). Either ``content`` (full desired text) or
    ``settings`` (desired INI keys) describes the desired content;
    neither means presence is all that matters.
    """

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    key: str
    target: str
    content: str | None = None
    settings: dict[str, str] = Field(default_factory=dict)
    mode: int | None = None
    present: bool = True
    depends_on: tuple[str, ...] = ()
    params: dict[str, Any] = Field(default_factory=dict)


class Observation(BaseModel):
    """What the probe saw for one resource."""

    presence: Presence = Presence.UNKNOWN
    digest: str | None = None
    mode: int | None = None
    values: dict[str, Any] = Field(default_factory=dict)
    detail: str = ""

    @classmethod
    def unknown(cls, detail: str) -> Observation:
        return cls(presence=Presence.UNKNOWN, detail=detail)

    @property
    def is_present(self) -> bool:
        return self.presence == Presence.PRESENT

    @property
    def is_absent(self) -> bool:
        return self.presence == Presence.ABSENT

    @property
    def is_unknown(self) -> bool:
        return self.presence == Presence.UNKNOWN


class ObservedState(BaseModel):
    """Mapping of resource identity → observation, for a single run."""

    observations: dict[str, Observation] = Field(default_factory=dict)

    def get(self, key: str) -> Observation:
        """Observation for ``key``; unprobed keys read as unknown."""
        found = self.observations.get(key)
        if found is None:
            return Observation.unknown("not probed")
        return found

    def set(self, key: str, observation: Observation) -> None:
        self.observations[key] = observation

    def __contains__(self, key: object) -> bool:
        return key in self.observations

    def __len__(self) -> int:
        return len(self.observations)
