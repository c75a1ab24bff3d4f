"""
HostConfig — the immutable configuration passed to every component.

Loaded once per invocation from defaults, hostconverge.yml, environment
and CLI overrides. Components receive it at construction and never
read ambient globals.
"""

from __future__ import annotations

import ipaddress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PACKAGES = (
    "git",
    "python3",
    "python3-pip",
    "wireguard",
    "net-tools",
    "curl",
    "firewalld",
    "unzip",
    "needrestart",
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AppConfig(_Frozen):
    """The managed dashboard application."""

    name: str = "wgdashboard"
    repository_url: str = "https://github.com/WGDashboard/WGDashboard.git"
    install_dir: Path = Path("/usr/share/WGDashboard")
    source_subdir: str = "src"
    template: Path = Path("templates/wg-dashboard.ini.template")
    config_file: str = "wg-dashboard.ini"
    config_section: str = "Server"
    bind_address: str = "0.0.0.0"
    port: int = Field(default=5000, ge=1, le=65535)
    entrypoint: str = "wgd.sh"
    installer_answer: str = "1"
    setup_marker: str = "venv"
    prime_after_setup: bool = True

    @field_validator("bind_address")
    @classmethod
    def _check_bind_address(cls, value: str) -> str:
        try:
            ipaddress.ip_address(value)
        except ValueError as e:
            raise ValueError(f"bind_address must be an IP address: {e}") from e
        return value

    @property
    def source_dir(self) -> Path:
        return self.install_dir / self.source_subdir

    @property
    def template_path(self) -> Path:
        if self.template.is_absolute():
            return self.template
        return self.install_dir / self.template

    @property
    def config_path(self) -> Path:
        return self.source_dir / self.config_file

    @property
    def entrypoint_path(self) -> Path:
        return self.source_dir / self.entrypoint

    @property
    def marker_path(self) -> Path:
        return self.source_dir / self.setup_marker


class PlatformConfig(_Frozen):
    os_family: str = "ubuntu"
    os_release: Path = Path("/etc/os-release")


class ServiceConfig(_Frozen):
    name: str = "wgdashboard"
    unit_dir: Path = Path("/etc/systemd/system")
    restart: str = "always"
    timeout_sec: int = Field(default=120, ge=1)

    @property
    def unit_name(self) -> str:
        return f"{self.name}.service"

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / self.unit_name


class WireGuardConfig(_Frozen):
    interface: str = Field(default="wg1", pattern=r"^[A-Za-z0-9_=+.-]{1,15}$")
    config_dir: Path = Path("/etc/wireguard")
    address: str = "10.0.0.1/24"
    listen_port: int = Field(default=443, ge=1, le=65535)
    egress_interface: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_.:@-]{1,15}$")

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        try:
            ipaddress.ip_interface(value)
        except ValueError as e:
            raise ValueError(f"address must be an interface CIDR: {e}") from e
        return value

    @property
    def config_path(self) -> Path:
        return self.config_dir / f"{self.interface}.conf"


class SysctlConfig(_Frozen):
    path: Path = Path("/etc/sysctl.d/99-wgdashboard.conf")
    ip_forward: bool = True


class FirewallConfig(_Frozen):
    enabled: bool = False
    port: int | None = Field(default=None, ge=1, le=65535)
    protocol: str = Field(default="tcp", pattern=r"^(tcp|udp)$")


class RunnerConfig(_Frozen):
    timeout: int = Field(default=600, ge=1)
    lock_attempts: int = Field(default=3, ge=1)
    lock_backoff: float = Field(default=2.0, ge=0)
    lock_backoff_max: float = Field(default=30.0, ge=0)


class HostConfig(_Frozen):
    """Root configuration model — see hostconverge.yml."""

    app: AppConfig = Field(default_factory=AppConfig)
    packages: tuple[str, ...] = DEFAULT_PACKAGES
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    wireguard: WireGuardConfig = Field(default_factory=WireGuardConfig)
    sysctl: SysctlConfig = Field(default_factory=SysctlConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    state_dir: Path = Path("/var/lib/hostconverge")

    @property
    def firewall_port(self) -> int:
        return self.firewall.port or self.app.port

    def with_app_overrides(
        self,
        bind_address: str | None = None,
        port: int | None = None,
    ) -> HostConfig:
        """Return a validated copy with the bind address / port replaced."""
        app_data = self.app.model_dump()
        if bind_address is not None:
            app_data["bind_address"] = bind_address
        if port is not None:
            app_data["port"] = port
        data = self.model_dump()
        data["app"] = app_data
        return HostConfig.model_validate(data)
