"""
Resource declarations — the managed dashboard as a list of descriptors.

Static declarations come from HostConfig; runtime facts (egress
interface, WireGuard key) are gathered once per invocation. Order of
the returned list is the declaration order used for tie-breaks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.errors import NetworkDetectionError
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import ResourceDescriptor, ResourceKind
from hostconverge.core.services.platform import detect_egress_interface
from hostconverge.core.services.templates import (
    extract_private_key,
    render_sysctl,
    render_systemd_unit,
    render_wireguard_config,
)
from hostconverge.core.services.wireguard_keys import generate_private_key

logger = logging.getLogger(__name__)

# Identity keys
PACKAGES = "packages"
REPOSITORY = "repository"
DASHBOARD_CONFIG = "dashboard-config"
IP_FORWARD = "ip-forward"
WG_INTERFACE = "wg-interface"
APP_SETUP = "app-setup"
SERVICE_UNIT = "service-unit"
SERVICE = "service"
SERVICE_ENABLE = "service-enable"
FIREWALL = "firewall"


@dataclass(frozen=True)
class RuntimeFacts:
    """Values only known by looking at the host."""

    egress_interface: str | None = None
    private_key: str | None = None
    key_reused: bool = False


def gather_facts(
    config: HostConfig,
    runner: CommandRunner,
    *,
    require_network: bool = True,
) -> RuntimeFacts:
    """Detect the egress interface and load or generate the tunnel key.

    Raises:
        NetworkDetectionError: If ``require_network`` and no interface
            is configured or detectable.
    """
    egress = config.wireguard.egress_interface
    if egress is None:
        try:
            egress = detect_egress_interface(runner)
        except NetworkDetectionError:
            if require_network:
                raise
            logger.warning("No default route; WireGuard config will be checked for presence only")
            egress = None

    private_key = None
    wg_path = config.wireguard.config_path
    try:
        if wg_path.is_file():
            private_key = extract_private_key(wg_path.read_text(encoding="utf-8"))
    except OSError as e:
        logger.warning("Cannot read %s: %s", wg_path, e)

    if private_key:
        logger.debug("Reusing WireGuard key from %s", wg_path)
        return RuntimeFacts(egress_interface=egress, private_key=private_key, key_reused=True)

    return RuntimeFacts(egress_interface=egress, private_key=generate_private_key())


def declare_resources(config: HostConfig, facts: RuntimeFacts) -> list[ResourceDescriptor]:
    """Build every descriptor for the managed application."""
    app = config.app
    wg = config.wireguard
    service = config.service

    wg_content = None
    if facts.egress_interface and facts.private_key:
        wg_content = render_wireguard_config(
            address=wg.address,
            listen_port=wg.listen_port,
            private_key=facts.private_key,
            egress_interface=facts.egress_interface,
        )

    unit_content = render_systemd_unit(
        working_dir=app.source_dir,
        entrypoint=app.entrypoint_path,
        pid_file=app.source_dir / "gunicorn.pid",
        wireguard_dir=wg.config_dir,
        restart=service.restart,
        timeout_sec=service.timeout_sec,
    )

    return [
        ResourceDescriptor(
            kind=ResourceKind.PACKAGES,
            key=PACKAGES,
            target=" ".join(config.packages),
            params={"packages": list(config.packages)},
        ),
        ResourceDescriptor(
            kind=ResourceKind.REPOSITORY,
            key=REPOSITORY,
            target=str(app.install_dir),
            params={"url": app.repository_url},
            depends_on=(PACKAGES,),
        ),
        ResourceDescriptor(
            kind=ResourceKind.CONFIG_FILE,
            key=DASHBOARD_CONFIG,
            target=str(app.config_path),
            settings={"app_ip": app.bind_address, "app_port": str(app.port)},
            mode=0o644,
            params={"section": app.config_section, "template": str(app.template_path)},
            depends_on=(REPOSITORY,),
        ),
        ResourceDescriptor(
            kind=ResourceKind.KERNEL_PARAM,
            key=IP_FORWARD,
            target=str(config.sysctl.path),
            content=render_sysctl(config.sysctl.ip_forward),
            mode=0o644,
        ),
        ResourceDescriptor(
            kind=ResourceKind.WG_INTERFACE,
            key=WG_INTERFACE,
            target=str(wg.config_path),
            content=wg_content,
            mode=0o600,
            params={"interface": wg.interface},
            depends_on=(PACKAGES,),
        ),
        ResourceDescriptor(
            kind=ResourceKind.APP_SETUP,
            key=APP_SETUP,
            target=str(app.marker_path),
            params={
                "source_dir": str(app.source_dir),
                "entrypoint": str(app.entrypoint_path),
                "answer": app.installer_answer,
                "prime": app.prime_after_setup,
            },
            depends_on=(REPOSITORY, DASHBOARD_CONFIG),
        ),
        ResourceDescriptor(
            kind=ResourceKind.SERVICE_UNIT,
            key=SERVICE_UNIT,
            target=str(service.unit_path),
            content=unit_content,
            mode=0o644,
            params={"unit": service.unit_name},
            depends_on=(REPOSITORY,),
        ),
        ResourceDescriptor(
            kind=ResourceKind.SERVICE_RUN,
            key=SERVICE,
            target=service.unit_name,
            depends_on=(SERVICE_UNIT, APP_SETUP, DASHBOARD_CONFIG, WG_INTERFACE, IP_FORWARD),
        ),
        ResourceDescriptor(
            kind=ResourceKind.SERVICE_ENABLE,
            key=SERVICE_ENABLE,
            target=service.unit_name,
            depends_on=(SERVICE,),
        ),
        ResourceDescriptor(
            kind=ResourceKind.FIREWALL,
            key=FIREWALL,
            target=f"{config.firewall_port}/{config.firewall.protocol}",
            params={
                "enabled": config.firewall.enabled,
                "port": config.firewall_port,
                "protocol": config.firewall.protocol,
            },
            depends_on=(PACKAGES,),
        ),
    ]
