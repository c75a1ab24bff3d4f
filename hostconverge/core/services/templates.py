"""
Templates — typed rendering of every file the engine manages.

Each renderer takes typed values, produces the file grammar and
validates the result before it is handed to the writer. Nothing here
touches the filesystem.
"""

from __future__ import annotations

import configparser
import io
import ipaddress
import re
from pathlib import Path

from hostconverge.core.services.wireguard_keys import is_valid_key


class TemplateError(ValueError):
    """Rendered content failed validation."""


_IFACE_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,15}$")
_PRIVATE_KEY_RE = re.compile(r"^\s*PrivateKey\s*=\s*(\S+)\s*$", re.MULTILINE)


def _parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    return parser


# ── Dashboard INI ───────────────────────────────────────────────


def render_dashboard_config(
    template_text: str,
    section: str,
    settings: dict[str, str],
) -> str:
    """Apply ``settings`` to ``section`` of the upstream INI template.

    Keys not in ``settings`` are kept as the template ships them.
    """
    parser = _parser()
    try:
        parser.read_string(template_text)
    except configparser.Error as e:
        raise TemplateError(f"Template is not valid INI: {e}") from e

    if not parser.has_section(section):
        parser.add_section(section)
    for key, value in settings.items():
        parser.set(section, key, str(value))

    buf = io.StringIO()
    parser.write(buf)
    rendered = buf.getvalue()

    if read_ini_settings(rendered, section) != {
        **read_ini_settings(template_text, section),
        **{k: str(v) for k, v in settings.items()},
    }:
        raise TemplateError(f"Rendered [{section}] does not round-trip")
    return rendered


def read_ini_settings(text: str, section: str) -> dict[str, str]:
    """Values of one INI section; empty when the section is missing."""
    parser = _parser()
    try:
        parser.read_string(text)
    except configparser.Error:
        return {}
    if not parser.has_section(section):
        return {}
    return dict(parser.items(section, raw=True))


# ── WireGuard interface ─────────────────────────────────────────


def render_wireguard_config(
    address: str,
    listen_port: int,
    private_key: str,
    egress_interface: str,
) -> str:
    """Render the ``[Interface]`` section for the managed tunnel.

    PostUp/PostDown forward tunnel traffic and masquerade it out of
    the egress interface; ``%i`` is expanded by wg-quick.
    """
    try:
        ipaddress.ip_interface(address)
    except ValueError as e:
        raise TemplateError(f"Invalid interface address {address!r}: {e}") from e
    if not 1 <= int(listen_port) <= 65535:
        raise TemplateError(f"Invalid listen port {listen_port}")
    if not is_valid_key(private_key):
        raise TemplateError("Private key is not a base64 Curve25519 key")
    if not _IFACE_RE.match(egress_interface):
        raise TemplateError(f"Invalid egress interface name {egress_interface!r}")

    post_up = (
        "iptables -A FORWARD -i %i -j ACCEPT; "
        f"iptables -t nat -A POSTROUTING -o {egress_interface} -j MASQUERADE"
    )
    post_down = (
        "iptables -D FORWARD -i %i -j ACCEPT; "
        f"iptables -t nat -D POSTROUTING -o {egress_interface} -j MASQUERADE"
    )
    return (
        "[Interface]\n"
        f"Address = {address}\n"
        f"ListenPort = {int(listen_port)}\n"
        f"PrivateKey = {private_key}\n"
        f"PostUp = {post_up}\n"
        f"PostDown = {post_down}\n"
    )


def extract_private_key(wg_text: str) -> str | None:
    """PrivateKey of an existing interface file, if present and valid."""
    match = _PRIVATE_KEY_RE.search(wg_text)
    if not match:
        return None
    key = match.group(1)
    return key if is_valid_key(key) else None


# ── systemd unit ────────────────────────────────────────────────


def render_systemd_unit(
    *,
    working_dir: Path,
    entrypoint: Path,
    pid_file: Path,
    wireguard_dir: Path,
    restart: str = "always",
    timeout_sec: int = 120,
) -> str:
    """Render the unit that runs the dashboard through its entrypoint."""
    if restart not in {"no", "always", "on-success", "on-failure", "on-abnormal", "on-abort", "on-watchdog"}:
        raise TemplateError(f"Invalid restart policy {restart!r}")
    if timeout_sec <= 0:
        raise TemplateError(f"Invalid timeout {timeout_sec}")
    for p in (working_dir, entrypoint, pid_file, wireguard_dir):
        if not Path(p).is_absolute() or any(c.isspace() for c in str(p)):
            raise TemplateError(f"Unit paths must be absolute without whitespace: {p}")

    return (
        "[Unit]\n"
        "After=syslog.target network-online.target\n"
        "Wants=wg-quick.target\n"
        f"ConditionPathIsDirectory={wireguard_dir}\n"
        "\n"
        "[Service]\n"
        "Type=forking\n"
        f"PIDFile={pid_file}\n"
        f"WorkingDirectory={working_dir}\n"
        f"ExecStart={entrypoint} start\n"
        f"ExecStop={entrypoint} stop\n"
        f"ExecReload={entrypoint} restart\n"
        f"TimeoutSec={timeout_sec}\n"
        "PrivateTmp=yes\n"
        f"Restart={restart}\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


# ── sysctl drop-in ──────────────────────────────────────────────


def render_sysctl(ip_forward: bool) -> str:
    return f"net.ipv4.ip_forward = {1 if ip_forward else 0}\n"
