"""
Tests for file rendering — dashboard INI, WireGuard, systemd, sysctl.
"""

from pathlib import Path

import pytest

from hostconverge.core.services.templates import (
    TemplateError,
    extract_private_key,
    read_ini_settings,
    render_dashboard_config,
    render_sysctl,
    render_systemd_unit,
    render_wireguard_config,
)
from hostconverge.core.services.wireguard_keys import generate_private_key
from tests.fakes import DASHBOARD_TEMPLATE


class TestDashboardConfig:
    def test_sets_bind_and_port(self):
        rendered = render_dashboard_config(
            DASHBOARD_TEMPLATE, "Server", {"app_ip": "0.0.0.0", "app_port": "5000"}
        )
        server = read_ini_settings(rendered, "Server")
        assert server["app_ip"] == "0.0.0.0"
        assert server["app_port"] == "5000"

    def test_keeps_other_keys_and_sections(self):
        rendered = render_dashboard_config(DASHBOARD_TEMPLATE, "Server", {"app_port": "5000"})
        assert read_ini_settings(rendered, "Server")["wg_conf_path"] == "/etc/wireguard"
        assert read_ini_settings(rendered, "Account") == {"username": "admin"}

    def test_adds_missing_section(self):
        rendered = render_dashboard_config("[Account]\nusername = admin\n", "Server", {"app_port": "5000"})
        assert read_ini_settings(rendered, "Server") == {"app_port": "5000"}

    def test_keeps_key_case(self):
        rendered = render_dashboard_config("[Server]\nApp_Mode = x\n", "Server", {})
        assert "App_Mode" in read_ini_settings(rendered, "Server")

    def test_percent_signs_survive(self):
        rendered = render_dashboard_config("[Server]\nfmt = %H:%M\n", "Server", {})
        assert read_ini_settings(rendered, "Server")["fmt"] == "%H:%M"

    def test_invalid_template(self):
        with pytest.raises(TemplateError):
            render_dashboard_config("app_ip = 1.2.3.4\n", "Server", {})

    def test_read_missing_section(self):
        assert read_ini_settings(DASHBOARD_TEMPLATE, "Nope") == {}

    def test_read_garbage(self):
        assert read_ini_settings("not ini at all", "Server") == {}


class TestWireGuardConfig:
    def test_interface_section(self):
        key = generate_private_key()
        text = render_wireguard_config("10.0.0.1/24", 443, key, "eth0")
        assert text.startswith("[Interface]\n")
        assert "Address = 10.0.0.1/24\n" in text
        assert "ListenPort = 443\n" in text
        assert f"PrivateKey = {key}\n" in text
        assert "-o eth0 -j MASQUERADE" in text
        assert "PostUp = iptables -A FORWARD -i %i -j ACCEPT" in text
        assert "PostDown = iptables -D FORWARD -i %i -j ACCEPT" in text

    def test_extract_key_roundtrip(self):
        key = generate_private_key()
        text = render_wireguard_config("10.0.0.1/24", 443, key, "ens3")
        assert extract_private_key(text) == key

    def test_extract_key_missing_or_invalid(self):
        assert extract_private_key("[Interface]\nAddress = 10.0.0.1/24\n") is None
        assert extract_private_key("[Interface]\nPrivateKey = not-a-key\n") is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"address": "10.0.0.300/24"},
            {"listen_port": 70000},
            {"private_key": "short"},
            {"egress_interface": "eth0; rm -rf /"},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        args = {
            "address": "10.0.0.1/24",
            "listen_port": 443,
            "private_key": generate_private_key(),
            "egress_interface": "eth0",
        }
        args.update(kwargs)
        with pytest.raises(TemplateError):
            render_wireguard_config(**args)


class TestSystemdUnit:
    def _render(self, **kwargs) -> str:
        args = {
            "working_dir": Path("/usr/share/WGDashboard/src"),
            "entrypoint": Path("/usr/share/WGDashboard/src/wgd.sh"),
            "pid_file": Path("/usr/share/WGDashboard/src/gunicorn.pid"),
            "wireguard_dir": Path("/etc/wireguard"),
        }
        args.update(kwargs)
        return render_systemd_unit(**args)

    def test_fields(self):
        unit = self._render()
        assert "WorkingDirectory=/usr/share/WGDashboard/src\n" in unit
        assert "ExecStart=/usr/share/WGDashboard/src/wgd.sh start\n" in unit
        assert "ExecStop=/usr/share/WGDashboard/src/wgd.sh stop\n" in unit
        assert "ExecReload=/usr/share/WGDashboard/src/wgd.sh restart\n" in unit
        assert "PIDFile=/usr/share/WGDashboard/src/gunicorn.pid\n" in unit
        assert "Restart=always\n" in unit
        assert "TimeoutSec=120\n" in unit
        assert "ConditionPathIsDirectory=/etc/wireguard\n" in unit
        assert "WantedBy=multi-user.target\n" in unit

    def test_rejects_relative_paths(self):
        with pytest.raises(TemplateError):
            self._render(working_dir=Path("src"))

    def test_rejects_bad_restart_policy(self):
        with pytest.raises(TemplateError):
            self._render(restart="sometimes")


class TestSysctl:
    def test_ip_forward(self):
        assert render_sysctl(True) == "net.ipv4.ip_forward = 1\n"
        assert render_sysctl(False) == "net.ipv4.ip_forward = 0\n"
