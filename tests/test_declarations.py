"""
Tests for resource declarations and runtime facts.
"""

import pytest

from hostconverge.core.errors import NetworkDetectionError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.services import declarations as d
from hostconverge.core.services.declarations import declare_resources, gather_facts
from hostconverge.core.services.templates import render_wireguard_config
from hostconverge.core.services.wireguard_keys import generate_private_key, is_valid_key
from tests.fakes import make_config



class TestGatherFacts:
    def test_detects_egress_and_generates_key(self, host_config, fake_host):
        facts = gather_facts(host_config, fake_host)
        assert facts.egress_interface == "eth0"
        assert is_valid_key(facts.private_key)
        assert not facts.key_reused

    def test_reuses_existing_key(self, host_config, fake_host):
        key = generate_private_key()
        path = host_config.wireguard.config_path
        path.parent.mkdir(parents=True)
        path.write_text(render_wireguard_config("10.0.0.1/24", 443, key, "eth0"))

        facts = gather_facts(host_config, fake_host)
        assert facts.private_key == key
        assert facts.key_reused

    def test_configured_egress_skips_detection(self, tmp_path):
        from hostconverge.core.models.config import WireGuardConfig
        from tests.fakes import FakeHost

        config = make_config(tmp_path, wireguard=WireGuardConfig(config_dir=tmp_path / "wg", egress_interface="ens5"))
        host = FakeHost(config)
        host.default_route = ""
        assert gather_facts(config, host).egress_interface == "ens5"
        assert not host.ran("ip", "route")

    def test_no_route_required(self, host_config, fake_host):
        fake_host.default_route = ""
        with pytest.raises(NetworkDetectionError):
            gather_facts(host_config, fake_host)

    def test_no_route_tolerated(self, host_config, fake_host):
        fake_host.default_route = ""
        facts = gather_facts(host_config, fake_host, require_network=False)
        assert facts.egress_interface is None


class TestDeclareResources:
    def _declare(self, host_config, fake_host):
        return declare_resources(host_config, gather_facts(host_config, fake_host))

    def test_declaration_order(self, host_config, fake_host):
        keys = [r.key for r in self._declare(host_config, fake_host)]
        assert keys == [
            d.PACKAGES,
            d.REPOSITORY,
            d.DASHBOARD_CONFIG,
            d.IP_FORWARD,
            d.WG_INTERFACE,
            d.APP_SETUP,
            d.SERVICE_UNIT,
            d.SERVICE,
            d.SERVICE_ENABLE,
            d.FIREWALL,
        ]

    def test_dependencies_are_declared(self, host_config, fake_host):
        resources = self._declare(host_config, fake_host)
        keys = {r.key for r in resources}
        for r in resources:
            assert set(r.depends_on) <= keys

    def test_dashboard_settings(self, host_config, fake_host):
        config = host_config.with_app_overrides(bind_address="127.0.0.1", port=8443)
        resources = declare_resources(config, gather_facts(config, fake_host))
        dashboard = next(r for r in resources if r.key == d.DASHBOARD_CONFIG)
        assert dashboard.settings == {"app_ip": "127.0.0.1", "app_port": "8443"}
        firewall = next(r for r in resources if r.key == d.FIREWALL)
        assert firewall.target == "8443/tcp"

    def test_wireguard_file_is_private(self, host_config, fake_host):
        wg = next(r for r in self._declare(host_config, fake_host) if r.kind == ResourceKind.WG_INTERFACE)
        assert wg.mode == 0o600
        assert "-o eth0 -j MASQUERADE" in wg.content

    def test_wireguard_content_absent_without_route(self, host_config, fake_host):
        fake_host.default_route = ""
        facts = gather_facts(host_config, fake_host, require_network=False)
        wg = next(r for r in declare_resources(host_config, facts) if r.key == d.WG_INTERFACE)
        assert wg.content is None

    def test_service_depends_on_everything_it_runs_with(self, host_config, fake_host):
        service = next(r for r in self._declare(host_config, fake_host) if r.key == d.SERVICE)
        assert set(service.depends_on) == {
            d.SERVICE_UNIT,
            d.APP_SETUP,
            d.DASHBOARD_CONFIG,
            d.WG_INTERFACE,
            d.IP_FORWARD,
        }
