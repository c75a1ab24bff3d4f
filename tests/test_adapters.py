"""
Tests for the adapter protocol, the registry and the host adapters.
"""


import pytest

from hostconverge.adapters.app.installer import AppSetupAdapter
from hostconverge.adapters.base import ExecutionContext
from hostconverge.adapters.network.firewall import FirewalldAdapter
from hostconverge.adapters.packages.apt import AptAdapter
from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.adapters.services.systemd import SystemdAdapter
from hostconverge.adapters.shell.config_files import FilesystemAdapter
from hostconverge.adapters.vcs.git import GitAdapter
from hostconverge.core.errors import ErrorKind
from hostconverge.core.models.resource import ResourceDescriptor, ResourceKind
from hostconverge.core.models.step import Step, StepAction
from hostconverge.core.services.declarations import declare_resources, gather_facts
from hostconverge.core.services.templates import read_ini_settings
from tests.fakes import REPO_URL, FakeHost, MockAdapter

UNIT = "wgdashboard.service"


def _descriptor(config, host, key) -> ResourceDescriptor:
    descriptors = declare_resources(config, gather_facts(config, host))
    return next(d for d in descriptors if d.key == key)


def _ctx(config, host, key, action=StepAction.CREATE, dry_run=False, **updates) -> ExecutionContext:
    resource = _descriptor(config, host, key)
    if updates:
        resource = resource.model_copy(update=updates)
    return ExecutionContext(
        step=Step(action=action, resource=resource),
        config=config,
        runner=host,
        dry_run=dry_run,
    )


# ── Protocol Tests ───────────────────────────────────────────────────


class TestExecutionContext:
    def test_params(self, host_config, fake_host):
        ctx = _ctx(host_config, fake_host, "repository")
        assert ctx.params["url"] == REPO_URL

    def test_lock_policy_from_config(self, host_config, fake_host):
        policy = _ctx(host_config, fake_host, "packages").lock_policy
        assert policy.attempts == host_config.runner.lock_attempts
        assert policy.base_delay == 0.0

    def test_run_honours_dry_run(self, host_config, fake_host):
        ctx = _ctx(host_config, fake_host, "packages", dry_run=True)
        result = ctx.run(["apt-get", "update"])
        assert result.dry_run
        assert fake_host.calls == [["ip", "route", "show", "default"]]
        assert fake_host.dry_calls == [["apt-get", "update"]]


# ── Registry Tests ───────────────────────────────────────────────────


class TestAdapterRegistry:
    def test_every_kind_has_an_adapter(self, registry):
        for kind in ResourceKind:
            assert registry.get(kind) is not None, kind

    def test_adapter_status(self, registry):
        status = registry.adapter_status()
        assert sorted(status) == ["app-setup", "apt", "filesystem", "firewalld", "git", "systemd"]
        assert status["filesystem"]["available"] is True
        assert "service_run" in status["systemd"]["kinds"]

    def test_adapter_status_reports_missing_tool(self, monkeypatch):
        monkeypatch.setattr("hostconverge.adapters.packages.apt.shutil.which", lambda _: None)
        registry = AdapterRegistry()
        registry.register(AptAdapter())
        registry.register(MockAdapter(adapter_name="ready", available=True, kinds=(ResourceKind.SERVICE_UNIT,)))

        class Raising(MockAdapter):
            def is_available(self):
                raise OSError("no PATH")

        registry.register(Raising(adapter_name="raising", kinds=(ResourceKind.FIREWALL,)))
        status = registry.adapter_status()
        assert status["apt"]["available"] is False
        assert status["ready"]["available"] is True
        assert status["raising"]["available"] is False

    def test_validation_failure(self, host_config, fake_host, registry):
        resource = _descriptor(host_config, fake_host, "packages").model_copy(
            update={"params": {}}
        )
        result = registry.apply(Step(action=StepAction.CREATE, resource=resource), host_config, fake_host)
        assert result.failed
        assert "Missing required param: 'packages'" in result.error

    def test_adapter_exception_captured(self, host_config, fake_host):
        class Exploding(MockAdapter):
            def execute(self, context):
                raise RuntimeError("kaboom")

        registry = AdapterRegistry()
        registry.register(Exploding())
        step = Step(action=StepAction.CREATE, resource=_descriptor(host_config, fake_host, "packages"))
        result = registry.apply(step, host_config, fake_host)
        assert result.failed
        assert "kaboom" in result.error

    def test_dry_run_success_becomes_skip(self, host_config, fake_host):
        registry = AdapterRegistry()
        registry.register(MockAdapter())
        step = Step(action=StepAction.CREATE, resource=_descriptor(host_config, fake_host, "packages"))
        result = registry.apply(step, host_config, fake_host, dry_run=True)
        assert result.skipped
        assert result.output == "[dry-run] would create packages"


# ── Host adapters ────────────────────────────────────────────────────


class TestAptAdapter:
    def test_install(self, host_config, fake_host):
        result = AptAdapter().execute(_ctx(host_config, fake_host, "packages"))
        assert result.ok
        assert fake_host.ran("apt-get", "update")
        assert fake_host.ran("apt-get", "install", "-y")
        assert set(host_config.packages) <= fake_host.packages

    def test_lock_retry_sleeps(self, host_config, fake_host):
        delays = []
        fake_host.hold_lock("apt-get", "update", times=1)
        result = AptAdapter(sleep=delays.append).execute(_ctx(host_config, fake_host, "packages"))
        assert result.ok
        assert len(delays) == 1
        assert fake_host.count("apt-get", "update") == 2

    def test_lock_exhausted(self, host_config, fake_host):
        fake_host.hold_lock("apt-get", "install", times=99)
        result = AptAdapter(sleep=lambda _: None).execute(_ctx(host_config, fake_host, "packages"))
        assert result.failed
        assert result.error_kind == ErrorKind.COMMAND_FAILURE.value
        assert "package lock still held after 3 attempts" in result.error
        assert "Could not get lock" in result.error

    def test_install_failure_is_dependency_error(self, host_config, fake_host):
        fake_host.fail("apt-get", "install", exit_code=100, stderr="E: Unable to locate package wireguard")
        result = AptAdapter().execute(_ctx(host_config, fake_host, "packages"))
        assert result.failed
        assert result.error_kind == ErrorKind.DEPENDENCY.value
        assert "Unable to locate package" in result.error

    def test_delete_never_removes(self, host_config, fake_host):
        result = AptAdapter().execute(_ctx(host_config, fake_host, "packages", action=StepAction.DELETE))
        assert result.skipped
        assert not fake_host.ran("apt-get")


class TestGitAdapter:
    def test_clone(self, host_config, fake_host):
        result = GitAdapter().execute(_ctx(host_config, fake_host, "repository"))
        assert result.ok
        assert fake_host.repos[host_config.app.install_dir] == REPO_URL

    def test_update_replaces_directory(self, host_config, fake_host):
        stale = host_config.app.install_dir / "stale.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("left over")

        result = GitAdapter().execute(_ctx(host_config, fake_host, "repository", action=StepAction.UPDATE))
        assert result.ok
        assert not stale.exists()
        assert (host_config.app.install_dir / ".git").is_dir()

    def test_delete(self, host_config, fake_host):
        fake_host.clone(host_config.app.install_dir)
        result = GitAdapter().execute(_ctx(host_config, fake_host, "repository", action=StepAction.DELETE))
        assert result.ok
        assert not host_config.app.install_dir.exists()

    def test_clone_failure(self, host_config, fake_host):
        fake_host.fail("git", "clone", exit_code=128, stderr="fatal: unable to access")
        result = GitAdapter().execute(_ctx(host_config, fake_host, "repository"))
        assert result.failed
        assert "fatal: unable to access" in result.error

    def test_refuses_root(self, host_config, fake_host):
        ctx = _ctx(host_config, fake_host, "repository", target="/")
        ok, msg = GitAdapter().validate(ctx)
        assert not ok
        assert "Refusing" in msg


class TestFilesystemAdapter:
    def test_render_dashboard_config(self, host_config, fake_host):
        fake_host.clone(host_config.app.install_dir)
        result = FilesystemAdapter().execute(_ctx(host_config, fake_host, "dashboard-config"))
        assert result.ok
        settings = read_ini_settings(host_config.app.config_path.read_text(), "Server")
        assert settings == {
            "wg_conf_path": "/etc/wireguard",
            "app_ip": "0.0.0.0",
            "app_port": "5000",
        }

    def test_missing_template(self, host_config, fake_host):
        result = FilesystemAdapter().execute(_ctx(host_config, fake_host, "dashboard-config"))
        assert result.failed
        assert result.error_kind == ErrorKind.TEMPLATE_MISSING.value

    def test_missing_template_in_dry_run(self, host_config, fake_host):
        ctx = _ctx(host_config, fake_host, "dashboard-config", dry_run=True)
        result = FilesystemAdapter().execute(ctx)
        assert result.skipped
        assert "after clone" in result.output

    def test_wireguard_file_mode(self, host_config, fake_host):
        result = FilesystemAdapter().execute(_ctx(host_config, fake_host, "wg-interface"))
        assert result.ok
        path = host_config.wireguard.config_path
        assert path.stat().st_mode & 0o777 == 0o600
        assert "PrivateKey = " in path.read_text()

    def test_unchanged_file(self, host_config, fake_host):
        adapter = FilesystemAdapter()
        adapter.execute(_ctx(host_config, fake_host, "ip-forward"))
        result = adapter.execute(_ctx(host_config, fake_host, "ip-forward", action=StepAction.UPDATE))
        assert result.ok
        assert result.output.endswith("unchanged")

    def test_sysctl_rejected_restores_previous(self, host_config, fake_host):
        path = host_config.sysctl.path
        path.parent.mkdir(parents=True)
        path.write_text("net.ipv4.ip_forward = 0\n")
        fake_host.fail("sysctl", stderr="sysctl: permission denied")

        result = FilesystemAdapter().execute(_ctx(host_config, fake_host, "ip-forward", action=StepAction.UPDATE))
        assert result.failed
        assert path.read_text() == "net.ipv4.ip_forward = 0\n"

    def test_validate_requires_content(self, host_config, fake_host):
        ctx = _ctx(host_config, fake_host, "wg-interface", content=None)
        ok, msg = FilesystemAdapter().validate(ctx)
        assert not ok
        assert "wg-interface" in msg

    def test_delete(self, host_config, fake_host):
        adapter = FilesystemAdapter()
        adapter.execute(_ctx(host_config, fake_host, "ip-forward"))
        result = adapter.execute(_ctx(host_config, fake_host, "ip-forward", action=StepAction.DELETE))
        assert result.ok
        assert not host_config.sysctl.path.exists()


class TestAppSetupAdapter:
    def test_runs_installer_with_answer(self, host_config, fake_host):
        fake_host.clone(host_config.app.install_dir)
        result = AppSetupAdapter().execute(_ctx(host_config, fake_host, "app-setup"))
        assert result.ok
        assert host_config.app.marker_path.is_dir()
        assert host_config.app.entrypoint_path.stat().st_mode & 0o111

    def test_missing_entrypoint(self, host_config, fake_host):
        result = AppSetupAdapter().execute(_ctx(host_config, fake_host, "app-setup"))
        assert result.failed
        assert "Entrypoint not found" in result.error

    def test_installer_failure(self, host_config, fake_host):
        fake_host.clone(host_config.app.install_dir)
        fake_host.fail(str(host_config.app.entrypoint_path), "install", exit_code=2)
        result = AppSetupAdapter().execute(_ctx(host_config, fake_host, "app-setup"))
        assert result.failed
        assert result.error_kind == ErrorKind.COMMAND_FAILURE.value

    def test_unexecutable_entrypoint(self, host_config, fake_host, monkeypatch):
        fake_host.clone(host_config.app.install_dir)

        def denied(path, mode):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr("hostconverge.adapters.app.installer.os.chmod", denied)
        result = AppSetupAdapter().execute(_ctx(host_config, fake_host, "app-setup"))
        assert result.failed
        assert result.error_kind == ErrorKind.COMMAND_FAILURE.value
        assert result.error.startswith("Setup error:")
        assert not fake_host.ran(str(host_config.app.entrypoint_path))


class TestSystemdAdapter:
    def test_write_unit_and_reload(self, host_config, fake_host):
        result = SystemdAdapter().execute(_ctx(host_config, fake_host, "service-unit"))
        assert result.ok
        assert host_config.service.unit_path.is_file()
        assert UNIT in fake_host.loaded_units

    def test_rejected_unit_rolled_back(self, host_config, fake_host):
        fake_host.fail("systemctl", "daemon-reload")
        result = SystemdAdapter().execute(_ctx(host_config, fake_host, "service-unit"))
        assert result.failed
        assert not host_config.service.unit_path.exists()

    def test_stop_missing_unit_is_success(self, host_config, fake_host):
        result = SystemdAdapter().execute(_ctx(host_config, fake_host, "service", action=StepAction.STOP))
        assert result.ok
        assert "nothing to stop" in result.output

    def test_disable_missing_unit_is_success(self, host_config, fake_host):
        ctx = _ctx(host_config, fake_host, "service-enable", action=StepAction.DELETE)
        result = SystemdAdapter().execute(ctx)
        assert result.ok
        assert "nothing to disable" in result.output

    def test_start_missing_unit_fails(self, host_config, fake_host):
        result = SystemdAdapter().execute(_ctx(host_config, fake_host, "service", action=StepAction.START))
        assert result.failed
        assert "not loaded" in result.error

    def test_unsupported_action(self, host_config, fake_host):
        result = SystemdAdapter().execute(_ctx(host_config, fake_host, "service", action=StepAction.DELETE))
        assert result.failed
        assert result.error_kind == ErrorKind.TRANSITION.value
        assert "Unsupported action delete" in result.error


class TestFirewalldAdapter:
    @pytest.fixture
    def ctx(self, host_config, fake_host):
        return _ctx(host_config, fake_host, "firewall", params={"enabled": True, "port": 5000, "protocol": "tcp"})

    def test_open_port(self, ctx, fake_host):
        result = FirewalldAdapter().execute(ctx)
        assert result.ok
        assert "5000/tcp" in fake_host.open_ports
        assert fake_host.ran("firewall-cmd", "--reload")

    def test_already_enabled_is_success(self, ctx, fake_host):
        fake_host.open_ports.add("5000/tcp")
        fake_host.fail("firewall-cmd", "--permanent", exit_code=11, stderr="Error: ALREADY_ENABLED: 5000/tcp")
        assert FirewalldAdapter().execute(ctx).ok

    def test_real_failure(self, ctx, fake_host):
        fake_host.fail("firewall-cmd", "--permanent", exit_code=252, stderr="FirewallD is not running")
        result = FirewalldAdapter().execute(ctx)
        assert result.failed
        assert "FirewallD is not running" in result.error

    def test_disabled_fails_validation(self, host_config, fake_host):
        ok, msg = FirewalldAdapter().validate(_ctx(host_config, fake_host, "firewall"))
        assert not ok
        assert "disabled" in msg

    def test_remove_port(self, host_config, fake_host):
        fake_host.open_ports.add("5000/tcp")
        ctx = _ctx(
            host_config, fake_host, "firewall",
            action=StepAction.DELETE,
            params={"enabled": True, "port": 5000, "protocol": "tcp"},
        )
        assert FirewalldAdapter().execute(ctx).ok
        assert fake_host.open_ports == set()


def test_adapters_reject_foreign_kinds(host_config, fake_host):
    ctx = _ctx(host_config, fake_host, "packages")
    ok, msg = GitAdapter().validate(ctx)
    assert not ok
    assert "does not handle packages" in msg
