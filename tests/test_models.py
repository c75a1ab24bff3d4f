"""
Tests for domain models and the error taxonomy.
"""

import json

import pytest

from hostconverge.core.errors import (
    CommandFailure,
    ConfigError,
    ErrorKind,
    LockContention,
    PrivilegeError,
    TemplateMissingError,
    is_validation_error,
)
from hostconverge.core.models import (
    ExecutionResult,
    Observation,
    ObservedState,
    Presence,
    ResourceDescriptor,
    ResourceKind,
    RunReport,
    Step,
    StepAction,
)


def _step(key="packages", action=StepAction.CREATE):
    return Step(action=action, resource=ResourceDescriptor(kind=ResourceKind.PACKAGES, key=key, target="git"))


class TestResourceDescriptor:
    def test_frozen(self):
        descriptor = ResourceDescriptor(kind=ResourceKind.PACKAGES, key="packages", target="git")
        with pytest.raises(ValueError):
            descriptor.key = "other"

    def test_defaults(self):
        descriptor = ResourceDescriptor(kind=ResourceKind.SERVICE_RUN, key="service", target="x.service")
        assert descriptor.present
        assert descriptor.content is None
        assert descriptor.depends_on == ()


class TestObservedState:
    def test_unprobed_key_is_unknown(self):
        observed = ObservedState()
        assert observed.get("missing").presence == Presence.UNKNOWN
        assert "missing" not in observed

    def test_set_and_get(self):
        observed = ObservedState()
        observed.set("repository", Observation(presence=Presence.PRESENT, values={"url": "u"}))
        assert observed.get("repository").is_present
        assert len(observed) == 1


class TestExecutionResult:
    def test_success(self):
        result = ExecutionResult.success(_step(), output="done", attempts=2)
        assert result.ok
        assert result.step_id == "packages:create"
        assert result.action == "create"
        assert result.attempts == 2

    def test_failure(self):
        result = ExecutionResult.failure(_step(), error="boom", error_kind="dependency")
        assert result.failed
        assert result.error_kind == "dependency"

    def test_skip(self):
        result = ExecutionResult.skip(_step(), reason="blocked")
        assert result.skipped
        assert result.output == "blocked"


class TestRunReport:
    def test_noop(self):
        assert RunReport().status == "noop"

    def test_statuses(self):
        ok = ExecutionResult.success(_step("a"))
        failed = ExecutionResult.failure(_step("b"), error="x")
        skipped = ExecutionResult.skip(_step("c"))

        assert RunReport(results=[ok, skipped]).status == "ok"
        assert RunReport(results=[ok, failed, skipped]).status == "partial"
        assert RunReport(results=[failed, skipped]).status == "failed"

    def test_counts_and_lookup(self):
        report = RunReport(results=[
            ExecutionResult.success(_step("a")),
            ExecutionResult.failure(_step("b"), error="x"),
        ])
        assert (report.total, report.succeeded, report.failed, report.skipped) == (2, 1, 1, 0)
        assert report.result_for("b:create").failed
        assert report.result_for("nope:create") is None

    def test_to_dict_is_json(self):
        report = RunReport(operation_id="op-1", results=[ExecutionResult.success(_step())])
        data = json.loads(json.dumps(report.to_dict()))
        assert data["target"] == "installed"
        assert data["results"][0]["step_id"] == "packages:create"


class TestErrors:
    def test_kinds(self):
        assert LockContention("x").kind == ErrorKind.LOCK_CONTENTION
        assert TemplateMissingError("x").kind == ErrorKind.TEMPLATE_MISSING

    def test_describe_prefixes_resource(self):
        assert CommandFailure("exited 1", resource="service").describe() == "service: exited 1"
        assert CommandFailure("exited 1").describe() == "exited 1"

    def test_validation_errors(self):
        assert is_validation_error(PrivilegeError("x"))
        assert is_validation_error(ConfigError("x"))
        assert not is_validation_error(CommandFailure("x"))
        assert not is_validation_error(ValueError("x"))
