from typing import Any

import pytest

from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database
from opsqueue.v1.core.registries import JobRegistry, Registry
from opsqueue.v1.infra.jobs.handlers import ReapStaleJobsHandler
from opsqueue.v1.infra.jobs.registry_init import (
    build_job_registry,
    load_job_registry,
    resolve_factory,
)
from opsqueue.v1.infra.jobs.results import (
    ErrorKind,
    JobResult,
    PermanentJobError,
    TransientJobError,
)


class EchoHandler:
    async def execute(self, payload: dict[str, Any]) -> JobResult:
        return JobResult.ok({"echo": payload})


def custom_registry(settings: Settings, database: Database) -> JobRegistry:
    registry = JobRegistry()
    registry.register("echo", EchoHandler())
    return registry


def not_a_registry(settings: Settings, database: Database):
    return {"echo": EchoHandler()}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]
    assert "test_impl" in registry
    assert registry.lookup("missing") is None

    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_rejects_blank_names():
    registry = Registry[str]("Test")

    with pytest.raises(ValueError):
        registry.register("  ", "value")


def test_registry_freeze():
    """Frozen registries refuse new registrations."""
    registry = Registry[str]("Test")
    registry.register("before", "value")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("after", "value")
    assert registry.get("before") == "value"


async def test_dispatch_runs_registered_handler():
    registry = JobRegistry()
    registry.register("echo", EchoHandler())

    result = await registry.dispatch("echo", {"a": 1})

    assert result.success is True
    assert result.data == {"echo": {"a": 1}}


async def test_dispatch_unknown_type_is_a_result():
    registry = JobRegistry()

    result = await registry.dispatch("nope", {})

    assert result.success is False
    assert result.error_kind is ErrorKind.UNKNOWN_TYPE
    assert "nope" in result.error_message


def test_job_result_classification():
    assert JobResult(success=False).error_kind is ErrorKind.TRANSIENT
    assert JobResult.ok().error_kind is None

    assert (
        JobResult.from_exception(PermanentJobError("bad payload")).error_kind
        is ErrorKind.PERMANENT
    )
    assert (
        JobResult.from_exception(TransientJobError("rate limited")).error_kind
        is ErrorKind.TRANSIENT
    )
    result = JobResult.from_exception(KeyError())
    assert result.error_kind is ErrorKind.TRANSIENT
    assert result.error_message == "KeyError"


def test_default_factory_registers_maintenance_handler(settings, database):
    registry = build_job_registry(settings, database)

    assert registry.list() == ["reap_stale_jobs"]
    assert isinstance(registry.get("reap_stale_jobs"), ReapStaleJobsHandler)


def test_load_registry_from_custom_factory(settings, database):
    settings = settings.model_copy(
        update={"job_registry_factory": f"{__name__}:custom_registry"}
    )

    registry = load_job_registry(settings, database)

    assert registry.list() == ["echo"]
    # Outside development the loaded registry is immutable
    assert registry.is_frozen()


def test_development_registry_stays_open(settings, database):
    settings = settings.model_copy(update={"environment": "development"})

    registry = load_job_registry(settings, database)

    assert not registry.is_frozen()


@pytest.mark.parametrize(
    "path",
    ["no_colon_here", "opsqueue.v1.infra.jobs.registry_init:missing", ":callable"],
)
def test_resolve_factory_rejects_bad_paths(path):
    with pytest.raises(ValueError):
        resolve_factory(path)


def test_factory_must_return_job_registry(settings, database):
    settings = settings.model_copy(
        update={"job_registry_factory": f"{__name__}:not_a_registry"}
    )

    with pytest.raises(TypeError, match="expected JobRegistry"):
        load_job_registry(settings, database)
