"""
Job registry construction.

The application selects its registry factory with JOB_REGISTRY_FACTORY
(``"module:callable"``). A factory takes the settings and the database and
returns a populated ``JobRegistry``.
"""

import importlib
import logging
from collections.abc import Callable

from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database
from opsqueue.v1.core.registries import JobRegistry
from opsqueue.v1.infra.jobs.handlers import ReapStaleJobsHandler
from opsqueue.v1.infra.jobs.reaper import StaleJobReaper

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[Settings, Database], JobRegistry]


def build_job_registry(settings: Settings, database: Database) -> JobRegistry:
    """Registry with the queue's built-in maintenance handlers."""
    registry = JobRegistry()

    logger.info("Registering job handlers")

    # Maintenance job handlers
    registry.register(
        "reap_stale_jobs", ReapStaleJobsHandler(StaleJobReaper(database, settings))
    )

    logger.info(
        "Job handlers registered", extra={"registered_handlers": registry.list()}
    )
    return registry


def resolve_factory(path: str) -> RegistryFactory:
    """Import ``module:callable`` and return the callable."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"Invalid JOB_REGISTRY_FACTORY '{path}', expected 'module:callable'"
        )

    module = importlib.import_module(module_name)
    try:
        factory = getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"Module '{module_name}' has no attribute '{attr}'") from e

    if not callable(factory):
        raise ValueError(f"JOB_REGISTRY_FACTORY '{path}' is not callable")
    return factory


def load_job_registry(settings: Settings, database: Database) -> JobRegistry:
    """Build the registry configured for this deployment."""
    factory = resolve_factory(settings.job_registry_factory)
    registry = factory(settings, database)
    if not isinstance(registry, JobRegistry):
        raise TypeError(
            f"{settings.job_registry_factory} returned "
            f"{type(registry).__name__}, expected JobRegistry"
        )

    # Production registries are immutable once loaded
    if settings.environment != "development":
        registry.freeze()
    return registry
