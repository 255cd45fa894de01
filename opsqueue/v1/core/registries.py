from typing import Any, Generic, Protocol, TypeVar

from opsqueue.v1.infra.jobs.results import JobResult

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        if not name or not name.strip():
            raise ValueError(f"{self.name} registry names must be non-empty")
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def lookup(self, name: str) -> T | None:
        """Get an implementation by name, or None when absent."""
        return self._implementations.get(name)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def execute(self, payload: dict[str, Any]) -> JobResult:
        """
        Execute one job.

        Args:
            payload: Job-specific parameters, passed verbatim from the queue

        Returns:
            JobResult describing success (with optional data to store on the
            job) or failure tagged transient/permanent. Raising
            TransientJobError/PermanentJobError is equivalent; any other
            exception counts as a transient failure.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers, keyed by job type."""

    def __init__(self):
        super().__init__("Job")

    async def dispatch(self, job_type: str, payload: dict[str, Any]) -> JobResult:
        """Run the handler for ``job_type``.

        An unregistered type yields ``JobResult.unknown_type`` rather than an
        exception. Handler exceptions propagate to the caller's boundary.
        """
        handler = self.lookup(job_type)
        if handler is None:
            return JobResult.unknown_type(job_type)
        return await handler.execute(payload)
