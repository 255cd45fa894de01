"""
Handler outcome types.

Handlers report failures either by returning a failed ``JobResult`` or by
raising one of the ``JobError`` subclasses. Anything else that escapes a
handler is treated as transient.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification of a failed execution."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN_TYPE = "unknown_type"

    @property
    def is_retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class JobError(Exception):
    """Base error a handler may raise to tag its failure."""

    kind: ErrorKind = ErrorKind.TRANSIENT


class TransientJobError(JobError):
    """Network, rate limit, timeout: expected to succeed on retry."""

    kind = ErrorKind.TRANSIENT


class PermanentJobError(JobError):
    """Bad payload, revoked credentials: will never succeed."""

    kind = ErrorKind.PERMANENT


@dataclass(frozen=True)
class JobResult:
    """Outcome of a single handler execution."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    def __post_init__(self):
        # Untagged failures default to transient
        if not self.success and self.error_kind is None:
            object.__setattr__(self, "error_kind", ErrorKind.TRANSIENT)

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> "JobResult":
        return cls(success=True, data=data or {})

    @classmethod
    def failed(
        cls, message: str, kind: ErrorKind = ErrorKind.TRANSIENT
    ) -> "JobResult":
        return cls(success=False, error_kind=kind, error_message=message)

    @classmethod
    def unknown_type(cls, job_type: str) -> "JobResult":
        return cls(
            success=False,
            error_kind=ErrorKind.UNKNOWN_TYPE,
            error_message=f"No handler registered for job type: {job_type}",
        )

    @classmethod
    def from_exception(cls, exc: BaseException) -> "JobResult":
        kind = exc.kind if isinstance(exc, JobError) else ErrorKind.TRANSIENT
        message = str(exc) or exc.__class__.__name__
        return cls(success=False, error_kind=kind, error_message=message)
