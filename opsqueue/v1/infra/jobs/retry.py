"""
Retry policy: decides whether a failed job runs again and when.
"""

from dataclasses import dataclass

from opsqueue.config.settings import Settings
from opsqueue.v1.infra.jobs.results import ErrorKind


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for transient failures.

    ``attempts`` is the failure count *including* the failure being decided
    on, so the first retry waits ``base_delay_s``.
    """

    base_delay_s: float = 30.0
    max_delay_s: float = 3600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_s=settings.job_backoff_base_s,
            max_delay_s=settings.job_max_backoff_s,
        )

    def backoff(self, attempts: int) -> float:
        """Delay before the next attempt, capped at ``max_delay_s``."""
        exponent = max(0, attempts - 1)
        # float * 2**n overflows for very large n
        if exponent > 62:
            return self.max_delay_s
        return min(self.max_delay_s, self.base_delay_s * (2**exponent))

    def decide(
        self, attempts: int, max_attempts: int, error_kind: ErrorKind | None
    ) -> RetryDecision:
        if attempts >= max_attempts:
            return RetryDecision(retry=False)

        kind = error_kind or ErrorKind.TRANSIENT
        if not kind.is_retryable:
            return RetryDecision(retry=False)

        return RetryDecision(retry=True, delay_seconds=self.backoff(attempts))
