"""
Built-in job handlers.

Business handlers (scans, scoring, selection) are supplied by the embedding
application through its own registry factory. The queue ships only its own
maintenance work.
"""

import logging
from typing import Any

from opsqueue.v1.infra.jobs.reaper import StaleJobReaper
from opsqueue.v1.infra.jobs.results import JobResult, PermanentJobError

logger = logging.getLogger(__name__)


class ReapStaleJobsHandler:
    """
    Job handler that runs the stale claim reaper.

    Payload expected:
    {
        "stale_after_s": 600  # optional, defaults to JOB_STALE_AFTER_S
    }
    """

    def __init__(self, reaper: StaleJobReaper):
        self.reaper = reaper

    async def execute(self, payload: dict[str, Any]) -> JobResult:
        stale_after_s = payload.get("stale_after_s")
        if stale_after_s is not None:
            if isinstance(stale_after_s, bool) or not isinstance(
                stale_after_s, (int, float)
            ):
                raise PermanentJobError(
                    f"Invalid stale_after_s: {stale_after_s!r}"
                )
            if stale_after_s <= 0:
                raise PermanentJobError("stale_after_s must be positive")

        report = await self.reaper.reap(stale_after_s=stale_after_s)

        logger.info(
            "Stale job maintenance completed",
            extra={"requeued": report.requeued, "dead": report.dead},
        )

        return JobResult.ok(
            {
                "requeued": report.requeued,
                "dead": report.dead,
                "job_ids": [str(job_id) for job_id in report.job_ids],
            }
        )
