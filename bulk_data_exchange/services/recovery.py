"""
Stuck-job recovery.

Jobs left in PROCESSING by a crashed worker are reverted to PENDING so that a
poller claims them again. Appliers are expected to be idempotent; rows already
applied before the crash are applied again on the next attempt.
"""

from datetime import timedelta
from typing import Dict

from ..core.config import MIN_STUCK_MINUTES
from ..models.job import JobKind, utcnow
from ..utils import metrics
from ..utils.job_store import JobStore
from ..utils.logger import get_logger


class StuckJobRecovery:
    """Reverts stale PROCESSING jobs of both kinds."""

    def __init__(self, store: JobStore, stuck_minutes: int = 30):
        self.store = store
        self.stuck_minutes = max(MIN_STUCK_MINUTES, stuck_minutes)
        self.logger = get_logger(__name__)

    async def sweep(self) -> Dict[str, int]:
        """
        Revert every job processing for longer than the threshold.

        A failure for one kind is logged and does not stop the other.

        Returns:
            Number of reverted jobs per kind
        """
        threshold = utcnow() - timedelta(minutes=self.stuck_minutes)
        recovered: Dict[str, int] = {}

        sweeps = (
            (JobKind.IMPORT, self.store.recover_stuck_import_jobs),
            (JobKind.EXPORT, self.store.recover_stuck_export_jobs),
        )
        for kind, recover in sweeps:
            try:
                count = await recover(threshold)
            except Exception as e:
                self.logger.error(f"Stuck job recovery failed: {str(e)}", exc_info=True, extra={
                    "job_kind": kind.value
                })
                recovered[kind.value] = 0
                continue

            recovered[kind.value] = count
            if count:
                metrics.JOBS_RECOVERED.labels(kind=kind.value).inc(count)
                self.logger.warning("Recovered stuck jobs", extra={
                    "job_kind": kind.value,
                    "count": count,
                    "stuck_minutes": self.stuck_minutes
                })

        return recovered
