"""
Job store interface.

The job store is the single source of truth for job state and the only shared
mutable resource of the pipeline. Every status transition and counter write is
a single conditional update on one record; implementations must never split
them into a read followed by a write.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.job import (
    ExportJob,
    ImportJob,
    ImportProgress,
    ImportStatus,
    ImportTemplate,
    RowErrorEntry,
)
from ..models.schedule import ScheduledExport, ScheduledExportRun


class JobStore(ABC):
    """
    Abstract base class for job store backends.

    Implemented by DatabaseManager (PostgreSQL) and InMemoryJobStore.
    """

    async def initialize(self) -> None:
        """Open connections or prepare state."""

    async def close(self) -> None:
        """Release connections."""

    async def is_healthy(self) -> bool:
        return True

    # Import jobs
    @abstractmethod
    async def create_import_job(self, job: ImportJob) -> ImportJob:
        pass

    @abstractmethod
    async def get_import_job(self, job_id: str) -> Optional[ImportJob]:
        pass

    @abstractmethod
    async def list_import_jobs(self, created_by: Optional[str] = None, limit: int = 50) -> List[ImportJob]:
        """Newest first; all creators when ``created_by`` is None."""

    @abstractmethod
    async def claim_next_import_job(self, now: datetime) -> Optional[str]:
        """
        Atomically move the oldest PENDING import job to PROCESSING.

        Returns:
            The claimed job id, or None when nothing is pending
        """

    @abstractmethod
    async def get_import_status(self, job_id: str) -> Optional[ImportStatus]:
        pass

    @abstractmethod
    async def update_import_progress(self, job_id: str, progress: ImportProgress) -> bool:
        """Persist interim counters while the job is PROCESSING."""

    @abstractmethod
    async def finish_import_job(
        self,
        job_id: str,
        status: ImportStatus,
        progress: ImportProgress,
        errors: List[RowErrorEntry],
        completed_at: datetime,
        expected_status: ImportStatus = ImportStatus.PROCESSING
    ) -> bool:
        """
        Write final counters, errors, status and completion time.

        Applies only while the job is still in ``expected_status``.
        """

    @abstractmethod
    async def cancel_import_job(self, job_id: str, now: datetime) -> bool:
        """Move a PENDING or PROCESSING job to CANCELLED."""

    @abstractmethod
    async def recover_stuck_import_jobs(self, started_before: datetime) -> int:
        """Revert PROCESSING jobs started before the threshold to PENDING."""

    # Export jobs
    @abstractmethod
    async def create_export_job(self, job: ExportJob) -> ExportJob:
        pass

    @abstractmethod
    async def get_export_job(self, job_id: str) -> Optional[ExportJob]:
        pass

    @abstractmethod
    async def list_export_jobs(self, created_by: Optional[str] = None, limit: int = 50) -> List[ExportJob]:
        pass

    @abstractmethod
    async def claim_next_export_job(self, now: datetime) -> Optional[str]:
        pass

    @abstractmethod
    async def complete_export_job(
        self,
        job_id: str,
        total_rows: int,
        artifact_key: str,
        artifact_location: str,
        completed_at: datetime
    ) -> bool:
        pass

    @abstractmethod
    async def fail_export_job(self, job_id: str, message: str, completed_at: datetime) -> bool:
        pass

    @abstractmethod
    async def recover_stuck_export_jobs(self, started_before: datetime) -> int:
        pass

    # Import templates
    @abstractmethod
    async def create_template(self, template: ImportTemplate) -> ImportTemplate:
        pass

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[ImportTemplate]:
        pass

    @abstractmethod
    async def list_templates(self, module: str) -> List[ImportTemplate]:
        pass

    @abstractmethod
    async def update_template(self, template: ImportTemplate) -> ImportTemplate:
        pass

    @abstractmethod
    async def delete_template(self, template_id: str) -> bool:
        pass

    # Scheduled exports
    @abstractmethod
    async def create_scheduled_export(self, scheduled: ScheduledExport) -> ScheduledExport:
        pass

    @abstractmethod
    async def get_scheduled_export(self, scheduled_id: str) -> Optional[ScheduledExport]:
        pass

    @abstractmethod
    async def list_scheduled_exports(self, created_by: Optional[str] = None) -> List[ScheduledExport]:
        pass

    @abstractmethod
    async def set_scheduled_export_active(
        self,
        scheduled_id: str,
        is_active: bool,
        next_run_at: Optional[datetime]
    ) -> Optional[ScheduledExport]:
        pass

    @abstractmethod
    async def find_due_scheduled_exports(self, now: datetime, limit: int) -> List[ScheduledExport]:
        """Active definitions with next_run_at <= now, oldest next_run_at first."""

    @abstractmethod
    async def record_scheduled_firing(self, scheduled_id: str, last_run_at: datetime, next_run_at: datetime) -> bool:
        pass

    @abstractmethod
    async def delete_scheduled_export(self, scheduled_id: str) -> bool:
        """Delete the definition only; its runs are kept."""

    @abstractmethod
    async def create_run(self, run: ScheduledExportRun) -> ScheduledExportRun:
        pass

    @abstractmethod
    async def update_run(self, run_id: str, **changes: Any) -> bool:
        pass

    @abstractmethod
    async def list_runs(self, scheduled_id: str, limit: int = 50) -> List[ScheduledExportRun]:
        pass

    # Statistics
    @abstractmethod
    async def job_statistics(self, created_by: Optional[str] = None) -> Dict[str, Dict[str, int]]:
        """Counts by status: ``{"imports": {...}, "exports": {...}}``."""
