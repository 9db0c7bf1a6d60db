"""
In-process job store.

Keeps every record in dictionaries guarded by a single asyncio.Lock, so each
operation is one critical section and claims are mutually exclusive. Records
are deep-copied on the way in and out; callers never share state with the
store. Intended for tests, local runs and single-process deployments.
"""

import asyncio
import copy
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.job import (
    ExportJob,
    ExportStatus,
    ImportJob,
    ImportProgress,
    ImportStatus,
    ImportTemplate,
    RowErrorEntry,
    TERMINAL_IMPORT_STATUSES,
)
from ..models.schedule import RunStatus, ScheduledExport, ScheduledExportRun
from .job_store import JobStore
from .logger import get_logger


class InMemoryJobStore(JobStore):
    """JobStore backed by process memory."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._imports: Dict[str, ImportJob] = {}
        self._exports: Dict[str, ExportJob] = {}
        self._templates: Dict[str, ImportTemplate] = {}
        self._scheduled: Dict[str, ScheduledExport] = {}
        self._runs: Dict[str, ScheduledExportRun] = {}
        self.logger = get_logger(__name__)

    # Import jobs
    async def create_import_job(self, job: ImportJob) -> ImportJob:
        async with self._lock:
            self._imports[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    async def get_import_job(self, job_id: str) -> Optional[ImportJob]:
        async with self._lock:
            job = self._imports.get(job_id)
            return copy.deepcopy(job) if job else None

    async def list_import_jobs(self, created_by: Optional[str] = None, limit: int = 50) -> List[ImportJob]:
        async with self._lock:
            jobs = [j for j in self._imports.values() if created_by is None or j.created_by == created_by]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return copy.deepcopy(jobs[:limit])

    async def claim_next_import_job(self, now: datetime) -> Optional[str]:
        async with self._lock:
            pending = [j for j in self._imports.values() if j.status == ImportStatus.PENDING]
            if not pending:
                return None
            job = min(pending, key=lambda j: j.created_at)
            job.status = ImportStatus.PROCESSING
            job.started_at = now
            return job.id

    async def get_import_status(self, job_id: str) -> Optional[ImportStatus]:
        async with self._lock:
            job = self._imports.get(job_id)
            return job.status if job else None

    async def update_import_progress(self, job_id: str, progress: ImportProgress) -> bool:
        async with self._lock:
            job = self._imports.get(job_id)
            if not job or job.status != ImportStatus.PROCESSING:
                return False
            self._apply_progress(job, progress)
            return True

    async def finish_import_job(
        self,
        job_id: str,
        status: ImportStatus,
        progress: ImportProgress,
        errors: List[RowErrorEntry],
        completed_at: datetime,
        expected_status: ImportStatus = ImportStatus.PROCESSING
    ) -> bool:
        async with self._lock:
            job = self._imports.get(job_id)
            if not job or job.status != expected_status:
                return False
            self._apply_progress(job, progress)
            job.errors = copy.deepcopy(errors)
            job.status = status
            job.completed_at = completed_at
            return True

    async def cancel_import_job(self, job_id: str, now: datetime) -> bool:
        async with self._lock:
            job = self._imports.get(job_id)
            if not job or job.status in TERMINAL_IMPORT_STATUSES:
                return False
            job.status = ImportStatus.CANCELLED
            job.completed_at = now
            return True

    async def recover_stuck_import_jobs(self, started_before: datetime) -> int:
        async with self._lock:
            return self._revert_stale(self._imports.values(), ImportStatus.PROCESSING, ImportStatus.PENDING, started_before)

    # Export jobs
    async def create_export_job(self, job: ExportJob) -> ExportJob:
        async with self._lock:
            self._exports[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    async def get_export_job(self, job_id: str) -> Optional[ExportJob]:
        async with self._lock:
            job = self._exports.get(job_id)
            return copy.deepcopy(job) if job else None

    async def list_export_jobs(self, created_by: Optional[str] = None, limit: int = 50) -> List[ExportJob]:
        async with self._lock:
            jobs = [j for j in self._exports.values() if created_by is None or j.created_by == created_by]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return copy.deepcopy(jobs[:limit])

    async def claim_next_export_job(self, now: datetime) -> Optional[str]:
        async with self._lock:
            pending = [j for j in self._exports.values() if j.status == ExportStatus.PENDING]
            if not pending:
                return None
            job = min(pending, key=lambda j: j.created_at)
            job.status = ExportStatus.PROCESSING
            job.started_at = now
            return job.id

    async def complete_export_job(
        self,
        job_id: str,
        total_rows: int,
        artifact_key: str,
        artifact_location: str,
        completed_at: datetime
    ) -> bool:
        async with self._lock:
            job = self._exports.get(job_id)
            if not job or job.status != ExportStatus.PROCESSING:
                return False
            job.status = ExportStatus.COMPLETED
            job.total_rows = total_rows
            job.artifact_key = artifact_key
            job.artifact_location = artifact_location
            job.completed_at = completed_at
            return True

    async def fail_export_job(self, job_id: str, message: str, completed_at: datetime) -> bool:
        async with self._lock:
            job = self._exports.get(job_id)
            if not job or job.status != ExportStatus.PROCESSING:
                return False
            job.status = ExportStatus.FAILED
            job.error_message = message
            job.completed_at = completed_at
            return True

    async def recover_stuck_export_jobs(self, started_before: datetime) -> int:
        async with self._lock:
            return self._revert_stale(self._exports.values(), ExportStatus.PROCESSING, ExportStatus.PENDING, started_before)

    # Import templates
    async def create_template(self, template: ImportTemplate) -> ImportTemplate:
        async with self._lock:
            self._templates[template.id] = copy.deepcopy(template)
            return copy.deepcopy(template)

    async def get_template(self, template_id: str) -> Optional[ImportTemplate]:
        async with self._lock:
            template = self._templates.get(template_id)
            return copy.deepcopy(template) if template else None

    async def list_templates(self, module: str) -> List[ImportTemplate]:
        async with self._lock:
            templates = [t for t in self._templates.values() if t.module == module]
            templates.sort(key=lambda t: (not t.is_default, t.name.lower()))
            return copy.deepcopy(templates)

    async def update_template(self, template: ImportTemplate) -> ImportTemplate:
        async with self._lock:
            self._templates[template.id] = copy.deepcopy(template)
            return copy.deepcopy(template)

    async def delete_template(self, template_id: str) -> bool:
        async with self._lock:
            return self._templates.pop(template_id, None) is not None

    # Scheduled exports
    async def create_scheduled_export(self, scheduled: ScheduledExport) -> ScheduledExport:
        async with self._lock:
            self._scheduled[scheduled.id] = copy.deepcopy(scheduled)
            return copy.deepcopy(scheduled)

    async def get_scheduled_export(self, scheduled_id: str) -> Optional[ScheduledExport]:
        async with self._lock:
            scheduled = self._scheduled.get(scheduled_id)
            return copy.deepcopy(scheduled) if scheduled else None

    async def list_scheduled_exports(self, created_by: Optional[str] = None) -> List[ScheduledExport]:
        async with self._lock:
            items = [s for s in self._scheduled.values() if created_by is None or s.created_by == created_by]
            items.sort(key=lambda s: s.created_at, reverse=True)
            return copy.deepcopy(items)

    async def set_scheduled_export_active(
        self,
        scheduled_id: str,
        is_active: bool,
        next_run_at: Optional[datetime]
    ) -> Optional[ScheduledExport]:
        async with self._lock:
            scheduled = self._scheduled.get(scheduled_id)
            if not scheduled:
                return None
            scheduled.is_active = is_active
            scheduled.next_run_at = next_run_at
            return copy.deepcopy(scheduled)

    async def find_due_scheduled_exports(self, now: datetime, limit: int) -> List[ScheduledExport]:
        async with self._lock:
            due = [s for s in self._scheduled.values() if s.is_due(now)]
            due.sort(key=lambda s: s.next_run_at)
            return copy.deepcopy(due[:limit])

    async def record_scheduled_firing(self, scheduled_id: str, last_run_at: datetime, next_run_at: datetime) -> bool:
        async with self._lock:
            scheduled = self._scheduled.get(scheduled_id)
            if not scheduled:
                return False
            scheduled.last_run_at = last_run_at
            scheduled.next_run_at = next_run_at
            return True

    async def delete_scheduled_export(self, scheduled_id: str) -> bool:
        async with self._lock:
            return self._scheduled.pop(scheduled_id, None) is not None

    async def create_run(self, run: ScheduledExportRun) -> ScheduledExportRun:
        async with self._lock:
            self._runs[run.id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    async def update_run(self, run_id: str, **changes: Any) -> bool:
        async with self._lock:
            run = self._runs.get(run_id)
            if not run:
                return False
            for name, value in changes.items():
                if name == "status" and not isinstance(value, RunStatus):
                    value = RunStatus(value)
                setattr(run, name, value)
            return True

    async def list_runs(self, scheduled_id: str, limit: int = 50) -> List[ScheduledExportRun]:
        async with self._lock:
            runs = [r for r in self._runs.values() if r.scheduled_export_id == scheduled_id]
            runs.sort(key=lambda r: r.created_at, reverse=True)
            return copy.deepcopy(runs[:limit])

    async def job_statistics(self, created_by: Optional[str] = None) -> Dict[str, Dict[str, int]]:
        async with self._lock:
            imports = Counter(
                j.status.value for j in self._imports.values() if created_by is None or j.created_by == created_by
            )
            exports = Counter(
                j.status.value for j in self._exports.values() if created_by is None or j.created_by == created_by
            )
        return {
            "imports": dict(imports, total=sum(imports.values())),
            "exports": dict(exports, total=sum(exports.values())),
        }

    @staticmethod
    def _apply_progress(job: ImportJob, progress: ImportProgress) -> None:
        job.processed_rows = progress.processed
        job.success_rows = progress.success
        job.error_rows = progress.error
        job.skipped_rows = progress.skipped

    @staticmethod
    def _revert_stale(jobs, processing, pending, started_before: datetime) -> int:
        reverted = 0
        for job in jobs:
            if job.status == processing and job.started_at is not None and job.started_at < started_before:
                job.status = pending
                job.started_at = None
                reverted += 1
        return reverted
