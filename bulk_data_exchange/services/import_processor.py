"""
Import processor.

Executes one claimed import job: reads the uploaded spreadsheet, coerces each
row against the module template, hands it to the module adapter and records
per-row outcomes. A failing row never aborts the job.
"""

import asyncio
from typing import List, Optional

from ..core.exceptions import RowError
from ..models.job import TERMINAL_IMPORT_STATUSES, ImportJob, ImportProgress, ImportStatus, RowErrorEntry, utcnow
from ..utils import metrics
from ..utils.coercion import coerce_row
from ..utils.job_store import JobStore
from ..utils.logger import LoggerContext, get_logger
from ..utils.storage import LocalArtifactStorage
from ..utils.tabular_codec import iter_rows
from .module_registry import SKIPPED, ModuleAdapter, ModuleRegistry, RowContext


class ImportProcessor:
    """
    Applies the rows of import jobs through the module registry.

    The processor only ever acts on jobs already moved to PROCESSING by a
    claim; invoking it for any other job is a no-op.
    """

    def __init__(
        self,
        store: JobStore,
        storage: LocalArtifactStorage,
        registry: ModuleRegistry,
        progress_batch_size: int = 50,
        row_timeout_seconds: Optional[float] = 30.0
    ):
        """
        Initialize the import processor.

        Args:
            store: Job store holding import jobs
            storage: Artifact storage holding uploaded files
            registry: Module registry used to resolve adapters
            progress_batch_size: Persist counters every this many rows
            row_timeout_seconds: Upper bound for one adapter call (None disables it)
        """
        self.store = store
        self.storage = storage
        self.registry = registry
        self.progress_batch_size = max(1, progress_batch_size)
        self.row_timeout_seconds = row_timeout_seconds
        self.logger = get_logger(__name__)

    async def process(self, job_id: str) -> Optional[ImportStatus]:
        """
        Process one import job to a terminal status.

        Args:
            job_id: Import job to process

        Returns:
            Final status, or None if the job was not eligible
        """
        job = await self.store.get_import_job(job_id)
        if job is None or job.status != ImportStatus.PROCESSING:
            self.logger.debug("Import job not eligible for processing", extra={"job_id": job_id})
            return None

        progress = ImportProgress()
        errors: List[RowErrorEntry] = []

        with LoggerContext(job_id=job.id, job_kind="import", module_key=job.module, component="import_processor"):
            self.logger.info("Import started", extra={"total_rows": job.total_rows})
            try:
                status = await self._run(job, progress, errors)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Import failed: {str(e)}", exc_info=True)
                status = ImportStatus.FAILED
                await self.store.finish_import_job(
                    job.id,
                    ImportStatus.FAILED,
                    progress,
                    [RowErrorEntry(row_number=0, message=str(e) or "Import failed")],
                    utcnow()
                )

            if status in TERMINAL_IMPORT_STATUSES:
                metrics.JOBS_FINISHED.labels(kind="import", status=status.value).inc()
            self.logger.info("Import finished", extra={
                "status": status.value,
                "processed_rows": progress.processed,
                "success_rows": progress.success,
                "error_rows": progress.error,
                "skipped_rows": progress.skipped
            })
            return status

    async def _run(self, job: ImportJob, progress: ImportProgress, errors: List[RowErrorEntry]) -> ImportStatus:
        adapter = self.registry.get(job.module)
        data = await self.storage.read(job.file_key)
        _, rows = iter_rows(data)

        for row_number, row in enumerate(rows, start=1):
            current = await self.store.get_import_status(job.id)
            if current != ImportStatus.PROCESSING:
                return await self._halt(job, current, progress, errors)

            outcome = await self._apply_row(adapter, job, row, row_number)
            progress.processed += 1
            if isinstance(outcome, RowErrorEntry):
                errors.append(outcome)
                progress.error += 1
            elif outcome is SKIPPED:
                progress.skipped += 1
            else:
                progress.success += 1
            metrics.ROWS_PROCESSED.labels(module=job.module, outcome=self._outcome_label(outcome)).inc()

            if progress.processed % self.progress_batch_size == 0:
                await self.store.update_import_progress(job.id, progress)

        status = ImportStatus.FAILED if errors else ImportStatus.COMPLETED
        finished = await self.store.finish_import_job(job.id, status, progress, errors, utcnow())
        if not finished:
            # Cancelled between the last row and the final write
            current = await self.store.get_import_status(job.id)
            return await self._halt(job, current, progress, errors)
        return status

    async def _halt(
        self,
        job: ImportJob,
        current: Optional[ImportStatus],
        progress: ImportProgress,
        errors: List[RowErrorEntry]
    ) -> ImportStatus:
        if current == ImportStatus.CANCELLED:
            await self.store.finish_import_job(
                job.id, ImportStatus.CANCELLED, progress, errors, utcnow(),
                expected_status=ImportStatus.CANCELLED
            )
            self.logger.info("Import cancelled", extra={"processed_rows": progress.processed})
            return ImportStatus.CANCELLED

        # Reverted by recovery or removed; another claim owns the job now
        self.logger.warning("Import job left processing unexpectedly", extra={
            "current_status": current.value if current else None
        })
        return current or ImportStatus.FAILED

    async def _apply_row(self, adapter: ModuleAdapter, job: ImportJob, row, row_number: int):
        ctx = RowContext(
            job_id=job.id,
            module=adapter.module,
            actor_id=job.created_by,
            row_number=row_number,
            context=job.context,
            duplicate_strategy=job.duplicate_strategy,
        )
        try:
            coerced = coerce_row(row, adapter.template.columns, job.mappings)
            async with adapter.transaction():
                return await asyncio.wait_for(adapter.apply_row(coerced, ctx), timeout=self.row_timeout_seconds)
        except asyncio.TimeoutError:
            return RowErrorEntry(row_number=row_number, message=f"Row timed out after {self.row_timeout_seconds}s")
        except RowError as e:
            return RowErrorEntry(row_number=row_number, message=e.message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return RowErrorEntry(row_number=row_number, message=str(e) or "Row import failed")

    @staticmethod
    def _outcome_label(outcome) -> str:
        if isinstance(outcome, RowErrorEntry):
            return "error"
        if outcome is SKIPPED:
            return "skipped"
        return "success"
