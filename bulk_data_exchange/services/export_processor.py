"""
Export processor.

Executes one claimed export job: fetches matching records from the module
adapter, projects the requested columns, encodes the CSV and stores it as the
job's artifact.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from ..models.job import ExportJob, ExportStatus, utcnow
from ..utils import metrics
from ..utils.job_store import JobStore
from ..utils.logger import LoggerContext, get_logger
from ..utils.storage import LocalArtifactStorage, StoredArtifact
from ..utils.tabular_codec import encode_bytes
from .module_registry import ModuleAdapter, ModuleRegistry


def translate_filters(adapter: ModuleAdapter, filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Exact-match filters with empty values dropped, then rewritten by the adapter."""
    cleaned = {
        key: value for key, value in (filters or {}).items()
        if value is not None and not (isinstance(value, str) and value.strip() == "")
    }
    return adapter.coerce_filters(cleaned)


def project_rows(adapter: ModuleAdapter, records: Sequence[Any], columns: Sequence[str]) -> List[Dict[str, Any]]:
    """Keep only the requested columns, in order; unknown columns stay empty."""
    return [{column: adapter.project(record, column) for column in columns} for record in records]


class ExportProcessor:
    """Turns export jobs into stored CSV artifacts."""

    def __init__(
        self,
        store: JobStore,
        storage: LocalArtifactStorage,
        registry: ModuleRegistry,
        max_rows: int = 50000
    ):
        self.store = store
        self.storage = storage
        self.registry = registry
        self.max_rows = max_rows
        self.logger = get_logger(__name__)

    async def collect_rows(
        self,
        module: str,
        filters: Optional[Dict[str, Any]],
        columns: Sequence[str],
        context: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch and project export rows.

        Args:
            module: Module key
            filters: Raw exact-match filters
            columns: Requested output columns
            context: Module parameters
            limit: Maximum rows, defaulting to the export cap

        Returns:
            Projected rows keyed by column
        """
        adapter = self.registry.get(module)
        cap = self.max_rows if limit is None else min(limit, self.max_rows)
        records = await adapter.fetch(translate_filters(adapter, filters), dict(context or {}), cap + 1)

        if len(records) > cap:
            if limit is None:
                self.logger.warning("Export truncated to row cap", extra={"module_key": module, "max_rows": cap})
            records = records[:cap]
        return project_rows(adapter, records, columns)

    async def process(self, job_id: str) -> Optional[ExportStatus]:
        """
        Process one export job to a terminal status.

        Returns:
            Final status, or None if the job was not eligible
        """
        job = await self.store.get_export_job(job_id)
        if job is None or job.status != ExportStatus.PROCESSING:
            self.logger.debug("Export job not eligible for processing", extra={"job_id": job_id})
            return None

        with LoggerContext(job_id=job.id, job_kind="export", module_key=job.module, component="export_processor"):
            artifact: Optional[StoredArtifact] = None
            try:
                rows = await self.collect_rows(job.module, job.filters, job.columns, job.context)
                artifact = await self.storage.save(encode_bytes(job.columns, rows), job.file_name, folder="csv")
                completed = await self.store.complete_export_job(
                    job.id, len(rows), artifact.key, artifact.location, utcnow()
                )
                if not completed:
                    raise RuntimeError("Export job is no longer processing")

                self.logger.info("Export completed", extra={
                    "total_rows": len(rows),
                    "artifact_key": artifact.key
                })
                status = ExportStatus.COMPLETED

            except asyncio.CancelledError:
                await self._discard(artifact)
                raise
            except Exception as e:
                self.logger.error(f"Export failed: {str(e)}", exc_info=True)
                await self._discard(artifact)
                await self.store.fail_export_job(job.id, str(e) or "Export failed", utcnow())
                status = ExportStatus.FAILED

            metrics.JOBS_FINISHED.labels(kind="export", status=status.value).inc()
            return status

    async def _discard(self, artifact: Optional[StoredArtifact]) -> None:
        if artifact is None:
            return
        try:
            await self.storage.delete(artifact.key)
        except Exception as e:
            self.logger.warning(f"Could not remove partial export artifact: {str(e)}", extra={
                "artifact_key": artifact.key
            })
