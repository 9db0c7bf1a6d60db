"""
Main DataExchangePipeline class that coordinates all services

Owns the job store, artifact storage, module registry, the two queue pollers,
stuck-job recovery and the scheduled export engine. Starting the pipeline
recovers stuck jobs and then launches the background loops; stopping it drains
in-flight work and releases the store.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from ..models.job import ExportJob, ImportJob, JobKind, RowErrorEntry
from ..models.schedule import ScheduledExport, ScheduledExportRun
from ..services.export_processor import ExportProcessor
from ..services.import_processor import ImportProcessor
from ..services.job_poller import JobPoller
from ..services.job_service import JobService
from ..services.module_registry import ModuleAdapter, ModuleRegistry
from ..services.recovery import StuckJobRecovery
from ..services.scheduled_exports import ScheduledExportService
from ..utils.database import DatabaseManager
from ..utils.job_store import JobStore
from ..utils.logger import LoggerContext, get_logger
from ..utils.mailer import SmtpMailer
from ..utils.memory_store import InMemoryJobStore
from ..utils.storage import LocalArtifactStorage
from .config import PipelineSettings
from .exceptions import PipelineError


def build_store(settings: PipelineSettings) -> JobStore:
    """PostgreSQL store when a database URL is configured, otherwise in-process."""
    if settings.database_url:
        return DatabaseManager(settings.database_url)
    return InMemoryJobStore()


def build_mailer(settings: PipelineSettings) -> Optional[SmtpMailer]:
    if not settings.smtp_host:
        return None
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout,
    )


class DataExchangePipeline:
    """
    Supervisor of the bulk data exchange pipeline.

    Provides a unified interface for:
    - Import and export submission, status and history
    - Scheduled export administration
    - Lifecycle of pollers and the scheduler

    Usable as an async context manager::

        async with DataExchangePipeline(settings, adapters=[...]) as pipeline:
            job = await pipeline.submit_import("warehouses", data, "wh.csv", "user-1")
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        store: Optional[JobStore] = None,
        storage: Optional[LocalArtifactStorage] = None,
        registry: Optional[ModuleRegistry] = None,
        mailer: Optional[Any] = None,
        adapters: Optional[Sequence[ModuleAdapter]] = None,
        create_schema: bool = False
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Pipeline settings; defaults are read from the environment
            store: Job store; built from settings when omitted
            storage: Artifact storage; built from settings when omitted
            registry: Module registry; a new one when omitted
            mailer: Mail sender for scheduled exports; SMTP from settings when omitted
            adapters: Module adapters to register
            create_schema: Create database tables on start (PostgreSQL store only)
        """
        self.settings = settings or PipelineSettings()
        self.store = store or build_store(self.settings)
        self.storage = storage or LocalArtifactStorage(self.settings.storage_root)
        self.registry = registry or ModuleRegistry()
        self.mailer = mailer if mailer is not None else build_mailer(self.settings)
        self.create_schema = create_schema

        for adapter in adapters or []:
            self.registry.register(adapter)

        self.import_processor = ImportProcessor(
            self.store,
            self.storage,
            self.registry,
            progress_batch_size=self.settings.progress_batch_size,
            row_timeout_seconds=self.settings.row_timeout_seconds,
        )
        self.export_processor = ExportProcessor(
            self.store,
            self.storage,
            self.registry,
            max_rows=self.settings.export_max_rows,
        )
        self.jobs = JobService(
            self.store,
            self.storage,
            self.registry,
            self.export_processor,
            preview_rows=self.settings.preview_rows,
            history_limit=self.settings.history_limit,
        )
        self.schedules = ScheduledExportService(
            self.store,
            self.storage,
            self.registry,
            self.export_processor,
            mailer=self.mailer,
            interval_seconds=self.settings.scheduler_interval_seconds,
            batch_size=self.settings.scheduler_batch_size,
            run_history_limit=self.settings.run_history_limit,
        )
        self.recovery = StuckJobRecovery(self.store, stuck_minutes=self.settings.stuck_minutes)

        self.import_poller = JobPoller(
            JobKind.IMPORT,
            self.store.claim_next_import_job,
            self.import_processor.process,
            interval_seconds=self.settings.import_poll_interval_seconds,
            concurrency=self.settings.import_concurrency,
            shutdown_grace_seconds=self.settings.shutdown_grace_seconds,
        )
        self.export_poller = JobPoller(
            JobKind.EXPORT,
            self.store.claim_next_export_job,
            self.export_processor.process,
            interval_seconds=self.settings.export_poll_interval_seconds,
            concurrency=self.settings.export_concurrency,
            shutdown_grace_seconds=self.settings.shutdown_grace_seconds,
        )

        self._store_ready = False
        self._is_running = False
        self._shutdown_event = asyncio.Event()
        self.logger = get_logger(__name__)

    async def __aenter__(self) -> "DataExchangePipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def open(self) -> None:
        """
        Prepare the store, storage and plugins without starting background loops.

        Used by one-shot callers such as the CLI.
        """
        if self._store_ready:
            return
        await self.store.initialize()
        if self.create_schema and isinstance(self.store, DatabaseManager):
            await self.store.create_schema()
        self.storage.ensure_root()
        if self.settings.module_plugins:
            self.registry.load_plugins(self.settings.module_plugins)
        self._store_ready = True

    async def start(self) -> None:
        """Recover stuck jobs, then start pollers and the scheduler."""
        with LoggerContext(component="pipeline"):
            self.logger.info("Starting DataExchangePipeline", extra={
                "store": type(self.store).__name__,
                "modules": [m.value for m in self.registry.modules()],
                "scheduler_enabled": self.settings.scheduler_enabled
            })

            try:
                await self.open()
                await self.recovery.sweep()

                await self.import_poller.start()
                await self.export_poller.start()
                if self.settings.scheduler_enabled:
                    await self.schedules.start()

                self._is_running = True
                self._shutdown_event.clear()
                self.logger.info("DataExchangePipeline started successfully")

            except Exception as e:
                self.logger.error("Failed to start DataExchangePipeline", exc_info=True)
                await self.stop()
                raise PipelineError(f"Failed to start pipeline: {str(e)}")

    async def stop(self) -> None:
        """Stop the scheduler and pollers, then close the store."""
        with LoggerContext(component="pipeline"):
            self.logger.info("Stopping DataExchangePipeline")

            for service in (self.schedules, self.import_poller, self.export_poller):
                try:
                    await service.stop()
                except Exception:
                    self.logger.error(f"Error stopping service {service.__class__.__name__}", exc_info=True)

            if self._store_ready:
                try:
                    await self.store.close()
                except Exception:
                    self.logger.error("Error closing job store", exc_info=True)
                self._store_ready = False

            self._is_running = False
            self._shutdown_event.set()
            self.logger.info("DataExchangePipeline stopped")

    def is_running(self) -> bool:
        return self._is_running

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    async def health_check(self) -> Dict[str, Any]:
        """Store connectivity and loop state."""
        store_healthy = await self.store.is_healthy()
        return {
            "healthy": self._is_running and store_healthy,
            "running": self._is_running,
            "store_healthy": store_healthy,
            "imports_in_flight": self.import_poller.in_flight,
            "exports_in_flight": self.export_poller.in_flight,
            "modules": [m.value for m in self.registry.modules()],
        }

    async def recover_stuck_jobs(self) -> Dict[str, int]:
        return await self.recovery.sweep()

    # Submission interface
    def preview_upload(self, buffer: bytes, module: Optional[str] = None) -> Dict[str, Any]:
        return self.jobs.preview_upload(buffer, module)

    async def submit_import(
        self,
        module: str,
        file_bytes: bytes,
        file_name: str,
        actor_id: str,
        mappings: Optional[Sequence[Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ImportJob:
        return await self.jobs.create_import_job(module, file_bytes, file_name, actor_id, mappings, context)

    async def get_import_job(self, job_id: str, actor_id: str, elevated: bool = False) -> ImportJob:
        return await self.jobs.get_import_job(job_id, actor_id, elevated)

    async def get_import_errors(self, job_id: str, actor_id: str, elevated: bool = False) -> List[RowErrorEntry]:
        return await self.jobs.get_import_errors(job_id, actor_id, elevated)

    async def cancel_import(self, job_id: str, actor_id: str, elevated: bool = False) -> ImportJob:
        return await self.jobs.cancel_import_job(job_id, actor_id, elevated)

    async def submit_export(
        self,
        module: str,
        filters: Optional[Dict[str, Any]],
        columns: Sequence[str],
        actor_id: str,
        file_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ExportJob:
        return await self.jobs.create_export_job(module, filters, columns, actor_id, file_name, context)

    async def get_export_job(self, job_id: str, actor_id: str, elevated: bool = False) -> ExportJob:
        return await self.jobs.get_export_job(job_id, actor_id, elevated)

    async def get_export_download(self, job_id: str, actor_id: str, elevated: bool = False) -> str:
        return await self.jobs.get_export_download(job_id, actor_id, elevated)

    # Scheduled exports
    async def create_scheduled_export(self, actor_id: str, **definition: Any) -> ScheduledExport:
        return await self.schedules.create(actor_id=actor_id, **definition)

    async def list_scheduled_exports(self, actor_id: str, elevated: bool = False) -> List[ScheduledExport]:
        return await self.schedules.list_scheduled(actor_id, elevated)

    async def set_scheduled_export_active(
        self,
        scheduled_id: str,
        is_active: bool,
        actor_id: str,
        elevated: bool = False
    ) -> ScheduledExport:
        return await self.schedules.set_active(scheduled_id, is_active, actor_id, elevated)

    async def list_scheduled_runs(self, scheduled_id: str, actor_id: str, elevated: bool = False) -> List[ScheduledExportRun]:
        return await self.schedules.list_runs(scheduled_id, actor_id, elevated)

    async def get_statistics(self, actor_id: str, elevated: bool = False) -> Dict[str, Any]:
        return await self.jobs.get_statistics(actor_id, elevated)
