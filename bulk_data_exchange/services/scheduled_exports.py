"""
Scheduled export engine.

Administers recurring export definitions and, on a fixed tick, fires the due
ones: each firing creates an export job, runs it immediately, and emails the
resulting CSV to the definition's recipients. Every firing is recorded as a
ScheduledExportRun.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.exceptions import InvalidInputError, JobNotFoundError, NotAuthorizedError
from ..models.job import ExportJob, ExportStatus, new_id, utcnow
from ..models.schedule import RunStatus, ScheduledExport, ScheduledExportRun
from ..utils import metrics
from ..utils.job_store import JobStore
from ..utils.logger import LoggerContext, get_logger
from ..utils.mailer import EmailAttachment, OutgoingEmail
from ..utils.schedule import next_run_from_schedule, require_recipients, validate_schedule
from ..utils.storage import LocalArtifactStorage, safe_file_name
from .export_processor import ExportProcessor
from .module_registry import ModuleKey, ModuleRegistry


class ScheduledExportService:
    """
    Administration and execution of scheduled exports.

    Firings run one after another inside a tick; a tick never overlaps the
    previous one.
    """

    def __init__(
        self,
        store: JobStore,
        storage: LocalArtifactStorage,
        registry: ModuleRegistry,
        export_processor: ExportProcessor,
        mailer: Optional[Any] = None,
        interval_seconds: float = 30.0,
        batch_size: int = 5,
        run_history_limit: int = 50
    ):
        """
        Initialize the scheduled export service.

        Args:
            store: Job store
            storage: Artifact storage holding export files
            registry: Module registry for validating definitions
            export_processor: Processor used to produce each firing's file
            mailer: Object with an async ``send(OutgoingEmail)``; None disables delivery
            interval_seconds: Delay between ticks
            batch_size: Maximum firings per tick
            run_history_limit: Maximum runs returned by list_runs
        """
        self.store = store
        self.storage = storage
        self.registry = registry
        self.export_processor = export_processor
        self.mailer = mailer
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.run_history_limit = run_history_limit

        self._processing = False
        self._shutdown_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self.logger = get_logger(__name__)

    # Administration
    async def create(
        self,
        name: str,
        module: str,
        columns: List[str],
        schedule: str,
        recipients: List[str],
        actor_id: str,
        filters: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        file_format: str = "csv",
        is_active: bool = True
    ) -> ScheduledExport:
        """
        Create a scheduled export definition.

        Raises:
            InvalidInputError: If name, columns or recipients are missing or invalid
            InvalidScheduleError: If the schedule expression is invalid
            UnsupportedModuleError: If the module has no adapter
        """
        if not str(name or "").strip():
            raise InvalidInputError("Name is required", field="name")
        valid_recipients = require_recipients(recipients)
        expression = validate_schedule(schedule)
        module_key = ModuleKey.normalize(module)
        self.registry.get(module_key)
        if not columns:
            raise InvalidInputError("Columns are required", field="columns")
        if file_format != "csv":
            raise InvalidInputError(f"Unsupported format: {file_format}", field="format")

        now = utcnow()
        scheduled = ScheduledExport(
            id=new_id(),
            name=name.strip(),
            module=module_key.value,
            created_by=actor_id,
            schedule=expression,
            columns=list(columns),
            recipients=valid_recipients,
            filters=dict(filters or {}),
            context=dict(context or {}),
            format=file_format,
            is_active=is_active,
            next_run_at=next_run_from_schedule(now, expression),
            created_at=now,
        )
        await self.store.create_scheduled_export(scheduled)

        self.logger.info("Scheduled export created", extra={
            "scheduled_export_id": scheduled.id,
            "module_key": scheduled.module,
            "schedule": scheduled.schedule,
            "next_run_at": scheduled.next_run_at.isoformat()
        })
        return scheduled

    async def get(self, scheduled_id: str, actor_id: str, elevated: bool = False) -> ScheduledExport:
        scheduled = await self.store.get_scheduled_export(scheduled_id)
        if scheduled is None:
            raise JobNotFoundError(scheduled_id, kind="scheduled_export")
        if not elevated and scheduled.created_by != actor_id:
            raise NotAuthorizedError(scheduled_id, kind="scheduled_export")
        return scheduled

    async def list_scheduled(self, actor_id: str, elevated: bool = False) -> List[ScheduledExport]:
        return await self.store.list_scheduled_exports(None if elevated else actor_id)

    async def set_active(self, scheduled_id: str, is_active: bool, actor_id: str, elevated: bool = False) -> ScheduledExport:
        """
        Activate or deactivate a definition.

        Activation re-validates the schedule and recomputes next_run_at from now;
        deactivation leaves next_run_at as it was.
        """
        scheduled = await self.get(scheduled_id, actor_id, elevated)
        next_run_at = scheduled.next_run_at
        if is_active:
            next_run_at = next_run_from_schedule(utcnow(), validate_schedule(scheduled.schedule))

        updated = await self.store.set_scheduled_export_active(scheduled.id, is_active, next_run_at)
        if updated is None:
            raise JobNotFoundError(scheduled_id, kind="scheduled_export")

        self.logger.info("Scheduled export activation changed", extra={
            "scheduled_export_id": scheduled.id,
            "is_active": is_active
        })
        return updated

    async def delete(self, scheduled_id: str, actor_id: str, elevated: bool = False) -> bool:
        scheduled = await self.get(scheduled_id, actor_id, elevated)
        deleted = await self.store.delete_scheduled_export(scheduled.id)
        self.logger.info("Scheduled export deleted", extra={"scheduled_export_id": scheduled.id})
        return deleted

    async def list_runs(self, scheduled_id: str, actor_id: str, elevated: bool = False) -> List[ScheduledExportRun]:
        scheduled = await self.get(scheduled_id, actor_id, elevated)
        return await self.store.list_runs(scheduled.id, limit=self.run_history_limit)

    # Execution
    async def start(self) -> None:
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._shutdown_event.clear()
        self._loop_task = asyncio.create_task(self._scheduler_loop(), name="bdx-scheduler")
        self.logger.info("Scheduler started", extra={
            "interval_seconds": self.interval_seconds,
            "batch_size": self.batch_size
        })

    async def stop(self) -> None:
        self._shutdown_event.set()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        self.logger.info("Scheduler stopped")

    async def tick(self, now: Optional[datetime] = None) -> int:
        """
        Fire every due definition, oldest next_run_at first, up to the batch size.

        Returns:
            Number of firings attempted
        """
        if self._processing:
            return 0
        self._processing = True
        try:
            due = await self.store.find_due_scheduled_exports(now or utcnow(), self.batch_size)
            for scheduled in due:
                await self.run_scheduled_export(scheduled)
            return len(due)
        finally:
            self._processing = False

    async def run_scheduled_export(self, scheduled: ScheduledExport) -> ScheduledExportRun:
        """
        Execute one firing and record its run.

        The definition's last_run_at and next_run_at advance after the run ends,
        whether it was sent or failed.
        """
        fired_at = utcnow()
        run = await self.store.create_run(ScheduledExportRun(
            id=new_id(),
            scheduled_export_id=scheduled.id,
            status=RunStatus.PROCESSING,
            created_at=fired_at,
        ))

        with LoggerContext(scheduled_export_id=scheduled.id, run_id=run.id, component="scheduler"):
            try:
                await self._deliver(scheduled, run, fired_at)
                run.status = RunStatus.SENT
                run.sent_at = utcnow()
                await self.store.update_run(run.id, status=RunStatus.SENT, sent_at=run.sent_at)
                self.logger.info("Scheduled export sent", extra={
                    "export_job_id": run.export_job_id,
                    "recipients": len(scheduled.recipients)
                })
            except asyncio.CancelledError:
                raise
            except Exception as e:
                run.status = RunStatus.FAILED
                run.error_message = str(e) or "Failed"
                await self.store.update_run(run.id, status=RunStatus.FAILED, error_message=run.error_message)
                self.logger.error(f"Scheduled export run failed: {run.error_message}", exc_info=True)

            await self._advance(scheduled, fired_at)
            metrics.SCHEDULED_RUNS.labels(status=run.status.value).inc()
            return run

    async def _deliver(self, scheduled: ScheduledExport, run: ScheduledExportRun, fired_at: datetime) -> None:
        file_name = safe_file_name(f"{scheduled.module}-scheduled-{int(fired_at.timestamp() * 1000)}.csv")
        job = await self.store.create_export_job(ExportJob(
            id=new_id(),
            module=scheduled.module,
            created_by=scheduled.created_by,
            file_name=file_name,
            columns=list(scheduled.columns),
            filters=dict(scheduled.filters),
            context=dict(scheduled.context),
            status=ExportStatus.PROCESSING,
            created_at=fired_at,
            started_at=fired_at,
        ))
        run.export_job_id = job.id
        run.status = RunStatus.EXPORTING
        await self.store.update_run(run.id, export_job_id=job.id, status=RunStatus.EXPORTING)

        await self.export_processor.process(job.id)

        finished = await self.store.get_export_job(job.id)
        if finished is None or not finished.is_ready():
            raise RuntimeError("Scheduled export failed to generate file")

        content = await self.storage.read(finished.artifact_key)

        if self.mailer is None:
            raise RuntimeError("Mail delivery is not configured")

        run.status = RunStatus.SENDING
        await self.store.update_run(run.id, status=RunStatus.SENDING)
        await self.mailer.send(OutgoingEmail(
            to=list(scheduled.recipients),
            subject=f"Scheduled Export: {scheduled.name}",
            text=f'Your scheduled export "{scheduled.name}" is attached. Generated at {fired_at.isoformat()}.',
            attachments=[EmailAttachment(filename=file_name, content=content, content_type="text/csv")],
        ))

    async def _advance(self, scheduled: ScheduledExport, fired_at: datetime) -> None:
        try:
            next_run_at = next_run_from_schedule(fired_at, scheduled.schedule)
            await self.store.record_scheduled_firing(scheduled.id, fired_at, next_run_at)
        except Exception as e:
            # An unusable schedule would refire every tick; park the definition
            self.logger.error(f"Cannot advance scheduled export: {str(e)}", exc_info=True)
            await self.store.set_scheduled_export_active(scheduled.id, False, scheduled.next_run_at)

    async def _scheduler_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                self.logger.error("Error in scheduler loop", exc_info=True)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
