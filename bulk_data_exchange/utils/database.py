"""
Database utilities for the Bulk Data Exchange Pipeline

Provides the PostgreSQL job store: connection pool management, schema creation
and the conditional updates that implement claiming, progress, cancellation and
stuck-job recovery.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from ..core.exceptions import DatabaseError
from ..models.job import (
    ExportJob,
    ExportStatus,
    ImportJob,
    ImportProgress,
    ImportStatus,
    ImportTemplate,
    RowErrorEntry,
)
from ..models.schedule import RunStatus, ScheduledExport, ScheduledExportRun
from .job_store import JobStore
from .logger import get_logger


class DatabaseManager(JobStore):
    """
    Manages database connections and operations for the pipeline.

    Every state transition is a single UPDATE guarded by a WHERE clause on the
    current status; the affected row count tells the caller whether it won.
    """

    SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS import_jobs (
        id TEXT PRIMARY KEY,
        module TEXT NOT NULL,
        created_by TEXT NOT NULL,
        file_key TEXT NOT NULL,
        file_location TEXT NOT NULL,
        original_name TEXT NOT NULL,
        total_rows INTEGER NOT NULL DEFAULT 0,
        mappings JSONB NOT NULL DEFAULT '[]'::jsonb,
        context JSONB NOT NULL DEFAULT '{}'::jsonb,
        status TEXT NOT NULL DEFAULT 'pending',
        processed_rows INTEGER NOT NULL DEFAULT 0,
        success_rows INTEGER NOT NULL DEFAULT 0,
        error_rows INTEGER NOT NULL DEFAULT 0,
        skipped_rows INTEGER NOT NULL DEFAULT 0,
        errors JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    );
    CREATE INDEX IF NOT EXISTS idx_import_jobs_status ON import_jobs(status, created_at);
    CREATE INDEX IF NOT EXISTS idx_import_jobs_owner ON import_jobs(created_by, created_at DESC);

    CREATE TABLE IF NOT EXISTS export_jobs (
        id TEXT PRIMARY KEY,
        module TEXT NOT NULL,
        created_by TEXT NOT NULL,
        file_name TEXT NOT NULL,
        columns JSONB NOT NULL DEFAULT '[]'::jsonb,
        filters JSONB NOT NULL DEFAULT '{}'::jsonb,
        context JSONB NOT NULL DEFAULT '{}'::jsonb,
        status TEXT NOT NULL DEFAULT 'pending',
        total_rows INTEGER NOT NULL DEFAULT 0,
        artifact_key TEXT,
        artifact_location TEXT,
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    );
    CREATE INDEX IF NOT EXISTS idx_export_jobs_status ON export_jobs(status, created_at);
    CREATE INDEX IF NOT EXISTS idx_export_jobs_owner ON export_jobs(created_by, created_at DESC);

    CREATE TABLE IF NOT EXISTS import_templates (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        module TEXT NOT NULL,
        created_by TEXT NOT NULL,
        columns JSONB NOT NULL DEFAULT '[]'::jsonb,
        description TEXT,
        is_default BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    CREATE INDEX IF NOT EXISTS idx_import_templates_module ON import_templates(module);

    CREATE TABLE IF NOT EXISTS scheduled_exports (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        module TEXT NOT NULL,
        created_by TEXT NOT NULL,
        schedule TEXT NOT NULL,
        columns JSONB NOT NULL DEFAULT '[]'::jsonb,
        recipients JSONB NOT NULL DEFAULT '[]'::jsonb,
        filters JSONB NOT NULL DEFAULT '{}'::jsonb,
        context JSONB NOT NULL DEFAULT '{}'::jsonb,
        format TEXT NOT NULL DEFAULT 'csv',
        is_active BOOLEAN NOT NULL DEFAULT true,
        last_run_at TIMESTAMPTZ,
        next_run_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    CREATE INDEX IF NOT EXISTS idx_scheduled_exports_due ON scheduled_exports(is_active, next_run_at);
    CREATE INDEX IF NOT EXISTS idx_scheduled_exports_owner ON scheduled_exports(created_by, created_at DESC);

    CREATE TABLE IF NOT EXISTS scheduled_export_runs (
        id TEXT PRIMARY KEY,
        scheduled_export_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'processing',
        export_job_id TEXT,
        error_message TEXT,
        sent_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    CREATE INDEX IF NOT EXISTS idx_scheduled_export_runs_parent
        ON scheduled_export_runs(scheduled_export_id, created_at DESC);
    """

    RUN_COLUMNS = ("status", "export_job_id", "error_message", "sent_at")

    def __init__(self, connection_string: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 60):
        """
        Initialize database manager.

        Args:
            connection_string: PostgreSQL connection string
            min_size: Minimum pool size
            max_size: Maximum pool size
            command_timeout: Per-statement timeout in seconds
        """
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None
        self.logger = get_logger(__name__)

    @staticmethod
    async def _init_connection(connection: asyncpg.Connection) -> None:
        await connection.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")

    async def initialize(self) -> None:
        """Initialize database connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                init=self._init_connection
            )
        except Exception as e:
            raise DatabaseError("initialization", f"Failed to create connection pool: {str(e)}")

    async def close(self) -> None:
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None

    async def is_healthy(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.get_connection() as connection:
                await connection.execute("SELECT 1")
                return True
        except Exception:
            return False

    async def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        try:
            async with self.get_connection() as conn:
                await conn.execute(self.SCHEMA_SQL)
            self.logger.info("Database schema ready")
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError("create_schema", str(e))

    @asynccontextmanager
    async def get_connection(self):
        """Get a database connection from the pool."""
        if not self.pool:
            raise DatabaseError("connection", "Database pool not initialized")

        async with self.pool.acquire() as connection:
            yield connection

    async def _execute(self, operation: str, table: str, query: str, *args) -> int:
        """Run a write and return the number of affected rows."""
        try:
            async with self.get_connection() as conn:
                result = await conn.execute(query, *args)
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(operation, str(e), table=table)
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return int(result.split()[-1]) if result and result.split()[-1].isdigit() else 0

    async def _fetch(self, operation: str, table: str, query: str, *args) -> List[Dict[str, Any]]:
        try:
            async with self.get_connection() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(operation, str(e), table=table)

    async def _fetchrow(self, operation: str, table: str, query: str, *args) -> Optional[Dict[str, Any]]:
        rows = await self._fetch(operation, table, query, *args)
        return rows[0] if rows else None

    # Import jobs
    async def create_import_job(self, job: ImportJob) -> ImportJob:
        await self._execute("create_import_job", "import_jobs", """
            INSERT INTO import_jobs (
                id, module, created_by, file_key, file_location, original_name,
                total_rows, mappings, context, status, processed_rows, success_rows,
                error_rows, skipped_rows, errors, created_at, started_at, completed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18)
        """,
            job.id, job.module, job.created_by, job.file_key, job.file_location,
            job.original_name, job.total_rows, [m.to_dict() for m in job.mappings],
            job.context, job.status.value, job.processed_rows, job.success_rows,
            job.error_rows, job.skipped_rows, [e.to_dict() for e in job.errors],
            job.created_at, job.started_at, job.completed_at)
        return job

    async def get_import_job(self, job_id: str) -> Optional[ImportJob]:
        row = await self._fetchrow("get_import_job", "import_jobs", "SELECT * FROM import_jobs WHERE id = $1", job_id)
        return ImportJob.from_dict(row) if row else None

    async def list_import_jobs(self, created_by: Optional[str] = None, limit: int = 50) -> List[ImportJob]:
        rows = await self._fetch("list_import_jobs", "import_jobs", """
            SELECT * FROM import_jobs
            WHERE ($1::text IS NULL OR created_by = $1)
            ORDER BY created_at DESC
            LIMIT $2
        """, created_by, limit)
        return [ImportJob.from_dict(row) for row in rows]

    async def claim_next_import_job(self, now: datetime) -> Optional[str]:
        row = await self._fetchrow("claim_next_import_job", "import_jobs", """
            UPDATE import_jobs SET status = 'processing', started_at = $1
            WHERE id = (
                SELECT id FROM import_jobs
                WHERE status = 'pending'
                ORDER BY created_at
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            ) AND status = 'pending'
            RETURNING id
        """, now)
        return row["id"] if row else None

    async def get_import_status(self, job_id: str) -> Optional[ImportStatus]:
        row = await self._fetchrow("get_import_status", "import_jobs",
                                   "SELECT status FROM import_jobs WHERE id = $1", job_id)
        return ImportStatus(row["status"]) if row else None

    async def update_import_progress(self, job_id: str, progress: ImportProgress) -> bool:
        updated = await self._execute("update_import_progress", "import_jobs", """
            UPDATE import_jobs
            SET processed_rows = $2, success_rows = $3, error_rows = $4, skipped_rows = $5
            WHERE id = $1 AND status = 'processing'
        """, job_id, progress.processed, progress.success, progress.error, progress.skipped)
        return updated == 1

    async def finish_import_job(
        self,
        job_id: str,
        status: ImportStatus,
        progress: ImportProgress,
        errors: List[RowErrorEntry],
        completed_at: datetime,
        expected_status: ImportStatus = ImportStatus.PROCESSING
    ) -> bool:
        updated = await self._execute("finish_import_job", "import_jobs", """
            UPDATE import_jobs
            SET status = $2, processed_rows = $3, success_rows = $4, error_rows = $5,
                skipped_rows = $6, errors = $7, completed_at = $8
            WHERE id = $1 AND status = $9
        """, job_id, status.value, progress.processed, progress.success, progress.error,
            progress.skipped, [e.to_dict() for e in errors], completed_at, expected_status.value)
        return updated == 1

    async def cancel_import_job(self, job_id: str, now: datetime) -> bool:
        updated = await self._execute("cancel_import_job", "import_jobs", """
            UPDATE import_jobs SET status = 'cancelled', completed_at = $2
            WHERE id = $1 AND status IN ('pending', 'processing')
        """, job_id, now)
        return updated == 1

    async def recover_stuck_import_jobs(self, started_before: datetime) -> int:
        return await self._execute("recover_stuck_import_jobs", "import_jobs", """
            UPDATE import_jobs SET status = 'pending', started_at = NULL
            WHERE status = 'processing' AND started_at < $1
        """, started_before)

    # Export jobs
    async def create_export_job(self, job: ExportJob) -> ExportJob:
        await self._execute("create_export_job", "export_jobs", """
            INSERT INTO export_jobs (
                id, module, created_by, file_name, columns, filters, context, status,
                total_rows, artifact_key, artifact_location, error_message,
                created_at, started_at, completed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
        """,
            job.id, job.module, job.created_by, job.file_name, list(job.columns),
            job.filters, job.context, job.status.value, job.total_rows, job.artifact_key,
            job.artifact_location, job.error_message, job.created_at, job.started_at,
            job.completed_at)
        return job

    async def get_export_job(self, job_id: str) -> Optional[ExportJob]:
        row = await self._fetchrow("get_export_job", "export_jobs", "SELECT * FROM export_jobs WHERE id = $1", job_id)
        return ExportJob.from_dict(row) if row else None

    async def list_export_jobs(self, created_by: Optional[str] = None, limit: int = 50) -> List[ExportJob]:
        rows = await self._fetch("list_export_jobs", "export_jobs", """
            SELECT * FROM export_jobs
            WHERE ($1::text IS NULL OR created_by = $1)
            ORDER BY created_at DESC
            LIMIT $2
        """, created_by, limit)
        return [ExportJob.from_dict(row) for row in rows]

    async def claim_next_export_job(self, now: datetime) -> Optional[str]:
        row = await self._fetchrow("claim_next_export_job", "export_jobs", """
            UPDATE export_jobs SET status = 'processing', started_at = $1
            WHERE id = (
                SELECT id FROM export_jobs
                WHERE status = 'pending'
                ORDER BY created_at
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            ) AND status = 'pending'
            RETURNING id
        """, now)
        return row["id"] if row else None

    async def complete_export_job(
        self,
        job_id: str,
        total_rows: int,
        artifact_key: str,
        artifact_location: str,
        completed_at: datetime
    ) -> bool:
        updated = await self._execute("complete_export_job", "export_jobs", """
            UPDATE export_jobs
            SET status = 'completed', total_rows = $2, artifact_key = $3,
                artifact_location = $4, completed_at = $5
            WHERE id = $1 AND status = 'processing'
        """, job_id, total_rows, artifact_key, artifact_location, completed_at)
        return updated == 1

    async def fail_export_job(self, job_id: str, message: str, completed_at: datetime) -> bool:
        updated = await self._execute("fail_export_job", "export_jobs", """
            UPDATE export_jobs SET status = 'failed', error_message = $2, completed_at = $3
            WHERE id = $1 AND status = 'processing'
        """, job_id, message, completed_at)
        return updated == 1

    async def recover_stuck_export_jobs(self, started_before: datetime) -> int:
        return await self._execute("recover_stuck_export_jobs", "export_jobs", """
            UPDATE export_jobs SET status = 'pending', started_at = NULL
            WHERE status = 'processing' AND started_at < $1
        """, started_before)

    # Import templates
    async def create_template(self, template: ImportTemplate) -> ImportTemplate:
        await self._execute("create_template", "import_templates", """
            INSERT INTO import_templates (
                id, name, module, created_by, columns, description, is_default, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
        """,
            template.id, template.name, template.module, template.created_by, template.columns,
            template.description, template.is_default, template.created_at, template.updated_at)
        return template

    async def get_template(self, template_id: str) -> Optional[ImportTemplate]:
        row = await self._fetchrow("get_template", "import_templates",
                                   "SELECT * FROM import_templates WHERE id = $1", template_id)
        return ImportTemplate.from_dict(row) if row else None

    async def list_templates(self, module: str) -> List[ImportTemplate]:
        rows = await self._fetch("list_templates", "import_templates", """
            SELECT * FROM import_templates WHERE module = $1
            ORDER BY is_default DESC, lower(name)
        """, module)
        return [ImportTemplate.from_dict(row) for row in rows]

    async def update_template(self, template: ImportTemplate) -> ImportTemplate:
        await self._execute("update_template", "import_templates", """
            UPDATE import_templates
            SET name = $2, columns = $3, description = $4, is_default = $5, updated_at = $6
            WHERE id = $1
        """, template.id, template.name, template.columns, template.description,
            template.is_default, template.updated_at)
        return template

    async def delete_template(self, template_id: str) -> bool:
        deleted = await self._execute("delete_template", "import_templates",
                                      "DELETE FROM import_templates WHERE id = $1", template_id)
        return deleted == 1

    # Scheduled exports
    async def create_scheduled_export(self, scheduled: ScheduledExport) -> ScheduledExport:
        await self._execute("create_scheduled_export", "scheduled_exports", """
            INSERT INTO scheduled_exports (
                id, name, module, created_by, schedule, columns, recipients, filters,
                context, format, is_active, last_run_at, next_run_at, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
        """,
            scheduled.id, scheduled.name, scheduled.module, scheduled.created_by,
            scheduled.schedule, list(scheduled.columns), list(scheduled.recipients),
            scheduled.filters, scheduled.context, scheduled.format, scheduled.is_active,
            scheduled.last_run_at, scheduled.next_run_at, scheduled.created_at)
        return scheduled

    async def get_scheduled_export(self, scheduled_id: str) -> Optional[ScheduledExport]:
        row = await self._fetchrow("get_scheduled_export", "scheduled_exports",
                                   "SELECT * FROM scheduled_exports WHERE id = $1", scheduled_id)
        return ScheduledExport.from_dict(row) if row else None

    async def list_scheduled_exports(self, created_by: Optional[str] = None) -> List[ScheduledExport]:
        rows = await self._fetch("list_scheduled_exports", "scheduled_exports", """
            SELECT * FROM scheduled_exports
            WHERE ($1::text IS NULL OR created_by = $1)
            ORDER BY created_at DESC
        """, created_by)
        return [ScheduledExport.from_dict(row) for row in rows]

    async def set_scheduled_export_active(
        self,
        scheduled_id: str,
        is_active: bool,
        next_run_at: Optional[datetime]
    ) -> Optional[ScheduledExport]:
        row = await self._fetchrow("set_scheduled_export_active", "scheduled_exports", """
            UPDATE scheduled_exports SET is_active = $2, next_run_at = $3
            WHERE id = $1
            RETURNING *
        """, scheduled_id, is_active, next_run_at)
        return ScheduledExport.from_dict(row) if row else None

    async def find_due_scheduled_exports(self, now: datetime, limit: int) -> List[ScheduledExport]:
        rows = await self._fetch("find_due_scheduled_exports", "scheduled_exports", """
            SELECT * FROM scheduled_exports
            WHERE is_active AND next_run_at IS NOT NULL AND next_run_at <= $1
            ORDER BY next_run_at
            LIMIT $2
        """, now, limit)
        return [ScheduledExport.from_dict(row) for row in rows]

    async def record_scheduled_firing(self, scheduled_id: str, last_run_at: datetime, next_run_at: datetime) -> bool:
        updated = await self._execute("record_scheduled_firing", "scheduled_exports", """
            UPDATE scheduled_exports SET last_run_at = $2, next_run_at = $3 WHERE id = $1
        """, scheduled_id, last_run_at, next_run_at)
        return updated == 1

    async def delete_scheduled_export(self, scheduled_id: str) -> bool:
        deleted = await self._execute("delete_scheduled_export", "scheduled_exports",
                                      "DELETE FROM scheduled_exports WHERE id = $1", scheduled_id)
        return deleted == 1

    async def create_run(self, run: ScheduledExportRun) -> ScheduledExportRun:
        await self._execute("create_run", "scheduled_export_runs", """
            INSERT INTO scheduled_export_runs (
                id, scheduled_export_id, status, export_job_id, error_message, sent_at, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
        """, run.id, run.scheduled_export_id, run.status.value, run.export_job_id,
            run.error_message, run.sent_at, run.created_at)
        return run

    async def update_run(self, run_id: str, **changes: Any) -> bool:
        unknown = set(changes) - set(self.RUN_COLUMNS)
        if unknown:
            raise DatabaseError("update_run", f"Unknown columns: {', '.join(sorted(unknown))}",
                                table="scheduled_export_runs")
        if not changes:
            return False

        names = list(changes)
        values = [changes[n].value if isinstance(changes[n], RunStatus) else changes[n] for n in names]
        assignments = ", ".join(f"{name} = ${i + 2}" for i, name in enumerate(names))
        updated = await self._execute(
            "update_run", "scheduled_export_runs",
            f"UPDATE scheduled_export_runs SET {assignments} WHERE id = $1",
            run_id, *values
        )
        return updated == 1

    async def list_runs(self, scheduled_id: str, limit: int = 50) -> List[ScheduledExportRun]:
        rows = await self._fetch("list_runs", "scheduled_export_runs", """
            SELECT * FROM scheduled_export_runs
            WHERE scheduled_export_id = $1
            ORDER BY created_at DESC
            LIMIT $2
        """, scheduled_id, limit)
        return [ScheduledExportRun.from_dict(row) for row in rows]

    # Statistics
    async def job_statistics(self, created_by: Optional[str] = None) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Dict[str, int]] = {}
        for kind, table in (("imports", "import_jobs"), ("exports", "export_jobs")):
            rows = await self._fetch("job_statistics", table, f"""
                SELECT status, COUNT(*) AS count FROM {table}
                WHERE ($1::text IS NULL OR created_by = $1)
                GROUP BY status
            """, created_by)
            counts = {"total": 0}
            for row in rows:
                counts[row["status"]] = row["count"]
                counts["total"] += row["count"]
            stats[kind] = counts
        return stats
