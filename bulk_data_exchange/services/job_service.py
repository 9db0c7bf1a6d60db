"""
Submission interface for imports and exports.

Validates requests synchronously, persists jobs in PENDING for the pollers,
and serves job status, errors, downloads, history, import templates and
statistics. Reads are restricted to the job creator unless the caller is
elevated; a foreign job surfaces as not found.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from ..core.exceptions import (
    ExportNotReadyError,
    InvalidInputError,
    JobNotFoundError,
    MissingRequiredMappingError,
    NotAuthorizedError,
)
from ..models.job import (
    ColumnDef,
    ColumnMapping,
    DuplicateStrategy,
    ExportJob,
    ImportJob,
    ImportTemplate,
    RowErrorEntry,
    new_id,
    utcnow,
)
from ..utils.coercion import build_default_mappings, missing_required_mappings
from ..utils.job_store import JobStore
from ..utils.logger import get_logger
from ..utils.storage import LocalArtifactStorage, safe_file_name
from ..utils.tabular_codec import decode, encode, encode_bytes
from .export_processor import ExportProcessor
from .module_registry import ModuleKey, ModuleRegistry


def _check_owner(record: Any, record_id: str, kind: str, actor_id: str, elevated: bool) -> None:
    if not elevated and record.created_by != actor_id:
        raise NotAuthorizedError(record_id, kind=kind)


class JobService:
    """Entry point used by callers to submit and inspect jobs."""

    def __init__(
        self,
        store: JobStore,
        storage: LocalArtifactStorage,
        registry: ModuleRegistry,
        export_processor: ExportProcessor,
        preview_rows: int = 20,
        history_limit: int = 50
    ):
        self.store = store
        self.storage = storage
        self.registry = registry
        self.export_processor = export_processor
        self.preview_rows = max(5, min(50, preview_rows))
        self.history_limit = history_limit
        self.logger = get_logger(__name__)

    # Uploads
    def preview_upload(self, buffer: bytes, module: Optional[str] = None) -> Dict[str, Any]:
        """
        Describe an uploaded spreadsheet without creating a job.

        Returns:
            Dictionary with headers, numbered preview rows and the total row count
        """
        if not buffer:
            raise InvalidInputError("Empty file", field="file")

        table = decode(buffer)
        preview: Dict[str, Any] = {
            "module": ModuleKey.normalize(module).value if module else None,
            "headers": table.headers,
            "preview_rows": [
                {"row_number": index, "data": row}
                for index, row in enumerate(table.rows[:self.preview_rows], start=1)
            ],
            "total_rows": table.total_rows,
        }
        if module:
            template = self.registry.template(module)
            preview["suggested_mappings"] = [
                m.to_dict() for m in build_default_mappings(table.headers, template.columns)
            ]
        return preview

    # Imports
    async def create_import_job(
        self,
        module: str,
        file_bytes: bytes,
        file_name: str,
        actor_id: str,
        mappings: Optional[Sequence[Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ImportJob:
        """
        Validate an upload and queue it for import.

        Args:
            module: Target module key
            file_bytes: Uploaded spreadsheet
            file_name: Original file name
            actor_id: Submitting user
            mappings: Optional column mapping overrides (ColumnMapping or dicts)
            context: Module parameters and ``duplicate_strategy``

        Returns:
            The created PENDING ImportJob

        Raises:
            UnsupportedModuleError: Unknown module
            InvalidInputError: Empty or unreadable file, bad duplicate strategy
            MissingRequiredMappingError: Required fields not mapped
        """
        module_key = ModuleKey.normalize(module)
        adapter = self.registry.get(module_key)

        if not file_bytes:
            raise InvalidInputError("Empty file", field="file")

        table = await asyncio.to_thread(decode, file_bytes)
        columns = adapter.template.columns

        if mappings is None:
            used_mappings = build_default_mappings(table.headers, columns)
        else:
            used_mappings = self._merge_mappings(columns, mappings)

        missing = missing_required_mappings(columns, used_mappings, table.headers)
        if missing:
            raise MissingRequiredMappingError(missing)

        job_context = dict(context or {})
        strategy = str(job_context.get("duplicate_strategy") or DuplicateStrategy.ERROR.value).strip().lower()
        try:
            job_context["duplicate_strategy"] = DuplicateStrategy(strategy).value
        except ValueError:
            raise InvalidInputError(f"Invalid duplicate strategy: {strategy}", field="duplicate_strategy")

        adapter.validate_submission(used_mappings, job_context)

        artifact = await self.storage.save(file_bytes, file_name or "import.csv", folder="imports")
        job = ImportJob(
            id=new_id(),
            module=module_key.value,
            created_by=actor_id,
            file_key=artifact.key,
            file_location=artifact.location,
            original_name=file_name or artifact.file_name,
            total_rows=table.total_rows,
            mappings=used_mappings,
            context=job_context,
        )
        await self.store.create_import_job(job)

        self.logger.info("Import job created", extra={
            "job_id": job.id,
            "module_key": job.module,
            "total_rows": job.total_rows,
            "duplicate_strategy": job_context["duplicate_strategy"]
        })
        return job

    async def get_import_job(self, job_id: str, actor_id: str, elevated: bool = False) -> ImportJob:
        job = await self.store.get_import_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id, kind="import_job")
        _check_owner(job, job_id, "import_job", actor_id, elevated)
        return job

    async def get_import_errors(self, job_id: str, actor_id: str, elevated: bool = False) -> List[RowErrorEntry]:
        job = await self.get_import_job(job_id, actor_id, elevated)
        return job.errors

    async def cancel_import_job(self, job_id: str, actor_id: str, elevated: bool = False) -> ImportJob:
        """
        Cancel a pending or processing import.

        Terminal jobs are returned unchanged. A running processor notices the
        cancellation at its next row boundary.
        """
        job = await self.get_import_job(job_id, actor_id, elevated)
        if job.is_terminal():
            return job

        if await self.store.cancel_import_job(job.id, utcnow()):
            self.logger.info("Import job cancelled", extra={"job_id": job.id})
        return await self.get_import_job(job_id, actor_id, elevated)

    async def list_import_history(self, actor_id: str, elevated: bool = False) -> List[ImportJob]:
        return await self.store.list_import_jobs(None if elevated else actor_id, self.history_limit)

    # Exports
    async def create_export_job(
        self,
        module: str,
        filters: Optional[Dict[str, Any]],
        columns: Sequence[str],
        actor_id: str,
        file_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ExportJob:
        """
        Queue an export.

        Raises:
            UnsupportedModuleError: Unknown module
            InvalidInputError: No columns requested
        """
        module_key = ModuleKey.normalize(module)
        self.registry.get(module_key)
        if not columns:
            raise InvalidInputError("Columns are required", field="columns")

        default_name = f"{module_key.value}-export-{int(utcnow().timestamp() * 1000)}.csv"
        job = ExportJob(
            id=new_id(),
            module=module_key.value,
            created_by=actor_id,
            file_name=safe_file_name(file_name or default_name, default_name),
            columns=list(columns),
            filters=dict(filters or {}),
            context=dict(context or {}),
        )
        await self.store.create_export_job(job)

        self.logger.info("Export job created", extra={
            "job_id": job.id,
            "module_key": job.module,
            "columns": len(job.columns)
        })
        return job

    async def get_export_job(self, job_id: str, actor_id: str, elevated: bool = False) -> ExportJob:
        job = await self.store.get_export_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id, kind="export_job")
        _check_owner(job, job_id, "export_job", actor_id, elevated)
        return job

    async def get_export_download(self, job_id: str, actor_id: str, elevated: bool = False) -> str:
        """
        Location of a completed export's artifact.

        Raises:
            ExportNotReadyError: Unless the job is COMPLETED with an artifact
        """
        job = await self.get_export_job(job_id, actor_id, elevated)
        if not job.is_ready():
            raise ExportNotReadyError(job.id, job.status.value)
        return job.artifact_location

    async def read_export_artifact(self, job_id: str, actor_id: str, elevated: bool = False) -> bytes:
        job = await self.get_export_job(job_id, actor_id, elevated)
        if not job.is_ready():
            raise ExportNotReadyError(job.id, job.status.value)
        return await self.storage.read(job.artifact_key)

    async def list_export_history(self, actor_id: str, elevated: bool = False) -> List[ExportJob]:
        return await self.store.list_export_jobs(None if elevated else actor_id, self.history_limit)

    async def preview_export(
        self,
        module: str,
        filters: Optional[Dict[str, Any]],
        columns: Sequence[str],
        limit: int = 20,
        context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Row count, first rows and approximate file size of a prospective export."""
        module_key = ModuleKey.normalize(module)
        if not columns:
            raise InvalidInputError("Columns are required", field="columns")

        rows = await self.export_processor.collect_rows(module_key.value, filters, columns, context)
        return {
            "module": module_key.value,
            "columns": list(columns),
            "total_rows": len(rows),
            "preview_rows": rows[:max(0, limit)],
            "estimated_size_bytes": len(encode_bytes(columns, rows)),
        }

    # Import templates
    async def list_templates(self, module: str) -> List[ImportTemplate]:
        return await self.store.list_templates(ModuleKey.normalize(module).value)

    async def create_template(
        self,
        name: str,
        module: str,
        columns: List[Dict[str, Any]],
        actor_id: str,
        description: Optional[str] = None,
        is_default: bool = False
    ) -> ImportTemplate:
        module_key = ModuleKey.normalize(module)
        if not str(name or "").strip():
            raise InvalidInputError("Name is required", field="name")

        now = utcnow()
        template = ImportTemplate(
            id=new_id(),
            name=name.strip(),
            module=module_key.value,
            created_by=actor_id,
            columns=self._template_columns(columns),
            description=description,
            is_default=bool(is_default),
            created_at=now,
            updated_at=now,
        )
        await self.store.create_template(template)
        self.logger.info("Import template created", extra={"template_id": template.id, "module_key": template.module})
        return template

    async def update_template(
        self,
        template_id: str,
        actor_id: str,
        elevated: bool = False,
        name: Optional[str] = None,
        description: Optional[str] = None,
        columns: Optional[List[Dict[str, Any]]] = None,
        is_default: Optional[bool] = None
    ) -> ImportTemplate:
        """Update the given fields of a template; None leaves a field unchanged."""
        template = await self._owned_template(template_id, actor_id, elevated)
        if name is not None:
            if not name.strip():
                raise InvalidInputError("Name is required", field="name")
            template.name = name.strip()
        if description is not None:
            template.description = description
        if columns is not None:
            template.columns = self._template_columns(columns)
        if is_default is not None:
            template.is_default = bool(is_default)
        template.updated_at = utcnow()
        return await self.store.update_template(template)

    async def delete_template(self, template_id: str, actor_id: str, elevated: bool = False) -> bool:
        template = await self._owned_template(template_id, actor_id, elevated)
        return await self.store.delete_template(template.id)

    def sample_template(self, module: str) -> str:
        """CSV with the module's template headers and the adapter's sample rows."""
        adapter = self.registry.get(module)
        columns = adapter.template.columns
        headers = [c.header for c in columns]
        rows = [
            {c.header: sample.get(c.key, sample.get(c.header)) for c in columns}
            for sample in adapter.sample_rows
        ]
        return encode(headers, rows)

    async def get_statistics(self, actor_id: str, elevated: bool = False) -> Dict[str, Any]:
        stats = await self.store.job_statistics(None if elevated else actor_id)
        stats["generated_at"] = utcnow().isoformat()
        return stats

    async def _owned_template(self, template_id: str, actor_id: str, elevated: bool) -> ImportTemplate:
        template = await self.store.get_template(template_id)
        if template is None:
            raise JobNotFoundError(template_id, kind="template")
        _check_owner(template, template_id, "template", actor_id, elevated)
        return template

    @staticmethod
    def _template_columns(columns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not columns:
            raise InvalidInputError("Columns are required", field="columns")
        try:
            return [ColumnDef.from_dict(c).to_dict() for c in columns]
        except (KeyError, ValueError, TypeError) as e:
            raise InvalidInputError(f"Invalid template column: {str(e)}", field="columns")

    @staticmethod
    def _merge_mappings(columns: Sequence[ColumnDef], overrides: Sequence[Any]) -> List[ColumnMapping]:
        """Fill caller mappings with the template's header, type and required flag."""
        by_key = {}
        for item in overrides:
            mapping = item if isinstance(item, ColumnMapping) else ColumnMapping.from_dict(dict(item))
            by_key[mapping.key] = mapping

        merged = []
        for column in columns:
            override = by_key.get(column.key)
            merged.append(ColumnMapping(
                key=column.key,
                header=column.header,
                source_column=override.source_column if override else None,
                required=column.required,
                type=column.type,
                enum_values=list(column.enum_values),
            ))
        return merged
