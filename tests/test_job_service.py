"""
Tests for the submission interface.
"""

import re

import pytest

from bulk_data_exchange.core.exceptions import (
    ExportNotReadyError,
    InvalidInputError,
    JobNotFoundError,
    MissingRequiredMappingError,
    UnsupportedModuleError,
)
from bulk_data_exchange.models.job import ColumnDef, ColumnMapping, ExportStatus, ImportStatus, utcnow
from bulk_data_exchange.services.module_registry import ColumnTemplate, ModuleAdapter, ModuleKey

from conftest import csv_bytes


class SupplierAdapter(ModuleAdapter):
    """Adapter that ships no sample rows."""

    template = ColumnTemplate(module=ModuleKey.SUPPLIERS, columns=[ColumnDef(key="code", header="Code")])

    async def apply_row(self, row, ctx):
        return row.to_plain_dict()

    async def fetch(self, filters, context, limit):
        return []


class TestPreviewUpload:

    def test_preview_rows_are_numbered_and_limited(self, job_service):
        data = csv_bytes("Code,Name", *[f"WH-{i},Name {i}" for i in range(1, 9)])

        preview = job_service.preview_upload(data)

        assert preview["headers"] == ["Code", "Name"]
        assert preview["total_rows"] == 8
        assert [r["row_number"] for r in preview["preview_rows"]] == [1, 2, 3, 4, 5]
        assert preview["preview_rows"][0]["data"] == {"Code": "WH-1", "Name": "Name 1"}
        assert "suggested_mappings" not in preview

    def test_suggested_mappings_for_module(self, job_service):
        preview = job_service.preview_upload(csv_bytes("code,NAME", "WH-1,A"), "Warehouses")

        assert preview["module"] == "warehouses"
        sources = {m["key"]: m["source_column"] for m in preview["suggested_mappings"]}
        assert sources == {"code": "code", "name": "NAME", "capacity": None, "is_active": None}

    def test_empty_upload(self, job_service):
        with pytest.raises(InvalidInputError):
            job_service.preview_upload(b"")


class TestImportSubmission:
    """Tests for creating import jobs."""

    @pytest.mark.asyncio
    async def test_creates_pending_job(self, job_service, storage, warehouse_csv):
        job = await job_service.create_import_job("warehouses", warehouse_csv, "warehouses.csv", "user-1")

        assert job.status == ImportStatus.PENDING
        assert job.total_rows == 3
        assert job.original_name == "warehouses.csv"
        assert job.context["duplicate_strategy"] == "error"
        assert job.file_key.startswith("imports/")
        assert await storage.read(job.file_key) == warehouse_csv

    @pytest.mark.asyncio
    async def test_unsupported_module(self, job_service, warehouse_csv):
        with pytest.raises(UnsupportedModuleError):
            await job_service.create_import_job("payroll", warehouse_csv, "w.csv", "user-1")

    @pytest.mark.asyncio
    async def test_module_without_adapter(self, job_service, warehouse_csv):
        with pytest.raises(UnsupportedModuleError):
            await job_service.create_import_job("suppliers", warehouse_csv, "w.csv", "user-1")

    @pytest.mark.asyncio
    async def test_empty_file(self, job_service):
        with pytest.raises(InvalidInputError):
            await job_service.create_import_job("warehouses", b"", "w.csv", "user-1")

    @pytest.mark.asyncio
    async def test_missing_required_mapping(self, job_service, store):
        with pytest.raises(MissingRequiredMappingError) as exc_info:
            await job_service.create_import_job("warehouses", csv_bytes("Code,Capacity", "WH-1,3"), "w.csv", "user-1")

        assert exc_info.value.details["missing"] == ["name"]
        assert await store.list_import_jobs() == []

    @pytest.mark.asyncio
    async def test_caller_mappings_are_merged_with_template(self, job_service):
        data = csv_bytes("Warehouse Code,Title", "WH-1,Central")
        mappings = [
            {"key": "code", "source_column": "Warehouse Code"},
            ColumnMapping(key="name", header="ignored", source_column="Title"),
        ]

        job = await job_service.create_import_job("warehouses", data, "w.csv", "user-1", mappings=mappings)

        by_key = {m.key: m for m in job.mappings}
        assert by_key["code"].source_column == "Warehouse Code"
        assert by_key["code"].required
        assert by_key["name"].header == "Name"
        assert by_key["capacity"].source_column is None

    @pytest.mark.asyncio
    async def test_mapping_to_absent_header(self, job_service):
        mappings = [{"key": "code", "source_column": "Code"}, {"key": "name", "source_column": "Label"}]

        with pytest.raises(MissingRequiredMappingError):
            await job_service.create_import_job("warehouses", csv_bytes("Code,Name", "WH-1,A"), "w.csv", "user-1",
                                                mappings=mappings)

    @pytest.mark.asyncio
    async def test_invalid_duplicate_strategy(self, job_service, warehouse_csv):
        with pytest.raises(InvalidInputError):
            await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1",
                                                context={"duplicate_strategy": "merge"})


class TestImportQueries:

    @pytest.mark.asyncio
    async def test_foreign_job_is_not_found(self, job_service, warehouse_csv):
        job = await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1")

        with pytest.raises(JobNotFoundError):
            await job_service.get_import_job(job.id, "user-2")
        assert (await job_service.get_import_job(job.id, "admin", elevated=True)).id == job.id

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, job_service, warehouse_csv):
        job = await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1")

        cancelled = await job_service.cancel_import_job(job.id, "user-1")

        assert cancelled.status == ImportStatus.CANCELLED
        assert cancelled.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_is_a_no_op(self, job_service, import_processor, store, warehouse_csv):
        job = await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1")
        await store.claim_next_import_job(utcnow())
        await import_processor.process(job.id)

        result = await job_service.cancel_import_job(job.id, "user-1")

        assert result.status == ImportStatus.FAILED

    @pytest.mark.asyncio
    async def test_errors_and_history(self, job_service, import_processor, store, warehouse_csv):
        job = await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1")
        await store.claim_next_import_job(utcnow())
        await import_processor.process(job.id)

        errors = await job_service.get_import_errors(job.id, "user-1")
        history = await job_service.list_import_history("user-1")

        assert [e.row_number for e in errors] == [2]
        assert [j.id for j in history] == [job.id]
        assert await job_service.list_import_history("user-2") == []


class TestExports:
    """Tests for export submission, download and preview."""

    @pytest.mark.asyncio
    async def test_default_file_name(self, job_service):
        job = await job_service.create_export_job("warehouses", None, ["code"], "user-1")

        assert job.status == ExportStatus.PENDING
        assert re.fullmatch(r"warehouses-export-\d+\.csv", job.file_name)

    @pytest.mark.asyncio
    async def test_file_name_is_sanitised(self, job_service):
        job = await job_service.create_export_job("warehouses", None, ["code"], "user-1", file_name="../my report.csv")
        assert job.file_name == ".._my_report.csv"

    @pytest.mark.asyncio
    async def test_columns_required(self, job_service):
        with pytest.raises(InvalidInputError):
            await job_service.create_export_job("warehouses", None, [], "user-1")

    @pytest.mark.asyncio
    async def test_download_requires_completion(self, job_service, export_processor, store):
        job = await job_service.create_export_job("warehouses", None, ["code"], "user-1")

        with pytest.raises(ExportNotReadyError):
            await job_service.get_export_download(job.id, "user-1")

        await store.claim_next_export_job(utcnow())
        await export_processor.process(job.id)

        location = await job_service.get_export_download(job.id, "user-1")
        assert location.startswith("file://")
        assert await job_service.read_export_artifact(job.id, "user-1") == b"code\r\n"

    @pytest.mark.asyncio
    async def test_preview_export(self, job_service, adapter):
        adapter.records = {f"WH-{i}": {"code": f"WH-{i}", "name": "x"} for i in range(1, 4)}

        preview = await job_service.preview_export("warehouses", {}, ["code"], limit=2)

        assert preview["total_rows"] == 3
        assert preview["preview_rows"] == [{"code": "WH-1"}, {"code": "WH-2"}]
        assert preview["estimated_size_bytes"] == len(b"code\r\nWH-1\r\nWH-2\r\nWH-3\r\n")


class TestTemplatesAndStatistics:

    @pytest.mark.asyncio
    async def test_template_lifecycle(self, job_service):
        columns = [{"key": "code", "header": "Code", "required": True}, {"key": "capacity", "type": "int"}]
        other = await job_service.create_template("Zeta", "warehouses", columns, "user-1")
        default = await job_service.create_template("Alpha", "warehouses", columns, "user-1", is_default=True)

        assert [t.name for t in await job_service.list_templates("warehouses")] == ["Alpha", "Zeta"]
        assert other.columns[1]["type"] == "integer"
        assert other.columns[1]["header"] == "capacity"

        updated = await job_service.update_template(other.id, "user-1", name="Beta", is_default=True)
        assert updated.name == "Beta"
        assert updated.is_default

        with pytest.raises(JobNotFoundError):
            await job_service.delete_template(default.id, "user-2")
        assert await job_service.delete_template(default.id, "user-1")

    @pytest.mark.asyncio
    async def test_template_requires_columns(self, job_service):
        with pytest.raises(InvalidInputError):
            await job_service.create_template("Empty", "warehouses", [], "user-1")

    def test_sample_template(self, job_service):
        assert job_service.sample_template("warehouses") == (
            "Code,Name,Capacity,Active\r\nWH-001,Central,100,true\r\n"
        )

    def test_sample_template_without_sample_rows(self, job_service, registry):
        registry.register(SupplierAdapter())

        assert SupplierAdapter.sample_rows == ()
        assert job_service.sample_template("suppliers") == "Code\r\n"

    @pytest.mark.asyncio
    async def test_statistics(self, job_service, warehouse_csv):
        await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1")
        await job_service.create_export_job("warehouses", None, ["code"], "user-2")

        mine = await job_service.get_statistics("user-1")
        everyone = await job_service.get_statistics("admin", elevated=True)

        assert mine["imports"] == {"pending": 1, "total": 1}
        assert mine["exports"] == {"total": 0}
        assert everyone["exports"]["total"] == 1
        assert "generated_at" in mine
