"""
Tests for the import processor.
"""

from datetime import timedelta

import pytest

from bulk_data_exchange.models.job import ImportStatus, utcnow
from bulk_data_exchange.services.import_processor import ImportProcessor
from bulk_data_exchange.utils import metrics

from conftest import csv_bytes


async def submit_and_claim(job_service, store, data, context=None):
    job = await job_service.create_import_job("warehouses", data, "warehouses.csv", "user-1", context=context)
    claimed = await store.claim_next_import_job(utcnow())
    assert claimed == job.id
    return job.id


class TestImportProcessing:
    """End-to-end processing of claimed import jobs."""

    @pytest.mark.asyncio
    async def test_row_errors_do_not_abort_the_job(self, job_service, import_processor, store, adapter, warehouse_csv):
        job_id = await submit_and_claim(job_service, store, warehouse_csv)

        status = await import_processor.process(job_id)

        job = await store.get_import_job(job_id)
        assert status == ImportStatus.FAILED
        assert job.status == ImportStatus.FAILED
        assert (job.processed_rows, job.success_rows, job.error_rows) == (3, 2, 1)
        assert [(e.row_number, e.message) for e in job.errors] == [(2, "Missing required field: name")]
        assert job.completed_at is not None
        assert sorted(adapter.records) == ["WH-001", "WH-003"]
        assert adapter.records["WH-001"]["capacity"] == 1200
        assert adapter.records["WH-001"]["is_active"] is True

    @pytest.mark.asyncio
    async def test_clean_file_completes(self, job_service, import_processor, store):
        job_id = await submit_and_claim(job_service, store, csv_bytes("Code,Name", "WH-1,Central"))

        assert await import_processor.process(job_id) == ImportStatus.COMPLETED
        job = await store.get_import_job(job_id)
        assert job.errors == []
        assert job.success_rows == 1

    @pytest.mark.asyncio
    async def test_pending_job_is_not_processed(self, job_service, import_processor, adapter, warehouse_csv):
        job = await job_service.create_import_job("warehouses", warehouse_csv, "w.csv", "user-1")

        assert await import_processor.process(job.id) is None
        assert adapter.applied == []

    @pytest.mark.asyncio
    async def test_unknown_job_is_ignored(self, import_processor):
        assert await import_processor.process("missing") is None

    @pytest.mark.asyncio
    async def test_coercion_error_is_recorded_per_row(self, job_service, import_processor, store):
        data = csv_bytes("Code,Name,Capacity", "WH-1,Central,lots", "WH-2,North,3")
        job_id = await submit_and_claim(job_service, store, data)

        await import_processor.process(job_id)

        job = await store.get_import_job(job_id)
        assert [(e.row_number, e.message) for e in job.errors] == [(1, "Invalid number: lots")]
        assert job.success_rows == 1

    @pytest.mark.asyncio
    async def test_adapter_exception_becomes_row_error(self, job_service, import_processor, store, adapter):
        async def explode(row, ctx):
            if ctx.row_number == 1:
                raise ValueError("warehouse is locked")

        adapter.on_apply = explode
        job_id = await submit_and_claim(job_service, store, csv_bytes("Code,Name", "WH-1,A", "WH-2,B"))

        await import_processor.process(job_id)

        job = await store.get_import_job(job_id)
        assert job.errors[0].row_number == 1
        assert job.errors[0].message == "warehouse is locked"
        assert job.success_rows == 1

    @pytest.mark.asyncio
    async def test_slow_row_times_out(self, job_service, store, storage, registry, adapter):
        processor = ImportProcessor(store, storage, registry, row_timeout_seconds=0.05)
        adapter.slow_codes["WH-1"] = 1.0
        job_id = await submit_and_claim(job_service, store, csv_bytes("Code,Name", "WH-1,A", "WH-2,B"))

        await processor.process(job_id)

        job = await store.get_import_job(job_id)
        assert job.errors[0].row_number == 1
        assert job.errors[0].message == "Row timed out after 0.05s"
        assert job.success_rows == 1

    @pytest.mark.asyncio
    async def test_unreadable_artifact_fails_job_with_row_zero(self, job_service, import_processor, store, storage):
        job = await job_service.create_import_job("warehouses", csv_bytes("Code,Name", "WH-1,A"), "w.csv", "user-1")
        await storage.delete(job.file_key)
        await store.claim_next_import_job(utcnow())

        assert await import_processor.process(job.id) == ImportStatus.FAILED

        stored = await store.get_import_job(job.id)
        assert stored.status == ImportStatus.FAILED
        assert stored.errors[0].row_number == 0
        assert "read" in stored.errors[0].message


class TestCancellationAndProgress:

    @pytest.mark.asyncio
    async def test_cancel_stops_at_next_row(self, job_service, import_processor, store, adapter):
        data = csv_bytes("Code,Name", "WH-1,A", "WH-2,B", "WH-3,C")
        job_id = await submit_and_claim(job_service, store, data)

        async def cancel_during_first_row(row, ctx):
            if ctx.row_number == 1:
                await store.cancel_import_job(job_id, utcnow())

        adapter.on_apply = cancel_during_first_row

        assert await import_processor.process(job_id) == ImportStatus.CANCELLED

        job = await store.get_import_job(job_id)
        assert job.status == ImportStatus.CANCELLED
        assert adapter.applied == [1]
        assert job.processed_rows == 1
        assert job.success_rows == 1

    @pytest.mark.asyncio
    async def test_recovered_job_is_not_counted_as_finished(self, job_service, import_processor, store, adapter):
        data = csv_bytes("Code,Name", "WH-1,A", "WH-2,B")
        job_id = await submit_and_claim(job_service, store, data)
        finished = {"kind": "import", "status": "pending"}
        before = metrics.REGISTRY.get_sample_value("bdx_jobs_finished_total", finished)

        async def recover_during_first_row(row, ctx):
            if ctx.row_number == 1:
                await store.recover_stuck_import_jobs(utcnow() + timedelta(minutes=1))

        adapter.on_apply = recover_during_first_row

        assert await import_processor.process(job_id) == ImportStatus.PENDING

        assert (await store.get_import_job(job_id)).status == ImportStatus.PENDING
        assert adapter.applied == [1]
        assert metrics.REGISTRY.get_sample_value("bdx_jobs_finished_total", finished) == before

    @pytest.mark.asyncio
    async def test_progress_is_persisted_in_batches(self, job_service, import_processor, store, adapter):
        data = csv_bytes("Code,Name", "WH-1,A", "WH-2,B", "WH-3,C")
        job_id = await submit_and_claim(job_service, store, data)
        seen = {}

        async def observe(row, ctx):
            job = await store.get_import_job(job_id)
            seen[ctx.row_number] = job.processed_rows

        adapter.on_apply = observe

        await import_processor.process(job_id)

        # batch size is 2 in the fixture
        assert seen == {1: 0, 2: 0, 3: 2}
        assert (await store.get_import_job(job_id)).processed_rows == 3


class TestDuplicateStrategies:

    DUPLICATES = csv_bytes("Code,Name", "WH-1,First", "WH-1,Second")

    @pytest.mark.asyncio
    async def test_skip(self, job_service, import_processor, store, adapter):
        job_id = await submit_and_claim(job_service, store, self.DUPLICATES, {"duplicate_strategy": "skip"})

        assert await import_processor.process(job_id) == ImportStatus.COMPLETED
        job = await store.get_import_job(job_id)
        assert (job.success_rows, job.skipped_rows, job.error_rows) == (1, 1, 0)
        assert adapter.records["WH-1"]["name"] == "First"

    @pytest.mark.asyncio
    async def test_update(self, job_service, import_processor, store, adapter):
        job_id = await submit_and_claim(job_service, store, self.DUPLICATES, {"duplicate_strategy": "UPDATE"})

        assert await import_processor.process(job_id) == ImportStatus.COMPLETED
        assert (await store.get_import_job(job_id)).success_rows == 2
        assert adapter.records["WH-1"]["name"] == "Second"

    @pytest.mark.asyncio
    async def test_error_is_the_default(self, job_service, import_processor, store):
        job_id = await submit_and_claim(job_service, store, self.DUPLICATES)

        assert await import_processor.process(job_id) == ImportStatus.FAILED
        job = await store.get_import_job(job_id)
        assert [(e.row_number, e.message) for e in job.errors] == [(2, "Duplicate code: WH-1")]
