"""
Integration tests for the pipeline supervisor and CLI.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from bulk_data_exchange import DataExchangePipeline, ExportStatus, ImportStatus, PipelineSettings
from bulk_data_exchange.cli.main import cli
from bulk_data_exchange.core.exceptions import PipelineError
from bulk_data_exchange.utils.memory_store import InMemoryJobStore


@pytest.fixture
def settings(tmp_path):
    return PipelineSettings(
        storage_root=str(tmp_path / "storage"),
        import_poll_interval_seconds=0.01,
        export_poll_interval_seconds=0.01,
        scheduler_enabled=False,
    )


async def wait_until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if await predicate():
            return True
        await asyncio.sleep(0.01)
    return False


class TestDataExchangePipeline:
    """Tests for the supervisor lifecycle."""

    @pytest.mark.asyncio
    async def test_import_and_export_through_pollers(self, settings, adapter, warehouse_csv):
        async with DataExchangePipeline(settings, adapters=[adapter]) as pipeline:
            assert pipeline.is_running()

            job = await pipeline.submit_import("warehouses", warehouse_csv, "w.csv", "user-1")

            async def import_done():
                return (await pipeline.get_import_job(job.id, "user-1")).is_terminal()

            assert await wait_until(import_done)
            finished = await pipeline.get_import_job(job.id, "user-1")
            assert finished.status == ImportStatus.FAILED
            assert finished.success_rows == 2

            export = await pipeline.submit_export("warehouses", {}, ["code"], "user-1")

            async def export_done():
                return (await pipeline.get_export_job(export.id, "user-1")).status == ExportStatus.COMPLETED

            assert await wait_until(export_done)
            assert (await pipeline.get_export_download(export.id, "user-1")).startswith("file://")

        assert not pipeline.is_running()

    @pytest.mark.asyncio
    async def test_health_check(self, settings, adapter):
        pipeline = DataExchangePipeline(settings, adapters=[adapter])
        await pipeline.start()
        try:
            health = await pipeline.health_check()
        finally:
            await pipeline.stop()

        assert health["healthy"]
        assert health["modules"] == ["warehouses"]
        assert health["imports_in_flight"] == 0

    @pytest.mark.asyncio
    async def test_start_recovers_stuck_jobs(self, settings, adapter):
        store = InMemoryJobStore()
        pipeline = DataExchangePipeline(settings, store=store, adapters=[adapter])

        with patch.object(pipeline.recovery, "sweep", AsyncMock(return_value={"import": 0, "export": 0})) as sweep:
            await pipeline.start()
            await pipeline.stop()

        sweep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_start_raises_pipeline_error(self, settings):
        pipeline = DataExchangePipeline(settings.model_copy(update={"module_plugins": ["nowhere.module:register"]}))

        with pytest.raises(PipelineError):
            await pipeline.start()
        assert not pipeline.is_running()

    @pytest.mark.asyncio
    async def test_scheduled_export_delegates(self, settings, adapter):
        async with DataExchangePipeline(settings, adapters=[adapter]) as pipeline:
            scheduled = await pipeline.create_scheduled_export(
                "user-1", name="Daily", module="warehouses", columns=["code"],
                schedule="daily", recipients=["ops@example.com"],
            )
            listed = await pipeline.list_scheduled_exports("user-1")
            paused = await pipeline.set_scheduled_export_active(scheduled.id, False, "user-1")
            runs = await pipeline.list_scheduled_runs(scheduled.id, "user-1")

        assert [s.id for s in listed] == [scheduled.id]
        assert not paused.is_active
        assert runs == []


class TestCli:
    """Tests for the command-line interface."""

    @pytest.fixture(autouse=True)
    def quiet_logging(self):
        with patch("bulk_data_exchange.cli.main.setup_logger"):
            yield

    def test_import_preview(self, tmp_path, warehouse_csv):
        upload = tmp_path / "warehouses.csv"
        upload.write_bytes(warehouse_csv)

        result = CliRunner().invoke(cli, ["import", "preview", str(upload)],
                                    env={"BDX_STORAGE_ROOT": str(tmp_path / "storage")})

        assert result.exit_code == 0, result.output
        assert "Headers: Code, Name, Capacity, Active" in result.output
        assert "Total rows: 3" in result.output

    def test_init_db_requires_database_url(self, tmp_path):
        result = CliRunner().invoke(cli, ["init-db"], env={"BDX_DATABASE_URL": ""})

        assert result.exit_code == 1
        assert "No database URL configured" in result.output

    def test_unknown_module(self, tmp_path, warehouse_csv):
        upload = tmp_path / "warehouses.csv"
        upload.write_bytes(warehouse_csv)

        result = CliRunner().invoke(cli, ["import", "submit", "payroll", str(upload)],
                                    env={"BDX_STORAGE_ROOT": str(tmp_path / "storage")})

        assert result.exit_code == 1
        assert "Unsupported module: payroll" in result.output
