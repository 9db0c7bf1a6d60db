"""
Basic usage example for the Bulk Data Exchange Pipeline

This example runs the pipeline in-process with the example warehouse adapter:
it previews and imports a small spreadsheet, exports the result, and creates
a scheduled export.
"""

import asyncio

from bulk_data_exchange import (
    DataExchangePipeline,
    ExportStatus,
    ImportStatus,
    PipelineSettings,
    quick_start
)

from warehouse_adapter import WarehouseAdapter

WAREHOUSES_CSV = (
    "Code,Name,Capacity,Active,Kind\n"
    "WH-001,Central,1200,yes,main\n"
    "WH-002,North,800,no,transit\n"
    "WH-003,,50,yes,virtual\n"
).encode("utf-8")


async def wait_for_import(pipeline: DataExchangePipeline, job_id: str, actor_id: str):
    while True:
        job = await pipeline.get_import_job(job_id, actor_id)
        if job.is_terminal():
            return job
        await asyncio.sleep(0.5)


async def wait_for_export(pipeline: DataExchangePipeline, job_id: str, actor_id: str):
    while True:
        job = await pipeline.get_export_job(job_id, actor_id)
        if job.status in (ExportStatus.COMPLETED, ExportStatus.FAILED):
            return job
        await asyncio.sleep(0.5)


async def basic_example():
    """Import, then export, through the in-process store."""
    print("Starting Bulk Data Exchange example")

    # Method 1: Quick start for simple use cases
    pipeline = quick_start(storage_root="./bdx-example-storage", adapters=[WarehouseAdapter()])
    await pipeline.start()

    try:
        preview = pipeline.preview_upload(WAREHOUSES_CSV, "warehouses")
        print(f"Headers: {preview['headers']} ({preview['total_rows']} rows)")

        job = await pipeline.submit_import("warehouses", WAREHOUSES_CSV, "warehouses.csv", "user-1")
        print(f"Import job submitted: {job.id}")

        job = await wait_for_import(pipeline, job.id, "user-1")
        print(f"Import finished: {job.status.value}, "
              f"{job.success_rows} ok, {job.error_rows} failed")
        if job.status == ImportStatus.FAILED:
            for error in job.errors:
                print(f"  row {error.row_number}: {error.message}")

        export = await pipeline.submit_export("warehouses", {"is_active": "true"}, ["code", "name"], "user-1")
        export = await wait_for_export(pipeline, export.id, "user-1")
        print(f"Export finished: {export.status.value}, {export.total_rows} rows")
        if export.status == ExportStatus.COMPLETED:
            print(f"Download: {await pipeline.get_export_download(export.id, 'user-1')}")

        health = await pipeline.health_check()
        print(f"Pipeline healthy: {health['healthy']}")

    finally:
        await pipeline.stop()
        print("Pipeline stopped")


async def scheduled_example():
    """Scheduled export administration with explicit settings."""
    print("\nScheduled export example")

    # Method 2: Custom configuration, scheduler loop disabled
    settings = PipelineSettings(
        storage_root="./bdx-example-storage",
        scheduler_enabled=False,
        import_concurrency=2
    )

    async with DataExchangePipeline(settings, adapters=[WarehouseAdapter()]) as pipeline:
        scheduled = await pipeline.create_scheduled_export(
            "user-1",
            name="Weekly warehouses",
            module="warehouses",
            columns=["code", "name", "capacity"],
            schedule="0 8 * * 1",
            recipients=["ops@example.com"],
        )
        print(f"Scheduled export {scheduled.id} next runs at {scheduled.next_run_at.isoformat()}")

        scheduled = await pipeline.set_scheduled_export_active(scheduled.id, False, "user-1")
        print(f"Active: {scheduled.is_active}")


async def main():
    """Run all examples."""
    await basic_example()
    await scheduled_example()


if __name__ == "__main__":
    asyncio.run(main())
