"""
Pytest fixtures for Bulk Data Exchange tests.
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from bulk_data_exchange.models.job import ColumnDef, FieldType
from bulk_data_exchange.services.export_processor import ExportProcessor
from bulk_data_exchange.services.import_processor import ImportProcessor
from bulk_data_exchange.services.job_service import JobService
from bulk_data_exchange.services.module_registry import (
    ColumnTemplate,
    ModuleAdapter,
    ModuleKey,
    ModuleRegistry,
    RowContext,
    resolve_duplicate,
)
from bulk_data_exchange.services.scheduled_exports import ScheduledExportService
from bulk_data_exchange.utils.logger import setup_logger
from bulk_data_exchange.utils.memory_store import InMemoryJobStore
from bulk_data_exchange.utils.storage import LocalArtifactStorage


class WarehouseAdapter(ModuleAdapter):
    """Warehouses keyed by code, stored in a dictionary."""

    template = ColumnTemplate(
        module=ModuleKey.WAREHOUSES,
        columns=[
            ColumnDef(key="code", header="Code", required=True),
            ColumnDef(key="name", header="Name", required=True),
            ColumnDef(key="capacity", header="Capacity", type=FieldType.INTEGER),
            ColumnDef(key="is_active", header="Active", type=FieldType.BOOLEAN),
        ],
    )
    sample_rows = [{"code": "WH-001", "name": "Central", "capacity": 100, "is_active": True}]

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.applied: List[int] = []
        self.slow_codes: Dict[str, float] = {}
        self.on_apply: Optional[Callable] = None
        self.fetch_error: Optional[Exception] = None

    async def apply_row(self, row, ctx: RowContext):
        self.applied.append(ctx.row_number)
        if self.on_apply is not None:
            await self.on_apply(row, ctx)

        code = row.text("code")
        if code in self.slow_codes:
            await asyncio.sleep(self.slow_codes[code])

        values = row.to_plain_dict()
        if code in self.records:
            outcome = resolve_duplicate(ctx, "code", code)
            if outcome is not None:
                return outcome
            self.records[code].update(values)
            return self.records[code]

        self.records[code] = values
        return values

    async def fetch(self, filters, context, limit):
        if self.fetch_error is not None:
            raise self.fetch_error
        matches = [
            record for record in self.records.values()
            if all(record.get(key) == value for key, value in filters.items())
        ]
        return sorted(matches, key=lambda r: r["code"])[:limit]

    def coerce_filters(self, filters):
        coerced = dict(filters)
        if isinstance(coerced.get("is_active"), str):
            coerced["is_active"] = coerced["is_active"].lower() == "true"
        return coerced

    @asynccontextmanager
    async def transaction(self):
        yield


class RecordingMailer:
    """Mailer double that keeps every sent email."""

    def __init__(self, error: Optional[Exception] = None):
        self.sent = []
        self.error = error

    async def send(self, email):
        if self.error is not None:
            raise self.error
        self.sent.append(email)


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def warehouse_csv():
    """Three warehouses; the second has no name."""
    return csv_bytes(
        "Code,Name,Capacity,Active",
        "WH-001,Central,1200,yes",
        "WH-002,,800,no",
        "WH-003,South,50,true",
    )


@pytest_asyncio.fixture
async def store():
    return InMemoryJobStore()


@pytest.fixture
def storage(tmp_path):
    artifacts = LocalArtifactStorage(tmp_path / "artifacts")
    artifacts.ensure_root()
    return artifacts


@pytest.fixture
def adapter():
    return WarehouseAdapter()


@pytest.fixture
def registry(adapter):
    return ModuleRegistry([adapter])


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest_asyncio.fixture
async def import_processor(store, storage, registry):
    return ImportProcessor(store, storage, registry, progress_batch_size=2, row_timeout_seconds=1.0)


@pytest_asyncio.fixture
async def export_processor(store, storage, registry):
    return ExportProcessor(store, storage, registry, max_rows=100)


@pytest_asyncio.fixture
async def job_service(store, storage, registry, export_processor):
    return JobService(store, storage, registry, export_processor, preview_rows=5)


@pytest_asyncio.fixture
async def schedules(store, storage, registry, export_processor, mailer):
    return ScheduledExportService(store, storage, registry, export_processor, mailer=mailer)


class _CurrentStdout:
    """Writes to whatever ``sys.stdout`` is at write time, so capsys sees records from the test body."""

    def write(self, text):
        return sys.stdout.write(text)

    def flush(self):
        sys.stdout.flush()


@pytest.fixture
def info_logging(capsys):
    """Package logger at INFO with the structured console handler, as the CLI configures it."""
    logger = setup_logger("bulk_data_exchange", level="INFO")
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setStream(_CurrentStdout())
    yield logger
    for handler in list(logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def log_entries(output: str, message: str) -> list:
    entries = [json.loads(line) for line in output.splitlines() if line.startswith("{")]
    return [entry for entry in entries if entry["message"] == message]
