"""
Example module adapter for warehouses.

Records live in a dictionary keyed by warehouse code. A real adapter would
read and write its own tables inside ``transaction()``.

Load it as a plugin with::

    bdx --plugin warehouse_adapter:register run
"""

import copy
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from bulk_data_exchange.models.job import ColumnDef, FieldType
from bulk_data_exchange.services.module_registry import (
    ColumnTemplate,
    ModuleAdapter,
    ModuleKey,
    ModuleRegistry,
    RowContext,
    resolve_duplicate,
)

WAREHOUSE_KINDS = ["main", "transit", "virtual"]


class WarehouseAdapter(ModuleAdapter):
    """Warehouses keyed by code."""

    template = ColumnTemplate(
        module=ModuleKey.WAREHOUSES,
        columns=[
            ColumnDef(key="code", header="Code", required=True),
            ColumnDef(key="name", header="Name", required=True),
            ColumnDef(key="capacity", header="Capacity", type=FieldType.INTEGER),
            ColumnDef(key="is_active", header="Active", type=FieldType.BOOLEAN),
            ColumnDef(key="kind", header="Kind", type=FieldType.ENUM, enum_values=WAREHOUSE_KINDS),
        ],
    )
    sample_rows = [
        {"code": "WH-001", "name": "Central", "capacity": 1200, "is_active": True, "kind": "main"},
        {"code": "WH-002", "name": "North", "capacity": 800, "is_active": False, "kind": "transit"},
    ]

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    async def apply_row(self, row, ctx: RowContext):
        code = row.text("code")
        if not row.text("name"):
            raise ValueError("Warehouse name is required")

        values = row.to_plain_dict()
        values.setdefault("is_active", True)

        existing = self.records.get(code)
        if existing is not None:
            outcome = resolve_duplicate(ctx, "code", code)
            if outcome is not None:
                return outcome
            existing.update(values)
            return existing

        values["created_by"] = ctx.actor_id
        self.records[code] = values
        return values

    async def fetch(self, filters: Dict[str, Any], context: Dict[str, Any], limit: int) -> List[Any]:
        matches = [
            record for record in self.records.values()
            if all(record.get(key) == value for key, value in filters.items())
        ]
        return sorted(matches, key=lambda record: record["code"])[:limit]

    def coerce_filters(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        coerced = dict(filters)
        if isinstance(coerced.get("is_active"), str):
            coerced["is_active"] = coerced["is_active"].strip().lower() in ("true", "yes", "1")
        return coerced

    @asynccontextmanager
    async def transaction(self):
        # Restore the previous records if the row fails part way through
        snapshot = copy.deepcopy(self.records)
        try:
            yield
        except Exception:
            self.records = snapshot
            raise


def register(registry: ModuleRegistry) -> None:
    """Plugin entry point for ``module_plugins``."""
    registry.register(WarehouseAdapter())
