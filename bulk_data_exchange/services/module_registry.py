"""
Module registry for routing rows to business-module adapters.

Each supported module registers one adapter at start-up. The adapter owns the
module's column template, applies one coerced row at a time, and supplies
records for export. The pipeline itself never knows what a module stores.
"""

import importlib
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.exceptions import ConfigurationError, DuplicateKeyError, UnsupportedModuleError
from ..models.job import ColumnDef, ColumnMapping, DuplicateStrategy
from ..models.values import CoercedRow
from ..utils.logger import get_logger


class ModuleKey(Enum):
    """Business modules that can import and export spreadsheets."""
    INVENTORY = "inventory"
    INVENTORY_MOVEMENTS = "inventory_movements"
    SUPPLIERS = "suppliers"
    EMPLOYEES = "employees"
    WAREHOUSES = "warehouses"
    PROJECTS = "projects"
    PROJECT_TASKS = "project_tasks"
    ASSETS = "assets"
    FLEET_ASSETS = "fleet_assets"
    FLEET_FUEL = "fleet_fuel"
    FLEET_MAINTENANCE = "fleet_maintenance"
    HR_ATTENDANCE = "hr_attendance"
    HR_LEAVE_REQUESTS = "hr_leave_requests"

    @classmethod
    def normalize(cls, value: Any) -> "ModuleKey":
        """
        Resolve a module key from user input.

        Raises:
            UnsupportedModuleError: If the key is not a known module
        """
        if isinstance(value, ModuleKey):
            return value
        text = str(value or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            raise UnsupportedModuleError(text or str(value))


class _Skipped:
    def __repr__(self) -> str:
        return "SKIPPED"


# Returned by apply_row when a row was intentionally not applied
SKIPPED = _Skipped()


@dataclass
class ColumnTemplate:
    """Ordered field definitions of one module."""

    module: ModuleKey
    columns: List[ColumnDef] = field(default_factory=list)

    @property
    def headers(self) -> List[str]:
        return [c.header for c in self.columns]

    @property
    def keys(self) -> List[str]:
        return [c.key for c in self.columns]

    def column(self, key: str) -> Optional[ColumnDef]:
        for column in self.columns:
            if column.key == key:
                return column
        return None

    def required_keys(self) -> List[str]:
        return [c.key for c in self.columns if c.required]

    def to_dict(self) -> Dict[str, Any]:
        return {"module": self.module.value, "columns": [c.to_dict() for c in self.columns]}


@dataclass
class RowContext:
    """Everything a row applier may need besides the row itself."""

    job_id: str
    module: ModuleKey
    actor_id: str
    row_number: int
    context: Dict[str, Any] = field(default_factory=dict)
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.ERROR


def resolve_duplicate(ctx: RowContext, key_name: str, key_value: Any):
    """
    Apply the job's duplicate strategy to a natural-key collision.

    Returns:
        SKIPPED under ``skip``; None under ``update`` (the caller updates)

    Raises:
        DuplicateKeyError: Under ``error``
    """
    if ctx.duplicate_strategy == DuplicateStrategy.SKIP:
        return SKIPPED
    if ctx.duplicate_strategy == DuplicateStrategy.UPDATE:
        return None
    raise DuplicateKeyError(key_name, key_value, row_number=ctx.row_number)


class ModuleAdapter(ABC):
    """
    Base class for business-module adapters.

    Subclasses set ``template`` and implement ``apply_row`` and ``fetch``.
    The remaining hooks have permissive defaults.
    """

    template: ColumnTemplate
    sample_rows: Sequence[Dict[str, Any]] = ()

    @property
    def module(self) -> ModuleKey:
        return self.template.module

    @abstractmethod
    async def apply_row(self, row: CoercedRow, ctx: RowContext) -> Any:
        """
        Validate and persist one coerced row.

        Returns:
            The persisted record, or SKIPPED

        Raises:
            Any exception; its message becomes the row error
        """

    @abstractmethod
    async def fetch(self, filters: Dict[str, Any], context: Dict[str, Any], limit: int) -> List[Any]:
        """Return at most ``limit`` records matching the exact-match filters."""

    def project(self, record: Any, column: str) -> Any:
        """Value of ``column`` for one fetched record; unknown columns yield None."""
        if isinstance(record, Mapping):
            return record.get(column)
        return getattr(record, column, None)

    def coerce_filters(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        return filters

    def validate_submission(self, mappings: Sequence[ColumnMapping], context: Dict[str, Any]) -> None:
        """Raise MissingRequiredMappingError or InvalidInputError when the job can never succeed."""

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Scope wrapping each applied row; adapters backed by a database open one here."""
        yield


class ModuleRegistry:
    """Maps module keys to their registered adapters."""

    def __init__(self, adapters: Optional[Iterable[ModuleAdapter]] = None):
        self._adapters: Dict[ModuleKey, ModuleAdapter] = {}
        self.logger = get_logger(__name__)
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ModuleAdapter) -> None:
        module = adapter.template.module
        if module in self._adapters:
            self.logger.warning("Replacing module adapter", extra={"module_key": module.value})
        self._adapters[module] = adapter
        self.logger.info("Module adapter registered", extra={
            "module_key": module.value,
            "adapter": type(adapter).__name__,
            "columns": len(adapter.template.columns)
        })

    def unregister(self, module: Any) -> bool:
        return self._adapters.pop(ModuleKey.normalize(module), None) is not None

    def get(self, module: Any) -> ModuleAdapter:
        """
        Look up the adapter for a module.

        Raises:
            UnsupportedModuleError: If the module is unknown or has no adapter
        """
        key = ModuleKey.normalize(module)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedModuleError(key.value)
        return adapter

    def template(self, module: Any) -> ColumnTemplate:
        return self.get(module).template

    def supports(self, module: Any) -> bool:
        try:
            self.get(module)
            return True
        except UnsupportedModuleError:
            return False

    def modules(self) -> List[ModuleKey]:
        return list(self._adapters)

    def load_plugins(self, specs: Iterable[str]) -> int:
        """
        Import ``package.module:function`` callables and call each with this registry.

        Returns:
            Number of plugins loaded

        Raises:
            ConfigurationError: If a plugin cannot be imported or called
        """
        loaded = 0
        for spec in specs:
            module_path, _, attribute = spec.partition(":")
            if not module_path or not attribute:
                raise ConfigurationError("module_plugins", f"Expected 'package.module:function', got '{spec}'")
            try:
                register = getattr(importlib.import_module(module_path), attribute)
                register(self)
            except (ImportError, AttributeError) as e:
                raise ConfigurationError("module_plugins", f"Cannot load '{spec}': {str(e)}")
            loaded += 1
            self.logger.info("Module plugin loaded", extra={"plugin": spec})
        return loaded
