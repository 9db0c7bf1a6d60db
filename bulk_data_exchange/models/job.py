"""
Job-related data models for the Bulk Data Exchange Pipeline

Defines import jobs, export jobs, column mappings, row errors and reusable
import templates. Status changes are guarded by the job stores, which only
update a row still in the expected status.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from uuid import uuid4


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class JobKind(Enum):
    """The two kinds of queued work."""
    IMPORT = "import"
    EXPORT = "export"


class ImportStatus(Enum):
    """Import job status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExportStatus(Enum):
    """Export job status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DuplicateStrategy(Enum):
    """How a row applier reacts to a natural-key collision."""
    SKIP = "skip"
    UPDATE = "update"
    ERROR = "error"


class FieldType(Enum):
    """Primitive column types understood by the coercion layer."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    ENUM = "enum"

    @classmethod
    def parse(cls, value: Any) -> "FieldType":
        if isinstance(value, FieldType):
            return value
        if value in (None, ""):
            return cls.STRING
        lowered = str(value).strip().lower()
        # "int" is the spelling stored by older templates
        if lowered == "int":
            return cls.INTEGER
        return cls(lowered)


@dataclass
class ColumnDef:
    """One field of a module's column template."""

    key: str
    header: str
    required: bool = False
    type: FieldType = FieldType.STRING
    enum_values: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "header": self.header,
            "required": self.required,
            "type": self.type.value,
            "enum_values": list(self.enum_values),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDef":
        return cls(
            key=data["key"],
            header=data.get("header") or data["key"],
            required=bool(data.get("required", False)),
            type=FieldType.parse(data.get("type")),
            enum_values=list(data.get("enum_values") or data.get("enumValues") or []),
        )


@dataclass
class ColumnMapping:
    """Binding of a template field to a column of the uploaded file."""

    key: str
    header: str
    source_column: Optional[str] = None
    required: bool = False
    type: FieldType = FieldType.STRING
    enum_values: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "header": self.header,
            "source_column": self.source_column,
            "required": self.required,
            "type": self.type.value,
            "enum_values": list(self.enum_values),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnMapping":
        source = data.get("source_column", data.get("sourceColumn"))
        return cls(
            key=data["key"],
            header=data.get("header") or data["key"],
            source_column=str(source).strip() if source not in (None, "") else None,
            required=bool(data.get("required", False)),
            type=FieldType.parse(data.get("type")),
            enum_values=list(data.get("enum_values") or data.get("enumValues") or []),
        )


@dataclass
class RowErrorEntry:
    """A row-level failure recorded on an import job."""

    row_number: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row_number": self.row_number, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RowErrorEntry":
        return cls(row_number=int(data.get("row_number", data.get("rowNumber", 0))), message=str(data.get("message", "")))


@dataclass
class ImportProgress:
    """Row counters of an import job at one point in time."""

    processed: int = 0
    success: int = 0
    error: int = 0
    skipped: int = 0


@dataclass
class ImportJob:
    """Durable record of one spreadsheet import."""

    # Primary identification
    id: str
    module: str
    created_by: str

    # Source artifact
    file_key: str
    file_location: str
    original_name: str
    total_rows: int = 0

    # Configuration
    mappings: List[ColumnMapping] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)

    # Status tracking
    status: ImportStatus = ImportStatus.PENDING
    processed_rows: int = 0
    success_rows: int = 0
    error_rows: int = 0
    skipped_rows: int = 0
    errors: List[RowErrorEntry] = field(default_factory=list)

    # Timing
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duplicate_strategy(self) -> DuplicateStrategy:
        value = (self.context or {}).get("duplicate_strategy") or DuplicateStrategy.ERROR.value
        return DuplicateStrategy(str(value).lower())

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_IMPORT_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for serialization."""
        return {
            "id": self.id,
            "module": self.module,
            "created_by": self.created_by,
            "file_key": self.file_key,
            "file_location": self.file_location,
            "original_name": self.original_name,
            "total_rows": self.total_rows,
            "mappings": [m.to_dict() for m in self.mappings],
            "context": self.context,
            "status": self.status.value,
            "processed_rows": self.processed_rows,
            "success_rows": self.success_rows,
            "error_rows": self.error_rows,
            "skipped_rows": self.skipped_rows,
            "errors": [e.to_dict() for e in self.errors],
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportJob":
        """Create job from dictionary or database row."""
        data = dict(data)
        for field_name in ["created_at", "started_at", "completed_at"]:
            data[field_name] = _parse_dt(data.get(field_name))
        data["status"] = ImportStatus(data["status"])
        data["mappings"] = [m if isinstance(m, ColumnMapping) else ColumnMapping.from_dict(m) for m in data.get("mappings") or []]
        data["errors"] = [e if isinstance(e, RowErrorEntry) else RowErrorEntry.from_dict(e) for e in data.get("errors") or []]
        data["context"] = data.get("context") or {}
        return cls(**data)


@dataclass
class ExportJob:
    """Durable record of one spreadsheet export."""

    id: str
    module: str
    created_by: str
    file_name: str
    columns: List[str] = field(default_factory=list)
    filters: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)

    status: ExportStatus = ExportStatus.PENDING
    total_rows: int = 0
    artifact_key: Optional[str] = None
    artifact_location: Optional[str] = None
    error_message: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_ready(self) -> bool:
        return self.status == ExportStatus.COMPLETED and bool(self.artifact_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "module": self.module,
            "created_by": self.created_by,
            "file_name": self.file_name,
            "columns": list(self.columns),
            "filters": self.filters,
            "context": self.context,
            "status": self.status.value,
            "total_rows": self.total_rows,
            "artifact_key": self.artifact_key,
            "artifact_location": self.artifact_location,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportJob":
        data = dict(data)
        for field_name in ["created_at", "started_at", "completed_at"]:
            data[field_name] = _parse_dt(data.get(field_name))
        data["status"] = ExportStatus(data["status"])
        data["columns"] = list(data.get("columns") or [])
        data["filters"] = data.get("filters") or {}
        data["context"] = data.get("context") or {}
        return cls(**data)


@dataclass
class ImportTemplate:
    """Named, reusable column-mapping preset exposed by a module."""

    id: str
    name: str
    module: str
    created_by: str
    columns: List[Dict[str, Any]] = field(default_factory=list)
    description: Optional[str] = None
    is_default: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "module": self.module,
            "created_by": self.created_by,
            "columns": self.columns,
            "description": self.description,
            "is_default": self.is_default,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportTemplate":
        data = dict(data)
        for field_name in ["created_at", "updated_at"]:
            data[field_name] = _parse_dt(data.get(field_name))
        data["columns"] = list(data.get("columns") or [])
        return cls(**data)


TERMINAL_IMPORT_STATUSES = (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED)
