"""
Data models for the Bulk Data Exchange Pipeline

Import and export jobs, column mappings, import templates, scheduled exports
and the tagged values produced by row coercion.
"""

# Job models
from .job import (
    JobKind,
    ImportStatus,
    ExportStatus,
    DuplicateStrategy,
    FieldType,
    ColumnDef,
    ColumnMapping,
    RowErrorEntry,
    ImportProgress,
    ImportJob,
    ExportJob,
    ImportTemplate
)

# Scheduled export models
from .schedule import (
    RunStatus,
    ScheduledExport,
    ScheduledExportRun
)

# Coerced values
from .values import (
    StringValue,
    NumberValue,
    IntegerValue,
    BooleanValue,
    DateValue,
    EnumValue,
    CoercedRow
)

__all__ = [
    # Job models
    "JobKind",
    "ImportStatus",
    "ExportStatus",
    "DuplicateStrategy",
    "FieldType",
    "ColumnDef",
    "ColumnMapping",
    "RowErrorEntry",
    "ImportProgress",
    "ImportJob",
    "ExportJob",
    "ImportTemplate",

    # Scheduled export models
    "RunStatus",
    "ScheduledExport",
    "ScheduledExportRun",

    # Coerced values
    "StringValue",
    "NumberValue",
    "IntegerValue",
    "BooleanValue",
    "DateValue",
    "EnumValue",
    "CoercedRow"
]
