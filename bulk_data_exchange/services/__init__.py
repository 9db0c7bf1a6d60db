"""
Services package for the Bulk Data Exchange Pipeline

Contains the module registry, job submission, processors, pollers, recovery
and the scheduled export engine.
"""

from .module_registry import (
    ModuleKey,
    ModuleAdapter,
    ModuleRegistry,
    ColumnTemplate,
    RowContext,
    SKIPPED,
    resolve_duplicate
)
from .import_processor import ImportProcessor
from .export_processor import ExportProcessor
from .job_poller import JobPoller
from .recovery import StuckJobRecovery
from .job_service import JobService
from .scheduled_exports import ScheduledExportService

__all__ = [
    "ModuleKey",
    "ModuleAdapter",
    "ModuleRegistry",
    "ColumnTemplate",
    "RowContext",
    "SKIPPED",
    "resolve_duplicate",
    "ImportProcessor",
    "ExportProcessor",
    "JobPoller",
    "StuckJobRecovery",
    "JobService",
    "ScheduledExportService"
]
