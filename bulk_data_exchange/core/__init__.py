"""
Core package for the Bulk Data Exchange Pipeline

Contains configuration and the exception taxonomy. The pipeline supervisor
lives in ``core.pipeline``.
"""

from .config import PipelineSettings, load_settings
from .exceptions import (
    BulkDataExchangeError,
    InvalidInputError,
    UnsupportedModuleError,
    MissingRequiredMappingError,
    RowError,
    DuplicateKeyError,
    JobNotFoundError,
    NotAuthorizedError,
    InvalidScheduleError,
    ExportNotReadyError,
    StorageFailureError,
    DatabaseError,
    ConfigurationError,
    PipelineError
)

__all__ = [
    "PipelineSettings",
    "load_settings",
    "BulkDataExchangeError",
    "InvalidInputError",
    "UnsupportedModuleError",
    "MissingRequiredMappingError",
    "RowError",
    "DuplicateKeyError",
    "JobNotFoundError",
    "NotAuthorizedError",
    "InvalidScheduleError",
    "ExportNotReadyError",
    "StorageFailureError",
    "DatabaseError",
    "ConfigurationError",
    "PipelineError"
]
