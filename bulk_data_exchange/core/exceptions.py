"""
Exception classes for the Bulk Data Exchange Pipeline

Provides the error taxonomy shared by submission calls, processors and the
job store. Structural errors are raised to callers synchronously; errors
encountered during asynchronous processing are recorded on job records.
"""

from typing import Optional, Dict, Any, List


class BulkDataExchangeError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class InvalidInputError(BulkDataExchangeError):
    """Raised when an upload or request payload is empty or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message,
            error_code="INVALID_INPUT",
            details={"field": field}
        )


class UnsupportedModuleError(BulkDataExchangeError):
    """Raised when a module key is unknown or has no registered adapter."""

    def __init__(self, module: str):
        super().__init__(
            f"Unsupported module: {module}",
            error_code="UNSUPPORTED_MODULE",
            details={"module": module}
        )


class MissingRequiredMappingError(BulkDataExchangeError):
    """Raised at submission time when required columns are not mapped."""

    def __init__(self, missing: List[str], kind: str = "mappings"):
        super().__init__(
            f"Missing required {kind}: {', '.join(missing)}",
            error_code="MISSING_REQUIRED_MAPPING",
            details={"missing": list(missing), "kind": kind}
        )


class RowError(BulkDataExchangeError):
    """
    Raised for a single row that cannot be coerced or applied.

    Row errors are collected on the import job and never abort it.
    """

    def __init__(self, message: str, row_number: Optional[int] = None, field: Optional[str] = None):
        super().__init__(
            message,
            error_code="ROW_ERROR",
            details={"row_number": row_number, "field": field}
        )
        self.row_number = row_number
        self.field = field


class DuplicateKeyError(RowError):
    """Raised by row appliers under the ``error`` duplicate strategy."""

    def __init__(self, key_name: str, key_value: Any, row_number: Optional[int] = None):
        super().__init__(f"Duplicate {key_name}: {key_value}", row_number=row_number, field=key_name)
        self.error_code = "DUPLICATE_KEY"
        self.details["value"] = str(key_value)


class JobNotFoundError(BulkDataExchangeError):
    """Raised when a job or definition does not exist or is not visible to the caller."""

    def __init__(self, job_id: str, kind: str = "job"):
        super().__init__(
            f"{kind.replace('_', ' ').capitalize()} {job_id} not found",
            error_code="JOB_NOT_FOUND",
            details={"job_id": job_id, "kind": kind}
        )


class NotAuthorizedError(JobNotFoundError):
    """
    Raised when the caller does not own a record.

    Subclasses JobNotFoundError so that callers surface it as not-found and
    never leak the existence of other users' jobs.
    """


class InvalidScheduleError(BulkDataExchangeError):
    """Raised when a schedule expression cannot be parsed."""

    def __init__(self, schedule: str, message: str):
        super().__init__(
            f"Invalid schedule: {message}",
            error_code="INVALID_SCHEDULE",
            details={"schedule": schedule}
        )


class ExportNotReadyError(BulkDataExchangeError):
    """Raised when a download is requested for an export that has not completed."""

    def __init__(self, job_id: str, status: Optional[str] = None):
        super().__init__(
            "Export is not ready",
            error_code="EXPORT_NOT_READY",
            details={"job_id": job_id, "status": status}
        )


class StorageFailureError(BulkDataExchangeError):
    """Raised when an artifact cannot be written, read or removed."""

    def __init__(self, operation: str, message: str, key: Optional[str] = None):
        super().__init__(
            f"Storage operation '{operation}' failed: {message}",
            error_code="STORAGE_FAILURE",
            details={"operation": operation, "key": key}
        )


class DatabaseError(BulkDataExchangeError):
    """Raised when job store operations fail."""

    def __init__(self, operation: str, message: str, table: Optional[str] = None):
        super().__init__(
            f"Database operation '{operation}' failed: {message}",
            error_code="DATABASE_ERROR",
            details={"operation": operation, "table": table}
        )


class ConfigurationError(BulkDataExchangeError):
    """Raised when there's an error in configuration."""

    def __init__(self, config_key: str, message: str):
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            error_code="CONFIGURATION_ERROR",
            details={"config_key": config_key}
        )


class PipelineError(BulkDataExchangeError):
    """Raised when supervisor-level operations fail."""

    def __init__(self, message: str):
        super().__init__(
            f"Pipeline error: {message}",
            error_code="PIPELINE_ERROR"
        )
