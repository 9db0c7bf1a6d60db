"""
Scheduled export models for the Bulk Data Exchange Pipeline

A ScheduledExport is a recurring definition; each firing appends one
ScheduledExportRun. Runs are audit history and outlive their definition.
"""

from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from .job import utcnow, _iso, _parse_dt


class RunStatus(Enum):
    """Lifecycle of one scheduled firing."""
    PROCESSING = "processing"
    EXPORTING = "exporting"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class ScheduledExport:
    """Recurring export-and-email definition."""

    id: str
    name: str
    module: str
    created_by: str
    schedule: str
    columns: List[str] = field(default_factory=list)
    recipients: List[str] = field(default_factory=list)
    filters: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    format: str = "csv"
    is_active: bool = True
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_run_at is not None and self.next_run_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "module": self.module,
            "created_by": self.created_by,
            "schedule": self.schedule,
            "columns": list(self.columns),
            "recipients": list(self.recipients),
            "filters": self.filters,
            "context": self.context,
            "format": self.format,
            "is_active": self.is_active,
            "last_run_at": _iso(self.last_run_at),
            "next_run_at": _iso(self.next_run_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledExport":
        data = dict(data)
        for field_name in ["last_run_at", "next_run_at", "created_at"]:
            data[field_name] = _parse_dt(data.get(field_name))
        data["columns"] = list(data.get("columns") or [])
        data["recipients"] = list(data.get("recipients") or [])
        data["filters"] = data.get("filters") or {}
        data["context"] = data.get("context") or {}
        return cls(**data)


@dataclass
class ScheduledExportRun:
    """One firing of a scheduled export."""

    id: str
    scheduled_export_id: str
    status: RunStatus = RunStatus.PROCESSING
    export_job_id: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scheduled_export_id": self.scheduled_export_id,
            "status": self.status.value,
            "export_job_id": self.export_job_id,
            "error_message": self.error_message,
            "sent_at": _iso(self.sent_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledExportRun":
        data = dict(data)
        for field_name in ["sent_at", "created_at"]:
            data[field_name] = _parse_dt(data.get(field_name))
        data["status"] = RunStatus(data["status"])
        return cls(**data)
