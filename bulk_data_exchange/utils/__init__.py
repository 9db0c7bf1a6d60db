"""
Utilities package for the Bulk Data Exchange Pipeline

Contains the job stores, artifact storage, the CSV codec, coercion, schedule
grammar, mail delivery and logging.
"""

from .database import DatabaseManager
from .memory_store import InMemoryJobStore
from .job_store import JobStore
from .storage import LocalArtifactStorage, StoredArtifact
from .mailer import SmtpMailer, OutgoingEmail, EmailAttachment
from .logger import setup_logger, get_logger, set_log_context, LoggerContext

__all__ = [
    "DatabaseManager",
    "InMemoryJobStore",
    "JobStore",
    "LocalArtifactStorage",
    "StoredArtifact",
    "SmtpMailer",
    "OutgoingEmail",
    "EmailAttachment",
    "setup_logger",
    "get_logger",
    "set_log_context",
    "LoggerContext"
]
