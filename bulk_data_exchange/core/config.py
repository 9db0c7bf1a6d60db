"""
Configuration for the Bulk Data Exchange Pipeline.

Settings come from, in increasing precedence: field defaults, an optional
YAML file, ``BDX_``-prefixed environment variables, and explicit overrides
passed by the caller (the CLI uses these for its global options).
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

MAX_CONCURRENCY = 3
MIN_STUCK_MINUTES = 5
MIN_PREVIEW_ROWS = 5
MAX_PREVIEW_ROWS = 50


class PipelineSettings(BaseSettings):
    """Pipeline settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="BDX_", case_sensitive=False)

    # Storage
    database_url: Optional[str] = None  # in-process store when unset
    storage_root: str = "./bdx-storage"

    # Queue pollers
    import_poll_interval_seconds: float = 2.0
    export_poll_interval_seconds: float = 2.0
    import_concurrency: int = 1
    export_concurrency: int = 1
    shutdown_grace_seconds: float = 30.0

    # Recovery
    stuck_minutes: int = 30

    # Import processing
    progress_batch_size: int = 50
    preview_rows: int = 20
    row_timeout_seconds: float = 30.0

    # Export processing
    export_max_rows: int = 50000

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = 30.0
    scheduler_batch_size: int = 5
    run_history_limit: int = 50

    # History listings
    history_limit: int = 50

    # Mail
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_sender: str = "noreply@localhost"
    smtp_timeout: float = 30.0

    # Module adapters, as "package.module:register" callables
    module_plugins: List[str] = []

    # Logging
    log_level: str = "INFO"
    structured_logs: bool = True

    @field_validator("import_concurrency", "export_concurrency")
    @classmethod
    def _clamp_concurrency(cls, value: int) -> int:
        return max(1, min(MAX_CONCURRENCY, value))

    @field_validator("stuck_minutes")
    @classmethod
    def _floor_stuck_minutes(cls, value: int) -> int:
        return max(MIN_STUCK_MINUTES, value)

    @field_validator("preview_rows")
    @classmethod
    def _clamp_preview_rows(cls, value: int) -> int:
        return max(MIN_PREVIEW_ROWS, min(MAX_PREVIEW_ROWS, value))

    @field_validator("progress_batch_size", "scheduler_batch_size", "export_max_rows", "history_limit", "run_history_limit")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(str(path), str(e))

    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "Top level of the config file must be a mapping")
    # Allow nesting everything under a "pipeline" key
    if isinstance(data.get("pipeline"), dict):
        data = data["pipeline"]
    return data


def load_settings(path: Optional[Union[str, Path]] = None, **overrides: Any) -> PipelineSettings:
    """
    Build settings from a YAML file, the environment and explicit overrides.

    Args:
        path: Optional YAML file
        **overrides: Values that win over every other source; None values are ignored

    Returns:
        Validated PipelineSettings

    Raises:
        ConfigurationError: If the file is unreadable or a value is invalid
    """
    try:
        from_env = PipelineSettings()
        file_values = _read_yaml(path) if path else {}
        merged = {
            **file_values,
            **from_env.model_dump(include=from_env.model_fields_set),
            **{k: v for k, v in overrides.items() if v is not None},
        }
        return PipelineSettings(**merged)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        key = ".".join(str(part) for part in first.get("loc", ())) or "settings"
        raise ConfigurationError(key, first.get("msg", str(e)))
