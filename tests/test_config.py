"""
Tests for pipeline settings.
"""

import pytest
import yaml

from bulk_data_exchange.core.config import PipelineSettings, load_settings
from bulk_data_exchange.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("BDX_DATABASE_URL", "BDX_IMPORT_CONCURRENCY", "BDX_LOG_LEVEL", "BDX_STUCK_MINUTES"):
        monkeypatch.delenv(name, raising=False)


class TestPipelineSettings:

    def test_defaults(self):
        settings = PipelineSettings()
        assert settings.database_url is None
        assert settings.import_concurrency == 1
        assert settings.stuck_minutes == 30
        assert settings.scheduler_interval_seconds == 30.0

    def test_bounds_are_clamped(self):
        settings = PipelineSettings(import_concurrency=8, export_concurrency=0, stuck_minutes=1, preview_rows=500)
        assert settings.import_concurrency == 3
        assert settings.export_concurrency == 1
        assert settings.stuck_minutes == 5
        assert settings.preview_rows == 50

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("BDX_IMPORT_CONCURRENCY", "2")
        monkeypatch.setenv("BDX_LOG_LEVEL", "debug")

        settings = PipelineSettings()

        assert settings.import_concurrency == 2
        assert settings.log_level == "DEBUG"


class TestLoadSettings:

    def test_yaml_file_with_pipeline_section(self, tmp_path):
        path = tmp_path / "bdx.yaml"
        path.write_text(yaml.safe_dump({"pipeline": {"stuck_minutes": 45, "storage_root": "/data/bdx"}}))

        settings = load_settings(path)

        assert settings.stuck_minutes == 45
        assert settings.storage_root == "/data/bdx"

    def test_precedence(self, tmp_path, monkeypatch):
        path = tmp_path / "bdx.yaml"
        path.write_text(yaml.safe_dump({"stuck_minutes": 45, "log_level": "warning", "database_url": "postgresql://file"}))
        monkeypatch.setenv("BDX_STUCK_MINUTES", "60")

        settings = load_settings(path, database_url="postgresql://override", log_level=None)

        assert settings.stuck_minutes == 60
        assert settings.log_level == "WARNING"
        assert settings.database_url == "postgresql://override"

    def test_invalid_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(progress_batch_size=0)
        assert exc_info.value.details["config_key"] == "progress_batch_size"

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(tmp_path / "missing.yaml")

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)
