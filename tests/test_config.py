"""
Tests for settings loading.
"""

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from condition_transparency.config import ENV_PREFIX, TransparencySettings, load_settings


@pytest.fixture
def clean_env(monkeypatch):
    """Strip transparency variables from the environment."""
    for name in TransparencySettings.model_fields:
        monkeypatch.delenv(f"{ENV_PREFIX}{name.upper()}", raising=False)
    return monkeypatch


class TestTransparencySettings:
    """Tests for TransparencySettings validation."""

    def test_defaults(self):
        settings = TransparencySettings()
        assert settings.critical_threshold == 2
        assert settings.warning_threshold == 4
        assert settings.share_default_ttl_days == 14
        assert settings.data_dir is None
        assert settings.export_dir is None
        assert set(settings.share_presets) == {"one_shot_preview", "extended_allies", "evergreen_scouting"}

    def test_warning_below_critical_rejected(self):
        with pytest.raises(ValidationError):
            TransparencySettings(critical_threshold=5, warning_threshold=3)

    def test_empty_data_dir_is_none(self):
        assert TransparencySettings(data_dir="  ").data_dir is None

    def test_export_dir_under_data_dir(self, tmp_path):
        settings = TransparencySettings(data_dir=tmp_path)
        assert settings.export_dir == tmp_path / "exports" / "condition-transparency"

    def test_invalid_export_format(self):
        with pytest.raises(ValidationError):
            TransparencySettings(default_export_format="xml")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_reads_environment(self, clean_env):
        clean_env.setenv(f"{ENV_PREFIX}SUMMARY_CACHE_TTL", "60")
        clean_env.setenv(f"{ENV_PREFIX}ESCALATION_DEBOUNCE_SECONDS", "1.5")
        clean_env.setenv(f"{ENV_PREFIX}DATA_DIR", "/var/lib/transparency")

        settings = load_settings()
        assert settings.summary_cache_ttl == 60
        assert settings.escalation_debounce_seconds == 1.5
        assert settings.data_dir == Path("/var/lib/transparency")

    def test_overrides_win(self, clean_env):
        clean_env.setenv(f"{ENV_PREFIX}CRITICAL_THRESHOLD", "1")
        settings = load_settings(critical_threshold=3)
        assert settings.critical_threshold == 3

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "transparency.env"
        env_file.write_text(f"{ENV_PREFIX}TIMELINE_LIMIT=7\n", encoding="utf-8")
        try:
            assert load_settings(env_file=str(env_file)).timeline_limit == 7
        finally:
            os.environ.pop(f"{ENV_PREFIX}TIMELINE_LIMIT", None)

    def test_invalid_value(self, clean_env):
        clean_env.setenv(f"{ENV_PREFIX}SUMMARY_CACHE_TTL", "soon")
        with pytest.raises(ValidationError):
            load_settings()
