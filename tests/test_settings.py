"""Tests for CadenceSettings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from cadence.settings import CadenceSettings


class TestCadenceSettings:
    """Test defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CADENCE_DATABASE", raising=False)
        settings = CadenceSettings()

        assert settings.database == Path.home() / ".cadence" / "cadence.db"
        assert settings.timetable_key == "cadence_timetable"
        assert settings.lock_scope == "task"
        assert settings.lock_ttl_seconds == 3600
        assert settings.retry_backoff_seconds == 3660

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CADENCE_DATABASE", str(tmp_path / "c.db"))
        monkeypatch.setenv("CADENCE_LOCK_SCOPE", "pass")
        monkeypatch.setenv("CADENCE_RETRY_BACKOFF_SECONDS", "600")

        settings = CadenceSettings()

        assert settings.database == tmp_path / "c.db"
        assert settings.lock_scope == "pass"
        assert settings.retry_backoff_seconds == 600

    def test_invalid_scope(self):
        with pytest.raises(ValidationError):
            CadenceSettings(lock_scope="node")

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            CadenceSettings(lock_ttl_seconds=0)
