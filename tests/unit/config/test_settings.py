"""Unit tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from helpshelf.config import Settings


class TestSettings:
    """Defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        for name in ("PERSISTENCE_BACKEND", "STALL_TIMEOUT_MINUTES", "MAX_RESTARTS"):
            monkeypatch.delenv(name, raising=False)

        config = Settings(_env_file=None)

        assert config.persistence_backend == "memory"
        assert config.stall_timeout_minutes == 10
        assert config.default_eta_seconds == 120
        assert config.max_restarts == 3
        assert config.poll_interval_seconds == 2
        assert config.session_ttl_hours == 0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PERSISTENCE_BACKEND", "sql")
        monkeypatch.setenv("STALL_TIMEOUT_MINUTES", "3")
        monkeypatch.setenv("max_concurrent_analyses", "2")

        config = Settings(_env_file=None)

        assert config.persistence_backend == "sql"
        assert config.stall_timeout_minutes == 3
        assert config.max_concurrent_analyses == 2

    def test_rejects_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("PERSISTENCE_BACKEND", "redis")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
