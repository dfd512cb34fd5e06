"""Tests for API dependency builders."""

import pytest

from helpshelf.api.deps import build_repository, build_session_binder
from helpshelf.domain.progress_repository import (
    InMemoryProgressRepository,
    SqlProgressRepository,
)


class TestBuildRepository:
    def test_memory_backend(self, monkeypatch):
        from helpshelf.config import settings

        monkeypatch.setattr(settings, "persistence_backend", "memory")
        assert isinstance(build_repository(), InMemoryProgressRepository)

    def test_sql_backend(self, monkeypatch):
        from helpshelf.config import settings

        monkeypatch.setattr(settings, "persistence_backend", "sql")
        assert isinstance(build_repository(), SqlProgressRepository)


class TestBuildSessionBinder:
    @pytest.mark.asyncio
    async def test_uses_given_repository(self):
        repository = InMemoryProgressRepository()

        binder = build_session_binder(repository)

        assert binder.store.repository is repository
        assert binder.driver.store is binder.store
