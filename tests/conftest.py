"""Root conftest: shared fixtures for all onboarding tests.

Provides:
- In-memory repository, progress store and session binder
- Counting stub collaborators
- API client with dependency overrides (no lifespan, no scheduler)
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from helpshelf.domain.progress_repository import InMemoryProgressRepository
from helpshelf.services.progress import ProgressStore
from helpshelf.services.session_binder import SessionBinder

from tests.helpers.stub_collaborators import CountingCollaborators


@pytest.fixture
def repository() -> InMemoryProgressRepository:
    return InMemoryProgressRepository()


@pytest.fixture
def store(repository: InMemoryProgressRepository) -> ProgressStore:
    return ProgressStore(repository)


@pytest.fixture
async def binder(store: ProgressStore):
    """Session binder over the in-memory store; in-flight runs cancelled on teardown."""
    session_binder = SessionBinder(store, max_restarts=3, max_concurrent_analyses=10)
    yield session_binder
    await session_binder.shutdown()


@pytest.fixture
def stub() -> CountingCollaborators:
    return CountingCollaborators()


@pytest.fixture
async def api_client(binder: SessionBinder, stub: CountingCollaborators):
    """HTTP client against the app with binder and collaborators overridden."""
    from helpshelf.api.deps import get_collaborators, get_session_binder
    from helpshelf.main import app

    app.dependency_overrides[get_session_binder] = lambda: binder
    app.dependency_overrides[get_collaborators] = lambda: stub.as_collaborators()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
