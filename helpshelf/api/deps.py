"""Request dependencies for the onboarding API.

The binder and collaborator set are built once in the app lifespan and kept
on app.state; tests replace them through app.dependency_overrides.
"""

from fastapi import Request

from helpshelf.config import settings
from helpshelf.core.database import async_session_maker
from helpshelf.domain.progress_repository import (
    InMemoryProgressRepository,
    ProgressRepository,
    SqlProgressRepository,
)
from helpshelf.services.collaborators import AnalysisCollaborators
from helpshelf.services.progress import ProgressStore
from helpshelf.services.session_binder import SessionBinder


def build_repository() -> ProgressRepository:
    """Repository for the configured persistence backend."""
    if settings.persistence_backend == "sql":
        return SqlProgressRepository(async_session_maker)
    return InMemoryProgressRepository()


def build_session_binder(repository: ProgressRepository | None = None) -> SessionBinder:
    store = ProgressStore(repository if repository is not None else build_repository())
    return SessionBinder(store)


def get_session_binder(request: Request) -> SessionBinder:
    return request.app.state.session_binder


def get_collaborators(request: Request) -> AnalysisCollaborators:
    return request.app.state.collaborators
