from helpshelf.domain.progress_repository import (
    InMemoryProgressRepository,
    ProgressRepository,
    SqlProgressRepository,
)

__all__ = [
    "InMemoryProgressRepository",
    "ProgressRepository",
    "SqlProgressRepository",
]
