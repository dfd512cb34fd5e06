"""Configuration package."""

from helpshelf.config.settings import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
