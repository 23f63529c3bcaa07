"""Persistence package exports."""

from .database import Database
from .settings_repository import SettingsRepository

__all__ = [
    "Database",
    "SettingsRepository",
]
