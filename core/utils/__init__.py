"""Utilities package for Duo Desk."""

from core.utils.dates import parse_timestamp
from core.utils.tasks import spawn

__all__ = [
    "parse_timestamp",
    "spawn",
]
