"""Settings repository implementation."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from core.models import Setting
from .database import Database

_COLUMNS = "key, value, category, updated_at"


def _to_setting(row: sqlite3.Row) -> Setting:
    return Setting(
        key=row["key"],
        value=row["value"],
        category=row["category"],
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SettingsRepository:
    """
    Key/value settings grouped by category.

    The auth category holds the GitLab URL, the OAuth application ID and
    the token expiry; secrets never go here.
    """

    def __init__(self, database: Database):
        self._db = database

    def get(self, key: str) -> Optional[Setting]:
        row = self._db.get_connection().execute(
            f"SELECT {_COLUMNS} FROM settings WHERE key = ?",
            (key,),
        ).fetchone()
        return _to_setting(row) if row is not None else None

    def get_by_category(self, category: str) -> list[Setting]:
        rows = self._db.get_connection().execute(
            f"SELECT {_COLUMNS} FROM settings WHERE category = ? ORDER BY key",
            (category,),
        ).fetchall()
        return [_to_setting(row) for row in rows]

    def set(self, key: str, value: str, category: str) -> Setting:
        setting = Setting(key=key, value=value, category=category)
        with self._db.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO settings ({_COLUMNS}) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    category = excluded.category,
                    updated_at = excluded.updated_at
                """,
                (key, value, category, setting.updated_at.isoformat()),
            )
        return setting

    def delete(self, key: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def delete_by_category(self, category: str) -> int:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM settings WHERE category = ?", (category,))
        return cursor.rowcount

    # ----- Typed accessors -----

    def get_value(self, key: str, default: str = "") -> str:
        setting = self.get(key)
        return setting.value if setting else default

    def get_datetime(self, key: str) -> Optional[datetime]:
        """ISO-8601 value as an aware datetime; naive values are taken as UTC."""
        value = self.get_value(key)
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    def set_datetime(self, key: str, value: datetime, category: str) -> Setting:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return self.set(key, value.isoformat(), category)
