"""Tests for settings repository helpers."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from core.persistence import Database
from core.persistence.settings_repository import SettingsRepository


def test_settings_repository_values(tmp_path: Path) -> None:
    db = Database(tmp_path / "settings.db")
    repo = SettingsRepository(db)

    assert repo.get_value("gitlab_url") == ""
    assert repo.get_value("gitlab_url", "https://gitlab.com") == "https://gitlab.com"

    repo.set("gitlab_url", "https://gitlab.example.com", "auth")
    repo.set("gitlab_url", "https://other.example.com", "auth")
    assert repo.get_value("gitlab_url") == "https://other.example.com"

    assert repo.delete("gitlab_url") is True
    assert repo.delete("missing") is False


def test_settings_repository_collections(tmp_path: Path) -> None:
    db = Database(tmp_path / "settings.db")
    repo = SettingsRepository(db)

    repo.set("gitlab_url", "https://gitlab.example.com", "auth")
    repo.set("gitlab_client_id", "client", "auth")
    repo.set("theme", "dark", "appearance")

    auth_settings = repo.get_by_category("auth")
    assert [setting.key for setting in auth_settings] == ["gitlab_client_id", "gitlab_url"]

    assert repo.delete_by_category("auth") == 2
    assert repo.get_by_category("auth") == []
    assert repo.get_value("theme") == "dark"


def test_settings_repository_datetimes(tmp_path: Path) -> None:
    db = Database(tmp_path / "settings.db")
    repo = SettingsRepository(db)

    expiry = datetime.now(timezone.utc) + timedelta(hours=2)
    repo.set_datetime("gitlab_token_expiry", expiry, "auth")
    assert repo.get_datetime("gitlab_token_expiry") == expiry

    repo.set("naive", "2024-01-01T12:00:00", "auth")
    assert repo.get_datetime("naive") == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    repo.set("garbage", "not a date", "auth")
    assert repo.get_datetime("garbage") is None
    assert repo.get_datetime("missing") is None


def test_settings_persist_across_connections(tmp_path: Path) -> None:
    path = tmp_path / "settings.db"
    SettingsRepository(Database(path)).set("gitlab_client_id", "abc", "auth")

    assert SettingsRepository(Database(path)).get_value("gitlab_client_id") == "abc"
