"""Shared fixtures for the test suite."""

from pathlib import Path

import pytest

from core.persistence import Database, SettingsRepository
from tests.fakes import FakeCredentialStore, StubAuthSession


@pytest.fixture(autouse=True)
def _qt_application(qapp):
    """Signals and timers need a QApplication instance."""
    yield qapp


@pytest.fixture
def credential_store() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def settings_repository(tmp_path: Path) -> SettingsRepository:
    return SettingsRepository(Database(tmp_path / "settings.db"))


@pytest.fixture
def stub_auth() -> StubAuthSession:
    return StubAuthSession()
