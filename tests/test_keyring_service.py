"""
Unit tests for KeyringService.

Tests token storage against an in-memory keyring backend.
"""

from unittest.mock import patch

import pytest
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import KeyringError, PasswordDeleteError

from core.constants import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY
from core.infrastructure import keyring_service
from core.infrastructure.keyring_service import KeyringService


class MemoryBackend:
    """Dict-backed stand-in for a keyring backend."""

    def __init__(self):
        self.storage = {}

    def get_password(self, service, name):
        return self.storage.get((service, name))

    def set_password(self, service, name, value):
        self.storage[(service, name)] = value

    def delete_password(self, service, name):
        if (service, name) not in self.storage:
            raise PasswordDeleteError("Password not found")
        del self.storage[(service, name)]


class BrokenBackend(MemoryBackend):
    def get_password(self, service, name):
        raise KeyringError("locked")

    def set_password(self, service, name, value):
        raise KeyringError("locked")


class TestKeyringService:
    """Tests for KeyringService class."""

    @pytest.fixture
    def backend(self):
        return MemoryBackend()

    @pytest.fixture
    def service(self, backend):
        return KeyringService(backend=backend)

    def test_set_and_get(self, service):
        assert service.set(ACCESS_TOKEN_KEY, "token-123")
        assert service.get(ACCESS_TOKEN_KEY) == "token-123"

    def test_get_not_found(self, service):
        assert service.get(ACCESS_TOKEN_KEY) is None

    def test_has(self, service):
        assert not service.has(REFRESH_TOKEN_KEY)
        service.set(REFRESH_TOKEN_KEY, "refresh")
        assert service.has(REFRESH_TOKEN_KEY)

    def test_delete(self, service):
        service.set(ACCESS_TOKEN_KEY, "token")
        assert service.delete(ACCESS_TOKEN_KEY)
        assert not service.has(ACCESS_TOKEN_KEY)

    def test_delete_nonexistent(self, service):
        assert not service.delete(ACCESS_TOKEN_KEY)

    def test_short_names_map_to_stored_keys(self, service, backend):
        service.set("access_token", "abc")
        assert backend.storage[("duo_desk", ACCESS_TOKEN_KEY)] == "abc"
        assert service.get(ACCESS_TOKEN_KEY) == "abc"

    def test_custom_service_name(self, backend):
        KeyringService(service_name="other", backend=backend).set(ACCESS_TOKEN_KEY, "x")
        assert ("other", ACCESS_TOKEN_KEY) in backend.storage

    def test_clear_all(self, service):
        service.set(ACCESS_TOKEN_KEY, "a")
        service.set(REFRESH_TOKEN_KEY, "r")
        service.clear_all()
        assert service.get(ACCESS_TOKEN_KEY) is None
        assert service.get(REFRESH_TOKEN_KEY) is None

    def test_backend_errors_are_reported_as_failures(self):
        service = KeyringService(backend=BrokenBackend())

        assert not service.set(ACCESS_TOKEN_KEY, "token")
        assert service.get(ACCESS_TOKEN_KEY) is None


class TestBackendDiscovery:
    def test_fail_backend_is_unavailable(self):
        with patch("core.infrastructure.keyring_service.keyring.get_keyring", return_value=FailKeyring()):
            svc = KeyringService()

            assert not svc.is_available
            assert not svc.set(ACCESS_TOKEN_KEY, "token")
            assert svc.get(ACCESS_TOKEN_KEY) is None
            assert not svc.delete(ACCESS_TOKEN_KEY)

    def test_discovery_error_is_unavailable(self):
        with patch(
            "core.infrastructure.keyring_service.keyring.get_keyring",
            side_effect=RuntimeError("no dbus"),
        ):
            assert not KeyringService().is_available

    def test_discovered_backend_is_used(self):
        backend = MemoryBackend()
        with patch("core.infrastructure.keyring_service.keyring.get_keyring", return_value=backend) as get:
            svc = KeyringService()
            svc.set(ACCESS_TOKEN_KEY, "token")
            svc.get(ACCESS_TOKEN_KEY)

        assert get.call_count == 1
        assert backend.storage[("duo_desk", ACCESS_TOKEN_KEY)] == "token"


class TestKeyringServiceSingleton:
    def test_get_keyring_service_returns_same_instance(self):
        keyring_service._keyring_service = None
        first = keyring_service.get_keyring_service()
        second = keyring_service.get_keyring_service()
        assert first is second
        keyring_service._keyring_service = None
