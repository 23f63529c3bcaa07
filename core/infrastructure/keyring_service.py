"""
Secure token storage backed by the OS keyring.

Access and refresh tokens live in the system's credential manager
(GNOME Keyring, macOS Keychain, Windows Credential Locker); everything
non-secret goes to the settings database instead.
"""

import logging
from typing import Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import KeyringError, PasswordDeleteError

from core.constants import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY

logger = logging.getLogger(__name__)


class KeyringService:
    """
    SecureCredentialStore on top of a keyring backend.

    The backend is discovered on first use unless one is passed in. When
    only the fail backend is available every write returns False and
    every read returns None, so the session simply is not persisted.
    """

    SERVICE_NAME = "duo_desk"

    # Short aliases accepted in place of the stored key names
    ALIASES = {
        "access_token": ACCESS_TOKEN_KEY,
        "refresh_token": REFRESH_TOKEN_KEY,
    }

    def __init__(
        self,
        service_name: Optional[str] = None,
        backend: Optional[KeyringBackend] = None,
    ) -> None:
        self._service_name = service_name or self.SERVICE_NAME
        self._backend = backend
        self._available: Optional[bool] = None if backend is None else True

    @property
    def is_available(self) -> bool:
        """True once a usable (non-fail) backend has been found."""
        if self._available is None:
            self._available = self._discover_backend()
        return self._available

    def _discover_backend(self) -> bool:
        try:
            backend = keyring.get_keyring()
        except Exception as e:
            logger.warning("Failed to initialize keyring: %s", e)
            return False

        if isinstance(backend, FailKeyring):
            logger.warning(
                "No secure keyring backend available. "
                "Tokens will not survive a restart; install a backend "
                "such as 'keyrings.alt' on headless systems."
            )
            return False

        logger.debug("Using keyring backend: %s", type(backend).__name__)
        self._backend = backend
        return True

    def _resolve(self, key: str) -> str:
        return self.ALIASES.get(key.lower(), key)

    # ----- SecureCredentialStore -----

    def get(self, key: str) -> Optional[str]:
        if not self.is_available:
            return None
        try:
            value = self._backend.get_password(self._service_name, self._resolve(key))
        except KeyringError as e:
            logger.warning("Failed to read %s from keyring: %s", key, e)
            return None
        return value or None

    def set(self, key: str, value: str) -> bool:
        if not self.is_available:
            logger.warning("Keyring not available, %s not stored", key)
            return False
        name = self._resolve(key)
        try:
            self._backend.set_password(self._service_name, name, value)
        except KeyringError as e:
            logger.error("Failed to store %s: %s", name, e)
            return False
        logger.debug("Stored credential: %s", name)
        return True

    def delete(self, key: str) -> bool:
        if not self.is_available:
            return False
        name = self._resolve(key)
        try:
            self._backend.delete_password(self._service_name, name)
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            logger.warning("Failed to delete %s: %s", name, e)
            return False
        logger.debug("Deleted credential: %s", name)
        return True

    # ----- Convenience -----

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def clear_all(self) -> None:
        """Remove both tokens."""
        for key in self.ALIASES.values():
            self.delete(key)


_keyring_service: Optional[KeyringService] = None


def get_keyring_service() -> KeyringService:
    """Shared KeyringService used by the application."""
    global _keyring_service
    if _keyring_service is None:
        _keyring_service = KeyringService()
    return _keyring_service
