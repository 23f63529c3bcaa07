"""Protocols (interfaces) for external collaborators of the core."""

from typing import Optional, Protocol


class SecureCredentialStore(Protocol):
    """Secret storage keyed by name (OS keychain or equivalent)."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored secret, or None."""
        ...

    def set(self, key: str, value: str) -> bool:
        """Store a secret. Returns False if it could not be stored."""
        ...

    def delete(self, key: str) -> bool:
        """Remove a secret. Returns False if nothing was removed."""
        ...


class InteractiveAuthorizer(Protocol):
    """Presents the authorization page and returns the callback URL."""

    async def authorize(self, url: str, callback_scheme: str) -> str:
        """
        Run the interactive authorization.

        Raises UserCancelledError when the user aborts, AuthSessionStartError
        when the browser session cannot be started.
        """
        ...

    def cancel(self) -> None:
        """Abort a pending authorization, if any."""
        ...
