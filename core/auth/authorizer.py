"""Browser-based interactive authorization."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Callable, Optional
from urllib.parse import urlsplit

from core.errors import (
    AuthSessionError,
    AuthSessionStartError,
    NoCallbackURLError,
    UserCancelledError,
)

logger = logging.getLogger(__name__)


class BrowserAuthorizer:
    """
    Opens the authorization page in the system browser and waits for the
    redirect to come back through the app's custom URL scheme.

    The platform URL-scheme handler hands the redirect to
    `deliver_callback()`, which resolves the pending `authorize()` call.
    """

    def __init__(self, open_url: Optional[Callable[[str], bool]] = None):
        self._open_url = open_url or webbrowser.open
        self._pending: Optional[asyncio.Future[str]] = None
        self._callback_scheme: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def authorize(self, url: str, callback_scheme: str) -> str:
        if self.is_pending:
            raise AuthSessionError("another authorization is already pending")

        loop = asyncio.get_running_loop()
        pending: asyncio.Future[str] = loop.create_future()
        self._pending = pending
        self._callback_scheme = callback_scheme

        try:
            try:
                opened = self._open_url(url)
            except webbrowser.Error as exc:
                raise AuthSessionStartError(str(exc)) from exc
            if not opened:
                raise AuthSessionStartError()

            logger.info("Waiting for OAuth callback on %s://", callback_scheme)
            return await pending
        finally:
            if self._pending is pending:
                self._pending = None
                self._callback_scheme = None

    def deliver_callback(self, callback_url: Optional[str]) -> bool:
        """
        Resolve the pending authorization with the redirect URL.

        Returns:
            True if a pending authorization consumed the URL
        """
        if not self.is_pending:
            logger.warning("Ignoring OAuth callback: no authorization in progress")
            return False

        if not callback_url:
            self._pending.set_exception(NoCallbackURLError())
            return True

        if urlsplit(callback_url).scheme != self._callback_scheme:
            logger.warning("Ignoring callback with unexpected scheme")
            return False

        self._pending.set_result(callback_url)
        return True

    def cancel(self) -> None:
        if self.is_pending:
            self._pending.set_exception(UserCancelledError())
