"""
OAuth session management.

AuthSession owns the PKCE sign-in flow, token persistence, silent refresh
and the periodic expiry monitor. State changes are published as Qt signals.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from PySide6.QtCore import Property, QObject, QTimer, Signal

from core.auth.oauth_client import OAuthClient
from core.auth.pkce import (
    build_authorization_url,
    extract_authorization_code,
    generate_pkce_challenge,
)
from core.config import normalize_client_id, normalize_gitlab_url
from core.constants import (
    ACCESS_TOKEN_KEY,
    CLIENT_ID_SETTING,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    GITLAB_URL_SETTING,
    OAUTH_CALLBACK_SCHEME,
    REFRESH_TOKEN_KEY,
    SETTINGS_CATEGORY_AUTH,
    TOKEN_EXPIRY_SETTING,
    TOKEN_EXPIRY_WARNING_SECONDS,
    TOKEN_MONITOR_INTERVAL_MS,
    TOKEN_PROACTIVE_REFRESH_SECONDS,
)
from core.errors import (
    AuthenticationError,
    AuthenticationInProgressError,
    PKCEGenerationError,
    TokenRefreshError,
    UserCancelledError,
)
from core.models import AuthState, AuthTokenState, PKCEChallenge
from core.persistence import SettingsRepository
from core.protocols import InteractiveAuthorizer, SecureCredentialStore
from core.types import TokenResponse
from core.utils.tasks import spawn

logger = logging.getLogger(__name__)


class AuthSession(QObject):
    """
    Authentication session for one GitLab instance.

    States: SIGNED_OUT -> AUTHENTICATING -> SIGNED_IN. A failed or cancelled
    sign-in returns to SIGNED_OUT; sign-out and unrecoverable refresh
    failures leave SIGNED_IN for SIGNED_OUT.
    """

    state_changed = Signal()
    authenticated_changed = Signal(bool)
    token_expiry_warning_changed = Signal(bool)
    authentication_error = Signal(object)
    signed_out = Signal()

    def __init__(
        self,
        credential_store: SecureCredentialStore,
        settings_repository: SettingsRepository,
        authorizer: InteractiveAuthorizer,
        oauth_client: Optional[OAuthClient] = None,
        monitor_interval_ms: int = TOKEN_MONITOR_INTERVAL_MS,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._store = credential_store
        self._settings = settings_repository
        self._authorizer = authorizer
        self._oauth = oauth_client or OAuthClient()

        self._state = AuthState.SIGNED_OUT
        self._tokens: Optional[AuthTokenState] = None
        self._pkce: Optional[PKCEChallenge] = None
        self._token_expiring_soon = False
        self._last_error: Optional[AuthenticationError] = None
        self._refresh_task: Optional[asyncio.Future] = None

        self._monitor = QTimer(self)
        self._monitor.setInterval(monitor_interval_ms)
        self._monitor.timeout.connect(self._on_monitor_tick)

    # ----- Published state -----

    @Property(str, notify=state_changed)
    def state(self) -> str:
        return self._state.value

    @property
    def auth_state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state == AuthState.SIGNED_IN and self._tokens is not None

    @property
    def is_authenticating(self) -> bool:
        return self._state == AuthState.AUTHENTICATING

    @property
    def token_expiring_soon(self) -> bool:
        return self._token_expiring_soon

    @property
    def last_error(self) -> Optional[AuthenticationError]:
        return self._last_error

    @property
    def current_access_token(self) -> Optional[str]:
        if self._tokens is None or not self._tokens.access_token:
            return None
        return self._tokens.access_token

    @property
    def current_base_url(self) -> Optional[str]:
        return self._tokens.gitlab_base_url if self._tokens else None

    @property
    def current_client_id(self) -> Optional[str]:
        return self._tokens.client_id if self._tokens else None

    @property
    def token_state(self) -> Optional[AuthTokenState]:
        return self._tokens

    @property
    def is_monitoring(self) -> bool:
        return self._monitor.isActive()

    # ----- Sign in -----

    async def sign_in(self, base_url: str, client_id: str) -> None:
        """
        Run the interactive OAuth + PKCE flow.

        Raises:
            AuthenticationInProgressError: A sign-in is already running
            AuthenticationError: Any failure of the flow (also published on
                `authentication_error`)
        """
        if self._state == AuthState.AUTHENTICATING:
            raise AuthenticationInProgressError()

        self._last_error = None
        try:
            base_url = normalize_gitlab_url(base_url)
            client_id = normalize_client_id(client_id)
        except AuthenticationError as exc:
            self._publish_error(exc)
            raise

        self._set_state(AuthState.AUTHENTICATING)
        try:
            tokens = await self._run_authorization(base_url, client_id)
        except AuthenticationError as exc:
            self._abandon_sign_in()
            self._publish_error(exc)
            raise
        except asyncio.CancelledError:
            self._abandon_sign_in()
            raise

        self._pkce = None
        self._tokens = self._new_token_state(tokens, base_url, client_id)
        self._store_credentials()
        self._set_state(AuthState.SIGNED_IN)
        self.authenticated_changed.emit(True)
        self._monitor.start()
        logger.info("Signed in to %s", base_url)

    async def _run_authorization(self, base_url: str, client_id: str) -> TokenResponse:
        try:
            pkce = generate_pkce_challenge()
        except (OSError, NotImplementedError) as exc:
            raise PKCEGenerationError(str(exc)) from exc
        self._pkce = pkce

        url = build_authorization_url(base_url, client_id, pkce)
        callback_url = await self._authorizer.authorize(url, OAUTH_CALLBACK_SCHEME)

        # Sign-out while the browser was open discards the attempt
        if self._pkce is not pkce:
            raise UserCancelledError()

        code = extract_authorization_code(callback_url, pkce.state, OAUTH_CALLBACK_SCHEME)
        return await self._oauth.exchange_code(base_url, client_id, code, pkce.verifier)

    def _abandon_sign_in(self) -> None:
        self._pkce = None
        if self._state == AuthState.AUTHENTICATING:
            self._set_state(AuthState.SIGNED_OUT)

    def cancel_sign_in(self) -> None:
        if self._state == AuthState.AUTHENTICATING:
            self._authorizer.cancel()

    # ----- Refresh -----

    async def refresh_if_needed(self) -> bool:
        """
        Refresh the access token when it expires within five minutes.

        Concurrent callers share one refresh request. A failed refresh signs
        the session out and publishes a TokenRefreshError.

        Returns:
            True if the session is authenticated afterwards
        """
        tokens = self._tokens
        if tokens is None:
            return False
        if tokens.seconds_until_expiry() >= TOKEN_EXPIRY_WARNING_SECONDS or not tokens.refresh_token:
            return self.is_authenticated

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh(tokens))
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self, tokens: AuthTokenState) -> bool:
        logger.info("Refreshing access token")
        try:
            response = await self._oauth.refresh(
                tokens.gitlab_base_url,
                tokens.client_id,
                tokens.refresh_token,
            )
        except AuthenticationError as exc:
            error = exc if isinstance(exc, TokenRefreshError) else TokenRefreshError(str(exc))
            logger.error("Token refresh failed: %s", error)
            self.sign_out()
            self._publish_error(error)
            return False

        if self._tokens is not tokens:
            logger.info("Discarding refreshed token: session changed")
            return False

        tokens.access_token = response.access_token
        if response.refresh_token:
            tokens.refresh_token = response.refresh_token
        tokens.expiry = AuthTokenState.expiry_from(
            response.expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS
        )
        self._store_credentials()
        self._set_expiring_soon(False)
        logger.info("Access token refreshed")
        return True

    # ----- Expiry monitor -----

    def _on_monitor_tick(self) -> None:
        spawn(self.check_token_expiry())

    async def check_token_expiry(self) -> None:
        """One expiry-monitor pass: warn, refresh proactively, or sign out."""
        tokens = self._tokens
        if tokens is None or self._state != AuthState.SIGNED_IN:
            return

        remaining = tokens.seconds_until_expiry()
        if remaining <= 0:
            logger.warning("Access token expired, signing out")
            self.sign_out()
            return

        self._set_expiring_soon(remaining < TOKEN_EXPIRY_WARNING_SECONDS)

        if remaining < TOKEN_PROACTIVE_REFRESH_SECONDS and tokens.refresh_token:
            await self.refresh_if_needed()

    # ----- Sign out / restore -----

    def sign_out(self) -> None:
        """Cancel any pending authorization and clear all session state."""
        self._authorizer.cancel()
        self._monitor.stop()

        was_authenticated = self.is_authenticated
        self._clear_stored_credentials()
        self._tokens = None
        self._pkce = None
        self._last_error = None
        self._set_expiring_soon(False)
        self._set_state(AuthState.SIGNED_OUT)

        if was_authenticated:
            self.authenticated_changed.emit(False)
        self.signed_out.emit()
        logger.info("Signed out")

    def restore_session(self) -> bool:
        """
        Load persisted credentials at start-up.

        Returns:
            True if an unexpired access token was restored
        """
        access_token = self._store.get(ACCESS_TOKEN_KEY)
        refresh_token = self._store.get(REFRESH_TOKEN_KEY)
        base_url = self._settings.get_value(GITLAB_URL_SETTING)
        client_id = self._settings.get_value(CLIENT_ID_SETTING)
        expiry = self._settings.get_datetime(TOKEN_EXPIRY_SETTING)

        if not access_token or not base_url or expiry is None:
            self._clear_stored_credentials()
            return False

        tokens = AuthTokenState(
            access_token=access_token,
            expiry=expiry,
            gitlab_base_url=base_url,
            client_id=client_id,
            refresh_token=refresh_token or None,
        )
        if tokens.seconds_until_expiry() <= 0:
            logger.info("Stored token has expired")
            self._clear_stored_credentials()
            return False

        self._tokens = tokens
        self._set_state(AuthState.SIGNED_IN)
        self.authenticated_changed.emit(True)
        self._monitor.start()
        logger.info("Restored session for %s", base_url)
        return True

    # ----- Helpers -----

    @staticmethod
    def _new_token_state(
        response: TokenResponse,
        base_url: str,
        client_id: str,
    ) -> AuthTokenState:
        return AuthTokenState(
            access_token=response.access_token,
            expiry=AuthTokenState.expiry_from(
                response.expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS
            ),
            gitlab_base_url=base_url,
            client_id=client_id,
            refresh_token=response.refresh_token,
        )

    def _store_credentials(self) -> None:
        tokens = self._tokens
        if tokens is None:
            return
        if not self._store.set(ACCESS_TOKEN_KEY, tokens.access_token):
            logger.warning("Access token could not be persisted")
        if tokens.refresh_token:
            self._store.set(REFRESH_TOKEN_KEY, tokens.refresh_token)
        else:
            self._store.delete(REFRESH_TOKEN_KEY)

        self._settings.set(GITLAB_URL_SETTING, tokens.gitlab_base_url, SETTINGS_CATEGORY_AUTH)
        self._settings.set(CLIENT_ID_SETTING, tokens.client_id, SETTINGS_CATEGORY_AUTH)
        self._settings.set_datetime(TOKEN_EXPIRY_SETTING, tokens.expiry, SETTINGS_CATEGORY_AUTH)

    def _clear_stored_credentials(self) -> None:
        self._store.delete(ACCESS_TOKEN_KEY)
        self._store.delete(REFRESH_TOKEN_KEY)
        self._settings.delete(TOKEN_EXPIRY_SETTING)

    def _set_state(self, state: AuthState) -> None:
        if self._state == state:
            return
        self._state = state
        self.state_changed.emit()

    def _set_expiring_soon(self, value: bool) -> None:
        if self._token_expiring_soon == value:
            return
        self._token_expiring_soon = value
        self.token_expiry_warning_changed.emit(value)

    def _publish_error(self, error: AuthenticationError) -> None:
        self._last_error = error
        logger.error("Authentication error: %s", error)
        self.authentication_error.emit(error)
