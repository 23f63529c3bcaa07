"""
Chat service facade.

Owns the GraphQL client, realtime transport, conversation store and
context service for one signed-in session, and keeps the
aiCompletionResponse subscription alive across reconnects.
"""

from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtCore import QObject, Signal

from core.constants import AI_ACTION_CHAT, COMPLETION_OPERATION_NAME
from core.errors import ChatServiceError
from core.graphql import documents
from core.graphql.client import GraphQLClient
from core.realtime.transport import RealtimeTransport
from core.services.auth_session import AuthSession
from core.services.context_service import ContextService
from core.services.conversation_store import ConversationStore
from core.utils.tasks import spawn

logger = logging.getLogger(__name__)


class ChatService(QObject):
    """Starts and stops chat for the session the AuthSession publishes."""

    started = Signal()
    stopped = Signal()

    def __init__(
        self,
        auth_session: AuthSession,
        graphql_client: Optional[GraphQLClient] = None,
        transport: Optional[RealtimeTransport] = None,
        store: Optional[ConversationStore] = None,
        context_service: Optional[ContextService] = None,
        response_timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.auth_session = auth_session
        self.graphql_client = graphql_client or GraphQLClient(auth_session)
        self.transport = transport or RealtimeTransport(auth_session, parent=self)
        self.store = store or ConversationStore(
            self.graphql_client,
            response_timeout=response_timeout,
            parent=self,
        )
        self.context = context_service or ContextService(
            self.graphql_client,
            auth_session,
            parent=self,
        )

        self._running = False
        self._active_subscription_id: Optional[str] = None

        self.transport.connection_ready.connect(self._on_connection_ready)
        self.auth_session.authenticated_changed.connect(self._on_authenticated_changed)
        self.auth_session.signed_out.connect(self._on_signed_out)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_subscription_id(self) -> Optional[str]:
        return self._active_subscription_id

    # ----- Lifecycle -----

    async def start(self) -> None:
        """Load initial data, then connect the realtime transport."""
        if self._running:
            return
        self._running = True

        await self.load_initial_data()
        if not self._running:
            return

        try:
            await self.transport.connect()
        except ChatServiceError as exc:
            self.store.report_error(exc)
        self.started.emit()

    async def load_initial_data(self) -> None:
        # Failures are already published by the store
        try:
            await self.store.fetch_current_user()
        except ChatServiceError as exc:
            logger.warning("Continuing without current user: %s", exc)
        try:
            await self.store.load_threads()
        except ChatServiceError as exc:
            logger.warning("Continuing without threads: %s", exc)

        self.context.initialize_default_context()
        await self.context.load_context_presets()
        await self.context.load_slash_commands()

    async def stop(self) -> None:
        """Disconnect and drop all conversation state."""
        was_running = self._running
        self._running = False
        self._active_subscription_id = None
        await self.transport.disconnect()
        self.store.clear()
        self.context.clear()
        if was_running:
            self.stopped.emit()

    # ----- Subscriptions -----

    async def setup_subscriptions(self) -> Optional[str]:
        """
        (Re)subscribe to aiCompletionResponse for the current user and
        client subscription id.

        Returns:
            The new subscription id, or None without a current user
        """
        user = self.store.current_user
        if user is None:
            logger.warning("Cannot set up subscriptions: no current user")
            return None

        if self._active_subscription_id:
            await self.transport.unsubscribe(self._active_subscription_id)

        variables = {
            "userId": user.id,
            "aiAction": AI_ACTION_CHAT,
            "clientSubscriptionId": self.store.client_subscription_id,
        }
        self._active_subscription_id = await self.transport.subscribe(
            documents.COMPLETION_SUBSCRIPTION,
            variables,
            COMPLETION_OPERATION_NAME,
            self.store.on_realtime_event,
        )
        logger.info("Completion subscription: %s", self._active_subscription_id)
        return self._active_subscription_id

    async def start_new_conversation(self) -> Optional[str]:
        self.store.start_new_conversation()
        return await self.setup_subscriptions()

    # ----- Signal handlers -----

    def _on_connection_ready(self) -> None:
        spawn(self.setup_subscriptions())

    def _on_authenticated_changed(self, authenticated: bool) -> None:
        if authenticated:
            spawn(self.start())

    def _on_signed_out(self) -> None:
        spawn(self.stop())

