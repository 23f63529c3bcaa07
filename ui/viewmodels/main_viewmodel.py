"""Main ViewModel coordinating the application state."""

from __future__ import annotations

import logging
from typing import Any, Coroutine, Optional

from PySide6.QtCore import Property, QObject, QUrl, Signal, Slot

from core.auth.authorizer import BrowserAuthorizer
from core.constants import TEMP_THREAD_PREFIX
from core.errors import AuthenticationError, ChatServiceError
from core.models import ChatMessage
from core.services.auth_session import AuthSession
from core.services.chat_service import ChatService
from core.utils.tasks import spawn

logger = logging.getLogger(__name__)


class MainViewModel(QObject):
    """Binds the auth session and chat service for the presentation layer."""

    error_occurred = Signal(str)
    error_message_changed = Signal()
    selected_thread_changed = Signal()
    messages_changed = Signal()
    authenticated_changed = Signal(bool)
    token_warning_changed = Signal(bool)

    def __init__(
        self,
        auth_session: AuthSession,
        chat_service: ChatService,
        authorizer: Optional[BrowserAuthorizer] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.auth_session = auth_session
        self.chat_service = chat_service
        self.authorizer = authorizer

        self._selected_thread_id = ""
        self._error_message = ""
        self._connect_signals()

    def _connect_signals(self) -> None:
        store = self.chat_service.store
        store.error_occurred.connect(self._on_error)
        store.messages_changed.connect(self._on_messages_changed)
        store.thread_created.connect(self._on_thread_created)
        store.thread_deleted.connect(self._on_thread_deleted)

        self.auth_session.authentication_error.connect(self._on_error)
        self.auth_session.authenticated_changed.connect(self.authenticated_changed.emit)
        self.auth_session.token_expiry_warning_changed.connect(self.token_warning_changed.emit)
        self.auth_session.signed_out.connect(self._on_signed_out)

    # ----- Properties -----

    @Property(str, notify=selected_thread_changed)
    def selected_thread_id(self) -> str:
        return self._selected_thread_id

    @Property(str, notify=error_message_changed)
    def error_message(self) -> str:
        return self._error_message

    @Property(bool, notify=authenticated_changed)
    def is_authenticated(self) -> bool:
        return self.auth_session.is_authenticated

    @property
    def messages(self) -> list[ChatMessage]:
        if not self._selected_thread_id:
            return []
        return self.chat_service.store.messages_for(self._selected_thread_id)

    # ----- Intents -----

    @Slot(str, str)
    def sign_in(self, base_url: str, client_id: str) -> None:
        self._clear_error()
        self._run(self.auth_session.sign_in(base_url, client_id))

    @Slot()
    def sign_out(self) -> None:
        self.auth_session.sign_out()

    @Slot()
    def cancel_sign_in(self) -> None:
        self.auth_session.cancel_sign_in()

    @Slot(str)
    def select_thread(self, thread_id: str) -> None:
        if thread_id == self._selected_thread_id:
            return
        self._set_selected_thread(thread_id)
        if thread_id and not thread_id.startswith(TEMP_THREAD_PREFIX):
            self._run(self.chat_service.store.load_messages(thread_id))

    @Slot(str)
    def send_message(self, content: str) -> None:
        content = content.strip()
        if not content:
            return
        self._clear_error()
        thread_id = self._selected_thread_id or None
        if thread_id and thread_id.startswith(TEMP_THREAD_PREFIX):
            thread_id = None
        self._run(self.chat_service.store.send_message(content, thread_id))

    @Slot(str)
    def delete_thread(self, thread_id: str) -> None:
        self._run(self.chat_service.store.delete_thread(thread_id))

    @Slot()
    def new_conversation(self) -> None:
        self._set_selected_thread("")
        self._run(self.chat_service.start_new_conversation())

    @Slot(str)
    def set_context_url(self, url: str) -> None:
        self.chat_service.context.set_custom_context_url(url)
        self._run(self.chat_service.context.load_context_presets())

    @Slot()
    def dismiss_error(self) -> None:
        self._clear_error()

    @Slot(QUrl)
    def handle_callback_url(self, url: QUrl) -> None:
        """Receives the OAuth redirect from the URL-scheme handler."""
        if self.authorizer is None:
            logger.warning("No authorizer to receive the OAuth callback")
            return
        self.authorizer.deliver_callback(url.toString())

    # ----- Signal handlers -----

    def _on_error(self, error: Exception) -> None:
        self._error_message = str(error)
        self.error_message_changed.emit()
        self.error_occurred.emit(self._error_message)

    def _on_messages_changed(self, thread_id: str, _messages: list) -> None:
        # Follow the optimistic message of a new conversation
        if not self._selected_thread_id and thread_id.startswith(TEMP_THREAD_PREFIX):
            self._set_selected_thread(thread_id)
        elif thread_id == self._selected_thread_id:
            self.messages_changed.emit()

    def _on_thread_created(self, thread_id: str) -> None:
        self._set_selected_thread(thread_id)

    def _on_thread_deleted(self, thread_id: str) -> None:
        if thread_id == self._selected_thread_id:
            self._set_selected_thread("")

    def _on_signed_out(self) -> None:
        self._set_selected_thread("")

    # ----- Helpers -----

    def _set_selected_thread(self, thread_id: str) -> None:
        if self._selected_thread_id == thread_id:
            return
        self._selected_thread_id = thread_id
        self.selected_thread_changed.emit()
        self.messages_changed.emit()

    def _clear_error(self) -> None:
        if self._error_message:
            self._error_message = ""
            self.error_message_changed.emit()

    def _run(self, coro: Coroutine[Any, Any, Any]) -> None:
        spawn(self._guard(coro))

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any]) -> None:
        # Errors reach the UI through the services' error signals
        try:
            await coro
        except (AuthenticationError, ChatServiceError) as exc:
            logger.debug("Intent failed: %s", exc)
