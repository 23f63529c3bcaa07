"""
Conversation state for Duo Chat.

ConversationStore holds the thread list and per-thread message logs. It
inserts optimistic user messages, sends them through GraphQL, and
reconciles streaming chunks and final answers pushed over the realtime
channel.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Optional, Union

from PySide6.QtCore import Property, QObject, Signal

from core.constants import (
    CONVERSATION_TYPE_DUO_CHAT,
    TEMP_THREAD_PREFIX,
    THREAD_TITLE_MAX_LENGTH,
)
from core.errors import (
    ChatServiceError,
    DeleteThreadError,
    FeatureDisabledError,
    ResponseTimeoutError,
    SendMessageError,
    UserNotFoundError,
)
from core.graphql import documents
from core.graphql.client import GraphQLClient
from core.models import ChatMessage, CurrentUser, MessageRole, Thread, utc_now
from core.realtime.envelopes import parse_completion_envelope
from core.types import (
    AiActionPayload,
    AiCompletionResponse,
    CurrentUserPayload,
    DeleteThreadPayload,
    MessageNode,
    MessagesPayload,
    ThreadNode,
    ThreadsPayload,
)
from core.utils.dates import parse_timestamp
from core.utils.tasks import spawn

logger = logging.getLogger(__name__)


def thread_from_node(node: ThreadNode) -> Thread:
    return Thread(
        id=node.id,
        title=node.title or "Untitled",
        conversation_type=node.conversation_type,
        created_at=parse_timestamp(node.created_at) or utc_now(),
        last_updated_at=parse_timestamp(node.last_updated_at) or utc_now(),
    )


def message_from_node(node: MessageNode, thread_id: str) -> ChatMessage:
    return ChatMessage(
        id=node.id,
        content=node.content,
        role=MessageRole.from_wire(node.role),
        timestamp=parse_timestamp(node.timestamp) or utc_now(),
        thread_id=thread_id,
        request_id=node.request_id,
        chunk_id=node.chunk_id,
        errors=node.errors,
    )


class ConversationStore(QObject):
    """
    Threads and message logs, published through Qt signals.

    Signals:
        threads_changed: The thread list changed
        messages_changed: (thread_id, messages) a thread's log changed
        is_loading_changed: A request is waiting for its answer, or not
        error_occurred: A ChatServiceError was raised by an operation
        thread_created: A send created a new server thread
        thread_deleted: A thread and its log were removed
    """

    threads_changed = Signal()
    messages_changed = Signal(str, object)
    is_loading_changed = Signal(bool)
    error_occurred = Signal(object)
    current_user_changed = Signal()
    thread_created = Signal(str)
    thread_deleted = Signal(str)

    def __init__(
        self,
        graphql_client: GraphQLClient,
        response_timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._client = graphql_client
        self.response_timeout = response_timeout

        self._threads: list[Thread] = []
        self._messages: dict[str, list[ChatMessage]] = {}
        self._current_user: Optional[CurrentUser] = None
        self._duo_chat_enabled = False
        self._is_loading = False
        self._error: Optional[ChatServiceError] = None
        self._client_subscription_id = str(uuid.uuid4())

        self._thread_reload: Optional[asyncio.Task] = None
        self._response_timers: dict[str, asyncio.Task] = {}

    # ----- Published state -----

    @Property(list, notify=threads_changed)
    def threads(self) -> list[Thread]:
        return list(self._threads)

    @Property(bool, notify=is_loading_changed)
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> Optional[ChatServiceError]:
        return self._error

    @property
    def current_user(self) -> Optional[CurrentUser]:
        return self._current_user

    @property
    def duo_chat_enabled(self) -> bool:
        return self._duo_chat_enabled

    @property
    def client_subscription_id(self) -> str:
        return self._client_subscription_id

    def messages_for(self, thread_id: str) -> list[ChatMessage]:
        return list(self._messages.get(thread_id, []))

    def thread_ids_with_messages(self) -> list[str]:
        return list(self._messages)

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        for thread in self._threads:
            if thread.id == thread_id:
                return thread
        return None

    # ----- Loading -----

    async def fetch_current_user(self) -> CurrentUser:
        """
        Load the signed-in user and whether Duo Chat is available.

        Raises:
            UserNotFoundError: The API returned no current user
        """
        try:
            payload = await self._client.execute(
                documents.CURRENT_USER_QUERY,
                response_model=CurrentUserPayload,
            )
            user = payload.current_user
            if user is None:
                raise UserNotFoundError()
        except ChatServiceError as exc:
            self._duo_chat_enabled = False
            self.report_error(exc)
            raise

        self._current_user = CurrentUser(
            id=user.id,
            username=user.username,
            name=user.name,
            duo_chat_available=user.duo_chat_available,
            duo_chat_available_features=tuple(user.duo_chat_available_features or ()),
        )
        self._duo_chat_enabled = user.duo_chat_available
        self.current_user_changed.emit()
        logger.info(
            "Current user: %s (Duo Chat: %s)",
            user.username,
            user.duo_chat_available,
        )
        return self._current_user

    async def load_threads(self) -> list[Thread]:
        try:
            payload = await self._client.execute(
                documents.THREADS_QUERY,
                response_model=ThreadsPayload,
            )
        except ChatServiceError as exc:
            self.report_error(exc)
            raise

        self._threads = [thread_from_node(node) for node in payload.ai_conversation_threads.nodes]
        self.threads_changed.emit()
        logger.info("Loaded %d conversation threads", len(self._threads))
        return self.threads

    async def load_messages(self, thread_id: str) -> list[ChatMessage]:
        try:
            payload = await self._client.execute(
                documents.MESSAGES_QUERY,
                {"threadId": thread_id},
                response_model=MessagesPayload,
            )
        except ChatServiceError as exc:
            self.report_error(exc)
            raise

        messages = [message_from_node(node, thread_id) for node in payload.ai_messages.nodes]
        messages.sort(key=lambda message: message.timestamp)
        self._messages[thread_id] = messages
        self._emit_messages(thread_id)
        self._set_loading(False)
        logger.info("Loaded %d messages for thread %s", len(messages), thread_id)
        return self.messages_for(thread_id)

    # ----- Sending -----

    async def send_message(self, content: str, thread_id: Optional[str] = None) -> str:
        """
        Send a user message.

        The message is shown immediately; the answer arrives later through
        `on_realtime_event`. For a new conversation the message is kept
        under a temporary thread id until the server assigns one.

        Returns:
            The thread id the message belongs to

        Raises:
            FeatureDisabledError: Duo Chat is not available to the user
            UserNotFoundError: No current user has been loaded
            ChatServiceError: The mutation failed
        """
        if not self._duo_chat_enabled:
            error = FeatureDisabledError()
            self.report_error(error)
            raise error
        if self._current_user is None:
            error = UserNotFoundError()
            self.report_error(error)
            raise error

        self._error = None
        self._set_loading(True)

        target_thread_id = thread_id or f"{TEMP_THREAD_PREFIX}{uuid.uuid4()}"
        user_message = ChatMessage.create_user_message(content, thread_id)
        self._messages.setdefault(target_thread_id, []).append(user_message)
        self._emit_messages(target_thread_id)

        chat_input: dict[str, Any] = {
            "chat": {
                "content": content,
                "resourceId": self._current_user.id,
            },
            "conversationType": CONVERSATION_TYPE_DUO_CHAT,
            "clientSubscriptionId": self._client_subscription_id,
        }
        if thread_id:
            chat_input["threadId"] = thread_id

        try:
            payload = await self._client.execute(
                documents.AI_ACTION_MUTATION,
                {"input": chat_input},
                response_model=AiActionPayload,
            )
            result = payload.ai_action
            if result.errors:
                raise SendMessageError(", ".join(result.errors))
        except ChatServiceError as exc:
            user_message.errors = [str(exc)]
            self._emit_messages(target_thread_id)
            self._set_loading(False)
            self.report_error(exc)
            raise

        actual_thread_id = result.thread_id or target_thread_id
        if thread_id is None:
            self._adopt_new_thread(target_thread_id, actual_thread_id, content)

        if result.request_id:
            user_message.request_id = result.request_id
            self._arm_response_timeout(result.request_id, actual_thread_id)

        logger.info("Message sent, waiting for the answer on the realtime channel")
        return actual_thread_id

    def _adopt_new_thread(self, temp_id: str, thread_id: str, content: str) -> None:
        if temp_id != thread_id:
            buffered = self._messages.pop(temp_id, [])
            for message in buffered:
                message.thread_id = thread_id
            log = self._messages.setdefault(thread_id, [])
            log.extend(buffered)
            log.sort(key=lambda message: message.timestamp)
            self._emit_messages(thread_id)

        if self.get_thread(thread_id) is None:
            now = utc_now()
            self._threads.insert(0, Thread(
                id=thread_id,
                title=content[:THREAD_TITLE_MAX_LENGTH],
                conversation_type=CONVERSATION_TYPE_DUO_CHAT,
                created_at=now,
                last_updated_at=now,
            ))
            self.threads_changed.emit()
        self.thread_created.emit(thread_id)

    def start_new_conversation(self) -> str:
        """Rotate the client subscription id for a fresh conversation."""
        self._client_subscription_id = str(uuid.uuid4())
        logger.info("Starting new conversation with clientSubscriptionId %s", self._client_subscription_id)
        return self._client_subscription_id

    # ----- Deleting -----

    async def delete_thread(self, thread_id: str) -> None:
        """
        Delete a thread on the server, then drop it and its log locally.

        Raises:
            DeleteThreadError: The server reported errors or success=false
        """
        try:
            payload = await self._client.execute(
                documents.DELETE_THREAD_MUTATION,
                {"input": {"threadId": thread_id}},
                response_model=DeleteThreadPayload,
            )
            result = payload.delete_conversation_thread
            if result.errors:
                raise DeleteThreadError(", ".join(result.errors))
            if not result.success:
                raise DeleteThreadError("Delete operation returned false")
        except ChatServiceError as exc:
            self.report_error(exc)
            raise

        self._threads = [thread for thread in self._threads if thread.id != thread_id]
        self._messages.pop(thread_id, None)
        self.threads_changed.emit()
        self.thread_deleted.emit(thread_id)
        logger.info("Deleted thread %s", thread_id)

    # ----- Realtime -----

    def on_realtime_event(self, payload: Union[dict[str, Any], str, bytes]) -> Optional[ChatMessage]:
        """
        Apply an aiCompletionResponse push.

        Placeholder and incomplete responses are ignored. Streaming chunks
        are appended to the assistant message of the same request; a final
        message replaces it.

        Returns:
            The created or updated message, or None if nothing changed
        """
        envelope = parse_completion_envelope(payload)
        if envelope is None:
            logger.debug("Realtime payload carried no completion response")
            return None
        if envelope.is_placeholder:
            logger.debug("Null completion response: subscription active")
            return None

        response = envelope.response
        if not response.is_valid:
            logger.debug("Discarding completion response without role, thread or content")
            return None

        thread_id = response.thread_id
        self._messages.setdefault(thread_id, [])

        if response.is_streaming_chunk:
            message = self._apply_chunk(thread_id, response)
            if message is None:
                return None
        else:
            message = self._apply_final(thread_id, response)
            self._cancel_response_timeout(response.request_id)
            self._set_loading(False)

        self._emit_messages(thread_id)

        if self.get_thread(thread_id) is None:
            self._schedule_thread_reload()

        return message

    def _apply_chunk(self, thread_id: str, response: AiCompletionResponse) -> Optional[ChatMessage]:
        log = self._messages[thread_id]
        index = self._find_assistant_message(log, response.request_id)
        if index is not None:
            existing = log[index]
            # A message without a chunk id was settled by its final payload
            if existing.chunk_id is None:
                logger.debug("Dropping late chunk for finished request %s", response.request_id)
                return None
            existing.content += response.content
            existing.chunk_id = response.chunk_id
            return existing

        message = self._message_from_response(thread_id, response)
        log.append(message)
        return message

    def _apply_final(self, thread_id: str, response: AiCompletionResponse) -> ChatMessage:
        log = self._messages[thread_id]
        message = self._message_from_response(thread_id, response)
        index = self._find_assistant_message(log, response.request_id)
        if index is not None:
            log[index] = message
        else:
            log.append(message)
        return message

    @staticmethod
    def _find_assistant_message(log: list[ChatMessage], request_id: Optional[str]) -> Optional[int]:
        if request_id is None:
            return None
        for index, message in enumerate(log):
            if message.request_id == request_id and message.role == MessageRole.ASSISTANT:
                return index
        return None

    @staticmethod
    def _message_from_response(thread_id: str, response: AiCompletionResponse) -> ChatMessage:
        return ChatMessage(
            id=response.id or str(uuid.uuid4()),
            content=response.content,
            role=MessageRole.from_wire(response.role),
            timestamp=parse_timestamp(response.timestamp) or utc_now(),
            thread_id=thread_id,
            request_id=response.request_id,
            chunk_id=response.chunk_id,
            errors=response.error_messages,
        )

    def _schedule_thread_reload(self) -> None:
        if self._thread_reload is not None and not self._thread_reload.done():
            return
        self._thread_reload = spawn(self._reload_threads())

    async def _reload_threads(self) -> None:
        try:
            await self.load_threads()
        except ChatServiceError as exc:
            logger.warning("Thread reload after realtime event failed: %s", exc)

    # ----- Response timeout -----

    def _arm_response_timeout(self, request_id: str, thread_id: str) -> None:
        if self.response_timeout is None:
            return
        self._cancel_response_timeout(request_id)
        task = spawn(self._expire_response(request_id, thread_id))
        if task is not None:
            self._response_timers[request_id] = task

    def _cancel_response_timeout(self, request_id: Optional[str]) -> None:
        if request_id is None:
            return
        task = self._response_timers.pop(request_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire_response(self, request_id: str, thread_id: str) -> None:
        await asyncio.sleep(self.response_timeout)
        self._response_timers.pop(request_id, None)
        logger.warning("No answer for request %s in thread %s", request_id, thread_id)
        self._set_loading(False)
        self.report_error(ResponseTimeoutError())

    # ----- Reset -----

    def clear(self) -> None:
        """Drop all state, e.g. after sign-out."""
        if self._thread_reload is not None:
            self._thread_reload.cancel()
            self._thread_reload = None
        for task in self._response_timers.values():
            task.cancel()
        self._response_timers.clear()

        cleared_threads = list(self._messages)
        self._threads = []
        self._messages = {}
        self._current_user = None
        self._duo_chat_enabled = False
        self._error = None
        self._client_subscription_id = str(uuid.uuid4())

        self._set_loading(False)
        self.threads_changed.emit()
        self.current_user_changed.emit()
        for thread_id in cleared_threads:
            self.messages_changed.emit(thread_id, [])

    def report_error(self, error: ChatServiceError) -> None:
        """Record an error and publish it on `error_occurred`."""
        self._error = error
        logger.error("Chat service error: %s", error)
        self.error_occurred.emit(error)

    # ----- Helpers -----

    def _emit_messages(self, thread_id: str) -> None:
        self.messages_changed.emit(thread_id, self.messages_for(thread_id))

    def _set_loading(self, value: bool) -> None:
        if self._is_loading == value:
            return
        self._is_loading = value
        self.is_loading_changed.emit(value)
