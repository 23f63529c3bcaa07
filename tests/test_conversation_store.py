"""Tests for ConversationStore."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import (
    DeleteThreadError,
    FeatureDisabledError,
    ResponseTimeoutError,
    SendMessageError,
    UserNotFoundError,
)
from core.graphql import documents
from core.models import MessageRole
from core.services import ConversationStore
from tests.fakes import FakeGraphQLClient

THREAD_ID = "gid://gitlab/Ai::Conversation::Thread/1"
NEW_THREAD_ID = "gid://gitlab/Ai::Conversation::Thread/2"
USER = {
    "id": "gid://gitlab/User/1",
    "username": "ada",
    "name": "Ada Lovelace",
    "duoChatAvailable": True,
    "duoChatAvailableFeatures": ["include_file_context"],
}
THREADS = {
    "aiConversationThreads": {
        "nodes": [
            {
                "id": THREAD_ID,
                "conversationType": "DUO_CHAT",
                "createdAt": "2024-05-01T09:00:00Z",
                "title": "First",
                "lastUpdatedAt": "2024-05-01T10:00:00Z",
            },
            {
                "id": "gid://gitlab/Ai::Conversation::Thread/9",
                "conversationType": "DUO_CHAT",
                "createdAt": "2024-04-01T09:00:00Z",
                "title": None,
                "lastUpdatedAt": "2024-04-01T10:00:00Z",
            },
        ]
    }
}


def completion(
    content,
    request_id="req-1",
    chunk_id=None,
    thread_id=THREAD_ID,
    role="ASSISTANT",
    timestamp="2024-05-01T10:00:05Z",
):
    return {
        "identifier": "{}",
        "message": {"result": {"data": {"aiCompletionResponse": {
            "id": f"msg-{request_id}-{chunk_id}",
            "requestId": request_id,
            "content": content,
            "role": role,
            "threadId": thread_id,
            "timestamp": timestamp,
            "chunkId": chunk_id,
        }}}},
    }


def ai_action(thread_id=THREAD_ID, request_id="req-1", errors=None):
    return {"aiAction": {"requestId": request_id, "errors": errors or [], "threadId": thread_id}}


@pytest.fixture
def graphql():
    return FakeGraphQLClient({
        documents.CURRENT_USER_QUERY: {"currentUser": USER},
        documents.THREADS_QUERY: THREADS,
        documents.AI_ACTION_MUTATION: ai_action(),
    })


@pytest.fixture
def store(graphql):
    return ConversationStore(graphql)


async def _signed_in(store):
    await store.fetch_current_user()
    await store.load_threads()
    return store


class TestLoading:
    @pytest.mark.asyncio
    async def test_fetch_current_user(self, store):
        changed = []
        store.current_user_changed.connect(lambda: changed.append(True))

        user = await store.fetch_current_user()

        assert user.username == "ada"
        assert user.duo_chat_available_features == ("include_file_context",)
        assert store.duo_chat_enabled
        assert changed == [True]

    @pytest.mark.asyncio
    async def test_missing_user(self, store, graphql):
        graphql.responses[documents.CURRENT_USER_QUERY] = {"currentUser": None}
        errors = []
        store.error_occurred.connect(errors.append)

        with pytest.raises(UserNotFoundError):
            await store.fetch_current_user()

        assert not store.duo_chat_enabled
        assert isinstance(errors[0], UserNotFoundError)

    @pytest.mark.asyncio
    async def test_load_threads(self, store):
        threads = await store.load_threads()

        assert [thread.id for thread in threads] == [THREAD_ID, "gid://gitlab/Ai::Conversation::Thread/9"]
        assert threads[0].title == "First"
        assert threads[1].title == "Untitled"
        assert threads[0].last_updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_load_messages_sorted(self, store, graphql):
        graphql.responses[documents.MESSAGES_QUERY] = {"aiMessages": {"nodes": [
            {"id": "2", "requestId": "r", "content": "Answer", "role": "ASSISTANT",
             "timestamp": "2024-05-01T10:00:05Z", "chunkId": None, "errors": []},
            {"id": "1", "requestId": "r", "content": "Question", "role": "USER",
             "timestamp": "2024-05-01T10:00:00Z", "chunkId": None, "errors": []},
        ]}}
        published = []
        store.messages_changed.connect(lambda thread_id, messages: published.append((thread_id, messages)))

        messages = await store.load_messages(THREAD_ID)

        assert [message.content for message in messages] == ["Question", "Answer"]
        assert messages[0].role == MessageRole.USER
        assert graphql.calls_for(documents.MESSAGES_QUERY) == [{"threadId": THREAD_ID}]
        assert published[-1][0] == THREAD_ID
        assert not store.is_loading


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_new_conversation(self, store, graphql):
        graphql.responses[documents.AI_ACTION_MUTATION] = ai_action(thread_id=NEW_THREAD_ID)
        await _signed_in(store)
        created = []
        snapshots = []
        store.thread_created.connect(created.append)
        store.messages_changed.connect(lambda thread_id, messages: snapshots.append((thread_id, messages)))
        content = "How do I configure a CI pipeline for a monorepo with many services?"

        thread_id = await store.send_message(content)

        # The optimistic message is published before the mutation returns
        temp_id, optimistic = snapshots[0]
        assert temp_id.startswith("temp-")
        assert optimistic[0].content == content

        assert thread_id == NEW_THREAD_ID
        assert created == [NEW_THREAD_ID]
        assert temp_id not in store.thread_ids_with_messages()

        messages = store.messages_for(NEW_THREAD_ID)
        assert len(messages) == 1
        assert messages[0].role == MessageRole.USER
        assert messages[0].thread_id == NEW_THREAD_ID
        assert messages[0].request_id == "req-1"

        head = store.threads[0]
        assert head.id == NEW_THREAD_ID
        assert head.title == content[:50]
        assert store.is_loading

        variables = graphql.calls_for(documents.AI_ACTION_MUTATION)[0]
        assert variables == {"input": {
            "chat": {"content": content, "resourceId": USER["id"]},
            "conversationType": "DUO_CHAT",
            "clientSubscriptionId": store.client_subscription_id,
        }}

    @pytest.mark.asyncio
    async def test_existing_thread(self, store, graphql):
        await _signed_in(store)
        created = []
        store.thread_created.connect(created.append)

        assert await store.send_message("Follow-up", THREAD_ID) == THREAD_ID

        variables = graphql.calls_for(documents.AI_ACTION_MUTATION)[0]
        assert variables["input"]["threadId"] == THREAD_ID
        assert [message.content for message in store.messages_for(THREAD_ID)] == ["Follow-up"]
        assert created == []

    @pytest.mark.asyncio
    async def test_feature_disabled_sends_nothing(self, store, graphql):
        graphql.responses[documents.CURRENT_USER_QUERY] = {
            "currentUser": dict(USER, duoChatAvailable=False),
        }
        await store.fetch_current_user()
        errors = []
        store.error_occurred.connect(errors.append)

        with pytest.raises(FeatureDisabledError):
            await store.send_message("Hello")

        assert graphql.calls_for(documents.AI_ACTION_MUTATION) == []
        assert store.thread_ids_with_messages() == []
        assert isinstance(errors[0], FeatureDisabledError)

    @pytest.mark.asyncio
    async def test_mutation_errors_mark_message(self, store, graphql):
        graphql.responses[documents.AI_ACTION_MUTATION] = ai_action(errors=["Rate limited"])
        await _signed_in(store)

        with pytest.raises(SendMessageError):
            await store.send_message("Hello", THREAD_ID)

        message = store.messages_for(THREAD_ID)[0]
        assert message.errors == ["Failed to send message: Rate limited"]
        assert not store.is_loading
        assert isinstance(store.error, SendMessageError)

    @pytest.mark.asyncio
    async def test_missing_user_sends_nothing(self, store, graphql):
        store._duo_chat_enabled = True
        errors = []
        store.error_occurred.connect(errors.append)

        with pytest.raises(UserNotFoundError):
            await store.send_message("Hello", THREAD_ID)

        assert graphql.calls_for(documents.AI_ACTION_MUTATION) == []
        assert store.messages_for(THREAD_ID) == []
        assert store.thread_ids_with_messages() == []
        assert not store.is_loading
        assert isinstance(errors[0], UserNotFoundError)

    @pytest.mark.asyncio
    async def test_early_answer_stays_after_question(self, store, graphql):
        later = (datetime.now(timezone.utc) + timedelta(seconds=5)).isoformat()

        def respond(variables):
            # The first chunk reaches the new thread before the mutation returns
            store.on_realtime_event(completion("Hi", chunk_id=1, thread_id=NEW_THREAD_ID, timestamp=later))
            return ai_action(thread_id=NEW_THREAD_ID)

        graphql.responses[documents.AI_ACTION_MUTATION] = respond
        await _signed_in(store)

        await store.send_message("Hello")
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        messages = store.messages_for(NEW_THREAD_ID)
        assert [message.role for message in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert [message.content for message in messages] == ["Hello", "Hi"]

    def test_start_new_conversation_rotates_subscription_id(self, store):
        previous = store.client_subscription_id

        assert store.start_new_conversation() != previous
        assert store.client_subscription_id != previous


class TestRealtimeEvents:
    @pytest.mark.asyncio
    async def test_chunks_then_final(self, store):
        await _signed_in(store)
        await store.send_message("Say hello", THREAD_ID)

        store.on_realtime_event(completion("Hello", chunk_id=1))
        store.on_realtime_event(completion(" world", chunk_id=2))

        assistant = store.messages_for(THREAD_ID)[-1]
        assert assistant.role == MessageRole.ASSISTANT
        assert assistant.content == "Hello world"
        assert assistant.chunk_id == "2"
        assert store.is_loading

        store.on_realtime_event(completion("Hello world!"))

        messages = store.messages_for(THREAD_ID)
        assert [message.role for message in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[-1].content == "Hello world!"
        assert messages[-1].chunk_id is None
        assert not store.is_loading

    @pytest.mark.asyncio
    async def test_late_chunk_after_final_is_dropped(self, store):
        await _signed_in(store)
        await store.send_message("Say hello", THREAD_ID)
        published = []
        store.messages_changed.connect(lambda thread_id, messages: published.append(thread_id))

        store.on_realtime_event(completion("Hel", chunk_id=1))
        store.on_realtime_event(completion("Hello world"))
        assert store.on_realtime_event(completion("lo", chunk_id=2)) is None

        messages = store.messages_for(THREAD_ID)
        assert [message.content for message in messages] == ["Say hello", "Hello world"]
        assert messages[-1].chunk_id is None
        assert len(published) == 2

    @pytest.mark.asyncio
    async def test_final_without_chunks_is_appended(self, store):
        await _signed_in(store)

        message = store.on_realtime_event(completion("Complete answer", request_id="req-7"))

        assert message.content == "Complete answer"
        assert store.messages_for(THREAD_ID) == [message]

    @pytest.mark.asyncio
    async def test_interleaved_requests_stay_separate(self, store):
        await _signed_in(store)

        store.on_realtime_event(completion("A1", request_id="a", chunk_id=1))
        store.on_realtime_event(completion("B1", request_id="b", chunk_id=1))
        store.on_realtime_event(completion("A2", request_id="a", chunk_id=2))

        assert [message.content for message in store.messages_for(THREAD_ID)] == ["A1A2", "B1"]

    @pytest.mark.asyncio
    async def test_placeholder_and_invalid_payloads_ignored(self, store):
        await _signed_in(store)
        published = []
        store.messages_changed.connect(lambda thread_id, messages: published.append(thread_id))

        assert store.on_realtime_event({"message": {"result": {"data": {"aiCompletionResponse": None}}}}) is None
        assert store.on_realtime_event({"message": {"unrelated": True}}) is None
        assert store.on_realtime_event(completion("")) is None
        assert published == []

    @pytest.mark.asyncio
    async def test_unknown_thread_reloads_list_once(self, store, graphql):
        await _signed_in(store)
        other = "gid://gitlab/Ai::Conversation::Thread/77"

        store.on_realtime_event(completion("One", chunk_id=1, thread_id=other))
        store.on_realtime_event(completion("Two", chunk_id=2, thread_id=other))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert len(graphql.calls_for(documents.THREADS_QUERY)) == 2
        assert store.messages_for(other)[0].content == "OneTwo"


class TestDeleteThread:
    @pytest.mark.asyncio
    async def test_delete(self, store, graphql):
        graphql.responses[documents.DELETE_THREAD_MUTATION] = {
            "deleteConversationThread": {"success": True, "errors": []},
        }
        await _signed_in(store)
        store.on_realtime_event(completion("Answer"))
        deleted = []
        store.thread_deleted.connect(deleted.append)

        await store.delete_thread(THREAD_ID)

        assert store.get_thread(THREAD_ID) is None
        assert store.messages_for(THREAD_ID) == []
        assert deleted == [THREAD_ID]
        assert graphql.calls_for(documents.DELETE_THREAD_MUTATION) == [{"input": {"threadId": THREAD_ID}}]

    @pytest.mark.asyncio
    async def test_unsuccessful_delete_keeps_state(self, store, graphql):
        graphql.responses[documents.DELETE_THREAD_MUTATION] = {
            "deleteConversationThread": {"success": False, "errors": []},
        }
        await _signed_in(store)

        with pytest.raises(DeleteThreadError) as excinfo:
            await store.delete_thread(THREAD_ID)

        assert "Delete operation returned false" in str(excinfo.value)
        assert store.get_thread(THREAD_ID) is not None

    @pytest.mark.asyncio
    async def test_delete_errors(self, store, graphql):
        graphql.responses[documents.DELETE_THREAD_MUTATION] = {
            "deleteConversationThread": {"success": True, "errors": ["Not allowed"]},
        }
        await _signed_in(store)

        with pytest.raises(DeleteThreadError):
            await store.delete_thread(THREAD_ID)
        assert store.get_thread(THREAD_ID) is not None


class TestResponseTimeout:
    def test_disabled_by_default(self, store):
        assert store.response_timeout is None

    @pytest.mark.asyncio
    async def test_expired_request_stops_loading(self, graphql):
        store = ConversationStore(graphql, response_timeout=0.01)
        await _signed_in(store)

        await store.send_message("Hello?", THREAD_ID)
        assert store.is_loading
        await asyncio.sleep(0.05)

        assert not store.is_loading
        assert isinstance(store.error, ResponseTimeoutError)

    @pytest.mark.asyncio
    async def test_final_answer_cancels_timeout(self, graphql):
        store = ConversationStore(graphql, response_timeout=0.02)
        await _signed_in(store)

        await store.send_message("Hello?", THREAD_ID)
        store.on_realtime_event(completion("Hi"))
        await asyncio.sleep(0.05)

        assert store.error is None


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_drops_everything(self, store):
        await _signed_in(store)
        store.on_realtime_event(completion("Answer"))
        cleared = []
        store.messages_changed.connect(lambda thread_id, messages: cleared.append((thread_id, messages)))
        previous_subscription = store.client_subscription_id

        store.clear()

        assert store.threads == []
        assert store.current_user is None
        assert not store.duo_chat_enabled
        assert store.thread_ids_with_messages() == []
        assert cleared == [(THREAD_ID, [])]
        assert store.client_subscription_id != previous_subscription
