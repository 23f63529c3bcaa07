"""Tests for MainViewModel."""

from unittest.mock import MagicMock

import pytest
from PySide6.QtCore import QUrl

from core.errors import NetworkError
from core.graphql import documents
from core.realtime import RealtimeTransport
from core.services import AuthSession, ChatService
from tests.fakes import FakeAuthorizer, FakeConnector, FakeGraphQLClient, echo_code, settle
from ui.viewmodels import MainViewModel

THREAD_ID = "gid://gitlab/Ai::Conversation::Thread/1"
NEW_THREAD_ID = "gid://gitlab/Ai::Conversation::Thread/2"


@pytest.fixture
def graphql():
    return FakeGraphQLClient({
        documents.CURRENT_USER_QUERY: {"currentUser": {
            "id": "gid://gitlab/User/1",
            "username": "ada",
            "name": "Ada",
            "duoChatAvailable": True,
        }},
        documents.THREADS_QUERY: {"aiConversationThreads": {"nodes": []}},
        documents.MESSAGES_QUERY: {"aiMessages": {"nodes": [{
            "id": "m1",
            "requestId": "r1",
            "content": "Earlier question",
            "role": "USER",
            "timestamp": "2024-05-01T10:00:00Z",
        }]}},
        documents.AI_ACTION_MUTATION: {"aiAction": {
            "requestId": "r2",
            "errors": [],
            "threadId": NEW_THREAD_ID,
        }},
        documents.DELETE_THREAD_MUTATION: {"deleteConversationThread": {"success": True, "errors": []}},
    })


@pytest.fixture
def auth_session(credential_store, settings_repository):
    session = AuthSession(
        credential_store=credential_store,
        settings_repository=settings_repository,
        authorizer=FakeAuthorizer(echo_code()),
    )
    yield session
    session._monitor.stop()


@pytest.fixture
def chat_service(auth_session, graphql):
    transport = RealtimeTransport(auth_session, connect_factory=FakeConnector())
    return ChatService(auth_session, graphql_client=graphql, transport=transport)


@pytest.fixture
def authorizer():
    return MagicMock()


@pytest.fixture
def viewmodel(auth_session, chat_service, authorizer):
    return MainViewModel(auth_session, chat_service, authorizer)


class TestErrors:
    def test_store_error_is_published(self, viewmodel, chat_service, qtbot):
        with qtbot.waitSignal(viewmodel.error_occurred, timeout=1000) as blocker:
            chat_service.store.report_error(NetworkError("offline"))

        assert blocker.args == ["Network error: offline"]
        assert viewmodel.error_message == "Network error: offline"

    def test_dismiss_error(self, viewmodel, chat_service, qtbot):
        chat_service.store.report_error(NetworkError())

        with qtbot.waitSignal(viewmodel.error_message_changed, timeout=1000):
            viewmodel.dismiss_error()
        assert viewmodel.error_message == ""

    @pytest.mark.asyncio
    async def test_sign_in_failure_is_shown(self, viewmodel):
        viewmodel.sign_in("not a url", "client")
        await settle()

        assert viewmodel.error_message.startswith("Invalid GitLab URL or configuration")
        assert not viewmodel.is_authenticated


class TestConversation:
    @pytest.mark.asyncio
    async def test_new_conversation_follows_created_thread(self, viewmodel, chat_service):
        await chat_service.store.fetch_current_user()
        selections = []
        viewmodel.selected_thread_changed.connect(lambda: selections.append(viewmodel.selected_thread_id))

        viewmodel.send_message("  Hello Duo  ")
        await settle()

        assert selections[0].startswith("temp-")
        assert viewmodel.selected_thread_id == NEW_THREAD_ID
        assert [message.content for message in viewmodel.messages] == ["Hello Duo"]

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self, viewmodel, graphql):
        viewmodel.send_message("   ")
        await settle()

        assert graphql.calls_for(documents.AI_ACTION_MUTATION) == []

    @pytest.mark.asyncio
    async def test_send_to_selected_thread(self, viewmodel, chat_service, graphql):
        await chat_service.store.fetch_current_user()
        viewmodel.select_thread(THREAD_ID)
        await settle()

        viewmodel.send_message("Follow-up")
        await settle()

        variables = graphql.calls_for(documents.AI_ACTION_MUTATION)[0]
        assert variables["input"]["threadId"] == THREAD_ID

    @pytest.mark.asyncio
    async def test_select_thread_loads_messages(self, viewmodel, graphql):
        changed = []
        viewmodel.messages_changed.connect(lambda: changed.append(True))

        viewmodel.select_thread(THREAD_ID)
        await settle()

        assert viewmodel.selected_thread_id == THREAD_ID
        assert graphql.calls_for(documents.MESSAGES_QUERY) == [{"threadId": THREAD_ID}]
        assert [message.content for message in viewmodel.messages] == ["Earlier question"]
        assert changed

    @pytest.mark.asyncio
    async def test_select_temp_thread_does_not_query(self, viewmodel, graphql):
        viewmodel.select_thread("temp-123")
        await settle()

        assert graphql.calls_for(documents.MESSAGES_QUERY) == []

    @pytest.mark.asyncio
    async def test_deleting_selected_thread_clears_selection(self, viewmodel, graphql):
        viewmodel.select_thread(THREAD_ID)
        await settle()

        viewmodel.delete_thread(THREAD_ID)
        await settle()

        assert viewmodel.selected_thread_id == ""
        assert viewmodel.messages == []

    @pytest.mark.asyncio
    async def test_sign_out_clears_selection(self, viewmodel, auth_session):
        viewmodel.select_thread(THREAD_ID)
        await settle()

        viewmodel.sign_out()
        await settle()

        assert viewmodel.selected_thread_id == ""

    @pytest.mark.asyncio
    async def test_new_conversation_rotates_subscription(self, viewmodel, chat_service):
        previous = chat_service.store.client_subscription_id

        viewmodel.new_conversation()
        await settle()

        assert chat_service.store.client_subscription_id != previous
        assert viewmodel.selected_thread_id == ""


def test_callback_url_reaches_authorizer(viewmodel, authorizer):
    viewmodel.handle_callback_url(QUrl("com.gitlabduochat://oauth/callback?code=abc&state=xyz"))

    authorizer.deliver_callback.assert_called_once_with(
        "com.gitlabduochat://oauth/callback?code=abc&state=xyz"
    )
