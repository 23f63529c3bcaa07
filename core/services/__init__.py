"""Session, conversation and context services."""

from .auth_session import AuthSession
from .chat_service import ChatService
from .context_service import ContextService
from .conversation_store import ConversationStore

__all__ = [
    "AuthSession",
    "ChatService",
    "ContextService",
    "ConversationStore",
]
