# Duo Desk - Core Package
"""
Core package for Duo Desk.
This package contains the authentication session, GraphQL client,
realtime transport and conversation store, and can be used
independently of the UI layer.
"""

from core.config import get_client_id, get_gitlab_url
from core.models import (
    AuthState,
    ChatMessage,
    MessageRole,
    Thread,
)

__all__ = [
    "get_client_id",
    "get_gitlab_url",
    "AuthState",
    "ChatMessage",
    "MessageRole",
    "Thread",
]
