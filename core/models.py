"""Domain models for chat and authentication state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
import uuid


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Role of a message sender."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "MessageRole":
        """Parse a server role string, defaulting to assistant."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.ASSISTANT


class AuthState(str, Enum):
    """Authentication session state."""

    SIGNED_OUT = "signed_out"
    AUTHENTICATING = "authenticating"
    SIGNED_IN = "signed_in"


class URLContextType(str, Enum):
    """Kind of GitLab page a context URL points at."""

    HOMEPAGE = "Homepage"
    PROJECT = "Project"
    ISSUE = "Issue"
    MERGE_REQUEST = "Merge Request"
    PIPELINE = "Pipeline"
    REPOSITORY = "Repository"
    WIKI = "Wiki"
    UNKNOWN = "Unknown"


@dataclass
class Setting:
    """A persisted, non-secret configuration value."""

    key: str
    value: str
    category: str
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Thread:
    """A Duo Chat conversation thread."""

    id: str
    title: str
    conversation_type: str
    created_at: datetime = field(default_factory=utc_now)
    last_updated_at: datetime = field(default_factory=utc_now)


@dataclass
class ChatMessage:
    """A single message in a thread's log."""

    id: str
    content: str
    role: MessageRole
    timestamp: datetime = field(default_factory=utc_now)
    thread_id: Optional[str] = None
    request_id: Optional[str] = None
    chunk_id: Optional[str] = None
    errors: Optional[list[str]] = None

    @classmethod
    def create_user_message(
        cls,
        content: str,
        thread_id: Optional[str] = None,
    ) -> "ChatMessage":
        """Create an optimistic local user message with a fresh ID."""
        return cls(
            id=str(uuid.uuid4()),
            content=content,
            role=MessageRole.USER,
            timestamp=utc_now(),
            thread_id=thread_id,
        )


@dataclass
class AuthTokenState:
    """Tokens and the instance they were issued for."""

    access_token: str
    expiry: datetime
    gitlab_base_url: str
    client_id: str
    refresh_token: Optional[str] = None

    def seconds_until_expiry(self, now: Optional[datetime] = None) -> float:
        return (self.expiry - (now or utc_now())).total_seconds()

    @staticmethod
    def expiry_from(expires_in: int, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + timedelta(seconds=expires_in)


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE parameters for a single sign-in attempt."""

    verifier: str
    challenge: str
    state: str


@dataclass(frozen=True)
class CurrentUser:
    """The signed-in GitLab user."""

    id: str
    username: str
    name: str
    duo_chat_available: bool
    duo_chat_available_features: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextPreset:
    """A suggested question for the current page context."""

    prompt: str
    category: str = "context"


@dataclass(frozen=True)
class SlashCommand:
    """A slash command offered by the chat backend."""

    name: str
    description: str


@dataclass(frozen=True)
class URLContext:
    """Result of analysing a GitLab page URL."""

    context_type: URLContextType = URLContextType.HOMEPAGE
    project_path: Optional[str] = None
    resource_id: Optional[str] = None
