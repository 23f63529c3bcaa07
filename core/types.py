"""
Wire types for Duo Desk.
Pydantic models matching the GitLab OAuth and GraphQL payloads.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from core.constants import NULL_SENTINELS


# ----- OAuth -----

class TokenResponse(BaseModel):
    """Successful response from the OAuth token endpoint."""
    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class TokenErrorResponse(BaseModel):
    """Error body returned by the OAuth token endpoint."""
    error: str
    error_description: Optional[str] = None

    @property
    def message(self) -> str:
        return self.error_description or self.error


# ----- GraphQL Envelope -----

class GraphQLErrorLocation(BaseModel):
    line: int
    column: int


class GraphQLErrorItem(BaseModel):
    """A single entry of a GraphQL `errors` array."""
    message: str
    locations: Optional[list[GraphQLErrorLocation]] = None
    path: Optional[list[Union[str, int]]] = None


class GraphQLResponse(BaseModel):
    """Top-level GraphQL response envelope."""
    data: Optional[dict[str, Any]] = None
    errors: Optional[list[GraphQLErrorItem]] = None


# ----- Threads -----

class ThreadNode(BaseModel):
    id: str
    conversation_type: str = Field(alias="conversationType")
    created_at: str = Field(alias="createdAt")
    title: Optional[str] = None
    last_updated_at: str = Field(alias="lastUpdatedAt")

    class Config:
        populate_by_name = True


class ThreadsContainer(BaseModel):
    nodes: list[ThreadNode] = Field(default_factory=list)


class ThreadsPayload(BaseModel):
    """Data of the aiConversationThreads query."""
    ai_conversation_threads: ThreadsContainer = Field(alias="aiConversationThreads")

    class Config:
        populate_by_name = True


# ----- Messages -----

class MessageNode(BaseModel):
    id: str
    request_id: Optional[str] = Field(default=None, alias="requestId")
    content: str
    role: str
    timestamp: Optional[str] = None
    chunk_id: Optional[str] = Field(default=None, alias="chunkId")
    errors: Optional[list[str]] = None

    class Config:
        populate_by_name = True

    @field_validator("chunk_id", mode="before")
    @classmethod
    def _normalize_chunk_id(cls, value: Any) -> Optional[str]:
        return normalize_chunk_id(value)


class MessagesContainer(BaseModel):
    nodes: list[MessageNode] = Field(default_factory=list)


class MessagesPayload(BaseModel):
    """Data of the aiMessages query."""
    ai_messages: MessagesContainer = Field(alias="aiMessages")

    class Config:
        populate_by_name = True


# ----- Current User -----

class GitLabUser(BaseModel):
    id: str
    username: str
    name: str
    duo_chat_available: bool = Field(default=False, alias="duoChatAvailable")
    duo_chat_available_features: Optional[list[str]] = Field(
        default=None,
        alias="duoChatAvailableFeatures",
    )

    class Config:
        populate_by_name = True


class CurrentUserPayload(BaseModel):
    current_user: Optional[GitLabUser] = Field(default=None, alias="currentUser")

    class Config:
        populate_by_name = True


# ----- Mutations -----

class AiActionResult(BaseModel):
    request_id: Optional[str] = Field(default=None, alias="requestId")
    errors: Optional[list[str]] = None
    thread_id: Optional[str] = Field(default=None, alias="threadId")

    class Config:
        populate_by_name = True


class AiActionPayload(BaseModel):
    """Data of the aiAction mutation."""
    ai_action: AiActionResult = Field(alias="aiAction")

    class Config:
        populate_by_name = True


class DeleteThreadResult(BaseModel):
    success: bool
    errors: Optional[list[str]] = None


class DeleteThreadPayload(BaseModel):
    """Data of the deleteConversationThread mutation."""
    delete_conversation_thread: DeleteThreadResult = Field(
        alias="deleteConversationThread"
    )

    class Config:
        populate_by_name = True


# ----- Context Suggestions -----

class ContextPresetsResult(BaseModel):
    questions: Optional[list[str]] = None


class ContextPresetsPayload(BaseModel):
    ai_chat_context_presets: Optional[ContextPresetsResult] = Field(
        default=None,
        alias="aiChatContextPresets",
    )

    class Config:
        populate_by_name = True


class SlashCommandNode(BaseModel):
    name: str
    description: str = ""


class SlashCommandsPayload(BaseModel):
    ai_slash_commands: Optional[list[SlashCommandNode]] = Field(
        default=None,
        alias="aiSlashCommands",
    )

    class Config:
        populate_by_name = True


class ProjectNode(BaseModel):
    id: str


class ProjectPayload(BaseModel):
    project: Optional[ProjectNode] = None


# ----- Realtime -----

class AiCompletionResponse(BaseModel):
    """
    An aiCompletionResponse pushed over the realtime channel.

    Every field is optional on the wire; `is_valid` tells whether the
    response carries enough to become a message.
    """
    id: Optional[str] = None
    request_id: Optional[str] = Field(default=None, alias="requestId")
    content: Optional[str] = None
    errors: Optional[list[Any]] = None
    role: Optional[str] = None
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    timestamp: Optional[str] = None
    type: Optional[str] = None
    chunk_id: Optional[str] = Field(default=None, alias="chunkId")

    class Config:
        populate_by_name = True

    @field_validator("chunk_id", mode="before")
    @classmethod
    def _normalize_chunk_id(cls, value: Any) -> Optional[str]:
        return normalize_chunk_id(value)

    @field_validator("request_id", mode="before")
    @classmethod
    def _normalize_request_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value)
        if not text or text in NULL_SENTINELS:
            return None
        return text

    @property
    def is_valid(self) -> bool:
        return bool(self.role) and bool(self.thread_id) and bool(self.content)

    @property
    def is_streaming_chunk(self) -> bool:
        return self.chunk_id is not None and self.request_id is not None

    @property
    def error_messages(self) -> Optional[list[str]]:
        if not self.errors:
            return None
        return [str(error) for error in self.errors]


def normalize_chunk_id(value: Any) -> Optional[str]:
    """Normalize a chunk identifier sent as int or string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value))
    text = str(value).strip()
    if not text or text in NULL_SENTINELS:
        return None
    return text
