"""Chat schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from relaychat.models.chat import MessageRole
from relaychat.schemas.common import BaseSchema


class ChatMessageIn(BaseModel):
    """One ``{role, content}`` pair of a turn submission."""

    role: MessageRole
    content: str


class ChatRequest(BaseModel):
    """Stateless turn: prior history with the new user input last."""

    messages: list[ChatMessageIn] = Field(min_length=1)
    provider: str | None = None

    @field_validator("messages")
    @classmethod
    def ends_with_user_input(cls, value: list[ChatMessageIn]) -> list[ChatMessageIn]:
        if value and value[-1].role is not MessageRole.USER:
            raise ValueError("The last message must have role 'user'")
        return value


class ThreadCreate(BaseModel):
    """Chat thread creation request."""

    title: str | None = Field(default=None, max_length=255)


class ThreadUpdate(BaseModel):
    """Chat thread update request."""

    title: str = Field(min_length=1, max_length=255)


class MessageCreate(BaseModel):
    """Append a message without generating a reply."""

    role: MessageRole = MessageRole.USER
    content: str


class TurnRequest(BaseModel):
    """Thread-bound turn: the new user input, reply streamed back."""

    content: str = Field(min_length=1)
    provider: str | None = None
    # None -> server PARTIAL_REPLY_POLICY
    persist_partial: bool | None = None


class MessageResponse(BaseSchema):
    """Chat message response."""

    id: UUID
    thread_id: UUID
    role: MessageRole
    content: str
    created_at: datetime


class ThreadResponse(BaseSchema):
    """Chat thread response."""

    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime


class ThreadSummaryResponse(ThreadResponse):
    """Thread with its message count (history view)."""

    message_count: int = 0


class ThreadDetail(ThreadResponse):
    """Chat thread detail with messages."""

    messages: list[MessageResponse] = []


class ProviderInfo(BaseModel):
    """Registry entry as exposed to the settings/provider picker."""

    id: str
    label: str
    model: str
    description: str
    credential_present: bool
    is_default: bool
