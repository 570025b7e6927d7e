"""Chat models."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relaychat.models.base import BaseModel, UTCDateTime, utcnow

DEFAULT_THREAD_TITLE = "New Chat"


class MessageRole(str, enum.Enum):
    """Chat message role."""

    USER = "user"
    ASSISTANT = "assistant"


class Thread(BaseModel):
    """A persisted conversation."""

    __tablename__ = "threads"

    title: Mapped[str] = mapped_column(
        String(255),
        default=DEFAULT_THREAD_TITLE,
        nullable=False,
    )
    # Bumped by every message append; drives list ordering
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
        index=True,
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.created_at",
    )

    def __repr__(self) -> str:
        return f"<Thread {self.id}>"


class Message(BaseModel):
    """One user or assistant turn within a thread."""

    __tablename__ = "messages"

    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Plain string column; valid values are enforced via MessageRole
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    thread: Mapped["Thread"] = relationship(
        "Thread",
        back_populates="messages",
    )

    def __repr__(self) -> str:
        return f"<Message {self.role} in {self.thread_id}>"
