"""Local persistent conversation store.

Owns threads, messages and settings. Every mutation that touches more than
one table runs inside a single ``session.begin()`` scope, so it is visible
in full or not at all:

- ``append_message`` inserts the message and bumps the thread's
  ``updated_at`` together.
- ``delete_thread`` removes the thread and all of its messages together
  (the ``ON DELETE CASCADE`` foreign key backs this up at the schema level).

Timestamps come from a per-store monotonic clock, so ``created_at`` order is
insertion order and ``list_threads`` can break ``updated_at`` ties with it.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relaychat.core.errors import RelayChatError, StorageFailure, UnknownThread
from relaychat.models.base import utcnow
from relaychat.models.chat import DEFAULT_THREAD_TITLE, Message, MessageRole, Thread
from relaychat.models.setting import Setting
from relaychat.schemas.settings import MODEL_PREFERENCES_KEY, ModelPreferences

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 60


# =============================================================================
# Helpers
# =============================================================================


class MonotonicClock:
    """UTC clock that never returns the same or an earlier instant twice."""

    def __init__(self, now: Callable[[], datetime] = utcnow):
        self._now = now
        self._last: datetime | None = None

    def __call__(self) -> datetime:
        current = self._now()
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


def derive_title(content: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Thread title from the first non-blank line of a message."""
    for line in content.splitlines():
        title = " ".join(line.split())
        if title:
            if len(title) > max_length:
                return title[: max_length - 1].rstrip() + "…"
            return title
    return DEFAULT_THREAD_TITLE


class StoreEventKind(str, Enum):
    THREAD_CREATED = "thread_created"
    THREAD_UPDATED = "thread_updated"
    THREAD_DELETED = "thread_deleted"
    MESSAGE_APPENDED = "message_appended"
    SETTING_SAVED = "setting_saved"


@dataclass(frozen=True)
class StoreEvent:
    """Notification sent to listeners after a mutation has committed."""

    kind: StoreEventKind
    thread_id: UUID | None = None
    message_id: UUID | None = None
    key: str | None = None


StoreListener = Callable[[StoreEvent], None]


@dataclass(frozen=True)
class ThreadSummary:
    """Thread plus its message count, read in one statement."""

    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int


# =============================================================================
# ConversationStore
# =============================================================================


class ConversationStore:
    """Threads, messages and settings on top of an async SQLAlchemy engine.

    The session factory is created once per process and shared; each
    operation opens its own short-lived session.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_maker = session_maker
        self._clock = clock or MonotonicClock()
        self._listeners: list[StoreListener] = []

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session in a transaction; commit on exit, rollback on any error."""
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except RelayChatError:
                raise
            except SQLAlchemyError as e:
                logger.error(f"Store operation {operation} failed: {e}")
                raise StorageFailure(operation, type(e).__name__) from e

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # The write is already committed; a broken listener must not undo it
                logger.exception(f"Store listener failed for {event.kind.value}")

    # -------------------------------------------------------------------------
    # Threads
    # -------------------------------------------------------------------------

    async def create_thread(self, title: str | None = None) -> Thread:
        """Create and persist a new, empty thread."""
        now = self._clock()
        thread = Thread(
            id=uuid.uuid4(),
            title=((title or "").strip() or DEFAULT_THREAD_TITLE)[:255],
            created_at=now,
            updated_at=now,
        )
        async with self._transaction("create_thread") as session:
            session.add(thread)

        logger.debug(f"Created thread {thread.id}")
        self._notify(StoreEvent(StoreEventKind.THREAD_CREATED, thread_id=thread.id))
        return thread

    async def get_thread(self, thread_id: UUID) -> Thread | None:
        async with self._transaction("get_thread") as session:
            return await session.get(Thread, thread_id)

    async def list_threads(self) -> list[Thread]:
        """All threads, most recently active first; ties in insertion order."""
        async with self._transaction("list_threads") as session:
            result = await session.execute(
                select(Thread).order_by(
                    Thread.updated_at.desc(),
                    Thread.created_at.asc(),
                )
            )
            return list(result.scalars().all())

    async def list_thread_summaries(self, query: str | None = None) -> list[ThreadSummary]:
        """Threads with message counts for history views.

        Args:
            query: Optional case-insensitive substring filter on the title
        """
        message_count = (
            select(func.count(Message.id))
            .where(Message.thread_id == Thread.id)
            .correlate(Thread)
            .scalar_subquery()
        )
        stmt = select(Thread, message_count.label("message_count")).order_by(
            Thread.updated_at.desc(),
            Thread.created_at.asc(),
        )
        if query and query.strip():
            stmt = stmt.where(
                func.lower(Thread.title).contains(query.strip().lower(), autoescape=True)
            )

        async with self._transaction("list_thread_summaries") as session:
            rows = (await session.execute(stmt)).all()

        return [
            ThreadSummary(
                id=thread.id,
                title=thread.title,
                created_at=thread.created_at,
                updated_at=thread.updated_at,
                message_count=count,
            )
            for thread, count in rows
        ]

    async def rename_thread(self, thread_id: UUID, title: str) -> Thread:
        """Set a thread's title. Renaming does not count as activity.

        Raises:
            UnknownThread: If the thread does not exist
            ValueError: If the title is blank
        """
        title = title.strip()
        if not title:
            raise ValueError("Thread title must not be blank")

        async with self._transaction("rename_thread") as session:
            thread = await session.get(Thread, thread_id)
            if thread is None:
                raise UnknownThread(thread_id)
            thread.title = title[:255]

        self._notify(StoreEvent(StoreEventKind.THREAD_UPDATED, thread_id=thread_id))
        return thread

    async def delete_thread(self, thread_id: UUID) -> bool:
        """Delete a thread and every message in it, atomically.

        Returns:
            True if the thread existed
        """
        async with self._transaction("delete_thread") as session:
            removed = await session.execute(
                delete(Message).where(Message.thread_id == thread_id)
            )
            result = await session.execute(delete(Thread).where(Thread.id == thread_id))
            deleted = result.rowcount > 0

        if deleted:
            logger.info(f"Deleted thread {thread_id} with {removed.rowcount} messages")
            self._notify(StoreEvent(StoreEventKind.THREAD_DELETED, thread_id=thread_id))
        return deleted

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def append_message(
        self,
        thread_id: UUID,
        role: MessageRole | str,
        content: str,
        *,
        auto_title: bool = True,
    ) -> Message:
        """Persist a message and bump the thread's ``updated_at`` in one transaction.

        The first user message of a thread still carrying the placeholder
        title also names the thread (``auto_title``).

        Raises:
            UnknownThread: If the thread does not exist (nothing is written)
            ValueError: If ``role`` is not a MessageRole
        """
        role = MessageRole(role)

        async with self._transaction("append_message") as session:
            thread = await session.get(Thread, thread_id)
            if thread is None:
                raise UnknownThread(thread_id)

            now = self._clock()
            message = Message(
                id=uuid.uuid4(),
                thread_id=thread_id,
                role=role.value,
                content=content,
                created_at=now,
            )
            session.add(message)
            thread.updated_at = now
            if auto_title and role is MessageRole.USER and thread.title == DEFAULT_THREAD_TITLE:
                thread.title = derive_title(content)

        self._notify(
            StoreEvent(StoreEventKind.MESSAGE_APPENDED, thread_id=thread_id, message_id=message.id)
        )
        return message

    async def list_messages(self, thread_id: UUID) -> list[Message]:
        """Messages of a thread in creation order; empty for unknown threads."""
        async with self._transaction("list_messages") as session:
            result = await session.execute(
                select(Message)
                .where(Message.thread_id == thread_id)
                .order_by(Message.created_at.asc())
            )
            return list(result.scalars().all())

    async def count_messages(self, thread_id: UUID) -> int:
        """Number of messages in a thread; 0 for unknown threads."""
        async with self._transaction("count_messages") as session:
            result = await session.execute(
                select(func.count(Message.id)).where(Message.thread_id == thread_id)
            )
            return int(result.scalar_one())

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    async def save_setting(self, key: str, value: Any) -> None:
        """Store ``value`` (JSON-serialisable) under ``key``; last write wins."""
        async with self._transaction("save_setting") as session:
            result = await session.execute(select(Setting).where(Setting.key == key))
            setting = result.scalar_one_or_none()
            if setting is None:
                session.add(Setting(id=uuid.uuid4(), key=key, value=value, created_at=self._clock()))
            else:
                setting.value = value

        self._notify(StoreEvent(StoreEventKind.SETTING_SAVED, key=key))

    async def load_setting(self, key: str, default: Any = None) -> Any:
        async with self._transaction("load_setting") as session:
            result = await session.execute(select(Setting.value).where(Setting.key == key))
            row = result.first()
        return default if row is None else row[0]

    async def load_model_preferences(self) -> ModelPreferences:
        """Stored model preferences, or the defaults when none (or garbage) is stored."""
        raw = await self.load_setting(MODEL_PREFERENCES_KEY)
        if raw is None:
            return ModelPreferences()
        try:
            return ModelPreferences.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid stored model preferences: {e.error_count()} errors")
            return ModelPreferences()

    async def save_model_preferences(self, preferences: ModelPreferences) -> None:
        await self.save_setting(MODEL_PREFERENCES_KEY, preferences.model_dump(mode="json"))
