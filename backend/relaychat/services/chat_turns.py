"""Thread-bound chat turns.

Ties the streaming pipeline to the conversation store for one turn:

1. the thread is checked and the provider routed (no writes yet, so routing
   errors leave the store untouched);
2. the user message is committed;
3. the reply is streamed; on ``Done`` the assistant message is committed.

If the stream fails or the consumer walks away first, nothing else is
written unless the turn's ``PartialReplyPolicy`` is ``PERSIST`` and some text
had already arrived.
"""

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from uuid import UUID

from relaychat.core.errors import RelayChatError, UnknownThread
from relaychat.models.chat import Message, MessageRole
from relaychat.services.conversation_store import ConversationStore
from relaychat.services.provider_router import ProviderRouter
from relaychat.services.streaming import (
    ChatStream,
    Done,
    StreamError,
    StreamingPipeline,
    TextChunk,
)

logger = logging.getLogger(__name__)


class PartialReplyPolicy(str, enum.Enum):
    """What to do with text received before a failure or cancellation."""

    DISCARD = "discard"
    PERSIST = "persist"


@dataclass(frozen=True)
class TurnCompleted:
    """The reply finished and was committed."""

    done: Done
    message: Message


@dataclass(frozen=True)
class TurnFailed:
    """The turn ended without a committed reply.

    ``error`` is the stream's ``ProviderFailure`` / ``StreamTimeout``, or the
    store error raised while committing the reply (e.g. ``UnknownThread`` when
    the thread was deleted mid-stream). ``partial_message`` is set only under
    PERSIST.
    """

    error: RelayChatError
    after_chunks: int
    partial_message: Message | None = None

    @property
    def kind(self) -> str:
        return self.error.kind

    @property
    def before_first_chunk(self) -> bool:
        return self.after_chunks == 0


TurnEvent = TextChunk | TurnCompleted | TurnFailed


class ChatTurn:
    """A started turn whose reply is being streamed."""

    def __init__(
        self,
        store: ConversationStore,
        thread_id: UUID,
        user_message: Message,
        stream: ChatStream,
        policy: PartialReplyPolicy,
    ):
        self._store = store
        self.thread_id = thread_id
        self.user_message = user_message
        self._stream = stream
        self.policy = policy
        self.cancelled = False

    async def _persist_partial(self, parts: list[str]) -> Message | None:
        if self.policy is not PartialReplyPolicy.PERSIST or not parts:
            return None
        logger.info(f"Persisting partial reply ({len(parts)} chunks) in thread {self.thread_id}")
        return await self._store.append_message(
            self.thread_id, MessageRole.ASSISTANT, "".join(parts)
        )

    async def events(self) -> AsyncIterator[TurnEvent]:
        """Reply chunks followed by ``TurnCompleted`` or ``TurnFailed``."""
        parts: list[str] = []
        settled = False
        try:
            async for event in self._stream:
                if isinstance(event, TextChunk):
                    parts.append(event.text)
                    yield event
                elif isinstance(event, Done):
                    settled = True
                    try:
                        message = await self._store.append_message(
                            self.thread_id, MessageRole.ASSISTANT, "".join(parts)
                        )
                    except RelayChatError as e:
                        logger.warning(
                            f"Could not commit reply in thread {self.thread_id}: {e.kind}"
                        )
                        yield TurnFailed(error=e, after_chunks=len(parts))
                    else:
                        yield TurnCompleted(done=event, message=message)
                elif isinstance(event, StreamError):
                    settled = True
                    try:
                        partial = await self._persist_partial(parts)
                    except RelayChatError as e:
                        logger.warning(
                            f"Could not persist partial reply in thread {self.thread_id}: {e.kind}"
                        )
                        partial = None
                    yield TurnFailed(
                        error=event.error,
                        after_chunks=event.after_chunks,
                        partial_message=partial,
                    )
        finally:
            await self._stream.aclose()
            if not settled:
                self.cancelled = True
                try:
                    # Shielded: the consumer's task may itself be in cancellation
                    await asyncio.shield(self._persist_partial(parts))
                except RelayChatError as e:
                    logger.warning(
                        f"Could not persist partial reply in thread {self.thread_id}: {e.kind}"
                    )


class ChatTurnService:
    """Starts thread-bound turns."""

    def __init__(
        self,
        store: ConversationStore,
        router: ProviderRouter,
        pipeline: StreamingPipeline,
        policy: PartialReplyPolicy = PartialReplyPolicy.DISCARD,
    ):
        self.store = store
        self.router = router
        self.pipeline = pipeline
        self.policy = policy

    async def start_turn(
        self,
        thread_id: UUID,
        content: str,
        *,
        provider: str | None,
        credentials: Mapping[str, str],
        persist_partial: bool | None = None,
    ) -> ChatTurn:
        """Commit the user message and open the reply stream.

        Raises:
            UnknownThread: If the thread does not exist
            UnsupportedProvider, MissingCredential: Before anything is written
        """
        if await self.store.get_thread(thread_id) is None:
            raise UnknownThread(thread_id)

        descriptor = self.router.route(provider, credentials)

        user_message = await self.store.append_message(thread_id, MessageRole.USER, content)
        history = [
            {"role": m.role, "content": m.content}
            for m in await self.store.list_messages(thread_id)
        ]

        if persist_partial is None:
            policy = self.policy
        else:
            policy = PartialReplyPolicy.PERSIST if persist_partial else PartialReplyPolicy.DISCARD

        stream = self.pipeline.stream(descriptor, history)
        return ChatTurn(self.store, thread_id, user_message, stream, policy)
