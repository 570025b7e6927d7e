"""Server-sent event rendering for chat streams.

Wire format:
  - event: token  data: {"delta": "..."}
  - event: done   data: {"chunks": N, "message_id": "..."?}
  - event: error  data: {"error": "Failed to process chat request"}

A failure before the first chunk never becomes an SSE response: the error is
raised instead, so the exception handlers answer with a non-2xx JSON body.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi.responses import StreamingResponse

from relaychat.core.errors import GENERIC_ERROR_MESSAGE, RelayChatError
from relaychat.services.chat_turns import TurnCompleted, TurnFailed
from relaychat.services.streaming import Done, StreamError, TextChunk

logger = logging.getLogger(__name__)


def _sse(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\n" + "data: " + json.dumps(payload) + "\n\n"


def render_event(event: Any) -> str:
    if isinstance(event, TextChunk):
        return _sse("token", {"delta": event.text})
    if isinstance(event, Done):
        return _sse("done", {"chunks": event.chunks})
    if isinstance(event, TurnCompleted):
        return _sse(
            "done",
            {"chunks": event.done.chunks, "message_id": str(event.message.id)},
        )
    if isinstance(event, StreamError | TurnFailed):
        logger.warning(f"Stream ended with {event.kind} after {event.after_chunks} chunks")
        return _sse("error", {"error": GENERIC_ERROR_MESSAGE})
    raise TypeError(f"Unexpected stream event: {type(event).__name__}")


def _failure_of(event: Any) -> RelayChatError | None:
    if isinstance(event, StreamError | TurnFailed):
        return event.error
    return None


async def open_event_stream(events: AsyncIterator[Any]) -> StreamingResponse:
    """Pull the first event, then stream the rest as SSE.

    Raises:
        ProviderFailure, StreamTimeout: If the stream fails before any chunk
        UnknownThread, StorageFailure: If an empty reply could not be committed
    """
    try:
        first = await anext(events)
    except StopAsyncIteration:
        first = None
    except BaseException:
        await events.aclose()
        raise

    failure = _failure_of(first)
    if failure is not None:
        await events.aclose()
        raise failure

    async def body() -> AsyncIterator[str]:
        try:
            if first is not None:
                yield render_event(first)
            async for event in events:
                yield render_event(event)
        except RelayChatError as e:
            # Headers are already sent; only an error event can end the stream
            logger.warning(f"Stream aborted with {e.kind}")
            yield _sse("error", {"error": GENERIC_ERROR_MESSAGE})
        finally:
            # Client disconnects land here too and release the provider connection
            await events.aclose()

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
