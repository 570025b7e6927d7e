"""Streaming pipeline: one uniform event stream for every provider.

``StreamingPipeline.stream`` returns a ``ChatStream``, a lazy, single-pass
async iterator of events:

    TextChunk, TextChunk, ..., Done
    TextChunk, ..., StreamError      (provider fault or timeout)

Exactly one terminal event (``Done`` or ``StreamError``) ends every stream
that is read to completion. The consumer drives pacing: each ``__anext__``
pulls one delta from the provider adapter, nothing is read ahead and nothing
is kept for replay.

Closing the stream (``aclose`` or leaving ``async with``) closes the adapter
iterator, which releases the provider connection. A wall-clock budget,
counted from the first pull, cancels the adapter and reports ``StreamTimeout``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from relaychat.core.errors import ProviderFailure, StreamTimeout
from relaychat.services.credentials import redact
from relaychat.services.provider_router import ProviderDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class TextChunk:
    """A piece of generated text, in provider order."""

    text: str


@dataclass(frozen=True)
class Done:
    """Successful end of stream."""

    chunks: int


@dataclass(frozen=True)
class StreamError:
    """Failed end of stream.

    ``after_chunks`` tells the caller how much partial text it already holds;
    0 means the failure happened before anything was delivered.
    """

    error: ProviderFailure | StreamTimeout
    after_chunks: int

    @property
    def kind(self) -> str:
        return self.error.kind

    @property
    def before_first_chunk(self) -> bool:
        return self.after_chunks == 0


StreamEvent = TextChunk | Done | StreamError


@dataclass(frozen=True)
class StreamOptions:
    """Sampling options passed to every adapter."""

    temperature: float = 0.7
    max_tokens: int = 2048


# =============================================================================
# ChatStream
# =============================================================================


class ChatStream:
    """Pull-based event stream over one provider adapter iterator."""

    def __init__(
        self,
        upstream: AsyncIterator[str],
        *,
        provider: str,
        timeout_seconds: float,
        secrets: list[str] | None = None,
    ):
        self._upstream = upstream
        self._provider = provider
        self._timeout = timeout_seconds
        self._secrets = secrets or []
        self._deadline: float | None = None
        self._finished = False
        self._upstream_closed = False
        self.chunks_delivered = 0
        self.cancelled = False

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration

        loop = asyncio.get_running_loop()
        if self._deadline is None:
            self._deadline = loop.time() + self._timeout

        while True:
            remaining = self._deadline - loop.time()
            try:
                if remaining <= 0:
                    raise TimeoutError
                text = await asyncio.wait_for(anext(self._upstream), remaining)
            except StopAsyncIteration:
                logger.info(f"{self._provider} stream done after {self.chunks_delivered} chunks")
                return await self._finish(Done(chunks=self.chunks_delivered))
            except TimeoutError:
                logger.warning(
                    f"{self._provider} stream timed out after {self._timeout:g}s "
                    f"({self.chunks_delivered} chunks delivered)"
                )
                return await self._finish(
                    StreamError(StreamTimeout(self._provider, self._timeout), self.chunks_delivered)
                )
            except ProviderFailure as e:
                return await self._fail(
                    ProviderFailure(e.provider, e.status, redact(e.message, self._secrets))
                )
            except Exception as e:
                # Adapters should raise ProviderFailure; anything else is still the provider's fault
                return await self._fail(
                    ProviderFailure(self._provider, None, redact(str(e), self._secrets))
                )

            if not text:
                continue
            self.chunks_delivered += 1
            return TextChunk(text)

    async def _fail(self, error: ProviderFailure) -> StreamError:
        logger.warning(
            f"{self._provider} stream failed after {self.chunks_delivered} chunks "
            f"(status={error.status}): {error.message}"
        )
        return await self._finish(StreamError(error, self.chunks_delivered))

    async def _finish(self, event: StreamEvent) -> StreamEvent:
        self._finished = True
        await self._close_upstream()
        return event

    async def _close_upstream(self) -> None:
        if self._upstream_closed:
            return
        self._upstream_closed = True
        aclose = getattr(self._upstream, "aclose", None)
        if aclose is not None:
            await aclose()

    async def aclose(self) -> None:
        """Stop the stream and release the provider connection.

        Closing before the terminal event marks the stream as cancelled. No
        terminal event is produced afterwards.
        """
        if not self._finished:
            self.cancelled = True
            self._finished = True
            logger.info(
                f"{self._provider} stream cancelled by consumer after "
                f"{self.chunks_delivered} chunks"
            )
        await self._close_upstream()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


# =============================================================================
# Pipeline
# =============================================================================


class StreamingPipeline:
    """Starts provider streams with fixed options and a wall-clock budget."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        options: StreamOptions | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.options = options or StreamOptions()

    def stream(
        self,
        descriptor: ProviderDescriptor,
        messages: list[dict[str, str]],
        options: StreamOptions | None = None,
    ) -> ChatStream:
        """Open a lazy stream; nothing is sent until the first pull."""
        options = options or self.options
        logger.info(
            f"Opening {descriptor.provider} stream ({descriptor.model}, "
            f"{len(messages)} messages)"
        )
        upstream = descriptor.adapter.stream(
            descriptor,
            messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        return ChatStream(
            upstream,
            provider=descriptor.provider,
            timeout_seconds=self.timeout_seconds,
            secrets=[descriptor.credential],
        )
