"""Tests for the streaming pipeline and the LiteLLM adapter."""

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from relaychat.core.errors import ProviderFailure, StreamTimeout
from relaychat.services.credentials import REDACTED
from relaychat.services.llm_gateway import LiteLLMAdapter
from relaychat.services.provider_router import ProviderDescriptor
from relaychat.services.streaming import (
    ChatStream,
    Done,
    StreamError,
    StreamingPipeline,
    StreamOptions,
    TextChunk,
)

from conftest import OPENAI_KEY, ScriptedAdapter

HISTORY = [{"role": "user", "content": "Hi"}]


def descriptor_for(adapter, credential: str = OPENAI_KEY) -> ProviderDescriptor:
    return ProviderDescriptor(
        provider="openai",
        model="gpt-4o",
        credential=credential,
        adapter=adapter,
    )


async def collect(stream: ChatStream) -> list:
    return [event async for event in stream]


# =============================================================================
# Happy path
# =============================================================================


class TestStreamRoundTrip:
    @pytest.mark.asyncio
    async def test_chunks_then_done(self):
        adapter = ScriptedAdapter(["Hel", "lo", " world"])
        pipeline = StreamingPipeline(timeout_seconds=5)

        events = await collect(pipeline.stream(descriptor_for(adapter), HISTORY))

        assert events == [TextChunk("Hel"), TextChunk("lo"), TextChunk(" world"), Done(chunks=3)]
        assert "".join(e.text for e in events if isinstance(e, TextChunk)) == "Hello world"

    @pytest.mark.asyncio
    async def test_empty_deltas_are_skipped(self):
        adapter = ScriptedAdapter(["", "a", "", "b"])

        events = await collect(StreamingPipeline().stream(descriptor_for(adapter), HISTORY))

        assert events == [TextChunk("a"), TextChunk("b"), Done(chunks=2)]

    @pytest.mark.asyncio
    async def test_provider_that_sends_nothing_is_done(self):
        adapter = ScriptedAdapter([])

        events = await collect(StreamingPipeline().stream(descriptor_for(adapter), HISTORY))

        assert events == [Done(chunks=0)]

    @pytest.mark.asyncio
    async def test_options_and_history_reach_adapter(self):
        adapter = ScriptedAdapter(["x"])
        pipeline = StreamingPipeline(options=StreamOptions(temperature=0.2, max_tokens=64))

        await collect(pipeline.stream(descriptor_for(adapter), HISTORY))

        assert adapter.calls == [
            {
                "provider": "openai",
                "model": "gpt-4o",
                "credential": OPENAI_KEY,
                "messages": HISTORY,
                "temperature": 0.2,
                "max_tokens": 64,
            }
        ]

    @pytest.mark.asyncio
    async def test_stream_is_lazy(self):
        adapter = ScriptedAdapter(["x"])

        stream = StreamingPipeline().stream(descriptor_for(adapter), HISTORY)

        assert adapter.calls == []
        assert await anext(stream) == TextChunk("x")
        assert len(adapter.calls) == 1

    @pytest.mark.asyncio
    async def test_nothing_after_terminal_event(self):
        stream = StreamingPipeline().stream(descriptor_for(ScriptedAdapter(["x"])), HISTORY)

        await collect(stream)

        assert stream.finished
        with pytest.raises(StopAsyncIteration):
            await anext(stream)


# =============================================================================
# Failures
# =============================================================================


class TestStreamFailures:
    @pytest.mark.asyncio
    async def test_failure_before_first_chunk(self):
        adapter = ScriptedAdapter(
            ["never"],
            error=ProviderFailure("openai", 401, "Invalid API key"),
            fail_at=0,
        )

        events = await collect(StreamingPipeline().stream(descriptor_for(adapter), HISTORY))

        assert len(events) == 1
        assert isinstance(events[0], StreamError)
        assert events[0].before_first_chunk
        assert events[0].kind == "provider_failure"
        assert events[0].error.status == 401

    @pytest.mark.asyncio
    async def test_mid_stream_failure_keeps_partial_order(self):
        adapter = ScriptedAdapter(
            ["a", "b", "c"],
            error=ProviderFailure("openai", 500, "upstream reset"),
            fail_at=2,
        )

        events = await collect(StreamingPipeline().stream(descriptor_for(adapter), HISTORY))

        assert events[:2] == [TextChunk("a"), TextChunk("b")]
        assert isinstance(events[2], StreamError)
        assert events[2].after_chunks == 2
        assert not events[2].before_first_chunk
        assert len(events) == 3

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_redacted_provider_failure(self, caplog):
        adapter = ScriptedAdapter(
            ["a"],
            error=RuntimeError(f"connection dropped for key {OPENAI_KEY}"),
            fail_at=1,
        )

        with caplog.at_level(logging.DEBUG):
            events = await collect(StreamingPipeline().stream(descriptor_for(adapter), HISTORY))

        error = events[-1]
        assert isinstance(error, StreamError)
        assert isinstance(error.error, ProviderFailure)
        assert OPENAI_KEY not in error.error.message
        assert REDACTED in error.error.message
        assert OPENAI_KEY not in caplog.text

    @pytest.mark.asyncio
    async def test_adapter_closed_after_failure(self):
        adapter = ScriptedAdapter(["a"], error=ProviderFailure("openai", 500, "boom"), fail_at=1)

        await collect(StreamingPipeline().stream(descriptor_for(adapter), HISTORY))

        assert adapter.closed == 1


# =============================================================================
# Timeout
# =============================================================================


class TestStreamTimeout:
    @pytest.mark.asyncio
    async def test_silent_provider_times_out(self):
        adapter = ScriptedAdapter([], hang=True)
        pipeline = StreamingPipeline(timeout_seconds=0.05)

        events = await collect(pipeline.stream(descriptor_for(adapter), HISTORY))

        assert len(events) == 1
        assert isinstance(events[0], StreamError)
        assert isinstance(events[0].error, StreamTimeout)
        assert events[0].kind == "timeout"
        assert events[0].before_first_chunk
        assert adapter.closed == 1

    @pytest.mark.asyncio
    async def test_budget_covers_the_whole_stream(self):
        # Each chunk is quick, but together they exceed the budget
        adapter = ScriptedAdapter(["a"] * 50, delay=0.01)
        pipeline = StreamingPipeline(timeout_seconds=0.1)

        events = await collect(pipeline.stream(descriptor_for(adapter), HISTORY))

        assert isinstance(events[-1], StreamError)
        assert events[-1].kind == "timeout"
        assert 0 < events[-1].after_chunks < 50
        assert adapter.closed == 1


# =============================================================================
# Cancellation
# =============================================================================


class TestStreamCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_two_of_five_chunks(self):
        adapter = ScriptedAdapter(["1", "2", "3", "4", "5"])
        stream = StreamingPipeline().stream(descriptor_for(adapter), HISTORY)

        received = [await anext(stream), await anext(stream)]
        await stream.aclose()

        assert received == [TextChunk("1"), TextChunk("2")]
        assert stream.cancelled
        assert adapter.closed == 1
        assert adapter.yielded == 2
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_async_with_closes_stream(self):
        adapter = ScriptedAdapter(["1", "2", "3"])

        async with StreamingPipeline().stream(descriptor_for(adapter), HISTORY) as stream:
            await anext(stream)

        assert stream.cancelled
        assert adapter.closed == 1

    @pytest.mark.asyncio
    async def test_close_after_done_is_not_a_cancellation(self):
        adapter = ScriptedAdapter(["1"])
        stream = StreamingPipeline().stream(descriptor_for(adapter), HISTORY)

        await collect(stream)
        await stream.aclose()

        assert not stream.cancelled
        assert adapter.closed == 1

    @pytest.mark.asyncio
    async def test_consumer_task_cancelled_mid_stream(self):
        adapter = ScriptedAdapter(["1", "2"], hang=True)
        stream = StreamingPipeline(timeout_seconds=10).stream(descriptor_for(adapter), HISTORY)

        async def consume():
            async with stream:
                async for _ in stream:
                    pass

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert stream.cancelled
        assert adapter.closed == 1


# =============================================================================
# LiteLLM adapter
# =============================================================================


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class _FakeLiteLLMStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def aclose(self):
        self.closed = True


class TestLiteLLMAdapter:
    @pytest.mark.asyncio
    async def test_streams_delta_content(self):
        response = _FakeLiteLLMStream([_chunk("Hel"), _chunk(None), _chunk("lo")])
        adapter = LiteLLMAdapter("openai")

        with patch("litellm.acompletion", new=AsyncMock(return_value=response)) as acompletion:
            deltas = [d async for d in adapter.stream(
                descriptor_for(adapter), HISTORY, temperature=0.7, max_tokens=2048
            )]

        assert deltas == ["Hel", "lo"]
        assert response.closed
        kwargs = acompletion.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o"
        assert kwargs["stream"] is True
        assert kwargs["api_key"] == OPENAI_KEY
        assert kwargs["messages"] == HISTORY

    @pytest.mark.asyncio
    async def test_rejection_is_redacted_provider_failure(self):
        error = Exception(f"AuthenticationError: Incorrect API key provided: {OPENAI_KEY}")
        error.status_code = 401
        adapter = LiteLLMAdapter("openai")

        with patch("litellm.acompletion", new=AsyncMock(side_effect=error)):
            with pytest.raises(ProviderFailure) as exc_info:
                async for _ in adapter.stream(
                    descriptor_for(adapter), HISTORY, temperature=0.7, max_tokens=2048
                ):
                    pass

        assert exc_info.value.status == 401
        assert exc_info.value.provider == "openai"
        assert OPENAI_KEY not in str(exc_info.value)
        assert exc_info.value.__cause__ is None

    @pytest.mark.asyncio
    async def test_closing_early_closes_response(self):
        response = _FakeLiteLLMStream([_chunk("a"), _chunk("b"), _chunk("c")])
        adapter = LiteLLMAdapter("groq")

        with patch("litellm.acompletion", new=AsyncMock(return_value=response)):
            upstream = adapter.stream(
                descriptor_for(adapter), HISTORY, temperature=0.7, max_tokens=2048
            )
            assert await anext(upstream) == "a"
            await upstream.aclose()

        assert response.closed
