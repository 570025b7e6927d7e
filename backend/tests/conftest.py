"""Shared fixtures: a file-backed store per test and scripted provider adapters."""

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from relaychat.core.database import build_engine, build_session_maker, init_db
from relaychat.services.conversation_store import ConversationStore
from relaychat.services.llm_gateway import CompletionAdapter
from relaychat.services.provider_router import DEFAULT_REGISTRY, ProviderRouter, ProviderSpec

OPENAI_KEY = "sk-test-0123456789abcdef"
GROQ_KEY = "gsk_test0123456789abcdef"


# =============================================================================
# Fake provider adapters
# =============================================================================


class ScriptedAdapter(CompletionAdapter):
    """Adapter that replays a fixed list of deltas.

    Attributes are mutable so a test can reshape the script after the app has
    been wired:

    - ``fail_at``: index at which ``error`` is raised instead of a chunk
      (``len(chunks)`` fails after the last chunk)
    - ``hang``: sleep forever once the chunks are exhausted
    - ``delay``: pause before every chunk
    - ``after_chunk``: coroutine function awaited once a chunk has been consumed
    """

    def __init__(
        self,
        chunks: list[str] | None = None,
        *,
        error: Exception | None = None,
        fail_at: int | None = None,
        hang: bool = False,
        delay: float = 0.0,
    ):
        self.chunks = list(chunks or [])
        self.error = error
        self.fail_at = fail_at
        self.hang = hang
        self.delay = delay
        self.after_chunk: Callable[[], Awaitable[None]] | None = None
        self.calls: list[dict] = []
        self.yielded = 0
        self.closed = 0

    async def stream(self, descriptor, messages, *, temperature, max_tokens):
        self.calls.append(
            {
                "provider": descriptor.provider,
                "model": descriptor.model,
                "credential": descriptor.credential,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        try:
            for index, chunk in enumerate(self.chunks):
                if self.fail_at == index:
                    raise self.error
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.yielded += 1
                yield chunk
                if self.after_chunk is not None:
                    await self.after_chunk()
            if self.fail_at is not None and self.fail_at >= len(self.chunks):
                raise self.error
            if self.hang:
                await asyncio.sleep(3600)
        finally:
            self.closed += 1


def registry_with(adapter: CompletionAdapter) -> dict[str, ProviderSpec]:
    """The production registry with every adapter swapped for ``adapter``."""
    return {
        provider_id: ProviderSpec(
            id=spec.id,
            label=spec.label,
            model=spec.model,
            adapter=adapter,
            description=spec.description,
        )
        for provider_id, spec in DEFAULT_REGISTRY.items()
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite file with the schema applied."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'relaychat.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def store(session_maker) -> ConversationStore:
    return ConversationStore(session_maker)


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter(["Hel", "lo", " world"])


@pytest.fixture
def make_router() -> Callable[..., ProviderRouter]:
    def _make(adapter: CompletionAdapter, default_provider: str = "openai") -> ProviderRouter:
        return ProviderRouter(registry_with(adapter), default_provider=default_provider)

    return _make


@pytest.fixture
def router(make_router, adapter) -> ProviderRouter:
    return make_router(adapter)
