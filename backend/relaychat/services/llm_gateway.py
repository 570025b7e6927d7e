"""LLM Gateway - provider adapters behind one streaming interface.

Every provider is reached through a ``CompletionAdapter``: given messages and
sampling options it produces a lazy sequence of text deltas. The production
adapter is backed by LiteLLM, which already speaks OpenAI, Gemini, Groq,
Cohere and Cerebras, so one class covers all five providers and a new
provider usually means one registry entry.

Note: LiteLLM is imported lazily; importing it pulls in aiohttp and a large
provider table that the store-only code paths never need.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from relaychat.core.errors import ProviderFailure
from relaychat.services.credentials import redact

if TYPE_CHECKING:
    from relaychat.services.provider_router import ProviderDescriptor

logger = logging.getLogger(__name__)

# Module-level flag to track if litellm is initialized
_litellm_initialized = False


def _ensure_litellm():
    """Lazy initialize LiteLLM on first use."""
    global _litellm_initialized
    if _litellm_initialized:
        return

    import litellm

    litellm.drop_params = True  # Drop unsupported params instead of error
    litellm.suppress_debug_info = True

    # LiteLLM callbacks may log request payloads; credentials must never reach a log
    litellm.success_callback = []
    litellm.failure_callback = []
    litellm._async_success_callback = []
    litellm._async_failure_callback = []

    _litellm_initialized = True
    logger.debug("LiteLLM initialized")


class CompletionAdapter(ABC):
    """One provider family's streaming completion capability."""

    @abstractmethod
    def stream(
        self,
        descriptor: "ProviderDescriptor",
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        """Produce text deltas in the order the provider emits them.

        The returned iterator must release the upstream connection when it is
        closed (``aclose``) or cancelled, whether or not it was exhausted.

        Raises (from iteration):
            ProviderFailure: For provider-side rejections and stream faults
        """
        ...


def _status_of(exc: BaseException) -> int | None:
    """HTTP status carried by a LiteLLM / httpx exception, if any."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


async def _close_quietly(response: Any) -> None:
    """Close a LiteLLM stream wrapper and its underlying HTTP stream."""
    for target in (response, getattr(response, "completion_stream", None)):
        close = getattr(target, "aclose", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as e:
            # Closing a half-read HTTP stream can raise; the connection is gone either way
            logger.debug(f"Ignoring error while closing provider stream: {type(e).__name__}")
        return


class LiteLLMAdapter(CompletionAdapter):
    """Streams completions through ``litellm.acompletion``.

    Model naming follows LiteLLM's provider prefixes, e.g. ``openai/gpt-4o``,
    ``gemini/gemini-pro``, ``groq/mixtral-8x7b-32768``.
    """

    def __init__(self, prefix: str):
        self.prefix = prefix

    def model_name(self, model: str) -> str:
        return f"{self.prefix}/{model}"

    async def stream(
        self,
        descriptor: "ProviderDescriptor",
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        # Lazy import litellm
        _ensure_litellm()
        from litellm import acompletion

        secrets = [descriptor.credential]
        response = None
        try:
            try:
                response = await acompletion(
                    model=self.model_name(descriptor.model),
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    stream=True,
                    api_key=descriptor.credential,
                )
            except Exception as e:
                raise ProviderFailure(
                    descriptor.provider, _status_of(e), redact(str(e), secrets)
                ) from None

            try:
                async for chunk in response:
                    if chunk.choices and chunk.choices[0].delta and chunk.choices[0].delta.content:
                        yield chunk.choices[0].delta.content
            except Exception as e:
                raise ProviderFailure(
                    descriptor.provider, _status_of(e), redact(str(e), secrets)
                ) from None
        finally:
            if response is not None:
                await _close_quietly(response)

    def __repr__(self) -> str:
        return f"<LiteLLMAdapter {self.prefix}>"
