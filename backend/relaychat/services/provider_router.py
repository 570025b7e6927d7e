"""Provider routing.

Maps a provider id plus the caller's credential bundle to a
``ProviderDescriptor``: which model to call, through which adapter, with
which key. Routing is synchronous, pure and never touches the network, so
``MissingCredential`` and ``UnsupportedProvider`` surface before any request
is made.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from relaychat.core.errors import UnsupportedProvider
from relaychat.services.credentials import REDACTED, resolve
from relaychat.services.llm_gateway import CompletionAdapter, LiteLLMAdapter

DEFAULT_PROVIDER = "openai"


@dataclass(frozen=True)
class ProviderSpec:
    """Static registry entry for one provider."""

    id: str
    label: str
    model: str
    adapter: CompletionAdapter = field(repr=False, compare=False)
    description: str = ""


@dataclass(frozen=True)
class ProviderDescriptor:
    """Everything needed to invoke one provider for one request.

    Built per request and discarded afterwards; ``repr`` masks the credential.
    """

    provider: str
    model: str
    credential: str = field(repr=False)
    adapter: CompletionAdapter = field(repr=False, compare=False)

    def __repr__(self) -> str:
        return (
            f"ProviderDescriptor(provider={self.provider!r}, model={self.model!r}, "
            f"credential={REDACTED!r})"
        )


def _registry(*specs: ProviderSpec) -> Mapping[str, ProviderSpec]:
    return MappingProxyType({spec.id: spec for spec in specs})


DEFAULT_REGISTRY: Mapping[str, ProviderSpec] = _registry(
    ProviderSpec(
        id="openai",
        label="OpenAI",
        model="gpt-4o",
        adapter=LiteLLMAdapter("openai"),
        description="GPT-4o",
    ),
    ProviderSpec(
        id="gemini",
        label="Google Gemini",
        model="gemini-pro",
        adapter=LiteLLMAdapter("gemini"),
        description="Gemini Pro",
    ),
    ProviderSpec(
        id="groq",
        label="Groq",
        model="mixtral-8x7b-32768",
        adapter=LiteLLMAdapter("groq"),
        description="Ultra-fast inference",
    ),
    ProviderSpec(
        id="cohere",
        label="Cohere",
        model="command-r-plus",
        adapter=LiteLLMAdapter("cohere_chat"),
        description="Command R+",
    ),
    ProviderSpec(
        id="cerebras",
        label="Cerebras",
        model="llama3.1-8b",
        adapter=LiteLLMAdapter("cerebras"),
        description="High-performance inference",
    ),
)


class ProviderRouter:
    """Resolves provider ids against an immutable registry."""

    def __init__(
        self,
        registry: Mapping[str, ProviderSpec] = DEFAULT_REGISTRY,
        default_provider: str = DEFAULT_PROVIDER,
    ):
        self._registry = MappingProxyType(dict(registry))
        self.default_provider = default_provider

    @property
    def provider_ids(self) -> list[str]:
        return list(self._registry)

    def providers(self) -> list[ProviderSpec]:
        return list(self._registry.values())

    def route(
        self,
        provider_id: str | None,
        credentials: Mapping[str, str],
    ) -> ProviderDescriptor:
        """Build the descriptor for ``provider_id`` (default provider when None).

        Raises:
            UnsupportedProvider: Unknown provider id
            MissingCredential: No usable credential for the provider
        """
        provider_id = provider_id or self.default_provider
        spec = self._registry.get(provider_id)
        if spec is None:
            raise UnsupportedProvider(provider_id)

        return ProviderDescriptor(
            provider=spec.id,
            model=spec.model,
            credential=resolve(credentials, spec.id),
            adapter=spec.adapter,
        )
