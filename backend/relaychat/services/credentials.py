"""Per-request provider credentials.

Credentials travel in request headers (``x-<provider>-key``) and live only as
long as the request. Nothing in this module logs, stores or echoes a secret;
the only thing that may leave it is a present/absent boolean.
"""

import re
from collections.abc import Iterable, Iterator, Mapping

from relaychat.core.errors import MissingCredential

REDACTED = "***"

# Key shapes issued by the supported providers plus bearer headers
_SECRET_PATTERNS = [
    re.compile(r"sk-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"AIza[0-9A-Za-z_\-]{20,}"),
    re.compile(r"gsk_[A-Za-z0-9]{10,}"),
    re.compile(r"csk-[A-Za-z0-9]{10,}"),
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"),
]


def header_name(provider: str) -> str:
    """Header that carries the credential for ``provider``."""
    return f"x-{provider}-key"


class CredentialSet(Mapping[str, str]):
    """Immutable ``provider -> secret`` mapping.

    Blank values are treated as absent. ``repr`` never shows a secret.
    """

    def __init__(self, secrets: Mapping[str, str | None] | None = None):
        self._secrets: dict[str, str] = {}
        for provider, value in (secrets or {}).items():
            if value is not None and value.strip():
                self._secrets[provider] = value.strip()

    def __getitem__(self, provider: str) -> str:
        return self._secrets[provider]

    def __iter__(self) -> Iterator[str]:
        return iter(self._secrets)

    def __len__(self) -> int:
        return len(self._secrets)

    def __repr__(self) -> str:
        masked = ", ".join(f"{p}={REDACTED}" for p in sorted(self._secrets))
        return f"CredentialSet({masked})"

    __str__ = __repr__

    def presence(self, providers: Iterable[str]) -> dict[str, bool]:
        """Present/absent flag for each provider; safe to return to callers."""
        return {p: p in self._secrets for p in providers}


def credentials_from_headers(
    headers: Mapping[str, str],
    providers: Iterable[str],
) -> CredentialSet:
    """Collect the credential bundle from request headers.

    Args:
        headers: Case-insensitive header mapping (e.g. Starlette ``Headers``)
        providers: Provider ids to look for

    Returns:
        CredentialSet with every provider whose header carried a value
    """
    return CredentialSet({p: headers.get(header_name(p)) for p in providers})


def resolve(credentials: Mapping[str, str], provider: str) -> str:
    """Return the credential for ``provider``.

    Raises:
        MissingCredential: If absent or blank
    """
    secret = credentials.get(provider)
    if not secret or not secret.strip():
        raise MissingCredential(provider)
    return secret.strip()


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Strip credential material from ``text`` (provider error messages etc.)."""
    # Longest first so a secret containing another secret is fully masked
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text
