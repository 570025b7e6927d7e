"""Domain exceptions shared by the chat pipeline and the conversation store.

Every failure the core can produce derives from ``RelayChatError``. The HTTP
boundary maps them onto one generic user-facing message; the detailed kind
and attributes exist for logs and tests only.
"""

from uuid import UUID

# Shown to users for every core failure.
GENERIC_ERROR_MESSAGE = "Failed to process chat request"


class RelayChatError(Exception):
    """Base class for all relaychat domain errors."""

    kind: str = "error"


# =============================================================================
# Routing
# =============================================================================


class MissingCredential(RelayChatError):
    """Raised when the caller supplied no usable credential for a provider.

    The message names the provider only, never any credential material.
    """

    kind = "missing_credential"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"No credential provided for provider '{provider}'")


class UnsupportedProvider(RelayChatError):
    """Raised when a provider id is not in the routing registry."""

    kind = "unsupported_provider"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported provider: '{provider}'")


# =============================================================================
# Streaming
# =============================================================================


class ProviderFailure(RelayChatError):
    """Raised (or reported) when the upstream provider rejects or breaks a stream.

    ``message`` must already be redacted when this is constructed.
    """

    kind = "provider_failure"

    def __init__(self, provider: str, status: int | None, message: str):
        self.provider = provider
        self.status = status
        self.message = message
        super().__init__(f"{provider} failed (status={status}): {message}")


class StreamTimeout(RelayChatError):
    """Raised when a stream exceeds its wall-clock budget."""

    kind = "timeout"

    def __init__(self, provider: str, budget_seconds: float):
        self.provider = provider
        self.budget_seconds = budget_seconds
        super().__init__(f"{provider} stream exceeded {budget_seconds:g}s budget")


# =============================================================================
# Conversation store
# =============================================================================


class UnknownThread(RelayChatError):
    """Raised when a write targets a thread that does not exist."""

    kind = "unknown_thread"

    def __init__(self, thread_id: UUID):
        self.thread_id = thread_id
        super().__init__(f"Thread not found: {thread_id}")


class StorageFailure(RelayChatError):
    """Raised when the underlying database fails; the transaction was rolled back."""

    kind = "storage_failure"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")
