"""Chat API endpoints.

``POST /chat`` is the stateless request contract: the caller sends the whole
history (new input last) plus a provider id; credentials come from
``x-<provider>-key`` headers and are used for this request only.
"""

import logging

from fastapi import APIRouter

from relaychat.api.deps import Credentials, Pipeline, Router
from relaychat.api.sse import open_event_stream
from relaychat.schemas.chat import ChatRequest, ProviderInfo

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/chat/providers")
async def list_providers(provider_router: Router, credentials: Credentials) -> dict:
    """List registered providers and whether this request carried a key for each.

    Only a boolean is reported per provider; the keys themselves never leave
    the request.
    """
    presence = credentials.presence(provider_router.provider_ids)
    providers = [
        ProviderInfo(
            id=spec.id,
            label=spec.label,
            model=spec.model,
            description=spec.description,
            credential_present=presence[spec.id],
            is_default=spec.id == provider_router.default_provider,
        )
        for spec in provider_router.providers()
    ]
    return {
        "data": [p.model_dump() for p in providers],
        "default": provider_router.default_provider,
    }


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    provider_router: Router,
    pipeline: Pipeline,
    credentials: Credentials,
):
    """Stream a reply for the submitted history (SSE)."""
    # Raises MissingCredential / UnsupportedProvider before any network call
    descriptor = provider_router.route(payload.provider, credentials)

    messages = [{"role": m.role.value, "content": m.content} for m in payload.messages]
    return await open_event_stream(pipeline.stream(descriptor, messages))
