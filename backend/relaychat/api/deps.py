"""Shared API dependencies.

Long-lived collaborators are created once in the application lifespan and
kept on ``app.state``; dependencies only hand out references.
"""

from typing import Annotated

from fastapi import Depends, Request

from relaychat.services.chat_turns import ChatTurnService
from relaychat.services.conversation_store import ConversationStore
from relaychat.services.credentials import CredentialSet, credentials_from_headers
from relaychat.services.provider_router import ProviderRouter
from relaychat.services.streaming import StreamingPipeline


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_router(request: Request) -> ProviderRouter:
    return request.app.state.router


def get_pipeline(request: Request) -> StreamingPipeline:
    return request.app.state.pipeline


def get_turn_service(request: Request) -> ChatTurnService:
    return request.app.state.turns


def get_credentials(
    request: Request,
    router: Annotated[ProviderRouter, Depends(get_router)],
) -> CredentialSet:
    """Credential bundle from ``x-<provider>-key`` headers; never stored."""
    return credentials_from_headers(request.headers, router.provider_ids)


Store = Annotated[ConversationStore, Depends(get_store)]
Router = Annotated[ProviderRouter, Depends(get_router)]
Pipeline = Annotated[StreamingPipeline, Depends(get_pipeline)]
TurnService = Annotated[ChatTurnService, Depends(get_turn_service)]
Credentials = Annotated[CredentialSet, Depends(get_credentials)]
