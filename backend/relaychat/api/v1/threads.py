"""Conversation store endpoints: threads, messages and thread-bound turns."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from relaychat.api.deps import Credentials, Store, TurnService
from relaychat.api.sse import open_event_stream
from relaychat.schemas.chat import (
    MessageCreate,
    MessageResponse,
    ThreadCreate,
    ThreadDetail,
    ThreadResponse,
    ThreadSummaryResponse,
    ThreadUpdate,
    TurnRequest,
)
from relaychat.schemas.common import ListResponse, StatusResponse

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_thread_or_404(store, thread_id: UUID):
    thread = await store.get_thread(thread_id)
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


@router.post("/threads", status_code=status.HTTP_201_CREATED)
async def create_thread(payload: ThreadCreate, store: Store) -> ThreadResponse:
    """Create a new, empty thread."""
    thread = await store.create_thread(payload.title)
    return ThreadResponse.model_validate(thread)


@router.get("/threads")
async def list_threads(
    store: Store,
    q: str | None = Query(None, max_length=255, description="Title filter"),
) -> ListResponse[ThreadSummaryResponse]:
    """List threads, most recently active first, with message counts."""
    summaries = await store.list_thread_summaries(q)
    return ListResponse(data=[ThreadSummaryResponse.model_validate(s) for s in summaries])


@router.get("/threads/{thread_id}")
async def get_thread(thread_id: UUID, store: Store) -> ThreadDetail:
    """Get a thread with its messages."""
    thread = await _get_thread_or_404(store, thread_id)
    messages = await store.list_messages(thread_id)
    return ThreadDetail(
        id=thread.id,
        title=thread.title,
        created_at=thread.created_at,
        updated_at=thread.updated_at,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )


@router.patch("/threads/{thread_id}")
async def rename_thread(thread_id: UUID, payload: ThreadUpdate, store: Store) -> ThreadResponse:
    """Rename a thread."""
    try:
        thread = await store.rename_thread(thread_id, payload.title)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return ThreadResponse.model_validate(thread)


@router.delete("/threads/{thread_id}")
async def delete_thread(thread_id: UUID, store: Store) -> StatusResponse:
    """Delete a thread together with all of its messages."""
    if not await store.delete_thread(thread_id):
        raise HTTPException(status_code=404, detail="Thread not found")
    return StatusResponse(status="deleted")


@router.get("/threads/{thread_id}/messages")
async def list_messages(thread_id: UUID, store: Store) -> ListResponse[MessageResponse]:
    """List a thread's messages in creation order."""
    await _get_thread_or_404(store, thread_id)
    messages = await store.list_messages(thread_id)
    return ListResponse(data=[MessageResponse.model_validate(m) for m in messages])


@router.post("/threads/{thread_id}/messages", status_code=status.HTTP_201_CREATED)
async def append_message(thread_id: UUID, payload: MessageCreate, store: Store) -> MessageResponse:
    """Append a message without generating a reply (e.g. keeping a partial reply)."""
    message = await store.append_message(thread_id, payload.role, payload.content)
    return MessageResponse.model_validate(message)


@router.post("/threads/{thread_id}/turns")
async def send_turn(
    thread_id: UUID,
    payload: TurnRequest,
    turns: TurnService,
    credentials: Credentials,
):
    """Commit the user message and stream the assistant reply (SSE).

    The reply is committed when the stream reports ``done``.
    """
    turn = await turns.start_turn(
        thread_id,
        payload.content,
        provider=payload.provider,
        credentials=credentials,
        persist_partial=payload.persist_partial,
    )
    return await open_event_stream(turn.events())
