"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relaychat import __version__
from relaychat.api.v1 import router as api_v1_router
from relaychat.core.config import settings
from relaychat.core.database import async_engine, async_session_maker, init_db
from relaychat.core.errors import (
    GENERIC_ERROR_MESSAGE,
    MissingCredential,
    ProviderFailure,
    RelayChatError,
    StorageFailure,
    StreamTimeout,
    UnknownThread,
    UnsupportedProvider,
)
from relaychat.schemas.common import ErrorResponse
from relaychat.services.chat_turns import ChatTurnService, PartialReplyPolicy
from relaychat.services.conversation_store import ConversationStore
from relaychat.services.provider_router import ProviderRouter
from relaychat.services.streaming import StreamingPipeline, StreamOptions

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[RelayChatError], int] = {
    MissingCredential: 400,
    UnsupportedProvider: 400,
    ProviderFailure: 502,
    StreamTimeout: 504,
    UnknownThread: 404,
    StorageFailure: 500,
}


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    logger.info("Starting relaychat API...")
    await init_db()

    store = ConversationStore(async_session_maker)
    provider_router = ProviderRouter(default_provider=settings.default_provider)
    pipeline = StreamingPipeline(
        timeout_seconds=settings.stream_timeout_seconds,
        options=StreamOptions(
            temperature=settings.chat_temperature,
            max_tokens=settings.chat_max_tokens,
        ),
    )
    app.state.store = store
    app.state.router = provider_router
    app.state.pipeline = pipeline
    app.state.turns = ChatTurnService(
        store,
        provider_router,
        pipeline,
        PartialReplyPolicy(settings.partial_reply_policy),
    )
    yield
    # Shutdown
    logger.info("Shutting down relaychat API...")
    await async_engine.dispose()


app = FastAPI(
    title="relaychat API",
    description="Multi-provider chat with a local conversation store",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RelayChatError)
async def relaychat_error_handler(request: Request, exc: RelayChatError) -> JSONResponse:
    """Collapse core failures into the generic message; the kind goes to the log only."""
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    logger.warning(f"{request.method} {request.url.path} failed: {exc.kind} ({status_code})")
    if isinstance(exc, UnknownThread):
        return JSONResponse({"detail": "Thread not found"}, status_code=status_code)
    return JSONResponse(
        ErrorResponse(error=GENERIC_ERROR_MESSAGE).model_dump(),
        status_code=status_code,
    )


# Include API router
app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": "relaychat API",
        "version": __version__,
        "docs": "/docs",
    }
