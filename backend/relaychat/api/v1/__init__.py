"""API v1 module."""

from fastapi import APIRouter

from relaychat.api.v1 import chat, health, settings, threads

router = APIRouter()

router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(chat.router, tags=["chat"])
router.include_router(threads.router, tags=["threads"])
router.include_router(settings.router, tags=["settings"])
