"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from buddy.api.v1 import auth, chat, finalize, memory, ping, thread

api_router = APIRouter()

api_router.include_router(ping.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(thread.router, prefix="/thread", tags=["thread"])
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
api_router.include_router(finalize.router, prefix="/finalize", tags=["finalize"])
api_router.include_router(memory.router, prefix="/memory", tags=["memory"])
