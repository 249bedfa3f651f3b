"""Liveness probe."""

from fastapi import APIRouter

from buddy.database import utcnow

router = APIRouter()


@router.get("/ping")
async def ping() -> dict:
    return {"ok": True, "ts": int(utcnow().timestamp() * 1000)}
