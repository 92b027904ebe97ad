from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db_session

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/db")
async def db_health(session: AsyncSession = Depends(get_db_session)):
    await session.execute(text("SELECT 1"))
    return {"db": "ok"}


@router.get("/health/realtime")
async def realtime_health(request: Request) -> dict[str, int | str]:
    hub = getattr(request.app.state, "realtime_hub", None)
    if hub is None:
        return {"realtime": "unavailable", "connections": 0}
    return {"realtime": "ok", "connections": hub.connection_count()}
