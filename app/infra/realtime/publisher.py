from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import structlog

from app.infra.realtime.events import RealtimeEvent

logger = structlog.get_logger(__name__)


class RealtimePublisher(Protocol):
    async def broadcast(
        self,
        rooms: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None: ...

    async def broadcast_all(
        self,
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None: ...


class NoopRealtimePublisher:
    async def broadcast(
        self,
        rooms: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        _ = rooms
        _ = event
        _ = payload
        return None

    async def broadcast_all(
        self,
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        _ = event
        _ = payload
        return None


async def safe_broadcast(
    realtime: RealtimePublisher,
    rooms: Sequence[str],
    event: RealtimeEvent,
    payload: Mapping[str, Any],
) -> None:
    """Fan out after commit; a failed push never undoes the write."""
    try:
        await realtime.broadcast(rooms, event, payload)
    except Exception:
        logger.warning(
            "realtime_broadcast_failed",
            realtime_event=event.value,
            rooms=list(rooms),
            exc_info=True,
        )


async def safe_broadcast_all(
    realtime: RealtimePublisher,
    event: RealtimeEvent,
    payload: Mapping[str, Any],
) -> None:
    try:
        await realtime.broadcast_all(event, payload)
    except Exception:
        logger.warning(
            "realtime_broadcast_failed",
            realtime_event=event.value,
            rooms="*",
            exc_info=True,
        )
