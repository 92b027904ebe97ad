from collections.abc import Mapping
from typing import Any, Protocol

import structlog

from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.publisher import RealtimePublisher
from app.infra.realtime.rooms import ADMIN_ROOM, user_room

logger = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    async def notify_user(
        self,
        user_id: int,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> None: ...

    async def notify_admins(
        self,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> None: ...


class NoopNotificationSink:
    async def notify_user(
        self,
        user_id: int,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        return None

    async def notify_admins(
        self,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        return None


class RealtimeNotificationSink:
    """Push notifications as ``notification`` events; nothing is stored."""

    def __init__(self, realtime: RealtimePublisher) -> None:
        self.realtime = realtime

    async def notify_user(
        self,
        user_id: int,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        logger.info("notification_sent", audience="user", user_id=user_id, title=title)
        await self.realtime.broadcast(
            [user_room(user_id)],
            RealtimeEvent.NOTIFICATION,
            {"title": title, "body": body, "data": dict(data or {})},
        )

    async def notify_admins(
        self,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        logger.info("notification_sent", audience="admins", title=title)
        await self.realtime.broadcast(
            [ADMIN_ROOM],
            RealtimeEvent.NOTIFICATION,
            {"title": title, "body": body, "data": dict(data or {})},
        )


async def safe_notify_user(
    sink: NotificationSink,
    user_id: int,
    title: str,
    body: str,
    data: Mapping[str, Any] | None = None,
) -> None:
    try:
        await sink.notify_user(user_id, title, body, data)
    except Exception:
        logger.warning(
            "notification_failed", user_id=user_id, title=title, exc_info=True
        )


async def safe_notify_admins(
    sink: NotificationSink,
    title: str,
    body: str,
    data: Mapping[str, Any] | None = None,
) -> None:
    try:
        await sink.notify_admins(title, body, data)
    except Exception:
        logger.warning("notification_failed", audience="admins", title=title, exc_info=True)
