from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.actors import AdminActor
from app.domain.enums import CountdownToggleField
from app.infra.db.models import CountdownEvent
from app.infra.db.repositories import CountdownRepository
from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_broadcast_all,
)
from app.services.errors import CountdownNotFoundError
from app.services.payloads import countdown_payload

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("title", "description", "end_date", "is_active")


def _parse_datetime(value: object, field: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"{field} must be an ISO datetime.") from exc
    if not isinstance(value, datetime):
        raise ValueError(f"{field} must be an ISO datetime.")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


@dataclass(slots=True)
class CountdownDraft:
    title: str
    event_type: str
    start_date: datetime
    end_date: datetime
    description: str = ""
    display_on_homepage: bool = False
    display_on_product: bool = False
    related_auction_id: int | None = None
    related_product_id: int | None = None


class CountdownService:
    """Admin-driven countdown rows, fanned out to every connected client.

    Updates are last-writer-wins; there is no row locking here.
    """

    def __init__(
        self,
        session: AsyncSession,
        countdowns: CountdownRepository | None = None,
        realtime: RealtimePublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session
        self.countdowns = countdowns or CountdownRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()
        self.clock = clock or (lambda: datetime.now(UTC))

    async def create(self, admin: AdminActor, draft: CountdownDraft) -> CountdownEvent:
        title = draft.title.strip()
        event_type = draft.event_type.strip()
        if not title or not event_type:
            raise ValueError("Title and event type are required.")
        if draft.end_date <= draft.start_date:
            raise ValueError("End date must be after start date.")

        try:
            event = await self.countdowns.create(
                title=title,
                description=draft.description.strip(),
                event_type=event_type,
                start_date=draft.start_date,
                end_date=draft.end_date,
                is_active=True,
                display_on_homepage=draft.display_on_homepage,
                display_on_product=draft.display_on_product,
                related_auction_id=draft.related_auction_id,
                related_product_id=draft.related_product_id,
                created_by=admin.id,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(event)

        logger.info("countdown_created", event_id=event.id, admin_id=admin.id)
        return event

    async def start(self, admin: AdminActor, event_id: int) -> CountdownEvent:
        event = await self._set_active(admin, event_id, True)
        await safe_broadcast_all(
            self.realtime, RealtimeEvent.COUNTDOWN_STARTED, {"event_id": event.id}
        )
        return event

    async def stop(self, admin: AdminActor, event_id: int) -> CountdownEvent:
        event = await self._set_active(admin, event_id, False)
        await safe_broadcast_all(
            self.realtime, RealtimeEvent.COUNTDOWN_STOPPED, {"event_id": event.id}
        )
        return event

    async def update(
        self, admin: AdminActor, event_id: int, updates: dict
    ) -> CountdownEvent:
        """Apply the recognised keys of ``updates``; unknown keys are ignored."""
        event = await self._get_or_raise(event_id)
        applied = {key: updates[key] for key in UPDATABLE_FIELDS if updates.get(key) is not None}
        if not applied:
            return event

        if "title" in applied:
            applied["title"] = str(applied["title"]).strip()
            if not applied["title"]:
                raise ValueError("Title cannot be empty.")
        if "description" in applied:
            applied["description"] = str(applied["description"]).strip()
        if "end_date" in applied:
            end_date = _parse_datetime(applied["end_date"], "end_date")
            if end_date <= event.start_date:
                raise ValueError("End date must be after start date.")
            applied["end_date"] = end_date
        if "is_active" in applied:
            applied["is_active"] = bool(applied["is_active"])

        try:
            for key, value in applied.items():
                setattr(event, key, value)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(event)

        logger.info(
            "countdown_updated", event_id=event.id, admin_id=admin.id, fields=sorted(applied)
        )
        await safe_broadcast_all(
            self.realtime,
            RealtimeEvent.COUNTDOWN_UPDATED,
            {"event_id": event.id, "updates": countdown_payload(event)},
        )
        return event

    async def delete(self, admin: AdminActor, event_id: int) -> None:
        try:
            deleted = await self.countdowns.delete(event_id)
            if not deleted:
                raise CountdownNotFoundError(event_id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("countdown_deleted", event_id=event_id, admin_id=admin.id)
        await safe_broadcast_all(
            self.realtime, RealtimeEvent.COUNTDOWN_DELETED, {"event_id": event_id}
        )

    async def toggle(
        self, admin: AdminActor, event_id: int, field: CountdownToggleField
    ) -> CountdownEvent:
        event = await self._get_or_raise(event_id)
        try:
            setattr(event, field.value, not getattr(event, field.value))
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(event)

        logger.info(
            "countdown_toggled", event_id=event.id, admin_id=admin.id, field=field.value
        )
        await safe_broadcast_all(
            self.realtime,
            RealtimeEvent.COUNTDOWN_UPDATED,
            {"event_id": event.id, "updates": countdown_payload(event)},
        )
        return event

    async def list_active(self) -> list[CountdownEvent]:
        return await self.countdowns.list_active(self.clock())

    async def get_active(self, event_id: int) -> CountdownEvent:
        """Public read of one countdown; stopped events are reported as missing."""
        event = await self.countdowns.get_by_id(event_id)
        if event is None or not event.is_active:
            raise CountdownNotFoundError(event_id)
        return event

    async def _set_active(
        self, admin: AdminActor, event_id: int, is_active: bool
    ) -> CountdownEvent:
        event = await self._get_or_raise(event_id)
        try:
            event.is_active = is_active
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(event)
        logger.info(
            "countdown_activity_changed",
            event_id=event.id,
            admin_id=admin.id,
            is_active=is_active,
        )
        return event

    async def _get_or_raise(self, event_id: int) -> CountdownEvent:
        event = await self.countdowns.get_by_id(event_id)
        if event is None:
            raise CountdownNotFoundError(event_id)
        return event
