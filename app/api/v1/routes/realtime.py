import json
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket
from sqlalchemy.exc import SQLAlchemyError
from starlette.websockets import WebSocketDisconnect

from app.api.v1.errors import SERVICE_ERRORS, to_api_error
from app.core.config import get_settings
from app.core.db import get_session_factory
from app.core.identity import resolve_actor
from app.core.rate_limit import InMemoryRateLimiter
from app.domain.actors import (
    Actor,
    AdminActor,
    UserActor,
    VisitorActor,
    sender_type_for,
)
from app.infra.db.repositories import AuctionRepository
from app.infra.notifications import RealtimeNotificationSink
from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.hub import InMemoryRealtimeHub, build_envelope
from app.infra.realtime.rooms import auction_room, conversation_room, default_rooms
from app.services.auction_service import AuctionService
from app.services.conversation_service import ConversationService
from app.services.countdown_service import CountdownService
from app.services.errors import AuctionNotFoundError, RateLimitedError
from app.services.payloads import countdown_payload, message_payload

router = APIRouter()
logger = structlog.get_logger(__name__)

COUNTDOWN_ACTIONS = {
    "start_countdown": "started",
    "stop_countdown": "stopped",
    "update_countdown": "updated",
    "delete_countdown": "deleted",
}


@dataclass(slots=True)
class _Connection:
    websocket: WebSocket
    hub: InMemoryRealtimeHub
    actor: Actor
    limiter: InMemoryRateLimiter

    async def reply(self, event: str, payload: dict[str, Any]) -> None:
        await self.websocket.send_json(build_envelope(event, payload))

    async def error(
        self,
        detail: str,
        request_id: Any = None,
        *,
        status_code: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        await self.reply(
            "system.error",
            {
                "success": False,
                "detail": detail,
                "request_id": request_id,
                "status_code": status_code,
                "data": data,
            },
        )

    async def service_error(self, exc: Exception, request_id: Any = None) -> None:
        api_error = to_api_error(exc)
        if api_error is None:
            logger.exception("realtime_action_unmapped_error", error=type(exc).__name__)
            await self.error("Internal server error", request_id, status_code=500)
            return
        await self.error(
            str(api_error.detail),
            request_id,
            status_code=api_error.status_code,
            data=api_error.data,
        )


def _parse_id(raw: Any) -> int | None:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _conversation_service(session, hub: InMemoryRealtimeHub) -> ConversationService:
    return ConversationService(
        session=session,
        realtime=hub,
        notifications=RealtimeNotificationSink(hub),
        open_attempts=get_settings().open_conversation_attempts,
    )


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    hub = getattr(websocket.app.state, "realtime_hub", None)
    if hub is None:
        await websocket.close(code=1011, reason="Realtime hub not initialized")
        return

    settings = get_settings()
    actor = resolve_actor(
        websocket.query_params.get("token", "").strip() or None,
        websocket.query_params.get("session_id"),
        settings,
    )
    limiter = getattr(websocket.app.state, "rate_limiter", None) or InMemoryRateLimiter()
    connection = _Connection(websocket=websocket, hub=hub, actor=actor, limiter=limiter)

    await hub.connect(websocket)
    initial_rooms = default_rooms(actor)
    for room in initial_rooms:
        await hub.join(websocket, room)

    await connection.reply(
        "system.connected",
        {
            "role": type(actor).__name__.removesuffix("Actor").lower(),
            "session_id": actor.session_id if isinstance(actor, VisitorActor) else None,
            "rooms": initial_rooms,
        },
    )
    logger.info("realtime_connected", role=type(actor).__name__, rooms=initial_rooms)

    try:
        while True:
            raw_message = await websocket.receive_text()
            if raw_message.strip().lower() == "ping":
                await connection.reply("system.pong", {})
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError:
                await connection.error("Expected JSON payload")
                continue
            if not isinstance(message, dict):
                await connection.error("Expected JSON object")
                continue

            await _handle(connection, message)
    except WebSocketDisconnect:
        return
    finally:
        await hub.disconnect(websocket)
        logger.info("realtime_disconnected", role=type(actor).__name__)


async def _handle(connection: _Connection, message: dict[str, Any]) -> None:
    """Run one action; failures are reported to the sender and the socket stays open."""
    request_id = message.get("request_id")
    try:
        await _dispatch(connection, message)
    except WebSocketDisconnect:
        raise
    except SERVICE_ERRORS as exc:
        await connection.service_error(exc, request_id)
    except SQLAlchemyError:
        logger.exception("realtime_action_failed", action=message.get("action"))
        await connection.error(
            "Temporary failure, please retry", request_id, status_code=503
        )
    except Exception:
        logger.exception("realtime_action_crashed", action=message.get("action"))
        await connection.error("Internal server error", request_id, status_code=500)


async def _dispatch(connection: _Connection, message: dict[str, Any]) -> None:
    action = message.get("action")
    actor = connection.actor

    if action == "ping":
        await connection.reply("system.pong", {})
        return

    if action in ("join_conversation", "leave_conversation"):
        conversation_id = _parse_id(message.get("conversation_id"))
        if conversation_id is None:
            await connection.error("Invalid conversation_id")
            return
        room = conversation_room(conversation_id)
        if action == "leave_conversation":
            await connection.hub.leave(connection.websocket, room)
            await connection.reply("system.left", {"room": room})
            return
        async with get_session_factory()() as session:
            await _conversation_service(session, connection.hub).authorize(
                actor, conversation_id
            )
        await connection.hub.join(connection.websocket, room)
        await connection.reply("system.joined", {"room": room})
        return

    if action in ("join_auction", "leave_auction"):
        auction_id = _parse_id(message.get("auction_id"))
        if auction_id is None:
            await connection.error("Invalid auction_id")
            return
        room = auction_room(auction_id)
        if action == "leave_auction":
            await connection.hub.leave(connection.websocket, room)
            await connection.reply("system.left", {"room": room})
            return
        async with get_session_factory()() as session:
            if await AuctionRepository(session).get_by_id(auction_id) is None:
                raise AuctionNotFoundError(auction_id)
        await connection.hub.join(connection.websocket, room)
        await connection.reply("system.joined", {"room": room})
        return

    if action == "send_message":
        await _send_message(connection, message)
        return

    if action in ("typing_start", "typing_stop"):
        conversation_id = _parse_id(message.get("conversation_id"))
        room = conversation_room(conversation_id) if conversation_id else ""
        if not room or not connection.hub.is_member(connection.websocket, room):
            await connection.error("Join the conversation before sending typing events")
            return
        event = (
            RealtimeEvent.USER_TYPING
            if action == "typing_start"
            else RealtimeEvent.USER_STOPPED_TYPING
        )
        await connection.hub.broadcast(
            [room],
            event,
            {
                "conversation_id": conversation_id,
                "sender_type": sender_type_for(actor).value,
                "name": actor.display_name,
            },
            exclude=connection.websocket,
        )
        return

    if action == "mark_seen":
        if not isinstance(actor, AdminActor):
            await connection.error("Unauthorized")
            return
        conversation_id = _parse_id(message.get("conversation_id"))
        if conversation_id is None:
            await connection.error("Invalid conversation_id")
            return
        async with get_session_factory()() as session:
            await _conversation_service(session, connection.hub).mark_seen(
                conversation_id, _parse_id(message.get("up_to_message_id"))
            )
        return

    if action == "get_active_countdowns":
        async with get_session_factory()() as session:
            events = await CountdownService(session).list_active()
        await connection.reply(
            "active_countdowns", {"events": [countdown_payload(event) for event in events]}
        )
        return

    if action in COUNTDOWN_ACTIONS:
        await _countdown_action(connection, action, message)
        return

    if action == "place_bid":
        await _place_bid(connection, message)
        return

    await connection.error("Unsupported action")


async def _send_message(connection: _Connection, message: dict[str, Any]) -> None:
    actor = connection.actor
    request_id = message.get("request_id")
    body = message.get("body")
    if not isinstance(body, str):
        await connection.error("Message body is required", request_id)
        return
    conversation_id = _parse_id(message.get("conversation_id"))

    async with get_session_factory()() as session:
        service = _conversation_service(session, connection.hub)
        if isinstance(actor, AdminActor):
            if conversation_id is None:
                await connection.error("Invalid conversation_id", request_id)
                return
            result = await service.send_admin_reply(actor, conversation_id, body)
        else:
            decision = await connection.limiter.hit(
                f"message:{actor.visitor_key}", get_settings().visitor_message_rule
            )
            if not decision.allowed:
                raise RateLimitedError(decision.retry_after_seconds)
            result = await service.send_visitor_message(
                actor, body, conversation_id=conversation_id
            )

    room = conversation_room(result.conversation.id)
    if not connection.hub.is_member(connection.websocket, room):
        await connection.hub.join(connection.websocket, room)
    await connection.reply(
        "message_ack",
        {
            "request_id": request_id,
            "success": True,
            "conversation_id": result.conversation.id,
            "message": message_payload(result.message),
        },
    )


async def _countdown_action(
    connection: _Connection, action: str, message: dict[str, Any]
) -> None:
    actor = connection.actor
    if not isinstance(actor, AdminActor):
        await connection.error("Unauthorized")
        return
    event_id = _parse_id(message.get("event_id"))
    if event_id is None:
        await connection.error("Invalid event_id")
        return

    async with get_session_factory()() as session:
        service = CountdownService(session, realtime=connection.hub)
        if action == "start_countdown":
            await service.start(actor, event_id)
        elif action == "stop_countdown":
            await service.stop(actor, event_id)
        elif action == "update_countdown":
            updates = message.get("updates")
            if not isinstance(updates, dict):
                await connection.error("updates must be an object")
                return
            await service.update(actor, event_id, updates)
        else:
            await service.delete(actor, event_id)

    await connection.reply(
        RealtimeEvent.COUNTDOWN_UPDATED.value,
        {"event_id": event_id, "action": COUNTDOWN_ACTIONS[action]},
    )


async def _place_bid(connection: _Connection, message: dict[str, Any]) -> None:
    actor = connection.actor
    request_id = message.get("request_id")
    if not isinstance(actor, UserActor):
        await connection.error("Please log in to place a bid", request_id)
        return
    auction_id = _parse_id(message.get("auction_id"))
    if auction_id is None:
        await connection.error("Invalid auction_id", request_id)
        return

    decision = await connection.limiter.hit(f"bid:{actor.id}", get_settings().bid_rule)
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after_seconds)

    async with get_session_factory()() as session:
        service = AuctionService(
            session,
            realtime=connection.hub,
            notifications=RealtimeNotificationSink(connection.hub),
        )
        result = await service.place_bid(actor, auction_id, message.get("bid_amount"))

    await connection.reply(
        "bid_ack",
        {
            "request_id": request_id,
            "success": True,
            "auction_id": auction_id,
            "bid_amount": str(result.bid.bid_amount),
            "minimum_next_bid": str(result.minimum_next_bid),
        },
    )
