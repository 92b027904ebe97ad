from fastapi import Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import ApiError
from app.core.config import get_settings
from app.core.db import get_db_session
from app.core.identity import extract_bearer_token, resolve_actor
from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from app.domain.actors import Actor, AdminActor, UserActor, VisitorActor, VisitorSide
from app.infra.notifications import (
    NoopNotificationSink,
    NotificationSink,
    RealtimeNotificationSink,
)
from app.infra.realtime.publisher import RealtimePublisher
from app.services.auction_service import AuctionService
from app.services.conversation_service import ConversationService
from app.services.countdown_service import CountdownService
from app.services.errors import RateLimitedError
from app.services.ledger_service import MessageLedger


def _realtime(request: Request) -> RealtimePublisher | None:
    return getattr(request.app.state, "realtime_hub", None)


def _notifications(request: Request) -> NotificationSink:
    realtime = _realtime(request)
    if realtime is None:
        return NoopNotificationSink()
    return RealtimeNotificationSink(realtime)


async def get_actor(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Actor:
    settings = get_settings()
    return resolve_actor(
        extract_bearer_token(authorization),
        request.headers.get(settings.visitor_session_header),
        settings,
    )


async def require_visitor_side(actor: Actor = Depends(get_actor)) -> VisitorSide:
    if isinstance(actor, AdminActor):
        raise ApiError(
            status.HTTP_403_FORBIDDEN, "Admins reply through the admin endpoints"
        )
    return actor


async def require_admin(actor: Actor = Depends(get_actor)) -> AdminActor:
    if isinstance(actor, AdminActor):
        return actor
    if isinstance(actor, VisitorActor):
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "Authentication required")
    raise ApiError(status.HTTP_403_FORBIDDEN, "Admin access required")


async def require_user(actor: Actor = Depends(get_actor)) -> UserActor:
    if isinstance(actor, UserActor):
        return actor
    if isinstance(actor, VisitorActor):
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "Please log in to place a bid")
    raise ApiError(status.HTTP_403_FORBIDDEN, "Admins cannot place bids")


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = InMemoryRateLimiter()
        request.app.state.rate_limiter = limiter
    return limiter


async def enforce_rate_limit(
    limiter: InMemoryRateLimiter, key: str, rule: RateLimitRule
) -> None:
    decision = await limiter.hit(key, rule)
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after_seconds)


async def get_conversation_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> ConversationService:
    return ConversationService(
        session=session,
        realtime=_realtime(request),
        notifications=_notifications(request),
        open_attempts=get_settings().open_conversation_attempts,
    )


async def get_message_ledger(
    session: AsyncSession = Depends(get_db_session),
) -> MessageLedger:
    return MessageLedger(
        session=session, max_page_size=get_settings().conversation_page_size_max
    )


async def get_auction_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> AuctionService:
    settings = get_settings()
    return AuctionService(
        session=session,
        realtime=_realtime(request),
        notifications=_notifications(request),
        extension_bounds=(
            settings.auction_extension_min_minutes,
            settings.auction_extension_max_minutes,
        ),
        recent_bids=settings.auction_live_recent_bids,
    )


async def get_countdown_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> CountdownService:
    return CountdownService(session=session, realtime=_realtime(request))
