from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.actors import AdminActor, UserActor
from app.domain.enums import AuctionAction, AuctionStatus
from app.domain.state_machine import AuctionLifecycle
from app.infra.db.models import Auction, Bid
from app.infra.db.repositories import AuctionRepository, BidRepository
from app.infra.notifications import (
    NoopNotificationSink,
    NotificationSink,
    safe_notify_user,
)
from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_broadcast,
)
from app.infra.realtime.rooms import ADMIN_ROOM, auction_room
from app.services.errors import (
    AuctionAlreadySettledError,
    AuctionNotActiveError,
    AuctionNotFoundError,
    BidTooLowError,
    DuplicateBidError,
    InvariantViolationError,
)
from app.services.payloads import auction_payload, bid_payload

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
EXTENSION_MIN_MINUTES = 1
EXTENSION_MAX_MINUTES = 1440
LIVE_RECENT_BIDS = 5


def to_money(value: Decimal | int | float | str, field: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field} must be a number.") from exc
    if not amount.is_finite():
        raise ValueError(f"{field} must be a number.")
    if amount <= 0:
        raise ValueError(f"{field} must be greater than 0.")
    if amount != amount.quantize(CENT):
        raise ValueError(f"{field} must not have more than two decimal places.")
    return amount.quantize(CENT)


@dataclass(slots=True)
class BidResult:
    auction: Auction
    bid: Bid
    minimum_next_bid: Decimal


@dataclass(slots=True)
class SettlementResult:
    auction: Auction
    winning_bid: Bid | None
    reserve_met: bool


@dataclass(slots=True)
class AuctionDetail:
    auction: Auction
    bids: list[Bid]


@dataclass(slots=True)
class AuctionPage:
    items: list[Auction]
    total: int
    page: int
    page_size: int


class AuctionService:
    """Bid admission and settlement against a row-locked auction.

    ``place_bid`` and ``settle_auction`` both lock the auction row with
    ``SELECT ... FOR UPDATE`` and re-validate against the committed state, so
    concurrent bids serialise per auction and settlement cannot interleave
    with an admitted bid.
    """

    def __init__(
        self,
        session: AsyncSession,
        auctions: AuctionRepository | None = None,
        bids: BidRepository | None = None,
        realtime: RealtimePublisher | None = None,
        notifications: NotificationSink | None = None,
        clock: Callable[[], datetime] | None = None,
        extension_bounds: tuple[int, int] = (EXTENSION_MIN_MINUTES, EXTENSION_MAX_MINUTES),
        recent_bids: int = LIVE_RECENT_BIDS,
    ) -> None:
        self.session = session
        self.auctions = auctions or AuctionRepository(session)
        self.bids = bids or BidRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()
        self.notifications = notifications or NoopNotificationSink()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.extension_bounds = extension_bounds
        self.recent_bids = recent_bids

    async def create_auction(
        self,
        admin: AdminActor,
        *,
        product_id: int,
        title: str,
        description: str,
        starting_bid: Decimal,
        bid_increment: Decimal,
        start_date: datetime,
        end_date: datetime,
        reserve_price: Decimal | None = None,
    ) -> Auction:
        cleaned_title = title.strip()
        if not cleaned_title:
            raise ValueError("Title is required.")
        starting = to_money(starting_bid, "Starting bid")
        increment = to_money(bid_increment, "Bid increment")
        reserve = to_money(reserve_price, "Reserve price") if reserve_price is not None else None
        start_date = self._aware(start_date)
        end_date = self._aware(end_date)
        if end_date <= start_date:
            raise ValueError("End date must be after start date.")
        if end_date <= self.clock():
            raise ValueError("End date must be in the future.")

        try:
            auction = await self.auctions.create(
                product_id=product_id,
                title=cleaned_title,
                description=description.strip(),
                starting_bid=starting,
                bid_increment=increment,
                reserve_price=reserve,
                start_date=start_date,
                end_date=end_date,
                created_by=admin.id,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(auction)

        logger.info("auction_created", auction_id=auction.id, admin_id=admin.id)
        return auction

    async def place_bid(
        self,
        bidder: UserActor,
        auction_id: int,
        amount: Decimal | int | float | str,
    ) -> BidResult:
        bid_amount = to_money(amount, "Bid amount")
        previous_winner_id: int | None = None

        try:
            auction = await self.auctions.get_by_id_for_update(auction_id)
            if auction is None:
                raise AuctionNotFoundError(auction_id)

            now = self.clock()
            if not AuctionLifecycle.accepts_bids(
                auction.status, auction.start_date, auction.end_date, now
            ):
                raise AuctionNotActiveError(auction_id, auction.status)

            minimum_bid = auction.current_bid + auction.bid_increment
            if bid_amount < minimum_bid:
                raise BidTooLowError(auction_id, minimum_bid)

            best_own = await self.bids.best_amount_for_bidder(auction_id, bidder.id)
            if best_own is not None and best_own >= bid_amount:
                raise DuplicateBidError(auction_id, best_own)

            winning = await self.bids.list_winning(auction_id)
            if len(winning) > 1:
                logger.critical(
                    "winning_flag_invariant_broken",
                    auction_id=auction_id,
                    winning_bid_ids=[bid.id for bid in winning],
                )
                raise InvariantViolationError(
                    f"Auction '{auction_id}' has {len(winning)} winning bids"
                )
            if winning:
                previous_winner_id = winning[0].bidder_id

            await self.bids.clear_winning(auction_id)
            bid = await self.bids.create(
                auction_id=auction_id,
                bidder_id=bidder.id,
                bid_amount=bid_amount,
                created_at=now,
                is_winning=True,
            )
            total_bids, total_bidders = await self.bids.totals(auction_id)
            auction.current_bid = bid_amount
            auction.total_bids = total_bids
            auction.total_bidders = total_bidders

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(auction)

        minimum_next_bid = auction.current_bid + auction.bid_increment
        logger.info(
            "bid_admitted",
            auction_id=auction_id,
            bid_id=bid.id,
            bidder_id=bidder.id,
            amount=str(bid_amount),
            total_bids=auction.total_bids,
        )

        if previous_winner_id is not None and previous_winner_id != bidder.id:
            await safe_notify_user(
                self.notifications,
                previous_winner_id,
                "You have been outbid",
                f"Someone bid {bid_amount} on \"{auction.title}\".",
                {"auction_id": auction_id, "minimum_next_bid": str(minimum_next_bid)},
            )
        await safe_broadcast(
            self.realtime,
            [auction_room(auction_id), ADMIN_ROOM],
            RealtimeEvent.BID_PLACED,
            {"auction": auction_payload(auction), "bid": bid_payload(bid)},
        )

        return BidResult(auction=auction, bid=bid, minimum_next_bid=minimum_next_bid)

    async def settle_auction(self, admin: AdminActor, auction_id: int) -> SettlementResult:
        try:
            auction = await self._get_for_update_or_raise(auction_id)
            if auction.status == AuctionStatus.ENDED:
                raise AuctionAlreadySettledError(auction_id)
            if auction.status != AuctionStatus.ACTIVE:
                raise AuctionNotActiveError(auction_id, auction.status)

            auction.status = AuctionLifecycle.transition(auction.status, AuctionAction.SETTLE)
            winning_bid = await self.bids.top_bid(auction_id)
            reserve_met = winning_bid is not None and (
                auction.reserve_price is None
                or winning_bid.bid_amount >= auction.reserve_price
            )
            if winning_bid is not None:
                auction.winner_id = winning_bid.bidder_id
                auction.winning_bid = winning_bid.bid_amount

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(auction)

        logger.info(
            "auction_settled",
            auction_id=auction_id,
            admin_id=admin.id,
            winner_id=auction.winner_id,
            winning_bid=str(auction.winning_bid) if auction.winning_bid is not None else None,
            reserve_met=reserve_met,
        )

        if winning_bid is not None:
            await safe_notify_user(
                self.notifications,
                winning_bid.bidder_id,
                "Auction won",
                f"Congratulations! You won \"{auction.title}\" with a bid of {winning_bid.bid_amount}.",
                {"auction_id": auction_id},
            )
        await safe_broadcast(
            self.realtime,
            [auction_room(auction_id), ADMIN_ROOM],
            RealtimeEvent.AUCTION_ENDED,
            {"auction": auction_payload(auction), "reserve_met": reserve_met},
        )
        return SettlementResult(auction=auction, winning_bid=winning_bid, reserve_met=reserve_met)

    async def extend_auction(
        self, admin: AdminActor, auction_id: int, minutes: int
    ) -> Auction:
        lower, upper = self.extension_bounds
        if not lower <= minutes <= upper:
            raise ValueError(f"Extension must be between {lower} and {upper} minutes.")

        try:
            auction = await self._get_for_update_or_raise(auction_id)
            if auction.status != AuctionStatus.ACTIVE:
                raise AuctionNotActiveError(auction_id, auction.status)
            auction.end_date = auction.end_date + timedelta(minutes=minutes)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(auction)

        logger.info(
            "auction_extended", auction_id=auction_id, admin_id=admin.id, minutes=minutes
        )
        await self._emit_auction_updated(auction)
        return auction

    async def schedule_auction(self, admin: AdminActor, auction_id: int) -> Auction:
        return await self._apply_transition(admin, auction_id, AuctionAction.SCHEDULE)

    async def activate_auction(self, admin: AdminActor, auction_id: int) -> Auction:
        """Open bidding now, or schedule it when ``start_date`` is still ahead."""
        try:
            auction = await self._get_for_update_or_raise(auction_id)
            now = self.clock()
            if auction.end_date <= now:
                raise ValueError("Auction end date has already passed.")
            action = AuctionAction.ACTIVATE if auction.start_date <= now else AuctionAction.SCHEDULE
            if not (
                action == AuctionAction.SCHEDULE and auction.status == AuctionStatus.SCHEDULED
            ):
                auction.status = AuctionLifecycle.transition(auction.status, action)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(auction)

        logger.info(
            "auction_status_changed",
            auction_id=auction_id,
            admin_id=admin.id,
            status=auction.status.value,
        )
        await self._emit_auction_updated(auction)
        return auction

    async def cancel_auction(self, admin: AdminActor, auction_id: int) -> Auction:
        return await self._apply_transition(admin, auction_id, AuctionAction.CANCEL)

    async def get_auction(self, auction_id: int) -> AuctionDetail:
        auction = await self.auctions.get_by_id(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        bids = await self.bids.list_for_auction(auction_id)
        return AuctionDetail(auction=auction, bids=bids)

    async def live_snapshot(self, auction_id: int) -> AuctionDetail:
        auction = await self.auctions.get_by_id(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        bids = await self.bids.list_for_auction(auction_id, limit=self.recent_bids)
        return AuctionDetail(auction=auction, bids=bids)

    async def list_auctions(
        self,
        status_filter: AuctionStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> AuctionPage:
        if page < 1 or page_size < 1:
            raise ValueError("Page and page size must be 1 or greater.")
        page_size = min(page_size, 100)
        items = await self.auctions.list_page(
            status_filter=status_filter, offset=(page - 1) * page_size, limit=page_size
        )
        total = await self.auctions.count(status_filter=status_filter)
        return AuctionPage(items=items, total=total, page=page, page_size=page_size)

    async def list_running(self) -> list[Auction]:
        return await self.auctions.list_running(self.clock())

    async def _apply_transition(
        self, admin: AdminActor, auction_id: int, action: AuctionAction
    ) -> Auction:
        try:
            auction = await self._get_for_update_or_raise(auction_id)
            auction.status = AuctionLifecycle.transition(auction.status, action)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(auction)

        logger.info(
            "auction_status_changed",
            auction_id=auction_id,
            admin_id=admin.id,
            status=auction.status.value,
        )
        await self._emit_auction_updated(auction)
        return auction

    async def _get_for_update_or_raise(self, auction_id: int) -> Auction:
        auction = await self.auctions.get_by_id_for_update(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        return auction

    async def _emit_auction_updated(self, auction: Auction) -> None:
        await safe_broadcast(
            self.realtime,
            [auction_room(auction.id), ADMIN_ROOM],
            RealtimeEvent.AUCTION_UPDATED,
            {"auction": auction_payload(auction)},
        )

    @staticmethod
    def _aware(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
