from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Select, delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import (
    AuctionStatus,
    ChatMode,
    ConversationStatus,
    DeliveryStatus,
    MessageKind,
    MessageSenderType,
)
from app.infra.db.models import Auction, Bid, Conversation, CountdownEvent, Message


@dataclass(slots=True)
class ConversationSummary:
    conversation: Conversation
    unread_count: int
    last_message: str | None


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(
        self, conversation_id: int, *, for_update: bool = False
    ) -> Conversation | None:
        if not for_update:
            return await self.session.get(Conversation, conversation_id)
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_by_visitor(
        self, visitor_key: str, *, for_update: bool = False
    ) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.visitor_key == visitor_key,
                Conversation.status == ConversationStatus.OPEN,
            )
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_by_visitor(
        self, visitor_key: str, *, for_update: bool = False
    ) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(Conversation.visitor_key == visitor_key)
            .order_by(Conversation.created_at.desc(), Conversation.id.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_open(
        self,
        *,
        visitor_key: str,
        user_id: int | None,
        session_id: str | None,
        visitor_name: str | None,
        chat_mode: ChatMode,
        now: datetime,
    ) -> Conversation | None:
        """Insert an open conversation, or return None when another one won.

        The partial unique index on ``visitor_key WHERE status = 'open'``
        rejects the loser; the savepoint keeps the outer transaction usable.
        """
        conversation = Conversation(
            visitor_key=visitor_key,
            user_id=user_id,
            session_id=session_id,
            visitor_name=visitor_name,
            status=ConversationStatus.OPEN,
            chat_mode=chat_mode,
            last_activity_at=now,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(conversation)
                await self.session.flush()
        except IntegrityError:
            return None
        await self.session.refresh(conversation)
        return conversation

    async def save_reopened(self, conversation: Conversation) -> bool:
        """Flush a closed->open change; False if the visitor already has an open row."""
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError:
            await self.session.refresh(conversation)
            return False
        return True

    async def list_for_inbox(
        self,
        *,
        status_filter: ConversationStatus | None,
        search: str | None,
        offset: int,
        limit: int,
    ) -> list[ConversationSummary]:
        unread_count = (
            select(func.count(Message.id))
            .where(
                Message.conversation_id == Conversation.id,
                Message.sender_type == MessageSenderType.USER,
                Message.status != DeliveryStatus.SEEN,
            )
            .correlate(Conversation)
            .scalar_subquery()
        )
        last_message = (
            select(Message.body)
            .where(Message.conversation_id == Conversation.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )
        stmt = (
            select(
                Conversation,
                unread_count.label("unread_count"),
                last_message.label("last_message"),
            )
            .order_by(
                Conversation.last_message_at.desc().nulls_last(),
                Conversation.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        stmt = self._apply_inbox_filters(stmt, status_filter, search)
        result = await self.session.execute(stmt)
        return [
            ConversationSummary(
                conversation=row[0],
                unread_count=int(row[1] or 0),
                last_message=row[2],
            )
            for row in result.all()
        ]

    async def count_for_inbox(
        self,
        *,
        status_filter: ConversationStatus | None,
        search: str | None,
    ) -> int:
        stmt = select(func.count(Conversation.id))
        stmt = self._apply_inbox_filters(stmt, status_filter, search)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def count_open(self, *, admin_id: int | None = None) -> int:
        stmt: Select[tuple[int]] = select(func.count(Conversation.id)).where(
            Conversation.status == ConversationStatus.OPEN
        )
        if admin_id is not None:
            stmt = stmt.where(Conversation.admin_id == admin_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def count_unread_for_admin(self, admin_id: int) -> int:
        stmt: Select[tuple[int]] = (
            select(func.count(Message.id))
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(
                Conversation.status == ConversationStatus.OPEN,
                or_(Conversation.admin_id == admin_id, Conversation.admin_id.is_(None)),
                Message.sender_type == MessageSenderType.USER,
                Message.status != DeliveryStatus.SEEN,
            )
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    def _apply_inbox_filters(stmt, status_filter, search):
        if status_filter is not None:
            stmt = stmt.where(Conversation.status == status_filter)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Conversation.visitor_name.ilike(pattern),
                    Conversation.visitor_key.ilike(pattern),
                    exists(
                        select(Message.id).where(
                            Message.conversation_id == Conversation.id,
                            Message.body.ilike(pattern),
                        )
                    ),
                )
            )
        return stmt


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        conversation_id: int,
        sender_type: MessageSenderType,
        sender_id: int | None,
        sender_name: str,
        body: str,
        message_type: MessageKind = MessageKind.TEXT,
        created_at: datetime | None = None,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sender_type=sender_type,
            sender_id=sender_id,
            sender_name=sender_name,
            body=body,
            message_type=message_type,
            status=DeliveryStatus.SENT,
        )
        if created_at is not None:
            message.created_at = created_at
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        return message

    async def list_by_conversation(self, conversation_id: int) -> list[Message]:
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def advance_status(
        self,
        *,
        conversation_id: int,
        sender_type: MessageSenderType,
        target: DeliveryStatus,
        now: datetime,
        up_to_message_id: int | None = None,
    ) -> list[int]:
        """Move matching messages forward to ``target``; never backwards."""
        behind = [status for status in DeliveryStatus if status.can_advance_to(target)]
        if not behind:
            return []

        values: dict = {"status": target}
        if target == DeliveryStatus.SEEN:
            values["seen_at"] = now

        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_type == sender_type,
                Message.status.in_(behind),
            )
            .values(**values)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        if up_to_message_id is not None:
            stmt = stmt.where(Message.id <= up_to_message_id)
        result = await self.session.execute(stmt)
        return sorted(int(message_id) for message_id in result.scalars().all())


class AuctionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, auction_id: int) -> Auction | None:
        return await self.session.get(Auction, auction_id)

    async def get_by_id_for_update(self, auction_id: int) -> Auction | None:
        stmt: Select[tuple[Auction]] = (
            select(Auction).where(Auction.id == auction_id).with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        product_id: int,
        title: str,
        description: str,
        starting_bid: Decimal,
        bid_increment: Decimal,
        reserve_price: Decimal | None,
        start_date: datetime,
        end_date: datetime,
        created_by: int,
    ) -> Auction:
        auction = Auction(
            product_id=product_id,
            title=title,
            description=description,
            starting_bid=starting_bid,
            current_bid=starting_bid,
            bid_increment=bid_increment,
            reserve_price=reserve_price,
            status=AuctionStatus.DRAFT,
            start_date=start_date,
            end_date=end_date,
            total_bids=0,
            total_bidders=0,
            created_by=created_by,
        )
        self.session.add(auction)
        await self.session.flush()
        await self.session.refresh(auction)
        return auction

    async def list_page(
        self,
        *,
        status_filter: AuctionStatus | None,
        offset: int,
        limit: int,
    ) -> list[Auction]:
        stmt: Select[tuple[Auction]] = (
            select(Auction)
            .order_by(Auction.created_at.desc(), Auction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if status_filter is not None:
            stmt = stmt.where(Auction.status == status_filter)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, *, status_filter: AuctionStatus | None) -> int:
        stmt: Select[tuple[int]] = select(func.count(Auction.id))
        if status_filter is not None:
            stmt = stmt.where(Auction.status == status_filter)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def list_running(self, now: datetime) -> list[Auction]:
        stmt: Select[tuple[Auction]] = (
            select(Auction)
            .where(
                Auction.status == AuctionStatus.ACTIVE,
                Auction.start_date <= now,
                Auction.end_date > now,
            )
            .order_by(Auction.end_date.asc(), Auction.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class BidRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        auction_id: int,
        bidder_id: int,
        bid_amount: Decimal,
        created_at: datetime,
        is_winning: bool = True,
    ) -> Bid:
        bid = Bid(
            auction_id=auction_id,
            bidder_id=bidder_id,
            bid_amount=bid_amount,
            is_winning=is_winning,
            created_at=created_at,
        )
        self.session.add(bid)
        await self.session.flush()
        await self.session.refresh(bid)
        return bid

    async def best_amount_for_bidder(self, auction_id: int, bidder_id: int) -> Decimal | None:
        stmt: Select[tuple[Decimal | None]] = select(func.max(Bid.bid_amount)).where(
            Bid.auction_id == auction_id, Bid.bidder_id == bidder_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_winning(self, auction_id: int) -> list[Bid]:
        stmt: Select[tuple[Bid]] = select(Bid).where(
            Bid.auction_id == auction_id, Bid.is_winning.is_(True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def clear_winning(self, auction_id: int) -> None:
        stmt = (
            update(Bid)
            .where(Bid.auction_id == auction_id, Bid.is_winning.is_(True))
            .values(is_winning=False)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def totals(self, auction_id: int) -> tuple[int, int]:
        stmt = select(
            func.count(Bid.id), func.count(func.distinct(Bid.bidder_id))
        ).where(Bid.auction_id == auction_id)
        result = await self.session.execute(stmt)
        total_bids, total_bidders = result.one()
        return int(total_bids or 0), int(total_bidders or 0)

    async def top_bid(self, auction_id: int) -> Bid | None:
        stmt: Select[tuple[Bid]] = (
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.bid_amount.desc(), Bid.created_at.asc(), Bid.id.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_auction(self, auction_id: int, limit: int | None = None) -> list[Bid]:
        stmt: Select[tuple[Bid]] = (
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.bid_amount.desc(), Bid.created_at.asc(), Bid.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class CountdownRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, event_id: int) -> CountdownEvent | None:
        return await self.session.get(CountdownEvent, event_id)

    async def create(self, **fields) -> CountdownEvent:
        event = CountdownEvent(**fields)
        self.session.add(event)
        await self.session.flush()
        await self.session.refresh(event)
        return event

    async def delete(self, event_id: int) -> bool:
        stmt = (
            delete(CountdownEvent)
            .where(CountdownEvent.id == event_id)
            .returning(CountdownEvent.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_active(self, now: datetime) -> list[CountdownEvent]:
        stmt: Select[tuple[CountdownEvent]] = (
            select(CountdownEvent)
            .where(CountdownEvent.is_active.is_(True), CountdownEvent.end_date > now)
            .order_by(CountdownEvent.end_date.asc(), CountdownEvent.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
