from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.domain.enums import (
    AuctionStatus,
    ChatMode,
    ConversationStatus,
    DeliveryStatus,
    MessageKind,
    MessageSenderType,
)

MONEY = Numeric(12, 2)


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Conversation(Base, TimestampMixin):
    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_conversations_single_visitor_identity",
        ),
        Index(
            "uq_conversations_open_visitor",
            "visitor_key",
            unique=True,
            postgresql_where=text("status = 'open'"),
        ),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    visitor_key: Mapped[str] = mapped_column(String(140), nullable=False, index=True)
    visitor_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[ConversationStatus] = mapped_column(
        _enum(ConversationStatus, "conversation_status"),
        nullable=False,
        default=ConversationStatus.OPEN,
    )
    chat_mode: Mapped[ChatMode] = mapped_column(
        _enum(ChatMode, "chat_mode"),
        nullable=False,
        default=ChatMode.CHATBOT,
    )
    admin_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_order", "conversation_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_type: Mapped[MessageSenderType] = mapped_column(
        _enum(MessageSenderType, "message_sender_type"), nullable=False
    )
    sender_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    sender_name: Mapped[str] = mapped_column(String(120), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageKind] = mapped_column(
        _enum(MessageKind, "message_kind"), nullable=False, default=MessageKind.TEXT
    )
    status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus, "message_delivery_status"),
        nullable=False,
        default=DeliveryStatus.SENT,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    conversation: Mapped[Conversation] = relationship(back_populates="messages")


class Auction(Base, TimestampMixin):
    __tablename__ = "auctions"
    __table_args__ = (
        CheckConstraint("starting_bid > 0", name="ck_auctions_starting_bid_positive"),
        CheckConstraint("bid_increment > 0", name="ck_auctions_bid_increment_positive"),
        CheckConstraint("current_bid >= starting_bid", name="ck_auctions_current_bid_floor"),
        CheckConstraint("end_date > start_date", name="ck_auctions_window"),
        Index("ix_auctions_status_end_date", "status", "end_date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    starting_bid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    current_bid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    bid_increment: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reserve_price: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    status: Mapped[AuctionStatus] = mapped_column(
        _enum(AuctionStatus, "auction_status"),
        nullable=False,
        default=AuctionStatus.DRAFT,
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    winner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    winning_bid: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    total_bids: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_bidders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)

    bids: Mapped[list["Bid"]] = relationship(
        back_populates="auction", cascade="all, delete-orphan"
    )


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (
        CheckConstraint("bid_amount > 0", name="ck_bids_amount_positive"),
        Index("ix_bids_auction_amount", "auction_id", "bid_amount"),
        Index("ix_bids_auction_bidder", "auction_id", "bidder_id"),
        Index(
            "uq_bids_single_winning",
            "auction_id",
            unique=True,
            postgresql_where=text("is_winning"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    auction_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False
    )
    bidder_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_winning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    auction: Mapped[Auction] = relationship(back_populates="bids")


class CountdownEvent(Base, TimestampMixin):
    __tablename__ = "countdown_events"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_countdown_events_window"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_on_homepage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_on_product: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    related_auction_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("auctions.id", ondelete="SET NULL"), nullable=True
    )
    related_product_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
