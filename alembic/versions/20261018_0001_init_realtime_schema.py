"""init realtime schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS: dict[str, tuple[str, ...]] = {
    "conversation_status": ("open", "closed"),
    "chat_mode": ("chatbot", "live_chat", "offline_message"),
    "message_sender_type": ("user", "admin"),
    "message_kind": ("text", "offline", "event"),
    "message_delivery_status": ("sent", "delivered", "seen"),
    "auction_status": ("draft", "scheduled", "active", "ended", "cancelled"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "conversations",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("session_id", sa.String(length=120), nullable=True),
        sa.Column("visitor_key", sa.String(length=140), nullable=False),
        sa.Column("visitor_name", sa.String(length=120), nullable=True),
        sa.Column(
            "status",
            _enum("conversation_status"),
            nullable=False,
            server_default=sa.text("'open'"),
        ),
        sa.Column(
            "chat_mode",
            _enum("chat_mode"),
            nullable=False,
            server_default=sa.text("'chatbot'"),
        ),
        sa.Column("admin_id", sa.BigInteger(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_conversations_single_visitor_identity",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_user_id", "conversations", ["user_id"])
    op.create_index("ix_conversations_session_id", "conversations", ["session_id"])
    op.create_index("ix_conversations_visitor_key", "conversations", ["visitor_key"])
    op.create_index("ix_conversations_admin_id", "conversations", ["admin_id"])
    op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"])
    op.create_index(
        "uq_conversations_open_visitor",
        "conversations",
        ["visitor_key"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("conversation_id", sa.BigInteger(), nullable=False),
        sa.Column("sender_type", _enum("message_sender_type"), nullable=False),
        sa.Column("sender_id", sa.BigInteger(), nullable=True),
        sa.Column("sender_name", sa.String(length=120), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "message_type",
            _enum("message_kind"),
            nullable=False,
            server_default=sa.text("'text'"),
        ),
        sa.Column(
            "status",
            _enum("message_delivery_status"),
            nullable=False,
            server_default=sa.text("'sent'"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_messages_conversation_order",
        "messages",
        ["conversation_id", "created_at", "id"],
    )

    op.create_table(
        "auctions",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("product_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("starting_bid", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_bid", sa.Numeric(12, 2), nullable=False),
        sa.Column("bid_increment", sa.Numeric(12, 2), nullable=False),
        sa.Column("reserve_price", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "status",
            _enum("auction_status"),
            nullable=False,
            server_default=sa.text("'draft'"),
        ),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("winner_id", sa.BigInteger(), nullable=True),
        sa.Column("winning_bid", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_bids", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_bidders", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("starting_bid > 0", name="ck_auctions_starting_bid_positive"),
        sa.CheckConstraint("bid_increment > 0", name="ck_auctions_bid_increment_positive"),
        sa.CheckConstraint("current_bid >= starting_bid", name="ck_auctions_current_bid_floor"),
        sa.CheckConstraint("end_date > start_date", name="ck_auctions_window"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_auctions_product_id", "auctions", ["product_id"])
    op.create_index("ix_auctions_status_end_date", "auctions", ["status", "end_date"])

    op.create_table(
        "bids",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("auction_id", sa.BigInteger(), nullable=False),
        sa.Column("bidder_id", sa.BigInteger(), nullable=False),
        sa.Column("bid_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_winning", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint("bid_amount > 0", name="ck_bids_amount_positive"),
        sa.ForeignKeyConstraint(["auction_id"], ["auctions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bids_auction_amount", "bids", ["auction_id", "bid_amount"])
    op.create_index("ix_bids_auction_bidder", "bids", ["auction_id", "bidder_id"])
    op.create_index(
        "uq_bids_single_winning",
        "bids",
        ["auction_id"],
        unique=True,
        postgresql_where=sa.text("is_winning"),
    )

    op.create_table(
        "countdown_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("event_type", sa.String(length=60), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "display_on_homepage", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "display_on_product", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("related_auction_id", sa.BigInteger(), nullable=True),
        sa.Column("related_product_id", sa.BigInteger(), nullable=True),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("end_date > start_date", name="ck_countdown_events_window"),
        sa.ForeignKeyConstraint(["related_auction_id"], ["auctions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("countdown_events")

    op.drop_index("uq_bids_single_winning", table_name="bids")
    op.drop_index("ix_bids_auction_bidder", table_name="bids")
    op.drop_index("ix_bids_auction_amount", table_name="bids")
    op.drop_table("bids")

    op.drop_index("ix_auctions_status_end_date", table_name="auctions")
    op.drop_index("ix_auctions_product_id", table_name="auctions")
    op.drop_table("auctions")

    op.drop_index("ix_messages_conversation_order", table_name="messages")
    op.drop_table("messages")

    op.drop_index("uq_conversations_open_visitor", table_name="conversations")
    op.drop_index("ix_conversations_last_message_at", table_name="conversations")
    op.drop_index("ix_conversations_admin_id", table_name="conversations")
    op.drop_index("ix_conversations_visitor_key", table_name="conversations")
    op.drop_index("ix_conversations_session_id", table_name="conversations")
    op.drop_index("ix_conversations_user_id", table_name="conversations")
    op.drop_table("conversations")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
