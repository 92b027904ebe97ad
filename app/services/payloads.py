from datetime import datetime
from decimal import Decimal
from typing import Any

from app.infra.db.models import Auction, Bid, Conversation, CountdownEvent, Message


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def conversation_payload(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "user_id": conversation.user_id,
        "session_id": conversation.session_id,
        "visitor_name": conversation.visitor_name,
        "status": conversation.status.value,
        "chat_mode": conversation.chat_mode.value,
        "admin_id": conversation.admin_id,
        "last_message_at": _iso(conversation.last_message_at),
        "last_activity_at": _iso(conversation.last_activity_at),
        "closed_at": _iso(conversation.closed_at),
        "created_at": _iso(conversation.created_at),
        "updated_at": _iso(conversation.updated_at),
    }


def message_payload(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_type": message.sender_type.value,
        "sender_id": message.sender_id,
        "sender_name": message.sender_name,
        "body": message.body,
        "message_type": message.message_type.value,
        "status": message.status.value,
        "created_at": _iso(message.created_at),
        "seen_at": _iso(message.seen_at),
    }


def auction_payload(auction: Auction) -> dict[str, Any]:
    return {
        "id": auction.id,
        "product_id": auction.product_id,
        "title": auction.title,
        "status": auction.status.value,
        "starting_bid": _money(auction.starting_bid),
        "current_bid": _money(auction.current_bid),
        "bid_increment": _money(auction.bid_increment),
        "minimum_next_bid": _money(auction.current_bid + auction.bid_increment),
        "start_date": _iso(auction.start_date),
        "end_date": _iso(auction.end_date),
        "winner_id": auction.winner_id,
        "winning_bid": _money(auction.winning_bid),
        "total_bids": auction.total_bids,
        "total_bidders": auction.total_bidders,
    }


def bid_payload(bid: Bid) -> dict[str, Any]:
    return {
        "id": bid.id,
        "auction_id": bid.auction_id,
        "bidder_id": bid.bidder_id,
        "bid_amount": _money(bid.bid_amount),
        "is_winning": bid.is_winning,
        "created_at": _iso(bid.created_at),
    }


def countdown_payload(event: CountdownEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "event_type": event.event_type,
        "start_date": _iso(event.start_date),
        "end_date": _iso(event.end_date),
        "is_active": event.is_active,
        "display_on_homepage": event.display_on_homepage,
        "display_on_product": event.display_on_product,
        "related_auction_id": event.related_auction_id,
        "related_product_id": event.related_product_id,
    }
