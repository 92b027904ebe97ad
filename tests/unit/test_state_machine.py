from datetime import UTC, datetime, timedelta

import pytest

from app.domain.enums import (
    AuctionAction,
    AuctionStatus,
    ChatMode,
    ChatModeAction,
    ConversationAction,
    ConversationStatus,
    DeliveryStatus,
)
from app.domain.exceptions import (
    InvalidAuctionTransition,
    InvalidChatModeTransition,
    InvalidConversationTransition,
)
from app.domain.state_machine import (
    AuctionLifecycle,
    ChatModeLifecycle,
    ConversationLifecycle,
)


def test_visitor_message_reopens_closed_conversation() -> None:
    next_state = ConversationLifecycle.transition(
        ConversationStatus.CLOSED, ConversationAction.VISITOR_MESSAGE
    )
    assert next_state == ConversationStatus.OPEN


def test_admin_close_moves_open_to_closed() -> None:
    next_state = ConversationLifecycle.transition(
        ConversationStatus.OPEN, ConversationAction.CLOSE_BY_ADMIN
    )
    assert next_state == ConversationStatus.CLOSED


def test_repeated_close_and_reopen_are_idempotent() -> None:
    assert (
        ConversationLifecycle.transition(
            ConversationStatus.CLOSED, ConversationAction.CLOSE_BY_ADMIN
        )
        == ConversationStatus.CLOSED
    )
    assert (
        ConversationLifecycle.transition(
            ConversationStatus.OPEN, ConversationAction.REOPEN_BY_ADMIN
        )
        == ConversationStatus.OPEN
    )


def test_admin_reply_reopens_closed_conversation() -> None:
    next_state = ConversationLifecycle.transition(
        ConversationStatus.CLOSED, ConversationAction.ADMIN_REPLY
    )
    assert next_state == ConversationStatus.OPEN


def test_chat_mode_live_chat_request() -> None:
    assert (
        ChatModeLifecycle.transition(ChatMode.CHATBOT, ChatModeAction.REQUEST_LIVE_CHAT)
        == ChatMode.LIVE_CHAT
    )
    assert (
        ChatModeLifecycle.transition(ChatMode.LIVE_CHAT, ChatModeAction.REQUEST_LIVE_CHAT)
        == ChatMode.LIVE_CHAT
    )


def test_chat_mode_offline_fallback_and_admin_join() -> None:
    offline = ChatModeLifecycle.transition(
        ChatMode.LIVE_CHAT, ChatModeAction.LEAVE_OFFLINE_MESSAGE
    )
    assert offline == ChatMode.OFFLINE_MESSAGE
    assert (
        ChatModeLifecycle.transition(offline, ChatModeAction.ADMIN_JOINED)
        == ChatMode.LIVE_CHAT
    )


def test_chat_mode_rejects_unknown_pair(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ChatModeLifecycle, "_allowed_transitions", {})
    with pytest.raises(InvalidChatModeTransition):
        ChatModeLifecycle.transition(ChatMode.CHATBOT, ChatModeAction.REQUEST_LIVE_CHAT)


def test_conversation_rejects_unknown_pair(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ConversationLifecycle, "_allowed_transitions", {})
    with pytest.raises(InvalidConversationTransition):
        ConversationLifecycle.transition(
            ConversationStatus.OPEN, ConversationAction.VISITOR_MESSAGE
        )


@pytest.mark.parametrize(
    ("current", "action", "expected"),
    [
        (AuctionStatus.DRAFT, AuctionAction.SCHEDULE, AuctionStatus.SCHEDULED),
        (AuctionStatus.DRAFT, AuctionAction.ACTIVATE, AuctionStatus.ACTIVE),
        (AuctionStatus.SCHEDULED, AuctionAction.ACTIVATE, AuctionStatus.ACTIVE),
        (AuctionStatus.ACTIVE, AuctionAction.SETTLE, AuctionStatus.ENDED),
        (AuctionStatus.ACTIVE, AuctionAction.CANCEL, AuctionStatus.CANCELLED),
    ],
)
def test_auction_allowed_transitions(
    current: AuctionStatus, action: AuctionAction, expected: AuctionStatus
) -> None:
    assert AuctionLifecycle.transition(current, action) == expected


@pytest.mark.parametrize(
    ("current", "action"),
    [
        (AuctionStatus.ENDED, AuctionAction.CANCEL),
        (AuctionStatus.ENDED, AuctionAction.SETTLE),
        (AuctionStatus.CANCELLED, AuctionAction.ACTIVATE),
        (AuctionStatus.DRAFT, AuctionAction.SETTLE),
    ],
)
def test_auction_invalid_transitions_raise(
    current: AuctionStatus, action: AuctionAction
) -> None:
    with pytest.raises(InvalidAuctionTransition):
        AuctionLifecycle.transition(current, action)


def test_auction_accepts_bids_only_inside_window() -> None:
    now = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
    start = now - timedelta(hours=1)
    end = now + timedelta(hours=1)

    assert AuctionLifecycle.accepts_bids(AuctionStatus.ACTIVE, start, end, now)
    assert not AuctionLifecycle.accepts_bids(AuctionStatus.ACTIVE, start, now, now)
    assert not AuctionLifecycle.accepts_bids(AuctionStatus.ACTIVE, end, end + timedelta(hours=1), now)
    assert not AuctionLifecycle.accepts_bids(AuctionStatus.SCHEDULED, start, end, now)


def test_delivery_status_only_moves_forward() -> None:
    assert DeliveryStatus.SENT.can_advance_to(DeliveryStatus.SEEN)
    assert DeliveryStatus.DELIVERED.can_advance_to(DeliveryStatus.SEEN)
    assert not DeliveryStatus.SEEN.can_advance_to(DeliveryStatus.DELIVERED)
    assert not DeliveryStatus.SEEN.can_advance_to(DeliveryStatus.SEEN)
