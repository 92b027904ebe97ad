from datetime import datetime

from app.domain.enums import (
    AuctionAction,
    AuctionStatus,
    ChatMode,
    ChatModeAction,
    ConversationAction,
    ConversationStatus,
)
from app.domain.exceptions import (
    InvalidAuctionTransition,
    InvalidChatModeTransition,
    InvalidConversationTransition,
)


class ConversationLifecycle:
    """State machine for conversation status: open <-> closed.

    Visitors can only reopen by writing; only admins close. An admin reply
    reopens through its own branch so the two paths stay distinguishable.
    """

    _allowed_transitions: dict[tuple[ConversationStatus, ConversationAction], ConversationStatus] = {
        (ConversationStatus.OPEN, ConversationAction.VISITOR_MESSAGE): ConversationStatus.OPEN,
        (ConversationStatus.CLOSED, ConversationAction.VISITOR_MESSAGE): ConversationStatus.OPEN,
        (ConversationStatus.OPEN, ConversationAction.ADMIN_REPLY): ConversationStatus.OPEN,
        (ConversationStatus.CLOSED, ConversationAction.ADMIN_REPLY): ConversationStatus.OPEN,
        (ConversationStatus.OPEN, ConversationAction.CLOSE_BY_ADMIN): ConversationStatus.CLOSED,
        (ConversationStatus.CLOSED, ConversationAction.REOPEN_BY_ADMIN): ConversationStatus.OPEN,
    }

    @classmethod
    def transition(
        cls, current: ConversationStatus, action: ConversationAction
    ) -> ConversationStatus:
        # Idempotent semantics for repeated admin clicks.
        if current == ConversationStatus.CLOSED and action == ConversationAction.CLOSE_BY_ADMIN:
            return ConversationStatus.CLOSED
        if current == ConversationStatus.OPEN and action == ConversationAction.REOPEN_BY_ADMIN:
            return ConversationStatus.OPEN

        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidConversationTransition(current=current, action=action)
        return next_state


class ChatModeLifecycle:
    """Orthogonal sub-mode: chatbot -> live chat, with an offline fallback."""

    _allowed_transitions: dict[tuple[ChatMode, ChatModeAction], ChatMode] = {
        (ChatMode.CHATBOT, ChatModeAction.REQUEST_LIVE_CHAT): ChatMode.LIVE_CHAT,
        (ChatMode.OFFLINE_MESSAGE, ChatModeAction.REQUEST_LIVE_CHAT): ChatMode.LIVE_CHAT,
        (ChatMode.CHATBOT, ChatModeAction.LEAVE_OFFLINE_MESSAGE): ChatMode.OFFLINE_MESSAGE,
        (ChatMode.LIVE_CHAT, ChatModeAction.LEAVE_OFFLINE_MESSAGE): ChatMode.OFFLINE_MESSAGE,
        (ChatMode.CHATBOT, ChatModeAction.ADMIN_JOINED): ChatMode.LIVE_CHAT,
        (ChatMode.OFFLINE_MESSAGE, ChatModeAction.ADMIN_JOINED): ChatMode.LIVE_CHAT,
    }

    @classmethod
    def transition(cls, current: ChatMode, action: ChatModeAction) -> ChatMode:
        if current == ChatMode.LIVE_CHAT and action in (
            ChatModeAction.REQUEST_LIVE_CHAT,
            ChatModeAction.ADMIN_JOINED,
        ):
            return ChatMode.LIVE_CHAT
        if (
            current == ChatMode.OFFLINE_MESSAGE
            and action == ChatModeAction.LEAVE_OFFLINE_MESSAGE
        ):
            return ChatMode.OFFLINE_MESSAGE

        next_mode = cls._allowed_transitions.get((current, action))
        if not next_mode:
            raise InvalidChatModeTransition(current=current, action=action)
        return next_mode


class AuctionLifecycle:
    """State machine for auctions: draft -> [scheduled ->] active -> ended.

    Cancellation is allowed from any state before ``ended``.
    """

    _allowed_transitions: dict[tuple[AuctionStatus, AuctionAction], AuctionStatus] = {
        (AuctionStatus.DRAFT, AuctionAction.SCHEDULE): AuctionStatus.SCHEDULED,
        (AuctionStatus.DRAFT, AuctionAction.ACTIVATE): AuctionStatus.ACTIVE,
        (AuctionStatus.SCHEDULED, AuctionAction.ACTIVATE): AuctionStatus.ACTIVE,
        (AuctionStatus.ACTIVE, AuctionAction.SETTLE): AuctionStatus.ENDED,
        (AuctionStatus.DRAFT, AuctionAction.CANCEL): AuctionStatus.CANCELLED,
        (AuctionStatus.SCHEDULED, AuctionAction.CANCEL): AuctionStatus.CANCELLED,
        (AuctionStatus.ACTIVE, AuctionAction.CANCEL): AuctionStatus.CANCELLED,
    }

    @classmethod
    def transition(cls, current: AuctionStatus, action: AuctionAction) -> AuctionStatus:
        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidAuctionTransition(current=current, action=action)
        return next_state

    @staticmethod
    def accepts_bids(
        status: AuctionStatus,
        start_date: datetime,
        end_date: datetime,
        now: datetime,
    ) -> bool:
        return status == AuctionStatus.ACTIVE and start_date <= now < end_date
