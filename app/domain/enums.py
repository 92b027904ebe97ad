from enum import Enum


class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ChatMode(str, Enum):
    CHATBOT = "chatbot"
    LIVE_CHAT = "live_chat"
    OFFLINE_MESSAGE = "offline_message"


class MessageSenderType(str, Enum):
    USER = "user"
    ADMIN = "admin"


class MessageKind(str, Enum):
    TEXT = "text"
    OFFLINE = "offline"
    EVENT = "event"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    SEEN = "seen"

    @property
    def rank(self) -> int:
        return _DELIVERY_RANK[self]

    def can_advance_to(self, target: "DeliveryStatus") -> bool:
        return target.rank > self.rank


_DELIVERY_RANK = {
    DeliveryStatus.SENT: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.SEEN: 2,
}


class ConversationAction(str, Enum):
    VISITOR_MESSAGE = "visitor_message"
    ADMIN_REPLY = "admin_reply"
    CLOSE_BY_ADMIN = "close_by_admin"
    REOPEN_BY_ADMIN = "reopen_by_admin"


class ChatModeAction(str, Enum):
    REQUEST_LIVE_CHAT = "request_live_chat"
    LEAVE_OFFLINE_MESSAGE = "leave_offline_message"
    ADMIN_JOINED = "admin_joined"


class AuctionStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class AuctionAction(str, Enum):
    SCHEDULE = "schedule"
    ACTIVATE = "activate"
    SETTLE = "settle"
    CANCEL = "cancel"


class CountdownToggleField(str, Enum):
    IS_ACTIVE = "is_active"
    DISPLAY_ON_HOMEPAGE = "display_on_homepage"
    DISPLAY_ON_PRODUCT = "display_on_product"
