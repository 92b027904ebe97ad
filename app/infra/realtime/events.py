from enum import Enum


class RealtimeEvent(str, Enum):
    NEW_MESSAGE = "new_message"
    USER_MESSAGE = "user_message"
    OFFLINE_MESSAGE = "offline_message"
    ADMIN_REPLY = "admin_reply"
    LIVE_CHAT_REQUESTED = "live_chat_requested"
    CONVERSATION_UPDATED = "conversation_updated"
    CONVERSATION_CLOSED = "conversation_closed"
    CONVERSATION_REOPENED = "conversation_reopened"
    MESSAGES_SEEN = "messages_seen"
    USER_TYPING = "user_typing"
    USER_STOPPED_TYPING = "user_stopped_typing"
    NOTIFICATION = "notification"
    BID_PLACED = "bid_placed"
    AUCTION_UPDATED = "auction_updated"
    AUCTION_ENDED = "auction_ended"
    COUNTDOWN_STARTED = "countdown_started"
    COUNTDOWN_STOPPED = "countdown_stopped"
    COUNTDOWN_UPDATED = "countdown_updated"
    COUNTDOWN_DELETED = "countdown_deleted"
