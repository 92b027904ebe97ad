from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.domain.enums import ChatMode, ConversationStatus
from app.schemas.common import PageMeta
from app.schemas.message import MessageResponse


class OfflineMessageRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    contact: str = Field(min_length=3, max_length=200)
    message: str = Field(min_length=1, max_length=3000)


class LiveChatRequest(BaseModel):
    conversation_id: int | None = Field(default=None, ge=1)


class ConversationResponse(BaseModel):
    id: int
    user_id: int | None
    session_id: str | None
    visitor_name: str | None
    status: ConversationStatus
    chat_mode: ChatMode
    admin_id: int | None
    last_message_at: datetime | None
    last_activity_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationSummaryResponse(BaseModel):
    conversation: ConversationResponse
    unread_count: int
    last_message: str | None


class ConversationListResponse(BaseModel):
    items: list[ConversationSummaryResponse]
    meta: PageMeta


class ConversationThreadResponse(BaseModel):
    conversation: ConversationResponse
    messages: list[MessageResponse]


class VisitorMessageResponse(BaseModel):
    conversation: ConversationResponse
    message: MessageResponse
    created: bool
    reopened: bool


class AdminReplyResponse(BaseModel):
    conversation: ConversationResponse
    message: MessageResponse
    reopened: bool


class InboxStatsResponse(BaseModel):
    unread_messages: int
    open_conversations: int
    my_open_conversations: int
