from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.domain.enums import DeliveryStatus, MessageKind, MessageSenderType


class SendMessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=4000)
    conversation_id: int | None = Field(default=None, ge=1)


class AdminReplyRequest(BaseModel):
    body: str = Field(min_length=1, max_length=4000)


class MarkSeenRequest(BaseModel):
    up_to_message_id: int | None = Field(default=None, ge=1)


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_type: MessageSenderType
    sender_id: int | None
    sender_name: str
    body: str
    message_type: MessageKind
    status: DeliveryStatus
    created_at: datetime
    seen_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class MarkSeenResponse(BaseModel):
    conversation_id: int
    message_ids: list[int]
