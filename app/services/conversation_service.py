from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.actors import Actor, AdminActor, UserActor, VisitorSide
from app.domain.enums import (
    ChatMode,
    ChatModeAction,
    ConversationAction,
    ConversationStatus,
    DeliveryStatus,
    MessageKind,
    MessageSenderType,
)
from app.domain.state_machine import ChatModeLifecycle, ConversationLifecycle
from app.infra.db.models import Conversation, Message
from app.infra.db.repositories import ConversationRepository, MessageRepository
from app.infra.notifications import (
    NoopNotificationSink,
    NotificationSink,
    safe_notify_admins,
)
from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_broadcast,
)
from app.infra.realtime.rooms import ADMIN_ROOM, conversation_room, user_room
from app.services.errors import (
    ConversationAccessDeniedError,
    ConversationNotFoundError,
    ConversationReopenConflictError,
    ConversationUnavailableError,
)
from app.services.payloads import conversation_payload, message_payload

logger = structlog.get_logger(__name__)

DEFAULT_OPEN_ATTEMPTS = 3
MAX_BODY_LENGTH = 4000


@dataclass(slots=True)
class VisitorMessageResult:
    conversation: Conversation
    message: Message
    created: bool
    reopened: bool


@dataclass(slots=True)
class AdminReplyResult:
    conversation: Conversation
    message: Message
    reopened: bool


@dataclass(slots=True)
class ConversationThread:
    conversation: Conversation
    messages: list[Message]


@dataclass(slots=True)
class _Resolved:
    conversation: Conversation
    created: bool = False
    reopened: bool = False


class ConversationService:
    """Owns every write to ``conversation.status`` and ``chat_mode``.

    Each public mutation is one transaction: the message insert and the
    conversation update commit together or not at all. Fan-out happens only
    after commit and never affects the outcome of the write.
    """

    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        messages: MessageRepository | None = None,
        realtime: RealtimePublisher | None = None,
        notifications: NotificationSink | None = None,
        open_attempts: int = DEFAULT_OPEN_ATTEMPTS,
    ) -> None:
        self.session = session
        self.conversations = conversations or ConversationRepository(session)
        self.messages = messages or MessageRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()
        self.notifications = notifications or NoopNotificationSink()
        self.open_attempts = max(open_attempts, 1)

    async def send_visitor_message(
        self,
        actor: VisitorSide,
        body: str,
        message_type: MessageKind = MessageKind.TEXT,
        conversation_id: int | None = None,
        visitor_name: str | None = None,
    ) -> VisitorMessageResult:
        cleaned_body = self._clean_body(body)
        now = datetime.now(UTC)

        try:
            resolved = await self._resolve_open_conversation(
                actor,
                conversation_id=conversation_id,
                visitor_name=visitor_name,
                now=now,
            )
            conversation = resolved.conversation
            if message_type == MessageKind.OFFLINE:
                conversation.chat_mode = ChatModeLifecycle.transition(
                    conversation.chat_mode, ChatModeAction.LEAVE_OFFLINE_MESSAGE
                )
            if visitor_name and not conversation.visitor_name:
                conversation.visitor_name = visitor_name.strip()[:120]

            message = await self.messages.create(
                conversation_id=conversation.id,
                sender_type=MessageSenderType.USER,
                sender_id=actor.id if isinstance(actor, UserActor) else None,
                sender_name=self._visitor_sender_name(actor, conversation),
                body=cleaned_body,
                message_type=message_type,
                created_at=now,
            )
            conversation.last_message_at = now
            conversation.last_activity_at = now

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(conversation)

        logger.info(
            "visitor_message_stored",
            conversation_id=conversation.id,
            message_id=message.id,
            created=resolved.created,
            reopened=resolved.reopened,
            message_type=message_type.value,
        )

        admin_event = (
            RealtimeEvent.OFFLINE_MESSAGE
            if message_type == MessageKind.OFFLINE
            else RealtimeEvent.USER_MESSAGE
        )
        await safe_broadcast(
            self.realtime,
            [ADMIN_ROOM],
            admin_event,
            {
                "conversation": conversation_payload(conversation),
                "message": message_payload(message),
            },
        )
        await self._emit_new_message(message)
        if message_type == MessageKind.OFFLINE:
            await safe_notify_admins(
                self.notifications,
                "New offline message",
                cleaned_body[:200],
                {"conversation_id": conversation.id},
            )

        return VisitorMessageResult(
            conversation=conversation,
            message=message,
            created=resolved.created,
            reopened=resolved.reopened,
        )

    async def leave_offline_message(
        self,
        actor: VisitorSide,
        name: str,
        contact: str,
        body: str,
    ) -> VisitorMessageResult:
        cleaned_name = name.strip()
        cleaned_contact = contact.strip()
        if not cleaned_name or not cleaned_contact:
            raise ValueError("Name and contact details are required.")

        return await self.send_visitor_message(
            actor,
            f"Offline: {cleaned_contact} - {self._clean_body(body)}",
            message_type=MessageKind.OFFLINE,
            visitor_name=cleaned_name,
        )

    async def request_live_chat(
        self,
        actor: VisitorSide,
        conversation_id: int | None = None,
    ) -> Conversation:
        now = datetime.now(UTC)
        try:
            resolved = await self._resolve_open_conversation(
                actor, conversation_id=conversation_id, visitor_name=None, now=now
            )
            conversation = resolved.conversation
            previous_mode = conversation.chat_mode
            conversation.chat_mode = ChatModeLifecycle.transition(
                previous_mode, ChatModeAction.REQUEST_LIVE_CHAT
            )
            conversation.last_activity_at = now
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(conversation)

        if previous_mode != ChatMode.LIVE_CHAT:
            await safe_broadcast(
                self.realtime,
                [ADMIN_ROOM],
                RealtimeEvent.LIVE_CHAT_REQUESTED,
                {"conversation": conversation_payload(conversation)},
            )
            await safe_notify_admins(
                self.notifications,
                "Live chat requested",
                f"{actor.display_name} is waiting for an agent",
                {"conversation_id": conversation.id},
            )
        await self._emit_conversation_updated(conversation)
        return conversation

    async def send_admin_reply(
        self,
        admin: AdminActor,
        conversation_id: int,
        body: str,
    ) -> AdminReplyResult:
        cleaned_body = self._clean_body(body)
        now = datetime.now(UTC)

        try:
            conversation = await self._get_conversation_or_raise(
                conversation_id, for_update=True
            )
            reopened = conversation.status == ConversationStatus.CLOSED
            conversation.status = ConversationLifecycle.transition(
                conversation.status, ConversationAction.ADMIN_REPLY
            )
            if reopened:
                conversation.closed_at = None
                if not await self.conversations.save_reopened(conversation):
                    raise ConversationReopenConflictError(conversation.id)

            conversation.admin_id = admin.id
            conversation.chat_mode = ChatModeLifecycle.transition(
                conversation.chat_mode, ChatModeAction.ADMIN_JOINED
            )
            message = await self.messages.create(
                conversation_id=conversation.id,
                sender_type=MessageSenderType.ADMIN,
                sender_id=admin.id,
                sender_name=admin.display_name,
                body=cleaned_body,
                message_type=MessageKind.TEXT,
                created_at=now,
            )
            conversation.last_message_at = now
            conversation.last_activity_at = now

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(conversation)

        logger.info(
            "admin_reply_stored",
            conversation_id=conversation.id,
            message_id=message.id,
            admin_id=admin.id,
            reopened=reopened,
        )

        await self._emit_new_message(message)
        if conversation.user_id is not None:
            await safe_broadcast(
                self.realtime,
                [user_room(conversation.user_id)],
                RealtimeEvent.ADMIN_REPLY,
                {
                    "conversation_id": conversation.id,
                    "message": message_payload(message),
                },
            )
        await self._emit_conversation_updated(conversation)

        return AdminReplyResult(conversation=conversation, message=message, reopened=reopened)

    async def close_conversation(
        self, admin: AdminActor, conversation_id: int
    ) -> Conversation:
        try:
            conversation = await self._get_conversation_or_raise(
                conversation_id, for_update=True
            )
            already_closed = conversation.status == ConversationStatus.CLOSED
            conversation.status = ConversationLifecycle.transition(
                conversation.status, ConversationAction.CLOSE_BY_ADMIN
            )
            if not already_closed:
                now = datetime.now(UTC)
                conversation.closed_at = now
                conversation.last_activity_at = now
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(conversation)

        if not already_closed:
            logger.info(
                "conversation_closed", conversation_id=conversation.id, admin_id=admin.id
            )
            await safe_broadcast(
                self.realtime,
                [conversation_room(conversation.id), ADMIN_ROOM],
                RealtimeEvent.CONVERSATION_CLOSED,
                {
                    "conversation": conversation_payload(conversation),
                    "closed_by": admin.id,
                },
            )
        return conversation

    async def reopen_conversation(
        self, admin: AdminActor, conversation_id: int
    ) -> Conversation:
        try:
            conversation = await self._get_conversation_or_raise(
                conversation_id, for_update=True
            )
            was_closed = conversation.status == ConversationStatus.CLOSED
            conversation.status = ConversationLifecycle.transition(
                conversation.status, ConversationAction.REOPEN_BY_ADMIN
            )
            conversation.closed_at = None
            conversation.admin_id = admin.id
            conversation.last_activity_at = datetime.now(UTC)
            if was_closed and not await self.conversations.save_reopened(conversation):
                raise ConversationReopenConflictError(conversation.id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(conversation)

        logger.info(
            "conversation_reopened",
            conversation_id=conversation.id,
            admin_id=admin.id,
            was_closed=was_closed,
        )
        await safe_broadcast(
            self.realtime,
            [conversation_room(conversation.id), ADMIN_ROOM],
            RealtimeEvent.CONVERSATION_REOPENED,
            {
                "conversation": conversation_payload(conversation),
                "reopened_by": admin.id,
            },
        )
        return conversation

    async def mark_seen(
        self,
        conversation_id: int,
        up_to_message_id: int | None = None,
    ) -> list[int]:
        """Advance visitor messages to ``seen``; statuses never move back."""
        now = datetime.now(UTC)
        try:
            await self._get_conversation_or_raise(conversation_id)
            seen_ids = await self.messages.advance_status(
                conversation_id=conversation_id,
                sender_type=MessageSenderType.USER,
                target=DeliveryStatus.SEEN,
                now=now,
                up_to_message_id=up_to_message_id,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if seen_ids:
            await safe_broadcast(
                self.realtime,
                [conversation_room(conversation_id)],
                RealtimeEvent.MESSAGES_SEEN,
                {
                    "conversation_id": conversation_id,
                    "message_ids": seen_ids,
                    "seen_at": now.isoformat(),
                },
            )
        return seen_ids

    async def get_admin_thread(
        self, admin: AdminActor, conversation_id: int
    ) -> ConversationThread:
        await self.mark_seen(conversation_id)
        conversation = await self._get_conversation_or_raise(conversation_id)
        messages = await self.messages.list_by_conversation(conversation_id)
        logger.debug(
            "admin_thread_viewed", conversation_id=conversation_id, admin_id=admin.id
        )
        return ConversationThread(conversation=conversation, messages=messages)

    async def get_visitor_thread(self, actor: VisitorSide) -> ConversationThread | None:
        conversation = await self.conversations.get_open_by_visitor(actor.visitor_key)
        if conversation is None:
            conversation = await self.conversations.get_latest_by_visitor(actor.visitor_key)
        if conversation is None:
            return None
        messages = await self.messages.list_by_conversation(conversation.id)
        return ConversationThread(conversation=conversation, messages=messages)

    async def get_thread_for_actor(
        self, actor: Actor, conversation_id: int
    ) -> ConversationThread:
        conversation = await self.authorize(actor, conversation_id)
        messages = await self.messages.list_by_conversation(conversation_id)
        return ConversationThread(conversation=conversation, messages=messages)

    async def authorize(self, actor: Actor, conversation_id: int) -> Conversation:
        """Return the conversation if ``actor`` may read it or join its room."""
        conversation = await self._get_conversation_or_raise(conversation_id)
        if isinstance(actor, AdminActor):
            return conversation
        if conversation.visitor_key != actor.visitor_key:
            raise ConversationAccessDeniedError(conversation_id)
        return conversation

    async def _resolve_open_conversation(
        self,
        actor: VisitorSide,
        *,
        conversation_id: int | None,
        visitor_name: str | None,
        now: datetime,
    ) -> _Resolved:
        visitor_key = actor.visitor_key

        if conversation_id is not None:
            requested = await self._get_conversation_or_raise(
                conversation_id, for_update=True
            )
            if requested.visitor_key != visitor_key:
                raise ConversationAccessDeniedError(conversation_id)
            if requested.status == ConversationStatus.OPEN:
                return _Resolved(requested)
            if await self._reopen_for_visitor(requested):
                return _Resolved(requested, reopened=True)

        for _ in range(self.open_attempts):
            conversation = await self.conversations.get_open_by_visitor(
                visitor_key, for_update=True
            )
            if conversation is not None:
                return _Resolved(conversation)

            latest = await self.conversations.get_latest_by_visitor(
                visitor_key, for_update=True
            )
            if latest is not None:
                if latest.status == ConversationStatus.OPEN:
                    return _Resolved(latest)
                if await self._reopen_for_visitor(latest):
                    return _Resolved(latest, reopened=True)
                continue

            conversation = await self.conversations.create_open(
                visitor_key=visitor_key,
                user_id=actor.id if isinstance(actor, UserActor) else None,
                session_id=None if isinstance(actor, UserActor) else actor.session_id,
                visitor_name=visitor_name.strip()[:120] if visitor_name else None,
                chat_mode=ChatMode.CHATBOT,
                now=now,
            )
            if conversation is not None:
                logger.info(
                    "conversation_created",
                    conversation_id=conversation.id,
                    visitor_key=visitor_key,
                )
                return _Resolved(conversation, created=True)

        logger.warning("open_conversation_contended", visitor_key=visitor_key)
        raise ConversationUnavailableError(visitor_key)

    async def _reopen_for_visitor(self, conversation: Conversation) -> bool:
        conversation.status = ConversationLifecycle.transition(
            conversation.status, ConversationAction.VISITOR_MESSAGE
        )
        conversation.closed_at = None
        reopened = await self.conversations.save_reopened(conversation)
        if reopened:
            logger.info("conversation_reopened_by_visitor", conversation_id=conversation.id)
        return reopened

    async def _get_conversation_or_raise(
        self, conversation_id: int, *, for_update: bool = False
    ) -> Conversation:
        conversation = await self.conversations.get_by_id(
            conversation_id, for_update=for_update
        )
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def _emit_new_message(self, message: Message) -> None:
        await safe_broadcast(
            self.realtime,
            [conversation_room(message.conversation_id)],
            RealtimeEvent.NEW_MESSAGE,
            {
                "conversation_id": message.conversation_id,
                "message": message_payload(message),
            },
        )

    async def _emit_conversation_updated(self, conversation: Conversation) -> None:
        await safe_broadcast(
            self.realtime,
            [conversation_room(conversation.id)],
            RealtimeEvent.CONVERSATION_UPDATED,
            {"conversation": conversation_payload(conversation)},
        )

    @staticmethod
    def _clean_body(body: str) -> str:
        cleaned = body.strip()
        if not cleaned:
            raise ValueError("Message content cannot be empty.")
        if len(cleaned) > MAX_BODY_LENGTH:
            raise ValueError(f"Message content cannot exceed {MAX_BODY_LENGTH} characters.")
        return cleaned

    @staticmethod
    def _visitor_sender_name(actor: VisitorSide, conversation: Conversation) -> str:
        if isinstance(actor, UserActor):
            return actor.display_name
        return conversation.visitor_name or actor.display_name

