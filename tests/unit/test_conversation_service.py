from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import count

import pytest

from app.domain.actors import AdminActor, UserActor, VisitorActor
from app.domain.enums import (
    ChatMode,
    ConversationStatus,
    DeliveryStatus,
    MessageKind,
    MessageSenderType,
)
from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.rooms import ADMIN_ROOM, conversation_room, user_room
from app.services.conversation_service import ConversationService
from app.services.errors import (
    ConversationAccessDeniedError,
    ConversationNotFoundError,
    ConversationReopenConflictError,
    ConversationUnavailableError,
)


class DummySession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def refresh(self, _: object) -> None:
        return None


@dataclass(slots=True)
class FakeConversation:
    id: int
    visitor_key: str
    user_id: int | None
    session_id: str | None
    status: ConversationStatus = ConversationStatus.OPEN
    chat_mode: ChatMode = ChatMode.CHATBOT
    visitor_name: str | None = None
    admin_id: int | None = None
    last_message_at: datetime | None = None
    last_activity_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(slots=True)
class FakeMessage:
    id: int
    conversation_id: int
    sender_type: MessageSenderType
    sender_id: int | None
    sender_name: str
    body: str
    message_type: MessageKind
    status: DeliveryStatus = DeliveryStatus.SENT
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    seen_at: datetime | None = None


class FakeConversationRepository:
    def __init__(self) -> None:
        self.conversations: dict[int, FakeConversation] = {}
        self._ids = count(1)
        self.competing_inserts = 0
        self.always_lose = False

    def add(self, **fields) -> FakeConversation:
        conversation = FakeConversation(id=next(self._ids), **fields)
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_by_id(
        self, conversation_id: int, *, for_update: bool = False
    ) -> FakeConversation | None:
        return self.conversations.get(conversation_id)

    async def get_open_by_visitor(
        self, visitor_key: str, *, for_update: bool = False
    ) -> FakeConversation | None:
        for conversation in self.conversations.values():
            if (
                conversation.visitor_key == visitor_key
                and conversation.status == ConversationStatus.OPEN
            ):
                return conversation
        return None

    async def get_latest_by_visitor(
        self, visitor_key: str, *, for_update: bool = False
    ) -> FakeConversation | None:
        candidates = [
            conversation
            for conversation in self.conversations.values()
            if conversation.visitor_key == visitor_key
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda conversation: (conversation.created_at, conversation.id))

    async def create_open(
        self,
        *,
        visitor_key: str,
        user_id: int | None,
        session_id: str | None,
        visitor_name: str | None,
        chat_mode: ChatMode,
        now: datetime,
    ) -> FakeConversation | None:
        if self.always_lose:
            return None
        if self.competing_inserts:
            # Another request inserts the open row first; this insert loses.
            self.competing_inserts -= 1
            self.add(visitor_key=visitor_key, user_id=user_id, session_id=session_id)
            return None
        if await self.get_open_by_visitor(visitor_key) is not None:
            return None
        return self.add(
            visitor_key=visitor_key,
            user_id=user_id,
            session_id=session_id,
            visitor_name=visitor_name,
            chat_mode=chat_mode,
            last_activity_at=now,
        )

    async def save_reopened(self, conversation: FakeConversation) -> bool:
        for other in self.conversations.values():
            if (
                other.id != conversation.id
                and other.visitor_key == conversation.visitor_key
                and other.status == ConversationStatus.OPEN
            ):
                conversation.status = ConversationStatus.CLOSED
                return False
        return True


class FakeMessageRepository:
    def __init__(self) -> None:
        self.messages: list[FakeMessage] = []
        self._ids = count(1)

    async def create(
        self,
        *,
        conversation_id: int,
        sender_type: MessageSenderType,
        sender_id: int | None,
        sender_name: str,
        body: str,
        message_type: MessageKind = MessageKind.TEXT,
        created_at: datetime | None = None,
    ) -> FakeMessage:
        message = FakeMessage(
            id=next(self._ids),
            conversation_id=conversation_id,
            sender_type=sender_type,
            sender_id=sender_id,
            sender_name=sender_name,
            body=body,
            message_type=message_type,
        )
        if created_at is not None:
            message.created_at = created_at
        self.messages.append(message)
        return message

    async def list_by_conversation(self, conversation_id: int) -> list[FakeMessage]:
        return sorted(
            (message for message in self.messages if message.conversation_id == conversation_id),
            key=lambda message: (message.created_at, message.id),
        )

    async def advance_status(
        self,
        *,
        conversation_id: int,
        sender_type: MessageSenderType,
        target: DeliveryStatus,
        now: datetime,
        up_to_message_id: int | None = None,
    ) -> list[int]:
        advanced = []
        for message in self.messages:
            if message.conversation_id != conversation_id or message.sender_type != sender_type:
                continue
            if up_to_message_id is not None and message.id > up_to_message_id:
                continue
            if not message.status.can_advance_to(target):
                continue
            message.status = target
            if target == DeliveryStatus.SEEN:
                message.seen_at = now
            advanced.append(message.id)
        return sorted(advanced)


class RecordingRealtime:
    def __init__(self) -> None:
        self.events: list[tuple[list[str], RealtimeEvent, dict]] = []

    async def broadcast(self, rooms, event, payload) -> None:
        self.events.append((list(rooms), event, dict(payload)))

    async def broadcast_all(self, event, payload) -> None:
        self.events.append((["*"], event, dict(payload)))

    def of(self, event: RealtimeEvent) -> list[tuple[list[str], dict]]:
        return [(rooms, payload) for rooms, kind, payload in self.events if kind == event]


class FailingRealtime:
    async def broadcast(self, rooms, event, payload) -> None:
        raise RuntimeError("socket layer down")

    async def broadcast_all(self, event, payload) -> None:
        raise RuntimeError("socket layer down")


class RecordingNotifications:
    def __init__(self) -> None:
        self.admin_notifications: list[tuple[str, str]] = []
        self.user_notifications: list[tuple[int, str]] = []

    async def notify_user(self, user_id, title, body, data=None) -> None:
        self.user_notifications.append((user_id, title))

    async def notify_admins(self, title, body, data=None) -> None:
        self.admin_notifications.append((title, body))


@dataclass(slots=True)
class FixtureState:
    service: ConversationService
    session: DummySession
    conversations: FakeConversationRepository
    messages: FakeMessageRepository
    realtime: RecordingRealtime
    notifications: RecordingNotifications


@pytest.fixture
def state() -> FixtureState:
    session = DummySession()
    conversations = FakeConversationRepository()
    messages = FakeMessageRepository()
    realtime = RecordingRealtime()
    notifications = RecordingNotifications()
    service = ConversationService(
        session=session,
        conversations=conversations,
        messages=messages,
        realtime=realtime,
        notifications=notifications,
    )
    return FixtureState(
        service=service,
        session=session,
        conversations=conversations,
        messages=messages,
        realtime=realtime,
        notifications=notifications,
    )


VISITOR = VisitorActor(session_id="sess-1")
SHOPPER = UserActor(id=42, name="Dana")
ADMIN = AdminActor(id=7, name="Sam")


@pytest.mark.asyncio
async def test_first_visitor_message_creates_open_conversation(state: FixtureState) -> None:
    result = await state.service.send_visitor_message(VISITOR, "  Hi, where is my order?  ")

    assert result.created
    assert not result.reopened
    assert result.conversation.status == ConversationStatus.OPEN
    assert result.conversation.chat_mode == ChatMode.CHATBOT
    assert result.conversation.session_id == "sess-1"
    assert result.conversation.user_id is None
    assert result.message.body == "Hi, where is my order?"
    assert result.message.sender_type == MessageSenderType.USER
    assert result.message.status == DeliveryStatus.SENT
    assert result.conversation.last_message_at == result.message.created_at

    admin_events = state.realtime.of(RealtimeEvent.USER_MESSAGE)
    assert [rooms for rooms, _ in admin_events] == [[ADMIN_ROOM]]
    room_events = state.realtime.of(RealtimeEvent.NEW_MESSAGE)
    assert [rooms for rooms, _ in room_events] == [[conversation_room(result.conversation.id)]]


@pytest.mark.asyncio
async def test_follow_up_message_reuses_open_conversation(state: FixtureState) -> None:
    first = await state.service.send_visitor_message(VISITOR, "Hello")
    second = await state.service.send_visitor_message(VISITOR, "Anyone there?")

    assert second.conversation.id == first.conversation.id
    assert not second.created
    thread = await state.service.get_visitor_thread(VISITOR)
    assert thread is not None
    assert [message.body for message in thread.messages] == ["Hello", "Anyone there?"]


@pytest.mark.asyncio
async def test_visitor_message_reopens_closed_conversation(state: FixtureState) -> None:
    first = await state.service.send_visitor_message(SHOPPER, "Refund please")
    await state.service.close_conversation(ADMIN, first.conversation.id)

    result = await state.service.send_visitor_message(SHOPPER, "Still waiting")

    assert result.reopened
    assert result.conversation.id == first.conversation.id
    assert result.conversation.status == ConversationStatus.OPEN
    assert result.conversation.closed_at is None
    assert len(state.conversations.conversations) == 1


@pytest.mark.asyncio
async def test_lost_insert_race_falls_back_to_winning_conversation(
    state: FixtureState,
) -> None:
    state.conversations.competing_inserts = 1

    result = await state.service.send_visitor_message(VISITOR, "Hi")

    open_rows = [
        conversation
        for conversation in state.conversations.conversations.values()
        if conversation.status == ConversationStatus.OPEN
    ]
    assert len(open_rows) == 1
    assert result.conversation.id == open_rows[0].id
    assert not result.created


@pytest.mark.asyncio
async def test_exhausted_open_attempts_raise_unavailable(state: FixtureState) -> None:
    state.conversations.always_lose = True

    with pytest.raises(ConversationUnavailableError):
        await state.service.send_visitor_message(VISITOR, "Hi")

    assert state.session.rollbacks == 1
    assert state.messages.messages == []


@pytest.mark.asyncio
async def test_empty_body_is_rejected_before_any_write(state: FixtureState) -> None:
    with pytest.raises(ValueError):
        await state.service.send_visitor_message(VISITOR, "   ")

    assert state.conversations.conversations == {}
    assert state.session.commits == 0


@pytest.mark.asyncio
async def test_visitor_cannot_write_to_someone_elses_conversation(
    state: FixtureState,
) -> None:
    owned = await state.service.send_visitor_message(SHOPPER, "Mine")

    with pytest.raises(ConversationAccessDeniedError):
        await state.service.send_visitor_message(
            VISITOR, "Not mine", conversation_id=owned.conversation.id
        )
    with pytest.raises(ConversationAccessDeniedError):
        await state.service.authorize(VISITOR, owned.conversation.id)


@pytest.mark.asyncio
async def test_admin_reply_claims_conversation_and_notifies_user_room(
    state: FixtureState,
) -> None:
    opened = await state.service.send_visitor_message(SHOPPER, "Help")

    result = await state.service.send_admin_reply(ADMIN, opened.conversation.id, "On it")

    assert result.conversation.admin_id == ADMIN.id
    assert result.conversation.chat_mode == ChatMode.LIVE_CHAT
    assert result.message.sender_type == MessageSenderType.ADMIN
    assert result.message.sender_name == "Sam"
    assert not result.reopened

    admin_replies = state.realtime.of(RealtimeEvent.ADMIN_REPLY)
    assert [rooms for rooms, _ in admin_replies] == [[user_room(SHOPPER.id)]]


@pytest.mark.asyncio
async def test_admin_reply_to_closed_conversation_reopens_it(state: FixtureState) -> None:
    opened = await state.service.send_visitor_message(VISITOR, "Help")
    await state.service.close_conversation(ADMIN, opened.conversation.id)

    result = await state.service.send_admin_reply(ADMIN, opened.conversation.id, "Back again")

    assert result.reopened
    assert result.conversation.status == ConversationStatus.OPEN
    assert not state.realtime.of(RealtimeEvent.ADMIN_REPLY)


@pytest.mark.asyncio
async def test_admin_reply_reopen_conflict_rolls_back(state: FixtureState) -> None:
    old = state.conversations.add(
        visitor_key=VISITOR.visitor_key,
        user_id=None,
        session_id=VISITOR.session_id,
        status=ConversationStatus.CLOSED,
    )
    state.conversations.add(
        visitor_key=VISITOR.visitor_key, user_id=None, session_id=VISITOR.session_id
    )

    with pytest.raises(ConversationReopenConflictError):
        await state.service.send_admin_reply(ADMIN, old.id, "Hello?")

    assert state.session.rollbacks == 1
    assert state.messages.messages == []


@pytest.mark.asyncio
async def test_close_is_idempotent_and_broadcasts_once(state: FixtureState) -> None:
    opened = await state.service.send_visitor_message(VISITOR, "Bye")

    first = await state.service.close_conversation(ADMIN, opened.conversation.id)
    closed_at = first.closed_at
    second = await state.service.close_conversation(ADMIN, opened.conversation.id)

    assert second.status == ConversationStatus.CLOSED
    assert second.closed_at == closed_at
    closed_events = state.realtime.of(RealtimeEvent.CONVERSATION_CLOSED)
    assert len(closed_events) == 1
    assert closed_events[0][0] == [conversation_room(opened.conversation.id), ADMIN_ROOM]


@pytest.mark.asyncio
async def test_admin_reopen_emits_reopened_event(state: FixtureState) -> None:
    opened = await state.service.send_visitor_message(VISITOR, "Hi")
    await state.service.close_conversation(ADMIN, opened.conversation.id)

    conversation = await state.service.reopen_conversation(ADMIN, opened.conversation.id)

    assert conversation.status == ConversationStatus.OPEN
    assert conversation.admin_id == ADMIN.id
    assert len(state.realtime.of(RealtimeEvent.CONVERSATION_REOPENED)) == 1


@pytest.mark.asyncio
async def test_mark_seen_only_moves_visitor_messages_forward(state: FixtureState) -> None:
    opened = await state.service.send_visitor_message(VISITOR, "One")
    await state.service.send_visitor_message(VISITOR, "Two")
    await state.service.send_admin_reply(ADMIN, opened.conversation.id, "Reply")

    seen = await state.service.mark_seen(opened.conversation.id)
    again = await state.service.mark_seen(opened.conversation.id)

    assert seen == [1, 2]
    assert again == []
    statuses = {message.body: message.status for message in state.messages.messages}
    assert statuses == {
        "One": DeliveryStatus.SEEN,
        "Two": DeliveryStatus.SEEN,
        "Reply": DeliveryStatus.SENT,
    }
    seen_events = state.realtime.of(RealtimeEvent.MESSAGES_SEEN)
    assert len(seen_events) == 1
    assert seen_events[0][1]["message_ids"] == [1, 2]


@pytest.mark.asyncio
async def test_mark_seen_respects_upper_bound(state: FixtureState) -> None:
    opened = await state.service.send_visitor_message(VISITOR, "One")
    await state.service.send_visitor_message(VISITOR, "Two")

    seen = await state.service.mark_seen(opened.conversation.id, up_to_message_id=1)

    assert seen == [1]
    assert state.messages.messages[1].status == DeliveryStatus.SENT


@pytest.mark.asyncio
async def test_unknown_conversation_raises_not_found(state: FixtureState) -> None:
    with pytest.raises(ConversationNotFoundError):
        await state.service.mark_seen(999)
    with pytest.raises(ConversationNotFoundError):
        await state.service.send_admin_reply(ADMIN, 999, "Hello")


@pytest.mark.asyncio
async def test_offline_message_switches_mode_and_notifies_admins(
    state: FixtureState,
) -> None:
    result = await state.service.leave_offline_message(
        VISITOR, name="Riley", contact="riley@example.com", body="Call me back"
    )

    assert result.conversation.chat_mode == ChatMode.OFFLINE_MESSAGE
    assert result.conversation.visitor_name == "Riley"
    assert result.message.message_type == MessageKind.OFFLINE
    assert result.message.body == "Offline: riley@example.com - Call me back"
    assert result.message.sender_name == "Riley"
    assert len(state.realtime.of(RealtimeEvent.OFFLINE_MESSAGE)) == 1
    assert [title for title, _ in state.notifications.admin_notifications] == [
        "New offline message"
    ]


@pytest.mark.asyncio
async def test_live_chat_request_is_announced_once(state: FixtureState) -> None:
    await state.service.send_visitor_message(VISITOR, "Talk to a human")

    first = await state.service.request_live_chat(VISITOR)
    second = await state.service.request_live_chat(VISITOR)

    assert first.chat_mode == ChatMode.LIVE_CHAT
    assert second.id == first.id
    assert len(state.realtime.of(RealtimeEvent.LIVE_CHAT_REQUESTED)) == 1
    assert len(state.notifications.admin_notifications) == 1


@pytest.mark.asyncio
async def test_broadcast_failure_does_not_undo_the_write(state: FixtureState) -> None:
    service = ConversationService(
        session=state.session,
        conversations=state.conversations,
        messages=state.messages,
        realtime=FailingRealtime(),
    )

    result = await service.send_visitor_message(VISITOR, "Still stored")

    assert result.message.body == "Still stored"
    assert state.session.commits == 1
    assert state.session.rollbacks == 0


@pytest.mark.asyncio
async def test_visitor_thread_is_empty_for_new_visitor(state: FixtureState) -> None:
    assert await state.service.get_visitor_thread(VISITOR) is None
