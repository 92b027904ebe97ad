from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.dialects import postgresql

from app.domain.actors import AdminActor
from app.domain.enums import ConversationStatus, DeliveryStatus, MessageSenderType
from app.infra.db.models import Bid, Conversation
from app.infra.db.repositories import (
    ConversationRepository,
    ConversationSummary,
    MessageRepository,
)
from app.services.errors import ConversationNotFoundError
from app.services.ledger_service import MessageLedger


@dataclass(slots=True)
class FakeConversation:
    id: int
    status: ConversationStatus
    last_message_at: datetime | None
    admin_id: int | None = None


@dataclass(slots=True)
class FakeMessage:
    id: int
    conversation_id: int
    body: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class FakeConversationRepository:
    def __init__(self, conversations: list[FakeConversation]) -> None:
        self.conversations = {conversation.id: conversation for conversation in conversations}
        self.calls: list[dict] = []

    async def get_by_id(self, conversation_id: int, *, for_update: bool = False):
        return self.conversations.get(conversation_id)

    def _filtered(self, status_filter) -> list[FakeConversation]:
        rows = [
            conversation
            for conversation in self.conversations.values()
            if status_filter is None or conversation.status == status_filter
        ]
        epoch = datetime.min.replace(tzinfo=UTC)
        return sorted(
            rows,
            key=lambda row: (row.last_message_at is not None, row.last_message_at or epoch, row.id),
            reverse=True,
        )

    async def list_for_inbox(self, *, status_filter, search, offset: int, limit: int):
        self.calls.append(
            {"status_filter": status_filter, "search": search, "offset": offset, "limit": limit}
        )
        return [
            ConversationSummary(conversation=row, unread_count=0, last_message=None)
            for row in self._filtered(status_filter)[offset : offset + limit]
        ]

    async def count_for_inbox(self, *, status_filter, search) -> int:
        return len(self._filtered(status_filter))

    async def count_open(self, *, admin_id: int | None = None) -> int:
        return len(
            [
                row
                for row in self.conversations.values()
                if row.status == ConversationStatus.OPEN
                and (admin_id is None or row.admin_id == admin_id)
            ]
        )

    async def count_unread_for_admin(self, admin_id: int) -> int:
        return 4


class FakeMessageRepository:
    def __init__(self, messages: list[FakeMessage]) -> None:
        self.messages = messages

    async def list_by_conversation(self, conversation_id: int) -> list[FakeMessage]:
        return [message for message in self.messages if message.conversation_id == conversation_id]


def build_ledger(max_page_size: int = 100) -> tuple[MessageLedger, FakeConversationRepository]:
    base = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    conversations = FakeConversationRepository(
        [
            FakeConversation(id=1, status=ConversationStatus.OPEN, last_message_at=base, admin_id=5),
            FakeConversation(
                id=2, status=ConversationStatus.CLOSED, last_message_at=base + timedelta(hours=1)
            ),
            FakeConversation(id=3, status=ConversationStatus.OPEN, last_message_at=None),
            FakeConversation(
                id=4, status=ConversationStatus.OPEN, last_message_at=base + timedelta(hours=2)
            ),
        ]
    )
    messages = FakeMessageRepository(
        [
            FakeMessage(id=1, conversation_id=1, body="first"),
            FakeMessage(id=2, conversation_id=1, body="second"),
            FakeMessage(id=3, conversation_id=2, body="elsewhere"),
        ]
    )
    ledger = MessageLedger(
        session=None,
        conversations=conversations,
        messages=messages,
        max_page_size=max_page_size,
    )
    return ledger, conversations


@pytest.mark.asyncio
async def test_list_messages_returns_only_that_thread() -> None:
    ledger, _ = build_ledger()

    messages = await ledger.list_messages(1)

    assert [message.body for message in messages] == ["first", "second"]


@pytest.mark.asyncio
async def test_list_messages_for_unknown_conversation_raises() -> None:
    ledger, _ = build_ledger()

    with pytest.raises(ConversationNotFoundError):
        await ledger.list_messages(404)


@pytest.mark.asyncio
async def test_inbox_is_paged_most_recent_first() -> None:
    ledger, _ = build_ledger()

    first_page = await ledger.list_conversations(page=1, page_size=2)
    second_page = await ledger.list_conversations(page=2, page_size=2)

    assert [item.conversation.id for item in first_page.items] == [4, 2]
    assert [item.conversation.id for item in second_page.items] == [1, 3]
    assert first_page.total == 4
    assert first_page.total_pages == 2


@pytest.mark.asyncio
async def test_inbox_filters_by_status_and_caps_page_size() -> None:
    ledger, conversations = build_ledger(max_page_size=10)

    page = await ledger.list_conversations(
        status_filter=ConversationStatus.OPEN, page=1, page_size=500, search="  "
    )

    assert [item.conversation.id for item in page.items] == [4, 1, 3]
    assert page.page_size == 10
    assert conversations.calls[-1] == {
        "status_filter": ConversationStatus.OPEN,
        "search": None,
        "offset": 0,
        "limit": 10,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(("page", "page_size"), [(0, 20), (1, 0)])
async def test_inbox_rejects_invalid_paging(page: int, page_size: int) -> None:
    ledger, _ = build_ledger()

    with pytest.raises(ValueError):
        await ledger.list_conversations(page=page, page_size=page_size)


@pytest.mark.asyncio
async def test_inbox_stats_counts_open_and_claimed_conversations() -> None:
    ledger, _ = build_ledger()

    stats = await ledger.inbox_stats(AdminActor(id=5, name="Lee"))

    assert stats.unread_messages == 4
    assert stats.open_conversations == 3
    assert stats.my_open_conversations == 1


class _EmptyResult:
    def all(self) -> list:
        return []

    def scalars(self) -> "_EmptyResult":
        return self


class CapturingSession:
    def __init__(self) -> None:
        self.statements: list = []

    async def execute(self, stmt):
        self.statements.append(stmt)
        return _EmptyResult()


def compiled(stmt) -> str:
    return " ".join(str(stmt.compile(dialect=postgresql.dialect())).split())


@pytest.mark.asyncio
async def test_inbox_query_orders_by_latest_message_with_nulls_last() -> None:
    session = CapturingSession()

    await ConversationRepository(session).list_for_inbox(
        status_filter=None, search="refund", offset=20, limit=20
    )

    sql = compiled(session.statements[0])
    assert (
        "ORDER BY conversations.last_message_at DESC NULLS LAST, conversations.id DESC" in sql
    )
    assert "ILIKE" in sql.upper()


@pytest.mark.asyncio
async def test_thread_query_orders_by_creation_then_id() -> None:
    session = CapturingSession()

    await MessageRepository(session).list_by_conversation(9)

    sql = compiled(session.statements[0])
    assert sql.endswith("ORDER BY messages.created_at ASC, messages.id ASC")


@pytest.mark.asyncio
async def test_mark_seen_update_only_targets_statuses_behind_seen() -> None:
    session = CapturingSession()

    await MessageRepository(session).advance_status(
        conversation_id=9,
        sender_type=MessageSenderType.USER,
        target=DeliveryStatus.SEEN,
        now=datetime.now(UTC),
    )

    stmt = session.statements[0]
    sql = compiled(stmt)
    assert sql.startswith("UPDATE messages SET")
    assert "RETURNING messages.id" in sql
    params = stmt.compile(dialect=postgresql.dialect()).params
    expanded = [list(value) for value in params.values() if isinstance(value, (list, tuple))]
    assert expanded == [[DeliveryStatus.SENT, DeliveryStatus.DELIVERED]]


def test_single_open_conversation_and_single_winning_bid_are_indexed() -> None:
    indexes = {index.name: index for index in Conversation.__table__.indexes}
    open_index = indexes["uq_conversations_open_visitor"]
    assert open_index.unique
    assert str(open_index.dialect_options["postgresql"]["where"]) == "status = 'open'"

    bid_indexes = {index.name: index for index in Bid.__table__.indexes}
    winning_index = bid_indexes["uq_bids_single_winning"]
    assert winning_index.unique
    assert str(winning_index.dialect_options["postgresql"]["where"]) == "is_winning"
