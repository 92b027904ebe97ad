from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.actors import AdminActor
from app.domain.enums import ConversationStatus
from app.infra.db.models import Message
from app.infra.db.repositories import (
    ConversationRepository,
    ConversationSummary,
    MessageRepository,
)
from app.services.errors import ConversationNotFoundError

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(slots=True)
class ConversationPage:
    items: list[ConversationSummary]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(slots=True)
class InboxStats:
    unread_messages: int
    open_conversations: int
    my_open_conversations: int


class MessageLedger:
    """Read side of the conversation store.

    ``unread_count`` and ``last_message`` are projected at query time from
    the messages table; nothing here writes.
    """

    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        messages: MessageRepository | None = None,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self.session = session
        self.conversations = conversations or ConversationRepository(session)
        self.messages = messages or MessageRepository(session)
        self.max_page_size = max_page_size

    async def list_messages(self, conversation_id: int) -> list[Message]:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return await self.messages.list_by_conversation(conversation_id)

    async def list_conversations(
        self,
        status_filter: ConversationStatus | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
    ) -> ConversationPage:
        if page < 1:
            raise ValueError("Page must be 1 or greater.")
        if page_size < 1:
            raise ValueError("Page size must be 1 or greater.")
        page_size = min(page_size, self.max_page_size)
        search = search.strip() if search and search.strip() else None

        items = await self.conversations.list_for_inbox(
            status_filter=status_filter,
            search=search,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        total = await self.conversations.count_for_inbox(
            status_filter=status_filter, search=search
        )
        return ConversationPage(items=items, total=total, page=page, page_size=page_size)

    async def inbox_stats(self, admin: AdminActor) -> InboxStats:
        return InboxStats(
            unread_messages=await self.conversations.count_unread_for_admin(admin.id),
            open_conversations=await self.conversations.count_open(),
            my_open_conversations=await self.conversations.count_open(admin_id=admin.id),
        )
