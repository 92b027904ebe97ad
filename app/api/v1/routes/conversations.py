from fastapi import APIRouter, Depends, Query

from app.api.deps import (
    enforce_rate_limit,
    get_actor,
    get_conversation_service,
    get_message_ledger,
    get_rate_limiter,
    require_admin,
    require_visitor_side,
)
from app.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from app.core.config import get_settings
from app.core.rate_limit import InMemoryRateLimiter
from app.domain.actors import Actor, AdminActor, VisitorSide
from app.domain.enums import ConversationStatus
from app.infra.db.repositories import ConversationSummary
from app.schemas.common import ApiResponse, PageMeta
from app.schemas.conversation import (
    AdminReplyResponse,
    ConversationListResponse,
    ConversationResponse,
    ConversationSummaryResponse,
    ConversationThreadResponse,
    InboxStatsResponse,
    LiveChatRequest,
    OfflineMessageRequest,
    VisitorMessageResponse,
)
from app.schemas.message import (
    AdminReplyRequest,
    MarkSeenRequest,
    MarkSeenResponse,
    MessageResponse,
    SendMessageRequest,
)
from app.services.conversation_service import (
    ConversationService,
    ConversationThread,
    VisitorMessageResult,
)
from app.services.ledger_service import MessageLedger

router = APIRouter()
admin_router = APIRouter()


def _to_thread_response(thread: ConversationThread) -> ConversationThreadResponse:
    return ConversationThreadResponse(
        conversation=ConversationResponse.model_validate(thread.conversation),
        messages=[MessageResponse.model_validate(message) for message in thread.messages],
    )


def _to_visitor_message_response(result: VisitorMessageResult) -> VisitorMessageResponse:
    return VisitorMessageResponse(
        conversation=ConversationResponse.model_validate(result.conversation),
        message=MessageResponse.model_validate(result.message),
        created=result.created,
        reopened=result.reopened,
    )


def _to_summary_response(summary: ConversationSummary) -> ConversationSummaryResponse:
    return ConversationSummaryResponse(
        conversation=ConversationResponse.model_validate(summary.conversation),
        unread_count=summary.unread_count,
        last_message=summary.last_message,
    )


@router.post("/messages", response_model=ApiResponse[VisitorMessageResponse])
async def post_visitor_message(
    payload: SendMessageRequest,
    actor: VisitorSide = Depends(require_visitor_side),
    service: ConversationService = Depends(get_conversation_service),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
) -> ApiResponse[VisitorMessageResponse]:
    try:
        await enforce_rate_limit(
            limiter, f"message:{actor.visitor_key}", get_settings().visitor_message_rule
        )
        result = await service.send_visitor_message(
            actor, payload.body, conversation_id=payload.conversation_id
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_visitor_message_response(result))


@router.post("/offline", response_model=ApiResponse[VisitorMessageResponse])
async def post_offline_message(
    payload: OfflineMessageRequest,
    actor: VisitorSide = Depends(require_visitor_side),
    service: ConversationService = Depends(get_conversation_service),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
) -> ApiResponse[VisitorMessageResponse]:
    try:
        await enforce_rate_limit(
            limiter, f"message:{actor.visitor_key}", get_settings().visitor_message_rule
        )
        result = await service.leave_offline_message(
            actor, payload.name, payload.contact, payload.message
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Your message has been received. We'll get back to you soon.",
        data=_to_visitor_message_response(result),
    )


@router.post("/live-chat", response_model=ApiResponse[ConversationResponse])
async def request_live_chat(
    payload: LiveChatRequest,
    actor: VisitorSide = Depends(require_visitor_side),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.request_live_chat(actor, payload.conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=ConversationResponse.model_validate(conversation))


@router.get("/current", response_model=ApiResponse[ConversationThreadResponse])
async def get_current_conversation(
    actor: VisitorSide = Depends(require_visitor_side),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[ConversationThreadResponse]:
    thread = await service.get_visitor_thread(actor)
    if thread is None:
        return ApiResponse(message="No conversation yet")
    return ApiResponse(data=_to_thread_response(thread))


@router.get("/{conversation_id}", response_model=ApiResponse[ConversationThreadResponse])
async def get_conversation(
    conversation_id: int,
    actor: Actor = Depends(get_actor),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[ConversationThreadResponse]:
    try:
        thread = await service.get_thread_for_actor(actor, conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_thread_response(thread))


@admin_router.get("", response_model=ApiResponse[ConversationListResponse])
async def list_conversations(
    status_filter: ConversationStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    search: str | None = Query(default=None, max_length=120),
    _: AdminActor = Depends(require_admin),
    ledger: MessageLedger = Depends(get_message_ledger),
) -> ApiResponse[ConversationListResponse]:
    try:
        result = await ledger.list_conversations(
            status_filter=status_filter, page=page, page_size=page_size, search=search
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=ConversationListResponse(
            items=[_to_summary_response(item) for item in result.items],
            meta=PageMeta(
                page=result.page,
                page_size=result.page_size,
                total=result.total,
                total_pages=result.total_pages,
            ),
        )
    )


@admin_router.get("/stats", response_model=ApiResponse[InboxStatsResponse])
async def get_inbox_stats(
    admin: AdminActor = Depends(require_admin),
    ledger: MessageLedger = Depends(get_message_ledger),
) -> ApiResponse[InboxStatsResponse]:
    stats = await ledger.inbox_stats(admin)
    return ApiResponse(
        data=InboxStatsResponse(
            unread_messages=stats.unread_messages,
            open_conversations=stats.open_conversations,
            my_open_conversations=stats.my_open_conversations,
        )
    )


@admin_router.get(
    "/{conversation_id}", response_model=ApiResponse[ConversationThreadResponse]
)
async def get_admin_conversation(
    conversation_id: int,
    admin: AdminActor = Depends(require_admin),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[ConversationThreadResponse]:
    try:
        thread = await service.get_admin_thread(admin, conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_thread_response(thread))


@admin_router.get(
    "/{conversation_id}/messages", response_model=ApiResponse[list[MessageResponse]]
)
async def list_conversation_messages(
    conversation_id: int,
    _: AdminActor = Depends(require_admin),
    ledger: MessageLedger = Depends(get_message_ledger),
) -> ApiResponse[list[MessageResponse]]:
    try:
        messages = await ledger.list_messages(conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=[MessageResponse.model_validate(message) for message in messages])


@admin_router.post(
    "/{conversation_id}/reply", response_model=ApiResponse[AdminReplyResponse]
)
async def post_admin_reply(
    conversation_id: int,
    payload: AdminReplyRequest,
    admin: AdminActor = Depends(require_admin),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[AdminReplyResponse]:
    try:
        result = await service.send_admin_reply(admin, conversation_id, payload.body)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=AdminReplyResponse(
            conversation=ConversationResponse.model_validate(result.conversation),
            message=MessageResponse.model_validate(result.message),
            reopened=result.reopened,
        )
    )


@admin_router.post(
    "/{conversation_id}/close", response_model=ApiResponse[ConversationResponse]
)
async def close_conversation(
    conversation_id: int,
    admin: AdminActor = Depends(require_admin),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.close_conversation(admin, conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Conversation closed",
        data=ConversationResponse.model_validate(conversation),
    )


@admin_router.post(
    "/{conversation_id}/reopen", response_model=ApiResponse[ConversationResponse]
)
async def reopen_conversation(
    conversation_id: int,
    admin: AdminActor = Depends(require_admin),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.reopen_conversation(admin, conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Conversation reopened",
        data=ConversationResponse.model_validate(conversation),
    )


@admin_router.post(
    "/{conversation_id}/seen", response_model=ApiResponse[MarkSeenResponse]
)
async def mark_conversation_seen(
    conversation_id: int,
    payload: MarkSeenRequest,
    _: AdminActor = Depends(require_admin),
    service: ConversationService = Depends(get_conversation_service),
) -> ApiResponse[MarkSeenResponse]:
    try:
        message_ids = await service.mark_seen(conversation_id, payload.up_to_message_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=MarkSeenResponse(conversation_id=conversation_id, message_ids=message_ids)
    )
