from fastapi import APIRouter, Depends, status

from app.api.deps import get_countdown_service, require_admin
from app.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from app.domain.actors import AdminActor
from app.schemas.common import ApiResponse
from app.schemas.countdown import (
    CountdownResponse,
    CreateCountdownRequest,
    ToggleCountdownRequest,
    UpdateCountdownRequest,
)
from app.services.countdown_service import CountdownDraft, CountdownService

router = APIRouter()
admin_router = APIRouter()


@router.get("/active", response_model=ApiResponse[list[CountdownResponse]])
async def list_active_countdowns(
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[list[CountdownResponse]]:
    events = await service.list_active()
    return ApiResponse(data=[CountdownResponse.model_validate(event) for event in events])


@router.get("/{event_id}", response_model=ApiResponse[CountdownResponse])
async def get_countdown(
    event_id: int,
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[CountdownResponse]:
    try:
        event = await service.get_active(event_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=CountdownResponse.model_validate(event))


@admin_router.post(
    "",
    response_model=ApiResponse[CountdownResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_countdown(
    payload: CreateCountdownRequest,
    admin: AdminActor = Depends(require_admin),
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[CountdownResponse]:
    try:
        event = await service.create(admin, CountdownDraft(**payload.model_dump()))
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Countdown event created successfully",
        data=CountdownResponse.model_validate(event),
    )


@admin_router.patch("/{event_id}", response_model=ApiResponse[CountdownResponse])
async def update_countdown(
    event_id: int,
    payload: UpdateCountdownRequest,
    admin: AdminActor = Depends(require_admin),
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[CountdownResponse]:
    try:
        event = await service.update(admin, event_id, payload.model_dump(exclude_none=True))
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=CountdownResponse.model_validate(event))


@admin_router.post("/{event_id}/start", response_model=ApiResponse[CountdownResponse])
async def start_countdown(
    event_id: int,
    admin: AdminActor = Depends(require_admin),
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[CountdownResponse]:
    try:
        event = await service.start(admin, event_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=CountdownResponse.model_validate(event))


@admin_router.post("/{event_id}/stop", response_model=ApiResponse[CountdownResponse])
async def stop_countdown(
    event_id: int,
    admin: AdminActor = Depends(require_admin),
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[CountdownResponse]:
    try:
        event = await service.stop(admin, event_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=CountdownResponse.model_validate(event))


@admin_router.post("/{event_id}/toggle", response_model=ApiResponse[CountdownResponse])
async def toggle_countdown(
    event_id: int,
    payload: ToggleCountdownRequest,
    admin: AdminActor = Depends(require_admin),
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[CountdownResponse]:
    try:
        event = await service.toggle(admin, event_id, payload.field)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=CountdownResponse.model_validate(event))


@admin_router.delete("/{event_id}", response_model=ApiResponse[None])
async def delete_countdown(
    event_id: int,
    admin: AdminActor = Depends(require_admin),
    service: CountdownService = Depends(get_countdown_service),
) -> ApiResponse[None]:
    try:
        await service.delete(admin, event_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(message="Countdown event deleted")
