from fastapi import APIRouter, Depends, Query, status

from app.api.deps import (
    enforce_rate_limit,
    get_auction_service,
    get_rate_limiter,
    require_admin,
    require_user,
)
from app.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from app.core.config import get_settings
from app.core.rate_limit import InMemoryRateLimiter
from app.domain.actors import AdminActor, UserActor
from app.domain.enums import AuctionStatus
from app.schemas.auction import (
    AuctionDetailResponse,
    AuctionListResponse,
    AuctionResponse,
    BidPlacedResponse,
    BidResponse,
    CreateAuctionRequest,
    ExtendAuctionRequest,
    PlaceBidRequest,
    SettlementResponse,
)
from app.schemas.common import ApiResponse, PageMeta
from app.services.auction_service import AuctionDetail, AuctionService

router = APIRouter()
admin_router = APIRouter()


def _to_detail_response(detail: AuctionDetail) -> AuctionDetailResponse:
    return AuctionDetailResponse(
        auction=AuctionResponse.model_validate(detail.auction),
        bids=[BidResponse.model_validate(bid) for bid in detail.bids],
    )


@router.get("/active", response_model=ApiResponse[list[AuctionResponse]])
async def list_running_auctions(
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[list[AuctionResponse]]:
    auctions = await service.list_running()
    return ApiResponse(data=[AuctionResponse.model_validate(item) for item in auctions])


@router.get("/{auction_id}/live", response_model=ApiResponse[AuctionDetailResponse])
async def get_live_auction(
    auction_id: int,
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionDetailResponse]:
    try:
        detail = await service.live_snapshot(auction_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_detail_response(detail))


@router.post("/{auction_id}/bids", response_model=ApiResponse[BidPlacedResponse])
async def place_bid(
    auction_id: int,
    payload: PlaceBidRequest,
    bidder: UserActor = Depends(require_user),
    service: AuctionService = Depends(get_auction_service),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
) -> ApiResponse[BidPlacedResponse]:
    try:
        await enforce_rate_limit(limiter, f"bid:{bidder.id}", get_settings().bid_rule)
        result = await service.place_bid(bidder, auction_id, payload.bid_amount)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Bid placed successfully!",
        data=BidPlacedResponse(
            auction=AuctionResponse.model_validate(result.auction),
            bid=BidResponse.model_validate(result.bid),
            minimum_next_bid=result.minimum_next_bid,
        ),
    )


@admin_router.post(
    "",
    response_model=ApiResponse[AuctionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_auction(
    payload: CreateAuctionRequest,
    admin: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionResponse]:
    try:
        auction = await service.create_auction(
            admin,
            product_id=payload.product_id,
            title=payload.title,
            description=payload.description,
            starting_bid=payload.starting_bid,
            bid_increment=payload.bid_increment,
            reserve_price=payload.reserve_price,
            start_date=payload.start_date,
            end_date=payload.end_date,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Auction created successfully",
        data=AuctionResponse.model_validate(auction),
    )


@admin_router.get("", response_model=ApiResponse[AuctionListResponse])
async def list_auctions(
    status_filter: AuctionStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    _: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionListResponse]:
    try:
        result = await service.list_auctions(status_filter, page, page_size)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    total_pages = (result.total + result.page_size - 1) // result.page_size
    return ApiResponse(
        data=AuctionListResponse(
            items=[AuctionResponse.model_validate(item) for item in result.items],
            meta=PageMeta(
                page=result.page,
                page_size=result.page_size,
                total=result.total,
                total_pages=total_pages,
            ),
        )
    )


@admin_router.get("/{auction_id}", response_model=ApiResponse[AuctionDetailResponse])
async def get_auction(
    auction_id: int,
    _: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionDetailResponse]:
    try:
        detail = await service.get_auction(auction_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_detail_response(detail))


@admin_router.post("/{auction_id}/schedule", response_model=ApiResponse[AuctionResponse])
async def schedule_auction(
    auction_id: int,
    admin: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionResponse]:
    try:
        auction = await service.schedule_auction(admin, auction_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=AuctionResponse.model_validate(auction))


@admin_router.post("/{auction_id}/activate", response_model=ApiResponse[AuctionResponse])
async def activate_auction(
    auction_id: int,
    admin: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionResponse]:
    try:
        auction = await service.activate_auction(admin, auction_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=AuctionResponse.model_validate(auction))


@admin_router.post("/{auction_id}/cancel", response_model=ApiResponse[AuctionResponse])
async def cancel_auction(
    auction_id: int,
    admin: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionResponse]:
    try:
        auction = await service.cancel_auction(admin, auction_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Auction cancelled", data=AuctionResponse.model_validate(auction)
    )


@admin_router.post("/{auction_id}/settle", response_model=ApiResponse[SettlementResponse])
async def settle_auction(
    auction_id: int,
    admin: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[SettlementResponse]:
    try:
        result = await service.settle_auction(admin, auction_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message="Auction ended",
        data=SettlementResponse(
            auction=AuctionResponse.model_validate(result.auction),
            winning_bid=(
                BidResponse.model_validate(result.winning_bid)
                if result.winning_bid is not None
                else None
            ),
            reserve_met=result.reserve_met,
        ),
    )


@admin_router.post("/{auction_id}/extend", response_model=ApiResponse[AuctionResponse])
async def extend_auction(
    auction_id: int,
    payload: ExtendAuctionRequest,
    admin: AdminActor = Depends(require_admin),
    service: AuctionService = Depends(get_auction_service),
) -> ApiResponse[AuctionResponse]:
    try:
        auction = await service.extend_auction(admin, auction_id, payload.minutes)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        message=f"Auction extended by {payload.minutes} minutes",
        data=AuctionResponse.model_validate(auction),
    )
