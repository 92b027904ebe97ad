from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.domain.enums import AuctionStatus
from app.schemas.common import PageMeta


class CreateAuctionRequest(BaseModel):
    product_id: int = Field(ge=1)
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    starting_bid: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    bid_increment: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    reserve_price: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_window(self) -> "CreateAuctionRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class PlaceBidRequest(BaseModel):
    bid_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class ExtendAuctionRequest(BaseModel):
    minutes: int = Field(ge=1, le=1440)


class AuctionResponse(BaseModel):
    id: int
    product_id: int
    title: str
    description: str
    starting_bid: Decimal
    current_bid: Decimal
    bid_increment: Decimal
    reserve_price: Decimal | None
    status: AuctionStatus
    start_date: datetime
    end_date: datetime
    winner_id: int | None
    winning_bid: Decimal | None
    total_bids: int
    total_bidders: int
    created_by: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BidResponse(BaseModel):
    id: int
    auction_id: int
    bidder_id: int
    bid_amount: Decimal
    is_winning: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BidPlacedResponse(BaseModel):
    auction: AuctionResponse
    bid: BidResponse
    minimum_next_bid: Decimal


class AuctionDetailResponse(BaseModel):
    auction: AuctionResponse
    bids: list[BidResponse]


class AuctionListResponse(BaseModel):
    items: list[AuctionResponse]
    meta: PageMeta


class SettlementResponse(BaseModel):
    auction: AuctionResponse
    winning_bid: BidResponse | None
    reserve_met: bool
