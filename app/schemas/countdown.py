from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.domain.enums import CountdownToggleField


class CreateCountdownRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    event_type: str = Field(min_length=1, max_length=60)
    start_date: datetime
    end_date: datetime
    display_on_homepage: bool = False
    display_on_product: bool = False
    related_auction_id: int | None = Field(default=None, ge=1)
    related_product_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_window(self) -> "CreateCountdownRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class UpdateCountdownRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    end_date: datetime | None = None
    is_active: bool | None = None


class ToggleCountdownRequest(BaseModel):
    field: CountdownToggleField


class CountdownResponse(BaseModel):
    id: int
    title: str
    description: str
    event_type: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    display_on_homepage: bool
    display_on_product: bool
    related_auction_id: int | None
    related_product_id: int | None

    model_config = ConfigDict(from_attributes=True)
