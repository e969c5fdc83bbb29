from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LiveCounter(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: Optional[int] = None
    page_url: str
    view_count: int = Field(default=0, ge=0)

    @field_validator("view_count", mode="before")
    @classmethod
    def _null_count_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class HistoricalRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    page_url: str
    view_count: int = Field(default=0, ge=0)
    view_date: str = Field(..., description="Horodatage du transfert (YYYY-MM-DD HH:MM)")

    @field_validator("view_count", mode="before")
    @classmethod
    def _null_count_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class ViewCounts(BaseModel):
    today: int = 0
    total: int = 0


class TrackViewPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=120, description="Nom public de la boutique")
    shop_id: int = Field(..., ge=0)


class TrackViewResponse(BaseModel):
    page_url: str
    view_count: int
    counted: bool


class RenameShopPayload(BaseModel):
    shop_id: int = Field(..., ge=0)
    old_name: str = Field(..., min_length=1, max_length=120)
    new_name: str = Field(..., min_length=1, max_length=120)


class RenameShopResponse(BaseModel):
    old_url: str
    new_url: str
    updated: bool


class ShopRef(BaseModel):
    id: int
    name: str = ""


class ShopViewSummary(BaseModel):
    shops: List[ShopRef] = Field(default_factory=list)
    today: int = 0
    total: int = 0


class RangeEntry(BaseModel):
    identifier: str
    total: int
    distinct_url_count: int
    example_url: str


class RangeReport(BaseModel):
    from_date: date
    to_date: date
    includes_today: bool
    grand_total: int
    entries: List[RangeEntry] = Field(default_factory=list)


class TransferResult(BaseModel):
    moved: int = 0
    view_date: Optional[str] = None
    inserted: bool = False
    cleared: bool = False
    error: Optional[str] = None
