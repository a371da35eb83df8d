"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _require_id(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be empty")
    return v


class BookingIdRequest(BaseModel):
    """Body for booking get / cancel"""

    booking_id: str

    @field_validator("booking_id")
    @classmethod
    def validate_booking_id(cls, v):
        return _require_id(v)


class SelectItemsRequest(BaseModel):
    """Body for item selection. ``action_id`` is accepted for older portal builds."""

    booking_id: str = Field(validation_alias=AliasChoices("booking_id", "action_id"))
    selected_item_ids: list[str]

    @field_validator("booking_id")
    @classmethod
    def validate_booking_id(cls, v):
        return _require_id(v)


class ActionIdRequest(BaseModel):
    """Body for staff actions"""

    action_id: str

    @field_validator("action_id")
    @classmethod
    def validate_action_id(cls, v):
        return _require_id(v)


class BookingSummary(BaseModel):
    """Booking row as listed in the portal"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    service_type: str
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ItemSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    label: Optional[str] = None
    status: str
    photo_paths: Optional[list[str]] = None
    category: Optional[str] = None


class ItemCounts(BaseModel):
    pickup: int
    delivery: int
    total: int


class BookingDetail(BookingSummary):
    """Single booking with its items"""

    service_address: Optional[dict[str, Any]] = None
    items: list[ItemSummary] = []
    item_counts: ItemCounts


class ActionResponse(BookingSummary):
    """Booking as returned after a mutation"""

    pickup_item_ids: list[str] = []
    delivery_item_ids: list[str] = []
    service_address: Optional[dict[str, Any]] = None
    completed_at: Optional[datetime] = None
