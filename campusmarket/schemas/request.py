"""
Schemas for buyer requests.
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Any
from uuid import UUID
from datetime import datetime
from enum import Enum

from campusmarket.schemas.common import reject_null
from campusmarket.schemas.offer import OfferResponse


WHATSAPP_PATTERN = r"^\+[1-9]\d{1,14}$"


class RequestStatus(str, Enum):
    """Request lifecycle states."""
    open = "open"
    fulfilled = "fulfilled"
    closed = "closed"


class RequestPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class RequestLocation(BaseModel):
    """Where the buyer wants the item."""

    address: Optional[str] = Field(None, max_length=200)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class RequestSettings(BaseModel):
    allow_offers: Optional[bool] = None
    notify_on_offer: Optional[bool] = None
    auto_close: Optional[bool] = None
    public_visibility: Optional[bool] = None

    @field_validator("allow_offers", "notify_on_offer", "auto_close", "public_visibility")
    @classmethod
    def flags_not_null(cls, v, info):
        return reject_null(v, info)


def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    cleaned = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > 20:
            raise ValueError("Tag cannot exceed 20 characters")
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class RequestCreate(BaseModel):
    """Payload to create a request."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    category_id: Optional[int] = None
    campus_id: Optional[int] = None
    desired_price: Optional[float] = Field(None, ge=0, le=1_000_000)
    priority: RequestPriority = RequestPriority.medium
    tags: List[str] = []
    location: Optional[RequestLocation] = None
    whatsapp_number: Optional[str] = Field(None, pattern=WHATSAPP_PATTERN)
    expires_at: Optional[datetime] = None
    settings: Optional[RequestSettings] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Request must have a title")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        return _clean_tags(v)


class RequestUpdate(BaseModel):
    """Editable fields of a request. Only fields sent are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    category_id: Optional[int] = None
    campus_id: Optional[int] = None
    desired_price: Optional[float] = Field(None, ge=0, le=1_000_000)
    priority: Optional[RequestPriority] = None
    tags: Optional[List[str]] = None
    location: Optional[RequestLocation] = None
    whatsapp_number: Optional[str] = Field(None, pattern=WHATSAPP_PATTERN)
    expires_at: Optional[datetime] = None
    settings: Optional[RequestSettings] = None

    @field_validator("title", "priority")
    @classmethod
    def required_not_null(cls, v, info):
        return reject_null(v, info)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        return _clean_tags(v)


class RequestFulfill(BaseModel):
    """Mark a request fulfilled by accepting the winning offer."""

    offer_id: UUID


class RequestExtend(BaseModel):
    """Either a number of days to add or an explicit new expiry."""

    extend_by_days: Optional[int] = Field(None, gt=0)
    extend_to: Optional[datetime] = None


class RequestImageResponse(BaseModel):
    url: str
    public_id: Optional[str] = None

    model_config = {"from_attributes": True}


class RequestHistoryResponse(BaseModel):
    """One audit entry."""

    id: int
    action: str
    user_id: Optional[UUID] = None
    details: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    timestamp: datetime = Field(validation_alias="created_at")

    model_config = {"from_attributes": True, "populate_by_name": True}


class RequestResponse(BaseModel):
    """Request as returned by the API."""

    id: UUID
    title: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    requester_id: UUID
    campus_id: Optional[int] = None
    status: str
    desired_price: Optional[float] = None
    priority: str
    tags: List[str] = []
    location: Optional[RequestLocation] = None
    whatsapp_number: Optional[str] = None
    expires_at: Optional[datetime] = None
    images: List[RequestImageResponse] = []

    # Analytics
    views: int
    last_viewed: Optional[datetime] = None
    offers_count: int
    response_time: Optional[float] = None
    fulfillment_rate: float

    # Settings
    allow_offers: bool
    notify_on_offer: bool
    auto_close: bool
    public_visibility: bool

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def collect_location(cls, data):
        """Group the flat location columns of an ORM row."""
        if hasattr(data, "location_address"):
            return {
                **{name: getattr(data, name) for name in cls.model_fields if hasattr(data, name) and name != "location"},
                "tags": list(data.tags),
                "location": RequestLocation(
                    address=data.location_address,
                    latitude=data.latitude,
                    longitude=data.longitude,
                ) if data.location_address or data.latitude is not None else None,
            }
        return data


class RequestDetailResponse(BaseModel):
    """A request together with its offers."""

    request: RequestResponse
    offers: List[OfferResponse] = []


class RequestAnalyticsResponse(BaseModel):
    period: str
    total: int
    fulfilled: int
    fulfillment_rate: float
    avg_views: float
    avg_offers: float
    avg_desired_price: Optional[float] = None
    by_status: dict
