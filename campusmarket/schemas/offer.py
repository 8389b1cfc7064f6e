"""
Schemas for seller offers.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
from uuid import UUID
from datetime import datetime
from enum import Enum

from campusmarket.schemas.common import reject_null


class OfferStatus(str, Enum):
    """Offer states; everything but pending is terminal."""
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"
    cancelled = "cancelled"


class OfferSettings(BaseModel):
    auto_expire: Optional[bool] = None
    notify_on_view: Optional[bool] = None
    allow_counter_offers: Optional[bool] = None

    @field_validator("auto_expire", "notify_on_view", "allow_counter_offers")
    @classmethod
    def flags_not_null(cls, v, info):
        return reject_null(v, info)


class OfferCreate(BaseModel):
    """Payload to answer a request."""

    request_id: UUID
    product_id: Optional[UUID] = None
    amount: float = Field(..., ge=0.01, le=1_000_000)
    message: Optional[str] = Field(None, max_length=500)
    expires_at: Optional[datetime] = None
    settings: Optional[OfferSettings] = None


class OfferUpdate(BaseModel):
    """Seller edits while the offer is pending."""

    amount: Optional[float] = Field(None, ge=0.01, le=1_000_000)
    message: Optional[str] = Field(None, max_length=500)
    settings: Optional[OfferSettings] = None

    @field_validator("amount")
    @classmethod
    def amount_not_null(cls, v, info):
        return reject_null(v, info)


class OfferReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class OfferWithdraw(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class OfferExtend(BaseModel):
    days: int = Field(7, ge=1, le=365)


class BulkOfferAction(BaseModel):
    """Ids for a bulk withdraw or reject."""

    offer_ids: List[UUID] = Field(..., min_length=1, max_length=50)
    reason: Optional[str] = Field(None, max_length=200)


class OfferHistoryResponse(BaseModel):
    id: int
    action: str
    user_id: Optional[UUID] = None
    details: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    timestamp: datetime = Field(validation_alias="created_at")

    model_config = {"from_attributes": True, "populate_by_name": True}


class OfferResponse(BaseModel):
    """Offer as returned by the API."""

    id: UUID
    request_id: UUID
    product_id: Optional[UUID] = None
    seller_id: UUID
    amount: float
    message: Optional[str] = None
    status: str
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    # Analytics
    views: int
    last_viewed: Optional[datetime] = None
    response_time: Optional[float] = None
    acceptance_rate: float

    # Settings
    auto_expire: bool
    notify_on_view: bool
    allow_counter_offers: bool

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OfferAnalyticsResponse(BaseModel):
    """Per-seller offer summary."""

    period: str
    total: int
    by_status: dict
    total_amount: float
    avg_amount: float
    acceptance_rate: float
