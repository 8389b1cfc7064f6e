"""
Schemas for orders and payments.
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime
from enum import Enum

from campusmarket.schemas.offer import OfferResponse


class OrderStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


# Statuses only an admin may set by hand
ADMIN_ONLY_ORDER_STATUSES = {OrderStatus.paid, OrderStatus.refunded}


class OrderCreate(BaseModel):
    """Order for an accepted offer; the offer fixes parties and amount."""

    offer_id: UUID
    buyer_id: UUID
    seller_id: UUID
    product_id: Optional[UUID] = None
    amount: float = Field(..., ge=0.01)
    qty: int = Field(1, ge=1)
    status: OrderStatus = Field(OrderStatus.pending, validate_default=True)
    payment_gateway: str = "paystack"

    model_config = {"use_enum_values": True}


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderResponse(BaseModel):
    """Order as returned by the API."""

    id: UUID
    offer_id: UUID
    buyer_id: UUID
    seller_id: UUID
    product_id: Optional[UUID] = None
    amount: float
    qty: int
    status: str
    is_paid: bool
    payment_gateway: str
    payment_ref: Optional[str] = None
    payment_meta: Optional[Dict[str, Any]] = None
    delivered_at: Optional[datetime] = None
    payout_status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AcceptOfferResponse(BaseModel):
    """Result of accepting an offer."""

    offer: OfferResponse
    order: OrderResponse


class PaymentInitResponse(BaseModel):
    """What the client needs to send the buyer to the checkout page."""

    authorization_url: Optional[str] = None
    access_code: Optional[str] = None
    reference: str
