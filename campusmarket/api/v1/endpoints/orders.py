"""
Endpoints for orders, Paystack payments and delivery confirmation.
"""
import json
import logging
from fastapi import APIRouter, Depends, Header, Request as HTTPRequest
from sqlalchemy.orm import Session
from uuid import UUID
from typing import Optional, List

from campusmarket.config import get_settings
from campusmarket.core.deps import get_db, get_current_active_user
from campusmarket.core.exceptions import (
    BadRequestException,
    ExternalServiceException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
from campusmarket.crud.order import order as crud_order
from campusmarket.models.order import Order
from campusmarket.models.user import User
from campusmarket.schemas.common import Envelope, MessageResponse, envelope
from campusmarket.schemas.order import (
    ADMIN_ONLY_ORDER_STATUSES,
    OrderResponse,
    OrderStatusUpdate,
    PaymentInitResponse,
)
from campusmarket.services import notification_service
from campusmarket.services.paystack_service import paystack_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_order_or_404(db: Session, order_id: UUID) -> Order:
    order = crud_order.get(db, id=order_id)
    if not order:
        raise NotFoundException("Order not found")
    return order


def _ensure_buyer(order: Order, user: User, message: str) -> None:
    if order.buyer_id != user.id:
        raise ForbiddenException(message)


def _metadata_order_id(transaction: dict) -> Optional[str]:
    metadata = transaction.get("metadata") or {}
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return None
    order_id = metadata.get("orderId") if isinstance(metadata, dict) else None
    return str(order_id) if order_id else None


@router.get("", response_model=Envelope[List[OrderResponse]])
def get_my_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Orders where the caller is buyer or seller, newest first."""
    return envelope(crud_order.get_by_user(db, user_id=current_user.id))


@router.post("/webhook", response_model=MessageResponse)
async def paystack_webhook(
    request: HTTPRequest,
    x_paystack_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Paystack event receiver.

    The x-paystack-signature header must be the HMAC-SHA512 of the raw
    body. Once authenticated the event is always acknowledged, even when
    processing it fails, so Paystack does not retry forever.
    """
    raw_body = await request.body()
    if not paystack_service.verify_signature(raw_body, x_paystack_signature):
        logger.warning("Rejected Paystack webhook with a missing or invalid signature")
        raise UnauthorizedException("Invalid signature")

    try:
        event = json.loads(raw_body)
        if event.get("event") == "charge.success":
            data = event.get("data") or {}
            order_id = _metadata_order_id(data)
            order = crud_order.get(db, id=UUID(order_id)) if order_id else None
            if order is None:
                logger.warning(f"Paystack webhook for unknown order: {order_id}")
            else:
                if data.get("reference"):
                    order.payment_ref = data["reference"]
                if crud_order.mark_paid(db, db_obj=order, verification=data, source="webhook"):
                    logger.info(f"Order {order.id} marked paid by webhook")
                    notification_service.notify_order_paid(db, order)
                else:
                    db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Paystack webhook processing failed: {e}", exc_info=True)

    return {"status": "success", "message": "Webhook received"}


@router.get("/{order_id}", response_model=Envelope[OrderResponse])
def get_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Buyer, seller or staff."""
    order = _get_order_or_404(db, order_id)
    if not order.is_party(current_user.id) and not current_user.is_admin():
        raise ForbiddenException("Not authorized to view this order")
    return envelope(order)


@router.patch("/{order_id}/status", response_model=Envelope[OrderResponse])
def update_order_status(
    order_id: UUID,
    status_in: OrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Set an order's status by hand.

    Seller or staff. Only admins may set `paid` or `refunded`.
    """
    order = _get_order_or_404(db, order_id)
    if order.seller_id != current_user.id and not current_user.is_admin():
        raise ForbiddenException("Not authorized to update this order")
    if status_in.status in ADMIN_ONLY_ORDER_STATUSES and not current_user.is_superadmin():
        raise ForbiddenException(f"Only admins can mark an order as {status_in.status.value}")

    order = crud_order.set_status(db, db_obj=order, status=status_in.status.value)
    notification_service.notify_order_updated(order)
    return envelope(order, message="Order status updated")


@router.post("/{order_id}/initialize-payment", response_model=Envelope[PaymentInitResponse])
def initialize_payment(
    order_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Start a Paystack checkout for the order.

    Buyer only. Returns the authorization URL to redirect the buyer to.
    """
    order = _get_order_or_404(db, order_id)
    _ensure_buyer(order, current_user, "Only the buyer can pay for this order")
    if order.is_paid:
        raise BadRequestException("Order already paid")

    settings = get_settings()
    data = paystack_service.initialize_transaction(
        email=current_user.email,
        amount=order.amount,
        callback_url=f"{settings.APP_BASE_URL.rstrip('/')}/api/v1/orders/{order.id}/verify-payment",
        metadata={
            "orderId": str(order.id),
            "buyerId": str(order.buyer_id),
            "sellerId": str(order.seller_id),
        },
    )
    reference = data.get("reference")
    if not reference:
        raise ExternalServiceException("Payment initialization failed")

    crud_order.store_payment_init(db, db_obj=order, reference=reference, init_data=data)
    return envelope({
        "authorization_url": data.get("authorization_url"),
        "access_code": data.get("access_code"),
        "reference": reference,
    })


@router.get("/{order_id}/verify-payment", response_model=Envelope[OrderResponse])
def verify_payment(
    order_id: UUID,
    reference: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """
    Confirm a payment with Paystack.

    Also the checkout callback URL, so no token is required. The reference
    defaults to the one stored at initialization.
    """
    order = _get_order_or_404(db, order_id)
    reference = reference or order.payment_ref
    if not reference:
        raise BadRequestException("No payment reference for this order")

    transaction = paystack_service.verify_transaction(reference)
    if transaction.get("status") != "success":
        raise BadRequestException("Payment not successful yet")

    metadata_order_id = _metadata_order_id(transaction)
    if metadata_order_id and metadata_order_id != str(order.id):
        raise BadRequestException("Payment reference does not belong to this order")

    if order.payment_ref != reference:
        order.payment_ref = reference
    if crud_order.mark_paid(db, db_obj=order, verification=transaction, source="verify"):
        notification_service.notify_order_paid(db, order)

    return envelope(order, message="Payment verified")


@router.post("/{order_id}/confirm-delivery", response_model=Envelope[OrderResponse])
def confirm_delivery(
    order_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Buyer confirms the item arrived.

    The seller's payout is released PAYOUT_DELAY_SECONDS later by the
    payout worker.
    """
    order = _get_order_or_404(db, order_id)
    _ensure_buyer(order, current_user, "Only the buyer can confirm delivery")

    crud_order.confirm_delivery(db, db_obj=order, payout_delay_seconds=get_settings().PAYOUT_DELAY_SECONDS)
    notification_service.notify_order_delivered(order)
    return envelope(order, message="Delivery confirmed")
