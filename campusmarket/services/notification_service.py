"""
Notification service.
Persists notifications for users and mirrors them as realtime pushes.

Every notify_* helper is best-effort: failures are logged and never reach
the caller, whose main write has already been committed.
"""
import logging
from typing import Optional, Dict, Any
from uuid import UUID
from sqlalchemy.orm import Session

from campusmarket.crud.notification import notification as crud_notification
from campusmarket.db.session import SessionLocal
from campusmarket.models.notification import Notification
from campusmarket.models.offer import Offer
from campusmarket.models.order import Order
from campusmarket.models.request import Request
from campusmarket.models.user import User
from campusmarket.schemas.notification import NotificationCreate
from campusmarket.services.realtime import realtime

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: UUID,
    notification_type: str,
    title: str,
    message: Optional[str] = None,
    category: str = "info",
    priority: str = "normal",
    data: Optional[Dict[str, Any]] = None
) -> Notification:
    """
    Persist a notification for a user.

    Args:
        db: Database session
        user_id: Recipient
        notification_type: request, offer, order, payment or system
        title: Title
        message: Body
        category: info, warning, error, success or urgent
        priority: low, normal, high or urgent
        data: Related ids (offerId, requestId, orderId...)

    Returns:
        Created notification
    """
    return crud_notification.create(db, obj_in=NotificationCreate(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        category=category,
        priority=priority,
        data=data
    ))


def _notify(
    db: Session,
    user_id: UUID,
    event: Optional[str],
    push_payload: Dict[str, Any],
    **notification_fields
) -> Optional[Notification]:
    """Persist (when fields are given) then push; never raises."""
    notification = None
    if notification_fields:
        try:
            notification = create_notification(db, user_id, **notification_fields)
            push_payload = {**push_payload, "notificationId": str(notification.id)}
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to persist notification for user {user_id}: {e}")

    if event:
        realtime.send_to_user(user_id, event, push_payload)

    return notification


def _display_name(user: Optional[User], fallback: str) -> str:
    return user.full_name if user and user.full_name else fallback


# ============================================================================
# REQUESTS
# ============================================================================

def notify_sellers_of_new_request(request_id: UUID) -> int:
    """
    Tell the sellers of the request's campus about a new request.

    Runs as a background task after the response, with its own session.

    Returns:
        Number of sellers notified
    """
    db = SessionLocal()
    notified = 0
    try:
        request_obj = db.query(Request).filter(Request.id == request_id).first()
        if not request_obj or request_obj.campus_id is None:
            return 0

        sellers = (
            db.query(User)
            .filter(
                User.role == "seller",
                User.status == "active",
                User.campus_id == request_obj.campus_id,
                User.id != request_obj.requester_id,
            )
            .all()
        )

        for seller in sellers:
            _notify(
                db, seller.id, "newRequest",
                {
                    "message": f"New request on your campus: {request_obj.title}",
                    "requestId": str(request_obj.id),
                    "title": request_obj.title,
                    "desiredPrice": request_obj.desired_price,
                },
                notification_type="request",
                title="New Buyer Request",
                message=f"A buyer on your campus is looking for: {request_obj.title}",
                data={"requestId": str(request_obj.id)},
            )
            notified += 1

        logger.info(f"Notified {notified} sellers about request {request_id}")
    except Exception as e:
        logger.error(f"Failed to notify sellers about request {request_id}: {e}")
    finally:
        db.close()

    return notified


# ============================================================================
# OFFERS
# ============================================================================

def notify_new_offer(db: Session, offer: Offer, request_obj: Request, seller: User) -> None:
    """Tell the requester about a new offer on their request."""
    if not request_obj.notify_on_offer:
        return

    _notify(
        db, request_obj.requester_id, "newOffer",
        {
            "message": f"New offer received for your request: {request_obj.title}",
            "offerId": str(offer.id),
            "requestId": str(request_obj.id),
            "amount": offer.amount,
        },
        notification_type="offer",
        title="New Offer Received",
        message=f"{_display_name(seller, 'A seller')} made an offer of {offer.amount} for your request: {request_obj.title}",
        data={
            "offerId": str(offer.id),
            "requestId": str(request_obj.id),
            "sellerId": str(seller.id),
            "amount": offer.amount,
        },
    )


def notify_offer_accepted(db: Session, offer: Offer, request_obj: Request, order: Order, buyer: User) -> None:
    """Tell both parties that the offer was accepted and an order exists."""
    seller = db.query(User).filter(User.id == offer.seller_id).first()
    ids = {
        "offerId": str(offer.id),
        "requestId": str(request_obj.id),
        "orderId": str(order.id),
    }

    _notify(
        db, offer.seller_id, "offerAccepted",
        {"message": f"{_display_name(buyer, 'The buyer')} accepted your offer!", **ids},
        notification_type="offer",
        title="Offer Accepted!",
        message=f"{_display_name(buyer, 'The buyer')} accepted your offer of {offer.amount} for \"{request_obj.title}\"",
        category="success",
        priority="high",
        data={**ids, "buyerId": str(buyer.id)},
    )
    _notify(
        db, buyer.id, "offerAccepted",
        {"message": f"You accepted an offer from {_display_name(seller, 'the seller')}", **ids},
        notification_type="offer",
        title="Offer Accepted",
        message=f"You accepted {_display_name(seller, 'the seller')}'s offer of {offer.amount} for \"{request_obj.title}\"",
        category="success",
        data={**ids, "sellerId": str(offer.seller_id)},
    )

    for user_id in (order.buyer_id, order.seller_id):
        realtime.send_to_user(user_id, "orderCreated", {"orderId": str(order.id), "message": "Order created"})


def notify_offer_rejected(db: Session, offer: Offer, request_obj: Request, buyer: User, reason: Optional[str] = None) -> None:
    """Tell the seller their offer was turned down."""
    suffix = f": {reason}" if reason else ""
    _notify(
        db, offer.seller_id, "offerRejected",
        {
            "message": f"Your offer was rejected{suffix}",
            "offerId": str(offer.id),
            "requestId": str(request_obj.id),
        },
        notification_type="offer",
        title="Offer Rejected",
        message=f"{_display_name(buyer, 'A buyer')} rejected your offer{suffix}",
        category="warning",
        data={
            "offerId": str(offer.id),
            "requestId": str(request_obj.id),
            "buyerId": str(buyer.id),
            "reason": reason,
        },
    )


# ============================================================================
# ORDERS
# ============================================================================

def notify_order_updated(order: Order) -> None:
    payload = {"orderId": str(order.id), "status": order.status}
    for user_id in (order.buyer_id, order.seller_id):
        realtime.send_to_user(user_id, "orderUpdated", payload)


def notify_order_paid(db: Session, order: Order) -> None:
    """Tell both parties the payment went through."""
    payload = {"orderId": str(order.id)}
    _notify(
        db, order.buyer_id, "orderPaid", payload,
        notification_type="payment",
        title="Payment Successful",
        message=f"Your payment of {order.amount} was received",
        category="success",
        data={"orderId": str(order.id)},
    )
    _notify(
        db, order.seller_id, "orderPaid", payload,
        notification_type="payment",
        title="Order Paid",
        message=f"The buyer paid {order.amount} for your order",
        category="success",
        priority="high",
        data={"orderId": str(order.id)},
    )


def notify_order_delivered(order: Order) -> None:
    realtime.send_to_user(order.seller_id, "orderDelivered", {
        "orderId": str(order.id),
        "message": "Buyer confirmed delivery",
    })


def notify_payout_completed(db: Session, order: Order) -> None:
    """Close the delivery loop for both parties once the payout ran."""
    _notify(
        db, order.seller_id, "payoutCompleted",
        {"orderId": str(order.id), "message": "Payout completed successfully"},
        notification_type="payment",
        title="Payout Completed",
        message=f"Your payout of {order.amount} was released",
        category="success",
        data={"orderId": str(order.id)},
    )
    _notify(
        db, order.buyer_id, "deliveryConfirmed",
        {"orderId": str(order.id), "message": "Delivery confirmed and payout released"},
    )
