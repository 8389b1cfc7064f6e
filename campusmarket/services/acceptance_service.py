"""
Offer acceptance.
Turns one offer into an order and closes out the request in a single
transaction.
"""
import logging
from typing import Tuple
from uuid import UUID

from sqlalchemy import func, case
from sqlalchemy.orm import Session

from campusmarket.core.exceptions import BadRequestException, ForbiddenException, NotFoundException
from campusmarket.core.time_utils import utcnow, hours_between
from campusmarket.crud.offer import offer as crud_offer
from campusmarket.crud.order import order as crud_order
from campusmarket.db.transaction import commit_or_conflict, flush_or_conflict
from campusmarket.models.offer import Offer
from campusmarket.models.order import Order
from campusmarket.models.request import Request
from campusmarket.models.user import User
from campusmarket.services import notification_service

logger = logging.getLogger(__name__)


def requester_fulfillment_rate(db: Session, requester_id: UUID) -> float:
    """Fulfilled share of all the requester's requests."""
    fulfilled, total = (
        db.query(
            func.sum(case((Request.status == "fulfilled", 1), else_=0)),
            func.count(Request.id),
        )
        .filter(Request.requester_id == requester_id)
        .one()
    )
    return round((fulfilled or 0) / total, 4) if total else 0.0


def accept_offer(db: Session, *, offer_id: UUID, user: User) -> Tuple[Offer, Order]:
    """
    Accept an offer on the caller's request.

    The offer becomes accepted, the request fulfilled, every other pending
    offer of the request rejected and one pending order is created. All of
    it commits together or not at all.

    Args:
        db: Database session
        offer_id: Offer to accept
        user: Caller, must be the requester

    Returns:
        Tuple (offer, order)

    Raises:
        NotFoundException: Unknown offer or request
        ForbiddenException: Caller is not the requester
        BadRequestException: Request not open, or offer not pending/expired
        ConflictException: A concurrent writer changed the offer or request
    """
    offer = crud_offer.get(db, id=offer_id)
    if not offer:
        raise NotFoundException("Offer not found")

    request_obj = db.query(Request).filter(Request.id == offer.request_id).first()
    if not request_obj:
        raise NotFoundException("Request not found")

    if request_obj.requester_id != user.id:
        raise ForbiddenException("Not authorized to accept this offer")

    now = utcnow()
    if not request_obj.is_open() or request_obj.is_expired(now):
        raise BadRequestException("Request is not open")
    if not offer.is_pending():
        raise BadRequestException(f"Offer is already {offer.status}")
    if offer.is_expired(now):
        raise BadRequestException("Offer has expired")

    offer.change_status("accepted", user.id, "Offer accepted by buyer")
    offer.response_time = hours_between(offer.created_at, now)

    request_obj.status = "fulfilled"
    request_obj.response_time = hours_between(request_obj.created_at, now)
    request_obj.add_history(
        "fulfilled", user.id, f"Request fulfilled by offer {offer.id}", "open", "fulfilled"
    )
    flush_or_conflict(db)

    offer.acceptance_rate = crud_offer.seller_acceptance_rate(db, seller_id=offer.seller_id)
    request_obj.fulfillment_rate = requester_fulfillment_rate(db, request_obj.requester_id)

    rejected = crud_offer.reject_siblings(
        db, request_id=request_obj.id, accepted_offer_id=offer.id, user_id=user.id
    )
    order = crud_order.build_from_offer(db, offer=offer, buyer_id=user.id)

    commit_or_conflict(db)
    db.refresh(offer)
    db.refresh(request_obj)
    db.refresh(order)

    logger.info(f"Offer {offer.id} accepted; order {order.id} created, {rejected} sibling offers rejected")

    notification_service.notify_offer_accepted(db, offer, request_obj, order, user)

    return offer, order
