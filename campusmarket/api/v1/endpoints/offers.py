"""
Endpoints for seller offers.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from uuid import UUID
from typing import Optional, List

from campusmarket.core.deps import get_db, get_current_active_user
from campusmarket.core.exceptions import ForbiddenException, NotFoundException
from campusmarket.crud.offer import offer as crud_offer
from campusmarket.crud.request import request as crud_request
from campusmarket.models.offer import Offer
from campusmarket.models.user import User
from campusmarket.schemas.common import Envelope, PaginatedEnvelope, BulkResult, paginate, envelope
from campusmarket.schemas.offer import (
    OfferCreate,
    OfferUpdate,
    OfferReject,
    OfferWithdraw,
    OfferExtend,
    BulkOfferAction,
    OfferResponse,
    OfferHistoryResponse,
    OfferStatus,
    OfferAnalyticsResponse,
)
from campusmarket.schemas.order import AcceptOfferResponse
from campusmarket.services import acceptance_service, notification_service

router = APIRouter()


def _get_offer_or_404(db: Session, offer_id: UUID) -> Offer:
    offer = crud_offer.get(db, id=offer_id)
    if not offer:
        raise NotFoundException("Offer not found")
    return offer


def _ensure_seller(offer: Offer, user: User, action: str) -> None:
    if offer.seller_id != user.id:
        raise ForbiddenException(f"Only the seller can {action} this offer")


@router.post("", response_model=Envelope[OfferResponse], status_code=status.HTTP_201_CREATED)
def create_offer(
    offer_in: OfferCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Make an offer on an open request.

    One pending offer per seller and request. The requester is notified.
    """
    offer, request_obj = crud_offer.create_offer(db, obj_in=offer_in, seller=current_user)
    notification_service.notify_new_offer(db, offer, request_obj, current_user)
    return envelope(offer)


@router.get("", response_model=PaginatedEnvelope[OfferResponse])
def get_offers(
    campus_id: Optional[int] = None,
    all_campuses: bool = False,
    status: Optional[str] = None,
    request_id: Optional[UUID] = None,
    seller_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    List offers, newest first.

    Scoped through the request's campus: the caller's campus unless
    all_campuses=true or campus_id is given.
    """
    if campus_id is None and not all_campuses:
        campus_id = current_user.campus_id

    rows, total = crud_offer.list_offers(
        db,
        campus_id=campus_id,
        status=status,
        request_id=request_id,
        seller_id=seller_id,
        page=page,
        limit=limit,
    )
    return paginate(rows, total, page, limit)


@router.get("/search/advanced", response_model=PaginatedEnvelope[OfferResponse])
def advanced_search_offers(
    search: Optional[str] = None,
    status: List[OfferStatus] = Query([OfferStatus.pending]),
    request_id: Optional[UUID] = None,
    seller_id: Optional[UUID] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    min_views: Optional[int] = None,
    max_views: Optional[int] = None,
    min_response_time: Optional[float] = None,
    max_response_time: Optional[float] = None,
    expiring_in: Optional[int] = Query(None, description="Hours"),
    acceptance_rate: Optional[str] = Query(None, pattern="^(high|medium|low)$"),
    auto_expire: Optional[bool] = None,
    sort_by: str = "newest",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Multi-criteria offer search.

    sort_by: newest, oldest, amountAsc, amountDesc, views, responseTime,
    acceptanceRate, expiringsoon, pending, trending, mostViewed, leastViewed.
    """
    rows, total = crud_offer.advanced_search(
        db,
        search=search,
        statuses=[s.value for s in status],
        request_id=request_id,
        seller_id=seller_id,
        min_amount=min_amount,
        max_amount=max_amount,
        min_views=min_views,
        max_views=max_views,
        min_response_time=min_response_time,
        max_response_time=max_response_time,
        expiring_in=expiring_in,
        acceptance_rate=acceptance_rate,
        auto_expire=auto_expire,
        sort_by=sort_by,
        order=order,
        page=page,
        limit=limit,
    )
    return paginate(rows, total, page, limit)


@router.get("/analytics", response_model=Envelope[OfferAnalyticsResponse])
def get_offer_analytics(
    period: str = Query("30d", pattern="^(7d|30d|90d|1y|all)$"),
    seller_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Per-seller offer statistics. Staff may look at any seller."""
    if seller_id is None or not current_user.is_admin():
        seller_id = current_user.id

    stats = crud_offer.get_analytics(db, seller_id=seller_id, period=period)
    return envelope(stats)


@router.get("/mine", response_model=PaginatedEnvelope[OfferResponse])
def get_my_offers(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Offers the caller made."""
    rows, total = crud_offer.get_by_seller(db, seller_id=current_user.id, status=status, page=page, limit=limit)
    return paginate(rows, total, page, limit)


@router.get("/received", response_model=PaginatedEnvelope[OfferResponse])
def get_received_offers(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Offers made on the caller's requests."""
    rows, total = crud_offer.get_received(db, requester_id=current_user.id, status=status, page=page, limit=limit)
    return paginate(rows, total, page, limit)


@router.get("/request/{request_id}", response_model=Envelope[List[OfferResponse]])
def get_offers_for_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Every offer on one request."""
    if not crud_request.get(db, id=request_id):
        raise NotFoundException("Request not found")
    return envelope(crud_offer.get_by_request(db, request_id=request_id))


@router.post("/bulk/withdraw", response_model=Envelope[BulkResult])
def bulk_withdraw_offers(
    bulk_in: BulkOfferAction,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Withdraw several of the caller's offers.

    Ids that are not the caller's or not pending are skipped.
    """
    processed = crud_offer.bulk_withdraw(
        db, offer_ids=bulk_in.offer_ids, seller_id=current_user.id, reason=bulk_in.reason
    )
    return envelope(
        {"processed": processed, "requested": len(bulk_in.offer_ids)},
        message=f"{processed} offers withdrawn",
    )


@router.post("/bulk/reject", response_model=Envelope[BulkResult])
def bulk_reject_offers(
    bulk_in: BulkOfferAction,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Reject several offers on the caller's requests.

    The whole call is refused if any pending offer belongs to someone
    else's request.
    """
    rejected = crud_offer.bulk_reject(
        db, offer_ids=bulk_in.offer_ids, user_id=current_user.id, reason=bulk_in.reason
    )
    for offer in rejected:
        notification_service.notify_offer_rejected(db, offer, offer.request, current_user, bulk_in.reason)

    return envelope(
        {"processed": len(rejected), "requested": len(bulk_in.offer_ids)},
        message=f"{len(rejected)} offers rejected",
    )


@router.get("/{offer_id}", response_model=Envelope[OfferResponse])
def get_offer(
    offer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Offer detail.

    Counts a view; an expired pending offer is cancelled on the way.
    """
    offer = _get_offer_or_404(db, offer_id)
    offer = crud_offer.register_view(db, db_obj=offer)
    return envelope(offer)


@router.patch("/{offer_id}", response_model=Envelope[OfferResponse])
def update_offer(
    offer_id: UUID,
    offer_in: OfferUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Seller edits amount, message or settings of a pending offer."""
    offer = _get_offer_or_404(db, offer_id)
    _ensure_seller(offer, current_user, "update")

    offer = crud_offer.update_offer(db, db_obj=offer, obj_in=offer_in, user_id=current_user.id)
    return envelope(offer, message="Offer updated successfully")


@router.patch("/{offer_id}/withdraw", response_model=Envelope[OfferResponse])
def withdraw_offer(
    offer_id: UUID,
    withdraw_in: Optional[OfferWithdraw] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Seller pulls a pending offer."""
    offer = _get_offer_or_404(db, offer_id)
    _ensure_seller(offer, current_user, "withdraw")

    reason = withdraw_in.reason if withdraw_in else None
    offer = crud_offer.withdraw(db, db_obj=offer, user_id=current_user.id, reason=reason)
    return envelope(offer, message="Offer withdrawn successfully")


@router.post("/{offer_id}/accept", response_model=Envelope[AcceptOfferResponse])
def accept_offer(
    offer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Requester accepts an offer.

    The request becomes fulfilled, every other pending offer is rejected
    and an order is created. A concurrent change answers 409.
    """
    offer, order = acceptance_service.accept_offer(db, offer_id=offer_id, user=current_user)
    return envelope({"offer": offer, "order": order}, message="Offer accepted and order created")


@router.post("/{offer_id}/reject", response_model=Envelope[OfferResponse])
def reject_offer(
    offer_id: UUID,
    reject_in: Optional[OfferReject] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Requester turns down a pending offer; the seller is notified."""
    offer = _get_offer_or_404(db, offer_id)
    request_obj = offer.request
    if request_obj is None:
        raise NotFoundException("Request not found")
    if request_obj.requester_id != current_user.id:
        raise ForbiddenException("Only the requester can reject this offer")

    reason = reject_in.reason if reject_in else None
    offer = crud_offer.reject(db, db_obj=offer, user_id=current_user.id, reason=reason)
    notification_service.notify_offer_rejected(db, offer, request_obj, current_user, reason)
    return envelope(offer, message="Offer rejected")


@router.post("/{offer_id}/extend", response_model=Envelope[OfferResponse])
def extend_offer(
    offer_id: UUID,
    extend_in: Optional[OfferExtend] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Seller moves the expiry of a pending offer to `days` from now."""
    offer = _get_offer_or_404(db, offer_id)
    _ensure_seller(offer, current_user, "extend")

    days = extend_in.days if extend_in else 7
    offer = crud_offer.extend(db, db_obj=offer, user_id=current_user.id, days=days)
    return envelope(offer, message=f"Offer extended by {days} days")


@router.get("/{offer_id}/history", response_model=Envelope[List[OfferHistoryResponse]])
def get_offer_history(
    offer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Audit trail of an offer. Seller, requester or staff."""
    offer = _get_offer_or_404(db, offer_id)
    allowed = (
        offer.seller_id == current_user.id
        or (offer.request is not None and offer.request.requester_id == current_user.id)
        or current_user.is_admin()
    )
    if not allowed:
        raise ForbiddenException("You do not have permission to view this offer's history")

    return envelope(crud_offer.get_history(db, offer_id=offer_id))
