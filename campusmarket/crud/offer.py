"""
CRUD for seller offers.
"""
from datetime import timedelta
from typing import List, Optional, Dict, Any, Tuple
from uuid import UUID

from sqlalchemy import or_, desc, asc, case, func
from sqlalchemy.orm import Session

from campusmarket.core.exceptions import BadRequestException, ForbiddenException, NotFoundException
from campusmarket.core.time_utils import utcnow, to_naive_utc, hours_between, days_from_now
from campusmarket.crud.base import CRUDBase
from campusmarket.crud.request import request as crud_request, period_start, ANALYTICS_PERIODS
from campusmarket.db.transaction import commit_or_conflict, flush_or_conflict
from campusmarket.models.offer import Offer, OfferHistory
from campusmarket.models.product import Product
from campusmarket.models.request import Request
from campusmarket.models.user import User
from campusmarket.schemas.offer import OfferCreate, OfferUpdate


class CRUDOffer(CRUDBase[Offer, OfferCreate, OfferUpdate]):
    """Offer queries and state changes."""

    def get_pending_for_seller(self, db: Session, *, request_id: UUID, seller_id: UUID) -> Optional[Offer]:
        return (
            db.query(Offer)
            .filter(
                Offer.request_id == request_id,
                Offer.seller_id == seller_id,
                Offer.status == "pending",
            )
            .first()
        )

    def seller_acceptance_rate(self, db: Session, *, seller_id: UUID) -> float:
        """Accepted share of the seller's decided (accepted or rejected) offers."""
        accepted, decided = (
            db.query(
                func.sum(case((Offer.status == "accepted", 1), else_=0)),
                func.count(Offer.id),
            )
            .filter(Offer.seller_id == seller_id, Offer.status.in_(("accepted", "rejected")))
            .one()
        )
        return round((accepted or 0) / decided, 4) if decided else 0.0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_offer(self, db: Session, *, obj_in: OfferCreate, seller: User) -> Tuple[Offer, Request]:
        """
        Create a pending offer and bump the request's offers_count.

        Args:
            db: Database session
            obj_in: Validated payload
            seller: Caller, becomes the seller

        Returns:
            Tuple (offer, request)

        Raises:
            NotFoundException: Unknown request or product
            BadRequestException: Request not open, offers disabled, own
                request, or a pending offer already exists
        """
        request_obj = crud_request.get(db, id=obj_in.request_id)
        if not request_obj:
            raise NotFoundException("Request not found")
        if not request_obj.is_open() or request_obj.is_expired():
            raise BadRequestException("Cannot make offers on a closed/fulfilled request")
        if not request_obj.allow_offers:
            raise BadRequestException("This request is not accepting offers")
        if request_obj.requester_id == seller.id:
            raise BadRequestException("You cannot make an offer on your own request")

        if self.get_pending_for_seller(db, request_id=request_obj.id, seller_id=seller.id):
            raise BadRequestException("You already have a pending offer for this request")

        if obj_in.product_id is not None:
            product = db.query(Product).filter(Product.id == obj_in.product_id).first()
            if not product:
                raise NotFoundException("Product not found")
            if product.seller_id != seller.id:
                raise ForbiddenException("You can only offer your own products")

        data = obj_in.model_dump(exclude={"settings", "expires_at"})
        if obj_in.settings is not None:
            data.update(obj_in.settings.model_dump(exclude_none=True))
        if obj_in.expires_at is not None:
            expires_at = to_naive_utc(obj_in.expires_at)
            if expires_at <= utcnow():
                raise BadRequestException("Expiration date must be in the future")
            data["expires_at"] = expires_at

        offer = Offer(seller_id=seller.id, **data)
        offer.add_history("created", seller.id, "Offer created")
        db.add(offer)
        flush_or_conflict(db)

        crud_request.adjust_offers_count(db, request_id=request_obj.id, delta=1)
        commit_or_conflict(db)
        db.refresh(offer)
        db.refresh(request_obj)
        return offer, request_obj

    def register_view(self, db: Session, *, db_obj: Offer) -> Offer:
        """
        Count a view and cancel the offer if it is pending past its expiry.

        Both are single UPDATE statements. The view counter leaves the
        version column alone; the expiry cancel only matches a row that is
        still pending and bumps the version like any status change.
        """
        now = utcnow()
        db.query(Offer).filter(Offer.id == db_obj.id).update(
            {Offer.views: Offer.views + 1, Offer.last_viewed: now},
            synchronize_session=False,
        )

        reason = "Offer expired"
        cancelled = (
            db.query(Offer)
            .filter(Offer.id == db_obj.id, Offer.status == "pending", Offer.expires_at < now)
            .update(
                {
                    Offer.status: "cancelled",
                    Offer.reason: reason,
                    Offer.version_id: Offer.version_id + 1,
                    Offer.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if cancelled:
            db.add(OfferHistory(
                offer_id=db_obj.id, action="cancelled", user_id=db_obj.seller_id,
                details=reason, old_value="pending", new_value="cancelled",
            ))
        db.commit()
        db.refresh(db_obj)
        return db_obj

    def update_offer(self, db: Session, *, db_obj: Offer, obj_in: OfferUpdate, user_id: UUID) -> Offer:
        if not db_obj.is_pending():
            raise BadRequestException("Only pending offers can be updated")

        update_data = obj_in.model_dump(exclude_unset=True)
        update_data.update(update_data.pop("settings", None) or {})

        old_values = {}
        new_values = {}
        for field, value in update_data.items():
            old_values[field] = getattr(db_obj, field)
            new_values[field] = value
            setattr(db_obj, field, value)

        db_obj.add_history("updated", user_id, "Offer updated by seller", old_values, new_values)
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def withdraw(self, db: Session, *, db_obj: Offer, user_id: UUID, reason: Optional[str] = None) -> Offer:
        """Seller pulls a pending offer; offers_count -= 1."""
        if not db_obj.is_pending():
            raise BadRequestException("Only pending offers can be withdrawn")

        db_obj.change_status("withdrawn", user_id, reason or "Offer withdrawn by seller")
        crud_request.adjust_offers_count(db, request_id=db_obj.request_id, delta=-1)
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def reject(self, db: Session, *, db_obj: Offer, user_id: UUID, reason: Optional[str] = None) -> Offer:
        """Requester turns down a pending offer; offers_count -= 1."""
        if not db_obj.is_pending():
            raise BadRequestException(f"Offer is already {db_obj.status}")

        db_obj.change_status("rejected", user_id, reason)
        db_obj.response_time = hours_between(db_obj.created_at, utcnow())
        flush_or_conflict(db)
        db_obj.acceptance_rate = self.seller_acceptance_rate(db, seller_id=db_obj.seller_id)
        crud_request.adjust_offers_count(db, request_id=db_obj.request_id, delta=-1)
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def extend(self, db: Session, *, db_obj: Offer, user_id: UUID, days: int = 7) -> Offer:
        """Set expires_at to `days` from now."""
        if not db_obj.is_pending():
            raise BadRequestException("Only pending offers can be extended")

        old_expires_at = db_obj.expires_at
        db_obj.expires_at = days_from_now(days)
        db_obj.add_history(
            "extended", user_id, f"Offer expiration extended by {days} days",
            old_expires_at, db_obj.expires_at,
        )
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def bulk_withdraw(self, db: Session, *, offer_ids: List[UUID], seller_id: UUID, reason: Optional[str] = None) -> int:
        """
        Withdraw the caller's pending offers among the given ids.

        Returns:
            Number of offers withdrawn
        """
        offers = (
            db.query(Offer)
            .filter(Offer.id.in_(offer_ids), Offer.seller_id == seller_id, Offer.status == "pending")
            .all()
        )
        for offer in offers:
            offer.change_status("withdrawn", seller_id, reason or "Bulk withdrawal by seller")
            crud_request.adjust_offers_count(db, request_id=offer.request_id, delta=-1)
        commit_or_conflict(db)
        return len(offers)

    def bulk_reject(self, db: Session, *, offer_ids: List[UUID], user_id: UUID, reason: Optional[str] = None) -> List[Offer]:
        """
        Reject pending offers on the caller's requests.

        Raises:
            ForbiddenException: Any of the pending offers targets someone
                else's request

        Returns:
            Offers rejected
        """
        offers = (
            db.query(Offer)
            .join(Request, Offer.request_id == Request.id)
            .filter(Offer.id.in_(offer_ids), Offer.status == "pending")
            .all()
        )
        if any(offer.request.requester_id != user_id for offer in offers):
            raise ForbiddenException("You can only reject offers for your own requests")

        now = utcnow()
        for offer in offers:
            offer.change_status("rejected", user_id, reason or "Bulk rejection by buyer")
            offer.response_time = hours_between(offer.created_at, now)
            crud_request.adjust_offers_count(db, request_id=offer.request_id, delta=-1)
        commit_or_conflict(db)
        return offers

    def reject_siblings(self, db: Session, *, request_id: UUID, accepted_offer_id: UUID, user_id: UUID) -> int:
        """
        Reject every other pending offer of a request in one UPDATE.

        History rows are added for each rejected offer and offers_count is
        reduced by the affected row count. The caller commits.

        Returns:
            Number of offers rejected
        """
        sibling_filter = (
            Offer.request_id == request_id,
            Offer.id != accepted_offer_id,
            Offer.status == "pending",
        )
        sibling_ids = [row[0] for row in db.query(Offer.id).filter(*sibling_filter).all()]
        if not sibling_ids:
            return 0

        reason = "Another offer was accepted"
        rejected = (
            db.query(Offer)
            .filter(Offer.id.in_(sibling_ids), *sibling_filter)
            .update(
                {
                    Offer.status: "rejected",
                    Offer.reason: reason,
                    Offer.version_id: Offer.version_id + 1,
                    Offer.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.add_all([
            OfferHistory(
                offer_id=offer_id, action="rejected", user_id=user_id,
                details=reason, old_value="pending", new_value="rejected",
            )
            for offer_id in sibling_ids
        ])
        crud_request.adjust_offers_count(db, request_id=request_id, delta=-rejected)
        return rejected

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_offers(
        self,
        db: Session,
        *,
        campus_id: Optional[int] = None,
        status: Optional[str] = None,
        request_id: Optional[UUID] = None,
        seller_id: Optional[UUID] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Offer], int]:
        """Offers, scoped to a campus through their request."""
        query = db.query(Offer)
        if campus_id is not None:
            query = query.join(Request, Offer.request_id == Request.id).filter(Request.campus_id == campus_id)
        if status:
            query = query.filter(Offer.status == status)
        if request_id is not None:
            query = query.filter(Offer.request_id == request_id)
        if seller_id is not None:
            query = query.filter(Offer.seller_id == seller_id)
        query = query.order_by(desc(Offer.created_at))
        return self.paginate(query, page=page, limit=limit)

    def get_by_seller(self, db: Session, *, seller_id: UUID, status: Optional[str] = None, page: int = 1, limit: int = 10):
        query = db.query(Offer).filter(Offer.seller_id == seller_id)
        if status:
            query = query.filter(Offer.status == status)
        return self.paginate(query.order_by(desc(Offer.created_at)), page=page, limit=limit)

    def get_received(self, db: Session, *, requester_id: UUID, status: Optional[str] = None, page: int = 1, limit: int = 10):
        """Offers made on the caller's requests."""
        query = (
            db.query(Offer)
            .join(Request, Offer.request_id == Request.id)
            .filter(Request.requester_id == requester_id)
        )
        if status:
            query = query.filter(Offer.status == status)
        return self.paginate(query.order_by(desc(Offer.created_at)), page=page, limit=limit)

    def get_by_request(self, db: Session, *, request_id: UUID) -> List[Offer]:
        return (
            db.query(Offer)
            .filter(Offer.request_id == request_id)
            .order_by(desc(Offer.created_at))
            .all()
        )

    def get_history(self, db: Session, *, offer_id: UUID) -> List[OfferHistory]:
        return (
            db.query(OfferHistory)
            .filter(OfferHistory.offer_id == offer_id)
            .order_by(desc(OfferHistory.created_at), desc(OfferHistory.id))
            .all()
        )

    def advanced_search(
        self,
        db: Session,
        *,
        search: Optional[str] = None,
        statuses: Optional[List[str]] = None,
        request_id: Optional[UUID] = None,
        seller_id: Optional[UUID] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        min_views: Optional[int] = None,
        max_views: Optional[int] = None,
        min_response_time: Optional[float] = None,
        max_response_time: Optional[float] = None,
        expiring_in: Optional[int] = None,
        acceptance_rate: Optional[str] = None,
        auto_expire: Optional[bool] = None,
        sort_by: str = "newest",
        order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Offer], int]:
        """Multi-criteria offer search."""
        query = db.query(Offer)

        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Offer.message.ilike(pattern), Offer.reason.ilike(pattern)))
        if statuses:
            query = query.filter(Offer.status.in_(statuses))
        if request_id is not None:
            query = query.filter(Offer.request_id == request_id)
        if seller_id is not None:
            query = query.filter(Offer.seller_id == seller_id)

        if min_amount is not None:
            query = query.filter(Offer.amount >= max(0, min_amount))
        if max_amount is not None:
            query = query.filter(Offer.amount <= max(0, max_amount))
        if min_views is not None:
            query = query.filter(Offer.views >= max(0, min_views))
        if max_views is not None:
            query = query.filter(Offer.views <= max(0, max_views))
        if min_response_time is not None:
            query = query.filter(Offer.response_time >= max(0, min_response_time))
        if max_response_time is not None:
            query = query.filter(Offer.response_time <= max(0, max_response_time))

        if expiring_in is not None and expiring_in > 0:
            now = utcnow()
            query = query.filter(Offer.expires_at > now, Offer.expires_at <= now + timedelta(hours=expiring_in))

        if acceptance_rate == "high":
            query = query.filter(Offer.acceptance_rate >= 0.7)
        elif acceptance_rate == "medium":
            query = query.filter(Offer.acceptance_rate >= 0.4, Offer.acceptance_rate < 0.7)
        elif acceptance_rate == "low":
            query = query.filter(Offer.acceptance_rate < 0.4)

        if auto_expire is not None:
            query = query.filter(Offer.auto_expire == auto_expire)

        query = query.order_by(*self._sort_clauses(sort_by, order))
        return self.paginate(query, page=page, limit=limit)

    @staticmethod
    def _sort_clauses(sort_by: str, order: str):
        pending_first = case((Offer.status == "pending", 0), else_=1)
        sorts = {
            "newest": [desc(Offer.created_at)],
            "oldest": [asc(Offer.created_at)],
            "amountAsc": [asc(Offer.amount)],
            "amountDesc": [desc(Offer.amount)],
            "views": [desc(Offer.views)],
            "responseTime": [asc(Offer.response_time)],
            "acceptanceRate": [desc(Offer.acceptance_rate)],
            "expiringsoon": [asc(Offer.expires_at)],
            "pending": [asc(pending_first), desc(Offer.created_at)],
            "trending": [desc(Offer.views), desc(Offer.created_at)],
            "mostViewed": [desc(Offer.views)],
            "leastViewed": [asc(Offer.views)],
        }
        if sort_by in sorts:
            return sorts[sort_by] + [desc(Offer.id)]
        direction = asc if order == "asc" else desc
        return [direction(Offer.created_at)]

    def get_analytics(self, db: Session, *, seller_id: UUID, period: Optional[str] = None) -> Dict[str, Any]:
        """
        Per-seller summary over a period.

        acceptance_rate is a percentage of all offers in the window.
        """
        filters = [Offer.seller_id == seller_id]
        start = period_start(period)
        if start is not None:
            filters.append(Offer.created_at >= start)

        by_status = dict(
            db.query(Offer.status, func.count(Offer.id))
            .filter(*filters)
            .group_by(Offer.status)
            .all()
        )
        total, total_amount, avg_amount = (
            db.query(func.count(Offer.id), func.sum(Offer.amount), func.avg(Offer.amount))
            .filter(*filters)
            .one()
        )
        accepted = by_status.get("accepted", 0)

        return {
            "period": period if period in ANALYTICS_PERIODS else "all",
            "total": total,
            "by_status": by_status,
            "total_amount": round(float(total_amount or 0), 2),
            "avg_amount": round(float(avg_amount or 0), 2),
            "acceptance_rate": round(accepted / total * 100, 2) if total else 0.0,
        }


# Global CRUD instance
offer = CRUDOffer(Offer)
