"""
CRUD for buyer requests.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Tuple
from uuid import UUID

from sqlalchemy import or_, desc, asc, case, func
from sqlalchemy.orm import Session

from campusmarket.config import get_settings
from campusmarket.core.exceptions import BadRequestException, NotFoundException, TooManyRequestsException
from campusmarket.core.time_utils import utcnow, to_naive_utc
from campusmarket.crud.base import CRUDBase
from campusmarket.db.transaction import commit_or_conflict
from campusmarket.models.offer import Offer, UNCOUNTED_OFFER_STATUSES
from campusmarket.models.request import Request, RequestHistory, RequestImage, RequestTag, MAX_REQUEST_IMAGES
from campusmarket.models.category import RequestCategory
from campusmarket.models.user import Campus, User
from campusmarket.schemas.request import RequestCreate, RequestUpdate


MAX_EXTENSION_DAYS = 365
DEFAULT_EXTENSION_DAYS = 7

ANALYTICS_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

PRIORITY_RANK = case(
    (Request.priority == "urgent", 0),
    (Request.priority == "high", 1),
    (Request.priority == "medium", 2),
    else_=3,
)


def period_start(period: Optional[str]) -> Optional[datetime]:
    """Start of an analytics window; None means all time."""
    delta = ANALYTICS_PERIODS.get(period or "")
    return utcnow() - delta if delta else None


LOCATION_COLUMNS = ("location_address", "latitude", "longitude")


def _flatten_location(location) -> Dict[str, Any]:
    if location is None:
        return {}
    return dict(zip(LOCATION_COLUMNS, (location.address, location.latitude, location.longitude)))


def _flatten_settings(settings_in) -> Dict[str, Any]:
    if settings_in is None:
        return {}
    return settings_in.model_dump(exclude_none=True)


def _check_references(db: Session, category_id: Optional[int], campus_id: Optional[int]) -> None:
    if category_id is not None and db.get(RequestCategory, category_id) is None:
        raise NotFoundException("Category not found")
    if campus_id is not None and db.get(Campus, campus_id) is None:
        raise NotFoundException("Campus not found")


class CRUDRequest(CRUDBase[Request, RequestCreate, RequestUpdate]):
    """Request queries and state changes."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def count_recent_by_requester(self, db: Session, *, requester_id: UUID, hours: int = 24) -> int:
        since = utcnow() - timedelta(hours=hours)
        return (
            db.query(Request)
            .filter(Request.requester_id == requester_id, Request.created_at >= since)
            .count()
        )

    def create_request(self, db: Session, *, obj_in: RequestCreate, requester: User) -> Request:
        """
        Create a request owned by the caller.

        Args:
            db: Database session
            obj_in: Validated payload
            requester: Caller, becomes the owner

        Returns:
            Created request

        Raises:
            TooManyRequestsException: Daily creation limit reached
            BadRequestException: expires_at is in the past
            NotFoundException: Unknown category or campus
        """
        limit = get_settings().REQUEST_DAILY_LIMIT
        if self.count_recent_by_requester(db, requester_id=requester.id) >= limit:
            raise TooManyRequestsException("Too many requests created in the last 24 hours")

        data = obj_in.model_dump(exclude={"tags", "location", "settings", "expires_at"})
        data.update(_flatten_location(obj_in.location))
        data.update(_flatten_settings(obj_in.settings))

        if obj_in.expires_at is not None:
            expires_at = to_naive_utc(obj_in.expires_at)
            if expires_at <= utcnow():
                raise BadRequestException("Expiration date must be in the future")
            data["expires_at"] = expires_at

        _check_references(db, data.get("category_id"), data.get("campus_id"))
        if data.get("campus_id") is None:
            data["campus_id"] = requester.campus_id

        db_obj = Request(requester_id=requester.id, **data)
        db_obj.tags = list(obj_in.tags)
        db_obj.add_history("created", requester.id, "Request created")

        db.add(db_obj)
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def update_request(self, db: Session, *, db_obj: Request, obj_in: RequestUpdate, user_id: UUID) -> Request:
        """
        Apply the sent fields and record old/new values.

        Raises:
            BadRequestException: The request is no longer open, or the new
                expiry is not in the future
            NotFoundException: Unknown category or campus
        """
        if db_obj.status != "open":
            raise BadRequestException(f"Cannot update a {db_obj.status} request")

        update_data = obj_in.model_dump(exclude_unset=True)
        _check_references(db, update_data.get("category_id"), update_data.get("campus_id"))
        if update_data.get("expires_at") and to_naive_utc(update_data["expires_at"]) <= utcnow():
            raise BadRequestException("Expiration date must be in the future")

        old_values: Dict[str, Any] = {}
        new_values: Dict[str, Any] = {}

        if "location" in update_data:
            new_values["location"] = update_data.pop("location")
            old_values["location"] = {
                "address": db_obj.location_address,
                "latitude": db_obj.latitude,
                "longitude": db_obj.longitude,
            }
            flat = _flatten_location(obj_in.location) or dict.fromkeys(LOCATION_COLUMNS)
            for field, value in flat.items():
                setattr(db_obj, field, value)

        settings_in = update_data.pop("settings", None)
        if settings_in:
            for field, value in settings_in.items():
                old_values[field] = getattr(db_obj, field)
                new_values[field] = value
                setattr(db_obj, field, value)

        if "tags" in update_data:
            tags = update_data.pop("tags") or []
            old_values["tags"] = list(db_obj.tags)
            new_values["tags"] = tags
            db_obj.tags = tags

        if "expires_at" in update_data:
            expires_at = update_data.pop("expires_at")
            expires_at = to_naive_utc(expires_at) if expires_at else None
            old_values["expires_at"] = db_obj.expires_at
            new_values["expires_at"] = expires_at
            db_obj.expires_at = expires_at

        for field, value in update_data.items():
            old_values[field] = getattr(db_obj, field)
            new_values[field] = value
            setattr(db_obj, field, value)

        db_obj.add_history("updated", user_id, "Request updated", old_values, new_values)
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def close_request(self, db: Session, *, db_obj: Request, user_id: UUID) -> Request:
        """
        Soft-delete: cancel the pending offers and mark the request closed.

        Raises:
            BadRequestException: The request was already fulfilled
        """
        if db_obj.status == "fulfilled":
            raise BadRequestException("Cannot delete a fulfilled request")

        pending = (
            db.query(Offer)
            .filter(Offer.request_id == db_obj.id, Offer.status == "pending")
            .all()
        )
        for offer in pending:
            offer.change_status("cancelled", user_id, "Request closed by owner")

        old_status = db_obj.status
        db_obj.status = "closed"
        db_obj.add_history("deleted", user_id, "Request closed/deleted by owner", old_status, "closed")
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def extend_expiration(
        self,
        db: Session,
        *,
        db_obj: Request,
        user_id: UUID,
        extend_by_days: Optional[int] = None,
        extend_to: Optional[datetime] = None,
    ) -> Request:
        """
        Push expires_at forward.

        extend_to wins when given; otherwise the days (default 7, capped at
        365) are added to the current expiry, or to now when there is none.
        """
        if extend_to is not None:
            new_expires_at = to_naive_utc(extend_to)
            if new_expires_at <= utcnow():
                raise BadRequestException("extend_to must be in the future")
        else:
            days = extend_by_days if extend_by_days is not None else DEFAULT_EXTENSION_DAYS
            if days <= 0:
                raise BadRequestException("extend_by_days must be a positive integer")
            safe_days = min(days, MAX_EXTENSION_DAYS)
            base = db_obj.expires_at or utcnow()
            new_expires_at = base + timedelta(days=safe_days)

        old_expires_at = db_obj.expires_at
        db_obj.expires_at = new_expires_at
        db_obj.add_history(
            "extended", user_id,
            f"Expiration extended to {new_expires_at.isoformat()}",
            old_expires_at, new_expires_at,
        )
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def add_images(self, db: Session, *, db_obj: Request, images: List[Dict[str, Any]], user_id: UUID) -> Request:
        """
        Attach already stored images ({url, public_id}).

        Raises:
            BadRequestException: More than five images in total
        """
        if len(db_obj.images) + len(images) > MAX_REQUEST_IMAGES:
            raise BadRequestException(f"A maximum of {MAX_REQUEST_IMAGES} images are allowed per request")

        for image in images:
            db_obj.images.append(RequestImage(url=image["url"], public_id=image.get("public_id")))

        db_obj.add_history("images_uploaded", user_id, f"Uploaded {len(images)} images")
        commit_or_conflict(db)
        db.refresh(db_obj)
        return db_obj

    def increment_views(self, db: Session, *, request_id: UUID) -> None:
        """Atomic views += 1 without touching the version column."""
        db.query(Request).filter(Request.id == request_id).update(
            {Request.views: Request.views + 1, Request.last_viewed: utcnow()},
            synchronize_session=False,
        )
        db.commit()

    # ------------------------------------------------------------------
    # offers_count bookkeeping
    # ------------------------------------------------------------------

    def adjust_offers_count(self, db: Session, *, request_id: UUID, delta: int) -> None:
        """
        Atomic offers_count += delta inside the caller's transaction.

        The counter never goes below zero. The caller commits.
        """
        new_value = Request.offers_count + delta
        db.query(Request).filter(Request.id == request_id).update(
            {Request.offers_count: case((new_value < 0, 0), else_=new_value)},
            synchronize_session=False,
        )

    def sync_offers_count(self, db: Session, *, request_id: UUID) -> int:
        """Recompute offers_count from the offers table."""
        count = (
            db.query(func.count(Offer.id))
            .filter(Offer.request_id == request_id, Offer.status.notin_(UNCOUNTED_OFFER_STATUSES))
            .scalar()
        )
        db.query(Request).filter(Request.id == request_id).update(
            {Request.offers_count: count}, synchronize_session=False
        )
        db.commit()
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_requests(
        self,
        db: Session,
        *,
        campus_id: Optional[int] = None,
        category_id: Optional[int] = None,
        requester_id: Optional[UUID] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Request], int]:
        query = db.query(Request)
        if campus_id is not None:
            query = query.filter(Request.campus_id == campus_id)
        if category_id is not None:
            query = query.filter(Request.category_id == category_id)
        if requester_id is not None:
            query = query.filter(Request.requester_id == requester_id)
        if status:
            query = query.filter(Request.status == status)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Request.title.ilike(pattern), Request.description.ilike(pattern)))

        query = query.order_by(desc(Request.created_at))
        return self.paginate(query, page=page, limit=limit)

    def get_by_requester(self, db: Session, *, requester_id: UUID, page: int = 1, limit: int = 10):
        query = db.query(Request).filter(Request.requester_id == requester_id).order_by(desc(Request.created_at))
        return self.paginate(query, page=page, limit=limit)

    def advanced_search(
        self,
        db: Session,
        *,
        search: Optional[str] = None,
        statuses: Optional[List[str]] = None,
        category_id: Optional[int] = None,
        campus_id: Optional[int] = None,
        requester_id: Optional[UUID] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        min_views: Optional[int] = None,
        max_views: Optional[int] = None,
        min_offers: Optional[int] = None,
        max_offers: Optional[int] = None,
        min_response_time: Optional[float] = None,
        max_response_time: Optional[float] = None,
        priorities: Optional[List[str]] = None,
        has_images: Optional[bool] = None,
        tags: Optional[List[str]] = None,
        expiring_in: Optional[int] = None,
        fulfilled: Optional[bool] = None,
        popularity: Optional[str] = None,
        sort_by: str = "newest",
        order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Request], int]:
        """
        Multi-criteria request search.

        `fulfilled` overrides `statuses`; `popularity` overrides the
        views/offers ranges.
        """
        query = db.query(Request)

        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Request.title.ilike(pattern), Request.description.ilike(pattern)))

        if fulfilled is True:
            query = query.filter(Request.status == "fulfilled")
        elif fulfilled is False:
            query = query.filter(Request.status != "fulfilled")
        elif statuses:
            query = query.filter(Request.status.in_(statuses))

        if category_id is not None:
            query = query.filter(Request.category_id == category_id)
        if campus_id is not None:
            query = query.filter(Request.campus_id == campus_id)
        if requester_id is not None:
            query = query.filter(Request.requester_id == requester_id)

        if min_price is not None:
            query = query.filter(Request.desired_price >= max(0, min_price))
        if max_price is not None:
            query = query.filter(Request.desired_price <= max(0, max_price))

        if popularity == "high":
            query = query.filter(Request.views >= 50, Request.offers_count >= 5)
        elif popularity == "medium":
            query = query.filter(
                Request.views >= 20, Request.views < 50,
                Request.offers_count >= 2, Request.offers_count < 5,
            )
        else:
            if min_views is not None:
                query = query.filter(Request.views >= max(0, min_views))
            if max_views is not None:
                query = query.filter(Request.views <= max(0, max_views))
            if min_offers is not None:
                query = query.filter(Request.offers_count >= max(0, min_offers))
            if max_offers is not None:
                query = query.filter(Request.offers_count <= max(0, max_offers))

        if min_response_time is not None:
            query = query.filter(Request.response_time >= max(0, min_response_time))
        if max_response_time is not None:
            query = query.filter(Request.response_time <= max(0, max_response_time))

        if priorities:
            query = query.filter(Request.priority.in_(priorities))

        if tags:
            query = query.filter(Request.tag_rows.any(RequestTag.name.in_(tags)))

        if has_images is True:
            query = query.filter(Request.images.any())
        elif has_images is False:
            query = query.filter(~Request.images.any())

        if expiring_in is not None and expiring_in > 0:
            now = utcnow()
            query = query.filter(
                Request.expires_at > now,
                Request.expires_at <= now + timedelta(hours=expiring_in),
            )

        query = query.order_by(*self._sort_clauses(sort_by, order))
        return self.paginate(query, page=page, limit=limit)

    @staticmethod
    def _sort_clauses(sort_by: str, order: str):
        sorts = {
            "newest": [desc(Request.created_at)],
            "oldest": [asc(Request.created_at)],
            "priceAsc": [asc(Request.desired_price)],
            "priceDesc": [desc(Request.desired_price)],
            "views": [desc(Request.views)],
            "offers": [desc(Request.offers_count)],
            "priority": [asc(PRIORITY_RANK)],
            "responseTime": [asc(Request.response_time)],
            "expiringsoon": [asc(Request.expires_at)],
            "fulfillmentRate": [desc(Request.fulfillment_rate)],
            "trending": [desc(Request.views), desc(Request.created_at)],
            "mostOffers": [desc(Request.offers_count)],
            "leastOffers": [asc(Request.offers_count)],
        }
        if sort_by in sorts:
            return sorts[sort_by] + [desc(Request.id)]
        direction = asc if order == "asc" else desc
        return [direction(Request.created_at)]

    def get_history(
        self,
        db: Session,
        *,
        request_id: UUID,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[RequestHistory], int]:
        """Audit rows newest first, optionally filtered."""
        query = db.query(RequestHistory).filter(RequestHistory.request_id == request_id)
        if action:
            query = query.filter(RequestHistory.action == action)
        if start_date:
            query = query.filter(RequestHistory.created_at >= to_naive_utc(start_date))
        if end_date:
            query = query.filter(RequestHistory.created_at <= to_naive_utc(end_date))
        query = query.order_by(desc(RequestHistory.created_at), desc(RequestHistory.id))
        return self.paginate(query, page=page, limit=limit)

    def get_analytics(
        self,
        db: Session,
        *,
        period: Optional[str] = None,
        campus_id: Optional[int] = None,
        category_id: Optional[int] = None,
        requester_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """
        Totals, fulfillment rate and averages over a period.

        Args:
            period: 7d, 30d, 90d, 1y; anything else means all time
        """
        filters = []
        start = period_start(period)
        if start is not None:
            filters.append(Request.created_at >= start)
        if campus_id is not None:
            filters.append(Request.campus_id == campus_id)
        if category_id is not None:
            filters.append(Request.category_id == category_id)
        if requester_id is not None:
            filters.append(Request.requester_id == requester_id)

        by_status = dict(
            db.query(Request.status, func.count(Request.id))
            .filter(*filters)
            .group_by(Request.status)
            .all()
        )
        total, avg_views, avg_offers, avg_price = (
            db.query(
                func.count(Request.id),
                func.avg(Request.views),
                func.avg(Request.offers_count),
                func.avg(Request.desired_price),
            )
            .filter(*filters)
            .one()
        )
        fulfilled = by_status.get("fulfilled", 0)

        return {
            "period": period if period in ANALYTICS_PERIODS else "all",
            "total": total,
            "fulfilled": fulfilled,
            "fulfillment_rate": round(fulfilled / total, 4) if total else 0.0,
            "avg_views": round(float(avg_views or 0), 2),
            "avg_offers": round(float(avg_offers or 0), 2),
            "avg_desired_price": round(float(avg_price), 2) if avg_price is not None else None,
            "by_status": by_status,
        }


# Global CRUD instance
request = CRUDRequest(Request)
