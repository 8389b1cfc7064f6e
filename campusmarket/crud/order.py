"""
CRUD for orders and payout jobs.
"""
from datetime import timedelta
from typing import List, Optional, Dict, Any
from uuid import UUID

from sqlalchemy import or_, desc
from sqlalchemy.orm import Session

from campusmarket.core.exceptions import BadRequestException
from campusmarket.core.time_utils import utcnow
from campusmarket.crud.base import CRUDBase
from campusmarket.models.offer import Offer
from campusmarket.models.order import Order, PayoutJob
from campusmarket.schemas.order import OrderCreate, OrderStatusUpdate


class CRUDOrder(CRUDBase[Order, OrderCreate, OrderStatusUpdate]):
    """Order queries and payment/delivery transitions."""

    def build_from_offer(self, db: Session, *, offer: Offer, buyer_id: UUID) -> Order:
        """
        Add a pending order for an accepted offer to the session.

        The unique index on offer_id rejects a second order at commit.
        The caller commits.
        """
        obj_in = OrderCreate(
            offer_id=offer.id,
            buyer_id=buyer_id,
            seller_id=offer.seller_id,
            product_id=offer.product_id,
            amount=offer.amount,
        )
        db_obj = Order(**obj_in.model_dump())
        db.add(db_obj)
        return db_obj

    def get_by_user(self, db: Session, *, user_id: UUID, limit: int = 100) -> List[Order]:
        """
        Orders where the user is buyer or seller, newest first.
        """
        return (
            db.query(Order)
            .filter(or_(Order.buyer_id == user_id, Order.seller_id == user_id))
            .order_by(desc(Order.created_at))
            .limit(limit)
            .all()
        )

    def set_status(self, db: Session, *, db_obj: Order, status: str) -> Order:
        """Manual status edit; `paid` also sets is_paid."""
        db_obj.status = status
        if status == "paid":
            db_obj.is_paid = True
        db.commit()
        db.refresh(db_obj)
        return db_obj

    def store_payment_init(self, db: Session, *, db_obj: Order, reference: str, init_data: Dict[str, Any]) -> Order:
        meta = dict(db_obj.payment_meta or {})
        meta["initialize"] = init_data
        db_obj.payment_ref = reference
        db_obj.payment_meta = meta
        db.commit()
        db.refresh(db_obj)
        return db_obj

    def mark_paid(self, db: Session, *, db_obj: Order, verification: Optional[Dict[str, Any]] = None, source: str = "verify") -> bool:
        """
        Mark the order paid once the gateway confirmed it.

        Idempotent: returns False when the order was already paid.
        """
        if db_obj.is_paid:
            return False

        meta = dict(db_obj.payment_meta or {})
        if verification is not None:
            meta[source] = verification
        db_obj.payment_meta = meta
        db_obj.is_paid = True
        db_obj.status = "paid"
        db.commit()
        db.refresh(db_obj)
        return True

    def confirm_delivery(self, db: Session, *, db_obj: Order, payout_delay_seconds: int) -> PayoutJob:
        """
        Mark delivered and persist the delayed payout in one transaction.

        Raises:
            BadRequestException: Not paid yet or already delivered
        """
        if not db_obj.is_paid:
            raise BadRequestException("Cannot confirm delivery before payment")
        if db_obj.status == "delivered":
            raise BadRequestException("Order already marked as delivered")

        now = utcnow()
        db_obj.status = "delivered"
        db_obj.delivered_at = now
        db_obj.payout_status = "processing"

        job = PayoutJob(
            order_id=db_obj.id,
            run_at=now + timedelta(seconds=payout_delay_seconds),
            status="pending",
        )
        db.add(job)
        db.commit()
        db.refresh(db_obj)
        return job

    def get_due_payout_jobs(self, db: Session, *, limit: int = 50) -> List[PayoutJob]:
        return (
            db.query(PayoutJob)
            .filter(PayoutJob.status == "pending", PayoutJob.run_at <= utcnow())
            .order_by(PayoutJob.run_at)
            .limit(limit)
            .all()
        )


# Global CRUD instance
order = CRUDOrder(Order)
