"""
ORM models for orders and their delayed seller payouts.
"""
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, CheckConstraint, Text, Enum, Uuid
from sqlalchemy.orm import relationship
import uuid
from campusmarket.db.base import Base, TimestampMixin, JSONType


# Enums
order_status_enum = Enum(
    'pending', 'paid', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded',
    name='order_status',
)
payout_status_enum = Enum('pending', 'processing', 'completed', 'failed', name='payout_status')
payout_job_status_enum = Enum('pending', 'completed', 'failed', name='payout_job_status')


class Order(Base, TimestampMixin):
    """Order created when a buyer accepts an offer (one per offer)."""

    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    offer_id = Column(Uuid, ForeignKey("offers.id", ondelete="RESTRICT"), nullable=False, unique=True, index=True)
    buyer_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    seller_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="SET NULL"))
    amount = Column(Float, nullable=False)
    qty = Column(Integer, nullable=False, default=1)
    status = Column(order_status_enum, nullable=False, default='pending', index=True)

    # Payment
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_gateway = Column(String(30), nullable=False, default='paystack')
    payment_ref = Column(String(200), index=True)
    payment_meta = Column(JSONType)

    delivered_at = Column(DateTime)
    payout_status = Column(payout_status_enum, nullable=False, default='pending')

    # Constraints
    __table_args__ = (
        CheckConstraint('amount >= 0', name='check_order_amount_positive'),
        CheckConstraint('qty >= 1', name='check_order_qty_positive'),
    )

    # Relationships
    offer = relationship("Offer", back_populates="order")
    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    product = relationship("Product")
    payout_jobs = relationship("PayoutJob", back_populates="order", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Order {self.id} status={self.status}>"

    def is_party(self, user_id) -> bool:
        """Check whether the user is the buyer or the seller."""
        return user_id in (self.buyer_id, self.seller_id)


class PayoutJob(Base, TimestampMixin):
    """Persisted delayed payout, picked up by the payout worker once due."""

    __tablename__ = "payout_jobs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    run_at = Column(DateTime, nullable=False, index=True)
    status = Column(payout_job_status_enum, nullable=False, default='pending', index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)

    # Relationships
    order = relationship("Order", back_populates="payout_jobs")

    def __repr__(self):
        return f"<PayoutJob {self.id} for order {self.order_id} status={self.status}>"
