"""
ORM models for seller offers and their audit history.
"""
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, CheckConstraint, Text, Enum, Uuid, Index, text
from sqlalchemy.orm import relationship
from fastapi.encoders import jsonable_encoder
import uuid
from campusmarket.core.time_utils import utcnow, days_from_now
from campusmarket.db.base import Base, TimestampMixin, JSONType


# Enums
offer_status_enum = Enum('pending', 'accepted', 'rejected', 'withdrawn', 'cancelled', name='offer_status')
offer_history_action_enum = Enum(
    'created', 'updated', 'accepted', 'rejected', 'withdrawn', 'cancelled', 'extended',
    name='offer_history_action',
)

OFFER_TTL_DAYS = 7

# Statuses that no longer count towards a request's offers_count
UNCOUNTED_OFFER_STATUSES = ('withdrawn', 'rejected')


class Offer(Base, TimestampMixin):
    """A seller's answer to a request. Only `pending` is non-terminal."""

    __tablename__ = "offers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="SET NULL"))
    seller_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    message = Column(String(500))
    status = Column(offer_status_enum, nullable=False, default='pending', index=True)
    reason = Column(String(200))
    expires_at = Column(DateTime, default=lambda: days_from_now(OFFER_TTL_DAYS), index=True)

    # Analytics
    views = Column(Integer, nullable=False, default=0)
    last_viewed = Column(DateTime)
    response_time = Column(Float)  # hours
    acceptance_rate = Column(Float, nullable=False, default=0)

    # Settings
    auto_expire = Column(Boolean, nullable=False, default=True)
    notify_on_view = Column(Boolean, nullable=False, default=False)
    allow_counter_offers = Column(Boolean, nullable=False, default=True)

    version_id = Column(Integer, nullable=False)

    # Constraints
    __table_args__ = (
        CheckConstraint('amount >= 0.01 AND amount <= 1000000', name='check_offer_amount_range'),
        Index('ix_offers_request_status', 'request_id', 'status'),
        Index('ix_offers_seller_status', 'seller_id', 'status'),
        # One live offer per seller and request
        Index(
            'ux_offers_pending_seller_request', 'request_id', 'seller_id', unique=True,
            sqlite_where=text("status = 'pending'"), postgresql_where=text("status = 'pending'"),
        ),
    )

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    request = relationship("Request", back_populates="offers")
    seller = relationship("User", back_populates="offers", foreign_keys=[seller_id])
    product = relationship("Product")
    history = relationship(
        "OfferHistory", back_populates="offer",
        cascade="all, delete-orphan", order_by="OfferHistory.id",
    )
    order = relationship("Order", back_populates="offer", uselist=False)

    def __repr__(self):
        return f"<Offer {self.amount} by user {self.seller_id}>"

    def is_pending(self) -> bool:
        return self.status == "pending"

    def is_expired(self, now=None) -> bool:
        now = now or utcnow()
        return self.expires_at is not None and self.expires_at < now

    def add_history(self, action, user_id=None, details=None, old_value=None, new_value=None):
        """Append an audit row; values are stored as JSON."""
        self.history.append(OfferHistory(
            action=action,
            user_id=user_id,
            details=details,
            old_value=jsonable_encoder(old_value),
            new_value=jsonable_encoder(new_value),
        ))

    def change_status(self, new_status, user_id=None, reason=None):
        """Move to a terminal status and record it."""
        old_status = self.status
        self.status = new_status
        if reason:
            self.reason = reason
        self.add_history(
            new_status, user_id or self.seller_id,
            reason or f"Status changed from {old_status} to {new_status}",
            old_status, new_status,
        )

    def cancel_if_expired(self, now=None) -> bool:
        """Cancel a pending offer past its expiry."""
        if self.is_pending() and self.is_expired(now):
            self.change_status('cancelled', self.seller_id, "Offer expired")
            return True
        return False


class OfferHistory(Base):
    """Append-only audit trail of an offer."""

    __tablename__ = "offer_history"

    id = Column(Integer, primary_key=True, index=True)
    offer_id = Column(Uuid, ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(offer_history_action_enum, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    details = Column(Text)
    old_value = Column(JSONType)
    new_value = Column(JSONType)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    offer = relationship("Offer", back_populates="history")

    def __repr__(self):
        return f"<OfferHistory {self.action} for offer {self.offer_id}>"
