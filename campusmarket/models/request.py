"""
ORM models for buyer requests, their tags, images and audit history.
"""
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, CheckConstraint, Text, Enum, Uuid, Index
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.orm import relationship
from fastapi.encoders import jsonable_encoder
import uuid
from campusmarket.core.time_utils import utcnow, days_from_now
from campusmarket.db.base import Base, TimestampMixin, JSONType


# Enums
request_status_enum = Enum('open', 'fulfilled', 'closed', name='request_status')
request_priority_enum = Enum('low', 'medium', 'high', 'urgent', name='request_priority')
request_history_action_enum = Enum(
    'created', 'updated', 'fulfilled', 'closed', 'reopened', 'extended', 'images_uploaded', 'deleted',
    name='request_history_action',
)

REQUEST_TTL_DAYS = 30
MAX_REQUEST_IMAGES = 5


class Request(Base, TimestampMixin):
    """A buyer's want-ad, scoped to a campus."""

    __tablename__ = "requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    description = Column(String(1000))
    category_id = Column(Integer, ForeignKey("request_categories.id", ondelete="SET NULL"), index=True)
    requester_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    campus_id = Column(Integer, ForeignKey("campuses.id", ondelete="SET NULL"), index=True)
    status = Column(request_status_enum, nullable=False, default='open', index=True)
    desired_price = Column(Float)
    priority = Column(request_priority_enum, nullable=False, default='medium')

    # Location
    location_address = Column(String(200))
    latitude = Column(Float)
    longitude = Column(Float)

    whatsapp_number = Column(String(16))
    expires_at = Column(DateTime, default=lambda: days_from_now(REQUEST_TTL_DAYS), index=True)

    # Analytics
    views = Column(Integer, nullable=False, default=0)
    last_viewed = Column(DateTime)
    offers_count = Column(Integer, nullable=False, default=0)
    response_time = Column(Float)  # hours
    fulfillment_rate = Column(Float, nullable=False, default=0)

    # Settings
    allow_offers = Column(Boolean, nullable=False, default=True)
    notify_on_offer = Column(Boolean, nullable=False, default=True)
    auto_close = Column(Boolean, nullable=False, default=False)
    public_visibility = Column(Boolean, nullable=False, default=True)

    version_id = Column(Integer, nullable=False)

    # Constraints
    __table_args__ = (
        CheckConstraint('desired_price IS NULL OR (desired_price >= 0 AND desired_price <= 1000000)', name='check_desired_price_range'),
        CheckConstraint('offers_count >= 0', name='check_offers_count_positive'),
        Index('ix_requests_campus_status', 'campus_id', 'status'),
    )

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    requester = relationship("User", back_populates="requests", foreign_keys=[requester_id])
    campus = relationship("Campus", back_populates="requests")
    category = relationship("RequestCategory", back_populates="requests")
    offers = relationship("Offer", back_populates="request", order_by="Offer.created_at.desc()")
    history = relationship(
        "RequestHistory", back_populates="request",
        cascade="all, delete-orphan", order_by="RequestHistory.id",
    )
    tag_rows = relationship("RequestTag", back_populates="request", cascade="all, delete-orphan")
    images = relationship(
        "RequestImage", back_populates="request",
        cascade="all, delete-orphan", order_by="RequestImage.id",
    )

    tags = association_proxy("tag_rows", "name", creator=lambda name: RequestTag(name=name))

    def __repr__(self):
        return f"<Request {self.title} status={self.status}>"

    def is_open(self) -> bool:
        return self.status == "open"

    def is_expired(self, now=None) -> bool:
        """Check whether expires_at is in the past."""
        now = now or utcnow()
        return self.expires_at is not None and self.expires_at < now

    def add_history(self, action, user_id=None, details=None, old_value=None, new_value=None):
        """Append an audit row; values are stored as JSON."""
        self.history.append(RequestHistory(
            action=action,
            user_id=user_id,
            details=details,
            old_value=jsonable_encoder(old_value),
            new_value=jsonable_encoder(new_value),
        ))

    def close_if_expired(self, now=None) -> bool:
        """Flip an open request past its expiry to closed."""
        if self.is_open() and self.is_expired(now):
            self.status = 'closed'
            self.add_history('closed', self.requester_id, "Request expired", 'open', 'closed')
            return True
        return False


class RequestHistory(Base):
    """Append-only audit trail of a request."""

    __tablename__ = "request_history"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Uuid, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(request_history_action_enum, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    details = Column(Text)
    old_value = Column(JSONType)
    new_value = Column(JSONType)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    request = relationship("Request", back_populates="history")

    def __repr__(self):
        return f"<RequestHistory {self.action} for request {self.request_id}>"


class RequestTag(Base):
    __tablename__ = "request_tags"

    id = Column(Integer, primary_key=True)
    request_id = Column(Uuid, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(20), nullable=False, index=True)

    request = relationship("Request", back_populates="tag_rows")


class RequestImage(Base):
    """Image attached to a request; public_id is the storage object key."""

    __tablename__ = "request_images"

    id = Column(Integer, primary_key=True)
    request_id = Column(Uuid, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(500), nullable=False)
    public_id = Column(String(300))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    request = relationship("Request", back_populates="images")

    def __repr__(self):
        return f"<RequestImage {self.url}>"
