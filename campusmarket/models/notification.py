"""
ORM model for persisted user notifications.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
import uuid
from campusmarket.core.time_utils import utcnow
from campusmarket.db.base import Base, JSONType


# Enums
notification_type_enum = Enum('request', 'offer', 'order', 'payment', 'system', name='notification_type')
notification_category_enum = Enum('info', 'warning', 'error', 'success', 'urgent', name='notification_category')
notification_priority_enum = Enum('low', 'normal', 'high', 'urgent', name='notification_priority')


class Notification(Base):
    """Notification addressed to one user."""

    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(notification_type_enum, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text)
    category = Column(notification_category_enum, nullable=False, default='info')
    priority = Column(notification_priority_enum, nullable=False, default='normal')
    data = Column(JSONType)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    user = relationship("User", back_populates="notifications")

    def __repr__(self):
        return f"<Notification {self.type} for user {self.user_id}>"

    def mark_as_read(self):
        """Mark the notification as read."""
        self.is_read = True
        self.read_at = utcnow()
