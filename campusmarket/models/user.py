"""
ORM models for users and campuses.
"""
from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
import uuid
from campusmarket.db.base import Base, TimestampMixin


# Enums
user_role_enum = Enum('student', 'seller', 'moderator', 'admin', name='user_role')
user_status_enum = Enum('active', 'suspended', 'banned', name='user_status')


class Campus(Base, TimestampMixin):
    """A campus; requests and users are scoped to one."""

    __tablename__ = "campuses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    short_code = Column(String(20), unique=True)

    # Relationships
    users = relationship("User", back_populates="campus")
    requests = relationship("Request", back_populates="campus")

    def __repr__(self):
        return f"<Campus {self.name}>"


class User(Base, TimestampMixin):
    """Marketplace user (buyer, seller or staff)."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=False)
    role = Column(user_role_enum, nullable=False, default='student')
    status = Column(user_status_enum, nullable=False, default='active', index=True)
    campus_id = Column(Integer, ForeignKey("campuses.id", ondelete="SET NULL"), index=True)
    whatsapp = Column(String(20))

    # Relationships
    campus = relationship("Campus", back_populates="users")
    requests = relationship("Request", back_populates="requester", foreign_keys="Request.requester_id")
    offers = relationship("Offer", back_populates="seller", foreign_keys="Offer.seller_id")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.email}>"

    def is_active(self) -> bool:
        """Check whether the account can act."""
        return self.status == "active"

    def is_admin(self) -> bool:
        """Admins and moderators share the staff override."""
        return self.role in ["admin", "moderator"]

    def is_superadmin(self) -> bool:
        return self.role == "admin"
