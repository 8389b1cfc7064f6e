"""
ORM model for request categories.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean
from sqlalchemy.orm import relationship
from campusmarket.db.base import Base, TimestampMixin


class RequestCategory(Base, TimestampMixin):
    """Category a buyer request is filed under."""

    __tablename__ = "request_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(120), unique=True, index=True)
    description = Column(Text)
    is_active = Column(Boolean, default=True)

    # Relationships
    requests = relationship("Request", back_populates="category")

    def __repr__(self):
        return f"<RequestCategory {self.name}>"
