"""
ORM model for seller products.
"""
from sqlalchemy import Column, String, Float, Text, ForeignKey, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
import uuid
from campusmarket.db.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """A listed product a seller may attach to an offer."""

    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    price = Column(Float, nullable=False, default=0)

    # Constraints
    __table_args__ = (
        CheckConstraint('price >= 0', name='check_product_price_positive'),
    )

    # Relationships
    seller = relationship("User")

    def __repr__(self):
        return f"<Product {self.name}>"
