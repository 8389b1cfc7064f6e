"""
ORM models package.
Imports every model so SQLAlchemy registers them.
"""
from campusmarket.db.base import Base

# Catalogs
from campusmarket.models.user import User, Campus
from campusmarket.models.category import RequestCategory
from campusmarket.models.product import Product

# Requests
from campusmarket.models.request import Request, RequestHistory, RequestTag, RequestImage

# Offers
from campusmarket.models.offer import Offer, OfferHistory

# Orders
from campusmarket.models.order import Order, PayoutJob

# Notifications
from campusmarket.models.notification import Notification

# Expiry hooks
from campusmarket.models import lifecycle  # noqa: F401

__all__ = [
    "Base",
    # Catalogs
    "User",
    "Campus",
    "RequestCategory",
    "Product",
    # Requests
    "Request",
    "RequestHistory",
    "RequestTag",
    "RequestImage",
    # Offers
    "Offer",
    "OfferHistory",
    # Orders
    "Order",
    "PayoutJob",
    # Notifications
    "Notification",
]
