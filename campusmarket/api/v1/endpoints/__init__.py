"""
API v1 endpoints.
"""
from campusmarket.api.v1.endpoints import (
    requests,
    offers,
    orders,
    notifications,
    realtime,
)

__all__ = [
    "requests",
    "offers",
    "orders",
    "notifications",
    "realtime",
]
