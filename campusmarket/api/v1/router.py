"""
Main router of API v1.
Mounts every endpoint group.
"""
from fastapi import APIRouter

from campusmarket.api.v1.endpoints import (
    requests,
    offers,
    orders,
    notifications,
    realtime,
)

api_router = APIRouter()

# ============================================================================
# REQUESTS
# ============================================================================
api_router.include_router(
    requests.router,
    prefix="/requests",
    tags=["Requests"]
)

# ============================================================================
# OFFERS
# ============================================================================
api_router.include_router(
    offers.router,
    prefix="/offers",
    tags=["Offers"]
)

# ============================================================================
# ORDERS AND PAYMENTS
# ============================================================================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ============================================================================
# NOTIFICATIONS
# ============================================================================
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"]
)

api_router.include_router(
    realtime.router,
    prefix="",
    tags=["Realtime"]
)
