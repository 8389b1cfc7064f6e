"""
Commit helpers for optimistic concurrency.

Request and Offer carry a version column; a concurrent writer makes the
UPDATE match zero rows and SQLAlchemy raises StaleDataError. The unique
indexes that guard against racing writers (one order per offer, one
pending offer per seller and request) surface as IntegrityError. Any
other integrity failure is a bug in input checking and is re-raised.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from campusmarket.core.exceptions import ConflictException

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "This record was modified by another request. Please retry."

# SQLite names the columns, PostgreSQL the index
CONFLICT_MARKERS = (
    "orders.offer_id",
    "ix_orders_offer_id",
    "offers.request_id, offers.seller_id",
    "ux_offers_pending_seller_request",
)


def is_conflict(exc: Exception) -> bool:
    """True when a failed write lost a race rather than carried bad data."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError):
        detail = str(exc.orig).lower()
        return any(marker in detail for marker in CONFLICT_MARKERS)
    return False


def _reject(db: Session, exc: Exception, action: str, message: str) -> None:
    db.rollback()
    if not is_conflict(exc):
        logger.error(f"{action} failed: {exc.__class__.__name__}: {exc}")
        raise exc
    logger.warning(f"{action} rejected: {exc.__class__.__name__}: {exc}")
    raise ConflictException(message)


def commit_or_conflict(db: Session, message: str = CONFLICT_MESSAGE) -> None:
    """
    Commit the session, turning concurrency failures into a 409.

    Raises:
        ConflictException: On a stale version or a racing unique insert
        IntegrityError: On any other constraint violation
    """
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as exc:
        _reject(db, exc, "Commit", message)


def flush_or_conflict(db: Session, message: str = CONFLICT_MESSAGE) -> None:
    """Same as commit_or_conflict for an intermediate flush."""
    try:
        db.flush()
    except (StaleDataError, IntegrityError) as exc:
        _reject(db, exc, "Flush", message)
