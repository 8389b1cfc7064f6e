"""
Delayed seller payouts.

confirm-delivery persists a PayoutJob due a few seconds later. The worker
started with the application polls for due jobs and completes them, so a
restart never loses a payout.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from campusmarket.config import get_settings
from campusmarket.crud.order import order as crud_order
from campusmarket.db.session import SessionLocal
from campusmarket.models.order import PayoutJob
from campusmarket.services import notification_service

logger = logging.getLogger(__name__)


def release_payout(db: Session, job: PayoutJob) -> None:
    """
    Settle one payout.

    Funds are released on the platform side only; no transfer call is made
    to the gateway.
    """
    order = job.order
    if order is None:
        raise ValueError(f"Order {job.order_id} no longer exists")
    order.payout_status = "completed"
    job.status = "completed"
    job.attempts += 1
    job.last_error = None


def process_due_payouts(db: Session, *, max_attempts: Optional[int] = None) -> int:
    """
    Complete every payout job whose run_at has passed.

    A failing job is retried on the next poll until it has been attempted
    max_attempts times; it is then marked failed along with the order's
    payout status.

    Args:
        db: Database session
        max_attempts: Attempts before giving up (default PAYOUT_MAX_ATTEMPTS)

    Returns:
        Number of payouts completed
    """
    if max_attempts is None:
        max_attempts = get_settings().PAYOUT_MAX_ATTEMPTS

    completed = 0
    for job in crud_order.get_due_payout_jobs(db):
        try:
            release_payout(db, job)
            db.commit()
        except Exception as e:
            db.rollback()
            job.attempts += 1
            job.last_error = str(e)[:1000]
            if job.attempts >= max_attempts:
                job.status = "failed"
                if job.order is not None:
                    job.order.payout_status = "failed"
                logger.error(f"Payout job {job.id} failed permanently: {e}")
            else:
                logger.warning(f"Payout job {job.id} failed (attempt {job.attempts}): {e}")
            db.commit()
            continue

        completed += 1
        logger.info(f"Payout completed for order {job.order_id}")
        notification_service.notify_payout_completed(db, job.order)

    return completed


def _run_once() -> int:
    db = SessionLocal()
    try:
        return process_due_payouts(db)
    finally:
        db.close()


async def run_payout_worker(stop_event: asyncio.Event, poll_interval: Optional[float] = None) -> None:
    """
    Poll for due payouts until stop_event is set.

    The database work runs in a thread so the event loop stays free.
    """
    if poll_interval is None:
        poll_interval = get_settings().PAYOUT_POLL_INTERVAL_SECONDS

    logger.info(f"Payout worker started (poll every {poll_interval}s)")
    while not stop_event.is_set():
        try:
            await asyncio.to_thread(_run_once)
        except Exception as e:
            logger.error(f"Payout worker iteration failed: {e}", exc_info=True)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
        except asyncio.TimeoutError:
            pass
    logger.info("Payout worker stopped")
