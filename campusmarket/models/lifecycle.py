"""
Session hooks that apply time-based expiry when records are written.

Expired pending offers become cancelled and expired open requests become
closed the next time they are flushed.
"""
from sqlalchemy import event
from sqlalchemy.orm import Session

from campusmarket.core.time_utils import utcnow
from campusmarket.models.offer import Offer
from campusmarket.models.request import Request


@event.listens_for(Session, "before_flush")
def apply_lazy_expiry(session, flush_context, instances):
    now = utcnow()
    for obj in list(session.dirty):
        if isinstance(obj, Offer):
            obj.cancel_if_expired(now)
        elif isinstance(obj, Request):
            obj.close_if_expired(now)
