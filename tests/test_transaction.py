"""
Tests for the commit helpers: which write failures count as conflicts.
"""
import pytest
from sqlalchemy.exc import IntegrityError

from conftest import make_request, make_offer
from campusmarket.core.exceptions import ConflictException
from campusmarket.db.session import SessionLocal
from campusmarket.db.transaction import commit_or_conflict, flush_or_conflict
from campusmarket.models import Order, Request


def test_stale_version_is_a_conflict(db, buyer):
    request_obj = make_request(db, buyer)

    other = SessionLocal()
    try:
        other.get(Request, request_obj.id).title = "Changed elsewhere"
        other.commit()
    finally:
        other.close()

    request_obj.title = "Changed here"
    with pytest.raises(ConflictException):
        commit_or_conflict(db)


def test_second_order_for_an_offer_is_a_conflict(db, buyer, seller):
    request_obj = make_request(db, buyer)
    offer = make_offer(db, request_obj, seller)
    for _ in range(2):
        db.add(Order(offer_id=offer.id, buyer_id=buyer.id, seller_id=seller.id, amount=offer.amount))

    with pytest.raises(ConflictException):
        flush_or_conflict(db)
    assert db.query(Order).count() == 0


def test_other_integrity_errors_are_not_conflicts(db, buyer):
    request_obj = make_request(db, buyer)
    request_obj.priority = None

    with pytest.raises(IntegrityError):
        commit_or_conflict(db)

    db.expire_all()
    assert db.get(Request, request_obj.id).priority == "medium"
