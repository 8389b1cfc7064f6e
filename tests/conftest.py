"""
Pytest fixtures for the CampusMarket API tests.

Provides an in-memory database, a test client, users on a campus and
helpers to build requests and offers.
"""
import os
import tempfile

# Settings and the engine are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ["PAYOUT_WORKER_ENABLED"] = "false"
os.environ["R2_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="campusmarket-uploads-")
os.environ["DEBUG"] = "false"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from campusmarket.core.deps import get_db
from campusmarket.core.security import create_access_token
from campusmarket.core.time_utils import utcnow
from campusmarket.db.session import engine, SessionLocal
from campusmarket.main import app
from campusmarket.models import Base, Campus, RequestCategory, User, Request, Offer
from campusmarket.services.realtime import realtime


def override_get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope='function')
def db():
    """Fresh schema for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope='function')
def client(db):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope='function')
def pushes(monkeypatch):
    """Record realtime pushes instead of sending them."""
    sent = []

    def record(user_id, event, payload=None):
        sent.append({"user_id": str(user_id), "event": event, "data": payload or {}})

    monkeypatch.setattr(realtime, "send_to_user", record)
    return sent


@pytest.fixture(scope='function')
def campus(db):
    campus = Campus(name="University of Lagos", short_code="UNILAG")
    db.add(campus)
    db.commit()
    return campus


@pytest.fixture(scope='function')
def other_campus(db):
    campus = Campus(name="Obafemi Awolowo University", short_code="OAU")
    db.add(campus)
    db.commit()
    return campus


@pytest.fixture(scope='function')
def category(db):
    category = RequestCategory(name="Textbooks", slug="textbooks")
    db.add(category)
    db.commit()
    return category


def _make_user(db, email, full_name, role, campus_id):
    user = User(email=email, full_name=full_name, role=role, campus_id=campus_id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope='function')
def buyer(db, campus):
    return _make_user(db, "ada@unilag.edu.ng", "Ada Buyer", "student", campus.id)


@pytest.fixture(scope='function')
def seller(db, campus):
    return _make_user(db, "sola@unilag.edu.ng", "Sola Seller", "seller", campus.id)


@pytest.fixture(scope='function')
def second_seller(db, campus):
    return _make_user(db, "tunde@unilag.edu.ng", "Tunde Seller", "seller", campus.id)


@pytest.fixture(scope='function')
def admin(db, campus):
    return _make_user(db, "admin@unilag.edu.ng", "Site Admin", "admin", campus.id)


@pytest.fixture(scope='function')
def moderator(db, campus):
    return _make_user(db, "mod@unilag.edu.ng", "Campus Moderator", "moderator", campus.id)


def auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


def make_request(db, requester, **overrides):
    """Insert an open request directly."""
    data = {
        "title": "Organic Chemistry textbook",
        "description": "Looking for a used copy, 3rd edition",
        "campus_id": requester.campus_id,
        "desired_price": 5000,
    }
    data.update(overrides)
    request_obj = Request(requester_id=requester.id, **data)
    request_obj.add_history("created", requester.id, "Request created")
    db.add(request_obj)
    db.commit()
    db.refresh(request_obj)
    return request_obj


def make_offer(db, request_obj, seller, amount=4500, **overrides):
    """Insert a pending offer directly and count it on the request."""
    offer = Offer(request_id=request_obj.id, seller_id=seller.id, amount=amount, **overrides)
    offer.add_history("created", seller.id, "Offer created")
    db.add(offer)
    request_obj.offers_count += 1
    db.commit()
    db.refresh(offer)
    return offer


def past(**kwargs):
    return utcnow() - timedelta(**kwargs)
