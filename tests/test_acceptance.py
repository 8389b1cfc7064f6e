"""
Tests for accepting an offer: request fulfilled, siblings rejected, one order.
"""
from uuid import UUID

import pytest

from conftest import auth_headers, make_request, make_offer, past
from campusmarket.core.exceptions import ConflictException, BadRequestException
from campusmarket.db.session import SessionLocal
from campusmarket.models import Offer, Order, Request, RequestHistory, Notification
from campusmarket.services.acceptance_service import accept_offer


def test_textbook_scenario(client, db, buyer, seller, second_seller, pushes):
    """Two sellers answer; the buyer takes the cheaper offer."""
    headers = auth_headers(buyer)
    created = client.post(
        "/api/v1/requests",
        json={"title": "Organic Chemistry textbook", "desired_price": 5000},
        headers=headers,
    ).json()["data"]
    request_id = created["id"]

    cheap = client.post(
        "/api/v1/offers", json={"request_id": request_id, "amount": 4500}, headers=auth_headers(seller)
    ).json()["data"]
    dear = client.post(
        "/api/v1/offers", json={"request_id": request_id, "amount": 4800}, headers=auth_headers(second_seller)
    ).json()["data"]

    detail = client.get(f"/api/v1/requests/{request_id}", headers=headers).json()["data"]
    assert detail["request"]["offers_count"] == 2

    response = client.post(f"/api/v1/offers/{cheap['id']}/accept", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["offer"]["status"] == "accepted"
    assert data["order"]["amount"] == 4500
    assert data["order"]["buyer_id"] == str(buyer.id)
    assert data["order"]["seller_id"] == str(seller.id)
    assert data["order"]["status"] == "pending"
    assert data["order"]["payment_gateway"] == "paystack"
    assert data["order"]["is_paid"] is False

    db.expire_all()
    request_obj = db.get(Request, UUID(request_id))
    assert request_obj.status == "fulfilled"
    assert request_obj.offers_count == 1
    assert request_obj.response_time is not None

    rejected = db.get(Offer, UUID(dear["id"]))
    assert rejected.status == "rejected"
    assert rejected.reason == "Another offer was accepted"
    assert [h.action for h in rejected.history] == ["created", "rejected"]

    assert db.query(Order).count() == 1

    response = client.post(f"/api/v1/offers/{dear['id']}/accept", headers=headers)
    assert response.status_code == 400
    assert db.query(Order).count() == 1

    events = {(p["user_id"], p["event"]) for p in pushes}
    assert (str(seller.id), "offerAccepted") in events
    assert (str(buyer.id), "offerAccepted") in events
    assert (str(seller.id), "orderCreated") in events
    assert (str(buyer.id), "orderCreated") in events

    titles = {n.title for n in db.query(Notification).filter(Notification.user_id == seller.id)}
    assert "Offer Accepted!" in titles


def test_fulfilled_request_has_accepted_offer(client, db, buyer, seller, second_seller, pushes):
    request_obj = make_request(db, buyer)
    a = make_offer(db, request_obj, seller)
    make_offer(db, request_obj, second_seller)

    response = client.post(
        f"/api/v1/requests/{request_obj.id}/fulfill", json={"offer_id": str(a.id)}, headers=auth_headers(buyer)
    )

    assert response.status_code == 200
    db.expire_all()
    fulfilled = db.get(Request, request_obj.id)
    assert fulfilled.status == "fulfilled"
    statuses = sorted(o.status for o in fulfilled.offers)
    assert statuses == ["accepted", "rejected"]
    actions = [h.action for h in db.query(RequestHistory).filter(RequestHistory.request_id == request_obj.id)]
    assert "fulfilled" in actions


def test_fulfill_requires_offer_of_the_request(client, db, buyer, seller):
    request_obj = make_request(db, buyer)
    other = make_request(db, buyer, title="Other")
    foreign_offer = make_offer(db, other, seller)

    response = client.post(
        f"/api/v1/requests/{request_obj.id}/fulfill",
        json={"offer_id": str(foreign_offer.id)},
        headers=auth_headers(buyer),
    )
    assert response.status_code == 400

    response = client.post(f"/api/v1/requests/{request_obj.id}/fulfill", json={}, headers=auth_headers(buyer))
    assert response.status_code == 400


def test_only_requester_can_accept(client, db, buyer, seller, second_seller):
    request_obj = make_request(db, buyer)
    offer = make_offer(db, request_obj, seller)

    response = client.post(f"/api/v1/offers/{offer.id}/accept", headers=auth_headers(second_seller))

    assert response.status_code == 403
    assert response.json()["message"] == "Not authorized to accept this offer"


def test_cannot_accept_expired_or_finished_offers(client, db, buyer, seller, second_seller):
    request_obj = make_request(db, buyer)
    expired = make_offer(db, request_obj, seller, expires_at=past(minutes=5))
    withdrawn = make_offer(db, request_obj, second_seller, status="withdrawn")
    headers = auth_headers(buyer)

    assert client.post(f"/api/v1/offers/{expired.id}/accept", headers=headers).status_code == 400
    assert client.post(f"/api/v1/offers/{withdrawn.id}/accept", headers=headers).status_code == 400
    assert db.query(Order).count() == 0


def test_cannot_accept_on_expired_request(client, db, buyer, seller):
    request_obj = make_request(db, buyer, expires_at=past(days=1))
    offer = make_offer(db, request_obj, seller)

    response = client.post(f"/api/v1/offers/{offer.id}/accept", headers=auth_headers(buyer))

    assert response.status_code == 400
    assert response.json()["message"] == "Request is not open"


def test_accept_unknown_offer_is_404(client, buyer):
    response = client.post(
        "/api/v1/offers/00000000-0000-0000-0000-000000000000/accept", headers=auth_headers(buyer)
    )
    assert response.status_code == 404


def test_concurrent_accept_yields_conflict(db, buyer, seller, second_seller, pushes):
    request_obj = make_request(db, buyer)
    first = make_offer(db, request_obj, seller, amount=4500)
    second = make_offer(db, request_obj, second_seller, amount=4800)

    # The losing writer read both rows before the winner committed
    loser = SessionLocal()
    try:
        stale_offer = loser.get(Offer, second.id)
        stale_request = loser.get(Request, request_obj.id)
        stale_buyer = loser.get(type(buyer), buyer.id)
        assert stale_offer.status == "pending"
        assert stale_request.status == "open"

        winner = SessionLocal()
        try:
            offer, order = accept_offer(winner, offer_id=first.id, user=winner.get(type(buyer), buyer.id))
            assert offer.status == "accepted"
        finally:
            winner.close()

        with pytest.raises(ConflictException):
            accept_offer(loser, offer_id=second.id, user=stale_buyer)
    finally:
        loser.close()

    db.expire_all()
    assert db.query(Order).count() == 1
    assert db.get(Offer, first.id).status == "accepted"
    assert db.get(Offer, second.id).status == "rejected"


def test_accept_service_rejects_second_accept(db, buyer, seller, pushes):
    request_obj = make_request(db, buyer)
    offer = make_offer(db, request_obj, seller)

    accept_offer(db, offer_id=offer.id, user=buyer)

    with pytest.raises(BadRequestException):
        accept_offer(db, offer_id=offer.id, user=buyer)
