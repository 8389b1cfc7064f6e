"""
Tests for orders: Paystack checkout, verification, webhook, delivery and payouts.
"""
import hashlib
import hmac
import json
from uuid import uuid4

import pytest

from conftest import auth_headers, make_request, make_offer, past
from campusmarket.core.exceptions import ExternalServiceException
from campusmarket.models import Order, PayoutJob, Notification
from campusmarket.services import payout_service
from campusmarket.schemas.order import OrderCreate
from campusmarket.services.acceptance_service import accept_offer
from campusmarket.services.paystack_service import paystack_service, to_minor_units

WEBHOOK_SECRET = "sk_test_secret"


@pytest.fixture
def order(db, buyer, seller, pushes):
    request_obj = make_request(db, buyer)
    offer = make_offer(db, request_obj, seller, amount=4500)
    _, created = accept_offer(db, offer_id=offer.id, user=buyer)
    return created


@pytest.fixture
def paystack(monkeypatch):
    """Stub the gateway calls and record what was sent."""
    calls = {"initialize": [], "verify": []}
    state = {"status": "success", "metadata": {}}

    def initialize_transaction(**kwargs):
        calls["initialize"].append(kwargs)
        return {
            "authorization_url": "https://checkout.paystack.com/abc123",
            "access_code": "abc123",
            "reference": "ref_abc123",
        }

    def verify_transaction(reference):
        calls["verify"].append(reference)
        return {"status": state["status"], "reference": reference, "metadata": state["metadata"]}

    monkeypatch.setattr(paystack_service, "initialize_transaction", initialize_transaction)
    monkeypatch.setattr(paystack_service, "verify_transaction", verify_transaction)
    return {"calls": calls, "state": state}


def _sign(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()


def test_my_orders_and_access(client, db, order, buyer, seller, second_seller, admin):
    body = client.get("/api/v1/orders", headers=auth_headers(buyer)).json()
    assert [o["id"] for o in body["data"]] == [str(order.id)]

    body = client.get("/api/v1/orders", headers=auth_headers(seller)).json()
    assert len(body["data"]) == 1

    assert client.get(f"/api/v1/orders/{order.id}", headers=auth_headers(buyer)).status_code == 200
    assert client.get(f"/api/v1/orders/{order.id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/api/v1/orders/{order.id}", headers=auth_headers(second_seller)).status_code == 403


def test_initialize_payment(client, db, order, buyer, paystack):
    response = client.post(f"/api/v1/orders/{order.id}/initialize-payment", headers=auth_headers(buyer))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["authorization_url"] == "https://checkout.paystack.com/abc123"
    assert data["reference"] == "ref_abc123"

    sent = paystack["calls"]["initialize"][0]
    assert sent["email"] == buyer.email
    assert sent["amount"] == 4500
    assert sent["callback_url"].endswith(f"/api/v1/orders/{order.id}/verify-payment")
    assert sent["metadata"]["orderId"] == str(order.id)
    assert sent["metadata"]["buyerId"] == str(buyer.id)

    db.expire_all()
    stored = db.get(Order, order.id)
    assert stored.payment_ref == "ref_abc123"
    assert stored.payment_meta["initialize"]["access_code"] == "abc123"


def test_initialize_payment_only_for_buyer(client, order, seller, paystack):
    response = client.post(f"/api/v1/orders/{order.id}/initialize-payment", headers=auth_headers(seller))
    assert response.status_code == 403


def test_initialize_payment_on_paid_order(client, db, order, buyer, paystack):
    order.is_paid = True
    order.status = "paid"
    db.commit()

    response = client.post(f"/api/v1/orders/{order.id}/initialize-payment", headers=auth_headers(buyer))

    assert response.status_code == 400
    assert response.json()["message"] == "Order already paid"
    assert paystack["calls"]["initialize"] == []


def test_gateway_failure_is_a_server_error(client, order, buyer, monkeypatch):
    def broken(**kwargs):
        raise ExternalServiceException("Payment gateway unavailable")

    monkeypatch.setattr(paystack_service, "initialize_transaction", broken)

    response = client.post(f"/api/v1/orders/{order.id}/initialize-payment", headers=auth_headers(buyer))

    assert response.status_code == 500
    assert response.json() == {"status": "error", "message": "Payment gateway unavailable"}


def test_verify_payment_marks_paid_once(client, db, order, buyer, seller, paystack, pushes):
    order.payment_ref = "ref_abc123"
    db.commit()
    paystack["state"]["metadata"] = {"orderId": str(order.id)}

    response = client.get(f"/api/v1/orders/{order.id}/verify-payment")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["is_paid"] is True
    assert data["status"] == "paid"
    assert paystack["calls"]["verify"] == ["ref_abc123"]
    assert any(p["event"] == "orderPaid" and p["user_id"] == str(seller.id) for p in pushes)

    client.get(f"/api/v1/orders/{order.id}/verify-payment?reference=ref_abc123")
    paid_notes = db.query(Notification).filter(Notification.type == "payment", Notification.user_id == buyer.id)
    assert paid_notes.count() == 1


def test_verify_payment_not_successful(client, db, order, paystack):
    paystack["state"]["status"] = "abandoned"

    response = client.get(f"/api/v1/orders/{order.id}/verify-payment?reference=ref_x")

    assert response.status_code == 400
    assert response.json()["message"] == "Payment not successful yet"
    db.expire_all()
    assert db.get(Order, order.id).is_paid is False


def test_verify_payment_rejects_foreign_reference(client, db, order, paystack):
    paystack["state"]["metadata"] = {"orderId": "another-order"}

    response = client.get(f"/api/v1/orders/{order.id}/verify-payment?reference=ref_x")

    assert response.status_code == 400
    db.expire_all()
    assert db.get(Order, order.id).is_paid is False


def test_webhook_requires_valid_signature(client, order):
    body = json.dumps({"event": "charge.success", "data": {"metadata": {"orderId": str(order.id)}}}).encode()

    response = client.post("/api/v1/orders/webhook", content=body)
    assert response.status_code == 401

    response = client.post("/api/v1/orders/webhook", content=body, headers={"x-paystack-signature": "bad"})
    assert response.status_code == 401


def test_webhook_charge_success_marks_paid(client, db, order, pushes):
    body = json.dumps({
        "event": "charge.success",
        "data": {"reference": "ref_hook", "status": "success", "metadata": {"orderId": str(order.id)}},
    }).encode()

    response = client.post(
        "/api/v1/orders/webhook", content=body, headers={"x-paystack-signature": _sign(body)}
    )

    assert response.status_code == 200
    db.expire_all()
    paid = db.get(Order, order.id)
    assert paid.is_paid is True
    assert paid.status == "paid"
    assert paid.payment_ref == "ref_hook"
    assert paid.payment_meta["webhook"]["reference"] == "ref_hook"


def test_webhook_acknowledges_unprocessable_events(client, db, order):
    body = json.dumps({"event": "charge.success", "data": {"metadata": {"orderId": "not-a-uuid"}}}).encode()

    response = client.post(
        "/api/v1/orders/webhook", content=body, headers={"x-paystack-signature": _sign(body)}
    )

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Order, order.id).is_paid is False


def test_update_status_rules(client, db, order, buyer, seller, admin, moderator, pushes):
    url = f"/api/v1/orders/{order.id}/status"

    assert client.patch(url, json={"status": "shipped"}, headers=auth_headers(buyer)).status_code == 403

    response = client.patch(url, json={"status": "shipped"}, headers=auth_headers(seller))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "shipped"
    assert any(p["event"] == "orderUpdated" for p in pushes)

    assert client.patch(url, json={"status": "paid"}, headers=auth_headers(seller)).status_code == 403
    assert client.patch(url, json={"status": "refunded"}, headers=auth_headers(moderator)).status_code == 403

    response = client.patch(url, json={"status": "paid"}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["data"]["is_paid"] is True

    assert client.patch(url, json={"status": "teleported"}, headers=auth_headers(admin)).status_code == 400


def test_confirm_delivery_guards(client, db, order, buyer, seller, pushes):
    url = f"/api/v1/orders/{order.id}/confirm-delivery"

    response = client.post(url, headers=auth_headers(buyer))
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot confirm delivery before payment"

    order.is_paid = True
    order.status = "paid"
    db.commit()

    assert client.post(url, headers=auth_headers(seller)).status_code == 403

    response = client.post(url, headers=auth_headers(buyer))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "delivered"
    assert data["delivered_at"] is not None
    assert data["payout_status"] == "processing"
    assert any(p["event"] == "orderDelivered" and p["user_id"] == str(seller.id) for p in pushes)

    job = db.query(PayoutJob).filter(PayoutJob.order_id == order.id).one()
    assert job.status == "pending"

    response = client.post(url, headers=auth_headers(buyer))
    assert response.status_code == 400
    assert response.json()["message"] == "Order already marked as delivered"


def _delivered_order_with_due_job(db, order):
    order.is_paid = True
    order.status = "delivered"
    order.payout_status = "processing"
    job = PayoutJob(order_id=order.id, run_at=past(seconds=1), status="pending")
    db.add(job)
    db.commit()
    return job


def test_process_due_payouts_completes_jobs(db, order, buyer, seller, pushes):
    job = _delivered_order_with_due_job(db, order)
    not_yet = PayoutJob(order_id=order.id, run_at=past(seconds=-3600), status="pending")
    db.add(not_yet)
    db.commit()

    assert payout_service.process_due_payouts(db) == 1

    db.expire_all()
    assert db.get(PayoutJob, job.id).status == "completed"
    assert db.get(PayoutJob, not_yet.id).status == "pending"
    assert db.get(Order, order.id).payout_status == "completed"
    events = {(p["user_id"], p["event"]) for p in pushes}
    assert (str(seller.id), "payoutCompleted") in events
    assert (str(buyer.id), "deliveryConfirmed") in events


def test_failing_payout_is_retried_then_failed(db, order, monkeypatch, pushes):
    job = _delivered_order_with_due_job(db, order)

    def boom(db, job):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(payout_service, "release_payout", boom)

    assert payout_service.process_due_payouts(db, max_attempts=2) == 0
    db.expire_all()
    assert db.get(PayoutJob, job.id).status == "pending"
    assert db.get(PayoutJob, job.id).attempts == 1

    payout_service.process_due_payouts(db, max_attempts=2)
    db.expire_all()
    failed = db.get(PayoutJob, job.id)
    assert failed.status == "failed"
    assert failed.last_error == "ledger unavailable"
    assert db.get(Order, order.id).payout_status == "failed"


def test_amount_is_sent_in_kobo():
    assert to_minor_units(4500) == 450000
    assert to_minor_units(4500.4) == 450000


def test_signature_check():
    body = b'{"event":"charge.success"}'

    assert paystack_service.verify_signature(body, _sign(body)) is True
    assert paystack_service.verify_signature(body, _sign(b"tampered")) is False
    assert paystack_service.verify_signature(body, None) is False


def test_order_create_defaults():
    data = OrderCreate(offer_id=uuid4(), buyer_id=uuid4(), seller_id=uuid4(), amount=4500).model_dump()

    assert data["status"] == "pending"
    assert data["qty"] == 1
    assert data["payment_gateway"] == "paystack"
    assert data["product_id"] is None
