"""
Tests for the request endpoints: creation, scoping, edits, expiry and images.
"""
from datetime import timedelta

from conftest import auth_headers, make_request, make_offer, past
from campusmarket.core.time_utils import utcnow
from campusmarket.models import Request, RequestHistory, Notification


def test_create_request_sets_owner_campus_and_history(client, db, buyer, category, pushes):
    response = client.post(
        "/api/v1/requests",
        json={
            "title": "  Graphing calculator  ",
            "description": "TI-84 or similar",
            "category_id": category.id,
            "desired_price": 12000,
            "tags": ["calculator", "math", "calculator"],
            "location": {"address": "Faculty of Science", "latitude": 6.51, "longitude": 3.39},
            "whatsapp_number": "+2348012345678",
        },
        headers=auth_headers(buyer),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    data = body["data"]
    assert data["title"] == "Graphing calculator"
    assert data["requester_id"] == str(buyer.id)
    assert data["campus_id"] == buyer.campus_id
    assert data["status"] == "open"
    assert data["tags"] == ["calculator", "math"]
    assert data["location"]["address"] == "Faculty of Science"
    assert data["offers_count"] == 0
    assert data["expires_at"] is not None

    history = db.query(RequestHistory).filter(RequestHistory.action == "created").all()
    assert len(history) == 1


def test_create_request_notifies_campus_sellers(client, db, buyer, seller, other_campus, pushes):
    from conftest import _make_user
    outsider = _make_user(db, "far@oau.edu.ng", "Far Seller", "seller", other_campus.id)

    response = client.post(
        "/api/v1/requests", json={"title": "Lab coat"}, headers=auth_headers(buyer)
    )
    assert response.status_code == 201

    db.expire_all()
    seller_notes = db.query(Notification).filter(Notification.user_id == seller.id).all()
    assert [n.title for n in seller_notes] == ["New Buyer Request"]
    assert db.query(Notification).filter(Notification.user_id == outsider.id).count() == 0
    assert db.query(Notification).filter(Notification.user_id == buyer.id).count() == 0
    assert any(p["event"] == "newRequest" and p["user_id"] == str(seller.id) for p in pushes)


def test_create_request_rejects_bad_input(client, buyer):
    headers = auth_headers(buyer)

    response = client.post("/api/v1/requests", json={"title": "   "}, headers=headers)
    assert response.status_code == 400
    assert response.json()["status"] == "fail"

    response = client.post(
        "/api/v1/requests", json={"title": "Bike", "desired_price": 2_000_000}, headers=headers
    )
    assert response.status_code == 400

    response = client.post(
        "/api/v1/requests", json={"title": "Bike", "whatsapp_number": "08012345678"}, headers=headers
    )
    assert response.status_code == 400

    response = client.post(
        "/api/v1/requests",
        json={"title": "Bike", "expires_at": (utcnow() - timedelta(days=1)).isoformat()},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Expiration date must be in the future"


def test_create_request_requires_login(client):
    response = client.post("/api/v1/requests", json={"title": "Bike"})

    assert response.status_code == 401
    assert response.json() == {
        "status": "fail",
        "message": "You are not logged in! Please log in to get access.",
    }


def test_daily_request_limit(client, buyer, pushes):
    headers = auth_headers(buyer)
    for i in range(10):
        response = client.post("/api/v1/requests", json={"title": f"Item {i}"}, headers=headers)
        assert response.status_code == 201

    response = client.post("/api/v1/requests", json={"title": "One too many"}, headers=headers)
    assert response.status_code == 429
    assert response.json()["message"] == "Too many requests created in the last 24 hours"


def test_list_requests_scoped_to_campus(client, db, buyer, other_campus):
    from conftest import _make_user
    far_buyer = _make_user(db, "bola@oau.edu.ng", "Bola", "student", other_campus.id)
    make_request(db, buyer, title="Home campus request")
    make_request(db, far_buyer, title="Other campus request")

    headers = auth_headers(buyer)

    body = client.get("/api/v1/requests", headers=headers).json()
    assert body["total"] == 1
    assert body["data"][0]["title"] == "Home campus request"

    body = client.get("/api/v1/requests?all_campuses=true", headers=headers).json()
    assert body["total"] == 2
    assert body["pages"] == 1

    body = client.get(f"/api/v1/requests?campus_id={other_campus.id}", headers=headers).json()
    assert [r["title"] for r in body["data"]] == ["Other campus request"]


def test_list_requests_search_and_pagination(client, db, buyer):
    for i in range(3):
        make_request(db, buyer, title=f"Desk lamp {i}")
    make_request(db, buyer, title="Mattress", description="single size")

    headers = auth_headers(buyer)
    body = client.get("/api/v1/requests?search=LAMP&limit=2&page=2", headers=headers).json()

    assert body["total"] == 3
    assert body["results"] == 1
    assert body["page"] == 2
    assert body["pages"] == 2


def test_get_request_counts_views_and_returns_offers(client, db, buyer, seller):
    request_obj = make_request(db, buyer)
    make_offer(db, request_obj, seller, amount=4000)

    headers = auth_headers(seller)
    client.get(f"/api/v1/requests/{request_obj.id}", headers=headers)
    response = client.get(f"/api/v1/requests/{request_obj.id}", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["request"]["views"] == 2
    assert data["request"]["last_viewed"] is not None
    assert len(data["offers"]) == 1
    assert data["offers"][0]["amount"] == 4000


def test_get_unknown_request_is_404(client, buyer):
    response = client.get(
        "/api/v1/requests/00000000-0000-0000-0000-000000000000", headers=auth_headers(buyer)
    )
    assert response.status_code == 404
    assert response.json()["message"] == "Request not found"


def test_update_request_records_old_and_new_values(client, db, buyer):
    request_obj = make_request(db, buyer, desired_price=5000)

    response = client.patch(
        f"/api/v1/requests/{request_obj.id}",
        json={"desired_price": 6000, "priority": "high", "settings": {"allow_offers": False}},
        headers=auth_headers(buyer),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["desired_price"] == 6000
    assert data["priority"] == "high"
    assert data["allow_offers"] is False

    entry = (
        db.query(RequestHistory)
        .filter(RequestHistory.request_id == request_obj.id, RequestHistory.action == "updated")
        .one()
    )
    assert entry.old_value["desired_price"] == 5000
    assert entry.new_value["desired_price"] == 6000


def test_update_request_permissions(client, db, buyer, seller, moderator):
    request_obj = make_request(db, buyer)

    response = client.patch(
        f"/api/v1/requests/{request_obj.id}", json={"title": "Hijacked"}, headers=auth_headers(seller)
    )
    assert response.status_code == 403

    response = client.patch(
        f"/api/v1/requests/{request_obj.id}", json={"title": "Tidied by staff"}, headers=auth_headers(moderator)
    )
    assert response.status_code == 200


def test_update_request_rejects_null_for_required_fields(client, db, buyer):
    request_obj = make_request(db, buyer, priority="high")
    url = f"/api/v1/requests/{request_obj.id}"
    headers = auth_headers(buyer)

    response = client.patch(url, json={"priority": None}, headers=headers)
    assert response.status_code == 400
    assert "priority cannot be null" in response.json()["message"]

    response = client.patch(url, json={"settings": {"allow_offers": None}}, headers=headers)
    assert response.status_code == 400
    assert "allow_offers cannot be null" in response.json()["message"]

    response = client.patch(url, json={"description": None}, headers=headers)
    assert response.status_code == 200

    db.expire_all()
    stored = db.get(Request, request_obj.id)
    assert stored.priority == "high"
    assert stored.allow_offers is True
    assert stored.version_id == 2


def test_unknown_category_or_campus_is_not_found(client, db, buyer, category, other_campus):
    headers = auth_headers(buyer)

    response = client.post("/api/v1/requests", json={"title": "Bike", "category_id": 999}, headers=headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Category not found"

    response = client.post("/api/v1/requests", json={"title": "Bike", "campus_id": 999}, headers=headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Campus not found"

    request_obj = make_request(db, buyer)
    url = f"/api/v1/requests/{request_obj.id}"

    response = client.patch(url, json={"campus_id": 999}, headers=headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Campus not found"

    response = client.patch(url, json={"category_id": category.id, "campus_id": other_campus.id}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["category_id"] == category.id
    assert response.json()["data"]["campus_id"] == other_campus.id


def test_update_request_rejects_past_expiry(client, db, buyer):
    request_obj = make_request(db, buyer)
    original = request_obj.expires_at

    response = client.patch(
        f"/api/v1/requests/{request_obj.id}",
        json={"expires_at": past(hours=1).isoformat()},
        headers=auth_headers(buyer),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Expiration date must be in the future"
    db.expire_all()
    stored = db.get(Request, request_obj.id)
    assert stored.status == "open"
    assert stored.expires_at == original


def test_staff_can_resync_offers_count(client, db, buyer, seller, second_seller, moderator):
    request_obj = make_request(db, buyer)
    make_offer(db, request_obj, seller)
    make_offer(db, request_obj, second_seller, status="withdrawn")
    request_obj.offers_count = 7
    db.commit()
    url = f"/api/v1/requests/{request_obj.id}/sync-offers-count"

    response = client.post(url, headers=auth_headers(buyer))
    assert response.status_code == 403

    response = client.post(url, headers=auth_headers(moderator))
    assert response.status_code == 200
    assert response.json()["data"]["offers_count"] == 1
    db.expire_all()
    assert db.get(Request, request_obj.id).offers_count == 1


def test_fulfilled_request_cannot_be_updated_or_deleted(client, db, buyer):
    request_obj = make_request(db, buyer, status="fulfilled")
    headers = auth_headers(buyer)

    response = client.patch(f"/api/v1/requests/{request_obj.id}", json={"title": "New"}, headers=headers)
    assert response.status_code == 400

    response = client.delete(f"/api/v1/requests/{request_obj.id}", headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete a fulfilled request"


def test_delete_request_cancels_pending_offers(client, db, buyer, seller):
    request_obj = make_request(db, buyer)
    offer = make_offer(db, request_obj, seller)

    response = client.delete(f"/api/v1/requests/{request_obj.id}", headers=auth_headers(buyer))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "closed"
    db.expire_all()
    assert db.get(type(offer), offer.id).status == "cancelled"
    actions = [h.action for h in db.get(Request, request_obj.id).history]
    assert "deleted" in actions


def test_extend_request_by_days_and_to_date(client, db, buyer):
    request_obj = make_request(db, buyer)
    original = request_obj.expires_at
    headers = auth_headers(buyer)

    response = client.post(f"/api/v1/requests/{request_obj.id}/extend", json={}, headers=headers)
    assert response.status_code == 200
    db.expire_all()
    extended = db.get(Request, request_obj.id).expires_at
    assert extended - original == timedelta(days=7)

    target = (utcnow() + timedelta(days=90)).replace(microsecond=0)
    response = client.post(
        f"/api/v1/requests/{request_obj.id}/extend", json={"extend_to": target.isoformat()}, headers=headers
    )
    assert response.status_code == 200
    db.expire_all()
    assert db.get(Request, request_obj.id).expires_at == target

    response = client.post(
        f"/api/v1/requests/{request_obj.id}/extend",
        json={"extend_to": (utcnow() - timedelta(days=1)).isoformat()},
        headers=headers,
    )
    assert response.status_code == 400


def test_extend_caps_at_one_year(client, db, buyer):
    request_obj = make_request(db, buyer)
    original = request_obj.expires_at

    client.post(
        f"/api/v1/requests/{request_obj.id}/extend", json={"extend_by_days": 1000}, headers=auth_headers(buyer)
    )

    db.expire_all()
    assert db.get(Request, request_obj.id).expires_at - original == timedelta(days=365)


def test_upload_images_by_url_and_file(client, db, buyer):
    request_obj = make_request(db, buyer)
    headers = auth_headers(buyer)

    response = client.post(
        f"/api/v1/requests/{request_obj.id}/images",
        data={"image_urls": ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"]},
        files=[("files", ("photo.png", b"\x89PNG fake image bytes", "image/png"))],
        headers=headers,
    )

    assert response.status_code == 200
    images = response.json()["data"]["images"]
    assert len(images) == 3
    stored = [i for i in images if i["public_id"]]
    assert len(stored) == 1
    assert stored[0]["public_id"].startswith("requests/")

    db.expire_all()
    actions = [h.action for h in db.get(Request, request_obj.id).history]
    assert "images_uploaded" in actions


def test_upload_images_rules(client, db, buyer):
    request_obj = make_request(db, buyer)
    headers = auth_headers(buyer)
    url = f"/api/v1/requests/{request_obj.id}/images"

    response = client.post(url, data={}, headers=headers)
    assert response.status_code == 400

    response = client.post(
        url, files=[("files", ("notes.txt", b"plain text", "text/plain"))], headers=headers
    )
    assert response.status_code == 400

    six = [f"https://cdn.example.com/{i}.jpg" for i in range(6)]
    response = client.post(url, data={"image_urls": six}, headers=headers)
    assert response.status_code == 400
    assert "maximum of 5" in response.json()["message"]


def test_history_is_newest_first_and_filterable(client, db, buyer):
    request_obj = make_request(db, buyer)
    headers = auth_headers(buyer)
    client.patch(f"/api/v1/requests/{request_obj.id}", json={"title": "Edited"}, headers=headers)
    client.post(f"/api/v1/requests/{request_obj.id}/extend", json={"extend_by_days": 3}, headers=headers)

    body = client.get(f"/api/v1/requests/{request_obj.id}/history", headers=headers).json()
    assert [h["action"] for h in body["data"]] == ["extended", "updated", "created"]
    assert "timestamp" in body["data"][0]

    body = client.get(f"/api/v1/requests/{request_obj.id}/history?action=updated", headers=headers).json()
    assert body["total"] == 1


def test_advanced_search_filters_and_sorting(client, db, buyer):
    make_request(db, buyer, title="Cheap", desired_price=1000, priority="low", views=60, offers_count=6)
    make_request(db, buyer, title="Pricey", desired_price=9000, priority="urgent")
    make_request(db, buyer, title="Done", desired_price=3000, status="fulfilled")
    headers = auth_headers(buyer)

    body = client.get("/api/v1/requests/search/advanced?sort_by=priceDesc", headers=headers).json()
    assert [r["title"] for r in body["data"]] == ["Pricey", "Cheap"]

    body = client.get("/api/v1/requests/search/advanced?fulfilled=true", headers=headers).json()
    assert [r["title"] for r in body["data"]] == ["Done"]

    body = client.get("/api/v1/requests/search/advanced?popularity=high", headers=headers).json()
    assert [r["title"] for r in body["data"]] == ["Cheap"]

    body = client.get("/api/v1/requests/search/advanced?sort_by=priority", headers=headers).json()
    assert body["data"][0]["title"] == "Pricey"

    body = client.get("/api/v1/requests/search/advanced?min_price=2000&max_price=10000", headers=headers).json()
    assert [r["title"] for r in body["data"]] == ["Pricey"]


def test_analytics_for_own_requests(client, db, buyer, seller):
    make_request(db, buyer, status="fulfilled", views=10)
    make_request(db, buyer, views=20)
    make_request(db, seller, views=100)

    body = client.get("/api/v1/requests/analytics?period=all", headers=auth_headers(buyer)).json()

    data = body["data"]
    assert data["total"] == 2
    assert data["fulfilled"] == 1
    assert data["fulfillment_rate"] == 0.5
    assert data["avg_views"] == 15


def test_my_requests(client, db, buyer, seller):
    make_request(db, buyer, title="Mine")
    make_request(db, seller, title="Not mine")

    body = client.get("/api/v1/requests/mine", headers=auth_headers(buyer)).json()
    assert [r["title"] for r in body["data"]] == ["Mine"]


def test_expired_request_closes_on_next_write(db, buyer):
    request_obj = make_request(db, buyer)
    request_obj.expires_at = past(days=1)
    db.commit()

    db.refresh(request_obj)
    assert request_obj.status == "closed"
    assert request_obj.history[-1].details == "Request expired"
