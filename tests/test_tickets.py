from datetime import timedelta

from bson import ObjectId

from conftest import category
from sportstix import models
from sportstix.utils import iso, iso_now, now_utc


def _buy(client, headers, event, cat="bleachers", quantity=1, **extra):
    body = {"event_id": str(event["_id"]), "category": cat, "quantity": quantity, "payment_method": "credit_card"}
    body.update(extra)
    return client.post("/api/tickets", json=body, headers=headers)


def _available(db, event, cat="bleachers"):
    doc = db.events.find_one({"_id": event["_id"]})
    return next(c["available_seats"] for c in doc["ticket_categories"] if c["name"] == cat)


def _insert_ticket(db, user, event, status="active", qr="TICKET-manual-1", price=100.0):
    doc = {
        "event": event["_id"],
        "user": user["_id"],
        "seat_info": {"category": "bleachers", "section": None, "row": None, "seat_number": "AUTO-1-0"},
        "price": price,
        "purchase_date": iso_now(),
        "status": status,
        "qr_code": qr,
        "payment_info": {"method": "credit_card", "transaction_id": "TXN-1", "amount": price},
        "is_season_pass": False,
        "season_pass_id": None,
        "discount_applied": 0.0,
        "loyalty_points_earned": 10,
    }
    doc["_id"] = db.tickets.insert_one(doc).inserted_id
    return doc


# -------------------------
# Purchase
# -------------------------
def test_purchase_decrements_exactly_quantity(client, db, make_user, make_event):
    user, headers = make_user()
    event = make_event()

    r = _buy(client, headers, event, quantity=3)

    assert r.status_code == 201
    body = r.get_json()
    assert body["message"] == "3 tickets purchased successfully"
    assert len(body["data"]) == 3
    assert _available(db, event) == 47
    assert db.tickets.count_documents({"event": event["_id"], "status": "active"}) == 3
    assert len({t["qr_code"] for t in body["data"]}) == 3
    assert all(t["qr_code"].startswith(f"TICKET-{t['id']}-") for t in body["data"])
    assert all(t["seat_info"]["seat_number"].startswith("AUTO-") for t in body["data"])
    assert db.users.find_one({"_id": user["_id"]})["loyalty_points"] == 10
    assert [t["loyalty_points_earned"] for t in body["data"]] == [10, 0, 0]


def test_single_ticket_message(client, make_user, make_event):
    _, headers = make_user()
    r = _buy(client, headers, make_event())
    assert r.status_code == 201
    assert r.get_json()["message"] == "1 ticket purchased successfully"


def test_purchase_rejected_when_not_enough_seats(client, db, make_user, make_event):
    _, headers = make_user()
    event = make_event(categories=[category("vip", 250.0, total=10, available=2)])

    r = _buy(client, headers, event, cat="vip", quantity=3)

    assert r.status_code == 400
    assert r.get_json()["message"] == "Insufficient seats available"
    assert _available(db, event, "vip") == 2
    assert db.tickets.count_documents({}) == 0


def test_purchase_requires_auth(client, make_event):
    r = _buy(client, {}, make_event())
    assert r.status_code == 401
    assert r.get_json()["message"] == "Not authorized, no token"


def test_purchase_for_past_event_rejected(client, db, make_user, make_event):
    _, headers = make_user()
    event = make_event(hours=-2)

    r = _buy(client, headers, event)

    assert r.status_code == 400
    assert r.get_json()["message"] == "Cannot purchase tickets for past events"
    assert _available(db, event) == 50


def test_purchase_unknown_or_inactive_event(client, make_user, make_event):
    _, headers = make_user()
    r = _buy(client, headers, {"_id": ObjectId()})
    assert r.status_code == 404
    assert r.get_json()["message"] == "Event not found"

    r = _buy(client, headers, make_event(is_active=False))
    assert r.status_code == 404


def test_purchase_category_missing_from_event(client, make_user, make_event):
    _, headers = make_user()
    event = make_event(categories=[category("bleachers")])

    r = _buy(client, headers, event, cat="box")

    assert r.status_code == 400
    assert r.get_json()["message"] == "Invalid ticket category"


def test_purchase_validation_errors(client, make_user, make_event):
    _, headers = make_user()
    event = make_event()

    r = _buy(client, headers, event, quantity=11)
    assert r.status_code == 400
    assert r.get_json()["errors"][0]["field"] == "quantity"

    r = _buy(client, headers, event, payment_method="cash")
    assert r.status_code == 400
    assert r.get_json()["message"] == "Please select a valid payment method"

    r = client.post("/api/tickets", json={"category": "vip", "payment_method": "paypal"}, headers=headers)
    assert r.status_code == 400
    assert {"field": "event_id", "message": "Please provide a valid event ID"} in r.get_json()["errors"]


def test_gold_member_gets_ten_percent_off(client, db, make_user, make_event):
    user, headers = make_user(points=5000, tier="gold")
    r = _buy(client, headers, make_event())

    ticket = r.get_json()["data"][0]
    assert ticket["price"] == 90.0
    assert ticket["discount_applied"] == 10.0
    assert ticket["loyalty_points_earned"] == 9
    assert db.users.find_one({"_id": user["_id"]})["loyalty_points"] == 5009


def test_platinum_member_gets_fifteen_percent_off(client, make_user, make_event):
    _, headers = make_user(points=12000, tier="platinum")
    r = _buy(client, headers, make_event())
    assert r.get_json()["data"][0]["price"] == 85.0


def test_season_pass_discount_stacks_with_loyalty(client, db, make_user, make_event, make_pass):
    user, headers = make_user(points=5000, tier="gold")
    season_pass = make_pass(user)

    r = _buy(client, headers, make_event(), quantity=2, season_pass_id=str(season_pass["_id"]))

    assert r.status_code == 201
    tickets = r.get_json()["data"]
    assert [t["price"] for t in tickets] == [70.0, 70.0]
    assert all(t["is_season_pass"] for t in tickets)
    assert all(t["season_pass_id"] == str(season_pass["_id"]) for t in tickets)
    assert db.season_passes.find_one({"_id": season_pass["_id"]})["events_used"] == 2


def test_season_pass_for_other_sport_is_ignored(client, make_user, make_event, make_pass):
    user, headers = make_user()
    season_pass = make_pass(user, sport="cricket")

    r = _buy(client, headers, make_event(), season_pass_id=str(season_pass["_id"]))

    ticket = r.get_json()["data"][0]
    assert ticket["price"] == 100.0
    assert ticket["is_season_pass"] is False
    assert ticket["season_pass_id"] is None


def test_season_pass_without_discount_benefit_links_but_full_price(client, make_user, make_event, make_pass):
    user, headers = make_user()
    season_pass = make_pass(user, sport="all", benefits=("free_parking",))

    ticket = _buy(client, headers, make_event(), season_pass_id=str(season_pass["_id"])).get_json()["data"][0]

    assert ticket["price"] == 100.0
    assert ticket["is_season_pass"] is True


def test_someone_elses_season_pass_is_ignored(client, make_user, make_event, make_pass):
    owner, _ = make_user(email="owner@example.com")
    _, headers = make_user(email="other@example.com")
    season_pass = make_pass(owner)

    ticket = _buy(client, headers, make_event(), season_pass_id=str(season_pass["_id"])).get_json()["data"][0]

    assert ticket["is_season_pass"] is False
    assert ticket["price"] == 100.0


def test_capped_season_pass_rejects_oversized_purchase(client, db, make_user, make_event, make_pass):
    user, headers = make_user()
    season_pass = make_pass(user, max_events=1)
    event = make_event()

    r = _buy(client, headers, event, quantity=2, season_pass_id=str(season_pass["_id"]))

    assert r.status_code == 400
    assert _available(db, event) == 50
    assert db.season_passes.find_one({"_id": season_pass["_id"]})["events_used"] == 0


def test_pass_used_up_meanwhile_leaves_seats_and_tickets_alone(client, db, make_user, make_event, make_pass,
                                                               monkeypatch):
    user, headers = make_user()
    season_pass = make_pass(user, max_events=3)
    event = make_event()
    can_use = models.season_pass_can_use_for_event

    def used_elsewhere(candidate, ev, now=None):
        result = can_use(candidate, ev, now)
        db.season_passes.update_one({"_id": season_pass["_id"]}, {"$set": {"events_used": 1}})
        return result

    monkeypatch.setattr(models, "season_pass_can_use_for_event", used_elsewhere)

    r = _buy(client, headers, event, quantity=3, season_pass_id=str(season_pass["_id"]))

    assert r.status_code == 400
    assert r.get_json()["message"] == "Maximum events reached for this season pass"
    assert db.tickets.count_documents({}) == 0
    assert _available(db, event) == 50
    assert db.season_passes.find_one({"_id": season_pass["_id"]})["events_used"] == 1


def test_pass_use_given_back_when_seats_are_gone(client, db, make_user, make_event, make_pass, monkeypatch):
    user, headers = make_user()
    season_pass = make_pass(user, max_events=5)
    event = make_event()

    def sold_out(*args, **kwargs):
        raise models.InsufficientSeats()

    monkeypatch.setattr(models, "reserve_seats", sold_out)

    r = _buy(client, headers, event, quantity=2, season_pass_id=str(season_pass["_id"]))

    assert r.status_code == 400
    assert r.get_json()["message"] == "Insufficient seats available"
    assert db.tickets.count_documents({}) == 0
    assert db.season_passes.find_one({"_id": season_pass["_id"]})["events_used"] == 0
    assert db.users.find_one({"_id": user["_id"]})["loyalty_points"] == 0


def test_non_finite_quantity_is_a_validation_error(client, db, make_user, make_event):
    _, headers = make_user()
    event = make_event()

    for raw in ("1e400", "NaN", "-Infinity"):
        r = client.post(
            "/api/tickets",
            data=f'{{"event_id": "{event["_id"]}", "category": "bleachers", "quantity": {raw}, '
                 f'"payment_method": "credit_card"}}',
            content_type="application/json",
            headers=headers,
        )
        assert r.status_code == 400
        assert r.get_json()["errors"][0]["field"] == "quantity"

    assert _available(db, event) == 50


def test_available_never_exceeds_total_after_mixed_activity(client, db, make_user, make_event):
    _, headers = make_user()
    event = make_event(categories=[category("bleachers", 20.0, total=5)])

    bought = []
    for _ in range(3):
        bought += _buy(client, headers, event, quantity=2).get_json().get("data") or []
    for t in bought[:2]:
        client.put(f"/api/tickets/{t['id']}/cancel", headers=headers)

    doc = db.events.find_one({"_id": event["_id"]})
    cat = doc["ticket_categories"][0]
    assert 0 <= cat["available_seats"] <= cat["total_seats"]
    sold = cat["total_seats"] - cat["available_seats"]
    assert sold == db.tickets.count_documents({"event": event["_id"], "status": "active"})


# -------------------------
# Listing / detail
# -------------------------
def test_list_shows_only_own_tickets(client, make_user, make_event):
    _, mine = make_user(email="me@example.com")
    _, theirs = make_user(email="them@example.com")
    event = make_event()
    _buy(client, mine, event, quantity=2)
    _buy(client, theirs, event)

    r = client.get("/api/tickets", headers=mine)

    body = r.get_json()
    assert body["count"] == 2
    assert body["pagination"]["total"] == 2
    assert body["data"][0]["event"]["title"] == "Lions vs Tigers"


def test_list_filters_by_status(client, db, make_user, make_event):
    user, headers = make_user()
    event = make_event()
    _insert_ticket(db, user, event, qr="A")
    _insert_ticket(db, user, event, status="cancelled", qr="B")

    body = client.get("/api/tickets?status=cancelled", headers=headers).get_json()

    assert [t["qr_code"] for t in body["data"]] == ["B"]


def test_ticket_detail_owner_or_admin_only(client, db, make_user, make_event, admin_headers):
    owner, owner_headers = make_user(email="owner@example.com")
    _, other_headers = make_user(email="other@example.com")
    ticket = _insert_ticket(db, owner, make_event())

    assert client.get(f"/api/tickets/{ticket['_id']}", headers=owner_headers).status_code == 200
    assert client.get(f"/api/tickets/{ticket['_id']}", headers=other_headers).status_code == 403

    r = client.get(f"/api/tickets/{ticket['_id']}", headers=admin_headers)
    assert r.status_code == 200
    assert r.get_json()["data"]["user"]["email"] == "owner@example.com"
    assert r.get_json()["data"]["event"]["title"] == "Lions vs Tigers"


def test_ticket_detail_not_found(client, make_user):
    _, headers = make_user()
    assert client.get(f"/api/tickets/{ObjectId()}", headers=headers).status_code == 404
    assert client.get("/api/tickets/not-an-id", headers=headers).status_code == 404


# -------------------------
# Cancel
# -------------------------
def test_cancel_releases_seat_and_claws_back_points(client, db, make_user, make_event):
    user, headers = make_user()
    event = make_event()
    ticket = _buy(client, headers, event).get_json()["data"][0]
    assert _available(db, event) == 49

    r = client.put(f"/api/tickets/{ticket['id']}/cancel", headers=headers)

    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "cancelled"
    assert _available(db, event) == 50
    assert db.users.find_one({"_id": user["_id"]})["loyalty_points"] == 0


def test_cancel_within_24_hours_rejected(client, db, make_user, make_event):
    _, headers = make_user()
    event = make_event()
    ticket = _buy(client, headers, event).get_json()["data"][0]
    db.events.update_one({"_id": event["_id"]}, {"$set": {"date": iso(now_utc() + timedelta(hours=5))}})

    r = client.put(f"/api/tickets/{ticket['id']}/cancel", headers=headers)

    assert r.status_code == 400
    assert r.get_json()["message"] == "Tickets cannot be cancelled less than 24 hours before the event"
    assert db.tickets.find_one({"_id": ObjectId(ticket["id"])})["status"] == "active"
    assert _available(db, event) == 49


def test_cancel_twice_rejected(client, make_user, make_event):
    _, headers = make_user()
    ticket = _buy(client, headers, make_event()).get_json()["data"][0]

    client.put(f"/api/tickets/{ticket['id']}/cancel", headers=headers)
    r = client.put(f"/api/tickets/{ticket['id']}/cancel", headers=headers)

    assert r.status_code == 400
    assert r.get_json()["message"] == "Ticket cannot be cancelled"


def test_cancel_someone_elses_ticket_forbidden(client, db, make_user, make_event):
    owner, _ = make_user(email="owner@example.com")
    _, headers = make_user(email="other@example.com")
    ticket = _insert_ticket(db, owner, make_event())

    r = client.put(f"/api/tickets/{ticket['_id']}/cancel", headers=headers)

    assert r.status_code == 403
    assert db.tickets.find_one({"_id": ticket["_id"]})["status"] == "active"


# -------------------------
# Validate
# -------------------------
def test_validate_marks_used_once(client, db, make_user, make_event, admin_headers):
    user, _ = make_user(name="Jordan")
    event = make_event(hours=0)
    ticket = _insert_ticket(db, user, event, qr="TICKET-today-1")

    r = client.post("/api/tickets/validate", json={"qr_code": "TICKET-today-1"}, headers=admin_headers)

    assert r.status_code == 200
    data = r.get_json()["data"]["ticket"]
    assert data["status"] == "used"
    assert data["user"] == "Jordan"
    assert data["event"] == "Lions vs Tigers"
    assert db.tickets.find_one({"_id": ticket["_id"]})["status"] == "used"

    again = client.post("/api/tickets/validate", json={"qr_code": "TICKET-today-1"}, headers=admin_headers)
    assert again.status_code == 400
    assert again.get_json()["message"] == "Ticket is used"


def test_validate_unknown_code(client, admin_headers):
    r = client.post("/api/tickets/validate", json={"qr_code": "TICKET-nope"}, headers=admin_headers)
    assert r.status_code == 404
    assert r.get_json()["message"] == "Invalid ticket"


def test_validate_requires_code(client, admin_headers):
    r = client.post("/api/tickets/validate", json={}, headers=admin_headers)
    assert r.status_code == 400
    assert r.get_json()["errors"] == [{"field": "qr_code", "message": "QR code is required"}]


def test_validate_wrong_day(client, db, make_user, make_event, admin_headers):
    user, _ = make_user()
    _insert_ticket(db, user, make_event(hours=72), qr="TICKET-later")

    r = client.post("/api/tickets/validate", json={"qr_code": "TICKET-later"}, headers=admin_headers)

    assert r.status_code == 400
    assert r.get_json()["message"] == "Ticket is not valid for today"


def test_validate_is_admin_only(client, db, make_user, make_event):
    user, headers = make_user()
    _insert_ticket(db, user, make_event(hours=0), qr="TICKET-x")

    r = client.post("/api/tickets/validate", json={"qr_code": "TICKET-x"}, headers=headers)

    assert r.status_code == 403
    assert db.tickets.find_one({"qr_code": "TICKET-x"})["status"] == "active"
