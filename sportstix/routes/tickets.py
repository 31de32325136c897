from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from bson import ObjectId
from flask import Blueprint, request
from flask_login import current_user
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from .. import emails, models
from ..auth import authorize
from ..db import get_db
from ..errors import ApiError, forbidden, not_found, ok
from ..serializers import event_summary, public_event, public_season_pass, public_ticket, season_pass_summary
from ..utils import iso_now, maybe_oid, now_utc, pagination, parse_datetime
from ..validation import FieldErrors, check_choice, check_number, check_oid, query_int, require_json

logger = logging.getLogger(__name__)

bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")


def _get_ticket(ticket_id: str) -> Dict[str, Any]:
    oid = maybe_oid(ticket_id)
    t = get_db().tickets.find_one({"_id": oid}) if oid else None
    if not t:
        raise not_found("Ticket")
    return t


# -------------------------
# Ticket APIs
# -------------------------
@bp.get("")
@authorize()
def list_my_tickets():
    page = query_int("page", 1)
    limit = query_int("limit", 10, max_value=100)

    query: Dict[str, Any] = {"user": current_user.oid}
    if request.args.get("status"):
        query["status"] = request.args["status"]
    if request.args.get("event"):
        event_oid = maybe_oid(request.args["event"])
        if event_oid is None:
            raise ApiError("event must be a valid id.", 400, "validation_error", {"field": "event"})
        query["event"] = event_oid

    db = get_db()
    total = db.tickets.count_documents(query)
    docs = list(db.tickets.find(query).sort("purchase_date", DESCENDING).skip((page - 1) * limit).limit(limit))

    event_ids = list({d["event"] for d in docs if d.get("event")})
    pass_ids = list({d["season_pass_id"] for d in docs if d.get("season_pass_id")})
    events_map = {e["_id"]: e for e in db.events.find({"_id": {"$in": event_ids}})}
    passes_map = {p["_id"]: p for p in db.season_passes.find({"_id": {"$in": pass_ids}})}

    out = [
        public_ticket(
            t,
            event=event_summary(events_map.get(t.get("event"))),
            season_pass=season_pass_summary(passes_map.get(t.get("season_pass_id"))),
        )
        for t in docs
    ]
    return ok(out, count=len(out), pagination=pagination(page, limit, total))


@bp.get("/<ticket_id>")
@authorize()
def get_ticket(ticket_id: str):
    t = _get_ticket(ticket_id)
    if t.get("user") != current_user.oid and not current_user.is_admin:
        raise forbidden("Not authorized to view this ticket")

    db = get_db()
    event = db.events.find_one({"_id": t.get("event")})
    user = db.users.find_one({"_id": t.get("user")})
    season_pass = db.season_passes.find_one({"_id": t["season_pass_id"]}) if t.get("season_pass_id") else None
    return ok(
        public_ticket(
            t,
            event=public_event(event) if event else None,
            user=user,
            season_pass=public_season_pass(season_pass) if season_pass else None,
        )
    )


def _validate_purchase(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = FieldErrors()
    out: Dict[str, Any] = {
        "event_id": check_oid(errors, data.get("event_id"), "event_id", "Please provide a valid event ID"),
        "category": check_choice(errors, data.get("category"), "category", models.CATEGORIES,
                                 "Please select a valid ticket category"),
        "quantity": 1,
        "season_pass_id": None,
        "payment_method": check_choice(errors, data.get("payment_method"), "payment_method",
                                       models.PAYMENT_METHODS, "Please select a valid payment method"),
    }
    if data.get("quantity") is not None:
        qty = check_number(errors, data.get("quantity"), "quantity", "Quantity must be between 1 and 10",
                           min_value=1, integer=True)
        if qty is not None and qty > 10:
            errors.add("quantity", "Quantity must be between 1 and 10")
        out["quantity"] = qty
    if data.get("season_pass_id"):
        out["season_pass_id"] = check_oid(errors, data.get("season_pass_id"), "season_pass_id",
                                          "Please provide a valid season pass ID")
    errors.raise_if_any()
    return out


def price_breakdown(base_price: float, loyalty_tier: str, pass_discount: bool) -> Dict[str, float]:
    """Season-pass and loyalty discounts both come off the base price and add up."""
    discount = 0.0
    if pass_discount:
        discount += base_price * models.SEASON_PASS_DISCOUNT
    discount += base_price * models.loyalty_discount_rate(loyalty_tier)
    discount = round(discount, 2)
    return {"base": base_price, "discount": discount, "final": round(base_price - discount, 2)}


@bp.post("")
@authorize()
def purchase_tickets():
    req = _validate_purchase(require_json())
    quantity = req["quantity"]
    category = req["category"]
    db = get_db()

    event = db.events.find_one({"_id": req["event_id"], "is_active": {"$ne": False}})
    if not event:
        raise not_found("Event")
    event_date = parse_datetime(event.get("date"))
    if event_date is None or event_date <= now_utc():
        raise ApiError("Cannot purchase tickets for past events", 400, "event_past")

    ticket_category = models.find_category(event, category)
    if not ticket_category:
        raise ApiError("Invalid ticket category", 400, "invalid_category", {"field": "category"})
    if not models.check_seat_availability(event, category, quantity):
        raise models.InsufficientSeats()

    season_pass = None
    if req["season_pass_id"]:
        candidate = db.season_passes.find_one({"_id": req["season_pass_id"], "user": current_user.oid})
        if candidate and models.season_pass_can_use_for_event(candidate, event):
            remaining = models.season_pass_remaining(candidate)
            if remaining != "unlimited" and remaining < quantity:
                raise ApiError("Season pass does not have enough remaining events", 400, "season_pass_exhausted")
            season_pass = candidate

    buyer = db.users.find_one({"_id": current_user.oid})
    prices = price_breakdown(
        float(ticket_category.get("price", 0.0)),
        buyer.get("loyalty_tier", "bronze"),
        bool(season_pass and "discounted_tickets" in (season_pass.get("benefits") or [])),
    )
    points = models.loyalty_points_for(prices["final"])

    # Pass uses are claimed before seats; both are given back if a later step fails.
    if season_pass:
        models.use_season_pass(db, season_pass["_id"], quantity)
    try:
        models.reserve_seats(db, event["_id"], category, quantity)
    except ApiError:
        if season_pass:
            models.release_season_pass(db, season_pass["_id"], quantity)
        raise

    purchased_at = iso_now()
    tickets: List[Dict[str, Any]] = []
    for i in range(quantity):
        ticket_id = ObjectId()
        tickets.append(
            {
                "_id": ticket_id,
                "event": event["_id"],
                "user": current_user.oid,
                "seat_info": {
                    "category": category,
                    "section": None,
                    "row": None,
                    # Specific seat assignment is not modelled yet.
                    "seat_number": models.placeholder_seat_number(i),
                },
                "price": prices["final"],
                "purchase_date": purchased_at,
                "status": "active",
                "qr_code": models.generate_qr_code(ticket_id),
                "payment_info": {
                    "method": req["payment_method"],
                    "transaction_id": f"TXN-{uuid.uuid4().hex[:16].upper()}",
                    "amount": prices["final"],
                },
                "is_season_pass": season_pass is not None,
                "season_pass_id": season_pass["_id"] if season_pass else None,
                "discount_applied": prices["discount"],
                "loyalty_points_earned": points if i == 0 else 0,
                "created_at": purchased_at,
                "updated_at": purchased_at,
            }
        )

    try:
        db.tickets.insert_many(tickets)
    except PyMongoError as ex:
        # Best-effort rollback if recording tickets fails (rare):
        logger.exception("Failed to record tickets; releasing %s %s seat(s)", quantity, category)
        db.tickets.delete_many({"_id": {"$in": [t["_id"] for t in tickets]}})
        models.release_seats(db, event["_id"], category, quantity)
        if season_pass:
            models.release_season_pass(db, season_pass["_id"], quantity)
        raise ApiError("Failed to purchase ticket", 500, "db_error", {"detail": str(ex)})

    # Points are awarded once per purchase, not per ticket.
    buyer = models.apply_loyalty_points(db, current_user.oid, points) or buyer

    venue = db.venues.find_one({"_id": event.get("venue")}) if event.get("venue") else None
    for t in tickets:
        emails.send_quietly(buyer["email"], emails.ticket_confirmation(t, event, buyer, venue))

    return ok(
        [public_ticket(t) for t in tickets],
        201,
        message=f"{quantity} ticket{'s' if quantity > 1 else ''} purchased successfully",
    )


@bp.put("/<ticket_id>/cancel")
@authorize()
def cancel_ticket(ticket_id: str):
    t = _get_ticket(ticket_id)
    if t.get("user") != current_user.oid:
        raise forbidden("Not authorized to cancel this ticket")
    if t.get("status") != "active":
        raise ApiError("Ticket cannot be cancelled", 400, "ticket_not_active")

    db = get_db()
    event = db.events.find_one({"_id": t.get("event")})
    if not event:
        raise not_found("Event")
    if models.hours_until(event.get("date")) < models.CANCELLATION_CUTOFF_HOURS:
        raise ApiError("Tickets cannot be cancelled less than 24 hours before the event", 400, "cancellation_window")

    cancelled = models.cancel_ticket(db, t["_id"])
    models.release_seats(db, event["_id"], (t.get("seat_info") or {}).get("category"), 1)
    models.apply_loyalty_points(db, current_user.oid, -models.loyalty_points_for(float(t.get("price", 0.0))))
    return ok(public_ticket(cancelled), message="Ticket cancelled successfully")


@bp.post("/validate")
@authorize("admin")
def validate_ticket():
    data = require_json()
    qr_code = (data.get("qr_code") or "").strip()
    if not qr_code:
        errors = FieldErrors()
        errors.add("qr_code", "QR code is required")
        errors.raise_if_any()

    db = get_db()
    t = db.tickets.find_one({"qr_code": qr_code})
    if not t:
        raise ApiError("Invalid ticket", 404, "not_found")
    if t.get("status") != "active":
        raise models.TicketNotActive(t.get("status", "unknown"))

    event = db.events.find_one({"_id": t.get("event")}) or {}
    event_date = parse_datetime(event.get("date"))
    if event_date is None or event_date.date() != now_utc().date():
        raise ApiError("Ticket is not valid for today", 400, "wrong_day")

    used = models.mark_ticket_used(db, t["_id"])
    holder = db.users.find_one({"_id": t.get("user")}) or {}
    return ok(
        {
            "ticket": {
                "id": str(used["_id"]),
                "event": event.get("title", ""),
                "user": holder.get("name", ""),
                "seat": used.get("seat_info") or {},
                "status": used["status"],
            }
        },
        message="Ticket validated successfully",
    )
