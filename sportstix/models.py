"""Document-level rules for events, tickets, season passes and loyalty.

Documents are plain dicts as returned by PyMongo. Every mutation that has a
precondition is written as a single conditional update so the precondition
and the write happen in one round-trip.
"""
from __future__ import annotations

import math
import time
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from .errors import ApiError
from .utils import iso_now, now_utc, parse_datetime

SPORTS = ("football", "cricket", "basketball", "baseball", "soccer", "tennis", "other")
PASS_SPORTS = ("football", "cricket", "basketball", "baseball", "soccer", "tennis", "all")
CATEGORIES = ("bleachers", "vip", "premium", "box")
EVENT_STATUSES = ("upcoming", "live", "completed", "cancelled")
TICKET_STATUSES = ("active", "used", "cancelled", "refunded")
PASS_STATUSES = ("active", "expired", "cancelled")
PASS_TYPES = ("single_sport", "multi_sport", "vip", "premium")
PASS_BENEFITS = (
    "priority_booking",
    "discounted_tickets",
    "vip_lounge_access",
    "free_parking",
    "exclusive_events",
    "merchandise_discount",
    "loyalty_points_bonus",
)
PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "bank_transfer")
ROLES = ("user", "admin")

# Minimum cumulative points per tier, highest first.
LOYALTY_TIERS = (("platinum", 10000), ("gold", 5000), ("silver", 1000), ("bronze", 0))
LOYALTY_DISCOUNTS = {"gold": 0.10, "platinum": 0.15}
SEASON_PASS_DISCOUNT = 0.20
LOYALTY_POINTS_RATE = 0.10
CANCELLATION_CUTOFF_HOURS = 24


class InsufficientSeats(ApiError):
    def __init__(self) -> None:
        super().__init__("Insufficient seats available", 400, "insufficient_seats")


class TicketNotActive(ApiError):
    def __init__(self, status: str) -> None:
        super().__init__(f"Ticket is {status}", 400, "ticket_not_active")


# -------------------------
# Loyalty
# -------------------------
def loyalty_tier_for(points: int) -> str:
    for tier, minimum in LOYALTY_TIERS:
        if points >= minimum:
            return tier
    return "bronze"


def loyalty_discount_rate(tier: Optional[str]) -> float:
    return LOYALTY_DISCOUNTS.get(tier or "", 0.0)


def loyalty_points_for(price: float) -> int:
    return int(math.floor(price * LOYALTY_POINTS_RATE))


def apply_loyalty_points(db: Database, user_id: ObjectId, delta: int) -> Optional[Dict[str, Any]]:
    """Add (or claw back) points, never going below zero, and recompute the tier.

    Runs as a single pipeline update so concurrent purchases cannot lose points.
    """
    points = {"$max": [0, {"$add": [{"$ifNull": ["$loyalty_points", 0]}, delta]}]}
    tier = {
        "$switch": {
            "branches": [
                {"case": {"$gte": ["$loyalty_points", minimum]}, "then": name}
                for name, minimum in LOYALTY_TIERS
                if minimum > 0
            ],
            "default": "bronze",
        }
    }
    return db.users.find_one_and_update(
        {"_id": user_id},
        [
            {"$set": {"loyalty_points": points}},
            {"$set": {"loyalty_tier": tier, "updated_at": iso_now()}},
        ],
        return_document=ReturnDocument.AFTER,
    )


# -------------------------
# Events and seats
# -------------------------
def find_category(event: Dict[str, Any], name: str) -> Optional[Dict[str, Any]]:
    for cat in event.get("ticket_categories") or []:
        if cat.get("name") == name:
            return cat
    return None


def check_seat_availability(event: Dict[str, Any], name: str, quantity: int = 1) -> bool:
    cat = find_category(event, name)
    if not cat:
        return False
    return int(cat.get("available_seats", 0)) >= quantity


def reserve_seats(db: Database, event_id: ObjectId, name: str, quantity: int = 1) -> Dict[str, Any]:
    """Compare-and-decrement: only matches while the category still has `quantity` seats."""
    updated = db.events.find_one_and_update(
        {
            "_id": event_id,
            "ticket_categories": {"$elemMatch": {"name": name, "available_seats": {"$gte": quantity}}},
        },
        {"$inc": {"ticket_categories.$.available_seats": -quantity}, "$set": {"updated_at": iso_now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise InsufficientSeats()
    return updated


def release_seats(db: Database, event_id: ObjectId, name: str, quantity: int = 1) -> bool:
    event = db.events.find_one({"_id": event_id}, {"ticket_categories": 1})
    cat = find_category(event or {}, name)
    if not cat:
        return False
    room = int(cat.get("total_seats", 0)) - int(cat.get("available_seats", 0))
    quantity = min(quantity, room)
    if quantity <= 0:
        return False
    res = db.events.update_one(
        {
            "_id": event_id,
            "ticket_categories": {"$elemMatch": {"name": name, "available_seats": {"$lte": cat["total_seats"] - quantity}}},
        },
        {"$inc": {"ticket_categories.$.available_seats": quantity}, "$set": {"updated_at": iso_now()}},
    )
    return res.modified_count == 1


def event_is_sold_out(event: Dict[str, Any]) -> bool:
    return all(int(c.get("available_seats", 0)) == 0 for c in event.get("ticket_categories") or [])


def total_tickets_sold(event: Dict[str, Any]) -> int:
    return sum(
        int(c.get("total_seats", 0)) - int(c.get("available_seats", 0))
        for c in event.get("ticket_categories") or []
    )


def event_stats(event: Dict[str, Any]) -> Dict[str, Any]:
    categories = []
    for c in event.get("ticket_categories") or []:
        total = int(c.get("total_seats", 0))
        available = int(c.get("available_seats", 0))
        price = float(c.get("price", 0.0))
        categories.append(
            {
                "name": c.get("name"),
                "total_seats": total,
                "available_seats": available,
                "sold_seats": total - available,
                "price": price,
                "revenue": round((total - available) * price, 2),
            }
        )
    return {
        "total_seats": sum(c["total_seats"] for c in categories),
        "available_seats": sum(c["available_seats"] for c in categories),
        "sold_seats": sum(c["sold_seats"] for c in categories),
        "revenue": round(sum(c["revenue"] for c in categories), 2),
        "categories": categories,
    }


# -------------------------
# Venues
# -------------------------
def venue_full_address(venue: Dict[str, Any]) -> str:
    a = venue.get("address") or {}
    return f"{a.get('street', '')}, {a.get('city', '')}, {a.get('state', '')} {a.get('zip_code', '')}, {a.get('country', '')}"


def venue_seats_for_category(venue: Dict[str, Any], category: str) -> int:
    for sec in (venue.get("seat_map") or {}).get("sections") or []:
        if sec.get("category") == category:
            return int(sec.get("rows") or 0) * int(sec.get("seats_per_row") or 0)
    return 0


# -------------------------
# Season passes
# -------------------------
def season_pass_is_valid(season_pass: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or now_utc()
    period = season_pass.get("validity_period") or {}
    start = parse_datetime(period.get("start"))
    end = parse_datetime(period.get("end"))
    if season_pass.get("status") != "active" or not start or not end:
        return False
    if not (start <= now <= end):
        return False
    cap = season_pass.get("max_events")
    return cap is None or int(season_pass.get("events_used", 0)) < int(cap)


def season_pass_can_use_for_event(season_pass: Dict[str, Any], event: Dict[str, Any],
                                  now: Optional[datetime] = None) -> bool:
    if not season_pass_is_valid(season_pass, now):
        return False
    return season_pass.get("sport") in ("all", event.get("sport"))


def season_pass_remaining(season_pass: Dict[str, Any]):
    cap = season_pass.get("max_events")
    if cap is None:
        return "unlimited"
    return max(0, int(cap) - int(season_pass.get("events_used", 0)))


def use_season_pass(db: Database, pass_id: ObjectId, times: int = 1) -> Dict[str, Any]:
    # Uncapped pass (max_events null or missing).
    updated = db.season_passes.find_one_and_update(
        {"_id": pass_id, "status": "active", "max_events": None},
        {"$inc": {"events_used": times}, "$set": {"updated_at": iso_now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated:
        return updated

    # Capped pass: accept only while events_used + times stays within max_events.
    current = db.season_passes.find_one({"_id": pass_id, "status": "active"})
    if not current or current.get("max_events") is None:
        raise ApiError("Season pass is not valid", 400, "season_pass_invalid")
    used = int(current.get("events_used", 0))
    if used + times > int(current["max_events"]):
        raise ApiError("Maximum events reached for this season pass", 400, "season_pass_exhausted")
    updated = db.season_passes.find_one_and_update(
        {"_id": pass_id, "events_used": used},
        {"$inc": {"events_used": times}, "$set": {"updated_at": iso_now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise ApiError("Maximum events reached for this season pass", 400, "season_pass_exhausted")
    return updated


def release_season_pass(db: Database, pass_id: ObjectId, times: int = 1) -> bool:
    """Give back uses claimed by a purchase that did not go through."""
    res = db.season_passes.update_one(
        {"_id": pass_id, "events_used": {"$gte": times}},
        {"$inc": {"events_used": -times}, "$set": {"updated_at": iso_now()}},
    )
    return res.modified_count == 1


# -------------------------
# Tickets
# -------------------------
def generate_qr_code(ticket_id: ObjectId) -> str:
    return f"TICKET-{ticket_id}-{int(time.time() * 1000)}"


def placeholder_seat_number(index: int) -> str:
    return f"AUTO-{int(time.time() * 1000)}-{index}"


def _transition_ticket(db: Database, ticket_id: ObjectId, new_status: str) -> Dict[str, Any]:
    updated = db.tickets.find_one_and_update(
        {"_id": ticket_id, "status": "active"},
        {"$set": {"status": new_status, "updated_at": iso_now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        current = db.tickets.find_one({"_id": ticket_id}, {"status": 1}) or {}
        raise TicketNotActive(current.get("status", "unknown"))
    return updated


def cancel_ticket(db: Database, ticket_id: ObjectId) -> Dict[str, Any]:
    return _transition_ticket(db, ticket_id, "cancelled")


def mark_ticket_used(db: Database, ticket_id: ObjectId) -> Dict[str, Any]:
    return _transition_ticket(db, ticket_id, "used")


def hours_until(date_value: Any, now: Optional[datetime] = None) -> float:
    when = parse_datetime(date_value)
    if when is None:
        return float("-inf")
    return (when - (now or now_utc())).total_seconds() / 3600.0
