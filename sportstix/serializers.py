from __future__ import annotations

from typing import Any, Dict, Optional

from . import models


def _sid(value: Any) -> Optional[str]:
    return str(value) if value else None


# -------------------------
# Serialization helpers
# -------------------------
def public_user(u: Dict[str, Any], full: bool = False) -> Dict[str, Any]:
    out = {
        "id": str(u["_id"]),
        "name": u.get("name", ""),
        "email": u.get("email", ""),
        "role": u.get("role", "user"),
        "loyalty_points": int(u.get("loyalty_points", 0)),
        "loyalty_tier": u.get("loyalty_tier", "bronze"),
        "preferences": u.get("preferences") or {},
    }
    if full:
        out.update(
            {
                "phone": u.get("phone"),
                "date_of_birth": u.get("date_of_birth"),
                "is_active": bool(u.get("is_active", True)),
                "last_login": u.get("last_login"),
                "created_at": u.get("created_at", ""),
            }
        )
    return out


def user_summary(u: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not u:
        return None
    return {"id": str(u["_id"]), "name": u.get("name", ""), "email": u.get("email", "")}


def public_venue(v: Dict[str, Any], summary: bool = False) -> Dict[str, Any]:
    out = {
        "id": str(v["_id"]),
        "name": v.get("name", ""),
        "address": v.get("address") or {},
        "capacity": int(v.get("capacity", 0)),
    }
    if summary:
        return out
    seat_map = v.get("seat_map") or {}
    out.update(
        {
            "full_address": models.venue_full_address(v),
            "seat_map": seat_map,
            "seats_by_category": {
                c: models.venue_seats_for_category(v, c)
                for c in models.CATEGORIES
                if models.venue_seats_for_category(v, c)
            },
            "facilities": v.get("facilities") or [],
            "contact_info": v.get("contact_info") or {},
            "images": v.get("images") or [],
            "is_active": bool(v.get("is_active", True)),
            "is_placeholder": bool(v.get("is_placeholder", False)),
            "created_by": _sid(v.get("created_by")),
            "created_at": v.get("created_at", ""),
            "updated_at": v.get("updated_at", ""),
        }
    )
    return out


def public_category(c: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": c.get("name"),
        "price": float(c.get("price", 0.0)),
        "total_seats": int(c.get("total_seats", 0)),
        "available_seats": int(c.get("available_seats", 0)),
        "benefits": c.get("benefits") or [],
    }


def public_event(e: Dict[str, Any], venue: Optional[Dict[str, Any]] = None,
                 creator: Optional[Dict[str, Any]] = None, venue_summary: bool = True) -> Dict[str, Any]:
    """Event document for the API; venue/creator are embedded when the caller populated them."""
    out = {
        "id": str(e["_id"]),
        "title": e.get("title", ""),
        "description": e.get("description", ""),
        "sport": e.get("sport", ""),
        "date": e.get("date", ""),
        "venue": public_venue(venue, summary=venue_summary) if venue else _sid(e.get("venue")),
        "teams": e.get("teams") or {},
        "ticket_categories": [public_category(c) for c in e.get("ticket_categories") or []],
        "status": e.get("status", "upcoming"),
        "images": e.get("images") or [],
        "tags": e.get("tags") or [],
        "is_active": bool(e.get("is_active", True)),
        "is_sold_out": models.event_is_sold_out(e),
        "total_tickets_sold": models.total_tickets_sold(e),
        "created_by": user_summary(creator) if creator else _sid(e.get("created_by")),
        "created_at": e.get("created_at", ""),
        "updated_at": e.get("updated_at", ""),
    }
    return out


def event_summary(e: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not e:
        return None
    return {
        "id": str(e["_id"]),
        "title": e.get("title", ""),
        "date": e.get("date", ""),
        "venue": _sid(e.get("venue")),
        "teams": e.get("teams") or {},
        "sport": e.get("sport", ""),
    }


def public_season_pass(p: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(p["_id"]),
        "user": _sid(p.get("user")),
        "name": p.get("name", ""),
        "description": p.get("description", ""),
        "sport": p.get("sport", ""),
        "type": p.get("type", "single_sport"),
        "price": float(p.get("price", 0.0)),
        "validity_period": p.get("validity_period") or {},
        "benefits": p.get("benefits") or [],
        "max_events": p.get("max_events"),
        "events_used": int(p.get("events_used", 0)),
        "remaining_events": models.season_pass_remaining(p),
        "is_valid": models.season_pass_is_valid(p),
        "status": p.get("status", "active"),
        "payment_info": p.get("payment_info") or {},
        "auto_renew": bool(p.get("auto_renew", False)),
        "created_at": p.get("created_at", ""),
    }


def season_pass_summary(p: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not p:
        return None
    return {"id": str(p["_id"]), "name": p.get("name", ""), "type": p.get("type", "single_sport")}


def public_ticket(t: Dict[str, Any], event: Any = None, user: Optional[Dict[str, Any]] = None,
                  season_pass: Any = None) -> Dict[str, Any]:
    """Ticket record; `event` and `season_pass` may be pre-serialized dicts or raw ids."""
    return {
        "id": str(t["_id"]),
        "event": event if event is not None else _sid(t.get("event")),
        "user": user_summary(user) if user else _sid(t.get("user")),
        "seat_info": t.get("seat_info") or {},
        "price": float(t.get("price", 0.0)),
        "purchase_date": t.get("purchase_date", ""),
        "status": t.get("status", "active"),
        "qr_code": t.get("qr_code", ""),
        "payment_info": t.get("payment_info") or {},
        "is_season_pass": bool(t.get("is_season_pass", False)),
        "season_pass_id": season_pass if season_pass is not None else _sid(t.get("season_pass_id")),
        "discount_applied": float(t.get("discount_applied", 0.0)),
        "loyalty_points_earned": int(t.get("loyalty_points_earned", 0)),
        "created_at": t.get("created_at", ""),
    }
