from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from flask import Blueprint, request
from flask_login import current_user
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from .. import uploads
from ..auth import authorize, can_edit
from ..db import get_db
from ..errors import ApiError, forbidden, not_found, ok
from ..models import CATEGORIES, EVENT_STATUSES, SPORTS, event_stats, find_category
from ..serializers import public_event
from ..utils import iso, iso_now, maybe_oid, now_utc, pagination, parse_datetime
from ..validation import (
    FieldErrors,
    check_choice,
    check_number,
    check_str,
    check_str_list,
    parse_json_list,
    query_int,
    require_json,
)

logger = logging.getLogger(__name__)

bp = Blueprint("events", __name__, url_prefix="/api/events")

SORTS = {
    "date_asc": [("date", ASCENDING)],
    "date_desc": [("date", DESCENDING)],
    "price_asc": [("ticket_categories.price", ASCENDING)],
    "price_desc": [("ticket_categories.price", DESCENDING)],
}


def _get_event(event_id: str) -> Dict[str, Any]:
    oid = maybe_oid(event_id)
    e = get_db().events.find_one({"_id": oid}) if oid else None
    if not e:
        raise not_found("Event")
    return e


# -------------------------
# Payload normalisation
# -------------------------
def _parse_categories(errors: FieldErrors, raw: Any,
                      existing: Optional[Dict[str, Any]] = None) -> Optional[List[Dict[str, Any]]]:
    cats = parse_json_list(raw)
    if isinstance(raw, str) and isinstance(cats, str):
        errors.add("ticket_categories", "ticket_categories must be an array or a JSON string representing an array")
        return None
    if not isinstance(cats, list) or not cats:
        errors.add("ticket_categories", "At least one ticket category is required")
        return None

    out: List[Dict[str, Any]] = []
    seen = set()
    for i, cat in enumerate(cats):
        key = f"ticket_categories[{i}]"
        if not isinstance(cat, dict):
            errors.add(key, "Invalid ticket category")
            continue
        # Either `name` or `type` names the category.
        name = cat.get("name") or cat.get("type")
        if name not in CATEGORIES:
            errors.add(f"{key}.name", "Invalid ticket category")
            continue
        if name in seen:
            errors.add(f"{key}.name", f"Duplicate ticket category: {name}")
            continue
        seen.add(name)

        price = check_number(errors, cat.get("price"), f"{key}.price", "Price must be a positive number", min_value=0)
        total = check_number(errors, cat.get("total_seats"), f"{key}.total_seats",
                             "Total seats must be at least 1", min_value=1, integer=True)
        if price is None or total is None:
            continue

        previous = find_category(existing, name) if existing else None
        if cat.get("available_seats") is not None:
            available = check_number(errors, cat.get("available_seats"), f"{key}.available_seats",
                                     "Available seats cannot be negative", min_value=0, integer=True)
            if available is None:
                continue
            if available > total:
                errors.add(f"{key}.available_seats", "Available seats cannot exceed total seats")
                continue
        elif previous:
            sold = int(previous.get("total_seats", 0)) - int(previous.get("available_seats", 0))
            available = max(0, total - sold)
        else:
            available = total

        benefits = check_str_list(errors, cat.get("benefits"), f"{key}.benefits")
        out.append(
            {
                "name": name,
                "price": float(price),
                "total_seats": int(total),
                "available_seats": int(available),
                "benefits": benefits or [],
            }
        )
    return out


def _parse_teams(errors: FieldErrors, raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        errors.add("teams", "teams must be an object")
        return {}
    teams: Dict[str, Any] = {}
    for side in ("home", "away"):
        team = raw.get(side)
        if team is None:
            continue
        if isinstance(team, str):
            team = {"name": team}
        if not isinstance(team, dict):
            errors.add(f"teams.{side}", f"{side} team must be an object")
            continue
        teams[side] = {"name": (team.get("name") or "").strip(), "logo": team.get("logo")}
    return teams


def _parse_images(errors: FieldErrors, raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        errors.add("images", "images must be a list")
        return []
    out = []
    for img in raw:
        if isinstance(img, str):
            img = {"url": img}
        if isinstance(img, dict) and img.get("url"):
            out.append({"url": img["url"], "alt": img.get("alt", "")})
        else:
            errors.add("images", "Each image needs a url")
    return out


def _validate_event(data: Dict[str, Any], partial: bool = False,
                    existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Clean an event payload; with partial=True only the supplied fields are checked."""
    errors = FieldErrors()
    doc: Dict[str, Any] = {}

    def wanted(field: str) -> bool:
        return not partial or field in data

    if wanted("title"):
        doc["title"] = check_str(errors, data, "title", max_length=100, label="Event title")
    if wanted("description"):
        doc["description"] = check_str(errors, data, "description", max_length=1000, label="Event description")
    if wanted("sport"):
        doc["sport"] = check_choice(errors, data.get("sport"), "sport", SPORTS, "Please select a valid sport")
    if wanted("date"):
        when = parse_datetime(data.get("date"))
        if when is None:
            errors.add("date", "Please provide a valid date")
        elif when <= now_utc():
            errors.add("date", "Event date must be in the future")
        else:
            doc["date"] = iso(when)
    if wanted("venue"):
        venue = data.get("venue")
        if isinstance(venue, dict):
            venue = venue.get("id") or venue.get("name")
        if not isinstance(venue, str) or not venue.strip():
            errors.add("venue", "Venue is required")
        else:
            doc["venue"] = venue.strip()
    if wanted("ticket_categories"):
        doc["ticket_categories"] = _parse_categories(errors, data.get("ticket_categories"), existing)
    if "teams" in data:
        doc["teams"] = _parse_teams(errors, data.get("teams"))
    if "status" in data:
        doc["status"] = check_choice(errors, data.get("status"), "status", EVENT_STATUSES, "Invalid event status")
    if "tags" in data:
        doc["tags"] = check_str_list(errors, data.get("tags"), "tags")
    if "images" in data:
        doc["images"] = _parse_images(errors, data.get("images"))
    if "is_active" in data:
        doc["is_active"] = bool(data.get("is_active"))

    errors.raise_if_any()
    return doc


def resolve_venue(value: str, categories: Optional[List[Dict[str, Any]]]) -> ObjectId:
    """Venue given as an id must exist; given as a name it is matched or created as a placeholder."""
    db = get_db()
    oid = maybe_oid(value)
    if oid is not None:
        if not db.venues.find_one({"_id": oid}, {"_id": 1}):
            raise ApiError("Venue not found", 400, "validation_error", {"field": "venue"})
        return oid

    existing = db.venues.find_one({"name": {"$regex": f"^{re.escape(value)}$", "$options": "i"}})
    if existing:
        return existing["_id"]

    seats = sum(c["total_seats"] for c in categories or [])
    placeholder = {
        "name": value,
        "address": {"street": "TBD", "city": "TBD", "state": "TBD", "zip_code": "00000", "country": "USA"},
        "capacity": max(100, seats),
        "seat_map": {"image_url": None, "sections": []},
        "facilities": [],
        "contact_info": {},
        "images": [],
        "is_active": True,
        "is_placeholder": True,
        "created_by": current_user.oid,
        "created_at": iso_now(),
        "updated_at": iso_now(),
    }
    res = db.venues.insert_one(placeholder)
    logger.info("Created placeholder venue %r (%s)", value, res.inserted_id)
    return res.inserted_id


# -------------------------
# Event APIs
# -------------------------
@bp.get("")
def list_events():
    page = query_int("page", 1)
    limit = query_int("limit", 10, max_value=100)
    args = request.args

    query: Dict[str, Any] = {"is_active": True}
    if args.get("sport"):
        query["sport"] = args["sport"]
    if args.get("status"):
        query["status"] = args["status"]

    date_range: Dict[str, str] = {}
    for param, op in (("start_date", "$gte"), ("end_date", "$lte")):
        raw = (args.get(param) or "").strip()
        if raw:
            when = parse_datetime(raw)
            if when is None:
                raise ApiError(f"{param} must be ISO format (e.g., 2026-01-01).", 400,
                               "validation_error", {"field": param})
            date_range[op] = iso(when)
    if date_range:
        query["date"] = date_range

    search = (args.get("search") or "").strip()
    if search:
        rx = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": rx}, {"teams.home.name": rx}, {"teams.away.name": rx}]

    sort = SORTS.get(args.get("sort") or "date_asc", SORTS["date_asc"])

    db = get_db()
    total = db.events.count_documents(query)
    docs = list(db.events.find(query).sort(sort).skip((page - 1) * limit).limit(limit))

    venue_ids = list({d["venue"] for d in docs if d.get("venue")})
    venues_map = {v["_id"]: v for v in db.venues.find({"_id": {"$in": venue_ids}})}
    events = [public_event(d, venues_map.get(d.get("venue"))) for d in docs]
    return ok(events, count=len(events), pagination=pagination(page, limit, total))


@bp.get("/<event_id>")
def get_event(event_id: str):
    e = _get_event(event_id)
    db = get_db()
    venue = db.venues.find_one({"_id": e.get("venue")}) if e.get("venue") else None
    creator = db.users.find_one({"_id": e.get("created_by")}) if e.get("created_by") else None
    return ok(public_event(e, venue, creator, venue_summary=False))


@bp.post("")
@authorize("admin")
def create_event():
    data = require_json()
    doc = _validate_event(data)
    doc["venue"] = resolve_venue(doc["venue"], doc["ticket_categories"])
    doc.setdefault("teams", {})
    doc["status"] = doc.get("status") or "upcoming"
    doc.setdefault("tags", [])
    doc.setdefault("images", [])
    doc.setdefault("is_active", True)
    doc["created_by"] = current_user.oid
    doc["created_at"] = iso_now()
    doc["updated_at"] = iso_now()

    db = get_db()
    try:
        res = db.events.insert_one(doc)
    except PyMongoError as e:
        raise ApiError("Failed to create event", 500, "db_error", {"detail": str(e)})
    created = db.events.find_one({"_id": res.inserted_id})
    return ok(public_event(created), 201)


@bp.put("/<event_id>")
@authorize("admin")
def update_event(event_id: str):
    data = require_json()
    e = _get_event(event_id)
    if not can_edit(e):
        raise forbidden("Not authorized to update this event")

    updates = _validate_event(data, partial=True, existing=e)
    if "venue" in updates:
        updates["venue"] = resolve_venue(updates["venue"], updates.get("ticket_categories") or e.get("ticket_categories"))
    updates["updated_at"] = iso_now()

    updated = get_db().events.find_one_and_update(
        {"_id": e["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    return ok(public_event(updated))


@bp.delete("/<event_id>")
@authorize("admin")
def delete_event(event_id: str):
    e = _get_event(event_id)
    if not can_edit(e):
        raise forbidden("Not authorized to delete this event")
    get_db().events.delete_one({"_id": e["_id"]})
    return ok(message="Event deleted successfully")


@bp.get("/<event_id>/stats")
@authorize("admin")
def get_event_stats(event_id: str):
    return ok(event_stats(_get_event(event_id)))


@bp.post("/<event_id>/images")
@authorize("admin")
def upload_event_images(event_id: str):
    e = _get_event(event_id)
    if not can_edit(e):
        raise forbidden("Not authorized to update this event")
    files = uploads.collect_images(uploads.EVENT_FIELDS)
    alt = request.form.get("alt", e.get("title", ""))
    images = [{"url": uploads.save_image(f, "event_image", "event"), "alt": alt} for f in files["images"]]

    updated = get_db().events.find_one_and_update(
        {"_id": e["_id"]},
        {"$push": {"images": {"$each": images}}, "$set": {"updated_at": iso_now()}},
        return_document=ReturnDocument.AFTER,
    )
    return ok(public_event(updated), 201)
