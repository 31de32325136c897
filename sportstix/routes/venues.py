from __future__ import annotations

import re
from typing import Any, Dict, List

from flask import Blueprint, request
from flask_login import current_user
from pymongo import ASCENDING, ReturnDocument

from .. import uploads
from ..auth import authorize
from ..db import get_db
from ..errors import not_found, ok
from ..models import CATEGORIES
from ..serializers import public_venue
from ..utils import iso_now, maybe_oid, pagination
from ..validation import FieldErrors, check_choice, check_number, check_str, check_str_list, query_int, require_json

bp = Blueprint("venues", __name__, url_prefix="/api/venues")

ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")


def _get_venue(venue_id: str) -> Dict[str, Any]:
    oid = maybe_oid(venue_id)
    v = get_db().venues.find_one({"_id": oid}) if oid else None
    if not v:
        raise not_found("Venue")
    return v


def _parse_sections(errors: FieldErrors, raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        errors.add("seat_map.sections", "sections must be a list")
        return []
    sections = []
    for i, sec in enumerate(raw):
        key = f"seat_map.sections[{i}]"
        if not isinstance(sec, dict):
            errors.add(key, "Invalid section")
            continue
        category = check_choice(errors, sec.get("category"), f"{key}.category", CATEGORIES, "Invalid seat category")
        rows = check_number(errors, sec.get("rows", 0), f"{key}.rows", "rows must be a non-negative integer",
                            min_value=0, integer=True)
        per_row = check_number(errors, sec.get("seats_per_row", 0), f"{key}.seats_per_row",
                               "seats_per_row must be a non-negative integer", min_value=0, integer=True)
        price = check_number(errors, sec.get("price", 0), f"{key}.price", "Price cannot be negative", min_value=0)
        sections.append(
            {
                "name": (sec.get("name") or "").strip(),
                "category": category,
                "rows": rows,
                "seats_per_row": per_row,
                "price": price,
            }
        )
    return sections


def _validate_venue(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    errors = FieldErrors()
    doc: Dict[str, Any] = {}

    if not partial or "name" in data:
        doc["name"] = check_str(errors, data, "name", max_length=100, label="Venue name")

    if not partial or "address" in data:
        address = data.get("address") if isinstance(data.get("address"), dict) else {}
        address = {**{"country": "USA"}, **address}
        doc["address"] = {}
        for field in ADDRESS_FIELDS:
            doc["address"][field] = check_str(errors, address, field, label=field.replace("_", " ").capitalize())
        # Errors come back keyed by the bare field; prefix them.
        for item in errors.items:
            if item["field"] in ADDRESS_FIELDS:
                item["field"] = f"address.{item['field']}"

    if not partial or "capacity" in data:
        doc["capacity"] = check_number(errors, data.get("capacity"), "capacity",
                                       "Capacity must be at least 100", min_value=100, integer=True)

    if "seat_map" in data:
        seat_map = data.get("seat_map") or {}
        if not isinstance(seat_map, dict):
            errors.add("seat_map", "seat_map must be an object")
        else:
            doc["seat_map"] = {
                "image_url": seat_map.get("image_url"),
                "sections": _parse_sections(errors, seat_map.get("sections")),
            }
    if "facilities" in data:
        doc["facilities"] = check_str_list(errors, data.get("facilities"), "facilities")
    if "contact_info" in data:
        info = data.get("contact_info") or {}
        if not isinstance(info, dict):
            errors.add("contact_info", "contact_info must be an object")
        else:
            doc["contact_info"] = {k: info.get(k) for k in ("phone", "email", "website")}
    if "is_active" in data:
        doc["is_active"] = bool(data.get("is_active"))

    errors.raise_if_any()
    return doc


# -------------------------
# Venue APIs
# -------------------------
@bp.get("")
def list_venues():
    page = query_int("page", 1)
    limit = query_int("limit", 20, max_value=100)

    query: Dict[str, Any] = {"is_active": True}
    city = (request.args.get("city") or "").strip()
    if city:
        query["address.city"] = {"$regex": f"^{re.escape(city)}$", "$options": "i"}
    search = (request.args.get("search") or "").strip()
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    db = get_db()
    total = db.venues.count_documents(query)
    docs = list(db.venues.find(query).sort("name", ASCENDING).skip((page - 1) * limit).limit(limit))
    venues = [public_venue(v) for v in docs]
    return ok(venues, count=len(venues), pagination=pagination(page, limit, total))


@bp.get("/<venue_id>")
def get_venue(venue_id: str):
    return ok(public_venue(_get_venue(venue_id)))


@bp.post("")
@authorize("admin")
def create_venue():
    doc = _validate_venue(require_json())
    doc.setdefault("seat_map", {"image_url": None, "sections": []})
    doc.setdefault("facilities", [])
    doc.setdefault("contact_info", {})
    doc.setdefault("is_active", True)
    doc.update(
        {
            "images": [],
            "is_placeholder": False,
            "created_by": current_user.oid,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
    )
    db = get_db()
    res = db.venues.insert_one(doc)
    return ok(public_venue(db.venues.find_one({"_id": res.inserted_id})), 201)


@bp.put("/<venue_id>")
@authorize("admin")
def update_venue(venue_id: str):
    v = _get_venue(venue_id)
    updates = _validate_venue(require_json(), partial=True)
    # A completed address means the venue is no longer a stand-in.
    if "address" in updates:
        updates["is_placeholder"] = False
    updates["updated_at"] = iso_now()
    updated = get_db().venues.find_one_and_update(
        {"_id": v["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    return ok(public_venue(updated))


@bp.post("/<venue_id>/images")
@authorize("admin")
def upload_venue_images(venue_id: str):
    v = _get_venue(venue_id)
    files = uploads.collect_images(uploads.VENUE_FIELDS)
    alt = request.form.get("alt", v.get("name", ""))

    ops: Dict[str, Any] = {"$set": {"updated_at": iso_now()}}
    images = [{"url": uploads.save_image(f, "venue_image", "venue"), "alt": alt} for f in files.get("images", [])]
    if images:
        ops["$push"] = {"images": {"$each": images}}
    if files.get("seat_map"):
        ops["$set"]["seat_map.image_url"] = uploads.save_image(files["seat_map"][0], "seat_map", "venue")

    updated = get_db().venues.find_one_and_update({"_id": v["_id"]}, ops, return_document=ReturnDocument.AFTER)
    return ok(public_venue(updated), 201)
