from __future__ import annotations

import uuid
from typing import Any, Dict

from flask import Blueprint
from flask_login import current_user
from pymongo import DESCENDING

from .. import emails, models
from ..auth import authorize
from ..db import get_db
from ..errors import ApiError, forbidden, not_found, ok
from ..serializers import public_season_pass
from ..utils import iso, iso_now, maybe_oid
from ..validation import (
    FieldErrors,
    check_choice,
    check_datetime,
    check_number,
    check_str,
    check_str_list,
    require_json,
)

bp = Blueprint("season_passes", __name__, url_prefix="/api/season-passes")


def _get_pass(pass_id: str) -> Dict[str, Any]:
    oid = maybe_oid(pass_id)
    p = get_db().season_passes.find_one({"_id": oid}) if oid else None
    if not p:
        raise not_found("Season pass")
    return p


def _validate_pass(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = FieldErrors()
    period = data.get("validity_period") or {}
    if not isinstance(period, dict):
        period = {}
    doc: Dict[str, Any] = {
        "name": check_str(errors, data, "name", max_length=100, label="Season pass name"),
        "description": check_str(errors, data, "description", required=False, max_length=1000) or "",
        "sport": check_choice(errors, data.get("sport"), "sport", models.PASS_SPORTS, "Please select a valid sport"),
        "type": check_choice(errors, data.get("type") or "single_sport", "type", models.PASS_TYPES,
                             "Invalid season pass type"),
        "price": check_number(errors, data.get("price"), "price", "Price cannot be negative", min_value=0),
        "benefits": check_str_list(errors, data.get("benefits"), "benefits", choices=models.PASS_BENEFITS),
        "max_events": None,
        "auto_renew": bool(data.get("auto_renew", False)),
    }
    start = check_datetime(errors, period.get("start"), "validity_period.start", "Start date is required")
    end = check_datetime(errors, period.get("end"), "validity_period.end", "End date is required")
    if start and end and end <= start:
        errors.add("validity_period.end", "End date must be after start date")
    if start and end:
        doc["validity_period"] = {"start": iso(start), "end": iso(end)}

    if data.get("max_events") is not None:
        doc["max_events"] = check_number(errors, data.get("max_events"), "max_events",
                                         "max_events must be a positive integer", min_value=1, integer=True)
    method = check_choice(errors, data.get("payment_method"), "payment_method", models.PAYMENT_METHODS,
                          "Please select a valid payment method")
    errors.raise_if_any()

    doc["payment_info"] = {
        "method": method,
        "transaction_id": f"TXN-{uuid.uuid4().hex[:16].upper()}",
        "amount": doc["price"],
        "date": iso_now(),
    }
    return doc


# -------------------------
# Season pass APIs
# -------------------------
@bp.get("")
@authorize()
def list_my_passes():
    docs = list(get_db().season_passes.find({"user": current_user.oid}).sort("created_at", DESCENDING))
    passes = [public_season_pass(p) for p in docs]
    return ok(passes, count=len(passes))


@bp.get("/<pass_id>")
@authorize()
def get_pass(pass_id: str):
    p = _get_pass(pass_id)
    if p.get("user") != current_user.oid and not current_user.is_admin:
        raise forbidden("Not authorized to view this season pass")
    return ok(public_season_pass(p))


@bp.post("")
@authorize()
def purchase_pass():
    doc = _validate_pass(require_json())
    doc.update(
        {
            "user": current_user.oid,
            "events_used": 0,
            "status": "active",
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
    )
    db = get_db()
    res = db.season_passes.insert_one(doc)
    created = db.season_passes.find_one({"_id": res.inserted_id})

    buyer = db.users.find_one({"_id": current_user.oid})
    emails.send_quietly(buyer["email"], emails.season_pass_purchase(created, buyer))
    return ok(public_season_pass(created), 201, message="Season pass purchased successfully")


@bp.put("/<pass_id>/cancel")
@authorize()
def cancel_pass(pass_id: str):
    p = _get_pass(pass_id)
    if p.get("user") != current_user.oid:
        raise forbidden("Not authorized to cancel this season pass")
    if p.get("status") != "active":
        raise ApiError(f"Season pass is {p.get('status')}", 400, "season_pass_not_active")

    db = get_db()
    db.season_passes.update_one(
        {"_id": p["_id"], "status": "active"},
        {"$set": {"status": "cancelled", "auto_renew": False, "updated_at": iso_now()}},
    )
    return ok(public_season_pass(db.season_passes.find_one({"_id": p["_id"]})),
              message="Season pass cancelled successfully")
