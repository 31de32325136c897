from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint
from flask_login import current_user
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.security import check_password_hash, generate_password_hash

from .. import emails
from ..auth import authorize, create_token
from ..db import get_db
from ..errors import ApiError, ok
from ..models import SPORTS
from ..serializers import public_user
from ..utils import iso_now, parse_datetime
from ..validation import (
    FieldErrors,
    check_str,
    check_str_list,
    require_json,
    validate_email,
    validate_password,
)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _profile_fields(data: Dict[str, Any], errors: FieldErrors) -> Dict[str, Any]:
    """Optional profile fields shared by register and profile update."""
    out: Dict[str, Any] = {}
    if "name" in data:
        name = check_str(errors, data, "name", max_length=50, label="Name")
        if name is not None:
            out["name"] = name
    if "phone" in data:
        out["phone"] = check_str(errors, data, "phone", required=False, max_length=20, label="Phone")
    if "date_of_birth" in data:
        raw = data.get("date_of_birth")
        if raw in (None, ""):
            out["date_of_birth"] = None
        else:
            dob = parse_datetime(raw)
            if dob is None:
                errors.add("date_of_birth", "Please provide a valid date of birth")
            else:
                out["date_of_birth"] = dob.date().isoformat()
    if "preferences" in data:
        prefs = data.get("preferences") or {}
        if not isinstance(prefs, dict):
            errors.add("preferences", "preferences must be an object")
        else:
            sports = check_str_list(errors, prefs.get("sports"), "preferences.sports", choices=SPORTS)
            out["preferences"] = {
                "sports": sports or [],
                "notifications": bool(prefs.get("notifications", True)),
            }
    return out


# -------------------------
# Auth APIs
# -------------------------
@bp.post("/register")
def register():
    data = require_json()
    errors = FieldErrors()
    if "name" not in data:
        errors.add("name", "Name is required")
    profile = _profile_fields(data, errors)
    try:
        email = validate_email(data.get("email", ""))
    except ApiError as e:
        errors.add("email", e.message)
    try:
        password = validate_password(data.get("password", ""))
    except ApiError as e:
        errors.add("password", e.message)
    errors.raise_if_any()

    db = get_db()
    if db.users.find_one({"email": email}):
        raise ApiError("User already exists with this email", 400, "duplicate_email", {"field": "email"})

    doc = {
        "name": profile.get("name", ""),
        "email": email,
        "password_hash": generate_password_hash(password),
        # Admins are seeded, never self-registered.
        "role": "user",
        "phone": profile.get("phone"),
        "date_of_birth": profile.get("date_of_birth"),
        "preferences": profile.get("preferences") or {"sports": [], "notifications": True},
        "loyalty_points": 0,
        "loyalty_tier": "bronze",
        "is_active": True,
        "last_login": None,
        "created_at": iso_now(),
        "updated_at": iso_now(),
    }
    try:
        res = db.users.insert_one(doc)
    except DuplicateKeyError:
        raise ApiError("User already exists with this email", 400, "duplicate_email", {"field": "email"})
    except PyMongoError as e:
        raise ApiError("Registration failed", 500, "db_error", {"detail": str(e)})

    user = db.users.find_one({"_id": res.inserted_id})
    emails.send_quietly(user["email"], emails.welcome(user))
    return ok({"user": public_user(user)}, 201, token=create_token(user["_id"]))


@bp.post("/login")
def login():
    data = require_json()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ApiError("Please provide email and password", 400, "validation_error")

    db = get_db()
    u = db.users.find_one({"email": email})
    if not u or not check_password_hash(u.get("password_hash", ""), password):
        raise ApiError("Invalid credentials", 401, "unauthorized")
    if not u.get("is_active", True):
        raise ApiError("Account is deactivated", 401, "unauthorized")

    u = db.users.find_one_and_update(
        {"_id": u["_id"]},
        {"$set": {"last_login": iso_now()}},
        return_document=ReturnDocument.AFTER,
    )
    return ok({"user": public_user(u)}, token=create_token(u["_id"]))


@bp.get("/me")
@authorize()
def me():
    # Load from db to avoid a stale user loaded earlier in the request
    u = get_db().users.find_one({"_id": current_user.oid})
    return ok({"user": public_user(u, full=True)})


@bp.put("/profile")
@authorize()
def update_profile():
    data = require_json()
    errors = FieldErrors()
    updates = _profile_fields(data, errors)
    errors.raise_if_any()

    updates["updated_at"] = iso_now()
    u = get_db().users.find_one_and_update(
        {"_id": current_user.oid},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    return ok({"user": public_user(u, full=True)})


@bp.put("/change-password")
@authorize()
def change_password():
    data = require_json()
    current_pw = data.get("current_password") or ""
    new_pw = validate_password(data.get("new_password", ""), field="new_password")

    db = get_db()
    u = db.users.find_one({"_id": current_user.oid})
    if not check_password_hash(u.get("password_hash", ""), current_pw):
        raise ApiError("Current password is incorrect", 400, "invalid_password", {"field": "current_password"})

    db.users.update_one(
        {"_id": current_user.oid},
        {"$set": {"password_hash": generate_password_hash(new_pw), "updated_at": iso_now()}},
    )
    return ok(message="Password updated successfully")
