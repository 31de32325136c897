from __future__ import annotations

import logging

from flask import current_app
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from werkzeug.security import generate_password_hash

from .utils import iso_now

logger = logging.getLogger(__name__)


# -------------------------
# MongoDB
# -------------------------
def connect(uri: str, name: str) -> Database:
    try:
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=3000,
            connectTimeoutMS=3000,
            socketTimeoutMS=5000,
            retryWrites=True,
        )
        # Verify connectivity early (will raise if unreachable)
        client.admin.command("ping")
        return client[name]
    except Exception as e:
        logger.exception("MongoDB connection failed")
        raise RuntimeError(f"MongoDB connection failed: {e}") from e


def get_db() -> Database:
    return current_app.extensions["mongo_db"]


def ensure_indexes(db: Database) -> None:
    db.users.create_index([("email", ASCENDING)], unique=True)

    db.venues.create_index([("name", ASCENDING)])
    db.venues.create_index([("address.city", ASCENDING)])

    db.events.create_index([("date", ASCENDING), ("status", ASCENDING)])
    db.events.create_index([("sport", ASCENDING)])
    db.events.create_index([("teams.home.name", ASCENDING), ("teams.away.name", ASCENDING)])
    db.events.create_index([("created_by", ASCENDING)])

    db.tickets.create_index([("event", ASCENDING), ("user", ASCENDING)])
    db.tickets.create_index([("user", ASCENDING), ("status", ASCENDING)])
    db.tickets.create_index([("qr_code", ASCENDING)], unique=True)
    db.tickets.create_index([("purchase_date", DESCENDING)])

    db.season_passes.create_index([("user", ASCENDING), ("status", ASCENDING)])
    db.season_passes.create_index([("sport", ASCENDING)])
    db.season_passes.create_index([("validity_period.end", ASCENDING)])


# -------------------------
# Default Admin Seed
# -------------------------
def ensure_default_admin(db: Database, email: str, password: str) -> bool:
    """Create the admin account once; returns True when it was created."""
    email = email.strip().lower()
    try:
        if db.users.find_one({"email": email}):
            return False
        db.users.insert_one(
            {
                "name": "Administrator",
                "email": email,
                "password_hash": generate_password_hash(password),
                "role": "admin",
                "phone": None,
                "date_of_birth": None,
                "preferences": {"sports": [], "notifications": True},
                "loyalty_points": 0,
                "loyalty_tier": "bronze",
                "is_active": True,
                "last_login": None,
                "created_at": iso_now(),
                "updated_at": iso_now(),
            }
        )
        logger.info("Default admin created: %s", email)
        return True
    except Exception:
        logger.exception("Failed to ensure default admin user")
        return False
