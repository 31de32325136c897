from datetime import timedelta

import mongomock
import pytest
from werkzeug.security import generate_password_hash

from sportstix import create_app
from sportstix.auth import create_token
from sportstix.utils import iso, iso_now, now_utc

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def app(db, tmp_path):
    return create_app(
        {
            "TESTING": True,
            "APP_ENV": "testing",
            "JWT_SECRET": "test-secret",
            "SMTP_USER": "",
            "SMTP_PASS": "",
            "UPLOAD_DIR": str(tmp_path / "uploads"),
            "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
            "DEFAULT_ADMIN_PASSWORD": ADMIN_PASSWORD,
        },
        db=db,
    )


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(app, user_id):
    with app.app_context():
        return {"Authorization": f"Bearer {create_token(user_id)}"}


@pytest.fixture
def admin_headers(app, db):
    admin = db.users.find_one({"email": ADMIN_EMAIL})
    return bearer(app, admin["_id"])


@pytest.fixture
def make_user(app, db):
    """Insert a user straight into the db; returns (doc, auth headers)."""

    def _make(email="fan@example.com", name="Fan", points=0, tier="bronze", role="user",
              password="secret1", is_active=True):
        doc = {
            "name": name,
            "email": email,
            "password_hash": generate_password_hash(password),
            "role": role,
            "phone": None,
            "date_of_birth": None,
            "preferences": {"sports": [], "notifications": True},
            "loyalty_points": points,
            "loyalty_tier": tier,
            "is_active": is_active,
            "last_login": None,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
        doc["_id"] = db.users.insert_one(doc).inserted_id
        return doc, bearer(app, doc["_id"])

    return _make


@pytest.fixture
def make_venue(db):
    def _make(name="Riverside Stadium", city="Springfield", **extra):
        doc = {
            "name": name,
            "address": {"street": "1 Main St", "city": city, "state": "IL", "zip_code": "62701", "country": "USA"},
            "capacity": 20000,
            "seat_map": {"image_url": None, "sections": [
                {"name": "North", "category": "bleachers", "rows": 10, "seats_per_row": 20, "price": 50},
            ]},
            "facilities": ["parking"],
            "contact_info": {},
            "images": [],
            "is_active": True,
            "is_placeholder": False,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
        doc.update(extra)
        doc["_id"] = db.venues.insert_one(doc).inserted_id
        return doc

    return _make


def category(name="bleachers", price=100.0, total=50, available=None):
    return {
        "name": name,
        "price": price,
        "total_seats": total,
        "available_seats": total if available is None else available,
        "benefits": [],
    }


@pytest.fixture
def make_event(db, make_venue):
    """Insert an event `hours` from now (negative for the past)."""

    def _make(hours=72, title="Lions vs Tigers", sport="football", categories=None, venue=None, **extra):
        venue = venue or make_venue()
        doc = {
            "title": title,
            "description": "League match",
            "sport": sport,
            "date": iso(now_utc() + timedelta(hours=hours)),
            "venue": venue["_id"],
            "teams": {"home": {"name": "Lions", "logo": None}, "away": {"name": "Tigers", "logo": None}},
            "ticket_categories": categories or [category(), category("vip", 250.0, 10)],
            "status": "upcoming",
            "images": [],
            "tags": [],
            "is_active": True,
            "created_by": None,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
        doc.update(extra)
        doc["_id"] = db.events.insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def make_pass(db):
    def _make(user, sport="football", benefits=("discounted_tickets",), max_events=None, status="active",
              start_days=-30, end_days=180):
        doc = {
            "user": user["_id"],
            "name": "Full Season",
            "description": "",
            "sport": sport,
            "type": "single_sport",
            "price": 500.0,
            "validity_period": {
                "start": iso(now_utc() + timedelta(days=start_days)),
                "end": iso(now_utc() + timedelta(days=end_days)),
            },
            "benefits": list(benefits),
            "max_events": max_events,
            "events_used": 0,
            "status": status,
            "payment_info": {"method": "credit_card", "transaction_id": "TXN-TEST", "amount": 500.0},
            "auto_renew": False,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
        doc["_id"] = db.season_passes.insert_one(doc).inserted_id
        return doc

    return _make
