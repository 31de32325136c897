from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, Optional

from flask import Flask, current_app, request
from flask_login import LoginManager, UserMixin, current_user
from jose import JWTError, jwt

from .config import parse_duration
from .db import get_db
from .errors import ApiError, fail, forbidden
from .utils import maybe_oid, now_utc

logger = logging.getLogger(__name__)

# -------------------------
# Auth (Flask-Login + bearer tokens)
# -------------------------
login_manager = LoginManager()
# Tokens travel in the Authorization header; nothing is kept in the session.
login_manager.session_protection = None


class User(UserMixin):
    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc
        self.id = str(doc["_id"])
        self.oid = doc["_id"]
        self.email = doc.get("email", "")
        self.name = doc.get("name", "")
        self.role = doc.get("role", "user")

    @property
    def is_active(self) -> bool:
        return bool(self.doc.get("is_active", True))

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_token(user_id: Any, expires_in: Optional[str] = None) -> str:
    cfg = current_app.config
    now = int(now_utc().timestamp())
    ttl = parse_duration(expires_in or cfg["JWT_EXPIRE"])
    claims = {"id": str(user_id), "iat": now, "exp": now + ttl}
    return jwt.encode(claims, cfg["JWT_SECRET"], algorithm=cfg["JWT_ALGORITHM"])


def decode_token(token: str) -> Dict[str, Any]:
    cfg = current_app.config
    return jwt.decode(token, cfg["JWT_SECRET"], algorithms=[cfg["JWT_ALGORITHM"]])


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@login_manager.request_loader
def load_user_from_request(req) -> Optional[User]:
    token = _bearer_token()
    if not token:
        return None
    try:
        payload = decode_token(token)
    except JWTError:
        req.environ["auth_error"] = "Not authorized, token failed"
        return None
    oid = maybe_oid(payload.get("id"))
    doc = get_db().users.find_one({"_id": oid}) if oid else None
    if not doc:
        req.environ["auth_error"] = "Not authorized, user not found"
        return None
    if not doc.get("is_active", True):
        req.environ["auth_error"] = "Account is deactivated"
        return None
    return User(doc)


@login_manager.unauthorized_handler
def unauthorized():
    # JSON only
    message = request.environ.get("auth_error") or "Not authorized, no token"
    return fail(ApiError(message, 401, "unauthorized"))


def init_auth(app: Flask) -> None:
    login_manager.init_app(app)


def authorize(*roles: str):
    """Require an authenticated user; with roles given, also require one of them."""

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()
            if roles and current_user.role not in roles:
                raise forbidden(f"User role '{current_user.role}' is not authorized to access this route")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def can_edit(doc: Dict[str, Any]) -> bool:
    if not current_user.is_authenticated:
        return False
    if current_user.is_admin:
        return True
    return str(doc.get("created_by")) == current_user.id
