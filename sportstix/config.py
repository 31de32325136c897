from __future__ import annotations

import logging
import os
import re

from dotenv import load_dotenv

load_dotenv()

PKG_DIR = os.path.dirname(os.path.abspath(__file__))

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> int:
    """Turn '7d', '12h', '30m', '45s' or plain seconds into seconds."""
    if isinstance(value, int):
        return value
    m = _DURATION_RE.match(str(value or ""))
    if not m:
        raise ValueError(f"Invalid duration: {value!r}")
    return int(m.group(1)) * _UNIT_SECONDS[m.group(2).lower()]


class Config:
    APP_ENV = os.environ.get("APP_ENV", "development").lower()
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    SECRET_KEY = os.environ.get("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
    JWT_SECRET = os.environ.get("JWT_SECRET") or SECRET_KEY
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE = os.environ.get("JWT_EXPIRE", "7d")

    MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB = os.environ.get("MONGO_DB", "sports_ticketing")

    # Leave SMTP_USER / SMTP_PASS blank to disable outgoing mail.
    SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USER = os.environ.get("SMTP_USER", "")
    SMTP_PASS = os.environ.get("SMTP_PASS", "")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "Sports Ticketing")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5000")

    UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
    UPLOAD_MAX_FILE_BYTES = 5 * 1024 * 1024
    UPLOAD_MAX_FILES = 10
    # Whole-request cap: 10 files at 5 MB plus multipart overhead.
    MAX_CONTENT_LENGTH = 51 * 1024 * 1024

    DEFAULT_ADMIN_EMAIL = os.environ.get("DEFAULT_ADMIN_EMAIL", "admin@example.com")
    DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "Admin123!")

    JSON_SORT_KEYS = False


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
