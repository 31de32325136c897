from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, Iterable, List, Optional

from flask import request

from .errors import ApiError
from .utils import maybe_oid, parse_datetime

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def require_json() -> Dict[str, Any]:
    if not request.is_json:
        raise ApiError("Request must be JSON.", 415, "unsupported_media_type")
    data = request.get_json(silent=True)
    if data is None:
        raise ApiError("Invalid JSON payload.", 400, "invalid_json")
    if not isinstance(data, dict):
        raise ApiError("JSON body must be an object.", 400, "invalid_json")
    return data


class FieldErrors:
    """Collects field-level messages so one response can report all of them."""

    def __init__(self) -> None:
        self.items: List[Dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"field": field, "message": message})

    def raise_if_any(self) -> None:
        if self.items:
            raise ApiError(self.items[0]["message"], 400, "validation_error", {"errors": self.items})


def safe_int(value: Any, field: str, min_value: Optional[int] = None,
             max_value: Optional[int] = None) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be an integer.", 400, "validation_error", {"field": field})
    if min_value is not None and n < min_value:
        raise ApiError(f"{field} must be >= {min_value}.", 400, "validation_error", {"field": field})
    if max_value is not None and n > max_value:
        raise ApiError(f"{field} must be <= {max_value}.", 400, "validation_error", {"field": field})
    return n


def query_int(name: str, default: int, min_value: int = 1, max_value: Optional[int] = None) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    return safe_int(raw, name, min_value=min_value, max_value=max_value)


def validate_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ApiError("A valid email is required.", 400, "validation_error", {"field": "email"})
    return email


def validate_password(pw: str, field: str = "password") -> str:
    pw = pw or ""
    if len(pw) < 6:
        raise ApiError("Password must be at least 6 characters.", 400, "validation_error", {"field": field})
    return pw


# Field checks used by FieldErrors-based validators. Each returns the cleaned
# value, or None after recording an error.

def check_str(errors: FieldErrors, data: Dict[str, Any], field: str, *, required: bool = True,
              max_length: Optional[int] = None, label: Optional[str] = None) -> Optional[str]:
    label = label or field
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.add(field, f"{label} is required")
        return None
    if not isinstance(value, str):
        errors.add(field, f"{label} must be a string")
        return None
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        errors.add(field, f"{label} cannot exceed {max_length} characters")
        return None
    return value


def check_choice(errors: FieldErrors, value: Any, field: str, choices: Iterable[str],
                 message: str) -> Optional[str]:
    if value not in tuple(choices):
        errors.add(field, message)
        return None
    return value


def check_number(errors: FieldErrors, value: Any, field: str, message: str, *,
                 min_value: Optional[float] = None, integer: bool = False) -> Optional[float]:
    if isinstance(value, bool):
        errors.add(field, message)
        return None
    try:
        if not math.isfinite(float(value)):
            raise ValueError(value)
        n = int(value) if integer else float(value)
        if integer and float(value) != n:
            raise ValueError(value)
    except (TypeError, ValueError, OverflowError):
        errors.add(field, message)
        return None
    if min_value is not None and n < min_value:
        errors.add(field, message)
        return None
    return n


def check_datetime(errors: FieldErrors, value: Any, field: str, message: str):
    dt = parse_datetime(value)
    if dt is None:
        errors.add(field, message)
    return dt


def check_oid(errors: FieldErrors, value: Any, field: str, message: str):
    oid = maybe_oid(value) if value else None
    if oid is None:
        errors.add(field, message)
    return oid


def check_str_list(errors: FieldErrors, value: Any, field: str, *,
                   choices: Optional[Iterable[str]] = None) -> Optional[List[str]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        errors.add(field, f"{field} must be a list of strings")
        return None
    if choices is not None:
        allowed = tuple(choices)
        bad = [v for v in value if v not in allowed]
        if bad:
            errors.add(field, f"Invalid {field}: {', '.join(bad)}")
            return None
    return [v.strip() for v in value]


def parse_json_list(value: Any) -> Any:
    """Forms send arrays as JSON strings; anything unparsable is returned as-is."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value
