from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, current_app, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

logger = logging.getLogger(__name__)


# -------------------------
# API Error Handling
# -------------------------
@dataclass
class ApiError(Exception):
    message: str
    status: int = 400
    code: str = "bad_request"
    details: Optional[Dict[str, Any]] = None


def not_found(what: str) -> ApiError:
    return ApiError(f"{what} not found", 404, "not_found")


def forbidden(message: str = "Not authorized to access this resource") -> ApiError:
    return ApiError(message, 403, "forbidden")


def ok(data: Any = None, status: int = 200, message: Optional[str] = None,
       **extra: Any) -> Tuple[Response, int]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def fail(err: ApiError) -> Tuple[Response, int]:
    body: Dict[str, Any] = {"success": False, "message": err.message, "code": err.code}
    if err.details:
        if "errors" in err.details:
            body["errors"] = err.details["errors"]
        if "field" in err.details:
            body["field"] = err.details["field"]
        if "detail" in err.details and _expose_details():
            body["error"] = err.details["detail"]
    return jsonify(body), err.status


def _expose_details() -> bool:
    return current_app.config.get("APP_ENV") != "production"


# -------------------------
# Global Error Handlers
# -------------------------
def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        return fail(err)

    @app.errorhandler(404)
    def handle_404(_):
        return fail(ApiError("Route not found", 404, "not_found"))

    @app.errorhandler(405)
    def handle_405(_):
        return fail(ApiError("Method not allowed", 405, "method_not_allowed"))

    @app.errorhandler(RequestEntityTooLarge)
    def handle_413(_):
        return fail(ApiError("Upload is too large", 413, "payload_too_large"))

    @app.errorhandler(Exception)
    def handle_exception(e: Exception):
        if isinstance(e, HTTPException):
            return fail(ApiError(e.description or e.name, e.code or 500, "http_error"))
        rid = request.environ.get("request_id", "")
        logger.exception("Unhandled error (request_id=%s): %s", rid, e)
        body: Dict[str, Any] = {
            "success": False,
            "message": "Internal server error",
            "code": "internal_error",
            "request_id": rid,
        }
        if _expose_details():
            body["error"] = str(e)
        return jsonify(body), 500
