# app.py
"""
Sports ticketing API
- Flask backend, JSON-only API under /api
- Bearer-token auth (python-jose) resolved through Flask-Login
- MongoDB via PyMongo
- Serves the single-page front end (static/main.html) at "/"
"""
from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Mapping, Optional

from flask import Flask, Response, request, send_file, send_from_directory
from pymongo.database import Database

from .auth import init_auth
from .cli import register_commands
from .config import PKG_DIR, Config, configure_logging
from .db import connect, ensure_default_admin, ensure_indexes
from .errors import ok, register_error_handlers
from .routes import register_blueprints

logger = logging.getLogger("sportstix")


def create_app(config: Optional[Mapping[str, Any]] = None, db: Optional[Database] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)
    configure_logging(app.config["LOG_LEVEL"])

    if db is None:
        db = connect(app.config["MONGO_URI"], app.config["MONGO_DB"])
    app.extensions["mongo_db"] = db
    ensure_indexes(db)
    ensure_default_admin(db, app.config["DEFAULT_ADMIN_EMAIL"], app.config["DEFAULT_ADMIN_PASSWORD"])

    init_auth(app)
    register_error_handlers(app)
    register_blueprints(app)
    register_commands(app)
    _register_hooks(app)
    _register_misc_routes(app)
    return app


def _register_hooks(app: Flask) -> None:
    # Attach a request id for debugging/traceability.
    @app.before_request
    def attach_request_id():
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.environ["request_id"] = rid

    @app.after_request
    def add_security_headers(resp: Response):
        # Minimal hardening without extra dependencies
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        if request.path.startswith("/api/"):
            resp.headers["Cache-Control"] = "no-store"
        resp.headers["X-Request-Id"] = request.environ.get("request_id", "")
        return resp


def _register_misc_routes(app: Flask) -> None:
    @app.get("/")
    def root():
        return send_file(os.path.join(PKG_DIR, "static", "main.html"))

    @app.get("/api/health")
    def health():
        return ok({"status": "up"})

    @app.get("/uploads/<path:filename>")
    def uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_DIR"], filename)


if __name__ == "__main__":
    # Production: run behind a WSGI server, e.g. gunicorn "sportstix:create_app()"
    application = create_app()
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    application.run(host=host, port=port, debug=debug)
