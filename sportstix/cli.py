from __future__ import annotations

import json
import os
import re
import secrets
from datetime import datetime, timezone

import click
from flask import Flask, current_app
from flask.cli import with_appcontext
from jose import jwt

from .auth import create_token
from .db import ensure_default_admin, get_db
from .utils import maybe_oid


@click.command("create-secret")
@click.option("--env-file", default=".env", show_default=True, help="Env file to update with JWT_SECRET.")
def create_secret(env_file: str) -> None:
    """Generate a 256-bit JWT secret and store it in the env file when present."""
    secret = secrets.token_hex(32)
    click.echo(f"Secret Key: {secret}")

    if not os.path.exists(env_file):
        click.echo(f"{env_file} not found. Add this line to it manually:")
        click.echo(f"JWT_SECRET={secret}")
        return

    with open(env_file, encoding="utf-8") as fh:
        content = fh.read()
    if re.search(r"^JWT_SECRET=.*$", content, flags=re.MULTILINE):
        content = re.sub(r"^JWT_SECRET=.*$", f"JWT_SECRET={secret}", content, flags=re.MULTILINE)
        click.echo(f"Updated existing JWT_SECRET in {env_file}")
    else:
        if content and not content.endswith("\n"):
            content += "\n"
        content += f"JWT_SECRET={secret}\n"
        click.echo(f"Added JWT_SECRET to {env_file}")
    with open(env_file, "w", encoding="utf-8") as fh:
        fh.write(content)


@click.command("generate-token")
@click.argument("user_id")
@click.option("--expires", default=None, help="Lifetime such as 7d, 12h or 30m (defaults to JWT_EXPIRE).")
@with_appcontext
def generate_token(user_id: str, expires: str | None) -> None:
    """Print a bearer token for USER_ID, for testing protected routes."""
    if maybe_oid(user_id) is None:
        raise click.BadParameter("must be a 24-character hex ObjectId", param_hint="USER_ID")
    token = create_token(user_id, expires)
    claims = jwt.get_unverified_claims(token)
    click.echo(f"Token: {token}")
    click.echo(f"Expires: {datetime.fromtimestamp(claims['exp'], tz=timezone.utc).isoformat()}")
    click.echo(f"Payload: {json.dumps(claims)}")
    click.echo(f"Authorization: Bearer {token}")


@click.command("seed-admin")
@with_appcontext
def seed_admin() -> None:
    """Create the default admin account if it does not exist yet."""
    cfg = current_app.config
    created = ensure_default_admin(get_db(), cfg["DEFAULT_ADMIN_EMAIL"], cfg["DEFAULT_ADMIN_PASSWORD"])
    click.echo("Default admin created." if created else "Default admin already exists.")


def register_commands(app: Flask) -> None:
    for command in (create_secret, generate_token, seed_admin):
        app.cli.add_command(command)
