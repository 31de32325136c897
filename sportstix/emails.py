from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Dict, Optional, Tuple

from flask import current_app

from .utils import parse_datetime

logger = logging.getLogger(__name__)


def mail_enabled() -> bool:
    cfg = current_app.config
    return bool(cfg.get("SMTP_USER") and cfg.get("SMTP_PASS"))


def send_email(to: str, subject: str, html_body: str) -> bool:
    """Send one HTML message. Returns False when SMTP is not configured; raises on SMTP errors."""
    cfg = current_app.config
    if not mail_enabled():
        logger.info("Email not configured (SMTP_USER/SMTP_PASS not set), skipping '%s' to %s", subject, to)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{cfg['MAIL_FROM_NAME']} <{cfg['SMTP_USER']}>"
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html", "utf-8"))

    with smtplib.SMTP(cfg["SMTP_HOST"], cfg["SMTP_PORT"], timeout=10) as server:
        server.ehlo()
        server.starttls()
        server.login(cfg["SMTP_USER"], cfg["SMTP_PASS"])
        server.sendmail(cfg["SMTP_USER"], [to], msg.as_string())
    logger.info("Email sent: '%s' -> %s", subject, to)
    return True


def send_quietly(to: str, template: Tuple[str, str]) -> bool:
    """Best-effort delivery: failures are logged and never reach the caller."""
    subject, html_body = template
    try:
        return send_email(to, subject, html_body)
    except Exception:
        logger.exception("Email '%s' to %s failed", subject, to)
        return False


# -------------------------
# Templates
# -------------------------
def _fmt_date(value: Any) -> str:
    dt = parse_datetime(value)
    return dt.strftime("%Y-%m-%d") if dt else ""


def _wrap(inner: str) -> str:
    return f'<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{inner}</div>'


def welcome(user: Dict[str, Any]) -> Tuple[str, str]:
    url = f"{current_app.config['FRONTEND_URL'].rstrip('/')}/#/events"
    return (
        "Welcome to Sports Ticketing!",
        _wrap(
            f"<h2>Welcome to Sports Ticketing, {escape(user.get('name', ''))}!</h2>"
            "<p>Thank you for joining our platform. You're now ready to discover and book tickets "
            "for amazing sports events.</p>"
            f'<p><a href="{escape(url)}">Browse Events</a></p>'
        ),
    )


def ticket_confirmation(ticket: Dict[str, Any], event: Dict[str, Any], user: Dict[str, Any],
                        venue: Optional[Dict[str, Any]] = None) -> Tuple[str, str]:
    seat = ticket.get("seat_info") or {}
    venue_name = (venue or {}).get("name", "TBA")
    return (
        f"Ticket Confirmation - {event.get('title', '')}",
        _wrap(
            "<h2>Ticket Confirmed!</h2>"
            f"<p>Hi {escape(user.get('name', ''))},</p>"
            f"<p>Your ticket for <strong>{escape(event.get('title', ''))}</strong> has been confirmed.</p>"
            f"<p><strong>Date:</strong> {_fmt_date(event.get('date'))}<br>"
            f"<strong>Venue:</strong> {escape(venue_name)}<br>"
            f"<strong>Seat:</strong> {escape(str(seat.get('category', '')))} - {escape(str(seat.get('seat_number', '')))}<br>"
            f"<strong>Price:</strong> {float(ticket.get('price', 0.0)):.2f}</p>"
            f"<p>Your QR code: <strong>{escape(ticket.get('qr_code', ''))}</strong></p>"
            "<p>Please arrive at the venue 30 minutes before the event starts.</p>"
        ),
    )


def season_pass_purchase(season_pass: Dict[str, Any], user: Dict[str, Any]) -> Tuple[str, str]:
    period = season_pass.get("validity_period") or {}
    return (
        "Season Pass Purchase Confirmation",
        _wrap(
            "<h2>Season Pass Confirmed!</h2>"
            f"<p>Hi {escape(user.get('name', ''))},</p>"
            f"<p><strong>Pass Name:</strong> {escape(season_pass.get('name', ''))}<br>"
            f"<strong>Sport:</strong> {escape(season_pass.get('sport', ''))}<br>"
            f"<strong>Valid From:</strong> {_fmt_date(period.get('start'))}<br>"
            f"<strong>Valid Until:</strong> {_fmt_date(period.get('end'))}<br>"
            f"<strong>Price:</strong> {float(season_pass.get('price', 0.0)):.2f}</p>"
        ),
    )
