from __future__ import annotations

import json
import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Optional

import requests

from .config import DEFAULT_ALERT_ICON, alert_permission, alert_webhook_url, alerts_async
from .models import AlertMessage, DigestJob, NotificationRecord

LOGGER = logging.getLogger(__name__)


def _smtp_connection():
    host = os.getenv("SMTP_HOST")
    port = int(os.getenv("SMTP_PORT", "587"))
    username = os.getenv("SMTP_USERNAME")
    password = os.getenv("SMTP_PASSWORD")
    use_tls = os.getenv("SMTP_USE_TLS", "1") not in {"0", "false", "False"}

    if not host:
        return None

    server = smtplib.SMTP(host, port, timeout=10)
    try:
        if use_tls:
            server.starttls()
        if username and password:
            server.login(username, password)
    except Exception:
        server.quit()
        raise
    return server


def build_alert(record: NotificationRecord) -> AlertMessage:
    icon = None
    if record.related_data is not None:
        icon = record.related_data.sender_picture
    return AlertMessage(
        title=record.title,
        body=record.content,
        icon=icon or DEFAULT_ALERT_ICON,
        tag=record.tag,
        user_id=record.user_id,
    )


def send_webhook_alert(message: AlertMessage, webhook_url: Optional[str] = None) -> bool:
    """Post the alert to the configured push webhook."""
    webhook_url = webhook_url or alert_webhook_url()
    if not webhook_url:
        LOGGER.debug("Skipping alert '%s': NOTIFY_WEBHOOK_URL not configured", message.title)
        return False

    payload = {
        "username": os.getenv("NOTIFY_BOT_NAME", "DevTrack Africa"),
        "content": f"**{message.title}**\n{message.body or ''}".rstrip(),
        "alert": message.to_payload(),
    }
    headers = {"Content-Type": "application/json"}

    try:
        resp = requests.post(webhook_url, headers=headers, data=json.dumps(payload), timeout=5)
        if resp.status_code >= 400:
            LOGGER.error("Alert webhook responded with %s: %s", resp.status_code, resp.text[:120])
            return False
        LOGGER.info("Sent alert '%s' (%s)", message.title, message.tag)
        return True
    except requests.RequestException as exc:
        LOGGER.error("Failed to send alert '%s': %s", message.title, exc)
        return False


def show_alert(record: NotificationRecord) -> bool:
    """Best-effort alert for a notification, gated by the alert permission."""
    if alert_permission() != "granted":
        return False
    message = build_alert(record)
    if alerts_async():
        from celery_app import celery_app

        celery_app.send_task("notifications.tasks.deliver_alert", args=[message.to_payload()])
        return True
    return send_webhook_alert(message)


def send_digest_email(job: DigestJob) -> bool:
    """Email a summary of unread notifications."""
    recipient = job.recipient
    if not recipient.email:
        LOGGER.info("Skipping digest for %s: no address", recipient.user_id)
        return False

    sender = os.getenv("NOTIFY_FROM_EMAIL") or os.getenv("SMTP_DEFAULT_SENDER")
    if not sender:
        LOGGER.warning("Skipping digest email: NOTIFY_FROM_EMAIL not configured")
        return False

    count = len(job.items)
    lines = [f"Hi {recipient.name}, you have {count} unread notification{'s' if count != 1 else ''}:", ""]
    lines.extend(f"- {item.get('title')}" for item in job.items)

    email = EmailMessage()
    email["Subject"] = f"DevTrack: {count} unread notification{'s' if count != 1 else ''}"
    email["From"] = sender
    email["To"] = recipient.email
    email.set_content("\n".join(lines))

    try:
        server = _smtp_connection()
        if server is None:
            LOGGER.warning("SMTP_HOST not configured; digest suppressed")
            return False
        with server:
            server.send_message(email)
        LOGGER.info("Sent unread digest to %s", recipient.email)
        return True
    except (smtplib.SMTPException, OSError) as exc:  # pragma: no cover - network dependant
        LOGGER.error("Failed to send digest email: %s", exc)
        return False
