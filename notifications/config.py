"""Shared configuration defaults for the notification system."""
from __future__ import annotations

import os

ALERT_PERMISSIONS = {"granted", "denied", "default"}
DEFAULT_ALERT_ICON = "/favicon.ico"
DEFAULT_NOTIFICATION_LIMIT = 50
DIGEST_MAX_ITEMS = 10


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", ""}


def alert_permission() -> str:
    value = os.getenv("NOTIFY_ALERT_PERMISSION", "default").strip().lower()
    return value if value in ALERT_PERMISSIONS else "default"


def alert_webhook_url() -> str | None:
    return os.getenv("NOTIFY_WEBHOOK_URL") or None


def alerts_async() -> bool:
    return _flag("NOTIFY_ALERTS_ASYNC")


def digest_hour() -> int:
    return int(os.getenv("NOTIFY_DIGEST_HOUR", "7"))
