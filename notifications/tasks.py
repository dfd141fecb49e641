from __future__ import annotations

import logging
from typing import Any, Dict

from celery import shared_task

from .channels import send_digest_email, send_webhook_alert
from .collectors import collect_unread_digest_jobs, deliver_jobs
from .models import AlertMessage

LOGGER = logging.getLogger(__name__)


@shared_task(name="notifications.tasks.deliver_alert")
def deliver_alert(payload: Dict[str, Any]) -> bool:
    return send_webhook_alert(AlertMessage.from_payload(payload))


@shared_task(name="notifications.tasks.probe_database")
def probe_database() -> str:
    from app import database_manager

    database_manager.force_check()
    state = database_manager.get_availability().value
    LOGGER.info("Scheduled database probe: %s", state)
    return state


@shared_task(name="notifications.tasks.send_unread_digests")
def send_unread_digests() -> str:
    from app import database_manager, remote_store

    if remote_store is None or not database_manager.is_available():
        LOGGER.info("Database unavailable; skipping unread digests")
        return "0"
    try:
        jobs = collect_unread_digest_jobs(remote_store)
    except Exception as exc:
        LOGGER.error("Could not collect unread digests: %s", exc)
        return "0"
    delivered = deliver_jobs(jobs, send_digest_email)
    LOGGER.info("Sent %d unread digests", delivered)
    return str(delivered)
