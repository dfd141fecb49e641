from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from storage.database import RemoteStore

from .config import DIGEST_MAX_ITEMS
from .models import DigestJob, Recipient

LOGGER = logging.getLogger(__name__)


def _unread_by_user(store: RemoteStore) -> Dict[str, List[Dict[str, Any]]]:
    results: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for row in store.select("notifications", {"is_read": False}, order_by="created_at", descending=True):
        results[row["user_id"]].append(row)
    return results


def build_recipient(user_id: str, profile: Optional[Dict[str, Any]]) -> Recipient:
    profile = profile or {}
    return Recipient(
        user_id=user_id,
        name=profile.get("full_name") or "there",
        email=profile.get("email"),
    )


def collect_unread_digest_jobs(store: RemoteStore, max_items: int = DIGEST_MAX_ITEMS) -> List[DigestJob]:
    """One digest per user with unread notifications, newest first, capped at ``max_items``."""
    unread = _unread_by_user(store)
    jobs: List[DigestJob] = []
    for user_id, rows in unread.items():
        profile = store.first("users", {"id": user_id})
        if not profile or not profile.get("email"):
            LOGGER.debug("No email on file for %s; skipping digest", user_id)
            continue
        job = DigestJob(recipient=build_recipient(user_id, profile))
        for row in rows[:max_items]:
            job.add({"id": row["id"], "title": row["title"], "type": row["type"], "created_at": row["created_at"]})
        jobs.append(job)
    return jobs


def deliver_jobs(jobs: List[DigestJob], sender) -> int:
    delivered = 0
    for job in jobs:
        if not job.items:
            continue
        try:
            if sender(job):
                delivered += 1
        except Exception:  # pragma: no cover - fatal logging only
            LOGGER.exception("Failed to send digest for %s", job.recipient.user_id)
    return delivered


__all__ = [
    "build_recipient",
    "collect_unread_digest_jobs",
    "deliver_jobs",
]
