"""JSON file fallback for projects and tasks.

Deprecated: the database is the system of record. This store only keeps
rows created while the database was unreachable, under ``temp-`` ids.
"""
from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import portalocker

LOGGER = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"
COLLECTIONS = ("projects", "tasks")


def new_temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex[:12]}"


def is_temp_id(value: Optional[str]) -> bool:
    return bool(value) and str(value).startswith(TEMP_PREFIX)


@contextlib.contextmanager
def with_json_lock(path: str):
    lock_path = f"{path}.lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    with open(lock_path, "a+") as lock_file:
        portalocker.lock(lock_file, portalocker.LOCK_EX)
        try:
            yield
        finally:
            portalocker.unlock(lock_file)


def save_json_atomic(path: str, data: Any) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    with with_json_lock(path):
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        finally:
            with contextlib.suppress(OSError):
                os.remove(tmp)


def load_json(path: str, default: Any) -> Any:
    try:
        with with_json_lock(path):
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
    except FileNotFoundError:
        return default
    except (json.JSONDecodeError, OSError) as exc:
        LOGGER.warning("Could not read %s: %s", path, exc)
        return default


class LocalStore:
    """A list of dict rows per collection, one JSON file each."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def path(self, collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown local collection: {collection}")
        return os.path.join(self.data_dir, f"local_{collection}.json")

    def all(self, collection: str) -> List[Dict[str, Any]]:
        records = load_json(self.path(collection), [])
        if not isinstance(records, list):
            return []
        return [dict(r) for r in records if isinstance(r, dict)]

    def save_all(self, collection: str, records: List[Dict[str, Any]]) -> bool:
        try:
            save_json_atomic(self.path(collection), records)
            return True
        except OSError as exc:
            LOGGER.warning("Could not save local %s: %s", collection, exc)
            return False

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in self.all(collection) if r.get("id") == record_id), None)

    def add(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.utcnow().isoformat(timespec="seconds")
        item = {"id": new_temp_id(), "created_at": now, "updated_at": now, **record}
        records = self.all(collection)
        records.append(item)
        self.save_all(collection, records)
        return item

    def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        records = self.all(collection)
        for idx, record in enumerate(records):
            if record.get("id") == record_id:
                merged = {**record, **changes, "id": record_id}
                merged["updated_at"] = datetime.utcnow().isoformat(timespec="seconds")
                records[idx] = merged
                self.save_all(collection, records)
                return merged
        return None

    def remove(self, collection: str, record_id: str) -> bool:
        records = self.all(collection)
        kept = [r for r in records if r.get("id") != record_id]
        if len(kept) == len(records):
            return False
        return self.save_all(collection, kept)

    def remove_where(self, collection: str, **match: Any) -> int:
        records = self.all(collection)
        kept = [r for r in records if any(r.get(k) != v for k, v in match.items())]
        removed = len(records) - len(kept)
        if removed:
            self.save_all(collection, kept)
        return removed
