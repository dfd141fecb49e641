"""Shared fixtures: an in-memory database wired into the Flask app."""
import os
import tempfile

os.environ.setdefault("USE_DATABASE", "0")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="devtrack-tests-"))
os.environ.setdefault("NOTIFY_ALERT_PERMISSION", "denied")

import pytest

import app
from notifications.service import NotificationService
from storage.availability import DatabaseAvailabilityManager
from storage.database import RemoteStore
from storage.local_store import LocalStore


@pytest.fixture
def store():
    remote = RemoteStore("sqlite://")
    remote.create_schema()
    yield remote
    remote.dispose()


@pytest.fixture
def local(tmp_path):
    return LocalStore(str(tmp_path))


@pytest.fixture
def online(monkeypatch, store, local):
    """The app talking to a healthy database; returns the notification service."""
    service = NotificationService(store=store)
    monkeypatch.setattr(app, "remote_store", store)
    monkeypatch.setattr(app, "database_manager", DatabaseAvailabilityManager(store.probe, poll_interval=0.01))
    monkeypatch.setattr(app, "notification_service", service)
    monkeypatch.setattr(app, "local_store", local)
    return service


@pytest.fixture
def offline(monkeypatch, local):
    """The app with no database configured; returns the notification service."""
    service = NotificationService(store=None)
    monkeypatch.setattr(app, "remote_store", None)
    monkeypatch.setattr(app, "database_manager", DatabaseAvailabilityManager(None, poll_interval=0.01))
    monkeypatch.setattr(app, "notification_service", service)
    monkeypatch.setattr(app, "local_store", local)
    return service


def make_user(store, email="nick@example.com", full_name="Nick", password="secret123"):
    return store.insert(
        "users",
        {
            "email": email,
            "full_name": full_name,
            "password_hash": app.generate_password_hash(password),
        },
    )[0]


def login(client, user):
    with client.session_transaction() as sess:
        sess["_user_id"] = user["id"]
        sess["_fresh"] = True
