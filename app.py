# app.py
from flask import Flask, request, jsonify, abort
import logging
import os
from datetime import datetime, date
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

import click
from flask_login import (
    LoginManager,
    UserMixin,
    login_user,
    logout_user,
    current_user,
    login_required,
)
from werkzeug.security import generate_password_hash, check_password_hash

from notifications.channels import show_alert
from notifications.config import DEFAULT_NOTIFICATION_LIMIT
from notifications.service import NotificationService
from storage.availability import (
    DatabaseAvailabilityManager,
    with_database_check,
)
from storage.database import RemoteStore, RemoteStoreError
from storage.local_store import LocalStore, is_temp_id

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-only-key")
app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=os.getenv("FLASK_ENV") == "production",
)

login_manager = LoginManager()
login_manager.init_app(app)

DEBUG = os.getenv("FLASK_ENV") != "production"

APP_MODE = os.environ.get("APP_MODE", "prod").lower()
DEMO = APP_MODE == "demo"
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.environ.get("DATA_DIR", BASE_DIR)

os.makedirs(DATA_DIR, exist_ok=True)


def _env_flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no"}


# ------------------------------- Paths / Config -------------------------------
USE_DATABASE = _env_flag("USE_DATABASE")
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URI")
DEFAULT_SQLITE_URL = f"sqlite:///{os.path.join(DATA_DIR, 'devtrack.db')}"
AUTO_CREATE_SCHEMA = _env_flag("AUTO_CREATE_SCHEMA")

if not DATABASE_URL and USE_DATABASE:
    DATABASE_URL = DEFAULT_SQLITE_URL

DB_ENABLED = bool(USE_DATABASE and DATABASE_URL)
DB_CACHE_SECONDS = float(os.getenv("DB_CACHE_SECONDS", "60"))
DB_PROBE_TIMEOUT = float(os.getenv("DB_PROBE_TIMEOUT", "3"))
DB_OPERATION_TIMEOUT = float(os.getenv("DB_OPERATION_TIMEOUT", "3"))

PUBLIC_PROJECT_LIMIT = 50
FEED_LIMIT = 50

PROJECT_STATUSES = {"planning", "in_progress", "completed", "on_hold"}
TASK_STATUSES = {"todo", "in_progress", "completed"}
TASK_PRIORITIES = {"low", "medium", "high"}
PROFILE_FIELDS = ("title", "country", "bio", "profile_image_url", "tech_stack")

remote_store: Optional[RemoteStore] = None
if DB_ENABLED:
    remote_store = RemoteStore(DATABASE_URL)
    if AUTO_CREATE_SCHEMA:
        try:
            remote_store.create_schema()
        except RemoteStoreError as exc:
            LOGGER.warning("Could not create database schema: %s", exc)

database_manager = DatabaseAvailabilityManager(
    remote_store.probe if remote_store is not None else None,
    cache_seconds=DB_CACHE_SECONDS,
    probe_timeout=DB_PROBE_TIMEOUT,
)
local_store = LocalStore(DATA_DIR)
notification_service = NotificationService(store=remote_store, alert=show_alert)


def db_call(operation: Callable[[], T], fallback: T, timeout: Optional[float] = None) -> T:
    return with_database_check(
        database_manager,
        operation,
        fallback,
        DB_OPERATION_TIMEOUT if timeout is None else timeout,
    )


# ------------------------------- Auth model -------------------------------
class AppUser(UserMixin):
    def __init__(self, user_id: str, email: str = "", full_name: str | None = None, picture: str | None = None):
        self.id = user_id
        self.email = email
        self.full_name = full_name or (email.split("@")[0] if email else user_id)
        self.picture = picture

    @classmethod
    def from_record(cls, record: dict):
        user_id = record.get("id")
        if not user_id:
            raise ValueError("User record missing id")
        return cls(
            user_id=user_id,
            email=record.get("email") or "",
            full_name=record.get("full_name"),
            picture=record.get("profile_image_url"),
        )


def current_user_id() -> str | None:
    if current_user.is_authenticated:
        return current_user.id
    return None


def require_user_id() -> str:
    user_id = current_user_id()
    if not user_id:
        abort(401)
    return user_id


def demo_guard(fn):
    @wraps(fn)
    def _w(*args, **kwargs):
        if DEMO and request.method in {"POST", "PUT", "PATCH", "DELETE"}:
            return jsonify({"error": "Demo mode: mutations are disabled."}), 403
        return fn(*args, **kwargs)
    return _w


def request_data() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


def _norm(s):
    return (s or "").strip().lower()


def normalize_tags(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        return []
    seen: list[str] = []
    for raw in items:
        tag = str(raw).strip()
        if tag and tag.lower() not in {t.lower() for t in seen}:
            seen.append(tag)
    return seen


def parse_date(date_str):
    if not date_str:
        return None
    try:
        return datetime.fromisoformat(str(date_str)[:10]).date()
    except ValueError:
        return None


def _now_iso() -> str:
    return datetime.utcnow().isoformat(timespec="seconds")


# ------------------------------- Users -------------------------------
def find_user_record(user_id: str | None):
    if not user_id:
        return None
    return db_call(lambda: remote_store.first("users", {"id": user_id}), None)


def find_user_by_email(email: str):
    email = _norm(email)
    if not email:
        return None
    return db_call(lambda: remote_store.first("users", {"email": email}), None)


def create_user(email: str, full_name: str, password: str, **profile: Any):
    """Insert a user row; returns the row, or None when the email is taken or the database is down."""
    email = _norm(email)

    def _create():
        if remote_store.first("users", {"email": email}):
            return None
        row = {
            **{k: profile.get(k) for k in PROFILE_FIELDS if profile.get(k)},
            "email": email,
            "full_name": full_name.strip() or email.split("@")[0],
            "password_hash": generate_password_hash(password),
            "tech_stack": normalize_tags(profile.get("tech_stack")),
        }
        return remote_store.insert("users", row)[0]

    return db_call(_create, None)


def public_profile(record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not record:
        return None
    return {k: v for k, v in record.items() if k != "password_hash"}


def sender_details(user_id: str) -> tuple[str, Optional[str]]:
    if getattr(current_user, "is_authenticated", False) and current_user.id == user_id:
        return current_user.full_name, current_user.picture
    record = find_user_record(user_id) or {}
    return record.get("full_name") or "Someone", record.get("profile_image_url")


@login_manager.user_loader
def load_logged_in_user(user_id: str):
    record = find_user_record(user_id)
    if record:
        return AppUser.from_record(record)
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


# ------------------------------- Projects -------------------------------
def _project_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key in ("title", "description", "category", "github_url", "live_url", "start_date", "end_date"):
        if key in data:
            fields[key] = (data.get(key) or "").strip() if isinstance(data.get(key), str) else data.get(key)
    for key in ("start_date", "end_date"):
        if fields.get(key) and not parse_date(fields[key]):
            raise ValueError(f"Invalid {key}")
    if "status" in data:
        status = _norm(data.get("status"))
        if status not in PROJECT_STATUSES:
            raise ValueError(f"Invalid project status: {data.get('status')}")
        fields["status"] = status
    if "tech_stack" in data:
        fields["tech_stack"] = normalize_tags(data.get("tech_stack"))
    if "is_public" in data:
        fields["is_public"] = bool(data.get("is_public"))
    if "progress_percentage" in data:
        progress = int(data.get("progress_percentage") or 0)
        fields["progress_percentage"] = max(0, min(100, progress))
    return fields


def create_project(user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = _project_fields(data)
    if not fields.get("title"):
        raise ValueError("Project title required.")
    row = {"status": "planning", "category": "web", "is_public": False, "likes": 0, **fields, "creator_id": user_id}

    created = db_call(lambda: remote_store.insert("projects", row)[0], None)
    if created:
        return {**created, "is_temporary": False}

    LOGGER.info("Database not available, storing project '%s' locally", row["title"])
    return {**local_store.add("projects", row), "is_temporary": True}


def get_user_projects(user_id: str) -> List[Dict[str, Any]]:
    local_projects = [p for p in local_store.all("projects") if p.get("creator_id") == user_id]
    temp_projects = [p for p in local_projects if is_temp_id(p.get("id"))]
    remote = db_call(
        lambda: remote_store.select("projects", {"creator_id": user_id}, order_by="created_at", descending=True),
        None,
    )
    if remote is None:
        return local_projects
    return temp_projects + remote


def get_public_projects() -> List[Dict[str, Any]]:
    remote = db_call(
        lambda: remote_store.select(
            "projects", {"is_public": True}, order_by="created_at", descending=True, limit=PUBLIC_PROJECT_LIMIT
        ),
        None,
    )
    if remote is None:
        return [p for p in local_store.all("projects") if p.get("is_public")][:PUBLIC_PROJECT_LIMIT]
    return remote


def get_project(project_id: str) -> Optional[Dict[str, Any]]:
    if is_temp_id(project_id):
        return local_store.get("projects", project_id)
    return db_call(lambda: remote_store.first("projects", {"id": project_id}), None)


def update_project(project_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    fields = _project_fields(data)
    if is_temp_id(project_id):
        return local_store.update("projects", project_id, fields)

    def _update():
        if not remote_store.update("projects", fields, {"id": project_id}):
            return None
        return remote_store.first("projects", {"id": project_id})

    return db_call(_update, None)


def delete_project(project_id: str) -> bool:
    if is_temp_id(project_id):
        local_store.remove_where("tasks", project_id=project_id)
        return local_store.remove("projects", project_id)
    return db_call(lambda: remote_store.delete("projects", {"id": project_id}) > 0, False)


def toggle_project_like(project_id: str, user_id: str) -> Dict[str, Any]:
    if is_temp_id(project_id):
        return {"success": False, "liked": False, "error": "Likes need the database"}

    def _toggle():
        match = {"project_id": project_id, "user_id": user_id}
        if remote_store.first("project_likes", match):
            remote_store.delete("project_likes", match)
            liked = False
        else:
            remote_store.insert("project_likes", match)
            liked = True
        likes = remote_store.count("project_likes", {"project_id": project_id})
        remote_store.update("projects", {"likes": likes}, {"id": project_id})
        return {"success": True, "liked": liked, "likes": likes}

    return db_call(_toggle, {"success": False, "liked": False, "error": "Database not available"})


def share_project(project: Dict[str, Any], sender_id: str, recipient_id: str, invite: bool = False) -> bool:
    if recipient_id == sender_id:
        raise ValueError("Cannot share a project with yourself.")
    sender_name, sender_picture = sender_details(sender_id)
    notify = (
        notification_service.notify_collaboration_invite
        if invite
        else notification_service.notify_project_shared
    )
    return notify(recipient_id, sender_id, sender_name, sender_picture, project["id"], project.get("title") or "Untitled")


def request_collaboration(project: Dict[str, Any], requester_id: str, message: Optional[str] = None) -> bool:
    owner_id = project.get("creator_id")
    if not owner_id or owner_id == requester_id:
        raise ValueError("Cannot request to join your own project.")
    sender_name, sender_picture = sender_details(requester_id)
    return notification_service.notify_collaboration_request(
        owner_id, requester_id, sender_name, sender_picture, project["id"], project.get("title") or "Untitled", message
    )


# ------------------------------- Tasks -------------------------------
def _task_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key in ("title", "description", "due_date"):
        if key in data:
            value = data.get(key)
            fields[key] = value.strip() if isinstance(value, str) else value
    if fields.get("due_date") and not parse_date(fields["due_date"]):
        raise ValueError("Invalid due_date")
    if "status" in data:
        status = _norm(data.get("status"))
        if status not in TASK_STATUSES:
            raise ValueError(f"Invalid task status: {data.get('status')}")
        fields["status"] = status
        fields["completed_at"] = _now_iso() if status == "completed" else None
    if "priority" in data:
        priority = _norm(data.get("priority"))
        if priority not in TASK_PRIORITIES:
            raise ValueError(f"Invalid task priority: {data.get('priority')}")
        fields["priority"] = priority
    if "tags" in data:
        fields["tags"] = normalize_tags(data.get("tags"))
    if data.get("estimated_hours") not in (None, ""):
        fields["estimated_hours"] = int(data["estimated_hours"])
    return fields


def create_task(project_id: str, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = _task_fields(data)
    if not fields.get("title"):
        raise ValueError("Task title required.")
    row = {"status": "todo", "priority": "medium", "tags": [], **fields, "project_id": project_id, "user_id": user_id}

    if not is_temp_id(project_id):
        created = db_call(lambda: remote_store.insert("tasks", row)[0], None)
        if created:
            return {**created, "is_temporary": False}
    return {**local_store.add("tasks", row), "is_temporary": True}


def get_project_tasks(project_id: str) -> List[Dict[str, Any]]:
    local_tasks = [t for t in local_store.all("tasks") if t.get("project_id") == project_id]
    if is_temp_id(project_id):
        return local_tasks
    remote = db_call(
        lambda: remote_store.select("tasks", {"project_id": project_id}, order_by="created_at"),
        None,
    )
    if remote is None:
        return local_tasks
    return remote + local_tasks


def get_task(task_id: str) -> Optional[Dict[str, Any]]:
    if is_temp_id(task_id):
        return local_store.get("tasks", task_id)
    return db_call(lambda: remote_store.first("tasks", {"id": task_id}), None)


def update_task(task_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    fields = _task_fields(data)
    if is_temp_id(task_id):
        return local_store.update("tasks", task_id, fields)

    def _update():
        if not remote_store.update("tasks", fields, {"id": task_id}):
            return None
        return remote_store.first("tasks", {"id": task_id})

    return db_call(_update, None)


def delete_task(task_id: str) -> bool:
    if is_temp_id(task_id):
        return local_store.remove("tasks", task_id)
    return db_call(lambda: remote_store.delete("tasks", {"id": task_id}) > 0, False)


def task_stats(tasks: List[Dict[str, Any]]) -> Dict[str, Any]:
    today = date.today()
    total = len(tasks)
    completed = sum(1 for t in tasks if t.get("status") == "completed")
    overdue = 0
    for t in tasks:
        due = parse_date(t.get("due_date"))
        if due and due < today and t.get("status") != "completed":
            overdue += 1
    return {
        "total": total,
        "completed": completed,
        "in_progress": sum(1 for t in tasks if t.get("status") == "in_progress"),
        "todo": sum(1 for t in tasks if t.get("status") == "todo"),
        "overdue": overdue,
        "completion_rate": round(completed * 100 / total) if total else 0,
    }


# ------------------------------- Community -------------------------------
def create_post(author_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    title = (data.get("title") or "").strip()
    content = (data.get("content") or "").strip()
    if not title or not content:
        raise ValueError("Post title and content required.")
    row = {
        "author_id": author_id,
        "title": title,
        "content": content,
        "category": _norm(data.get("category")) or "general",
        "tags": normalize_tags(data.get("tags")),
    }
    post = db_call(lambda: remote_store.insert("posts", row)[0], None)
    if post:
        mentions = [uid for uid in normalize_tags(data.get("mentions")) if uid != author_id]
        if mentions:
            sender_name, sender_picture = sender_details(author_id)
            for uid in mentions:
                notification_service.notify_mention(
                    uid, author_id, sender_name, sender_picture, post["id"], "post", content[:140]
                )
    return post


def get_posts(limit: int = FEED_LIMIT) -> List[Dict[str, Any]]:
    return db_call(lambda: remote_store.select("posts", order_by="created_at", descending=True, limit=limit), [])


def toggle_post_like(post_id: str, user_id: str) -> Dict[str, Any]:
    def _toggle():
        post = remote_store.first("posts", {"id": post_id})
        if not post:
            return {"success": False, "liked": False, "error": "Post not found"}
        match = {"post_id": post_id, "user_id": user_id}
        if remote_store.first("post_likes", match):
            remote_store.delete("post_likes", match)
            liked = False
        else:
            remote_store.insert("post_likes", match)
            liked = True
        likes = remote_store.count("post_likes", {"post_id": post_id})
        remote_store.update("posts", {"likes": likes}, {"id": post_id})
        return {"success": True, "liked": liked, "likes": likes, "post": post}

    result = db_call(_toggle, {"success": False, "liked": False, "error": "Database not available"})
    post = result.pop("post", None)
    if result.get("liked") and post and post.get("author_id") != user_id:
        sender_name, sender_picture = sender_details(user_id)
        notification_service.notify_post_like(
            post["author_id"], user_id, sender_name, sender_picture, post_id, post.get("title") or ""
        )
    return result


def add_post_comment(post_id: str, author_id: str, content: str) -> Optional[Dict[str, Any]]:
    content = (content or "").strip()
    if not content:
        raise ValueError("Comment content required.")

    def _comment():
        post = remote_store.first("posts", {"id": post_id})
        if not post:
            return None
        comment = remote_store.insert("post_comments", {"post_id": post_id, "author_id": author_id, "content": content})[0]
        remote_store.update(
            "posts", {"comments_count": remote_store.count("post_comments", {"post_id": post_id})}, {"id": post_id}
        )
        return comment, post

    result = db_call(_comment, None)
    if result is None:
        return None
    comment, post = result
    if post.get("author_id") != author_id:
        sender_name, sender_picture = sender_details(author_id)
        notification_service.notify_post_comment(
            post["author_id"], author_id, sender_name, sender_picture, post_id, content
        )
    return comment


def get_post_comments(post_id: str) -> List[Dict[str, Any]]:
    return db_call(lambda: remote_store.select("post_comments", {"post_id": post_id}, order_by="created_at"), [])


# ------------------------------- Messaging -------------------------------
def _other_participant(conversation: Dict[str, Any], user_id: str) -> Optional[str]:
    if conversation.get("participant_one") == user_id:
        return conversation.get("participant_two")
    if conversation.get("participant_two") == user_id:
        return conversation.get("participant_one")
    return None


def get_or_create_conversation(user_id: str, other_id: str) -> Optional[Dict[str, Any]]:
    if user_id == other_id:
        raise ValueError("Cannot start a conversation with yourself.")

    def _find_or_create():
        for one, two in ((user_id, other_id), (other_id, user_id)):
            existing = remote_store.first("conversations", {"participant_one": one, "participant_two": two})
            if existing:
                return existing
        return remote_store.insert("conversations", {"participant_one": user_id, "participant_two": other_id})[0]

    return db_call(_find_or_create, None)


def get_conversations(user_id: str) -> List[Dict[str, Any]]:
    def _list():
        rows = remote_store.select("conversations", {"participant_one": user_id})
        rows += remote_store.select("conversations", {"participant_two": user_id})
        return sorted(rows, key=lambda c: c.get("last_message_at") or c.get("created_at") or "", reverse=True)

    return db_call(_list, [])


def send_message(conversation_id: str, sender_id: str, content: str) -> Optional[Dict[str, Any]]:
    content = (content or "").strip()
    if not content:
        raise ValueError("Message content required.")

    def _send():
        conversation = remote_store.first("conversations", {"id": conversation_id})
        recipient_id = _other_participant(conversation or {}, sender_id)
        if not recipient_id:
            return None
        message = remote_store.insert(
            "messages", {"conversation_id": conversation_id, "sender_id": sender_id, "content": content}
        )[0]
        remote_store.update("conversations", {"last_message_at": message["created_at"]}, {"id": conversation_id})
        return message, recipient_id

    result = db_call(_send, None)
    if result is None:
        return None
    message, recipient_id = result
    sender_name, sender_picture = sender_details(sender_id)
    notification_service.notify_new_message(
        recipient_id, sender_id, sender_name, sender_picture, conversation_id, content
    )
    return message


def get_messages(conversation_id: str, user_id: str) -> Optional[List[Dict[str, Any]]]:
    def _list():
        conversation = remote_store.first("conversations", {"id": conversation_id})
        if not _other_participant(conversation or {}, user_id):
            return None
        return remote_store.select("messages", {"conversation_id": conversation_id}, order_by="created_at")

    return db_call(_list, None)


def notification_owned_by(notification_id: str, user_id: str) -> bool:
    return db_call(
        lambda: remote_store.first("notifications", {"id": notification_id, "user_id": user_id}) is not None,
        False,
    )


# ------------------------------- Health -------------------------------
@app.get("/healthz")
def healthz():
    return {"ok": True, "mode": APP_MODE}, 200


@app.get("/api/system/database")
def database_status():
    if request.args.get("force"):
        available = database_manager.force_check()
    else:
        available = database_manager.is_available()
    return jsonify({
        "state": database_manager.get_availability().value,
        "available": available,
        "configured": remote_store is not None,
    })


@app.errorhandler(ValueError)
def handle_value_error(exc):
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(401)
@app.errorhandler(403)
@app.errorhandler(404)
def handle_http_error(exc):
    return jsonify({"error": exc.description or exc.name}), exc.code


# ------------------------------- Auth -------------------------------
@app.route("/api/auth/signup", methods=["POST"])
@demo_guard
def signup():
    data = request_data()
    email = _norm(data.get("email"))
    password = data.get("password") or ""
    if "@" not in email or len(password) < 6:
        return jsonify({"error": "A valid email and a password of at least 6 characters are required."}), 400
    if not database_manager.is_available():
        return jsonify({"error": "Database not available"}), 503
    if find_user_by_email(email):
        return jsonify({"error": "Email already registered."}), 409
    profile = {k: data.get(k) for k in PROFILE_FIELDS if data.get(k)}
    record = create_user(email, data.get("full_name") or "", password, **profile)
    if not record:
        return jsonify({"error": "Could not create account."}), 503
    login_user(AppUser.from_record(record))
    return jsonify(public_profile(record)), 201


@app.route("/api/auth/login", methods=["POST"])
def login():
    data = request_data()
    record = find_user_by_email(data.get("email") or "")
    if record and record.get("password_hash") and check_password_hash(record["password_hash"], data.get("password") or ""):
        login_user(AppUser.from_record(record))
        return jsonify(public_profile(record))
    return jsonify({"error": "Invalid credentials."}), 401


@app.route("/api/auth/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@app.get("/api/me")
@login_required
def me():
    user_id = require_user_id()
    profile = public_profile(find_user_record(user_id)) or {"id": user_id, "email": current_user.email}
    profile["unread_notifications"] = notification_service.get_unread_count(user_id)
    return jsonify(profile)


@app.post("/api/users/<user_id>/connect")
@login_required
@demo_guard
def connect_user(user_id):
    sender_id = require_user_id()
    if user_id == sender_id:
        return jsonify({"error": "Cannot connect with yourself."}), 400
    sender_name, sender_picture = sender_details(sender_id)
    ok = notification_service.notify_connection_request(
        user_id, sender_id, sender_name, sender_picture, request_data().get("message")
    )
    return jsonify({"ok": ok})


# ------------------------------- Projects -------------------------------
def _owned_project_or_404(project_id: str, user_id: str) -> Dict[str, Any]:
    project = get_project(project_id)
    if not project:
        abort(404)
    if project.get("creator_id") != user_id:
        abort(403)
    return project


@app.route("/api/projects", methods=["GET"])
@login_required
def list_projects():
    user_id = require_user_id()
    projects = get_user_projects(user_id)
    return jsonify({"projects": projects, "database": database_manager.get_availability().value})


@app.route("/api/projects", methods=["POST"])
@login_required
@demo_guard
def add_project():
    project = create_project(require_user_id(), request_data())
    return jsonify(project), 201


@app.get("/api/projects/public")
def public_projects():
    return jsonify({"projects": get_public_projects()})


@app.get("/api/projects/<project_id>")
@login_required
def project_detail(project_id):
    user_id = require_user_id()
    project = get_project(project_id)
    if not project or (project.get("creator_id") != user_id and not project.get("is_public")):
        return jsonify({"error": "Project not found"}), 404
    tasks = get_project_tasks(project_id)
    return jsonify({**project, "tasks": tasks, "stats": task_stats(tasks)})


@app.route("/api/projects/<project_id>", methods=["PATCH"])
@login_required
@demo_guard
def edit_project(project_id):
    _owned_project_or_404(project_id, require_user_id())
    updated = update_project(project_id, request_data())
    if not updated:
        return jsonify({"error": "Project could not be updated"}), 503
    return jsonify(updated)


@app.route("/api/projects/<project_id>", methods=["DELETE"])
@login_required
@demo_guard
def remove_project(project_id):
    _owned_project_or_404(project_id, require_user_id())
    if not delete_project(project_id):
        return jsonify({"error": "Project could not be deleted"}), 503
    return jsonify({"ok": True})


@app.post("/api/projects/<project_id>/like")
@login_required
@demo_guard
def like_project(project_id):
    result = toggle_project_like(project_id, require_user_id())
    return jsonify(result), (200 if result.get("success") else 503)


@app.post("/api/projects/<project_id>/share")
@login_required
@demo_guard
def share_project_route(project_id):
    user_id = require_user_id()
    project = _owned_project_or_404(project_id, user_id)
    data = request_data()
    recipient_id = data.get("recipient_id")
    if not recipient_id:
        return jsonify({"error": "recipient_id required"}), 400
    ok = share_project(project, user_id, recipient_id, invite=bool(data.get("invite")))
    return jsonify({"ok": ok})


@app.post("/api/projects/<project_id>/collaborate")
@login_required
@demo_guard
def request_collaboration_route(project_id):
    user_id = require_user_id()
    project = get_project(project_id)
    if not project or (not project.get("is_public") and project.get("creator_id") != user_id):
        return jsonify({"error": "Project not found"}), 404
    ok = request_collaboration(project, user_id, request_data().get("message"))
    return jsonify({"ok": ok})


# ------------------------------- Tasks -------------------------------
def _task_in_owned_project(task_id: str, user_id: str) -> Dict[str, Any]:
    task = get_task(task_id)
    if not task:
        abort(404)
    _owned_project_or_404(task["project_id"], user_id)
    return task


@app.route("/api/projects/<project_id>/tasks", methods=["GET"])
@login_required
def list_tasks(project_id):
    _owned_project_or_404(project_id, require_user_id())
    tasks = get_project_tasks(project_id)
    return jsonify({"tasks": tasks, "stats": task_stats(tasks)})


@app.route("/api/projects/<project_id>/tasks", methods=["POST"])
@login_required
@demo_guard
def add_task(project_id):
    user_id = require_user_id()
    _owned_project_or_404(project_id, user_id)
    return jsonify(create_task(project_id, user_id, request_data())), 201


@app.route("/api/tasks/<task_id>", methods=["PATCH"])
@login_required
@demo_guard
def edit_task(task_id):
    _task_in_owned_project(task_id, require_user_id())
    updated = update_task(task_id, request_data())
    if not updated:
        return jsonify({"error": "Task could not be updated"}), 503
    return jsonify(updated)


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@login_required
@demo_guard
def remove_task(task_id):
    _task_in_owned_project(task_id, require_user_id())
    if not delete_task(task_id):
        return jsonify({"error": "Task could not be deleted"}), 503
    return jsonify({"ok": True})


# ------------------------------- Community -------------------------------
@app.get("/api/posts")
def feed():
    limit = max(1, min(int(request.args.get("limit", FEED_LIMIT)), FEED_LIMIT))
    return jsonify({"posts": get_posts(limit)})


@app.post("/api/posts")
@login_required
@demo_guard
def add_post():
    post = create_post(require_user_id(), request_data())
    if not post:
        return jsonify({"error": "Database not available"}), 503
    return jsonify(post), 201


@app.post("/api/posts/<post_id>/like")
@login_required
@demo_guard
def like_post(post_id):
    result = toggle_post_like(post_id, require_user_id())
    if result.get("error") == "Post not found":
        return jsonify(result), 404
    return jsonify(result), (200 if result.get("success") else 503)


@app.get("/api/posts/<post_id>/comments")
def list_comments(post_id):
    return jsonify({"comments": get_post_comments(post_id)})


@app.post("/api/posts/<post_id>/comments")
@login_required
@demo_guard
def add_comment(post_id):
    comment = add_post_comment(post_id, require_user_id(), request_data().get("content"))
    if not comment:
        return jsonify({"error": "Comment could not be saved"}), 503
    return jsonify(comment), 201


# ------------------------------- Messaging -------------------------------
@app.get("/api/conversations")
@login_required
def list_conversations():
    return jsonify({"conversations": get_conversations(require_user_id())})


@app.post("/api/conversations")
@login_required
@demo_guard
def start_conversation():
    other_id = request_data().get("user_id")
    if not other_id:
        return jsonify({"error": "user_id required"}), 400
    conversation = get_or_create_conversation(require_user_id(), other_id)
    if not conversation:
        return jsonify({"error": "Database not available"}), 503
    return jsonify(conversation)


@app.get("/api/conversations/<conversation_id>/messages")
@login_required
def list_messages(conversation_id):
    messages = get_messages(conversation_id, require_user_id())
    if messages is None:
        return jsonify({"error": "Conversation not found"}), 404
    return jsonify({"messages": messages})


@app.post("/api/conversations/<conversation_id>/messages")
@login_required
@demo_guard
def post_message(conversation_id):
    message = send_message(conversation_id, require_user_id(), request_data().get("content"))
    if not message:
        return jsonify({"error": "Message could not be sent"}), 404
    return jsonify(message), 201


# ------------------------------- Notifications -------------------------------
@app.get("/api/notifications")
@login_required
def list_notifications():
    user_id = require_user_id()
    limit = max(1, min(int(request.args.get("limit", DEFAULT_NOTIFICATION_LIMIT)), DEFAULT_NOTIFICATION_LIMIT))
    return jsonify({
        "notifications": notification_service.get_notifications(user_id, limit),
        "unread": notification_service.get_unread_count(user_id),
    })


@app.get("/api/notifications/unread-count")
@login_required
def unread_count():
    return jsonify({"unread": notification_service.get_unread_count(require_user_id())})


@app.post("/api/notifications/read-all")
@login_required
def read_all_notifications():
    return jsonify({"ok": notification_service.mark_all_as_read(require_user_id())})


@app.post("/api/notifications/<notification_id>/read")
@login_required
def read_notification(notification_id):
    if not notification_owned_by(notification_id, require_user_id()):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"ok": notification_service.mark_as_read(notification_id)})


@app.delete("/api/notifications/<notification_id>")
@login_required
def remove_notification(notification_id):
    if not notification_owned_by(notification_id, require_user_id()):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"ok": notification_service.delete_notification(notification_id)})


# ------------------------------- CLI -------------------------------
@app.cli.command("init-db")
def init_db_command():
    """Create the DevTrack tables in the configured database."""
    if remote_store is None:
        raise click.ClickException("No database configured (set DATABASE_URL or USE_DATABASE=1).")
    try:
        remote_store.create_schema()
    except RemoteStoreError as exc:
        raise click.ClickException(f"Schema creation failed ({exc.code}): {exc}")
    available = database_manager.force_check()
    click.echo(f"Database schema ready; availability: {'available' if available else 'unavailable'}")


# ------------- Run -------------
if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if DEBUG else logging.INFO)
    app.run(debug=DEBUG)
