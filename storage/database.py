"""SQLAlchemy models and a table-based client for the DevTrack database."""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

LOGGER = logging.getLogger(__name__)

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class UserModel(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(120), nullable=False)
    password_hash = Column(String(255))
    title = Column(String(120))
    country = Column(String(80))
    tech_stack = Column(JSON, default=list)
    bio = Column(Text)
    profile_image_url = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ProjectModel(Base):
    __tablename__ = "projects"
    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    status = Column(String(32), default="planning", nullable=False)
    category = Column(String(64), default="web", nullable=False)
    tech_stack = Column(JSON, default=list)
    start_date = Column(Date)
    end_date = Column(Date)
    github_url = Column(String(255))
    live_url = Column(String(255))
    is_public = Column(Boolean, default=False, nullable=False)
    progress_percentage = Column(Integer, default=0, nullable=False)
    likes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ProjectLikeModel(Base):
    __tablename__ = "project_likes"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_like"),)
    id = Column(String(36), primary_key=True, default=_uuid)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TaskModel(Base):
    __tablename__ = "tasks"
    id = Column(String(36), primary_key=True, default=_uuid)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), default="todo", nullable=False)
    priority = Column(String(20), default="medium", nullable=False)
    due_date = Column(Date)
    tags = Column(JSON, default=list)
    estimated_hours = Column(Integer)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PostModel(Base):
    __tablename__ = "posts"
    id = Column(String(36), primary_key=True, default=_uuid)
    author_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(64), default="general", nullable=False)
    tags = Column(JSON, default=list)
    likes = Column(Integer, default=0, nullable=False)
    comments_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PostLikeModel(Base):
    __tablename__ = "post_likes"
    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_post_like"),)
    id = Column(String(36), primary_key=True, default=_uuid)
    post_id = Column(String(36), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PostCommentModel(Base):
    __tablename__ = "post_comments"
    id = Column(String(36), primary_key=True, default=_uuid)
    post_id = Column(String(36), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ConversationModel(Base):
    __tablename__ = "conversations"
    id = Column(String(36), primary_key=True, default=_uuid)
    participant_one = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    participant_two = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    last_message_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class MessageModel(Base):
    __tablename__ = "messages"
    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class NotificationModel(Base):
    __tablename__ = "notifications"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text)
    related_id = Column(String(64))
    related_data = Column(JSON)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


TABLES = {
    model.__tablename__: model
    for model in (
        UserModel,
        ProjectModel,
        ProjectLikeModel,
        TaskModel,
        PostModel,
        PostLikeModel,
        PostCommentModel,
        ConversationModel,
        MessageModel,
        NotificationModel,
    )
}

# ------------------------------- Error classification -------------------------------
TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
CONNECTION_ERROR = "CONNECTION_ERROR"
PERMISSION_ERROR = "PERMISSION_ERROR"
RATE_LIMITED = "RATE_LIMITED"
SERVER_ERROR = "SERVER_ERROR"
QUERY_ERROR = "QUERY_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

TABLE_MISSING_CODES = {"42P01", "PGRST116"}


class RemoteStoreError(Exception):
    """A database operation failed; ``code`` is one of the classification constants."""

    def __init__(self, message: str, code: str = UNKNOWN_ERROR, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.sqlstate = sqlstate


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (exc, orig):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode", "code"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str) and value:
                return value
    return None


def is_table_missing(exc: BaseException) -> bool:
    if isinstance(exc, RemoteStoreError):
        if exc.code == TABLE_NOT_FOUND:
            return True
    if _sqlstate(exc) in TABLE_MISSING_CODES:
        return True
    message = str(exc).lower()
    return "relation" in message or "does not exist" in message or "no such table" in message


def classify_error(exc: BaseException) -> str:
    """Map a driver or ORM exception onto a coarse error code."""
    if isinstance(exc, RemoteStoreError):
        return exc.code
    if is_table_missing(exc):
        return TABLE_NOT_FOUND
    message = str(exc).lower()
    if any(word in message for word in ("network", "connection", "timeout", "timed out", "unreachable", "could not connect")):
        return CONNECTION_ERROR
    if any(word in message for word in ("permission", "unauthorized", "forbidden", "access denied")):
        return PERMISSION_ERROR
    if ("rate" in message and "limit" in message) or "too many requests" in message:
        return RATE_LIMITED
    if any(word in message for word in ("internal server error", "service unavailable", "bad gateway")):
        return SERVER_ERROR
    if "syntax error" in message or "invalid query" in message:
        return QUERY_ERROR
    return UNKNOWN_ERROR


# ------------------------------- Row helpers -------------------------------
def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    return value


def row_to_dict(row) -> Dict[str, Any]:
    return {col.name: _serialize(getattr(row, col.name)) for col in row.__table__.columns}


def _coerce(model, values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unknown keys and parse ISO strings for date/datetime columns."""
    columns = model.__table__.columns
    result: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in columns:
            continue
        col_type = columns[key].type
        if isinstance(value, str) and value:
            if isinstance(col_type, DateTime):
                value = datetime.fromisoformat(value)
            elif isinstance(col_type, Date):
                value = date.fromisoformat(value[:10])
        elif value == "" and isinstance(col_type, (Date, DateTime)):
            value = None
        result[key] = value
    return result


class RemoteStore:
    """Generic select/insert/update/delete client keyed by table name."""

    def __init__(self, url: str, *, echo: bool = False):
        engine_kwargs: Dict[str, Any] = {"future": True, "echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
        self.url = url
        self.engine = create_engine(url, **engine_kwargs)
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "create_schema") from exc

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise RemoteStoreError(f'relation "{table}" does not exist', TABLE_NOT_FOUND, "42P01") from None

    def _wrap(self, exc: BaseException, operation: str) -> RemoteStoreError:
        code = classify_error(exc)
        LOGGER.debug("Database %s failed (%s): %s", operation, code, exc)
        return RemoteStoreError(str(exc), code, _sqlstate(exc))

    def _filtered(self, model, filters: Optional[Dict[str, Any]]):
        stmt = select(model)
        for key, value in (filters or {}).items():
            stmt = stmt.where(getattr(model, key) == value)
        return stmt

    def insert(self, table: str, rows: Union[Dict[str, Any], Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        model = self._model(table)
        batch = [rows] if isinstance(rows, dict) else list(rows)
        try:
            with self._sessions.begin() as session:
                created = [model(**_coerce(model, row)) for row in batch]
                session.add_all(created)
                session.flush()
                return [row_to_dict(obj) for obj in created]
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            raise self._wrap(exc, f"insert into {table}") from exc

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        model = self._model(table)
        stmt = self._filtered(model, filters)
        if order_by:
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self._sessions() as session:
                return [row_to_dict(obj) for obj in session.scalars(stmt).all()]
        except SQLAlchemyError as exc:
            raise self._wrap(exc, f"select from {table}") from exc

    def first(self, table: str, filters: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> int:
        model = self._model(table)
        changes = _coerce(model, values)
        if "updated_at" in model.__table__.columns and "updated_at" not in changes:
            changes["updated_at"] = datetime.utcnow()
        try:
            with self._sessions.begin() as session:
                matched = session.scalars(self._filtered(model, filters)).all()
                for obj in matched:
                    for key, value in changes.items():
                        setattr(obj, key, value)
                return len(matched)
        except (SQLAlchemyError, ValueError) as exc:
            raise self._wrap(exc, f"update {table}") from exc

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        model = self._model(table)
        try:
            with self._sessions.begin() as session:
                matched = session.scalars(self._filtered(model, filters)).all()
                for obj in matched:
                    session.delete(obj)
                return len(matched)
        except SQLAlchemyError as exc:
            raise self._wrap(exc, f"delete from {table}") from exc

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        model = self._model(table)
        stmt = select(func.count()).select_from(self._filtered(model, filters).subquery())
        try:
            with self._sessions() as session:
                return int(session.scalar(stmt) or 0)
        except SQLAlchemyError as exc:
            raise self._wrap(exc, f"count {table}") from exc

    def probe(self) -> None:
        """Cheap read proving the server is reachable and the schema exists."""
        stmt = select(func.count()).select_from(UserModel.__table__)
        try:
            with self._sessions() as session:
                session.execute(stmt.limit(1))
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "probe") from exc

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = [
    "Base",
    "TABLES",
    "RemoteStore",
    "RemoteStoreError",
    "classify_error",
    "is_table_missing",
    "row_to_dict",
]
