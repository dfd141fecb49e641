from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class NotificationKind(str, Enum):
    NEW_MESSAGE = "new_message"
    POST_COMMENT = "post_comment"
    POST_LIKE = "post_like"
    COLLABORATION_INVITE = "collaboration_invite"
    COLLABORATION_REQUEST = "collaboration_request"
    PROJECT_SHARED = "project_shared"
    MENTION = "mention"
    CONNECTION_REQUEST = "connection_request"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class SenderMetadata:
    """Who triggered a notification and which entity it points at."""

    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    sender_picture: Optional[str] = None
    conversation_id: Optional[str] = None
    post_id: Optional[str] = None
    project_id: Optional[str] = None
    message_preview: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SenderMetadata"]:
        if not data:
            return None
        known = {key: data.get(key) for key in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    """Structured notification addressed to one user."""

    user_id: str
    kind: NotificationKind
    title: str
    content: Optional[str] = None
    related_id: Optional[str] = None
    related_data: Optional[SenderMetadata] = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Notification requires a recipient user_id")
        if not self.title:
            raise ValueError("Notification requires a title")
        if not isinstance(self.kind, NotificationKind):
            object.__setattr__(self, "kind", NotificationKind(self.kind))

    @property
    def tag(self) -> str:
        return f"{self.kind.value}-{self.related_id}"

    def to_row(self, created_at: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.kind.value,
            "title": self.title,
            "content": self.content,
            "related_id": self.related_id,
            "related_data": self.related_data.to_dict() if self.related_data else None,
            "is_read": False,
            "created_at": created_at or datetime.utcnow(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NotificationRecord":
        return cls(
            user_id=row["user_id"],
            kind=NotificationKind(row["type"]),
            title=row["title"],
            content=row.get("content"),
            related_id=row.get("related_id"),
            related_data=SenderMetadata.from_dict(row.get("related_data")),
        )


@dataclass(slots=True)
class Recipient:
    """Represents a user or destination for out-of-band delivery."""

    user_id: str
    name: str
    email: Optional[str] = None


@dataclass(slots=True)
class AlertMessage:
    """Payload handed to the alert channel."""

    title: str
    body: Optional[str] = None
    icon: str = "/favicon.ico"
    tag: str = ""
    user_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AlertMessage":
        return cls(**{key: payload.get(key) for key in ("title", "body", "icon", "tag", "user_id") if key in payload})


@dataclass(slots=True)
class DigestJob:
    """Unread notifications to summarise for one recipient."""

    recipient: Recipient
    items: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, item: Dict[str, Any]) -> None:
        self.items.append(item)
