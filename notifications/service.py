from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from storage.database import RemoteStore

from .config import DEFAULT_NOTIFICATION_LIMIT
from .models import NotificationKind, NotificationRecord, SenderMetadata

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[NotificationRecord], None]
AlertHook = Callable[[NotificationRecord], Any]

TABLE = "notifications"


class NotificationService:
    """Persists notifications or, failing that, hands them to local subscribers.

    Every operation soft-fails: errors are logged and turned into ``False``,
    ``[]`` or ``0``. With no ``store`` the service runs in fan-out only mode.
    """

    def __init__(self, store: Optional[RemoteStore] = None, alert: Optional[AlertHook] = None):
        self.store = store
        self.alert = alert
        self._subscribers: List[Subscriber] = []

    # ------------------------------- Fan-out -------------------------------
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            self._subscribers = [sub for sub in self._subscribers if sub is not callback]

        return unsubscribe

    def _emit(self, record: NotificationRecord) -> None:
        for callback in list(self._subscribers):
            try:
                callback(record)
            except Exception:
                LOGGER.exception("Notification subscriber failed for %s", record.tag)

    def _show_alert(self, record: NotificationRecord) -> None:
        if self.alert is None:
            return
        try:
            self.alert(record)
        except Exception:
            LOGGER.exception("Alert delivery failed for %s", record.tag)

    # ------------------------------- Create -------------------------------
    def create_notification(self, record: NotificationRecord) -> bool:
        delivered = True
        if self.store is None:
            self._emit(record)
        else:
            try:
                self.store.insert(TABLE, record.to_row())
            except Exception as exc:
                LOGGER.error("Error creating notification for %s: %s", record.user_id, exc)
                self._emit(record)
                delivered = False
        self._show_alert(record)
        return delivered

    def create_bulk_notifications(self, records: Iterable[NotificationRecord]) -> bool:
        batch = list(records)
        if not batch:
            return True
        if self.store is None:
            for record in batch:
                self._emit(record)
            return True
        try:
            self.store.insert(TABLE, [record.to_row() for record in batch])
            return True
        except Exception as exc:
            LOGGER.error("Error creating %d bulk notifications: %s", len(batch), exc)
            for record in batch:
                self._emit(record)
            return False

    # ------------------------------- Builders -------------------------------
    def notify_new_message(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        conversation_id: str,
        message_content: str,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.NEW_MESSAGE,
                title=f"New message from {sender_name}",
                content=message_content,
                related_id=conversation_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    conversation_id=conversation_id,
                    message_preview=message_content,
                ),
            )
        )

    def notify_collaboration_invite(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        project_id: str,
        project_name: str,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.COLLABORATION_INVITE,
                title=f"Collaboration invitation from {sender_name}",
                content=f'You have been invited to collaborate on "{project_name}"',
                related_id=project_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    project_id=project_id,
                ),
            )
        )

    def notify_post_comment(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        post_id: str,
        comment_content: str,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.POST_COMMENT,
                title=f"{sender_name} commented on your post",
                content=comment_content,
                related_id=post_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    post_id=post_id,
                ),
            )
        )

    def notify_post_like(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        post_id: str,
        post_title: str,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.POST_LIKE,
                title=f"{sender_name} liked your post",
                content=f'Your post "{post_title}" received a like',
                related_id=post_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    post_id=post_id,
                ),
            )
        )

    def notify_project_shared(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        project_id: str,
        project_name: str,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.PROJECT_SHARED,
                title=f"{sender_name} shared a project with you",
                content=f'"{project_name}" has been shared with you',
                related_id=project_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    project_id=project_id,
                ),
            )
        )

    def notify_collaboration_request(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        project_id: str,
        project_name: str,
        message: Optional[str] = None,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.COLLABORATION_REQUEST,
                title=f"Collaboration request from {sender_name}",
                content=message or f'{sender_name} wants to collaborate on "{project_name}"',
                related_id=project_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    project_id=project_id,
                ),
            )
        )

    def notify_mention(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        context_id: str,
        context_type: str,
        content: str,
    ) -> bool:
        if context_type not in {"post", "comment", "message"}:
            raise ValueError(f"Unsupported mention context: {context_type}")
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.MENTION,
                title=f"{sender_name} mentioned you",
                content=content,
                related_id=context_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                    post_id=context_id if context_type == "post" else None,
                    conversation_id=context_id if context_type == "message" else None,
                ),
            )
        )

    def notify_connection_request(
        self,
        recipient_id: str,
        sender_id: str,
        sender_name: str,
        sender_picture: Optional[str],
        message: Optional[str] = None,
    ) -> bool:
        return self.create_notification(
            NotificationRecord(
                user_id=recipient_id,
                kind=NotificationKind.CONNECTION_REQUEST,
                title=f"Connection request from {sender_name}",
                content=message or f"{sender_name} wants to connect with you",
                related_id=sender_id,
                related_data=SenderMetadata(
                    sender_id=sender_id,
                    sender_name=sender_name,
                    sender_picture=sender_picture,
                ),
            )
        )

    # ------------------------------- Read / update -------------------------------
    def mark_as_read(self, notification_id: str) -> bool:
        if self.store is None:
            return True
        try:
            self.store.update(TABLE, {"is_read": True}, {"id": notification_id})
            return True
        except Exception as exc:
            LOGGER.error("Error marking notification %s as read: %s", notification_id, exc)
            return False

    def mark_all_as_read(self, user_id: str) -> bool:
        if self.store is None:
            return True
        try:
            self.store.update(TABLE, {"is_read": True}, {"user_id": user_id, "is_read": False})
            return True
        except Exception as exc:
            LOGGER.error("Error marking all notifications as read for %s: %s", user_id, exc)
            return False

    def delete_notification(self, notification_id: str) -> bool:
        if self.store is None:
            return True
        try:
            self.store.delete(TABLE, {"id": notification_id})
            return True
        except Exception as exc:
            LOGGER.error("Error deleting notification %s: %s", notification_id, exc)
            return False

    def get_notifications(self, user_id: str, limit: int = DEFAULT_NOTIFICATION_LIMIT) -> List[Dict[str, Any]]:
        if self.store is None:
            return []
        try:
            return self.store.select(TABLE, {"user_id": user_id}, order_by="created_at", descending=True, limit=limit)
        except Exception as exc:
            LOGGER.error("Error fetching notifications for %s: %s", user_id, exc)
            return []

    def get_unread_count(self, user_id: str) -> int:
        if self.store is None:
            return 0
        try:
            return self.store.count(TABLE, {"user_id": user_id, "is_read": False})
        except Exception as exc:
            LOGGER.error("Error fetching unread count for %s: %s", user_id, exc)
            return 0


__all__ = ["NotificationService"]
