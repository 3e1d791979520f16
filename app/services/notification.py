import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Query, Session

from app.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: str = None,
        payload: Dict[str, Any] = None,
    ) -> Notification:
        """
        Internal utility for creating notifications.
        Flushes only; the caller owns the transaction.
        """
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link=link,
            payload=payload or {},
        )
        db.add(notification)
        db.flush()
        return notification

    @staticmethod
    def inbox_query(db: Session, user_id: int, unread_only: bool = False, type: Optional[str] = None) -> Query:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        if type is not None:
            query = query.filter(Notification.type == type)
        return query

    @staticmethod
    def unread_count(db: Session, user_id: int) -> int:
        return NotificationService.inbox_query(db, user_id, unread_only=True).count()

    @staticmethod
    def mark_read(db: Session, user_id: int, notification_ids: Optional[List[int]] = None, type: Optional[str] = None) -> int:
        """Mark the user's unread notifications read (all, by id, or by type). Returns the count."""
        query = NotificationService.inbox_query(db, user_id, unread_only=True, type=type)
        if notification_ids is not None:
            query = query.filter(Notification.id.in_(notification_ids))
        updated = query.update({Notification.is_read: True}, synchronize_session=False)
        db.commit()
        return updated


class DatabaseNotificationDispatcher:
    """
    NotificationDispatcher that stores in-app notifications.
    Delivery is best effort: a failure is logged and never fails the
    operation that triggered it.
    """

    def __init__(self, db: Session):
        self.db = db

    async def notify(self, user_id: int, payload: Dict[str, Any]) -> None:
        try:
            NotificationService.create_notification(
                self.db,
                user_id=user_id,
                title=payload.get("title", "Performance update"),
                message=payload.get("message", ""),
                type=payload.get("type", "info"),
                link=payload.get("link"),
                payload=payload,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to dispatch notification to user {user_id}: {e}", exc_info=True)
