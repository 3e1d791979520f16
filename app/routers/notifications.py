from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.database import get_db
from app.models.notification import Notification
from app.models.user import User
from app.routers.deps import get_current_user
from app.schemas.notification import NotificationInbox, NotificationResponse, NotificationType
from app.services.notification import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/", response_model=NotificationInbox)
def get_inbox(
    unread_only: bool = False,
    type: Optional[NotificationType] = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Review status and sentiment alert notices for the acting user, newest first."""
    items = (
        NotificationService.inbox_query(db, current_user.id, unread_only, type)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
    return NotificationInbox(
        unread=NotificationService.unread_count(db, current_user.id),
        items=[NotificationResponse.model_validate(n) for n in items],
    )


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = NotificationService.inbox_query(db, current_user.id).filter(Notification.id == notification_id).first()
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    NotificationService.mark_read(db, current_user.id, [notification_id])
    db.refresh(notification)
    return notification


@router.post("/mark-all-read")
def mark_all_read(
    type: Optional[NotificationType] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"updated": NotificationService.mark_read(db, current_user.id, type=type)}
