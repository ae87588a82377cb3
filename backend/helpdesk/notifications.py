"""In-app notifications shown in each user's notification tray."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Notification, User

logger = logging.getLogger(__name__)


def create_notification(
    db: Session, user_id: str, message: str, ticket_id: Optional[str] = None
) -> Notification:
    notification = Notification(
        user_id=user_id, ticket_id=ticket_id, message=message, read=False
    )
    db.add(notification)
    db.commit()
    return notification


def list_notifications(
    db: Session, user: User, unread_only: bool = False
) -> list[Notification]:
    """Notifications for a user, newest first."""
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc()).all()


def _get_own(db: Session, notification_id: str, user: User) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if not notification:
        raise NotFoundError(f"Notification '{notification_id}' not found")
    return notification


def mark_as_read(db: Session, notification_id: str, user: User) -> Notification:
    notification = _get_own(db, notification_id, user)
    notification.read = True
    db.commit()
    return notification


def mark_all_as_read(db: Session, user: User) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return count


def delete_notification(db: Session, notification_id: str, user: User) -> None:
    notification = _get_own(db, notification_id, user)
    db.delete(notification)
    db.commit()


def clear_all(db: Session, user: User) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Cleared {count} notifications for {user.email}")
    return count
