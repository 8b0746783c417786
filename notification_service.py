"""
Customer notifications and admin broadcast notifications

Push delivery is external; a broadcast counts as sent once it is flagged
`sent` with a timestamp.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from errors import NotFoundError, StorefrontError
from models import CustomerNotification, Notification, utcnow

logger = logging.getLogger(__name__)

BROADCAST_STATUSES = ("draft", "scheduled", "sent")
BROADCAST_FIELDS = ("title", "message", "audience", "status", "scheduled_for")


class NotificationService:
    """Per-user notification menu plus the admin broadcast list"""

    def __init__(self, db_session: Session):
        self.session = db_session

    # Customer notifications

    def create_customer_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        order_id: Optional[int] = None,
        type: str = "order_status"
    ) -> CustomerNotification:
        notification = CustomerNotification(
            user_id=user_id,
            order_id=order_id,
            title=title,
            message=message,
            type=type,
            read=False,
        )
        self.session.add(notification)
        self.session.flush()
        return notification

    def get_user_notifications(self, user_id: int) -> List[CustomerNotification]:
        """Newest first"""
        return self.session.query(CustomerNotification).filter(
            CustomerNotification.user_id == user_id
        ).order_by(CustomerNotification.created_at.desc(), CustomerNotification.id.desc()).all()

    def mark_notification_as_read(self, notification_id: int) -> None:
        notification = self.session.get(CustomerNotification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        notification.read = True
        self.session.flush()

    def mark_all_as_read(self, user_id: int) -> int:
        count = self.session.query(CustomerNotification).filter(
            CustomerNotification.user_id == user_id,
            CustomerNotification.read == False
        ).update({CustomerNotification.read: True}, synchronize_session="fetch")
        self.session.flush()
        return count

    def get_unread_count(self, user_id: int) -> int:
        return self.session.query(CustomerNotification).filter(
            CustomerNotification.user_id == user_id,
            CustomerNotification.read == False
        ).count()

    # Broadcast notifications

    def get_notifications(self) -> List[Notification]:
        return self.session.query(Notification).order_by(
            Notification.created_at.desc(), Notification.id.desc()
        ).all()

    def create_notification(
        self,
        title: str,
        message: str,
        audience: str = "all",
        status: str = "draft",
        scheduled_for: Optional[datetime] = None
    ) -> Notification:
        """Create a broadcast; one created with status 'sent' is sent immediately"""
        if status not in BROADCAST_STATUSES:
            raise StorefrontError(f"Notification status must be one of {BROADCAST_STATUSES}")
        if status == "scheduled" and scheduled_for is None:
            raise StorefrontError("Scheduled notifications need a scheduled time")

        notification = Notification(
            title=title,
            message=message,
            audience=audience,
            status="draft" if status == "sent" else status,
            scheduled_for=scheduled_for,
        )
        self.session.add(notification)
        self.session.flush()

        if status == "sent":
            self.send_push_notification(notification.id)

        logger.info(f"✓ Created notification '{title}' ({notification.status})")
        return notification

    def update_notification(self, notification_id: int, **changes) -> Notification:
        notification = self._get_broadcast(notification_id)

        unknown = set(changes) - set(BROADCAST_FIELDS)
        if unknown:
            raise StorefrontError(f"Unknown notification fields: {sorted(unknown)}")
        if "status" in changes and changes["status"] not in BROADCAST_STATUSES:
            raise StorefrontError(f"Notification status must be one of {BROADCAST_STATUSES}")

        for field_name, value in changes.items():
            setattr(notification, field_name, value)

        self.session.flush()
        return notification

    def delete_notification(self, notification_id: int) -> None:
        notification = self._get_broadcast(notification_id)
        self.session.delete(notification)
        self.session.flush()

    def send_push_notification(self, notification_id: int) -> Notification:
        """Flag a broadcast as sent; delivery itself is handled by the push provider"""
        notification = self._get_broadcast(notification_id)
        notification.status = "sent"
        notification.sent_at = utcnow()
        self.session.flush()

        logger.info(f"✓ Notification {notification_id} sent to '{notification.audience}'")
        return notification

    def send_due_notifications(self, now: Optional[datetime] = None) -> int:
        """Send scheduled broadcasts whose time has come"""
        now = now or utcnow()
        due = self.session.query(Notification).filter(
            Notification.status == "scheduled",
            Notification.scheduled_for <= now
        ).all()

        for notification in due:
            self.send_push_notification(notification.id)

        return len(due)

    def _get_broadcast(self, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification
