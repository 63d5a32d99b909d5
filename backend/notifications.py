"""
HitchBuddy - Notification Center

Per-user feed of booking, counter-offer, trip-request and message events.
Workflows call ``notify_quietly`` after their own write has committed, so a
failing notification insert never undoes the booking or message it describes.
"""

import logging
from typing import Optional, Dict, Any

from config import config
from database import Database
from errors import NotFoundError
from models import navigation_tab


logger = logging.getLogger(__name__)


class NotificationCenter:
    """Creates, lists and marks notifications for users."""

    def __init__(self, db: Database, feed_limit: Optional[int] = None):
        self.db = db
        self.feed_limit = feed_limit or config.NOTIFICATION_FEED_LIMIT

    def notify(
        self,
        user_id: int,
        notification_type,
        title: str,
        message: str,
        related_kind: Optional[str] = None,
        related_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Insert a notification row for ``user_id`` and return it.

        ``(related_kind, related_id)`` only records what the notification is
        about; it is not checked against any table.
        """
        type_value = getattr(notification_type, 'value', notification_type)
        notification_id = self.db.create_notification(
            user_id, type_value, title, message, related_kind, related_id
        )
        return self.db.get_notification_by_id(notification_id)

    def notify_quietly(self, user_id: int, notification_type, title: str, message: str,
                       related_kind: Optional[str] = None,
                       related_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Like ``notify`` but logs and drops any failure."""
        try:
            return self.notify(user_id, notification_type, title, message, related_kind, related_id)
        except Exception:
            logger.warning(
                "Could not deliver %s notification to user %s",
                getattr(notification_type, 'value', notification_type), user_id,
                exc_info=True
            )
            return None

    def list_notifications(self, user_id: int, limit: Optional[int] = None) -> Dict[str, Any]:
        """Newest notifications for the user plus their total unread count."""
        notifications = self.db.get_notifications_for_user(user_id, limit or self.feed_limit)
        unread_count = self.db.count_unread_notifications(user_id)
        return {'notifications': notifications, 'unread_count': unread_count}

    def unread_count(self, user_id: int) -> int:
        return self.db.count_unread_notifications(user_id)

    def mark_as_read(self, notification_id: int, user_id: int) -> bool:
        """
        Mark one notification read.

        Calling it again on an already-read notification is a no-op.

        Raises:
            NotFoundError: the notification does not exist or belongs to
                another user.
        """
        notification = self.db.get_notification_by_id(notification_id)
        if not notification or notification['user_id'] != user_id:
            raise NotFoundError('Notification not found')
        self.db.mark_notification_read(notification_id, user_id)
        return True

    def mark_all_as_read(self, user_id: int) -> int:
        """Mark every unread notification of the user read; returns how many changed."""
        return self.db.mark_all_notifications_read(user_id)

    @staticmethod
    def navigation_tab(notification_type) -> str:
        return navigation_tab(notification_type)
