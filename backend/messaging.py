"""
HitchBuddy - Booking Messages

Each booking carries one message thread between its rider and driver.
"""

import logging
from typing import List, Dict, Any

from config import config
from database import Database
from errors import ValidationError, AuthorizationError, NotFoundError, ConflictError
from models import BookingStatus, NotificationType, MESSAGEABLE_BOOKING_STATUSES
from notifications import NotificationCenter


logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 80


class MessageThread:
    """Send, list and mark messages of a booking."""

    def __init__(self, db: Database, notifications: NotificationCenter):
        self.db = db
        self.notifications = notifications

    def _party_booking(self, booking_id: int, user_id: int) -> Dict[str, Any]:
        booking = self.db.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError('Booking not found')
        if user_id not in (booking['rider_id'], booking['driver_id']):
            raise AuthorizationError('You are not part of this booking')
        return booking

    def send_message(self, booking_id: int, sender_id: int, text) -> Dict[str, Any]:
        """
        Append ``text`` to the booking thread and notify the other party.

        Raises:
            NotFoundError: unknown booking.
            AuthorizationError: sender is neither rider nor driver.
            ValidationError: empty or too long message.
            ConflictError: the booking was declined.
        """
        booking = self._party_booking(booking_id, sender_id)

        text = text.strip() if isinstance(text, str) else ''
        if not text:
            raise ValidationError('Message cannot be empty')
        if len(text) > config.MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f'Message is too long (max {config.MAX_MESSAGE_LENGTH} characters)'
            )
        if BookingStatus(booking['status']) not in MESSAGEABLE_BOOKING_STATUSES:
            raise ConflictError(f"Cannot message on a {booking['status']} booking")

        message_id = self.db.create_message(booking_id, sender_id, text)
        message = self.db.get_message_by_id(message_id)
        logger.info("Message %s sent on booking %s by user %s", message_id, booking_id, sender_id)

        recipient_id = booking['driver_id'] if sender_id == booking['rider_id'] else booking['rider_id']
        sender = self.db.get_user_by_id(sender_id)
        sender_name = f"{sender.get('first_name') or ''} {sender.get('last_name') or ''}".strip() if sender else ''
        preview = text if len(text) <= PREVIEW_LENGTH else text[:PREVIEW_LENGTH - 3] + '...'
        self.notifications.notify_quietly(
            recipient_id,
            NotificationType.MESSAGE,
            f"New message from {sender_name or 'your trip partner'}",
            preview,
            'booking', booking_id
        )
        return message

    def list_messages(self, booking_id: int, requester_id: int) -> List[Dict[str, Any]]:
        """Thread of a booking, oldest message first."""
        self._party_booking(booking_id, requester_id)
        return self.db.get_messages_by_booking(booking_id)

    def mark_message_read(self, message_id: int, reader_id: int) -> bool:
        """Mark a message read by its recipient. Repeating the call changes nothing."""
        message = self.db.get_message_by_id(message_id)
        if not message:
            raise NotFoundError('Message not found')
        self._party_booking(message['booking_id'], reader_id)
        if message['sender_id'] == reader_id:
            raise AuthorizationError('Only the recipient can mark a message as read')
        self.db.mark_message_read(message_id)
        return True

    def unread_message_count(self, user_id: int) -> int:
        return self.db.count_unread_messages(user_id)
