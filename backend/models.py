"""
HitchBuddy - Domain Vocabulary

Closed sets of status values and notification types, the booking state
machine, and the notification type to dashboard tab mapping.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional


class UserType(str, Enum):
    RIDER = 'rider'
    DRIVER = 'driver'


class RideStatus(str, Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


class RideRequestStatus(str, Enum):
    PENDING = 'pending'
    MATCHED = 'matched'
    CANCELLED = 'cancelled'


class BookingStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    DECLINED = 'declined'
    COMPLETED = 'completed'


class NotificationType(str, Enum):
    MESSAGE = 'message'
    BOOKING_REQUEST = 'booking_request'
    BOOKING_CONFIRMED = 'booking_confirmed'
    BOOKING_DECLINED = 'booking_declined'
    COUNTER_OFFER = 'counter_offer'
    TRIP_REQUEST = 'trip_request'
    RATING_REQUEST = 'rating_request'
    BOOKING_CANCELLED = 'booking_cancelled'
    RIDE_CANCELLED = 'ride_cancelled'
    REQUEST_CANCELLED = 'request_cancelled'


# Forward-only; anything not listed here is rejected.
BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.DECLINED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.DECLINED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

# Statuses in which the two parties may still write to the booking thread
MESSAGEABLE_BOOKING_STATUSES = frozenset({
    BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED
})

DEFAULT_TAB = 'overview'

NOTIFICATION_TABS: Dict[str, str] = {
    NotificationType.BOOKING_REQUEST.value: 'rides',
    NotificationType.COUNTER_OFFER.value: 'rides',
    NotificationType.BOOKING_CONFIRMED.value: 'rides',
    NotificationType.MESSAGE.value: 'messages',
    NotificationType.TRIP_REQUEST.value: 'requests',
}

RECURRING_FREQUENCIES = frozenset({'daily', 'weekly', 'weekdays', 'custom'})

WEEKDAYS = (
    'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday'
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    """Check whether a booking may move from ``current`` to ``target``."""
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


def navigation_tab(notification_type: Optional[str]) -> str:
    """Dashboard tab a notification of the given type opens."""
    if isinstance(notification_type, Enum):
        notification_type = notification_type.value
    return NOTIFICATION_TABS.get(notification_type, DEFAULT_TAB)


def parse_booking_status(value) -> Optional[BookingStatus]:
    """Return the BookingStatus for ``value`` or None if it is not one."""
    try:
        return BookingStatus(value)
    except (TypeError, ValueError):
        return None
