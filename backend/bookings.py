"""
HitchBuddy - Booking Workflow

This module owns the booking lifecycle: riders booking posted rides,
drivers answering ride requests with counter-offers, and both parties
moving a booking through its statuses.

    pending --confirm--> confirmed --complete--> completed
       |
       +--decline--> declined

Seat accounting happens in the same transaction as the booking write
(see ``Database.create_ride_booking`` and ``Database.decline_booking``).
Notifications are sent afterwards and are best effort.
"""

import logging
from typing import Optional, List, Dict, Any

from config import config
from database import Database
from errors import (
    ValidationError, AuthorizationError, NotFoundError, ConflictError
)
from models import (
    BookingStatus, RideStatus, RideRequestStatus, UserType, NotificationType,
    can_transition, parse_booking_status
)
from notifications import NotificationCenter


logger = logging.getLogger(__name__)


def positive_int(value, field: str) -> int:
    """Coerce ``value`` to an int >= 1 or raise ValidationError."""
    error = ValidationError(f'{field} must be a positive whole number')
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise error
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise error
    if number < 1:
        raise error
    return number


def non_negative_amount(value, field: str) -> float:
    """Coerce ``value`` to a float >= 0 rounded to cents or raise ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if amount != amount or amount < 0:
        raise ValidationError(f'{field} must not be negative')
    return round(amount, 2)


def display_name(user: Optional[Dict[str, Any]], fallback: str = 'Someone') -> str:
    if not user:
        return fallback
    name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return name or fallback


def route_label(booking: Dict[str, Any]) -> str:
    return f"{booking.get('from_location') or '?'} to {booking.get('to_location') or '?'}"


class BookingWorkflow:
    """Booking creation and status changes, with notification fan-out."""

    def __init__(self, db: Database, notifications: NotificationCenter):
        self.db = db
        self.notifications = notifications

    # =========================================================================
    # Creation
    # =========================================================================

    def create_booking(
        self,
        rider_id: int,
        ride_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        seats_booked=1,
        phone_number: Optional[str] = None,
        message: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a pending booking for ``rider_id``.

        With a ``ride_id`` the seats are reserved on that ride; the driver and
        price come from the ride. Without one, ``driver_id`` names the driver
        directly and no seats are reserved.

        Raises:
            ValidationError: bad seat count, not enough seats, self-booking
                or missing driver.
            NotFoundError: the ride or driver does not exist.
            ConflictError: the ride is no longer active.
        """
        seats = positive_int(seats_booked, 'seatsBooked')

        if ride_id is not None:
            ride = self.db.get_ride_by_id(ride_id)
            if not ride:
                raise NotFoundError('Ride not found')
            if ride['status'] != RideStatus.ACTIVE.value:
                raise ConflictError('This ride is no longer available for booking')
            if ride['driver_id'] == rider_id:
                raise ValidationError('You cannot book your own ride')
            if seats > ride['available_seats']:
                raise ValidationError(
                    f"Only {ride['available_seats']} seat(s) available on this ride"
                )

            total_cost = round(float(ride['price']) * seats, 2)
            booking_id = self.db.create_ride_booking(
                ride_id=ride_id,
                rider_id=rider_id,
                driver_id=ride['driver_id'],
                seats_booked=seats,
                total_cost=total_cost,
                phone_number=phone_number,
                message=message,
            )
            if booking_id is None:
                # Someone else took the seats between the read and the write
                raise ValidationError('Not enough seats available on this ride')
        else:
            if driver_id is None:
                raise ValidationError('A rideId or driverId is required')
            if driver_id == rider_id:
                raise ValidationError('You cannot book a ride with yourself')
            if not self.db.get_user_by_id(driver_id):
                raise NotFoundError('Driver not found')
            booking_id = self.db.create_booking(
                rider_id=rider_id,
                driver_id=driver_id,
                created_by=rider_id,
                seats_booked=seats,
                total_cost=0.0,
                phone_number=phone_number,
                message=message,
            )

        booking = self.db.get_booking_by_id(booking_id)
        logger.info(
            "Booking %s (%s) created by rider %s for driver %s, %s seat(s)",
            booking['id'], booking['job_id'], rider_id, booking['driver_id'], seats
        )

        rider = self.db.get_user_by_id(rider_id)
        self.notifications.notify_quietly(
            booking['driver_id'],
            NotificationType.BOOKING_REQUEST,
            'New booking request',
            f"{display_name(rider)} requested {seats} seat(s) for {route_label(booking)}",
            'booking', booking['id']
        )
        return booking

    def create_counter_offer(
        self,
        request_id: int,
        driver_id: int,
        offer_price=None,
        message: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Answer a rider's ride request with a priced offer.

        The offer is a pending booking with no ride yet; the rider accepts it
        by confirming the booking.
        """
        ride_request = self.db.get_ride_request_by_id(request_id)
        if not ride_request:
            raise NotFoundError('Ride request not found')
        if ride_request['status'] != RideRequestStatus.PENDING.value:
            raise ConflictError('This ride request is no longer open')

        driver = self.db.get_user_by_id(driver_id)
        if not driver or driver['user_type'] != UserType.DRIVER.value:
            raise AuthorizationError('Only drivers can make counter-offers')
        if ride_request['rider_id'] == driver_id:
            raise ValidationError('You cannot make an offer on your own ride request')

        if offer_price is None:
            total_cost = round(config.DEFAULT_SEAT_PRICE * ride_request['passengers'], 2)
        else:
            total_cost = non_negative_amount(offer_price, 'offerPrice')

        booking_id = self.db.create_booking(
            rider_id=ride_request['rider_id'],
            driver_id=driver_id,
            created_by=driver_id,
            seats_booked=ride_request['passengers'],
            total_cost=total_cost,
            ride_request_id=request_id,
            phone_number=phone_number,
            message=message,
        )
        booking = self.db.get_booking_by_id(booking_id)
        logger.info(
            "Counter-offer %s from driver %s on ride request %s for %.2f",
            booking_id, driver_id, request_id, total_cost
        )

        self.notifications.notify_quietly(
            ride_request['rider_id'],
            NotificationType.COUNTER_OFFER,
            'New counter offer',
            f"{display_name(driver)} offered {total_cost:.2f} for your trip "
            f"from {route_label(booking)}",
            'booking', booking_id
        )
        return booking

    # =========================================================================
    # Status changes
    # =========================================================================

    def update_booking_status(self, booking_id: int, actor_id: int, new_status) -> Dict[str, Any]:
        """
        Move a booking to ``new_status`` on behalf of ``actor_id``.

        Only pending->confirmed, pending->declined and confirmed->completed
        are allowed. A booking can only be confirmed by the party that did
        not create it.
        """
        booking = self.db.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError('Booking not found')
        if actor_id not in (booking['rider_id'], booking['driver_id']):
            raise AuthorizationError('You are not part of this booking')

        target = parse_booking_status(new_status)
        if target is None:
            raise ValidationError(f"Unknown booking status: {new_status}")

        current = BookingStatus(booking['status'])
        if not can_transition(current, target):
            raise ConflictError(
                f"Cannot change a {current.value} booking to {target.value}"
            )

        declined_offers: List[Dict[str, Any]] = []
        if target == BookingStatus.CONFIRMED:
            if booking['created_by'] == actor_id:
                raise AuthorizationError('The other party must confirm this booking')
            if booking['ride_id'] is None and booking['ride_request_id'] is not None:
                ride_request = self.db.get_ride_request_by_id(booking['ride_request_id'])
                if not ride_request or ride_request['status'] != RideRequestStatus.PENDING.value:
                    raise ConflictError('This ride request is no longer open')
                accepted = self.db.confirm_counter_offer(booking_id)
                changed = accepted is not None
                if accepted:
                    declined_offers = accepted['declined']
            else:
                if booking['ride_id'] is not None:
                    ride = self.db.get_ride_by_id(booking['ride_id'])
                    if not ride or ride['status'] != RideStatus.ACTIVE.value:
                        raise ConflictError('This ride is no longer active')
                changed = self.db.transition_booking(booking_id, current.value, target.value)
        elif target == BookingStatus.DECLINED:
            changed = self.db.decline_booking(booking_id)
        else:
            changed = self.db.transition_booking(booking_id, current.value, target.value)

        if not changed:
            raise ConflictError('Booking was updated by someone else, please refresh')

        updated = self.db.get_booking_by_id(booking_id)
        logger.info(
            "Booking %s moved %s -> %s by user %s",
            booking_id, current.value, target.value, actor_id
        )
        self._notify_status_change(updated, actor_id, target)
        for offer in declined_offers:
            logger.info("Counter-offer %s declined, ride request %s was matched",
                        offer['id'], offer['ride_request_id'])
            self._notify_status_change(offer, offer['rider_id'], BookingStatus.DECLINED)
        return updated

    def _notify_status_change(self, booking: Dict[str, Any], actor_id: int, status: BookingStatus):
        """
        Tell the parties about a status change made by ``actor_id``.

        A confirmation goes to the counterpart of the actor: the rider for
        an ordinary ride booking, the offering driver when the rider accepts
        a counter-offer. A decline also goes to the counterpart, and a
        completed trip asks both parties for a rating.
        """
        counterpart = booking['driver_id'] if actor_id == booking['rider_id'] else booking['rider_id']
        route = route_label(booking)

        if status == BookingStatus.CONFIRMED:
            self.notifications.notify_quietly(
                counterpart, NotificationType.BOOKING_CONFIRMED,
                'Booking confirmed',
                f"Your booking {booking['job_id']} for {route} has been confirmed",
                'booking', booking['id']
            )
        elif status == BookingStatus.DECLINED:
            self.notifications.notify_quietly(
                counterpart, NotificationType.BOOKING_DECLINED,
                'Booking declined',
                f"Your booking {booking['job_id']} for {route} was declined",
                'booking', booking['id']
            )
        elif status == BookingStatus.COMPLETED:
            for user_id in (booking['rider_id'], booking['driver_id']):
                self.notifications.notify_quietly(
                    user_id, NotificationType.RATING_REQUEST,
                    'How was your trip?',
                    f"Your trip {route} is complete. Leave a rating for booking {booking['job_id']}",
                    'booking', booking['id']
                )

    # =========================================================================
    # Queries
    # =========================================================================

    def list_bookings(self, user_id: int) -> List[Dict[str, Any]]:
        """Bookings where the user is the rider or the driver, newest first."""
        return self.db.get_bookings_for_user(user_id)

    def get_booking(self, booking_id: int, requester_id: int) -> Dict[str, Any]:
        booking = self.db.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError('Booking not found')
        if requester_id not in (booking['rider_id'], booking['driver_id']):
            raise AuthorizationError('You are not part of this booking')
        return booking

    def list_ride_bookings(self, ride_id: int, requester_id: int) -> List[Dict[str, Any]]:
        """All bookings on a ride; only the ride's driver may look."""
        ride = self.db.get_ride_by_id(ride_id)
        if not ride:
            raise NotFoundError('Ride not found')
        if ride['driver_id'] != requester_id:
            raise AuthorizationError('Only the driver can view bookings for this ride')
        return self.db.get_bookings_by_ride(ride_id)
