"""
HitchBuddy - Ride Board

This module handles rides posted by drivers and ride requests posted by
riders: validation, search with location substring matching, owner-only
edits and cancellation, and the periodic expiry of past trips.
"""

import json
import logging
from datetime import datetime, date
from typing import Optional, List, Dict, Any

from config import config
from database import Database
from errors import ValidationError, AuthorizationError, NotFoundError, ConflictError
from models import (
    RideStatus, RideRequestStatus, UserType, NotificationType,
    RECURRING_FREQUENCIES, WEEKDAYS
)
from bookings import route_label
from notifications import NotificationCenter


logger = logging.getLogger(__name__)

MIN_LOCATION_QUERY = 2
MAX_NOTES_LENGTH = 500
MAX_PRICE = 100000


# =============================================================================
# Helper Functions
# =============================================================================

def _text(data: dict, key: str) -> str:
    value = data.get(key)
    return str(value).strip() if value is not None else ''


def _clean_date(value: str, errors: list) -> Optional[str]:
    try:
        departure_date = datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        errors.append('Invalid departure date format.')
        return None
    if departure_date < date.today():
        errors.append('Departure date cannot be in the past.')
        return None
    return value


def _clean_time(value: str, errors: list) -> Optional[str]:
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(value, fmt).strftime('%H:%M')
        except ValueError:
            continue
    errors.append('Invalid departure time format.')
    return None


def _clean_count(value, label: str, errors: list) -> Optional[int]:
    if isinstance(value, bool):
        errors.append(f'Invalid number of {label}.')
        return None
    try:
        count = int(str(value).strip())
    except ValueError:
        errors.append(f'Invalid number of {label}.')
        return None
    if count < 1:
        errors.append(f'Number of {label} must be at least 1.')
    elif count > config.MAX_SEATS_PER_RIDE:
        errors.append(f'Maximum {config.MAX_SEATS_PER_RIDE} {label} allowed.')
    else:
        return count
    return None


def _clean_price(value, label: str, errors: list) -> Optional[float]:
    if isinstance(value, bool):
        errors.append(f'Invalid {label} format.')
        return None
    try:
        price = float(str(value).strip())
    except ValueError:
        errors.append(f'Invalid {label} format.')
        return None
    if price < 0:
        errors.append(f'{label.capitalize()} cannot be negative.')
    elif price > MAX_PRICE:
        errors.append(f'{label.capitalize()} seems too high. Please check.')
    else:
        return round(price, 2)
    return None


def _clean_recurring(value, errors: list) -> Optional[str]:
    """Validate ``{frequency, daysOfWeek}`` and return it as JSON text."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            errors.append('Recurring data must be an object.')
            return None
    if not isinstance(value, dict):
        errors.append('Recurring rides need a frequency.')
        return None

    frequency = str(value.get('frequency') or '').strip().lower()
    if frequency not in RECURRING_FREQUENCIES:
        errors.append(
            f"Frequency must be one of: {', '.join(sorted(RECURRING_FREQUENCIES))}."
        )
        return None

    days = value.get('daysOfWeek') or []
    if not isinstance(days, list):
        errors.append('daysOfWeek must be a list of weekday names.')
        return None
    days = [str(d).strip().lower() for d in days]
    unknown = [d for d in days if d not in WEEKDAYS]
    if unknown:
        errors.append(f"Unknown weekday(s): {', '.join(unknown)}.")
        return None
    if frequency == 'custom' and not days:
        errors.append('Custom recurring rides need at least one day of the week.')
        return None

    ordered = [d for d in WEEKDAYS if d in days]
    return json.dumps({'frequency': frequency, 'daysOfWeek': ordered})


def validate_ride_data(data: dict, is_edit: bool = False) -> tuple[bool, list, dict]:
    """
    Validate ride fields sent by a driver.

    Args:
        data: The JSON body with camelCase keys.
        is_edit: Only validate the fields that are present.

    Returns:
        Tuple of (is_valid, errors, cleaned_data) with snake_case keys.
    """
    errors = []
    cleaned = {}

    for key, column, label in (('fromLocation', 'from_location', 'pickup location'),
                               ('toLocation', 'to_location', 'destination')):
        if is_edit and key not in data:
            continue
        value = _text(data, key)
        if not value:
            errors.append(f'Please enter the {label}.')
        else:
            cleaned[column] = value

    is_recurring = bool(data.get('isRecurring'))
    if not is_edit or 'isRecurring' in data:
        cleaned['is_recurring'] = 1 if is_recurring else 0
        if is_recurring:
            recurring = _clean_recurring(data.get('recurringData'), errors)
            if recurring:
                cleaned['recurring_data'] = recurring
        else:
            cleaned['recurring_data'] = None

    if not is_edit or 'departureDate' in data:
        value = _text(data, 'departureDate')
        if value:
            cleaned_date = _clean_date(value, errors)
            if cleaned_date:
                cleaned['departure_date'] = cleaned_date
        elif not is_recurring:
            errors.append('Please select a departure date.')
        else:
            cleaned['departure_date'] = None

    if not is_edit or 'departureTime' in data:
        value = _text(data, 'departureTime')
        if not value:
            errors.append('Please select a departure time.')
        else:
            cleaned_time = _clean_time(value, errors)
            if cleaned_time:
                cleaned['departure_time'] = cleaned_time

    if not is_edit or 'availableSeats' in data:
        if data.get('availableSeats') in (None, ''):
            errors.append('Please enter the number of available seats.')
        else:
            seats = _clean_count(data['availableSeats'], 'seats', errors)
            if seats:
                cleaned['available_seats'] = seats

    if not is_edit or 'price' in data:
        if data.get('price') in (None, ''):
            errors.append('Please enter the price per seat.')
        else:
            price = _clean_price(data['price'], 'price', errors)
            if price is not None:
                cleaned['price'] = price

    for key, column in (('vehicleInfo', 'vehicle_info'), ('notes', 'notes')):
        if key in data:
            value = _text(data, key)
            if len(value) > MAX_NOTES_LENGTH:
                errors.append(f'{key} must be under {MAX_NOTES_LENGTH} characters.')
            else:
                cleaned[column] = value or None

    return len(errors) == 0, errors, cleaned


def validate_ride_request_data(data: dict, is_edit: bool = False) -> tuple[bool, list, dict]:
    """Validate ride request fields sent by a rider; same contract as ``validate_ride_data``."""
    errors = []
    cleaned = {}

    for key, column, label in (('fromLocation', 'from_location', 'pickup location'),
                               ('toLocation', 'to_location', 'destination')):
        if is_edit and key not in data:
            continue
        value = _text(data, key)
        if not value:
            errors.append(f'Please enter the {label}.')
        else:
            cleaned[column] = value

    if not is_edit or 'departureDate' in data:
        value = _text(data, 'departureDate')
        if not value:
            errors.append('Please select a departure date.')
        else:
            cleaned_date = _clean_date(value, errors)
            if cleaned_date:
                cleaned['departure_date'] = cleaned_date

    if not is_edit or 'departureTime' in data:
        value = _text(data, 'departureTime')
        if not value:
            errors.append('Please select a departure time.')
        else:
            cleaned_time = _clean_time(value, errors)
            if cleaned_time:
                cleaned['departure_time'] = cleaned_time

    if not is_edit or 'passengers' in data:
        passengers = _clean_count(data.get('passengers', 1), 'passengers', errors)
        if passengers:
            cleaned['passengers'] = passengers

    if data.get('maxPrice') not in (None, ''):
        max_price = _clean_price(data['maxPrice'], 'maximum price', errors)
        if max_price is not None:
            cleaned['max_price'] = max_price

    if 'notes' in data:
        notes = _text(data, 'notes')
        if len(notes) > MAX_NOTES_LENGTH:
            errors.append(f'Notes must be under {MAX_NOTES_LENGTH} characters.')
        else:
            cleaned['notes'] = notes or None

    return len(errors) == 0, errors, cleaned


def _raise_if_invalid(is_valid: bool, errors: list):
    if not is_valid:
        raise ValidationError(' '.join(errors))


# =============================================================================
# Ride Board
# =============================================================================

class RideBoard:
    """Rides offered by drivers and trips requested by riders."""

    def __init__(self, db: Database, notifications: NotificationCenter):
        self.db = db
        self.notifications = notifications

    # -------------------------------------------------------------------------
    # Rides
    # -------------------------------------------------------------------------

    def create_ride(self, driver_id: int, data: dict) -> Dict[str, Any]:
        driver = self.db.get_user_by_id(driver_id)
        if not driver or driver['user_type'] != UserType.DRIVER.value:
            raise AuthorizationError('Only drivers can offer rides')

        is_valid, errors, cleaned = validate_ride_data(data)
        _raise_if_invalid(is_valid, errors)

        ride_id = self.db.create_ride(
            driver_id=driver_id,
            from_location=cleaned['from_location'],
            to_location=cleaned['to_location'],
            departure_date=cleaned.get('departure_date'),
            departure_time=cleaned['departure_time'],
            available_seats=cleaned['available_seats'],
            price=cleaned['price'],
            vehicle_info=cleaned.get('vehicle_info'),
            notes=cleaned.get('notes'),
            is_recurring=bool(cleaned.get('is_recurring')),
            recurring_data=cleaned.get('recurring_data'),
        )
        logger.info("Ride %s posted by driver %s: %s -> %s",
                    ride_id, driver_id, cleaned['from_location'], cleaned['to_location'])
        return self.db.get_ride_by_id(ride_id)

    def get_ride(self, ride_id: int) -> Dict[str, Any]:
        ride = self.db.get_ride_by_id(ride_id)
        if not ride:
            raise NotFoundError('Ride not found')
        return ride

    def search_rides(
        self,
        from_location: Optional[str] = None,
        to_location: Optional[str] = None,
        departure_date: Optional[str] = None,
        min_seats=1
    ) -> List[Dict[str, Any]]:
        """
        Active rides with at least ``min_seats`` free seats.

        Location filters shorter than two characters are ignored.
        """
        def usable(query):
            query = (query or '').strip()
            return query if len(query) >= MIN_LOCATION_QUERY else None

        try:
            seats = max(int(min_seats or 1), 1)
        except (TypeError, ValueError):
            raise ValidationError('seats must be a whole number')

        if departure_date:
            try:
                datetime.strptime(departure_date, '%Y-%m-%d')
            except ValueError:
                raise ValidationError('Invalid departure date format.')

        return self.db.search_rides(
            from_location=usable(from_location),
            to_location=usable(to_location),
            departure_date=departure_date or None,
            min_seats=seats,
        )

    def suggest_locations(self, query: Optional[str], limit: int = 10) -> List[str]:
        query = (query or '').strip()
        if len(query) < MIN_LOCATION_QUERY:
            return []
        return self.db.get_known_locations(query, limit)

    def rides_for_driver(self, driver_id: int) -> List[Dict[str, Any]]:
        return self.db.get_rides_by_driver(driver_id)

    def _owned_ride(self, ride_id: int, driver_id: int) -> Dict[str, Any]:
        ride = self.get_ride(ride_id)
        if ride['driver_id'] != driver_id:
            raise AuthorizationError('You can only change your own rides')
        return ride

    def update_ride(self, ride_id: int, driver_id: int, data: dict) -> Dict[str, Any]:
        ride = self._owned_ride(ride_id, driver_id)
        if ride['status'] != RideStatus.ACTIVE.value:
            raise ConflictError(f"Cannot edit a {ride['status']} ride")

        is_valid, errors, cleaned = validate_ride_data(data, is_edit=True)
        _raise_if_invalid(is_valid, errors)
        if cleaned.get('is_recurring') == 0 and not cleaned.get('departure_date') \
                and not ride['departure_date']:
            raise ValidationError('Please select a departure date.')

        if cleaned:
            self.db.update_ride(ride_id, **cleaned)
            logger.info("Ride %s updated by driver %s", ride_id, driver_id)
        return self.db.get_ride_by_id(ride_id)

    def cancel_ride(self, ride_id: int, driver_id: int) -> Dict[str, Any]:
        """Cancel an active ride; its open bookings are declined and the riders told."""
        ride = self._owned_ride(ride_id, driver_id)
        declined = self.db.cancel_ride(ride_id)
        if declined is None:
            raise ConflictError(f"Cannot cancel a {ride['status']} ride")
        logger.info("Ride %s cancelled by driver %s, %s booking(s) declined",
                    ride_id, driver_id, len(declined))
        for booking in declined:
            self.notifications.notify_quietly(
                booking['rider_id'], NotificationType.BOOKING_CANCELLED,
                'Ride cancelled',
                f"The driver cancelled the ride {route_label(booking)}. "
                f"Your booking {booking['job_id']} has been cancelled",
                'booking', booking['id']
            )
        return self.db.get_ride_by_id(ride_id)

    # -------------------------------------------------------------------------
    # Ride requests
    # -------------------------------------------------------------------------

    def create_ride_request(self, rider_id: int, data: dict) -> Dict[str, Any]:
        """Post a trip request and let every driver know about it."""
        is_valid, errors, cleaned = validate_ride_request_data(data)
        _raise_if_invalid(is_valid, errors)

        request_id = self.db.create_ride_request(
            rider_id=rider_id,
            from_location=cleaned['from_location'],
            to_location=cleaned['to_location'],
            departure_date=cleaned['departure_date'],
            departure_time=cleaned['departure_time'],
            passengers=cleaned['passengers'],
            max_price=cleaned.get('max_price'),
            notes=cleaned.get('notes'),
        )
        ride_request = self.db.get_ride_request_by_id(request_id)
        logger.info("Ride request %s posted by rider %s", request_id, rider_id)

        title = 'New trip request'
        text = (f"{ride_request['from_location']} to {ride_request['to_location']} on "
                f"{ride_request['departure_date']} at {ride_request['departure_time']}, "
                f"{ride_request['passengers']} passenger(s)")
        for driver_id in self.db.get_user_ids_by_type(UserType.DRIVER.value, exclude_id=rider_id):
            self.notifications.notify_quietly(
                driver_id, NotificationType.TRIP_REQUEST, title, text,
                'ride_request', request_id
            )
        return ride_request

    def get_ride_request(self, request_id: int) -> Dict[str, Any]:
        ride_request = self.db.get_ride_request_by_id(request_id)
        if not ride_request:
            raise NotFoundError('Ride request not found')
        return ride_request

    def list_open_requests(self) -> List[Dict[str, Any]]:
        return self.db.get_ride_requests(status=RideRequestStatus.PENDING.value)

    def requests_for_rider(self, rider_id: int) -> List[Dict[str, Any]]:
        return self.db.get_ride_requests_by_rider(rider_id)

    def _owned_request(self, request_id: int, rider_id: int) -> Dict[str, Any]:
        ride_request = self.get_ride_request(request_id)
        if ride_request['rider_id'] != rider_id:
            raise AuthorizationError('You can only change your own ride requests')
        return ride_request

    def update_ride_request(self, request_id: int, rider_id: int, data: dict) -> Dict[str, Any]:
        ride_request = self._owned_request(request_id, rider_id)
        if ride_request['status'] != RideRequestStatus.PENDING.value:
            raise ConflictError(f"Cannot edit a {ride_request['status']} ride request")

        is_valid, errors, cleaned = validate_ride_request_data(data, is_edit=True)
        _raise_if_invalid(is_valid, errors)
        if cleaned:
            self.db.update_ride_request(request_id, **cleaned)
        return self.db.get_ride_request_by_id(request_id)

    def cancel_ride_request(self, request_id: int, rider_id: int) -> Dict[str, Any]:
        """Cancel a pending request; drivers with a pending offer on it are told."""
        ride_request = self._owned_request(request_id, rider_id)
        declined = self.db.cancel_ride_request(request_id)
        if declined is None:
            raise ConflictError(f"Cannot cancel a {ride_request['status']} ride request")
        logger.info("Ride request %s cancelled by rider %s", request_id, rider_id)
        for offer in declined:
            self.notifications.notify_quietly(
                offer['driver_id'], NotificationType.BOOKING_CANCELLED,
                'Ride request cancelled',
                f"The rider cancelled the trip {route_label(offer)}. "
                f"Your offer {offer['job_id']} is no longer needed",
                'booking', offer['id']
            )
        return self.db.get_ride_request_by_id(request_id)

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def expire_stale(self, today: Optional[str] = None) -> Dict[str, int]:
        """
        Close rides and requests whose departure date is before ``today``.

        Drivers hear about rides cancelled for lack of bookings, riders
        about their expired requests, and both parties about every pending
        booking that expired with them.

        Returns:
            Counts of closed rides, cancelled requests and declined bookings.
        """
        today = today or date.today().isoformat()
        expired_rides = self.db.expire_past_rides(today)
        expired_requests = self.db.expire_past_ride_requests(today)

        for ride in expired_rides['rides']:
            if ride['status'] != RideStatus.CANCELLED.value:
                continue
            self.notifications.notify_quietly(
                ride['driver_id'], NotificationType.RIDE_CANCELLED,
                'Ride automatically cancelled',
                f"Your ride from {ride['from_location']} to {ride['to_location']} on "
                f"{ride['departure_date']} was cancelled because nobody booked it",
                'ride', ride['id']
            )
        for ride_request in expired_requests['requests']:
            self.notifications.notify_quietly(
                ride_request['rider_id'], NotificationType.REQUEST_CANCELLED,
                'Ride request automatically cancelled',
                f"Your ride request from {ride_request['from_location']} to "
                f"{ride_request['to_location']} on {ride_request['departure_date']} "
                f"expired without a driver match",
                'ride_request', ride_request['id']
            )
        bookings = expired_rides['bookings'] + expired_requests['bookings']
        for booking in bookings:
            for user_id in (booking['rider_id'], booking['driver_id']):
                self.notifications.notify_quietly(
                    user_id, NotificationType.BOOKING_CANCELLED,
                    'Booking expired',
                    f"Booking {booking['job_id']} for {route_label(booking)} was never "
                    f"confirmed and has expired",
                    'booking', booking['id']
                )

        counts = {
            'rides': len(expired_rides['rides']),
            'requests': len(expired_requests['requests']),
            'bookings': len(bookings),
        }
        if any(counts.values()):
            logger.info("Expired %(rides)s ride(s), %(requests)s ride request(s) and "
                        "%(bookings)s booking(s)", counts)
        return counts
