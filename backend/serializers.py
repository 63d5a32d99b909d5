"""
HitchBuddy - JSON Serializers

Turn database rows (snake_case dicts) into the camelCase objects the
frontend consumes.
"""

import json
from typing import Optional, Dict, Any

from flask import request

from errors import ValidationError
from models import navigation_tab


def _full_name(row: Dict[str, Any], prefix: str) -> Optional[str]:
    first = row.get(f'{prefix}_first_name')
    last = row.get(f'{prefix}_last_name')
    name = f"{first or ''} {last or ''}".strip()
    return name or None


def _money(value) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


def serialize_user(user: Optional[Dict[str, Any]], private: bool = True) -> Optional[Dict[str, Any]]:
    """Public profile, plus contact and address details when ``private``."""
    if not user:
        return None
    data = {
        'id': user['id'],
        'firstName': user.get('first_name'),
        'lastName': user.get('last_name'),
        'userType': user.get('user_type'),
        'avatarUrl': user.get('avatar_url'),
        'createdAt': user.get('created_at'),
    }
    if private:
        data.update({
            'email': user.get('email'),
            'phone': user.get('phone'),
            'addressLine1': user.get('address_line1'),
            'addressLine2': user.get('address_line2'),
            'city': user.get('city'),
            'county': user.get('county'),
            'postcode': user.get('postcode'),
            'country': user.get('country'),
            'updatedAt': user.get('updated_at'),
        })
    return data


def serialize_ride(ride: Dict[str, Any]) -> Dict[str, Any]:
    recurring = ride.get('recurring_data')
    if isinstance(recurring, str):
        recurring = json.loads(recurring)
    return {
        'id': ride['id'],
        'driverId': ride['driver_id'],
        'driverName': _full_name(ride, 'driver'),
        'fromLocation': ride['from_location'],
        'toLocation': ride['to_location'],
        'departureDate': ride.get('departure_date'),
        'departureTime': ride.get('departure_time'),
        'availableSeats': ride['available_seats'],
        'price': _money(ride['price']),
        'vehicleInfo': ride.get('vehicle_info'),
        'notes': ride.get('notes'),
        'isRecurring': bool(ride.get('is_recurring')),
        'recurringData': recurring,
        'status': ride['status'],
        'createdAt': ride.get('created_at'),
        'updatedAt': ride.get('updated_at'),
    }


def serialize_ride_request(ride_request: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': ride_request['id'],
        'riderId': ride_request['rider_id'],
        'riderName': _full_name(ride_request, 'rider'),
        'fromLocation': ride_request['from_location'],
        'toLocation': ride_request['to_location'],
        'departureDate': ride_request.get('departure_date'),
        'departureTime': ride_request.get('departure_time'),
        'passengers': ride_request['passengers'],
        'maxPrice': _money(ride_request.get('max_price')),
        'notes': ride_request.get('notes'),
        'status': ride_request['status'],
        'createdAt': ride_request.get('created_at'),
        'updatedAt': ride_request.get('updated_at'),
    }


def serialize_booking(booking: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': booking['id'],
        'jobId': booking['job_id'],
        'rideId': booking.get('ride_id'),
        'rideRequestId': booking.get('ride_request_id'),
        'riderId': booking['rider_id'],
        'riderName': _full_name(booking, 'rider'),
        'driverId': booking['driver_id'],
        'driverName': _full_name(booking, 'driver'),
        'createdBy': booking['created_by'],
        'seatsBooked': booking['seats_booked'],
        'phoneNumber': booking.get('phone_number'),
        'message': booking.get('message'),
        'totalCost': _money(booking['total_cost']),
        'status': booking['status'],
        'fromLocation': booking.get('from_location'),
        'toLocation': booking.get('to_location'),
        'departureDate': booking.get('departure_date'),
        'departureTime': booking.get('departure_time'),
        'createdAt': booking.get('created_at'),
        'updatedAt': booking.get('updated_at'),
    }


def serialize_message(message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': message['id'],
        'bookingId': message['booking_id'],
        'senderId': message['sender_id'],
        'senderName': _full_name(message, 'sender'),
        'message': message['message'],
        'isRead': bool(message.get('is_read')),
        'readAt': message.get('read_at'),
        'createdAt': message.get('created_at'),
    }


def serialize_notification(notification: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': notification['id'],
        'userId': notification['user_id'],
        'type': notification['type'],
        'title': notification['title'],
        'message': notification['message'],
        'relatedKind': notification.get('related_kind'),
        'relatedId': notification.get('related_id'),
        'isRead': bool(notification.get('is_read')),
        'readAt': notification.get('read_at'),
        'createdAt': notification.get('created_at'),
        'tab': navigation_tab(notification['type']),
    }


def serialize_rating(rating: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': rating['id'],
        'bookingId': rating['booking_id'],
        'raterId': rating['rater_id'],
        'raterName': _full_name(rating, 'rater'),
        'ratedUserId': rating['rated_user_id'],
        'rating': rating['rating'],
        'review': rating.get('review'),
        'createdAt': rating.get('created_at'),
    }


# =============================================================================
# Request helpers
# =============================================================================

def request_json() -> Dict[str, Any]:
    """JSON object body of the current request, or an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def optional_id(value, field: str) -> Optional[int]:
    """Parse an id sent by the client; None stays None."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an id')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an id')
