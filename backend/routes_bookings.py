"""
HitchBuddy - Bookings Routes

This module contains all routes related to booking management: booking a
ride, listing bookings and moving a booking through its statuses.
"""

from flask import Blueprint, jsonify, current_app

from auth import api_login_required, get_api_user
from errors import ValidationError
from serializers import serialize_booking, request_json, optional_id


# Create blueprint
bookings_bp = Blueprint('bookings', __name__, url_prefix='/api/bookings')


@bookings_bp.route('', methods=['POST'])
@api_login_required
def create_booking():
    """
    Book seats on a ride ``{rideId, seatsBooked, phoneNumber, message}``,
    ask a driver directly ``{driverId, ...}``, or, for drivers, make a
    counter-offer on a ride request ``{rideRequestId, totalCost, message}``.
    """
    data = request_json()
    user = get_api_user()
    workflow = current_app.booking_workflow

    ride_request_id = optional_id(data.get('rideRequestId'), 'rideRequestId')
    if ride_request_id is not None:
        booking = workflow.create_counter_offer(
            request_id=ride_request_id,
            driver_id=user['id'],
            offer_price=data.get('totalCost', data.get('offerPrice')),
            message=data.get('message'),
            phone_number=data.get('phoneNumber'),
        )
        return jsonify(serialize_booking(booking)), 201

    ride_id = optional_id(data.get('rideId'), 'rideId')
    driver_id = optional_id(data.get('driverId'), 'driverId')
    if ride_id is None and driver_id is None:
        raise ValidationError('rideId is required')

    booking = workflow.create_booking(
        rider_id=user['id'],
        ride_id=ride_id,
        driver_id=driver_id,
        seats_booked=data.get('seatsBooked', 1),
        phone_number=data.get('phoneNumber'),
        message=data.get('message'),
    )
    return jsonify(serialize_booking(booking)), 201


@bookings_bp.route('')
@api_login_required
def list_bookings():
    """Bookings where the current user is rider or driver, newest first."""
    bookings = current_app.booking_workflow.list_bookings(get_api_user()['id'])
    return jsonify([serialize_booking(b) for b in bookings])


@bookings_bp.route('/<int:booking_id>')
@api_login_required
def get_booking(booking_id):
    booking = current_app.booking_workflow.get_booking(booking_id, get_api_user()['id'])
    return jsonify(serialize_booking(booking))


@bookings_bp.route('/<int:booking_id>', methods=['PUT', 'PATCH'])
@api_login_required
def update_booking_status(booking_id):
    """Confirm, decline or complete a booking: ``{status}``."""
    status = request_json().get('status')
    if not status:
        raise ValidationError('status is required')
    booking = current_app.booking_workflow.update_booking_status(
        booking_id, get_api_user()['id'], status
    )
    return jsonify(serialize_booking(booking))


@bookings_bp.route('/ride/<int:ride_id>')
@api_login_required
def ride_bookings(ride_id):
    """Bookings on one of the current driver's rides."""
    bookings = current_app.booking_workflow.list_ride_bookings(ride_id, get_api_user()['id'])
    return jsonify([serialize_booking(b) for b in bookings])
