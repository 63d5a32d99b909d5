"""
HitchBuddy - Rides Routes

This module contains the routes for rides offered by drivers, ride
requests posted by riders, counter-offers on those requests and the
location autocomplete.
"""

from flask import Blueprint, jsonify, request, current_app

from auth import api_login_required, get_api_user
from serializers import (
    serialize_ride, serialize_ride_request, serialize_booking, request_json
)


# Create blueprint
rides_bp = Blueprint('rides', __name__, url_prefix='/api')


# =============================================================================
# Rides
# =============================================================================

@rides_bp.route('/rides')
def search_rides():
    """Search active rides: ?from=&to=&date=&seats="""
    rides = current_app.ride_board.search_rides(
        from_location=request.args.get('from'),
        to_location=request.args.get('to'),
        departure_date=request.args.get('date'),
        min_seats=request.args.get('seats', 1),
    )
    return jsonify([serialize_ride(r) for r in rides])


@rides_bp.route('/rides', methods=['POST'])
@api_login_required
def create_ride():
    ride = current_app.ride_board.create_ride(get_api_user()['id'], request_json())
    return jsonify(serialize_ride(ride)), 201


@rides_bp.route('/rides/my')
@api_login_required
def my_rides():
    """Rides posted by the current driver."""
    rides = current_app.ride_board.rides_for_driver(get_api_user()['id'])
    return jsonify([serialize_ride(r) for r in rides])


@rides_bp.route('/rides/<int:ride_id>')
def get_ride(ride_id):
    return jsonify(serialize_ride(current_app.ride_board.get_ride(ride_id)))


@rides_bp.route('/rides/<int:ride_id>', methods=['PUT', 'PATCH'])
@api_login_required
def update_ride(ride_id):
    ride = current_app.ride_board.update_ride(ride_id, get_api_user()['id'], request_json())
    return jsonify(serialize_ride(ride))


@rides_bp.route('/rides/<int:ride_id>', methods=['DELETE'])
@api_login_required
def cancel_ride(ride_id):
    ride = current_app.ride_board.cancel_ride(ride_id, get_api_user()['id'])
    return jsonify(serialize_ride(ride))


@rides_bp.route('/locations')
def suggest_locations():
    """Autocomplete for pickup and destination fields: ?q="""
    return jsonify({'locations': current_app.ride_board.suggest_locations(request.args.get('q'))})


# =============================================================================
# Ride Requests
# =============================================================================

@rides_bp.route('/ride-requests', methods=['POST'])
@api_login_required
def create_ride_request():
    ride_request = current_app.ride_board.create_ride_request(get_api_user()['id'], request_json())
    return jsonify(serialize_ride_request(ride_request)), 201


@rides_bp.route('/ride-requests')
@api_login_required
def open_ride_requests():
    """Pending ride requests, shown to drivers looking for passengers."""
    requests = current_app.ride_board.list_open_requests()
    return jsonify([serialize_ride_request(r) for r in requests])


@rides_bp.route('/ride-requests/my')
@api_login_required
def my_ride_requests():
    requests = current_app.ride_board.requests_for_rider(get_api_user()['id'])
    return jsonify([serialize_ride_request(r) for r in requests])


@rides_bp.route('/ride-requests/<int:request_id>', methods=['PATCH', 'PUT'])
@api_login_required
def update_ride_request(request_id):
    ride_request = current_app.ride_board.update_ride_request(
        request_id, get_api_user()['id'], request_json()
    )
    return jsonify(serialize_ride_request(ride_request))


@rides_bp.route('/ride-requests/<int:request_id>', methods=['DELETE'])
@api_login_required
def cancel_ride_request(request_id):
    ride_request = current_app.ride_board.cancel_ride_request(request_id, get_api_user()['id'])
    return jsonify(serialize_ride_request(ride_request))


@rides_bp.route('/ride-requests/<int:request_id>/counter-offers', methods=['POST'])
@api_login_required
def create_counter_offer(request_id):
    """A driver offers a price for a rider's ride request."""
    data = request_json()
    booking = current_app.booking_workflow.create_counter_offer(
        request_id=request_id,
        driver_id=get_api_user()['id'],
        offer_price=data.get('offerPrice'),
        message=data.get('message'),
        phone_number=data.get('phoneNumber'),
    )
    return jsonify(serialize_booking(booking)), 201
