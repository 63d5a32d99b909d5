"""
HitchBuddy - Ratings Routes

Ratings after completed trips, plus the public platform counters.
"""

from flask import Blueprint, jsonify, current_app

from auth import api_login_required, get_api_user
from errors import ValidationError
from serializers import serialize_rating, request_json, optional_id


# Create blueprint
ratings_bp = Blueprint('ratings', __name__, url_prefix='/api')


@ratings_bp.route('/ratings', methods=['POST'])
@api_login_required
def create_rating():
    """Rate the other party of a completed booking ``{bookingId, ratedUserId, rating, review}``."""
    data = request_json()
    booking_id = optional_id(data.get('bookingId'), 'bookingId')
    rated_user_id = optional_id(data.get('ratedUserId'), 'ratedUserId')
    if booking_id is None or rated_user_id is None:
        raise ValidationError('bookingId and ratedUserId are required')

    rating = current_app.rating_book.create_rating(
        booking_id=booking_id,
        rater_id=get_api_user()['id'],
        rated_user_id=rated_user_id,
        rating=data.get('rating'),
        review=data.get('review'),
    )
    return jsonify(serialize_rating(rating)), 201


@ratings_bp.route('/ratings/<int:user_id>')
def user_ratings(user_id):
    ratings = current_app.rating_book.ratings_for_user(user_id)
    return jsonify({
        'ratings': [serialize_rating(r) for r in ratings],
        'average': current_app.rating_book.average_rating(user_id),
    })


@ratings_bp.route('/stats')
def get_stats():
    """Get public platform statistics."""
    stats = current_app.db.get_platform_statistics()
    return jsonify({
        'totalUsers': stats.get('total_users', 0),
        'totalRides': stats.get('total_rides', 0),
        'activeRides': stats.get('active_rides', 0),
        'openRequests': stats.get('open_requests', 0),
        'totalBookings': stats.get('total_bookings', 0),
    })
