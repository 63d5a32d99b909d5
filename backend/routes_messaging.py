"""
HitchBuddy - Messaging Routes

Per-booking message threads between rider and driver.
"""

from flask import Blueprint, jsonify, current_app

from config import config
from auth import api_login_required, get_api_user
from errors import ValidationError
from extensions import limiter
from serializers import serialize_message, request_json, optional_id


# Create blueprint
messaging_bp = Blueprint('messaging', __name__, url_prefix='/api/messages')


@messaging_bp.route('', methods=['POST'])
@api_login_required
@limiter.limit(config.MESSAGE_RATE_LIMIT)
def send_message():
    """Send ``{bookingId, message}`` to the other party of the booking."""
    data = request_json()
    booking_id = optional_id(data.get('bookingId'), 'bookingId')
    if booking_id is None:
        raise ValidationError('bookingId is required')

    message = current_app.message_thread.send_message(
        booking_id, get_api_user()['id'], data.get('message')
    )
    return jsonify(serialize_message(message)), 201


@messaging_bp.route('/<int:booking_id>')
@api_login_required
def list_messages(booking_id):
    messages = current_app.message_thread.list_messages(booking_id, get_api_user()['id'])
    return jsonify([serialize_message(m) for m in messages])


@messaging_bp.route('/<int:message_id>/read', methods=['PUT'])
@api_login_required
def mark_message_read(message_id):
    current_app.message_thread.mark_message_read(message_id, get_api_user()['id'])
    return jsonify({'success': True})


@messaging_bp.route('/unread-count')
@api_login_required
def unread_count():
    count = current_app.message_thread.unread_message_count(get_api_user()['id'])
    return jsonify({'unreadCount': count})
