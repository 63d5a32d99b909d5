"""
HitchBuddy - Notification Routes
"""

from flask import Blueprint, jsonify, current_app

from auth import api_login_required, get_api_user
from serializers import serialize_notification


# Create blueprint
notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')


@notifications_bp.route('')
@api_login_required
def list_notifications():
    """Latest notifications for the bell menu, with the unread badge count."""
    feed = current_app.notification_center.list_notifications(get_api_user()['id'])
    return jsonify({
        'notifications': [serialize_notification(n) for n in feed['notifications']],
        'unreadCount': feed['unread_count'],
    })


@notifications_bp.route('/<int:notification_id>/read', methods=['PUT'])
@api_login_required
def mark_as_read(notification_id):
    current_app.notification_center.mark_as_read(notification_id, get_api_user()['id'])
    return jsonify({'success': True})


@notifications_bp.route('/read-all', methods=['PUT'])
@api_login_required
def mark_all_as_read():
    current_app.notification_center.mark_all_as_read(get_api_user()['id'])
    return jsonify({'success': True})
