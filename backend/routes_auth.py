"""
HitchBuddy - Authentication Routes

Sign-up, sign-in, sign-out, the current-user lookup and profile edits.
"""

import logging

from flask import Blueprint, jsonify, current_app

from config import config
from auth import (
    hash_password, verify_password, login_user, logout_user, get_api_user,
    api_login_required, validate_email, validate_password, validate_phone
)
from extensions import limiter
from models import UserType
from serializers import serialize_user, request_json


logger = logging.getLogger(__name__)

# Create blueprint
auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

PROFILE_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'phone': 'phone',
    'userType': 'user_type',
    'addressLine1': 'address_line1',
    'addressLine2': 'address_line2',
    'city': 'city',
    'county': 'county',
    'postcode': 'postcode',
    'country': 'country',
    'avatarUrl': 'avatar_url',
}


def _user_types():
    return [t.value for t in UserType]


@auth_bp.route('/signup', methods=['POST'])
@limiter.limit(config.AUTH_RATE_LIMIT)
def signup():
    """Register a new rider or driver and sign them in."""
    data = request_json()
    db = current_app.db

    email = str(data.get('email') or '').strip().lower()
    password = str(data.get('password') or '')
    first_name = str(data.get('firstName') or '').strip()
    last_name = str(data.get('lastName') or '').strip()
    phone = str(data.get('phone') or '').strip()
    user_type = str(data.get('userType') or UserType.RIDER.value).strip().lower()

    if not all([email, password, first_name, last_name]):
        return jsonify({'error': 'Email, password, first name and last name are required'}), 400

    is_valid, error = validate_email(email)
    if not is_valid:
        return jsonify({'error': error}), 400

    is_valid, error = validate_password(password)
    if not is_valid:
        return jsonify({'error': error}), 400

    is_valid, error = validate_phone(phone)
    if not is_valid:
        return jsonify({'error': error}), 400

    if user_type not in _user_types():
        return jsonify({'error': 'User type must be rider or driver'}), 400

    user_id = db.create_user(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone or None,
        user_type=user_type
    )
    if user_id is None:
        return jsonify({'error': 'An account with this email already exists'}), 409

    user = db.get_user_by_id(user_id)
    token = login_user(user)
    logger.info("New %s account %s registered", user_type, user_id)
    return jsonify({'user': serialize_user(user), 'token': token}), 201


@auth_bp.route('/signin', methods=['POST'])
@limiter.limit(config.AUTH_RATE_LIMIT)
def signin():
    """Handle user sign-in."""
    data = request_json()
    email = str(data.get('email') or '').strip().lower()
    password = str(data.get('password') or '')

    if not email or not password:
        return jsonify({'error': 'Email and password are required'}), 400

    user = current_app.db.get_user_by_email(email)
    if not user or not verify_password(password, user['password_hash']):
        return jsonify({'error': 'Invalid email or password'}), 401

    token = login_user(user)
    return jsonify({'user': serialize_user(user), 'token': token})


@auth_bp.route('/signout', methods=['POST'])
def signout():
    logout_user()
    return jsonify({'success': True})


@auth_bp.route('/me')
def me():
    """Current user, or ``{user: null}`` for anonymous visitors."""
    return jsonify({'user': serialize_user(get_api_user())})


@auth_bp.route('/update-profile', methods=['PUT'])
@api_login_required
def update_profile():
    """Update current user's profile."""
    data = request_json()
    user = get_api_user()

    update_data = {
        column: (str(data[key]).strip() or None) if data[key] is not None else None
        for key, column in PROFILE_FIELDS.items() if key in data
    }

    if 'user_type' in update_data and update_data['user_type'] not in _user_types():
        return jsonify({'error': 'User type must be rider or driver'}), 400
    for required in ('first_name', 'last_name'):
        if required in update_data and not update_data[required]:
            return jsonify({'error': 'First and last name cannot be empty'}), 400
    if update_data.get('phone'):
        is_valid, error = validate_phone(update_data['phone'])
        if not is_valid:
            return jsonify({'error': error}), 400

    if update_data:
        current_app.db.update_user(user['id'], **update_data)

    return jsonify({'user': serialize_user(current_app.db.get_user_by_id(user['id']))})


@auth_bp.route('/user/<int:user_id>')
@api_login_required
def get_user(user_id):
    """Get a user's public profile."""
    user = current_app.db.get_user_by_id(user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    return jsonify({'user': serialize_user(user, private=False)})
