"""
HitchBuddy - Authentication Module

This module handles password hashing, input validation for accounts,
server-side sessions and the API route protection decorator.

A signed-in user owns a row in the ``sessions`` table. Its id travels
either in the Flask session cookie or as an ``Authorization: Bearer``
token, so browser and non-browser clients share the same lookup.
"""

import logging
import re
import secrets
from functools import wraps
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

import bcrypt
from flask import session, request, g, current_app

from config import config
from errors import AuthenticationError


logger = logging.getLogger(__name__)

SESSION_KEY = 'session_id'


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: The plain text password to hash.

    Returns:
        The bcrypt hash as a string.
    """
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, hashed: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Returns:
        True if the password matches, False otherwise.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        # malformed hash
        return False


def generate_token() -> str:
    """Generate a secure random session token."""
    return secrets.token_urlsafe(32)


def validate_email(email: str) -> tuple[bool, str]:
    """
    Validate email format.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not email:
        return False, "Email address is required."

    email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    if not re.match(email_pattern, email):
        return False, "Please enter a valid email address."

    return True, ""


def validate_password(password: str) -> tuple[bool, str]:
    """Check the password length requirement."""
    if not password or len(password) < config.MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters long."
    return True, ""


def validate_phone(phone: str) -> tuple[bool, str]:
    """
    Validate phone number format.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not phone:
        return True, ""  # Phone is optional

    # Remove spaces and dashes for validation
    cleaned = re.sub(r'[\s\-\(\)]', '', phone)

    # Must be 7-15 digits, optionally starting with +
    if not re.match(r'^\+?[0-9]{7,15}$', cleaned):
        return False, "Please enter a valid phone number."

    return True, ""


# =============================================================================
# Sessions
# =============================================================================

def login_user(user: Dict[str, Any]) -> str:
    """
    Open a server-side session for ``user`` and remember it in the cookie.

    Returns:
        The session token, also usable as a Bearer token.
    """
    db = current_app.db
    token = generate_token()
    expires_at = datetime.now() + timedelta(days=config.SESSION_LIFETIME_DAYS)
    db.create_session(token, user['id'], expires_at)

    session.clear()
    session[SESSION_KEY] = token
    session.permanent = True
    g.user = user
    logger.info("User %s signed in", user['id'])
    return token


def get_session_token() -> Optional[str]:
    """Session token from the Authorization header or the session cookie."""
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip() or None
    return session.get(SESSION_KEY)


def logout_user() -> None:
    """Delete the current server-side session and clear the cookie."""
    token = get_session_token()
    if token:
        current_app.db.delete_session(token)
    session.clear()
    g.user = None


def get_current_user() -> Optional[Dict[str, Any]]:
    """
    Resolve the user behind the current request's session token.

    Expired sessions are deleted on the way.

    Returns:
        The user dictionary if signed in, None otherwise.
    """
    token = get_session_token()
    if not token:
        return None

    db = current_app.db
    record = db.get_session(token)
    if not record:
        return None

    if is_session_expired(record['expires_at']):
        db.delete_session(token)
        return None

    return db.get_user_by_id(record['user_id'])


def is_session_expired(expires_at) -> bool:
    """
    Check if a session has expired.

    Args:
        expires_at: The expiry datetime as an ISO format string.
    """
    if not expires_at:
        return True

    try:
        expiry = datetime.fromisoformat(str(expires_at))
        return datetime.now() > expiry
    except ValueError:
        return True


def get_api_user() -> Optional[Dict[str, Any]]:
    """Current user for this request, cached on ``g``."""
    if getattr(g, 'user', None) is None:
        g.user = get_current_user()
    return g.user


def api_login_required(f):
    """Decorator to require login for API endpoints."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not get_api_user():
            raise AuthenticationError('Authentication required')
        return f(*args, **kwargs)
    return decorated_function
