"""
HitchBuddy - Configuration Module

This module loads all configuration from environment variables.
It validates that required variables are present and provides
sensible defaults for optional configuration.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigurationError(Exception):
    """Raised when a required configuration value is missing."""
    pass


def get_required(key: str) -> str:
    """
    Get a required environment variable.
    Raises ConfigurationError if the variable is not set or empty.
    """
    value = os.getenv(key)
    if not value or value.strip() == '' or value.startswith('your-'):
        raise ConfigurationError(
            f"Required environment variable '{key}' is not set. "
            f"Please check your .env file."
        )
    return value.strip()


def get_optional(key: str, default: str = '') -> str:
    """
    Get an optional environment variable with a default value.
    """
    value = os.getenv(key, default)
    return value.strip() if value else default


def get_int(key: str, default: int) -> int:
    """
    Get an environment variable as an integer.
    """
    value = os.getenv(key)
    if value:
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def get_float(key: str, default: float) -> float:
    """
    Get an environment variable as a float.
    """
    value = os.getenv(key)
    if value:
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def get_bool(key: str, default: bool) -> bool:
    """Get an environment variable as a boolean ('true', '1', 'yes')."""
    value = os.getenv(key)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('true', '1', 'yes')


class Config:
    """
    Application configuration loaded from environment variables.
    All configuration values are accessed through this class.
    """

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    # Flask secret key for session cookie signing
    SECRET_KEY: str = get_required('SECRET_KEY')

    # Application display name
    APP_NAME: str = get_optional('APP_NAME', 'HitchBuddy')

    # Root logger level for the application
    LOG_LEVEL: str = get_optional('LOG_LEVEL', 'INFO').upper()

    # Comma separated list of origins allowed to call the API with credentials
    ALLOWED_ORIGINS: str = get_optional(
        'ALLOWED_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173,http://localhost:5000'
    )

    # -------------------------------------------------------------------------
    # Database Settings
    # -------------------------------------------------------------------------

    # Path to SQLite database file
    DATABASE_PATH: str = get_optional('DATABASE_PATH', 'hitchbuddy.db')

    # PostgreSQL connection string; takes precedence over DATABASE_PATH
    DATABASE_URL: str = get_optional('DATABASE_URL', '')

    # Seconds between two runs of the stale ride/request housekeeping
    CLEANUP_INTERVAL_SECONDS: int = get_int('CLEANUP_INTERVAL_SECONDS', 3600)

    # -------------------------------------------------------------------------
    # Domain Limits
    # -------------------------------------------------------------------------

    MAX_SEATS_PER_RIDE: int = get_int('MAX_SEATS_PER_RIDE', 8)
    MAX_MESSAGE_LENGTH: int = get_int('MAX_MESSAGE_LENGTH', 1000)
    MIN_PASSWORD_LENGTH: int = get_int('MIN_PASSWORD_LENGTH', 6)

    # Number of notifications returned by the feed endpoint
    NOTIFICATION_FEED_LIMIT: int = get_int('NOTIFICATION_FEED_LIMIT', 10)

    # Fallback seat price for counter-offers sent without an explicit price
    DEFAULT_SEAT_PRICE: float = get_float('DEFAULT_SEAT_PRICE', 10.0)

    # -------------------------------------------------------------------------
    # Security Settings
    # -------------------------------------------------------------------------

    # Server-side session lifetime
    SESSION_LIFETIME_DAYS: int = get_int('SESSION_LIFETIME_DAYS', 30)

    # Session cookie settings
    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SECURE: bool = get_bool('SESSION_COOKIE_SECURE', False)
    SESSION_COOKIE_SAMESITE: str = get_optional('SESSION_COOKIE_SAMESITE', 'Lax')

    # bcrypt work factor
    BCRYPT_ROUNDS: int = get_int('BCRYPT_ROUNDS', 12)

    # Rate limiting (Flask-Limiter)
    RATELIMIT_ENABLED: bool = get_bool('RATELIMIT_ENABLED', True)
    RATELIMIT_STORAGE_URI: str = get_optional('RATELIMIT_STORAGE_URI', 'memory://')
    AUTH_RATE_LIMIT: str = get_optional('AUTH_RATE_LIMIT', '10 per minute')
    MESSAGE_RATE_LIMIT: str = get_optional('MESSAGE_RATE_LIMIT', '30 per minute')

    @classmethod
    def allowed_origins(cls) -> list:
        """Split ALLOWED_ORIGINS into a clean list."""
        return [o.strip() for o in cls.ALLOWED_ORIGINS.split(',') if o.strip()]


# Create a global config instance for easy importing
config = Config()
