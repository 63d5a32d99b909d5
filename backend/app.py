"""
HitchBuddy - Flask Application

Application factory wiring the database, the workflow services and the
API blueprints together.
"""

import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from flask import Flask, jsonify, request, g
from werkzeug.exceptions import HTTPException

from config import config
from database import Database
from errors import HitchBuddyError
from extensions import limiter
from notifications import NotificationCenter
from bookings import BookingWorkflow
from messaging import MessageThread
from rides import RideBoard
from ratings import RatingBook
from routes_auth import auth_bp
from routes_rides import rides_bp
from routes_bookings import bookings_bp
from routes_messaging import messaging_bp
from routes_notifications import notifications_bp
from routes_ratings import ratings_bp


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CORS_METHODS = 'GET, POST, PUT, PATCH, DELETE, OPTIONS'
CORS_HEADERS = 'Content-Type, Authorization, X-Requested-With, Accept'


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    """Send application logs to stdout once per process."""
    root = logging.getLogger()
    if not any(getattr(h, '_hitchbuddy', False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._hitchbuddy = True
        root.addHandler(handler)
    root.setLevel(level)


# =============================================================================

def create_app(overrides: Optional[dict] = None):
    """
    Create and configure the Flask application.

    Args:
        overrides: Flask config values applied on top of ``Config``; tests use
            it to point DATABASE_PATH at a temporary file and switch off rate
            limiting.
    """
    configure_logging()
    app = Flask(__name__)

    # Configure Flask
    app.secret_key = config.SECRET_KEY
    app.config['SESSION_COOKIE_HTTPONLY'] = config.SESSION_COOKIE_HTTPONLY
    app.config['SESSION_COOKIE_SECURE'] = config.SESSION_COOKIE_SECURE
    app.config['SESSION_COOKIE_SAMESITE'] = config.SESSION_COOKIE_SAMESITE
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=config.SESSION_LIFETIME_DAYS)
    app.config['DATABASE_PATH'] = config.DATABASE_PATH
    app.config['DATABASE_URL'] = config.DATABASE_URL
    app.config['RATELIMIT_ENABLED'] = config.RATELIMIT_ENABLED
    app.config['RATELIMIT_STORAGE_URI'] = config.RATELIMIT_STORAGE_URI
    app.config['CLEANUP_INTERVAL_SECONDS'] = config.CLEANUP_INTERVAL_SECONDS
    app.config.update(overrides or {})

    # Services
    app.db = Database(db_path=app.config['DATABASE_PATH'], db_url=app.config['DATABASE_URL'])
    app.notification_center = NotificationCenter(app.db)
    app.booking_workflow = BookingWorkflow(app.db, app.notification_center)
    app.message_thread = MessageThread(app.db, app.notification_center)
    app.ride_board = RideBoard(app.db, app.notification_center)
    app.rating_book = RatingBook(app.db)

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(rides_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(messaging_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(ratings_bp)

    # Register error handlers (JSON responses for API)
    @app.errorhandler(HitchBuddyError)
    def domain_error(error):
        return jsonify({'error': error.message}), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({'error': 'Too many requests, please slow down'}), 429

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(Exception)
    def unhandled_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'error': error.description}), error.code
        logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=error)
        return jsonify({'error': 'Internal server error'}), 500

    # CORS support for API routes
    allowed_origins = config.allowed_origins()

    @app.after_request
    def after_request(response):
        origin = request.headers.get('Origin', '')
        if request.path.startswith('/api') and origin in allowed_origins:
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Access-Control-Allow-Credentials'] = 'true'
            response.headers['Access-Control-Allow-Methods'] = CORS_METHODS
            response.headers['Access-Control-Allow-Headers'] = CORS_HEADERS
            response.headers['Vary'] = 'Origin'
        return response

    @app.before_request
    def handle_preflight():
        if request.method == 'OPTIONS' and request.path.startswith('/api'):
            response = app.make_default_options_response()
            origin = request.headers.get('Origin', '')
            if origin in allowed_origins:
                response.headers['Access-Control-Allow-Origin'] = origin
                response.headers['Access-Control-Allow-Credentials'] = 'true'
                response.headers['Access-Control-Allow-Methods'] = CORS_METHODS
                response.headers['Access-Control-Allow-Headers'] = CORS_HEADERS
                response.headers['Access-Control-Max-Age'] = '86400'
            return response

    @app.before_request
    def before_request_housekeeping():
        g.user = None
        last_cleanup = getattr(app, '_last_cleanup', None)
        now = datetime.now()
        if last_cleanup is None or (now - last_cleanup).total_seconds() > app.config['CLEANUP_INTERVAL_SECONDS']:
            app._last_cleanup = now
            try:
                app.ride_board.expire_stale()
                app.db.cleanup_expired_sessions(now)
            except Exception:
                logger.warning("Housekeeping run failed", exc_info=True)

    # Initialize Flask-Limiter after app creation
    limiter.init_app(app)
    app.limiter = limiter
    return app
