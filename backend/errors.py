"""
HitchBuddy - Error Types

Domain errors raised by the workflow layer. The Flask app maps each one
to an HTTP status and renders it as ``{"error": message}``.
"""


class HitchBuddyError(Exception):
    """Base class for all errors that reach the API boundary."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HitchBuddyError):
    """Malformed or over-limit input."""
    status_code = 400


class AuthenticationError(HitchBuddyError):
    """No valid session."""
    status_code = 401


class AuthorizationError(HitchBuddyError):
    """Actor is not allowed to touch the resource."""
    status_code = 403


class NotFoundError(HitchBuddyError):
    """Referenced entity does not exist."""
    status_code = 404


class ConflictError(HitchBuddyError):
    """Operation not permitted from the entity's current state."""
    status_code = 409
