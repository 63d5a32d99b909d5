"""
HitchBuddy - Flask extensions shared across blueprints.
"""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from config import config


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=config.RATELIMIT_STORAGE_URI,
    default_limits=[],
)
