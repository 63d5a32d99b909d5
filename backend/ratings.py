"""
HitchBuddy - Ratings

Riders and drivers rate each other once per completed booking.
"""

import logging
from typing import List, Dict, Any, Optional

from database import Database
from errors import ValidationError, AuthorizationError, NotFoundError, ConflictError
from models import BookingStatus


logger = logging.getLogger(__name__)

MAX_REVIEW_LENGTH = 1000


class RatingBook:

    def __init__(self, db: Database):
        self.db = db

    def create_rating(
        self,
        booking_id: int,
        rater_id: int,
        rated_user_id: int,
        rating,
        review: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record ``rater_id``'s rating of the other party of a completed booking.

        Raises:
            NotFoundError: unknown booking.
            AuthorizationError: rater is not part of the booking.
            ConflictError: booking not completed, or already rated by this rater.
            ValidationError: wrong rated user, rating outside 1..5 or review too long.
        """
        booking = self.db.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError('Booking not found')

        parties = (booking['rider_id'], booking['driver_id'])
        if rater_id not in parties:
            raise AuthorizationError('You are not part of this booking')
        if booking['status'] != BookingStatus.COMPLETED.value:
            raise ConflictError('You can only rate a completed trip')

        other_party = booking['driver_id'] if rater_id == booking['rider_id'] else booking['rider_id']
        if rated_user_id != other_party:
            raise ValidationError('You can only rate the other person on this booking')

        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError('Rating must be a whole number between 1 and 5')

        if review is not None:
            review = str(review).strip() or None
            if review and len(review) > MAX_REVIEW_LENGTH:
                raise ValidationError(f'Review is too long (max {MAX_REVIEW_LENGTH} characters)')

        rating_id = self.db.create_rating(booking_id, rater_id, rated_user_id, rating, review)
        if rating_id is None:
            raise ConflictError('You have already rated this booking')

        logger.info("User %s rated user %s %s/5 for booking %s",
                    rater_id, rated_user_id, rating, booking_id)
        return self.db.get_rating_by_id(rating_id)

    def ratings_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        if not self.db.get_user_by_id(user_id):
            raise NotFoundError('User not found')
        return self.db.get_ratings_for_user(user_id)

    def average_rating(self, user_id: int) -> float:
        return self.db.get_user_average_rating(user_id)
