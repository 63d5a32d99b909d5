import re
import sqlite3
import logging

import pytest

from errors import ValidationError, AuthorizationError, NotFoundError, ConflictError


# =============================================================================
# Creating bookings
# =============================================================================

def test_booking_a_ride_creates_pending_booking_and_notifies_driver(
        db, workflow, ride, rider, driver, notifications_of):
    booking = workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=2,
                                      phone_number='07700900123', message='Two of us')

    assert booking['status'] == 'pending'
    assert booking['rider_id'] == rider
    assert booking['driver_id'] == driver
    assert booking['created_by'] == rider
    assert booking['seats_booked'] == 2
    assert booking['total_cost'] == pytest.approx(25.0)
    assert re.fullmatch(r'HB-\d{8}-[A-Z0-9]{5}', booking['job_id'])

    requests = notifications_of(driver)
    assert len(requests) == 1
    assert requests[0]['type'] == 'booking_request'
    assert requests[0]['related_kind'] == 'booking'
    assert requests[0]['related_id'] == booking['id']
    assert notifications_of(rider) == []


def test_booking_reserves_seats_on_the_ride(db, workflow, ride, rider):
    workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=2)

    assert db.get_ride_by_id(ride['id'])['available_seats'] == 1


def test_booking_more_seats_than_available_fails_and_persists_nothing(db, workflow, ride, rider, driver):
    with pytest.raises(ValidationError):
        workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=4)

    assert db.get_bookings_for_user(rider) == []
    assert db.get_ride_by_id(ride['id'])['available_seats'] == 3
    assert db.get_notifications_for_user(driver) == []


def test_seat_check_holds_when_ride_was_read_before_seats_ran_out(db, workflow, ride, rider, outsider, monkeypatch):
    workflow.create_booking(rider_id=outsider, ride_id=ride['id'], seats_booked=3)
    stale = dict(db.get_ride_by_id(ride['id']), available_seats=3)
    monkeypatch.setattr(db, 'get_ride_by_id', lambda ride_id: stale)

    with pytest.raises(ValidationError, match='Not enough seats'):
        workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=2)

    assert db.get_bookings_for_user(rider) == []


def test_conditional_seat_update_refuses_to_oversell(db, ride, rider, driver):
    assert db.create_ride_booking(ride['id'], rider, driver, 4, 50.0) is None
    assert db.create_ride_booking(ride['id'], rider, driver, 3, 37.5) is not None
    assert db.create_ride_booking(ride['id'], rider, driver, 1, 12.5) is None
    assert len(db.get_bookings_by_ride(ride['id'])) == 1
    assert db.get_ride_by_id(ride['id'])['available_seats'] == 0


@pytest.mark.parametrize('seats', [0, -1, 1.5, 'two', None, True])
def test_seats_must_be_a_positive_whole_number(workflow, ride, rider, seats):
    with pytest.raises(ValidationError):
        workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=seats)


def test_cannot_book_own_ride(workflow, ride, driver):
    with pytest.raises(ValidationError):
        workflow.create_booking(rider_id=driver, ride_id=ride['id'], seats_booked=1)


def test_unknown_ride(workflow, rider):
    with pytest.raises(NotFoundError):
        workflow.create_booking(rider_id=rider, ride_id=999, seats_booked=1)


def test_cancelled_ride_cannot_be_booked(workflow, board, ride, driver, rider):
    board.cancel_ride(ride['id'], driver)
    with pytest.raises(ConflictError):
        workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=1)


def test_direct_booking_with_driver_needs_no_ride(workflow, rider, driver, notifications_of):
    booking = workflow.create_booking(rider_id=rider, driver_id=driver, seats_booked=1)

    assert booking['ride_id'] is None
    assert booking['status'] == 'pending'
    assert len(notifications_of(driver, 'booking_request')) == 1


def test_booking_without_ride_or_driver_is_rejected(workflow, rider):
    with pytest.raises(ValidationError):
        workflow.create_booking(rider_id=rider, seats_booked=1)


def test_failed_notification_does_not_undo_booking(db, workflow, ride, rider, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise sqlite3.OperationalError('notifications table is locked')
    monkeypatch.setattr(db, 'create_notification', broken)

    with caplog.at_level(logging.WARNING, logger='notifications'):
        booking = workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=1)

    assert db.get_booking_by_id(booking['id'])['status'] == 'pending'
    assert db.get_ride_by_id(ride['id'])['available_seats'] == 2
    assert 'booking_request' in caplog.text


# =============================================================================
# Status changes
# =============================================================================

def test_driver_confirms_and_rider_is_notified(workflow, pending_booking, driver, rider, notifications_of):
    booking = workflow.update_booking_status(pending_booking['id'], driver, 'confirmed')

    assert booking['status'] == 'confirmed'
    confirmed = notifications_of(rider, 'booking_confirmed')
    assert len(confirmed) == 1
    assert confirmed[0]['related_id'] == booking['id']


def test_creator_cannot_confirm_own_booking(workflow, pending_booking, rider):
    with pytest.raises(AuthorizationError):
        workflow.update_booking_status(pending_booking['id'], rider, 'confirmed')


def test_outsider_cannot_change_status(workflow, pending_booking, outsider):
    with pytest.raises(AuthorizationError):
        workflow.update_booking_status(pending_booking['id'], outsider, 'declined')


def test_unknown_booking_status_change(workflow, driver):
    with pytest.raises(NotFoundError):
        workflow.update_booking_status(12345, driver, 'confirmed')


def test_unknown_status_value(workflow, pending_booking, driver):
    with pytest.raises(ValidationError):
        workflow.update_booking_status(pending_booking['id'], driver, 'teleported')


def test_decline_restores_seats_and_notifies_rider(db, workflow, pending_booking, ride, driver, rider,
                                                   notifications_of):
    booking = workflow.update_booking_status(pending_booking['id'], driver, 'declined')

    assert booking['status'] == 'declined'
    assert db.get_ride_by_id(ride['id'])['available_seats'] == 3
    assert len(notifications_of(rider, 'booking_declined')) == 1


def test_rider_may_withdraw_by_declining(db, workflow, pending_booking, ride, rider, driver, notifications_of):
    workflow.update_booking_status(pending_booking['id'], rider, 'declined')

    assert db.get_ride_by_id(ride['id'])['available_seats'] == 3
    assert len(notifications_of(driver, 'booking_declined')) == 1


def test_completion_asks_both_parties_for_a_rating(workflow, pending_booking, driver, rider, notifications_of):
    workflow.update_booking_status(pending_booking['id'], driver, 'confirmed')
    booking = workflow.update_booking_status(pending_booking['id'], rider, 'completed')

    assert booking['status'] == 'completed'
    assert len(notifications_of(rider, 'rating_request')) == 1
    assert len(notifications_of(driver, 'rating_request')) == 1


@pytest.mark.parametrize('path', [
    ['completed'],
    ['pending'],
    ['confirmed', 'declined'],
    ['confirmed', 'pending'],
    ['confirmed', 'confirmed'],
    ['declined', 'confirmed'],
    ['declined', 'completed'],
    ['confirmed', 'completed', 'confirmed'],
    ['confirmed', 'completed', 'declined'],
])
def test_only_forward_transitions_are_allowed(workflow, pending_booking, driver, path):
    *allowed, last = path
    for status in allowed:
        workflow.update_booking_status(pending_booking['id'], driver, status)

    with pytest.raises(ConflictError):
        workflow.update_booking_status(pending_booking['id'], driver, last)


def test_losing_a_status_race_raises_conflict(db, workflow, pending_booking, driver, monkeypatch):
    monkeypatch.setattr(db, 'transition_booking', lambda *args: False)

    with pytest.raises(ConflictError):
        workflow.update_booking_status(pending_booking['id'], driver, 'confirmed')


def test_cancelling_a_ride_declines_its_open_bookings(db, workflow, board, pending_booking, ride, driver,
                                                      rider, outsider, notifications_of):
    confirmed = workflow.create_booking(rider_id=outsider, ride_id=ride['id'], seats_booked=1)
    workflow.update_booking_status(confirmed['id'], driver, 'confirmed')

    board.cancel_ride(ride['id'], driver)

    assert db.get_booking_by_id(pending_booking['id'])['status'] == 'declined'
    assert db.get_booking_by_id(confirmed['id'])['status'] == 'declined'
    assert len(notifications_of(rider, 'booking_cancelled')) == 1
    assert len(notifications_of(outsider, 'booking_cancelled')) == 1


def test_booking_on_cancelled_ride_cannot_be_confirmed(workflow, board, pending_booking, ride, driver):
    board.cancel_ride(ride['id'], driver)

    with pytest.raises(ConflictError):
        workflow.update_booking_status(pending_booking['id'], driver, 'confirmed')


def test_confirm_write_requires_an_active_ride(db, workflow, pending_booking, ride, driver):
    with db.get_connection() as conn:
        conn.execute("UPDATE rides SET status = 'cancelled' WHERE id = ?", (ride['id'],))

    assert db.transition_booking(pending_booking['id'], 'pending', 'confirmed') is False
    with pytest.raises(ConflictError, match='no longer active'):
        workflow.update_booking_status(pending_booking['id'], driver, 'confirmed')
    assert db.get_booking_by_id(pending_booking['id'])['status'] == 'pending'


# =============================================================================
# Counter-offers
# =============================================================================

@pytest.fixture
def ride_request(board, rider, request_data):
    return board.create_ride_request(rider, request_data)


def test_counter_offer_creates_booking_without_ride(workflow, ride_request, driver, rider, notifications_of):
    offer = workflow.create_counter_offer(ride_request['id'], driver, offer_price=28,
                                          message='I can take you both')

    assert offer['ride_id'] is None
    assert offer['ride_request_id'] == ride_request['id']
    assert offer['rider_id'] == rider
    assert offer['driver_id'] == driver
    assert offer['created_by'] == driver
    assert offer['seats_booked'] == 2
    assert offer['total_cost'] == pytest.approx(28.0)
    assert offer['status'] == 'pending'
    assert offer['from_location'] == 'Leeds'
    assert len(notifications_of(rider, 'counter_offer')) == 1


def test_accepting_counter_offer_creates_and_links_ride(db, workflow, ride_request, driver, rider,
                                                        notifications_of):
    offer = workflow.create_counter_offer(ride_request['id'], driver, offer_price=28)

    booking = workflow.update_booking_status(offer['id'], rider, 'confirmed')

    assert booking['status'] == 'confirmed'
    assert booking['ride_id'] is not None
    new_ride = db.get_ride_by_id(booking['ride_id'])
    assert new_ride['driver_id'] == driver
    assert new_ride['from_location'] == 'Leeds'
    assert new_ride['to_location'] == 'York'
    assert new_ride['available_seats'] == 0
    assert new_ride['price'] == pytest.approx(14.0)
    assert db.get_ride_request_by_id(ride_request['id'])['status'] == 'matched'
    assert len(notifications_of(driver, 'booking_confirmed')) == 1


def test_driver_cannot_accept_own_counter_offer(workflow, ride_request, driver):
    offer = workflow.create_counter_offer(ride_request['id'], driver, offer_price=28)
    with pytest.raises(AuthorizationError):
        workflow.update_booking_status(offer['id'], driver, 'confirmed')


def test_only_drivers_make_counter_offers(workflow, ride_request, outsider):
    with pytest.raises(AuthorizationError):
        workflow.create_counter_offer(ride_request['id'], outsider, offer_price=20)


def test_counter_offer_on_closed_request(workflow, board, ride_request, rider, driver):
    board.cancel_ride_request(ride_request['id'], rider)
    with pytest.raises(ConflictError):
        workflow.create_counter_offer(ride_request['id'], driver, offer_price=20)


def test_counter_offer_on_unknown_request(workflow, driver):
    with pytest.raises(NotFoundError):
        workflow.create_counter_offer(404, driver, offer_price=20)


@pytest.mark.parametrize('price', [-1, 'cheap', True])
def test_counter_offer_price_must_be_valid(workflow, ride_request, driver, price):
    with pytest.raises(ValidationError):
        workflow.create_counter_offer(ride_request['id'], driver, offer_price=price)


def test_counter_offer_without_price_uses_default_seat_price(workflow, ride_request, driver):
    offer = workflow.create_counter_offer(ride_request['id'], driver)
    assert offer['total_cost'] == pytest.approx(20.0)


def test_accepting_one_offer_declines_the_others(db, workflow, ride_request, driver, rider, make_user,
                                                 notifications_of):
    second_driver = make_user('driver')
    first = workflow.create_counter_offer(ride_request['id'], driver, offer_price=28)
    second = workflow.create_counter_offer(ride_request['id'], second_driver, offer_price=25)

    workflow.update_booking_status(first['id'], rider, 'confirmed')

    assert db.get_booking_by_id(second['id'])['status'] == 'declined'
    assert len(notifications_of(second_driver, 'booking_declined')) == 1
    with pytest.raises(ConflictError):
        workflow.update_booking_status(second['id'], rider, 'confirmed')
    assert db.get_rides_by_driver(second_driver) == []
    assert len(db.get_rides_by_driver(driver)) == 1


def test_matched_request_cannot_be_matched_twice(db, workflow, ride_request, driver, rider, make_user):
    second_driver = make_user('driver')
    first = workflow.create_counter_offer(ride_request['id'], driver, offer_price=28)
    second = workflow.create_counter_offer(ride_request['id'], second_driver, offer_price=25)
    with db.get_connection() as conn:
        conn.execute("UPDATE ride_requests SET status = 'matched' WHERE id = ?", (ride_request['id'],))

    assert db.confirm_counter_offer(first['id']) is None
    with pytest.raises(ConflictError, match='no longer open'):
        workflow.update_booking_status(second['id'], rider, 'confirmed')
    assert db.get_booking_by_id(first['id'])['status'] == 'pending'
    assert db.get_rides_by_driver(driver) == []


def test_offer_on_cancelled_request_cannot_be_accepted(db, workflow, board, ride_request, driver, rider,
                                                       notifications_of):
    offer = workflow.create_counter_offer(ride_request['id'], driver, offer_price=28)

    board.cancel_ride_request(ride_request['id'], rider)

    assert db.get_booking_by_id(offer['id'])['status'] == 'declined'
    assert len(notifications_of(driver, 'booking_cancelled')) == 1
    assert db.confirm_counter_offer(offer['id']) is None
    with pytest.raises(ConflictError):
        workflow.update_booking_status(offer['id'], rider, 'confirmed')
    assert db.get_ride_request_by_id(ride_request['id'])['status'] == 'cancelled'
    assert db.get_rides_by_driver(driver) == []



# =============================================================================
# Queries
# =============================================================================

def test_list_bookings_covers_both_roles_newest_first(workflow, ride, rider, driver, outsider):
    first = workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=1)
    second = workflow.create_booking(rider_id=outsider, ride_id=ride['id'], seats_booked=1)

    assert [b['id'] for b in workflow.list_bookings(driver)] == [second['id'], first['id']]
    assert [b['id'] for b in workflow.list_bookings(rider)] == [first['id']]


def test_get_booking_is_party_only(workflow, pending_booking, rider, outsider):
    assert workflow.get_booking(pending_booking['id'], rider)['id'] == pending_booking['id']
    with pytest.raises(AuthorizationError):
        workflow.get_booking(pending_booking['id'], outsider)


def test_ride_bookings_are_visible_to_the_driver_only(workflow, pending_booking, ride, driver, rider):
    assert [b['id'] for b in workflow.list_ride_bookings(ride['id'], driver)] == [pending_booking['id']]
    with pytest.raises(AuthorizationError):
        workflow.list_ride_bookings(ride['id'], rider)
