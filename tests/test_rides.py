import json
import logging

import pytest

from errors import ValidationError, AuthorizationError, ConflictError

FUTURE_DATE = '2099-06-01'


# =============================================================================
# Posting rides
# =============================================================================

def test_driver_posts_ride(ride, driver):
    assert ride['driver_id'] == driver
    assert ride['status'] == 'active'
    assert ride['available_seats'] == 3
    assert ride['price'] == pytest.approx(12.5)
    assert ride['departure_time'] == '08:30'
    assert ride['driver_first_name'] == 'Dana'


def test_riders_cannot_post_rides(board, rider, ride_data):
    with pytest.raises(AuthorizationError):
        board.create_ride(rider, ride_data)


@pytest.mark.parametrize('field, value', [
    ('fromLocation', ''),
    ('toLocation', '   '),
    ('departureDate', '2000-01-01'),
    ('departureDate', '01/06/2099'),
    ('departureTime', '25:99'),
    ('availableSeats', 0),
    ('availableSeats', 9),
    ('availableSeats', 'lots'),
    ('price', -5),
    ('price', 'free'),
])
def test_ride_validation(board, driver, ride_data, field, value):
    ride_data[field] = value
    with pytest.raises(ValidationError):
        board.create_ride(driver, ride_data)


def test_recurring_ride_needs_no_date(board, driver, ride_data):
    ride_data.pop('departureDate')
    ride_data.update(isRecurring=True,
                     recurringData={'frequency': 'custom', 'daysOfWeek': ['Friday', 'monday']})

    ride = board.create_ride(driver, ride_data)

    assert ride['is_recurring'] == 1
    assert ride['departure_date'] is None
    assert json.loads(ride['recurring_data']) == {
        'frequency': 'custom', 'daysOfWeek': ['monday', 'friday']
    }


@pytest.mark.parametrize('recurring', [
    None,
    {'frequency': 'hourly'},
    {'frequency': 'weekly', 'daysOfWeek': ['funday']},
    {'frequency': 'custom', 'daysOfWeek': []},
    {'frequency': 'daily', 'daysOfWeek': 'monday'},
])
def test_recurring_data_validation(board, driver, ride_data, recurring):
    ride_data.update(isRecurring=True, recurringData=recurring)
    with pytest.raises(ValidationError):
        board.create_ride(driver, ride_data)


def test_non_recurring_ride_needs_a_date(board, driver, ride_data):
    ride_data.pop('departureDate')
    with pytest.raises(ValidationError):
        board.create_ride(driver, ride_data)


# =============================================================================
# Searching
# =============================================================================

def test_search_matches_case_insensitive_substrings(board, ride):
    assert [r['id'] for r in board.search_rides('euston', 'MANCHESTER')] == [ride['id']]
    assert board.search_rides('glasgow') == []


def test_search_ignores_one_letter_queries(board, ride):
    assert [r['id'] for r in board.search_rides('x', 'y')] == [ride['id']]


def test_search_respects_seat_count_and_status(board, workflow, ride, driver, rider):
    assert board.search_rides(min_seats=4) == []
    workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=3)
    assert board.search_rides() == []


def test_search_skips_cancelled_rides(board, ride, driver):
    board.cancel_ride(ride['id'], driver)
    assert board.search_rides() == []


def test_search_by_date_keeps_recurring_rides(board, driver, ride, ride_data):
    ride_data.pop('departureDate')
    ride_data.update(isRecurring=True, recurringData={'frequency': 'daily'})
    recurring = board.create_ride(driver, ride_data)

    found = board.search_rides(departure_date='2099-07-01')

    assert [r['id'] for r in found] == [recurring['id']]
    assert {r['id'] for r in board.search_rides(departure_date=FUTURE_DATE)} == {ride['id'], recurring['id']}


def test_search_rejects_bad_date(board):
    with pytest.raises(ValidationError):
        board.search_rides(departure_date='tomorrow')


def test_location_suggestions(board, ride, rider, request_data):
    board.create_ride_request(rider, request_data)

    assert board.suggest_locations('man') == ['Manchester Piccadilly']
    assert board.suggest_locations('E') == []
    assert board.suggest_locations('ee') == ['Leeds']
    assert board.suggest_locations('eed') == ['Leeds']


# =============================================================================
# Editing and cancelling
# =============================================================================

def test_owner_updates_ride(board, ride, driver):
    updated = board.update_ride(ride['id'], driver, {'price': 15, 'notes': 'No pets'})

    assert updated['price'] == pytest.approx(15.0)
    assert updated['notes'] == 'No pets'
    assert updated['from_location'] == 'London Euston'


def test_only_owner_updates_or_cancels(board, ride, make_user):
    other_driver = make_user('driver')
    with pytest.raises(AuthorizationError):
        board.update_ride(ride['id'], other_driver, {'price': 1})
    with pytest.raises(AuthorizationError):
        board.cancel_ride(ride['id'], other_driver)


def test_cancelled_ride_is_frozen(board, ride, driver):
    cancelled = board.cancel_ride(ride['id'], driver)
    assert cancelled['status'] == 'cancelled'

    with pytest.raises(ConflictError):
        board.cancel_ride(ride['id'], driver)
    with pytest.raises(ConflictError):
        board.update_ride(ride['id'], driver, {'price': 1})


# =============================================================================
# Ride requests
# =============================================================================

def test_ride_request_is_announced_to_every_driver(board, rider, driver, make_user, request_data,
                                                   notifications_of):
    second_driver = make_user('driver')
    other_rider = make_user('rider')

    ride_request = board.create_ride_request(rider, request_data)

    assert ride_request['status'] == 'pending'
    assert ride_request['passengers'] == 2
    for driver_id in (driver, second_driver):
        announced = notifications_of(driver_id, 'trip_request')
        assert len(announced) == 1
        assert announced[0]['related_kind'] == 'ride_request'
        assert announced[0]['related_id'] == ride_request['id']
    assert notifications_of(other_rider) == []
    assert notifications_of(rider) == []


@pytest.mark.parametrize('field, value', [
    ('passengers', 0),
    ('maxPrice', -1),
    ('departureDate', ''),
    ('toLocation', ''),
])
def test_ride_request_validation(board, rider, request_data, field, value):
    request_data[field] = value
    with pytest.raises(ValidationError):
        board.create_ride_request(rider, request_data)


def test_open_requests_and_my_requests(board, rider, outsider, request_data):
    mine = board.create_ride_request(rider, request_data)
    theirs = board.create_ride_request(outsider, request_data)
    board.cancel_ride_request(theirs['id'], outsider)

    assert [r['id'] for r in board.list_open_requests()] == [mine['id']]
    assert [r['id'] for r in board.requests_for_rider(outsider)] == [theirs['id']]


def test_ride_request_edit_rules(board, rider, outsider, request_data):
    ride_request = board.create_ride_request(rider, request_data)

    updated = board.update_ride_request(ride_request['id'], rider, {'passengers': 3, 'notes': 'Luggage'})
    assert updated['passengers'] == 3
    assert updated['notes'] == 'Luggage'

    with pytest.raises(AuthorizationError):
        board.update_ride_request(ride_request['id'], outsider, {'passengers': 1})

    board.cancel_ride_request(ride_request['id'], rider)
    with pytest.raises(ConflictError):
        board.update_ride_request(ride_request['id'], rider, {'passengers': 1})


# =============================================================================
# Housekeeping
# =============================================================================

def test_expire_stale_closes_past_trips(db, board, workflow, driver, rider, ride_data, request_data,
                                        notifications_of):
    booked = board.create_ride(driver, ride_data)
    empty = board.create_ride(driver, ride_data)
    ride_data.pop('departureDate')
    ride_data.update(isRecurring=True, recurringData={'frequency': 'weekdays'})
    recurring = board.create_ride(driver, ride_data)
    ride_request = board.create_ride_request(rider, request_data)

    booking = workflow.create_booking(rider_id=rider, ride_id=booked['id'], seats_booked=1)
    workflow.update_booking_status(booking['id'], driver, 'confirmed')

    counts = board.expire_stale(today='2100-01-01')

    assert counts == {'rides': 2, 'requests': 1, 'bookings': 0}
    assert db.get_ride_by_id(booked['id'])['status'] == 'completed'
    assert db.get_ride_by_id(empty['id'])['status'] == 'cancelled'
    assert db.get_ride_by_id(recurring['id'])['status'] == 'active'
    assert db.get_ride_request_by_id(ride_request['id'])['status'] == 'cancelled'
    assert db.get_booking_by_id(booking['id'])['status'] == 'confirmed'
    assert [n['related_id'] for n in notifications_of(driver, 'ride_cancelled')] == [empty['id']]
    assert len(notifications_of(rider, 'request_cancelled')) == 1


def test_expire_stale_leaves_future_trips(db, board, ride, rider, request_data):
    board.create_ride_request(rider, request_data)

    assert board.expire_stale(today='2099-05-31') == {'rides': 0, 'requests': 0, 'bookings': 0}
    assert db.get_ride_by_id(ride['id'])['status'] == 'active'


def test_expire_stale_declines_pending_bookings_and_tells_both_parties(db, board, workflow, pending_booking,
                                                                       driver, rider, request_data,
                                                                       notifications_of):
    ride_request = board.create_ride_request(rider, request_data)
    offer = workflow.create_counter_offer(ride_request['id'], driver, offer_price=30)

    counts = board.expire_stale(today='2100-01-01')

    assert counts == {'rides': 1, 'requests': 1, 'bookings': 2}
    assert db.get_booking_by_id(pending_booking['id'])['status'] == 'declined'
    assert db.get_booking_by_id(offer['id'])['status'] == 'declined'
    for user_id in (driver, rider):
        expired = notifications_of(user_id, 'booking_cancelled')
        assert sorted(n['related_id'] for n in expired) == sorted([pending_booking['id'], offer['id']])
    assert len(notifications_of(driver, 'ride_cancelled')) == 1
    assert len(notifications_of(rider, 'request_cancelled')) == 1

    with pytest.raises(ConflictError):
        workflow.update_booking_status(pending_booking['id'], driver, 'confirmed')


def test_expire_stale_notifications_are_best_effort(db, board, ride, driver, monkeypatch, caplog):
    def broken_insert(*args, **kwargs):
        raise RuntimeError('notifications table is locked')
    monkeypatch.setattr(db, 'create_notification', broken_insert)

    with caplog.at_level(logging.WARNING):
        counts = board.expire_stale(today='2100-01-01')

    assert counts['rides'] == 1
    assert db.get_ride_by_id(ride['id'])['status'] == 'cancelled'
    assert 'notification' in caplog.text.lower()
