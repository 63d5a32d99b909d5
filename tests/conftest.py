import os

# Settings must be in place before config.py is imported
os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ.pop('DATABASE_URL', None)

import pytest  # noqa: E402

from database import Database  # noqa: E402
from notifications import NotificationCenter  # noqa: E402
from bookings import BookingWorkflow  # noqa: E402
from messaging import MessageThread  # noqa: E402
from rides import RideBoard  # noqa: E402
from ratings import RatingBook  # noqa: E402


FUTURE_DATE = '2099-06-01'


@pytest.fixture
def db(tmp_path):
    return Database(db_path=str(tmp_path / 'hitchbuddy-test.db'), db_url='')


@pytest.fixture
def notification_center(db):
    return NotificationCenter(db)


@pytest.fixture
def workflow(db, notification_center):
    return BookingWorkflow(db, notification_center)


@pytest.fixture
def thread(db, notification_center):
    return MessageThread(db, notification_center)


@pytest.fixture
def board(db, notification_center):
    return RideBoard(db, notification_center)


@pytest.fixture
def rating_book(db):
    return RatingBook(db)


@pytest.fixture
def make_user(db):
    counter = {'n': 0}

    def _make_user(user_type='rider', first_name=None):
        counter['n'] += 1
        n = counter['n']
        return db.create_user(
            email=f'user{n}@example.com',
            password_hash='not-a-real-hash',
            first_name=first_name or f'User{n}',
            last_name='Test',
            user_type=user_type,
        )
    return _make_user


@pytest.fixture
def driver(make_user):
    return make_user('driver', 'Dana')


@pytest.fixture
def rider(make_user):
    return make_user('rider', 'Rory')


@pytest.fixture
def outsider(make_user):
    return make_user('rider', 'Olly')


@pytest.fixture
def ride_data():
    return {
        'fromLocation': 'London Euston',
        'toLocation': 'Manchester Piccadilly',
        'departureDate': FUTURE_DATE,
        'departureTime': '08:30',
        'availableSeats': 3,
        'price': 12.5,
        'vehicleInfo': 'Blue VW Golf',
    }


@pytest.fixture
def ride(board, driver, ride_data):
    return board.create_ride(driver, ride_data)


@pytest.fixture
def request_data():
    return {
        'fromLocation': 'Leeds',
        'toLocation': 'York',
        'departureDate': FUTURE_DATE,
        'departureTime': '17:00',
        'passengers': 2,
        'maxPrice': 30,
    }


@pytest.fixture
def pending_booking(workflow, ride, rider):
    return workflow.create_booking(rider_id=rider, ride_id=ride['id'], seats_booked=2)


@pytest.fixture
def notifications_of(db):
    """All notification rows of a user, optionally of one type."""
    def _notifications_of(user_id, notification_type=None):
        rows = db.get_notifications_for_user(user_id, limit=100)
        if notification_type:
            rows = [r for r in rows if r['type'] == notification_type]
        return rows
    return _notifications_of


# =============================================================================
# HTTP fixtures
# =============================================================================

@pytest.fixture
def app(tmp_path):
    from app import create_app
    app = create_app({
        'TESTING': True,
        'DATABASE_PATH': str(tmp_path / 'hitchbuddy-api.db'),
        'DATABASE_URL': '',
        'RATELIMIT_ENABLED': False,
        'SESSION_COOKIE_SECURE': False,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signup(client):
    """Register an account over the API and return (user, auth headers)."""
    counter = {'n': 0}

    def _signup(user_type='rider', first_name='Api'):
        counter['n'] += 1
        response = client.post('/api/auth/signup', json={
            'email': f'{first_name.lower()}{counter["n"]}@example.com',
            'password': 'secret123',
            'firstName': first_name,
            'lastName': 'Tester',
            'userType': user_type,
        })
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body['user'], {'Authorization': f"Bearer {body['token']}"}
    return _signup
