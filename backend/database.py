"""
HitchBuddy - Database Module

This module handles all database operations using SQLite3 or PostgreSQL.
The database is self-initializing - it creates all tables, indexes,
and constraints on first run if they don't exist.

Multi-statement operations (booking a ride, declining a booking,
accepting a counter-offer) run inside a single ``get_connection()``
block so they commit or roll back as one transaction.
"""

import datetime
import logging
import secrets
import sqlite3
import string
from contextlib import contextmanager
from typing import Optional, List, Dict, Any

from config import config

# PostgreSQL support
try:
    import psycopg2
    import psycopg2.extras
    HAS_POSTGRES = True
except ImportError:
    HAS_POSTGRES = False


logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        first_name TEXT,
        last_name TEXT,
        phone TEXT,
        user_type TEXT NOT NULL DEFAULT 'rider' CHECK (user_type IN ('rider', 'driver')),
        address_line1 TEXT,
        address_line2 TEXT,
        city TEXT,
        county TEXT,
        postcode TEXT,
        country TEXT,
        avatar_url TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id INTEGER NOT NULL,
        expires_at DATETIME NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rides (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        driver_id INTEGER NOT NULL,
        from_location TEXT NOT NULL,
        to_location TEXT NOT NULL,
        departure_date TEXT,
        departure_time TEXT NOT NULL,
        available_seats INTEGER NOT NULL CHECK (available_seats >= 0),
        price REAL NOT NULL CHECK (price >= 0),
        vehicle_info TEXT,
        notes TEXT,
        is_recurring INTEGER DEFAULT 0,
        recurring_data TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'cancelled', 'completed')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (driver_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ride_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        rider_id INTEGER NOT NULL,
        from_location TEXT NOT NULL,
        to_location TEXT NOT NULL,
        departure_date TEXT,
        departure_time TEXT NOT NULL,
        passengers INTEGER NOT NULL CHECK (passengers >= 1),
        max_price REAL,
        notes TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'matched', 'cancelled')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (rider_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT UNIQUE NOT NULL,
        ride_id INTEGER,
        ride_request_id INTEGER,
        rider_id INTEGER NOT NULL,
        driver_id INTEGER NOT NULL,
        created_by INTEGER NOT NULL,
        seats_booked INTEGER NOT NULL CHECK (seats_booked >= 1),
        phone_number TEXT,
        message TEXT,
        total_cost REAL NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'confirmed', 'declined', 'completed')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (ride_id) REFERENCES rides(id) ON DELETE CASCADE,
        FOREIGN KEY (ride_request_id) REFERENCES ride_requests(id) ON DELETE SET NULL,
        FOREIGN KEY (rider_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (driver_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        booking_id INTEGER NOT NULL,
        sender_id INTEGER NOT NULL,
        message TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0,
        read_at DATETIME,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (booking_id) REFERENCES bookings(id) ON DELETE CASCADE,
        FOREIGN KEY (sender_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        related_kind TEXT,
        related_id INTEGER,
        is_read INTEGER NOT NULL DEFAULT 0,
        read_at DATETIME,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ratings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        booking_id INTEGER NOT NULL,
        rater_id INTEGER NOT NULL,
        rated_user_id INTEGER NOT NULL,
        rating INTEGER NOT NULL CHECK (rating >= 1 AND rating <= 5),
        review TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (booking_id) REFERENCES bookings(id) ON DELETE CASCADE,
        FOREIGN KEY (rater_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (rated_user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE (booking_id, rater_id)
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_rides_driver_id ON rides(driver_id)",
    "CREATE INDEX IF NOT EXISTS idx_rides_status ON rides(status)",
    "CREATE INDEX IF NOT EXISTS idx_ride_requests_rider_id ON ride_requests(rider_id)",
    "CREATE INDEX IF NOT EXISTS idx_ride_requests_status ON ride_requests(status)",
    "CREATE INDEX IF NOT EXISTS idx_bookings_ride_id ON bookings(ride_id)",
    "CREATE INDEX IF NOT EXISTS idx_bookings_rider_id ON bookings(rider_id)",
    "CREATE INDEX IF NOT EXISTS idx_bookings_driver_id ON bookings(driver_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_booking_id ON messages(booking_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user_id ON notifications(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_is_read ON notifications(is_read)",
    "CREATE INDEX IF NOT EXISTS idx_ratings_rated_user_id ON ratings(rated_user_id)",
]

_JOB_ID_ALPHABET = string.ascii_uppercase + string.digits


def new_job_id(today: Optional[datetime.date] = None) -> str:
    """Human readable booking reference, e.g. ``HB-20240105-K3X9Q``."""
    today = today or datetime.date.today()
    suffix = ''.join(secrets.choice(_JOB_ID_ALPHABET) for _ in range(5))
    return f"HB-{today.strftime('%Y%m%d')}-{suffix}"


def _row_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a sqlite3.Row or RealDictRow to a plain dict with ISO formatted dates."""
    if row is None:
        return None
    record = dict(row)
    for k, v in record.items():
        if isinstance(v, (datetime.datetime, datetime.date)):
            record[k] = v.isoformat()
        elif isinstance(v, datetime.time):
            record[k] = v.strftime('%H:%M:%S')
    return record


class Database:
    """
    Database handler for HitchBuddy.

    All methods use parameterized queries to prevent SQL injection.
    The database is automatically initialized on first use.
    Supports both SQLite (local) and PostgreSQL (production).
    """

    def __init__(self, db_path: Optional[str] = None, db_url: Optional[str] = None):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
                     Defaults to config.DATABASE_PATH.
            db_url: PostgreSQL connection string. Defaults to config.DATABASE_URL;
                    used instead of SQLite when set and psycopg2 is installed.
        """
        database_url = db_url if db_url is not None else config.DATABASE_URL

        if database_url and HAS_POSTGRES:
            self.use_postgres = True
            self.db_url = database_url
            # Render/Heroku use postgres:// but psycopg2 needs postgresql://
            if self.db_url.startswith('postgres://'):
                self.db_url = self.db_url.replace('postgres://', 'postgresql://', 1)
            self.db_path = None
        else:
            if database_url:
                logger.warning("DATABASE_URL is set but psycopg2 is not installed; using SQLite")
            self.use_postgres = False
            self.db_path = db_path or config.DATABASE_PATH
            self.db_url = None

        self._init_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        One block is one transaction: commit on success, rollback on error.
        """
        if self.use_postgres:
            conn = psycopg2.connect(self.db_url)
            conn.set_session(autocommit=False)
        else:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _get_cursor(self, conn):
        """Get a cursor with proper row factory for both databases."""
        if self.use_postgres:
            return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        return conn.cursor()

    def _placeholder(self):
        """Get the correct placeholder for parameterized queries."""
        return '%s' if self.use_postgres else '?'

    @property
    def integrity_error(self):
        """Driver specific IntegrityError class."""
        return psycopg2.IntegrityError if self.use_postgres else sqlite3.IntegrityError

    def _ddl(self, statement: str) -> str:
        """Translate SQLite DDL into the PostgreSQL dialect when needed."""
        if not self.use_postgres:
            return statement
        return (statement
                .replace('INTEGER PRIMARY KEY AUTOINCREMENT', 'SERIAL PRIMARY KEY')
                .replace('DATETIME', 'TIMESTAMP'))

    def _insert(self, cursor, sql: str, params: tuple) -> int:
        """Run an INSERT and return the new row id."""
        if self.use_postgres:
            cursor.execute(sql + " RETURNING id", params)
            return cursor.fetchone()['id']
        cursor.execute(sql, params)
        return cursor.lastrowid

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Dict[str, Any]]:
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(sql, params)
            return _row_to_dict(cursor.fetchone())

    def _fetch_all(self, sql: str, params: tuple) -> List[Dict[str, Any]]:
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(sql, params)
            return [_row_to_dict(row) for row in cursor.fetchall()]

    def _execute(self, sql: str, params: tuple) -> int:
        """Run a single write statement and return the affected row count."""
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(sql, params)
            return cursor.rowcount

    def _count(self, sql: str, params: tuple) -> int:
        row = self._fetch_one(sql, params)
        return int(row['count']) if row and row['count'] is not None else 0

    def _init_database(self):
        """
        Initialize the database schema if it doesn't exist.
        Creates all tables, constraints, and indexes.
        """
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            for statement in SCHEMA:
                cursor.execute(self._ddl(statement))
            for index_sql in INDEXES:
                cursor.execute(index_sql)

    # =========================================================================
    # User Operations
    # =========================================================================

    USER_FIELDS = (
        'first_name', 'last_name', 'phone', 'user_type', 'address_line1',
        'address_line2', 'city', 'county', 'postcode', 'country', 'avatar_url'
    )

    def create_user(
        self,
        email: str,
        password_hash: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        user_type: str = 'rider'
    ) -> Optional[int]:
        """
        Create a new user account.

        Returns:
            The ID of the newly created user, or None if the email is taken.
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            try:
                return self._insert(cursor, f"""
                    INSERT INTO users (email, password_hash, first_name, last_name, phone, user_type)
                    VALUES ({p}, {p}, {p}, {p}, {p}, {p})
                """, (email.lower(), password_hash, first_name, last_name, phone, user_type))
            except self.integrity_error:
                return None

    def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Get a user by their ID."""
        p = self._placeholder()
        return self._fetch_one(f"SELECT * FROM users WHERE id = {p}", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Get a user by their email address."""
        p = self._placeholder()
        return self._fetch_one(f"SELECT * FROM users WHERE email = {p}", (email.lower(),))

    def get_user_ids_by_type(self, user_type: str, exclude_id: Optional[int] = None) -> List[int]:
        """IDs of every user of a given type, optionally leaving one out."""
        p = self._placeholder()
        rows = self._fetch_all(f"SELECT id FROM users WHERE user_type = {p} ORDER BY id", (user_type,))
        return [r['id'] for r in rows if r['id'] != exclude_id]

    def update_user(self, user_id: int, **kwargs) -> bool:
        """
        Update user profile fields.

        Args:
            user_id: The ID of the user to update.
            **kwargs: Field names and values to update.

        Returns:
            True if the update was successful.
        """
        fields = {k: v for k, v in kwargs.items() if k in self.USER_FIELDS}
        if not fields:
            return False

        p = self._placeholder()
        set_clause = ', '.join([f"{k} = {p}" for k in fields.keys()])
        values = list(fields.values()) + [user_id]
        return self._execute(
            f"UPDATE users SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = {p}",
            tuple(values)
        ) > 0

    # =========================================================================
    # Session Operations
    # =========================================================================

    def create_session(self, session_id: str, user_id: int, expires_at: datetime.datetime) -> str:
        """Store a server-side session record."""
        p = self._placeholder()
        self._execute(
            f"INSERT INTO sessions (id, user_id, expires_at) VALUES ({p}, {p}, {p})",
            (session_id, user_id, expires_at.isoformat())
        )
        return session_id

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get a session record by id (expiry is checked by the caller)."""
        p = self._placeholder()
        return self._fetch_one(f"SELECT * FROM sessions WHERE id = {p}", (session_id,))

    def delete_session(self, session_id: str) -> bool:
        p = self._placeholder()
        return self._execute(f"DELETE FROM sessions WHERE id = {p}", (session_id,)) > 0

    def cleanup_expired_sessions(self, now: Optional[datetime.datetime] = None) -> int:
        """Delete all sessions that expired before ``now``."""
        now = now or datetime.datetime.now()
        p = self._placeholder()
        return self._execute(f"DELETE FROM sessions WHERE expires_at < {p}", (now.isoformat(),))

    # =========================================================================
    # Ride Operations
    # =========================================================================

    RIDE_FIELDS = (
        'from_location', 'to_location', 'departure_date', 'departure_time',
        'available_seats', 'price', 'vehicle_info', 'notes', 'is_recurring',
        'recurring_data'
    )

    def create_ride(
        self,
        driver_id: int,
        from_location: str,
        to_location: str,
        departure_date: Optional[str],
        departure_time: str,
        available_seats: int,
        price: float,
        vehicle_info: Optional[str] = None,
        notes: Optional[str] = None,
        is_recurring: bool = False,
        recurring_data: Optional[str] = None
    ) -> int:
        """
        Create a new ride.

        Returns:
            The ID of the newly created ride.
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            return self._insert(cursor, f"""
                INSERT INTO rides (
                    driver_id, from_location, to_location, departure_date, departure_time,
                    available_seats, price, vehicle_info, notes, is_recurring, recurring_data
                ) VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p})
            """, (
                driver_id, from_location, to_location, departure_date, departure_time,
                available_seats, price, vehicle_info, notes,
                1 if is_recurring else 0, recurring_data
            ))

    def get_ride_by_id(self, ride_id: int) -> Optional[Dict[str, Any]]:
        """Get a ride by its ID, including driver information."""
        p = self._placeholder()
        return self._fetch_one(f"""
            SELECT r.*, u.first_name AS driver_first_name, u.last_name AS driver_last_name
            FROM rides r
            JOIN users u ON r.driver_id = u.id
            WHERE r.id = {p}
        """, (ride_id,))

    def get_rides_by_driver(self, driver_id: int) -> List[Dict[str, Any]]:
        """Get all rides posted by a specific driver, newest first."""
        p = self._placeholder()
        return self._fetch_all(f"""
            SELECT * FROM rides
            WHERE driver_id = {p}
            ORDER BY created_at DESC, id DESC
        """, (driver_id,))

    def search_rides(
        self,
        from_location: Optional[str] = None,
        to_location: Optional[str] = None,
        departure_date: Optional[str] = None,
        min_seats: int = 1
    ) -> List[Dict[str, Any]]:
        """
        Active rides with at least ``min_seats`` free seats.

        Location filters are case-insensitive substring matches.
        """
        p = self._placeholder()
        conditions = ["r.status = 'active'", f"r.available_seats >= {p}"]
        params: List[Any] = [min_seats]

        if from_location:
            conditions.append(f"LOWER(r.from_location) LIKE {p}")
            params.append(f"%{from_location.lower()}%")

        if to_location:
            conditions.append(f"LOWER(r.to_location) LIKE {p}")
            params.append(f"%{to_location.lower()}%")

        if departure_date:
            # Recurring rides carry no fixed date and match any day
            conditions.append(f"(r.departure_date = {p} OR r.is_recurring = 1)")
            params.append(departure_date)

        where_clause = " AND ".join(conditions)
        return self._fetch_all(f"""
            SELECT r.*, u.first_name AS driver_first_name, u.last_name AS driver_last_name
            FROM rides r
            JOIN users u ON r.driver_id = u.id
            WHERE {where_clause}
            ORDER BY r.departure_date ASC, r.departure_time ASC, r.id ASC
        """, tuple(params))

    def update_ride(self, ride_id: int, **kwargs) -> bool:
        """Update editable ride fields."""
        fields = {k: v for k, v in kwargs.items() if k in self.RIDE_FIELDS}
        if not fields:
            return False

        p = self._placeholder()
        set_clause = ', '.join([f"{k} = {p}" for k in fields.keys()])
        values = list(fields.values()) + [ride_id]
        return self._execute(
            f"UPDATE rides SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = {p}",
            tuple(values)
        ) > 0

    def cancel_ride(self, ride_id: int) -> Optional[List[Dict[str, Any]]]:
        """
        Cancel an active ride and decline its open bookings in one transaction.

        Returns:
            The declined bookings, or None if the ride was not active.
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                UPDATE rides SET status = 'cancelled', updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status = 'active'
            """, (ride_id,))
            if cursor.rowcount == 0:
                return None
            return self._decline_open_bookings(cursor, 'ride_id', ride_id, ('pending', 'confirmed'))

    def expire_past_rides(self, today: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Close non-recurring active rides whose departure date has passed.

        Rides holding a confirmed or completed booking become completed;
        the rest are cancelled. Pending bookings on every closed ride are
        declined.

        Returns:
            Dict with the closed ``rides`` and the declined ``bookings``.
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                SELECT id, driver_id, from_location, to_location, departure_date, departure_time
                FROM rides
                WHERE status = 'active' AND is_recurring = 0
                AND departure_date IS NOT NULL AND departure_date < {p}
                ORDER BY id
            """, (today,))
            candidates = [_row_to_dict(row) for row in cursor.fetchall()]

            closed, declined = [], []
            for ride in candidates:
                cursor.execute(f"""
                    UPDATE rides
                    SET status = CASE WHEN EXISTS (
                            SELECT 1 FROM bookings b
                            WHERE b.ride_id = rides.id AND b.status IN ('confirmed', 'completed')
                        ) THEN 'completed' ELSE 'cancelled' END,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = {p} AND status = 'active'
                """, (ride['id'],))
                if cursor.rowcount == 0:
                    continue
                cursor.execute(f"SELECT status FROM rides WHERE id = {p}", (ride['id'],))
                ride['status'] = cursor.fetchone()['status']
                closed.append(ride)
                declined.extend(self._decline_open_bookings(cursor, 'ride_id', ride['id'], ('pending',)))
            return {'rides': closed, 'bookings': declined}

    def get_known_locations(self, query: str, limit: int = 10) -> List[str]:
        """Distinct ride and request locations containing ``query`` (case-insensitive)."""
        p = self._placeholder()
        pattern = f"%{query.lower()}%"
        rows = self._fetch_all(f"""
            SELECT name FROM (
                SELECT from_location AS name FROM rides
                UNION SELECT to_location FROM rides
                UNION SELECT from_location FROM ride_requests
                UNION SELECT to_location FROM ride_requests
            ) AS known
            WHERE LOWER(name) LIKE {p}
            ORDER BY name ASC
            LIMIT {p}
        """, (pattern, limit))
        return [r['name'] for r in rows]

    # =========================================================================
    # Ride Request Operations
    # =========================================================================

    RIDE_REQUEST_FIELDS = (
        'from_location', 'to_location', 'departure_date', 'departure_time',
        'passengers', 'max_price', 'notes'
    )

    def create_ride_request(
        self,
        rider_id: int,
        from_location: str,
        to_location: str,
        departure_date: Optional[str],
        departure_time: str,
        passengers: int,
        max_price: Optional[float] = None,
        notes: Optional[str] = None
    ) -> int:
        """Create a rider's ride request and return its ID."""
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            return self._insert(cursor, f"""
                INSERT INTO ride_requests (
                    rider_id, from_location, to_location, departure_date,
                    departure_time, passengers, max_price, notes
                ) VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, {p})
            """, (
                rider_id, from_location, to_location, departure_date,
                departure_time, passengers, max_price, notes
            ))

    def get_ride_request_by_id(self, request_id: int) -> Optional[Dict[str, Any]]:
        p = self._placeholder()
        return self._fetch_one(f"""
            SELECT rr.*, u.first_name AS rider_first_name, u.last_name AS rider_last_name
            FROM ride_requests rr
            JOIN users u ON rr.rider_id = u.id
            WHERE rr.id = {p}
        """, (request_id,))

    def get_ride_requests(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """All ride requests, optionally filtered by status, oldest departure first."""
        p = self._placeholder()
        sql = """
            SELECT rr.*, u.first_name AS rider_first_name, u.last_name AS rider_last_name
            FROM ride_requests rr
            JOIN users u ON rr.rider_id = u.id
        """
        params: tuple = ()
        if status:
            sql += f" WHERE rr.status = {p}"
            params = (status,)
        sql += " ORDER BY rr.departure_date ASC, rr.departure_time ASC, rr.id ASC"
        return self._fetch_all(sql, params)

    def get_ride_requests_by_rider(self, rider_id: int) -> List[Dict[str, Any]]:
        p = self._placeholder()
        return self._fetch_all(f"""
            SELECT * FROM ride_requests
            WHERE rider_id = {p}
            ORDER BY created_at DESC, id DESC
        """, (rider_id,))

    def update_ride_request(self, request_id: int, **kwargs) -> bool:
        """Update editable ride request fields."""
        fields = {k: v for k, v in kwargs.items() if k in self.RIDE_REQUEST_FIELDS}
        if not fields:
            return False

        p = self._placeholder()
        set_clause = ', '.join([f"{k} = {p}" for k in fields.keys()])
        values = list(fields.values()) + [request_id]
        return self._execute(
            f"UPDATE ride_requests SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = {p}",
            tuple(values)
        ) > 0

    def cancel_ride_request(self, request_id: int) -> Optional[List[Dict[str, Any]]]:
        """
        Cancel a pending ride request and decline its pending counter-offers.

        Returns:
            The declined counter-offers, or None if the request was not pending.
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                UPDATE ride_requests SET status = 'cancelled', updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status = 'pending'
            """, (request_id,))
            if cursor.rowcount == 0:
                return None
            return self._decline_open_bookings(cursor, 'ride_request_id', request_id, ('pending',))

    def expire_past_ride_requests(self, today: str) -> Dict[str, List[Dict[str, Any]]]:
        """Cancel pending ride requests whose departure date has passed, with their pending offers."""
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                SELECT id, rider_id, from_location, to_location, departure_date, departure_time
                FROM ride_requests
                WHERE status = 'pending' AND departure_date IS NOT NULL AND departure_date < {p}
                ORDER BY id
            """, (today,))
            candidates = [_row_to_dict(row) for row in cursor.fetchall()]

            closed, declined = [], []
            for ride_request in candidates:
                cursor.execute(f"""
                    UPDATE ride_requests SET status = 'cancelled', updated_at = CURRENT_TIMESTAMP
                    WHERE id = {p} AND status = 'pending'
                """, (ride_request['id'],))
                if cursor.rowcount == 0:
                    continue
                ride_request['status'] = 'cancelled'
                closed.append(ride_request)
                declined.extend(
                    self._decline_open_bookings(cursor, 'ride_request_id', ride_request['id'], ('pending',))
                )
            return {'requests': closed, 'bookings': declined}

    # =========================================================================
    # Booking Operations
    # =========================================================================

    BOOKING_SELECT = """
        SELECT b.*,
               COALESCE(r.from_location, rr.from_location) AS from_location,
               COALESCE(r.to_location, rr.to_location) AS to_location,
               COALESCE(r.departure_date, rr.departure_date) AS departure_date,
               COALESCE(r.departure_time, rr.departure_time) AS departure_time,
               rider.first_name AS rider_first_name, rider.last_name AS rider_last_name,
               driver.first_name AS driver_first_name, driver.last_name AS driver_last_name
        FROM bookings b
        LEFT JOIN rides r ON b.ride_id = r.id
        LEFT JOIN ride_requests rr ON b.ride_request_id = rr.id
        JOIN users rider ON b.rider_id = rider.id
        JOIN users driver ON b.driver_id = driver.id
    """

    def _insert_booking(self, cursor, **values) -> int:
        p = self._placeholder()
        columns = (
            'job_id', 'ride_id', 'ride_request_id', 'rider_id', 'driver_id',
            'created_by', 'seats_booked', 'phone_number', 'message', 'total_cost'
        )
        values.setdefault('job_id', new_job_id())
        params = tuple(values.get(c) for c in columns)
        return self._insert(cursor, f"""
            INSERT INTO bookings ({', '.join(columns)})
            VALUES ({', '.join([p] * len(columns))})
        """, params)

    def _decline_open_bookings(self, cursor, column: str, owner_id: int, statuses: tuple) -> List[Dict[str, Any]]:
        """Decline the bookings of a ride or ride request still in one of ``statuses``."""
        p = self._placeholder()
        marks = ', '.join([p] * len(statuses))
        cursor.execute(
            f"SELECT id FROM bookings WHERE {column} = {p} AND status IN ({marks}) ORDER BY id",
            (owner_id, *statuses)
        )
        booking_ids = [row['id'] for row in cursor.fetchall()]

        declined = []
        for booking_id in booking_ids:
            cursor.execute(f"""
                UPDATE bookings SET status = 'declined', updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status IN ({marks})
            """, (booking_id, *statuses))
            if cursor.rowcount:
                cursor.execute(self.BOOKING_SELECT + f" WHERE b.id = {p}", (booking_id,))
                declined.append(_row_to_dict(cursor.fetchone()))
        return declined

    def create_ride_booking(
        self,
        ride_id: int,
        rider_id: int,
        driver_id: int,
        seats_booked: int,
        total_cost: float,
        phone_number: Optional[str] = None,
        message: Optional[str] = None
    ) -> Optional[int]:
        """
        Reserve seats on a ride and create the pending booking atomically.

        The seat decrement is conditional on enough seats being left, so two
        concurrent requests can never oversell a ride.

        Returns:
            The booking ID, or None if the ride is not active or lacks seats
            (in which case nothing is written).
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                UPDATE rides
                SET available_seats = available_seats - {p}, updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status = 'active' AND available_seats >= {p}
            """, (seats_booked, ride_id, seats_booked))
            if cursor.rowcount == 0:
                return None

            return self._insert_booking(
                cursor,
                ride_id=ride_id,
                rider_id=rider_id,
                driver_id=driver_id,
                created_by=rider_id,
                seats_booked=seats_booked,
                phone_number=phone_number,
                message=message,
                total_cost=total_cost,
            )

    def create_booking(
        self,
        rider_id: int,
        driver_id: int,
        created_by: int,
        seats_booked: int,
        total_cost: float,
        ride_request_id: Optional[int] = None,
        phone_number: Optional[str] = None,
        message: Optional[str] = None
    ) -> int:
        """Create a pending booking that is not tied to a posted ride."""
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            return self._insert_booking(
                cursor,
                ride_request_id=ride_request_id,
                rider_id=rider_id,
                driver_id=driver_id,
                created_by=created_by,
                seats_booked=seats_booked,
                phone_number=phone_number,
                message=message,
                total_cost=total_cost,
            )

    def get_booking_by_id(self, booking_id: int) -> Optional[Dict[str, Any]]:
        """Get a booking by its ID with route and party names."""
        p = self._placeholder()
        return self._fetch_one(self.BOOKING_SELECT + f" WHERE b.id = {p}", (booking_id,))

    def get_bookings_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        """Bookings where the user is either the rider or the driver."""
        p = self._placeholder()
        return self._fetch_all(
            self.BOOKING_SELECT + f"""
            WHERE b.rider_id = {p} OR b.driver_id = {p}
            ORDER BY b.created_at DESC, b.id DESC
            """,
            (user_id, user_id)
        )

    def get_bookings_by_ride(self, ride_id: int) -> List[Dict[str, Any]]:
        p = self._placeholder()
        return self._fetch_all(
            self.BOOKING_SELECT + f" WHERE b.ride_id = {p} ORDER BY b.created_at ASC, b.id ASC",
            (ride_id,)
        )

    def transition_booking(self, booking_id: int, from_status: str, to_status: str) -> bool:
        """
        Move a booking between two statuses; False if it was not in ``from_status``.

        A booking on a posted ride is only confirmed while that ride is active.
        """
        p = self._placeholder()
        sql = f"""
            UPDATE bookings SET status = {p}, updated_at = CURRENT_TIMESTAMP
            WHERE id = {p} AND status = {p}
        """
        if to_status == 'confirmed':
            sql += """
            AND (ride_id IS NULL OR EXISTS (
                SELECT 1 FROM rides WHERE rides.id = bookings.ride_id AND rides.status = 'active'
            ))
            """
        return self._execute(sql, (to_status, booking_id, from_status)) > 0

    def decline_booking(self, booking_id: int) -> bool:
        """Decline a pending booking and give its seats back to the ride."""
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                UPDATE bookings SET status = 'declined', updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status = 'pending'
            """, (booking_id,))
            if cursor.rowcount == 0:
                return False

            cursor.execute(f"SELECT ride_id, seats_booked FROM bookings WHERE id = {p}", (booking_id,))
            row = cursor.fetchone()
            if row['ride_id'] is not None:
                cursor.execute(f"""
                    UPDATE rides
                    SET available_seats = available_seats + {p}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = {p}
                """, (row['seats_booked'], row['ride_id']))
            return True

    def confirm_counter_offer(
        self, booking_id: int, vehicle_info: str = 'Counter offer'
    ) -> Optional[Dict[str, Any]]:
        """
        Accept a counter-offer: mark the pending ride request matched,
        confirm the booking, turn the request into a ride owned by the
        offering driver, link the two and decline the request's other
        pending offers.

        Returns:
            ``{'ride_id', 'declined'}``, or None if the booking was no
            longer pending or its ride request was no longer open (nothing
            is written then).
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            cursor.execute(f"""
                SELECT b.driver_id, b.seats_booked, b.total_cost, b.message,
                       rr.id AS request_id, rr.from_location, rr.to_location,
                       rr.departure_date, rr.departure_time
                FROM bookings b
                JOIN ride_requests rr ON b.ride_request_id = rr.id
                WHERE b.id = {p}
            """, (booking_id,))
            offer = cursor.fetchone()
            if offer is None:
                return None

            cursor.execute(f"""
                UPDATE ride_requests SET status = 'matched', updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status = 'pending'
            """, (offer['request_id'],))
            if cursor.rowcount == 0:
                return None

            cursor.execute(f"""
                UPDATE bookings SET status = 'confirmed', updated_at = CURRENT_TIMESTAMP
                WHERE id = {p} AND status = 'pending'
            """, (booking_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                return None

            seat_price = round(float(offer['total_cost']) / offer['seats_booked'], 2)
            ride_id = self._insert(cursor, f"""
                INSERT INTO rides (
                    driver_id, from_location, to_location, departure_date, departure_time,
                    available_seats, price, vehicle_info, notes
                ) VALUES ({p}, {p}, {p}, {p}, {p}, 0, {p}, {p}, {p})
            """, (
                offer['driver_id'], offer['from_location'], offer['to_location'],
                offer['departure_date'], offer['departure_time'], seat_price,
                vehicle_info, offer['message'] or 'Counter offer accepted'
            ))
            cursor.execute(
                f"UPDATE bookings SET ride_id = {p} WHERE id = {p}",
                (ride_id, booking_id)
            )
            declined = self._decline_open_bookings(
                cursor, 'ride_request_id', offer['request_id'], ('pending',)
            )
            return {'ride_id': ride_id, 'declined': declined}

    # =========================================================================
    # Message Operations
    # =========================================================================

    def create_message(self, booking_id: int, sender_id: int, message: str) -> int:
        """Append a message to a booking thread."""
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            return self._insert(cursor, f"""
                INSERT INTO messages (booking_id, sender_id, message)
                VALUES ({p}, {p}, {p})
            """, (booking_id, sender_id, message))

    def get_message_by_id(self, message_id: int) -> Optional[Dict[str, Any]]:
        p = self._placeholder()
        return self._fetch_one(f"SELECT * FROM messages WHERE id = {p}", (message_id,))

    def get_messages_by_booking(self, booking_id: int) -> List[Dict[str, Any]]:
        """All messages of a booking thread, oldest first."""
        p = self._placeholder()
        return self._fetch_all(f"""
            SELECT m.*, u.first_name AS sender_first_name, u.last_name AS sender_last_name
            FROM messages m
            JOIN users u ON m.sender_id = u.id
            WHERE m.booking_id = {p}
            ORDER BY m.created_at ASC, m.id ASC
        """, (booking_id,))

    def mark_message_read(self, message_id: int) -> int:
        """Mark one message read; already-read messages are left untouched."""
        p = self._placeholder()
        return self._execute(f"""
            UPDATE messages SET is_read = 1, read_at = CURRENT_TIMESTAMP
            WHERE id = {p} AND is_read = 0
        """, (message_id,))

    def count_unread_messages(self, user_id: int) -> int:
        """Unread messages sent to the user by the other party of their bookings."""
        p = self._placeholder()
        return self._count(f"""
            SELECT COUNT(*) AS count
            FROM messages m
            JOIN bookings b ON m.booking_id = b.id
            WHERE (b.rider_id = {p} OR b.driver_id = {p})
              AND m.sender_id != {p} AND m.is_read = 0
        """, (user_id, user_id, user_id))

    # =========================================================================
    # Notification Operations
    # =========================================================================

    def create_notification(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        related_kind: Optional[str] = None,
        related_id: Optional[int] = None
    ) -> int:
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            return self._insert(cursor, f"""
                INSERT INTO notifications (user_id, type, title, message, related_kind, related_id)
                VALUES ({p}, {p}, {p}, {p}, {p}, {p})
            """, (user_id, notification_type, title, message, related_kind, related_id))

    def get_notification_by_id(self, notification_id: int) -> Optional[Dict[str, Any]]:
        p = self._placeholder()
        return self._fetch_one(f"SELECT * FROM notifications WHERE id = {p}", (notification_id,))

    def get_notifications_for_user(self, user_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        """Newest notifications first."""
        p = self._placeholder()
        return self._fetch_all(f"""
            SELECT * FROM notifications
            WHERE user_id = {p}
            ORDER BY created_at DESC, id DESC
            LIMIT {p}
        """, (user_id, limit))

    def count_unread_notifications(self, user_id: int) -> int:
        p = self._placeholder()
        return self._count(
            f"SELECT COUNT(*) AS count FROM notifications WHERE user_id = {p} AND is_read = 0",
            (user_id,)
        )

    def mark_notification_read(self, notification_id: int, user_id: int) -> int:
        """Mark one of the user's notifications read; no-op when already read."""
        p = self._placeholder()
        return self._execute(f"""
            UPDATE notifications SET is_read = 1, read_at = CURRENT_TIMESTAMP
            WHERE id = {p} AND user_id = {p} AND is_read = 0
        """, (notification_id, user_id))

    def mark_all_notifications_read(self, user_id: int) -> int:
        p = self._placeholder()
        return self._execute(f"""
            UPDATE notifications SET is_read = 1, read_at = CURRENT_TIMESTAMP
            WHERE user_id = {p} AND is_read = 0
        """, (user_id,))

    # =========================================================================
    # Rating Operations
    # =========================================================================

    def create_rating(
        self,
        booking_id: int,
        rater_id: int,
        rated_user_id: int,
        rating: int,
        review: Optional[str] = None
    ) -> Optional[int]:
        """
        Create a rating.

        Returns:
            The rating ID, or None if the rater already rated this booking.
        """
        p = self._placeholder()
        with self.get_connection() as conn:
            cursor = self._get_cursor(conn)
            try:
                return self._insert(cursor, f"""
                    INSERT INTO ratings (booking_id, rater_id, rated_user_id, rating, review)
                    VALUES ({p}, {p}, {p}, {p}, {p})
                """, (booking_id, rater_id, rated_user_id, rating, review))
            except self.integrity_error:
                return None

    def get_rating_by_id(self, rating_id: int) -> Optional[Dict[str, Any]]:
        p = self._placeholder()
        return self._fetch_one(f"SELECT * FROM ratings WHERE id = {p}", (rating_id,))

    def get_ratings_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        """Ratings received by a user, newest first."""
        p = self._placeholder()
        return self._fetch_all(f"""
            SELECT r.*, u.first_name AS rater_first_name, u.last_name AS rater_last_name
            FROM ratings r
            JOIN users u ON r.rater_id = u.id
            WHERE r.rated_user_id = {p}
            ORDER BY r.created_at DESC, r.id DESC
        """, (user_id,))

    def get_user_average_rating(self, user_id: int) -> float:
        """Get the average rating for a user."""
        row = self._fetch_one(f"""
            SELECT AVG(rating) AS avg_rating
            FROM ratings
            WHERE rated_user_id = {self._placeholder()}
        """, (user_id,))
        if row and row['avg_rating']:
            return round(float(row['avg_rating']), 1)
        return 0.0

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_platform_statistics(self) -> Dict[str, Any]:
        """Public counters for the landing page."""
        return {
            'total_users': self._count("SELECT COUNT(*) AS count FROM users", ()),
            'total_rides': self._count("SELECT COUNT(*) AS count FROM rides", ()),
            'active_rides': self._count(
                "SELECT COUNT(*) AS count FROM rides WHERE status = 'active'", ()
            ),
            'open_requests': self._count(
                "SELECT COUNT(*) AS count FROM ride_requests WHERE status = 'pending'", ()
            ),
            'total_bookings': self._count("SELECT COUNT(*) AS count FROM bookings", ()),
        }
