"""
PostgreSQL repository adapters - Implement the store ports via psycopg3 raw SQL.

Concurrency Design:
-------------------
1. **Duplicate registrations**: A partial unique index on
   ``registrations (user_id, event_id) WHERE status <> 'cancelled'`` makes the
   duplicate check and the insert one atomic operation. A UniqueViolation is
   translated to the domain's AlreadyRegistered.

2. **History ledger**: ``update`` locks the row with SELECT FOR UPDATE,
   diffs it, and writes the new row and its history record in the same
   transaction, so concurrent modifications cannot interleave their diffs.

Nested value objects (personal info, transport, history changes, retry
attempts) are stored as JSONB.
"""

import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from psycopg import errors
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from src.adapters.runtime import SystemClock
from src.domain.diff import compute_changes, to_plain
from src.domain.exceptions import AlreadyRegistered
from src.domain.models import (
    AttemptOutcome,
    Event,
    FieldChange,
    HistoryAction,
    HistoryRecord,
    IdentityType,
    PersonalInfo,
    Registration,
    RegistrationRequest,
    RegistrationStatus,
    RetryAttempt,
    RetryRecord,
    RetryStatus,
    Transport,
    new_id,
)
from src.domain.ports import Clock

logger = logging.getLogger(__name__)

_REGISTRATION_COLUMNS = (
    "id, user_id, event_id, identity_type, personal_info, transport, status, "
    "external_order_id, metadata, created_at, updated_at"
)

_RETRY_COLUMNS = (
    "id, user_id, registration_data, status, attempts, final_order_id, registration_id, created_at, updated_at"
)


def _personal_info(data: Mapping[str, Any]) -> PersonalInfo:
    return PersonalInfo(**data)


def _transport(data: Mapping[str, Any] | None) -> Transport | None:
    if data is None:
        return None
    pickup_time = data.get("pickup_time")
    return Transport(
        required=data["required"],
        location_id=data.get("location_id"),
        pickup_time=datetime.fromisoformat(pickup_time) if pickup_time else None,
    )


def _request(data: Mapping[str, Any]) -> RegistrationRequest:
    return RegistrationRequest(
        user_id=data["user_id"],
        event_id=data["event_id"],
        identity_type=IdentityType(data["identity_type"]),
        personal_info=_personal_info(data["personal_info"]),
        transport=_transport(data.get("transport")),
        metadata=data.get("metadata") or {},
    )


def _registration_from_row(row: tuple) -> Registration:
    return Registration(
        id=row[0],
        user_id=row[1],
        event_id=row[2],
        identity_type=IdentityType(row[3]),
        personal_info=_personal_info(row[4]),
        transport=_transport(row[5]),
        status=RegistrationStatus(row[6]),
        external_order_id=row[7],
        metadata=row[8] or {},
        created_at=row[9],
        updated_at=row[10],
    )


def _history_from_row(row: tuple) -> HistoryRecord:
    return HistoryRecord(
        id=row[0],
        registration_id=row[1],
        user_id=row[2],
        action=HistoryAction(row[3]),
        changes=tuple(FieldChange(**c) for c in row[4]),
        reason=row[5],
        metadata=row[6] or {},
        created_at=row[7],
    )


def _retry_from_row(row: tuple) -> RetryRecord:
    return RetryRecord(
        id=row[0],
        user_id=row[1],
        registration_data=_request(row[2]),
        status=RetryStatus(row[3]),
        attempts=tuple(
            RetryAttempt(
                attempt_number=a["attempt_number"],
                timestamp=datetime.fromisoformat(a["timestamp"]),
                outcome=AttemptOutcome(a["outcome"]),
                error_code=a.get("error_code"),
                error_message=a.get("error_message"),
            )
            for a in row[4]
        ),
        final_order_id=row[5],
        registration_id=row[6],
        created_at=row[7],
        updated_at=row[8],
    )


def _registration_params(registration: Registration) -> tuple:
    return (
        registration.id,
        registration.user_id,
        registration.event_id,
        registration.identity_type.value,
        Jsonb(to_plain(registration.personal_info)),
        Jsonb(to_plain(registration.transport)) if registration.transport else None,
        registration.status.value,
        registration.external_order_id,
        Jsonb(to_plain(registration.metadata)),
        registration.created_at,
        registration.updated_at,
    )


class PostgresRegistrationStore:
    """
    Implements RegistrationStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries.
    """

    def __init__(self, pool: ConnectionPool, clock: Clock | None = None) -> None:
        """
        Initialize store with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
            clock: Time source for ``updated_at`` and history timestamps
        """
        self._pool = pool
        self._clock = clock or SystemClock()

    def create(self, registration: Registration) -> Registration:
        """
        Insert a registration and its ``created`` history record atomically.

        Raises:
            AlreadyRegistered: If the partial unique index rejects the insert
        """
        insert_sql = f"""
            INSERT INTO registrations ({_REGISTRATION_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        history_sql = """
            INSERT INTO registration_history
                (id, registration_id, user_id, action, changes, reason, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """

        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(insert_sql, _registration_params(registration))
                cursor.execute(
                    history_sql,
                    (
                        new_id("hist"),
                        registration.id,
                        registration.user_id,
                        HistoryAction.CREATED.value,
                        Jsonb([]),
                        "registration created",
                        Jsonb(to_plain(registration.metadata)),
                        registration.created_at,
                    ),
                )
                conn.commit()
        except errors.UniqueViolation as e:
            logger.info("Duplicate registration rejected user=%s event=%s", registration.user_id, registration.event_id)
            raise AlreadyRegistered(registration.user_id, registration.event_id) from e

        return registration

    def get_by_id(self, registration_id: str) -> Registration | None:
        sql = f"SELECT {_REGISTRATION_COLUMNS} FROM registrations WHERE id = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (registration_id,))
            row = cursor.fetchone()
        return _registration_from_row(row) if row else None

    def get_by_user(self, user_id: str) -> list[Registration]:
        sql = f"SELECT {_REGISTRATION_COLUMNS} FROM registrations WHERE user_id = %s ORDER BY seq"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (user_id,))
            return [_registration_from_row(row) for row in cursor.fetchall()]

    def get_by_event(self, event_id: str) -> list[Registration]:
        sql = f"SELECT {_REGISTRATION_COLUMNS} FROM registrations WHERE event_id = %s ORDER BY seq"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (event_id,))
            return [_registration_from_row(row) for row in cursor.fetchall()]

    def find_active(self, user_id: str, event_id: str) -> Registration | None:
        sql = f"""
            SELECT {_REGISTRATION_COLUMNS} FROM registrations
            WHERE user_id = %s AND event_id = %s AND status <> %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (user_id, event_id, RegistrationStatus.CANCELLED.value))
            row = cursor.fetchone()
        return _registration_from_row(row) if row else None

    def update(
        self,
        registration_id: str,
        partial: Mapping[str, Any],
        *,
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Registration | None:
        """
        Apply a partial update under a row lock and append one history record.

        Returns:
            The updated registration, the unchanged one for a no-op update,
            or None if it does not exist
        """
        select_sql = f"SELECT {_REGISTRATION_COLUMNS} FROM registrations WHERE id = %s FOR UPDATE"
        update_sql = """
            UPDATE registrations
            SET personal_info = %s, transport = %s, status = %s, external_order_id = %s,
                metadata = %s, updated_at = %s
            WHERE id = %s
        """
        history_sql = """
            INSERT INTO registration_history
                (id, registration_id, user_id, action, changes, reason, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """

        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(select_sql, (registration_id,))
            row = cursor.fetchone()
            if row is None:
                conn.commit()
                return None

            current = _registration_from_row(row)
            changes = compute_changes(current, partial)
            if not changes:
                conn.commit()
                return current

            now = self._clock.now()
            updated = replace(current, **dict(partial), updated_at=now)
            params = _registration_params(updated)
            cursor.execute(update_sql, (*params[4:9], now, registration_id))

            cancelled = partial.get("status") == RegistrationStatus.CANCELLED
            action = HistoryAction.CANCELLED if cancelled else HistoryAction.UPDATED
            cursor.execute(
                history_sql,
                (
                    new_id("hist"),
                    registration_id,
                    current.user_id,
                    action.value,
                    Jsonb([to_plain(c) for c in changes]),
                    reason,
                    Jsonb(to_plain(metadata or {})),
                    now,
                ),
            )
            conn.commit()

        logger.debug("Registration updated id=%s action=%s changes=%s", registration_id, action.value, len(changes))
        return updated

    def get_history(self, registration_id: str) -> list[HistoryRecord]:
        sql = """
            SELECT id, registration_id, user_id, action, changes, reason, metadata, created_at
            FROM registration_history
            WHERE registration_id = %s
            ORDER BY seq
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (registration_id,))
            return [_history_from_row(row) for row in cursor.fetchall()]

    def clear_all(self) -> None:
        with self._pool.connection() as conn:
            conn.execute("TRUNCATE registration_history, registrations")
            conn.commit()


class PostgresEventCatalog:
    """Implements EventCatalog protocol via psycopg3."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def get(self, event_id: str) -> Event | None:
        sql = "SELECT id, name, start_date, end_date FROM events WHERE id = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (event_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return Event(id=row[0], name=row[1], start_date=row[2], end_date=row[3])

    def add(self, event: Event) -> Event:
        sql = """
            INSERT INTO events (id, name, start_date, end_date)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE
            SET name = EXCLUDED.name, start_date = EXCLUDED.start_date, end_date = EXCLUDED.end_date
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (event.id, event.name, event.start_date, event.end_date))
            conn.commit()
        return event


class PostgresRetryRecordStore:
    """Implements RetryRecordStore protocol via psycopg3."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def create(self, record: RetryRecord) -> RetryRecord:
        sql = f"""
            INSERT INTO retry_records ({_RETRY_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, self._params(record))
            conn.commit()
        return record

    def get(self, retry_id: str) -> RetryRecord | None:
        sql = f"SELECT {_RETRY_COLUMNS} FROM retry_records WHERE id = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (retry_id,))
            row = cursor.fetchone()
        return _retry_from_row(row) if row else None

    def save(self, record: RetryRecord) -> RetryRecord:
        sql = """
            UPDATE retry_records
            SET status = %s, attempts = %s, final_order_id = %s, registration_id = %s, updated_at = %s
            WHERE id = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(
                sql,
                (
                    record.status.value,
                    Jsonb(to_plain(record.attempts)),
                    record.final_order_id,
                    record.registration_id,
                    record.updated_at,
                    record.id,
                ),
            )
            conn.commit()
        return record

    def list_by_user(self, user_id: str) -> list[RetryRecord]:
        sql = f"SELECT {_RETRY_COLUMNS} FROM retry_records WHERE user_id = %s ORDER BY created_at"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (user_id,))
            return [_retry_from_row(row) for row in cursor.fetchall()]

    def list_all(self) -> list[RetryRecord]:
        sql = f"SELECT {_RETRY_COLUMNS} FROM retry_records ORDER BY created_at"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql)
            return [_retry_from_row(row) for row in cursor.fetchall()]

    @staticmethod
    def _params(record: RetryRecord) -> tuple:
        return (
            record.id,
            record.user_id,
            Jsonb(to_plain(record.registration_data)),
            record.status.value,
            Jsonb(to_plain(record.attempts)),
            record.final_order_id,
            record.registration_id,
            record.created_at,
            record.updated_at,
        )


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning("Migrations directory not found: %s", migrations_dir)
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info("Running %s migration(s)", len(sql_files))

    for sql_file in sql_files:
        logger.info("Executing migration: %s", sql_file.name)
        try:
            with pool.connection() as conn:
                conn.execute(sql_file.read_text())
                conn.commit()
            logger.info("Migration complete: %s", sql_file.name)
        except Exception as e:
            logger.error("Migration failed: %s - %s", sql_file.name, e)
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
