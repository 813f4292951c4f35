"""WhatsApp sessions repository.

Uses raw SQL with psycopg2 (no ORM). One row per sender address.
"""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from anotatudo.domain.reminders import ReminderIntent
from anotatudo.domain.sessions import SessionState, UserSession
from anotatudo.infra.db import fetchone, txn

_COLUMNS = """
    id, sender_address, state, display_name, email,
    failed_attempts, pending_edit_id, pending_reminder
"""


def _row_to_session(row: tuple[Any, ...]) -> UserSession:
    return UserSession(
        user_id=str(row[0]),
        sender_address=row[1],
        state=SessionState(row[2]),
        display_name=row[3],
        email=row[4],
        failed_attempts=row[5],
        pending_edit_id=str(row[6]) if row[6] is not None else None,
        pending_reminder=ReminderIntent.from_dict(row[7]) if row[7] else None,
    )


def get_by_sender_address(cur: PgCursor, sender_address: str) -> UserSession | None:
    row = fetchone(
        cur,
        f"SELECT {_COLUMNS} FROM whatsapp_sessions WHERE sender_address = %s",
        (sender_address,),
    )
    return _row_to_session(row) if row else None


def insert_session(
    cur: PgCursor, sender_address: str, display_name: str | None
) -> UserSession | None:
    """Insert a new session. Returns None if the address already exists."""
    row = fetchone(
        cur,
        f"""
        INSERT INTO whatsapp_sessions (sender_address, display_name, state)
        VALUES (%s, %s, 'new')
        ON CONFLICT (sender_address) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (sender_address, display_name),
    )
    return _row_to_session(row) if row else None


def update_session(cur: PgCursor, user_id: str, **fields: Any) -> UserSession:
    """Set the given columns and bump updated_at.

    Raises:
        LookupError: If no session has this id.
    """
    assignments = ", ".join(f"{name} = %s" for name in fields)
    row = fetchone(
        cur,
        f"""
        UPDATE whatsapp_sessions
        SET {assignments}, updated_at = now()
        WHERE id = %s
        RETURNING {_COLUMNS}
        """,
        (*fields.values(), user_id),
    )
    if row is None:
        raise LookupError(f"session not found: {user_id}")
    return _row_to_session(row)


def advance_state(cur: PgCursor, user_id: str, state: SessionState) -> UserSession:
    """Move the row to `state` only from an earlier state.

    A row already at or past `state` is returned untouched, so a stale
    snapshot can never pull a session backwards.

    Raises:
        LookupError: If no session has this id.
    """
    row = fetchone(
        cur,
        f"""
        UPDATE whatsapp_sessions
        SET state = %s, updated_at = now()
        WHERE id = %s AND state = ANY(%s::text[])
        RETURNING {_COLUMNS}
        """,
        (state.value, user_id, [s.value for s in state.reachable_from() if s is not state]),
    )
    if row is None:
        row = fetchone(
            cur, f"SELECT {_COLUMNS} FROM whatsapp_sessions WHERE id = %s", (user_id,)
        )
    if row is None:
        raise LookupError(f"session not found: {user_id}")
    return _row_to_session(row)


def write_pending_reminder(
    cur: PgCursor, user_id: str, reminder: ReminderIntent | None
) -> UserSession:
    """Park (or clear, with None) the event awaiting a reminder choice."""
    payload = json.dumps(reminder.to_dict()) if reminder is not None else None
    row = fetchone(
        cur,
        f"""
        UPDATE whatsapp_sessions
        SET pending_reminder = %s::jsonb, updated_at = now()
        WHERE id = %s
        RETURNING {_COLUMNS}
        """,
        (payload, user_id),
    )
    if row is None:
        raise LookupError(f"session not found: {user_id}")
    return _row_to_session(row)


def increment_failed_attempts(cur: PgCursor, user_id: str) -> int:
    row = fetchone(
        cur,
        """
        UPDATE whatsapp_sessions
        SET failed_attempts = failed_attempts + 1, updated_at = now()
        WHERE id = %s
        RETURNING failed_attempts
        """,
        (user_id,),
    )
    if row is None:
        raise LookupError(f"session not found: {user_id}")
    return row[0]


class PostgresUserStore:
    """UserStore backed by the whatsapp_sessions table."""

    def find_by_sender_address(self, sender_address: str) -> UserSession | None:
        with txn() as cur:
            return get_by_sender_address(cur, sender_address)

    def create_from_sender_address(
        self, sender_address: str, display_name: str | None
    ) -> UserSession | None:
        with txn() as cur:
            return insert_session(cur, sender_address, display_name)

    def update_state(self, user_id: str, state: SessionState) -> UserSession:
        with txn() as cur:
            return advance_state(cur, user_id, state)

    def update_email(self, user_id: str, email: str) -> UserSession:
        with txn() as cur:
            return update_session(cur, user_id, email=email)

    def record_failed_attempt(self, user_id: str) -> int:
        with txn() as cur:
            return increment_failed_attempts(cur, user_id)

    def set_pending_edit(self, user_id: str, transaction_id: str | None) -> UserSession:
        with txn() as cur:
            return update_session(cur, user_id, pending_edit_id=transaction_id)

    def set_pending_reminder(
        self, user_id: str, reminder: ReminderIntent | None
    ) -> UserSession:
        with txn() as cur:
            return write_pending_reminder(cur, user_id, reminder)
