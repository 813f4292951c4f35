"""Calendar events (eventos) repository.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from anotatudo.domain.reminders import ReminderIntent, StoredEvent
from anotatudo.infra.db import fetchone, txn

_COLUMNS = "id, user_id, titulo, descricao, data, hora, lembrete_minutos"

ORIGIN_WHATSAPP = "whatsapp"


def _row_to_event(row: tuple[Any, ...]) -> StoredEvent:
    return StoredEvent(
        event_id=str(row[0]),
        user_id=str(row[1]),
        reminder=ReminderIntent(
            title=row[2],
            description=row[3],
            occurred_on=row[4],
            time=row[5],
        ),
        remind_minutes_before=row[6],
    )


def insert_event(
    cur: PgCursor,
    *,
    user_id: str,
    reminder: ReminderIntent,
    remind_minutes_before: int | None,
    external_message_id: str | None,
) -> StoredEvent:
    row = fetchone(
        cur,
        f"""
        INSERT INTO eventos (
            user_id, titulo, descricao, data, hora,
            lembrete_minutos, origem, whatsapp_message_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {_COLUMNS}
        """,
        (
            user_id,
            reminder.title,
            reminder.description,
            reminder.occurred_on,
            reminder.time,
            remind_minutes_before,
            ORIGIN_WHATSAPP,
            external_message_id,
        ),
    )
    return _row_to_event(row)


class PostgresEventStore:
    """EventStore backed by the eventos table."""

    def create(
        self,
        user_id: str,
        reminder: ReminderIntent,
        remind_minutes_before: int | None,
        external_message_id: str | None = None,
    ) -> StoredEvent:
        with txn() as cur:
            return insert_event(
                cur,
                user_id=user_id,
                reminder=reminder,
                remind_minutes_before=remind_minutes_before,
                external_message_id=external_message_id,
            )
