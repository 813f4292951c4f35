"""WhatsApp latency repository.

Uses raw SQL with psycopg2 (no ORM). Rows are never deleted by the
webhook pipeline.
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from anotatudo.infra.db import fetchone, txn
from anotatudo.observability.latency import LatencyRecord

# Columns LatencyRecorder may update
_UPDATABLE = frozenset(
    {"user_id", "processed_at", "response_queued_at", "response_message_id"}
)

_COLUMNS = """
    id, external_message_id, received_at, message_kind, user_id,
    provider_received_at, processed_at, response_queued_at, response_message_id
"""


def _row_to_record(row: tuple[Any, ...]) -> LatencyRecord:
    return LatencyRecord(
        id=row[0],
        external_message_id=row[1],
        received_at=row[2],
        message_kind=row[3],
        user_id=str(row[4]) if row[4] is not None else None,
        provider_received_at=row[5],
        processed_at=row[6],
        response_queued_at=row[7],
        response_message_id=row[8],
    )


def insert_record(cur: PgCursor, record: LatencyRecord) -> None:
    cur.execute(
        """
        INSERT INTO whatsapp_latency (
            id, external_message_id, received_at, message_kind,
            user_id, provider_received_at
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (
            record.id,
            record.external_message_id,
            record.received_at,
            record.message_kind,
            record.user_id,
            record.provider_received_at,
        ),
    )


def update_record(cur: PgCursor, record_id: str, **fields: Any) -> None:
    """Set latency columns.

    Raises:
        ValueError: If a field is not an updatable column.
    """
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Unknown latency fields: {sorted(unknown)}")
    if not fields:
        return
    assignments = ", ".join(f"{name} = %s" for name in fields)
    cur.execute(
        f"UPDATE whatsapp_latency SET {assignments} WHERE id = %s",
        (*fields.values(), record_id),
    )


def get_record(cur: PgCursor, record_id: str) -> LatencyRecord | None:
    row = fetchone(
        cur, f"SELECT {_COLUMNS} FROM whatsapp_latency WHERE id = %s", (record_id,)
    )
    return _row_to_record(row) if row else None


def get_by_external_id(cur: PgCursor, external_message_id: str) -> LatencyRecord | None:
    row = fetchone(
        cur,
        f"""
        SELECT {_COLUMNS} FROM whatsapp_latency
        WHERE external_message_id = %s
        ORDER BY received_at
        LIMIT 1
        """,
        (external_message_id,),
    )
    return _row_to_record(row) if row else None


class PostgresLatencyStore:
    """LatencyStore backed by the whatsapp_latency table."""

    def create(self, record: LatencyRecord) -> None:
        with txn() as cur:
            insert_record(cur, record)

    def update(self, record_id: str, **fields: Any) -> None:
        with txn() as cur:
            update_record(cur, record_id, **fields)

    def get(self, record_id: str) -> LatencyRecord | None:
        with txn() as cur:
            return get_record(cur, record_id)

    def find_by_external_id(self, external_message_id: str) -> LatencyRecord | None:
        with txn() as cur:
            return get_by_external_id(cur, external_message_id)
