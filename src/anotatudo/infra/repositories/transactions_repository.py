"""Transactions (transacoes) repository.

Uses raw SQL with psycopg2 (no ORM). Every statement filters by user_id.
Ids arrive from button payloads, so they are compared as text: a malformed
id matches nothing instead of raising.
"""

from datetime import date
from typing import Any, Callable

from psycopg2.extensions import cursor as PgCursor

from anotatudo.domain.intents import TransactionIntent, TransactionKind
from anotatudo.domain.transactions import TransactionOrigin
from anotatudo.infra.db import fetchone, txn

_COLUMNS = "id, descricao, valor, categoria, tipo, data_real"


def _row_to_intent(row: tuple[Any, ...]) -> TransactionIntent:
    return TransactionIntent(
        transaction_id=str(row[0]),
        description=row[1] or "",
        amount=row[2],
        category=row[3],
        kind=TransactionKind(row[4]),
        occurred_on=row[5],
    )


def insert_transaction(
    cur: PgCursor,
    *,
    user_id: str,
    intent: TransactionIntent,
    origin: TransactionOrigin,
    occurred_on: date,
) -> TransactionIntent:
    row = fetchone(
        cur,
        f"""
        INSERT INTO transacoes (
            user_id, tipo, categoria, valor, data_real, origem, descricao
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {_COLUMNS}
        """,
        (
            user_id,
            intent.kind.value,
            intent.category,
            intent.amount,
            occurred_on,
            origin.value,
            intent.description,
        ),
    )
    return _row_to_intent(row)


def get_transaction(
    cur: PgCursor, transaction_id: str, user_id: str
) -> TransactionIntent | None:
    row = fetchone(
        cur,
        f"SELECT {_COLUMNS} FROM transacoes WHERE id::text = %s AND user_id = %s",
        (transaction_id, user_id),
    )
    return _row_to_intent(row) if row else None


def update_transaction(
    cur: PgCursor,
    *,
    transaction_id: str,
    user_id: str,
    intent: TransactionIntent,
    occurred_on: date,
) -> TransactionIntent | None:
    row = fetchone(
        cur,
        f"""
        UPDATE transacoes
        SET tipo = %s, categoria = %s, valor = %s, data_real = %s, descricao = %s
        WHERE id::text = %s AND user_id = %s
        RETURNING {_COLUMNS}
        """,
        (
            intent.kind.value,
            intent.category,
            intent.amount,
            occurred_on,
            intent.description,
            transaction_id,
            user_id,
        ),
    )
    return _row_to_intent(row) if row else None


def delete_transaction(
    cur: PgCursor, transaction_id: str, user_id: str
) -> TransactionIntent | None:
    row = fetchone(
        cur,
        f"DELETE FROM transacoes WHERE id::text = %s AND user_id = %s RETURNING {_COLUMNS}",
        (transaction_id, user_id),
    )
    return _row_to_intent(row) if row else None


class PostgresTransactionStore:
    """TransactionStore backed by the transacoes table.

    Args:
        today: Returns the date used when an intent carries none.
    """

    def __init__(self, today: Callable[[], date]) -> None:
        self._today = today

    def create(
        self, user_id: str, intent: TransactionIntent, origin: TransactionOrigin
    ) -> TransactionIntent:
        with txn() as cur:
            return insert_transaction(
                cur,
                user_id=user_id,
                intent=intent,
                origin=origin,
                occurred_on=intent.occurred_on or self._today(),
            )

    def get(self, transaction_id: str, user_id: str) -> TransactionIntent | None:
        with txn() as cur:
            return get_transaction(cur, transaction_id, user_id)

    def update(
        self, transaction_id: str, user_id: str, intent: TransactionIntent
    ) -> TransactionIntent | None:
        with txn() as cur:
            return update_transaction(
                cur,
                transaction_id=transaction_id,
                user_id=user_id,
                intent=intent,
                occurred_on=intent.occurred_on or self._today(),
            )

    def delete(self, transaction_id: str, user_id: str) -> TransactionIntent | None:
        with txn() as cur:
            return delete_transaction(cur, transaction_id, user_id)
