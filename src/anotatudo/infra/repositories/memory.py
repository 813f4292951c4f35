"""In-process stores for local runs without DATABASE_URL and for tests.

Each store guards its dict with one lock; they are not shared across
processes and lose everything on restart.
"""

import threading
import uuid
from dataclasses import replace
from datetime import date
from typing import Any, Callable

from anotatudo.domain.intents import TransactionIntent
from anotatudo.domain.reminders import ReminderIntent, StoredEvent
from anotatudo.domain.sessions import SessionState, UserSession
from anotatudo.domain.transactions import TransactionOrigin
from anotatudo.observability.latency import LatencyRecord


class InMemoryUserStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, UserSession] = {}
        self._by_address: dict[str, str] = {}

    def find_by_sender_address(self, sender_address: str) -> UserSession | None:
        with self._lock:
            user_id = self._by_address.get(sender_address)
            return self._by_id.get(user_id) if user_id else None

    def create_from_sender_address(
        self, sender_address: str, display_name: str | None
    ) -> UserSession | None:
        with self._lock:
            if sender_address in self._by_address:
                return None
            session = UserSession(
                user_id=str(uuid.uuid4()),
                sender_address=sender_address,
                display_name=display_name,
            )
            self._by_id[session.user_id] = session
            self._by_address[sender_address] = session.user_id
            return session

    def _update(self, user_id: str, **fields: Any) -> UserSession:
        with self._lock:
            current = self._by_id.get(user_id)
            if current is None:
                raise LookupError(f"session not found: {user_id}")
            updated = replace(current, **fields)
            self._by_id[user_id] = updated
            return updated

    def update_state(self, user_id: str, state: SessionState) -> UserSession:
        with self._lock:
            current = self._by_id.get(user_id)
            if current is None:
                raise LookupError(f"session not found: {user_id}")
            if state.rank <= current.state.rank:
                return current
            updated = replace(current, state=state)
            self._by_id[user_id] = updated
            return updated

    def update_email(self, user_id: str, email: str) -> UserSession:
        return self._update(user_id, email=email)

    def record_failed_attempt(self, user_id: str) -> int:
        with self._lock:
            current = self._by_id.get(user_id)
            if current is None:
                raise LookupError(f"session not found: {user_id}")
            attempts = current.failed_attempts + 1
            self._by_id[user_id] = replace(current, failed_attempts=attempts)
            return attempts

    def set_pending_edit(self, user_id: str, transaction_id: str | None) -> UserSession:
        return self._update(user_id, pending_edit_id=transaction_id)

    def set_pending_reminder(
        self, user_id: str, reminder: ReminderIntent | None
    ) -> UserSession:
        return self._update(user_id, pending_reminder=reminder)


class InMemoryLatencyStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, LatencyRecord] = {}

    def create(self, record: LatencyRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def update(self, record_id: str, **fields: Any) -> None:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise LookupError(f"latency record not found: {record_id}")
            self._records[record_id] = replace(current, **fields)

    def get(self, record_id: str) -> LatencyRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def find_by_external_id(self, external_message_id: str) -> LatencyRecord | None:
        with self._lock:
            for record in self._records.values():
                if record.external_message_id == external_message_id:
                    return record
            return None

    def all(self) -> list[LatencyRecord]:
        with self._lock:
            return list(self._records.values())


class InMemoryTransactionStore:
    """Dict-backed TransactionStore.

    Args:
        today: Returns the date used when an intent carries none.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._lock = threading.Lock()
        self._today = today
        # transaction_id -> (user_id, origin, intent)
        self._rows: dict[str, tuple[str, TransactionOrigin, TransactionIntent]] = {}

    def _dated(self, intent: TransactionIntent, transaction_id: str) -> TransactionIntent:
        return replace(
            intent,
            transaction_id=transaction_id,
            occurred_on=intent.occurred_on or self._today(),
        )

    def create(
        self, user_id: str, intent: TransactionIntent, origin: TransactionOrigin
    ) -> TransactionIntent:
        transaction_id = str(uuid.uuid4())
        stored = self._dated(intent, transaction_id)
        with self._lock:
            self._rows[transaction_id] = (user_id, origin, stored)
        return stored

    def get(self, transaction_id: str, user_id: str) -> TransactionIntent | None:
        with self._lock:
            row = self._rows.get(transaction_id)
        if row is None or row[0] != user_id:
            return None
        return row[2]

    def update(
        self, transaction_id: str, user_id: str, intent: TransactionIntent
    ) -> TransactionIntent | None:
        with self._lock:
            row = self._rows.get(transaction_id)
            if row is None or row[0] != user_id:
                return None
            stored = self._dated(intent, transaction_id)
            self._rows[transaction_id] = (user_id, row[1], stored)
            return stored

    def delete(self, transaction_id: str, user_id: str) -> TransactionIntent | None:
        with self._lock:
            row = self._rows.get(transaction_id)
            if row is None or row[0] != user_id:
                return None
            del self._rows[transaction_id]
            return row[2]

    def origin_of(self, transaction_id: str) -> TransactionOrigin | None:
        with self._lock:
            row = self._rows.get(transaction_id)
        return row[1] if row else None


class InMemoryEventStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, StoredEvent] = {}
        self._message_ids: dict[str, str | None] = {}

    def create(
        self,
        user_id: str,
        reminder: ReminderIntent,
        remind_minutes_before: int | None,
        external_message_id: str | None = None,
    ) -> StoredEvent:
        event = StoredEvent(
            event_id=str(uuid.uuid4()),
            user_id=user_id,
            reminder=reminder,
            remind_minutes_before=remind_minutes_before,
        )
        with self._lock:
            self._events[event.event_id] = event
            self._message_ids[event.event_id] = external_message_id
        return event

    def for_user(self, user_id: str) -> list[StoredEvent]:
        with self._lock:
            return [e for e in self._events.values() if e.user_id == user_id]

    def message_id_of(self, event_id: str) -> str | None:
        with self._lock:
            return self._message_ids.get(event_id)
