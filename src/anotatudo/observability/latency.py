"""Per-message latency telemetry.

One LatencyRecord per inbound message, opened before any collaborator call
that could raise. Writes are best-effort: a failing store is logged and
swallowed so telemetry never breaks the reply path.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from anotatudo.infra.time import from_epoch_seconds, utc_now
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import id_prefix, safe_log_context
from anotatudo.whatsapp.models import InboundMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class LatencyRecord:
    """Timing row for one inbound message.

    Partial records are expected: a failed send leaves `response_queued_at`
    set and `response_message_id` empty.
    """

    id: str
    external_message_id: str
    received_at: datetime
    message_kind: str
    user_id: str | None = None
    provider_received_at: datetime | None = None
    processed_at: datetime | None = None
    response_queued_at: datetime | None = None
    response_message_id: str | None = None

    @property
    def bot_latency_ms(self) -> int | None:
        if self.processed_at is None:
            return None
        return int((self.processed_at - self.received_at).total_seconds() * 1000)

    @property
    def is_complete(self) -> bool:
        return self.response_queued_at is not None and self.response_message_id is not None


class LatencyStore(Protocol):
    def create(self, record: LatencyRecord) -> None: ...

    def update(self, record_id: str, **fields: Any) -> None: ...

    def get(self, record_id: str) -> LatencyRecord | None: ...

    def find_by_external_id(self, external_message_id: str) -> LatencyRecord | None: ...


class LatencyRecorder:
    """Best-effort writer over a LatencyStore.

    Args:
        store: Persistence for latency rows.
        clock: Source of aware UTC timestamps.
    """

    def __init__(
        self, store: LatencyStore, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> LatencyStore:
        return self._store

    def _log_failure(self, operation: str, record_id: str | None, error: Exception) -> None:
        logger.warning(
            "latency write failed",
            extra={
                "extra_fields": safe_log_context(
                    operation=operation,
                    latency_id=record_id,
                    error_type=type(error).__name__,
                )
            },
        )

    def seen(self, external_message_id: str) -> bool:
        """True if a record already exists for this provider message id."""
        try:
            return self._store.find_by_external_id(external_message_id) is not None
        except Exception as e:
            self._log_failure("find_by_external_id", None, e)
            return False

    def open(self, message: InboundMessage) -> LatencyRecord | None:
        """Create the record for a message. Returns None if the store failed."""
        record = LatencyRecord(
            id=str(uuid.uuid4()),
            external_message_id=message.external_id,
            received_at=message.received_at,
            message_kind=message.kind.value,
            provider_received_at=from_epoch_seconds(message.provider_timestamp),
        )
        try:
            self._store.create(record)
        except Exception as e:
            self._log_failure("create", record.id, e)
            return None
        return record

    def _update(self, operation: str, record_id: str | None, **fields: Any) -> None:
        if record_id is None:
            return
        try:
            self._store.update(record_id, **fields)
        except Exception as e:
            self._log_failure(operation, record_id, e)

    def mark_queued(self, record_id: str | None, user_id: str | None = None) -> None:
        """First of the two writes: reply handed to the sender.

        Processing ends here, so processed_at and the resolved user_id ride
        along in the same write.
        """
        now = self._clock()
        fields: dict[str, Any] = {"processed_at": now, "response_queued_at": now}
        if user_id is not None:
            fields["user_id"] = user_id
        self._update("mark_queued", record_id, **fields)

    def mark_delivered(self, record_id: str | None, outbound_id: str) -> None:
        """Store the provider id of our reply and emit the audit event."""
        if record_id is None:
            return
        self._update("mark_delivered", record_id, response_message_id=outbound_id)

        try:
            record = self._store.get(record_id)
        except Exception as e:
            self._log_failure("get", record_id, e)
            return
        if record is None:
            return

        logger.info(
            "whatsapp reply delivered",
            extra={
                "extra_fields": safe_log_context(
                    audit=True,
                    latency_id=record.id,
                    user_id=record.user_id,
                    message_prefix=id_prefix(record.external_message_id),
                    reply_prefix=id_prefix(outbound_id),
                    bot_latency_ms=record.bot_latency_ms,
                )
            },
        )
