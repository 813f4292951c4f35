"""Tests for per-message latency records."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from tests.helpers import RECEIVED_AT, LogRecorder, inbound

from anotatudo.infra.repositories.memory import InMemoryLatencyStore
from anotatudo.observability.latency import LatencyRecord, LatencyRecorder


class StepClock:
    """Returns RECEIVED_AT + offset; offset set by the test."""

    def __init__(self):
        self.offset = timedelta(0)

    def __call__(self) -> datetime:
        return RECEIVED_AT + self.offset


def _recorder(store=None, clock=None):
    store = store or InMemoryLatencyStore()
    return LatencyRecorder(store, clock=clock or StepClock()), store


class TestLatencyRecorder:
    def test_open_creates_record(self):
        recorder, store = _recorder()

        record = recorder.open(inbound("Oi", external_id="wamid.A"))

        assert record is not None
        assert store.get(record.id) == record
        assert record.external_message_id == "wamid.A"
        assert record.received_at == RECEIVED_AT
        assert record.message_kind == "text"
        assert record.provider_received_at == datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert record.is_complete is False

    def test_complete_after_queue_and_delivery(self):
        clock = StepClock()
        recorder, store = _recorder(clock=clock)
        record = recorder.open(inbound())

        clock.offset = timedelta(milliseconds=1500)
        recorder.mark_queued(record.id, user_id="user-1")
        recorder.mark_delivered(record.id, "wamid.OUT")

        stored = store.get(record.id)
        assert stored.is_complete
        assert stored.user_id == "user-1"
        assert stored.response_message_id == "wamid.OUT"
        assert stored.bot_latency_ms == 1500

    def test_partial_when_send_fails(self):
        recorder, store = _recorder()
        record = recorder.open(inbound())

        recorder.mark_queued(record.id)

        stored = store.get(record.id)
        assert stored.response_queued_at is not None
        assert stored.response_message_id is None
        assert stored.is_complete is False

    def test_seen(self):
        recorder, _ = _recorder()
        assert recorder.seen("wamid.A") is False
        recorder.open(inbound(external_id="wamid.A"))
        assert recorder.seen("wamid.A") is True

    def test_store_failures_swallowed(self):
        store = MagicMock()
        store.create.side_effect = RuntimeError("db down")
        store.update.side_effect = RuntimeError("db down")
        store.find_by_external_id.side_effect = RuntimeError("db down")
        store.get.side_effect = RuntimeError("db down")
        recorder, _ = _recorder(store=store)

        assert recorder.open(inbound()) is None
        assert recorder.seen("wamid.A") is False
        recorder.mark_queued("rec-1")
        recorder.mark_delivered("rec-1", "wamid.OUT")

    def test_none_record_id_is_noop(self):
        store = MagicMock()
        recorder, _ = _recorder(store=store)

        recorder.mark_queued(None)
        recorder.mark_delivered(None, "wamid.OUT")

        store.update.assert_not_called()

    def test_delivery_emits_audit_log(self):
        recorder, _ = _recorder()
        record = recorder.open(inbound())
        log = LogRecorder()

        with patch("anotatudo.observability.latency.logger", log):
            recorder.mark_queued(record.id, user_id="user-1")
            recorder.mark_delivered(record.id, "wamid.OUT")

        assert "whatsapp reply delivered" in log.messages()
        assert log.has_extra_field("audit")
        assert log.has_extra_field("bot_latency_ms")
        assert "5511999998888" not in log.get_all_logged_content()


class TestLatencyRecord:
    def test_latency_unknown_until_processed(self):
        record = LatencyRecord(
            id="r", external_message_id="w", received_at=RECEIVED_AT, message_kind="text"
        )
        assert record.bot_latency_ms is None
