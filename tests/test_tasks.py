"""Tests for the tasks client (inline and pool backends)."""

import threading

import pytest

from tests.helpers import LogRecorder

from anotatudo.observability.correlation import bound_correlation_id, get_correlation_id
from anotatudo.tasks.client import TasksClient


class TestInlineBackend:
    def test_enqueue_executes_handler(self):
        client = TasksClient(backend="inline")
        executed = []

        result = client.enqueue("task-1", executed.append, {"key": "value"})

        assert result is True
        assert executed == [{"key": "value"}]

    def test_enqueue_idempotent_same_task_id(self):
        client = TasksClient(backend="inline")
        executed = []

        assert client.enqueue("same-id", executed.append, {"x": 1}) is True
        assert client.enqueue("same-id", executed.append, {"x": 2}) is False
        assert executed == [{"x": 1}]
        assert client.was_executed("same-id")

    def test_clear_forgets_ids(self):
        client = TasksClient(backend="inline")
        executed = []
        client.enqueue("t", executed.append, {})

        client.clear()

        assert client.enqueue("t", executed.append, {}) is True
        assert len(executed) == 2

    def test_handler_exception_is_logged_not_raised(self, monkeypatch):
        log = LogRecorder()
        monkeypatch.setattr("anotatudo.tasks.client.logger", log)
        client = TasksClient(backend="inline")

        def handler(payload):
            raise RuntimeError("boom")

        assert client.enqueue("t", handler, {}) is True
        assert "task handler failed" in log.messages()

    def test_explicit_correlation_id_bound(self):
        client = TasksClient(backend="inline")
        seen = []

        client.enqueue("t", lambda p: seen.append(get_correlation_id()), {}, correlation_id="cid-1")

        assert seen == ["cid-1"]
        assert get_correlation_id() == ""

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            TasksClient(backend="cloud")


class TestPoolBackend:
    def test_runs_on_worker_with_caller_correlation_id(self):
        client = TasksClient(backend="pool", max_workers=1)
        done = threading.Event()
        seen = []

        def handler(payload):
            seen.append((threading.current_thread().name, get_correlation_id()))
            done.set()

        with bound_correlation_id("cid-pool"):
            assert client.enqueue("t", handler, {}) is True
        assert done.wait(timeout=5)
        client.shutdown()

        [(thread_name, cid)] = seen
        assert thread_name.startswith("webhook-worker")
        assert cid == "cid-pool"

    def test_backpressure_rejects_when_budget_exhausted(self):
        client = TasksClient(backend="pool", max_workers=1, max_pending=1)
        release = threading.Event()
        started = threading.Event()

        def slow(payload):
            started.set()
            release.wait(timeout=5)

        try:
            assert client.enqueue("a", slow, {}) is True
            assert started.wait(timeout=5)
            assert client.enqueue("b", slow, {}) is False
            # rejected ids are not remembered, so a retry can be accepted later
            assert not client.was_executed("b")
        finally:
            release.set()
            client.shutdown()

    def test_shutdown_rejects_new_tasks(self):
        client = TasksClient(backend="pool")
        client.shutdown()

        assert client.enqueue("t", lambda p: None, {}) is False

    def test_shutdown_waits_for_running_task(self):
        client = TasksClient(backend="pool", max_workers=1)
        finished = []
        started = threading.Event()

        def handler(payload):
            started.set()
            finished.append(True)

        client.enqueue("t", handler, {})
        assert started.wait(timeout=5)
        client.shutdown(wait=True)

        assert finished == [True]
