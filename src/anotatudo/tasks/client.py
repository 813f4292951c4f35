"""Tasks client with idempotent enqueue.

Provides two backends selectable via TASKS_BACKEND env var:
- pool (default): runs handlers on a bounded ThreadPoolExecutor, after the
  webhook response has been written
- inline: executes handler immediately in the caller (for dev/tests)
"""

import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol

from anotatudo.observability.correlation import bound_correlation_id, get_correlation_id
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import safe_log_context

logger = get_logger(__name__)

# How many recent task_ids are remembered for idempotency
SEEN_IDS_LIMIT = 10_000


class TaskHandler(Protocol):
    """Protocol for task handlers."""

    def __call__(self, payload: dict) -> None:
        """Execute task with given payload."""
        ...


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Backend selection:
    - "pool": submits to a ThreadPoolExecutor. At most `max_pending` tasks
      may be queued or running; beyond that enqueue() rejects the task and
      logs it (explicit backpressure rather than an unbounded queue).
    - "inline": executes handler immediately.

    The caller's correlation ID is re-bound inside the worker thread.
    Tracks the most recent task_ids to ensure idempotency (same task_id =
    no-op).
    """

    def __init__(
        self,
        backend: str = "pool",
        max_workers: int = 4,
        max_pending: int = 100,
    ) -> None:
        if backend not in ("pool", "inline"):
            raise ValueError(f"Unknown TASKS_BACKEND: {backend}")
        self._backend = backend
        self._seen_ids: OrderedDict[str, None] = OrderedDict()
        self._seen_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._slots = threading.BoundedSemaphore(max_pending)
        self._closed = False
        if backend == "pool":
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="webhook-worker"
            )

    @property
    def backend(self) -> str:
        return self._backend

    def _remember(self, task_id: str) -> bool:
        """Record task_id. False if it was already seen."""
        with self._seen_lock:
            if task_id in self._seen_ids:
                return False
            self._seen_ids[task_id] = None
            if len(self._seen_ids) > SEEN_IDS_LIMIT:
                self._seen_ids.popitem(last=False)
            return True

    def _run(self, task_id: str, handler: Callable[[dict], None], payload: dict, cid: str) -> None:
        with bound_correlation_id(cid):
            try:
                handler(payload)
            except Exception:
                logger.exception(
                    "task handler failed",
                    extra={"extra_fields": safe_log_context(task_id=task_id)},
                )

    def enqueue(
        self,
        task_id: str,
        handler: Callable[[dict], None],
        payload: dict,
        correlation_id: str | None = None,
    ) -> bool:
        """Enqueue task for execution.

        Idempotent by task_id: if same task_id was already enqueued,
        returns False without executing handler again.

        Args:
            task_id: Unique identifier for idempotency.
            handler: Callable that processes the payload.
            payload: Task data. Held in memory only; never persisted.
            correlation_id: ID to bind in the worker. Defaults to the
                caller's current correlation ID.

        Returns:
            True if task was accepted (new task_id).
            False if no-op (task_id already seen), shut down, or rejected
            because the pending budget is exhausted.
        """
        if self._closed:
            logger.warning(
                "task rejected: client shut down",
                extra={"extra_fields": safe_log_context(task_id=task_id)},
            )
            return False

        if not self._remember(task_id):
            return False

        cid = correlation_id or get_correlation_id()

        if self._executor is None:
            self._run(task_id, handler, payload, cid)
            return True

        if not self._slots.acquire(blocking=False):
            with self._seen_lock:
                self._seen_ids.pop(task_id, None)
            logger.error(
                "task rejected: pending budget exhausted",
                extra={"extra_fields": safe_log_context(task_id=task_id)},
            )
            return False

        try:
            future = self._executor.submit(self._run, task_id, handler, payload, cid)
        except RuntimeError:
            # Executor shut down between the closed check and submit
            self._slots.release()
            return False
        future.add_done_callback(self._release_slot)
        return True

    def _release_slot(self, _future: Future) -> None:
        self._slots.release()

    def was_executed(self, task_id: str) -> bool:
        """Check if task_id was already executed/enqueued."""
        with self._seen_lock:
            return task_id in self._seen_ids

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work. Running tasks finish; queued ones are cancelled."""
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    def clear(self) -> None:
        """Clear seen task_ids (useful for testing)."""
        with self._seen_lock:
            self._seen_ids.clear()
