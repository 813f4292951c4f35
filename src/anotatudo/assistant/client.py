"""Assistant collaborator contract and timeout enforcement.

The assistant turns free text and media into TransactionIntents, spots
appointments (ReminderIntents) and writes reply text. Implementations:
- RuleBasedAssistant (default): deterministic regex rules, no network
- HttpAssistant: delegates to an external service over HTTP

Every implementation is wrapped in BoundedAssistant so a slow collaborator
cannot stall a worker thread past ASSISTANT_TIMEOUT_SECONDS.
"""

from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Protocol, TypeVar

from anotatudo.domain.intents import TransactionIntent
from anotatudo.domain.reminders import ReminderIntent
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import safe_log_context
from anotatudo.whatsapp.models import MediaAsset

logger = get_logger(__name__)

T = TypeVar("T")


class AssistantError(Exception):
    """Raised when the assistant cannot produce a result."""

    pass


class AssistantTimeoutError(AssistantError):
    """Raised when an assistant call exceeds its time budget."""

    pass


class Assistant(Protocol):
    def generate_reply_text(self, template_key: str, context: dict[str, Any]) -> str:
        """Reply text for a fixed situation (identity prompt, errors, ...)."""
        ...

    def parse_intent(self, text: str) -> TransactionIntent | None:
        """Transaction described by free text, or None if there is none."""
        ...

    def parse_media(self, asset: MediaAsset, caption: str) -> TransactionIntent | None:
        """Transaction described by a downloaded media file, or None."""
        ...

    def detect_reminder(self, text: str) -> ReminderIntent | None:
        """Appointment described by free text, or None."""
        ...


class BoundedAssistant:
    """Runs every call of an inner Assistant under a timeout.

    Calls execute on a small dedicated pool; the caller waits on the future
    for at most `timeout` seconds. A timed-out call keeps running in the
    background until it returns, but its result is discarded.

    Args:
        inner: Assistant doing the actual work.
        timeout: Seconds to wait for any single call.
        max_workers: Threads available for assistant calls.
    """

    def __init__(self, inner: Assistant, timeout: float, max_workers: int = 4) -> None:
        self._inner = inner
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="assistant"
        )

    def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        future = self._executor.submit(contextvars.copy_context().run, fn, *args)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.warning(
                "assistant call timed out",
                extra={
                    "extra_fields": safe_log_context(
                        operation=operation, timeout_seconds=self._timeout
                    )
                },
            )
            raise AssistantTimeoutError(f"{operation} exceeded {self._timeout}s") from e

    def generate_reply_text(self, template_key: str, context: dict[str, Any]) -> str:
        return self._call("generate_reply_text", self._inner.generate_reply_text, template_key, context)

    def parse_intent(self, text: str) -> TransactionIntent | None:
        return self._call("parse_intent", self._inner.parse_intent, text)

    def parse_media(self, asset: MediaAsset, caption: str) -> TransactionIntent | None:
        return self._call("parse_media", self._inner.parse_media, asset, caption)

    def detect_reminder(self, text: str) -> ReminderIntent | None:
        return self._call("detect_reminder", self._inner.detect_reminder, text)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
