"""Shared test helper functions and fakes.

These are NOT fixtures - they are regular classes/functions that both
conftest.py and individual test files import.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any

from anotatudo.assistant.rules import RuleBasedAssistant
from anotatudo.dispatch import Dispatcher
from anotatudo.domain.rate_limit import RateLimiter
from anotatudo.domain.sessions import SessionResolver, SessionState, UserSession
from anotatudo.infra.repositories.memory import (
    InMemoryEventStore,
    InMemoryLatencyStore,
    InMemoryTransactionStore,
    InMemoryUserStore,
)
from anotatudo.observability.latency import LatencyRecorder
from anotatudo.whatsapp.models import InboundMessage, MediaAsset, MessageKind, OutboundReply
from anotatudo.whatsapp.sender import OutboundSendError

TODAY = date(2024, 3, 10)
RECEIVED_AT = datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
SENDER = "5511999998888"


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def messages(self) -> list[str]:
        return [args[0] for _, args, _ in self.calls if args]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def has_extra_field(self, key: str) -> bool:
        """Check if any call has the given key in extra_fields."""
        for _, _, kwargs in self.calls:
            extra = kwargs.get("extra", {})
            if key in extra.get("extra_fields", {}):
                return True
        return False


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSender:
    """Records replies instead of calling the Graph API."""

    def __init__(self, fail: bool = False):
        self.sent: list[OutboundReply] = []
        self.fail = fail

    def _record(self, to_address: str, body: str, buttons: tuple) -> str:
        if self.fail:
            raise OutboundSendError("send failed: URLError")
        self.sent.append(OutboundReply(to_address=to_address, body=body, buttons=buttons))
        return f"wamid.out-{len(self.sent)}"

    def send_text(self, to_address: str, body: str) -> str:
        return self._record(to_address, body, ())

    def send_interactive(self, to_address: str, body: str, buttons: Any) -> str:
        return self._record(to_address, body, tuple(buttons))

    @property
    def bodies(self) -> list[str]:
        return [reply.body for reply in self.sent]


class FakeMedia:
    """MediaFetcher returning a fixed asset, or raising `error`."""

    def __init__(self, path: Path, error: Exception | None = None):
        self.path = path
        self.error = error
        self.calls: list[tuple[str, MessageKind]] = []

    def fetch(self, media_id: str, kind: MessageKind) -> MediaAsset:
        self.calls.append((media_id, kind))
        if self.error is not None:
            raise self.error
        return MediaAsset(
            external_id=media_id, local_path=self.path, mime_type="image/jpeg", kind=kind
        )


def inbound(
    text: str | None = "Oi",
    *,
    external_id: str = "wamid.in-1",
    sender: str = SENDER,
    kind: MessageKind = MessageKind.TEXT,
    display_name: str | None = "João Silva",
    media_ref: str | None = None,
    reply_id: str | None = None,
    raw: dict | None = None,
) -> InboundMessage:
    """Build an InboundMessage the way the normalizer would."""
    if raw is None:
        raw = {"id": external_id, "from": sender}
        if kind is MessageKind.TEXT and text is not None:
            raw.update(type="text", text={"body": text})
    return InboundMessage(
        external_id=external_id,
        sender_address=sender,
        kind=kind,
        received_at=RECEIVED_AT,
        raw_text=text,
        media_ref=media_ref,
        reply_id=reply_id,
        display_name=display_name,
        provider_timestamp="1710072000",
        raw=raw,
    )


def button_reply(reply_id: str, title: str, external_id: str = "wamid.btn-1") -> InboundMessage:
    raw = {
        "id": external_id,
        "from": SENDER,
        "type": "interactive",
        "interactive": {"type": "button_reply", "button_reply": {"id": reply_id, "title": title}},
    }
    return inbound(
        None,
        external_id=external_id,
        kind=MessageKind.INTERACTIVE_REPLY,
        reply_id=reply_id,
        raw=raw,
    )


def meta_payload(
    messages: list[dict[str, Any]],
    contacts: list[dict[str, Any]] | None = None,
    statuses: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Shape (a): the documented Cloud API envelope."""
    value: dict[str, Any] = {"messaging_product": "whatsapp", "metadata": {"phone_number_id": "1234"}}
    if messages:
        value["messages"] = messages
    if contacts:
        value["contacts"] = contacts
    if statuses:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}],
    }


def text_message(body: str, external_id: str = "wamid.in-1", sender: str = SENDER) -> dict[str, Any]:
    return {
        "id": external_id,
        "from": sender,
        "timestamp": "1710072000",
        "type": "text",
        "text": {"body": body},
    }


def make_dispatcher(
    *,
    assistant: Any = None,
    sender: FakeSender | None = None,
    media: Any = None,
    max_requests: int = 10,
    identity_attempts: int = 5,
    clock: FakeClock | None = None,
) -> SimpleNamespace:
    """Dispatcher wired to in-memory stores. Returns the parts for assertions."""
    users = InMemoryUserStore()
    latency = InMemoryLatencyStore()
    transactions = InMemoryTransactionStore(today=lambda: TODAY)
    events = InMemoryEventStore()
    sender = sender or FakeSender()
    dispatcher = Dispatcher(
        sessions=SessionResolver(users, identity_attempts),
        rate_limiter=RateLimiter(max_requests=max_requests, clock=clock or FakeClock()),
        latency=LatencyRecorder(latency),
        assistant=assistant or RuleBasedAssistant(lambda: TODAY),
        transactions=transactions,
        events=events,
        sender=sender,
        media=media,
    )
    return SimpleNamespace(
        dispatcher=dispatcher,
        users=users,
        latency=latency,
        transactions=transactions,
        events=events,
        sender=sender,
    )


def authenticated_session(
    users: InMemoryUserStore, sender: str = SENDER, display_name: str | None = "João Silva"
) -> UserSession:
    """Create a session that already finished the identity flow."""
    session = users.create_from_sender_address(sender, display_name)
    users.update_email(session.user_id, "joao@exemplo.com")
    return users.update_state(session.user_id, SessionState.AUTHENTICATED)
