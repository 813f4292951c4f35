"""Per-message orchestration of the WhatsApp pipeline.

Runs on a worker thread after the webhook has been acknowledged. For each
message of a batch, in order:

    duplicate check -> latency open -> rate check -> session resolve ->
    content extract -> {identity prompt | edit/delete | reminder | media | intent} ->
    reply -> latency close

At most one reply is sent per inbound message. Any collaborator error is
caught at the message boundary and answered with the generic fallback.

Security: NEVER log sender_address, display_name or message text.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from functools import partial
from typing import Any, Callable, Iterable, Protocol

from anotatudo.assistant.client import Assistant, BoundedAssistant
from anotatudo.config import Settings
from anotatudo.domain.intents import TransactionIntent
from anotatudo.domain.parsing import is_greeting, parse_reminder_choice
from anotatudo.domain.rate_limit import RateLimiter
from anotatudo.domain.reminders import (
    REMINDER_CHOICES,
    REMINDER_PREFIX,
    EventStore,
    ReminderIntent,
)
from anotatudo.domain.sessions import (
    IdentityStatus,
    SessionResolver,
    SessionState,
    UserSession,
)
from anotatudo.domain.transactions import TransactionOrigin, TransactionStore
from anotatudo.infra.time import local_today
from anotatudo.observability.latency import LatencyRecorder
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import hash_identifier, id_prefix, safe_log_context
from anotatudo.whatsapp.content import extract_content
from anotatudo.whatsapp.models import (
    InboundMessage,
    MediaAsset,
    MessageKind,
    NormalizedContent,
    OutboundReply,
)
from anotatudo.whatsapp.replies import (
    DELETE_PREFIX,
    EDIT_PREFIX,
    deletion_confirmation,
    first_name,
    generic_fallback,
    plain_reply,
    reminder_confirmation,
    reminder_prompt,
    transaction_confirmation,
)

logger = get_logger(__name__)


class ReplySender(Protocol):
    def send_text(self, to_address: str, body: str) -> str: ...

    def send_interactive(self, to_address: str, body: str, buttons: Any) -> str: ...


class MediaFetcher(Protocol):
    def fetch(self, media_id: str, kind: MessageKind) -> MediaAsset: ...


class MediaUnavailableError(Exception):
    """Raised when a media message arrives but no downloader is configured."""

    pass


@dataclass
class _Turn:
    """Mutable state for one inbound message while it is processed."""

    message: InboundMessage
    record_id: str | None = None
    session: UserSession | None = None
    replied: bool = False
    outcome: str = "pending"

    @property
    def display_name(self) -> str | None:
        if self.message.display_name:
            return self.message.display_name
        return self.session.display_name if self.session else None

    @property
    def user_id(self) -> str | None:
        return self.session.user_id if self.session else None


class Dispatcher:
    """Wires normalizer output to sessions, assistant, stores and sender.

    Args:
        sessions: Session resolver (identity state machine).
        rate_limiter: Per-sender fixed window limiter.
        latency: Best-effort latency recorder.
        assistant: Intent/reply collaborator (already time-bounded).
        transactions: Transaction persistence.
        events: Calendar event persistence.
        sender: Outbound transport.
        media: Media downloader; None disables the media pipeline.
    """

    def __init__(
        self,
        *,
        sessions: SessionResolver,
        rate_limiter: RateLimiter,
        latency: LatencyRecorder,
        assistant: Assistant,
        transactions: TransactionStore,
        events: EventStore,
        sender: ReplySender,
        media: MediaFetcher | None = None,
    ) -> None:
        self._sessions = sessions
        self._rate_limiter = rate_limiter
        self._latency = latency
        self._assistant = assistant
        self._transactions = transactions
        self._events = events
        self._sender = sender
        self._media = media

    def close(self) -> None:
        """Release the assistant worker pool, if the assistant has one."""
        shutdown = getattr(self._assistant, "shutdown", None)
        if shutdown is not None:
            shutdown()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_batch(self, payload: dict) -> None:
        """Task handler: payload["messages"] holds InboundMessage objects."""
        self.process_batch(payload.get("messages") or [])

    def process_batch(self, messages: Iterable[InboundMessage]) -> None:
        """Process messages sequentially, in order. Never raises."""
        for message in messages:
            self.process(message)

    def process(self, message: InboundMessage) -> None:
        """Run one message through the pipeline. Never raises."""
        log_ctx = {
            "message_prefix": id_prefix(message.external_id),
            "kind": message.kind,
            "sender_hash": hash_identifier(message.sender_address),
        }

        if self._latency.seen(message.external_id):
            logger.info(
                "duplicate message skipped",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return

        record = self._latency.open(message)
        turn = _Turn(message=message, record_id=record.id if record else None)

        try:
            self._run(turn)
        except Exception as e:
            turn.outcome = "error"
            logger.exception(
                "message processing failed",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, error_type=type(e).__name__, latency_id=turn.record_id
                    )
                },
            )
            if not turn.replied:
                self._deliver(turn, generic_fallback(message.sender_address, turn.display_name))

        logger.info(
            "message processed",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    outcome=turn.outcome,
                    replied=turn.replied,
                    user_id=turn.user_id,
                    latency_id=turn.record_id,
                )
            },
        )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _run(self, turn: _Turn) -> None:
        message = turn.message

        if not self._rate_limiter.allow(message.sender_address):
            turn.outcome = "rate_limited"
            return

        session, created = self._sessions.resolve(message.sender_address, message.display_name)
        turn.session = session

        if created or session.state is SessionState.NEW:
            session = self._sessions.mark_identity_requested(session)
            turn.session = session
            if session.state is SessionState.AWAITING_IDENTITY:
                turn.outcome = "identity_requested"
                self._reply_template(turn, "pedir_email_inicial")
                return

        content = extract_content(message)
        if not content.has_content and message.kind is not MessageKind.INTERACTIVE_REPLY:
            turn.outcome = "skipped_empty"
            return

        if session.state is SessionState.AWAITING_IDENTITY:
            self._handle_identity(turn, session, content)
        else:
            self._handle_authenticated(turn, session, content)

    def _handle_identity(
        self, turn: _Turn, session: UserSession, content: NormalizedContent
    ) -> None:
        outcome = self._sessions.advance(session, content)
        turn.session = outcome.session

        if not outcome.should_reply:
            turn.outcome = "identity_exhausted"
        elif outcome.status is IdentityStatus.ALREADY_AUTHENTICATED:
            # Another batch finished the identity flow first
            self._handle_authenticated(turn, outcome.session, content)
        elif outcome.status is IdentityStatus.AUTHENTICATED:
            turn.outcome = "authenticated"
            self._reply_template(turn, "boas_vindas_autenticado")
        else:
            turn.outcome = "identity_invalid"
            key = "pedir_email_inicial" if is_greeting(content.text) else "pedir_email"
            self._reply_template(turn, key)

    def _handle_authenticated(
        self, turn: _Turn, session: UserSession, content: NormalizedContent
    ) -> None:
        message = turn.message
        reply_id = message.reply_id or ""

        if message.kind is MessageKind.INTERACTIVE_REPLY and reply_id.startswith(DELETE_PREFIX):
            self._delete_transaction(turn, session, reply_id[len(DELETE_PREFIX):])
            return

        if message.kind is MessageKind.INTERACTIVE_REPLY and reply_id.startswith(EDIT_PREFIX):
            self._start_edit(turn, session, reply_id[len(EDIT_PREFIX):])
            return

        if message.kind is MessageKind.INTERACTIVE_REPLY and reply_id.startswith(REMINDER_PREFIX):
            self._finish_reminder(turn, session, reply_id)
            return

        if session.pending_reminder is not None and message.kind is MessageKind.TEXT:
            choice = parse_reminder_choice(content.text)
            if choice is not None:
                self._finish_reminder(turn, session, choice)
                return
            # Anything else abandons the parked event
            session = self._sessions.set_pending_reminder(session, None)
            turn.session = session

        if message.kind is MessageKind.TEXT and not session.pending_edit_id:
            reminder = self._assistant.detect_reminder(content.text)
            if reminder is not None:
                self._start_reminder(turn, session, reminder)
                return

        if message.kind is MessageKind.VIDEO and not content.text:
            # Videos are only readable through their caption
            turn.outcome = "video_unsupported"
            self._reply_template(turn, "video_nao_suportado")
            return

        if message.kind.is_media and content.media_ref:
            intent = self._parse_media(message, content)
            origin = TransactionOrigin.from_kind(message.kind)
        else:
            intent = self._assistant.parse_intent(content.text)
            origin = TransactionOrigin.TEXT

        if intent is None:
            turn.outcome = "not_understood"
            self._reply_template(turn, "transacao_nao_entendida")
            return

        if session.pending_edit_id:
            self._finish_edit(turn, session, intent)
        else:
            stored = self._transactions.create(session.user_id, intent, origin)
            turn.outcome = "transaction_created"
            self._deliver(
                turn,
                transaction_confirmation(
                    message.sender_address,
                    intent.with_id(stored.transaction_id or ""),
                    turn.display_name,
                ),
            )

    def _parse_media(
        self, message: InboundMessage, content: NormalizedContent
    ) -> TransactionIntent | None:
        if self._media is None:
            raise MediaUnavailableError("media downloader not configured")
        asset = self._media.fetch(content.media_ref or "", message.kind)
        return self._assistant.parse_media(asset, message.raw_text or "")

    def _delete_transaction(self, turn: _Turn, session: UserSession, transaction_id: str) -> None:
        deleted = self._transactions.delete(transaction_id, session.user_id)
        if deleted is None:
            turn.outcome = "transaction_not_found"
            self._deliver(turn, generic_fallback(turn.message.sender_address, turn.display_name))
            return
        if session.pending_edit_id == transaction_id:
            turn.session = self._sessions.set_pending_edit(session, None)
        turn.outcome = "transaction_deleted"
        self._deliver(
            turn, deletion_confirmation(turn.message.sender_address, deleted, turn.display_name)
        )

    def _start_edit(self, turn: _Turn, session: UserSession, transaction_id: str) -> None:
        existing = self._transactions.get(transaction_id, session.user_id)
        if existing is None:
            turn.outcome = "transaction_not_found"
            self._deliver(turn, generic_fallback(turn.message.sender_address, turn.display_name))
            return
        turn.session = self._sessions.set_pending_edit(session, transaction_id)
        turn.outcome = "edit_started"
        self._reply_template(turn, "edicao_iniciada")

    def _finish_edit(self, turn: _Turn, session: UserSession, intent: TransactionIntent) -> None:
        transaction_id = session.pending_edit_id or ""
        updated = self._transactions.update(transaction_id, session.user_id, intent)
        turn.session = self._sessions.set_pending_edit(session, None)
        if updated is None:
            turn.outcome = "transaction_not_found"
            self._deliver(turn, generic_fallback(turn.message.sender_address, turn.display_name))
            return
        turn.outcome = "transaction_updated"
        self._deliver(
            turn,
            transaction_confirmation(
                turn.message.sender_address,
                intent.with_id(transaction_id),
                turn.display_name,
            ),
        )

    def _start_reminder(
        self, turn: _Turn, session: UserSession, reminder: ReminderIntent
    ) -> None:
        turn.session = self._sessions.set_pending_reminder(session, reminder)
        turn.outcome = "reminder_requested"
        self._deliver(turn, reminder_prompt(turn.message.sender_address, reminder))

    def _finish_reminder(self, turn: _Turn, session: UserSession, choice: str) -> None:
        reminder = session.pending_reminder
        if reminder is None or choice not in REMINDER_CHOICES:
            turn.outcome = "reminder_not_pending"
            self._deliver(turn, generic_fallback(turn.message.sender_address, turn.display_name))
            return
        event = self._events.create(
            session.user_id,
            reminder,
            REMINDER_CHOICES[choice],
            external_message_id=turn.message.external_id,
        )
        turn.session = self._sessions.set_pending_reminder(session, None)
        turn.outcome = "event_created"
        self._deliver(
            turn, reminder_confirmation(turn.message.sender_address, event, turn.display_name)
        )

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    def _reply_template(self, turn: _Turn, template_key: str) -> None:
        text = self._assistant.generate_reply_text(
            template_key, {"first_name": first_name(turn.display_name)}
        )
        self._deliver(turn, plain_reply(turn.message.sender_address, text))

    def _deliver(self, turn: _Turn, reply: OutboundReply) -> bool:
        """Send the turn's single reply. Send failures are logged, not raised."""
        if turn.replied:
            logger.warning(
                "second reply suppressed",
                extra={"extra_fields": safe_log_context(latency_id=turn.record_id)},
            )
            return False
        turn.replied = True

        self._latency.mark_queued(turn.record_id, user_id=turn.user_id)
        try:
            if reply.is_interactive:
                outbound_id = self._sender.send_interactive(
                    reply.to_address, reply.body, reply.buttons
                )
            else:
                outbound_id = self._sender.send_text(reply.to_address, reply.body)
        except Exception as e:
            logger.error(
                "reply send failed",
                extra={
                    "extra_fields": safe_log_context(
                        latency_id=turn.record_id,
                        error_type=type(e).__name__,
                        interactive=reply.is_interactive,
                    )
                },
            )
            return False

        self._latency.mark_delivered(turn.record_id, outbound_id)
        return True


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------


def build_dispatcher(settings: Settings) -> Dispatcher:
    """Build a Dispatcher from settings.

    Uses Postgres stores when DATABASE_URL is set, in-memory stores
    otherwise.

    Raises:
        ConfigError: If WhatsApp credentials are missing.
    """
    from anotatudo.assistant.http_backend import HttpAssistant
    from anotatudo.assistant.rules import RuleBasedAssistant
    from anotatudo.whatsapp.media import MediaDownloader
    from anotatudo.whatsapp.sender import MetaSender

    credentials = settings.whatsapp_credentials()
    today: Callable[[], date] = partial(local_today, settings.timezone)

    if os.environ.get("DATABASE_URL"):
        from anotatudo.infra.repositories.events_repository import PostgresEventStore
        from anotatudo.infra.repositories.latency_repository import PostgresLatencyStore
        from anotatudo.infra.repositories.sessions_repository import PostgresUserStore
        from anotatudo.infra.repositories.transactions_repository import (
            PostgresTransactionStore,
        )

        user_store: Any = PostgresUserStore()
        latency_store: Any = PostgresLatencyStore()
        transaction_store: Any = PostgresTransactionStore(today)
        event_store: Any = PostgresEventStore()
    else:
        from anotatudo.infra.repositories.memory import (
            InMemoryEventStore,
            InMemoryLatencyStore,
            InMemoryTransactionStore,
            InMemoryUserStore,
        )

        logger.warning("DATABASE_URL not set, using in-memory stores")
        user_store = InMemoryUserStore()
        latency_store = InMemoryLatencyStore()
        transaction_store = InMemoryTransactionStore(today)
        event_store = InMemoryEventStore()

    if settings.assistant_backend == "http":
        inner: Assistant = HttpAssistant(
            settings.assistant_url, timeout=settings.assistant_timeout_seconds, today=today
        )
    else:
        inner = RuleBasedAssistant(today)

    return Dispatcher(
        sessions=SessionResolver(user_store, settings.identity_max_attempts),
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        latency=LatencyRecorder(latency_store),
        assistant=BoundedAssistant(inner, timeout=settings.assistant_timeout_seconds),
        transactions=transaction_store,
        events=event_store,
        sender=MetaSender(credentials),
        media=MediaDownloader(
            credentials,
            settings.media_scratch_dir,
            timeout=settings.media_timeout_seconds,
        ),
    )
