"""User session resolution and the identity state machine.

States only move forward:

    new -> awaiting_identity -> authenticated

`new -> awaiting_identity` happens right before the identity prompt is sent.
`awaiting_identity -> authenticated` happens on a valid email-shaped token.
`authenticated` is terminal; stores refuse to move a row backwards.

Security: NEVER log sender_address or email. Use hash_identifier.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from anotatudo.domain.reminders import ReminderIntent
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import hash_identifier, safe_log_context
from anotatudo.whatsapp.models import NormalizedContent

logger = get_logger(__name__)

_EMAIL_EXACT = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_EMAIL_SEARCH = re.compile(r"([^\s@]+@[^\s@]+\.[^\s@]+)")
# Trailing punctuation people type after an address ("meu email é a@b.com.")
_TRAILING = ".,;:!?)"


class SessionState(str, Enum):
    NEW = "new"
    AWAITING_IDENTITY = "awaiting_identity"
    AUTHENTICATED = "authenticated"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def reachable_from(self) -> list["SessionState"]:
        """States that may move to this one (itself included)."""
        return [state for state in SessionState if state.rank <= self.rank]


_RANK = {
    SessionState.NEW: 0,
    SessionState.AWAITING_IDENTITY: 1,
    SessionState.AUTHENTICATED: 2,
}


class InvalidTransitionError(Exception):
    """Raised when a state change would move a session backwards."""

    pass


@dataclass(frozen=True)
class UserSession:
    """Snapshot of a sender's session row."""

    user_id: str
    sender_address: str
    state: SessionState = SessionState.NEW
    display_name: str | None = None
    email: str | None = None
    failed_attempts: int = 0
    pending_edit_id: str | None = None
    pending_reminder: ReminderIntent | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED


class UserStore(Protocol):
    """Session persistence keyed by sender address (unique)."""

    def find_by_sender_address(self, sender_address: str) -> UserSession | None: ...

    def create_from_sender_address(
        self, sender_address: str, display_name: str | None
    ) -> UserSession | None:
        """Insert a `new` session. Returns None if the address already exists."""
        ...

    def update_state(self, user_id: str, state: SessionState) -> UserSession:
        """Move the stored row to `state` unless it is already further along.

        Returns the stored session either way.
        """
        ...

    def update_email(self, user_id: str, email: str) -> UserSession: ...

    def record_failed_attempt(self, user_id: str) -> int:
        """Increment and return the failed identity attempt counter."""
        ...

    def set_pending_edit(self, user_id: str, transaction_id: str | None) -> UserSession: ...

    def set_pending_reminder(
        self, user_id: str, reminder: ReminderIntent | None
    ) -> UserSession: ...


def is_valid_email(text: str) -> bool:
    return bool(_EMAIL_EXACT.match(text.strip()))


def extract_email(text: str) -> str | None:
    """Find an email-shaped token in text. Lowercased; None if absent."""
    trimmed = text.strip().lower()
    if is_valid_email(trimmed):
        return trimmed.rstrip(_TRAILING)

    match = _EMAIL_SEARCH.search(text)
    if not match:
        return None
    candidate = match.group(1).lower().rstrip(_TRAILING)
    return candidate if is_valid_email(candidate) else None


class IdentityStatus(str, Enum):
    ALREADY_AUTHENTICATED = "already_authenticated"
    AUTHENTICATED = "authenticated"
    INVALID = "invalid"
    # Invalid again after the attempt budget ran out: no reply
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class IdentityOutcome:
    status: IdentityStatus
    session: UserSession

    @property
    def should_reply(self) -> bool:
        return self.status is not IdentityStatus.EXHAUSTED


class SessionResolver:
    """Finds or creates sessions and drives the identity state machine.

    Args:
        store: Session persistence.
        max_identity_attempts: Invalid identity replies answered per session.
            Later invalid attempts are dropped silently; a valid email is
            always accepted.
    """

    def __init__(self, store: UserStore, max_identity_attempts: int = 5) -> None:
        self._store = store
        self._max_identity_attempts = max_identity_attempts

    def resolve(
        self, sender_address: str, display_name: str | None = None
    ) -> tuple[UserSession, bool]:
        """Return (session, created). A created session is in state `new`."""
        existing = self._store.find_by_sender_address(sender_address)
        if existing is not None:
            return existing, False

        created = self._store.create_from_sender_address(sender_address, display_name)
        if created is None:
            # Lost an insert race with a concurrent batch
            existing = self._store.find_by_sender_address(sender_address)
            if existing is None:
                raise RuntimeError("session vanished after insert conflict")
            return existing, False

        logger.info(
            "session created",
            extra={
                "extra_fields": safe_log_context(
                    sender_hash=hash_identifier(sender_address),
                    user_id=created.user_id,
                )
            },
        )
        return created, True

    def _transition(self, session: UserSession, target: SessionState) -> UserSession:
        if target.rank < session.state.rank:
            raise InvalidTransitionError(
                f"cannot move session from {session.state.value} to {target.value}"
            )
        if target is session.state:
            return session
        updated = self._store.update_state(session.user_id, target)
        if updated.state is not target:
            # Another batch moved the row past `target` first
            return updated
        logger.info(
            "session state changed",
            extra={
                "extra_fields": safe_log_context(
                    user_id=session.user_id,
                    from_state=session.state,
                    to_state=target,
                )
            },
        )
        return updated

    def mark_identity_requested(self, session: UserSession) -> UserSession:
        """new -> awaiting_identity. No-op for any later state."""
        if session.state is not SessionState.NEW:
            return session
        return self._transition(session, SessionState.AWAITING_IDENTITY)

    def advance(self, session: UserSession, content: NormalizedContent) -> IdentityOutcome:
        """Feed one message into the identity state machine."""
        if session.is_authenticated:
            return IdentityOutcome(IdentityStatus.ALREADY_AUTHENTICATED, session)

        session = self.mark_identity_requested(session)
        if session.is_authenticated:
            return IdentityOutcome(IdentityStatus.ALREADY_AUTHENTICATED, session)

        email = extract_email(content.text) if content.text else None
        if email is not None:
            with_email = self._store.update_email(session.user_id, email)
            authenticated = self._transition(with_email, SessionState.AUTHENTICATED)
            return IdentityOutcome(IdentityStatus.AUTHENTICATED, authenticated)

        attempts = self._store.record_failed_attempt(session.user_id)
        logger.info(
            "identity attempt rejected",
            extra={
                "extra_fields": safe_log_context(
                    user_id=session.user_id,
                    attempts=attempts,
                    limit=self._max_identity_attempts,
                )
            },
        )
        if attempts > self._max_identity_attempts:
            return IdentityOutcome(IdentityStatus.EXHAUSTED, session)
        return IdentityOutcome(IdentityStatus.INVALID, session)

    def set_pending_edit(self, session: UserSession, transaction_id: str | None) -> UserSession:
        if not session.is_authenticated:
            raise InvalidTransitionError("only authenticated sessions can edit transactions")
        return self._store.set_pending_edit(session.user_id, transaction_id)

    def set_pending_reminder(
        self, session: UserSession, reminder: ReminderIntent | None
    ) -> UserSession:
        """Park an event until the user picks a reminder (None clears it)."""
        if not session.is_authenticated:
            raise InvalidTransitionError("only authenticated sessions can create events")
        return self._store.set_pending_reminder(session.user_id, reminder)
