"""Transaction persistence contract.

Every operation is scoped to the owning user: a transaction id that belongs
to someone else behaves exactly like a missing one.
"""

from enum import Enum
from typing import Protocol

from anotatudo.domain.intents import TransactionIntent
from anotatudo.whatsapp.models import MessageKind


class TransactionOrigin(str, Enum):
    """Where a transaction came from. Values match the `origem` column."""

    TEXT = "texto"
    AUDIO = "audio"
    PHOTO = "foto"
    VIDEO = "video"

    @classmethod
    def from_kind(cls, kind: MessageKind) -> "TransactionOrigin":
        return {
            MessageKind.AUDIO: cls.AUDIO,
            MessageKind.IMAGE: cls.PHOTO,
            MessageKind.VIDEO: cls.VIDEO,
        }.get(kind, cls.TEXT)


class TransactionStore(Protocol):
    def create(
        self, user_id: str, intent: TransactionIntent, origin: TransactionOrigin
    ) -> TransactionIntent:
        """Persist and return the intent with its new transaction_id."""
        ...

    def get(self, transaction_id: str, user_id: str) -> TransactionIntent | None: ...

    def update(
        self, transaction_id: str, user_id: str, intent: TransactionIntent
    ) -> TransactionIntent | None:
        """Overwrite fields. None if not found for this user."""
        ...

    def delete(self, transaction_id: str, user_id: str) -> TransactionIntent | None:
        """Remove and return the deleted transaction. None if not found."""
        ...
