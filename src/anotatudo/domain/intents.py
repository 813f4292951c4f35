"""Transaction intent models.

NO PII stored beyond what the user asked to record.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

DEFAULT_CATEGORY = "Outros"


class TransactionKind(str, Enum):
    """Direction of money. Values match the `tipo` column."""

    INCOME = "entrada"
    EXPENSE = "saida"


@dataclass(frozen=True)
class TransactionIntent:
    """A transaction the user described, parsed but not yet persisted.

    `occurred_on` None means "today" in the user's timezone.
    `transaction_id` is set once the intent is stored (or when it describes
    an existing transaction, e.g. for deletion confirmations).
    """

    description: str
    amount: Decimal
    category: str = DEFAULT_CATEGORY
    kind: TransactionKind = TransactionKind.EXPENSE
    occurred_on: date | None = None
    transaction_id: str | None = None

    def with_id(self, transaction_id: str) -> "TransactionIntent":
        return TransactionIntent(
            description=self.description,
            amount=self.amount,
            category=self.category,
            kind=self.kind,
            occurred_on=self.occurred_on,
            transaction_id=transaction_id,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransactionIntent | None":
        """Build from the assistant service's JSON (descricao/valor/categoria/data/tipo).

        Returns None when no positive amount can be read.
        """
        amount = _to_decimal(data.get("valor"))
        if amount is None or amount <= 0:
            return None

        kind = TransactionKind.INCOME if data.get("tipo") == "entrada" else TransactionKind.EXPENSE

        occurred_on: date | None = None
        raw_date = data.get("data")
        if isinstance(raw_date, str) and raw_date:
            try:
                occurred_on = date.fromisoformat(raw_date[:10])
            except ValueError:
                occurred_on = None

        transaction_id = data.get("id")

        return cls(
            description=str(data.get("descricao") or "").strip()[:200],
            amount=amount,
            category=str(data.get("categoria") or DEFAULT_CATEGORY),
            kind=kind,
            occurred_on=occurred_on,
            transaction_id=str(transaction_id) if transaction_id else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.transaction_id,
            "descricao": self.description,
            "valor": str(self.amount),
            "categoria": self.category,
            "tipo": self.kind.value,
            "data": self.occurred_on.isoformat() if self.occurred_on else None,
        }


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    if not result.is_finite():
        return None
    return result
