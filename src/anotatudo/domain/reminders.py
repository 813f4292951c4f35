"""Calendar events (eventos) detected in WhatsApp messages.

A message that reads like an appointment is not stored right away: the
user first picks how long before the event they want to be reminded.
The parsed event waits on the session (`pending_reminder`) until that
answer arrives.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

REMINDER_PREFIX = "lembrete_"

# button id -> minutes before the event (None: no reminder)
REMINDER_CHOICES: dict[str, int | None] = {
    "lembrete_30": 30,
    "lembrete_60": 60,
    "lembrete_1440": 1440,
    "lembrete_none": None,
}

DEFAULT_TITLE = "Evento"
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 200


def reminder_label(minutes: int | None) -> str:
    if minutes is None:
        return "sem lembrete"
    if minutes == 30:
        return "30 minutos antes"
    if minutes == 60:
        return "1 hora antes"
    if minutes == 1440:
        return "1 dia antes"
    return f"{minutes} minutos antes"


@dataclass(frozen=True)
class ReminderIntent:
    """An event the user described, waiting for a reminder choice.

    `time` is "HH:MM" or None for an all-day event.
    """

    title: str
    occurred_on: date
    time: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "titulo": self.title,
            "descricao": self.description,
            "data": self.occurred_on.isoformat(),
            "hora": self.time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], today: date | None = None) -> "ReminderIntent":
        """Build from stored or assistant JSON (titulo/descricao/data/hora).

        A missing or unreadable date falls back to `today` (default: the
        system date).
        """
        today = today or date.today()
        occurred_on = today
        raw_date = data.get("data")
        if isinstance(raw_date, str) and raw_date:
            try:
                occurred_on = date.fromisoformat(raw_date[:10])
            except ValueError:
                occurred_on = today

        title = str(data.get("titulo") or "").strip()[:MAX_TITLE_LENGTH] or DEFAULT_TITLE
        description = data.get("descricao")
        time = data.get("hora")
        return cls(
            title=title,
            occurred_on=occurred_on,
            time=str(time) if time else None,
            description=str(description)[:MAX_DESCRIPTION_LENGTH] if description else None,
        )


@dataclass(frozen=True)
class StoredEvent:
    event_id: str
    user_id: str
    reminder: ReminderIntent
    remind_minutes_before: int | None = None


class EventStore(Protocol):
    def create(
        self,
        user_id: str,
        reminder: ReminderIntent,
        remind_minutes_before: int | None,
        external_message_id: str | None = None,
    ) -> StoredEvent: ...
