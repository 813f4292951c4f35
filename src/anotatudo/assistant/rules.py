"""Deterministic assistant: regex parsing and fixed templates. NO LLM."""

from datetime import date
from typing import Any, Callable

from anotatudo.domain.intents import TransactionIntent
from anotatudo.domain.parsing import parse_reminder, parse_transaction
from anotatudo.domain.reminders import ReminderIntent
from anotatudo.whatsapp.models import MediaAsset
from anotatudo.whatsapp.templates import TEMPLATES, render


class RuleBasedAssistant:
    """Assistant that never leaves the process.

    Media content is not interpreted; only the caption (if any) is parsed.

    Args:
        today: Returns the reference date for relative dates ("ontem").
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def generate_reply_text(self, template_key: str, context: dict[str, Any]) -> str:
        allowed = TEMPLATES.get(template_key, {}).get("allowed_params", [])
        params = {key: context[key] for key in allowed if key in context}
        return render(template_key, params)

    def parse_intent(self, text: str) -> TransactionIntent | None:
        return parse_transaction(text, self._today())

    def parse_media(self, asset: MediaAsset, caption: str) -> TransactionIntent | None:
        if not caption:
            return None
        return parse_transaction(caption, self._today())

    def detect_reminder(self, text: str) -> ReminderIntent | None:
        return parse_reminder(text, self._today())
