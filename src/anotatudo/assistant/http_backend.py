"""HTTP assistant - delegates parsing and reply text to an external service.

Endpoints (all POST, JSON responses):
- /reply   {"template": str, "context": {...}}  -> {"text": str}
- /intent  {"text": str}                         -> {"transaction": {...} | null}
- /media   multipart file + caption              -> {"transaction": {...} | null}
- /reminder {"text": str}                         -> {"reminder": {...} | null}

"transaction" uses the descricao/valor/categoria/data/tipo keys;
"reminder" uses titulo/descricao/data/hora.
"""

from datetime import date
from typing import Any, Callable

import requests
from pydantic import BaseModel, Field, ValidationError

from anotatudo.domain.intents import TransactionIntent
from anotatudo.domain.reminders import ReminderIntent
from anotatudo.observability.correlation import CORRELATION_ID_HEADER, get_correlation_id
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import safe_log_context
from anotatudo.whatsapp.models import MediaAsset

from .client import AssistantError

logger = get_logger(__name__)


# ── Response schemas ─────────────────────────────────────


class ReplyResponse(BaseModel):
    text: str = Field(..., min_length=1)


class IntentResponse(BaseModel):
    transaction: dict[str, Any] | None = None


class ReminderResponse(BaseModel):
    reminder: dict[str, Any] | None = None


class HttpAssistant:
    """Assistant backed by the external service.

    Args:
        base_url: Service root, e.g. "http://assistant:8080".
        timeout: Per-request timeout in seconds.
        session: Optional requests session (tests inject a mock).
        today: Reference date for reminders that arrive without one.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        session: requests.Session | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        if not base_url:
            raise ValueError("ASSISTANT_URL required for the http assistant backend")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._today = today

    def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {CORRELATION_ID_HEADER: get_correlation_id()}
        try:
            response = self._session.post(url, headers=headers, timeout=self._timeout, **kwargs)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(
                "assistant request failed",
                extra={
                    "extra_fields": safe_log_context(path=path, error_type=type(e).__name__)
                },
            )
            raise AssistantError(f"assistant request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise AssistantError("assistant returned invalid json") from e

        if not isinstance(data, dict):
            raise AssistantError("assistant returned a non-object body")
        return data

    def generate_reply_text(self, template_key: str, context: dict[str, Any]) -> str:
        data = self._post("/reply", json={"template": template_key, "context": context})
        try:
            return ReplyResponse.model_validate(data).text
        except ValidationError as e:
            raise AssistantError("assistant reply had no text") from e

    @staticmethod
    def _intent(data: dict[str, Any]) -> TransactionIntent | None:
        try:
            transaction = IntentResponse.model_validate(data).transaction
        except ValidationError as e:
            raise AssistantError("assistant returned a malformed transaction") from e
        if transaction is None:
            return None
        return TransactionIntent.from_dict(transaction)

    def parse_intent(self, text: str) -> TransactionIntent | None:
        return self._intent(self._post("/intent", json={"text": text}))

    def parse_media(self, asset: MediaAsset, caption: str) -> TransactionIntent | None:
        with asset.local_path.open("rb") as fh:
            data = self._post(
                "/media",
                data={"caption": caption, "kind": asset.kind.value},
                files={"file": (asset.local_path.name, fh, asset.mime_type or "application/octet-stream")},
            )
        return self._intent(data)

    def detect_reminder(self, text: str) -> ReminderIntent | None:
        data = self._post("/reminder", json={"text": text})
        try:
            reminder = ReminderResponse.model_validate(data).reminder
        except ValidationError as e:
            raise AssistantError("assistant returned a malformed reminder") from e
        if reminder is None:
            return None
        return ReminderIntent.from_dict(reminder, self._today())
