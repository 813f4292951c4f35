"""Outbound WhatsApp messaging via Meta Cloud API.

Security: NEVER log to_address or body. Only log hashes and lengths.
"""

import json
import time
import urllib.error
import urllib.request
from typing import Any, Sequence

from anotatudo.config import WhatsAppCredentials
from anotatudo.observability.correlation import get_correlation_id
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import hash_identifier, safe_log_context

from .models import ReplyButton

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 5

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2


class OutboundSendError(Exception):
    """Raised when a message could not be handed to the provider."""

    pass


def _do_request(url: str, data: bytes, headers: dict[str, str]) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT) as resp:
        return json.loads(resp.read().decode())


def _message_id(response: dict[str, Any]) -> str:
    messages = response.get("messages") if isinstance(response, dict) else None
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        message_id = messages[0].get("id")
        if isinstance(message_id, str) and message_id:
            return message_id
    raise OutboundSendError("provider response carried no message id")


def text_payload(to_address: str, body: str) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_address,
        "type": "text",
        "text": {"body": body},
    }


def interactive_payload(
    to_address: str, body: str, buttons: Sequence[ReplyButton]
) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_address,
        "type": "interactive",
        "interactive": {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b.id, "title": b.label}}
                    for b in buttons
                ]
            },
        },
    }


class MetaSender:
    """Sends text and quick-reply messages through the Graph API.

    Args:
        credentials: Bearer token, phone number id and API version.
    """

    def __init__(self, credentials: WhatsAppCredentials) -> None:
        self._credentials = credentials

    @property
    def messages_url(self) -> str:
        return f"{self._credentials.base_url}/{self._credentials.phone_number_id}/messages"

    def send_text(self, to_address: str, body: str) -> str:
        """Send a plain text message. Returns the provider message id.

        Raises:
            OutboundSendError: On network/HTTP errors after retry.
        """
        return self._post(text_payload(to_address, body), to_address, body, "text")

    def send_interactive(
        self, to_address: str, body: str, buttons: Sequence[ReplyButton]
    ) -> str:
        """Send a message with reply buttons. Returns the provider message id.

        Raises:
            OutboundSendError: On network/HTTP errors after retry.
        """
        return self._post(
            interactive_payload(to_address, body, buttons), to_address, body, "interactive"
        )

    def _post(self, payload: dict[str, Any], to_address: str, body: str, kind: str) -> str:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._credentials.access_token}",
        }
        data = json.dumps(payload).encode("utf-8")

        # Safe logging context - NEVER include to_address or body
        log_ctx = safe_log_context(
            correlationId=get_correlation_id() or "",
            to_hash=hash_identifier(to_address),
            text_len=len(body),
            message_type=kind,
        )

        logger.info("sending outbound message", extra={"extra_fields": log_ctx})

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = _do_request(self.messages_url, data, headers)
            except (urllib.error.URLError, TimeoutError) as e:
                # HTTPError subclasses URLError; only network errors and 5xx retry
                is_http = isinstance(e, urllib.error.HTTPError)
                is_5xx = is_http and 500 <= e.code < 600
                retryable = is_5xx or not is_http

                if attempt < MAX_RETRIES and retryable:
                    logger.warning(
                        "outbound send failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, error_type=type(e).__name__
                            )
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue

                logger.error(
                    "outbound send failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                raise OutboundSendError(f"send failed: {type(e).__name__}") from e

            message_id = _message_id(response)
            logger.info(
                "outbound message sent",
                extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
            )
            return message_id

        raise OutboundSendError("send failed: retries exhausted")
