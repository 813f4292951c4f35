"""WhatsApp Cloud API webhook normalizer.

Handles the verification handshake, optional HMAC signature checks and the
extraction of inbound messages from the payload shapes seen over time:

    (a) {"entry": [{"changes": [{"value": {"messages": [...]}}]}]}
    (b) {"messages": [...]}
    (c) {"message": {...}}

Each shape has its own parser; parsers run in that fixed order and the first
one that finds messages wins. Anything else is the NoMessages variant.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping, Union

from anotatudo.infra.time import utc_now

from .models import PROVIDER_KINDS, InboundMessage, MessageKind

WHATSAPP_OBJECT = "whatsapp_business_account"


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""

    pass


# ---------------------------------------------------------------------------
# Verification handshake
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Accept:
    """Handshake accepted; echo the challenge back with 200."""

    challenge: str


@dataclass(frozen=True)
class Reject:
    """Handshake rejected; caller answers 403."""

    reason: str


VerificationResult = Union[Accept, Reject]


def is_verification_request(params: Mapping[str, Any]) -> bool:
    """True if the query carries hub.mode (GET handshake or a hub.* POST)."""
    return bool(params.get("hub.mode"))


def verify(params: Mapping[str, Any], expected_token: str) -> VerificationResult:
    """Check the subscription handshake.

    Args:
        params: Query parameters (hub.mode, hub.verify_token, hub.challenge).
        expected_token: Configured verify token.

    Returns:
        Accept with the provider challenge, or Reject with a reason code.
    """
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")

    if mode != "subscribe":
        return Reject("invalid_mode")
    if not token:
        return Reject("missing_token")
    if not expected_token:
        return Reject("no_token_configured")
    if not hmac.compare_digest(str(token), expected_token):
        return Reject("token_mismatch")

    return Accept(challenge=str(params.get("hub.challenge") or ""))


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> format.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret for HMAC verification.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith("sha256="):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[7:]  # Remove "sha256=" prefix

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, expected_sig):
        raise SignatureVerificationError("signature mismatch")


# ---------------------------------------------------------------------------
# Payload shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntryChanges:
    """Shape (a): the documented Cloud API envelope."""

    messages: list[dict[str, Any]]
    # wa_id -> profile name, from value.contacts[]
    contact_names: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MessagesArray:
    """Shape (b): a bare top-level messages[] array."""

    messages: list[dict[str, Any]]


@dataclass(frozen=True)
class SingleMessage:
    """Shape (c): one top-level message object."""

    message: dict[str, Any]


@dataclass(frozen=True)
class NoMessages:
    """No known shape matched (status callbacks, other objects, garbage)."""

    reason: str


PayloadShape = Union[EntryChanges, MessagesArray, SingleMessage, NoMessages]


def dig(obj: Any, *keys: str) -> Any:
    """Walk nested dicts, returning None at the first missing/non-dict step."""
    current = obj
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _dict_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _parse_entry_changes(body: dict[str, Any]) -> EntryChanges | None:
    messages: list[dict[str, Any]] = []
    names: dict[str, str] = {}

    for entry in _dict_items(body.get("entry")):
        for change in _dict_items(entry.get("changes")):
            value = change.get("value")
            if not isinstance(value, dict):
                continue
            messages.extend(_dict_items(value.get("messages")))
            for contact in _dict_items(value.get("contacts")):
                wa_id = contact.get("wa_id")
                name = dig(contact, "profile", "name")
                if isinstance(wa_id, str) and isinstance(name, str) and name:
                    names[wa_id] = name

    if not messages:
        return None
    return EntryChanges(messages=messages, contact_names=names)


def _parse_messages_array(body: dict[str, Any]) -> MessagesArray | None:
    messages = _dict_items(body.get("messages"))
    return MessagesArray(messages=messages) if messages else None


def _parse_single_message(body: dict[str, Any]) -> SingleMessage | None:
    message = body.get("message")
    if isinstance(message, dict) and message:
        return SingleMessage(message=message)
    return None


_SHAPE_PARSERS: tuple[Callable[[dict[str, Any]], PayloadShape | None], ...] = (
    _parse_entry_changes,
    _parse_messages_array,
    _parse_single_message,
)


def classify_payload(body: Any) -> PayloadShape:
    """Map a webhook body onto exactly one PayloadShape variant."""
    if not isinstance(body, dict):
        return NoMessages("not_an_object")

    obj_type = body.get("object")
    if obj_type and obj_type != WHATSAPP_OBJECT:
        return NoMessages("foreign_object")

    for parser in _SHAPE_PARSERS:
        shape = parser(body)
        if shape is not None:
            return shape

    return NoMessages("no_messages")


def count_statuses(body: Any) -> int:
    """Count delivery/read status callbacks in a shape (a) body."""
    total = 0
    if not isinstance(body, dict):
        return 0
    for entry in _dict_items(body.get("entry")):
        for change in _dict_items(entry.get("changes")):
            total += len(_dict_items(dig(change, "value", "statuses")))
    return total


# ---------------------------------------------------------------------------
# Message records
# ---------------------------------------------------------------------------

def _infer_type(raw: dict[str, Any]) -> str:
    """Older payloads sometimes omit "type"; infer it from the content key."""
    declared = raw.get("type")
    if isinstance(declared, str) and declared:
        return declared
    for candidate in ("text", "audio", "voice", "image", "video", "interactive", "button"):
        if isinstance(raw.get(candidate), dict):
            return candidate
    return "unknown"


def _reply_id(raw: dict[str, Any]) -> str | None:
    for path in (
        ("interactive", "button_reply", "id"),
        ("interactive", "list_reply", "id"),
        ("button", "payload"),
    ):
        value = dig(raw, *path)
        if isinstance(value, str) and value:
            return value
    return None


def _to_inbound(
    raw: dict[str, Any],
    received_at: datetime,
    contact_names: Mapping[str, str],
) -> InboundMessage | None:
    external_id = raw.get("id")
    sender = raw.get("from")
    if not isinstance(external_id, str) or not external_id:
        return None
    if not isinstance(sender, str) or not sender:
        return None

    provider_type = _infer_type(raw)
    kind = PROVIDER_KINDS.get(provider_type, MessageKind.UNKNOWN)

    raw_text: str | None = None
    media_ref: str | None = None

    if kind is MessageKind.TEXT:
        body = dig(raw, "text", "body")
        raw_text = body if isinstance(body, str) else None
    elif kind.is_media:
        media = raw.get(provider_type)
        media_id = dig(media, "id")
        caption = dig(media, "caption")
        media_ref = media_id if isinstance(media_id, str) and media_id else None
        raw_text = caption if isinstance(caption, str) and caption else None

    timestamp = raw.get("timestamp")

    return InboundMessage(
        external_id=external_id,
        sender_address=sender,
        kind=kind,
        received_at=received_at,
        raw_text=raw_text,
        media_ref=media_ref,
        reply_id=_reply_id(raw) if kind is MessageKind.INTERACTIVE_REPLY else None,
        display_name=contact_names.get(sender),
        provider_timestamp=str(timestamp) if timestamp not in (None, "") else None,
        raw=raw,
    )


def _raw_messages(shape: PayloadShape) -> tuple[list[dict[str, Any]], Mapping[str, str]]:
    if isinstance(shape, EntryChanges):
        return shape.messages, shape.contact_names
    if isinstance(shape, MessagesArray):
        return shape.messages, {}
    if isinstance(shape, SingleMessage):
        return [shape.message], {}
    return [], {}


def extract_messages(
    body: Any,
    received_at: datetime | None = None,
) -> Iterator[InboundMessage]:
    """Yield InboundMessage records from a webhook body.

    Lazy and single-pass. Unknown or malformed bodies yield nothing; entries
    without an id or sender are skipped.

    Args:
        body: Parsed JSON body.
        received_at: Receipt time shared by every message of the batch.
            Defaults to now.
    """
    shape = classify_payload(body)
    stamp = received_at or utc_now()
    raw_messages, contact_names = _raw_messages(shape)

    for raw in raw_messages:
        message = _to_inbound(raw, stamp, contact_names)
        if message is not None:
            yield message
