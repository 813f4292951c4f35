"""WhatsApp message models.

PII (sender_address, raw_text, display_name) lives only in memory while a
message is processed. Never log these fields; use redaction helpers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class MessageKind(str, Enum):
    """Inbound message kinds the pipeline knows how to route."""

    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"
    INTERACTIVE_REPLY = "interactive_reply"
    UNKNOWN = "unknown"

    @property
    def is_media(self) -> bool:
        return self in (MessageKind.AUDIO, MessageKind.IMAGE, MessageKind.VIDEO)


# Provider "type" values mapped onto MessageKind. "button" is the quick-reply
# event sent for template buttons; "interactive" covers button/list replies.
PROVIDER_KINDS: dict[str, MessageKind] = {
    "text": MessageKind.TEXT,
    "audio": MessageKind.AUDIO,
    "voice": MessageKind.AUDIO,
    "image": MessageKind.IMAGE,
    "video": MessageKind.VIDEO,
    "interactive": MessageKind.INTERACTIVE_REPLY,
    "button": MessageKind.INTERACTIVE_REPLY,
}


@dataclass(frozen=True)
class InboundMessage:
    """One user message parsed from a webhook entry. Immutable once parsed.

    `raw` keeps the provider dict for the fallback extraction chain; it is
    excluded from equality so the same message parsed from different payload
    shapes compares equal.
    """

    external_id: str
    sender_address: str
    kind: MessageKind
    received_at: datetime
    raw_text: str | None = None
    media_ref: str | None = None
    reply_id: str | None = None
    display_name: str | None = None
    provider_timestamp: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class NormalizedContent:
    """Textual payload extracted from an InboundMessage."""

    text: str = ""
    media_ref: str | None = None

    @property
    def has_content(self) -> bool:
        """True when there is text or media to act on."""
        return bool(self.text) or self.media_ref is not None


@dataclass(frozen=True)
class MediaAsset:
    """Downloaded media file in the scratch directory."""

    external_id: str
    local_path: Path
    mime_type: str
    kind: MessageKind


@dataclass(frozen=True)
class ReplyButton:
    """Quick-reply button. Meta limits titles to 20 chars and ids to 256."""

    id: str
    label: str


@dataclass(frozen=True)
class OutboundReply:
    """Message to send back. Constructed, sent once, discarded."""

    to_address: str
    body: str
    buttons: tuple[ReplyButton, ...] = ()

    @property
    def is_interactive(self) -> bool:
        return len(self.buttons) > 0
