"""Content extraction: InboundMessage -> NormalizedContent.

The primary extractor is chosen by message kind. When it yields nothing, a
fixed list of pure fallback functions is tried in order against the raw
provider dict and the first non-empty string wins.
"""

from __future__ import annotations

from typing import Any, Callable

from .models import InboundMessage, MessageKind, NormalizedContent
from .webhook import dig

AUDIO_MARKER = "[audio:{media_ref}]"


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _text(message: InboundMessage) -> str:
    return _clean(message.raw_text)


def _audio(message: InboundMessage) -> str:
    # Transcription happens downstream; this only flags the media hand-off.
    if not message.media_ref:
        return ""
    return AUDIO_MARKER.format(media_ref=message.media_ref)


def _caption(message: InboundMessage) -> str:
    return _clean(message.raw_text)


def _interactive_label(message: InboundMessage) -> str:
    raw = message.raw
    return (
        _clean(dig(raw, "interactive", "button_reply", "title"))
        or _clean(dig(raw, "interactive", "list_reply", "title"))
        or _clean(dig(raw, "button", "text"))
    )


_PRIMARY: dict[MessageKind, Callable[[InboundMessage], str]] = {
    MessageKind.TEXT: _text,
    MessageKind.AUDIO: _audio,
    MessageKind.IMAGE: _caption,
    MessageKind.VIDEO: _caption,
    MessageKind.INTERACTIVE_REPLY: _interactive_label,
}


def _field(*path: str) -> Callable[[dict[str, Any]], str]:
    def read(raw: dict[str, Any]) -> str:
        return _clean(dig(raw, *path))

    read.__name__ = "field_" + "_".join(path)
    return read


# Priority order for alternate locations of user text.
FALLBACK_FIELDS: tuple[Callable[[dict[str, Any]], str], ...] = (
    _field("text", "body"),
    _field("image", "caption"),
    _field("video", "caption"),
    _field("button", "text"),
    _field("interactive", "nfm_reply", "response_json"),
    _field("interactive", "list_reply", "title"),
    _field("interactive", "button_reply", "title"),
    _field("extended_text_message", "text"),
    _field("caption"),
)


def fallback_text(raw: dict[str, Any]) -> str:
    """Return the first non-empty alternate text field, else ""."""
    for read in FALLBACK_FIELDS:
        value = read(raw)
        if value:
            return value
    return ""


def extract_content(message: InboundMessage) -> NormalizedContent:
    """Normalize a message into text plus optional media reference.

    Never raises: unknown kinds and empty payloads map to empty content,
    which the orchestrator treats as "nothing actionable".
    """
    primary = _PRIMARY.get(message.kind)
    text = primary(message) if primary is not None else ""

    if not text:
        text = fallback_text(message.raw)

    media_ref = message.media_ref if message.kind.is_media else None
    return NormalizedContent(text=text, media_ref=media_ref)
