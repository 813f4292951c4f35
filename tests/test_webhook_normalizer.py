"""Tests for webhook payload classification and InboundMessage extraction."""

from tests.helpers import RECEIVED_AT, meta_payload, text_message

from anotatudo.whatsapp.models import MessageKind
from anotatudo.whatsapp.webhook import (
    EntryChanges,
    MessagesArray,
    NoMessages,
    SingleMessage,
    classify_payload,
    count_statuses,
    dig,
    extract_messages,
)


def _extract(body):
    return list(extract_messages(body, received_at=RECEIVED_AT))


class TestClassifyPayload:
    """Each body maps onto exactly one shape."""

    def test_entry_changes(self):
        shape = classify_payload(meta_payload([text_message("Oi")]))
        assert isinstance(shape, EntryChanges)
        assert len(shape.messages) == 1

    def test_messages_array(self):
        shape = classify_payload({"messages": [text_message("Oi")]})
        assert isinstance(shape, MessagesArray)

    def test_single_message(self):
        shape = classify_payload({"message": text_message("Oi")})
        assert isinstance(shape, SingleMessage)

    def test_status_only_payload(self):
        body = meta_payload([], statuses=[{"id": "wamid.x", "status": "delivered"}])
        assert classify_payload(body) == NoMessages("no_messages")

    def test_foreign_object(self):
        body = {"object": "page", "messages": [text_message("Oi")]}
        assert classify_payload(body) == NoMessages("foreign_object")

    def test_not_an_object(self):
        assert classify_payload([1, 2, 3]) == NoMessages("not_an_object")
        assert classify_payload(None) == NoMessages("not_an_object")

    def test_empty_dict(self):
        assert classify_payload({}) == NoMessages("no_messages")

    def test_malformed_entry_is_no_messages(self):
        body = {"object": "whatsapp_business_account", "entry": "garbage"}
        assert isinstance(classify_payload(body), NoMessages)


class TestExtractMessages:
    def test_text_message_fields(self):
        [msg] = _extract(meta_payload([text_message("Almoço R$ 45")]))

        assert msg.external_id == "wamid.in-1"
        assert msg.sender_address == "5511999998888"
        assert msg.kind is MessageKind.TEXT
        assert msg.raw_text == "Almoço R$ 45"
        assert msg.received_at == RECEIVED_AT
        assert msg.provider_timestamp == "1710072000"

    def test_same_message_equal_across_shapes(self):
        raw = text_message("Almoço R$ 45")

        from_entry = _extract(meta_payload([raw]))
        from_array = _extract({"messages": [raw]})
        from_single = _extract({"message": raw})

        assert from_entry == from_array == from_single

    def test_display_name_from_contacts(self):
        body = meta_payload(
            [text_message("Oi")],
            contacts=[{"wa_id": "5511999998888", "profile": {"name": "Maria Souza"}}],
        )
        [msg] = _extract(body)
        assert msg.display_name == "Maria Souza"

    def test_display_name_absent_without_contacts(self):
        [msg] = _extract({"messages": [text_message("Oi")]})
        assert msg.display_name is None

    def test_order_preserved_across_entries(self):
        body = {
            "object": "whatsapp_business_account",
            "entry": [
                {"changes": [{"value": {"messages": [text_message("a", "wamid.1")]}}]},
                {"changes": [{"value": {"messages": [text_message("b", "wamid.2"), text_message("c", "wamid.3")]}}]},
            ],
        }
        assert [m.external_id for m in _extract(body)] == ["wamid.1", "wamid.2", "wamid.3"]

    def test_message_without_sender_skipped(self):
        bad = {"id": "wamid.bad", "type": "text", "text": {"body": "x"}}
        body = {"messages": [bad, text_message("ok", "wamid.good")]}
        assert [m.external_id for m in _extract(body)] == ["wamid.good"]

    def test_message_without_id_skipped(self):
        bad = {"from": "5511", "type": "text", "text": {"body": "x"}}
        assert _extract({"messages": [bad]}) == []

    def test_status_only_yields_nothing(self):
        body = meta_payload([], statuses=[{"id": "wamid.x", "status": "read"}])
        assert _extract(body) == []

    def test_audio_and_voice(self):
        audio = {"id": "w1", "from": "55", "type": "audio", "audio": {"id": "media-1"}}
        voice = {"id": "w2", "from": "55", "type": "voice", "voice": {"id": "media-2"}}
        first, second = _extract({"messages": [audio, voice]})

        assert first.kind is MessageKind.AUDIO
        assert first.media_ref == "media-1"
        assert second.kind is MessageKind.AUDIO
        assert second.media_ref == "media-2"

    def test_image_with_caption(self):
        image = {"id": "w1", "from": "55", "type": "image", "image": {"id": "m1", "caption": "Mercado R$ 80"}}
        [msg] = _extract({"messages": [image]})

        assert msg.kind is MessageKind.IMAGE
        assert msg.media_ref == "m1"
        assert msg.raw_text == "Mercado R$ 80"

    def test_type_inferred_when_missing(self):
        raw = {"id": "w1", "from": "55", "text": {"body": "oi"}}
        [msg] = _extract({"messages": [raw]})
        assert msg.kind is MessageKind.TEXT
        assert msg.raw_text == "oi"

    def test_button_reply_id(self):
        raw = {
            "id": "w1",
            "from": "55",
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "delete_abc", "title": "Excluir"}},
        }
        [msg] = _extract({"messages": [raw]})
        assert msg.kind is MessageKind.INTERACTIVE_REPLY
        assert msg.reply_id == "delete_abc"

    def test_template_button_payload(self):
        raw = {"id": "w1", "from": "55", "type": "button", "button": {"payload": "edit_1", "text": "Editar"}}
        [msg] = _extract({"messages": [raw]})
        assert msg.kind is MessageKind.INTERACTIVE_REPLY
        assert msg.reply_id == "edit_1"

    def test_unknown_type(self):
        raw = {"id": "w1", "from": "55", "type": "sticker", "sticker": {"id": "s1"}}
        [msg] = _extract({"messages": [raw]})
        assert msg.kind is MessageKind.UNKNOWN
        assert msg.media_ref is None

    def test_is_lazy_iterator(self):
        iterator = extract_messages({"messages": [text_message("Oi")]})
        assert iter(iterator) is iterator


class TestHelpers:
    def test_count_statuses(self):
        body = meta_payload(
            [text_message("Oi")],
            statuses=[{"id": "a", "status": "sent"}, {"id": "b", "status": "read"}],
        )
        assert count_statuses(body) == 2
        assert count_statuses("nope") == 0

    def test_dig(self):
        assert dig({"a": {"b": {"c": 1}}}, "a", "b", "c") == 1
        assert dig({"a": {"b": 1}}, "a", "b", "c") is None
        assert dig(None, "a") is None
