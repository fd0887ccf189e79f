import pytest

from roost.errors import UpdateDecodeError
from roost.model import (
    CallbackQuery,
    InlineQuery,
    Message,
    convert_update,
    decode_update,
)


def test_decode_message_update() -> None:
    update = decode_update(
        '{"update_id": 3, "chat_id": 42, "user_id": 7, "chat_type": "group",'
        ' "payload": {"type": "message", "message_id": 11, "text": "/start"}}'
    )

    assert update.update_id == 3
    assert update.chat_id == 42
    assert update.user_id == 7
    assert update.kind == "message"
    assert isinstance(update.payload, Message)
    assert update.text == "/start"


def test_decode_ignores_unknown_fields() -> None:
    update = decode_update(
        b'{"update_id": 1, "user_id": 5, "extra": true,'
        b' "payload": {"type": "inline_query", "id": "q1", "query": "cats", "from": {}}}'
    )

    assert update.chat_id is None
    assert update.kind == "inline_query"
    assert isinstance(update.payload, InlineQuery)
    assert update.text == "cats"


def test_callback_query_text_is_data() -> None:
    update = convert_update(
        {
            "update_id": 9,
            "chat_id": 1,
            "payload": {"type": "callback_query", "id": "c", "data": "vote:yes"},
        }
    )

    assert isinstance(update.payload, CallbackQuery)
    assert update.kind == "callback_query"
    assert update.text == "vote:yes"
    assert update.user_id is None


def test_unknown_payload_kind_rejected() -> None:
    with pytest.raises(UpdateDecodeError, match="Invalid update"):
        decode_update('{"update_id": 1, "payload": {"type": "poll", "id": "x"}}')


def test_malformed_json_rejected() -> None:
    with pytest.raises(UpdateDecodeError):
        decode_update("{not json")


def test_update_is_immutable() -> None:
    update = decode_update(
        '{"update_id": 1, "payload": {"type": "channel_post", "message_id": 1}}'
    )

    with pytest.raises(AttributeError):
        update.chat_id = 5  # type: ignore[misc]
