"""Update value and its closed set of payload kinds."""

from __future__ import annotations

from typing import Literal, TypeAlias, assert_never

import msgspec

from .errors import UpdateDecodeError

__all__ = [
    "CallbackQuery",
    "ChannelPost",
    "ChosenInlineResult",
    "EditedMessage",
    "InlineQuery",
    "Message",
    "Payload",
    "Update",
    "UpdateKind",
    "decode_update",
    "payload_text",
]

UpdateKind: TypeAlias = Literal[
    "message",
    "edited_message",
    "channel_post",
    "callback_query",
    "inline_query",
    "chosen_inline_result",
]

UPDATE_KINDS: tuple[UpdateKind, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "callback_query",
    "inline_query",
    "chosen_inline_result",
)


class _Payload(msgspec.Struct, frozen=True, tag_field="type", forbid_unknown_fields=False):
    pass


class Message(_Payload, tag="message"):
    message_id: int
    text: str | None = None
    date: int | None = None
    reply_to_message_id: int | None = None


class EditedMessage(_Payload, tag="edited_message"):
    message_id: int
    text: str | None = None
    edit_date: int | None = None


class ChannelPost(_Payload, tag="channel_post"):
    message_id: int
    text: str | None = None


class CallbackQuery(_Payload, tag="callback_query"):
    id: str
    data: str | None = None
    message_id: int | None = None
    inline_message_id: str | None = None


class InlineQuery(_Payload, tag="inline_query"):
    id: str
    query: str = ""
    offset: str = ""


class ChosenInlineResult(_Payload, tag="chosen_inline_result"):
    result_id: str
    query: str = ""
    inline_message_id: str | None = None


Payload: TypeAlias = (
    Message
    | EditedMessage
    | ChannelPost
    | CallbackQuery
    | InlineQuery
    | ChosenInlineResult
)


class Update(msgspec.Struct, frozen=True, kw_only=True, forbid_unknown_fields=False):
    update_id: int
    payload: Payload
    chat_id: int | None = None
    user_id: int | None = None
    chat_type: str | None = None

    @property
    def kind(self) -> UpdateKind:
        return payload_kind(self.payload)

    @property
    def text(self) -> str | None:
        return payload_text(self.payload)


def payload_kind(payload: Payload) -> UpdateKind:
    match payload:
        case Message():
            return "message"
        case EditedMessage():
            return "edited_message"
        case ChannelPost():
            return "channel_post"
        case CallbackQuery():
            return "callback_query"
        case InlineQuery():
            return "inline_query"
        case ChosenInlineResult():
            return "chosen_inline_result"
        case _:
            assert_never(payload)


def payload_text(payload: Payload) -> str | None:
    """Text a route can match against: message text, callback data or query."""
    match payload:
        case Message(text=text) | EditedMessage(text=text) | ChannelPost(text=text):
            return text
        case CallbackQuery(data=data):
            return data
        case InlineQuery(query=query) | ChosenInlineResult(query=query):
            return query
        case _:
            assert_never(payload)


_DECODER = msgspec.json.Decoder(Update)


def decode_update(raw: bytes | str) -> Update:
    try:
        return _DECODER.decode(raw)
    except msgspec.DecodeError as exc:
        raise UpdateDecodeError(f"Invalid update: {exc}") from exc


def convert_update(data: dict) -> Update:
    try:
        return msgspec.convert(data, type=Update)
    except msgspec.ValidationError as exc:
        raise UpdateDecodeError(f"Invalid update: {exc}") from exc
