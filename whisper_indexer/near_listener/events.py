"""
Whisper NEP-297 events: log line to typed domain event.

A contract log line "EVENT_JSON:{...}" carries an envelope
{standard, version, event, data: [...]}. decode_log_line() validates the
envelope; decode_event() turns one data item into a typed variant, or a
DecodeResult carrying the reason it could not.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from whisper_indexer.core.exceptions import EventDecodeError

EVENT_JSON_PREFIX = "EVENT_JSON:"
EVENT_STANDARD = "whisper"


class EventKind(str, Enum):
    MESSAGE_SENT = "message_sent"
    MESSAGE_SENT_WITH_PAYMENT = "message_sent_with_payment"
    KEY_REGISTERED = "key_registered"
    GROUP_CREATED = "group_created"


@dataclass(frozen=True)
class MessageSent:
    sender: str
    recipient: str
    encrypted_body: str
    nonce: str
    recipient_key_version: int
    reply_to: str | None = None

    kind = EventKind.MESSAGE_SENT


@dataclass(frozen=True)
class MessageSentWithPayment:
    sender: str
    recipient: str
    encrypted_body: str
    nonce: str
    recipient_key_version: int
    amount: str
    """yoctoNEAR as a decimal string."""
    reply_to: str | None = None

    kind = EventKind.MESSAGE_SENT_WITH_PAYMENT


@dataclass(frozen=True)
class KeyRegistered:
    account_id: str
    x25519_pubkey: str
    key_version: int
    display_name: str | None = None

    kind = EventKind.KEY_REGISTERED


@dataclass(frozen=True)
class GroupCreated:
    group_id: str
    creator: str
    name: str

    kind = EventKind.GROUP_CREATED


DomainEvent = Union[MessageSent, MessageSentWithPayment, KeyRegistered, GroupCreated]


@dataclass(frozen=True)
class EventEnvelope:
    standard: str
    version: str
    event: str
    data: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class DecodeResult:
    """Either a decoded event or the reason decoding failed."""

    event: DomainEvent | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.event is not None

    @classmethod
    def failure(cls, reason: str) -> "DecodeResult":
        return cls(reason=reason)


UNRECOGNIZED = "unrecognized"


# -----------------------------------------------------------------------------
# Field validation
# -----------------------------------------------------------------------------


def _require_str(item: dict[str, Any], key: str) -> str:
    value = item.get(key)
    if not isinstance(value, str):
        raise EventDecodeError(f"field {key!r} must be a string")
    return value


def _optional_str(item: dict[str, Any], key: str) -> str | None:
    value = item.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise EventDecodeError(f"field {key!r} must be a string or null")
    return value


def _require_int(item: dict[str, Any], key: str) -> int:
    value = item.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise EventDecodeError(f"field {key!r} must be an integer")
    return value


def _require_amount(item: dict[str, Any], key: str) -> str:
    # u128 amounts arrive as strings; accept bare integers too
    value = item.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return value
    raise EventDecodeError(f"field {key!r} must be a decimal amount")


# -----------------------------------------------------------------------------
# Per-variant decoders
# -----------------------------------------------------------------------------


def _decode_message_sent(item: dict[str, Any]) -> MessageSent:
    return MessageSent(
        sender=_require_str(item, "from"),
        recipient=_require_str(item, "to"),
        encrypted_body=_require_str(item, "encrypted_body"),
        nonce=_require_str(item, "nonce"),
        recipient_key_version=_require_int(item, "recipient_key_version"),
        reply_to=_optional_str(item, "reply_to"),
    )


def _decode_message_sent_with_payment(item: dict[str, Any]) -> MessageSentWithPayment:
    return MessageSentWithPayment(
        sender=_require_str(item, "from"),
        recipient=_require_str(item, "to"),
        encrypted_body=_require_str(item, "encrypted_body"),
        nonce=_require_str(item, "nonce"),
        recipient_key_version=_require_int(item, "recipient_key_version"),
        amount=_require_amount(item, "amount"),
        reply_to=_optional_str(item, "reply_to"),
    )


def _decode_key_registered(item: dict[str, Any]) -> KeyRegistered:
    return KeyRegistered(
        account_id=_require_str(item, "account_id"),
        x25519_pubkey=_require_str(item, "x25519_pubkey"),
        key_version=_require_int(item, "key_version"),
        display_name=_optional_str(item, "display_name"),
    )


def _decode_group_created(item: dict[str, Any]) -> GroupCreated:
    return GroupCreated(
        group_id=_require_str(item, "group_id"),
        creator=_require_str(item, "creator"),
        name=_require_str(item, "name"),
    )


DECODERS: dict[EventKind, Callable[[dict[str, Any]], DomainEvent]] = {
    EventKind.MESSAGE_SENT: _decode_message_sent,
    EventKind.MESSAGE_SENT_WITH_PAYMENT: _decode_message_sent_with_payment,
    EventKind.KEY_REGISTERED: _decode_key_registered,
    EventKind.GROUP_CREATED: _decode_group_created,
}


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def decode_log_line(line: str) -> EventEnvelope | None:
    """
    Parse one contract log line.

    Returns None when the line has no EVENT_JSON: marker (free-text log).

    Raises:
        EventDecodeError: marker present but the JSON or envelope shape is invalid.
    """
    if not line.startswith(EVENT_JSON_PREFIX):
        return None
    payload = line[len(EVENT_JSON_PREFIX):]
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"invalid event JSON: {e.msg}", line) from e
    if not isinstance(raw, dict):
        raise EventDecodeError("event envelope must be an object", line)
    standard = raw.get("standard")
    event = raw.get("event")
    data = raw.get("data")
    if not isinstance(standard, str) or not isinstance(event, str):
        raise EventDecodeError("envelope needs string 'standard' and 'event'", line)
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise EventDecodeError("envelope 'data' must be a list of objects", line)
    return EventEnvelope(
        standard=standard,
        version=str(raw.get("version", "")),
        event=event,
        data=tuple(data),
    )


def decode_event(event_tag: str, item: dict[str, Any]) -> DecodeResult:
    """Decode one data item of an envelope whose event tag is event_tag."""
    try:
        kind = EventKind(event_tag)
    except ValueError:
        return DecodeResult.failure(UNRECOGNIZED)
    try:
        return DecodeResult(event=DECODERS[kind](item))
    except EventDecodeError as e:
        return DecodeResult.failure(e.reason)
