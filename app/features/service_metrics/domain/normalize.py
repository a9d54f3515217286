"""
Extraction rules for loosely-typed chat records.

Message and conversation documents come from several client versions, so
no field is guaranteed. Each extractor walks an ordered list of probes and
returns the first usable value, or None.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

Probe = Callable[[Mapping[str, Any]], Any]

IDENTIFIER_KEYS = ("id", "uid", "userId", "user_id")

TIMESTAMP_KEYS = (
    "createdAt",
    "created_at",
    "sentAt",
    "sent_at",
    "timestamp",
    "time",
    "date",
    "createdOn",
    "sent_on",
)

SENDER_KEYS = (
    "senderId",
    "sender_id",
    "userId",
    "user_id",
    "from",
    "fromUserId",
    "authorId",
    "author_id",
    "participantId",
    "participant_id",
)

SENDER_RECORD_KEYS = ("sender", "user", "author")

CONVERSATION_KEYS = (
    "conversationId",
    "conversation_id",
    "chatId",
    "chat_id",
    "threadId",
    "thread_id",
    "roomId",
    "room_id",
    "channelId",
    "channel_id",
)

MESSAGE_ID_KEYS = ("id", "messageId", "message_id", "localId", "local_id")


def key(name: str) -> Probe:
    return lambda record: record.get(name)


def nested(parent: str, name: str) -> Probe:
    def probe(record: Mapping[str, Any]) -> Any:
        child = record.get(parent)
        return child.get(name) if isinstance(child, Mapping) else None

    return probe


def first_match(
    record: Mapping[str, Any], probes: Iterable[Probe], convert: Callable[[Any], Any]
) -> Any:
    """Apply probes in order; return the first converted value that is not None."""
    for probe in probes:
        value = convert(probe(record))
        if value is not None:
            return value
    return None


def is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def normalize_identifier(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if is_number(value):
        if not math.isfinite(value):
            return None
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, Mapping):
        for name in IDENTIFIER_KEYS:
            if name in value:
                return normalize_identifier(value[name])
    return None


def numeric_form(value: Any) -> int | float | None:
    """Numeric variant of an identifier, used for type-sensitive equality queries."""
    if is_number(value):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        value = str(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() else number
    return None


def normalize_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        try:
            return normalize_timestamp(to_datetime())
        except (TypeError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if is_number(value):
        return _from_epoch_seconds(value / 1000)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if is_number(seconds):
            nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
            nanos = nanos if is_number(nanos) else 0
            return _from_epoch_seconds(seconds + (nanos // 1_000_000) / 1000)
    return None


def _from_epoch_seconds(seconds: float) -> datetime | None:
    if not math.isfinite(seconds):
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


TIMESTAMP_PROBES: tuple[Probe, ...] = tuple(key(name) for name in TIMESTAMP_KEYS)
SENDER_PROBES: tuple[Probe, ...] = tuple(key(name) for name in SENDER_KEYS) + tuple(
    nested(parent, name) for parent in SENDER_RECORD_KEYS for name in IDENTIFIER_KEYS
)
CONVERSATION_PROBES: tuple[Probe, ...] = tuple(key(name) for name in CONVERSATION_KEYS)
MESSAGE_ID_PROBES: tuple[Probe, ...] = tuple(key(name) for name in MESSAGE_ID_KEYS)


def extract_timestamp(record: Mapping[str, Any]) -> datetime | None:
    return first_match(record, TIMESTAMP_PROBES, normalize_timestamp)


def extract_sender_id(record: Mapping[str, Any]) -> str | None:
    return first_match(record, SENDER_PROBES, normalize_identifier)


def extract_conversation_id(record: Mapping[str, Any]) -> str | None:
    return first_match(record, CONVERSATION_PROBES, normalize_identifier)


def extract_message_id(record: Mapping[str, Any]) -> str | None:
    return first_match(record, MESSAGE_ID_PROBES, normalize_identifier)


def to_float(value: Any, fallback: float = 0.0) -> float:
    """Finite float or the fallback; Decimal and numeric strings are accepted."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def coerce_key(value: Any) -> int | str | None:
    """Relational ids are numeric in practice; fall back to the trimmed string."""
    number = numeric_form(value)
    if isinstance(number, int):
        return number
    return normalize_identifier(value)
