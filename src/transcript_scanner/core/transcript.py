"""Helpers for reading fields out of transcript records.

Transcript records come in two shapes: the full form
(``{"type": "user", "message": {"role": "user", "content": [...]}, "timestamp": ...}``)
and a flat form (``{"role": "human", "text": "..."}``). These helpers hide the
difference from the extractors.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .models import ParsedLine, Sender

_ROLE_ALIASES: dict[str, Sender] = {
    "user": "human",
    "human": "human",
    "assistant": "assistant",
    "ai": "assistant",
}

ROLE_KEYS = ("type", "role", "sender")
TEXT_KEYS = ("text", "content")
TIME_KEYS = ("timestamp", "ts", "time")


def sender_of(payload: Any) -> Sender:
    """Normalized author of a record."""
    if not isinstance(payload, Mapping):
        return "unknown"

    for key in ROLE_KEYS:
        val = payload.get(key)
        if isinstance(val, str):
            role = _ROLE_ALIASES.get(val.strip().lower())
            if role is not None:
                return role

    message = payload.get("message")
    if isinstance(message, Mapping):
        val = message.get("role")
        if isinstance(val, str):
            return _ROLE_ALIASES.get(val.strip().lower(), "unknown")
    return "unknown"


def _text_from_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # first non-empty text block only
        for block in content:
            if not isinstance(block, Mapping) or block.get("type") != "text":
                continue
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                return text
    return ""


def text_of(payload: Any) -> str:
    """Extract the human-readable text of a record, or ``""``."""
    if not isinstance(payload, Mapping):
        return ""

    message = payload.get("message")
    if isinstance(message, Mapping) and "content" in message:
        text = _text_from_content(message.get("content"))
        if text:
            return text

    for key in TEXT_KEYS:
        text = _text_from_content(payload.get(key))
        if text:
            return text
    return ""


def parse_timestamp(value: Any) -> int:
    """Convert an ISO-8601 string or epoch number into epoch milliseconds.

    Numbers below 1e11 are taken as seconds. Unparseable or non-finite values
    map to 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0
        if value <= 0:
            return 0
        try:
            return int(value if value >= 1e11 else value * 1000)
        except (OverflowError, ValueError):
            return 0
    if isinstance(value, str) and value.strip():
        try:
            ts = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return 0
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        try:
            return int(ts.timestamp() * 1000)
        except (OverflowError, OSError, ValueError):
            return 0
    return 0


def timestamp_of(payload: Any) -> int:
    if not isinstance(payload, Mapping):
        return 0
    for key in TIME_KEYS:
        if key in payload:
            ts = parse_timestamp(payload[key])
            if ts:
                return ts
    return 0


def is_message(line: ParsedLine) -> bool:
    """Whether a line is a human- or assistant-authored entry."""
    return line.payload is not None and sender_of(line.payload) != "unknown"


def count_messages(lines: list[ParsedLine]) -> int:
    return sum(1 for line in lines if is_message(line))
