"""Last human message preview."""

from __future__ import annotations

import re
from collections.abc import Sequence

from ..models import MessageInfo, ParsedLine
from ..transcript import is_message, sender_of, text_of, timestamp_of
from .base import BaseExtractor

PREVIEW_MAX_CHARS = 80
TRUNCATION_MARKER = ".."

_WS_RE = re.compile(r"\s+")


def make_preview(text: str, *, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    """Collapse whitespace and cut to ``max_chars`` (marker included)."""
    flat = _WS_RE.sub(" ", text).strip()
    if len(flat) <= max_chars:
        return flat
    return flat[: max_chars - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


class LastMessageExtractor(BaseExtractor[MessageInfo]):
    id = "last_message"
    persist = True
    cache_ttl = 10.0
    output_type = MessageInfo

    def empty(self) -> MessageInfo:
        return MessageInfo()

    def _extract(self, lines: Sequence[ParsedLine]) -> MessageInfo:
        for index in range(len(lines) - 1, -1, -1):
            line = lines[index]
            if line.payload is None or sender_of(line.payload) != "human":
                continue

            text = text_of(line.payload).strip()
            if not text:
                continue

            turn = sum(1 for prior in lines[: index + 1] if is_message(prior))
            return MessageInfo(
                timestamp=timestamp_of(line.payload),
                preview=make_preview(text),
                sender="human",
                turn_number=turn,
            )
        return self.empty()

    def merge(
        self,
        previous: MessageInfo | None,
        fresh: MessageInfo,
        *,
        prior_messages: int,
    ) -> MessageInfo:
        # Turn numbers from a window are relative to the window start.
        if fresh.is_empty:
            return previous if previous is not None else fresh
        if prior_messages:
            return fresh.model_copy(update={"turn_number": fresh.turn_number + prior_messages})
        return fresh
