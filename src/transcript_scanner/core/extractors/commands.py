"""Slash-command detection for human-authored lines."""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Sequence

from ..models import Command, ParsedLine
from ..transcript import sender_of, text_of, timestamp_of
from .base import BaseExtractor

KNOWN_COMMANDS: frozenset[str] = frozenset(
    {
        "/login",
        "/logout",
        "/swap-auth",
        "/clear",
        "/compact",
        "/commit",
        "/config",
        "/cost",
        "/help",
        "/init",
        "/memory",
        "/model",
        "/resume",
        "/review",
        "/status",
    }
)
MAX_PERSISTED_COMMANDS = 100


def split_args(rest: str) -> tuple[str, ...]:
    """Split an argument string shell-style; unbalanced quotes fall back to whitespace."""
    rest = rest.strip()
    if not rest:
        return ()
    try:
        return tuple(shlex.split(rest))
    except ValueError:
        return tuple(rest.split())


def parse_command(text: str, known: Iterable[str] = KNOWN_COMMANDS) -> tuple[str, tuple[str, ...]] | None:
    """Return ``(name, args)`` if ``text`` starts with a known command."""
    s = text.strip()
    if not s.startswith("/"):
        return None

    head, *rest = s.split(maxsplit=1)
    name = head.lower()
    if name not in known:
        return None
    return name, split_args(rest[0] if rest else "")


class CommandDetector(BaseExtractor[tuple[Command, ...]]):
    id = "commands"
    persist = True
    cache_ttl = 10.0
    output_type = tuple[Command, ...]

    def __init__(self, known: Iterable[str] = KNOWN_COMMANDS, *, keep_last: int = MAX_PERSISTED_COMMANDS) -> None:
        super().__init__()
        self.known = frozenset(c.lower() for c in known)
        self.keep_last = keep_last

    def empty(self) -> tuple[Command, ...]:
        return ()

    def _extract(self, lines: Sequence[ParsedLine]) -> tuple[Command, ...]:
        out: list[Command] = []
        for line in lines:
            if line.payload is None or sender_of(line.payload) != "human":
                continue
            parsed = parse_command(text_of(line.payload), self.known)
            if parsed is None:
                continue
            name, args = parsed
            out.append(
                Command(
                    name=name,
                    timestamp=timestamp_of(line.payload),
                    args=args,
                    line=line.line_no,
                )
            )
        return tuple(out)

    def merge(
        self,
        previous: tuple[Command, ...] | None,
        fresh: tuple[Command, ...],
        *,
        prior_messages: int,
    ) -> tuple[Command, ...]:
        merged = (previous or ()) + fresh
        if len(merged) > self.keep_last:
            merged = merged[-self.keep_last :]
        return merged
