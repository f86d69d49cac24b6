"""Account-switch detection.

A ``/login`` or ``/swap-auth`` command by the human participant counts only once
a later line (within ``lookahead`` lines) confirms the account that is now in
use. The output always describes the current window only and is never
persisted: a stale switch event would make the session-lock consumer re-resolve
the active account.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from ..models import AuthChange, ParsedLine
from ..transcript import sender_of, text_of, timestamp_of
from .base import BaseExtractor
from .commands import parse_command
from .secrets import flatten

AUTH_COMMANDS: frozenset[str] = frozenset({"/login", "/swap-auth"})
LOOKAHEAD_WINDOW = 10

_ACCOUNT = r"([a-zA-Z0-9._+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}|[a-zA-Z0-9.-]+\.[a-z]{2,})"

SUCCESS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Login successful for\s+" + _ACCOUNT, re.IGNORECASE),
    re.compile(r"Successfully logged in as\s+" + _ACCOUNT, re.IGNORECASE),
    re.compile(r"Switched to account\s+" + _ACCOUNT, re.IGNORECASE),
    re.compile(r"Now using account\s+" + _ACCOUNT, re.IGNORECASE),
    re.compile(r"Authentication successful.*?([a-zA-Z0-9._+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})", re.IGNORECASE),
)


def confirmed_account(text: str) -> str | None:
    for pattern in SUCCESS_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1).rstrip(".")
    return None


class AuthChangeDetector(BaseExtractor[tuple[AuthChange, ...]]):
    id = "auth_changes"
    persist = False
    cache_ttl = None
    output_type = tuple[AuthChange, ...]

    def __init__(self, *, lookahead: int = LOOKAHEAD_WINDOW) -> None:
        super().__init__()
        self.lookahead = lookahead

    def empty(self) -> tuple[AuthChange, ...]:
        return ()

    def _command_at(self, line: ParsedLine) -> str | None:
        if line.payload is None or sender_of(line.payload) != "human":
            return None
        parsed = parse_command(text_of(line.payload), AUTH_COMMANDS)
        return parsed[0] if parsed else None

    def _extract(self, lines: Sequence[ParsedLine]) -> tuple[AuthChange, ...]:
        events: list[AuthChange] = []
        i = 0
        while i < len(lines):
            command = self._command_at(lines[i])
            if command is None:
                i += 1
                continue

            command_ts = timestamp_of(lines[i].payload)
            end = min(i + 1 + self.lookahead, len(lines))
            next_i = i + 1
            for j in range(i + 1, end):
                candidate = lines[j]
                if candidate.payload is None:
                    continue
                if self._command_at(candidate) is not None:
                    # superseded by a newer auth command
                    break
                text = text_of(candidate.payload) or flatten(candidate.payload)
                account = confirmed_account(text)
                if account is None:
                    continue
                events.append(
                    AuthChange(
                        timestamp=timestamp_of(candidate.payload) or command_ts,
                        account=account,
                        line=candidate.line_no,
                        command=command,
                    )
                )
                next_i = j + 1
                break
            i = next_i
        return tuple(events)
