"""Leaked-credential detection.

Matches typed patterns against the flattened values of each record. Results are
deduplicated by fingerprint and only ever hold a redacted form of the match.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..models import ParsedLine, Secret
from .base import BaseExtractor

REDACTED_PLACEHOLDER = "***"
MIN_REDACTABLE_LEN = 9


def _mixed_charset(value: str) -> bool:
    return (
        any(c.isupper() for c in value)
        and any(c.islower() for c in value)
        and any(c.isdigit() for c in value)
    )


@dataclass(frozen=True, slots=True)
class SecretPattern:
    type: str
    regex: re.Pattern[str]
    group: int = 0
    check: Callable[[str], bool] | None = None


_PRIVATE_KEY = r"-----BEGIN\s+{kind}PRIVATE\s+KEY-----[\s\S]*?-----END\s+{kind}PRIVATE\s+KEY-----"

SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    SecretPattern("GitHub Token", re.compile(r"\bghp_[A-Za-z0-9_]{36,}\b")),
    SecretPattern("GitHub Token", re.compile(r"\bgithub_pat_[A-Za-z0-9_]{22}_[A-Za-z0-9]{59}\b")),
    SecretPattern("AWS Key", re.compile(r"\b(?:AKIA|ASIA|AROA|AIDA)[A-Z0-9]{16}\b")),
    SecretPattern(
        "AWS Secret Key",
        re.compile(r"(?<![A-Za-z0-9/+=_])[A-Za-z0-9/+=]{40}(?![A-Za-z0-9/+=_])"),
        check=_mixed_charset,
    ),
    SecretPattern("Stripe API Key", re.compile(r"\bsk_(?:live|test)_[A-Za-z0-9]{24,}\b")),
    SecretPattern("Slack Token", re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{10,}\b")),
    SecretPattern(
        "API Key",
        re.compile(
            r"\b(?:api[_-]?key|apikey|auth[_-]?token|access[_-]?token)[\"'\s:=]+([A-Za-z0-9_\-]{20,})\b",
            re.IGNORECASE,
        ),
        group=1,
    ),
    SecretPattern("Private Key", re.compile(_PRIVATE_KEY.format(kind=r"RSA\s+"))),
    SecretPattern("Private Key", re.compile(_PRIVATE_KEY.format(kind=r"EC\s+"))),
    SecretPattern("Private Key", re.compile(_PRIVATE_KEY.format(kind=r"OPENSSH\s+"))),
    SecretPattern("Private Key", re.compile(_PRIVATE_KEY.format(kind=""))),
)


def redact(value: str) -> str:
    """Return ``first4...last4``, or a placeholder for short values."""
    if len(value) < MIN_REDACTABLE_LEN:
        return REDACTED_PLACEHOLDER
    return f"{value[:4]}...{value[-4:]}"


def fingerprint(secret_type: str, value: str) -> str:
    """Dedup key: type keyword plus a short hash of the matched value."""
    digest = hashlib.sha256(value.encode("utf-8", errors="ignore")).hexdigest()[:12]
    key = secret_type.lower().split()[0] if secret_type.strip() else "unknown"
    return f"{key}_{digest}"


def flatten(payload: Any) -> str:
    """Join all scalar values of a record with spaces (keys are skipped)."""
    if isinstance(payload, str):
        return payload
    if payload is None:
        return ""
    if isinstance(payload, (bool, int, float)):
        return str(payload)
    if isinstance(payload, Mapping):
        return " ".join(flatten(v) for v in payload.values())
    if isinstance(payload, (list, tuple)):
        return " ".join(flatten(v) for v in payload)
    return ""


class SecretDetector(BaseExtractor[tuple[Secret, ...]]):
    id = "secrets"
    persist = True
    cache_ttl = 300.0
    output_type = tuple[Secret, ...]

    def __init__(self, patterns: Sequence[SecretPattern] = SECRET_PATTERNS) -> None:
        super().__init__()
        self.patterns = tuple(patterns)

    def empty(self) -> tuple[Secret, ...]:
        return ()

    def _extract(self, lines: Sequence[ParsedLine]) -> tuple[Secret, ...]:
        found: list[Secret] = []
        seen: set[str] = set()

        for line in lines:
            if line.payload is None:
                continue
            text = flatten(line.payload)
            if not text:
                continue

            for pattern in self.patterns:
                for m in pattern.regex.finditer(text):
                    value = m.group(pattern.group)
                    if not value:
                        continue
                    if pattern.check is not None and not pattern.check(value):
                        continue

                    fp = fingerprint(pattern.type, value)
                    if fp in seen:
                        continue
                    seen.add(fp)
                    found.append(
                        Secret(
                            type=pattern.type,
                            fingerprint=fp,
                            line=line.line_no,
                            redacted=redact(value),
                        )
                    )
        return tuple(found)

    def merge(
        self,
        previous: tuple[Secret, ...] | None,
        fresh: tuple[Secret, ...],
        *,
        prior_messages: int,
    ) -> tuple[Secret, ...]:
        if not previous:
            return fresh
        known = {s.fingerprint for s in previous}
        return previous + tuple(s for s in fresh if s.fingerprint not in known)
