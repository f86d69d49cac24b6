"""Short-TTL in-process cache of composite scan results."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from .models import ScanResult

DEFAULT_TTL = 10.0
MAX_ENTRIES = 100
MAX_SIZE_BYTES = 10_000_000
_FALLBACK_SIZE = 1000


@dataclass(frozen=True, slots=True)
class CacheEntry:
    result: ScanResult
    expiry: float  # absolute, on the cache clock
    size: int  # approximate bytes


@dataclass(frozen=True, slots=True)
class CacheStats:
    entries: int
    total_size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


def _detached(result: ScanResult) -> ScanResult:
    metrics = result.metrics
    return replace(
        result,
        metrics=replace(
            metrics,
            extractor_durations=dict(metrics.extractor_durations),
            extractor_errors=dict(metrics.extractor_errors),
        ),
    )


def estimate_size(result: ScanResult) -> int:
    """Rough size in bytes of a result's JSON form."""
    try:
        return len(json.dumps(result.to_dict(), separators=(",", ":")).encode("utf-8"))
    except (TypeError, ValueError):
        return _FALLBACK_SIZE


class ResultCache:
    """Bounded session-id -> ScanResult mapping.

    Not shared across processes. Entries over ``max_entries`` or ``max_bytes``
    are evicted earliest-expiry first.
    """

    def __init__(
        self,
        *,
        ttl: float = DEFAULT_TTL,
        max_entries: int = MAX_ENTRIES,
        max_bytes: int = MAX_SIZE_BYTES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def get(self, session_id: str) -> ScanResult | None:
        entry = self._entries.get(session_id)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() > entry.expiry:
            del self._entries[session_id]
            self._misses += 1
            return None
        self._hits += 1
        return _detached(entry.result)

    def set(self, session_id: str, result: ScanResult, ttl: float | None = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            self._entries.pop(session_id, None)
            return
        self._entries[session_id] = CacheEntry(
            result=_detached(result),
            expiry=self._clock() + ttl,
            size=estimate_size(result),
        )
        self._evict_if_needed()

    def invalidate(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [sid for sid, entry in self._entries.items() if now > entry.expiry]
        for sid in expired:
            del self._entries[sid]
        return len(expired)

    def stats(self) -> CacheStats:
        now = self._clock()
        live = [e for e in self._entries.values() if now <= e.expiry]
        return CacheStats(
            entries=len(live),
            total_size=sum(e.size for e in live),
            hits=self._hits,
            misses=self._misses,
        )

    def _evict_if_needed(self) -> None:
        self.cleanup()
        total = sum(e.size for e in self._entries.values())
        if len(self._entries) <= self.max_entries and total <= self.max_bytes:
            return

        for sid, entry in sorted(self._entries.items(), key=lambda kv: kv[1].expiry):
            if len(self._entries) <= self.max_entries and total <= self.max_bytes:
                break
            del self._entries[sid]
            total -= entry.size
