"""Scanner coordinator.

This module is the integration point that wires the reader, parser,
extractors, state store and result cache into one scan of a transcript.

Flow: validate -> cache -> stat -> load state -> incremental read -> parse
-> extractors (concurrent, per-extractor timeout) -> assemble -> save state
-> cache -> return. ``scan`` never raises; every failure degrades to an empty
or stale-but-valid result.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .cache import ResultCache
from .config import ScannerConfig, resolve_scanner_config
from .extractors import Extractor, ExtractorRegistry, default_registry
from .models import (
    AuthChange,
    Command,
    MessageInfo,
    ParsedLine,
    ReadResult,
    ScanMetrics,
    ScanResult,
    ScanState,
    Secret,
    TranscriptHealth,
)
from .parser import count_newlines, parse_lines
from .reader import read_incremental, stat_mtime_ms
from .state import StateStore, is_valid_session_id
from .transcript import count_messages

logger = logging.getLogger(__name__)


def format_age(age_seconds: float) -> str:
    """Compact age string: ``<1m``, ``12m``, ``3h``, ``2d``."""
    if age_seconds < 60:
        return "<1m"
    if age_seconds < 3600:
        return f"{int(age_seconds // 60)}m"
    if age_seconds < 86400:
        return f"{int(age_seconds // 3600)}h"
    return f"{int(age_seconds // 86400)}d"


def empty_result(
    session_id: str,
    *,
    health: TranscriptHealth | None = None,
    duration_ms: float = 0.0,
) -> ScanResult:
    return ScanResult(
        session_id=session_id if isinstance(session_id, str) else "",
        health=health or TranscriptHealth(),
        metrics=ScanMetrics(duration_ms=duration_ms),
    )


@dataclass(frozen=True, slots=True)
class _Outcome:
    """Result of one extractor call (value is None on failure/timeout)."""

    extractor_id: str
    value: Any
    duration_ms: float
    error: str | None = None


@dataclass(slots=True)
class _PendingScan:
    session_id: str
    started: float
    state: ScanState
    read: ReadResult
    lines: list[ParsedLine]
    previous: dict[str, Any]


def _discard_result(task: asyncio.Future[Any]) -> None:
    # abandoned tasks may still finish later; retrieve so asyncio does not warn
    if not task.cancelled():
        task.exception()


class TranscriptScanner:
    """Incremental multi-signal scanner for session transcripts.

    Holds its own registry, state store and cache; build one per process (or
    per test) and reuse it.
    """

    def __init__(
        self,
        config: ScannerConfig | None = None,
        *,
        registry: ExtractorRegistry | None = None,
        state_store: StateStore | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        self.config = config or ScannerConfig()
        self.registry = registry if registry is not None else default_registry()
        self.state_store = state_store or StateStore(
            self.config.state_dir, self.config.resolved_legacy_dir
        )
        self.cache = cache or ResultCache(
            ttl=self.config.cache_ttl,
            max_entries=self.config.max_cache_entries,
            max_bytes=self.config.max_cache_bytes,
        )

    # -- public API ---------------------------------------------------------

    def scan(self, session_id: str, transcript_path: str | os.PathLike[str]) -> ScanResult:
        """Scan a transcript and return the composite result. Never raises."""
        started = time.perf_counter()
        try:
            begun = self._begin(session_id, transcript_path, started)
            if isinstance(begun, ScanResult):
                return begun
            outcomes = self._run_extractors_blocking(begun.lines)
            return self._finish(begun, outcomes)
        except Exception:
            logger.exception("Unexpected failure scanning session %s", session_id)
            return empty_result(session_id, duration_ms=_elapsed_ms(started))

    async def scan_async(
        self, session_id: str, transcript_path: str | os.PathLike[str]
    ) -> ScanResult:
        """Same as :meth:`scan`, for callers already running an event loop."""
        started = time.perf_counter()
        try:
            begun = self._begin(session_id, transcript_path, started)
            if isinstance(begun, ScanResult):
                return begun
            outcomes = await self.run_extractors(begun.lines)
            return self._finish(begun, outcomes)
        except Exception:
            logger.exception("Unexpected failure scanning session %s", session_id)
            return empty_result(session_id, duration_ms=_elapsed_ms(started))

    def forget(self, session_id: str) -> bool:
        """Drop cached and persisted data for a session."""
        self.cache.invalidate(session_id)
        return self.state_store.delete(session_id)

    # -- validation ---------------------------------------------------------

    def _valid_inputs(self, session_id: object, transcript_path: object) -> Path | None:
        if not is_valid_session_id(session_id, max_length=self.config.max_session_id_length):
            return None
        try:
            raw = os.fspath(transcript_path)  # type: ignore[arg-type]
        except TypeError:
            return None
        if not isinstance(raw, str) or not raw or "\x00" in raw:
            return None
        if len(raw) > self.config.max_path_length or not os.path.isabs(raw):
            return None
        return Path(raw)

    # -- pipeline stages ----------------------------------------------------

    def _begin(
        self,
        session_id: str,
        transcript_path: str | os.PathLike[str],
        started: float,
    ) -> ScanResult | _PendingScan:
        """Steps up to parsing. Returns a finished result for early exits."""
        path = self._valid_inputs(session_id, transcript_path)
        if path is None:
            logger.debug("Rejected scan input session=%r path=%r", session_id, transcript_path)
            return empty_result(session_id, duration_ms=_elapsed_ms(started))

        cached = self.cache.get(session_id)
        if cached is not None:
            return replace(
                cached,
                metrics=replace(
                    cached.metrics,
                    cache_hit=True,
                    duration_ms=_elapsed_ms(started),
                ),
            )

        try:
            st = path.stat()
        except FileNotFoundError:
            logger.warning("Transcript not found for session %s: %s", session_id, path)
            return empty_result(session_id, duration_ms=_elapsed_ms(started))
        except OSError as exc:
            logger.warning("Cannot stat transcript for session %s: %s", session_id, exc)
            return empty_result(session_id, duration_ms=_elapsed_ms(started))

        if st.st_size > self.config.max_file_size:
            logger.warning(
                "Transcript for session %s is %d bytes (limit %d); skipping scan",
                session_id,
                st.st_size,
                self.config.max_file_size,
            )
            return empty_result(
                session_id,
                health=self._health(st.st_size, stat_mtime_ms(st), message_count=0),
                duration_ms=_elapsed_ms(started),
            )

        state = self.state_store.load(session_id) or self.state_store.create_initial(session_id)

        try:
            read = read_incremental(path, state.last_offset, state.last_mtime)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read transcript for session %s: %s", session_id, exc)
            return empty_result(session_id, duration_ms=_elapsed_ms(started))

        if read.truncated:
            logger.info(
                "Transcript for session %s shrank below offset %d; rescanning",
                session_id,
                state.last_offset,
            )
            state = state.model_copy(
                update={"extractor_data": {}, "line_count": 0, "message_count": 0}
            )

        lines = parse_lines(read.data, start_line=state.line_count)
        previous = {
            ex.id: ex.load(state.extractor_data.get(ex.id))
            for ex in self.registry
            if ex.persist
        }

        pending = _PendingScan(
            session_id=session_id,
            started=started,
            state=state,
            read=read,
            lines=lines,
            previous=previous,
        )
        if read.cache_hit:
            # nothing new: rebuild from persisted outputs
            return self._finish(pending, None)
        return pending

    def _run_extractors_blocking(self, lines: Sequence[ParsedLine]) -> list[_Outcome]:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.run_extractors(lines))

        # called from inside a running loop: use a private loop on a worker thread
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="transcript-scan") as pool:
            return pool.submit(asyncio.run, self.run_extractors(lines)).result()

    async def run_extractors(self, lines: Sequence[ParsedLine]) -> list[_Outcome]:
        """Run every registered extractor concurrently, each with its own timeout."""
        extractors = list(self.registry)
        if not extractors:
            return []

        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(
            max_workers=len(extractors), thread_name_prefix="extractor"
        )
        try:
            return list(
                await asyncio.gather(
                    *(self._race(ex, lines, loop, executor) for ex in extractors)
                )
            )
        finally:
            # timed-out sync extractors keep running; do not wait for them
            executor.shutdown(wait=False, cancel_futures=True)

    async def _race(
        self,
        extractor: Extractor[Any],
        lines: Sequence[ParsedLine],
        loop: asyncio.AbstractEventLoop,
        executor: ThreadPoolExecutor,
    ) -> _Outcome:
        start = time.perf_counter()
        task = asyncio.ensure_future(_invoke(extractor, lines, loop, executor))
        done, _ = await asyncio.wait({task}, timeout=self.config.extractor_timeout)
        duration = _elapsed_ms(start)

        if not done:
            task.add_done_callback(_discard_result)
            logger.warning(
                "Extractor %s timed out after %.1f ms; using last persisted value",
                extractor.id,
                duration,
            )
            return _Outcome(extractor.id, None, duration, error="timeout")

        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Extractor %s failed: %s; using last persisted value",
                extractor.id,
                exc,
                exc_info=exc,
            )
            return _Outcome(extractor.id, None, duration, error=f"{type(exc).__name__}: {exc}")

        return _Outcome(extractor.id, task.result(), duration)

    def _finish(self, pending: _PendingScan, outcomes: list[_Outcome] | None) -> ScanResult:
        """Merge outputs, assemble the result, persist state and cache it."""
        state = pending.state
        read = pending.read
        by_id = {o.extractor_id: o for o in outcomes or ()}

        values: dict[str, Any] = {}
        durations: dict[str, float] = {}
        errors: dict[str, str] = {}

        for ex in self.registry:
            previous = pending.previous.get(ex.id)
            outcome = by_id.get(ex.id)
            if outcome is not None:
                durations[ex.id] = round(outcome.duration_ms, 3)

            if outcome is None or outcome.error is not None:
                if outcome is not None:
                    errors[ex.id] = outcome.error or "error"
                fallback = previous if ex.persist else None
                values[ex.id] = fallback if fallback is not None else ex.empty()
            elif ex.persist:
                values[ex.id] = ex.merge(previous, outcome.value, prior_messages=state.message_count)
            else:
                values[ex.id] = outcome.value

        message_count = state.message_count + count_messages(pending.lines)
        health = self._health(read.size, read.mtime, message_count=message_count)

        result = ScanResult(
            session_id=pending.session_id,
            last_message=_typed(values.get("last_message"), MessageInfo, MessageInfo()),
            secrets=_typed_seq(values.get("secrets"), Secret),
            commands=_typed_seq(values.get("commands"), Command),
            auth_changes=_typed_seq(values.get("auth_changes"), AuthChange),
            health=health,
            metrics=ScanMetrics(
                duration_ms=_elapsed_ms(pending.started),
                lines_scanned=len(pending.lines),
                bytes_read=len(read.data),
                cache_hit=False,
                extractor_durations=durations,
                extractor_errors=errors,
            ),
        )

        persisted: dict[str, Any] = {}
        for ex in self.registry:
            if not ex.persist:
                continue
            try:
                persisted[ex.id] = ex.dump(values[ex.id])
            except (TypeError, ValueError) as exc:
                logger.warning("Not persisting %s output: %s", ex.id, exc)

        new_state = self.state_store.update(
            state,
            read.new_offset,
            read.mtime,
            persisted,
            line_count=state.line_count + count_newlines(read.data),
            message_count=message_count,
        )
        self.state_store.save(pending.session_id, new_state)
        self.cache.set(pending.session_id, result, ttl=self.config.cache_ttl)
        return result

    def _health(self, size: int, mtime_ms: float, *, message_count: int) -> TranscriptHealth:
        age = max(0.0, time.time() - mtime_ms / 1000) if mtime_ms else 0.0
        return TranscriptHealth(
            exists=True,
            size_bytes=size,
            last_modified=mtime_ms,
            age_seconds=round(age, 3),
            last_modified_ago=format_age(age),
            message_count=message_count,
        )


async def _invoke(
    extractor: Extractor[Any],
    lines: Sequence[ParsedLine],
    loop: asyncio.AbstractEventLoop,
    executor: ThreadPoolExecutor,
) -> Any:
    if inspect.iscoroutinefunction(extractor.extract):
        return await extractor.extract(lines)
    value = await loop.run_in_executor(executor, extractor.extract, lines)
    if inspect.isawaitable(value):
        value = await value
    return value


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _typed(value: Any, cls: type, default: Any) -> Any:
    return value if isinstance(value, cls) else default


def _typed_seq(value: Any, cls: type) -> tuple[Any, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(v for v in value if isinstance(v, cls))


_default_scanner: TranscriptScanner | None = None


def get_default_scanner() -> TranscriptScanner:
    """Process-wide scanner built from environment config on first use."""
    global _default_scanner
    if _default_scanner is None:
        try:
            cfg = resolve_scanner_config()
        except ValueError as exc:
            logger.error("Invalid scanner configuration, using defaults: %s", exc)
            cfg = ScannerConfig()
        _default_scanner = TranscriptScanner(cfg)
    return _default_scanner


def scan(session_id: str, transcript_path: str | os.PathLike[str]) -> ScanResult:
    """Scan with the process-wide default scanner. Never raises."""
    return get_default_scanner().scan(session_id, transcript_path)
