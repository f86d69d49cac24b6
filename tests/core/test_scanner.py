from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any

import pytest

from transcript_scanner.core import scanner as scanner_module
from transcript_scanner.core.extractors import (
    CommandDetector,
    ExtractorRegistry,
    LastMessageExtractor,
)
from transcript_scanner.core.models import MessageInfo
from transcript_scanner.core.scanner import TranscriptScanner, format_age


def _content(result) -> dict[str, Any]:
    out = result.to_dict()
    out.pop("metrics")
    return out


class SlowCommands(CommandDetector):
    """Command detector whose calls can be made to stall."""

    def __init__(self) -> None:
        super().__init__()
        self.delay = 0.0

    def _extract(self, lines):
        time.sleep(self.delay)
        return super()._extract(lines)


class Raising:
    id = "raising"
    persist = True
    cache_ttl = None

    def extract(self, lines):
        raise RuntimeError("boom")

    def empty(self):
        return 0

    def merge(self, previous, fresh, *, prior_messages):
        return fresh

    def dump(self, value):
        return value

    def load(self, raw):
        return raw


class AsyncLineCounter:
    id = "line_counter"
    persist = True
    cache_ttl = None

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def extract(self, lines):
        await asyncio.sleep(self.delay)
        return len(lines)

    def empty(self):
        return 0

    def merge(self, previous, fresh, *, prior_messages):
        return (previous or 0) + fresh

    def dump(self, value):
        return value

    def load(self, raw):
        return raw if isinstance(raw, int) else None


# -- input validation -------------------------------------------------------------


@pytest.mark.parametrize("sid", ["../evil", "a/b", "", "x" * 129, "semi;colon"])
def test_invalid_session_id_does_no_io(
    sid: str, tmp_path: Path, make_scanner, monkeypatch: pytest.MonkeyPatch
) -> None:
    scanner = make_scanner()
    transcript = tmp_path / "t.jsonl"
    transcript.write_text("{}\n", encoding="utf-8")

    calls: list[Any] = []
    real_stat = os.stat

    def counting_stat(*args, **kwargs):
        calls.append(args)
        return real_stat(*args, **kwargs)

    monkeypatch.setattr(os, "stat", counting_stat)
    result = scanner.scan(sid, str(transcript))
    monkeypatch.undo()

    assert calls == []
    assert not result.health.exists
    assert result.secrets == () and result.commands == () and result.auth_changes == ()
    assert result.last_message == MessageInfo()
    assert not scanner.config.state_dir.exists()


def test_relative_or_oversized_path_is_rejected(tmp_path: Path, make_scanner) -> None:
    scanner = make_scanner(max_path_length=64)

    assert not scanner.scan("s1", "relative/t.jsonl").health.exists
    assert not scanner.scan("s1", "/" + "a" * 100).health.exists
    assert not scanner.scan("s1", None).health.exists  # type: ignore[arg-type]
    assert not scanner.config.state_dir.exists()


# -- basic scans -------------------------------------------------------------------


def test_empty_transcript(tmp_path: Path, make_scanner) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_bytes(b"")

    result = make_scanner().scan("s1", str(transcript))

    assert result.health.exists
    assert result.health.size_bytes == 0
    assert result.secrets == ()
    assert result.commands == ()
    assert result.auth_changes == ()
    assert result.last_message == MessageInfo()


def test_missing_transcript(tmp_path: Path, make_scanner, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        result = make_scanner().scan("s1", str(tmp_path / "missing.jsonl"))

    assert not result.health.exists
    assert result.health.last_modified_ago == "never"
    assert "not found" in caplog.text


def test_oversized_transcript_is_skipped(
    tmp_path: Path, make_scanner, write_transcript, human, caplog: pytest.LogCaptureFixture
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])
    scanner = make_scanner(max_file_size=10)

    with caplog.at_level(logging.WARNING):
        result = scanner.scan("s1", str(transcript))

    assert result.commands == ()
    assert result.health.exists
    assert result.health.size_bytes == transcript.stat().st_size
    assert "limit 10" in caplog.text
    assert scanner.state_store.load("s1") is None


def test_full_scan_collects_all_signals(
    tmp_path: Path, make_scanner, write_transcript, human, assistant, github_token
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(
        transcript,
        [
            human("/login"),
            assistant("Successfully logged in as dev@example.com"),
            human(f"use {github_token} for the API"),
            "{garbage",
            assistant("ok"),
            human("/model opus"),
            human("what changed in the parser?", ts="2025-12-30T10:00:00Z"),
        ],
    )
    scanner = make_scanner()

    result = scanner.scan("s1", str(transcript))

    assert result.last_message.preview == "what changed in the parser?"
    assert result.last_message.turn_number == 6
    assert [s.type for s in result.secrets] == ["GitHub Token"]
    assert [(c.name, c.line) for c in result.commands] == [("/login", 1), ("/model", 6)]
    assert [(a.account, a.line) for a in result.auth_changes] == [("dev@example.com", 2)]
    assert result.health.message_count == 6
    assert result.health.size_bytes == transcript.stat().st_size
    assert result.metrics.lines_scanned == 7
    assert result.metrics.bytes_read == transcript.stat().st_size
    assert not result.metrics.cache_hit
    assert set(result.metrics.extractor_durations) == {
        "last_message",
        "secrets",
        "commands",
        "auth_changes",
    }
    assert result.metrics.extractor_errors == {}

    state = scanner.state_store.load("s1")
    assert state is not None
    assert state.last_offset == transcript.stat().st_size
    assert state.line_count == 7
    assert state.message_count == 6
    assert set(state.extractor_data) == {"last_message", "secrets", "commands"}


def test_secret_never_leaves_in_clear(
    tmp_path: Path, make_scanner, write_transcript, human, github_token
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(
        transcript, [human(github_token), human(f"again {github_token}"), human("thanks")]
    )
    scanner = make_scanner()

    result = scanner.scan("s1", str(transcript))

    assert len(result.secrets) == 1
    assert result.secrets[0].redacted == f"{github_token[:4]}...{github_token[-4:]}"
    assert github_token not in json.dumps(result.to_dict())
    assert github_token not in scanner.state_store.state_path("s1").read_text(encoding="utf-8")


# -- caching / idempotence ------------------------------------------------------------


def test_second_scan_served_from_cache(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help"), human("hello")])
    scanner = make_scanner(cache_ttl=10.0)

    first = scanner.scan("s1", str(transcript))
    second = scanner.scan("s1", str(transcript))

    assert not first.metrics.cache_hit
    assert second.metrics.cache_hit
    assert _content(second) == _content(first)
    assert second.metrics.lines_scanned == first.metrics.lines_scanned


def test_mutating_a_returned_result_does_not_leak_into_cache_hits(
    tmp_path: Path, make_scanner, write_transcript, human
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help"), human("hello")])
    scanner = make_scanner(cache_ttl=10.0)

    first = scanner.scan("s1", str(transcript))
    first.metrics.extractor_durations["injected"] = 1.0
    first.metrics.extractor_errors["commands"] = "tampered"
    second = scanner.scan("s1", str(transcript))

    assert second.metrics.cache_hit
    assert "injected" not in second.metrics.extractor_durations
    assert "commands" not in second.metrics.extractor_errors
    assert set(second.metrics.extractor_durations) == {"last_message", "secrets", "commands", "auth_changes"}


def test_unchanged_file_without_cache_rebuilds_from_state(
    tmp_path: Path, make_scanner, write_transcript, human, github_token
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help"), human(github_token), human("hello")])
    scanner = make_scanner()

    first = scanner.scan("s1", str(transcript))
    second = scanner.scan("s1", str(transcript))

    assert not second.metrics.cache_hit
    assert second.metrics.bytes_read == 0
    assert second.metrics.lines_scanned == 0
    assert second.metrics.extractor_durations == {}
    assert second.last_message == first.last_message
    assert second.secrets == first.secrets
    assert second.commands == first.commands
    assert second.health.message_count == first.health.message_count


def test_fresh_scanner_reuses_persisted_state(
    tmp_path: Path, make_scanner, write_transcript, human
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/cost"), human("hello")])

    first = make_scanner().scan("s1", str(transcript))
    second = make_scanner().scan("s1", str(transcript))

    assert second.metrics.bytes_read == 0
    assert second.commands == first.commands
    assert second.last_message == first.last_message


# -- incremental behaviour -------------------------------------------------------------


def test_offsets_are_monotonic_across_appends(
    tmp_path: Path, make_scanner, append_transcript, human, assistant
) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_bytes(b"")
    scanner = make_scanner()
    total = 0

    for i in range(4):
        batch = [human(f"question {i}"), assistant(f"answer {i}")]
        total += append_transcript(transcript, batch)

        result = scanner.scan("s1", str(transcript))

        assert result.metrics.lines_scanned == len(batch)
        state = scanner.state_store.load("s1")
        assert state is not None
        assert state.last_offset == total

    assert result.last_message.preview == "question 3"
    assert result.last_message.turn_number == 7
    assert result.health.message_count == 8


def test_incremental_merge_and_exact_line_numbers(
    tmp_path: Path, make_scanner, write_transcript, append_transcript, human, assistant, github_token
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help"), human(github_token), assistant("noted")])
    scanner = make_scanner()
    first = scanner.scan("s1", str(transcript))

    append_transcript(
        transcript,
        [assistant("just tool output"), human("/compact"), human(f"again {github_token}")],
    )
    second = scanner.scan("s1", str(transcript))

    assert [(c.name, c.line) for c in second.commands] == [("/help", 1), ("/compact", 5)]
    assert second.secrets == first.secrets
    assert second.last_message.preview.startswith("again ghp_")
    assert second.last_message.turn_number == 6
    assert second.metrics.lines_scanned == 3


def test_last_message_kept_when_window_has_no_human_text(
    tmp_path: Path, make_scanner, write_transcript, append_transcript, human, assistant
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("keep me"), assistant("reply")])
    scanner = make_scanner()
    scanner.scan("s1", str(transcript))

    append_transcript(transcript, [assistant("more"), assistant("and more")])
    result = scanner.scan("s1", str(transcript))

    assert result.last_message.preview == "keep me"
    assert result.last_message.turn_number == 1
    assert result.health.message_count == 4


def test_line_split_across_scans_is_not_rejoined(
    tmp_path: Path, make_scanner, human
) -> None:
    transcript = tmp_path / "t.jsonl"
    full = json.dumps(human("/status")) + "\n"
    transcript.write_text(json.dumps(human("first")) + "\n" + full[:10], encoding="utf-8")
    scanner = make_scanner()
    scanner.scan("s1", str(transcript))

    with transcript.open("a", encoding="utf-8") as f:
        f.write(full[10:])
    result = scanner.scan("s1", str(transcript))

    # offsets always advance to end of file, so each half is parsed on its own
    assert result.commands == ()
    assert result.metrics.lines_scanned == 1


def test_auth_changes_only_reflect_new_window(
    tmp_path: Path, make_scanner, write_transcript, append_transcript, human, assistant
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/login"), assistant("Login successful for a@example.com")])
    scanner = make_scanner()

    assert len(scanner.scan("s1", str(transcript)).auth_changes) == 1

    append_transcript(transcript, [human("thanks")])
    assert scanner.scan("s1", str(transcript)).auth_changes == ()


def test_truncation_triggers_full_rescan(
    tmp_path: Path, make_scanner, write_transcript, human, assistant
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(
        transcript,
        [human("/model opus"), assistant("x" * 500), human("old question")],
    )
    scanner = make_scanner()
    scanner.scan("s1", str(transcript))

    write_transcript(transcript, [human("/clear")])
    result = scanner.scan("s1", str(transcript))

    state = scanner.state_store.load("s1")
    assert state is not None
    assert state.last_offset == transcript.stat().st_size
    assert [(c.name, c.line) for c in result.commands] == [("/clear", 1)]
    assert result.last_message.preview == "/clear"
    assert result.health.message_count == 1
    assert state.line_count == 1


def test_corrupt_state_is_treated_as_missing(
    tmp_path: Path, make_scanner, write_transcript, human
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])
    scanner = make_scanner()
    path = scanner.state_store.state_path("s1")
    path.parent.mkdir(parents=True)
    path.write_text('{"version": 99}', encoding="utf-8")

    result = scanner.scan("s1", str(transcript))

    assert [c.name for c in result.commands] == ["/help"]
    assert scanner.state_store.load("s1") is not None


def test_save_failure_still_returns_result(
    tmp_path: Path, make_scanner, write_transcript, human
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])

    result = make_scanner(state_dir=blocker / "scanners").scan("s1", str(transcript))

    assert [c.name for c in result.commands] == ["/help"]


# -- extractor isolation ------------------------------------------------------------------


def test_slow_extractor_falls_back_to_persisted_value(
    tmp_path: Path, make_scanner, write_transcript, append_transcript, human
) -> None:
    slow = SlowCommands()
    scanner = make_scanner(
        extractor_timeout=0.05,
        registry=ExtractorRegistry([LastMessageExtractor(), slow]),
    )
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])
    first = scanner.scan("s1", str(transcript))

    slow.delay = 0.5
    append_transcript(transcript, [human("/cost"), human("hello")])
    started = time.perf_counter()
    second = scanner.scan("s1", str(transcript))
    elapsed = time.perf_counter() - started

    assert elapsed < 0.4
    assert second.commands == first.commands
    assert second.metrics.extractor_errors == {"commands": "timeout"}
    assert second.last_message.preview == "hello"


def test_timed_out_extractor_without_history_gets_empty(
    tmp_path: Path, make_scanner, write_transcript, human
) -> None:
    slow = SlowCommands()
    slow.delay = 0.3
    scanner = make_scanner(extractor_timeout=0.05, registry=ExtractorRegistry([slow]))
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])

    result = scanner.scan("s1", str(transcript))

    assert result.commands == ()
    assert "commands" in result.metrics.extractor_errors


def test_raising_extractor_is_isolated(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    scanner = make_scanner(registry=ExtractorRegistry([Raising(), CommandDetector()]))
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])

    result = scanner.scan("s1", str(transcript))

    assert [c.name for c in result.commands] == ["/help"]
    assert result.metrics.extractor_errors == {"raising": "RuntimeError: boom"}
    state = scanner.state_store.load("s1")
    assert state is not None
    assert state.extractor_data["raising"] == 0


def test_async_extractor_output_is_persisted_and_merged(
    tmp_path: Path, make_scanner, write_transcript, append_transcript, human
) -> None:
    scanner = make_scanner(registry=ExtractorRegistry([AsyncLineCounter()]))
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("a"), human("b")])
    scanner.scan("s1", str(transcript))
    append_transcript(transcript, [human("c")])
    scanner.scan("s1", str(transcript))

    state = scanner.state_store.load("s1")
    assert state is not None
    assert state.extractor_data["line_counter"] == 3


def test_async_extractor_timeout(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    scanner = make_scanner(
        extractor_timeout=0.05,
        registry=ExtractorRegistry([AsyncLineCounter(delay=5), CommandDetector()]),
    )
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])

    started = time.perf_counter()
    result = scanner.scan("s1", str(transcript))

    assert time.perf_counter() - started < 1
    assert result.metrics.extractor_errors == {"line_counter": "timeout"}
    assert [c.name for c in result.commands] == ["/help"]


# -- async entry points ---------------------------------------------------------------------


@pytest.mark.asyncio
async def test_scan_async(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/review 42"), human("done?")])

    result = await make_scanner().scan_async("s1", str(transcript))

    assert [(c.name, c.args) for c in result.commands] == [("/review", ("42",))]
    assert result.last_message.preview == "done?"


@pytest.mark.asyncio
async def test_sync_scan_inside_running_loop(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/init")])

    result = make_scanner().scan("s1", str(transcript))

    assert [c.name for c in result.commands] == ["/init"]


# -- helpers / module-level API ----------------------------------------------------------------


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "<1m"), (59, "<1m"), (60, "1m"), (3599, "59m"), (3600, "1h"), (86399, "23h"), (86400 * 3, "3d")],
)
def test_format_age(seconds: float, expected: str) -> None:
    assert format_age(seconds) == expected


def test_module_scan_uses_env_configured_default(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, write_transcript, human
) -> None:
    monkeypatch.setenv("TRANSCRIPT_SCANNER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setattr(scanner_module, "_default_scanner", None)
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/memory")])

    result = scanner_module.scan("s1", str(transcript))

    assert [c.name for c in result.commands] == ["/memory"]
    assert (tmp_path / "state" / "s1.state").is_file()
    assert scanner_module.get_default_scanner() is scanner_module.get_default_scanner()


def test_forget_removes_state_and_cache(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])
    scanner: TranscriptScanner = make_scanner(cache_ttl=10.0)
    scanner.scan("s1", str(transcript))

    assert scanner.forget("s1") is True
    assert "s1" not in scanner.cache
    assert scanner.state_store.load("s1") is None
    assert scanner.forget("s1") is False
