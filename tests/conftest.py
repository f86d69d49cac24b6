from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from transcript_scanner.core.config import ScannerConfig
from transcript_scanner.core.scanner import TranscriptScanner

GITHUB_TOKEN = "ghp_" + "aB3dE5fG7hJ9kL1mN3pQ5rS7tU9vW1xY3zA5"


def _encode(record: dict[str, Any] | str) -> str:
    return record if isinstance(record, str) else json.dumps(record)


@pytest.fixture
def write_transcript() -> Callable[[Path, list[dict[str, Any] | str]], None]:
    """Write records (dicts are JSON-encoded, strings written as-is) one per line."""

    def _write(path: Path, records: list[dict[str, Any] | str]) -> None:
        path.write_text("".join(_encode(r) + "\n" for r in records), encoding="utf-8")

    return _write


@pytest.fixture
def append_transcript() -> Callable[[Path, list[dict[str, Any] | str]], int]:
    """Append records; returns the number of bytes appended."""

    def _append(path: Path, records: list[dict[str, Any] | str]) -> int:
        data = "".join(_encode(r) + "\n" for r in records).encode("utf-8")
        with path.open("ab") as f:
            f.write(data)
        return len(data)

    return _append


@pytest.fixture
def human() -> Callable[..., dict[str, Any]]:
    def _make(text: str, ts: str = "2025-12-30T08:00:00Z") -> dict[str, Any]:
        return {
            "type": "user",
            "timestamp": ts,
            "message": {"role": "user", "content": [{"type": "text", "text": text}]},
        }

    return _make


@pytest.fixture
def assistant() -> Callable[..., dict[str, Any]]:
    def _make(text: str, ts: str = "2025-12-30T08:00:01Z") -> dict[str, Any]:
        return {
            "type": "assistant",
            "timestamp": ts,
            "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
        }

    return _make


@pytest.fixture
def scanner_config(tmp_path: Path) -> ScannerConfig:
    return ScannerConfig(
        state_dir=tmp_path / "state" / "scanners",
        cache_ttl=0,
        extractor_timeout=2.0,
    )


@pytest.fixture
def make_scanner(scanner_config: ScannerConfig) -> Callable[..., TranscriptScanner]:
    """Build an isolated scanner; keyword args override the config or collaborators."""

    def _make(**kwargs: Any) -> TranscriptScanner:
        collaborators = {k: kwargs.pop(k) for k in ("registry", "state_store", "cache") if k in kwargs}
        cfg = dataclasses.replace(scanner_config, **kwargs)
        return TranscriptScanner(cfg, **collaborators)

    return _make


@pytest.fixture
def github_token() -> str:
    # 36 mixed characters after the prefix
    return GITHUB_TOKEN
