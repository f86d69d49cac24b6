from __future__ import annotations

import json
from pathlib import Path

import pytest

from transcript_scanner.resources.registry import config_to_dict, session_state
from transcript_scanner.tools.scan import forget_session_impl, scan_transcript_impl


@pytest.mark.asyncio
async def test_scan_transcript_impl_returns_json_dict(
    tmp_path: Path, make_scanner, write_transcript, human, github_token
) -> None:
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/model opus"), human(f"key {github_token}"), human("bye")])

    out = await scan_transcript_impl(
        session_id="s1",
        transcript_path=str(transcript),
        scanner=make_scanner(),
    )

    json.dumps(out)
    assert out["session_id"] == "s1"
    assert out["last_message"]["preview"] == "bye"
    assert out["commands"][0] == {"name": "/model", "timestamp": 1767081600000, "args": ["opus"], "line": 1}
    assert out["secrets"][0]["type"] == "GitHub Token"
    assert out["health"]["exists"] is True
    assert out["metrics"]["cache_hit"] is False


@pytest.mark.asyncio
async def test_scan_transcript_impl_missing_file_is_not_an_error(tmp_path: Path, make_scanner) -> None:
    out = await scan_transcript_impl(
        session_id="s1",
        transcript_path=str(tmp_path / "nope.jsonl"),
        scanner=make_scanner(),
    )

    assert out["health"]["exists"] is False
    assert out["health"]["last_modified_ago"] == "never"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("session_id", "path", "message"),
    [
        ("../etc", "/tmp/t.jsonl", "Invalid session_id"),
        ("s1", "", "transcript_path is required"),
        ("s1", "relative.jsonl", "must be absolute"),
    ],
)
async def test_scan_transcript_impl_validates_inputs(
    make_scanner, session_id: str, path: str, message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        await scan_transcript_impl(session_id=session_id, transcript_path=path, scanner=make_scanner())


def test_forget_session_impl(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    scanner = make_scanner()
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])
    scanner.scan("s1", str(transcript))

    assert forget_session_impl(session_id="s1", scanner=scanner) == {"session_id": "s1", "removed": True}
    assert forget_session_impl(session_id="s1", scanner=scanner)["removed"] is False
    with pytest.raises(ValueError):
        forget_session_impl(session_id="a/b", scanner=scanner)


def test_config_resource(make_scanner) -> None:
    scanner = make_scanner()
    cfg = config_to_dict(scanner)

    json.dumps(cfg)
    assert cfg["state_dir"] == str(scanner.config.state_dir)
    assert cfg["extractors"] == ["last_message", "secrets", "commands", "auth_changes"]


def test_state_resource(tmp_path: Path, make_scanner, write_transcript, human) -> None:
    scanner = make_scanner()
    transcript = tmp_path / "t.jsonl"
    write_transcript(transcript, [human("/help")])
    scanner.scan("s1", str(transcript))

    state = session_state(scanner, "s1")

    assert state["version"] == 2
    assert state["last_offset"] == transcript.stat().st_size
    assert state["extractor_data"]["commands"][0]["name"] == "/help"
    with pytest.raises(FileNotFoundError):
        session_state(scanner, "unknown")
    with pytest.raises(ValueError):
        session_state(scanner, "../x")
