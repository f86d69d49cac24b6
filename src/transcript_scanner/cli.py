from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from transcript_scanner.core.config import resolve_scanner_config
from transcript_scanner.core.models import ScanResult
from transcript_scanner.core.scanner import TranscriptScanner
from transcript_scanner.core.state import is_valid_session_id

LOG_LEVEL_ENV = "TRANSCRIPT_SCANNER_LOG_LEVEL"


def _configure_logging() -> None:
    # stdout carries the result; logs go to stderr.
    level_name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _format_result(result: ScanResult) -> str:
    health = result.health
    metrics = result.metrics
    lines = [f"session: {result.session_id}"]

    if health.exists:
        lines.append(
            f"transcript: {health.size_bytes} bytes, modified {health.last_modified_ago} ago, "
            f"{health.message_count} messages"
        )
    else:
        lines.append("transcript: not found")

    msg = result.last_message
    if msg.is_empty:
        lines.append("last message: -")
    else:
        lines.append(f"last message (turn {msg.turn_number}): {msg.preview}")

    lines.append(f"secrets: {len(result.secrets)}")
    for s in result.secrets:
        lines.append(f"  line {s.line}: {s.type} {s.redacted}")

    lines.append(f"commands: {len(result.commands)}")
    for c in result.commands[-10:]:
        args = " ".join(c.args)
        lines.append(f"  line {c.line}: {c.name} {args}".rstrip())

    for a in result.auth_changes:
        lines.append(f"auth change: {a.command} -> {a.account} (line {a.line})")

    source = "cache" if metrics.cache_hit else f"{metrics.lines_scanned} lines, {metrics.bytes_read} bytes"
    lines.append(f"scan: {metrics.duration_ms:.1f} ms ({source})")
    for extractor_id, error in sorted(metrics.extractor_errors.items()):
        lines.append(f"  {extractor_id} degraded: {error}")
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="transcript-scan",
        description="Incrementally scan a session transcript (JSONL) for status signals.",
    )
    p.add_argument("session_id", nargs="?", help="Session id (letters, digits, '-', '_')")
    p.add_argument("transcript_path", nargs="?", help="Absolute path to the transcript file")
    p.add_argument("--json", dest="as_json", action="store_true", help="Print the result as JSON")
    p.add_argument("--state-dir", default=None, help="Directory for per-session state files")
    p.add_argument("--list-sessions", action="store_true", help="List sessions with stored state")
    p.add_argument("--forget", metavar="SESSION_ID", default=None, help="Delete stored state for a session")
    return p


def main(argv: Sequence[str] | None = None) -> None:
    _configure_logging()
    p = _build_parser()
    args = p.parse_args(argv)

    try:
        cfg = resolve_scanner_config()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)
    if args.state_dir:
        cfg = dataclasses.replace(cfg, state_dir=Path(args.state_dir).expanduser())

    scanner = TranscriptScanner(cfg)

    if args.list_sessions:
        for sid in scanner.state_store.list_sessions():
            print(sid)
        return

    if args.forget is not None:
        if not is_valid_session_id(args.forget):
            print(f"Error: invalid session id {args.forget!r}", file=sys.stderr)
            raise SystemExit(2)
        removed = scanner.forget(args.forget)
        print(f"{'Removed' if removed else 'No'} state for {args.forget}")
        return

    if not args.session_id or not args.transcript_path:
        p.error("session_id and transcript_path are required")
    if not is_valid_session_id(args.session_id):
        print(f"Error: invalid session id {args.session_id!r}", file=sys.stderr)
        raise SystemExit(2)

    path = Path(args.transcript_path).expanduser().absolute()
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        raise SystemExit(2)

    result = scanner.scan(args.session_id, path)
    if args.as_json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(_format_result(result))


if __name__ == "__main__":
    main()
