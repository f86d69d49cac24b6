"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

import os
from typing import Any

from transcript_scanner.core.scanner import TranscriptScanner, get_default_scanner
from transcript_scanner.core.state import SESSION_ID_RE, is_valid_session_id


def _validate_session_id(session_id: str, scanner: TranscriptScanner) -> str:
    sid = (session_id or "").strip()
    if not is_valid_session_id(sid, max_length=scanner.config.max_session_id_length):
        raise ValueError(
            f"Invalid session_id '{session_id}'. Use 1-{scanner.config.max_session_id_length} "
            f"characters matching {SESSION_ID_RE.pattern}."
        )
    return sid


def _validate_transcript_path(transcript_path: str, scanner: TranscriptScanner) -> str:
    path = (transcript_path or "").strip()
    if not path:
        raise ValueError("transcript_path is required.")
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        raise ValueError(
            f"transcript_path must be absolute (got '{transcript_path}'). "
            "Tip: pass the full path, e.g. /home/me/.claude/projects/<project>/<session>.jsonl"
        )
    if len(path) > scanner.config.max_path_length:
        raise ValueError(f"transcript_path exceeds {scanner.config.max_path_length} characters.")
    return path


async def scan_transcript_impl(
    *,
    session_id: str,
    transcript_path: str,
    scanner: TranscriptScanner | None = None,
) -> dict[str, Any]:
    """Implementation for the `scan_transcript` MCP tool.

    Notes
    -----
    - A missing transcript is not an error: the result reports
      ``health.exists == False`` with empty signals.
    - Results are cached per session for a few seconds; ``metrics.cache_hit``
      tells whether this call reused one.
    """
    scanner = scanner or get_default_scanner()
    sid = _validate_session_id(session_id, scanner)
    path = _validate_transcript_path(transcript_path, scanner)
    result = await scanner.scan_async(sid, path)
    return result.to_dict()


def forget_session_impl(
    *,
    session_id: str,
    scanner: TranscriptScanner | None = None,
) -> dict[str, Any]:
    """Implementation for the `forget_session` MCP tool."""
    scanner = scanner or get_default_scanner()
    sid = _validate_session_id(session_id, scanner)
    return {"session_id": sid, "removed": scanner.forget(sid)}
