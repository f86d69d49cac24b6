"""JSON-lines parser for transcript chunks."""

from __future__ import annotations

import json

from .models import ParsedLine


def parse_line(line_no: int, line: str) -> ParsedLine:
    """Decode a single transcript line. Never raises."""
    s = line.strip()
    try:
        payload = json.loads(s)
    except (json.JSONDecodeError, RecursionError) as exc:
        return ParsedLine(line_no=line_no, raw=line, payload=None, error=str(exc) or type(exc).__name__)
    if payload is None:
        # a literal `null` carries no payload
        return ParsedLine(line_no=line_no, raw=line, payload=None, error="line decodes to null")
    return ParsedLine(line_no=line_no, raw=line, payload=payload)


def parse_lines(
    data: bytes,
    *,
    start_line: int = 0,
    encoding: str = "utf-8",
    decode_errors: str = "replace",
) -> list[ParsedLine]:
    """Split raw bytes into parsed lines.

    Blank lines are dropped but still advance the position: ``line_no`` is the
    1-based line number, counted from ``start_line`` lines already consumed.
    """
    out: list[ParsedLine] = []
    if not data:
        return out

    for index, raw in enumerate(data.split(b"\n")):
        if not raw.strip():
            continue
        line = raw.decode(encoding, errors=decode_errors).rstrip("\r")
        out.append(parse_line(start_line + index + 1, line))
    return out


def count_newlines(data: bytes) -> int:
    """Number of complete lines in a chunk."""
    return data.count(b"\n")
