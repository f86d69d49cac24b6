"""Incremental byte-range reader for append-only transcripts."""

from __future__ import annotations

import os
from pathlib import Path

from .models import ReadResult


def stat_mtime_ms(st: os.stat_result) -> float:
    """Modification time in milliseconds, as persisted in scan state."""
    return st.st_mtime_ns / 1_000_000


def read_incremental(
    path: str | Path,
    last_offset: int,
    last_mtime: float,
) -> ReadResult:
    """Return the bytes appended to ``path`` since ``last_offset``.

    - Unchanged (same mtime, size == last_offset): no read, ``cache_hit=True``.
    - Shrunk below ``last_offset`` (truncated/rotated): re-read the whole file.
    - Otherwise read exactly ``size - last_offset`` bytes.

    Errors are raised to the caller.
    """
    if last_offset < 0:
        raise ValueError(f"Invalid offset: {last_offset} (must be >= 0)")

    p = Path(path)
    st = p.stat()
    if p.is_dir():
        raise IsADirectoryError(f"Path is a directory: {p}")

    size = st.st_size
    mtime = stat_mtime_ms(st)

    if mtime == last_mtime and size == last_offset:
        return ReadResult(
            data=b"",
            start_offset=last_offset,
            new_offset=size,
            mtime=mtime,
            size=size,
            cache_hit=True,
        )

    truncated = size < last_offset
    start = 0 if truncated else last_offset
    length = size - start

    if length == 0:
        return ReadResult(
            data=b"",
            start_offset=start,
            new_offset=size,
            mtime=mtime,
            size=size,
            cache_hit=not truncated,
            truncated=truncated,
        )

    with p.open("rb") as f:
        f.seek(start)
        data = f.read(length)

    return ReadResult(
        data=data,
        start_offset=start,
        new_offset=start + len(data),
        mtime=mtime,
        size=size,
        truncated=truncated,
    )
