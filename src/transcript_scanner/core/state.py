"""Persistent per-session scan state.

One JSON document per session under the state directory, written atomically
(temp file in the same directory, then ``os.replace``). Concurrent writers for
the same session are last-writer-wins with no lost-update detection; the state
only caches data that a rescan can rebuild.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import MessageInfo, ScanState, Secret

logger = logging.getLogger(__name__)

STATE_SUFFIX = ".state"
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_SESSION_ID_LENGTH = 128


class InvalidSessionIdError(ValueError):
    """Session id is empty, too long or contains characters outside [A-Za-z0-9_-]."""


def is_valid_session_id(session_id: object, *, max_length: int = MAX_SESSION_ID_LENGTH) -> bool:
    return (
        isinstance(session_id, str)
        and 0 < len(session_id) <= max_length
        and SESSION_ID_RE.match(session_id) is not None
    )


def _now_ms() -> float:
    return time.time() * 1000


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def _num(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return 0
    return value


class StateStore:
    """Load/save ``ScanState`` documents for sessions."""

    def __init__(self, base_dir: str | Path, legacy_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir)
        self.legacy_dir = Path(legacy_dir) if legacy_dir is not None else self.base_dir.parent / "cooldowns"

    def state_path(self, session_id: str) -> Path:
        """Path of the state file; raises before touching the filesystem on bad ids."""
        if not is_valid_session_id(session_id):
            raise InvalidSessionIdError(
                f"Invalid session id {session_id!r} (allowed: letters, digits, '-', '_')"
            )
        return self.base_dir / f"{session_id}{STATE_SUFFIX}"

    def create_initial(self, session_id: str) -> ScanState:
        _ = self.state_path(session_id)
        return ScanState(last_scan_at=_now_ms())

    @staticmethod
    def update(
        state: ScanState,
        new_offset: int,
        new_mtime: float,
        extractor_data: dict[str, Any],
        *,
        line_count: int | None = None,
        message_count: int | None = None,
    ) -> ScanState:
        """Return a new state; ``state`` is left unchanged."""
        changes: dict[str, Any] = {
            "last_offset": new_offset,
            "last_mtime": new_mtime,
            "last_scan_at": _now_ms(),
            "extractor_data": {**state.extractor_data, **extractor_data},
        }
        if line_count is not None:
            changes["line_count"] = line_count
        if message_count is not None:
            changes["message_count"] = message_count
        return state.model_copy(update=changes, deep=True)

    def load(self, session_id: str) -> ScanState | None:
        """Return the stored state, a migrated legacy state, or ``None``.

        Never raises: corrupt or wrong-version files count as missing.
        """
        try:
            path = self.state_path(session_id)
        except InvalidSessionIdError:
            logger.debug("Rejected session id %r", session_id)
            return None

        if not path.exists():
            return self._migrate_legacy(session_id)

        try:
            raw = path.read_text(encoding="utf-8")
            return ScanState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Ignoring invalid state for %s: %s", session_id, exc.errors()[:1])
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read state for %s: %s", session_id, exc)
        return None

    def save(self, session_id: str, state: ScanState) -> bool:
        """Atomically write ``state``. Returns False (and logs) on failure."""
        try:
            path = self.state_path(session_id)
        except InvalidSessionIdError:
            logger.debug("Rejected session id %r", session_id)
            return False

        tmp_path: str | None = None
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{session_id}.", suffix=".tmp", dir=path.parent
            )
            # mkstemp creates the file with mode 0o600
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
            os.replace(tmp_path, path)
            tmp_path = None
            return True
        except OSError as exc:
            logger.error("Failed to save state for %s: %s", session_id, exc)
            return False
        finally:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)

    def delete(self, session_id: str) -> bool:
        try:
            path = self.state_path(session_id)
        except InvalidSessionIdError:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("Failed to delete state for %s: %s", session_id, exc)
            return False
        return True

    def list_sessions(self) -> list[str]:
        try:
            names = sorted(p.name for p in self.base_dir.iterdir() if p.is_file())
        except OSError:
            return []
        return [
            name[: -len(STATE_SUFFIX)]
            for name in names
            if name.endswith(STATE_SUFFIX) and is_valid_session_id(name[: -len(STATE_SUFFIX)])
        ]

    def _migrate_legacy(self, session_id: str) -> ScanState | None:
        """Build a current-schema state from older per-purpose state files."""
        state: ScanState | None = None

        transcript_path = self.legacy_dir / f"{session_id}-transcript.state"
        if transcript_path.is_file():
            try:
                old = _read_json(transcript_path)
                state = _from_transcript_state(old)
                logger.info("Migrated legacy transcript state for %s", session_id)
            except (OSError, ValueError, TypeError, AttributeError, ValidationError) as exc:
                logger.warning("Failed to migrate legacy transcript state for %s: %s", session_id, exc)

        gitleaks_path = self.legacy_dir / f"{session_id}-gitleaks.state"
        if gitleaks_path.is_file():
            try:
                old = _read_json(gitleaks_path)
                state = _merge_gitleaks_state(state, old)
                logger.info("Migrated legacy gitleaks state for %s", session_id)
            except (OSError, ValueError, TypeError, AttributeError, ValidationError) as exc:
                logger.warning("Failed to migrate legacy gitleaks state for %s: %s", session_id, exc)

        if state is not None:
            self.save(session_id, state)
        return state


def _from_transcript_state(old: dict[str, Any]) -> ScanState:
    last_user = old.get("lastUserMessage") or {}
    message_count = int(_num(old.get("messageCount")))
    message = MessageInfo(
        timestamp=int(_num(last_user.get("timestamp"))),
        preview=str(last_user.get("preview") or ""),
        sender="human" if last_user.get("preview") else "unknown",
        turn_number=message_count,
    )
    return ScanState(
        last_offset=int(_num(old.get("lastReadOffset"))),
        last_mtime=float(_num(old.get("lastReadMtime"))),
        last_scan_at=_now_ms(),
        message_count=message_count,
        extractor_data={"last_message": message.model_dump(mode="json")},
    )


def _legacy_secret(fp: str) -> Secret:
    # Legacy files kept fingerprints only, never the matched value.
    key = fp.split("_", 1)[0] if "_" in fp else "unknown"
    return Secret(type=key, fingerprint=fp, line=0, redacted="***")


def _merge_gitleaks_state(state: ScanState | None, old: dict[str, Any]) -> ScanState:
    findings = [f for f in old.get("knownFindings") or [] if isinstance(f, str) and f]
    secrets = [_legacy_secret(fp).model_dump(mode="json") for fp in dict.fromkeys(findings)]
    offset = int(_num(old.get("lastScannedOffset")))
    mtime = float(_num(old.get("lastScannedMtime")))

    if state is None:
        return ScanState(
            last_offset=offset,
            last_mtime=mtime,
            last_scan_at=_now_ms(),
            extractor_data={"secrets": secrets},
        )

    changes: dict[str, Any] = {"extractor_data": {**state.extractor_data, "secrets": secrets}}
    if offset > state.last_offset:
        changes["last_offset"] = offset
        changes["last_mtime"] = mtime
    return state.model_copy(update=changes)
