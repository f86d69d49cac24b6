"""Scanner configuration and environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

SESSION_HEALTH_DIR = Path.home() / ".claude" / "session-health"

ENV_CACHE_TTL = "TRANSCRIPT_SCANNER_CACHE_TTL"
ENV_MAX_FILE_SIZE = "TRANSCRIPT_SCANNER_MAX_FILE_SIZE"
ENV_EXTRACTOR_TIMEOUT = "TRANSCRIPT_SCANNER_EXTRACTOR_TIMEOUT"
ENV_STATE_DIR = "TRANSCRIPT_SCANNER_STATE_DIR"
ENV_TEST_STATE_DIR = "TEST_STATE_DIR"


@dataclass(frozen=True, slots=True)
class ScannerConfig:
    cache_ttl: float = 10.0  # seconds
    max_file_size: int = 100_000_000
    extractor_timeout: float = 0.5  # seconds, per extractor
    state_dir: Path = field(default_factory=lambda: SESSION_HEALTH_DIR / "scanners")
    legacy_dir: Path | None = None  # defaults to <state_dir>/../cooldowns
    max_cache_entries: int = 100
    max_cache_bytes: int = 10_000_000
    max_path_length: int = 4096
    max_session_id_length: int = 128

    @property
    def resolved_legacy_dir(self) -> Path:
        if self.legacy_dir is not None:
            return self.legacy_dir
        return self.state_dir.parent / "cooldowns"


def _env_float(name: str, *, minimum: float) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum:g}")
    return value


def _env_int(name: str, *, minimum: int) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def resolve_scanner_config(cfg: ScannerConfig | None = None) -> ScannerConfig:
    """Return config with optional env overrides applied."""
    if cfg is None:
        cfg = ScannerConfig()

    changes: dict[str, object] = {}

    ttl = _env_float(ENV_CACHE_TTL, minimum=0)
    if ttl is not None:
        changes["cache_ttl"] = ttl

    max_size = _env_int(ENV_MAX_FILE_SIZE, minimum=1)
    if max_size is not None:
        changes["max_file_size"] = max_size

    timeout = _env_float(ENV_EXTRACTOR_TIMEOUT, minimum=0.001)
    if timeout is not None:
        changes["extractor_timeout"] = timeout

    state_dir = os.getenv(ENV_STATE_DIR) or os.getenv(ENV_TEST_STATE_DIR)
    if state_dir:
        changes["state_dir"] = Path(state_dir).expanduser()
        if os.getenv(ENV_TEST_STATE_DIR) and not os.getenv(ENV_STATE_DIR):
            # legacy test layout keeps old files in <dir>/cooldowns
            changes["legacy_dir"] = Path(state_dir).expanduser() / "cooldowns"

    if not changes:
        return cfg
    return replace(cfg, **changes)
