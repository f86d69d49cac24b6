"""Core data models for transcript scanning."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Sender = Literal["human", "assistant", "unknown"]


@dataclass(frozen=True, slots=True)
class ParsedLine:
    """One non-blank transcript line (decoded payload or failure reason)."""

    line_no: int  # 1-based, see parse_lines()
    raw: str
    payload: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class ReadResult:
    """Outcome of an incremental read."""

    data: bytes
    start_offset: int
    new_offset: int
    mtime: float  # milliseconds since epoch
    size: int
    cache_hit: bool = False
    truncated: bool = False


class MessageInfo(BaseModel):
    """Most recent human message in the scanned window."""

    model_config = ConfigDict(frozen=True)

    timestamp: int = 0
    preview: str = ""
    sender: Sender = "unknown"
    turn_number: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.preview and self.turn_number == 0


class Secret(BaseModel):
    """A detected credential. Only the redacted form is ever kept."""

    model_config = ConfigDict(frozen=True)

    type: str
    fingerprint: str
    line: int = 0
    redacted: str = "***"


class Command(BaseModel):
    """A slash command issued by the human participant."""

    model_config = ConfigDict(frozen=True)

    name: str
    timestamp: int = 0
    args: tuple[str, ...] = ()
    line: int = 0


class AuthChange(BaseModel):
    """An account switch confirmed after a login/swap command."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    account: str
    line: int = 0
    command: str = "/login"


class ScanState(BaseModel):
    """Per-session persisted scan position and extractor outputs."""

    version: Literal[2] = 2
    last_offset: int = Field(default=0, ge=0)
    last_mtime: float = Field(default=0.0, ge=0)
    last_scan_at: float = 0.0
    line_count: int = Field(default=0, ge=0)
    message_count: int = Field(default=0, ge=0)
    extractor_data: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TranscriptHealth:
    exists: bool = False
    size_bytes: int = 0
    last_modified: float = 0.0  # milliseconds since epoch
    age_seconds: float = 0.0
    last_modified_ago: str = "never"
    message_count: int = 0


@dataclass(frozen=True, slots=True)
class ScanMetrics:
    duration_ms: float = 0.0
    lines_scanned: int = 0
    bytes_read: int = 0
    cache_hit: bool = False
    extractor_durations: dict[str, float] = field(default_factory=dict)
    extractor_errors: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Composite result of one scan (fresh or served from cache)."""

    session_id: str
    last_message: MessageInfo = field(default_factory=MessageInfo)
    secrets: tuple[Secret, ...] = ()
    commands: tuple[Command, ...] = ()
    auth_changes: tuple[AuthChange, ...] = ()
    health: TranscriptHealth = field(default_factory=TranscriptHealth)
    metrics: ScanMetrics = field(default_factory=ScanMetrics)

    def to_dict(self) -> dict[str, Any]:
        """Convert into a JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "last_message": self.last_message.model_dump(mode="json"),
            "secrets": [s.model_dump(mode="json") for s in self.secrets],
            "commands": [c.model_dump(mode="json") for c in self.commands],
            "auth_changes": [a.model_dump(mode="json") for a in self.auth_changes],
            "health": asdict(self.health),
            "metrics": asdict(self.metrics),
        }
