"""Incremental scanner for coding-assistant session transcripts."""

from __future__ import annotations

from transcript_scanner.core.cache import ResultCache
from transcript_scanner.core.config import ScannerConfig, resolve_scanner_config
from transcript_scanner.core.extractors import ExtractorRegistry, default_registry
from transcript_scanner.core.models import (
    AuthChange,
    Command,
    MessageInfo,
    ScanMetrics,
    ScanResult,
    ScanState,
    Secret,
    TranscriptHealth,
)
from transcript_scanner.core.scanner import TranscriptScanner, scan
from transcript_scanner.core.state import StateStore

__all__ = [
    "AuthChange",
    "Command",
    "ExtractorRegistry",
    "MessageInfo",
    "ResultCache",
    "ScanMetrics",
    "ScanResult",
    "ScanState",
    "ScannerConfig",
    "Secret",
    "StateStore",
    "TranscriptHealth",
    "TranscriptScanner",
    "default_registry",
    "resolve_scanner_config",
    "scan",
]
