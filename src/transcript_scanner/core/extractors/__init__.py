"""Transcript extractors.

Each extractor derives one typed signal from parsed transcript lines.
"""

from __future__ import annotations

from .auth_changes import AuthChangeDetector
from .base import BaseExtractor, Extractor, ExtractorRegistry
from .commands import CommandDetector
from .last_message import LastMessageExtractor
from .secrets import SecretDetector, redact


def default_registry() -> ExtractorRegistry:
    """A fresh registry holding the built-in extractors."""
    return ExtractorRegistry(
        [
            LastMessageExtractor(),
            SecretDetector(),
            CommandDetector(),
            AuthChangeDetector(),
        ]
    )


__all__ = [
    "AuthChangeDetector",
    "BaseExtractor",
    "CommandDetector",
    "Extractor",
    "ExtractorRegistry",
    "LastMessageExtractor",
    "SecretDetector",
    "default_registry",
    "redact",
]
