"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from transcript_scanner.core.models import ScanState
from transcript_scanner.core.scanner import TranscriptScanner, get_default_scanner
from transcript_scanner.core.state import is_valid_session_id


def config_to_dict(scanner: TranscriptScanner) -> dict[str, Any]:
    """Return the effective scanner configuration as JSON-friendly values."""
    cfg = scanner.config
    return {
        "cache_ttl": cfg.cache_ttl,
        "max_file_size": cfg.max_file_size,
        "extractor_timeout": cfg.extractor_timeout,
        "state_dir": str(cfg.state_dir),
        "legacy_dir": str(cfg.resolved_legacy_dir),
        "max_cache_entries": cfg.max_cache_entries,
        "max_cache_bytes": cfg.max_cache_bytes,
        "extractors": scanner.registry.ids(),
    }


def session_state(scanner: TranscriptScanner, session_id: str) -> dict[str, Any]:
    """Return the stored state for a session."""
    if not is_valid_session_id(session_id, max_length=scanner.config.max_session_id_length):
        raise ValueError(f"Invalid session id '{session_id}'.")
    state = scanner.state_store.load(session_id)
    if state is None:
        raise FileNotFoundError(f"No stored state for session: {session_id}")
    return state.model_dump(mode="json")


def register_resources(mcp: FastMCP, scanner: TranscriptScanner | None = None) -> None:
    """Register resource handlers on the MCP server."""

    def _scanner() -> TranscriptScanner:
        return scanner or get_default_scanner()

    @mcp.resource("app://transcript-scanner/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        return (
            "Tools:\n"
            "- scan_transcript(session_id, transcript_path)\n"
            "- forget_session(session_id)\n"
            "\nResources:\n"
            "- app://transcript-scanner/help\n"
            "- app://transcript-scanner/config\n"
            "- app://transcript-scanner/sessions\n"
            "- app://transcript-scanner/schemas/scan-state\n"
            "- state://{session_id} (stored scan state for one session)\n"
            f"\nState directory: {_scanner().config.state_dir}\n"
        )

    @mcp.resource("app://transcript-scanner/config")
    def config_resource() -> dict[str, Any]:
        """Return the effective scanner configuration."""
        return config_to_dict(_scanner())

    @mcp.resource("app://transcript-scanner/sessions")
    def sessions_resource() -> list[str]:
        """Return session ids that have stored state."""
        return _scanner().state_store.list_sessions()

    @mcp.resource("app://transcript-scanner/schemas/scan-state")
    def scan_state_schema() -> dict[str, Any]:
        """Return the JSON schema of persisted scan state."""
        return ScanState.model_json_schema()

    @mcp.resource("state://{session_id}")
    def state_resource(session_id: str) -> dict[str, Any]:
        """Return the stored scan state for a session."""
        return session_state(_scanner(), session_id)
