"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: scan a session transcript, forget a session's stored state
- Resources: help, effective config, known sessions, per-session state

Run locally (stdio):
    python -m transcript_scanner.server.scan_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from transcript_scanner.resources.registry import register_resources
from transcript_scanner.tools.scan import forget_session_impl, scan_transcript_impl

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure a reasonable default logging setup.

    The MCP client typically captures stderr; keeping logs concise makes them easier to consume.
    """
    level_name = os.getenv("TRANSCRIPT_SCANNER_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


mcp = FastMCP("transcript-scanner", json_response=True)

register_resources(mcp)


@mcp.tool()
async def scan_transcript(session_id: str, transcript_path: str) -> dict[str, Any]:
    """Scan a session transcript and return status signals.

    Parameters
    ----------
    session_id:
        Session identifier; letters, digits, '-' and '_' only.
    transcript_path:
        Absolute path to the session's JSONL transcript.

    Returns
    -------
    dict:
        {"session_id", "last_message", "secrets", "commands", "auth_changes",
        "health", "metrics"}. Secrets are redacted; only fingerprints and a
        first4...last4 form are returned.
    """
    return await scan_transcript_impl(session_id=session_id, transcript_path=transcript_path)


@mcp.tool()
def forget_session(session_id: str) -> dict[str, Any]:
    """Delete stored scan state for a session so the next scan starts over.

    Returns
    -------
    dict:
        {"session_id": str, "removed": bool}
    """
    return forget_session_impl(session_id=session_id)


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
