"""Module entrypoint.

Allows:
    python -m transcript_scanner
"""

from __future__ import annotations

from transcript_scanner.server.scan_server import main

if __name__ == "__main__":
    main()
