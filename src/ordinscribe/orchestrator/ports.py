"""Serve-port extraction from command text."""

import re

DEFAULT_SERVE_PORT = 8000

# python3 -m http.server 8123  /  --port 8123  /  -p 8123
_PORT_PATTERNS = (
    re.compile(r"http\.server\s+(\d{1,5})\b"),
    re.compile(r"(?:--port|-p)[=\s]+(\d{1,5})\b"),
)


def extract_port(command: str, default: int = DEFAULT_SERVE_PORT) -> int:
    """Return the numeric port argument in a serve command, or *default*."""
    for pattern in _PORT_PATTERNS:
        match = pattern.search(command)
        if match:
            port = int(match.group(1))
            if 0 < port <= 65535:
                return port
    return default
