"""Protocol and tool contract definitions.

This is the single source of truth for:
- the MCP protocol version answered by initialize
- server identity
- capabilities advertised by initialize
- the tool list
"""

from __future__ import annotations

from typing import Any

from .definitions import TOOL_DEFINITIONS

SERVER_INFO: dict[str, str] = {"name": "Tau5 GUI Dev MCP", "version": "1.0.0"}

PROTOCOL_VERSION = "2024-11-05"

CAPABILITIES: dict[str, Any] = {"tools": {}}


def initialize_result() -> dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": CAPABILITIES,
        "serverInfo": SERVER_INFO,
    }


def tools_list() -> list[dict[str, Any]]:
    """Advertised tools: exactly name, description and inputSchema."""
    return [
        {"name": t["name"], "description": t["description"], "inputSchema": t["inputSchema"]}
        for t in TOOL_DEFINITIONS
    ]
