"""Spectra self-description and target selection tool schemas."""

from __future__ import annotations

from typing import Any

GET_CONFIG_TOOL: dict[str, Any] = {
    "name": "spectra_get_config",
    "description": "Get Spectra's current configuration including channel, ports, and connection status",
    "inputSchema": {"type": "object", "properties": {}},
}

LIST_TARGETS_TOOL: dict[str, Any] = {
    "name": "spectra_list_targets",
    "description": "List all available Chrome DevTools targets",
    "inputSchema": {"type": "object", "properties": {}},
}

SET_TARGET_TOOL: dict[str, Any] = {
    "name": "spectra_set_target",
    "description": "Set the Chrome DevTools target by title",
    "inputSchema": {
        "type": "object",
        "properties": {
            "title": {
                "type": "string",
                "description": "The title of the target to connect to (e.g., 'Tau5', 'Tau5 Console')",
            }
        },
        "required": ["title"],
    },
}

META_TOOLS: list[dict[str, Any]] = [GET_CONFIG_TOOL, LIST_TARGETS_TOOL, SET_TARGET_TOOL]

__all__ = ["GET_CONFIG_TOOL", "LIST_TARGETS_TOOL", "SET_TARGET_TOOL", "META_TOOLS"]
