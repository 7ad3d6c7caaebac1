"""Host application log tool schemas (``tau5_logs_*``)."""

from __future__ import annotations

from typing import Any

LOGS_SEARCH_TOOL: dict[str, Any] = {
    "name": "tau5_logs_search",
    "description": "Search Tau5 application logs on filesystem with regex patterns and filters - NOT browser console logs",
    "inputSchema": {
        "type": "object",
        "properties": {
            "sessions": {
                "type": "string",
                "description": (
                    "Session selection: 'latest', 'all', or comma-separated indices like '0,1,2' (default: 'latest')"
                ),
            },
            "pattern": {
                "type": "string",
                "description": "Search pattern - can be plain text or regex (use with isRegex:true)",
            },
            "isRegex": {"type": "boolean", "description": "Treat pattern as regular expression (default: false)"},
            "caseSensitive": {"type": "boolean", "description": "Case-sensitive search (default: false)"},
            "levels": {
                "type": "array",
                "items": {"type": "string", "enum": ["error", "warning", "info", "debug"]},
                "description": "Filter by log levels (empty = all levels)",
            },
            "range": {
                "type": "object",
                "properties": {
                    "start": {"type": "integer", "description": "Starting line number (1-based)"},
                    "end": {"type": "integer", "description": "Ending line number (inclusive)"},
                    "last": {"type": "integer", "description": "Last N lines from end"},
                },
                "description": "Line range to search (omit for entire file)",
            },
            "context": {
                "type": "integer",
                "description": "Number of context lines before/after matches (default: 0)",
            },
            "maxResults": {
                "type": "integer",
                "description": "Maximum results to return per session (default: 100)",
            },
            "format": {
                "type": "string",
                "enum": ["full", "compact", "json"],
                "description": (
                    "Output format: 'full' includes line numbers and session info, 'compact' is just "
                    "matching lines, 'json' returns structured data (default: 'full')"
                ),
            },
        },
        "required": [],
    },
}

LOGS_SESSIONS_TOOL: dict[str, Any] = {
    "name": "tau5_logs_getSessions",
    "description": "List all available Tau5 application log sessions with metadata - NOT browser console sessions",
    "inputSchema": {"type": "object", "properties": {}, "required": []},
}

LOGS_GET_TOOL: dict[str, Any] = {
    "name": "tau5_logs_get",
    "description": "Read Tau5 application logs from filesystem (beam, gui, mcp logs) - NOT browser console logs",
    "inputSchema": {
        "type": "object",
        "properties": {
            "lines": {"type": "integer", "description": "Number of recent lines to return (default: 100)"},
            "session": {"type": "integer", "description": "Session index to read from (default: 0 for latest)"},
        },
        "required": [],
    },
}

LOG_TOOLS: list[dict[str, Any]] = [LOGS_SEARCH_TOOL, LOGS_SESSIONS_TOOL, LOGS_GET_TOOL]

__all__ = ["LOGS_SEARCH_TOOL", "LOGS_SESSIONS_TOOL", "LOGS_GET_TOOL", "LOG_TOOLS"]
