"""Capture and page-probe tool schemas (console, network, workers, LiveView)."""

from __future__ import annotations

from typing import Any

from .definitions_devtools import PREFIX


def _no_args(name: str, description: str) -> dict[str, Any]:
    return {
        "name": f"{PREFIX}{name}",
        "description": description,
        "inputSchema": {"type": "object", "properties": {}},
    }


def _limit(what: str) -> dict[str, Any]:
    return {"type": "integer", "description": f"Maximum number of {what} to return (-1 for all, default: 100)"}


CONSOLE_MESSAGES_TOOL: dict[str, Any] = {
    "name": f"{PREFIX}getConsoleMessages",
    "description": "Get JavaScript console messages with filtering, search, and format options (default limit: 100)",
    "inputSchema": {
        "type": "object",
        "properties": {
            "limit": _limit("messages"),
            "level": {
                "oneOf": [{"type": "string"}, {"type": "array", "items": {"type": "string"}}],
                "description": "Filter by level(s): 'error', 'warn', 'log', 'info', 'debug'",
            },
            "search": {"type": "string", "description": "Search for text in messages (case-insensitive)"},
            "regex": {"type": "string", "description": "Filter messages with regex pattern"},
            "since": {
                "type": "string",
                "description": "ISO date to get messages after (e.g., '2025-01-01T10:30:00')",
            },
            "last": {"type": "string", "description": "Get messages from last period (e.g., '5m', '1h', '30s')"},
            "since_last_call": {
                "type": "boolean",
                "default": False,
                "description": (
                    "Only return messages since last getConsoleMessages call. Default: false. "
                    "Automatically ignored when using search, regex, level, since, or last filters "
                    "(searches always query full history). Use for streaming new messages only."
                ),
            },
            "format": {
                "type": "string",
                "enum": ["json", "plain", "csv"],
                "description": "Output format (default: json)",
            },
        },
    },
}

NETWORK_REQUESTS_TOOL: dict[str, Any] = {
    "name": f"{PREFIX}getNetworkRequests",
    "description": "Monitor network requests with WASM/AudioWorklet focus (default limit: 50)",
    "inputSchema": {
        "type": "object",
        "properties": {
            "urlPattern": {
                "type": "string",
                "description": "Regex pattern to filter URLs (e.g., '.*\\.wasm|.*audioworklet.*')",
            },
            "includeResponse": {
                "type": "boolean",
                "description": "Include response details (status, headers, etc.)",
            },
            "includeTimings": {"type": "boolean", "description": "Include timing information"},
            "limit": _limit("requests"),
        },
    },
}

RESPONSE_BODY_TOOL: dict[str, Any] = {
    "name": f"{PREFIX}getResponseBody",
    "description": "Get response body for a network request (check if WASM actually loaded)",
    "inputSchema": {
        "type": "object",
        "properties": {"requestId": {"type": "string", "description": "Request ID from getNetworkRequests"}},
        "required": ["requestId"],
    },
}

WEBSOCKET_FRAMES_TOOL: dict[str, Any] = {
    "name": f"{PREFIX}getWebSocketFrames",
    "description": "Get WebSocket frames for LiveView debugging (default limit: 100)",
    "inputSchema": {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "Filter by URL containing this string"},
            "sentOnly": {"type": "boolean", "description": "Show only sent frames"},
            "receivedOnly": {"type": "boolean", "description": "Show only received frames"},
            "search": {"type": "string", "description": "Search in frame payload data"},
            "limit": _limit("frames"),
        },
    },
}

START_MUTATION_OBSERVER_TOOL: dict[str, Any] = {
    "name": f"{PREFIX}startDOMMutationObserver",
    "description": "Start observing DOM mutations for LiveView morphdom tracking",
    "inputSchema": {
        "type": "object",
        "properties": {
            "selector": {"type": "string", "description": "CSS selector for element to observe (default: body)"}
        },
    },
}

DOM_MUTATIONS_TOOL: dict[str, Any] = {
    "name": f"{PREFIX}getDOMMutations",
    "description": "Get captured DOM mutations",
    "inputSchema": {"type": "object", "properties": {"limit": _limit("mutations")}},
}

CAPTURE_TOOLS: list[dict[str, Any]] = [
    CONSOLE_MESSAGES_TOOL,
    _no_args("clearConsoleMessages", "Clear all stored JavaScript console messages"),
    NETWORK_REQUESTS_TOOL,
    _no_args("getMemoryUsage", "Get JavaScript heap and memory metrics"),
    _no_args("getExceptions", "Get uncaught exceptions and promise rejections"),
    _no_args("getLoadedResources", "List all loaded page resources"),
    _no_args("getAudioContexts", "Get information about AudioContext instances"),
    _no_args("getWorkers", "List active workers and worklets"),
    _no_args("getCrossOriginIsolationStatus", "Check SharedArrayBuffer availability and COOP/COEP status"),
    _no_args("getSecurityState", "Get page security state and certificate info"),
    _no_args("monitorWasmInstantiation", "Monitor WebAssembly module instantiation attempts"),
    _no_args("getAudioWorkletState", "Check AudioWorklet availability and state"),
    _no_args("getPerformanceTimeline", "Get performance timeline for WASM/AudioWorklet resources"),
    RESPONSE_BODY_TOOL,
    WEBSOCKET_FRAMES_TOOL,
    _no_args("clearWebSocketFrames", "Clear captured WebSocket frames"),
    START_MUTATION_OBSERVER_TOOL,
    _no_args("stopDOMMutationObserver", "Stop observing DOM mutations"),
    DOM_MUTATIONS_TOOL,
    _no_args("clearDOMMutations", "Clear captured DOM mutations"),
    _no_args("getJavaScriptProfile", "Get JavaScript performance metrics for LiveView hooks"),
]

__all__ = ["CAPTURE_TOOLS"]
