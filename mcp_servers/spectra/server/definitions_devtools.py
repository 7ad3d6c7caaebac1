"""DOM and runtime tool schemas (``chromium_devtools_*``)."""

from __future__ import annotations

from typing import Any

PREFIX = "chromium_devtools_"

DEVTOOLS_TOOLS: list[dict[str, Any]] = [
    {
        "name": f"{PREFIX}getDocument",
        "description": "Get the DOM document structure",
        "inputSchema": {
            "type": "object",
            "properties": {
                "depth": {
                    "type": "integer",
                    "description": "Maximum depth to traverse (-1 for unlimited, default: 5)",
                }
            },
        },
    },
    {
        "name": f"{PREFIX}querySelector",
        "description": "Find elements matching a CSS selector",
        "inputSchema": {
            "type": "object",
            "properties": {"selector": {"type": "string", "description": "CSS selector to match"}},
            "required": ["selector"],
        },
    },
    {
        "name": f"{PREFIX}getOuterHTML",
        "description": "Get the outer HTML of a DOM node",
        "inputSchema": {
            "type": "object",
            "properties": {
                "nodeId": {"type": "integer", "description": "Node ID from querySelector or getDocument"}
            },
            "required": ["nodeId"],
        },
    },
    {
        "name": f"{PREFIX}evaluateJavaScript",
        "description": "Execute JavaScript in the page context",
        "inputSchema": {
            "type": "object",
            "properties": {
                "expression": {"type": "string", "description": "JavaScript expression to evaluate"}
            },
            "required": ["expression"],
        },
    },
    {
        "name": f"{PREFIX}hardRefresh",
        "description": (
            "Hard refresh the page by completely destroying and recreating the web view. "
            "This is much stronger than a normal refresh - it tears down the entire browser context "
            "and creates a new one from scratch. Essential for WASM/AudioWorklet development where "
            "modules can get stuck in memory, workers need to be fully terminated, or when "
            "SharedArrayBuffer/AudioContext state needs to be completely reset. Also useful when "
            "debugging memory leaks, testing initialization sequences, or when the browser cache is "
            "corrupted. Dev tools are automatically reconnected after the refresh (dev builds only)"
        ),
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": f"{PREFIX}setAttribute",
        "description": "Set an attribute on a DOM element",
        "inputSchema": {
            "type": "object",
            "properties": {
                "nodeId": {"type": "integer", "description": "Node ID"},
                "name": {"type": "string", "description": "Attribute name"},
                "value": {"type": "string", "description": "Attribute value"},
            },
            "required": ["nodeId", "name", "value"],
        },
    },
    {
        "name": f"{PREFIX}removeAttribute",
        "description": "Remove an attribute from a DOM element",
        "inputSchema": {
            "type": "object",
            "properties": {
                "nodeId": {"type": "integer", "description": "Node ID"},
                "name": {"type": "string", "description": "Attribute name to remove"},
            },
            "required": ["nodeId", "name"],
        },
    },
    {
        "name": f"{PREFIX}navigate",
        "description": "Navigate within Tau5 app - use relative URLs like '/' or '/page'",
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "description": (
                        "Path to navigate to. Use relative URLs: '/' for home, '/page' for pages, "
                        "'../' to go up. DO NOT use absolute URLs for normal navigation. Spectra handles "
                        "ports automatically. /dev/* paths are blocked. (Advanced: External URLs like "
                        "https://example.com work ONLY with --local-only=false for testing, NOT for "
                        "regular app navigation)"
                    ),
                }
            },
            "required": ["url"],
        },
    },
    {
        "name": f"{PREFIX}getComputedStyle",
        "description": "Get computed styles for an element",
        "inputSchema": {
            "type": "object",
            "properties": {
                "selector": {"type": "string", "description": "CSS selector for the element"},
                "properties": {
                    "type": "array",
                    "description": (
                        "Optional array of specific CSS properties to retrieve (e.g., ['color', 'font-size']). "
                        "If not specified, returns all properties."
                    ),
                    "items": {"type": "string"},
                },
                "rawJson": {
                    "type": "boolean",
                    "description": "Return raw JSON instead of formatted text (default: false)",
                },
            },
            "required": ["selector"],
        },
    },
    {
        "name": f"{PREFIX}getProperties",
        "description": "Get properties of a remote object",
        "inputSchema": {
            "type": "object",
            "properties": {"objectId": {"type": "string", "description": "Remote object ID"}},
            "required": ["objectId"],
        },
    },
    {
        "name": f"{PREFIX}callMethod",
        "description": "Call a method on a remote object",
        "inputSchema": {
            "type": "object",
            "properties": {
                "objectId": {"type": "string", "description": "Remote object ID"},
                "functionDeclaration": {
                    "type": "string",
                    "description": "Function to call on the object (e.g., 'function() { return this.textContent; }')",
                },
            },
            "required": ["objectId", "functionDeclaration"],
        },
    },
    {
        "name": f"{PREFIX}releaseObject",
        "description": "Release a remote object reference",
        "inputSchema": {
            "type": "object",
            "properties": {"objectId": {"type": "string", "description": "Remote object ID to release"}},
            "required": ["objectId"],
        },
    },
    {
        "name": f"{PREFIX}getSelectionInfo",
        "description": (
            "Get detailed information about the current text selection in the page, "
            "including DOM nodes, offsets, and context"
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "includeContext": {
                    "type": "boolean",
                    "description": "Include surrounding text context (default: true)",
                },
                "contextLength": {
                    "type": "integer",
                    "description": "Number of characters of context before/after selection (default: 50)",
                },
                "includeStyles": {
                    "type": "boolean",
                    "description": "Include computed styles for selected elements (default: false)",
                },
                "includeHtml": {
                    "type": "boolean",
                    "description": "Include outer HTML of affected elements (default: false)",
                },
                "rawJson": {
                    "type": "boolean",
                    "description": "Return raw JSON instead of formatted text (default: false)",
                },
            },
            "required": [],
        },
    },
]

__all__ = ["PREFIX", "DEVTOOLS_TOOLS"]
