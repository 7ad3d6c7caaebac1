"""
Tool handlers organized by domain.

Each handler module provides functions that handle specific tool calls.
All handlers follow the signature: (config, services, arguments) -> ToolResult
"""

from .capture import CAPTURE_HANDLERS
from .dom import DOM_HANDLERS
from .logs import LOG_HANDLERS
from .spectra import META_HANDLERS
from .tidewave import TIDEWAVE_HANDLERS

# Aggregate all handlers
ALL_HANDLERS: dict[str, tuple] = {
    **META_HANDLERS,
    **DOM_HANDLERS,
    **LOG_HANDLERS,
    **CAPTURE_HANDLERS,
    **TIDEWAVE_HANDLERS,
}

__all__ = [
    "ALL_HANDLERS",
    "META_HANDLERS",
    "DOM_HANDLERS",
    "LOG_HANDLERS",
    "CAPTURE_HANDLERS",
    "TIDEWAVE_HANDLERS",
]
