"""Complete Spectra tool catalog in advertised order."""

from __future__ import annotations

from typing import Any

from .definitions_capture import CAPTURE_TOOLS
from .definitions_devtools import DEVTOOLS_TOOLS
from .definitions_logs import LOG_TOOLS
from .definitions_meta import META_TOOLS
from .definitions_tidewave import TIDEWAVE_TOOLS

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    *META_TOOLS,
    *DEVTOOLS_TOOLS,
    *LOG_TOOLS,
    *CAPTURE_TOOLS,
    *TIDEWAVE_TOOLS,
]

__all__ = ["TOOL_DEFINITIONS"]
