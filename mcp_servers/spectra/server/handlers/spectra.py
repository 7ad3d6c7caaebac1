"""Spectra self-description and DevTools target selection."""

from __future__ import annotations

from typing import Any

from ...config import SpectraConfig
from ..types import SpectraServices, ToolResult
from .common import as_dict, text_of


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def handle_get_config(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    cdp_connected = services.client.is_connected()
    tidewave_available = services.tidewave.is_available()
    text = (
        "Spectra Configuration:\n"
        f"  Channel: {config.channel}\n"
        f"  Chrome DevTools Port: {config.devtools_port} (connected: {_yes_no(cdp_connected)})\n"
        f"  Tidewave MCP Port: {config.tidewave_port} (available: {_yes_no(tidewave_available)})"
    )
    data = {
        "channel": config.channel,
        "devToolsPort": config.devtools_port,
        "tidewavePort": config.tidewave_port,
        "cdpConnected": cdp_connected,
        "tidewaveAvailable": tidewave_available,
    }
    return ToolResult.text(text, data=data)


def handle_list_targets(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """List page targets; non-page targets (workers, extensions) are skipped."""
    targets = services.client.available_targets()
    pages = [as_dict(t) for t in targets if as_dict(t).get("type") == "page"]
    if not pages:
        return ToolResult.text("No Chrome DevTools targets found. Make sure Tau5 is running.", data=targets)

    text = "Available Chrome DevTools Targets:\n\n"
    for index, target in enumerate(pages, start=1):
        title = text_of(target.get("title")) or "(No title)"
        text += f"{index}. {title}\n   URL: {text_of(target.get('url'))}\n\n"
    text += f"Current target: {services.client.target_title}"
    return ToolResult.text(text, data=targets)


def handle_set_target(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    title = text_of(args.get("title"))
    if not title:
        return ToolResult.error("Error: Target title cannot be empty")

    targets = services.client.available_targets()
    found = any(as_dict(t).get("type") == "page" and as_dict(t).get("title") == title for t in targets)
    if not found:
        return ToolResult.error(f"Error: No target found with title '{title}'", status="not_found")

    if services.client.set_target_by_title(title):
        return ToolResult.text(f"Successfully switched to target: {title}")
    return ToolResult.error(f"Failed to switch to target: {title}")


META_HANDLERS: dict[str, tuple] = {
    "spectra_get_config": (handle_get_config, False),
    "spectra_list_targets": (handle_list_targets, False),
    "spectra_set_target": (handle_set_target, False),
}
