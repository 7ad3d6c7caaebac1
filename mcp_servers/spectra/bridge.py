"""Blocking adapters between tool handlers and the async clients.

Handlers run on worker threads; these bridges turn a client Future into a
``BridgeOutcome`` with bounded waits, reconnect-aware retries and
user-facing error strings.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .cdp_client import CdpClient, CdpError, ConnectionState
from .tidewave import TidewaveError, TidewaveProxy

if TYPE_CHECKING:
    from .config import SpectraConfig

logger = logging.getLogger("mcp.spectra.bridge")

CdpCommand = Callable[[CdpClient], Future]

_RETRYABLE_MARKERS = ("Not connected", "Connection lost")


@dataclass(slots=True)
class BridgeOutcome:
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_text(self) -> str:
        return f"Error: {self.error}" if self.error is not None else ""


def pretty_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def render_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_response(data: Any, raw: bool = False) -> dict[str, Any]:
    """Render a CDP value as one MCP content item.

    raw: objects as-is, arrays wrapped as ``{"data": ...}``, primitives as
    ``{"value": ...}``. Otherwise a text item.
    """
    if raw:
        if isinstance(data, dict):
            return data
        if isinstance(data, list):
            return {"data": data}
        return {"value": data}

    if isinstance(data, str):
        text = data
    elif isinstance(data, bool):
        text = "true" if data else "false"
    elif isinstance(data, (int, float)):
        text = render_number(data)
    elif data is None:
        text = "null"
    else:
        text = pretty_json(data)
    return {"type": "text", "text": text}


class CdpBridge:
    def __init__(
        self,
        client: CdpClient,
        *,
        command_timeout: float = 5.0,
        retries: int = 2,
        retry_delay: float = 1.0,
        connect_attempts: int = 3,
        connect_base_wait: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.command_timeout = float(command_timeout)
        self.retries = int(retries)
        self.retry_delay = float(retry_delay)
        self.connect_attempts = int(connect_attempts)
        self.connect_base_wait = float(connect_base_wait)
        self._sleep = sleep

    @classmethod
    def from_config(cls, client: CdpClient, config: SpectraConfig) -> CdpBridge:
        return cls(
            client,
            command_timeout=config.command_timeout,
            retries=config.command_retries,
            retry_delay=config.retry_delay,
            connect_attempts=config.connect_attempts,
            connect_base_wait=config.connect_base_wait,
        )

    def ensure_connected(self) -> bool:
        if self.client.is_connected():
            return True

        for attempt in range(self.connect_attempts):
            wait = self.connect_base_wait * (2**attempt)
            logger.debug("CDP connection attempt %d/%d", attempt + 1, self.connect_attempts)
            if self.client.state != ConnectionState.CONNECTING:
                self.client.connect()
            else:
                logger.debug("Connection already in progress, waiting...")
            if self.client.wait_until_settled(wait) == ConnectionState.CONNECTED:
                logger.debug("CDP connection successful")
                return True
            if attempt < self.connect_attempts - 1:
                logger.debug("Connection failed, waiting %.0fms before retry", wait * 500)
                self._sleep(wait / 2)
        return False

    def execute(self, command: CdpCommand) -> BridgeOutcome:
        for retry in range(self.retries + 1):
            can_retry = retry < self.retries
            try:
                if not self.ensure_connected():
                    return BridgeOutcome(
                        error=(
                            "Chrome DevTools not responding after multiple attempts. "
                            "Make sure Tau5 is running in dev mode with "
                            f"--remote-debugging-port={self.client.port}"
                        )
                    )

                fut = command(self.client)
                try:
                    result = fut.result(timeout=self.command_timeout)
                except FutureTimeout:
                    logger.debug("Command timeout")
                    if not self.client.is_connected() and can_retry:
                        logger.debug("Connection lost, retrying command...")
                        self._sleep(self.retry_delay)
                        continue
                    return BridgeOutcome(error="CDP command timed out")
                except CdpError as exc:
                    message = str(exc)
                    if any(marker in message for marker in _RETRYABLE_MARKERS) and can_retry:
                        logger.debug("Connection error, retrying command: %s", message)
                        self._sleep(self.retry_delay)
                        continue
                    logger.debug("Command error: %s", message)
                    return BridgeOutcome(error=message)
                return BridgeOutcome(result=result)
            except Exception as exc:  # noqa: BLE001
                if can_retry:
                    logger.debug("Exception caught, retrying: %s", exc)
                    self._sleep(self.retry_delay)
                    continue
                return BridgeOutcome(error=f"Exception: {exc}")
        return BridgeOutcome(error="Failed after all retries")


class TidewaveBridge:
    def __init__(self, proxy: TidewaveProxy, *, timeout: float = 30.0) -> None:
        self.proxy = proxy
        self.timeout = float(timeout)

    def execute(self, tool_name: str, params: dict[str, Any]) -> BridgeOutcome:
        if not self.proxy.is_available():
            return BridgeOutcome(error="Tidewave MCP server is not available")
        fut = self.proxy.call_tool(tool_name, params)
        try:
            result = fut.result(timeout=self.timeout)
        except FutureTimeout:
            return BridgeOutcome(error="Tidewave request timed out")
        except TidewaveError as exc:
            return BridgeOutcome(error=str(exc))
        return BridgeOutcome(result=result if isinstance(result, dict) else {})

    @staticmethod
    def format_response(result: dict[str, Any]) -> str:
        content = result.get("content")
        if isinstance(content, list) and content:
            first = content[0]
            if isinstance(first, dict) and "text" in first:
                return str(first.get("text") or "")
        return pretty_json(result)
