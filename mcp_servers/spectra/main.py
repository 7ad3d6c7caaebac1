"""
MCP stdio server bridging Chrome DevTools and Tidewave for Tau5.

This module provides the entry point, newline framing and JSON-RPC handling.
Tool dispatch is handled via registry pattern in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import IO, Any

from .activity_log import ActivityLog
from .bridge import CdpBridge, TidewaveBridge
from .cdp_client import CdpClient, ConnectionState
from .config import ConfigError, SpectraConfig
from .server.contract import SERVER_INFO, initialize_result, tools_list
from .server.registry import ToolRegistry, create_default_registry
from .server.types import SpectraServices, ToolResult
from .session_logs import GuiLogSessions
from .tidewave import TidewaveError, TidewaveProxy

logger = logging.getLogger("mcp.spectra")

JSONRPC_VERSION = "2.0"
MAX_MESSAGE_BYTES = 65536

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

NOTIFICATIONS = {"notifications/initialized", "notifications/cancelled"}

DEBUG_LOG_FILE = "tau5-spectra-debug.log"
SHUTDOWN_GRACE = 0.1
PRECONNECT_DELAY = 0.5
TIDEWAVE_INIT_WAIT = 1.0

__all__ = ["FrameError", "McpServer", "StdioFramer", "build_services", "main"]


# ─────────────────────────────────────────────────────────────────────────────
# Framing
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class FrameError:
    code: int
    message: str


def _incomplete(text: str, exc: json.JSONDecodeError) -> bool:
    return exc.pos >= len(text) or exc.msg.startswith("Unterminated string")


class StdioFramer:
    """Accumulates stdin text until it parses as one JSON document.

    ``feed`` returns the decoded messages and framing errors produced by the
    new chunk, in order.
    """

    def __init__(self, max_bytes: int = MAX_MESSAGE_BYTES) -> None:
        self.max_bytes = int(max_bytes)
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[Any]:
        self._buffer += chunk
        text = self._buffer.strip()
        if not text:
            self._buffer = ""
            return []
        try:
            message = json.loads(text)
        except json.JSONDecodeError as exc:
            if len(self._buffer.encode("utf-8")) > self.max_bytes:
                logger.debug("Buffer exceeded %d bytes, clearing", self.max_bytes)
                self._buffer = ""
                return [FrameError(PARSE_ERROR, "Message too large")]
            if _incomplete(text, exc):
                logger.debug("Incomplete JSON, buffering %d bytes", len(self._buffer))
                return []
            logger.debug("JSON parse error: %s", exc)
            self._buffer = ""
            return [FrameError(PARSE_ERROR, "Parse error")]
        self._buffer = ""
        return [message]


# ─────────────────────────────────────────────────────────────────────────────
# Server
# ─────────────────────────────────────────────────────────────────────────────


class McpServer:
    """MCP Server with registry-based tool dispatch."""

    def __init__(
        self,
        config: SpectraConfig,
        services: SpectraServices,
        registry: ToolRegistry | None = None,
        *,
        out: IO[str] | None = None,
        max_workers: int = 8,
    ) -> None:
        self.config = config
        self.services = services
        self.registry = registry if registry is not None else create_default_registry()
        self.framer = StdioFramer()
        self.initialized = False

        self._out = out if out is not None else sys.stdout
        self._write_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="spectra-tool")
        self._inflight: set[Future] = set()
        self._inflight_lock = threading.Lock()

    # ── output ──────────────────────────────────────────────────────────────

    def _write_message(self, payload: dict[str, Any]) -> None:
        """Write one JSON-RPC message to stdout."""
        data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        with self._write_lock:
            self._out.write(data + "\n")
            self._out.flush()

    def _respond(self, request_id: Any, result: dict[str, Any]) -> None:
        if request_id is None:
            return
        self._write_message({"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result})

    def _send_error(self, request_id: Any, code: int, message: str) -> None:
        self._write_message(
            {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}
        )

    # ── input ───────────────────────────────────────────────────────────────

    def feed(self, chunk: str) -> None:
        """Run a chunk of stdin text through the framer and dispatch results."""
        for item in self.framer.feed(chunk):
            if isinstance(item, FrameError):
                self._send_error(None, item.code, item.message)
            else:
                self.dispatch(item)

    def dispatch(self, message: Any) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not isinstance(message, dict):
            self._send_error(None, INVALID_REQUEST, "Invalid Request")
            return
        request_id = message.get("id")
        if message.get("jsonrpc") != JSONRPC_VERSION or "method" not in message:
            self._send_error(request_id, INVALID_REQUEST, "Invalid Request")
            return

        method = message.get("method")
        params = message.get("params") if isinstance(message.get("params"), dict) else {}
        logger.debug("Method: %s, ID: %s", method, request_id)

        try:
            if method == "initialize":
                self.initialized = True
                self._respond(request_id, initialize_result())
            elif method == "tools/list":
                self._respond(request_id, {"tools": tools_list()})
            elif method == "tools/call":
                self._submit_call(request_id, params)
            elif method in NOTIFICATIONS:
                return
            elif method == "ping":
                self._respond(request_id, {})
            else:
                self._send_error(request_id, METHOD_NOT_FOUND, "Method not found")
        except Exception as exc:
            logger.exception("Request %s failed", method)
            self._send_error(request_id, INTERNAL_ERROR, f"Internal error: {exc}")

    # ── tools/call ──────────────────────────────────────────────────────────

    def call_tool(self, name: Any, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run one tool and build the ``tools/call`` result."""
        tool = name if isinstance(name, str) else ""
        if not self.registry.has(tool):
            result = ToolResult.error(f"Error executing tool: Unknown tool: {tool}")
        else:
            result = self.registry.dispatch(tool, self.config, self.services, arguments)

        payload: dict[str, Any] = {"content": result.to_content_list()}
        if result.is_error:
            payload["isError"] = True
        return payload

    def _run_call(self, request_id: Any, params: dict[str, Any]) -> None:
        arguments = params.get("arguments") if isinstance(params.get("arguments"), dict) else {}
        try:
            self._respond(request_id, self.call_tool(params.get("name"), arguments))
        except Exception as exc:
            logger.exception("tools/call failed")
            self._send_error(request_id, INTERNAL_ERROR, f"Internal error: {exc}")

    def _submit_call(self, request_id: Any, params: dict[str, Any]) -> None:
        fut = self._executor.submit(self._run_call, request_id, params)
        with self._inflight_lock:
            self._inflight.add(fut)
        fut.add_done_callback(self._forget)

    def _forget(self, fut: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(fut)

    # ── lifecycle ───────────────────────────────────────────────────────────

    def serve(self, stdin: IO[str] | None = None) -> None:
        """Read stdin line by line until EOF, then shut down."""
        stream = stdin if stdin is not None else sys.stdin
        for line in iter(stream.readline, ""):
            self.feed(line)
        logger.info("Stdin closed, shutting down MCP server...")
        self.shutdown()

    def shutdown(self, grace: float = SHUTDOWN_GRACE) -> None:
        with self._inflight_lock:
            inflight = list(self._inflight)
        if inflight:
            wait_futures(inflight, timeout=grace)
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.services.client.close()
        self.services.tidewave.close()


# ─────────────────────────────────────────────────────────────────────────────
# Wiring
# ─────────────────────────────────────────────────────────────────────────────


class _ConnectionReporter:
    """Logs CDP connect/disconnect transitions once each."""

    def __init__(self) -> None:
        self._was_connected = False

    def __call__(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            self._was_connected = True
            logger.info("Successfully connected to Chrome DevTools")
        elif state in (ConnectionState.NOT_CONNECTED, ConnectionState.FAILED) and self._was_connected:
            self._was_connected = False
            logger.info("CDP Client disconnected - Tau5 may not be running")


def build_services(config: SpectraConfig) -> SpectraServices:
    client = CdpClient(config, on_state_change=_ConnectionReporter())
    tidewave = TidewaveProxy(
        config.tidewave_port,
        request_timeout=config.tidewave_timeout,
        health_check_interval=config.health_check_interval,
    )
    return SpectraServices(
        client=client,
        bridge=CdpBridge.from_config(client, config),
        tidewave=tidewave,
        tidewave_bridge=TidewaveBridge(tidewave, timeout=config.tidewave_timeout),
        logs=GuiLogSessions(config.gui_logs_dir, config.channel),
        activity=ActivityLog(config.mcp_logs_dir, config.activity_log_name),
    )


def configure_logging(debug: bool) -> None:
    """Logs go to stderr; stdout carries the protocol."""
    fmt = "%(asctime)s %(levelname)s %(message)s"
    handlers: list[logging.Handler] = []
    if debug:
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(logging.Formatter("# " + fmt))
        debug_file = logging.FileHandler(DEBUG_LOG_FILE, encoding="utf-8")
        debug_file.setFormatter(logging.Formatter(fmt))
        handlers = [stderr, debug_file]
    else:
        handlers = [logging.StreamHandler(sys.stderr)]
        handlers[0].setFormatter(logging.Formatter(fmt))
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, handlers=handlers, force=True)


def start_tidewave(proxy: TidewaveProxy) -> None:
    proxy.check_availability()
    try:
        proxy.initialize({}).result(timeout=TIDEWAVE_INIT_WAIT)
        logger.info("Tidewave MCP initialized successfully")
    except FutureTimeout:
        logger.info("Tidewave unavailable: initialize timed out")
    except TidewaveError as exc:
        logger.info("Tidewave unavailable: %s", exc)
    proxy.start_health_checks()


def _preconnect(bridge: CdpBridge) -> None:
    if not bridge.ensure_connected():
        logger.info("Pre-emptive CDP connection failed; tools will retry on demand")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for MCP server."""
    try:
        config = SpectraConfig.from_args(argv)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.debug)
    logger.debug("%s Server v%s", SERVER_INFO["name"], SERVER_INFO["version"])
    logger.debug("Connecting to Chrome DevTools on port %d", config.devtools_port)
    logger.debug("Connecting to Tidewave MCP on port %d", config.tidewave_port)

    services = build_services(config)
    server = McpServer(config, services)
    start_tidewave(services.tidewave)

    logger.info("MCP server ready. Starting pre-emptive CDP connection...")
    timer = threading.Timer(PRECONNECT_DELAY, _preconnect, args=(services.bridge,))
    timer.daemon = True
    timer.start()

    server.serve()
    timer.cancel()
    return 0


if __name__ == "__main__":
    sys.exit(main())
