from __future__ import annotations

import socketserver
import threading
from collections.abc import Iterator
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import pytest

from mcp_servers.spectra.bridge import CdpBridge, TidewaveBridge
from mcp_servers.spectra.cdp_client import ConnectionState
from mcp_servers.spectra.config import SpectraConfig
from mcp_servers.spectra.server.types import SpectraServices
from mcp_servers.spectra.session_logs import GuiLogSessions
from mcp_servers.spectra.telemetry import CaptureStore


def _done(value: Any) -> Future:
    fut: Future = Future()
    if isinstance(value, BaseException):
        fut.set_exception(value)
    else:
        fut.set_result(value)
    return fut


class FakeCdpClient:
    """In-process stand-in for CdpClient.

    CDP calls answer from ``results`` (method name -> value, exception or
    callable taking the call arguments); capture reads use a real store.
    """

    port = 9220

    def __init__(self) -> None:
        self.store = CaptureStore()
        self.connected = True
        self.results: dict[str, Any] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.targets: list[dict[str, Any]] = []
        self.target_title = "Tau5"
        self.closed = False

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self.connected else ConnectionState.NOT_CONNECTED

    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> None:
        pass

    def wait_until_settled(self, timeout: float) -> ConnectionState:
        return self.state

    def available_targets(self) -> list[dict[str, Any]]:
        return list(self.targets)

    def set_target_by_title(self, title: str) -> bool:
        self.target_title = title
        return True

    def close(self) -> None:
        self.closed = True

    def get_console_messages(self, filters: dict[str, Any] | None = None) -> Future:
        return _done(self.store.console_messages(filters))

    def get_network_requests(self, filters: dict[str, Any] | None = None) -> Future:
        return _done(self.store.network_requests(filters))

    def get_pending_exceptions(self) -> Future:
        return _done(self.store.pending_exceptions())

    def get_websocket_frames(self, filters: dict[str, Any] | None = None) -> Future:
        return _done(self.store.websocket_frames(filters))

    def get_dom_mutations(self, options: dict[str, Any] | None = None) -> Future:
        return _done(self.store.dom_mutations(options))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        def call(*args: Any) -> Future:
            self.calls.append((name, args))
            value = self.results.get(name, {})
            if callable(value):
                value = value(*args)
            return _done(value)

        return call


class FakeTidewave:
    def __init__(self) -> None:
        self.available = True
        self.results: dict[str, Any] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def is_available(self) -> bool:
        return self.available

    def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Future:
        self.calls.append((name, dict(arguments or {})))
        return _done(self.results.get(name, {"content": [{"type": "text", "text": "ok"}]}))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def config(tmp_path: Path) -> SpectraConfig:
    return SpectraConfig.for_channel(0, data_dir=str(tmp_path))


@pytest.fixture
def services(config: SpectraConfig) -> SpectraServices:
    client = FakeCdpClient()
    tidewave = FakeTidewave()
    return SpectraServices(
        client=client,  # type: ignore[arg-type]
        bridge=CdpBridge(client, command_timeout=1.0, retries=0, sleep=lambda _s: None),  # type: ignore[arg-type]
        tidewave=tidewave,  # type: ignore[arg-type]
        tidewave_bridge=TidewaveBridge(tidewave, timeout=1.0),  # type: ignore[arg-type]
        logs=GuiLogSessions(config.gui_logs_dir, config.channel),
    )


class _NotHttpHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        self.request.recv(65536)
        self.request.sendall(b"garbage not http\r\n\r\n")


@pytest.fixture
def not_http_port() -> Iterator[int]:
    """A local TCP port whose server answers every request with a non-HTTP line."""
    server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), _NotHttpHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server.server_address[1]
    finally:
        server.shutdown()
        server.server_close()
