from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest

from mcp_servers.spectra.bridge import TidewaveBridge
from mcp_servers.spectra.tidewave import TidewaveError, TidewaveProxy


class _TidewaveHandler(BaseHTTPRequestHandler):
    received: list[dict[str, Any]] = []

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        pass

    def do_POST(self) -> None:  # noqa: N802
        length = int(self.headers.get("Content-Length") or 0)
        request = json.loads(self.rfile.read(length))
        self.received.append(request)
        method = request.get("method")
        params = request.get("params") or {}
        tool = params.get("name")

        if method == "tools/call" and tool == "explode":
            self._send(500, b"Internal Server Error")
            return
        if method == "tools/call" and tool == "project_eval":
            body = {"jsonrpc": "2.0", "id": request["id"], "error": {"code": -32000, "message": "eval failed", "data": {"line": 3}}}
        elif method == "tools/call":
            text = f"{tool}:{json.dumps(params.get('arguments'), sort_keys=True)}"
            body = {"jsonrpc": "2.0", "id": request["id"], "result": {"content": [{"type": "text", "text": text}]}}
        elif method == "initialize":
            body = {"jsonrpc": "2.0", "id": request["id"], "result": {"protocolVersion": params.get("protocolVersion")}}
        else:
            body = {"jsonrpc": "2.0", "id": request["id"], "result": {}}
        self._send(200, json.dumps(body).encode("utf-8"))

    def _send(self, status: int, payload: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


@pytest.fixture
def tidewave_server() -> Iterator[ThreadingHTTPServer]:
    _TidewaveHandler.received = []
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TidewaveHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def proxy(tidewave_server: ThreadingHTTPServer) -> Iterator[TidewaveProxy]:
    p = TidewaveProxy(tidewave_server.server_address[1], host="127.0.0.1", request_timeout=5.0)
    try:
        yield p
    finally:
        p.close()


def test_availability_check_marks_proxy_available(proxy: TidewaveProxy) -> None:
    assert proxy.is_available() is False
    assert proxy.check_availability() is True
    assert proxy.is_available() is True


def test_unreachable_endpoint_is_unavailable() -> None:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TidewaveHandler)
    port = server.server_address[1]
    server.server_close()
    p = TidewaveProxy(port, host="127.0.0.1", ping_timeout=0.5)
    try:
        assert p.check_availability() is False
        with pytest.raises(TidewaveError, match="^Network error: "):
            p.call_tool("get_logs", {}).result(timeout=5)
    finally:
        p.close()


def test_non_http_reply_is_a_network_error(not_http_port: int) -> None:
    p = TidewaveProxy(not_http_port, host="127.0.0.1", request_timeout=2.0, ping_timeout=2.0)
    try:
        assert p.check_availability() is False
        with pytest.raises(TidewaveError, match="^Network error: "):
            p.call_tool("get_logs", {"tail": 5}).result(timeout=5)
        assert p.pending_count() == 0
    finally:
        p.close()


class _UnavailableHandler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        pass

    def do_POST(self) -> None:  # noqa: N802
        self.rfile.read(int(self.headers.get("Content-Length") or 0))
        payload = b"Service Unavailable"
        self.send_response(503)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


def test_http_error_status_is_unavailable() -> None:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _UnavailableHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    p = TidewaveProxy(server.server_address[1], host="127.0.0.1", ping_timeout=2.0)
    try:
        assert p.check_availability() is False
        assert p.is_available() is False
    finally:
        p.close()
        server.shutdown()
        server.server_close()


def test_initialize_sends_protocol_version(proxy: TidewaveProxy) -> None:
    result = proxy.initialize({}).result(timeout=5)
    assert result == {"protocolVersion": "2025-03-26"}
    assert proxy.is_initialized() is True


def test_call_tool_posts_jsonrpc_request(proxy: TidewaveProxy) -> None:
    result = proxy.call_tool("get_docs", {"reference": "Enum.map/2"}).result(timeout=5)
    assert result == {"content": [{"type": "text", "text": 'get_docs:{"reference": "Enum.map/2"}'}]}

    request = _TidewaveHandler.received[-1]
    assert request["jsonrpc"] == "2.0"
    assert request["method"] == "tools/call"
    assert request["params"] == {"name": "get_docs", "arguments": {"reference": "Enum.map/2"}}
    assert proxy.pending_count() == 0


def test_request_ids_increase(proxy: TidewaveProxy) -> None:
    proxy.call_tool("a").result(timeout=5)
    proxy.call_tool("b").result(timeout=5)
    first, second = (r["id"] for r in _TidewaveHandler.received)
    assert second == first + 1


def test_error_message_includes_data(proxy: TidewaveProxy) -> None:
    with pytest.raises(TidewaveError) as info:
        proxy.call_tool("project_eval", {"code": "1/0"}).result(timeout=5)
    assert str(info.value) == 'eval failed - {"line":3}'


def test_http_error_without_json_reports_status(proxy: TidewaveProxy) -> None:
    with pytest.raises(TidewaveError) as info:
        proxy.call_tool("explode").result(timeout=5)
    assert str(info.value) == "Network error: HTTP 500"


def test_bridge_reports_unavailable_without_sending(proxy: TidewaveProxy) -> None:
    bridge = TidewaveBridge(proxy, timeout=5.0)
    outcome = bridge.execute("get_logs", {"tail": 10})
    assert outcome.error == "Tidewave MCP server is not available"
    assert _TidewaveHandler.received == []


def test_bridge_returns_result_when_available(proxy: TidewaveProxy) -> None:
    proxy.check_availability()
    bridge = TidewaveBridge(proxy, timeout=5.0)
    outcome = bridge.execute("get_logs", {"tail": 10})
    assert outcome.ok
    assert TidewaveBridge.format_response(outcome.result) == 'get_logs:{"tail": 10}'


def test_format_response_falls_back_to_pretty_json() -> None:
    assert TidewaveBridge.format_response({"content": []}) == '{\n  "content": []\n}'
    assert TidewaveBridge.format_response({"content": [{"type": "text", "text": "hi"}]}) == "hi"
