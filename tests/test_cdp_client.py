from __future__ import annotations

import asyncio
import base64
import json
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest
import websockets

from mcp_servers.spectra import js_snippets, navigation
from mcp_servers.spectra.cdp_client import CdpClient, CdpError, ConnectionState, inspect_response_body, select_target
from mcp_servers.spectra.config import SpectraConfig

HOLD = object()


class FakeDevTools:
    """Page-target websocket plus the /json/list discovery endpoint."""

    def __init__(self) -> None:
        self.responders: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.received: list[dict[str, Any]] = []
        self.held: list[int] = []
        self.targets: list[dict[str, Any]] = []
        self._connections: list[Any] = []
        self._tasks: set[asyncio.Future] = set()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._ws_server: Any = None
        self._http: ThreadingHTTPServer | None = None
        self.ws_port = 0
        self.http_port = 0

    def start(self) -> None:
        self._thread.start()
        asyncio.run_coroutine_threadsafe(self._start_ws(), self._loop).result(timeout=5)
        self.targets = [
            {
                "id": "page-1",
                "type": "page",
                "title": "Tau5",
                "url": "http://localhost:5555/app",
                "webSocketDebuggerUrl": f"ws://127.0.0.1:{self.ws_port}/devtools/page/1",
            }
        ]
        fake = self

        class _Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                pass

            def do_GET(self) -> None:  # noqa: N802
                payload = json.dumps(fake.targets).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

        self._http = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
        self.http_port = self._http.server_address[1]
        threading.Thread(target=self._http.serve_forever, daemon=True).start()

    async def _start_ws(self) -> None:
        self._ws_server = await websockets.serve(self._handle, "127.0.0.1", 0)
        self.ws_port = next(iter(self._ws_server.sockets)).getsockname()[1]

    async def _handle(self, ws: Any) -> None:
        self._connections.append(ws)
        try:
            async for raw in ws:
                msg = json.loads(raw)
                self.received.append(msg)
                task = asyncio.ensure_future(self._answer(ws, msg))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except websockets.exceptions.ConnectionClosed:
            pass

    async def _answer(self, ws: Any, msg: dict[str, Any]) -> None:
        responder = self.responders.get(msg.get("method", ""))
        value = responder(msg.get("params") or {}) if responder is not None else {}
        if value is HOLD:
            self.held.append(msg["id"])
            return
        if isinstance(value, tuple):
            delay, value = value
            await asyncio.sleep(delay)
        if isinstance(value, dict) and "error" in value:
            reply = {"id": msg["id"], "error": value["error"]}
        else:
            reply = {"id": msg["id"], "result": value}
        await ws.send(json.dumps(reply))

    def _broadcast(self, payload: dict[str, Any]) -> None:
        async def _send() -> None:
            for ws in list(self._connections):
                await ws.send(json.dumps(payload))

        asyncio.run_coroutine_threadsafe(_send(), self._loop).result(timeout=5)

    def emit(self, method: str, params: dict[str, Any]) -> None:
        self._broadcast({"method": method, "params": params})

    def release(self, req_id: int, result: dict[str, Any]) -> None:
        self._broadcast({"id": req_id, "result": result})

    def drop_connections(self) -> None:
        async def _close() -> None:
            for ws in list(self._connections):
                await ws.close()
            self._connections.clear()

        asyncio.run_coroutine_threadsafe(_close(), self._loop).result(timeout=5)

    def methods(self) -> list[str]:
        return [m["method"] for m in self.received]

    def stop(self) -> None:
        if self._http is not None:
            self._http.shutdown()
            self._http.server_close()

        async def _shutdown() -> None:
            self._ws_server.close()
            await self._ws_server.wait_closed()

        asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=5)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _config(tmp_path: Path, port: int) -> SpectraConfig:
    return SpectraConfig.for_channel(
        0,
        devtools_port=port,
        data_dir=str(tmp_path),
        command_timeout=2.0,
        http_timeout=2.0,
        heartbeat_interval=60.0,
    )


@pytest.fixture
def devtools() -> Iterator[FakeDevTools]:
    fake = FakeDevTools()
    fake.start()
    try:
        yield fake
    finally:
        fake.stop()


@pytest.fixture
def client(devtools: FakeDevTools, tmp_path: Path) -> Iterator[CdpClient]:
    c = CdpClient(_config(tmp_path, devtools.http_port), host="127.0.0.1")
    try:
        yield c
    finally:
        c.close()


def _connected(c: CdpClient, devtools: FakeDevTools) -> CdpClient:
    c.connect()
    assert c.wait_until_settled(5.0) == ConnectionState.CONNECTED
    # domain enabling finished
    assert _wait_for(lambda: "Performance.enable" in devtools.methods() and c.pending_count() == 0)
    return c


# ─────────────────────────────────────────────────────────────────────────────
# Target selection
# ─────────────────────────────────────────────────────────────────────────────


def test_select_target_prefers_exact_title() -> None:
    targets = [
        {"type": "service_worker", "title": "Tau5"},
        {"type": "page", "title": "Other", "url": "http://x"},
        {"type": "page", "title": "Tau5", "url": "http://y"},
    ]
    assert select_target(targets, "Tau5") == targets[2]
    assert select_target(targets, "Missing") is None


def test_select_target_without_title_skips_devtools_pages() -> None:
    targets = [
        {"type": "page", "title": "DevTools", "url": "devtools://devtools/inspector.html"},
        {"type": "page", "title": "App", "url": "http://localhost:5555"},
    ]
    assert select_target(targets, "") == targets[1]
    assert select_target(targets[:1], "") == targets[0]


def test_inspect_response_body_detects_wasm() -> None:
    module = b"\x00asm\x01\x00\x00\x00"
    info = inspect_response_body({"body": base64.b64encode(module).decode(), "base64Encoded": True})
    assert info["isWasmModule"] is True
    assert info["wasmVersion"] == 1
    assert info["decodedSize"] == 8

    plain = inspect_response_body({"body": "hello", "base64Encoded": False})
    assert plain == {"body": "hello", "base64Encoded": False}


# ─────────────────────────────────────────────────────────────────────────────
# Connection lifecycle
# ─────────────────────────────────────────────────────────────────────────────


def test_connect_attaches_to_titled_page(devtools: FakeDevTools, client: CdpClient) -> None:
    _connected(client, devtools)
    assert client.target_id == "page-1"
    assert client.ws_url.endswith("/devtools/page/1")
    assert _wait_for(lambda: "Performance.enable" in devtools.methods())
    assert [m for m in devtools.methods() if m.endswith(".enable")] == [
        "DOM.enable",
        "Runtime.enable",
        "Log.enable",
        "Page.enable",
        "Network.enable",
        "Security.enable",
        "Performance.enable",
    ]


def test_discovery_failure_sets_failed(tmp_path: Path) -> None:
    probe = ThreadingHTTPServer(("127.0.0.1", 0), BaseHTTPRequestHandler)
    port = probe.server_address[1]
    probe.server_close()

    c = CdpClient(_config(tmp_path, port), host="127.0.0.1")
    try:
        c.connect()
        assert c.wait_until_settled(5.0) == ConnectionState.FAILED
        assert (c.last_error or "").startswith(f"Cannot connect to Chrome DevTools on port {port}")
    finally:
        c.close()


def test_non_http_discovery_reply_sets_failed(not_http_port: int, tmp_path: Path) -> None:
    c = CdpClient(_config(tmp_path, not_http_port), host="127.0.0.1")
    try:
        c.connect()
        assert c.wait_until_settled(5.0) == ConnectionState.FAILED
        assert (c.last_error or "").startswith(f"Cannot connect to Chrome DevTools on port {not_http_port}")
    finally:
        c.close()


def test_unexpected_discovery_error_sets_failed_and_allows_retry(
    devtools: FakeDevTools, client: CdpClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken() -> list[dict[str, Any]]:
        raise RuntimeError("discovery exploded")

    monkeypatch.setattr(client, "fetch_targets", broken)
    client.connect()
    assert client.wait_until_settled(5.0) == ConnectionState.FAILED
    assert client.last_error == f"Cannot connect to Chrome DevTools on port {client.port}: discovery exploded"

    monkeypatch.undo()
    _connected(client, devtools)


def test_missing_target_leaves_client_not_connected(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.targets[0]["title"] = "Something else"
    client.connect()
    assert client.wait_until_settled(5.0) == ConnectionState.NOT_CONNECTED
    assert client.last_error == "No suitable DevTools target found - check if Tau5 is running in dev mode"


def test_commands_fail_fast_when_not_connected(client: CdpClient) -> None:
    with pytest.raises(CdpError, match="^Not connected to Chrome DevTools"):
        client.get_document().result(timeout=1)
    assert client.pending_count() == 0


def test_state_changes_are_reported(devtools: FakeDevTools, tmp_path: Path) -> None:
    seen: list[ConnectionState] = []
    c = CdpClient(_config(tmp_path, devtools.http_port), host="127.0.0.1", on_state_change=seen.append)
    try:
        _connected(c, devtools)
        devtools.drop_connections()
        assert _wait_for(lambda: c.state == ConnectionState.NOT_CONNECTED)
    finally:
        c.close()
    assert seen[:3] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.NOT_CONNECTED]


# ─────────────────────────────────────────────────────────────────────────────
# Request/response correlation
# ─────────────────────────────────────────────────────────────────────────────


def test_concurrent_calls_get_their_own_responses(devtools: FakeDevTools, client: CdpClient) -> None:
    def evaluate(params: dict[str, Any]) -> Any:
        n = int(params["expression"])
        # Later requests answer first.
        return (0.01 * (20 - n), {"result": {"type": "number", "value": n}})

    devtools.responders["Runtime.evaluate"] = evaluate
    _connected(client, devtools)

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = list(pool.map(lambda n: client.evaluate_javascript(str(n)), range(20)))
    values = [f.result(timeout=5)["result"]["value"] for f in futures]
    assert values == list(range(20))
    assert client.pending_count() == 0


def test_error_response_raises_with_message(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["DOM.getOuterHTML"] = lambda params: {"error": {"code": -32000, "message": "Could not find node with given id"}}
    _connected(client, devtools)
    with pytest.raises(CdpError, match="^Could not find node with given id$"):
        client.get_outer_html(999).result(timeout=5)


def test_connection_loss_fails_every_pending_call(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["Debugger.pause"] = lambda params: HOLD
    _connected(client, devtools)

    futures = [client.send_command("Debugger.pause") for _ in range(3)]
    assert _wait_for(lambda: len(devtools.held) == 3)
    assert client.pending_count() == 3

    devtools.drop_connections()
    for fut in futures:
        with pytest.raises(CdpError, match="^Connection lost$"):
            fut.result(timeout=5)
    assert client.pending_count() == 0
    assert _wait_for(lambda: client.state == ConnectionState.NOT_CONNECTED)


def test_late_response_after_timeout_clears_pending_entry(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["Debugger.pause"] = lambda params: HOLD
    _connected(client, devtools)

    fut = client.send_command("Debugger.pause")
    with pytest.raises(FutureTimeout):
        fut.result(timeout=0.1)
    assert _wait_for(lambda: len(devtools.held) == 1)
    assert client.pending_count() == 1

    devtools.release(devtools.held[0], {"late": True})
    assert _wait_for(lambda: client.pending_count() == 0)
    assert fut.result(timeout=1) == {"late": True}


def test_query_selector_chains_document_lookup(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["DOM.getDocument"] = lambda params: {"root": {"nodeId": 1}}
    devtools.responders["DOM.querySelector"] = lambda params: {"nodeId": 42 if params["nodeId"] == 1 else 0}
    _connected(client, devtools)
    assert client.query_selector("#app").result(timeout=5) == {"nodeId": 42}
    sent = [m for m in devtools.received if m["method"] == "DOM.querySelector"]
    assert sent[-1]["params"] == {"nodeId": 1, "selector": "#app"}


def test_dom_edits_send_node_commands(devtools: FakeDevTools, client: CdpClient) -> None:
    _connected(client, devtools)
    client.set_attribute_value(7, "class", "hot").result(timeout=5)
    client.remove_attribute(7, "hidden").result(timeout=5)
    client.set_outer_html(7, "<p>new</p>").result(timeout=5)
    edits = [m for m in devtools.received if m["method"].startswith("DOM.") and m["method"] != "DOM.enable"]
    assert [(m["method"], m["params"]) for m in edits] == [
        ("DOM.setAttributeValue", {"nodeId": 7, "name": "class", "value": "hot"}),
        ("DOM.removeAttribute", {"nodeId": 7, "name": "hidden"}),
        ("DOM.setOuterHTML", {"nodeId": 7, "outerHTML": "<p>new</p>"}),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Navigation
# ─────────────────────────────────────────────────────────────────────────────


def test_dev_paths_are_blocked_before_any_traffic(devtools: FakeDevTools, client: CdpClient) -> None:
    _connected(client, devtools)
    before = len(devtools.received)
    with pytest.raises(CdpError) as info:
        client.navigate_to("/dev/dashboard").result(timeout=5)
    assert str(info.value) == navigation.BLOCKED_MESSAGE
    assert len(devtools.received) == before
    assert "Page.navigate" not in devtools.methods()


def test_relative_url_is_resolved_against_current_page(devtools: FakeDevTools, client: CdpClient) -> None:
    def evaluate(params: dict[str, Any]) -> Any:
        if params.get("expression") == js_snippets.CURRENT_URL:
            return {"result": {"type": "string", "value": "http://localhost:5555/app/page"}}
        return {}

    devtools.responders["Runtime.evaluate"] = evaluate
    devtools.responders["Page.navigate"] = lambda params: {"frameId": "F1"}
    _connected(client, devtools)

    result = client.navigate_to("settings").result(timeout=5)
    assert result == {"frameId": "F1", "resolvedUrl": "http://localhost:5555/app/settings"}
    sent = [m for m in devtools.received if m["method"] == "Page.navigate"]
    assert sent[-1]["params"] == {"url": "http://localhost:5555/app/settings"}


def test_relative_url_into_dev_is_blocked_after_resolution(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["Runtime.evaluate"] = lambda params: {"result": {"type": "string", "value": "http://localhost:5555/app/page"}}
    _connected(client, devtools)
    with pytest.raises(CdpError) as info:
        client.navigate_to("../dev/tools").result(timeout=5)
    assert str(info.value) == navigation.BLOCKED_MESSAGE
    assert "Page.navigate" not in devtools.methods()


def test_external_navigation_is_flagged(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["Page.navigate"] = lambda params: {"frameId": "F2"}
    _connected(client, devtools)
    result = client.navigate_to("https://hexdocs.pm/phoenix").result(timeout=5)
    assert result == {"frameId": "F2", "externalNavigation": True, "navigatedTo": "https://hexdocs.pm/phoenix"}


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────


def test_events_feed_the_capture_store(devtools: FakeDevTools, client: CdpClient) -> None:
    _connected(client, devtools)
    devtools.emit("Runtime.consoleAPICalled", {"type": "error", "args": [{"type": "string", "value": "boom"}]})
    devtools.emit(
        "Network.requestWillBeSent",
        {"requestId": "r1", "type": "Document", "request": {"url": "http://localhost:5555/", "method": "GET"}},
    )
    assert _wait_for(lambda: len(client.store.console) == 1 and len(client.store.network) == 1)

    console = client.get_console_messages({"level": "error"}).result(timeout=1)
    assert [m["text"] for m in console["messages"]] == ["boom"]
    network = client.get_network_requests().result(timeout=1)
    assert network["requests"][0]["url"] == "http://localhost:5555/"


def test_invalid_console_regex_is_reported(client: CdpClient) -> None:
    with pytest.raises(CdpError, match="^Invalid regex pattern: "):
        client.get_console_messages({"regex": "("}).result(timeout=1)


def test_derived_reads_shape_results(devtools: FakeDevTools, client: CdpClient) -> None:
    devtools.responders["Performance.getMetrics"] = lambda params: {
        "metrics": [
            {"name": "JSHeapUsedSize", "value": 10.0},
            {"name": "Nodes", "value": 300},
            {"name": "JSHeapTotalSize", "value": 20.0},
        ]
    }
    devtools.responders["Target.getTargets"] = lambda params: {
        "targetInfos": [{"type": "page", "url": "a"}, {"type": "worker", "url": "w.js"}]
    }
    devtools.responders["Page.getResourceTree"] = lambda params: {
        "frameTree": {
            "resources": [{"url": "app.js"}],
            "childFrames": [{"resources": [{"url": "frame.css"}]}],
        }
    }
    _connected(client, devtools)

    assert client.get_memory_usage().result(timeout=5) == {"JSHeapUsedSize": 10.0, "JSHeapTotalSize": 20.0}
    assert client.get_workers().result(timeout=5) == {"workers": [{"type": "worker", "url": "w.js"}], "count": 1}
    resources = client.get_loaded_resources().result(timeout=5)
    assert [r["url"] for r in resources["resources"]] == ["app.js", "frame.css"]
