from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from mcp_servers.spectra.ring_buffer import RingBuffer
from mcp_servers.spectra.telemetry import CaptureStore, parse_last_window


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _console(store: CaptureStore, level: str, text: str) -> None:
    store.ingest("Runtime.consoleAPICalled", {"type": level, "args": [{"type": "string", "value": text}]})


def test_ring_buffer_keeps_newest_items_in_order() -> None:
    buf: RingBuffer[int] = RingBuffer(3)
    for i in range(5):
        buf.append(i)
    assert buf.snapshot() == [2, 3, 4]
    assert buf.newest_first() == [4, 3, 2]
    assert len(buf) == 3


def test_ring_buffer_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        RingBuffer(0)


def test_console_store_is_bounded_to_ten_thousand() -> None:
    store = CaptureStore()
    for i in range(10_050):
        _console(store, "log", f"msg {i}")
    assert len(store.console) == 10_000
    texts = [m.text for m in store.console.snapshot()]
    assert texts[0] == "msg 50"
    assert texts[-1] == "msg 10049"


def test_level_filter_returns_newest_first() -> None:
    store = CaptureStore(clock=Clock())
    _console(store, "log", "a")
    _console(store, "error", "b")
    _console(store, "warn", "c")
    _console(store, "error", "d")

    result = store.console_messages({"level": "error"})
    assert [m["text"] for m in result["messages"]] == ["d", "b"]
    assert result["count"] == 2
    assert result["format"] == "json"

    both = store.console_messages({"level": ["warn", "error"]})
    assert [m["text"] for m in both["messages"]] == ["d", "c", "b"]


def test_search_and_regex_filters() -> None:
    store = CaptureStore(clock=Clock())
    _console(store, "log", "Hydra ready")
    _console(store, "log", "socket closed")
    _console(store, "log", "hydra error 42")

    assert [m["text"] for m in store.console_messages({"search": "HYDRA"})["messages"]] == [
        "hydra error 42",
        "Hydra ready",
    ]
    assert [m["text"] for m in store.console_messages({"regex": r"\d+$"})["messages"]] == ["hydra error 42"]


def test_limit_caps_results() -> None:
    store = CaptureStore(clock=Clock())
    for i in range(5):
        _console(store, "log", str(i))
    assert [m["text"] for m in store.console_messages({"limit": 2})["messages"]] == ["4", "3"]
    assert store.console_messages({"limit": -1})["count"] == 5


def test_since_last_call_only_returns_new_messages() -> None:
    clock = Clock()
    store = CaptureStore(clock=clock)
    _console(store, "log", "old")
    clock.advance(1)

    first = store.console_messages({"since_last_call": True})
    assert [m["text"] for m in first["messages"]] == ["old"]

    clock.advance(1)
    _console(store, "log", "new")
    second = store.console_messages({"since_last_call": True})
    assert [m["text"] for m in second["messages"]] == ["new"]


def test_since_last_call_is_ignored_with_other_filters() -> None:
    clock = Clock()
    store = CaptureStore(clock=clock)
    _console(store, "log", "alpha one")
    clock.advance(1)
    store.console_messages({"since_last_call": True})
    clock.advance(1)
    _console(store, "log", "alpha two")

    result = store.console_messages({"since_last_call": True, "search": "alpha"})
    assert [m["text"] for m in result["messages"]] == ["alpha two", "alpha one"]


def test_last_window_filters_by_age() -> None:
    clock = Clock()
    store = CaptureStore(clock=clock)
    _console(store, "log", "ancient")
    clock.advance(120)
    _console(store, "log", "recent")
    clock.advance(10)

    result = store.console_messages({"last": "30s"})
    assert [m["text"] for m in result["messages"]] == ["recent"]


def test_parse_last_window_units() -> None:
    assert parse_last_window("30s") == timedelta(seconds=30)
    assert parse_last_window("5m") == timedelta(minutes=5)
    assert parse_last_window("2h") == timedelta(hours=2)
    assert parse_last_window("0s") is None
    assert parse_last_window("soon") is None


def test_console_time_end_reports_elapsed_ms() -> None:
    clock = Clock()
    store = CaptureStore(clock=clock)
    label = [{"type": "string", "value": "boot"}]
    store.ingest("Runtime.consoleAPICalled", {"type": "time", "args": label})
    clock.advance(0.25)
    store.ingest("Runtime.consoleAPICalled", {"type": "timeEnd", "args": label})
    newest = store.console_messages()["messages"][0]
    assert newest["level"] == "timeEnd"
    assert newest["text"] == "boot: 250ms"


def test_console_message_carries_top_stack_frame() -> None:
    store = CaptureStore(clock=Clock())
    store.ingest(
        "Runtime.consoleAPICalled",
        {
            "type": "warn",
            "args": [{"type": "number", "value": 3.0}, {"type": "object", "className": "Map"}],
            "stackTrace": {"callFrames": [{"url": "app.js", "lineNumber": 10, "columnNumber": 4, "functionName": ""}]},
        },
    )
    msg = store.console_messages()["messages"][0]
    assert msg["text"] == "3 [Map]"
    assert msg["url"] == "app.js"
    assert msg["lineNumber"] == 10
    assert msg["functionName"] == "<anonymous>"
    assert msg["stackTrace"] == "    at <anonymous> (app.js:10:4)\n"


def test_log_entry_verbose_maps_to_debug() -> None:
    store = CaptureStore(clock=Clock())
    store.ingest("Log.entryAdded", {"entry": {"level": "verbose", "text": "hello", "url": "x.js", "lineNumber": 2}})
    msg = store.console_messages()["messages"][0]
    assert msg["level"] == "debug"
    assert msg["text"] == "hello"


def test_clear_console_empties_store() -> None:
    store = CaptureStore(clock=Clock())
    _console(store, "log", "x")
    store.clear_console()
    assert store.console_messages()["count"] == 0


def test_network_request_lifecycle() -> None:
    store = CaptureStore(clock=Clock())
    store.ingest(
        "Network.requestWillBeSent",
        {"requestId": "r1", "type": "Script", "request": {"url": "http://localhost/app.js", "method": "GET"}},
    )
    store.ingest(
        "Network.responseReceived",
        {"requestId": "r1", "response": {"status": 200, "statusText": "OK", "mimeType": "text/javascript"}},
    )
    store.ingest("Network.loadingFinished", {"requestId": "r1", "encodedDataLength": 512})
    store.ingest("Network.requestWillBeSent", {"requestId": "r2", "request": {"url": "http://cdn/x.css", "method": "GET"}})
    store.ingest("Network.loadingFailed", {"requestId": "r2", "errorText": "net::ERR_FAILED"})

    result = store.network_requests({"includeResponse": True, "includeTimings": True})
    assert result["count"] == 2
    first, second = result["requests"]
    assert first["statusCode"] == 200
    assert first["mimeType"] == "text/javascript"
    assert first["encodedDataLength"] == 512
    assert second["failureReason"] == "net::ERR_FAILED"

    only_js = store.network_requests({"urlPattern": r"\.js$"})
    assert [r["requestId"] for r in only_js["requests"]] == ["r1"]
    assert "statusCode" not in only_js["requests"][0]


def test_exceptions_are_captured() -> None:
    store = CaptureStore(clock=Clock())
    store.ingest(
        "Runtime.exceptionThrown",
        {
            "exceptionDetails": {
                "exceptionId": 7,
                "text": "Uncaught",
                "url": "app.js",
                "lineNumber": 3,
                "columnNumber": 9,
                "exception": {"description": "TypeError: boom"},
            }
        },
    )
    result = store.pending_exceptions()
    assert result["count"] == 1
    ex = result["exceptions"][0]
    assert ex["exceptionId"] == "7"
    assert ex["details"] == "TypeError: boom"


def test_websocket_frames_decode_live_view_events() -> None:
    store = CaptureStore(clock=Clock())
    store.ingest("Network.requestWillBeSent", {"requestId": "ws1", "request": {"url": "ws://localhost/live/websocket"}})
    payload = json.dumps(["4", "5", "lv:phx-1", "phx_reply", {"status": "ok"}])
    store.ingest("Network.webSocketFrameReceived", {"requestId": "ws1", "response": {"opcode": 1, "payloadData": payload}})
    store.ingest("Network.webSocketFrameSent", {"requestId": "ws1", "response": {"opcode": 1, "payloadData": "ping"}})

    result = store.websocket_frames()
    assert result["total"] == 2
    received, sent = result["frames"]
    assert received["direction"] == "received"
    assert received["url"] == "ws://localhost/live/websocket"
    assert received["liveViewEvent"] == "phx_reply"
    assert received["opcode"] == "1"
    assert sent["data"] == "ping"
    assert "parsedData" not in sent

    assert store.websocket_frames({"sentOnly": True})["frames"] == [sent]
    assert store.websocket_frames({"search": "phx_reply"})["frames"] == [received]

    store.clear_websocket_frames()
    assert store.websocket_frames()["total"] == 0


def test_dom_mutations_are_parsed_and_cleared_alone() -> None:
    store = CaptureStore(clock=Clock())
    _console(store, "log", "regular")
    _console(store, "log", '[DOM_MUTATION] {"type":"childList","target":"div#app"}')
    _console(store, "log", "[DOM_MUTATION] not json")

    result = store.dom_mutations()
    assert result["count"] == 1
    mutation = result["mutations"][0]
    assert mutation["type"] == "childList"
    assert mutation["target"] == "div#app"
    assert mutation["timestamp"] == "2025-01-01T12:00:00"

    assert store.clear_dom_mutations() == 2
    assert [m.text for m in store.console.snapshot()] == ["regular"]


def test_unknown_events_are_ignored() -> None:
    store = CaptureStore(clock=Clock())
    assert store.ingest("Page.frameNavigated", {}) is False
    assert store.ingest("Network.dataReceived", {"requestId": "x"}) is False
