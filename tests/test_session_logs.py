from __future__ import annotations

import json
from pathlib import Path

import pytest

from mcp_servers.spectra.session_logs import GuiLogSessions, LogSearchError, SearchOptions


def _write_session(root: Path, name: str, lines: list[str]) -> Path:
    folder = root / name
    folder.mkdir(parents=True)
    path = folder / "gui.log"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def logs(tmp_path: Path) -> GuiLogSessions:
    root = tmp_path / "logs" / "gui"
    _write_session(root, "2025-01-01_10-00-00_c0", ["[INFO] old start", "[ERROR] old failure"])
    _write_session(
        root,
        "2025-01-02_09-00-00_c0",
        [
            "[INFO] boot",
            "[DEBUG] loading",
            "[WARN] slow socket",
            "[ERROR] Hydra crashed",
            "[INFO] recovered",
        ],
    )
    _write_session(root, "2025-01-03_08-00-00_c1", ["[INFO] other channel"])
    return GuiLogSessions(root, 0)


def test_sessions_are_filtered_by_channel_newest_first(logs: GuiLogSessions) -> None:
    assert logs.session_names() == ["2025-01-02_09-00-00_c0", "2025-01-01_10-00-00_c0"]


def test_tail_returns_newest_lines_first(logs: GuiLogSessions) -> None:
    assert logs.tail(2) == "Session: 2025-01-02_09-00-00_c0\n[INFO] recovered\n[ERROR] Hydra crashed"
    assert logs.tail(10, session=1) == "Session: 2025-01-01_10-00-00_c0\n[ERROR] old failure\n[INFO] old start"


def test_tail_without_sessions(tmp_path: Path) -> None:
    empty = GuiLogSessions(tmp_path / "missing", 3)
    assert empty.tail() == "No logs available for channel 3"


def test_tail_out_of_range_session(logs: GuiLogSessions) -> None:
    assert logs.tail(5, session=7) == "No logs available for channel 0"


def test_describe_lists_sessions(logs: GuiLogSessions) -> None:
    sessions = logs.describe()
    assert [s["index"] for s in sessions] == [0, 1]
    assert sessions[0]["name"] == "2025-01-02_09-00-00_c0"
    assert sessions[0]["lines"] == 5
    assert sessions[0]["path"].endswith("gui.log")
    assert sessions[0]["size"] > 0


def test_plain_search_is_case_insensitive_by_default(logs: GuiLogSessions) -> None:
    out = logs.search(SearchOptions(pattern="hydra"))
    assert out == "\n=== Session: 2025-01-02_09-00-00_c0 ===\n[     4] [ERROR] Hydra crashed"


def test_case_sensitive_search(logs: GuiLogSessions) -> None:
    assert logs.search(SearchOptions(pattern="hydra", case_sensitive=True)) == "No matches found"


def test_level_filter_and_compact_format(logs: GuiLogSessions) -> None:
    out = logs.search(SearchOptions(levels=("warning", "error"), format="compact"))
    assert out == "[ERROR] Hydra crashed\n[WARN] slow socket"


def test_search_across_all_sessions(logs: GuiLogSessions) -> None:
    out = logs.search(SearchOptions(sessions="all", levels=("error",), format="compact"))
    assert out.splitlines() == ["[ERROR] Hydra crashed", "[ERROR] old failure"]


def test_session_index_list(logs: GuiLogSessions) -> None:
    out = logs.search(SearchOptions(sessions="1, 9", pattern="old", format="compact"))
    assert out.splitlines() == ["[ERROR] old failure", "[INFO] old start"]


def test_regex_search_with_context_as_json(logs: GuiLogSessions) -> None:
    out = logs.search(SearchOptions(pattern=r"slow\s+socket", is_regex=True, context=1, format="json"))
    (session,) = json.loads(out)
    assert session["session"] == "2025-01-02_09-00-00_c0"
    assert session["matchCount"] == 1
    assert session["matches"] == [
        {"line": 3, "text": "[WARN] slow socket", "before": ["[DEBUG] loading"], "after": ["[ERROR] Hydra crashed"]}
    ]


def test_range_limits_searched_lines(logs: GuiLogSessions) -> None:
    last_two = logs.search(SearchOptions(range={"last": 2}, format="compact"))
    assert last_two.splitlines() == ["[INFO] recovered", "[ERROR] Hydra crashed"]

    window = logs.search(SearchOptions(range={"start": 2, "end": 3}, format="compact"))
    assert window.splitlines() == ["[WARN] slow socket", "[DEBUG] loading"]


def test_max_results(logs: GuiLogSessions) -> None:
    out = logs.search(SearchOptions(max_results=2, format="compact"))
    assert out.splitlines() == ["[INFO] recovered", "[ERROR] Hydra crashed"]


def test_invalid_regex_raises(logs: GuiLogSessions) -> None:
    with pytest.raises(LogSearchError, match="^Invalid regex pattern: "):
        logs.search(SearchOptions(pattern="(", is_regex=True))


def test_missing_root_reports_location(tmp_path: Path) -> None:
    root = tmp_path / "nothing"
    out = GuiLogSessions(root, 2).search(SearchOptions(pattern="x"))
    assert out == f"No log sessions found for channel 2 in: {root}"


def test_options_from_tool_arguments() -> None:
    opts = SearchOptions.from_args(
        {"pattern": "x", "isRegex": True, "levels": ["error"], "maxResults": 5, "sessions": "all", "format": "json"}
    )
    assert opts.pattern == "x"
    assert opts.is_regex is True
    assert opts.levels == ("error",)
    assert opts.max_results == 5
    assert opts.sessions == "all"
    assert opts.format == "json"
    assert SearchOptions.from_args({}).sessions == "latest"


def test_non_numeric_options_fall_back_to_defaults(logs: GuiLogSessions) -> None:
    opts = SearchOptions.from_args({"context": "two", "maxResults": "lots", "range": {"start": "x", "end": None}})
    assert opts.context == 0
    assert opts.max_results == SearchOptions().max_results
    out = logs.search(opts)
    assert "[     5] [INFO] recovered" in out
    assert "[     1] [INFO] boot" in out

    last = logs.search(SearchOptions(range={"last": "many"}, format="compact"))
    assert last == "No matches found"
