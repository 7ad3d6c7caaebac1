"""Read-only access to the host app's GUI log sessions.

Sessions live under ``<data>/logs/gui/<session>/gui.log``. Only sessions
whose directory name ends in ``_c<channel>`` belong to this channel; they are
ordered newest first (directory name, descending), so index 0 is the latest.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

LOG_FILE_NAME = "gui.log"
DEFAULT_TAIL_LINES = 100
DEFAULT_MAX_RESULTS = 100


class LogSearchError(ValueError):
    pass


def _int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class SearchOptions:
    sessions: str = "latest"
    pattern: str = ""
    is_regex: bool = False
    case_sensitive: bool = False
    levels: tuple[str, ...] = ()
    range: dict[str, Any] | None = None
    context: int = 0
    max_results: int = DEFAULT_MAX_RESULTS
    format: str = "full"

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> SearchOptions:
        levels = args.get("levels") if isinstance(args.get("levels"), list) else []
        rng = args.get("range") if isinstance(args.get("range"), dict) else None
        return cls(
            sessions=str(args.get("sessions") or "latest"),
            pattern=str(args.get("pattern") or ""),
            is_regex=bool(args.get("isRegex", False)),
            case_sensitive=bool(args.get("caseSensitive", False)),
            levels=tuple(str(v) for v in levels),
            range=rng or None,
            context=_int(args.get("context"), 0),
            max_results=_int(args.get("maxResults"), DEFAULT_MAX_RESULTS),
            format=str(args.get("format") or "full"),
        )


def _level_tags(levels: tuple[str, ...]) -> set[str]:
    tags = set()
    for level in levels:
        upper = level.upper()
        if upper == "WARNING":
            upper = "WARN"
        tags.add(f"[{upper}]")
    return tags


def _read_lines(path: Path) -> list[str]:
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        return fh.read().splitlines()


def _apply_range(lines: list[tuple[int, str]], rng: dict[str, Any] | None) -> list[tuple[int, str]]:
    if not rng:
        return lines
    if "last" in rng:
        last = max(0, _int(rng.get("last"), 0))
        return lines[max(0, len(lines) - last) :]
    start = max(0, _int(rng.get("start"), 1) - 1)
    end = min(len(lines), _int(rng.get("end"), len(lines)))
    return lines[start:end] if end > start else []


class GuiLogSessions:
    def __init__(self, gui_logs_dir: str | Path, channel: int) -> None:
        self.root = Path(gui_logs_dir)
        self.channel = int(channel)

    @property
    def channel_suffix(self) -> str:
        return f"_c{self.channel}"

    def session_names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        names = [p.name for p in self.root.iterdir() if p.is_dir() and p.name.endswith(self.channel_suffix)]
        return sorted(names, reverse=True)

    def log_path(self, name: str) -> Path:
        return self.root / name / LOG_FILE_NAME

    # ─────────────────────────────────────────────────────────────────────────
    # tau5_logs_get
    # ─────────────────────────────────────────────────────────────────────────

    def tail(self, lines: int = DEFAULT_TAIL_LINES, session: int = 0) -> str:
        names = self.session_names()
        if not names or session < 0 or session >= len(names):
            return f"No logs available for channel {self.channel}"
        name = names[session]
        try:
            all_lines = _read_lines(self.log_path(name))
        except OSError:
            return "Could not open log file"
        count = max(0, int(lines))
        recent = all_lines[max(0, len(all_lines) - count) :] if count else []
        recent.reverse()
        return f"Session: {name}\n" + "\n".join(recent)

    # ─────────────────────────────────────────────────────────────────────────
    # tau5_logs_getSessions
    # ─────────────────────────────────────────────────────────────────────────

    def describe(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for index, name in enumerate(self.session_names()):
            path = self.log_path(name)
            info: dict[str, Any] = {"index": index, "name": name, "path": str(path)}
            if path.is_file():
                st = path.stat()
                info["size"] = st.st_size
                info["modified"] = datetime.fromtimestamp(st.st_mtime).isoformat(timespec="seconds")
                try:
                    info["lines"] = len(_read_lines(path))
                except OSError:
                    pass
            out.append(info)
        return out

    # ─────────────────────────────────────────────────────────────────────────
    # tau5_logs_search
    # ─────────────────────────────────────────────────────────────────────────

    def _select(self, spec: str, count: int) -> list[int]:
        if spec == "all":
            return list(range(count))
        if spec == "latest":
            return [0]
        picked = []
        for part in spec.split(","):
            part = part.strip()
            if not part:
                continue
            try:
                idx = int(part)
            except ValueError:
                continue
            if 0 <= idx < count:
                picked.append(idx)
        return picked

    def search(self, opts: SearchOptions) -> str:
        regex = None
        if opts.is_regex and opts.pattern:
            flags = 0 if opts.case_sensitive else re.IGNORECASE
            try:
                regex = re.compile(opts.pattern, flags)
            except re.error as exc:
                raise LogSearchError(f"Invalid regex pattern: {exc}") from exc

        names = self.session_names()
        if not names:
            return f"No log sessions found for channel {self.channel} in: {self.root}"

        tags = _level_tags(opts.levels)
        needle = opts.pattern if opts.case_sensitive else opts.pattern.lower()

        json_results: list[dict[str, Any]] = []
        text_results: list[str] = []
        for idx in self._select(opts.sessions, len(names)):
            name = names[idx]
            path = self.log_path(name)
            try:
                raw_lines = _read_lines(path)
            except OSError:
                continue
            lines = _apply_range(list(enumerate(raw_lines, start=1)), opts.range)

            matches: list[tuple[int, int, str]] = []
            for pos in range(len(lines) - 1, -1, -1):
                line_no, line = lines[pos]
                if tags and not any(tag in line for tag in tags):
                    continue
                if opts.pattern:
                    if regex is not None:
                        if not regex.search(line):
                            continue
                    elif needle not in (line if opts.case_sensitive else line.lower()):
                        continue
                matches.append((pos, line_no, line))
                if len(matches) >= opts.max_results:
                    break

            if opts.format == "json":
                entries = []
                for pos, line_no, line in matches:
                    entry: dict[str, Any] = {"line": line_no, "text": line}
                    if opts.context > 0:
                        before = [text for _, text in lines[max(0, pos - opts.context) : pos]]
                        after = [text for _, text in lines[pos + 1 : pos + 1 + opts.context]]
                        if before:
                            entry["before"] = before
                        if after:
                            entry["after"] = after
                    entries.append(entry)
                json_results.append(
                    {"session": name, "file": str(path), "matches": entries, "matchCount": len(matches)}
                )
            elif matches:
                full = opts.format == "full"
                if full:
                    text_results.append(f"\n=== Session: {name} ===")
                for _, line_no, line in matches:
                    text_results.append(f"[{line_no:>6}] {line}" if full else line)

        if opts.format == "json":
            return json.dumps(json_results, indent=2, ensure_ascii=False)
        return "\n".join(text_results) if text_results else "No matches found"
