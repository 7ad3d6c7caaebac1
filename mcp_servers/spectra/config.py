from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CHANNEL = 0
DEVTOOLS_BASE_PORT = 9220
TIDEWAVE_BASE_PORT = 5550
DEFAULT_TARGET_TITLE = "Tau5"


class ConfigError(ValueError):
    pass


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def default_data_dir() -> str:
    """Return the Tau5 data directory used by the host application."""
    env_dir = os.environ.get("TAU5_DATA_DIR")
    if env_dir:
        return expand_path(env_dir)
    if sys.platform == "darwin":
        return str(Path.home() / "Library" / "Application Support" / "Tau5")
    if os.name == "nt":
        appdata = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return str(Path(appdata) / "Tau5")
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return str(base / "Tau5")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tau5-spectra",
        description="Tau5 Spectra - MCP bridge for Chrome DevTools and Tidewave",
        epilog=(
            "Channel selects default ports: Chrome DevTools 9220+N, Tidewave 5550+N. "
            "Example: tau5-spectra --channel 3"
        ),
    )
    parser.add_argument("--channel", type=int, default=DEFAULT_CHANNEL, help="Channel number 0-9 (default: 0)")
    parser.add_argument(
        "--port-chrome-dev",
        dest="devtools_port",
        type=int,
        default=None,
        help="Chrome DevTools port (default: 9220 + channel)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging to tau5-spectra-debug.log")
    parser.add_argument(
        "--target-title",
        dest="target_title",
        default=None,
        help="Title of the DevTools page target to attach to (default: Tau5)",
    )
    return parser


@dataclass
class SpectraConfig:
    channel: int = DEFAULT_CHANNEL
    devtools_port: int = DEVTOOLS_BASE_PORT
    tidewave_port: int = TIDEWAVE_BASE_PORT
    target_title: str = DEFAULT_TARGET_TITLE
    debug: bool = False
    data_dir: str = ""

    command_timeout: float = 5.0
    command_retries: int = 2
    retry_delay: float = 1.0
    connect_attempts: int = 3
    connect_base_wait: float = 1.0
    tidewave_timeout: float = 30.0
    heartbeat_interval: float = 30.0
    health_check_interval: float = 5.0
    http_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not self.data_dir:
            self.data_dir = default_data_dir()

    @staticmethod
    def validate_channel(channel: int) -> int:
        if not 0 <= int(channel) <= 9:
            raise ConfigError("--channel must be between 0 and 9")
        return int(channel)

    @classmethod
    def for_channel(cls, channel: int = DEFAULT_CHANNEL, **overrides) -> SpectraConfig:
        ch = cls.validate_channel(channel)
        values = {
            "channel": ch,
            "devtools_port": DEVTOOLS_BASE_PORT + ch,
            "tidewave_port": TIDEWAVE_BASE_PORT + ch,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_args(cls, argv: list[str] | None = None) -> SpectraConfig:
        """Parse CLI arguments, then apply environment overrides."""
        args = build_arg_parser().parse_args(argv)
        title = args.target_title or os.environ.get("SPECTRA_TARGET_TITLE") or DEFAULT_TARGET_TITLE
        return cls.for_channel(
            args.channel,
            devtools_port=args.devtools_port,
            target_title=title,
            debug=bool(args.debug),
        )

    @property
    def activity_log_name(self) -> str:
        return f"spectra-chromium-devtools-{self.devtools_port}"

    @property
    def gui_logs_dir(self) -> Path:
        return Path(self.data_dir) / "logs" / "gui"

    @property
    def mcp_logs_dir(self) -> Path:
        return Path(self.data_dir) / "mcp-logs"
