from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import configparser
import os

from latency_lab.commands import ToolPaths


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 4000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass(frozen=True)
class ProbeConfig:
    platform: str = "auto"
    ping_path: str = "ping"
    traceroute_path: str = "traceroute"
    tracert_path: str = "tracert"
    min_interval_ms: int = 250
    default_interval_ms: int = 1000
    ping_timeout_s: float = 10.0
    traceroute_timeout_s: float = 120.0

    @property
    def tools(self) -> ToolPaths:
        return ToolPaths(
            ping=self.ping_path,
            traceroute=self.traceroute_path,
            tracert=self.tracert_path,
        )


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)


def _get_list(value: str | None) -> list[str]:
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_port(fallback: int) -> int:
    value = os.environ.get("PORT")
    if not value:
        return fallback
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"PORT must be an integer, got {value!r}") from None


def default_config() -> AppConfig:
    return AppConfig(server=ServerConfig(port=_env_port(ServerConfig.port)))


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser()
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    # Use parser.get with fallback so both sections are optional
    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=_env_port(parser.getint("server", "port", fallback=4000)),
        cors_origins=_get_list(parser.get("server", "cors_origins", fallback="*")),
    )

    probe = ProbeConfig(
        platform=parser.get("probe", "platform", fallback="auto"),
        ping_path=parser.get("probe", "ping_path", fallback="ping"),
        traceroute_path=parser.get("probe", "traceroute_path", fallback="traceroute"),
        tracert_path=parser.get("probe", "tracert_path", fallback="tracert"),
        min_interval_ms=parser.getint("probe", "min_interval_ms", fallback=250),
        default_interval_ms=parser.getint("probe", "default_interval_ms", fallback=1000),
        ping_timeout_s=parser.getfloat("probe", "ping_timeout_s", fallback=10.0),
        traceroute_timeout_s=parser.getfloat(
            "probe", "traceroute_timeout_s", fallback=120.0
        ),
    )

    return AppConfig(server=server, probe=probe)
