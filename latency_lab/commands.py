from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import platform as host_platform


class Platform(str, Enum):
    WINDOWS = "windows"
    UNIX = "unix"


class Operation(str, Enum):
    PING = "ping"
    TRACEROUTE = "traceroute"


@dataclass(frozen=True)
class ProbeCommand:
    executable: str
    args: tuple[str, ...]

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass(frozen=True)
class ToolPaths:
    ping: str = "ping"
    traceroute: str = "traceroute"
    tracert: str = "tracert"


DEFAULT_TOOLS = ToolPaths()


def detect_platform(system: str | None = None) -> Platform:
    """Map ``platform.system()`` onto the two command dialects we know."""
    name = (system if system is not None else host_platform.system()).lower()
    if name == "windows" or name.startswith(("cygwin", "msys")):
        return Platform.WINDOWS
    return Platform.UNIX


def resolve_platform(value: str | None) -> Platform:
    if value is None or value.strip().lower() in ("", "auto"):
        return detect_platform()
    return Platform(value.strip().lower())


def build_command(
    operation: Operation,
    target: str,
    platform: Platform,
    tools: ToolPaths = DEFAULT_TOOLS,
) -> ProbeCommand:
    """Build the single-attempt probe command for ``operation`` on ``platform``.

    Ping sends one echo with a one second reply timeout. Both operations
    disable reverse DNS (``-n`` / ``-d``) so the output stays numeric.
    """
    if operation is Operation.PING:
        if platform is Platform.WINDOWS:
            return ProbeCommand(tools.ping, ("-n", "1", "-w", "1000", target))
        return ProbeCommand(tools.ping, ("-n", "-c", "1", "-W", "1", target))
    if platform is Platform.WINDOWS:
        return ProbeCommand(tools.tracert, ("-d", target))
    return ProbeCommand(tools.traceroute, ("-n", target))
