"""Heuristic parsers for ping and traceroute text output.

Neither utility has a structured output mode that is portable across
platforms, so extraction is done with regular expressions. Each field has an
ordered list of named patterns; the first one that matches wins. A field that
no pattern matches is ``None``. Parsers never raise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import math
import re
from typing import Any

_NUMBER = r"\d+(?:\.\d+)?"

# (name, compiled pattern, capture group holding the value)
RTT_PATTERNS: list[tuple[str, re.Pattern[str], int]] = [
    ("time_token", re.compile(rf"time[=<]\s*({_NUMBER})\s*ms", re.IGNORECASE), 1),
]

PACKET_LOSS_PATTERNS: list[tuple[str, re.Pattern[str], int]] = [
    ("unix_summary", re.compile(rf"({_NUMBER})%\s*packet loss", re.IGNORECASE), 1),
    (
        "windows_lost",
        re.compile(rf"Lost\s*=\s*\d+,?\s*\(?({_NUMBER})%", re.IGNORECASE),
        1,
    ),
]

AVERAGE_PATTERNS: list[tuple[str, re.Pattern[str], int]] = [
    (
        "min_avg_max",
        re.compile(rf"=\s*({_NUMBER})/({_NUMBER})/({_NUMBER})"),
        2,
    ),
    ("windows_average", re.compile(rf"Average\s*=\s*({_NUMBER})\s*ms", re.IGNORECASE), 1),
]

# 1  8.8.8.8  12.345 ms
HOP_LINE = re.compile(
    r"^\s*(\d+)\s+([\d*.:-]+)\s+(<?" + _NUMBER + r")(?![\d.])(?:\s*ms)?", re.IGNORECASE
)

# tracert:  1    <1 ms    <1 ms    <1 ms  192.168.1.1
_TRACERT_TIME = r"(<?" + _NUMBER + r"\s*ms|\*)"
TRACERT_HOP_LINE = re.compile(
    r"^\s*(\d+)\s+"
    + _TRACERT_TIME + r"\s+"
    + _TRACERT_TIME + r"\s+"
    + _TRACERT_TIME + r"\s+"
    + r"([\d.:]+)\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class PingFragment:
    rtt: float | None = None
    avg: float | None = None
    packet_loss: float | None = None


@dataclass(frozen=True)
class Hop:
    hop: int
    ip: str
    rtt: float

    def to_dict(self) -> dict[str, Any]:
        return {"hop": self.hop, "ip": self.ip, "rtt": self.rtt}


@dataclass(frozen=True)
class TracerouteParse:
    raw: str
    hops: list[Hop] = field(default_factory=list)


def _to_float(value: str) -> float | None:
    try:
        number = float(value.strip().lstrip("<"))
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _first_match(
    text: str, patterns: list[tuple[str, re.Pattern[str], int]]
) -> float | None:
    for _name, pattern, group in patterns:
        match = pattern.search(text)
        if match is None:
            continue
        value = _to_float(match.group(group))
        if value is not None:
            return value
    return None


def parse_ping(text: str | None) -> PingFragment:
    """Extract rtt, average and packet loss from ping output."""
    if not text:
        return PingFragment()
    return PingFragment(
        rtt=_first_match(text, RTT_PATTERNS),
        avg=_first_match(text, AVERAGE_PATTERNS),
        packet_loss=_first_match(text, PACKET_LOSS_PATTERNS),
    )


def _parse_hop_line(line: str) -> Hop | None:
    # tracert first: its three fixed time columns would otherwise let a
    # leading "*" be read as the address
    match = TRACERT_HOP_LINE.match(line)
    if match:
        for column in match.group(2, 3, 4):
            if column == "*":
                continue
            rtt = _to_float(column.lower().replace("ms", ""))
            if rtt is not None:
                return Hop(hop=int(match.group(1)), ip=match.group(5), rtt=rtt)
        return None

    match = HOP_LINE.match(line)
    if match:
        rtt = _to_float(match.group(3))
        if rtt is not None:
            return Hop(hop=int(match.group(1)), ip=match.group(2), rtt=rtt)
    return None


def parse_traceroute(text: str | None) -> TracerouteParse:
    """Extract hops from traceroute/tracert output.

    Lines that do not look like a hop (headers, timeouts, blank lines) are
    skipped. Duplicate hop indices are kept in the order they appear. The raw
    text is always returned with the hop list.
    """
    raw = text or ""
    hops: list[Hop] = []
    for line in raw.splitlines():
        if not line.strip():
            continue
        hop = _parse_hop_line(line)
        if hop is not None and hop.hop > 0:
            hops.append(hop)
    return TracerouteParse(raw=raw, hops=hops)
