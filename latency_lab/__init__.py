"""LatencyLab live ping and traceroute streaming."""

from latency_lab.commands import Operation, Platform, ProbeCommand, build_command
from latency_lab.config import AppConfig, load_config
from latency_lab.dispatcher import Dispatcher
from latency_lab.executor import PingResult, ProbeExecutor, TracerouteResult
from latency_lab.parsers import Hop, parse_ping, parse_traceroute
from latency_lab.schema import validate_event, validate_message
from latency_lab.sessions import SessionRegistry

__all__ = [
    "AppConfig",
    "Dispatcher",
    "Hop",
    "Operation",
    "PingResult",
    "Platform",
    "ProbeCommand",
    "ProbeExecutor",
    "SessionRegistry",
    "TracerouteResult",
    "build_command",
    "load_config",
    "parse_ping",
    "parse_traceroute",
    "validate_event",
    "validate_message",
]
