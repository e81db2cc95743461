from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Union

from latency_lab.commands import (
    DEFAULT_TOOLS,
    Operation,
    Platform,
    ProbeCommand,
    ToolPaths,
    build_command,
)
from latency_lab.logging_utils import TRACE_LEVEL
from latency_lab.parsers import Hop, parse_ping, parse_traceroute


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PingResult:
    target: str
    rtt: float | None
    avg: float | None
    packet_loss: float | None
    timestamp: int

    def to_event(self) -> dict[str, Any]:
        return {
            "type": "ping",
            "target": self.target,
            "rtt": self.rtt,
            "avg": self.avg,
            "packetLoss": self.packet_loss,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TracerouteResult:
    target: str
    raw: str
    hops: list[Hop] = field(default_factory=list)

    def to_event(self) -> dict[str, Any]:
        return {
            "type": "traceroute",
            "target": self.target,
            "raw": self.raw,
            "hops": [hop.to_dict() for hop in self.hops],
        }


ProbeResult = Union[PingResult, TracerouteResult]


@dataclass(frozen=True)
class ProcessOutput:
    stdout: str
    stderr: str
    returncode: int | None
    timed_out: bool = False


class ProbeExecutor:
    """Runs one probe process per call and parses its output once it exits.

    The process is never retried. A spawn failure or non-zero exit still
    produces a result built from whatever text was captured. When a timeout
    is configured the child is killed after that many seconds and the
    partial output is parsed.
    """

    def __init__(
        self,
        platform: Platform,
        tools: ToolPaths = DEFAULT_TOOLS,
        ping_timeout_s: float | None = 10.0,
        traceroute_timeout_s: float | None = 120.0,
    ) -> None:
        self.platform = platform
        self.tools = tools
        self.timeouts = {
            Operation.PING: ping_timeout_s or None,
            Operation.TRACEROUTE: traceroute_timeout_s or None,
        }
        self.logger = logging.getLogger(self.__class__.__name__)

    def command_for(self, operation: Operation, target: str) -> ProbeCommand:
        return build_command(operation, target, self.platform, self.tools)

    async def run(self, operation: Operation, target: str) -> ProbeResult:
        if operation is Operation.PING:
            return await self.ping(target)
        return await self.traceroute(target)

    async def ping(self, target: str) -> PingResult:
        output = await self._run_process(
            self.command_for(Operation.PING, target), self.timeouts[Operation.PING]
        )
        self._log_outcome(Operation.PING, target, output)
        fragment = parse_ping(f"{output.stdout}\n{output.stderr}")
        return PingResult(
            target=target,
            rtt=fragment.rtt,
            avg=fragment.avg,
            packet_loss=fragment.packet_loss,
            timestamp=now_ms(),
        )

    async def traceroute(self, target: str) -> TracerouteResult:
        output = await self._run_process(
            self.command_for(Operation.TRACEROUTE, target),
            self.timeouts[Operation.TRACEROUTE],
        )
        self._log_outcome(Operation.TRACEROUTE, target, output)
        parsed = parse_traceroute(output.stdout + output.stderr)
        return TracerouteResult(target=target, raw=parsed.raw, hops=parsed.hops)

    def _log_outcome(
        self, operation: Operation, target: str, output: ProcessOutput
    ) -> None:
        if output.timed_out:
            self.logger.debug(
                "Parsing partial %s output for %s after timeout", operation.value, target
            )
        elif output.returncode is None:
            self.logger.debug(
                "%s for %s never started, result will be empty", operation.value, target
            )

    async def _run_process(
        self, command: ProbeCommand, timeout_s: float | None
    ) -> ProcessOutput:
        argv = command.argv
        self.logger.debug("Running: %s", " ".join(argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            self.logger.debug("Failed to spawn %s: %s", command.executable, exc)
            return ProcessOutput(stdout="", stderr=str(exc), returncode=None)

        stdout_task = asyncio.ensure_future(_drain(process.stdout))
        stderr_task = asyncio.ensure_future(_drain(process.stderr))
        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            timed_out = True
            self.logger.warning(
                "Probe exceeded %ss, killing: %s", timeout_s, " ".join(argv)
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            stdout_task.cancel()
            stderr_task.cancel()
            raise
        stdout, stderr = await asyncio.gather(stdout_task, stderr_task)

        if process.returncode != 0:
            self.logger.debug(
                "Command failed (%s): %s", process.returncode, " ".join(argv)
            )
        if stdout:
            self.logger.log(TRACE_LEVEL, "stdout: %s", stdout.strip())
        if stderr:
            self.logger.log(TRACE_LEVEL, "stderr: %s", stderr.strip())
        return ProcessOutput(
            stdout=stdout,
            stderr=stderr,
            returncode=process.returncode,
            timed_out=timed_out,
        )


async def _drain(stream: asyncio.StreamReader | None) -> str:
    if stream is None:
        return ""
    chunks: list[bytes] = []
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks).decode("utf-8", errors="replace")
