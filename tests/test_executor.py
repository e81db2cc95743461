"""Tests for the probe executor with faked child processes."""
from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from latency_lab.commands import Operation, Platform
from latency_lab.executor import PingResult, ProbeExecutor, TracerouteResult
from latency_lab.schema import validate_event


class FakeProcess:
    """Stands in for asyncio.subprocess.Process.

    Output is fed into real StreamReaders. With ``hang=True`` the process only
    exits once kill() is called.
    """

    def __init__(self, stdout: str = "", stderr: str = "", returncode: int = 0, hang: bool = False):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdout.feed_data(stdout.encode())
        self.stderr.feed_data(stderr.encode())
        self._exit_code = returncode
        self.returncode: int | None = None
        self.killed = False
        self.already_gone = False
        self._exited = asyncio.Event()
        if not hang:
            self._finish(returncode)

    def _finish(self, code: int) -> None:
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        if self.already_gone:
            raise ProcessLookupError
        self._finish(-9)


def run(coro):
    return asyncio.run(coro)


class TestProbeExecutor:
    """Tests for ProbeExecutor.run."""

    def test_ping_parses_stdout(self):
        async def scenario():
            process = FakeProcess(stdout="64 bytes from 8.8.8.8: icmp_seq=1 time=23.4 ms\n")
            with patch(
                "asyncio.create_subprocess_exec", return_value=process
            ) as spawn:
                executor = ProbeExecutor(Platform.UNIX)
                result = await executor.run(Operation.PING, "8.8.8.8")
            return spawn, result

        spawn, result = run(scenario())
        assert spawn.call_args.args == ("ping", "-n", "-c", "1", "-W", "1", "8.8.8.8")
        assert isinstance(result, PingResult)
        assert result.target == "8.8.8.8"
        assert result.rtt == 23.4
        assert result.avg is None
        assert result.packet_loss is None
        assert result.timestamp > 0

    @pytest.mark.windows
    def test_windows_command(self):
        async def scenario():
            with patch(
                "asyncio.create_subprocess_exec", return_value=FakeProcess()
            ) as spawn:
                await ProbeExecutor(Platform.WINDOWS).run(Operation.TRACEROUTE, "1.1.1.1")
            return spawn

        spawn = run(scenario())
        assert spawn.call_args.args == ("tracert", "-d", "1.1.1.1")

    def test_nonzero_exit_still_parses(self):
        async def scenario():
            process = FakeProcess(
                stdout="1 packets transmitted, 0 received, 100% packet loss\n",
                returncode=1,
            )
            with patch("asyncio.create_subprocess_exec", return_value=process):
                return await ProbeExecutor(Platform.UNIX).ping("10.255.255.1")

        result = run(scenario())
        assert result.packet_loss == 100
        assert result.rtt is None

    def test_ping_reads_stderr(self):
        async def scenario():
            process = FakeProcess(stderr="time=5.0 ms\n", returncode=2)
            with patch("asyncio.create_subprocess_exec", return_value=process):
                return await ProbeExecutor(Platform.UNIX).ping("host")

        assert run(scenario()).rtt == 5.0

    def test_traceroute_includes_stderr(self):
        async def scenario():
            process = FakeProcess(
                stdout=" 1  10.0.0.1  1.5 ms\n",
                stderr=" 2  10.0.0.2  3.5 ms\n",
            )
            with patch("asyncio.create_subprocess_exec", return_value=process):
                return await ProbeExecutor(Platform.UNIX).traceroute("10.0.0.2")

        result = run(scenario())
        assert isinstance(result, TracerouteResult)
        assert [hop.ip for hop in result.hops] == ["10.0.0.1", "10.0.0.2"]
        assert "10.0.0.2  3.5 ms" in result.raw

    def test_spawn_failure_gives_empty_result(self):
        async def scenario():
            with patch(
                "asyncio.create_subprocess_exec",
                side_effect=FileNotFoundError(2, "No such file or directory", "ping"),
            ):
                return await ProbeExecutor(Platform.UNIX).ping("8.8.8.8")

        result = run(scenario())
        assert result.rtt is None
        assert result.avg is None
        assert result.packet_loss is None

    def test_spawn_failure_traceroute_keeps_error_text(self):
        async def scenario():
            with patch(
                "asyncio.create_subprocess_exec",
                side_effect=FileNotFoundError(2, "No such file or directory", "traceroute"),
            ):
                return await ProbeExecutor(Platform.UNIX).traceroute("8.8.8.8")

        result = run(scenario())
        assert result.hops == []
        assert "No such file or directory" in result.raw

    def test_timeout_kills_hung_process(self):
        async def scenario():
            process = FakeProcess(stdout=" 1  10.0.0.1  1.0 ms\n", hang=True)
            with patch("asyncio.create_subprocess_exec", return_value=process):
                executor = ProbeExecutor(Platform.UNIX, traceroute_timeout_s=0.05)
                result = await executor.traceroute("10.0.0.9")
            return process, result

        process, result = run(scenario())
        assert process.killed
        assert result.hops[0].ip == "10.0.0.1"

    def test_timeout_marks_output(self):
        async def scenario():
            process = FakeProcess(stdout="partial", hang=True)
            with patch("asyncio.create_subprocess_exec", return_value=process):
                executor = ProbeExecutor(Platform.UNIX, ping_timeout_s=0.05)
                command = executor.command_for(Operation.PING, "10.0.0.9")
                return await executor._run_process(command, 0.05)

        output = run(scenario())
        assert output.timed_out is True
        assert output.returncode == -9
        assert output.stdout == "partial"

    def test_cancel_after_child_exited(self):
        """Cancelling while the child has already gone still cancels cleanly."""

        async def scenario():
            process = FakeProcess(hang=True)
            process.already_gone = True
            with patch("asyncio.create_subprocess_exec", return_value=process):
                task = asyncio.ensure_future(ProbeExecutor(Platform.UNIX).ping("h"))
                await asyncio.sleep(0.01)
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task
            return process

        assert run(scenario()).killed

    def test_zero_timeout_disables_supervision(self):
        executor = ProbeExecutor(Platform.UNIX, ping_timeout_s=0, traceroute_timeout_s=0)
        assert executor.timeouts[Operation.PING] is None
        assert executor.timeouts[Operation.TRACEROUTE] is None

    def test_concurrent_runs_are_independent(self):
        async def spawn(*args, **kwargs):
            rtt = {"a": "1.0", "b": "2.0", "c": "3.0"}[args[-1]]
            await asyncio.sleep(0)
            return FakeProcess(stdout=f"time={rtt} ms")

        async def scenario():
            with patch("asyncio.create_subprocess_exec", side_effect=spawn):
                executor = ProbeExecutor(Platform.UNIX)
                return await asyncio.gather(
                    executor.ping("a"), executor.ping("b"), executor.ping("c")
                )

        results = run(scenario())
        assert [(r.target, r.rtt) for r in results] == [("a", 1.0), ("b", 2.0), ("c", 3.0)]

    def test_events_match_schema(self):
        async def scenario():
            with patch(
                "asyncio.create_subprocess_exec",
                side_effect=[
                    FakeProcess(stdout="time=1.0 ms\n0% packet loss"),
                    FakeProcess(stdout=" 1  10.0.0.1  1.0 ms\n"),
                ],
            ):
                executor = ProbeExecutor(Platform.UNIX)
                ping = await executor.ping("a")
                trace = await executor.traceroute("a")
            return ping, trace

        ping, trace = run(scenario())
        assert validate_event(ping.to_event()) == []
        assert validate_event(trace.to_event()) == []
        assert ping.to_event()["packetLoss"] == 0

    def test_invalid_argument_gives_best_effort_result(self):
        """A target the OS refuses as an argument still yields events."""

        async def scenario():
            with patch(
                "asyncio.create_subprocess_exec",
                side_effect=ValueError("embedded null byte"),
            ):
                executor = ProbeExecutor(Platform.UNIX)
                ping = await executor.ping("a\x00b")
                trace = await executor.traceroute("a\x00b")
            return ping, trace

        ping, trace = run(scenario())
        assert (ping.rtt, ping.avg, ping.packet_loss) == (None, None, None)
        assert ping.target == "a\x00b"
        assert trace.hops == []
        assert "embedded null byte" in trace.raw

    def test_spawn_failure_has_no_returncode(self):
        async def scenario():
            with patch("asyncio.create_subprocess_exec", side_effect=PermissionError("denied")):
                executor = ProbeExecutor(Platform.UNIX)
                command = executor.command_for(Operation.PING, "h")
                return await executor._run_process(command, None)

        output = run(scenario())
        assert output.returncode is None
        assert output.timed_out is False
        assert output.stderr == "denied"
