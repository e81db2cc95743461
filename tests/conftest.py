"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from latency_lab.commands import Operation, Platform
from latency_lab.executor import PingResult, ProbeExecutor, TracerouteResult
from latency_lab.parsers import Hop


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "windows: mark test as Windows-specific"
    )
    config.addinivalue_line(
        "markers", "unix: mark test as Linux/macOS-specific"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeConnection:
    """Collects events sent to a client."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == kind]


class FakeExecutor(ProbeExecutor):
    """Executor that records calls and answers without spawning processes.

    When ``gate`` is set, every run waits on it before answering, which keeps
    probes in flight until the test releases them.
    """

    def __init__(self) -> None:
        super().__init__(Platform.UNIX)
        self.calls: list[tuple[Operation, str]] = []
        self.gate: asyncio.Event | None = None

    async def run(self, operation: Operation, target: str):
        self.calls.append((operation, target))
        if self.gate is not None:
            await self.gate.wait()
        if operation is Operation.PING:
            return PingResult(
                target=target, rtt=12.5, avg=None, packet_loss=0.0, timestamp=1700000000000
            )
        return TracerouteResult(
            target=target,
            raw="1  10.0.0.1  1.0 ms\n",
            hops=[Hop(hop=1, ip="10.0.0.1", rtt=1.0)],
        )

    def targets(self, operation: Operation = Operation.PING) -> list[str]:
        return [target for op, target in self.calls if op is operation]


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def connection_factory():
    return FakeConnection
