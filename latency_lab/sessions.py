from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Protocol

from latency_lab.commands import Operation
from latency_lab.executor import ProbeExecutor
from latency_lab.schema import validate_event

MIN_INTERVAL_MS = 250


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass
class Session:
    connection_id: str
    connection: Connection
    schedule: asyncio.Task[None] | None = None
    target: str | None = None
    interval_ms: float | None = None

    @property
    def running(self) -> bool:
        return self.schedule is not None and not self.schedule.done()


class SessionRegistry:
    """Tracks one Session per open connection and its repeating ping schedule.

    All methods must be called from the event loop thread. Starting a schedule
    always cancels the previous one first, so a session never has more than
    one. Cancelling only stops future ticks: probes already in flight finish
    and are delivered if the connection is still registered.
    """

    def __init__(
        self, executor: ProbeExecutor, min_interval_ms: float = MIN_INTERVAL_MS
    ) -> None:
        self.executor = executor
        self.min_interval_ms = min_interval_ms
        self._sessions: dict[str, Session] = {}
        self._in_flight: set[asyncio.Task[None]] = set()
        self.logger = logging.getLogger(self.__class__.__name__)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    def get(self, connection_id: str) -> Session | None:
        return self._sessions.get(connection_id)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def open(self, connection_id: str, connection: Connection) -> Session:
        if connection_id in self._sessions:
            raise ValueError(f"Connection already registered: {connection_id}")
        session = Session(connection_id=connection_id, connection=connection)
        self._sessions[connection_id] = session
        self.logger.debug("Session opened: %s", connection_id)
        return session

    def close(self, connection_id: str) -> None:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        self._cancel_schedule(session)
        self.logger.debug("Session closed: %s", connection_id)

    def start(self, connection_id: str, target: str, interval_ms: float) -> Session:
        session = self._require(connection_id)
        self._cancel_schedule(session)
        interval_ms = max(float(interval_ms), float(self.min_interval_ms))
        session.target = target
        session.interval_ms = interval_ms
        self.logger.info(
            "Starting ping schedule for %s: %s every %sms",
            connection_id,
            target,
            interval_ms,
        )
        self._spawn(connection_id, Operation.PING, target)
        session.schedule = asyncio.ensure_future(
            self._repeat(connection_id, target, interval_ms / 1000.0)
        )
        return session

    def stop(self, connection_id: str) -> bool:
        """Cancel the schedule if one is running. Returns whether one was."""
        session = self._require(connection_id)
        was_running = session.running
        self._cancel_schedule(session)
        if was_running:
            self.logger.info("Stopped ping schedule for %s", connection_id)
        return was_running

    def run_traceroute(self, connection_id: str, target: str) -> asyncio.Task[None]:
        self._require(connection_id)
        self.logger.info("Traceroute requested by %s: %s", connection_id, target)
        return self._spawn(connection_id, Operation.TRACEROUTE, target)

    async def deliver(self, connection_id: str, event: dict[str, Any]) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            self.logger.debug(
                "Dropping %s event for closed connection %s",
                event.get("type"),
                connection_id,
            )
            return False
        try:
            await session.connection.send_json(event)
        except Exception as exc:
            self.logger.debug("Send to %s failed: %s", connection_id, exc)
            return False
        return True

    async def shutdown(self) -> None:
        for connection_id in list(self._sessions):
            self.close(connection_id)
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _require(self, connection_id: str) -> Session:
        session = self._sessions.get(connection_id)
        if session is None:
            raise KeyError(f"Unknown connection: {connection_id}")
        return session

    def _cancel_schedule(self, session: Session) -> None:
        if session.schedule is not None:
            session.schedule.cancel()
            session.schedule = None

    async def _repeat(self, connection_id: str, target: str, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self._spawn(connection_id, Operation.PING, target)

    def _spawn(
        self, connection_id: str, operation: Operation, target: str
    ) -> asyncio.Task[None]:
        task = asyncio.ensure_future(self._probe(connection_id, operation, target))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _probe(self, connection_id: str, operation: Operation, target: str) -> None:
        try:
            result = await self.executor.run(operation, target)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("%s probe for %s failed", operation.value, target)
            return
        event = result.to_event()
        errors = validate_event(event)
        if errors:
            self.logger.warning("Event failed schema validation: %s", errors)
        await self.deliver(connection_id, event)
