from __future__ import annotations

import json
import logging
import math
from typing import Any

from latency_lab.schema import validate_message
from latency_lab.sessions import SessionRegistry

DEFAULT_INTERVAL_MS = 1000

INVALID_JSON_ERROR = "Invalid JSON payload"
TARGET_REQUIRED_ERROR = "Target is required"


def coerce_interval(value: Any, default: float = DEFAULT_INTERVAL_MS) -> float:
    """Turn a client-supplied interval into milliseconds.

    Numbers and numeric strings are accepted. Anything else, zero, or a
    non-finite value falls back to ``default``. Clamping happens in the
    registry.
    """
    if isinstance(value, bool):
        return default
    if not isinstance(value, (int, float, str)):
        return default
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return default
    if not math.isfinite(number) or number == 0:
        return default
    return number


class Dispatcher:
    """Decodes client messages and routes them to the session registry."""

    def __init__(
        self, registry: SessionRegistry, default_interval_ms: float = DEFAULT_INTERVAL_MS
    ) -> None:
        self.registry = registry
        self.default_interval_ms = default_interval_ms
        self.logger = logging.getLogger(self.__class__.__name__)

    async def handle(self, connection_id: str, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self.logger.debug("Invalid JSON from %s", connection_id)
            await self._error(connection_id, INVALID_JSON_ERROR)
            return

        if not isinstance(message, dict):
            self.logger.debug("Ignoring non-object message from %s", connection_id)
            return

        kind = message.get("type")
        if kind == "start":
            if not await self._check(connection_id, message):
                return
            interval = coerce_interval(message.get("interval"), self.default_interval_ms)
            self.registry.start(connection_id, message["target"], interval)
        elif kind == "stop":
            self.registry.stop(connection_id)
            await self.registry.deliver(connection_id, {"type": "stopped"})
        elif kind == "traceroute":
            if not await self._check(connection_id, message):
                return
            self.registry.run_traceroute(connection_id, message["target"])
        else:
            self.logger.debug("Ignoring message type %r from %s", kind, connection_id)

    async def _check(self, connection_id: str, message: dict[str, Any]) -> bool:
        errors = validate_message(message)
        if not errors:
            return True
        self.logger.debug("Rejected %s message: %s", message.get("type"), errors)
        await self._error(connection_id, TARGET_REQUIRED_ERROR)
        return False

    async def _error(self, connection_id: str, error: str) -> None:
        await self.registry.deliver(connection_id, {"type": "error", "error": error})
