from __future__ import annotations

from functools import lru_cache
from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator

CLIENT_MESSAGE_SCHEMA = "client-message.schema.json"
SERVER_EVENT_SCHEMA = "server-event.schema.json"


def load_schema(name: str) -> dict[str, Any]:
    schema_path = resources.files("latency_lab").joinpath(f"schemas/{name}")
    return json.loads(schema_path.read_text(encoding="utf-8"))


@lru_cache(maxsize=None)
def get_validator(name: str) -> Draft202012Validator:
    return Draft202012Validator(schema=load_schema(name))


def _errors(name: str, payload: Any) -> list[str]:
    validator = get_validator(name)
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(part) for part in e.path])
    return [error.message for error in errors]


def validate_message(message: Any) -> list[str]:
    """Validate an inbound client message. Returns error messages, empty if valid."""
    return _errors(CLIENT_MESSAGE_SCHEMA, message)


def validate_event(event: Any) -> list[str]:
    """Validate an outbound server event. Returns error messages, empty if valid."""
    return _errors(SERVER_EVENT_SCHEMA, event)
