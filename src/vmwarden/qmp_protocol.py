"""QMP wire protocol models and line codec.

Protocol: one JSON object per line, UTF-8, newline-terminated, over a
Unix domain socket.

    server → client   {"QMP": {"version": {...}, "capabilities": [...]}}   (once, on connect)
    client → server   {"execute": "<name>", "arguments": {...}}
    server → client   {"return": <any>}
                      {"error": {"class": "<name>", "desc": "<text>"}}
                      {"event": "<name>", "data": {...}, "timestamp": {...}}

Responses arrive in command order; events may arrive at any time,
including between a command and its response.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vmwarden.exceptions import QmpCommandError, QmpProtocolError

# ============================================================================
# Client → Server
# ============================================================================


class QmpCommand(BaseModel):
    """A command sent by the client."""

    model_config = ConfigDict(frozen=True)

    execute: str = Field(min_length=1, description="QMP command name")
    arguments: dict[str, Any] | None = Field(default=None, description="Command arguments (omitted when empty)")


# ============================================================================
# Server → Client
# ============================================================================


class QmpErrorInfo(BaseModel):
    """Payload of an error response."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    error_class: str = Field(alias="class")
    desc: str


class QmpResponse(BaseModel):
    """Response to exactly one command: return-shaped or error-shaped."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    return_value: Any = Field(default=None, alias="return")
    error: QmpErrorInfo | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def raise_for_error(self, command: str) -> None:
        """Raise QmpCommandError if this is an error response."""
        if self.error is None:
            return
        raise QmpCommandError(
            f"QMP command '{command}' failed: {self.error.desc}",
            command=command,
            error_class=self.error.error_class,
            desc=self.error.desc,
        )


class QmpTimestamp(BaseModel):
    """Event emission time (host clock)."""

    model_config = ConfigDict(frozen=True)

    seconds: int
    microseconds: int


class QmpEvent(BaseModel):
    """Unsolicited server notification (STOP, RESUME, SHUTDOWN, ...)."""

    model_config = ConfigDict(frozen=True)

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: QmpTimestamp | None = None


class QmpGreetingInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: dict[str, Any]
    capabilities: list[Any]


class QmpGreeting(BaseModel):
    """First message on every connection."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    qmp: QmpGreetingInfo = Field(alias="QMP")


QmpMessage = QmpResponse | QmpEvent


# ============================================================================
# Codec
# ============================================================================


def encode_command(command: QmpCommand) -> bytes:
    """Serialize a command to a single newline-terminated JSON line."""
    payload: dict[str, Any] = {"execute": command.execute}
    if command.arguments:
        payload["arguments"] = command.arguments
    return json.dumps(payload).encode() + b"\n"


def decode_line(line: bytes) -> dict[str, Any]:
    """Parse one protocol line into a JSON object.

    Raises:
        QmpProtocolError: Line is not UTF-8 JSON or not a JSON object.
    """
    try:
        obj = json.loads(line)
    except ValueError as e:  # JSONDecodeError and UnicodeDecodeError
        raise QmpProtocolError(f"Undecodable QMP line: {e}", {"line": line[:200]}) from e
    if not isinstance(obj, dict):
        raise QmpProtocolError("QMP message is not a JSON object", {"line": line[:200]})
    return obj


def parse_message(obj: dict[str, Any]) -> QmpMessage:
    """Classify a decoded server message as a response or an event.

    Raises:
        QmpProtocolError: Message is neither event- nor response-shaped,
            or its payload does not match the expected structure.
    """
    try:
        if "event" in obj:
            return QmpEvent.model_validate(obj)
        if "return" in obj or "error" in obj:
            return QmpResponse.model_validate(obj)
    except ValidationError as e:
        raise QmpProtocolError(f"Malformed QMP message: {e}", {"message": obj}) from e
    raise QmpProtocolError("Unknown QMP message type", {"message": obj})


def parse_greeting(line: bytes) -> QmpGreeting:
    """Validate the server greeting.

    Raises:
        QmpProtocolError: Greeting is missing or structurally invalid.
    """
    obj = decode_line(line)
    try:
        return QmpGreeting.model_validate(obj)
    except ValidationError as e:
        raise QmpProtocolError(f"Invalid QMP greeting: {e}", {"greeting": obj}) from e
