"""Connector wire protocol: one JSON object per stdout line.

Each line carries a string ``type`` discriminator; the payload sits under a
camelCase key named after it::

    {"type": "CONNECTION_STATUS", "connectionStatus": {"status": "FAILED", "message": "bad creds"}}

Decoding is two-step: :func:`peek_type` reads the discriminator only, then
:func:`decode_message` validates the matching payload variant. Unknown
discriminators decode to :class:`UnknownMessage` so each caller decides
whether to skip or reject them.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from airdock.errors import ProtocolViolationError

SPEC = "SPEC"
CONNECTION_STATUS = "CONNECTION_STATUS"
CATALOG = "CATALOG"
RECORD = "RECORD"
STATE = "STATE"
LOG = "LOG"
TRACE = "TRACE"

CONNECTION_STATUS_SUCCEEDED = "SUCCEEDED"
CONNECTION_STATUS_FAILED = "FAILED"


class _Payload(BaseModel):
    # Connectors add fields freely; keep them instead of failing.
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ConnectionStatus(_Payload):
    status: str
    message: str = ""


class Catalog(_Payload):
    """Discovered streams, kept as emitted (stream objects or bare names)."""

    streams: list[Any] = []

    def stream_names(self) -> list[str]:
        names = []
        for stream in self.streams:
            if isinstance(stream, dict):
                names.append(str(stream.get("name", "")))
            else:
                names.append(str(stream))
        return names


class RecordPayload(_Payload):
    stream: str
    data: dict[str, Any]
    emitted_at: int | None = None
    namespace: str | None = None


class LogPayload(_Payload):
    level: str = "INFO"
    message: str = ""

    @field_validator("level", "message", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else json.dumps(v)


class TracePayload(_Payload):
    type: str = "ERROR"
    emitted_at: Any = None
    # Usually an object with message and stack_trace; connectors sometimes send a string
    error: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def type_as_text(cls, v: Any) -> str:
        if v is None:
            return "ERROR"
        return v if isinstance(v, str) else str(v)


# ---------------------------------------------------------------------------
# Message variants
# ---------------------------------------------------------------------------


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    payload_key: ClassVar[str] = ""


class SpecMessage(Message):
    payload_key: ClassVar[str] = "spec"
    spec: dict[str, Any]


class ConnectionStatusMessage(Message):
    payload_key: ClassVar[str] = "connectionStatus"
    connectionStatus: ConnectionStatus


class CatalogMessage(Message):
    payload_key: ClassVar[str] = "catalog"
    catalog: Catalog


class RecordMessage(Message):
    payload_key: ClassVar[str] = "record"
    record: RecordPayload


class StateMessage(Message):
    payload_key: ClassVar[str] = "state"
    state: Any = None

    def checkpoint(self) -> Any:
        """Opaque state to hand back on the next run via ``--state``."""
        if isinstance(self.state, dict) and "data" in self.state:
            return self.state["data"]
        return self.state


class LogMessage(Message):
    payload_key: ClassVar[str] = "log"
    log: LogPayload = LogPayload()


class TraceMessage(Message):
    payload_key: ClassVar[str] = "trace"
    trace: TracePayload = TracePayload()


class UnknownMessage(Message):
    """A discriminator this version does not know about."""


MESSAGE_TYPES: dict[str, type[Message]] = {
    SPEC: SpecMessage,
    CONNECTION_STATUS: ConnectionStatusMessage,
    CATALOG: CatalogMessage,
    RECORD: RecordMessage,
    STATE: StateMessage,
    LOG: LogMessage,
    TRACE: TraceMessage,
}


def peek_type(line: str) -> tuple[str, dict[str, Any]]:
    """Parse *line* and return ``(discriminator, raw object)``.

    Raises ProtocolViolationError if the line is not a JSON object with a
    non-empty string ``type`` field.
    """
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ProtocolViolationError(f"malformed connector output line: {exc}: {line!r}") from exc
    if not isinstance(raw, dict):
        raise ProtocolViolationError(f"connector output line is not an object: {line!r}")
    row_type = raw.get("type")
    if not isinstance(row_type, str) or not row_type:
        raise ProtocolViolationError(f"connector output line has no 'type' field: {line!r}")
    return row_type, raw


def decode_message(row_type: str, raw: dict[str, Any]) -> Message:
    """Validate *raw* as the variant named by *row_type*."""
    model = MESSAGE_TYPES.get(row_type, UnknownMessage)
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise ProtocolViolationError(
            f"invalid {row_type} message: {exc.error_count()} validation error(s): "
            f"{json.dumps(raw)[:500]}"
        ) from exc


def parse_line(line: str) -> Message:
    row_type, raw = peek_type(line)
    return decode_message(row_type, raw)
