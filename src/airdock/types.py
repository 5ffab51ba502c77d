"""Data models and collaborator contracts for airdock."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ConfigArtifact:
    """A config file written under the shared workspace for bind-mounting."""

    absolute_dir: Path
    absolute_path: Path
    relative_path: str  # relative to the mount alias inside the container


@dataclass
class StreamRepresentation:
    """Sink-side shape of one source stream.

    ``json_schema`` is the schema the sink expects. When it declares
    ``properties``, records are projected onto them; otherwise records pass
    through unchanged.
    """

    stream_name: str
    json_schema: dict[str, Any] = field(default_factory=dict)
    key_fields: list[str] = field(default_factory=list)
    namespace: str | None = None

    def transform(self, data: dict[str, Any]) -> dict[str, Any]:
        properties = self.json_schema.get("properties")
        if not properties:
            return dict(data)
        return {key: value for key, value in data.items() if key in properties}


@runtime_checkable
class DataConsumer(Protocol):
    """Receives parsed records and checkpoints during ``read``."""

    async def consume(self, stream: str, record: dict[str, Any]) -> None: ...
    async def checkpoint(self, state: Any) -> None: ...


@runtime_checkable
class TaskLogger(Protocol):
    """Per-task leveled log (the task's own log, not the host log)."""

    def debug(self, msg: str) -> None: ...
    def info(self, msg: str) -> None: ...
    def warning(self, msg: str) -> None: ...
    def error(self, msg: str) -> None: ...


@runtime_checkable
class TaskCloser(Protocol):
    """Records task failure. ``fatal`` failures are not retried by the scheduler."""

    task_id: str

    def close_with_error(self, message: str, fatal: bool) -> None: ...
