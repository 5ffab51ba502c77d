"""Ready-made DataConsumer implementations."""

from __future__ import annotations

import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TextIO

from airdock.logger import logger

FlushFn = Callable[[str, list[dict[str, Any]], Any], Awaitable[None]]


class BatchingConsumer:
    """Buffer records per stream and hand them over in batches.

    ``flush(stream, records, state)`` is awaited when a stream's buffer
    reaches ``batch_size``, for every non-empty buffer when a checkpoint
    arrives, and on :meth:`close`. A checkpoint's state is passed only with
    the last flush it triggers, after all records emitted before it, so a
    sink that persists the state never gets ahead of its data.
    """

    def __init__(self, flush: FlushFn, batch_size: int = 10000) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._flush = flush
        self.batch_size = batch_size
        self._buffers: dict[str, list[dict[str, Any]]] = {}
        self.state: Any = None

    async def consume(self, stream: str, record: dict[str, Any]) -> None:
        buf = self._buffers.setdefault(stream, [])
        buf.append(record)
        if len(buf) >= self.batch_size:
            self._buffers[stream] = []
            await self._flush(stream, buf, None)

    async def checkpoint(self, state: Any) -> None:
        self.state = state
        pending = [(s, b) for s, b in self._buffers.items() if b]
        self._buffers = {}
        if not pending:
            await self._flush("", [], state)
            return
        for i, (stream, records) in enumerate(pending):
            await self._flush(stream, records, state if i == len(pending) - 1 else None)

    async def close(self) -> None:
        """Flush whatever is still buffered (no state attached)."""
        pending = [(s, b) for s, b in self._buffers.items() if b]
        self._buffers = {}
        for stream, records in pending:
            await self._flush(stream, records, None)
        logger.debug("Batching consumer closed", flushed_streams=len(pending))


class JsonLinesConsumer:
    """Write records and checkpoints as JSON lines (``{"stream", "data"}`` / ``{"state"}``)."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self.records = 0

    async def consume(self, stream: str, record: dict[str, Any]) -> None:
        self._out.write(json.dumps({"stream": stream, "data": record}) + "\n")
        self.records += 1

    async def checkpoint(self, state: Any) -> None:
        self._out.write(json.dumps({"state": state}) + "\n")
        self._out.flush()
