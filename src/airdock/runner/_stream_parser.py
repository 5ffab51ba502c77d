"""Streaming parser for ``read``: routes every message as it arrives."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from airdock.errors import ProtocolViolationError
from airdock.logger import logger
from airdock.protocol import (
    LOG,
    TRACE,
    LogMessage,
    Message,
    RecordMessage,
    StateMessage,
    TraceMessage,
    UnknownMessage,
    decode_message,
    peek_type,
)
from airdock.runner._process import read_lines
from airdock.types import DataConsumer, StreamRepresentation, TaskLogger

# Connector log levels → TaskLogger method names
_LOG_LEVELS = {
    "FATAL": "error",
    "ERROR": "error",
    "WARN": "warning",
    "WARNING": "warning",
    "INFO": "info",
    "DEBUG": "debug",
    "TRACE": "debug",
}


class AsynchronousParser:
    """Parse connector stdout for the lifetime of a read.

    Records for known streams go to the consumer in arrival order; records
    for unknown streams are dropped. Unknown message types are logged and
    skipped. LOG and TRACE lines whose payload does not validate are passed
    to the task logger verbatim. Any other malformed line raises
    ProtocolViolationError and ends the read.
    """

    def __init__(
        self,
        consumer: DataConsumer,
        stream_representations: Mapping[str, StreamRepresentation],
        task_logger: TaskLogger,
    ) -> None:
        self.consumer = consumer
        self.stream_representations = stream_representations
        self.task_logger = task_logger
        self.records = 0
        self.dropped = 0
        self.states = 0

    async def parse(self, stdout: asyncio.StreamReader) -> None:
        async for line in read_lines(stdout):
            row_type, raw = peek_type(line)
            try:
                message = decode_message(row_type, raw)
            except ProtocolViolationError as exc:
                if row_type not in (LOG, TRACE):
                    raise
                logger.debug("Malformed connector diagnostic", type=row_type, err=str(exc))
                self.task_logger.info(line)
                continue
            await self.handle(message)

    async def handle(self, message: Message) -> None:
        match message:
            case RecordMessage():
                await self._on_record(message)
            case StateMessage():
                self.states += 1
                await self.consumer.checkpoint(message.checkpoint())
            case LogMessage():
                method = _LOG_LEVELS.get(message.log.level.upper(), "info")
                getattr(self.task_logger, method)(message.log.message)
            case TraceMessage():
                self._on_trace(message)
            case UnknownMessage():
                logger.warning("Unknown connector message type", type=message.type)
                self.task_logger.warning(f"Unknown connector message type [{message.type}]")
            case _:
                # SPEC/CATALOG/CONNECTION_STATUS have no meaning during read
                logger.debug("Ignoring connector message during read", type=message.type)

    async def _on_record(self, message: RecordMessage) -> None:
        stream = message.record.stream
        representation = self.stream_representations.get(stream)
        if representation is None:
            self.dropped += 1
            logger.debug("Dropping record for unknown stream", stream=stream)
            return
        self.records += 1
        await self.consumer.consume(stream, representation.transform(message.record.data))

    def _on_trace(self, message: TraceMessage) -> None:
        trace = message.trace
        if trace.type.upper() == "ERROR" and trace.error:
            error = trace.error
            if not isinstance(error, dict):
                self.task_logger.error(f"Connector error trace: {error}")
                return
            text = error.get("message") or error.get("internal_message") or ""
            self.task_logger.error(f"Connector error trace: {text}")
            stack = error.get("stack_trace")
            if stack:
                self.task_logger.debug(str(stack))
            return
        self.task_logger.debug(f"Connector trace [{trace.type}]")
