"""Single-result parser for spec/check/discover output."""

from __future__ import annotations

import asyncio

from airdock.errors import ProtocolViolationError
from airdock.protocol import Message, decode_message, peek_type
from airdock.runner._process import read_lines


class SynchronousParser:
    """Drain stdout and keep the last message of ``desired_type``.

    Every line, matching or not, is kept in :attr:`output` so a missing or
    bad result can be reported with everything the connector printed.
    """

    def __init__(self, desired_type: str) -> None:
        self.desired_type = desired_type
        self.parsed: Message | None = None
        self._lines: list[str] = []

    @property
    def output(self) -> str:
        return "\n".join(self._lines)

    def feed(self, line: str) -> None:
        self._lines.append(line)
        try:
            row_type, raw = peek_type(line)
        except ProtocolViolationError:
            # Connectors print free-form text too; it only matters as diagnostics.
            return
        if row_type != self.desired_type:
            return
        # Last observed wins.
        self.parsed = decode_message(row_type, raw)

    async def parse(self, stdout: asyncio.StreamReader) -> None:
        async for line in read_lines(stdout):
            self.feed(line)
