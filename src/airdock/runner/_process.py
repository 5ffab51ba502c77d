"""Process plumbing: line reading, stderr capture, the one-shot deadline.

Provides:
  - read_lines(): yields decoded stdout lines, rejecting over-long ones
  - read_stderr(): reads connector stderr, logs lines, accumulates with truncation
  - StderrCapture: stderr handler keeping the text for diagnostics
  - Deadline: single-fire timer that closes the runner on expiry
"""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import AsyncIterator, Callable

from airdock.errors import ProtocolViolationError
from airdock.logger import logger

LineSink = Callable[[str], None]


async def read_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield non-empty lines from *stream* until EOF."""
    while True:
        try:
            raw = await stream.readline()
        except ValueError as exc:
            # LimitOverrunError and "chunk exceed the limit" both land here
            raise ProtocolViolationError(f"connector output line too long: {exc}") from exc
        if not raw:
            return
        line = raw.decode(errors="replace").rstrip("\r\n")
        if line:
            yield line


async def read_stderr(
    stream: asyncio.StreamReader,
    max_output_size: int,
    label: str,
    line_sink: LineSink | None = None,
    level: str = "debug",
) -> str:
    """Read connector stderr, log lines, and accumulate with truncation.

    Lines go to the host log at *level* under ``label`` and, when given, to
    *line_sink* (a task logger). Returns the accumulated buffer (possibly
    truncated).
    """
    log = getattr(logger, level)

    def emit(line: str) -> None:
        line = line.rstrip("\r")
        if line.strip():
            log(f"[{label}] {line}")
            if line_sink is not None:
                line_sink(line)

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buf = ""
    partial = ""  # unterminated tail of the previous chunk
    truncated = False
    while True:
        chunk = await stream.read(8192)
        if not chunk:
            break
        text = decoder.decode(chunk)

        *complete, partial = (partial + text).split("\n")
        for line in complete:
            emit(line)

        if not truncated:
            remaining = max_output_size - len(buf)
            if len(text) > remaining:
                buf += text[:remaining]
                truncated = True
                logger.warning("Connector stderr truncated", connector=label, size=len(buf))
            else:
                buf += text

    emit(partial + decoder.decode(b"", final=True))
    return buf


class StderrCapture:
    """Stderr handler that keeps the captured text for error reports."""

    def __init__(
        self,
        max_output_size: int,
        label: str,
        line_sink: LineSink | None = None,
        level: str = "debug",
    ) -> None:
        self.max_output_size = max_output_size
        self.label = label
        self.line_sink = line_sink
        self.level = level
        self.text = ""

    async def __call__(self, stream: asyncio.StreamReader) -> None:
        self.text = await read_stderr(
            stream, self.max_output_size, self.label, self.line_sink, self.level
        )


class Deadline:
    """One-shot timer: calls *on_expire* once after *timeout* seconds unless cancelled."""

    def __init__(self, timeout: float, on_expire: Callable[[], None]) -> None:
        self.timeout = timeout
        self.expired = False
        self._on_expire = on_expire
        self._handle: asyncio.TimerHandle | None = None

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.expired = True
        self._on_expire()
