"""Connector runner: one container invocation per instance, self-closing.

A Runner spawns ``<cli> run --rm -i --name <id> ... <image>:<version> <command>``,
drains stdout through a protocol parser and stderr through a log sink, and
races a one-shot deadline. Whatever ends the run (exit, timeout, malformed
output, internal fault), the runner is closed before control returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import posixpath
import shlex
import threading
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from airdock.config import RunnerConfig
from airdock.errors import (
    AlreadyTerminatedError,
    ConnectorReportedError,
    ConnectorTimeoutError,
    InternalFaultError,
    NotReadyError,
    ProcessError,
    ProtocolViolationError,
    RunnerError,
    UnknownStatusError,
    with_diagnostics,
)
from airdock.logger import logger
from airdock.protocol import (
    CATALOG,
    CONNECTION_STATUS,
    CONNECTION_STATUS_FAILED,
    CONNECTION_STATUS_SUCCEEDED,
    SPEC,
    Catalog,
    CatalogMessage,
    ConnectionStatusMessage,
    SpecMessage,
)
from airdock.runner._materialize import materialized_config
from airdock.runner._process import Deadline, StderrCapture
from airdock.runner._stream_parser import AsynchronousParser
from airdock.runner._sync_parser import SynchronousParser
from airdock.runtime import ImageRuntime
from airdock.types import DataConsumer, StreamRepresentation, TaskCloser, TaskLogger

# File names under <mount alias>/<source id>/<image>/ prepared by the caller for read
CONFIG_FILE_NAME = "config.json"
CATALOG_FILE_NAME = "catalog.json"
STATE_FILE_NAME = "state.json"

StreamHandler = Callable[[asyncio.StreamReader], Awaitable[None]]


def _container_name(*parts: str) -> str:
    raw = "-".join(parts)
    return "".join(c if c.isalnum() or c in "_.-" else "-" for c in raw)


class Runner:
    """Runs one connector command. Can only be used once."""

    def __init__(
        self,
        image: str,
        version: str,
        runtime: ImageRuntime,
        identifier: str = "",
        *,
        limits: RunnerConfig | None = None,
    ) -> None:
        self.image = image  # without the namespace prefix
        self.version = version
        self.identifier = identifier or _container_name(image, version, uuid.uuid4().hex)
        self._runtime = runtime
        self._limits = limits or RunnerConfig()

        self._process: asyncio.subprocess.Process | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._command: list[str] | None = None
        self._deadline: Deadline | None = None
        self._closed = False
        self._close_lock = threading.Lock()
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def describe(self) -> str:
        """The last command line, or ``""`` if nothing was run."""
        if self._command is None:
            return ""
        return shlex.join(self._command)

    def __str__(self) -> str:
        return self.describe()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Protocol commands
    # ------------------------------------------------------------------

    async def spec(self) -> dict[str, Any]:
        """Run ``spec`` and return the connector's SPEC payload."""
        parser = SynchronousParser(SPEC)
        stderr = StderrCapture(self._limits.max_output_size, self.identifier)
        try:
            await self._run(
                self._sync_stdout(parser),
                stderr,
                self._limits.spec_timeout,
                self._args("spec", mount=False),
            )
            if parser.parsed is None:
                raise ProtocolViolationError(f"connector did not emit a {SPEC} message")
        except (NotReadyError, AlreadyTerminatedError):
            raise
        except RunnerError as exc:
            raise self._diagnose("Error loading connector spec:", parser, stderr, exc) from exc

        assert isinstance(parser.parsed, SpecMessage)
        return parser.parsed.spec

    async def check(self, config: Any) -> None:
        """Run ``check``; return normally only if the connector reports SUCCEEDED."""
        self._ensure_usable()
        parser = SynchronousParser(CONNECTION_STATUS)
        stderr = StderrCapture(self._limits.max_output_size, self.identifier)

        with materialized_config(config, self._runtime.config_dir) as artifact:
            args = self._args("check") + ["--config", self._mounted(artifact.relative_path)]
            try:
                await self._run(
                    self._sync_stdout(parser), stderr, self._limits.check_timeout, args
                )
                if parser.parsed is None:
                    raise ProtocolViolationError(
                        f"connector did not emit a {CONNECTION_STATUS} message"
                    )
            except (NotReadyError, AlreadyTerminatedError):
                raise
            except RunnerError as exc:
                raise self._diagnose(
                    "Error executing connector check:", parser, stderr, exc
                ) from exc

        assert isinstance(parser.parsed, ConnectionStatusMessage)
        status = parser.parsed.connectionStatus
        if status.status == CONNECTION_STATUS_SUCCEEDED:
            return None
        if status.status == CONNECTION_STATUS_FAILED:
            raise ConnectorReportedError(status.message)
        raise UnknownStatusError(status.status, status.message)

    async def discover(self, config: Any, timeout: float | None = None) -> Catalog:
        """Run ``discover`` and return the catalog the connector emitted."""
        self._ensure_usable()
        parser = SynchronousParser(CATALOG)
        stderr = StderrCapture(self._limits.max_output_size, "discover", level="info")
        if timeout is None:
            timeout = self._limits.discover_timeout

        with materialized_config(config, self._runtime.config_dir) as artifact:
            args = self._args("discover") + ["--config", self._mounted(artifact.relative_path)]
            try:
                await self._run(self._sync_stdout(parser), stderr, timeout, args)
                if parser.parsed is None:
                    raise ProtocolViolationError(f"connector did not emit a {CATALOG} message")
            except (NotReadyError, AlreadyTerminatedError):
                raise
            except RunnerError as exc:
                raise self._diagnose(
                    "Error loading connector catalog:", parser, stderr, exc
                ) from exc

        assert isinstance(parser.parsed, CatalogMessage)
        return parser.parsed.catalog

    async def read(
        self,
        consumer: DataConsumer,
        stream_representations: Mapping[str, StreamRepresentation],
        task_logger: TaskLogger,
        task_closer: TaskCloser,
        source_id: str,
        state_path: str = "",
    ) -> None:
        """Run ``read``, pushing records and checkpoints to *consumer* as they arrive.

        Config, catalog and (optionally) state files must already exist under
        ``<workspace>/<source_id>/<image>/``. A malformed line fails the task
        (retryable); any other failure while handling output fails it fatally.
        Either way the connector is killed.
        """
        self._ensure_usable()
        parser = AsynchronousParser(consumer, stream_representations, task_logger)

        async def handle_stdout(stdout: asyncio.StreamReader) -> None:
            try:
                await parser.parse(stdout)
            except ProtocolViolationError as exc:
                task_closer.close_with_error(f"Process error: {exc}. Process will be killed", False)
                self._close_after_failure(task_logger, task_closer)
                raise
            except Exception as exc:
                logger.exception(
                    "Unexpected failure handling connector output",
                    runner=self.identifier,
                    task=task_closer.task_id,
                )
                task_closer.close_with_error(f"{exc}. Process will be killed", True)
                self._close_after_failure(task_logger, task_closer)
                raise InternalFaultError(
                    f"internal fault handling connector output: {exc!r}"
                ) from exc

        base = posixpath.join(self._runtime.mount_alias, source_id, self.image)
        args = self._args("read") + [
            "--config",
            posixpath.join(base, CONFIG_FILE_NAME),
            "--catalog",
            posixpath.join(base, CATALOG_FILE_NAME),
        ]
        if state_path:
            args += ["--state", posixpath.join(base, STATE_FILE_NAME)]

        stderr = StderrCapture(
            self._limits.max_output_size, source_id, line_sink=task_logger.info, level="info"
        )
        task_logger.info(f"ID [{self.identifier}] exec: {shlex.join([self._runtime.cli, *args])}")
        await self._run(handle_stdout, stderr, self._limits.read_timeout, args)
        logger.info(
            "Connector read finished",
            runner=self.identifier,
            records=parser.records,
            dropped=parser.dropped,
            states=parser.states,
        )

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the container and kill the process.

        Raises AlreadyTerminatedError if the runner was already closed, so
        concurrent triggers (deadline, caller, failing parser) terminate once.
        """
        with self._close_lock:
            if self._closed:
                raise AlreadyTerminatedError()
            self._closed = True

        if self._deadline is not None:
            self._deadline.cancel()

        proc = self._process
        if proc is None or proc.returncode is not None:
            # Never spawned, or exited on its own (--rm removed the container)
            return

        self._schedule_container_stop()
        with contextlib.suppress(ProcessLookupError):
            proc.kill()

    def _close_quietly(self) -> None:
        try:
            self.close()
        except AlreadyTerminatedError:
            pass

    def _close_after_failure(self, task_logger: TaskLogger, task_closer: TaskCloser) -> None:
        try:
            self.close()
        except AlreadyTerminatedError:
            pass
        except Exception as exc:
            task_logger.error(f"Error closing connector runner: {exc}")
            logger.error("Error closing connector runner", task=task_closer.task_id, err=str(exc))

    def _on_deadline(self) -> None:
        assert self._deadline is not None
        logger.warning(
            "Connector run timeout", runner=self.identifier, timeout=self._deadline.timeout
        )
        try:
            self.close()
        except AlreadyTerminatedError:
            pass
        except Exception:
            logger.exception(
                "Error terminating connector runner after timeout",
                image=self.image,
                version=self.version,
            )

    def _schedule_container_stop(self) -> None:
        """Fire-and-forget ``<cli> stop <id>`` on the loop that owns the process."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        coro = self._runtime.stop_container(self.identifier)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            task = loop.create_task(coro)
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        else:
            asyncio.run_coroutine_threadsafe(coro, loop)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _sync_stdout(self, parser: SynchronousParser) -> StreamHandler:
        """Stdout handler for spec/check/discover: a bad line ends the run at once."""

        async def handle_stdout(stdout: asyncio.StreamReader) -> None:
            try:
                await parser.parse(stdout)
            except ProtocolViolationError:
                self._close_quietly()
                raise

        return handle_stdout

    def _ensure_usable(self) -> None:
        if self._closed:
            raise AlreadyTerminatedError()

    def _args(self, command: str, *, mount: bool = True) -> list[str]:
        args = ["run", "--rm", "-i", "--name", self.identifier]
        if mount:
            args += ["-v", f"{self._runtime.workspace_volume}:{self._runtime.mount_alias}"]
        args += [f"{self._runtime.qualify(self.image)}:{self.version}", command]
        return args

    def _mounted(self, relative_path: str) -> str:
        return posixpath.join(self._runtime.mount_alias, relative_path)

    def _diagnose(
        self,
        prefix: str,
        parser: SynchronousParser,
        stderr: StderrCapture,
        exc: RunnerError,
    ) -> RunnerError:
        msg = self._runtime.build_diagnostic_message(prefix, parser.output, stderr.text, exc)
        logger.error(msg, runner=self.identifier)
        return with_diagnostics(exc, msg, parser.output)

    async def _run(
        self,
        stdout_handler: StreamHandler,
        stderr_handler: StreamHandler,
        timeout: float,
        args: list[str],
    ) -> None:
        self._ensure_usable()

        image = self._runtime.qualify(self.image)
        if not await self._runtime.is_pulled(image, self.version):
            raise NotReadyError(f"connector image {image}:{self.version} is not pulled yet")
        # closed while the image check was pending
        self._ensure_usable()

        self._command = [self._runtime.cli, *args]
        self._loop = asyncio.get_running_loop()
        deadline = Deadline(timeout, self._on_deadline)
        self._deadline = deadline

        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self._command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=self._limits.stream_limit,
                )
            except OSError as exc:
                logger.error("Failed to spawn connector", runner=self.identifier, err=str(exc))
                raise ProcessError(f"failed to start connector: {exc}") from exc

            self._process = proc
            if self._closed:
                # close() ran while the spawn was pending and had nothing to stop
                self._schedule_container_stop()
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
            else:
                deadline.start()
                logger.info(
                    "Connector started", runner=self.identifier, command=self.describe()
                )

            assert proc.stdout is not None
            assert proc.stderr is not None
            stdout_result, stderr_result = await asyncio.gather(
                stdout_handler(proc.stdout),
                stderr_handler(proc.stderr),
                return_exceptions=True,
            )
            exit_code = await proc.wait()
        finally:
            deadline.cancel()
            self._close_quietly()

        if isinstance(stderr_result, BaseException):
            logger.error(
                "Error reading connector stderr", runner=self.identifier, err=str(stderr_result)
            )
        if deadline.expired:
            raise ConnectorTimeoutError(timeout=timeout)
        if isinstance(stdout_result, BaseException):
            raise stdout_result
        if exit_code != 0:
            raise ProcessError(f"connector exited with code {exit_code}", exit_code=exit_code)
