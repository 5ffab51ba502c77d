"""Shared test fixtures for airdock."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from airdock.config import RunnerConfig
from airdock.runner import Runner
from airdock.runtime import build_diagnostic_message

# ---------------------------------------------------------------------------
# Shared helpers (plain functions/classes, not fixtures: importable by test files)
# ---------------------------------------------------------------------------


def line(payload: dict[str, Any]) -> bytes:
    return (json.dumps(payload) + "\n").encode()


class FakeProcess:
    """Simulates asyncio.subprocess.Process for testing.

    ``kill()`` behaves like SIGKILL on ``docker run``: both pipes hit EOF
    and the process exits with -9.
    """

    def __init__(self) -> None:
        self.stdin = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._returncode: int | None = None
        self._wait_event = asyncio.Event()
        self.pid = 12345
        self.kill_count = 0

    def emit_stdout(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def emit_stderr(self, data: bytes) -> None:
        self.stderr.feed_data(data)

    def close(self, code: int = 0) -> None:
        """Simulate process exit."""
        self._returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._wait_event.set()

    def finish(self, *messages: dict[str, Any] | str, stderr: bytes = b"", code: int = 0) -> None:
        """Emit *messages* (dicts as JSON lines, strings verbatim) and exit."""
        for msg in messages:
            self.emit_stdout(line(msg) if isinstance(msg, dict) else (msg + "\n").encode())
        if stderr:
            self.emit_stderr(stderr)
        self.close(code)

    async def wait(self) -> int:
        await self._wait_event.wait()
        return self._returncode  # type: ignore[return-value]

    def kill(self) -> None:
        self.kill_count += 1
        if self._returncode is None:
            self.close(-9)

    @property
    def returncode(self) -> int | None:
        return self._returncode


class FakeRuntime:
    """ImageRuntime double: records stops, image availability is a flag."""

    def __init__(self, config_dir: Path, pulled: bool = True) -> None:
        self.cli = "docker"
        self.workspace_volume = "airdock_workspace"
        self.mount_alias = "/tmp/airbyte"
        self.config_dir = str(config_dir)
        self.pulled = pulled
        self.pull_checks: list[tuple[str, str]] = []
        self.stopped: list[str] = []

    def qualify(self, image: str) -> str:
        return image if "/" in image else f"airbyte/{image}"

    async def is_pulled(self, image: str, version: str) -> bool:
        self.pull_checks.append((image, version))
        return self.pulled

    async def stop_container(self, name: str) -> None:
        self.stopped.append(name)

    def build_diagnostic_message(
        self, prefix: str, output: str, err_output: str, err: BaseException
    ) -> str:
        return build_diagnostic_message(prefix, output, err_output, err)


class RecordingConsumer:
    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, Any]]] = []
        self.states: list[Any] = []

    async def consume(self, stream: str, record: dict[str, Any]) -> None:
        self.records.append((stream, record))

    async def checkpoint(self, state: Any) -> None:
        self.states.append(state)


class RecordingTaskLogger:
    def __init__(self) -> None:
        self.entries: list[tuple[str, str]] = []

    def _add(self, level: str, msg: str) -> None:
        self.entries.append((level, msg))

    def debug(self, msg: str) -> None:
        self._add("debug", msg)

    def info(self, msg: str) -> None:
        self._add("info", msg)

    def warning(self, msg: str) -> None:
        self._add("warning", msg)

    def error(self, msg: str) -> None:
        self._add("error", msg)

    def messages(self, level: str) -> list[str]:
        return [m for lvl, m in self.entries if lvl == level]


class RecordingCloser:
    def __init__(self, task_id: str = "task-1") -> None:
        self.task_id = task_id
        self.calls: list[tuple[str, bool]] = []

    def close_with_error(self, message: str, fatal: bool) -> None:
        self.calls.append((message, fatal))


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Each test starts without a cached Settings singleton."""
    monkeypatch.setattr("airdock.config._settings", None)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runtime(tmp_path: Path) -> FakeRuntime:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return FakeRuntime(config_dir)


@pytest.fixture
def make_runner(runtime: FakeRuntime):
    def _make(image: str = "source-test", version: str = "1.0", **limits: Any) -> Runner:
        return Runner(image, version, runtime, "runner-1", limits=RunnerConfig(**limits))

    return _make


@pytest.fixture
def spawn():
    """Patch subprocess creation; yields a FakeProcess and the recorded spawn call.

    The FakeProcess must be created on the test's running loop, so the fixture
    yields a factory-backed holder: ``spawn.process`` is created lazily.
    """

    class _Spawn:
        def __init__(self) -> None:
            self._process: FakeProcess | None = None
            self.mock = AsyncMock(side_effect=self._create)

        @property
        def process(self) -> FakeProcess:
            if self._process is None:
                self._process = FakeProcess()
            return self._process

        async def _create(self, *args: Any, **kwargs: Any) -> FakeProcess:
            return self.process

        @property
        def argv(self) -> list[str]:
            return list(self.mock.call_args.args)

    holder = _Spawn()
    with patch("airdock.runner._runner.asyncio.create_subprocess_exec", holder.mock):
        yield holder
