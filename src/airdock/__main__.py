"""Entry point for `python -m airdock` / `airdock`.

Subcommands:
    airdock spec IMAGE VERSION
    airdock check IMAGE VERSION --config FILE
    airdock discover IMAGE VERSION --config FILE [--timeout SECONDS]
    airdock read IMAGE VERSION --source-id ID --catalog FILE [--state]

``read`` expects config/catalog/state files to already be in the shared
workspace under ``<source id>/<image>/`` and writes records as JSON lines to
stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from airdock.config import get_settings
from airdock.errors import RunnerError
from airdock.logger import logger, set_level
from airdock.runner import Runner
from airdock.runtime import DockerImageRuntime
from airdock.sinks import JsonLinesConsumer
from airdock.types import StreamRepresentation


class _CliTaskLogger:
    def __init__(self, task_id: str) -> None:
        self._log = logger.bind(task=task_id)

    def debug(self, msg: str) -> None:
        self._log.debug(msg)

    def info(self, msg: str) -> None:
        self._log.info(msg)

    def warning(self, msg: str) -> None:
        self._log.warning(msg)

    def error(self, msg: str) -> None:
        self._log.error(msg)


class _CliTaskCloser:
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self.failure: tuple[str, bool] | None = None

    def close_with_error(self, message: str, fatal: bool) -> None:
        self.failure = (message, fatal)
        logger.error("Task failed", task=self.task_id, fatal=fatal, message=message)


def _load_json(path: str) -> Any:
    return json.loads(Path(path).read_text())


def representations_from_catalog(catalog: dict[str, Any]) -> dict[str, StreamRepresentation]:
    """Build stream representations from a configured catalog file."""
    result: dict[str, StreamRepresentation] = {}
    for entry in catalog.get("streams", []):
        stream = entry.get("stream", entry)
        name = stream["name"]
        result[name] = StreamRepresentation(
            stream_name=name,
            json_schema=stream.get("json_schema", {}),
            key_fields=[k for path in entry.get("primary_key", []) for k in path],
            namespace=stream.get("namespace"),
        )
    return result


async def _dispatch(args: argparse.Namespace) -> int:
    s = get_settings()
    set_level(s.logging.level)
    runtime = DockerImageRuntime(s.runtime)
    runner = Runner(args.image, args.version, runtime, limits=s.runner)

    match args.command:
        case "spec":
            print(json.dumps(await runner.spec(), indent=2))
        case "check":
            await runner.check(_load_json(args.config))
            print("SUCCEEDED")
        case "discover":
            catalog = await runner.discover(_load_json(args.config), args.timeout)
            print(catalog.model_dump_json(indent=2))
        case "read":
            task_id = runner.identifier
            closer = _CliTaskCloser(task_id)
            await runner.read(
                JsonLinesConsumer(sys.stdout),
                representations_from_catalog(_load_json(args.catalog)),
                _CliTaskLogger(task_id),
                closer,
                args.source_id,
                "state" if args.state else "",
            )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="airdock",
        description="Run containerized source connectors",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("spec", "Print the connector's configuration spec"),
        ("check", "Validate a configuration against the source"),
        ("discover", "Print the connector's catalog"),
        ("read", "Stream records as JSON lines"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("image", help="Connector image, with or without namespace")
        p.add_argument("version", help="Image tag")
        if name in ("check", "discover"):
            p.add_argument("--config", required=True, help="Path to the source config JSON")
        if name == "discover":
            p.add_argument("--timeout", type=float, default=None, help="Seconds")
        if name == "read":
            p.add_argument("--source-id", required=True)
            p.add_argument("--catalog", required=True, help="Configured catalog JSON (host path)")
            p.add_argument(
                "--state", action="store_true", help="Resume from the workspace state file"
            )

    args = parser.parse_args()
    try:
        sys.exit(asyncio.run(_dispatch(args)))
    except RunnerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
