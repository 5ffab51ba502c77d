"""Image runtime: the container CLI collaborator injected into every Runner.

Docker is built in. Anything implementing :class:`ImageRuntime` (a podman
wrapper, a test double) can be passed to a Runner instead.
"""

from __future__ import annotations

import asyncio
import shutil
from typing import Protocol, runtime_checkable

from airdock.config import RuntimeConfig
from airdock.logger import logger


@runtime_checkable
class ImageRuntime(Protocol):
    """Runtime contract consumed by :class:`airdock.runner.Runner`."""

    cli: str
    workspace_volume: str
    mount_alias: str
    config_dir: str

    def qualify(self, image: str) -> str: ...
    async def is_pulled(self, image: str, version: str) -> bool: ...
    async def stop_container(self, name: str) -> None: ...
    def build_diagnostic_message(
        self, prefix: str, output: str, err_output: str, err: BaseException
    ) -> str: ...


def build_diagnostic_message(prefix: str, output: str, err_output: str, err: BaseException) -> str:
    """Combine an error with everything the connector printed."""
    parts = [f"{prefix} {err}"]
    if output:
        parts.append(f"\n\tOutput: {output.rstrip()}")
    if err_output:
        parts.append(f"\n\tError output: {err_output.rstrip()}")
    return "".join(parts)


class DockerImageRuntime:
    """Docker CLI implementation of :class:`ImageRuntime`."""

    def __init__(self, config: RuntimeConfig | None = None) -> None:
        config = config or RuntimeConfig()
        self.cli = config.cli
        self.image_namespace = config.image_namespace
        self.workspace_volume = config.workspace_volume
        self.mount_alias = config.mount_alias
        self.config_dir = config.config_dir

    def is_available(self) -> bool:
        """Check if the CLI is on PATH."""
        return shutil.which(self.cli) is not None

    def qualify(self, image: str) -> str:
        """Add the namespace prefix to bare connector names (``source-x`` → ``airbyte/source-x``)."""
        if not self.image_namespace or "/" in image:
            return image
        return f"{self.image_namespace}/{image}"

    async def is_pulled(self, image: str, version: str) -> bool:
        ref = f"{image}:{version}"
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli,
                "image",
                "inspect",
                ref,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            code = await proc.wait()
        except OSError as exc:
            logger.warning("Image inspect failed", image=ref, err=str(exc))
            return False
        return code == 0

    async def stop_container(self, name: str) -> None:
        """Stop a container by name, ignoring expected errors (already gone, CLI missing)."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli,
                "stop",
                name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()
        except OSError as exc:
            # OSError covers FileNotFoundError (CLI missing) and other
            # process-spawn failures: expected in degraded environments.
            logger.debug("container stop failed", container=name, err=str(exc))

    def build_diagnostic_message(
        self, prefix: str, output: str, err_output: str, err: BaseException
    ) -> str:
        return build_diagnostic_message(prefix, output, err_output, err)
