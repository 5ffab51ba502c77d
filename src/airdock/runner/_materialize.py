"""Config file materialization for bind-mounting into connector containers."""

from __future__ import annotations

import contextlib
import json
import secrets
import shutil
import string
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from airdock.errors import MaterializationError
from airdock.logger import logger
from airdock.types import ConfigArtifact

_ALPHABET = string.ascii_letters + string.digits


def _random_name(length: int = 16) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def materialize_config(config: Any, config_dir: str | Path) -> ConfigArtifact:
    """Write *config* as JSON into a fresh, uniquely named dir under *config_dir*.

    Returns the artifact with the path relative to *config_dir*, which is what
    the container sees under the mount alias.
    """
    dir_name = _random_name()
    file_name = f"{_random_name()}.json"
    absolute_dir = Path(config_dir) / dir_name

    try:
        absolute_dir.mkdir(parents=True, exist_ok=False)
    except OSError as exc:
        raise MaterializationError(
            f"Error creating generated connector config dir [{absolute_dir}]: {exc}"
        ) from exc

    absolute_path = absolute_dir / file_name
    try:
        absolute_path.write_text(json.dumps(config))
    except (TypeError, ValueError, OSError) as exc:
        shutil.rmtree(absolute_dir, ignore_errors=True)
        raise MaterializationError(f"Error writing connector config: {exc}") from exc

    return ConfigArtifact(
        absolute_dir=absolute_dir,
        absolute_path=absolute_path,
        relative_path=f"{dir_name}/{file_name}",
    )


def remove_config(artifact: ConfigArtifact) -> None:
    try:
        shutil.rmtree(artifact.absolute_dir)
    except OSError as exc:
        logger.error(
            "Error deleting generated connector config dir",
            dir=str(artifact.absolute_dir),
            err=str(exc),
        )


@contextlib.contextmanager
def materialized_config(config: Any, config_dir: str | Path) -> Iterator[ConfigArtifact]:
    """Materialize *config* for the duration of the block, removing it on every exit path."""
    artifact = materialize_config(config, config_dir)
    try:
        yield artifact
    finally:
        remove_config(artifact)
