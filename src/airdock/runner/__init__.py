"""Connector runner: spawns protocol commands in containers.

Spawns the connector through the container CLI, mounts generated config,
parses stdout per the connector protocol, and guarantees the container is
stopped on every exit path.

This package is split into focused submodules:
  _materialize  : config file generation for bind-mounting
  _process      : line reading, stderr capture, one-shot deadline
  _sync_parser  : single-result parsing for spec/check/discover
  _stream_parser: streaming record/state/log routing for read
  _runner       : the Runner (lifecycle, commands, termination)
"""

from airdock.runner._materialize import materialize_config, materialized_config, remove_config
from airdock.runner._runner import (
    CATALOG_FILE_NAME,
    CONFIG_FILE_NAME,
    STATE_FILE_NAME,
    Runner,
)
from airdock.runner._stream_parser import AsynchronousParser
from airdock.runner._sync_parser import SynchronousParser

__all__ = [
    "CATALOG_FILE_NAME",
    "CONFIG_FILE_NAME",
    "STATE_FILE_NAME",
    "AsynchronousParser",
    "Runner",
    "SynchronousParser",
    "materialize_config",
    "materialized_config",
    "remove_config",
]
