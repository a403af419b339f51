"""
SPECGRAPH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML configuration (factory file + local overrides)
- logger: Mutation journal (ring buffer + optional JSONL files)
- path_locks: Per-path locks serializing read-patch-write sequences
"""

from infrastructure.config import EngineConfig, load_config
from infrastructure.logger import (
    MutationLogger,
    MutationType,
    LoggerConfig,
    get_logger,
    configure_logger,
)
from infrastructure.path_locks import PathLockRegistry

__all__ = [
    "EngineConfig",
    "load_config",
    "MutationLogger",
    "MutationType",
    "LoggerConfig",
    "get_logger",
    "configure_logger",
    "PathLockRegistry",
]
