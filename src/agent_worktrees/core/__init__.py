"""Core models and configuration."""

from .config import (
    GatewayConfig,
    LockConfig,
    OrphanPolicy,
    ReconcilerConfig,
    WorktreeSettings,
    load_config,
)
from .records import (
    GatewayWorktree,
    StatusEntry,
    StatusReport,
    WorktreeHandle,
    WorktreeRecord,
    WorktreeState,
)

__all__ = [
    "GatewayConfig",
    "GatewayWorktree",
    "LockConfig",
    "OrphanPolicy",
    "ReconcilerConfig",
    "StatusEntry",
    "StatusReport",
    "WorktreeHandle",
    "WorktreeRecord",
    "WorktreeSettings",
    "WorktreeState",
    "load_config",
]
