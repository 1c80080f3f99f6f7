"""Lifecycle error taxonomy and user-facing translation."""

from .taxonomy import (
    BranchCollision,
    DirtyWorktreeRefusal,
    GatewayFailure,
    InvalidRequest,
    InvalidStateTransition,
    OperationInProgress,
    OrphanDetected,
    PathCollision,
    RegistryCorruption,
    WorktreeError,
    WorktreeNotFound,
    WorktreeTimeout,
)
from .translator import ErrorTranslator, UserFriendlyError

__all__ = [
    "BranchCollision",
    "DirtyWorktreeRefusal",
    "ErrorTranslator",
    "GatewayFailure",
    "InvalidRequest",
    "InvalidStateTransition",
    "OperationInProgress",
    "OrphanDetected",
    "PathCollision",
    "RegistryCorruption",
    "UserFriendlyError",
    "WorktreeError",
    "WorktreeNotFound",
    "WorktreeTimeout",
]
