"""Worktree lifecycle core: gateway, registry, lock and the components built on them."""

from .bootstrap import WorktreeComponents, build_components, create_gateway
from .committer import CommitCoordinator
from .gateway import GatewayError, GatewayTimeoutError, RepositoryGateway
from .git_gateway import GitGateway
from .inspector import StatusInspector
from .lifecycle import WorktreeLifecycleManager
from .locks import StructuralLock
from .memory_gateway import InMemoryGateway
from .reconciler import CleanupReconciler, ReconcileReport
from .registry import WorktreeRegistry

__all__ = [
    "CleanupReconciler",
    "CommitCoordinator",
    "GatewayError",
    "GatewayTimeoutError",
    "GitGateway",
    "InMemoryGateway",
    "ReconcileReport",
    "RepositoryGateway",
    "StatusInspector",
    "StructuralLock",
    "WorktreeComponents",
    "WorktreeLifecycleManager",
    "WorktreeRegistry",
    "build_components",
    "create_gateway",
]
