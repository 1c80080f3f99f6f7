"""Wires the lifecycle components together from settings."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.config import WorktreeSettings
from ..errors.taxonomy import WorktreeError
from ..utils.error_handling import log_and_ignore
from .committer import CommitCoordinator
from .gateway import GatewayError, RepositoryGateway, to_worktree_error
from .git_gateway import GitGateway
from .inspector import StatusInspector
from .lifecycle import WorktreeLifecycleManager
from .locks import StructuralLock
from .memory_gateway import InMemoryGateway
from .reconciler import CleanupReconciler
from .registry import WorktreeRegistry

logger = logging.getLogger(__name__)


@dataclass
class WorktreeComponents:
    """The lifecycle core for one primary repository."""

    settings: WorktreeSettings
    gateway: RepositoryGateway
    registry: WorktreeRegistry
    lock: StructuralLock
    manager: WorktreeLifecycleManager
    inspector: StatusInspector
    committer: CommitCoordinator
    reconciler: CleanupReconciler


def create_gateway(settings: WorktreeSettings) -> RepositoryGateway:
    if settings.gateway.kind == "memory":
        return InMemoryGateway()
    return GitGateway(command_timeout=settings.gateway.command_timeout)


def build_components(
    settings: WorktreeSettings,
    gateway: Optional[RepositoryGateway] = None,
) -> WorktreeComponents:
    """Open the repository and assemble the lifecycle core.

    Args:
        settings: Loaded configuration
        gateway: Pre-built gateway (tests); created from settings when omitted

    Raises:
        GatewayFailure: the repository could not be opened
    """
    gateway = gateway or create_gateway(settings)
    try:
        gateway.open(settings.repository)
    except GatewayError as e:
        raise to_worktree_error(e, None, "open") from e

    state_dir = settings.resolved_state_dir
    registry = WorktreeRegistry(state_dir)
    lock = StructuralLock(
        state_dir,
        acquire_timeout=settings.lock.acquire_timeout,
        poll_interval=settings.lock.poll_interval,
    )
    inspector = StatusInspector(gateway, registry)
    manager = WorktreeLifecycleManager(
        repository=settings.repository,
        worktree_root=settings.worktree_root,
        gateway=gateway,
        registry=registry,
        lock=lock,
        inspector=inspector,
        branch_prefix=settings.branch_prefix,
        default_base_ref=settings.default_base_ref,
    )
    committer = CommitCoordinator(
        gateway, registry, inspector, default_author=settings.gateway.default_author,
    )
    reconciler = CleanupReconciler(
        managed_root=settings.managed_root,
        gateway=gateway,
        registry=registry,
        lock=lock,
        orphan_policy=settings.reconciler.orphan_policy,
        stale_after_seconds=settings.reconciler.stale_after_seconds,
        max_retries=settings.reconciler.max_retries,
    )

    components = WorktreeComponents(
        settings=settings,
        gateway=gateway,
        registry=registry,
        lock=lock,
        manager=manager,
        inspector=inspector,
        committer=committer,
        reconciler=reconciler,
    )

    if settings.reconciler.run_on_startup:
        try:
            reconciler.reconcile()
        except WorktreeError as e:
            log_and_ignore(e, "Startup reconcile failed", logger_instance=logger)

    return components
