"""Worktree lifecycle: spawn and nuke under the structural lock.

Intent is always recorded before the gateway side effect, so a crash at any
point leaves either a clean registry or an in-progress record that the
reconciler can resolve.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..core.records import WorktreeHandle, WorktreeRecord, WorktreeState
from ..errors.taxonomy import (
    BranchCollision,
    DirtyWorktreeRefusal,
    InvalidRequest,
    OperationInProgress,
    OrphanDetected,
    PathCollision,
    RegistryCorruption,
)
from ..utils.error_handling import ErrorContext, log_and_ignore
from ..utils.rich_logging import operation_logger
from ..utils.validators import validate_ref
from .gateway import GatewayError, RepositoryGateway, to_worktree_error
from .inspector import StatusInspector, checked_agent_id, require_live_record
from .locks import StructuralLock
from .registry import WorktreeRegistry

logger = logging.getLogger(__name__)


class WorktreeLifecycleManager:
    """Creates and destroys per-agent worktrees of one primary repository."""

    def __init__(
        self,
        repository: Path,
        worktree_root: Path,
        gateway: RepositoryGateway,
        registry: WorktreeRegistry,
        lock: StructuralLock,
        inspector: StatusInspector,
        branch_prefix: str = "agent/",
        default_base_ref: str = "HEAD",
    ):
        self.repository = Path(repository)
        self.worktree_root = Path(worktree_root)
        self.gateway = gateway
        self.registry = registry
        self.lock = lock
        self.inspector = inspector
        self.branch_prefix = branch_prefix
        self.default_base_ref = default_base_ref

    def allocate(self, agent_id: str) -> Tuple[str, str]:
        """Deterministic (path, branch) for an agent id."""
        agent_id = checked_agent_id(agent_id, "allocate")
        path = (self.worktree_root / self.repository.name / agent_id).resolve()
        return str(path), f"{self.branch_prefix}{agent_id}"

    # -- read helpers (lock-free) --------------------------------------------

    def get(self, agent_id: str) -> Optional[WorktreeRecord]:
        return self.registry.get(agent_id)

    def handle_for(self, agent_id: str) -> WorktreeHandle:
        agent_id = checked_agent_id(agent_id, "handle")
        return require_live_record(self.registry.get(agent_id), agent_id, "handle").to_handle()

    def list_records(self) -> List[WorktreeRecord]:
        return self.registry.records()

    # -- structural operations -----------------------------------------------

    def spawn(self, agent_id: str, base_ref: Optional[str] = None) -> WorktreeHandle:
        """Create (or return the existing) worktree for an agent.

        Raises:
            InvalidRequest: malformed agent id or base ref
            PathCollision / BranchCollision: allocation is taken, nothing changed
            OrphanDetected: the agent's record is orphaned
            OperationInProgress: an earlier spawn/nuke never finished
            RegistryCorruption: the agent's record violates uniqueness
            GatewayFailure: creation failed (fatal ones are rolled back)
            WorktreeTimeout: lock or gateway call exceeded its bound
        """
        agent_id = checked_agent_id(agent_id, "spawn")
        try:
            base_ref = validate_ref(base_ref or self.default_base_ref)
        except ValueError as e:
            raise InvalidRequest(agent_id, "spawn", str(e)) from e
        log = operation_logger(logger, "spawn", agent_id)

        with self.lock.held("spawn", agent_id):
            self.registry.reload()
            self._refuse_if_corrupt(agent_id, "spawn")

            existing = self.registry.get(agent_id, refresh=False)
            if existing is not None:
                if existing.is_live:
                    if existing.base_ref and existing.base_ref != base_ref:
                        log.warning(
                            f"Already spawned from {existing.base_ref}; "
                            f"requested base {base_ref} ignored"
                        )
                    log.info(f"Worktree already exists at {existing.path}")
                    return existing.to_handle()
                if existing.state == WorktreeState.ORPHANED:
                    raise OrphanDetected(agent_id, "spawn", "record is orphaned; run reconcile")
                if existing.state == WorktreeState.REMOVED:
                    # Crash between the removed write and the purge
                    self.registry.delete(agent_id)
                else:
                    raise OperationInProgress(agent_id, "spawn", existing.state.value)

            path, branch = self.allocate(agent_id)
            self._refuse_collisions(agent_id, path, branch)

            self.registry.put(WorktreeRecord(
                agent_id=agent_id,
                path=path,
                branch=branch,
                base_ref=base_ref,
                state=WorktreeState.SPAWNING,
            ))

            try:
                self.gateway.create_worktree(Path(path), branch, base_ref)
            except GatewayError as e:
                if e.transient:
                    log.warning(f"Creation did not finish, left for reconcile: {e}")
                else:
                    self._roll_back_spawn(agent_id, path)
                raise to_worktree_error(e, agent_id, "spawn") from e

            head_sha = None
            try:
                head_sha = self.gateway.head_sha(Path(path))
            except GatewayError as e:
                log_and_ignore(e, f"Could not read head of {path}", logger_instance=logger)

            record = self.registry.transition(
                agent_id, WorktreeState.ACTIVE, "spawn", head_sha=head_sha,
            )
            log.info(f"Spawned worktree at {path} on {branch} from {base_ref}")
            return record.to_handle()

    def nuke(self, agent_id: str, force: bool = False) -> None:
        """Remove an agent's worktree and record. Absent agents succeed.

        Raises:
            InvalidRequest: malformed agent id
            DirtyWorktreeRefusal: uncommitted changes and force not set
            OrphanDetected / OperationInProgress / RegistryCorruption
            GatewayFailure / WorktreeTimeout: record is left removing
        """
        agent_id = checked_agent_id(agent_id, "nuke")
        log = operation_logger(logger, "nuke", agent_id)

        with self.lock.held("nuke", agent_id):
            self.registry.reload()
            record = self.registry.get(agent_id, refresh=False)
            if record is None:
                log.info("No worktree recorded; nothing to remove")
                return
            if record.state == WorktreeState.REMOVED:
                self.registry.delete(agent_id)
                return

            self._refuse_if_corrupt(agent_id, "nuke")
            if record.state == WorktreeState.ORPHANED:
                raise OrphanDetected(agent_id, "nuke", "record is orphaned; run reconcile")
            if record.state in (WorktreeState.SPAWNING, WorktreeState.COMMITTING):
                raise OperationInProgress(agent_id, "nuke", record.state.value)

            if force:
                if record.state == WorktreeState.DIRTY:
                    log.warning("Discarding uncommitted changes (forced)")
            else:
                report = self.inspector.inspect(record, "nuke", track=False)
                if not report.clean:
                    raise DirtyWorktreeRefusal(agent_id, "nuke", report.summary())

            removing = self.registry.transition(
                agent_id, WorktreeState.REMOVING, "nuke",
                only_from={WorktreeState.ACTIVE, WorktreeState.DIRTY},
            )
            if removing is None:
                # A sync started committing after the status check
                current = self.registry.get(agent_id)
                raise OperationInProgress(agent_id, "nuke", current.state.value if current else "absent")
            try:
                self.gateway.remove_worktree(Path(record.path))
            except GatewayError as e:
                log.warning(f"Removal did not finish, left for reconcile: {e}")
                raise to_worktree_error(e, agent_id, "nuke") from e

            self.registry.transition(agent_id, WorktreeState.REMOVED, "nuke")
            self.registry.delete(agent_id)
            log.info(f"Removed worktree at {record.path}")

    # -- internals -----------------------------------------------------------

    def _refuse_if_corrupt(self, agent_id: str, operation: str) -> None:
        problem = self.registry.corrupt_agents().get(agent_id)
        if problem:
            raise RegistryCorruption(agent_id, operation, problem)

    def _refuse_collisions(self, agent_id: str, path: str, branch: str) -> None:
        """Fail fast if the allocation is held by a record or an unmanaged worktree."""
        holder = self.registry.find_by_path(path, exclude=agent_id)
        if holder is not None:
            raise PathCollision(agent_id, "spawn", path, f"agent '{holder.agent_id}'")
        holder = self.registry.find_by_branch(branch, exclude=agent_id)
        if holder is not None:
            raise BranchCollision(agent_id, "spawn", branch, f"agent '{holder.agent_id}'")

        try:
            listed = self.gateway.list_worktrees()
        except GatewayError as e:
            raise to_worktree_error(e, agent_id, "spawn") from e
        for worktree in listed:
            if worktree.path == path:
                raise PathCollision(agent_id, "spawn", path, "an unmanaged worktree")
            if worktree.branch == branch:
                raise BranchCollision(agent_id, "spawn", branch, f"worktree at {worktree.path}")

    def _roll_back_spawn(self, agent_id: str, path: str) -> None:
        """Undo a fatally failed spawn: drop the record, then any partial worktree."""
        self.registry.delete(agent_id)
        with ErrorContext(
            f"removing partial worktree {path}",
            raise_on_error=False,
            suppress=(GatewayError,),
            logger_instance=logger,
            log_level=logging.WARNING,
        ):
            if any(w.path == path for w in self.gateway.list_worktrees()):
                self.gateway.remove_worktree(Path(path))
