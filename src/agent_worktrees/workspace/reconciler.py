"""Cleanup reconciler: converges the registry with the repository's worktree list.

The gateway's worktree list is ground truth. Runs under the structural lock
and is the only component allowed to move records out of the orphaned state.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.config import OrphanPolicy
from ..core.records import GatewayWorktree, WorktreeRecord, WorktreeState, utcnow
from ..utils.validators import is_valid_identifier
from .gateway import GatewayError, RepositoryGateway, to_worktree_error
from .locks import StructuralLock
from .registry import WorktreeRegistry

logger = logging.getLogger(__name__)


class ReconcileReport(BaseModel):
    """What a reconciliation pass changed or found."""

    purged: List[str] = Field(default_factory=list)
    orphaned: List[str] = Field(default_factory=list)
    adopted: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    completed: List[str] = Field(default_factory=list)
    escalated: List[str] = Field(default_factory=list)
    refreshed: List[str] = Field(default_factory=list)
    # Informational: left for an operator, reported on every pass
    awaiting_operator: List[str] = Field(default_factory=list)
    unresolved: List[str] = Field(default_factory=list)
    corrupt: List[str] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        """True when the pass changed nothing and nothing failed."""
        return not (
            self.purged or self.orphaned or self.adopted or self.removed
            or self.completed or self.escalated or self.refreshed or self.failures
        )


class CleanupReconciler:
    """Resolves divergence between registry records and real worktrees."""

    def __init__(
        self,
        managed_root: Path,
        gateway: RepositoryGateway,
        registry: WorktreeRegistry,
        lock: StructuralLock,
        orphan_policy: OrphanPolicy = OrphanPolicy.REPORT,
        stale_after_seconds: float = 900.0,
        max_retries: int = 1,
    ):
        self.managed_root = Path(managed_root)
        self.gateway = gateway
        self.registry = registry
        self.lock = lock
        self.orphan_policy = orphan_policy
        self.stale_after_seconds = stale_after_seconds
        self.max_retries = max_retries

    def reconcile(self) -> ReconcileReport:
        report = ReconcileReport()
        with self.lock.held("reconcile"):
            self.registry.reload()
            corrupt = self.registry.corrupt_agents()
            for agent_id, problem in sorted(corrupt.items()):
                logger.error(
                    f"Registry corruption, skipping: {problem}",
                    extra={"agent_id": agent_id, "operation": "reconcile"},
                )
                report.corrupt.append(agent_id)

            try:
                listed = self.gateway.list_worktrees()
            except GatewayError as e:
                raise to_worktree_error(e, None, "reconcile") from e
            entries = {w.path: w for w in listed}

            claimed = set()
            for key, record in self.registry.items(refresh=False):
                if key in corrupt:
                    claimed.add(record.path)
                    continue
                entry = entries.get(record.path)
                if entry is None or record.state == WorktreeState.REMOVED:
                    self._purge(record, report)
                    continue
                claimed.add(record.path)
                self._reconcile_record(record, entry, report)

            for path, entry in sorted(entries.items()):
                if path not in claimed and self._is_managed(path):
                    self._reconcile_untracked(entry, report)

        if report.is_noop:
            logger.debug("Reconcile: nothing to do")
        else:
            logger.info(
                f"Reconcile: purged={len(report.purged)} orphaned={len(report.orphaned)} "
                f"adopted={len(report.adopted)} removed={len(report.removed)} "
                f"completed={len(report.completed)} escalated={len(report.escalated)} "
                f"refreshed={len(report.refreshed)} failures={len(report.failures)}"
            )
        return report

    # -- per-record handling -------------------------------------------------

    def _is_managed(self, path: str) -> bool:
        return Path(path).is_relative_to(self.managed_root)

    def _purge(self, record: WorktreeRecord, report: ReconcileReport) -> None:
        """Record whose worktree no longer exists: the filesystem wins."""
        logger.info(
            f"Purging {record.state.value} record; worktree {record.path} is gone",
            extra={"agent_id": record.agent_id, "operation": "reconcile"},
        )
        self.registry.delete(record.agent_id)
        report.purged.append(record.agent_id)

    def _reconcile_record(
        self,
        record: WorktreeRecord,
        entry: GatewayWorktree,
        report: ReconcileReport,
    ) -> None:
        if record.state == WorktreeState.ORPHANED:
            self._apply_orphan_policy(record, entry, report, newly_orphaned=False)
        elif record.is_in_progress:
            if record.age_in_state(utcnow()) >= self.stale_after_seconds:
                self._retry_stale(record, entry, report)
        elif entry.head_sha and entry.head_sha != record.head_sha:
            # Head moved outside the lifecycle (manual commit, reset)
            self.registry.update(record.agent_id, "reconcile", head_sha=entry.head_sha)
            report.refreshed.append(record.agent_id)

    def _reconcile_untracked(self, entry: GatewayWorktree, report: ReconcileReport) -> None:
        """Worktree under the managed root that no record accounts for."""
        agent_id = Path(entry.path).name
        reason = None
        if not is_valid_identifier(agent_id):
            reason = "directory name is not a valid agent id"
        elif not entry.branch:
            reason = "worktree has a detached HEAD"
        elif self.registry.get(agent_id, refresh=False) is not None:
            reason = f"agent '{agent_id}' already has a record at another path"
        elif self.registry.find_by_branch(entry.branch) is not None:
            reason = f"branch {entry.branch} already belongs to another record"
        if reason:
            logger.warning(
                f"Unresolved worktree {entry.path}: {reason}",
                extra={"operation": "reconcile"},
            )
            report.unresolved.append(entry.path)
            return

        record = self.registry.put(WorktreeRecord(
            agent_id=agent_id,
            path=entry.path,
            branch=entry.branch,
            head_sha=entry.head_sha,
            state=WorktreeState.ORPHANED,
        ))
        logger.warning(
            f"Found untracked worktree {entry.path}; marked orphaned",
            extra={"agent_id": agent_id, "operation": "reconcile"},
        )
        report.orphaned.append(agent_id)
        self._apply_orphan_policy(record, entry, report, newly_orphaned=True)

    def _apply_orphan_policy(
        self,
        record: WorktreeRecord,
        entry: GatewayWorktree,
        report: ReconcileReport,
        newly_orphaned: bool,
    ) -> None:
        agent_id = record.agent_id
        if self.orphan_policy == OrphanPolicy.ADOPT:
            self.registry.transition(
                agent_id, WorktreeState.ACTIVE, "reconcile",
                by_reconciler=True, head_sha=entry.head_sha,
            )
            report.adopted.append(agent_id)
        elif self.orphan_policy == OrphanPolicy.REMOVE:
            self.registry.transition(agent_id, WorktreeState.REMOVING, "reconcile", by_reconciler=True)
            if self._remove(agent_id, record.path, report):
                report.removed.append(agent_id)
        elif not newly_orphaned:
            report.awaiting_operator.append(agent_id)

    def _retry_stale(
        self,
        record: WorktreeRecord,
        entry: GatewayWorktree,
        report: ReconcileReport,
    ) -> None:
        """Finish (or escalate) an operation that never completed."""
        agent_id = record.agent_id
        logger.info(
            f"Retrying stale {record.state.value} record "
            f"(idle {record.age_in_state(utcnow()):.0f}s)",
            extra={"agent_id": agent_id, "operation": "reconcile"},
        )

        if record.state == WorktreeState.SPAWNING:
            # Creation reached the repository before the crash/timeout
            self.registry.transition(
                agent_id, WorktreeState.ACTIVE, "reconcile", head_sha=entry.head_sha,
            )
            report.completed.append(agent_id)
        elif record.state == WorktreeState.REMOVING:
            if self._remove(agent_id, record.path, report, record=record):
                report.completed.append(agent_id)
        elif record.state == WorktreeState.COMMITTING:
            path = Path(record.path)
            try:
                status = self.gateway.status(path)
                head_sha = self.gateway.head_sha(path)
            except GatewayError as e:
                self._record_failure(record, e, report)
                return
            target = WorktreeState.ACTIVE if status.clean else WorktreeState.DIRTY
            self.registry.transition(agent_id, target, "reconcile", head_sha=head_sha)
            report.completed.append(agent_id)

    def _remove(
        self,
        agent_id: str,
        path: str,
        report: ReconcileReport,
        record: Optional[WorktreeRecord] = None,
    ) -> bool:
        """Gateway removal of a record already in the removing state."""
        try:
            self.gateway.remove_worktree(Path(path))
        except GatewayError as e:
            if record is not None:
                self._record_failure(record, e, report)
            else:
                report.failures[agent_id] = str(to_worktree_error(e, agent_id, "reconcile"))
            return False
        self.registry.transition(agent_id, WorktreeState.REMOVED, "reconcile")
        self.registry.delete(agent_id)
        return True

    def _record_failure(self, record: WorktreeRecord, error: GatewayError, report: ReconcileReport) -> None:
        """Count a failed retry; escalate to orphaned once retries are exhausted."""
        agent_id = record.agent_id
        attempts = record.reconcile_attempts + 1
        report.failures[agent_id] = str(to_worktree_error(error, agent_id, "reconcile"))
        if attempts >= self.max_retries:
            self.registry.transition(
                agent_id, WorktreeState.ORPHANED, "reconcile",
                by_reconciler=True, reconcile_attempts=attempts,
            )
            logger.error(
                f"Still stuck after {attempts} attempt(s); escalated to orphaned: {error}",
                extra={"agent_id": agent_id, "operation": "reconcile"},
            )
            report.escalated.append(agent_id)
        else:
            self.registry.update(agent_id, "reconcile", reconcile_attempts=attempts)
            logger.warning(
                f"Retry {attempts}/{self.max_retries} failed: {error}",
                extra={"agent_id": agent_id, "operation": "reconcile"},
            )
