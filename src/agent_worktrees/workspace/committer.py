"""Commit coordination for agent worktrees (no structural lock)."""

import logging
from pathlib import Path
from typing import Optional

from ..core.records import WorktreeState
from ..errors.taxonomy import InvalidRequest, OperationInProgress
from ..utils.rich_logging import operation_logger
from .gateway import GatewayError, GatewayTimeoutError, RepositoryGateway, to_worktree_error
from .inspector import StatusInspector, checked_agent_id, require_live_record
from .registry import WorktreeRegistry

logger = logging.getLogger(__name__)


class CommitCoordinator:
    """Stages and commits an agent's changes, tracking dirty/committing/active.

    Two syncs on the same agent must be serialized by the caller.
    """

    def __init__(
        self,
        gateway: RepositoryGateway,
        registry: WorktreeRegistry,
        inspector: StatusInspector,
        default_author: str,
    ):
        self.gateway = gateway
        self.registry = registry
        self.inspector = inspector
        self.default_author = default_author

    def sync(self, agent_id: str, message: str, author: Optional[str] = None) -> str:
        """Commit pending changes and return the resulting head sha.

        With nothing to commit the prior head is returned unchanged.

        Raises:
            InvalidRequest: malformed agent id or empty message
            WorktreeNotFound / OrphanDetected / OperationInProgress
            GatewayFailure: commit failed; record is back to dirty, safe to retry
            WorktreeTimeout: record stays committing for the reconciler
        """
        agent_id = checked_agent_id(agent_id, "sync")
        if not message or not message.strip():
            raise InvalidRequest(agent_id, "sync", "commit message must not be empty")
        author = author or self.default_author
        log = operation_logger(logger, "sync", agent_id)

        record = require_live_record(self.registry.get(agent_id), agent_id, "sync")
        if record.state == WorktreeState.COMMITTING:
            raise OperationInProgress(agent_id, "sync", record.state.value)

        path = Path(record.path)
        report = self.inspector.inspect(record, "sync")
        if report.clean:
            # The repository's head wins: an earlier commit may have landed
            # even though its result was never recorded
            try:
                head_sha = self.gateway.head_sha(path)
            except GatewayError as e:
                raise to_worktree_error(e, agent_id, "sync") from e
            if head_sha != record.head_sha:
                self.registry.update(agent_id, "sync", head_sha=head_sha)
            log.info(f"Nothing to commit; head is {head_sha[:12]}")
            return head_sha

        self.registry.transition(
            agent_id, WorktreeState.DIRTY, "sync",
            only_from={WorktreeState.ACTIVE, WorktreeState.DIRTY},
        )
        committing = self.registry.transition(
            agent_id, WorktreeState.COMMITTING, "sync",
            only_from={WorktreeState.DIRTY},
        )
        if committing is None:
            current = self.registry.get(agent_id)
            raise OperationInProgress(agent_id, "sync", current.state.value if current else "absent")

        try:
            head_sha = self.gateway.commit(path, message, author)
        except GatewayTimeoutError as e:
            log.warning(f"Commit timed out; left committing for reconcile: {e}")
            raise to_worktree_error(e, agent_id, "sync") from e
        except GatewayError as e:
            self.registry.transition(agent_id, WorktreeState.DIRTY, "sync")
            raise to_worktree_error(e, agent_id, "sync") from e

        self.registry.transition(agent_id, WorktreeState.ACTIVE, "sync", head_sha=head_sha)
        log.info(f"Committed {len(report.entries)} change(s) as {head_sha[:12]}")
        return head_sha
