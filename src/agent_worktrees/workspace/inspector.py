"""Read-only status inspection of agent worktrees."""

import logging
from pathlib import Path
from typing import Optional

from ..core.records import StatusReport, WorktreeRecord, WorktreeState
from ..errors.taxonomy import InvalidRequest, OperationInProgress, OrphanDetected, WorktreeNotFound
from ..utils.validators import validate_identifier
from .gateway import GatewayError, RepositoryGateway, to_worktree_error
from .registry import WorktreeRegistry

logger = logging.getLogger(__name__)


def checked_agent_id(agent_id: str, operation: str) -> str:
    """Validate an agent id, reporting failure in lifecycle terms."""
    try:
        return validate_identifier(agent_id)
    except ValueError as e:
        raise InvalidRequest(agent_id, operation, str(e)) from e


def require_live_record(record: Optional[WorktreeRecord], agent_id: str, operation: str) -> WorktreeRecord:
    """Return the record if it owns a usable worktree, else raise the matching error."""
    if record is None or record.state == WorktreeState.REMOVED:
        raise WorktreeNotFound(agent_id, operation, "no worktree has been spawned for this agent")
    if record.state == WorktreeState.ORPHANED:
        raise OrphanDetected(agent_id, operation, "record is orphaned; run reconcile")
    if not record.is_live:
        raise OperationInProgress(agent_id, operation, record.state.value)
    return record


class StatusInspector:
    """Reports clean/dirty state without taking the structural lock.

    Keeps the record's observed state current: an active record found dirty
    becomes dirty and vice versa. A committing record is owned by the sync in
    flight and is left alone.
    """

    def __init__(self, gateway: RepositoryGateway, registry: WorktreeRegistry):
        self.gateway = gateway
        self.registry = registry

    def status(self, agent_id: str) -> StatusReport:
        agent_id = checked_agent_id(agent_id, "status")
        record = require_live_record(self.registry.get(agent_id), agent_id, "status")
        return self.inspect(record, "status")

    def inspect(self, record: WorktreeRecord, operation: str, track: bool = True) -> StatusReport:
        """Query the gateway for one record's worktree.

        With track=False the record is left untouched (used as a read-only
        gate before destructive operations).
        """
        try:
            report = self.gateway.status(Path(record.path))
        except GatewayError as e:
            raise to_worktree_error(e, record.agent_id, operation) from e

        if track:
            self._track(record, report.clean, operation)

        logger.debug(report.summary(), extra={"agent_id": record.agent_id, "operation": operation})
        return report

    def _track(self, record: WorktreeRecord, clean: bool, operation: str) -> None:
        if record.state == WorktreeState.ACTIVE and not clean:
            self.registry.transition(
                record.agent_id, WorktreeState.DIRTY, operation,
                only_from={WorktreeState.ACTIVE},
            )
        elif record.state == WorktreeState.DIRTY and clean:
            # Changes were committed or discarded outside a sync
            self.registry.transition(
                record.agent_id, WorktreeState.ACTIVE, operation,
                only_from={WorktreeState.DIRTY},
            )
