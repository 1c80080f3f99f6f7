"""Error taxonomy for worktree lifecycle operations.

Every error carries the agent id, the attempted operation and a taxonomy
kind so callers (and the CLI exit-code mapping) can act on it without
parsing messages.
"""

from typing import Optional


class WorktreeError(Exception):
    """Base class for all lifecycle errors."""

    kind = "WorktreeError"

    def __init__(self, agent_id: Optional[str], operation: str, detail: str = ""):
        self.agent_id = agent_id
        self.operation = operation
        self.detail = detail
        super().__init__(self._render())

    def _render(self) -> str:
        msg = f"{self.kind}: {self.operation} failed for agent '{self.agent_id}'"
        if self.detail:
            msg += f": {self.detail}"
        return msg


class PathCollision(WorktreeError):
    """Allocated worktree path is already taken."""

    kind = "PathCollision"

    def __init__(self, agent_id: str, operation: str, path: str, holder: str):
        self.path = path
        self.holder = holder
        super().__init__(agent_id, operation, f"path {path} already held by {holder}")


class BranchCollision(WorktreeError):
    """Allocated branch is already checked out elsewhere."""

    kind = "BranchCollision"

    def __init__(self, agent_id: str, operation: str, branch: str, holder: str):
        self.branch = branch
        self.holder = holder
        super().__init__(agent_id, operation, f"branch {branch} already held by {holder}")


class DirtyWorktreeRefusal(WorktreeError):
    """Destructive operation refused because the worktree has uncommitted changes."""

    kind = "DirtyWorktreeRefusal"

    def __init__(self, agent_id: str, operation: str, summary: str):
        self.summary = summary
        super().__init__(agent_id, operation, f"{summary} (use force to discard)")


class GatewayFailure(WorktreeError):
    """The repository gateway reported a failure."""

    kind = "GatewayFailure"

    def __init__(self, agent_id: Optional[str], operation: str, detail: str, transient: bool):
        self.transient = transient
        super().__init__(agent_id, operation, detail)

    def _render(self) -> str:
        flavor = "transient" if self.transient else "fatal"
        return (
            f"{self.kind}({flavor}): {self.operation} failed for agent "
            f"'{self.agent_id}': {self.detail}"
        )


class WorktreeTimeout(WorktreeError):
    """A gateway call or the structural lock exceeded its time bound."""

    kind = "Timeout"

    def __init__(self, agent_id: Optional[str], operation: str, detail: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(agent_id, operation, detail)


class OrphanDetected(WorktreeError):
    """Record is Orphaned; only reconciliation may resolve it."""

    kind = "OrphanDetected"


class RegistryCorruption(WorktreeError):
    """Registry violates a uniqueness invariant. Never auto-resolved."""

    kind = "RegistryCorruption"


class OperationInProgress(WorktreeError):
    """Record is mid-operation (Spawning/Removing/Committing)."""

    kind = "OperationInProgress"

    def __init__(self, agent_id: str, operation: str, state: str):
        self.state = state
        super().__init__(
            agent_id, operation,
            f"record is '{state}'; run reconcile if the earlier operation was abandoned",
        )


class WorktreeNotFound(WorktreeError):
    """No live record exists for the agent."""

    kind = "WorktreeNotFound"


class InvalidStateTransition(WorktreeError):
    """Requested state change is not allowed by the lifecycle."""

    kind = "InvalidStateTransition"

    def __init__(self, agent_id: str, operation: str, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(agent_id, operation, f"cannot move from '{from_state}' to '{to_state}'")


class InvalidRequest(WorktreeError, ValueError):
    """Caller passed an unusable agent id, ref or commit message. Nothing changed."""

    kind = "InvalidRequest"
