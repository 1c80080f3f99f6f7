"""Repository gateway: the capability surface the lifecycle core depends on.

The core never touches the filesystem or repository metadata itself; it
sequences and protects calls to these primitives. Implementations must
raise GatewayError (with ``transient`` set for retryable conditions such as
lock contention) or GatewayTimeoutError when a call exceeds its bound.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ..core.records import GatewayWorktree, StatusReport
from ..errors.taxonomy import GatewayFailure, WorktreeError, WorktreeTimeout


class GatewayError(Exception):
    """A gateway primitive failed."""

    def __init__(self, message: str, transient: bool = False):
        self.transient = transient
        super().__init__(message)


class GatewayTimeoutError(GatewayError):
    """A gateway primitive exceeded its time bound."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(message, transient=True)


class RepositoryGateway(ABC):
    """Abstract interface over one primary repository."""

    @abstractmethod
    def open(self, root_path: Path) -> None:
        """Bind to the primary repository at root_path."""

    @abstractmethod
    def list_worktrees(self) -> List[GatewayWorktree]:
        """Linked worktrees of the primary repository (the primary itself excluded)."""

    @abstractmethod
    def create_worktree(self, path: Path, branch: str, base_ref: str) -> None:
        """Check out ``branch`` at ``path``, creating the branch from base_ref if needed."""

    @abstractmethod
    def remove_worktree(self, path: Path) -> None:
        """Remove the worktree at path, discarding any uncommitted changes."""

    @abstractmethod
    def status(self, path: Path) -> StatusReport:
        """Uncommitted changes in the worktree at path."""

    @abstractmethod
    def commit(self, path: Path, message: str, author: str) -> str:
        """Stage everything and commit; returns the new head sha."""

    @abstractmethod
    def head_sha(self, path: Path) -> str:
        """Current head commit of the worktree at path."""


def to_worktree_error(error: GatewayError, agent_id: Optional[str], operation: str) -> WorktreeError:
    """Map a gateway failure onto the lifecycle error taxonomy."""
    if isinstance(error, GatewayTimeoutError):
        return WorktreeTimeout(agent_id, operation, str(error), timeout=error.timeout)
    return GatewayFailure(agent_id, operation, str(error), transient=error.transient)
