"""Worktree record model and lifecycle state machine."""

from datetime import UTC, datetime
from enum import Enum
from typing import ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorktreeState(str, Enum):
    """Lifecycle states of an agent worktree."""
    SPAWNING = "spawning"
    ACTIVE = "active"
    DIRTY = "dirty"
    COMMITTING = "committing"
    REMOVING = "removing"
    REMOVED = "removed"
    ORPHANED = "orphaned"


# States that own a usable worktree
LIVE_STATES: FrozenSet[WorktreeState] = frozenset({
    WorktreeState.ACTIVE,
    WorktreeState.DIRTY,
    WorktreeState.COMMITTING,
})

# States recording an operation that has not finished yet
IN_PROGRESS_STATES: FrozenSet[WorktreeState] = frozenset({
    WorktreeState.SPAWNING,
    WorktreeState.REMOVING,
    WorktreeState.COMMITTING,
})

# Forward-only transitions. Leaving ORPHANED is reserved for the reconciler.
ALLOWED_TRANSITIONS: Dict[WorktreeState, FrozenSet[WorktreeState]] = {
    WorktreeState.SPAWNING: frozenset({WorktreeState.ACTIVE, WorktreeState.ORPHANED}),
    WorktreeState.ACTIVE: frozenset({
        WorktreeState.DIRTY, WorktreeState.COMMITTING,
        WorktreeState.REMOVING, WorktreeState.ORPHANED,
    }),
    WorktreeState.DIRTY: frozenset({
        WorktreeState.ACTIVE, WorktreeState.COMMITTING,
        WorktreeState.REMOVING, WorktreeState.ORPHANED,
    }),
    WorktreeState.COMMITTING: frozenset({
        WorktreeState.ACTIVE, WorktreeState.DIRTY, WorktreeState.ORPHANED,
    }),
    WorktreeState.REMOVING: frozenset({WorktreeState.REMOVED, WorktreeState.ORPHANED}),
    WorktreeState.REMOVED: frozenset(),
    WorktreeState.ORPHANED: frozenset({
        WorktreeState.ACTIVE, WorktreeState.REMOVING, WorktreeState.REMOVED,
    }),
}


def can_transition(
    current: WorktreeState,
    target: WorktreeState,
    by_reconciler: bool = False,
) -> bool:
    """Check whether a state change is allowed."""
    if current == WorktreeState.ORPHANED and not by_reconciler:
        return False
    return target in ALLOWED_TRANSITIONS[current]


def utcnow() -> datetime:
    return datetime.now(UTC)


class WorktreeRecord(BaseModel):
    """Durable record of one agent's worktree."""

    agent_id: str
    path: str
    branch: str
    state: WorktreeState
    base_ref: Optional[str] = None
    head_sha: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_transition_at: datetime = Field(default_factory=utcnow)
    reconcile_attempts: int = 0

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    @property
    def is_in_progress(self) -> bool:
        return self.state in IN_PROGRESS_STATES

    def age_in_state(self, now: Optional[datetime] = None) -> float:
        """Seconds since the last state transition."""
        now = now or utcnow()
        last = self.last_transition_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        return (now - last).total_seconds()

    def to_handle(self) -> "WorktreeHandle":
        return WorktreeHandle(
            agent_id=self.agent_id,
            path=self.path,
            branch=self.branch,
            base_ref=self.base_ref,
            head_sha=self.head_sha,
        )


class WorktreeHandle(BaseModel):
    """Immutable reference to a spawned worktree, handed to callers."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    path: str
    branch: str
    base_ref: Optional[str] = None
    head_sha: Optional[str] = None


class StatusEntry(BaseModel):
    """One line of porcelain status output."""

    model_config = ConfigDict(frozen=True)

    code: str
    path: str


class StatusReport(BaseModel):
    """Clean/dirty state of a single worktree."""

    entries: List[StatusEntry] = Field(default_factory=list)

    # Entries rendered in summaries before truncating
    SUMMARY_LIMIT: ClassVar[int] = 10

    @property
    def clean(self) -> bool:
        return not self.entries

    def summary(self) -> str:
        """Human-readable summary of uncommitted changes."""
        if self.clean:
            return "clean"
        shown = ", ".join(f"{e.code} {e.path}" for e in self.entries[:self.SUMMARY_LIMIT])
        more = len(self.entries) - self.SUMMARY_LIMIT
        suffix = f" (+{more} more)" if more > 0 else ""
        return f"{len(self.entries)} uncommitted change(s): {shown}{suffix}"


class GatewayWorktree(BaseModel):
    """A linked worktree as reported by the repository gateway."""

    model_config = ConfigDict(frozen=True)

    path: str
    branch: Optional[str] = None
    head_sha: Optional[str] = None


class RegistrySnapshot(BaseModel):
    """On-disk layout of the registry file."""

    version: int = 1
    records: Dict[str, WorktreeRecord] = Field(default_factory=dict)
