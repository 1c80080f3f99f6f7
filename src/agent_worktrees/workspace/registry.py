"""Durable worktree registry.

One JSON file per state directory, keyed by agent id. Every mutation is a
read-modify-write of a single record under a short fcntl file lock, so
lock-free status/sync updates and structural operations from other
processes never overwrite each other. Writes are atomic (temp + rename).
"""

import fcntl
import json
import logging
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Collection, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..core.records import (
    RegistrySnapshot,
    WorktreeRecord,
    WorktreeState,
    can_transition,
    utcnow,
)
from ..errors.taxonomy import InvalidStateTransition, RegistryCorruption, WorktreeNotFound
from ..utils.atomic_io import atomic_write_model

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = ".worktree-registry.json"
REGISTRY_LOCK_FILENAME = ".worktree-registry.lock"


class WorktreeRegistry:
    """Persistent map of agent id to WorktreeRecord."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._records: Dict[str, WorktreeRecord] = {}
        self.reload()

    @property
    def path(self) -> Path:
        return self.state_dir / REGISTRY_FILENAME

    @contextmanager
    def _registry_lock(self):
        """Context manager for file-based locking of registry operations.

        Uses fcntl.flock for cross-process synchronization.
        """
        lock_path = self.state_dir / REGISTRY_LOCK_FILENAME
        lock_file = open(lock_path, "w")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            lock_file.close()

    def _read_disk(self) -> Dict[str, WorktreeRecord]:
        """Parse the registry file. Caller holds the registry lock.

        An unreadable file is never silently reset: treating it as empty
        would make every managed worktree look like an orphan.
        """
        if not self.path.exists():
            return {}
        try:
            snapshot = RegistrySnapshot.model_validate_json(self.path.read_text())
        except (ValidationError, json.JSONDecodeError, ValueError) as e:
            raise RegistryCorruption(None, "load", f"unreadable registry {self.path}: {e}")
        return dict(snapshot.records)

    def _write_disk(self, records: Dict[str, WorktreeRecord]) -> None:
        atomic_write_model(self.path, RegistrySnapshot(records=records))
        self._records = records

    def reload(self) -> None:
        """Reload from disk for cross-process visibility."""
        with self._registry_lock():
            self._records = self._read_disk()
        logger.debug(f"Loaded {len(self._records)} records from {self.path}")

    # -- reads ---------------------------------------------------------------

    def get(self, agent_id: str, refresh: bool = True) -> Optional[WorktreeRecord]:
        if refresh:
            self.reload()
        record = self._records.get(agent_id)
        return record.model_copy() if record else None

    def records(self, refresh: bool = True) -> List[WorktreeRecord]:
        return [record for _, record in self.items(refresh)]

    def items(self, refresh: bool = True) -> List[Tuple[str, WorktreeRecord]]:
        """(registry key, record) pairs sorted by key.

        The key normally equals the record's agent_id; a mismatch is corruption.
        """
        if refresh:
            self.reload()
        return [(key, r.model_copy()) for key, r in sorted(self._records.items())]

    def find_by_path(self, path: str, exclude: Optional[str] = None) -> Optional[WorktreeRecord]:
        for key, record in self._records.items():
            if key != exclude and record.state != WorktreeState.REMOVED and record.path == path:
                return record.model_copy()
        return None

    def find_by_branch(self, branch: str, exclude: Optional[str] = None) -> Optional[WorktreeRecord]:
        for key, record in self._records.items():
            if key != exclude and record.state != WorktreeState.REMOVED and record.branch == branch:
                return record.model_copy()
        return None

    def corrupt_agents(self) -> Dict[str, str]:
        """Agent ids whose records violate a uniqueness invariant, with the reason.

        Uses the in-memory view; call reload() first for fresh results.
        """
        problems: Dict[str, str] = {}
        by_path: Dict[str, List[str]] = defaultdict(list)
        by_branch: Dict[str, List[str]] = defaultdict(list)

        for key, record in self._records.items():
            if key != record.agent_id:
                problems[key] = f"stored under key '{key}' but names agent '{record.agent_id}'"
            if record.state == WorktreeState.REMOVED:
                continue
            by_path[record.path].append(key)
            by_branch[record.branch].append(key)

        for path, owners in by_path.items():
            if len(owners) > 1:
                for owner in owners:
                    problems.setdefault(owner, f"path {path} shared by {', '.join(sorted(owners))}")
        for branch, owners in by_branch.items():
            if len(owners) > 1:
                for owner in owners:
                    problems.setdefault(owner, f"branch {branch} shared by {', '.join(sorted(owners))}")
        return problems

    # -- writes --------------------------------------------------------------

    def put(self, record: WorktreeRecord) -> WorktreeRecord:
        """Insert or replace a record durably."""
        with self._registry_lock():
            records = self._read_disk()
            records[record.agent_id] = record.model_copy()
            self._write_disk(records)
        logger.debug(
            f"Stored record ({record.state.value})",
            extra={"agent_id": record.agent_id},
        )
        return record.model_copy()

    def delete(self, agent_id: str) -> bool:
        """Purge a record. Returns False when it was already absent."""
        with self._registry_lock():
            records = self._read_disk()
            if agent_id not in records:
                self._records = records
                return False
            del records[agent_id]
            self._write_disk(records)
        logger.debug("Purged record", extra={"agent_id": agent_id})
        return True

    def transition(
        self,
        agent_id: str,
        target: WorktreeState,
        operation: str,
        *,
        by_reconciler: bool = False,
        only_from: Optional[Collection[WorktreeState]] = None,
        **updates: Any,
    ) -> Optional[WorktreeRecord]:
        """Move a record to a new state, applying field updates atomically.

        Args:
            agent_id: Record to change
            target: New state
            operation: Operation name for error messages
            by_reconciler: Allows leaving the orphaned state
            only_from: When given and the stored state is not in it, nothing
                changes and None is returned (another actor got there first)
            **updates: Extra fields to set (head_sha, reconcile_attempts, ...)

        Raises:
            WorktreeNotFound: no record for agent_id
            InvalidStateTransition: the lifecycle forbids the change
        """
        with self._registry_lock():
            records = self._read_disk()
            current = records.get(agent_id)
            if current is None:
                self._records = records
                raise WorktreeNotFound(agent_id, operation, "no registry record")
            if only_from is not None and current.state not in only_from:
                self._records = records
                return None
            if current.state != target and not can_transition(current.state, target, by_reconciler):
                self._records = records
                raise InvalidStateTransition(agent_id, operation, current.state.value, target.value)

            changes: Dict[str, Any] = {"state": target}
            if current.state != target:
                changes["last_transition_at"] = utcnow()
                changes.setdefault("reconcile_attempts", 0)
            changes.update(updates)
            updated = current.model_copy(update=changes)
            records[agent_id] = updated
            self._write_disk(records)

        if current.state != target:
            logger.info(
                f"{current.state.value} -> {target.value}",
                extra={"agent_id": agent_id, "operation": operation},
            )
        return updated.model_copy()

    def update(self, agent_id: str, operation: str, **fields: Any) -> WorktreeRecord:
        """Change fields of a record without touching its state."""
        with self._registry_lock():
            records = self._read_disk()
            current = records.get(agent_id)
            if current is None:
                self._records = records
                raise WorktreeNotFound(agent_id, operation, "no registry record")
            updated = current.model_copy(update=fields)
            records[agent_id] = updated
            self._write_disk(records)
        return updated.model_copy()
