"""In-memory repository gateway.

Deterministic stand-in for GitGateway: no subprocesses, no filesystem.
Supports failure injection so lifecycle and reconciliation paths can be
exercised exactly (fatal, transient, timeout, side effect applied before
the failure surfaces).
"""

import hashlib
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, List, Optional, Tuple

from ..core.records import GatewayWorktree, StatusEntry, StatusReport
from .gateway import GatewayError, RepositoryGateway


@dataclass
class _FakeWorktree:
    branch: str
    head: str
    changes: Dict[str, str] = field(default_factory=dict)


@dataclass
class _InjectedFailure:
    error: GatewayError
    apply_side_effect: bool


class InMemoryGateway(RepositoryGateway):
    """Fake gateway backed by dictionaries."""

    def __init__(self, default_branch: str = "main", latency: float = 0.0):
        self.root: Optional[Path] = None
        self.default_branch = default_branch
        self.latency = latency
        self._lock = threading.RLock()
        self._commit_counter = 0
        self.branches: Dict[str, str] = {default_branch: self._new_sha("initial commit")}
        self.worktrees: Dict[str, _FakeWorktree] = {}
        self.commit_log: List[Tuple[str, str, str]] = []  # (sha, message, author)
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[str, Deque[_InjectedFailure]] = defaultdict(deque)

    # -- test helpers --------------------------------------------------------

    def fail_next(
        self,
        operation: str,
        error: Optional[GatewayError] = None,
        apply_side_effect: bool = False,
    ) -> None:
        """Make the next call to ``operation`` raise.

        With apply_side_effect=True the primitive takes effect before the
        error is raised (e.g. git created the worktree, then timed out).
        """
        error = error or GatewayError(f"injected {operation} failure")
        self._failures[operation].append(_InjectedFailure(error, apply_side_effect))

    def write_file(self, path: Path, name: str, code: str = "??") -> None:
        """Simulate an agent editing a file inside a worktree."""
        with self._lock:
            self._require(path).changes[name] = code

    def add_external_worktree(self, path: Path, branch: str) -> None:
        """Simulate a worktree created outside the lifecycle manager."""
        with self._lock:
            head = self.branches.setdefault(branch, self.branches[self.default_branch])
            self.worktrees[str(path)] = _FakeWorktree(branch=branch, head=head)

    def delete_externally(self, path: Path) -> None:
        """Simulate a worktree vanishing behind the manager's back."""
        with self._lock:
            self.worktrees.pop(str(path), None)

    def external_commit(self, path: Path, message: str = "external") -> str:
        """Simulate someone committing directly in the worktree."""
        with self._lock:
            wt = self._require(path)
            sha = self._new_sha(message)
            wt.head = sha
            self.branches[wt.branch] = sha
            return sha

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # -- RepositoryGateway ---------------------------------------------------

    def open(self, root_path: Path) -> None:
        self.root = Path(root_path)
        self._record("open", str(root_path))

    def list_worktrees(self) -> List[GatewayWorktree]:
        with self._lock:
            failure = self._take_failure("list_worktrees")
            self._raise_if(failure)
            self._record("list_worktrees", "")
            return [
                GatewayWorktree(path=p, branch=wt.branch, head_sha=wt.head)
                for p, wt in sorted(self.worktrees.items())
            ]

    def create_worktree(self, path: Path, branch: str, base_ref: str) -> None:
        self._sleep()
        with self._lock:
            self._record("create_worktree", str(path))
            failure = self._take_failure("create_worktree")
            if failure and not failure.apply_side_effect:
                raise failure.error

            key = str(path)
            if key in self.worktrees:
                raise GatewayError(f"'{key}' already exists")
            for other_path, wt in self.worktrees.items():
                if wt.branch == branch:
                    raise GatewayError(f"'{branch}' is already checked out at '{other_path}'")

            if branch not in self.branches:
                self.branches[branch] = self._resolve(base_ref)
            self.worktrees[key] = _FakeWorktree(branch=branch, head=self.branches[branch])
            self._raise_if(failure)

    def remove_worktree(self, path: Path) -> None:
        self._sleep()
        with self._lock:
            self._record("remove_worktree", str(path))
            failure = self._take_failure("remove_worktree")
            if failure and not failure.apply_side_effect:
                raise failure.error
            # Already gone counts as removed
            self.worktrees.pop(str(path), None)
            self._raise_if(failure)

    def status(self, path: Path) -> StatusReport:
        with self._lock:
            self._record("status", str(path))
            self._raise_if(self._take_failure("status"))
            wt = self._require(path)
            return StatusReport(entries=[
                StatusEntry(code=code, path=name)
                for name, code in sorted(wt.changes.items())
            ])

    def commit(self, path: Path, message: str, author: str) -> str:
        self._sleep()
        with self._lock:
            self._record("commit", str(path))
            failure = self._take_failure("commit")
            if failure and not failure.apply_side_effect:
                raise failure.error
            wt = self._require(path)
            if not wt.changes:
                raise GatewayError("nothing to commit, working tree clean")
            sha = self._new_sha(message)
            wt.head = sha
            wt.changes.clear()
            self.branches[wt.branch] = sha
            self.commit_log.append((sha, message, author))
            self._raise_if(failure)
            return sha

    def head_sha(self, path: Path) -> str:
        with self._lock:
            self._record("head_sha", str(path))
            self._raise_if(self._take_failure("head_sha"))
            return self._require(path).head

    # -- internals -----------------------------------------------------------

    def _resolve(self, ref: str) -> str:
        if ref == "HEAD":
            return self.branches[self.default_branch]
        if ref in self.branches:
            return self.branches[ref]
        if any(sha == ref for sha in self.branches.values()):
            return ref
        raise GatewayError(f"invalid reference: {ref}")

    def _require(self, path: Path) -> _FakeWorktree:
        wt = self.worktrees.get(str(path))
        if wt is None:
            raise GatewayError(f"'{path}' is not a working tree")
        return wt

    def _new_sha(self, message: str) -> str:
        self._commit_counter += 1
        return hashlib.sha1(f"{self._commit_counter}:{message}".encode()).hexdigest()

    def _take_failure(self, operation: str) -> Optional[_InjectedFailure]:
        queue = self._failures.get(operation)
        if queue:
            return queue.popleft()
        return None

    @staticmethod
    def _raise_if(failure: Optional[_InjectedFailure]) -> None:
        if failure is not None:
            raise failure.error

    def _record(self, operation: str, arg: str) -> None:
        self.calls.append((operation, arg))

    def _sleep(self) -> None:
        if self.latency:
            time.sleep(self.latency)
