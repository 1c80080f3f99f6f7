"""Structural lock serializing spawn, nuke and reconcile per repository.

Two layers:
- an in-process FIFO queue, shared by every StructuralLock instance that
  points at the same lock file, so threads are served in arrival order;
- fcntl.flock on the lock file for cross-process exclusion. The holder's
  PID and operation are written into the file for diagnostics.

The lock is not reentrant.
"""

import fcntl
import logging
import os
import threading
import time
from collections import deque
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Deque, Dict, Iterator, Optional

from ..errors.taxonomy import WorktreeTimeout

logger = logging.getLogger(__name__)

STRUCTURAL_LOCK_FILENAME = ".structural.lock"


class _FifoQueue:
    """Ticket queue: the waiter at the head of the deque owns the lock."""

    def __init__(self):
        self._cond = threading.Condition()
        self._waiters: Deque[object] = deque()

    def acquire(self, deadline: Optional[float]) -> object:
        token = object()
        with self._cond:
            self._waiters.append(token)
            while self._waiters[0] is not token:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    self._waiters.remove(token)
                    self._cond.notify_all()
                    raise TimeoutError("timed out waiting in structural lock queue")
                self._cond.wait(remaining)
        return token

    def release(self, token: object) -> None:
        with self._cond:
            if self._waiters and self._waiters[0] is token:
                self._waiters.popleft()
            else:
                self._waiters.remove(token)
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._waiters)


class StructuralLock:
    """Exclusive, FIFO, per-repository lock."""

    _queues: Dict[str, _FifoQueue] = {}
    _queues_guard = threading.Lock()

    def __init__(
        self,
        state_dir: Path,
        acquire_timeout: Optional[float] = None,
        poll_interval: float = 0.05,
    ):
        self.lock_path = Path(state_dir) / STRUCTURAL_LOCK_FILENAME
        self.acquire_timeout = acquire_timeout
        self.poll_interval = poll_interval
        key = str(self.lock_path.resolve())
        with self._queues_guard:
            self._queue = self._queues.setdefault(key, _FifoQueue())

    @property
    def queued(self) -> int:
        """Threads of this process holding or waiting for the lock."""
        return len(self._queue)

    def holder(self) -> str:
        """Diagnostic line written by the current (or last) holder."""
        try:
            return self.lock_path.read_text().strip()
        except OSError:
            return ""

    @contextmanager
    def held(self, operation: str, agent_id: Optional[str] = None) -> Iterator[None]:
        """Hold the lock for the duration of a structural operation.

        Raises:
            WorktreeTimeout: if the lock is not acquired within acquire_timeout
        """
        deadline = None
        if self.acquire_timeout is not None:
            deadline = time.monotonic() + self.acquire_timeout

        started = time.monotonic()
        try:
            token = self._queue.acquire(deadline)
        except TimeoutError:
            raise WorktreeTimeout(
                agent_id, operation,
                f"structural lock busy (held by: {self.holder() or 'unknown'})",
                timeout=self.acquire_timeout,
            )

        try:
            lock_file = self._acquire_file_lock(deadline, operation, agent_id)
        except BaseException:
            self._queue.release(token)
            raise

        waited = time.monotonic() - started
        if waited > 1.0:
            logger.debug(
                f"Waited {waited:.1f}s for structural lock",
                extra={"agent_id": agent_id, "operation": operation},
            )
        try:
            yield
        finally:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            finally:
                lock_file.close()
                self._queue.release(token)

    def _acquire_file_lock(self, deadline: Optional[float], operation: str, agent_id: Optional[str]):
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(self.lock_path, "a+")
        try:
            while True:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if deadline is not None and time.monotonic() >= deadline:
                        raise WorktreeTimeout(
                            agent_id, operation,
                            f"structural lock held by another process ({self.holder() or 'unknown'})",
                            timeout=self.acquire_timeout,
                        )
                    time.sleep(self.poll_interval)

            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(
                f"pid={os.getpid()} operation={operation} agent={agent_id or '-'} "
                f"since={datetime.now(UTC).isoformat()}\n"
            )
            lock_file.flush()
            return lock_file
        except BaseException:
            lock_file.close()
            raise
