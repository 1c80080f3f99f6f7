"""Git CLI implementation of the repository gateway.

Every primitive is a bounded subprocess call. Failures are classified as
transient (lock contention inside .git) or fatal (everything else).
"""

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from ..core.records import GatewayWorktree, StatusEntry, StatusReport
from ..utils.subprocess_utils import SubprocessError, check_command_exists, run_git_command
from .gateway import GatewayError, GatewayTimeoutError, RepositoryGateway

logger = logging.getLogger(__name__)

# stderr fragments that mean "another git process holds a lock; try again"
_TRANSIENT_PATTERNS = re.compile(
    r"index\.lock|Unable to create '.*\.lock'|could not lock|cannot lock ref|"
    r"another git process|resource temporarily unavailable",
    re.IGNORECASE,
)

# Stale tracking entry blocks `worktree add` for this path
_STALE_ENTRY_PATTERNS = re.compile(
    r"missing but already registered worktree|is a missing linked working tree|already locked",
)

_AUTHOR_PATTERN = re.compile(r"^\s*(?P<name>[^<>]+?)\s*<(?P<email>[^<>]+)>\s*$")


class GitGateway(RepositoryGateway):
    """Gateway that shells out to the git CLI."""

    def __init__(self, command_timeout: float = 60.0):
        self.command_timeout = command_timeout
        self.root: Optional[Path] = None
        self._common_dir: Optional[Path] = None

    def open(self, root_path: Path) -> None:
        if not check_command_exists("git"):
            raise GatewayError("git executable not found in PATH")

        root_path = Path(root_path).expanduser().resolve()
        if not root_path.is_dir():
            raise GatewayError(f"Repository does not exist: {root_path}")

        toplevel = self._git(["rev-parse", "--show-toplevel"], cwd=root_path).stdout.strip()
        self.root = Path(toplevel).resolve()

        common = self._git(["rev-parse", "--git-common-dir"], cwd=self.root).stdout.strip()
        common_dir = Path(common)
        if not common_dir.is_absolute():
            common_dir = self.root / common_dir
        self._common_dir = common_dir.resolve()
        logger.debug(f"Opened repository {self.root} (git dir {self._common_dir})")

    def list_worktrees(self) -> List[GatewayWorktree]:
        output = self._git(["worktree", "list", "--porcelain"], cwd=self._require_root()).stdout
        return parse_worktree_porcelain(output)

    def create_worktree(self, path: Path, branch: str, base_ref: str) -> None:
        root = self._require_root()
        path = Path(path)

        verify = self._git(
            ["rev-parse", "--verify", "--quiet", f"{base_ref}^{{commit}}"],
            cwd=root, check=False,
        )
        if verify.returncode != 0:
            raise GatewayError(f"invalid reference: {base_ref}")

        branch_exists = self._git(
            ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
            cwd=root, check=False,
        ).returncode == 0

        if branch_exists:
            # Keeps commits from an earlier incarnation of this agent reachable
            logger.info(f"Reusing existing branch {branch} (base ref {base_ref} not applied)")
            args = ["worktree", "add", str(path), branch]
        else:
            args = ["worktree", "add", "-b", branch, str(path), base_ref]

        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._git(args, cwd=root)
        except GatewayError as e:
            if not _STALE_ENTRY_PATTERNS.search(str(e)):
                raise
            # Prune just this entry and retry once
            self._prune_stale_entry(path)
            self._git(args, cwd=root)
        logger.info(f"Created worktree: {path} (branch: {branch})")

    def remove_worktree(self, path: Path) -> None:
        """Delete the worktree directory and prune only its tracking entry.

        Uses shutil.rmtree instead of `git worktree remove` because the git
        command can delete empty parent directories, taking sibling worktree
        parents with it. `git worktree prune` is avoided for the same reason:
        it drops tracking entries for every missing worktree, not just this one.
        """
        self._require_root()
        path = Path(path)

        if path.exists():
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise GatewayError(f"Failed to remove worktree {path}: {e}")
            self._guard_parent_directory(path)
        else:
            logger.debug(f"Worktree already removed: {path}")

        self._prune_stale_entry(path)
        logger.info(f"Removed worktree: {path}")

    def status(self, path: Path) -> StatusReport:
        output = self._git(
            ["status", "--porcelain=v1", "--untracked-files=all"],
            cwd=Path(path),
        ).stdout
        return parse_status_porcelain(output)

    def commit(self, path: Path, message: str, author: str) -> str:
        match = _AUTHOR_PATTERN.match(author)
        if not match:
            raise GatewayError(f"Invalid author '{author}', expected 'Name <email>'")

        path = Path(path)
        self._git(["add", "-A"], cwd=path)
        self._git(
            [
                "-c", f"user.name={match.group('name')}",
                "-c", f"user.email={match.group('email')}",
                "commit", "-m", message, "--author", author,
            ],
            cwd=path,
        )
        return self.head_sha(path)

    def head_sha(self, path: Path) -> str:
        return self._git(["rev-parse", "HEAD"], cwd=Path(path)).stdout.strip()

    # -- internals -----------------------------------------------------------

    def _require_root(self) -> Path:
        if self.root is None:
            raise GatewayError("Gateway not opened; call open(root_path) first")
        return self.root

    def _git(
        self,
        args: List[str],
        cwd: Path,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run git, translating failures into gateway errors."""
        try:
            return run_git_command(
                args, cwd=cwd, check=check, timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired:
            raise GatewayTimeoutError(
                f"git {' '.join(args)} timed out after {self.command_timeout}s",
                timeout=self.command_timeout,
            )
        except SubprocessError as e:
            stderr = (e.stderr or "").strip()
            raise GatewayError(
                f"git {' '.join(args)} failed: {stderr or e}",
                transient=bool(_TRANSIENT_PATTERNS.search(stderr)),
            )
        except OSError as e:
            # cwd vanished or is not a directory
            raise GatewayError(f"git {' '.join(args)} could not run in {cwd}: {e}")

    def _prune_stale_entry(self, worktree_path: Path) -> None:
        """Remove a single worktree tracking entry without affecting siblings.

        Targets the entry in <git-common-dir>/worktrees/ whose gitdir points
        to worktree_path.
        """
        if self._common_dir is None:
            return
        worktrees_dir = self._common_dir / "worktrees"
        if not worktrees_dir.is_dir():
            return
        resolved_target = Path(worktree_path).resolve()
        for entry in worktrees_dir.iterdir():
            gitdir_file = entry / "gitdir"
            if not gitdir_file.exists():
                continue
            try:
                recorded = Path(gitdir_file.read_text().strip()).resolve()
                # gitdir may point to worktree/.git or to the worktree dir itself
                if recorded == resolved_target or recorded.parent == resolved_target:
                    logger.info(f"Removing stale worktree tracking entry: {entry}")
                    shutil.rmtree(entry)
                    return
            except OSError as e:
                logger.warning(f"Could not inspect tracking entry {entry}: {e}")
                continue

    def _guard_parent_directory(self, removed_path: Path) -> None:
        """Recreate the parent directory if it vanished during removal."""
        parent = removed_path.parent
        if not parent.exists():
            logger.critical(
                f"Parent directory deleted during worktree removal: {parent}. "
                f"Recreating to protect sibling worktrees."
            )
            parent.mkdir(parents=True, exist_ok=True)


def parse_worktree_porcelain(output: str) -> List[GatewayWorktree]:
    """Parse `git worktree list --porcelain` into linked worktrees.

    The first block is the primary worktree and is skipped; bare and
    prunable (directory missing) entries are skipped too.
    """
    blocks: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            if current:
                blocks.append(current)
                current = {}
            continue
        key, _, value = line.partition(" ")
        current[key] = value
    if current:
        blocks.append(current)

    worktrees = []
    for block in blocks[1:]:
        if "bare" in block or "prunable" in block or "worktree" not in block:
            continue
        branch = block.get("branch")
        if branch and branch.startswith("refs/heads/"):
            branch = branch[len("refs/heads/"):]
        worktrees.append(GatewayWorktree(
            path=str(Path(block["worktree"]).resolve()),
            branch=branch,
            head_sha=block.get("HEAD"),
        ))
    return worktrees


def parse_status_porcelain(output: str) -> StatusReport:
    """Parse `git status --porcelain=v1` output."""
    entries = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        code = line[:2].strip() or line[:2]
        path = line[3:]
        if " -> " in path:
            # Renames report "old -> new"; the new path is what exists now
            path = path.split(" -> ", 1)[1]
        entries.append(StatusEntry(code=code, path=path.strip('"')))
    return StatusReport(entries=entries)
