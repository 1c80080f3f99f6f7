"""Tests for subprocess_utils."""

import subprocess
from pathlib import Path
import pytest

from agent_worktrees.utils.subprocess_utils import (
    SubprocessError,
    run_command,
    run_git_command,
    check_command_exists,
)

requires_git = pytest.mark.skipif(not check_command_exists("git"), reason="git not installed")


def test_subprocess_error_includes_context():
    """Test SubprocessError includes all context."""
    error = SubprocessError(
        cmd="git worktree add",
        returncode=128,
        stderr="fatal: invalid reference",
        stdout="",
        cwd=Path("/tmp"),
    )

    assert error.cmd == "git worktree add"
    assert error.returncode == 128
    assert error.stderr == "fatal: invalid reference"
    assert "/tmp" in str(error)
    assert "exit code 128" in str(error)


def test_run_command_success():
    """Test run_command succeeds for valid command."""
    result = run_command(["echo", "hello"], check=True)
    assert result.returncode == 0
    assert "hello" in result.stdout


def test_run_command_failure_raises():
    """Test run_command raises SubprocessError on failure."""
    with pytest.raises(SubprocessError) as exc_info:
        run_command(["false"], check=True)

    assert exc_info.value.returncode != 0


def test_run_command_failure_no_check():
    """Test run_command does not raise when check=False."""
    result = run_command(["false"], check=False)
    assert result.returncode != 0


def test_run_command_timeout():
    """Timeouts propagate as TimeoutExpired so callers can tell them apart."""
    with pytest.raises(subprocess.TimeoutExpired):
        run_command(["sleep", "10"], check=True, timeout=0.2)


def test_run_command_with_cwd(tmp_path):
    result = run_command(["pwd"], cwd=tmp_path)
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()


@requires_git
def test_run_git_command_success(tmp_path):
    """Test run_git_command succeeds in git repo."""
    run_git_command(["init"], cwd=tmp_path)

    result = run_git_command(["rev-parse", "--is-inside-work-tree"], cwd=tmp_path)
    assert result.stdout.strip() == "true"


@requires_git
def test_run_git_command_failure(tmp_path):
    with pytest.raises(SubprocessError) as exc_info:
        run_git_command(["rev-parse", "HEAD"], cwd=tmp_path)

    assert exc_info.value.cmd.startswith("git rev-parse")


def test_check_command_exists_true():
    assert check_command_exists("sh") is True


def test_check_command_exists_false():
    assert check_command_exists("definitely-not-a-real-command-xyz") is False
