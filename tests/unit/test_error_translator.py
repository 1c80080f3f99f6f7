"""Tests for ErrorTranslator: verifies user-friendly error messages and exit codes."""

import pytest

from agent_worktrees.errors import (
    BranchCollision,
    DirtyWorktreeRefusal,
    ErrorTranslator,
    GatewayFailure,
    InvalidRequest,
    OperationInProgress,
    OrphanDetected,
    PathCollision,
    RegistryCorruption,
    UserFriendlyError,
    WorktreeNotFound,
    WorktreeTimeout,
)
from agent_worktrees.errors.translator import (
    EXIT_DIRTY_REFUSAL,
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_TIMEOUT,
)


@pytest.fixture
def translator():
    return ErrorTranslator()


class TestTaxonomyMessages:
    def test_message_names_kind_operation_and_agent(self):
        error = OrphanDetected("agent-1", "spawn", "run reconcile")
        assert str(error) == "OrphanDetected: spawn failed for agent 'agent-1': run reconcile"

    def test_gateway_failure_flavor(self):
        assert str(GatewayFailure("a", "nuke", "busy", transient=True)).startswith("GatewayFailure(transient)")
        assert str(GatewayFailure("a", "nuke", "bad", transient=False)).startswith("GatewayFailure(fatal)")

    def test_timeout_kind(self):
        error = WorktreeTimeout("a", "sync", "slow", timeout=2.0)
        assert error.kind == "Timeout"
        assert error.timeout == 2.0

    def test_dirty_refusal_keeps_summary(self):
        error = DirtyWorktreeRefusal("a", "nuke", "1 uncommitted change(s): ?? x.py")
        assert error.summary == "1 uncommitted change(s): ?? x.py"
        assert "force" in str(error)


class TestTranslation:
    @pytest.mark.parametrize("error,title", [
        (DirtyWorktreeRefusal("a", "nuke", "1 uncommitted change(s): M a.py"), "Worktree has uncommitted changes"),
        (PathCollision("a", "spawn", "/wt/a", "agent 'b'"), "Worktree location already taken"),
        (BranchCollision("a", "spawn", "agent/a", "agent 'b'"), "Worktree location already taken"),
        (OrphanDetected("a", "nuke"), "Worktree is orphaned"),
        (OperationInProgress("a", "spawn", "spawning"), "Another operation is still pending"),
        (RegistryCorruption("a", "spawn", "path shared"), "Worktree registry is corrupt"),
        (WorktreeNotFound("a", "status"), "No worktree for this agent"),
        (InvalidRequest("a b", "spawn", "Invalid agent_id: a b"), "Invalid request"),
        (WorktreeTimeout("a", "spawn", "slow"), "Operation timed out"),
        (GatewayFailure("a", "spawn", "index.lock", transient=True), "Repository temporarily busy"),
        (GatewayFailure("a", "spawn", "invalid reference", transient=False), "Repository operation failed"),
    ])
    def test_titles(self, translator, error, title):
        result = translator.translate(error)
        assert isinstance(result, UserFriendlyError)
        assert result.title == title
        assert len(result.actions) > 0

    def test_unknown_error_falls_back(self, translator):
        result = translator.translate(ValueError("Invalid agent_id: a b"))
        assert result.title == "Unexpected error"
        assert "Invalid agent_id" in result.explanation
        assert result.exit_code == EXIT_FAILURE


class TestExitCodes:
    def test_contract(self):
        assert (EXIT_OK, EXIT_FAILURE, EXIT_DIRTY_REFUSAL, EXIT_TIMEOUT) == (0, 1, 2, 3)

    def test_dirty_refusal(self, translator):
        error = DirtyWorktreeRefusal("a", "nuke", "dirty")
        assert translator.translate(error).exit_code == EXIT_DIRTY_REFUSAL

    def test_timeout(self, translator):
        assert translator.translate(WorktreeTimeout("a", "nuke", "slow")).exit_code == EXIT_TIMEOUT

    @pytest.mark.parametrize("error", [
        GatewayFailure("a", "spawn", "bad", transient=False),
        GatewayFailure("a", "spawn", "busy", transient=True),
        OrphanDetected("a", "spawn"),
        PathCollision("a", "spawn", "/p", "b"),
        RuntimeError("boom"),
    ])
    def test_everything_else_is_generic_failure(self, translator, error):
        assert translator.translate(error).exit_code == EXIT_FAILURE


class TestFormatting:
    def test_cli_format_includes_actions_and_raw_message(self, translator):
        error = DirtyWorktreeRefusal("agent-1", "nuke", "1 uncommitted change(s): ?? [draft].md")
        output = translator.format_for_cli(translator.translate(error))

        assert "Worktree has uncommitted changes" in output
        assert "How to fix:" in output
        assert "agent-wt nuke <agent_id> --force" in output
        # Square brackets in file names must not be read as rich markup
        assert "\\[draft]" in output
