"""Translate lifecycle errors to user-friendly messages and CLI exit codes."""

import re
from dataclasses import dataclass
from typing import List

from rich.markup import escape

from .taxonomy import DirtyWorktreeRefusal, WorktreeTimeout

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DIRTY_REFUSAL = 2
EXIT_TIMEOUT = 3


@dataclass
class UserFriendlyError:
    """User-friendly error representation."""
    original_error: Exception
    title: str
    explanation: str
    actions: List[str]
    exit_code: int = EXIT_FAILURE


class ErrorTranslator:
    """Translate technical errors to user-friendly messages."""

    ERROR_PATTERNS = {
        r"DirtyWorktreeRefusal": {
            "title": "Worktree has uncommitted changes",
            "explanation": "The worktree was not removed because it holds work that would be lost.",
            "actions": [
                "Commit the work: agent-wt sync <agent_id> <message>",
                "Or discard it: agent-wt nuke <agent_id> --force",
            ],
        },
        r"PathCollision|BranchCollision": {
            "title": "Worktree location already taken",
            "explanation": "The path or branch derived from this agent id is held by another worktree. It is never renamed automatically.",
            "actions": [
                "Inspect existing worktrees: agent-wt list",
                "Adopt or remove stray worktrees: agent-wt reconcile",
            ],
        },
        r"OrphanDetected": {
            "title": "Worktree is orphaned",
            "explanation": "Registry and repository disagree about this worktree. Only reconciliation may resolve it.",
            "actions": [
                "Run: agent-wt reconcile",
                "Set reconciler.orphan_policy to 'adopt' or 'remove' to resolve automatically",
            ],
        },
        r"OperationInProgress": {
            "title": "Another operation is still pending",
            "explanation": "An earlier spawn, nuke or sync did not finish. The record keeps its in-progress state until reconciliation.",
            "actions": [
                "Run: agent-wt reconcile",
                "Retry the operation afterwards",
            ],
        },
        r"RegistryCorruption": {
            "title": "Worktree registry is corrupt",
            "explanation": "Two records claim the same path or branch. Structural operations on the affected agents are refused until the registry is repaired by hand.",
            "actions": [
                "Inspect the registry file (.worktree-registry.json under the state directory)",
                "Remove the duplicate record, then run: agent-wt reconcile",
            ],
        },
        r"InvalidRequest": {
            "title": "Invalid request",
            "explanation": "The agent id, base ref or commit message was rejected before anything was changed.",
            "actions": [
                "Agent ids may contain letters, digits, - and _ (not leading -)",
                "Commit messages must not be empty",
            ],
        },
        r"WorktreeNotFound": {
            "title": "No worktree for this agent",
            "explanation": "There is no active worktree registered for the agent.",
            "actions": [
                "Create one: agent-wt spawn <agent_id>",
                "List worktrees: agent-wt list",
            ],
        },
        r"^Timeout|WorktreeTimeout": {
            "title": "Operation timed out",
            "explanation": "A git command or the structural lock exceeded its time limit. Any in-progress record is left for the reconciler.",
            "actions": [
                "Run: agent-wt reconcile",
                "Raise gateway.command_timeout or lock.acquire_timeout in the config",
            ],
        },
        r"GatewayFailure\(transient\)": {
            "title": "Repository temporarily busy",
            "explanation": "git reported lock contention or a similar transient condition.",
            "actions": [
                "Retry in a moment",
                "Run: agent-wt reconcile",
            ],
        },
        r"GatewayFailure\(fatal\)": {
            "title": "Repository operation failed",
            "explanation": "git rejected the operation (for example an invalid base ref).",
            "actions": [
                "Check the base ref exists: git rev-parse --verify <ref>",
                "Check the repository path in the config",
            ],
        },
        r"config.*not.*found|no such file.*config": {
            "title": "Configuration missing",
            "explanation": "The configuration file was not found.",
            "actions": [
                "Create agent-worktrees.yaml or pass --config",
            ],
        },
    }

    def translate(self, error: Exception) -> UserFriendlyError:
        """Convert exception to user-friendly format."""
        error_str = str(error)
        error_type = type(error).__name__
        full_error = f"{error_type}: {error_str}"

        for pattern, translation in self.ERROR_PATTERNS.items():
            if re.search(pattern, error_str) or re.search(pattern, full_error):
                return UserFriendlyError(
                    original_error=error,
                    title=translation["title"],
                    explanation=translation["explanation"],
                    actions=translation["actions"],
                    exit_code=self.exit_code_for(error),
                )

        # Fallback for unknown errors
        return UserFriendlyError(
            original_error=error,
            title="Unexpected error",
            explanation=error_str,
            actions=[
                "Re-run with --log-level DEBUG",
                "Check the log file under the state directory",
            ],
            exit_code=self.exit_code_for(error),
        )

    @staticmethod
    def exit_code_for(error: Exception) -> int:
        """Exit code contract: 2 dirty refusal, 3 timeout, 1 everything else."""
        if isinstance(error, DirtyWorktreeRefusal):
            return EXIT_DIRTY_REFUSAL
        if isinstance(error, WorktreeTimeout):
            return EXIT_TIMEOUT
        return EXIT_FAILURE

    def format_for_cli(self, friendly_error: UserFriendlyError) -> str:
        """Format error for CLI display."""
        output = f"[bold red]{friendly_error.title}[/]\n\n"
        output += f"{escape(friendly_error.explanation)}\n\n"

        output += "[bold]How to fix:[/]\n"
        for i, action in enumerate(friendly_error.actions, 1):
            output += f"  {i}. {action}\n"

        # The raw message names agent, operation and kind
        output += f"\n[dim]{escape(str(friendly_error.original_error))}[/]"

        return output
