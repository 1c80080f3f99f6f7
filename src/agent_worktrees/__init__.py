"""Agent Worktrees - per-agent git worktree lifecycle management."""

__version__ = "0.1.0"
