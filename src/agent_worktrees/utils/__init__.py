"""Shared utility functions for agent worktrees."""

from .atomic_io import atomic_write_json, atomic_write_model
from .error_handling import log_and_ignore, ErrorContext
from .rich_logging import OperationLogger, WorktreeLogFormatter, operation_logger, setup_logging
from .subprocess_utils import (
    SubprocessError,
    run_command,
    run_git_command,
    check_command_exists,
)
from .validators import is_valid_identifier, validate_branch_name, validate_identifier, validate_ref

__all__ = [
    # Atomic I/O
    "atomic_write_json",
    "atomic_write_model",
    # Error handling
    "log_and_ignore",
    "ErrorContext",
    # Logging
    "OperationLogger",
    "WorktreeLogFormatter",
    "operation_logger",
    "setup_logging",
    # Subprocess utilities
    "SubprocessError",
    "run_command",
    "run_git_command",
    "check_command_exists",
    # Validators
    "is_valid_identifier",
    "validate_branch_name",
    "validate_identifier",
    "validate_ref",
]
