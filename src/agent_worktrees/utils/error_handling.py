"""Standardized error handling utilities."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


def log_and_ignore(
    error: Exception,
    message: str,
    *,
    logger_instance: Optional[logging.Logger] = None,
    level: int = logging.WARNING,
) -> None:
    """
    Log an error and ignore it (don't re-raise).

    Use for best-effort steps (partial-state cleanup, head refresh) that
    must not mask the primary outcome of an operation.

    Args:
        error: Exception to log
        message: Context message to log
        logger_instance: Logger to use (defaults to module logger)
        level: Log level (default: WARNING)
    """
    log = logger_instance or logger
    log.log(level, f"{message}: {error}")


class ErrorContext:
    """
    Context manager for handling errors with consistent logging.

    Usage:
        with ErrorContext("removing partial worktree", raise_on_error=False):
            gateway.remove_worktree(path)
    """

    def __init__(
        self,
        operation: str,
        *,
        raise_on_error: bool = True,
        suppress: tuple = (Exception,),
        logger_instance: Optional[logging.Logger] = None,
        log_level: int = logging.ERROR,
    ):
        """
        Initialize error context.

        Args:
            operation: Description of the operation
            raise_on_error: Whether to re-raise exceptions
            suppress: Exception types eligible for suppression when not raising
            logger_instance: Logger to use
            log_level: Log level for errors
        """
        self.operation = operation
        self.raise_on_error = raise_on_error
        self.suppress = suppress
        self.logger = logger_instance or logger
        self.log_level = log_level
        self.error: Optional[Exception] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            return False

        self.error = exc_val
        self.logger.log(
            self.log_level,
            f"Error during {self.operation}: {exc_val}",
        )

        if self.raise_on_error or not issubclass(exc_type, self.suppress):
            return False  # Re-raise exception
        return True  # Suppress exception

