"""Rich logging with structured agent/operation context and better formatting."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "agent_worktrees"


class WorktreeLogFormatter(logging.Formatter):
    """Custom formatter that renders agent and operation context."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with context."""
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        operation_context = ""
        if getattr(record, "operation", None):
            operation_context = f"[{record.operation}] "

        agent_context = ""
        if getattr(record, "agent_id", None):
            agent_context = f"[{record.agent_id}] "

        if self.use_colors:
            level_color = self.LEVEL_COLORS.get(record.levelname, "")
            reset = "\033[0m"
        else:
            level_color = ""
            reset = ""

        message = (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"{operation_context}{agent_context}{record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class OperationLogger(logging.LoggerAdapter):
    """Logger adapter that attaches agent/operation context to every record."""

    def __init__(
        self,
        logger: logging.Logger,
        agent_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.agent_id = agent_id
        self.operation = operation

    def process(self, msg, kwargs):
        """Add context to log record."""
        extra = dict(kwargs.get("extra") or {})
        if self.agent_id:
            extra.setdefault("agent_id", self.agent_id)
        if self.operation:
            extra.setdefault("operation", self.operation)
        kwargs["extra"] = extra
        return msg, kwargs


def operation_logger(
    logger: logging.Logger,
    operation: str,
    agent_id: Optional[str] = None,
) -> OperationLogger:
    """Shorthand used by the lifecycle components for per-call context."""
    return OperationLogger(logger, agent_id=agent_id, operation=operation)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    use_colors: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Optional directory for a plain-text log file
        use_colors: Force colors on/off (defaults to whether stderr is a TTY)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    if use_colors is None:
        use_colors = hasattr(sys.stderr, "isatty") and sys.stderr.isatty()

    # stderr keeps stdout clean for command output (paths, shas)
    console_handler = _StderrHandler()
    console_handler.setFormatter(WorktreeLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        # Use plain formatter for files (no ANSI codes)
        file_handler = logging.FileHandler(log_dir / "agent-worktrees.log")
        file_handler.setFormatter(WorktreeLogFormatter(use_colors=False))
        logger.addHandler(file_handler)

    return logger


class _StderrHandler(logging.StreamHandler):
    """Stream handler that always writes to the current sys.stderr.

    Resolving the stream per record keeps the handler valid when stderr is
    swapped after setup (click's CliRunner, pytest capture).
    """

    def __init__(self):
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass
