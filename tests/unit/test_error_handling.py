"""Tests for error_handling utilities."""

import logging
import pytest

from agent_worktrees.utils.error_handling import ErrorContext, log_and_ignore
from agent_worktrees.workspace.gateway import GatewayError


def test_log_and_ignore_does_not_raise(caplog):
    """Test that log_and_ignore does not re-raise."""
    with caplog.at_level(logging.WARNING):
        try:
            raise GatewayError("index.lock exists")
        except GatewayError as e:
            log_and_ignore(e, "Could not read head")

    assert "Could not read head: index.lock exists" in caplog.text


def test_log_and_ignore_uses_given_logger_and_level(caplog):
    log = logging.getLogger("agent_worktrees.test")
    with caplog.at_level(logging.DEBUG, logger="agent_worktrees.test"):
        log_and_ignore(ValueError("minor"), "Skipped", logger_instance=log, level=logging.DEBUG)

    record = caplog.records[-1]
    assert record.name == "agent_worktrees.test"
    assert record.levelno == logging.DEBUG


def test_error_context_raises_on_error():
    """Test ErrorContext raises when raise_on_error=True."""
    with pytest.raises(ValueError):
        with ErrorContext("test operation", raise_on_error=True):
            raise ValueError("test error")


def test_error_context_suppresses_error(caplog):
    """Test ErrorContext suppresses error when raise_on_error=False."""
    with caplog.at_level(logging.ERROR):
        with ErrorContext("removing partial worktree", raise_on_error=False) as ctx:
            raise GatewayError("not a working tree")

    assert isinstance(ctx.error, GatewayError)
    assert "Error during removing partial worktree: not a working tree" in caplog.text


def test_error_context_only_suppresses_listed_types():
    with pytest.raises(KeyError):
        with ErrorContext("cleanup", raise_on_error=False, suppress=(GatewayError,)):
            raise KeyError("unexpected")


def test_error_context_no_error():
    with ErrorContext("cleanup", raise_on_error=False) as ctx:
        pass

    assert ctx.error is None
