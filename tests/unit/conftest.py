"""Shared fixtures for unit tests."""

import logging
import os

import pytest

from agent_worktrees.core.config import WorktreeSettings, clear_config_cache
from agent_worktrees.utils.rich_logging import PACKAGE_LOGGER
from agent_worktrees.workspace.bootstrap import build_components
from agent_worktrees.workspace.memory_gateway import InMemoryGateway


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep AGENT_WT_* variables and stray .env files out of the tests."""
    for key in list(os.environ):
        if key.startswith("AGENT_WT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    clear_config_cache()
    yield
    clear_config_cache()
    # CLI invocations configure the package logger; undo that for later tests
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in package_logger.handlers[:]:
        handler.close()
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings rooted in tmp_path."""
    def _make(**overrides):
        values = {
            "repository": tmp_path / "repo",
            "worktree_root": tmp_path / "worktrees",
            "lock": {"acquire_timeout": 5.0, "poll_interval": 0.01},
        }
        values.update(overrides)
        return WorktreeSettings(**values)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def components(settings, gateway):
    return build_components(settings, gateway=gateway)


@pytest.fixture
def manager(components):
    return components.manager


@pytest.fixture
def registry(components):
    return components.registry
