"""Tests for configuration loading."""

import os

import pytest
from pydantic import ValidationError

from agent_worktrees.core.config import (
    GatewayConfig,
    OrphanPolicy,
    ReconcilerConfig,
    WorktreeSettings,
    load_config,
)


class TestDefaults:
    def test_default_values(self):
        settings = WorktreeSettings()
        assert settings.branch_prefix == "agent/"
        assert settings.default_base_ref == "HEAD"
        assert settings.gateway.kind == "git"
        assert settings.gateway.command_timeout == 60.0
        assert settings.lock.acquire_timeout == 300.0
        assert settings.reconciler.orphan_policy == OrphanPolicy.REPORT
        assert settings.reconciler.max_retries == 1
        assert settings.reconciler.run_on_startup is False

    def test_paths_are_expanded(self):
        settings = WorktreeSettings(worktree_root="~/wt")
        assert "~" not in str(settings.worktree_root)
        assert settings.worktree_root.is_absolute()

    def test_state_dir_defaults_to_repository_directory(self, tmp_path):
        settings = WorktreeSettings(repository=tmp_path / "repo", worktree_root=tmp_path / "wt")
        assert settings.resolved_state_dir == (tmp_path / "wt" / "repo").resolve()

    def test_repositories_sharing_a_root_get_separate_state(self, tmp_path):
        first = WorktreeSettings(repository=tmp_path / "repoA", worktree_root=tmp_path / "wt")
        second = WorktreeSettings(repository=tmp_path / "repoB", worktree_root=tmp_path / "wt")
        assert first.resolved_state_dir != second.resolved_state_dir

    def test_explicit_state_dir(self, tmp_path):
        settings = WorktreeSettings(worktree_root=tmp_path / "wt", state_dir=tmp_path / "state")
        assert settings.resolved_state_dir == (tmp_path / "state").resolve()


class TestValidation:
    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            GatewayConfig(command_timeout=0)

    def test_rejects_malformed_author(self):
        with pytest.raises(ValidationError):
            GatewayConfig(default_author="nobody")

    def test_rejects_zero_retries(self):
        with pytest.raises(ValidationError):
            ReconcilerConfig(max_retries=0)

    def test_rejects_bad_branch_prefix(self):
        with pytest.raises(ValidationError):
            WorktreeSettings(branch_prefix="bad prefix/")

    def test_rejects_option_like_base_ref(self):
        with pytest.raises(ValidationError):
            WorktreeSettings(default_base_ref="--force")

    def test_unknown_orphan_policy(self):
        with pytest.raises(ValidationError):
            ReconcilerConfig(orphan_policy="delete-everything")


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, tmp_path):
        settings = load_config(tmp_path / "absent.yaml")
        assert settings.branch_prefix == "agent/"

    def test_loads_yaml(self, tmp_path):
        config_file = tmp_path / "agent-worktrees.yaml"
        config_file.write_text(
            "repository: repo\n"
            "worktree_root: wt\n"
            "branch_prefix: bots/\n"
            "gateway:\n"
            "  kind: memory\n"
            "  command_timeout: 5\n"
            "reconciler:\n"
            "  orphan_policy: adopt\n"
        )

        settings = load_config(config_file)

        assert settings.branch_prefix == "bots/"
        assert settings.gateway.kind == "memory"
        assert settings.gateway.command_timeout == 5.0
        assert settings.reconciler.orphan_policy == OrphanPolicy.ADOPT
        # Relative paths resolve against the config file's directory
        assert settings.repository == (tmp_path / "repo").resolve()
        assert settings.worktree_root == (tmp_path / "wt").resolve()

    def test_expands_env_vars(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WT_TEST_AUTHOR", "Bot <bot@example.com>")
        config_file = tmp_path / "agent-worktrees.yaml"
        config_file.write_text("gateway:\n  default_author: ${WT_TEST_AUTHOR}\n")

        settings = load_config(config_file)

        assert settings.gateway.default_author == "Bot <bot@example.com>"

    def test_env_overrides_nested_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AGENT_WT_RECONCILER__MAX_RETRIES", "3")
        monkeypatch.setenv("AGENT_WT_BRANCH_PREFIX", "wt/")

        settings = load_config(tmp_path / "absent.yaml")

        assert settings.reconciler.max_retries == 3
        assert settings.branch_prefix == "wt/"

    def test_cache_reloads_after_change(self, tmp_path):
        config_file = tmp_path / "agent-worktrees.yaml"
        config_file.write_text("branch_prefix: one/\n")
        first = load_config(config_file)
        assert load_config(config_file) is first

        config_file.write_text("branch_prefix: two/\n")
        # Make sure the mtime differs even on coarse-grained filesystems
        stat = config_file.stat()
        os.utime(config_file, (stat.st_atime, stat.st_mtime + 5))

        assert load_config(config_file).branch_prefix == "two/"

    def test_empty_file_yields_defaults(self, tmp_path):
        config_file = tmp_path / "agent-worktrees.yaml"
        config_file.write_text("")
        assert load_config(config_file).default_base_ref == "HEAD"
