"""Tests for the durable worktree registry."""

import json

import pytest

from agent_worktrees.core.records import WorktreeRecord, WorktreeState
from agent_worktrees.errors import InvalidStateTransition, RegistryCorruption, WorktreeNotFound
from agent_worktrees.workspace.registry import REGISTRY_FILENAME, WorktreeRegistry


def _record(agent_id, state=WorktreeState.ACTIVE, path=None, branch=None):
    return WorktreeRecord(
        agent_id=agent_id,
        path=path or f"/wt/repo/{agent_id}",
        branch=branch or f"agent/{agent_id}",
        state=state,
    )


@pytest.fixture
def reg(tmp_path):
    return WorktreeRegistry(tmp_path / "state")


class TestPersistence:
    def test_empty_registry(self, reg):
        assert reg.records() == []
        assert reg.get("a1") is None

    def test_records_survive_new_instance(self, reg, tmp_path):
        reg.put(_record("a1"))
        reg.put(_record("a2", WorktreeState.SPAWNING))

        reopened = WorktreeRegistry(tmp_path / "state")

        assert [r.agent_id for r in reopened.records()] == ["a1", "a2"]
        assert reopened.get("a2").state == WorktreeState.SPAWNING

    def test_file_is_keyed_by_agent_id(self, reg):
        reg.put(_record("a1"))
        data = json.loads(reg.path.read_text())
        assert data["version"] == 1
        assert data["records"]["a1"]["branch"] == "agent/a1"
        assert data["records"]["a1"]["state"] == "active"

    def test_no_temp_files_left_behind(self, reg):
        reg.put(_record("a1"))
        leftovers = [p.name for p in reg.state_dir.iterdir() if ".tmp." in p.name]
        assert leftovers == []

    def test_sees_writes_from_other_instances(self, reg, tmp_path):
        other = WorktreeRegistry(tmp_path / "state")
        other.put(_record("a1"))
        assert reg.get("a1") is not None

    def test_writes_do_not_clobber_other_instances(self, reg, tmp_path):
        other = WorktreeRegistry(tmp_path / "state")
        reg.put(_record("a1"))
        other.put(_record("a2"))
        reg.transition("a1", WorktreeState.DIRTY, "test")

        assert {r.agent_id for r in WorktreeRegistry(tmp_path / "state").records()} == {"a1", "a2"}

    def test_unreadable_file_is_reported(self, tmp_path):
        state_dir = tmp_path / "state"
        state_dir.mkdir()
        (state_dir / REGISTRY_FILENAME).write_text("{not json")

        with pytest.raises(RegistryCorruption, match="unreadable registry"):
            WorktreeRegistry(state_dir)

    def test_delete(self, reg):
        reg.put(_record("a1"))
        assert reg.delete("a1") is True
        assert reg.delete("a1") is False
        assert reg.get("a1") is None

    def test_returned_records_are_copies(self, reg):
        reg.put(_record("a1"))
        record = reg.get("a1")
        record.head_sha = "changed"
        assert reg.get("a1").head_sha is None


class TestTransition:
    def test_valid_transition_updates_fields(self, reg):
        reg.put(_record("a1", WorktreeState.SPAWNING))
        before = reg.get("a1").last_transition_at

        updated = reg.transition("a1", WorktreeState.ACTIVE, "spawn", head_sha="abc")

        assert updated.state == WorktreeState.ACTIVE
        assert updated.head_sha == "abc"
        assert updated.last_transition_at >= before
        assert reg.get("a1").state == WorktreeState.ACTIVE

    def test_invalid_transition_raises(self, reg):
        reg.put(_record("a1", WorktreeState.REMOVING))
        with pytest.raises(InvalidStateTransition) as exc_info:
            reg.transition("a1", WorktreeState.ACTIVE, "spawn")
        assert exc_info.value.from_state == "removing"
        assert reg.get("a1").state == WorktreeState.REMOVING

    def test_orphaned_requires_reconciler(self, reg):
        reg.put(_record("a1", WorktreeState.ORPHANED))
        with pytest.raises(InvalidStateTransition):
            reg.transition("a1", WorktreeState.ACTIVE, "spawn")
        reg.transition("a1", WorktreeState.ACTIVE, "reconcile", by_reconciler=True)
        assert reg.get("a1").state == WorktreeState.ACTIVE

    def test_only_from_skips_when_state_moved(self, reg):
        reg.put(_record("a1", WorktreeState.REMOVING))
        result = reg.transition(
            "a1", WorktreeState.DIRTY, "status", only_from={WorktreeState.ACTIVE},
        )
        assert result is None
        assert reg.get("a1").state == WorktreeState.REMOVING

    def test_missing_record(self, reg):
        with pytest.raises(WorktreeNotFound):
            reg.transition("ghost", WorktreeState.ACTIVE, "spawn")

    def test_state_change_resets_attempts(self, reg):
        reg.put(_record("a1", WorktreeState.REMOVING))
        reg.update("a1", "reconcile", reconcile_attempts=2)
        reg.transition("a1", WorktreeState.ORPHANED, "reconcile")
        assert reg.get("a1").reconcile_attempts == 0

    def test_explicit_attempts_win(self, reg):
        reg.put(_record("a1", WorktreeState.REMOVING))
        reg.transition("a1", WorktreeState.ORPHANED, "reconcile", reconcile_attempts=1)
        assert reg.get("a1").reconcile_attempts == 1


class TestIntegrity:
    def test_clean_registry(self, reg):
        reg.put(_record("a1"))
        reg.put(_record("a2"))
        assert reg.corrupt_agents() == {}

    def test_shared_path_flags_both(self, reg):
        reg.put(_record("a1", path="/wt/same"))
        reg.put(_record("a2", path="/wt/same"))
        problems = reg.corrupt_agents()
        assert set(problems) == {"a1", "a2"}
        assert "/wt/same" in problems["a1"]

    def test_shared_branch_flags_both(self, reg):
        reg.put(_record("a1", branch="agent/shared"))
        reg.put(_record("a2", branch="agent/shared"))
        assert set(reg.corrupt_agents()) == {"a1", "a2"}

    def test_removed_records_do_not_count(self, reg):
        reg.put(_record("a1", WorktreeState.REMOVED, path="/wt/same"))
        reg.put(_record("a2", path="/wt/same"))
        assert reg.corrupt_agents() == {}

    def test_key_mismatch(self, reg):
        reg.put(_record("a1"))
        data = json.loads(reg.path.read_text())
        data["records"]["imposter"] = data["records"].pop("a1")
        reg.path.write_text(json.dumps(data))
        reg.reload()
        assert "imposter" in reg.corrupt_agents()

    def test_find_by_path_and_branch(self, reg):
        reg.put(_record("a1"))
        assert reg.find_by_path("/wt/repo/a1").agent_id == "a1"
        assert reg.find_by_path("/wt/repo/a1", exclude="a1") is None
        assert reg.find_by_branch("agent/a1").agent_id == "a1"
        assert reg.find_by_branch("agent/zz") is None
