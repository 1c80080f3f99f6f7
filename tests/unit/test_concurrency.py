"""Concurrent use of the lifecycle core from several threads."""

import threading
from pathlib import Path

from agent_worktrees.core.records import WorktreeState
from agent_worktrees.workspace.bootstrap import build_components
from agent_worktrees.workspace.memory_gateway import InMemoryGateway


def _run_all(targets):
    errors = []

    def wrap(fn):
        def run():
            try:
                fn()
            except Exception as e:  # collected and asserted on below
                errors.append(e)
        return run

    threads = [threading.Thread(target=wrap(fn)) for fn in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return errors


class TestConcurrentSpawns:
    def test_parallel_spawns_get_distinct_worktrees(self, make_settings):
        gateway = InMemoryGateway(latency=0.01)
        core = build_components(make_settings(), gateway=gateway)
        agents = [f"agent-{i}" for i in range(8)]

        errors = _run_all([lambda a=a: core.manager.spawn(a) for a in agents])

        assert errors == []
        records = core.registry.records()
        assert sorted(r.agent_id for r in records) == agents
        assert len({r.path for r in records}) == len(agents)
        assert len({r.branch for r in records}) == len(agents)
        assert all(r.state == WorktreeState.ACTIVE for r in records)
        assert core.registry.corrupt_agents() == {}

    def test_same_agent_spawned_concurrently_creates_once(self, make_settings):
        gateway = InMemoryGateway(latency=0.01)
        core = build_components(make_settings(), gateway=gateway)

        errors = _run_all([lambda: core.manager.spawn("agent-1") for _ in range(5)])

        assert errors == []
        assert gateway.call_count("create_worktree") == 1

    def test_separate_component_sets_share_the_lock(self, make_settings):
        """Two cores over one state dir behave like two processes."""
        gateway = InMemoryGateway(latency=0.01)
        first = build_components(make_settings(), gateway=gateway)
        second = build_components(make_settings(), gateway=gateway)

        errors = _run_all([
            lambda: first.manager.spawn("a"),
            lambda: second.manager.spawn("b"),
            lambda: first.reconciler.reconcile(),
            lambda: second.manager.spawn("c"),
        ])

        assert errors == []
        assert sorted(r.agent_id for r in first.registry.records()) == ["a", "b", "c"]


class TestLockFreeOperations:
    def test_syncs_on_different_agents_in_parallel(self, make_settings):
        gateway = InMemoryGateway()
        core = build_components(make_settings(), gateway=gateway)
        agents = [f"agent-{i}" for i in range(4)]
        for agent_id in agents:
            handle = core.manager.spawn(agent_id)
            gateway.write_file(Path(handle.path), f"{agent_id}.txt")

        errors = _run_all([lambda a=a: core.committer.sync(a, f"work of {a}") for a in agents])

        assert errors == []
        for agent_id in agents:
            record = core.registry.get(agent_id)
            assert record.state == WorktreeState.ACTIVE
            assert record.head_sha == gateway.head_sha(Path(record.path))

    def test_status_while_spawning_others(self, make_settings):
        gateway = InMemoryGateway(latency=0.005)
        core = build_components(make_settings(), gateway=gateway)
        core.manager.spawn("watched")

        errors = _run_all(
            [lambda a=a: core.manager.spawn(a) for a in ("x1", "x2", "x3")]
            + [lambda: core.inspector.status("watched") for _ in range(5)]
        )

        assert errors == []
        assert len(core.registry.records()) == 4
