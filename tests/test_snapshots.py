"""Tests for named snapshots: storage, export, restore and the automatic timer."""

import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from tabforest.config import load_config
from tabforest.core.snapshots import AutoSnapshotter, SnapshotManager, snapshot_from_json
from tabforest.core.tree_store import default_view_id
from tabforest.engine import TabTreeEngine
from tabforest.storage.memory import MemoryStore
from tabforest.types import TabCreated, TreeError

EMPTY = {"version": 1, "windows": []}
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager():
    return SnapshotManager(MemoryStore())


@pytest.fixture
def engine(config, host):
    e = TabTreeEngine(config=config, host=host)
    yield e
    e.close()


class TestSnapshotManager:
    def test_create_and_get(self, manager):
        snapshot = manager.create("Before cleanup", EMPTY, created_at=T0)
        assert snapshot.id.startswith("snapshot-")
        loaded = manager.get(snapshot.id)
        assert loaded == snapshot
        assert loaded.created_at == T0

    def test_list_sorted_oldest_first(self, manager):
        later = manager.create("later", EMPTY, created_at=T0 + timedelta(minutes=5))
        earlier = manager.create("earlier", EMPTY, created_at=T0)
        assert [s.id for s in manager.list_snapshots()] == [earlier.id, later.id]

    def test_live_state_key_is_not_a_snapshot(self, manager):
        manager.store.set("tree_state", EMPTY)
        assert manager.list_snapshots() == []
        assert manager.get("tree_state") is None
        assert manager.delete("tree_state") is False
        assert manager.store.get("tree_state") == EMPTY

    def test_unreadable_snapshot_skipped(self, manager, caplog):
        manager.store.set("snapshot-1-broken", {"name": "x"})
        good = manager.create("good", EMPTY)
        assert [s.id for s in manager.list_snapshots()] == [good.id]
        assert "Skipping unreadable snapshot" in caplog.text

    def test_delete(self, manager):
        snapshot = manager.create("x", EMPTY)
        assert manager.delete(snapshot.id) is True
        assert manager.get(snapshot.id) is None
        assert manager.delete(snapshot.id) is False

    def test_prune_keeps_newest_auto_and_all_named(self, manager):
        named = manager.create("keep me", EMPTY, created_at=T0)
        autos = [
            manager.create(f"auto {i}", EMPTY, is_auto_save=True, created_at=T0 + timedelta(minutes=i))
            for i in range(4)
        ]
        pruned = manager.prune_auto(2)
        assert pruned == [autos[0].id, autos[1].id]
        remaining = [s.id for s in manager.list_snapshots()]
        assert remaining == [named.id, autos[2].id, autos[3].id]

    def test_export_json(self, manager):
        snapshot = manager.create("x", EMPTY, created_at=T0)
        raw = json.loads(manager.export_json(snapshot.id))
        assert raw["name"] == "x"
        assert raw["data"] == EMPTY
        assert snapshot_from_json(manager.export_json(snapshot.id)) == snapshot

    def test_export_unknown(self, manager):
        with pytest.raises(KeyError):
            manager.export_json("snapshot-0-missing")

    @pytest.mark.parametrize("text", [
        "not json",
        "[]",
        '{"name": "x"}',
        '{"name": "x", "data": {"windows": "nope"}}',
        '{"name": "x", "data": {"windows": []}, "created_at": "yesterday"}',
    ])
    def test_malformed_json_rejected(self, text):
        with pytest.raises(ValueError):
            snapshot_from_json(text)


class TestAutoSnapshotter:
    def test_runs_until_stopped(self):
        calls = []
        auto = AutoSnapshotter(lambda: calls.append(1), interval=0.02)
        auto.start()
        deadline = time.monotonic() + 5
        while len(calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        auto.stop()
        assert len(calls) >= 2
        assert not auto.running

        settled = len(calls)
        time.sleep(0.1)
        assert len(calls) == settled

    def test_failure_logged_and_retried(self, caplog):
        calls = []

        def take():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("disk full")

        auto = AutoSnapshotter(take, interval=0.02)
        auto.start()
        deadline = time.monotonic() + 5
        while auto.runs < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        auto.stop()
        assert auto.failures == 1
        assert auto.runs >= 1
        assert "Automatic snapshot failed" in caplog.text


class TestEngineSnapshots:
    def _populate(self, engine):
        engine.dispatch_many([
            TabCreated(tab_id=1, window_id=1, url="https://a.example", title="Alpha"),
            TabCreated(tab_id=2, window_id=1, url="https://b.example", opener_tab_id=1, title="Beta"),
            TabCreated(tab_id=3, window_id=1, url="https://c.example", title="Gamma"),
        ])
        group = engine.request_group(
            [engine.get_node_by_tab_id(3).id], name="Reading", color="#00ff00",
        )
        engine.request_toggle_expand(engine.get_node_by_tab_id(1).id)
        return group

    def test_create_and_list(self, engine):
        self._populate(engine)
        snapshot = engine.create_snapshot("Session")
        assert [s.name for s in engine.list_snapshots()] == ["Session"]
        assert len(snapshot.data["windows"]) == 1

    def test_default_name(self, engine):
        snapshot = engine.create_snapshot()
        assert snapshot.name.startswith("Snapshot ")
        assert snapshot.is_auto_save is False

    def test_auto_snapshots_are_pruned(self, host):
        config = load_config(config_dict={
            "storage": {"backend": "memory"},
            "snapshots": {"max_auto": 2},
        })
        with TabTreeEngine(config=config, host=host) as engine:
            engine.create_snapshot("named")
            for _ in range(4):
                engine.create_snapshot(is_auto_save=True)
            snapshots = engine.list_snapshots()
            assert sum(1 for s in snapshots if s.is_auto_save) == 2
            assert [s.name for s in snapshots if not s.is_auto_save] == ["named"]

    def test_snapshots_survive_reset(self, engine):
        self._populate(engine)
        snapshot = engine.create_snapshot("kept")
        engine.reset()
        assert engine.tree.state.nodes == {}
        assert [s.id for s in engine.list_snapshots()] == [snapshot.id]

    def test_restore_reopens_tabs_in_new_window(self, engine, host):
        self._populate(engine)
        snapshot = engine.create_snapshot("Session")

        window_ids = engine.restore_snapshot(snapshot.id)
        assert window_ids == [500]
        assert [url for _, window_id, url in host.created_tabs if window_id == 500] == [
            "https://a.example", "https://b.example", "https://c.example",
        ]

        view_id = default_view_id(500)
        rendered = engine.render(view_id, show_hidden=True)
        assert "[Reading]" in rendered
        roots = [engine.get_node(n) for n in engine.tree.roots_of(view_id)]
        assert [n.title for n in roots] == ["Alpha", ""]
        assert roots[0].is_expanded is False
        assert roots[1].group_info.name == "Reading"
        assert roots[1].group_info.color == "#00ff00"
        assert [engine.get_node(c).title for c in roots[0].children] == ["Beta"]
        assert [engine.get_node(c).title for c in roots[1].children] == ["Gamma"]
        assert engine.check_invariants() == []

        # The original window is untouched.
        assert len(engine.tree.roots_of(default_view_id(1))) == 2

    def test_restored_tabs_skip_their_creation_signal(self, engine, host):
        self._populate(engine)
        snapshot = engine.create_snapshot()
        engine.restore_snapshot(snapshot.id)
        nodes_before = len(engine.tree.state.nodes)
        engine.dispatch_many([
            TabCreated(tab_id=tab_id, window_id=window_id, url=url)
            for tab_id, window_id, url in host.created_tabs
        ])
        assert len(engine.tree.state.nodes) == nodes_before
        assert engine.dropped_events == 0

    def test_restore_extra_views(self, engine):
        engine.dispatch_many([TabCreated(tab_id=1, window_id=1, url="https://a.example")])
        work = engine.create_view(1, "Work", color="#ff0000")
        engine.switch_view(1, work.id)
        engine.dispatch_many([TabCreated(tab_id=2, window_id=1, url="https://w.example")])
        snapshot = engine.create_snapshot()

        (window_id,) = engine.restore_snapshot(snapshot.id)
        window = engine.tree.get_window(window_id)
        assert len(window.view_ids) == 2
        restored_work = engine.tree.get_view(window.view_ids[1])
        assert restored_work.name == "Work"
        assert window.active_view_id == restored_work.id
        assert [engine.get_node(n).url for n in restored_work.root_nodes] == ["https://w.example"]

    def test_restore_from_exported_json(self, config, host):
        store = MemoryStore()
        with TabTreeEngine(config=config, store=store, host=host) as source:
            self._populate(source)
            text = source.export_snapshot(source.create_snapshot("Exported").id)

        with TabTreeEngine(config=config, store=MemoryStore(), host=host) as target:
            window_ids = target.restore_snapshot_json(text)
            assert len(window_ids) == 1
            assert len(target.tree.state.nodes) == 4
            assert target.list_snapshots() == []

    def test_restore_unknown_snapshot(self, engine):
        with pytest.raises(KeyError):
            engine.restore_snapshot("snapshot-0-missing")

    def test_restore_requires_host(self, config):
        with TabTreeEngine(config=config) as engine:
            snapshot = engine.create_snapshot()
            with pytest.raises(TreeError):
                engine.restore_snapshot(snapshot.id)

    def test_auto_snapshots_from_config(self, host):
        config = load_config(config_dict={
            "storage": {"backend": "memory"},
            "snapshots": {"auto_interval_minutes": 0.001},
        })
        with TabTreeEngine(config=config, host=host) as engine:
            deadline = time.monotonic() + 5
            while not engine.list_snapshots() and time.monotonic() < deadline:
                time.sleep(0.01)
            snapshots = engine.list_snapshots()
            assert snapshots
            assert all(s.is_auto_save for s in snapshots)

    def test_auto_snapshots_disabled_by_zero(self, engine):
        engine.start_auto_snapshots(0)
        time.sleep(0.05)
        assert engine.list_snapshots() == []
