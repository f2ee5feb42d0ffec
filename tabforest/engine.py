"""TabTreeEngine: main orchestrator wiring all components together."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

from .config import load_config
from .core.command_queue import CommandQueue
from .core.mutations import TreeMutator
from .core.persistence import DebouncedSaver, TreePersistence
from .core.projection import document_order, flatten, render_tree
from .core.reconcile import ReconcilePlan, plan_reconciliation
from .core.snapshots import AutoSnapshotter, SnapshotManager, snapshot_from_json
from .core.store import KeyValueStore
from .core.tree_store import TreeStore
from .storage.filesystem import FilesystemStore
from .storage.helpers import state_from_dict, state_to_dict
from .storage.memory import MemoryStore
from .storage.sqlite import SQLiteStore
from .types import (
    ChildTabBehavior,
    DuplicateBackingTab,
    FlatEntry,
    HostTabs,
    Node,
    OpenTab,
    Snapshot,
    TabActivated,
    TabCreated,
    TabEvent,
    TabForestConfig,
    TabMoved,
    TabRemoved,
    TabUpdated,
    TreeError,
    TreeState,
    View,
    new_node_id,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TabTreeEngine:
    """Main orchestrator: host events in, structural commands, snapshots out.

    Usage:
        engine = TabTreeEngine(config_path="./tabforest.yaml", host=host)
        engine.reconcile(host_open_tabs)

        # Host signals, in arrival order (non-blocking)
        engine.dispatch(TabCreated(tab_id=7, window_id=1, opener_tab_id=3))

        # User commands (blocking, errors raise here)
        group = engine.request_group([node_a, node_b])

        engine.close()
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        config: TabForestConfig | None = None,
        store: KeyValueStore | None = None,
        host: HostTabs | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self.host = host
        self._queue = CommandQueue()
        self._tree = TreeStore(
            default_view_name=self.config.views.default_name,
            default_view_color=self.config.views.default_color,
        )
        self._mutator = TreeMutator(self._tree, self.config, host)
        self._handlers: dict[type, Callable[[TabEvent], None]] = {
            TabCreated: self._on_created,
            TabRemoved: self._on_removed,
            TabUpdated: self._on_updated,
            TabMoved: self._on_moved,
            TabActivated: self._on_activated,
        }
        self._dropped_events = 0

        self._init_store(store)
        self._init_persistence()
        self._snapshots = SnapshotManager(self._store)
        self._auto_snapshotter: AutoSnapshotter | None = None

        # Restore persisted state if available
        self._load_persisted_state()
        self.start_auto_snapshots(self.config.snapshots.auto_interval_minutes)

    def _init_store(self, store: KeyValueStore | None) -> None:
        """Initialize the storage backend."""
        if store is not None:
            self._store = store
        elif self.config.storage.backend == "sqlite":
            self._store = SQLiteStore(db_path=self.config.storage.sqlite_path)
        elif self.config.storage.backend == "memory":
            self._store = MemoryStore()
        else:
            self._store = FilesystemStore(root=self.config.storage.root)

    def _init_persistence(self) -> None:
        self._persistence = TreePersistence(self._store)
        self._saver = DebouncedSaver(
            self._persistence,
            capture=self.snapshot,
            delay=self.config.persistence.debounce_ms / 1000,
        )

    def _load_persisted_state(self) -> None:
        try:
            state = self._persistence.load()
        except Exception as e:
            logger.error("Failed to load tree state, starting empty: %s", e)
            return
        if state is None:
            return
        self._tree.state = state
        logger.info(
            "Restored tree state: %d windows, %d views, %d nodes",
            len(state.windows), len(state.views), len(state.nodes),
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def tree(self) -> TreeStore:
        """The live tree store. Read it through the engine's queue."""
        return self._tree

    @property
    def persistence(self) -> TreePersistence:
        return self._persistence

    @property
    def saver(self) -> DebouncedSaver:
        return self._saver

    @property
    def dropped_events(self) -> int:
        return self._dropped_events

    # ------------------------------------------------------------------
    # Event ingestion
    # ------------------------------------------------------------------

    def dispatch(self, event: TabEvent) -> Future:
        """Queue a host event. Events are applied strictly in dispatch order."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported event: {event!r}")
        return self._queue.submit(self._apply_event, handler, event)

    def dispatch_many(self, events: list[TabEvent]) -> None:
        """Dispatch events in order and wait for all of them."""
        futures = [self.dispatch(e) for e in events]
        for future in futures:
            future.result()

    def _apply_event(self, handler: Callable[[TabEvent], None], event: TabEvent) -> None:
        try:
            handler(event)
        except DuplicateBackingTab as e:
            self._dropped_events += 1
            logger.warning("Dropped %s: %s", type(event).__name__, e)
            return
        except Exception as e:
            logger.error("Failed to apply %s: %s", type(event).__name__, e)
            raise
        self._saver.schedule()

    def _on_created(self, event: TabCreated, sync_host: bool = True) -> None:
        node = self._mutator.attach(
            tab_id=event.tab_id,
            window_id=event.window_id,
            url=event.url,
            opener_tab_id=event.opener_tab_id,
            user_initiated=event.user_initiated,
            title=event.title,
            sync_host=sync_host,
            index=event.index,
            active=event.active,
        )
        if node is not None and event.index is not None:
            self._mutator.sync_order(event.tab_id)

    def _on_removed(self, event: TabRemoved) -> None:
        self._mutator.detach(event.tab_id)

    def _on_updated(self, event: TabUpdated) -> None:
        self._mutator.refresh_tab(event.tab_id, title=event.title, url=event.url)

    def _on_moved(self, event: TabMoved) -> None:
        node = self._tree.get_node_by_tab_id(event.tab_id)
        if node is not None and event.window_id is not None and event.window_id != node.window_id:
            self._move_across_windows(node, event.window_id, event.new_index)
            return
        window_id = event.window_id if event.window_id is not None else (node.window_id if node else None)
        if window_id is None:
            return
        self._mutator.record_tab_position(window_id, event.tab_id, event.new_index)
        self._mutator.sync_order(event.tab_id)

    def _move_across_windows(self, node: Node, window_id: int, index: int) -> None:
        """Re-attach a tab in another window.

        The node keeps its title, URL, unread flag and group_info. Its
        children stay behind and are promoted in the old window, whatever
        the configured child behavior.
        """
        logger.debug("Tab %s moved from window %s to %s", node.backing_tab_id, node.window_id, window_id)
        tab_id = node.backing_tab_id
        unread = self._tree.is_unread(tab_id)
        self._mutator.detach(tab_id, ChildTabBehavior.PROMOTE)
        self._mutator.attach(
            tab_id=tab_id,
            window_id=window_id,
            url=node.url,
            user_initiated=True,
            title=node.title,
            sync_host=False,
            index=index,
            active=not unread,
            group_info=node.group_info,
        )
        self._mutator.sync_order(tab_id)

    def _on_activated(self, event: TabActivated) -> None:
        node = self._tree.get_node_by_tab_id(event.tab_id)
        window_id = event.window_id if event.window_id is not None else (node.window_id if node else None)
        if window_id is None:
            return
        self._tree.ensure_window(window_id).last_active_tab_id = event.tab_id
        self._tree.mark_read(event.tab_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _command(self, fn: Callable[..., T], *args, **kwargs) -> T:
        result = self._queue.call(fn, *args, **kwargs)
        self._saver.schedule()
        return result

    def request_group(
        self,
        node_ids: list[str],
        name: str | None = None,
        color: str | None = None,
    ) -> Node:
        return self._command(self._mutator.create_group, node_ids, name, color)

    def request_add_to_group(self, node_id: str, group_node_id: str) -> Node:
        return self._command(self._mutator.add_to_group, node_id, group_node_id)

    def request_reparent(self, node_id: str, new_parent_id: str | None, index: int | None = None) -> Node:
        return self._command(self._mutator.reparent, node_id, new_parent_id, index)

    def request_toggle_expand(self, node_id: str) -> bool:
        return self._command(self._mutator.toggle_expand, node_id)

    def request_move(self, node_id: str, index: int) -> Node:
        return self._command(self._mutator.move_to_position, node_id, index)

    def request_dissolve_group(self, group_node_id: str) -> int:
        tab_id = self._command(self._mutator.dissolve_group, group_node_id)
        if self.host is not None:
            self.host.close_tabs([tab_id])
        return tab_id

    def request_update_group(
        self,
        group_node_id: str,
        name: str | None = None,
        color: str | None = None,
    ) -> Node:
        return self._command(self._mutator.update_group, group_node_id, name, color)

    def request_duplicate(self, node_id: str) -> int:
        """Ask the host to duplicate a node's tab.

        The copy's TabCreated is placed by ``placement.duplicate_opened``
        relative to the source tab. Returns the source tab id.
        """
        if self.host is None:
            raise TreeError("Duplicating a tab requires a host")
        tab_id = self._queue.call(self._expect_duplicate, node_id)
        self.host.duplicate_tab(tab_id)
        return tab_id

    def _expect_duplicate(self, node_id: str) -> int:
        node = self._tree.require_node(node_id)
        self._mutator.expect_duplicate(node.backing_tab_id)
        return node.backing_tab_id

    def create_view(self, window_id: int, name: str, color: str = "") -> View:
        return self._command(self._tree.add_view, window_id, name, color)

    def delete_view(self, view_id: str) -> list[int]:
        """Delete a view with all its nodes; their tabs are closed on the host."""
        tab_ids = self._command(self._tree.remove_view, view_id)
        if self.host is not None and tab_ids:
            self.host.close_tabs(tab_ids)
        return tab_ids

    def switch_view(self, window_id: int, view_id: str) -> None:
        self._command(self._tree.set_active_view, window_id, view_id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, open_tabs: list[OpenTab]) -> ReconcilePlan:
        """Align the restored forest with the tabs currently open on the host."""
        plan = self._queue.call(self._reconcile, open_tabs)
        self._saver.schedule()
        logger.info(
            "Reconciled with host: %d rebound, %d removed, %d created",
            len(plan.rebinds), plan.removed, plan.created,
        )
        return plan

    def _reconcile(self, open_tabs: list[OpenTab]) -> ReconcilePlan:
        plan = plan_reconciliation(
            self._tree, open_tabs, match_by_url=self.config.reconcile.match_by_url,
        )
        titles = {t.tab_id: t.title for t in open_tabs}
        for node_id, tab_id in plan.rebinds:
            self._tree.replace_backing_tab(node_id, tab_id)
            if titles.get(tab_id):
                self._tree.set_tab_info(node_id, title=titles[tab_id])

        for event in plan.events:
            try:
                if isinstance(event, TabCreated):
                    self._on_created(event, sync_host=False)
                else:
                    self._on_removed(event)
            except DuplicateBackingTab as e:
                self._dropped_events += 1
                logger.warning("Dropped %s during reconciliation: %s", type(event).__name__, e)

        for window in self._tree.state.windows.values():
            window.tab_order = []
        for tab in open_tabs:
            self._tree.ensure_window(tab.window_id).tab_order.append(tab.tab_id)
        return plan

    # ------------------------------------------------------------------
    # Named snapshots
    # ------------------------------------------------------------------

    @property
    def snapshots(self) -> SnapshotManager:
        return self._snapshots

    def create_snapshot(self, name: str | None = None, is_auto_save: bool = False) -> Snapshot:
        """Store a copy of the current forest under its own key."""
        data = self.snapshot()
        created_at = datetime.now(timezone.utc)
        if not name:
            label = "Auto" if is_auto_save else "Snapshot"
            name = f"{label} {created_at.strftime('%Y-%m-%d %H:%M:%S')}"
        snapshot = self._snapshots.create(name, data, is_auto_save=is_auto_save, created_at=created_at)
        if is_auto_save:
            self._snapshots.prune_auto(self.config.snapshots.max_auto)
        return snapshot

    def list_snapshots(self) -> list[Snapshot]:
        return self._snapshots.list_snapshots()

    def delete_snapshot(self, snapshot_id: str) -> bool:
        return self._snapshots.delete(snapshot_id)

    def export_snapshot(self, snapshot_id: str) -> str:
        return self._snapshots.export_json(snapshot_id)

    def restore_snapshot(self, snapshot_id: str) -> list[int]:
        """Reopen a stored snapshot in new host windows. Returns their ids."""
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise KeyError(f"Snapshot not found: {snapshot_id}")
        return self._restore(snapshot)

    def restore_snapshot_json(self, text: str) -> list[int]:
        """Reopen an exported snapshot in new host windows. Returns their ids."""
        return self._restore(snapshot_from_json(text))

    def _restore(self, snapshot: Snapshot) -> list[int]:
        if self.host is None:
            raise TreeError("Restoring a snapshot requires a host")
        state = state_from_dict(snapshot.data)
        window_ids = self._command(self._restore_state, state)
        logger.info("Restored snapshot '%s' into %d windows", snapshot.name, len(window_ids))
        return window_ids

    def _restore_state(self, saved: TreeState) -> list[int]:
        """Open every saved window, view and tab again, appended to the live forest."""
        source = TreeStore(saved)
        window_ids = []
        for saved_window in saved.windows.values():
            window_id = self.host.create_window()
            window = self._tree.ensure_window(window_id)
            view_map: dict[str, str] = {}
            for position, saved_view_id in enumerate(saved_window.view_ids):
                saved_view = saved.views[saved_view_id]
                if position == 0:
                    view = self._tree.update_view(window.view_ids[0], saved_view.name, saved_view.color)
                else:
                    view = self._tree.add_view(window_id, saved_view.name, saved_view.color)
                view_map[saved_view_id] = view.id
                self._restore_view(source, saved_view_id, window_id, view.id)
            if saved_window.active_view_id in view_map:
                window.active_view_id = view_map[saved_window.active_view_id]
            window_ids.append(window_id)
        return window_ids

    def _restore_view(self, source: TreeStore, saved_view_id: str, window_id: int, view_id: str) -> None:
        node_map: dict[str, str] = {}
        for saved_id in document_order(source, saved_view_id):
            saved_node = source.require_node(saved_id)
            if saved_node.group_info is not None:
                tab_id = self.host.create_group_tab(window_id)
            else:
                tab_id = self.host.create_tab(window_id, saved_node.url)
            self._mutator.expect_synthesized(tab_id)
            node = self._tree.upsert_node(Node(
                id=new_node_id(),
                backing_tab_id=tab_id,
                view_id=view_id,
                window_id=window_id,
                parent_id=node_map.get(saved_node.parent_id) if saved_node.parent_id else None,
                is_expanded=saved_node.is_expanded,
                group_info=replace(saved_node.group_info) if saved_node.group_info else None,
                title=saved_node.title,
                url=saved_node.url,
            ))
            node_map[saved_id] = node.id
            self._mutator.record_tab_position(window_id, tab_id, None)

    def start_auto_snapshots(self, interval_minutes: float) -> None:
        """Take an automatic snapshot every interval. 0 stops them."""
        self.stop_auto_snapshots()
        if interval_minutes <= 0:
            return
        self._auto_snapshotter = AutoSnapshotter(
            lambda: self.create_snapshot(is_auto_save=True),
            interval=interval_minutes * 60,
        )
        self._auto_snapshotter.start()
        logger.info("Automatic snapshots every %s minutes", interval_minutes)

    def stop_auto_snapshots(self) -> None:
        if self._auto_snapshotter is not None:
            self._auto_snapshotter.stop()
            self._auto_snapshotter = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self._queue.call(self._tree.get_node, node_id)

    def get_node_by_tab_id(self, tab_id: int) -> Node | None:
        return self._queue.call(self._tree.get_node_by_tab_id, tab_id)

    def flatten(self, view_id: str) -> list[FlatEntry]:
        return self._queue.call(flatten, self._tree, view_id)

    def render(self, view_id: str, show_hidden: bool = False) -> str:
        return self._queue.call(render_tree, self._tree, view_id, show_hidden)

    def active_view_id(self, window_id: int) -> str:
        return self._queue.call(self._tree.active_view_id, window_id)

    def is_unread(self, tab_id: int) -> bool:
        return self._queue.call(self._tree.is_unread, tab_id)

    def unread_count(self, view_id: str | None = None) -> int:
        return self._queue.call(self._tree.unread_count, view_id)

    def check_invariants(self) -> list[str]:
        return self._queue.call(self._tree.check_invariants)

    def snapshot(self) -> dict:
        """Capture a persistable snapshot on the writer queue."""
        return self._queue.call(state_to_dict, self._tree.state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget the whole forest, in memory and in storage."""
        self._queue.call(self._reset)
        self._saver.cancel()
        self._persistence.clear()

    def _reset(self) -> None:
        self._tree.state = TreeState()

    def drain(self) -> None:
        """Wait until every dispatched event has been applied."""
        self._queue.drain()

    def flush(self) -> bool:
        """Apply queued events and write the snapshot now."""
        self._queue.drain()
        return self._saver.flush()

    def close(self) -> None:
        """Drain events, persist, and release resources."""
        try:
            self.flush()
        finally:
            self.stop_auto_snapshots()
            self._saver.cancel()
            self._queue.shutdown()
            self._store.close()

    def __enter__(self) -> TabTreeEngine:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
