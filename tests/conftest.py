"""Shared fixtures for tabforest tests."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from tabforest.config import load_config
from tabforest.core.mutations import TreeMutator
from tabforest.core.tree_store import TreeStore
from tabforest.types import TabForestConfig


class FakeHost:
    """Records what the engine asks of the host tab strip."""

    def __init__(self, first_tab_id: int = 1000) -> None:
        self._next_tab_id = first_tab_id
        self.group_tabs: list[tuple[int, int | None]] = []  # (window_id, index)
        self.closed: list[int] = []
        self.moved: list[tuple[int, int]] = []
        self.duplicated: list[int] = []
        self.windows: list[int] = []
        self.created_tabs: list[tuple[int, int, str]] = []  # (tab_id, window_id, url)

    def create_group_tab(self, window_id: int, index: int | None = None) -> int:
        tab_id = self._next_tab_id
        self._next_tab_id += 1
        self.group_tabs.append((window_id, index))
        return tab_id

    def close_tabs(self, tab_ids: list[int]) -> None:
        self.closed.extend(tab_ids)

    def move_tab(self, tab_id: int, index: int) -> None:
        self.moved.append((tab_id, index))

    def duplicate_tab(self, tab_id: int) -> None:
        self.duplicated.append(tab_id)

    def create_window(self) -> int:
        window_id = 500 + len(self.windows)
        self.windows.append(window_id)
        return window_id

    def create_tab(self, window_id: int, url: str) -> int:
        tab_id = self._next_tab_id
        self._next_tab_id += 1
        self.created_tabs.append((tab_id, window_id, url))
        return tab_id


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def tmp_sqlite_db():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d) / "test.db"


@pytest.fixture
def config() -> TabForestConfig:
    return load_config(config_dict={
        "storage": {"backend": "memory"},
        "persistence": {"debounce_ms": 20},
    })


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def tree() -> TreeStore:
    return TreeStore()


@pytest.fixture
def mutator(tree, config, host) -> TreeMutator:
    return TreeMutator(tree, config, host)
