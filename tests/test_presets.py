"""Tests for presets: registration and template validity."""

from __future__ import annotations

import pytest

from tabforest.config import load_config, validate_config
from tabforest.presets import get_preset, list_presets
from tabforest.presets.base import Preset, register_preset
from tabforest.types import ChildTabBehavior, PlacementPolicy


def test_builtin_presets_registered():
    names = [p.name for p in list_presets()]
    assert names == sorted(names)
    assert {"default", "nested"} <= set(names)


def test_unknown_preset_returns_none():
    assert get_preset("nonexistent") is None


def test_duplicate_registration_rejected():
    with pytest.raises(ValueError):
        register_preset(Preset(name="default", description="again", template=""))


@pytest.mark.parametrize("name", ["default", "nested"])
def test_template_is_valid_config(name):
    config = load_config(config_dict=get_preset(name).config_dict)
    assert validate_config(config) == []


def test_default_template_matches_defaults():
    assert get_preset("default").config_dict["placement"]["link_opened"] == "child"
    config = load_config(config_dict=get_preset("default").config_dict)
    assert config == load_config(config_dict={})


def test_nested_template():
    config = load_config(config_dict=get_preset("nested").config_dict)
    assert config.placement.manual_opened is PlacementPolicy.CHILD
    assert config.detach.child_behavior is ChildTabBehavior.CLOSE_ALL
    assert config.storage.backend == "sqlite"
    assert config.placement.duplicate_opened is PlacementPolicy.CHILD
    assert config.snapshots.auto_interval_minutes == 30
