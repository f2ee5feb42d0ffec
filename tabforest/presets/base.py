"""Preset registry: named config templates for `tabforest init`."""

from __future__ import annotations

from dataclasses import dataclass

import yaml


@dataclass(frozen=True)
class Preset:
    name: str
    description: str
    template: str  # commented YAML written verbatim by `init`

    @property
    def config_dict(self) -> dict:
        return yaml.safe_load(self.template) or {}


_PRESETS: dict[str, Preset] = {}


def register_preset(preset: Preset) -> Preset:
    if preset.name in _PRESETS:
        raise ValueError(f"Preset already registered: {preset.name}")
    _PRESETS[preset.name] = preset
    return preset


def get_preset(name: str) -> Preset | None:
    return _PRESETS.get(name)


def list_presets() -> list[Preset]:
    """All registered presets, by name."""
    return sorted(_PRESETS.values(), key=lambda p: p.name)
