"""Presets: ready-to-use config templates for common tab layouts."""

from .base import get_preset, list_presets  # noqa: F401

# Import presets to trigger registration
from . import default  # noqa: F401
from . import nested  # noqa: F401
