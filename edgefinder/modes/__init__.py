"""Execution modes."""

from edgefinder.modes.alert import AlertMode
from edgefinder.modes.base import ExecutionMode
from edgefinder.modes.live import LiveMode
from edgefinder.modes.shadow import ShadowMode

__all__ = [
    "ExecutionMode",
    "ShadowMode",
    "AlertMode",
    "LiveMode",
]
