"""Cross-modal position synchronization.

This package maps reading positions (pages) to narration positions (seconds)
and back using per-title calibration tables.
"""

from .calibration import build_calibration_table, load_calibration_file
from .mapper import PositionMapper
from .registry import CalibrationRegistry

__all__ = [
    "CalibrationRegistry",
    "PositionMapper",
    "build_calibration_table",
    "load_calibration_file",
]
