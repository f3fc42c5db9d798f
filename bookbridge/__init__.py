"""Top-level package for Bookbridge.

This package converts text-based PDF documents into reflowable EPUB books and
maps reading positions (pages) to narration positions (seconds). The main
entry points are `ConversionOrchestrator` and `CalibrationRegistry`.
"""

from .pipeline import ConversionOrchestrator
from .sync import CalibrationRegistry

__all__ = ["CalibrationRegistry", "ConversionOrchestrator", "__version__"]

__version__ = "0.1.0"
