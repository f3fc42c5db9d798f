"""Conversion job orchestration."""

from .jobs import ConversionJob, JobStore
from .orchestrator import ConversionOrchestrator

__all__ = ["ConversionJob", "ConversionOrchestrator", "JobStore"]
