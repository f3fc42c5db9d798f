"""Shared typed data models for Bookbridge.

This package contains dataclasses used across conversion and synchronization
modules to avoid cross-module coupling and circular imports.
"""

from .datatypes import (
    ArtifactRef,
    BookMetadata,
    CalibrationPoint,
    CalibrationTable,
    Chapter,
    JobError,
    JobHandle,
    JobResult,
    JobStatus,
    ResolvedMetadata,
    SyncResult,
    TableHandle,
)

__all__ = [
    "ArtifactRef",
    "BookMetadata",
    "CalibrationPoint",
    "CalibrationTable",
    "Chapter",
    "JobError",
    "JobHandle",
    "JobResult",
    "JobStatus",
    "ResolvedMetadata",
    "SyncResult",
    "TableHandle",
]
