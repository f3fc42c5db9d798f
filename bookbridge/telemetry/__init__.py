"""Telemetry and observability helpers.

This package emits deterministic stage events for conversion jobs.
"""

from .logger import RunLogger

__all__ = ["RunLogger"]
