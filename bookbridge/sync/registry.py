"""Keyed store of loaded calibration tables.

Tables and mappers are immutable once registered, so queries run without
locking; only registration and removal take the registry lock.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable

from ..config import SyncPolicy
from ..errors import NotFoundError
from ..models.datatypes import CalibrationTable, SyncResult, TableHandle
from .calibration import PointLike, build_calibration_table, load_calibration_file
from .mapper import PositionMapper


class CalibrationRegistry:
    """Hold one `PositionMapper` per title key."""

    def __init__(self, policy: SyncPolicy | None = None) -> None:
        self.policy = policy or SyncPolicy()
        self._mappers: dict[str, PositionMapper] = {}
        self._lock = threading.Lock()

    def load_calibration_table(
        self,
        title_key: str,
        points: Iterable[PointLike],
        *,
        total_pages: int | None = None,
        total_duration: float | None = None,
    ) -> TableHandle:
        """Validate and register a table, replacing any table with the same key."""

        table = build_calibration_table(
            title_key,
            points,
            total_pages=total_pages,
            total_duration=total_duration,
            policy=self.policy,
        )
        return self._register(table)

    def load_file(self, path: Path) -> TableHandle:
        """Load and register a YAML calibration resource."""

        return self._register(load_calibration_file(path, self.policy))

    def get_table(self, handle: TableHandle) -> CalibrationTable:
        return self.mapper(handle).table

    def mapper(self, handle: TableHandle) -> PositionMapper:
        """Return the mapper for a handle.

        Raises:
            NotFoundError: If no table is registered under the handle's key.
        """

        mapper = self._mappers.get(handle.title_key)
        if mapper is None:
            raise NotFoundError(
                f"No calibration table loaded for `{handle.title_key}`.",
                stage="sync",
                hint="Load the title's calibration table first.",
            )
        return mapper

    def page_to_time(self, handle: TableHandle, page: int) -> SyncResult:
        return self.mapper(handle).page_to_time(page)

    def time_to_page(self, handle: TableHandle, timestamp: float) -> SyncResult:
        return self.mapper(handle).time_to_page(timestamp)

    def chapter_label(self, handle: TableHandle, page: int) -> str:
        return self.mapper(handle).chapter_label(page)

    def chapter_label_at(self, handle: TableHandle, timestamp: float) -> str:
        return self.mapper(handle).chapter_label_at(timestamp)

    def unload(self, handle: TableHandle) -> None:
        """Remove a registered table."""

        with self._lock:
            if self._mappers.pop(handle.title_key, None) is None:
                raise NotFoundError(
                    f"No calibration table loaded for `{handle.title_key}`.", stage="sync"
                )

    def title_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._mappers)

    def _register(self, table: CalibrationTable) -> TableHandle:
        mapper = PositionMapper(table, self.policy)
        with self._lock:
            self._mappers[table.title_key] = mapper
        return TableHandle(title_key=table.title_key)
