"""Bidirectional page/audio position mapping.

Responsibilities:
- Translate a page into an audio timestamp and a timestamp into a page.
- Degrade through exact match, interpolation, extrapolation, and a global
  linear estimate so every query yields a usable answer.
- Resolve chapter labels for pages and timestamps.

The global estimate (`method="global_estimate"`) is a last-resort,
low-precision answer used only for empty tables; results carry
`ErrorKind.OUT_OF_RANGE_QUERY` as a soft warning.
"""

from __future__ import annotations

import math

from loguru import logger

from ..config import SyncPolicy
from ..errors import ErrorKind, InvalidInputError
from ..models.datatypes import CalibrationPoint, CalibrationTable, SyncResult

EXACT = "exact"
INTERPOLATED = "interpolated"
EXTRAPOLATED = "extrapolated"
GLOBAL_ESTIMATE = "global_estimate"


class PositionMapper:
    """Stateless translator over one immutable calibration table."""

    def __init__(self, table: CalibrationTable, policy: SyncPolicy | None = None) -> None:
        """Bind a table and policy; also precompute a timestamp-ordered view."""

        self.table = table
        self.policy = policy or SyncPolicy()
        self._by_time: tuple[CalibrationPoint, ...] = tuple(
            sorted(table.points, key=lambda point: (point.timestamp, point.page))
        )

    def page_to_time(self, page: int) -> SyncResult:
        """Map a page to an audio timestamp in seconds."""

        _require_finite("page", page)
        timestamp, method = self._time_for_page(page)
        return SyncResult(
            page=page,
            timestamp=timestamp,
            label=self.chapter_label(page),
            method=method,
            warning=self._warning_for(method),
        )

    def time_to_page(self, timestamp: float) -> SyncResult:
        """Map an audio timestamp in seconds to the nearest page."""

        _require_finite("timestamp", timestamp)
        page, method = self._page_for_time(timestamp)
        return SyncResult(
            page=page,
            timestamp=timestamp,
            label=self.chapter_label_at(timestamp),
            method=method,
            warning=self._warning_for(method),
        )

    def chapter_label(self, page: int) -> str:
        """Return the label of the exact or nearest preceding point for a page.

        A following point is never used, even when it is closer: a page belongs
        to the chapter that started at or before it.
        """

        label = self.policy.unknown_label
        for point in self.table.points:
            if point.page > page:
                break
            label = point.label
        return label

    def chapter_label_at(self, timestamp: float) -> str:
        """Return the label of the closest point within the label tolerance window."""

        point = self._closest_by_time(timestamp, self.policy.label_match_tolerance_seconds)
        return point.label if point is not None else self.policy.unknown_label

    def _time_for_page(self, page: int) -> tuple[float, str]:
        points = self.table.points
        rate = self.policy.avg_seconds_per_page

        before: CalibrationPoint | None = None
        after: CalibrationPoint | None = None
        for point in points:
            if point.page == page:
                return point.timestamp, EXACT
            if point.page < page:
                before = point
            elif after is None:
                after = point
                break

        if before is not None and after is not None:
            ratio = (page - before.page) / (after.page - before.page)
            return before.timestamp + (after.timestamp - before.timestamp) * ratio, INTERPOLATED
        if before is not None:
            return before.timestamp + (page - before.page) * rate, EXTRAPOLATED
        if after is not None:
            return max(0.0, after.timestamp - (after.page - page) * rate), EXTRAPOLATED

        self._log_global_estimate("page_to_time", page)
        estimate = page / self.table.total_pages * self.table.total_duration
        return max(0.0, estimate), GLOBAL_ESTIMATE

    def _page_for_time(self, timestamp: float) -> tuple[int, str]:
        exact = self._closest_by_time(timestamp, self.policy.page_match_tolerance_seconds)
        if exact is not None:
            return exact.page, EXACT

        rate = self.policy.avg_seconds_per_page
        before: CalibrationPoint | None = None
        after: CalibrationPoint | None = None
        for point in self._by_time:
            if point.timestamp < timestamp:
                before = point
            elif point.timestamp > timestamp and after is None:
                after = point
                break

        if before is not None and after is not None:
            ratio = (timestamp - before.timestamp) / (after.timestamp - before.timestamp)
            return _round_page(before.page + (after.page - before.page) * ratio), INTERPOLATED
        if before is not None:
            return _round_page(before.page + (timestamp - before.timestamp) / rate), EXTRAPOLATED
        if after is not None:
            return _round_page(after.page - (after.timestamp - timestamp) / rate), EXTRAPOLATED

        self._log_global_estimate("time_to_page", timestamp)
        estimate = timestamp / self.table.total_duration * self.table.total_pages
        return _round_page(estimate), GLOBAL_ESTIMATE

    def _closest_by_time(self, timestamp: float, tolerance: float) -> CalibrationPoint | None:
        """Return the point closest to `timestamp` strictly within `tolerance`."""

        best: CalibrationPoint | None = None
        best_distance = tolerance
        for point in self._by_time:
            distance = abs(point.timestamp - timestamp)
            if distance < best_distance:
                best, best_distance = point, distance
        return best

    def _warning_for(self, method: str) -> ErrorKind | None:
        return ErrorKind.OUT_OF_RANGE_QUERY if method == GLOBAL_ESTIMATE else None

    def _log_global_estimate(self, operation: str, value: float) -> None:
        logger.warning(
            "{} on empty calibration table {} for {}: using global estimate "
            "({} pages / {}s{})",
            operation,
            self.table.title_key,
            value,
            self.table.total_pages,
            self.table.total_duration,
            "" if self.table.totals_configured else ", default totals",
        )


def _round_page(value: float) -> int:
    return max(0, int(round(value)))


def _require_finite(name: str, value: float) -> None:
    if isinstance(value, bool) or not math.isfinite(value):
        raise InvalidInputError(
            f"Sync query {name} must be a finite number, got {value!r}.",
            stage="sync",
        )
