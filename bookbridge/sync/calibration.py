"""Calibration table construction and loading.

Responsibilities:
- Validate authored calibration points and freeze them into a page-ordered table.
- Report (or, under strict policy, reject) timestamp inversions.
- Load per-title calibration resources from YAML files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml
from loguru import logger

from ..config import SyncPolicy
from ..errors import InvalidInputError
from ..models.datatypes import CalibrationPoint, CalibrationTable
from ..parsing import (
    normalize_optional_string,
    parse_non_negative_float,
    parse_positive_float,
    parse_positive_int,
)

PointLike = CalibrationPoint | Mapping[str, Any]


def build_calibration_table(
    title_key: str,
    points: Iterable[PointLike],
    *,
    total_pages: int | None = None,
    total_duration: float | None = None,
    policy: SyncPolicy | None = None,
) -> CalibrationTable:
    """Validate points and return an immutable page-ordered table.

    Points may be `CalibrationPoint` instances or mappings with `page`,
    `timestamp`, `label`, and optional `note` keys. Totals default to the
    policy fallback values and only feed the empty-table estimate.

    Raises:
        InvalidInputError: On invalid fields, duplicate pages, or (under
            `strict_monotonic`) timestamps that decrease in page order.
    """

    resolved_policy = policy or SyncPolicy()
    key = normalize_optional_string(title_key)
    if key is None:
        raise InvalidInputError("Calibration tables require a non-empty title key.", stage="calibration")

    parsed = [_coerce_point(point, position) for position, point in enumerate(points, start=1)]
    ordered = tuple(sorted(parsed, key=lambda point: point.page))

    seen: set[int] = set()
    for point in ordered:
        if point.page in seen:
            raise InvalidInputError(
                f"Calibration table `{key}` has more than one point for page {point.page}.",
                stage="calibration",
                hint="Keep exactly one anchor per page.",
            )
        seen.add(point.page)

    try:
        resolved_pages = (
            resolved_policy.fallback_total_pages
            if total_pages is None
            else parse_positive_int(total_pages, "total_pages")
        )
        resolved_duration = (
            resolved_policy.fallback_total_duration_seconds
            if total_duration is None
            else parse_positive_float(total_duration, "total_duration")
        )
    except ValueError as exc:
        raise InvalidInputError(f"Calibration table `{key}`: {exc}", stage="calibration") from exc

    table = CalibrationTable(
        title_key=key,
        points=ordered,
        total_pages=resolved_pages,
        total_duration=resolved_duration,
        totals_configured=total_pages is not None and total_duration is not None,
    )
    if not table.is_monotonic:
        inversions = [
            f"{earlier.page}->{later.page}"
            for earlier, later in zip(ordered, ordered[1:])
            if later.timestamp < earlier.timestamp
        ]
        if resolved_policy.strict_monotonic:
            raise InvalidInputError(
                f"Calibration table `{key}` has decreasing timestamps at pages "
                f"{', '.join(inversions)}.",
                stage="calibration",
                hint="Fix the authored timestamps or disable `strict_monotonic`.",
            )
        logger.warning(
            "Calibration table {} has decreasing timestamps at pages {}; "
            "mapping results near these pages are unreliable.",
            key,
            ", ".join(inversions),
        )
    return table


def load_calibration_file(path: Path, policy: SyncPolicy | None = None) -> CalibrationTable:
    """Load a calibration table from a YAML resource.

    Expected layout::

        title_key: essential-collection
        total_pages: 149        # optional
        total_duration: 5400    # optional, seconds
        points:
          - {page: 1, timestamp: 0, label: Cover, note: Book begins}
    """

    if not path.exists():
        raise InvalidInputError(f"Calibration file not found: {path}", stage="calibration")
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidInputError(
            f"Calibration file `{path}` is not valid YAML: {exc}", stage="calibration"
        ) from exc
    if not isinstance(payload, Mapping):
        raise InvalidInputError(
            f"Calibration file `{path}` must contain a top-level mapping/object.",
            stage="calibration",
        )

    points = payload.get("points") or []
    if not isinstance(points, list):
        raise InvalidInputError(
            f"Calibration file `{path}` field `points` must be a list.", stage="calibration"
        )
    title_key = normalize_optional_string(payload.get("title_key")) or path.stem
    return build_calibration_table(
        title_key,
        points,
        total_pages=payload.get("total_pages"),
        total_duration=payload.get("total_duration"),
        policy=policy,
    )


def _coerce_point(point: PointLike, position: int) -> CalibrationPoint:
    """Validate one point, accepting dataclass instances or mappings."""

    if isinstance(point, CalibrationPoint):
        raw: Mapping[str, Any] = {
            "page": point.page,
            "timestamp": point.timestamp,
            "label": point.label,
            "note": point.note,
        }
    elif isinstance(point, Mapping):
        raw = point
    else:
        raise InvalidInputError(
            f"Calibration point #{position} must be a mapping with page/timestamp/label.",
            stage="calibration",
        )

    try:
        page = parse_positive_int(raw.get("page"), "page")
        timestamp = parse_non_negative_float(raw.get("timestamp"), "timestamp")
    except ValueError as exc:
        raise InvalidInputError(f"Calibration point #{position}: {exc}", stage="calibration") from exc

    label = normalize_optional_string(raw.get("label"))
    if label is None:
        raise InvalidInputError(
            f"Calibration point #{position} requires a non-empty `label`.", stage="calibration"
        )
    return CalibrationPoint(
        page=page,
        timestamp=timestamp,
        label=label,
        note=normalize_optional_string(raw.get("note")),
    )
