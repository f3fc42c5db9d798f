"""Core datatypes shared across Bookbridge modules.

Responsibilities:
- Represent immutable records exchanged between conversion stages.
- Represent calibration anchors and synchronization results.
- Provide explicit typing for job bookkeeping and CLI rendering.

Key types:
- `Chapter`, `BookMetadata`, `ResolvedMetadata`, `ArtifactRef`,
  `CalibrationPoint`, `CalibrationTable`, `SyncResult`, `JobStatus`,
  `JobHandle`, `JobError`, and `JobResult`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..errors import ErrorKind


@dataclass(frozen=True, slots=True)
class Chapter:
    """A chapter produced by segmentation.

    Attributes:
        index: 1-based chapter index.
        title: Chapter title or synthesized label.
        text: Plain chapter text.
        markup: Minimal XHTML body fragment for packaging.
    """

    index: int
    title: str
    text: str
    markup: str


@dataclass(frozen=True, slots=True)
class BookMetadata:
    """Metadata written into a packaged document.

    Attributes:
        title: Required book title.
        author: Author name; the builder substitutes a placeholder when blank.
        description: Optional free-form description.
        language: Primary language code.
    """

    title: str
    author: str = ""
    description: str = ""
    language: str = "en"


@dataclass(frozen=True, slots=True)
class ResolvedMetadata:
    """Metadata after applying filename and placeholder fallbacks."""

    title: str
    author: str
    description: str
    original_filename: str | None
    file_size: int


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """Reference to one durable packaged document.

    Attributes:
        filename: Generated filename, distinct from the uploaded name.
        path: Absolute or config-relative filesystem path.
        url: Public URL path (`<prefix>/<filename>`).
    """

    filename: str
    path: Path
    url: str


@dataclass(frozen=True, slots=True)
class CalibrationPoint:
    """Anchor linking one page to one audio timestamp.

    Attributes:
        page: 1-based page number.
        timestamp: Audio position in seconds.
        label: Chapter label for this anchor.
        note: Optional authoring note.
    """

    page: int
    timestamp: float
    label: str
    note: str | None = None


@dataclass(frozen=True, slots=True)
class CalibrationTable:
    """Immutable, page-ordered calibration points for one title.

    Attributes:
        title_key: Title identifier.
        points: Points sorted by page, unique by page.
        total_pages: Page total used only by the global fallback estimate.
        total_duration: Duration total (seconds) used only by the global fallback.
        totals_configured: Whether totals came from the table author rather
            than policy defaults.
    """

    title_key: str
    points: tuple[CalibrationPoint, ...]
    total_pages: int
    total_duration: float
    totals_configured: bool = False

    @property
    def is_monotonic(self) -> bool:
        """Return whether timestamps never decrease in page order."""

        return all(
            earlier.timestamp <= later.timestamp
            for earlier, later in zip(self.points, self.points[1:])
        )


@dataclass(frozen=True, slots=True)
class TableHandle:
    """Opaque reference to a registered calibration table."""

    title_key: str


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Result of one page/time synchronization query.

    Attributes:
        page: Page position (query input or mapped output).
        timestamp: Audio position in seconds (query input or mapped output).
        label: Chapter label for the position.
        method: `exact`, `interpolated`, `extrapolated`, or `global_estimate`.
        warning: Soft condition raised by the query, if any.
    """

    page: int
    timestamp: float
    label: str
    method: str
    warning: ErrorKind | None = None


class JobStatus(str, Enum):
    """Lifecycle states of one conversion job."""

    PENDING = "pending"
    EXTRACTING = "extracting"
    SEGMENTING = "segmenting"
    PACKAGING = "packaging"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return whether no further transitions are allowed."""

        return self in (JobStatus.DONE, JobStatus.FAILED)


@dataclass(frozen=True, slots=True)
class JobHandle:
    """Opaque reference to a submitted conversion job."""

    job_id: str


@dataclass(frozen=True, slots=True)
class JobError:
    """User-displayable failure attached to a job's terminal state."""

    kind: ErrorKind
    message: str
    stage: str | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class JobResult:
    """Snapshot of a job returned to callers."""

    job_id: str
    status: JobStatus
    artifact: ArtifactRef | None = None
    metadata: ResolvedMetadata | None = None
    chapter_count: int = 0
    error: JobError | None = None
