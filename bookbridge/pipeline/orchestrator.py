"""Conversion job orchestration for Bookbridge.

Responsibilities:
- Validate submissions before touching the filesystem.
- Run extract -> segment -> package for each job on a worker thread.
- Guarantee temp-input cleanup on every exit path before publishing the
  terminal status.
- Manage durable EPUB artifacts (list, delete).

Key types:
- `ConversionOrchestrator`: submission, polling, and artifact facade.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
import threading
import time
import uuid
from pathlib import Path
from typing import Mapping, TypeVar

from loguru import logger

from ..config import BookbridgeConfig
from ..errors import (
    BookbridgeError,
    ExtractionError,
    InvalidInputError,
    PackagingError,
)
from ..io.chapter_segmenter import ChapterSegmenter
from ..io.epub_builder import EpubPackageBuilder
from ..io.pdf_text_extractor import PdfTextExtractor
from ..io.storage import ArtifactStore
from ..models.datatypes import (
    ArtifactRef,
    BookMetadata,
    Chapter,
    JobError,
    JobHandle,
    JobResult,
    JobStatus,
    ResolvedMetadata,
)
from ..parsing import normalize_optional_string
from ..telemetry.logger import RunLogger
from .jobs import ConversionJob, JobStore

_StageResult = TypeVar("_StageResult")

_METADATA_KEYS = frozenset({"title", "author", "description"})


class ConversionOrchestrator:
    """Own the lifecycle of PDF-to-EPUB conversion jobs."""

    _STAGE_SEQUENCE = (
        (JobStatus.EXTRACTING, "extract"),
        (JobStatus.SEGMENTING, "segment"),
        (JobStatus.PACKAGING, "package"),
    )

    def __init__(
        self,
        config: BookbridgeConfig | None = None,
        *,
        extractor: PdfTextExtractor | None = None,
        segmenter: ChapterSegmenter | None = None,
        builder: EpubPackageBuilder | None = None,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize stage components, stores, and the worker pool."""

        self.config = config or BookbridgeConfig()
        try:
            self.config.validate()
        except ValueError as exc:
            raise InvalidInputError(
                str(exc),
                stage="config",
                hint="Fix the configuration value and rerun the command.",
            ) from exc

        self._extractor = extractor or PdfTextExtractor()
        self._segmenter = segmenter or ChapterSegmenter(
            min_block_chars=self.config.min_block_chars,
            placeholder_title=self.config.placeholder_title,
            placeholder_body=self.config.placeholder_body,
        )
        self._builder = builder or EpubPackageBuilder(default_author=self.config.default_author)
        self._run_logger = run_logger
        self._stage_progress_callback = stage_progress_callback
        self._artifacts = ArtifactStore(self.config.output_dir)
        self._uploads = ArtifactStore(self.config.temp_dir)
        self._jobs = JobStore(self.config.job_retention_seconds, clock)
        self._futures: dict[str, Future[None]] = {}
        self._futures_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="bookbridge-job",
        )

    def __enter__(self) -> ConversionOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; running jobs still finish and clean up."""

        self._executor.shutdown(wait=wait)

    def submit_conversion(
        self,
        payload: bytes,
        metadata: Mapping[str, str | None] | None = None,
        *,
        filename: str | None = None,
        media_type: str = "application/pdf",
    ) -> JobHandle:
        """Validate a submission and schedule its conversion job.

        Raises:
            InvalidInputError: On unsupported media type, empty or oversized
                payload, or unknown metadata keys. Nothing is written to disk.
        """

        data = bytes(payload)
        self._validate_submission(data, media_type)
        requested = self._normalize_metadata(metadata)
        normalized_filename = normalize_optional_string(filename)

        job = ConversionJob(
            id=uuid.uuid4().hex,
            source_bytes=data,
            filename=normalized_filename,
            media_type=media_type,
            requested_metadata=requested,
            created_at=self._jobs.now(),
        )
        job.metadata = self._resolve_metadata(requested, normalized_filename, job.file_size)
        self._jobs.add(job)
        try:
            future = self._executor.submit(self._run_job, job)
        except RuntimeError as exc:
            self._jobs.discard(job.id)
            raise InvalidInputError(
                "Conversion service is shut down; no new jobs are accepted.",
                stage="submit",
                hint="Create a new orchestrator to submit more conversions.",
            ) from exc
        self._log_job_event("submitted", job, size=job.file_size)

        with self._futures_lock:
            self._prune_futures_locked()
            self._futures[job.id] = future
        return JobHandle(job_id=job.id)

    def run_conversion(
        self,
        payload: bytes,
        metadata: Mapping[str, str | None] | None = None,
        *,
        filename: str | None = None,
        media_type: str = "application/pdf",
    ) -> JobResult:
        """Submit a job and block until it reaches a terminal state."""

        handle = self.submit_conversion(
            payload, metadata, filename=filename, media_type=media_type
        )
        return self.wait_for_job(handle)

    def wait_for_job(self, handle: JobHandle, timeout: float | None = None) -> JobResult:
        """Wait for a job to finish and return its result.

        On timeout the current non-terminal snapshot is returned; the job keeps
        running and still cleans up when it finishes.
        """

        with self._futures_lock:
            self._prune_futures_locked()
            future = self._futures.get(handle.job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except FutureTimeoutError:
                return self._jobs.peek_result(handle.job_id)
        return self.get_job_result(handle)

    def get_job_result(self, handle: JobHandle) -> JobResult:
        """Return the job's current result; terminal results are handed out once.

        Raises:
            NotFoundError: If the job is unknown, already retrieved, or expired.
        """

        result = self._jobs.take_result(handle.job_id)
        if result.status.is_terminal:
            with self._futures_lock:
                self._futures.pop(handle.job_id, None)
        return result

    def list_artifacts(self) -> list[ArtifactRef]:
        """List durable EPUB artifacts sorted by filename."""

        return [self._artifact_ref(name) for name in self._artifacts.list_names(".epub")]

    def delete_artifact(self, artifact: ArtifactRef | str) -> None:
        """Delete a previously produced EPUB.

        Raises:
            InvalidInputError: If the name is not a plain `.epub` filename.
            NotFoundError: If no such artifact exists.
        """

        name = artifact.filename if isinstance(artifact, ArtifactRef) else artifact
        if not name.endswith(".epub"):
            raise InvalidInputError(
                f"Invalid artifact name `{name}`.",
                stage="delete",
                hint="Artifact names end with `.epub`; run `bookbridge list` to see them.",
            )
        self._artifacts.delete(name)
        logger.info("Deleted artifact {}", name)

    def preview_chapters(self, pdf_path: Path) -> list[Chapter]:
        """Extract and segment a PDF without creating a job or writing files."""

        return self._segmenter.split(self._extractor.extract(pdf_path))

    def health(self) -> dict[str, object]:
        """Report service readiness."""

        with self._futures_lock:
            self._prune_futures_locked()
        return {
            "status": "ok",
            "message": "PDF to EPUB conversion service is running",
            "output_dir": str(self.config.output_dir),
            "output_dir_exists": self.config.output_dir.is_dir(),
            "temp_dir": str(self.config.temp_dir),
            "active_jobs": len(self._jobs.job_ids()),
        }

    def _prune_futures_locked(self) -> None:
        """Drop futures of finished jobs the store no longer holds."""

        live = set(self._jobs.job_ids())
        finished = [
            job_id
            for job_id, future in self._futures.items()
            if future.done() and job_id not in live
        ]
        for job_id in finished:
            del self._futures[job_id]

    def _run_job(self, job: ConversionJob) -> None:
        """Run all stages; classify failures and publish the terminal state."""

        failure: BookbridgeError | None = None
        try:
            text = self._run_stage(job, JobStatus.EXTRACTING, "extract", lambda: self._extract(job))
            chapters = self._run_stage(
                job, JobStatus.SEGMENTING, "segment", lambda: self._segmenter.split(text)
            )
            self._jobs.update(job, lambda record: setattr(record, "chapter_count", len(chapters)))
            artifact = self._run_stage(
                job, JobStatus.PACKAGING, "package", lambda: self._package(job, chapters)
            )
            self._jobs.update(job, lambda record: setattr(record, "artifact", artifact))
        except BookbridgeError as exc:
            failure = exc
        except Exception as exc:
            failure = self._classify_unexpected(job, exc)
        finally:
            self._cleanup(job)
        self._finish(job, failure)

    def _run_stage(
        self,
        job: ConversionJob,
        status: JobStatus,
        stage_name: str,
        action: Callable[[], _StageResult],
    ) -> _StageResult:
        """Run one named stage and emit start/complete/failure telemetry events."""

        self._jobs.update(job, lambda record: record.transition(status))
        self._on_stage_start(stage_name, job)
        try:
            result = action()
        except Exception as exc:
            self._on_stage_failure(stage_name, job, exc)
            raise
        self._on_stage_complete(stage_name, job)
        return result

    def _extract(self, job: ConversionJob) -> str:
        """Persist the payload to the job's temp location and extract its text."""

        job.temp_path = self._uploads.path_for(f"{job.id}.pdf")
        try:
            self._uploads.save_bytes(job.temp_path.name, job.source_bytes)
        except OSError as exc:
            raise ExtractionError(
                f"Failed to stage uploaded document: {exc}",
                stage="extract",
                hint="Check that the temp directory exists and is writable.",
            ) from exc
        job.source_bytes = b""
        return self._extractor.extract(job.temp_path)

    def _package(self, job: ConversionJob, chapters: list[Chapter]) -> ArtifactRef:
        """Build the EPUB and write it under a generated filename."""

        resolved = job.metadata
        if resolved is None:
            raise PackagingError("Job metadata was not resolved.", stage="package")
        payload = self._builder.build(
            chapters,
            BookMetadata(
                title=resolved.title,
                author=resolved.author,
                description=resolved.description,
                language=self.config.language,
            ),
        )
        filename = f"{uuid.uuid4().hex}.epub"
        try:
            self._artifacts.save_bytes(filename, payload)
        except OSError as exc:
            raise PackagingError(
                f"Failed to write EPUB artifact: {exc}",
                stage="package",
                hint="Check that the output directory exists and is writable.",
            ) from exc
        return self._artifact_ref(filename)

    def _cleanup(self, job: ConversionJob) -> None:
        """Remove the job's temp input; runs on success and failure alike."""

        job.source_bytes = b""
        if job.temp_path is None:
            return
        try:
            removed = self._uploads.discard(job.temp_path.name)
        except OSError as exc:
            logger.error("Failed to remove temp input {} for job {}: {}", job.temp_path, job.id, exc)
            return
        self._log_job_event("cleanup", job, removed=removed)

    def _finish(self, job: ConversionJob, failure: BookbridgeError | None) -> None:
        """Publish the terminal status after cleanup has run."""

        def _apply(record: ConversionJob) -> None:
            record.finished_at = self._jobs.now()
            if failure is None:
                record.transition(JobStatus.DONE)
                return
            stage = failure.stage or record.status.value
            record.error = JobError(
                kind=failure.kind,
                message=f"Conversion failed during `{stage}`: {failure.detail}",
                stage=stage,
                hint=failure.hint,
            )
            record.transition(JobStatus.FAILED)

        self._jobs.update(job, _apply)
        self._log_job_event(job.status.value, job)

    def _classify_unexpected(self, job: ConversionJob, exc: Exception) -> BookbridgeError:
        """Map an unexpected stage exception to the job's error taxonomy."""

        logger.opt(exception=exc).error("Unexpected failure in job {} ({})", job.id, job.status.value)
        if job.status is JobStatus.PACKAGING:
            return PackagingError(f"Unexpected packaging failure: {exc}", stage="package")
        stage = "segment" if job.status is JobStatus.SEGMENTING else "extract"
        return ExtractionError(f"Unexpected {stage} failure: {exc}", stage=stage)

    def _validate_submission(self, data: bytes, media_type: str) -> None:
        """Check media type and size preconditions."""

        declared = (normalize_optional_string(media_type) or "").split(";")[0].strip().lower()
        accepted = tuple(item.lower() for item in self.config.accepted_media_types)
        if declared not in accepted:
            raise InvalidInputError(
                f"Unsupported media type `{media_type}`; expected: {', '.join(accepted)}.",
                stage="submit",
                hint="Only PDF files are allowed.",
            )
        if not data:
            raise InvalidInputError("Uploaded document is empty.", stage="submit")
        if len(data) > self.config.max_upload_bytes:
            limit_mb = self.config.max_upload_bytes / (1024 * 1024)
            raise InvalidInputError(
                f"File too large. Maximum size is {limit_mb:g}MB.",
                stage="submit",
                hint="Split the document or raise `max_upload_bytes`.",
            )

    @staticmethod
    def _normalize_metadata(metadata: Mapping[str, str | None] | None) -> dict[str, str]:
        """Keep non-blank title/author/description values, rejecting unknown keys."""

        if metadata is None:
            return {}
        unknown = sorted(set(metadata).difference(_METADATA_KEYS))
        if unknown:
            raise InvalidInputError(
                f"Unsupported metadata key(s): {', '.join(unknown)}.",
                stage="submit",
                hint="Supported keys: author, description, title.",
            )
        normalized: dict[str, str] = {}
        for key, value in metadata.items():
            text = normalize_optional_string(value)
            if text is not None:
                normalized[key] = text
        return normalized

    def _resolve_metadata(
        self, requested: Mapping[str, str], filename: str | None, file_size: int
    ) -> ResolvedMetadata:
        """Apply filename and placeholder fallbacks to caller metadata."""

        title = requested.get("title")
        if title is None and filename is not None:
            title = normalize_optional_string(Path(filename).stem)
        return ResolvedMetadata(
            title=title or self.config.default_title,
            author=requested.get("author") or self.config.default_author,
            description=requested.get("description", ""),
            original_filename=filename,
            file_size=file_size,
        )

    def _artifact_ref(self, filename: str) -> ArtifactRef:
        prefix = self.config.public_url_prefix.rstrip("/")
        return ArtifactRef(
            filename=filename,
            path=self._artifacts.path_for(filename),
            url=f"{prefix}/{filename}",
        )

    def _on_stage_start(self, stage_name: str, job: ConversionJob) -> None:
        if self._stage_progress_callback is not None:
            names = [name for _, name in self._STAGE_SEQUENCE]
            self._stage_progress_callback(stage_name, names.index(stage_name) + 1, len(names))
        if self._run_logger is not None:
            self._run_logger.log_stage_start(stage_name, job_id=job.id)

    def _on_stage_complete(self, stage_name: str, job: ConversionJob) -> None:
        if self._run_logger is not None:
            self._run_logger.log_stage_complete(stage_name, job_id=job.id)

    def _on_stage_failure(self, stage_name: str, job: ConversionJob, exc: Exception) -> None:
        if self._run_logger is not None:
            self._run_logger.log_stage_failure(stage_name, type(exc).__name__, job_id=job.id)

    def _log_job_event(self, event: str, job: ConversionJob, **context: object) -> None:
        if self._run_logger is not None:
            self._run_logger.log_job_event(event, job_id=job.id, **context)
