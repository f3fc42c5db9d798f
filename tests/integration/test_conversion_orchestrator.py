"""Integration tests for conversion job lifecycle, cleanup, and artifact management."""

from __future__ import annotations

import io
import threading
from dataclasses import replace
from pathlib import Path

import pytest

from bookbridge.config import BookbridgeConfig
from bookbridge.errors import ErrorKind, InvalidInputError, NotFoundError
from bookbridge.io.epub_builder import EpubPackageBuilder, EpubPackageReader
from bookbridge.io.pdf_text_extractor import PdfTextExtractor
from bookbridge.models.datatypes import BookMetadata, Chapter, JobStatus
from bookbridge.pipeline import ConversionOrchestrator
from bookbridge.telemetry.logger import RunLogger
from tests.pdf_fixtures import build_blank_pdf, build_corrupt_pdf, build_text_pdf


def _temp_files(config: BookbridgeConfig) -> list[Path]:
    if not config.temp_dir.exists():
        return []
    return sorted(config.temp_dir.iterdir())


def test_text_pdf_converts_to_epub_with_one_chapter_per_page(
    bookbridge_config: BookbridgeConfig,
) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        result = orchestrator.run_conversion(build_text_pdf(), filename="harbor-ledger.pdf")

    assert result.status is JobStatus.DONE
    assert result.error is None
    assert result.chapter_count == 3
    assert result.artifact is not None
    assert result.artifact.path.is_file()
    assert result.artifact.path.parent == bookbridge_config.output_dir
    assert result.artifact.filename.endswith(".epub")
    assert result.artifact.url == f"/epubs/{result.artifact.filename}"
    assert EpubPackageReader().chapter_titles(result.artifact.path) == [
        "Chapter 1",
        "Chapter 2",
        "Chapter 3",
    ]
    assert _temp_files(bookbridge_config) == []


def test_metadata_defaults_come_from_filename_and_placeholders(
    bookbridge_config: BookbridgeConfig,
) -> None:
    payload = build_text_pdf()
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        from_filename = orchestrator.run_conversion(payload, filename="harbor-ledger.pdf")
        anonymous = orchestrator.run_conversion(payload)
        explicit = orchestrator.run_conversion(
            payload,
            {"title": " Tides ", "author": "A. Archivist", "description": "Debts and storms."},
            filename="ignored.pdf",
        )

    assert from_filename.metadata is not None
    assert from_filename.metadata.title == "harbor-ledger"
    assert from_filename.metadata.author == "Unknown Author"
    assert from_filename.metadata.description == ""
    assert from_filename.metadata.original_filename == "harbor-ledger.pdf"
    assert from_filename.metadata.file_size == len(payload)

    assert anonymous.metadata is not None
    assert anonymous.metadata.title == "Converted Book"

    assert explicit.metadata is not None
    assert explicit.metadata.title == "Tides"
    assert explicit.artifact is not None
    stored = EpubPackageReader().metadata(explicit.artifact.path)
    assert stored["title"] == "Tides"
    assert stored["creator"] == "A. Archivist"
    assert stored["description"] == "Debts and storms."


def test_unparseable_document_fails_with_extraction_error_and_no_temp_file(
    bookbridge_config: BookbridgeConfig,
) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        result = orchestrator.run_conversion(build_corrupt_pdf(), filename="broken.pdf")

    assert result.status is JobStatus.FAILED
    assert result.artifact is None
    assert result.error is not None
    assert result.error.kind is ErrorKind.EXTRACTION
    assert result.error.stage == "extract"
    assert "Conversion failed during `extract`" in result.error.message
    assert _temp_files(bookbridge_config) == []
    assert not bookbridge_config.output_dir.exists() or not any(
        bookbridge_config.output_dir.iterdir()
    )


def test_non_pdf_bytes_declared_as_pdf_fail_extraction(
    bookbridge_config: BookbridgeConfig,
) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        result = orchestrator.run_conversion(b"just some text", filename="notes.pdf")

    assert result.status is JobStatus.FAILED
    assert result.error is not None
    assert result.error.kind is ErrorKind.EXTRACTION
    assert _temp_files(bookbridge_config) == []


def test_document_without_text_still_produces_one_placeholder_chapter(
    bookbridge_config: BookbridgeConfig,
) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        result = orchestrator.run_conversion(build_blank_pdf(page_count=3), filename="scan.pdf")

    assert result.status is JobStatus.DONE
    assert result.chapter_count == 1
    assert result.artifact is not None
    assert EpubPackageReader().chapter_titles(result.artifact.path) == ["Document"]


@pytest.mark.parametrize(
    ("payload", "media_type", "message"),
    [
        (b"%PDF-1.7", "text/plain", "Unsupported media type"),
        (b"%PDF-1.7", "image/png", "Unsupported media type"),
        (b"", "application/pdf", "empty"),
    ],
)
def test_invalid_submissions_are_rejected_before_touching_disk(
    bookbridge_config: BookbridgeConfig, payload: bytes, media_type: str, message: str
) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        with pytest.raises(InvalidInputError, match=message) as exc_info:
            orchestrator.submit_conversion(payload, media_type=media_type)

    assert exc_info.value.kind is ErrorKind.INVALID_INPUT
    assert exc_info.value.stage == "submit"
    assert not bookbridge_config.temp_dir.exists()
    assert not bookbridge_config.output_dir.exists()


def test_media_type_parameters_and_case_are_ignored(bookbridge_config: BookbridgeConfig) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        result = orchestrator.run_conversion(
            build_text_pdf(), media_type="Application/PDF; charset=binary"
        )

    assert result.status is JobStatus.DONE


def test_oversized_payload_is_rejected(bookbridge_config: BookbridgeConfig) -> None:
    config = replace(bookbridge_config, max_upload_bytes=1024)

    with ConversionOrchestrator(config) as orchestrator:
        with pytest.raises(InvalidInputError, match="File too large"):
            orchestrator.submit_conversion(b"%PDF-" + b"0" * 1024)


def test_unknown_metadata_keys_are_rejected(bookbridge_config: BookbridgeConfig) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        with pytest.raises(InvalidInputError, match="Unsupported metadata key\\(s\\): narrator"):
            orchestrator.submit_conversion(build_text_pdf(), {"narrator": "Someone"})


def test_invalid_config_is_reported_as_invalid_input(tmp_path: Path) -> None:
    with pytest.raises(InvalidInputError, match="max_workers") as exc_info:
        ConversionOrchestrator(BookbridgeConfig(output_dir=tmp_path, max_workers=0))

    assert exc_info.value.stage == "config"


def test_terminal_result_is_handed_out_once(bookbridge_config: BookbridgeConfig) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        handle = orchestrator.submit_conversion(build_text_pdf())
        assert orchestrator.wait_for_job(handle).status is JobStatus.DONE

        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.get_job_result(handle)

    assert exc_info.value.kind is ErrorKind.NOT_FOUND


def test_terminal_result_expires_after_retention_window(
    bookbridge_config: BookbridgeConfig,
) -> None:
    now = [0.0]
    orchestrator = ConversionOrchestrator(
        replace(bookbridge_config, job_retention_seconds=60),
        clock=lambda: now[0],
    )
    kept = orchestrator.submit_conversion(build_text_pdf())
    expired = orchestrator.submit_conversion(build_text_pdf())
    orchestrator.shutdown(wait=True)

    now[0] = 30.0
    assert orchestrator.get_job_result(kept).status is JobStatus.DONE

    now[0] = 61.0
    with pytest.raises(NotFoundError):
        orchestrator.get_job_result(expired)


class _BlockingExtractor(PdfTextExtractor):
    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def extract(self, pdf_path: Path) -> str:
        self.started.set()
        self.release.wait(timeout=10)
        return super().extract(pdf_path)


def test_running_job_reports_progress_without_being_removed(
    bookbridge_config: BookbridgeConfig,
) -> None:
    extractor = _BlockingExtractor()
    with ConversionOrchestrator(bookbridge_config, extractor=extractor) as orchestrator:
        handle = orchestrator.submit_conversion(build_text_pdf(), filename="slow.pdf")
        assert extractor.started.wait(timeout=10)

        snapshot = orchestrator.get_job_result(handle)
        waited = orchestrator.wait_for_job(handle, timeout=0.05)
        temp_during_run = _temp_files(bookbridge_config)

        extractor.release.set()
        final = orchestrator.wait_for_job(handle)

    assert snapshot.status is JobStatus.EXTRACTING
    assert snapshot.metadata is not None
    assert snapshot.metadata.title == "slow"
    assert waited.status is JobStatus.EXTRACTING
    assert [path.name for path in temp_during_run] == [f"{handle.job_id}.pdf"]
    assert final.status is JobStatus.DONE
    assert _temp_files(bookbridge_config) == []


class _ExplodingBuilder(EpubPackageBuilder):
    def build(self, chapters: list[Chapter], metadata: BookMetadata) -> bytes:
        raise RuntimeError("zip writer crashed")


def test_unexpected_packaging_failure_is_classified_and_cleaned_up(
    bookbridge_config: BookbridgeConfig,
) -> None:
    with ConversionOrchestrator(bookbridge_config, builder=_ExplodingBuilder()) as orchestrator:
        result = orchestrator.run_conversion(build_text_pdf())

    assert result.status is JobStatus.FAILED
    assert result.error is not None
    assert result.error.kind is ErrorKind.PACKAGING
    assert result.error.stage == "package"
    assert "zip writer crashed" in result.error.message
    assert result.chapter_count == 3
    assert _temp_files(bookbridge_config) == []


def test_concurrent_jobs_produce_distinct_artifacts(bookbridge_config: BookbridgeConfig) -> None:
    config = replace(bookbridge_config, max_workers=4)
    with ConversionOrchestrator(config) as orchestrator:
        handles = [
            orchestrator.submit_conversion(build_text_pdf(), filename=f"book-{index}.pdf")
            for index in range(6)
        ]
        results = [orchestrator.wait_for_job(handle) for handle in handles]

    assert len({handle.job_id for handle in handles}) == 6
    assert all(result.status is JobStatus.DONE for result in results)
    filenames = {result.artifact.filename for result in results if result.artifact is not None}
    assert len(filenames) == 6
    assert [result.metadata.title for result in results if result.metadata is not None] == [
        f"book-{index}" for index in range(6)
    ]
    assert _temp_files(config) == []


def test_list_and_delete_artifacts(bookbridge_config: BookbridgeConfig) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        assert orchestrator.list_artifacts() == []
        first = orchestrator.run_conversion(build_text_pdf())
        second = orchestrator.run_conversion(build_text_pdf())
        assert first.artifact is not None and second.artifact is not None
        (bookbridge_config.output_dir / "notes.txt").write_text("not an epub", encoding="utf-8")

        listed = orchestrator.list_artifacts()
        assert [ref.filename for ref in listed] == sorted(
            [first.artifact.filename, second.artifact.filename]
        )

        orchestrator.delete_artifact(first.artifact)
        orchestrator.delete_artifact(second.artifact.filename)

        assert orchestrator.list_artifacts() == []
        with pytest.raises(NotFoundError, match="Artifact not found"):
            orchestrator.delete_artifact(first.artifact)
        with pytest.raises(InvalidInputError, match="Invalid artifact name"):
            orchestrator.delete_artifact("notes.txt")
        with pytest.raises(InvalidInputError, match="Invalid artifact name"):
            orchestrator.delete_artifact("../outside.epub")


def test_stage_progress_and_run_logger_events(bookbridge_config: BookbridgeConfig) -> None:
    progress: list[tuple[str, int, int]] = []
    sink = io.StringIO()
    run_logger = RunLogger(sink=sink)
    with ConversionOrchestrator(
        bookbridge_config,
        run_logger=run_logger,
        stage_progress_callback=lambda name, index, total: progress.append((name, index, total)),
    ) as orchestrator:
        handle = orchestrator.submit_conversion(build_text_pdf())
        orchestrator.wait_for_job(handle)
    run_logger.close()

    assert progress == [("extract", 1, 3), ("segment", 2, 3), ("package", 3, 3)]
    lines = sink.getvalue().splitlines()
    job_token = f"job_id={handle.job_id}"
    assert all(job_token in line for line in lines)
    events = [line.split(" job_id=")[0] for line in lines]
    assert events[0] == "[job] level=INFO stage=job event=submitted"
    assert "[job] level=INFO stage=extract event=start" in events
    assert "[job] level=INFO stage=package event=complete" in events
    assert events.index("[job] level=INFO stage=job event=cleanup") < events.index(
        "[job] level=INFO stage=job event=done"
    )


def test_health_reports_service_state(bookbridge_config: BookbridgeConfig) -> None:
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        health = orchestrator.health()

    assert health["status"] == "ok"
    assert health["output_dir"] == str(bookbridge_config.output_dir)
    assert health["output_dir_exists"] is False
    assert health["active_jobs"] == 0


def test_expired_jobs_release_their_futures(bookbridge_config: BookbridgeConfig) -> None:
    now = [0.0]
    orchestrator = ConversionOrchestrator(
        replace(bookbridge_config, job_retention_seconds=60),
        clock=lambda: now[0],
    )
    for _ in range(5):
        orchestrator.submit_conversion(build_text_pdf())
    orchestrator.shutdown(wait=True)

    now[0] = 120.0
    health = orchestrator.health()

    assert health["active_jobs"] == 0
    assert orchestrator._futures == {}


def test_submit_after_shutdown_is_rejected_without_leaking_a_job(
    bookbridge_config: BookbridgeConfig,
) -> None:
    orchestrator = ConversionOrchestrator(bookbridge_config)
    orchestrator.shutdown()

    with pytest.raises(InvalidInputError) as exc_info:
        orchestrator.submit_conversion(build_text_pdf())

    assert exc_info.value.kind is ErrorKind.INVALID_INPUT
    assert exc_info.value.stage == "submit"
    assert orchestrator.health()["active_jobs"] == 0


def test_partially_written_temp_input_is_removed_when_staging_fails(
    bookbridge_config: BookbridgeConfig,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_write_bytes = Path.write_bytes

    def _write_then_fail(self: Path, data: bytes) -> int:
        original_write_bytes(self, data[:10])
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(Path, "write_bytes", _write_then_fail)
    with ConversionOrchestrator(bookbridge_config) as orchestrator:
        result = orchestrator.run_conversion(build_text_pdf())

    assert result.status is JobStatus.FAILED
    assert result.error is not None
    assert result.error.kind is ErrorKind.EXTRACTION
    assert "No space left on device" in result.error.message
    assert _temp_files(bookbridge_config) == []
