"""Integration tests for the Bookbridge CLI commands."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from bookbridge.cli import app
from tests.pdf_fixtures import build_corrupt_pdf, build_text_pdf, write_pdf

CALIBRATION_YAML = """
title_key: harbor-ledger
total_pages: 149
total_duration: 5400
points:
  - {page: 1, timestamp: 0, label: Cover}
  - {page: 12, timestamp: 125, label: "Chapter 1"}
  - {page: 149, timestamp: 3500, label: Epilogue}
""".strip()


def _epubs(out_dir: Path) -> list[Path]:
    return sorted(out_dir.glob("*.epub"))


def test_convert_command_writes_epub_and_prints_summary(
    text_pdf_path: Path, tmp_path: Path
) -> None:
    runner = CliRunner()
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["convert", str(text_pdf_path), "--out", str(out_dir), "--author", "A. Archivist"],
    )

    assert result.exit_code == 0, result.output
    assert "[progress] command=convert | 1/3 stage=extract" in result.output
    assert "[progress] command=convert / 2/3 stage=segment" in result.output
    assert "[progress] command=convert - 3/3 stage=package" in result.output
    assert "Title: harbor-ledger" in result.output
    assert "Author: A. Archivist" in result.output
    assert "Chapters: 3" in result.output
    epubs = _epubs(out_dir)
    assert len(epubs) == 1
    assert f"URL: /epubs/{epubs[0].name}" in result.output
    assert list((out_dir / ".tmp").iterdir()) == []


def test_convert_command_reports_extraction_failure(tmp_path: Path) -> None:
    runner = CliRunner()
    broken = write_pdf(tmp_path / "broken.pdf", build_corrupt_pdf())

    result = runner.invoke(app, ["convert", str(broken), "--out", str(tmp_path / "out")])

    assert result.exit_code == 1
    assert "convert failed (extraction_error)" in result.output
    assert _epubs(tmp_path / "out") == []


def test_convert_command_rejects_non_pdf_media_type(tmp_path: Path) -> None:
    runner = CliRunner()
    notes = tmp_path / "notes.txt"
    notes.write_text("plain text", encoding="utf-8")

    result = runner.invoke(app, ["convert", str(notes), "--out", str(tmp_path / "out")])

    assert result.exit_code == 1
    assert "convert failed at stage `submit`: Unsupported media type" in result.output
    assert "Hint: Only PDF files are allowed." in result.output


def test_convert_command_reports_missing_input(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        app, ["convert", str(tmp_path / "missing.pdf"), "--out", str(tmp_path / "out")]
    )

    assert result.exit_code == 1
    assert "convert failed at stage `input`" in result.output


def test_convert_command_uses_yaml_config(text_pdf_path: Path, tmp_path: Path) -> None:
    runner = CliRunner()
    out_dir = tmp_path / "library"
    config_path = tmp_path / "bookbridge.yml"
    config_path.write_text(
        f"output_dir: {out_dir}\ntemp_dir: {tmp_path / 'scratch'}\npublic_url_prefix: /files/\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["convert", str(text_pdf_path), "--config", str(config_path)])

    assert result.exit_code == 0, result.output
    epubs = _epubs(out_dir)
    assert len(epubs) == 1
    assert f"URL: /files/{epubs[0].name}" in result.output


def test_commands_report_missing_config_file(text_pdf_path: Path, tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        app, ["convert", str(text_pdf_path), "--config", str(tmp_path / "missing.yml")]
    )

    assert result.exit_code == 1
    assert "convert failed at stage `config`: Config file not found" in result.output


def test_chapters_command_lists_rows_without_writing(text_pdf_path: Path, tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["chapters", str(text_pdf_path)])

    assert result.exit_code == 0, result.output
    rows = [line for line in result.output.splitlines() if line[:1].isdigit()]
    assert rows == ["1. Chapter 1", "2. Chapter 2", "3. Chapter 3"]
    assert sorted(path.name for path in tmp_path.iterdir()) == [text_pdf_path.name]


def test_list_inspect_and_delete_commands(text_pdf_path: Path, tmp_path: Path) -> None:
    runner = CliRunner()
    out_dir = tmp_path / "out"

    empty = runner.invoke(app, ["list", "--out", str(out_dir)])
    assert empty.exit_code == 0, empty.output
    assert "No EPUB artifacts found." in empty.output

    converted = runner.invoke(
        app, ["convert", str(text_pdf_path), "--out", str(out_dir), "--title", "Harbor Ledger"]
    )
    assert converted.exit_code == 0, converted.output
    epub_path = _epubs(out_dir)[0]

    listed = runner.invoke(app, ["list", "--out", str(out_dir)])
    assert listed.exit_code == 0, listed.output
    assert f"{epub_path.name}\t/epubs/{epub_path.name}" in listed.output

    inspected = runner.invoke(app, ["inspect", str(epub_path)])
    assert inspected.exit_code == 0, inspected.output
    assert "Title: Harbor Ledger" in inspected.output
    assert "Author: Unknown Author" in inspected.output
    assert "3. Chapter 3" in inspected.output

    deleted = runner.invoke(app, ["delete", epub_path.name, "--out", str(out_dir)])
    assert deleted.exit_code == 0, deleted.output
    assert f"Deleted: {epub_path.name}" in deleted.output
    assert _epubs(out_dir) == []

    missing = runner.invoke(app, ["delete", epub_path.name, "--out", str(out_dir)])
    assert missing.exit_code == 1
    assert "delete failed at stage `delete`: Artifact not found" in missing.output


def test_inspect_command_reports_unreadable_epub(tmp_path: Path) -> None:
    runner = CliRunner()
    broken = tmp_path / "broken.epub"
    broken.write_bytes(b"not a zip")

    result = runner.invoke(app, ["inspect", str(broken)])

    assert result.exit_code == 1
    assert "inspect failed at stage `inspect`" in result.output


def test_sync_commands_map_between_pages_and_seconds(tmp_path: Path) -> None:
    runner = CliRunner()
    calibration = tmp_path / "harbor-ledger.yaml"
    calibration.write_text(CALIBRATION_YAML, encoding="utf-8")

    page_result = runner.invoke(app, ["sync", "page", str(calibration), "200"])
    time_result = runner.invoke(app, ["sync", "time", str(calibration), "128.5"])

    assert page_result.exit_code == 0, page_result.output
    assert "Timestamp (s): 4112.0" in page_result.output
    assert "Chapter: Epilogue" in page_result.output
    assert "Method: extrapolated" in page_result.output

    assert time_result.exit_code == 0, time_result.output
    assert "Page: 12" in time_result.output
    assert "Chapter: Chapter 1" in time_result.output
    assert "Method: exact" in time_result.output


def test_sync_command_warns_for_empty_tables(tmp_path: Path) -> None:
    runner = CliRunner()
    calibration = tmp_path / "empty.yaml"
    calibration.write_text("points: []\n", encoding="utf-8")

    result = runner.invoke(app, ["sync", "time", str(calibration), "2700"])

    assert result.exit_code == 0, result.output
    assert "Page: 74" in result.output
    assert "Method: global_estimate" in result.output
    assert "Warning: out_of_range_query" in result.output


def test_sync_command_reports_invalid_calibration(tmp_path: Path) -> None:
    runner = CliRunner()
    calibration = tmp_path / "dup.yaml"
    calibration.write_text(
        "points:\n  - {page: 2, timestamp: 1, label: A}\n  - {page: 2, timestamp: 5, label: B}\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["sync", "page", str(calibration), "2"])

    assert result.exit_code == 1
    assert "sync page failed at stage `calibration`" in result.output


def test_sync_time_command_rejects_non_finite_seconds(tmp_path: Path) -> None:
    runner = CliRunner()
    calibration = tmp_path / "harbor-ledger.yaml"
    calibration.write_text(CALIBRATION_YAML, encoding="utf-8")

    result = runner.invoke(app, ["sync", "time", str(calibration), "nan"])

    assert result.exit_code == 1
    assert "sync time failed at stage `sync`" in result.output
