"""Command-line interface for Bookbridge.

Responsibilities:
- Expose user-facing commands for conversion, artifact management, EPUB
  inspection, and page/audio position lookups.
- Convert CLI arguments into `BookbridgeConfig` and run the orchestrator.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import replace
import mimetypes
from pathlib import Path
from typing import Annotated

import typer

from .cli_rendering import (
    echo_artifact_list,
    echo_chapter_list,
    echo_conversion_summary,
    echo_sync_result,
    exit_with_command_error,
    exit_with_job_error,
)
from .config import BookbridgeConfig, ConfigLoader
from .errors import InvalidInputError
from .io.epub_builder import EpubPackageReader
from .models.datatypes import JobStatus
from .pipeline import ConversionOrchestrator
from .sync import CalibrationRegistry
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="bookbridge",
    no_args_is_help=True,
    help="Bookbridge CLI.",
)
sync_app = typer.Typer(
    no_args_is_help=True,
    help="Map between page numbers and audio timestamps.",
)
app.add_typer(sync_app, name="sync")

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file with command defaults."),
]
OutOption = Annotated[
    Path | None,
    typer.Option("--out", help="EPUB output directory (overrides config file value)."),
]


class BuildProgressIndicator:
    """Render deterministic per-stage progress lines for long-running commands."""

    _SPINNER_FRAMES = "|/-\\"

    def __init__(self, command_name: str) -> None:
        self._command_name = command_name

    def on_stage_start(self, stage_name: str, stage_index: int, stage_total: int) -> None:
        """Print one progress line for a stage start transition."""

        spinner = self._SPINNER_FRAMES[(stage_index - 1) % len(self._SPINNER_FRAMES)]
        typer.echo(
            f"[progress] command={self._command_name} "
            f"{spinner} {stage_index}/{stage_total} stage={stage_name}"
        )


def _load_yaml_config(config_path: Path) -> BookbridgeConfig:
    """Load a YAML config file and map failures to stage errors."""

    try:
        return ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise InvalidInputError(
            f"Config file not found: `{config_path}`.",
            stage="config",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise InvalidInputError(
            f"Invalid config file `{config_path}`: {exc}",
            stage="config",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except Exception as exc:
        raise InvalidInputError(
            f"Failed to load config file `{config_path}`: {exc}",
            stage="config",
            hint="Verify YAML syntax and file permissions.",
        ) from exc


def _resolve_config(config_file: Path | None, out: Path | None) -> BookbridgeConfig:
    """Resolve effective config from YAML or environment defaults plus CLI overrides."""

    if config_file is not None:
        config = _load_yaml_config(config_file)
    else:
        try:
            config = ConfigLoader.from_env()
        except ValueError as exc:
            raise InvalidInputError(
                str(exc),
                stage="config",
                hint="Fix or unset the `BOOKBRIDGE_*` environment variable.",
            ) from exc
    if out is not None:
        config = replace(config, output_dir=out, temp_dir=out / ".tmp")
    return config


def _read_input(input_pdf: Path) -> bytes:
    try:
        return input_pdf.read_bytes()
    except OSError as exc:
        raise InvalidInputError(
            f"Cannot read input file `{input_pdf}`: {exc}",
            stage="input",
            hint="Check the path and file permissions.",
        ) from exc


@app.command("convert")
def convert_command(
    input_pdf: Annotated[Path, typer.Argument(help="Path to source PDF.")],
    title: Annotated[
        str | None,
        typer.Option("--title", help="Book title (defaults to the file name)."),
    ] = None,
    author: Annotated[str | None, typer.Option("--author", help="Book author.")] = None,
    description: Annotated[
        str | None, typer.Option("--description", help="Book description.")
    ] = None,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Convert a PDF into an EPUB."""

    run_logger: RunLogger | None = None
    try:
        config = _resolve_config(config_file, out)
        payload = _read_input(input_pdf)
        media_type = mimetypes.guess_type(input_pdf.name)[0] or "application/octet-stream"
        progress = BuildProgressIndicator(command_name="convert")
        run_logger = RunLogger()
        with ConversionOrchestrator(
            config,
            run_logger=run_logger,
            stage_progress_callback=progress.on_stage_start,
        ) as orchestrator:
            result = orchestrator.run_conversion(
                payload,
                {"title": title, "author": author, "description": description},
                filename=input_pdf.name,
                media_type=media_type,
            )
    except Exception as exc:
        exit_with_command_error("convert", exc)
    finally:
        if run_logger is not None:
            run_logger.close()

    if result.status is JobStatus.FAILED and result.error is not None:
        exit_with_job_error("convert", result.error)
    echo_conversion_summary(result)


@app.command("chapters")
def chapters_command(
    input_pdf: Annotated[Path, typer.Argument(help="Path to source PDF.")],
    config_file: ConfigOption = None,
) -> None:
    """List the chapters a PDF would be split into, without writing anything."""

    try:
        config = _resolve_config(config_file, None)
        with ConversionOrchestrator(config) as orchestrator:
            chapters = orchestrator.preview_chapters(input_pdf)
    except Exception as exc:
        exit_with_command_error("chapters", exc)

    echo_chapter_list(chapters)


@app.command("list")
def list_command(
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """List converted EPUB artifacts."""

    try:
        config = _resolve_config(config_file, out)
        with ConversionOrchestrator(config) as orchestrator:
            artifacts = orchestrator.list_artifacts()
    except Exception as exc:
        exit_with_command_error("list", exc)

    echo_artifact_list(artifacts)


@app.command("delete")
def delete_command(
    filename: Annotated[str, typer.Argument(help="Artifact filename, e.g. `<id>.epub`.")],
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Delete a converted EPUB artifact."""

    try:
        config = _resolve_config(config_file, out)
        with ConversionOrchestrator(config) as orchestrator:
            orchestrator.delete_artifact(filename)
    except Exception as exc:
        exit_with_command_error("delete", exc)

    typer.echo(f"Deleted: {filename}")


@app.command("inspect")
def inspect_command(
    epub_path: Annotated[Path, typer.Argument(help="Path to an EPUB file.")],
) -> None:
    """Print EPUB metadata and table-of-contents titles."""

    reader = EpubPackageReader()
    try:
        metadata = reader.metadata(epub_path)
        titles = reader.chapter_titles(epub_path)
    except Exception as exc:
        exit_with_command_error("inspect", exc)

    for key, label in (
        ("title", "Title"),
        ("creator", "Author"),
        ("language", "Language"),
        ("description", "Description"),
    ):
        if metadata.get(key):
            typer.echo(f"{label}: {metadata[key]}")
    for position, title in enumerate(titles, start=1):
        typer.echo(f"{position}. {title}")


@sync_app.command("page")
def sync_page_command(
    calibration: Annotated[Path, typer.Argument(help="Calibration table YAML file.")],
    page: Annotated[int, typer.Argument(help="Page number to map.")],
    config_file: ConfigOption = None,
) -> None:
    """Map a page number to an audio timestamp."""

    try:
        config = _resolve_config(config_file, None)
        registry = CalibrationRegistry(config.sync)
        result = registry.page_to_time(registry.load_file(calibration), page)
    except Exception as exc:
        exit_with_command_error("sync page", exc)

    echo_sync_result(result)


@sync_app.command("time")
def sync_time_command(
    calibration: Annotated[Path, typer.Argument(help="Calibration table YAML file.")],
    seconds: Annotated[float, typer.Argument(help="Audio position in seconds.")],
    config_file: ConfigOption = None,
) -> None:
    """Map an audio timestamp to a page number."""

    try:
        config = _resolve_config(config_file, None)
        registry = CalibrationRegistry(config.sync)
        result = registry.time_to_page(registry.load_file(calibration), seconds)
    except Exception as exc:
        exit_with_command_error("sync time", exc)

    echo_sync_result(result)


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
