"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
conversion summaries, chapter listing rows, and synchronization results.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import BookbridgeError
from .models.datatypes import ArtifactRef, Chapter, JobError, JobResult, SyncResult


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, BookbridgeError):
        stage = exc.stage or exc.kind.value
        typer.secho(
            f"{command_name} failed at stage `{stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def exit_with_job_error(command_name: str, error: JobError) -> NoReturn:
    """Print a failed job's error record and exit with code 1."""

    typer.secho(
        f"{command_name} failed ({error.kind.value}): {error.message}",
        fg=typer.colors.RED,
        err=True,
    )
    if error.hint:
        typer.secho(f"Hint: {error.hint}", fg=typer.colors.YELLOW, err=True)
    raise typer.Exit(code=1)


def echo_conversion_summary(result: JobResult) -> None:
    """Print artifact location, resolved metadata, and chapter count."""

    typer.echo(f"Job id: {result.job_id}")
    if result.artifact is not None:
        typer.echo(f"EPUB: {result.artifact.path}")
        typer.echo(f"URL: {result.artifact.url}")
    if result.metadata is not None:
        typer.echo(f"Title: {result.metadata.title}")
        typer.echo(f"Author: {result.metadata.author}")
        typer.echo(f"Source size (bytes): {result.metadata.file_size}")
    typer.echo(f"Chapters: {result.chapter_count}")


def echo_chapter_list(chapters: list[Chapter]) -> None:
    """Print compact deterministic chapter index/title rows."""

    for chapter in sorted(chapters, key=lambda item: item.index):
        typer.echo(f"{chapter.index}. {chapter.title}")


def echo_artifact_list(artifacts: list[ArtifactRef]) -> None:
    """Print one `filename url` row per artifact."""

    if not artifacts:
        typer.echo("No EPUB artifacts found.")
        return
    for artifact in artifacts:
        typer.echo(f"{artifact.filename}\t{artifact.url}")


def echo_sync_result(result: SyncResult) -> None:
    """Print a mapped position with its label and method."""

    typer.echo(f"Page: {result.page}")
    typer.echo(f"Timestamp (s): {result.timestamp:.1f}")
    typer.echo(f"Chapter: {result.label}")
    typer.echo(f"Method: {result.method}")
    if result.warning is not None:
        typer.secho(
            f"Warning: {result.warning.value} (low-precision global estimate)",
            fg=typer.colors.YELLOW,
            err=True,
        )
