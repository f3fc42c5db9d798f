"""Structured job logging utilities.

Responsibilities:
- Emit concise, deterministic stage-level logs for conversion jobs.
- Route every line through `loguru` with a configurable sink.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic stage logs for conversion jobs.

    Each logger binds its own sink so several loggers (for example one per CLI
    invocation and one per test) never duplicate or swallow each other's lines.
    """

    def __init__(self, sink: TextIO | None = None, level: str = "INFO") -> None:
        """Attach a `loguru` sink filtered to lines emitted by this logger."""

        self._sink = sink or sys.stdout
        self._token = f"run-logger-{id(self)}"
        self._logger = _loguru_logger.bind(run_logger=self._token)
        self._handler_id = _loguru_logger.add(
            self._sink,
            format="{message}",
            level=level,
            colorize=False,
            filter=lambda record: record["extra"].get("run_logger") == self._token,
        )

    def close(self) -> None:
        """Detach this logger's sink."""

        _loguru_logger.remove(self._handler_id)

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured job log line."""

        line = f"[job] level={level} stage={stage} event={event}{_format_context(context)}"
        self._logger.log(level, line)

    def log_stage_start(self, stage: str, **context: object) -> None:
        """Emit a stage-start event."""

        self._emit("INFO", "start", stage, **context)

    def log_stage_complete(self, stage: str, **context: object) -> None:
        """Emit a stage-complete event."""

        self._emit("INFO", "complete", stage, **context)

    def log_stage_failure(self, stage: str, error_type: str, **context: object) -> None:
        """Emit a stage-failure event without sensitive payload details."""

        self._emit("ERROR", "failure", stage, error_type=error_type, **context)

    def log_job_event(self, event: str, **context: object) -> None:
        """Emit a job-level lifecycle event (submit, cleanup, terminal state)."""

        self._emit("INFO", event, "job", **context)
