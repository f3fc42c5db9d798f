"""Shared pytest fixtures for the full Bookbridge test suite."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from bookbridge.config import BookbridgeConfig
from tests.pdf_fixtures import build_text_pdf, write_pdf


@pytest.fixture(autouse=True)
def _force_pypdf_extraction(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make extraction deterministic regardless of a locally installed `pdftotext`."""

    def _run_missing_pdftotext(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = kwargs
        raise FileNotFoundError(str(args[0]))

    monkeypatch.setattr(subprocess, "run", _run_missing_pdftotext)


@pytest.fixture
def bookbridge_config(tmp_path: Path) -> BookbridgeConfig:
    """Provide a config whose output and temp directories live under `tmp_path`."""

    return BookbridgeConfig(
        output_dir=tmp_path / "epubs",
        temp_dir=tmp_path / "tmp",
    )


@pytest.fixture
def text_pdf_path(tmp_path: Path) -> Path:
    """Write the three-chapter sample PDF and return its path."""

    return write_pdf(tmp_path / "harbor-ledger.pdf", build_text_pdf())
