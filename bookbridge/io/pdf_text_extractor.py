"""PDF text extraction.

Responsibilities:
- Decode a paginated PDF into one flat text stream.
- Prefer poppler's `pdftotext`, falling back to `pypdf` when it is unavailable.
- Distinguish unreadable input (`ExtractionError`) from a valid document
  that simply carries no text (empty string).
"""

from __future__ import annotations

import io
import shutil
import subprocess
from pathlib import Path
from typing import BinaryIO

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ..errors import ExtractionError

_PDF_MAGIC = b"%PDF-"
_HEADER_SEARCH_BYTES = 1024
_PAGE_SEPARATOR = "\n\n"


class PdfTextExtractor:
    """Extractor for text-based PDFs using `pdftotext` with a `pypdf` fallback."""

    def extract(self, pdf_path: Path) -> str:
        """Extract all text from a PDF file.

        Pages are joined with a blank line so page breaks act as block
        boundaries for segmentation. Returns an empty string for a well-formed
        document without a text layer.
        """

        return _PAGE_SEPARATOR.join(page for page in self.extract_pages(pdf_path) if page).strip()

    def extract_bytes(self, data: bytes) -> str:
        """Extract all text from an in-memory PDF byte stream using `pypdf`."""

        self._check_header(data, "<memory>")
        pages = self._read_pages_with_pypdf(io.BytesIO(data), "<memory>")
        return _PAGE_SEPARATOR.join(page for page in pages if page).strip()

    def extract_pages(self, pdf_path: Path) -> list[str]:
        """Extract text per page from a PDF file."""

        if not pdf_path.exists():
            raise ExtractionError(f"Input PDF not found: {pdf_path}", stage="extract")
        with pdf_path.open("rb") as handle:
            self._check_header(handle.read(_HEADER_SEARCH_BYTES), str(pdf_path))

        try:
            output = self._run_pdftotext(pdf_path)
        except FileNotFoundError:
            return self._extract_pages_with_pypdf(pdf_path)
        return [page.strip() for page in output.split("\f")]

    def _run_pdftotext(self, pdf_path: Path) -> str:
        """Run `pdftotext` over the whole document; form feeds separate pages."""

        command = [shutil.which("pdftotext") or "pdftotext", "-enc", "UTF-8", str(pdf_path), "-"]
        result = subprocess.run(
            command,
            check=False,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            details = result.stderr.strip() or "unknown error"
            raise ExtractionError(
                f"pdftotext failed for {pdf_path}: {details}",
                stage="extract",
                hint="Verify the upload is a complete, unencrypted PDF.",
            )

        text = result.stdout
        if text.endswith("\f"):
            text = text[:-1]
        return text

    def _extract_pages_with_pypdf(self, pdf_path: Path) -> list[str]:
        """Extract per-page text with `pypdf` when system PDF tools are unavailable."""

        with pdf_path.open("rb") as handle:
            return self._read_pages_with_pypdf(handle, str(pdf_path))

    def _read_pages_with_pypdf(self, stream: BinaryIO, label: str) -> list[str]:
        """Read every page of a PDF stream and normalize page text."""

        try:
            reader = PdfReader(stream)
            pages = [
                (page.extract_text() or "").replace("\f", "\n").strip() for page in reader.pages
            ]
        except (PyPdfError, ValueError, KeyError, TypeError, IndexError) as exc:
            raise ExtractionError(
                f"Failed to parse PDF {label}: {exc}",
                stage="extract",
                hint="Verify the upload is a complete, unencrypted PDF.",
            ) from exc
        return pages

    @staticmethod
    def _check_header(head: bytes, label: str) -> None:
        """Reject byte streams that do not carry a PDF header."""

        if _PDF_MAGIC not in head[:_HEADER_SEARCH_BYTES]:
            raise ExtractionError(
                f"Input is not a PDF document: {label}",
                stage="extract",
                hint="Upload a file that starts with a `%PDF-` header.",
            )
