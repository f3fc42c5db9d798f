"""EPUB packaging helpers.

Responsibilities:
- Emit a valid EPUB byte stream (container, manifest, spine, navigation, one
  XHTML resource per chapter) from ordered chapters and book metadata.
- Read packaged documents back for inspection and round-trip checks.
"""

from __future__ import annotations

import html
import io
import uuid
import warnings
import zipfile
from pathlib import Path

from ebooklib import epub

from ..errors import ExtractionError, PackagingError
from ..models.datatypes import BookMetadata, Chapter
from ..parsing import normalize_optional_string

warnings.filterwarnings("ignore", category=UserWarning, module="ebooklib.epub")
warnings.filterwarnings("ignore", category=FutureWarning, module="ebooklib.epub")

DEFAULT_AUTHOR = "Unknown Author"

_STYLESHEET = """body { font-family: serif; line-height: 1.5; margin: 0 5%; }
h2 { text-align: center; margin: 1.5em 0 1em; }
p { text-indent: 1.2em; margin: 0 0 0.8em; white-space: pre-line; }
"""


class EpubPackageBuilder:
    """Build EPUB documents from chapter records using `ebooklib`."""

    def __init__(self, default_author: str = DEFAULT_AUTHOR) -> None:
        """Initialize the author placeholder used when metadata omits one."""

        self.default_author = default_author

    def build(self, chapters: list[Chapter], metadata: BookMetadata) -> bytes:
        """Return EPUB bytes for chapters in their given order.

        Raises:
            PackagingError: If chapters are empty, the title is blank, or the
                container cannot be finalized.
        """

        if not chapters:
            raise PackagingError(
                "Cannot package a document without chapters.",
                stage="package",
            )
        title = normalize_optional_string(metadata.title)
        if title is None:
            raise PackagingError(
                "Packaged documents require a non-empty title.",
                stage="package",
                hint="Pass a title or upload a file with a meaningful filename.",
            )
        author = normalize_optional_string(metadata.author) or self.default_author
        language = normalize_optional_string(metadata.language) or "en"

        book = epub.EpubBook()
        book.set_identifier(self._identifier(title, author, chapters))
        book.set_title(title)
        book.set_language(language)
        book.add_author(author)
        description = normalize_optional_string(metadata.description)
        if description is not None:
            book.add_metadata("DC", "description", description)

        stylesheet = epub.EpubItem(
            uid="style_default",
            file_name="style/default.css",
            media_type="text/css",
            content=_STYLESHEET.encode("utf-8"),
        )
        book.add_item(stylesheet)

        documents: list[epub.EpubHtml] = []
        for position, chapter in enumerate(chapters, start=1):
            document = epub.EpubHtml(
                title=chapter.title,
                file_name=f"chapter_{position:03d}.xhtml",
                lang=language,
                uid=f"chapter_{position:03d}",
            )
            document.content = (
                f"<html><head><title>{html.escape(chapter.title)}</title></head>"
                f"<body>{chapter.markup}</body></html>"
            ).encode("utf-8")
            document.add_item(stylesheet)
            book.add_item(document)
            documents.append(document)

        book.toc = tuple(documents)
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = ["nav", *documents]

        buffer = io.BytesIO()
        try:
            epub.write_epub(buffer, book, {})
        except Exception as exc:
            raise PackagingError(
                f"Failed to write EPUB container: {exc}",
                stage="package",
            ) from exc

        payload = buffer.getvalue()
        if not zipfile.is_zipfile(io.BytesIO(payload)):
            raise PackagingError(
                "EPUB writer produced an incomplete container.",
                stage="package",
            )
        return payload

    @staticmethod
    def _identifier(title: str, author: str, chapters: list[Chapter]) -> str:
        """Derive a stable `urn:uuid` identifier from title, author, and chapter titles."""

        seed = "\n".join([title, author, *(chapter.title for chapter in chapters)])
        return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, seed)}"


class EpubPackageReader:
    """Read EPUB documents produced by `EpubPackageBuilder`."""

    def chapter_titles(self, epub_path: Path) -> list[str]:
        """Return table-of-contents titles in reading order."""

        book = self._read(epub_path)
        titles: list[str] = []
        self._collect_titles(book.toc, titles)
        return titles

    def metadata(self, epub_path: Path) -> dict[str, str]:
        """Return Dublin Core title, creator, language, and description values."""

        book = self._read(epub_path)
        values: dict[str, str] = {}
        for key in ("title", "creator", "language", "description"):
            entries = book.get_metadata("DC", key)
            if entries:
                values[key] = str(entries[0][0])
        return values

    def _read(self, epub_path: Path) -> epub.EpubBook:
        if not epub_path.exists():
            raise ExtractionError(f"EPUB file not found: {epub_path}", stage="inspect")
        try:
            return epub.read_epub(str(epub_path))
        except Exception as exc:
            raise ExtractionError(
                f"Failed to read EPUB `{epub_path}`: {exc}",
                stage="inspect",
            ) from exc

    def _collect_titles(self, entries: object, titles: list[str]) -> None:
        """Flatten nested ebooklib TOC entries (links, sections, tuples)."""

        for entry in entries:  # type: ignore[attr-defined]
            if isinstance(entry, (tuple, list)):
                section, children = entry[0], entry[1] if len(entry) > 1 else []
                title = getattr(section, "title", None)
                if title:
                    titles.append(str(title))
                self._collect_titles(children, titles)
                continue
            title = getattr(entry, "title", None)
            if title:
                titles.append(str(title))
