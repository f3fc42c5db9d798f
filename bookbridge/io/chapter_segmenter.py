"""Chapter segmentation logic.

Responsibilities:
- Convert flat extracted text into ordered chapter records.
- Drop short noise blocks such as running headers and page numbers.
- Guarantee at least one chapter for every input, including empty text.
"""

from __future__ import annotations

import html
import re

from ..models.datatypes import Chapter


class ChapterSegmenter:
    """Split flat document text into sequentially numbered chapters."""

    _BLOCK_BOUNDARY_RE = re.compile(r"\n\s*\n")

    def __init__(
        self,
        min_block_chars: int = 50,
        placeholder_title: str = "Document",
        placeholder_body: str = (
            "No chapter text could be recovered from the source document. "
            "It may contain only images or scanned pages."
        ),
    ) -> None:
        """Initialize noise threshold and the fallback chapter content."""

        self.min_block_chars = min_block_chars
        self.placeholder_title = placeholder_title
        self.placeholder_body = placeholder_body

    def split(self, text: str) -> list[Chapter]:
        """Split text into chapters.

        Blocks are separated by runs of whitespace containing at least one
        blank line. Blocks whose stripped length does not exceed
        `min_block_chars` are discarded; survivors become `Chapter 1`,
        `Chapter 2`, ... in source order. When nothing survives, one
        placeholder chapter is returned instead of an empty list.
        """

        normalized = (text or "").replace("\r\n", "\n").replace("\r", "\n")
        blocks = [block.strip() for block in self._BLOCK_BOUNDARY_RE.split(normalized)]
        kept = [block for block in blocks if len(block) > self.min_block_chars]
        if not kept:
            return [self._placeholder_chapter()]

        chapters: list[Chapter] = []
        for index, block in enumerate(kept, start=1):
            title = f"Chapter {index}"
            chapters.append(
                Chapter(index=index, title=title, text=block, markup=render_markup(title, block))
            )
        return chapters

    def _placeholder_chapter(self) -> Chapter:
        """Build the single fallback chapter for text-less input."""

        return Chapter(
            index=1,
            title=self.placeholder_title,
            text=self.placeholder_body,
            markup=render_markup(self.placeholder_title, self.placeholder_body),
        )


def render_markup(title: str, content: str) -> str:
    """Wrap a chapter title and body in minimal escaped XHTML markup."""

    return f"<h2>{html.escape(title)}</h2><p>{html.escape(content)}</p>"
