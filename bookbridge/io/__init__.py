"""Input/output stage components for Bookbridge.

This package contains extraction, chapter segmentation, EPUB packaging, and
file storage used by the conversion pipeline.
"""

from .chapter_segmenter import ChapterSegmenter
from .epub_builder import EpubPackageBuilder, EpubPackageReader
from .pdf_text_extractor import PdfTextExtractor
from .storage import ArtifactStore

__all__ = [
    "ArtifactStore",
    "ChapterSegmenter",
    "EpubPackageBuilder",
    "EpubPackageReader",
    "PdfTextExtractor",
]
