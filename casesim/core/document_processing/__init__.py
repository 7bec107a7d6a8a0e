"""Document processing package for extracting text from uploaded reference material.

Usage:
    from casesim.core.document_processing import build_default_registry

    registry = build_default_registry(max_bytes=settings.MAX_UPLOAD_BYTES)
    extractor = registry.get_extractor("application/pdf", ".pdf")
"""

from casesim.core.document_processing.base import (
    BaseExtractor,
    DocumentType,
    ExtractedPage,
    ExtractionError,
    ExtractionResult,
    ExtractorRegistry,
    get_extension,
    normalize_mime_type,
)
from casesim.core.document_processing.docx_extractor import DOCXExtractor
from casesim.core.document_processing.pdf_extractor import PDFExtractor
from casesim.core.document_processing.text_extractor import TextExtractor


def build_default_registry(max_bytes: int = 10 * 1024 * 1024) -> ExtractorRegistry:
    """Registry with the PDF, DOCX and plain-text extractors."""
    return ExtractorRegistry(
        [
            PDFExtractor(size_limit=max_bytes),
            DOCXExtractor(size_limit=max_bytes),
            TextExtractor(size_limit=max_bytes),
        ]
    )


__all__ = [
    "BaseExtractor",
    "DocumentType",
    "ExtractedPage",
    "ExtractionError",
    "ExtractionResult",
    "ExtractorRegistry",
    "get_extension",
    "normalize_mime_type",
    "DOCXExtractor",
    "PDFExtractor",
    "TextExtractor",
    "build_default_registry",
]
