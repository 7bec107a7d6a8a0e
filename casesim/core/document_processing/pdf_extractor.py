"""PDF document extractor.

Uses PyMuPDF (fitz) for native text extraction, one page at a time.
"""

from typing import Any

from casesim.core.document_processing.base import (
    PAGE_LIMITS,
    BaseExtractor,
    DocumentType,
    ExtractedPage,
    ExtractionError,
    ExtractionResult,
)
from casesim.core.logging import get_logger

logger = get_logger(__name__)

# Lazy import to avoid loading heavy libraries at module load
fitz = None


def _get_fitz():
    """Lazy load PyMuPDF."""
    global fitz
    if fitz is None:
        try:
            import fitz as _fitz
            fitz = _fitz
        except ImportError as e:
            raise ExtractionError(
                "PyMuPDF (fitz) is required for PDF extraction. Install with: pip install pymupdf",
                extractor="pdf",
            ) from e
    return fitz


class PDFExtractor(BaseExtractor):
    """PDF document extractor."""

    name = "pdf"

    def can_handle(self, mime_type: str, file_extension: str) -> bool:
        return mime_type == "application/pdf" or file_extension == ".pdf"

    def get_supported_types(self) -> list[str]:
        return ["application/pdf"]

    def extract(
        self,
        file_bytes: bytes,
        filename: str,
        max_pages: int | None = None,
        **kwargs: Any,
    ) -> ExtractionResult:
        """Extract text from a PDF.

        Args:
            file_bytes: Raw PDF content
            filename: Original filename
            max_pages: Override max pages (default from PAGE_LIMITS)

        Returns:
            ExtractionResult with one ExtractedPage per page

        Raises:
            ExtractionError: If the file is too large or cannot be parsed
        """
        valid, error_msg = self.validate_size(file_bytes)
        if not valid:
            raise ExtractionError(error_msg, extractor=self.name)

        fitz_lib = _get_fitz()
        max_pages = max_pages or PAGE_LIMITS.get(DocumentType.PDF, 200)

        try:
            doc = fitz_lib.open(stream=file_bytes, filetype="pdf")
        except Exception as e:
            raise ExtractionError(f"Failed to open PDF: {e}", extractor=self.name) from e

        try:
            page_count = len(doc)
            warnings: list[str] = []
            if page_count > max_pages:
                warnings.append(f"PDF has {page_count} pages, truncating to {max_pages}")

            pages: list[ExtractedPage] = []
            for page_num in range(min(page_count, max_pages)):
                text = doc[page_num].get_text("text")
                pages.append(ExtractedPage(text=text.strip(), page_number=page_num + 1))
        except Exception as e:
            raise ExtractionError(f"Failed to read PDF text: {e}", extractor=self.name) from e
        finally:
            doc.close()

        logger.info(
            f"Extracted {len(pages)} pages from {filename}",
            extra={"extra_data": {"pages": len(pages), "file": filename}},
        )

        return ExtractionResult(
            pages=pages,
            page_count=page_count,
            extraction_method=self.name,
            warnings=warnings,
        )
