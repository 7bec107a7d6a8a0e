"""Base extractor interface and registry for reference documents.

Defines the contract that all document extractors implement, plus a
registry that picks the extractor for an upload by MIME type or extension.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from casesim.core.errors import ErrorCode, ExtractionFailure


class DocumentType(Enum):
    """Supported document types."""
    PDF = "pdf"
    DOCX = "docx"
    TEXT = "text"


# Page limits
PAGE_LIMITS: dict[DocumentType, int] = {
    DocumentType.PDF: 200,
}


@dataclass
class ExtractedPage:
    """Text of one page (or the whole body for unpaginated formats)."""

    text: str
    page_number: Optional[int] = None


@dataclass
class ExtractionResult:
    """Result of document extraction."""

    pages: list[ExtractedPage]
    """Extracted pages, in document order."""

    page_count: int
    """Total number of pages in the source."""

    extraction_method: str
    """Which extractor produced the text."""

    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def raw_text(self) -> str:
        """Full text with pages separated by blank lines."""
        return "\n\n".join(page.text for page in self.pages if page.text)

    def page_for_offset(self, offset: int) -> Optional[int]:
        """1-indexed page containing a character offset into raw_text."""
        position = 0
        for page in self.pages:
            if not page.text:
                continue
            end = position + len(page.text)
            if offset < end + 2:
                return page.page_number
            position = end + 2
        return self.pages[-1].page_number if self.pages else None


class ExtractionError(ExtractionFailure):
    """Raised when document extraction fails."""

    def __init__(
        self,
        message: str,
        extractor: str = None,
        code: ErrorCode = ErrorCode.EXTRACTION_ERROR,
    ):
        super().__init__(message, code)
        self.extractor = extractor


class BaseExtractor(ABC):
    """Base class for document extractors."""

    name: str = ""

    def __init__(self, size_limit: int = 10 * 1024 * 1024):
        self.size_limit = size_limit

    @abstractmethod
    def can_handle(self, mime_type: str, file_extension: str) -> bool:
        """Check if this extractor can handle the given file type.

        Args:
            mime_type: MIME type of the file (e.g., 'application/pdf')
            file_extension: File extension including dot (e.g., '.pdf')

        Returns:
            True if this extractor can handle the file type
        """

    @abstractmethod
    def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        """Extract text from a document.

        Args:
            file_bytes: Raw file content
            filename: Original filename

        Returns:
            ExtractionResult with pages in order

        Raises:
            ExtractionError: If extraction fails
        """

    @abstractmethod
    def get_supported_types(self) -> list[str]:
        """Return list of supported MIME types."""

    def validate_size(self, file_bytes: bytes) -> tuple[bool, str]:
        """Validate file size against limit.

        Returns:
            Tuple of (is_valid, error_message)
        """
        size = len(file_bytes)
        if size > self.size_limit:
            limit_mb = self.size_limit / (1024 * 1024)
            size_mb = size / (1024 * 1024)
            return False, f"File size ({size_mb:.1f} MB) exceeds limit ({limit_mb:.1f} MB)"
        return True, ""


class ExtractorRegistry:
    """Selects the extractor for an upload by MIME type, then extension."""

    def __init__(self, extractors: list[BaseExtractor] | None = None):
        self._extractors: list[BaseExtractor] = list(extractors or [])

    def register(self, extractor: BaseExtractor) -> None:
        self._extractors.append(extractor)

    def get_extractor(
        self,
        mime_type: str = None,
        file_extension: str = None,
    ) -> Optional[BaseExtractor]:
        """Get appropriate extractor for file type.

        Args:
            mime_type: MIME type of the file
            file_extension: File extension including dot

        Returns:
            Matching extractor or None if no match
        """
        mime = normalize_mime_type(mime_type)
        for extractor in self._extractors:
            if extractor.can_handle(mime, (file_extension or "").lower()):
                return extractor
        return None


def normalize_mime_type(mime_type: str | None) -> str:
    """Lowercase and strip parameters such as '; charset=utf-8'."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def get_extension(filename: str) -> str:
    """Extract lowercase file extension from filename."""
    if filename and "." in filename:
        return "." + filename.rsplit(".", 1)[-1].lower()
    return ""
