"""DOCX document extractor using python-docx."""

from io import BytesIO
from typing import Any

from docx import Document

from casesim.core.document_processing.base import (
    BaseExtractor,
    ExtractedPage,
    ExtractionError,
    ExtractionResult,
)
from casesim.core.logging import get_logger

logger = get_logger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class DOCXExtractor(BaseExtractor):
    """DOCX document extractor.

    Paragraphs are kept in order; tables are flattened to pipe-delimited rows.
    """

    name = "docx"

    def can_handle(self, mime_type: str, file_extension: str) -> bool:
        return mime_type == DOCX_MIME or file_extension == ".docx"

    def get_supported_types(self) -> list[str]:
        return [DOCX_MIME]

    def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        valid, error_msg = self.validate_size(file_bytes)
        if not valid:
            raise ExtractionError(error_msg, extractor=self.name)

        try:
            doc = Document(BytesIO(file_bytes))
        except Exception as e:
            raise ExtractionError(f"Failed to open DOCX: {e}", extractor=self.name) from e

        parts: list[str] = []
        for paragraph in doc.paragraphs:
            text = paragraph.text.strip()
            if text:
                parts.append(text)

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    parts.append(" | ".join(cells))

        logger.debug(f"Extracted {len(parts)} blocks from {filename}")

        return ExtractionResult(
            pages=[ExtractedPage(text="\n\n".join(parts))],
            page_count=1,
            extraction_method=self.name,
            metadata={"tables": len(doc.tables)},
        )
