"""Plain text and markdown extractor."""

from typing import Any

from casesim.core.document_processing.base import (
    BaseExtractor,
    ExtractedPage,
    ExtractionError,
    ExtractionResult,
)

TEXT_MIME_TYPES = ("text/plain", "text/markdown", "text/x-markdown")
TEXT_EXTENSIONS = (".txt", ".md", ".markdown")


def decode_bytes(raw_bytes: bytes) -> tuple[str, str]:
    """
    Attempt to decode bytes using fallback chain.

    Returns:
        Tuple of (decoded_text, encoding_name)

    Raises:
        ValueError: If no encoding works
    """
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        return raw_bytes.decode("utf-8-sig"), "utf-8-sig"

    for encoding in ("utf-8", "cp1252"):
        try:
            return raw_bytes.decode(encoding), encoding
        except UnicodeDecodeError:
            continue

    raise ValueError("Unable to decode file as text")


class TextExtractor(BaseExtractor):
    name = "text"

    def can_handle(self, mime_type: str, file_extension: str) -> bool:
        return mime_type in TEXT_MIME_TYPES or file_extension in TEXT_EXTENSIONS

    def get_supported_types(self) -> list[str]:
        return list(TEXT_MIME_TYPES)

    def extract(self, file_bytes: bytes, filename: str, **kwargs: Any) -> ExtractionResult:
        valid, error_msg = self.validate_size(file_bytes)
        if not valid:
            raise ExtractionError(error_msg, extractor=self.name)

        try:
            text, encoding = decode_bytes(file_bytes)
        except ValueError as e:
            raise ExtractionError(f"{filename}: {e}", extractor=self.name) from e

        return ExtractionResult(
            pages=[ExtractedPage(text=text)],
            page_count=1,
            extraction_method=self.name,
            metadata={"encoding": encoding},
        )
