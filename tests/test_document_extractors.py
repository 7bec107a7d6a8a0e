"""Tests for PDF, DOCX and plain-text extraction."""

from io import BytesIO

import fitz
import pytest
from docx import Document

from casesim.core.document_processing import (
    ExtractionError,
    build_default_registry,
    get_extension,
    normalize_mime_type,
)
from casesim.core.document_processing.text_extractor import decode_bytes


def _pdf_bytes(pages: list[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def _docx_bytes() -> bytes:
    doc = Document()
    doc.add_paragraph("Presenting complaint: colic")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "PCV"
    table.rows[0].cells[1].text = "45%"
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def registry():
    return build_default_registry(max_bytes=5 * 1024 * 1024)


def test_pdf_extracts_each_page(registry):
    extractor = registry.get_extractor("application/pdf", ".pdf")
    result = extractor.extract(_pdf_bytes(["Heart rate 64", "Temperature 38.4", "Gut sounds reduced"]), "case.pdf")

    assert result.page_count == 3
    assert [p.page_number for p in result.pages] == [1, 2, 3]
    assert "Temperature 38.4" in result.pages[1].text
    assert result.page_for_offset(len(result.pages[0].text) + 3) == 2


def test_pdf_invalid_bytes(registry):
    extractor = registry.get_extractor("application/pdf", ".pdf")

    with pytest.raises(ExtractionError):
        extractor.extract(b"not a pdf", "broken.pdf")


def test_docx_extracts_paragraphs_and_tables(registry):
    extractor = registry.get_extractor(None, ".docx")
    result = extractor.extract(_docx_bytes(), "notes.docx")

    assert "Presenting complaint: colic" in result.raw_text
    assert "PCV | 45%" in result.raw_text


def test_size_limit_enforced():
    registry = build_default_registry(max_bytes=10)
    extractor = registry.get_extractor("text/plain", ".txt")

    with pytest.raises(ExtractionError):
        extractor.extract(b"x" * 100, "big.txt")


def test_registry_uses_extension_when_mime_unknown(registry):
    assert registry.get_extractor("application/octet-stream", ".md").name == "text"
    assert registry.get_extractor("image/png", ".png") is None


def test_mime_parameters_are_ignored(registry):
    assert registry.get_extractor("text/plain; charset=utf-8", "").name == "text"


def test_decode_bytes_fallbacks():
    assert decode_bytes("café".encode("utf-8")) == ("café", "utf-8")
    assert decode_bytes(b"\xef\xbb\xbfhello")[0] == "hello"
    assert decode_bytes("café".encode("cp1252"))[1] == "cp1252"


def test_extension_and_mime_normalisation():
    assert get_extension("Report.PDF") == ".pdf"
    assert get_extension("README") == ""
    assert normalize_mime_type("Text/Plain; charset=utf-8") == "text/plain"
    assert normalize_mime_type(None) == ""
