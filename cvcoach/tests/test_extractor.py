"""
test_extractor.py - Format resolution and PDF / DOCX text extraction.

Documents are generated in-process (reportlab / python-docx).
"""
from __future__ import annotations

import pytest

from conftest import SAMPLE_CV_LINES, make_docx_bytes, make_pdf_bytes
from cvcoach.errors import ExtractionFailed, UnsupportedFormat
from cvcoach.pipeline.extractor import _join_fragments, extract, resolve_format
from cvcoach.pipeline.schemas import DocumentFormat
from cvcoach.pipeline.segmenter import segment

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


# ---------------------------------------------------------------------------
# resolve_format
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "hint, expected",
    [
        ("application/pdf", DocumentFormat.pdf),
        ("application/pdf; charset=binary", DocumentFormat.pdf),
        ("APPLICATION/PDF", DocumentFormat.pdf),
        (DOCX_MIME, DocumentFormat.docx),
        ("pdf", DocumentFormat.pdf),
        (".docx", DocumentFormat.docx),
        ("image/png", None),
        ("application/msword", None),
        (".txt", None),
        ("", None),
        (None, None),
    ],
)
def test_resolve_format(hint, expected) -> None:
    assert resolve_format(hint) is expected


def test_extension_property() -> None:
    assert DocumentFormat.pdf.extension == ".pdf"
    assert DocumentFormat.docx.extension == ".docx"


# ---------------------------------------------------------------------------
# Fragment joining
# ---------------------------------------------------------------------------

def test_fragments_on_same_baseline_share_a_line() -> None:
    fragments = [
        {"text": "Work", "bottom": 100.0},
        {"text": "Experience", "bottom": 100.4},
        {"text": "Acme", "bottom": 114.0},
    ]
    assert _join_fragments(fragments) == ["Work Experience", "Acme"]


def test_baseline_change_beyond_tolerance_starts_new_line() -> None:
    fragments = [
        {"text": "a", "bottom": 100.0},
        {"text": "b", "bottom": 101.5},
    ]
    assert _join_fragments(fragments) == ["a", "b"]


def test_no_fragments_gives_no_lines() -> None:
    assert _join_fragments([]) == []


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def test_extract_pdf_keeps_line_order(sample_pdf: bytes) -> None:
    result = extract(sample_pdf, "application/pdf")
    lines = [line.strip() for line in result.raw_text.splitlines()]

    assert "Work Experience" in lines
    assert "Skills" in lines
    assert lines.index("Professional Summary") < lines.index("Work Experience") < lines.index("Skills")
    assert "jane.doe@example.com" in result.raw_text


def test_extract_pdf_metadata(sample_pdf: bytes) -> None:
    meta = extract(sample_pdf, ".pdf").structured_meta
    assert meta["format"] == "pdf"
    assert meta["page_count"] == 1
    assert meta["fragment_count"] >= len(SAMPLE_CV_LINES)
    assert meta["headings"] == []


def test_pdf_contact_email_survives_extract_and_segment() -> None:
    pdf_bytes = make_pdf_bytes(["Jane Doe", "Email: jane@example.com", "Skills", "Python, SQL"])
    result = extract(pdf_bytes, "application/pdf")
    cv = segment(result.raw_text, result.structured_meta)
    assert cv.contact_info.email == "jane@example.com"
    assert cv.metrics.has_contact_info is True


def test_extract_pdf_without_text_fails() -> None:
    blank = make_pdf_bytes([])
    with pytest.raises(ExtractionFailed):
        extract(blank, "application/pdf")


def test_extract_corrupt_pdf_fails() -> None:
    with pytest.raises(ExtractionFailed):
        extract(b"%PDF-1.4 definitely not a pdf", "application/pdf")


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

def test_extract_docx_records_heading_styles() -> None:
    data = make_docx_bytes([
        ("Jane Doe", "Title"),
        ("Profile", "Heading 1"),
        ("Backend developer focused on payments.", None),
        ("Experience", "Heading 1"),
        ("Engineer at Acme.", None),
    ])
    result = extract(data, DOCX_MIME)

    assert result.raw_text.splitlines() == [
        "Jane Doe",
        "Profile",
        "Backend developer focused on payments.",
        "Experience",
        "Engineer at Acme.",
    ]
    assert result.structured_meta["format"] == "docx"
    assert result.structured_meta["headings"] == ["Jane Doe", "Profile", "Experience"]
    assert result.structured_meta["paragraph_count"] >= 5
    assert result.structured_meta["style_count"] > 0


def test_extract_empty_docx_fails() -> None:
    with pytest.raises(ExtractionFailed):
        extract(make_docx_bytes([]), "docx")


# ---------------------------------------------------------------------------
# Unsupported
# ---------------------------------------------------------------------------

def test_unsupported_format_raises_before_parsing() -> None:
    with pytest.raises(UnsupportedFormat):
        extract(b"\x89PNG\r\n", "image/png")
