"""
extractor.py - CV text extraction engine.

Pure function module - no FastAPI dependencies.
Entry point: extract(file_bytes: bytes, format_hint: str) -> ExtractionResult

PDF (pdfplumber):
  Text is rebuilt line-by-line from word fragments in content-stream order.
  Fragments that share a baseline (within BASELINE_TOLERANCE points) are
  joined on one line; a baseline change starts a new line. Page boundaries
  always start a new line.

DOCX (python-docx):
  Paragraph texts joined with newlines. Paragraphs styled `Title` or
  `Heading N` are recorded in structured_meta["headings"] so the segmenter
  can prefer them over its regex heuristics.

Raises:
  UnsupportedFormat  - format_hint is not a PDF/DOCX MIME type or extension
  ExtractionFailed   - parser raised, or the document holds no text at all

NOTE: pdfplumber / python-docx are imported LAZILY inside the format
      handlers so importing this module stays cheap for the webhook path.
"""
from __future__ import annotations

import io
import logging
from typing import Any, Optional

from cvcoach.errors import ExtractionFailed, UnsupportedFormat
from cvcoach.pipeline.schemas import DocumentFormat, ExtractionResult

logger = logging.getLogger(__name__)

# Points; pdfplumber reports float coordinates, same-line fragments drift slightly
BASELINE_TOLERANCE = 1.0

_EXTENSION_FORMATS = {
    "pdf": DocumentFormat.pdf,
    "docx": DocumentFormat.docx,
}

_HEADING_STYLE_PREFIXES = ("heading", "title")


# ---------------------------------------------------------------------------
# Format resolution
# ---------------------------------------------------------------------------

def resolve_format(format_hint: Optional[str]) -> Optional[DocumentFormat]:
    """
    Map a MIME type ("application/pdf; charset=binary") or extension
    ("pdf", ".docx") to a DocumentFormat. Returns None when unsupported.
    """
    if not format_hint:
        return None
    hint = format_hint.split(";", 1)[0].strip().lower()
    for fmt in DocumentFormat:
        if hint == fmt.value:
            return fmt
    return _EXTENSION_FORMATS.get(hint.lstrip("."))


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def _join_fragments(fragments: list[dict[str, Any]]) -> list[str]:
    """
    Group fragments into lines by baseline, preserving stream order.

    Each fragment is a pdfplumber word dict with at least `text` and `bottom`.
    """
    lines: list[str] = []
    current: list[str] = []
    last_baseline: Optional[float] = None

    for fragment in fragments:
        text = fragment["text"]
        baseline = float(fragment["bottom"])
        if last_baseline is not None and abs(baseline - last_baseline) > BASELINE_TOLERANCE:
            lines.append(" ".join(current))
            current = []
        current.append(text)
        last_baseline = baseline

    if current:
        lines.append(" ".join(current))
    return lines


def _extract_pdf(file_bytes: bytes) -> ExtractionResult:
    import pdfplumber

    lines: list[str] = []
    fragment_count = 0
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        page_count = len(pdf.pages)
        for page in pdf.pages:
            words = page.extract_words(
                keep_blank_chars=True,
                use_text_flow=True,
                x_tolerance=3,
                y_tolerance=3,
            )
            fragment_count += len(words)
            lines.extend(_join_fragments(words))

    meta = {
        "format": "pdf",
        "page_count": page_count,
        "fragment_count": fragment_count,
        "headings": [],
    }
    return ExtractionResult(raw_text="\n".join(lines), structured_meta=meta)


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

def _is_heading_style(style_name: Optional[str]) -> bool:
    return bool(style_name) and style_name.strip().lower().startswith(_HEADING_STYLE_PREFIXES)


def _extract_docx(file_bytes: bytes) -> ExtractionResult:
    from docx import Document

    document = Document(io.BytesIO(file_bytes))
    texts: list[str] = []
    headings: list[str] = []
    for paragraph in document.paragraphs:
        text = paragraph.text.strip()
        if not text:
            continue
        texts.append(text)
        style_name = paragraph.style.name if paragraph.style is not None else None
        if _is_heading_style(style_name):
            headings.append(text)

    meta = {
        "format": "docx",
        "paragraph_count": len(document.paragraphs),
        "style_count": len(document.styles),
        "headings": headings,
    }
    return ExtractionResult(raw_text="\n".join(texts), structured_meta=meta)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def extract(file_bytes: bytes, format_hint: Optional[str]) -> ExtractionResult:
    """
    Convert a CV file into raw text plus structural metadata.

    Args:
        file_bytes:  Raw document bytes.
        format_hint: MIME type or file extension of the document.

    Returns:
        ExtractionResult with non-empty raw_text.
    """
    fmt = resolve_format(format_hint)
    if fmt is None:
        raise UnsupportedFormat(f"Unsupported document format: {format_hint!r}")

    handler = _extract_pdf if fmt is DocumentFormat.pdf else _extract_docx
    try:
        result = handler(file_bytes)
    except Exception as exc:
        logger.warning("extract: %s parser failed: %s", fmt.name, exc)
        raise ExtractionFailed(f"Could not read {fmt.name.upper()} document") from exc

    if not result.raw_text.strip():
        raise ExtractionFailed(f"No extractable text found in {fmt.name.upper()} document")

    logger.info(
        "extract: format=%s chars=%d headings=%d",
        fmt.name,
        len(result.raw_text),
        len(result.structured_meta.get("headings", [])),
    )
    return result
