"""
report.py - CVCoach PDF review report generator.

Builds the advanced-review report with reportlab PLATYPUS into an in-memory
buffer. Entry point:
    build_report(review: ReviewResult) -> bytes

Report sections, in order:
  1. Title + generation timestamp
  2. Score bar (grey track, filled segment proportional to score/100)
  3. Executive summary
  4. Insights - grouped by "CATEGORY:" prefix for advanced reviews,
     flat bulleted list otherwise
  5. Next steps
  Footer on every page.

Any rendering error is re-raised as ReportGenerationFailed; no partial
report is ever returned.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.graphics.shapes import Drawing, Rect, String
from reportlab.lib.colors import HexColor, black
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import KeepTogether, Paragraph, SimpleDocTemplate, Spacer

from cvcoach.errors import ReportGenerationFailed
from cvcoach.pipeline.schemas import ReviewResult, ReviewType

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Colour constants
# ---------------------------------------------------------------------------

TRACK_GREY = HexColor("#E0E0E0")
SCORE_RED = HexColor("#E74C3C")     # score < 50
SCORE_AMBER = HexColor("#F39C12")   # score < 70
SCORE_GREEN = HexColor("#27AE60")
FOOTER_GREY = HexColor("#7F7F7F")

DEFAULT_CATEGORY = "General"

BAR_WIDTH = 170 * mm
BAR_HEIGHT = 8 * mm

EXECUTIVE_SUMMARY = (
    "This report analyses your CV and gives specific recommendations for improvement. "
    "The insights below are ordered by priority and are meant to make your CV more "
    "effective for job applications."
)

NEXT_STEPS = [
    "Work through the highest-priority insights first.",
    "Quantify your achievements with numbers and outcomes wherever possible.",
    "Tailor your CV for each application, mirroring the language of the job description.",
    "Ask a colleague or mentor to review the updated version.",
    "Send your updated CV for another review to track your improvement.",
]

FOOTER_TEXT = "Generated by the CVCoach CV Review Service."


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def score_colour(score: int) -> HexColor:
    if score < 50:
        return SCORE_RED
    if score < 70:
        return SCORE_AMBER
    return SCORE_GREEN


def group_insights(insights: list[str]) -> list[tuple[str, list[str]]]:
    """
    Group "CATEGORY: text" insights by category.

    Categories keep first-seen order, items keep insertion order. Insights
    without a colon land in the General category.
    """
    groups: dict[str, list[str]] = {}
    for insight in insights:
        category, sep, text = insight.partition(":")
        if sep and category.strip() and text.strip():
            groups.setdefault(category.strip(), []).append(text.strip())
        else:
            groups.setdefault(DEFAULT_CATEGORY, []).append(insight.strip())
    return list(groups.items())


def _should_group(review: ReviewResult) -> bool:
    return review.review_type is ReviewType.advanced and any(":" in i for i in review.insights)


# ---------------------------------------------------------------------------
# Flowable builders
# ---------------------------------------------------------------------------

def _build_score_bar(score: int) -> Drawing:
    fraction = max(0, min(100, score)) / 100
    drawing = Drawing(BAR_WIDTH, BAR_HEIGHT + 6 * mm)
    drawing.add(Rect(0, 0, BAR_WIDTH, BAR_HEIGHT, fillColor=TRACK_GREY, strokeColor=None))
    if fraction > 0:
        drawing.add(
            Rect(0, 0, BAR_WIDTH * fraction, BAR_HEIGHT, fillColor=score_colour(score), strokeColor=None)
        )
    drawing.add(
        String(
            BAR_WIDTH / 2,
            BAR_HEIGHT + 2 * mm,
            f"{score}/100",
            fontName="Helvetica-Bold",
            fontSize=11,
            fillColor=black,
            textAnchor="middle",
        )
    )
    return drawing


def _bullet(text: str, style: ParagraphStyle) -> Paragraph:
    return Paragraph(f"• {escape(text)}", style)


def _draw_footer(canvas, doc) -> None:
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(FOOTER_GREY)
    canvas.drawCentredString(A4[0] / 2, 10 * mm, f"{FOOTER_TEXT}  Page {doc.page}")
    canvas.restoreState()


def _render(review: ReviewResult) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title="CV Review Report",
    )
    styles = getSampleStyleSheet()
    bullet_style = ParagraphStyle("bullet", parent=styles["Normal"], leftIndent=4 * mm, spaceAfter=2 * mm)
    story = []

    # 1. Header
    title_style = ParagraphStyle("report_title", parent=styles["Heading1"], fontSize=18, fontName="Helvetica-Bold")
    story.append(Paragraph("CV Review Report", title_style))
    story.append(Spacer(1, 2 * mm))
    generated = datetime.now(timezone.utc).strftime("%d %B %Y %H:%M UTC")
    story.append(Paragraph(f"Report generated: {generated}", styles["Normal"]))
    story.append(Spacer(1, 6 * mm))

    # 2. Score bar
    story.append(
        KeepTogether([
            Paragraph("CV Improvement Score", styles["Heading2"]),
            Spacer(1, 2 * mm),
            _build_score_bar(review.improvement_score),
        ])
    )
    story.append(Spacer(1, 6 * mm))

    # 3. Executive summary
    story.append(Paragraph("Executive Summary", styles["Heading2"]))
    story.append(Paragraph(EXECUTIVE_SUMMARY, styles["Normal"]))
    story.append(Spacer(1, 6 * mm))

    # 4. Insights
    story.append(Paragraph("Detailed Insights", styles["Heading2"]))
    story.append(Spacer(1, 2 * mm))
    if _should_group(review):
        for category, items in group_insights(review.insights):
            story.append(Paragraph(escape(category.title()), styles["Heading3"]))
            story.extend(_bullet(item, bullet_style) for item in items)
    else:
        story.extend(_bullet(insight, bullet_style) for insight in review.insights)
    story.append(Spacer(1, 6 * mm))

    # 5. Next steps
    steps = [Paragraph("Next Steps", styles["Heading2"])]
    steps.extend(Paragraph(f"{i}. {step}", bullet_style) for i, step in enumerate(NEXT_STEPS, start=1))
    story.append(KeepTogether(steps))

    doc.build(story, onFirstPage=_draw_footer, onLaterPages=_draw_footer)
    buffer.seek(0)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def build_report(review: ReviewResult) -> bytes:
    """Render the review as a PDF. Raises ReportGenerationFailed on any error."""
    try:
        pdf_bytes = _render(review)
    except Exception as exc:
        logger.error("Report rendering failed review_type=%s: %s", review.review_type.value, exc)
        raise ReportGenerationFailed("Could not render review report") from exc

    logger.info(
        "PDF report generated review_type=%s score=%d bytes=%d",
        review.review_type.value,
        review.improvement_score,
        len(pdf_bytes),
    )
    return pdf_bytes
