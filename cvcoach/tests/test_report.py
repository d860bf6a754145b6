"""
test_report.py - PDF report builder.

The round-trip test renders a report and reads it back through the same
extractor the pipeline uses for uploaded CVs.
"""
from __future__ import annotations

from unittest.mock import patch

import pytest

from cvcoach.errors import ReportGenerationFailed
from cvcoach.pipeline.extractor import extract
from cvcoach.pipeline.report import (
    DEFAULT_CATEGORY,
    FOOTER_TEXT,
    SCORE_AMBER,
    SCORE_GREEN,
    SCORE_RED,
    build_report,
    group_insights,
    score_colour,
)
from cvcoach.pipeline.schemas import CvMetrics, ReviewResult, ReviewType, SectionName


def _review(review_type: ReviewType = ReviewType.advanced, insights=None, score: int = 64) -> ReviewResult:
    return ReviewResult(
        identity="447700900123",
        review_type=review_type,
        cv_file_name="cv.pdf",
        improvement_score=score,
        insights=insights or [
            "STRUCTURE: Put the most relevant experience first.",
            "LANGUAGE: Start bullets with action verbs.",
            "STRUCTURE: Drop the objective statement.",
            "Use a consistent date format.",
        ],
        detected_sections=[SectionName.summary, SectionName.experience],
        metrics=CvMetrics(word_count=420, char_count=2600, estimated_pages=1),
    )


# ---------------------------------------------------------------------------
# group_insights
# ---------------------------------------------------------------------------

def test_group_insights_keeps_first_seen_order() -> None:
    groups = group_insights([
        "STRUCTURE: a",
        "LANGUAGE: b",
        "STRUCTURE: c",
        "no category here",
    ])
    assert groups == [
        ("STRUCTURE", ["a", "c"]),
        ("LANGUAGE", ["b"]),
        (DEFAULT_CATEGORY, ["no category here"]),
    ]


def test_group_insights_empty() -> None:
    assert group_insights([]) == []


# ---------------------------------------------------------------------------
# Score colour
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "score, colour",
    [(0, SCORE_RED), (49, SCORE_RED), (50, SCORE_AMBER), (69, SCORE_AMBER), (70, SCORE_GREEN), (100, SCORE_GREEN)],
)
def test_score_colour_thresholds(score: int, colour) -> None:
    assert score_colour(score) == colour


# ---------------------------------------------------------------------------
# build_report
# ---------------------------------------------------------------------------

def test_report_round_trip_through_extractor() -> None:
    pdf_bytes = build_report(_review())
    assert pdf_bytes.startswith(b"%PDF")

    text = extract(pdf_bytes, "application/pdf").raw_text
    assert "CV Review Report" in text
    assert "64/100" in text
    assert "Executive Summary" in text
    assert "Detailed Insights" in text
    assert "Next Steps" in text
    assert FOOTER_TEXT in text
    # Grouped: category headings rendered, prefixes stripped from items
    assert "Structure" in text
    assert "Put the most relevant experience first." in text


def test_basic_review_renders_flat_list() -> None:
    review = _review(review_type=ReviewType.basic, insights=["Add a summary.", "Quantify results."])
    text = extract(build_report(review), "application/pdf").raw_text
    assert "Add a summary." in text
    assert "Quantify results." in text


def test_report_failure_is_wrapped() -> None:
    with patch("cvcoach.pipeline.report._render", side_effect=RuntimeError("font missing")):
        with pytest.raises(ReportGenerationFailed):
            build_report(_review())
