"""
state.py - ReviewState TypedDict for the LangGraph review pipeline.

Flows through:
  extract -> segment -> analyze -> (advanced: report -> deliver) -> archive

Each node adds only the fields it is responsible for; LangGraph merges the
returned dicts into the state.
"""
from __future__ import annotations

from typing import Any, Optional

from typing_extensions import TypedDict


class ReviewState(TypedDict, total=False):
    # ---- Set before graph.ainvoke -------------------------------------------
    identity: str
    review_type: Any                     # ReviewType
    file_path: str                       # Local copy of the stored CV
    cv_file_name: str
    format_hint: str                     # MIME type or extension
    email: Optional[str]                 # Delivery address (advanced only)

    # ---- extract / segment / analyze ---------------------------------------
    extraction: Any                      # ExtractionResult
    cv_data: Any                         # CvData
    analysis: Any                        # AnalysisResult

    # ---- report / deliver (advanced only) ----------------------------------
    report_bytes: bytes
    report_ref: Optional[str]
    report_link: Optional[str]
    email_sent: Optional[bool]

    # ---- archive -----------------------------------------------------------
    review: Any                          # ReviewResult
    record_id: str
