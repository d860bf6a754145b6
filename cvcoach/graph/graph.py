"""
graph.py - CVCoach review pipeline (LangGraph StateGraph).

Node order:
  extract -> segment -> analyze -> (conditional) -> archive -> END
                                       |
                                       +-> report -> deliver -> archive   (advanced)

The chain is strictly sequential; a turn reviews exactly one file.

Usage:
    pipeline = ReviewPipeline(resources)         # once, at startup
    outcome = await pipeline.run(identity, review_type, cv_path, cv_file_name, email)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cvcoach.graph.nodes import (
    ReviewResources,
    analyze_node,
    archive_node,
    deliver_node,
    extract_node,
    report_node,
    route_after_analysis,
    segment_node,
)
from cvcoach.graph.state import ReviewState
from cvcoach.pipeline.schemas import ReviewResult, ReviewType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    review: ReviewResult
    record_id: str
    report_link: Optional[str] = None


def build_graph():
    """Builds and compiles the review StateGraph."""
    from langgraph.graph import END, StateGraph

    workflow = StateGraph(ReviewState)

    workflow.add_node("extract", extract_node)
    workflow.add_node("segment", segment_node)
    workflow.add_node("analyze", analyze_node)
    workflow.add_node("report", report_node)
    workflow.add_node("deliver", deliver_node)
    workflow.add_node("archive", archive_node)

    workflow.set_entry_point("extract")
    workflow.add_edge("extract", "segment")
    workflow.add_edge("segment", "analyze")
    workflow.add_conditional_edges(
        "analyze",
        route_after_analysis,
        {
            "report": "report",
            "archive": "archive",
        },
    )
    workflow.add_edge("report", "deliver")
    workflow.add_edge("deliver", "archive")
    workflow.add_edge("archive", END)

    compiled = workflow.compile()
    logger.info("Review pipeline graph compiled")
    return compiled


class ReviewPipeline:
    """Reviewer collaborator used by the conversation machine."""

    def __init__(self, resources: ReviewResources, graph=None):
        self._resources = resources
        self._graph = graph or build_graph()

    async def run(
        self,
        identity: str,
        review_type: ReviewType,
        cv_path: Path,
        cv_file_name: str,
        email: Optional[str] = None,
    ) -> ReviewOutcome:
        initial_state: ReviewState = {
            "identity": identity,
            "review_type": review_type,
            "file_path": str(cv_path),
            "cv_file_name": cv_file_name,
            "format_hint": Path(cv_file_name).suffix or Path(cv_path).suffix,
            "email": email if review_type is ReviewType.advanced else None,
        }
        final_state = await self._graph.ainvoke(
            initial_state,
            config={"configurable": {"resources": self._resources}},
        )
        return ReviewOutcome(
            review=final_state["review"],
            record_id=final_state["record_id"],
            report_link=final_state.get("report_link"),
        )
