"""
nodes.py - LangGraph nodes of the review pipeline.

Every node is async and receives the shared ReviewResources through
config["configurable"]["resources"] (set by ReviewPipeline.run), so the graph
itself holds no process-wide state.

Failure policy:
  extract / segment / report  -> raise (fatal to the turn)
  analyze                     -> never raises for remote trouble (scorer falls back)
  deliver                     -> never raises; records email_sent=False
  archive                     -> raise
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from langchain_core.runnables import RunnableConfig

from cvcoach.conversation.schemas import identity_tag
from cvcoach.errors import ExtractionFailed, ReportGenerationFailed, StorageFailure
from cvcoach.graph.state import ReviewState
from cvcoach.integrations.email import REPORT_ATTACHMENT_NAME, Attachment, compose_review_email
from cvcoach.integrations.storage import REPORT_FOLDER
from cvcoach.pipeline.extractor import extract
from cvcoach.pipeline.report import build_report
from cvcoach.pipeline.schemas import ReviewResult, ReviewType
from cvcoach.pipeline.scorer import Scorer
from cvcoach.pipeline.segmenter import segment

logger = logging.getLogger(__name__)


@dataclass
class ReviewResources:
    scorer: Scorer
    storage: Any                 # ObjectStorage
    archive: Any                 # ReviewArchive
    mailer: Optional[Any] = None  # Mailer; None disables email delivery
    brand: str = "CVCoach"
    report_link_ttl_s: int = 3600
    extraction_timeout_s: float = 60.0
    report_timeout_s: float = 60.0
    upload_timeout_s: float = 30.0


def _resources(config: RunnableConfig) -> ReviewResources:
    return config["configurable"]["resources"]


def _draft_review(state: ReviewState, **extra: Any) -> ReviewResult:
    analysis = state["analysis"]
    return ReviewResult(
        identity=state["identity"],
        review_type=state["review_type"],
        cv_file_name=state["cv_file_name"],
        improvement_score=analysis.improvement_score,
        insights=analysis.insights,
        detected_sections=analysis.detected_sections,
        metrics=analysis.metrics,
        provider=analysis.provider,
        **extra,
    )


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

async def extract_node(state: ReviewState, config: RunnableConfig) -> dict:
    res = _resources(config)
    data = await asyncio.to_thread(Path(state["file_path"]).read_bytes)
    try:
        extraction = await asyncio.wait_for(
            asyncio.to_thread(extract, data, state["format_hint"]),
            timeout=res.extraction_timeout_s,
        )
    except asyncio.TimeoutError as exc:
        raise ExtractionFailed(f"Extraction timed out after {res.extraction_timeout_s}s") from exc
    return {"extraction": extraction}


async def segment_node(state: ReviewState, config: RunnableConfig) -> dict:
    extraction = state["extraction"]
    cv_data = segment(extraction.raw_text, extraction.structured_meta)
    logger.debug(
        "Segmented CV sections=%d skills=%d",
        cv_data.metrics.section_count, cv_data.metrics.skill_count,
    )
    return {"cv_data": cv_data}


async def analyze_node(state: ReviewState, config: RunnableConfig) -> dict:
    res = _resources(config)
    analysis = await res.scorer.analyze(state["cv_data"], state["review_type"])
    logger.info(
        "Analysis complete identity=%s provider=%s score=%d",
        identity_tag(state["identity"]), analysis.provider, analysis.improvement_score,
    )
    return {"analysis": analysis}


def route_after_analysis(state: ReviewState) -> str:
    return "report" if state["review_type"] is ReviewType.advanced else "archive"


async def report_node(state: ReviewState, config: RunnableConfig) -> dict:
    res = _resources(config)
    try:
        pdf_bytes = await asyncio.wait_for(
            asyncio.to_thread(build_report, _draft_review(state)),
            timeout=res.report_timeout_s,
        )
    except asyncio.TimeoutError as exc:
        raise ReportGenerationFailed(f"Report rendering timed out after {res.report_timeout_s}s") from exc

    tmp_dir = Path(tempfile.mkdtemp(prefix="cv-report-"))
    try:
        report_path = tmp_dir / REPORT_ATTACHMENT_NAME
        await asyncio.to_thread(report_path.write_bytes, pdf_bytes)
        report_ref = await asyncio.wait_for(
            res.storage.store(report_path, state["identity"], folder=REPORT_FOLDER),
            timeout=res.upload_timeout_s,
        )
    except asyncio.TimeoutError as exc:
        raise StorageFailure(f"Report upload timed out after {res.upload_timeout_s}s") from exc
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    report_link = res.storage.get_retrievable_link(report_ref, res.report_link_ttl_s)
    return {"report_bytes": pdf_bytes, "report_ref": report_ref, "report_link": report_link}


async def deliver_node(state: ReviewState, config: RunnableConfig) -> dict:
    res = _resources(config)
    email = state.get("email")
    if not email:
        return {"email_sent": None}
    if res.mailer is None:
        logger.info("Email delivery disabled identity=%s", identity_tag(state["identity"]))
        return {"email_sent": False}

    subject, html_body, text_body = compose_review_email(
        _draft_review(state, report_ref=state.get("report_ref")),
        state.get("report_link"),
        brand=res.brand,
        link_ttl_s=res.report_link_ttl_s,
    )
    result = await res.mailer.send(
        email,
        subject,
        html_body,
        text_body,
        Attachment(filename=REPORT_ATTACHMENT_NAME, content=state["report_bytes"]),
    )
    if not result.success:
        logger.warning(
            "Review email not delivered identity=%s error=%s",
            identity_tag(state["identity"]), result.error,
        )
    return {"email_sent": result.success}


async def archive_node(state: ReviewState, config: RunnableConfig) -> dict:
    res = _resources(config)
    review = _draft_review(
        state,
        report_ref=state.get("report_ref"),
        email_sent=state.get("email_sent"),
    )
    record_id = await res.archive.append(state["identity"], review)
    return {"review": review, "record_id": record_id}
