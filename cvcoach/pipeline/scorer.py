"""
scorer.py - CV scoring strategies.

Components:
  Scorer          - Protocol: async analyze(cv_data, review_type) -> AnalysisResult
  LocalScorer     - deterministic heuristic scorer (also the offline test double)
  RemoteScorer    - Mistral chat completion, degrades to LocalScorer on ANY failure
  build_scorer()  - picks the strategy from configuration (API key present or not)

Remote failures (timeout, API error, malformed JSON, out-of-range score) are
raised internally as RemoteScoringUnavailable and never leave RemoteScorer.

detected_sections always comes from the segmenter, whichever strategy scored.
"""
import asyncio
import json
import logging
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from cvcoach.errors import RemoteScoringUnavailable
from cvcoach.pipeline.schemas import AnalysisResult, CvData, ReviewType, SectionName

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Local heuristic constants
# ---------------------------------------------------------------------------

BASE_SCORE = 50
MIN_SCORE = 40
MAX_SCORE = 90
MIN_INSIGHTS = 5

SUMMARY_MIN_CHARS = 100
EXPERIENCE_DETAIL_CHARS = 200
EXPERIENCE_BONUS_CHARS = 300
FEW_SKILLS = 8
MANY_SKILLS = 20
MAX_PAGES = 2

LOCAL_PROVIDER = "local"
REMOTE_PROVIDER = "mistral"

# ---------------------------------------------------------------------------
# Insight texts (order of emission is fixed in LocalScorer._insights)
# ---------------------------------------------------------------------------

INSIGHT_WEAK_SUMMARY = (
    "Your CV would benefit from a stronger professional summary. "
    "Open with a concise overview of your experience and key achievements."
)
INSIGHT_THIN_EXPERIENCE = (
    "Your experience section needs more detail. "
    "Add specific achievements and metrics that demonstrate your impact."
)
INSIGHT_QUANTIFY_EXPERIENCE = (
    "Consider adding more quantifiable achievements to your experience section."
)
INSIGHT_FEW_SKILLS = (
    "Your skills section could be more detailed. "
    "Group skills by category to improve readability."
)
INSIGHT_MANY_SKILLS = (
    "Your skills section is comprehensive, but consider focusing on the skills "
    "most relevant to your target role."
)
INSIGHT_CONTACT = (
    "Make sure your contact information (email and phone) is prominently displayed "
    "at the top of your CV."
)
INSIGHT_LENGTH = (
    "Your CV appears to be longer than 2 pages. Consider condensing it for better readability."
)

ADVANCED_INSIGHTS = [
    "STRUCTURE: Reorder your sections so your most relevant qualifications appear first.",
    "LANGUAGE: Start bullet points with strong action verbs to create a stronger impression.",
    "FORMATTING: Keep formatting consistent and use a clear hierarchy with no more than 3 font sizes.",
    "KEYWORDS: Add industry-specific keywords so your CV passes applicant tracking systems.",
]
INSIGHT_EDUCATION = (
    "EDUCATION: Position your education section according to its relevance to the target role."
)

GENERIC_INSIGHTS = [
    "Use a clean, professional format with consistent spacing and alignment.",
    "Tailor your CV for each application to highlight the most relevant experience.",
]


class Scorer(Protocol):
    async def analyze(self, cv_data: CvData, review_type: ReviewType) -> AnalysisResult:
        ...


# ---------------------------------------------------------------------------
# LocalScorer
# ---------------------------------------------------------------------------

class LocalScorer:
    """Deterministic heuristic scorer. Same CvData in, same result out."""

    provider = LOCAL_PROVIDER

    def score(self, cv_data: CvData) -> int:
        metrics = cv_data.metrics
        score = BASE_SCORE
        if metrics.section_count >= 5:
            score += 10
        if metrics.has_contact_info:
            score += 5
        if metrics.skill_count >= 10:
            score += 5
        if metrics.estimated_pages <= MAX_PAGES:
            score += 5
        if len(cv_data.section(SectionName.summary)) > SUMMARY_MIN_CHARS:
            score += 5
        if len(cv_data.section(SectionName.experience)) > EXPERIENCE_BONUS_CHARS:
            score += 10
        return max(MIN_SCORE, min(MAX_SCORE, score))

    def insights(self, cv_data: CvData, review_type: ReviewType) -> List[str]:
        insights: List[str] = []

        if len(cv_data.section(SectionName.summary)) < SUMMARY_MIN_CHARS:
            insights.append(INSIGHT_WEAK_SUMMARY)

        if len(cv_data.section(SectionName.experience)) < EXPERIENCE_DETAIL_CHARS:
            insights.append(INSIGHT_THIN_EXPERIENCE)
        else:
            insights.append(INSIGHT_QUANTIFY_EXPERIENCE)

        skill_count = cv_data.metrics.skill_count
        if not cv_data.section(SectionName.skills) or skill_count < FEW_SKILLS:
            insights.append(INSIGHT_FEW_SKILLS)
        elif skill_count > MANY_SKILLS:
            insights.append(INSIGHT_MANY_SKILLS)

        contact = cv_data.contact_info
        if not contact.email or not contact.phone:
            insights.append(INSIGHT_CONTACT)

        if cv_data.metrics.estimated_pages > MAX_PAGES:
            insights.append(INSIGHT_LENGTH)

        if review_type is ReviewType.advanced:
            insights.extend(ADVANCED_INSIGHTS)
            if cv_data.section(SectionName.education):
                insights.append(INSIGHT_EDUCATION)

        if len(insights) < MIN_INSIGHTS:
            insights.extend(GENERIC_INSIGHTS)
        return insights

    async def analyze(self, cv_data: CvData, review_type: ReviewType) -> AnalysisResult:
        return AnalysisResult(
            improvement_score=self.score(cv_data),
            insights=self.insights(cv_data, review_type),
            detected_sections=cv_data.detected_sections,
            metrics=cv_data.metrics,
            provider=self.provider,
        )


# ---------------------------------------------------------------------------
# RemoteScorer (Mistral)
# ---------------------------------------------------------------------------

MISTRAL_TEMPERATURE = 0.2
MISTRAL_MAX_TOKENS = 800
# Keeps prompt size bounded for very long CVs
MAX_PROMPT_CV_CHARS = 12000

SYSTEM_PROMPT = """You are an experienced recruiter reviewing CVs.

Respond ONLY with a JSON object of the form:
{"improvement_score": <integer 0-100>, "insights": ["<insight>", ...]}

Rules:
1. improvement_score rates how well the CV is written today (100 = needs no changes).
2. Give 5 to 8 insights, most important first, each one or two sentences.
3. For an advanced review, prefix each insight with an upper-case category and a colon,
   e.g. "STRUCTURE: ...", "LANGUAGE: ...", "KEYWORDS: ...".
4. Never repeat personal details (names, emails, phone numbers) in the insights."""


class _RemotePayload(BaseModel):
    improvement_score: int = Field(..., ge=0, le=100)
    insights: List[str] = Field(..., min_length=1)


def build_user_prompt(cv_data: CvData, review_type: ReviewType) -> str:
    """CV text plus segmenter findings. Contact values are reduced to presence flags."""
    metrics = cv_data.metrics
    detected = ", ".join(s.value for s in cv_data.detected_sections) or "none"
    return (
        f"Review type: {review_type.value}\n"
        f"Detected sections: {detected}\n"
        f"Metrics: words={metrics.word_count} pages={metrics.estimated_pages} "
        f"skills={metrics.skill_count} has_contact_info={metrics.has_contact_info}\n\n"
        f"CV text:\n{cv_data.full_text[:MAX_PROMPT_CV_CHARS]}"
    )


class RemoteScorer:
    """
    Scores through Mistral chat completions with a JSON response format.

    The client and semaphore are created in main.py lifespan and injected
    (semaphore must be created inside a running event loop).
    """

    provider = REMOTE_PROVIDER

    def __init__(
        self,
        client,
        model: str,
        timeout_s: float,
        fallback: Optional[LocalScorer] = None,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        self._client = client
        self._model = model
        self._timeout_s = timeout_s
        self._fallback = fallback or LocalScorer()
        self._semaphore = semaphore

    async def _complete(self, prompt: str) -> str:
        call = self._client.chat.complete_async(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=MISTRAL_TEMPERATURE,
            max_tokens=MISTRAL_MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        if self._semaphore is None:
            response = await asyncio.wait_for(call, timeout=self._timeout_s)
        else:
            async with self._semaphore:
                response = await asyncio.wait_for(call, timeout=self._timeout_s)
        return response.choices[0].message.content or ""

    async def _remote_payload(self, cv_data: CvData, review_type: ReviewType) -> _RemotePayload:
        try:
            content = await self._complete(build_user_prompt(cv_data, review_type))
            return _RemotePayload.model_validate(json.loads(content))
        except (ValidationError, ValueError, TypeError) as exc:
            raise RemoteScoringUnavailable(f"Malformed scorer response: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise RemoteScoringUnavailable(f"Scorer timed out after {self._timeout_s}s") from exc
        except Exception as exc:
            raise RemoteScoringUnavailable(f"Scorer call failed: {exc}") from exc

    async def analyze(self, cv_data: CvData, review_type: ReviewType) -> AnalysisResult:
        try:
            payload = await self._remote_payload(cv_data, review_type)
        except RemoteScoringUnavailable as exc:
            logger.warning("Remote scoring unavailable, falling back to local heuristics: %s", exc)
            return await self._fallback.analyze(cv_data, review_type)

        logger.info(
            "Remote scoring complete model=%s score=%d insights=%d",
            self._model, payload.improvement_score, len(payload.insights),
        )
        return AnalysisResult(
            improvement_score=payload.improvement_score,
            insights=payload.insights,
            detected_sections=cv_data.detected_sections,
            metrics=cv_data.metrics,
            provider=self.provider,
        )


def build_scorer(
    api_key: str,
    model: str,
    timeout_s: float,
    semaphore: Optional[asyncio.Semaphore] = None,
) -> Scorer:
    """RemoteScorer when a Mistral key is configured, LocalScorer otherwise."""
    if not api_key:
        logger.info("No remote scoring key configured, using local scorer")
        return LocalScorer()

    from mistralai import Mistral

    return RemoteScorer(
        client=Mistral(api_key=api_key),
        model=model,
        timeout_s=timeout_s,
        semaphore=semaphore,
    )
