"""
schemas.py - Review pipeline Pydantic v2 data contracts.

Defines:
  - DocumentFormat, ReviewType, SectionName enums
  - ExtractionResult   (Extractor output: raw text + weak structural metadata)
  - ContactInfo, CvMetrics, CvData   (Segmenter output)
  - AnalysisResult     (Scorer output)
  - ReviewResult       (one completed review, immutable once created)

Section order is fixed: SECTION_NAMES drives segmentation, detected_sections
ordering and report rendering.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DocumentFormat(str, Enum):
    pdf = "application/pdf"
    docx = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    @property
    def extension(self) -> str:
        return ".pdf" if self is DocumentFormat.pdf else ".docx"


class ReviewType(str, Enum):
    none = "none"
    basic = "basic"
    advanced = "advanced"


class SectionName(str, Enum):
    summary = "summary"
    contact = "contact"
    experience = "experience"
    education = "education"
    skills = "skills"
    projects = "projects"
    certifications = "certifications"
    languages = "languages"
    interests = "interests"


SECTION_NAMES: List[SectionName] = list(SectionName)


# ---------------------------------------------------------------------------
# Extractor output
# ---------------------------------------------------------------------------

class ExtractionResult(BaseModel):
    """
    Raw text plus structural metadata.

    structured_meta keys (all optional, weak signals only):
      format, page_count, fragment_count      (PDF)
      paragraph_count, style_count            (DOCX)
      headings                                (DOCX: Title / Heading N paragraphs, in order)
    """
    model_config = ConfigDict(frozen=True)

    raw_text: str
    structured_meta: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Segmenter output
# ---------------------------------------------------------------------------

class ContactInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin: Optional[str] = None
    website: Optional[str] = None


class CvMetrics(BaseModel):
    """Derived counts. estimated_pages = ceil(char_count / 3000)."""
    model_config = ConfigDict(frozen=True)

    line_count: int = 0
    word_count: int = 0
    char_count: int = 0
    estimated_pages: int = 0
    has_contact_info: bool = False
    section_count: int = 0
    skill_count: int = 0


class CvData(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_text: str
    # Every SectionName is present; missing sections hold ""
    sections: Dict[SectionName, str]
    contact_info: ContactInfo
    skills: List[str] = Field(default_factory=list)
    metrics: CvMetrics

    def section(self, name: SectionName) -> str:
        return self.sections.get(name, "")

    @property
    def detected_sections(self) -> List[SectionName]:
        return [name for name in SECTION_NAMES if self.section(name)]


# ---------------------------------------------------------------------------
# Scorer output
# ---------------------------------------------------------------------------

class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    improvement_score: int = Field(..., ge=0, le=100)
    insights: List[str]
    detected_sections: List[SectionName]
    metrics: CvMetrics
    # "local" or "mistral"
    provider: str


# ---------------------------------------------------------------------------
# ReviewResult - archived record of one completed review
# ---------------------------------------------------------------------------

class ReviewResult(BaseModel):
    """
    Immutable once created. References (does not own) the CV file and the
    report artifact in object storage.

    report_ref / email_sent are only set for advanced reviews; email_sent is
    None when no address was on file.
    """
    model_config = ConfigDict(frozen=True)

    identity: str
    review_type: ReviewType
    cv_file_name: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    improvement_score: int = Field(..., ge=0, le=100)
    insights: List[str]
    detected_sections: List[SectionName]
    metrics: CvMetrics
    provider: str = "local"
    report_ref: Optional[str] = None
    email_sent: Optional[bool] = None
