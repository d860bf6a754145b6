"""
segmenter.py - Heuristic CV section segmentation and field extraction.

Entry point: segment(raw_text: str, structured_meta: dict | None) -> CvData

Heuristics are tolerant by construction: missing headings produce empty
sections, never errors. Only the extractor raises (no text at all).

Heading detection:
  1. Explicit headings from structured_meta["headings"] (DOCX styles) are
     tried first. A section found this way ends at the next explicit heading.
  2. Otherwise the first short line matching the section's keyword pattern
     (up to two qualifier words either side, optional trailing ':' or '-').
     Such a section ends at the next line that looks like any heading.
"""
from __future__ import annotations

import math
import re
from typing import Any, Optional

from cvcoach.pipeline.schemas import (
    SECTION_NAMES,
    ContactInfo,
    CvData,
    CvMetrics,
    SectionName,
)

CHARS_PER_PAGE = 3000
MAX_HEADING_CHARS = 40
MAX_GENERIC_HEADING_WORDS = 4

# ---------------------------------------------------------------------------
# Section heading keywords
# ---------------------------------------------------------------------------

SECTION_KEYWORDS: dict[SectionName, str] = {
    SectionName.summary: r"profile|summary|objective|about me",
    SectionName.contact: r"contact|email|phone|address",
    SectionName.experience: r"experience|employment|work history|professional background",
    SectionName.education: r"education|qualifications?|academic|degree|university",
    SectionName.skills: r"skills|expertise|competencies|proficiencies|technical",
    SectionName.projects: r"projects|portfolio|works",
    SectionName.certifications: r"certifications|certificates|credentials",
    SectionName.languages: r"languages|language proficiency",
    SectionName.interests: r"interests|hobbies|activities",
}

_QUALIFIER = r"[A-Za-z&/]+"

HEADING_PATTERNS: dict[SectionName, re.Pattern[str]] = {
    name: re.compile(
        rf"^(?:{_QUALIFIER}\s+){{0,2}}(?:{keywords})(?:\s+{_QUALIFIER}){{0,2}}\s*[:\-]?$",
        re.IGNORECASE,
    )
    for name, keywords in SECTION_KEYWORDS.items()
}

# Looser match used against explicit (style-tagged) headings
KEYWORD_PATTERNS: dict[SectionName, re.Pattern[str]] = {
    name: re.compile(rf"\b(?:{keywords})\b", re.IGNORECASE)
    for name, keywords in SECTION_KEYWORDS.items()
}

_GENERIC_HEADING = re.compile(r"^[A-Z][A-Za-z &/]*[:\-]?$")

# ---------------------------------------------------------------------------
# Contact field patterns
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_PATTERN = re.compile(r"(?:\+\d{1,3}[\s-]?)?\(?\d{3,4}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
LINKEDIN_PATTERN = re.compile(r"linkedin\.com/in/[A-Za-z0-9_-]+", re.IGNORECASE)
WEBSITE_PATTERN = re.compile(
    r"https?://(?!(?:[\w-]+\.)*linkedin\.com)[A-Za-z0-9][A-Za-z0-9-]+[A-Za-z0-9]\.\S{2,}",
    re.IGNORECASE,
)

_SKILL_SPLIT = re.compile(r"[,;\n•·▪●◦|]")


# ---------------------------------------------------------------------------
# Heading helpers
# ---------------------------------------------------------------------------

def _is_section_heading(line: str) -> bool:
    if not line or len(line) > MAX_HEADING_CHARS:
        return False
    return any(pattern.match(line) for pattern in HEADING_PATTERNS.values())


def _looks_like_heading(line: str) -> bool:
    """Known section heading, or a short ALL-CAPS / colon-terminated capitalized line."""
    if _is_section_heading(line):
        return True
    if not line or len(line) > MAX_HEADING_CHARS or not _GENERIC_HEADING.match(line):
        return False
    if len(line.split()) > MAX_GENERIC_HEADING_WORDS:
        return False
    body = line.rstrip(":-").strip()
    if line.endswith((":", "-")):
        return True
    return body.isupper() and sum(ch.isalpha() for ch in body) >= 3


def _find_heading(
    lines: list[str],
    name: SectionName,
    explicit: set[str],
) -> tuple[Optional[int], bool]:
    """Return (line index, found via explicit heading)."""
    if explicit:
        for idx, line in enumerate(lines):
            if line in explicit and KEYWORD_PATTERNS[name].search(line):
                return idx, True
    pattern = HEADING_PATTERNS[name]
    for idx, line in enumerate(lines):
        if line and len(line) <= MAX_HEADING_CHARS and pattern.match(line):
            return idx, False
    return None, False


def _section_body(lines: list[str], start: int, explicit: set[str], use_explicit: bool) -> str:
    end = len(lines)
    for idx in range(start + 1, len(lines)):
        line = lines[idx]
        boundary = line in explicit if use_explicit else _looks_like_heading(line)
        if boundary:
            end = idx
            break
    return "\n".join(lines[start + 1:end]).strip()


def split_sections(raw_text: str, headings: Optional[list[str]] = None) -> dict[SectionName, str]:
    lines = [line.strip() for line in raw_text.splitlines()]
    explicit = {h.strip() for h in (headings or []) if h and h.strip()}

    sections: dict[SectionName, str] = {}
    for name in SECTION_NAMES:
        start, via_explicit = _find_heading(lines, name, explicit)
        if start is None:
            sections[name] = ""
            continue
        sections[name] = _section_body(lines, start, explicit, via_explicit)
    return sections


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------

def extract_contact_info(text: str) -> ContactInfo:
    def first(pattern: re.Pattern[str]) -> Optional[str]:
        match = pattern.search(text)
        return match.group(0) if match else None

    website = first(WEBSITE_PATTERN)
    return ContactInfo(
        email=first(EMAIL_PATTERN),
        phone=first(PHONE_PATTERN),
        linkedin=first(LINKEDIN_PATTERN),
        website=website.rstrip(".,;)") if website else None,
    )


def extract_skills(skills_section: str) -> list[str]:
    skills = []
    for part in _SKILL_SPLIT.split(skills_section):
        item = part.strip().lstrip("-*– ").strip()
        if item:
            skills.append(item)
    return skills


def compute_metrics(
    text: str,
    sections: dict[SectionName, str],
    contact: ContactInfo,
    skills: list[str],
) -> CvMetrics:
    char_count = len(text)
    return CvMetrics(
        line_count=sum(1 for line in text.splitlines() if line.strip()),
        word_count=len(text.split()),
        char_count=char_count,
        estimated_pages=math.ceil(char_count / CHARS_PER_PAGE),
        has_contact_info=bool(contact.email or contact.phone),
        section_count=sum(1 for content in sections.values() if content),
        skill_count=len(skills),
    )


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def segment(raw_text: str, structured_meta: Optional[dict[str, Any]] = None) -> CvData:
    """
    Split raw CV text into the nine named sections and derive contact
    fields, skills and metrics. Never raises on missing structure.
    """
    meta = structured_meta or {}
    sections = split_sections(raw_text, meta.get("headings"))
    contact = extract_contact_info(raw_text)
    skills = extract_skills(sections[SectionName.skills])
    metrics = compute_metrics(raw_text, sections, contact, skills)
    return CvData(
        full_text=raw_text,
        sections=sections,
        contact_info=contact,
        skills=skills,
        metrics=metrics,
    )
