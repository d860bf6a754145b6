"""
Test configuration for CVCoach tests.

Provides in-memory fakes for every collaborator the conversation core and the
review graph talk to, plus generators for small PDF / DOCX CVs (reportlab and
python-docx) so tests never need fixture files on disk.

Run from the repository root: pytest cvcoach/tests -v
"""
from __future__ import annotations

import io
import sys
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest

_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from cvcoach.conversation.schemas import Session
from cvcoach.errors import PersistenceFailure
from cvcoach.integrations.email import DeliveryResult
from cvcoach.integrations.storage import LocalObjectStorage
from cvcoach.pipeline.schemas import ReviewResult, ReviewType

SIGNING_KEY = "test-signing-key-0123456789abcdef"
PUBLIC_BASE_URL = "http://test"

# ---------------------------------------------------------------------------
# Sample CV
# ---------------------------------------------------------------------------

SAMPLE_CV_LINES = [
    "Jane Doe",
    "jane.doe@example.com | +44 7700 900 1234",
    "Professional Summary",
    "Data engineer with eight years of experience building reliable",
    "batch and streaming pipelines for retail analytics teams.",
    "Work Experience",
    "Senior Data Engineer, Acme Retail (2019 to present)",
    "Led the migration of nightly batch jobs to a streaming platform,",
    "cutting report latency from twelve hours to fifteen minutes.",
    "Designed a data quality framework adopted by four product teams,",
    "reducing incidents caused by malformed upstream data by sixty percent.",
    "Mentored three junior engineers through their first production launches.",
    "Education",
    "BSc Computer Science, University of Leeds (2014)",
    "Skills",
    "Python, SQL, Spark, Airflow, dbt, Kafka, Docker, Kubernetes, Terraform, AWS",
]

SAMPLE_CV_TEXT = "\n".join(SAMPLE_CV_LINES)


def make_pdf_bytes(lines: list[str]) -> bytes:
    """Single-page PDF with one drawString per line."""
    from reportlab.lib.pagesizes import A4
    from reportlab.pdfgen import canvas

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setFont("Helvetica", 10)
    y = A4[1] - 50
    for line in lines:
        pdf.drawString(40, y, line)
        y -= 16
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def make_docx_bytes(blocks: list[tuple[str, Optional[str]]]) -> bytes:
    """blocks: (text, style) pairs; style None means a Normal paragraph."""
    from docx import Document

    document = Document()
    for text, style in blocks:
        if style is None:
            document.add_paragraph(text)
        else:
            document.add_paragraph(text, style=style)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class InMemorySessionStore:
    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self.writes = 0
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, identity: str) -> Optional[Session]:
        if self.fail_reads:
            raise PersistenceFailure("store offline")
        return self.sessions.get(identity)

    async def upsert(self, identity: str, session: Session) -> None:
        if self.fail_writes:
            raise PersistenceFailure("store offline")
        self.writes += 1
        self.sessions[identity] = session


class FakeMessenger:
    """Records outbound texts; serves attachment downloads from a url -> bytes map."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.media: dict[str, bytes] = {}
        self.downloads: list[str] = []

    async def send_text(self, identity: str, body: str) -> bool:
        self.sent.append((identity, body))
        return True

    async def download_media(self, url: str, suffix: str) -> Path:
        self.downloads.append(url)
        if url not in self.media:
            raise RuntimeError(f"no media at {url}")
        fd, name = tempfile.mkstemp(suffix=suffix, prefix="cv-")
        with open(fd, "wb") as out:
            out.write(self.media[url])
        return Path(name)

    def texts(self) -> list[str]:
        return [body for _, body in self.sent]


class FakeGateway:
    def __init__(self):
        self.calls: list[tuple[str, ReviewType]] = []

    async def create_payment_link(self, identity: str, review_type: ReviewType) -> str:
        self.calls.append((identity, review_type))
        return f"https://pay.test/checkout/{identity}"


class FakeArchive:
    def __init__(self):
        self.records: list[tuple[str, ReviewResult]] = []
        self.purged_before: list[datetime] = []

    async def append(self, identity: str, review: ReviewResult) -> str:
        self.records.append((identity, review))
        return str(uuid.uuid4())

    async def purge_before(self, cutoff: datetime) -> int:
        self.purged_before.append(cutoff)
        return 0


class FakeProfiles:
    def __init__(self, fail: bool = False):
        self.emails: dict[str, str] = {}
        self.fail = fail

    async def save_email(self, identity: str, email: str) -> None:
        if self.fail:
            raise RuntimeError("database unavailable")
        self.emails[identity] = email

    async def get_email(self, identity: str) -> Optional[str]:
        return self.emails.get(identity)


class FakeMailer:
    def __init__(self, success: bool = True):
        self.success = success
        self.sent: list[dict] = []

    async def send(self, address, subject, html, text, attachment=None) -> DeliveryResult:
        self.sent.append(
            {"address": address, "subject": subject, "html": html, "text": text, "attachment": attachment}
        )
        if self.success:
            return DeliveryResult(success=True)
        return DeliveryResult(success=False, error="smtp down")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(
        root=str(tmp_path / "storage"),
        public_base_url=PUBLIC_BASE_URL,
        signing_key=SIGNING_KEY,
    )


@pytest.fixture
def sample_pdf() -> bytes:
    return make_pdf_bytes(SAMPLE_CV_LINES)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def archive() -> FakeArchive:
    return FakeArchive()


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()
