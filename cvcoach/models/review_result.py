"""
models/review_result.py - SQLAlchemy ORM model for the review archive.

Table: review_results
Append-only from the application's point of view; rows are removed only by
the retention sweep (created_at older than the retention horizon).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cvcoach.database import Base


class ReviewResultORM(Base):
    """
    One completed review.

    insights / detected_sections / metrics: JSONB blobs mirroring ReviewResult.
    improvement_score + review_type: denormalized for analytics queries.
    """
    __tablename__ = "review_results"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    identity: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Normalized sender identity (digits only)",
    )
    review_type: Mapped[str] = mapped_column(String(16), nullable=False)
    cv_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    improvement_score: Mapped[int] = mapped_column(Integer, nullable=False)
    insights: Mapped[list] = mapped_column(JSONB, nullable=False)
    detected_sections: Mapped[list] = mapped_column(JSONB, nullable=False)
    metrics: Mapped[dict] = mapped_column(JSONB, nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False, default="local")
    report_ref: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    email_sent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    reviewed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="ReviewResult.timestamp",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
