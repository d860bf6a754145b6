"""
store.py - Data access facade for CVCoach (PostgreSQL).

Two groups of functions, each taking an AsyncSession:
  - review archive: append_review, purge_reviews_before
  - user profiles:  save_user_email, get_user_email

Plus the collaborator adapters the conversation core is wired with
(SqlReviewArchive, SqlProfileDirectory). Each adapter call opens its own
session scope and commits.

Design principles:
  - No raw SQL: ORM-only queries
  - Logs identity_tag() only, never phone numbers, emails or CV content
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cvcoach.conversation.schemas import identity_tag
from cvcoach.models.review_result import ReviewResultORM
from cvcoach.models.user_profile import UserProfileORM
from cvcoach.pipeline.schemas import ReviewResult

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


# ---------------------------------------------------------------------------
# Review archive
# ---------------------------------------------------------------------------

async def append_review(db: AsyncSession, identity: str, review: ReviewResult) -> str:
    """
    Insert one ReviewResult row and return its record id.
    Uses flush() (not commit()); the caller owns the transaction.
    """
    orm = ReviewResultORM(
        identity=identity,
        review_type=review.review_type.value,
        cv_file_name=review.cv_file_name,
        improvement_score=review.improvement_score,
        insights=list(review.insights),
        detected_sections=[s.value for s in review.detected_sections],
        metrics=review.metrics.model_dump(),
        provider=review.provider,
        report_ref=review.report_ref,
        email_sent=review.email_sent,
        reviewed_at=review.timestamp,
    )
    db.add(orm)
    await db.flush()
    logger.info(
        "Archived review record_id=%s identity=%s review_type=%s",
        orm.id, identity_tag(identity), review.review_type.value,
    )
    return orm.id


async def purge_reviews_before(db: AsyncSession, cutoff: datetime) -> int:
    """Delete archive rows created before cutoff. Returns the number deleted."""
    result = await db.execute(
        delete(ReviewResultORM).where(ReviewResultORM.created_at < cutoff)
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# User profiles
# ---------------------------------------------------------------------------

async def save_user_email(db: AsyncSession, identity: str, email: str) -> None:
    """Upsert the delivery email for an identity."""
    existing = await db.execute(
        select(UserProfileORM).where(UserProfileORM.identity == identity)
    )
    orm = existing.scalar_one_or_none()
    if orm is None:
        db.add(UserProfileORM(identity=identity, email=email))
    else:
        orm.email = email
    await db.flush()
    logger.info("Saved profile email identity=%s", identity_tag(identity))


async def get_user_email(db: AsyncSession, identity: str) -> Optional[str]:
    result = await db.execute(
        select(UserProfileORM.email).where(UserProfileORM.identity == identity)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Collaborator adapters
# ---------------------------------------------------------------------------

class SqlReviewArchive:
    """ReviewArchive over the review_results table."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def append(self, identity: str, review: ReviewResult) -> str:
        async with self._session_factory() as db:
            record_id = await append_review(db, identity, review)
            await db.commit()
        return record_id

    async def purge_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as db:
            deleted = await purge_reviews_before(db, cutoff)
            await db.commit()
        return deleted


class SqlProfileDirectory:
    """ProfileDirectory over the user_profiles table."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def save_email(self, identity: str, email: str) -> None:
        async with self._session_factory() as db:
            await save_user_email(db, identity, email)
            await db.commit()

    async def get_email(self, identity: str) -> Optional[str]:
        async with self._session_factory() as db:
            return await get_user_email(db, identity)
