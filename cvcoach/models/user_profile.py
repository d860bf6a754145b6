"""
models/user_profile.py - SQLAlchemy ORM model for per-user delivery preferences.

Table: user_profiles
Keyed by normalized identity. Holds the email address a user gave for report
delivery so later advanced reviews can reuse it.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from cvcoach.database import Base


class UserProfileORM(Base):
    __tablename__ = "user_profiles"

    identity: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
