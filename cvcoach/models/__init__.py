"""
models/__init__.py - imports all ORM models so Alembic's env.py sees them
via Base.metadata.
"""
from cvcoach.models.review_result import ReviewResultORM
from cvcoach.models.user_profile import UserProfileORM

__all__ = ["ReviewResultORM", "UserProfileORM"]
