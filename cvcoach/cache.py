"""
cache.py - Redis layer for CVCoach conversation sessions.

Namespace conventions:
  session:{identity}   -> Session JSON    TTL session_ttl_days (reset on every write)

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis
  - RedisSessionStore wraps the client; no module-level global state
  - Logs only identity_tag(), never the phone number or session contents
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from cvcoach.conversation.schemas import Session, identity_tag
from cvcoach.errors import PersistenceFailure

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session"


def make_session_key(identity: str) -> str:
    """Build Redis key for a conversation session: session:{identity}"""
    return f"{SESSION_PREFIX}:{identity}"


async def create_redis_pool(redis_url: str) -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup. Verifies connectivity with PING.
    """
    client = aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established")
    return client


class RedisSessionStore:
    """SessionStore backed by Redis string keys holding Session JSON."""

    def __init__(self, client: aioredis.Redis, ttl_seconds: int):
        self._client = client
        self._ttl = ttl_seconds

    async def get(self, identity: str) -> Optional[Session]:
        """
        Return the stored Session, or None if it expired / never existed.
        A corrupt payload is treated as absent (and logged).
        """
        try:
            raw = await self._client.get(make_session_key(identity))
        except aioredis.RedisError as exc:
            raise PersistenceFailure(f"Session read failed: {exc}") from exc
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Discarding unreadable session identity=%s errors=%d",
                identity_tag(identity), exc.error_count(),
            )
            return None

    async def upsert(self, identity: str, session: Session) -> None:
        try:
            await self._client.setex(make_session_key(identity), self._ttl, session.model_dump_json())
        except aioredis.RedisError as exc:
            raise PersistenceFailure(f"Session write failed: {exc}") from exc
        logger.info(
            "Session saved identity=%s state=%s ttl=%ds",
            identity_tag(identity), session.state.value, self._ttl,
        )
