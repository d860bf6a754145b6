"""
retention.py - Time-boxed deletion of uploaded CVs, reports and review rows.

    sweep(storage, archive, horizon)            one pass, returns counts
    run_periodically(storage, archive, ...)     lifespan task, cancelled on shutdown

A session may still reference a swept CV; the next read raises StorageFailure
and the conversation asks for a fresh upload.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


async def sweep(
    storage: Any,
    archive: Any,
    horizon: timedelta,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    cutoff = (now or datetime.now(timezone.utc)) - horizon
    objects = await storage.purge_older_than(cutoff)
    reviews = await archive.purge_before(cutoff)
    logger.info("Retention sweep: objects=%d reviews=%d cutoff=%s", objects, reviews, cutoff.isoformat())
    return {"objects": objects, "reviews": reviews}


async def run_periodically(storage: Any, archive: Any, horizon: timedelta, interval_s: float) -> None:
    while True:
        try:
            await sweep(storage, archive, horizon)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("Retention sweep failed", exc_info=True)
        await asyncio.sleep(interval_s)
