"""
tasks/rating_tasks.py
Celery tasks that repair rating aggregates out of band:
- one provider, enqueued when an inline recompute after a review fails
- every provider, on the beat schedule

Both are full recomputes, so running twice has no side effect.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import enable_sqlite_savepoints
from config.settings import settings
from services.rating.service import recompute_all_ratings, recompute_provider_rating
from shared.utils.providers import ProviderRef
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _session_factory():
    """
    Fresh engine per task run. Each run owns its event loop, so pooled
    connections from the web process's engine cannot be reused here.
    """
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    if settings.is_sqlite:
        enable_sqlite_savepoints(engine)
    return engine, async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def _recompute_one(provider_id: int, provider_type: str) -> dict:
    ref = ProviderRef.parse(provider_type, provider_id)
    engine, Session = _session_factory()
    try:
        async with Session() as db:
            aggregate = await recompute_provider_rating(db, ref)
            await db.commit()
    finally:
        await engine.dispose()
    return {
        "provider": str(ref),
        "average_rating": str(aggregate.average_rating),
        "total_reviews": aggregate.total_reviews,
    }


async def _recompute_all() -> int:
    engine, Session = _session_factory()
    try:
        async with Session() as db:
            processed = await recompute_all_ratings(db)
            await db.commit()
    finally:
        await engine.dispose()
    return processed


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=5, default_retry_delay=60)
def recompute_provider_rating_task(self, provider_id: int, provider_type: str):
    """Recompute one provider and all of its services."""
    try:
        result = asyncio.run(_recompute_one(provider_id, provider_type))
    except Exception as exc:
        logger.error(
            f"Rating repair failed for {provider_type}#{provider_id}: {exc}",
            exc_info=True,
        )
        raise self.retry(exc=exc)
    logger.info(f"Rating repaired: {result}")
    return result


@celery_app.task
def repair_all_ratings():
    """Periodic full pass over every organizer and supplier."""
    processed = asyncio.run(_recompute_all())
    logger.info(f"Rating repair pass complete: {processed} providers")
    return {"providers_processed": processed}
