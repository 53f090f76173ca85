# tendermatch/tasks.py
"""
Celery entry points. Each task runs its coroutine under asyncio.run with a
fresh engine and fresh http clients, since pooled connections cannot cross
event loops.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tendermatch import deepinfra
from tendermatch.celery_app import celery_app
from tendermatch.config import settings
from tendermatch.redis_client import close_redis
from tendermatch.services import Services

logger = logging.getLogger(__name__)


def _session_factory():
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def _sync_tenders(page: int, page_size: int, services: Optional[Services] = None):
    engine, factory = _session_factory()
    services = services or Services(session_factory=factory)
    try:
        async with factory() as session:
            result = await services.synchronizer.sync(session, page=page, page_size=page_size)
        return result.to_dict()
    finally:
        await services.aclose()
        await deepinfra.close_client()
        await close_redis()
        await engine.dispose()


async def _refresh_recommendations(limit: int, services: Optional[Services] = None):
    engine, factory = _session_factory()
    services = services or Services(session_factory=factory)
    try:
        async with factory() as session:
            return await services.recommendations.refresh_all(session, limit=limit)
    finally:
        await services.aclose()
        await deepinfra.close_client()
        await close_redis()
        await engine.dispose()


@celery_app.task(bind=True, name="tendermatch.tasks.sync_tenders_task")
def sync_tenders_task(self, page: int = 1, page_size: Optional[int] = None):
    try:
        summary = asyncio.run(_sync_tenders(page, page_size or settings.tender_sync_page_size))
        logger.info("Tender sync finished: %s", summary)
        return summary
    except Exception:
        logger.exception("Tender sync failed (page=%s)", page)
        raise


@celery_app.task(bind=True, name="tendermatch.tasks.refresh_recommendations_task")
def refresh_recommendations_task(self, limit: int = 10):
    try:
        summary = asyncio.run(_refresh_recommendations(limit))
        logger.info("Recommendation refresh finished: %s", summary)
        return summary
    except Exception:
        logger.exception("Recommendation refresh failed")
        raise
