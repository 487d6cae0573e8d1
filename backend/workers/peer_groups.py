"""Peer group recalculation — keeps cohorts current as businesses join an industry."""

import asyncio
import uuid

import structlog

from db.store import SqlAlchemyStore
from peers.matcher import recalculate_peer_groups_for_industry
from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.peer_groups.recalculate_industry",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def recalculate_industry(self, industry: str, exclude_business_id: str | None = None):
    """Recalculate peer groups for every business in ``industry``."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from core.config import get_settings

    run_id = self.request.id or "manual"

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_factory() as db:
                exclude = uuid.UUID(exclude_business_id) if exclude_business_id else None
                return await recalculate_peer_groups_for_industry(SqlAlchemyStore(db), industry, exclude)
        finally:
            await engine.dispose()

    try:
        recalculated, errors = asyncio.run(_run())
    except Exception as exc:
        logger.error("peers.recalculation_run_failed", industry=industry, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success",
        "industry": industry,
        "recalculated": recalculated,
        "errors": errors,
        "run_id": run_id,
    }
    logger.info("peers.recalculation_run_complete", **summary)
    return summary
