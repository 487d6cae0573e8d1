"""
Recommendation generation job — runs after pattern detection (or on demand,
optionally scoped to one site) for every business with recent patterns.
"""

import asyncio
import time
from datetime import timedelta

import structlog

from db.models import utcnow
from db.store import SqlAlchemyStore
from recommendations.engine import GenerationOptions, GenerationResult, generate_and_store_recommendations
from workers.celery_app import celery_app
from workers.folding import fold_sites

logger = structlog.get_logger()


async def generate_for_site(
    session_factory,
    site_id: str,
    window_days: int,
    min_severity: float,
    max_recommendations: int,
) -> GenerationResult:
    async with session_factory() as db:
        store = SqlAlchemyStore(db)
        business = await store.get_business_by_site(site_id)
        if business is None:
            raise LookupError(f"No business for site {site_id}")
        return await generate_and_store_recommendations(
            store,
            GenerationOptions(
                site_id=site_id,
                business_id=business.business_id,
                analysis_window_days=window_days,
                min_severity=min_severity,
                max_recommendations=max_recommendations,
                include_peer_data=True,
            ),
        )


async def run_recommendation_generation(
    session_factory,
    site_id: str | None = None,
    window_days: int = 7,
    min_severity: float = 0.3,
    max_recommendations: int = 5,
    batch_size: int = 10,
) -> dict:
    started = time.perf_counter()
    try:
        if site_id:
            site_ids = [site_id]
        else:
            async with session_factory() as db:
                site_ids = await SqlAlchemyStore(db).list_sites_with_patterns(utcnow() - timedelta(days=window_days))
    except Exception as exc:
        logger.error("recommendations.site_list_failed", error=str(exc), exc_info=True)
        return {
            "status": "failed",
            "businesses_processed": 0,
            "errors": [str(exc)],
            "execution_time_ms": int((time.perf_counter() - started) * 1000),
        }

    folded = await fold_sites(
        site_ids,
        lambda sid: generate_for_site(session_factory, sid, window_days, min_severity, max_recommendations),
        batch_size,
    )

    errors = [f"{e.site_id}: {e.error}" for e in folded.errors]
    for result in folded.results:
        errors.extend(f"{result.site_id}: {message}" for message in result.errors)

    summary = {
        "status": "success",
        "businesses_processed": len(folded.results),
        "recommendations_generated": sum(r.generated for r in folded.results),
        "recommendations_stored": sum(r.stored for r in folded.results),
        "errors": errors,
        "execution_time_ms": int((time.perf_counter() - started) * 1000),
    }
    logger.info(
        "recommendations.run_complete",
        businesses=summary["businesses_processed"],
        generated=summary["recommendations_generated"],
        stored=summary["recommendations_stored"],
        errors=len(errors),
    )
    return summary


@celery_app.task(
    name="workers.recommendation_generation.generate_recommendations",
    bind=True,
    max_retries=3,
    default_retry_delay=120,
    acks_late=True,
)
def generate_recommendations(self, site_id: str | None = None):
    """Generate recommendations for businesses with patterns in the analysis window."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from core.config import get_settings

    run_id = self.request.id or "manual"
    logger.info("recommendations.run_started", run_id=run_id, site_id=site_id)

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await run_recommendation_generation(
                session_factory,
                site_id=site_id,
                window_days=settings.pattern_analysis_window_days,
                min_severity=settings.recommendation_min_severity,
                max_recommendations=settings.recommendation_max_per_business,
                batch_size=settings.pattern_site_batch_size,
            )
        finally:
            await engine.dispose()

    summary = asyncio.run(_run())
    summary["run_id"] = run_id
    return summary
