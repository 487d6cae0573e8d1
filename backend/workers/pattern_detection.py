"""
Pattern detection job — daily sweep over every tracked site.

Sites are processed in fixed-size batches, one site at a time, each with its
own DB session. A site that fails is recorded and skipped; the run only
fails if the site list itself cannot be loaded.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import timedelta

import structlog

from analytics.pattern_detector import detect_patterns, store_patterns
from analytics.thresholds import DateRange
from core.errors import TransientStoreError
from db.models import utcnow
from db.store import SqlAlchemyStore
from workers.celery_app import celery_app
from workers.folding import fold_sites

logger = structlog.get_logger()


@dataclass
class SiteDetectionResult:
    site_id: str
    patterns_detected: int = 0
    patterns_stored: int = 0
    sessions_analyzed: int = 0
    execution_time_ms: int = 0
    errors: list[str] = field(default_factory=list)


async def detect_site(session_factory, site_id: str, window: DateRange) -> SiteDetectionResult:
    started = time.perf_counter()
    async with session_factory() as db:
        store = SqlAlchemyStore(db)
        patterns = await detect_patterns(store, site_id, window)
        stored = await store_patterns(store, patterns)

    result = SiteDetectionResult(
        site_id=site_id,
        patterns_detected=len(patterns),
        patterns_stored=stored.created,
        sessions_analyzed=sum(p.session_count for p in patterns),
        execution_time_ms=int((time.perf_counter() - started) * 1000),
        errors=stored.errors,
    )
    logger.info(
        "patterns.site_complete",
        site_id=site_id,
        detected=result.patterns_detected,
        stored=result.patterns_stored,
        elapsed_ms=result.execution_time_ms,
    )
    return result


async def run_pattern_detection(session_factory, window_days: int = 7, batch_size: int = 10) -> dict:
    """Detect and store patterns for every site. Returns a run summary."""
    started = time.perf_counter()
    end = utcnow()
    window = DateRange(start=end - timedelta(days=window_days), end=end)

    try:
        async with session_factory() as db:
            site_ids = await SqlAlchemyStore(db).list_site_ids()
    except Exception as exc:
        logger.error("patterns.site_list_failed", error=str(exc), exc_info=True)
        return {
            "status": "failed",
            "sites_analyzed": 0,
            "errors": [str(exc)],
            "execution_time_ms": int((time.perf_counter() - started) * 1000),
        }

    folded = await fold_sites(site_ids, lambda site_id: detect_site(session_factory, site_id, window), batch_size)

    summary = {
        "status": "success",
        "sites_analyzed": len(folded.results),
        "sites_failed": len(folded.errors),
        "sites_with_errors": len(folded.errors) + sum(1 for r in folded.results if r.errors),
        "patterns_detected": sum(r.patterns_detected for r in folded.results),
        "patterns_stored": sum(r.patterns_stored for r in folded.results),
        "batches": folded.batches,
        "errors": [f"{e.site_id}: {e.error}" for e in folded.errors],
        "analysis_window": {"start": window.start.isoformat(), "end": window.end.isoformat()},
        "execution_time_ms": int((time.perf_counter() - started) * 1000),
    }
    logger.info(
        "patterns.run_complete",
        sites=summary["sites_analyzed"],
        failed=summary["sites_failed"],
        detected=summary["patterns_detected"],
        stored=summary["patterns_stored"],
    )
    return summary


@celery_app.task(
    name="workers.pattern_detection.detect_patterns_all_sites",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
)
def detect_patterns_all_sites(self, trigger_recommendations: bool = True):
    """
    Daily pattern detection across all sites (Celery Beat, 02:00 UTC).

    Kicks off recommendation generation once patterns are stored.
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from core.config import get_settings

    run_id = self.request.id or "manual"
    logger.info("patterns.run_started", run_id=run_id)

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await run_pattern_detection(
                session_factory,
                window_days=settings.pattern_analysis_window_days,
                batch_size=settings.pattern_site_batch_size,
            )
        finally:
            await engine.dispose()

    summary = asyncio.run(_run())
    summary["run_id"] = run_id

    if summary["status"] == "failed":
        raise self.retry(exc=TransientStoreError("; ".join(summary["errors"])))

    if trigger_recommendations and summary["patterns_stored"] > 0:
        celery_app.send_task("workers.recommendation_generation.generate_recommendations")
    return summary
