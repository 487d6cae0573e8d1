"""
Batch jobs — site folding, pattern detection and recommendation generation runs,
Celery task wrappers and the on-demand job endpoints.
"""

import asyncio
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.models import Pattern, Recommendation
from db.session import Base
from workers.folding import chunked, fold_sites
from workers.pattern_detection import detect_patterns_all_sites, run_pattern_detection
from workers.peer_groups import recalculate_industry
from workers.recommendation_generation import run_recommendation_generation


@pytest.fixture
async def job_db(tmp_path, make_business, make_session):
    """File-backed SQLite with one busy site and one quiet site."""
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    busy = make_business(site_id="site_busy")
    quiet = make_business(owner_id="auth0|quiet", site_id="site_quiet")
    async with session_factory() as db:
        db.add_all([busy, quiet])
        db.add_all([make_session("site_busy", ["/", "/cart"]) for _ in range(150)])
        db.add_all([make_session("site_quiet", ["/", "/cart"]) for _ in range(10)])
        await db.commit()

    yield SimpleNamespace(url=db_url, engine=engine, session_factory=session_factory, busy=busy, quiet=quiet)
    await engine.dispose()


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
class TestFolding:
    async def test_collects_results_and_errors(self):
        async def handler(site_id: str) -> str:
            if site_id == "bad":
                raise RuntimeError("boom")
            return site_id.upper()

        folded = await fold_sites(["a", "bad", "c"], handler, batch_size=2)

        assert folded.results == ["A", "C"]
        assert [(e.site_id, e.error) for e in folded.errors] == [("bad", "boom")]
        assert folded.batches == 2

    async def test_sites_run_sequentially_in_order(self):
        seen = []

        async def handler(site_id):
            seen.append(site_id)
            await asyncio.sleep(0)
            return site_id

        await fold_sites([f"s{i}" for i in range(25)], handler, batch_size=10)
        assert seen == [f"s{i}" for i in range(25)]

    def test_chunked(self):
        assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
        with pytest.raises(ValueError):
            chunked([1], 0)


@pytest.mark.asyncio
class TestPatternDetectionRun:
    async def test_detects_and_stores_for_busy_site_only(self, job_db):
        summary = await run_pattern_detection(job_db.session_factory)

        assert summary["status"] == "success"
        assert summary["sites_analyzed"] == 2
        assert summary["sites_failed"] == 0
        assert summary["patterns_stored"] == 1
        async with job_db.session_factory() as db:
            patterns = (await db.execute(select(Pattern))).scalars().all()
        assert [(p.site_id, p.pattern_metadata["stage"]) for p in patterns] == [("site_busy", "/cart")]

    async def test_rerun_same_day_stores_nothing_new(self, job_db):
        await run_pattern_detection(job_db.session_factory)
        again = await run_pattern_detection(job_db.session_factory)

        assert again["patterns_detected"] == 1
        assert again["patterns_stored"] == 0
        assert await _count(job_db.session_factory, Pattern) == 1

    async def test_one_failing_site_does_not_stop_the_run(self, job_db, monkeypatch):
        from analytics import pattern_detector

        real_detect = pattern_detector.detect_patterns

        async def flaky_detect(store, site_id, window):
            if site_id == "site_quiet":
                raise RuntimeError("site exploded")
            return await real_detect(store, site_id, window)

        monkeypatch.setattr("workers.pattern_detection.detect_patterns", flaky_detect)

        summary = await run_pattern_detection(job_db.session_factory)

        assert summary["status"] == "success"
        assert summary["sites_failed"] == 1
        assert summary["errors"] == ["site_quiet: site exploded"]
        assert summary["patterns_stored"] == 1

    async def test_site_list_failure_fails_the_run(self):
        def broken_factory():
            raise ConnectionError("database down")

        summary = await run_pattern_detection(broken_factory)

        assert summary["status"] == "failed"
        assert summary["errors"] == ["database down"]


@pytest.mark.asyncio
class TestRecommendationGenerationRun:
    async def test_generates_for_sites_with_patterns(self, job_db):
        await run_pattern_detection(job_db.session_factory)

        summary = await run_recommendation_generation(job_db.session_factory)

        assert summary["status"] == "success"
        assert summary["businesses_processed"] == 1
        assert summary["recommendations_stored"] == 1
        async with job_db.session_factory() as db:
            rec = (await db.execute(select(Recommendation))).scalar_one()
        assert rec.business_id == job_db.busy.business_id
        assert rec.title == "Optimize shopping cart experience"
        assert rec.status == "NEW"

    async def test_scoped_to_one_site(self, job_db):
        await run_pattern_detection(job_db.session_factory)

        summary = await run_recommendation_generation(job_db.session_factory, site_id="site_quiet")

        assert summary["businesses_processed"] == 1
        assert summary["recommendations_stored"] == 0

    async def test_unknown_site_is_reported(self, job_db):
        summary = await run_recommendation_generation(job_db.session_factory, site_id="site_ghost")

        assert summary["status"] == "success"
        assert summary["businesses_processed"] == 0
        assert summary["errors"] == ["site_ghost: No business for site site_ghost"]


def test_detection_task_runs_and_chains_recommendations(tmp_path, monkeypatch, make_business, make_session):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'task.db'}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            db.add(make_business(site_id="site_task"))
            db.add_all([make_session("site_task", ["/", "/checkout"]) for _ in range(120)])
            await db.commit()

    asyncio.run(_seed())

    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(database_url=db_url, pattern_analysis_window_days=7, pattern_site_batch_size=10),
    )
    dispatched: list[str] = []
    monkeypatch.setattr(
        "workers.pattern_detection.celery_app.send_task",
        lambda name, **kwargs: dispatched.append(name),
    )

    result = detect_patterns_all_sites.run()

    assert result["status"] == "success"
    assert result["run_id"] == "manual"
    assert result["patterns_stored"] == 1
    assert dispatched == ["workers.recommendation_generation.generate_recommendations"]

    asyncio.run(engine.dispose())


@pytest.mark.asyncio
class TestJobsAPI:
    async def test_enqueue_pattern_detection(self, client: AsyncClient, monkeypatch):
        sent = []

        def fake_send_task(name, **kwargs):
            sent.append((name, kwargs))
            return SimpleNamespace(id="task-123")

        monkeypatch.setattr("api.v1.routers.jobs.celery_app.send_task", fake_send_task)

        resp = await client.post("/api/v1/jobs/pattern-detection")

        assert resp.status_code == 202
        assert resp.json() == {
            "task_id": "task-123",
            "task": "workers.pattern_detection.detect_patterns_all_sites",
            "status": "queued",
        }
        assert sent == [("workers.pattern_detection.detect_patterns_all_sites", {})]

    async def test_enqueue_recommendations_for_one_site(self, client: AsyncClient, monkeypatch):
        sent = []

        def fake_send_task(name, **kwargs):
            sent.append((name, kwargs))
            return SimpleNamespace(id="task-456")

        monkeypatch.setattr("api.v1.routers.jobs.celery_app.send_task", fake_send_task)

        resp = await client.post("/api/v1/jobs/recommendation-generation", json={"site_id": "site_a"})

        assert resp.status_code == 202
        assert sent == [
            ("workers.recommendation_generation.generate_recommendations", {"kwargs": {"site_id": "site_a"}})
        ]

    async def test_enqueue_peer_group_recalculation(self, client: AsyncClient, monkeypatch):
        sent = []

        def fake_send_task(name, **kwargs):
            sent.append((name, kwargs))
            return SimpleNamespace(id="task-789")

        monkeypatch.setattr("api.v1.routers.jobs.celery_app.send_task", fake_send_task)

        resp = await client.post("/api/v1/jobs/peer-groups", json={"industry": "fashion"})

        assert resp.status_code == 202
        assert resp.json()["task"] == "workers.peer_groups.recalculate_industry"
        assert sent == [("workers.peer_groups.recalculate_industry", {"kwargs": {"industry": "fashion"}})]

    async def test_peer_group_job_requires_industry(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr("api.v1.routers.jobs.celery_app.send_task", lambda name, **kwargs: None)

        resp = await client.post("/api/v1/jobs/peer-groups", json={})

        assert resp.status_code == 400


def test_peer_group_task_recalculates_industry(tmp_path, monkeypatch, make_business):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'peers.db'}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    businesses = [make_business(owner_id=f"auth0|peer-{i}", site_id=f"site_peer_{i}") for i in range(3)]

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            db.add_all(businesses)
            await db.commit()

    asyncio.run(_seed())
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))

    result = recalculate_industry.run(businesses[0].industry)

    assert result["status"] == "success"
    assert result["recalculated"] == 3
    assert result["errors"] == []
    assert result["run_id"] == "manual"

    asyncio.run(engine.dispose())
