"""
Peer benchmarks — site metrics, percentile buckets and the benchmark report.
"""

import pytest

from core.errors import NotFoundError
from db.store import SqlAlchemyStore
from peers.benchmarks import (
    MIN_PEER_GROUP_SIZE_FOR_BENCHMARK,
    SiteMetrics,
    build_benchmark,
    calculate_percentile,
    calculate_site_metrics,
    compare_metrics,
)

OWNER = "auth0|bench-owner"


def _sessions(make_session, site_id: str, total: int, converted: int, carts: int = 0, checkouts: int = 0):
    sessions = []
    for i in range(total):
        journey = ["/", "/product/a"]
        if i < carts:
            journey.append("/cart")
        if i < checkouts:
            journey.append("/checkout")
        sessions.append(make_session(site_id, journey, converted=i < converted))
    return sessions


class TestSiteMetrics:
    def test_rates_are_percentages(self, make_session):
        sessions = _sessions(make_session, "s", total=10, converted=2, carts=4, checkouts=1)
        sessions[-1].bounced = True

        metrics = calculate_site_metrics(sessions)

        assert metrics.conversion_rate == pytest.approx(20.0)
        assert metrics.cart_abandonment_rate == pytest.approx(75.0)
        assert metrics.bounce_rate == pytest.approx(10.0)
        assert metrics.avg_order_value == 0.0
        assert metrics.session_count == 10

    def test_empty(self):
        assert calculate_site_metrics([]) == SiteMetrics()


class TestPercentile:
    def test_buckets_when_higher_is_better(self):
        peers = [1.0, 2.0, 3.0, 4.0]
        assert calculate_percentile(5.0, peers) == ("top-25", 100)
        assert calculate_percentile(2.5, peers) == ("median", 50)
        assert calculate_percentile(0.5, peers) == ("bottom-25", 0)

    def test_lower_is_better_inverts(self):
        assert calculate_percentile(0.5, [1.0, 2.0, 3.0, 4.0], higher_is_better=False) == ("top-25", 100)

    def test_no_peers(self):
        assert calculate_percentile(3.0, []) == ("median", 50)

    def test_compare_metrics(self):
        user = SiteMetrics(conversion_rate=4.0, cart_abandonment_rate=50.0, bounce_rate=30.0)
        peers = [SiteMetrics(conversion_rate=2.0, cart_abandonment_rate=60.0, bounce_rate=40.0) for _ in range(5)]

        conversion, abandonment, bounce = compare_metrics(user, peers)

        assert conversion.metric == "Conversion rate"
        assert conversion.performance == "above"
        assert conversion.percentile == "top-25"
        assert abandonment.performance == "below"
        assert abandonment.percentile == "top-25"
        assert bounce.peer_average == 40.0


@pytest.mark.asyncio
class TestBuildBenchmark:
    async def _setup(self, test_db, make_business, make_session, peers_with_traffic: int):
        store = SqlAlchemyStore(test_db)
        business = make_business(owner_id=OWNER, industry="books")
        peers = [make_business(owner_id=f"auth0|bp{i}", industry="books") for i in range(6)]
        test_db.add_all([business, *peers])
        await test_db.flush()

        test_db.add_all(_sessions(make_session, business.site_id, total=100, converted=5))
        for peer in peers[:peers_with_traffic]:
            test_db.add_all(_sessions(make_session, peer.site_id, total=100, converted=2))
        for peer in peers[peers_with_traffic:]:
            test_db.add_all(_sessions(make_session, peer.site_id, total=20, converted=1))

        group = await store.create_peer_group(
            name="books peers",
            criteria={"industry": "books", "tier": "strict"},
            business_ids=[str(business.business_id)] + [str(p.business_id) for p in peers],
        )
        await store.assign_peer_group(business.business_id, group.peer_group_id)
        await test_db.commit()
        await test_db.refresh(business)
        return store, business

    async def test_sufficient_data_report(self, test_db, make_business, make_session):
        store, business = await self._setup(test_db, make_business, make_session, peers_with_traffic=5)

        report = await build_benchmark(store, OWNER, business.business_id)

        assert report.sufficient_data
        assert report.peer_count == MIN_PEER_GROUP_SIZE_FOR_BENCHMARK
        assert report.tier == "strict"
        conversion = report.comparisons[0]
        assert conversion.user_value == 5.0
        assert conversion.peer_average == 2.0
        assert conversion.performance == "above"

    async def test_too_few_qualifying_peers(self, test_db, make_business, make_session):
        store, business = await self._setup(test_db, make_business, make_session, peers_with_traffic=4)

        report = await build_benchmark(store, OWNER, business.business_id)

        assert not report.sufficient_data
        assert report.comparisons == []
        assert report.message

    async def test_without_peer_group(self, test_db, make_business):
        business = make_business(owner_id=OWNER)
        test_db.add(business)
        await test_db.flush()

        report = await build_benchmark(SqlAlchemyStore(test_db), OWNER, business.business_id)

        assert not report.sufficient_data
        assert report.message == "Peer group not calculated yet"

    async def test_non_owner(self, test_db, make_business):
        business = make_business(owner_id=OWNER)
        test_db.add(business)
        await test_db.flush()

        with pytest.raises(NotFoundError):
            await build_benchmark(SqlAlchemyStore(test_db), "auth0|intruder", business.business_id)
