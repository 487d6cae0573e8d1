"""
Peer Matcher — similarity scoring, tiered matching and peer group persistence.
"""

import uuid

import pytest

from core.errors import NotFoundError
from db.store import SqlAlchemyStore
from peers.matcher import (
    MAX_PEERS,
    BusinessProfile,
    calculate_peer_group,
    calculate_similarity_score,
    find_similar_businesses,
    jaccard_similarity,
    recalculate_peer_groups_for_industry,
    revenue_within_tiers,
)


def _profile(industry="fashion", revenue="$500k-1M", products=("apparel", "shoes"), platform="shopify"):
    return BusinessProfile(
        business_id=uuid.uuid4(),
        industry=industry,
        revenue_range=revenue,
        product_types=list(products),
        platform=platform,
    )


class TestSimilarity:
    def test_jaccard(self):
        assert jaccard_similarity(["Apparel", "shoes"], ["apparel", "hats"]) == pytest.approx(1 / 3)
        assert jaccard_similarity([], []) == 1.0
        assert jaccard_similarity(["a"], []) == 0.0

    def test_revenue_tiers(self):
        assert revenue_within_tiers("$500k-1M", "$1M-5M", 1)
        assert not revenue_within_tiers("$0-100k", "$1M-5M", 2)
        assert not revenue_within_tiers("unknown", "$1M-5M", 6)

    def test_industry_is_a_hard_gate(self):
        score = calculate_similarity_score(_profile(), _profile(industry="electronics"))
        assert score.score == 0.0
        assert not score.industry_match

    def test_identical_profiles_score_one(self):
        assert calculate_similarity_score(_profile(), _profile()).score == pytest.approx(1.0)

    def test_weighted_components(self):
        score = calculate_similarity_score(
            _profile(), _profile(revenue="$10M-50M", products=("apparel",), platform="woocommerce")
        )
        assert score.score == pytest.approx(0.5 * 0.4)
        assert not score.revenue_match
        assert not score.platform_match


class TestTieredMatching:
    def test_strict_tier_when_enough_exact_matches(self):
        business = _profile()
        candidates = [_profile() for _ in range(10)] + [_profile(revenue="$1M-5M") for _ in range(5)]

        result = find_similar_businesses(business, candidates)

        assert result.tier == "strict"
        assert len(result.matches) == 10

    def test_relaxes_to_relaxed_tier(self):
        business = _profile()
        candidates = [_profile(revenue="$1M-5M", platform="bigcommerce") for _ in range(10)]

        assert find_similar_businesses(business, candidates).tier == "relaxed"

    def test_relaxes_to_broad_tier(self):
        business = _profile()
        candidates = [_profile(revenue="$5M-10M", products=("toys",)) for _ in range(12)]

        assert find_similar_businesses(business, candidates).tier == "broad"

    def test_falls_back_to_industry(self):
        business = _profile()
        candidates = [_profile(revenue="$50M+") for _ in range(3)] + [_profile(industry="food") for _ in range(20)]

        result = find_similar_businesses(business, candidates)

        assert result.tier == "fallback"
        assert len(result.matches) == 3
        assert all(m.industry == "fashion" for m in result.matches)
        assert result.criteria["industry"] == "fashion"

    def test_business_never_matches_itself(self):
        business = _profile()
        result = find_similar_businesses(business, [business] + [_profile() for _ in range(10)])
        assert business.business_id not in {m.business_id for m in result.matches}


@pytest.mark.asyncio
class TestPeerGroupPersistence:
    async def test_calculate_creates_and_assigns_group(self, test_db, make_business):
        store = SqlAlchemyStore(test_db)
        business = make_business(industry="outdoor")
        peers = [make_business(owner_id=f"auth0|peer{i}", industry="outdoor") for i in range(12)]
        stranger = make_business(owner_id="auth0|food", industry="food")
        test_db.add_all([business, stranger, *peers])
        await test_db.flush()

        result = await calculate_peer_group(store, business.business_id)
        await test_db.refresh(business)

        assert business.peer_group_id == result.peer_group_id
        assert result.business_ids[0] == str(business.business_id)
        assert result.match_count == 12
        assert str(stranger.business_id) not in result.business_ids
        group = await store.get_peer_group(result.peer_group_id)
        assert group.criteria["tier"] == "strict"

    async def test_caps_peer_count(self, test_db, make_business):
        store = SqlAlchemyStore(test_db)
        business = make_business(industry="pets")
        test_db.add(business)
        test_db.add_all([make_business(owner_id=f"auth0|p{i}", industry="pets") for i in range(MAX_PEERS + 5)])
        await test_db.flush()

        result = await calculate_peer_group(store, business.business_id)
        assert result.match_count == MAX_PEERS

    async def test_unknown_business(self, test_db):
        with pytest.raises(NotFoundError):
            await calculate_peer_group(SqlAlchemyStore(test_db), uuid.uuid4())

    async def test_recalculate_industry(self, test_db, make_business):
        businesses = [make_business(owner_id=f"auth0|b{i}", industry="garden") for i in range(4)]
        test_db.add_all(businesses)
        await test_db.flush()

        recalculated, errors = await recalculate_peer_groups_for_industry(
            SqlAlchemyStore(test_db), "garden", exclude_business_id=businesses[0].business_id
        )

        assert recalculated == 3
        assert errors == []
