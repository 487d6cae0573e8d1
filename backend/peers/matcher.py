"""
Peer Matcher — finds comparable businesses for benchmarking and for
"similar stores did this" narratives.

Matching relaxes through four tiers until the group is large enough:

  strict    same industry, same revenue band, product overlap ≥ 0.5, same platform
  relaxed   same industry, revenue within ±1 band, product overlap ≥ 0.3
  broad     same industry, revenue within ±2 bands
  fallback  same industry

The tier used is stored with the peer group so benchmark claims can be
traced back to how loose the match was.
"""

import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from core.errors import NotFoundError
from db.models import Business
from db.store import Store

logger = structlog.get_logger()

REVENUE_TIERS = [
    "$0-100k",
    "$100k-500k",
    "$500k-1M",
    "$1M-5M",
    "$5M-10M",
    "$10M-50M",
    "$50M+",
]

MIN_PEER_GROUP_SIZE = 10
MINIMUM_ACCEPTABLE_PEER_GROUP_SIZE = 5
MAX_PEERS = 50

STRICT_PRODUCT_SIMILARITY = 0.5
RELAXED_PRODUCT_SIMILARITY = 0.3

# Similarity score weights (industry is a gate, not a weight)
REVENUE_WEIGHT = 0.3
PRODUCT_WEIGHT = 0.4
PLATFORM_WEIGHT = 0.3


@dataclass
class BusinessProfile:
    business_id: uuid.UUID
    industry: str
    revenue_range: str
    product_types: list[str]
    platform: str

    @classmethod
    def from_model(cls, business: Business) -> "BusinessProfile":
        return cls(
            business_id=business.business_id,
            industry=business.industry,
            revenue_range=business.revenue_range,
            product_types=list(business.product_types or []),
            platform=business.platform,
        )


@dataclass
class SimilarityScore:
    business_id: uuid.UUID
    score: float
    industry_match: bool
    revenue_match: bool
    product_types_similarity: float
    platform_match: bool


@dataclass
class MatchResult:
    matches: list[BusinessProfile]
    criteria: dict = field(default_factory=dict)

    @property
    def tier(self) -> str:
        return self.criteria.get("tier", "fallback")


@dataclass
class PeerGroupResult:
    peer_group_id: uuid.UUID
    business_ids: list[str]
    criteria: dict
    match_count: int


def jaccard_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Case-insensitive set overlap. Two empty sets are identical."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    set_a = {item.lower() for item in a}
    set_b = {item.lower() for item in b}
    return len(set_a & set_b) / len(set_a | set_b)


def revenue_tier_index(revenue_range: str) -> int:
    try:
        return REVENUE_TIERS.index(revenue_range)
    except ValueError:
        return -1


def revenue_within_tiers(range_a: str, range_b: str, max_difference: int) -> bool:
    tier_a = revenue_tier_index(range_a)
    tier_b = revenue_tier_index(range_b)
    if tier_a == -1 or tier_b == -1:
        return False
    return abs(tier_a - tier_b) <= max_difference


def calculate_similarity_score(business: BusinessProfile, candidate: BusinessProfile) -> SimilarityScore:
    if business.industry != candidate.industry:
        return SimilarityScore(
            business_id=candidate.business_id,
            score=0.0,
            industry_match=False,
            revenue_match=False,
            product_types_similarity=0.0,
            platform_match=False,
        )

    revenue_match = revenue_within_tiers(business.revenue_range, candidate.revenue_range, 1)
    product_similarity = jaccard_similarity(business.product_types, candidate.product_types)
    platform_match = business.platform == candidate.platform

    score = (
        (REVENUE_WEIGHT if revenue_match else 0.0)
        + product_similarity * PRODUCT_WEIGHT
        + (PLATFORM_WEIGHT if platform_match else 0.0)
    )
    return SimilarityScore(
        business_id=candidate.business_id,
        score=score,
        industry_match=True,
        revenue_match=revenue_match,
        product_types_similarity=product_similarity,
        platform_match=platform_match,
    )


def _tier_filters(business: BusinessProfile):
    def same_industry(c: BusinessProfile) -> bool:
        return c.industry == business.industry

    def strict(c: BusinessProfile) -> bool:
        return (
            same_industry(c)
            and c.revenue_range == business.revenue_range
            and jaccard_similarity(business.product_types, c.product_types) >= STRICT_PRODUCT_SIMILARITY
            and c.platform == business.platform
        )

    def relaxed(c: BusinessProfile) -> bool:
        return (
            same_industry(c)
            and revenue_within_tiers(business.revenue_range, c.revenue_range, 1)
            and jaccard_similarity(business.product_types, c.product_types) >= RELAXED_PRODUCT_SIMILARITY
        )

    def broad(c: BusinessProfile) -> bool:
        return same_industry(c) and revenue_within_tiers(business.revenue_range, c.revenue_range, 2)

    return [("strict", strict), ("relaxed", relaxed), ("broad", broad), ("fallback", same_industry)]


def find_similar_businesses(business: BusinessProfile, candidates: Sequence[BusinessProfile]) -> MatchResult:
    """Match against ``candidates`` using the tightest tier that yields enough peers."""
    others = [c for c in candidates if c.business_id != business.business_id]
    base_criteria = {
        "industry": business.industry,
        "revenue_range": business.revenue_range,
        "product_types": list(business.product_types),
        "platform": business.platform,
    }

    matches: list[BusinessProfile] = []
    tier = "fallback"
    for tier, accepts in _tier_filters(business):
        matches = [c for c in others if accepts(c)]
        if len(matches) >= MIN_PEER_GROUP_SIZE:
            break

    if tier == "fallback" and len(matches) < MINIMUM_ACCEPTABLE_PEER_GROUP_SIZE:
        logger.warning(
            "peers.insufficient_matches",
            business_id=str(business.business_id),
            matches=len(matches),
            minimum=MINIMUM_ACCEPTABLE_PEER_GROUP_SIZE,
        )

    return MatchResult(matches=matches, criteria={**base_criteria, "tier": tier})


async def calculate_peer_group(store: Store, business_id: uuid.UUID) -> PeerGroupResult:
    """Match, score, keep the top peers and persist a fresh peer group."""
    started = time.perf_counter()
    business = await store.get_business(business_id)
    if business is None:
        raise NotFoundError(f"Business not found: {business_id}")

    profile = BusinessProfile.from_model(business)
    candidates = [BusinessProfile.from_model(b) for b in await store.list_businesses(exclude_ids=[business_id])]
    result = find_similar_businesses(profile, candidates)

    scored = sorted(
        result.matches,
        key=lambda match: calculate_similarity_score(profile, match).score,
        reverse=True,
    )[:MAX_PEERS]
    business_ids = [str(business_id)] + [str(match.business_id) for match in scored]

    group = await store.create_peer_group(
        name=f"{profile.industry} peers ({result.tier})",
        criteria=result.criteria,
        business_ids=business_ids,
    )
    await store.assign_peer_group(business_id, group.peer_group_id)
    await store.commit()

    logger.info(
        "peers.group_calculated",
        business_id=str(business_id),
        tier=result.tier,
        peers=len(scored),
        elapsed_ms=int((time.perf_counter() - started) * 1000),
    )
    return PeerGroupResult(
        peer_group_id=group.peer_group_id,
        business_ids=business_ids,
        criteria=result.criteria,
        match_count=len(scored),
    )


async def recalculate_peer_groups_for_industry(
    store: Store, industry: str, exclude_business_id: uuid.UUID | None = None
) -> tuple[int, list[str]]:
    """Recalculate every business in ``industry``. Returns (recalculated, errors)."""
    exclude = [exclude_business_id] if exclude_business_id else []
    businesses = await store.list_businesses(industry=industry, exclude_ids=exclude)
    business_ids = [b.business_id for b in businesses]

    recalculated = 0
    errors: list[str] = []
    for business_id in business_ids:
        try:
            await calculate_peer_group(store, business_id)
            recalculated += 1
        except Exception as exc:
            await store.rollback()
            logger.error("peers.recalculation_failed", business_id=str(business_id), error=str(exc))
            errors.append(f"{business_id}: {exc}")

    logger.info("peers.industry_recalculated", industry=industry, recalculated=recalculated, errors=len(errors))
    return recalculated, errors
