"""
Peer benchmarks — compares a business's funnel metrics with its peer group.

Metrics are computed on read from each site's most recent sessions; nothing
here is cached. A peer only counts toward the comparison once it has enough
sessions, and the comparison is only reported once enough peers qualify.
"""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import structlog

from analytics.journey import is_cart_page, is_checkout_page
from db.models import Business, VisitorSession
from db.store import Store, get_owned_business

logger = structlog.get_logger()

RECENT_SESSION_LIMIT = 1000
MIN_PEER_SESSIONS = 100
MIN_BUSINESS_SESSIONS = 100
MIN_PEER_GROUP_SIZE_FOR_BENCHMARK = 5

# (metric key, display name, higher is better)
BENCHMARK_METRICS = [
    ("conversion_rate", "conversion rate", True),
    ("cart_abandonment_rate", "cart abandonment rate", False),
    ("bounce_rate", "bounce rate", False),
]


@dataclass
class SiteMetrics:
    conversion_rate: float = 0.0
    cart_abandonment_rate: float = 0.0
    bounce_rate: float = 0.0
    # No session-to-order link yet, so AOV stays at 0.
    avg_order_value: float = 0.0
    session_count: int = 0


@dataclass
class MetricComparison:
    metric: str
    user_value: float
    peer_average: float
    percentile: str
    percentile_value: int
    performance: str
    explanation: str


@dataclass
class BenchmarkReport:
    business_id: uuid.UUID
    sufficient_data: bool
    peer_count: int
    tier: str | None
    description: str
    comparisons: list[MetricComparison] = field(default_factory=list)
    message: str | None = None


def calculate_site_metrics(sessions: Sequence[VisitorSession]) -> SiteMetrics:
    if not sessions:
        return SiteMetrics()

    frame = pd.DataFrame(
        {
            "converted": [bool(s.converted) for s in sessions],
            "bounced": [bool(s.bounced) for s in sessions],
            "cart": [any(is_cart_page(url) for url in (s.journey_path or [])) for s in sessions],
            "checkout": [any(is_checkout_page(url) for url in (s.journey_path or [])) for s in sessions],
        }
    )
    cart_sessions = int(frame["cart"].sum())
    checkout_sessions = int(frame["checkout"].sum())

    return SiteMetrics(
        conversion_rate=float(frame["converted"].mean() * 100),
        cart_abandonment_rate=(cart_sessions - checkout_sessions) / cart_sessions * 100 if cart_sessions else 0.0,
        bounce_rate=float(frame["bounced"].mean() * 100),
        session_count=len(frame),
    )


def calculate_percentile(value: float, peer_values: Sequence[float], higher_is_better: bool = True) -> tuple[str, int]:
    """Bucket ``value`` against peers: ``top-25``, ``median`` or ``bottom-25``."""
    if not peer_values:
        return "median", 50

    if higher_is_better:
        beaten = sum(1 for v in peer_values if v < value)
    else:
        beaten = sum(1 for v in peer_values if v > value)
    percentile_value = round(beaten / len(peer_values) * 100)

    if percentile_value >= 75:
        return "top-25", percentile_value
    if percentile_value >= 25:
        return "median", percentile_value
    return "bottom-25", percentile_value


def explain_metric(name: str, user_value: float, peer_average: float, percentile_value: int) -> str:
    if user_value >= peer_average:
        return f"Your {user_value:.1f}% {name} is in the top {100 - percentile_value}% of peers"
    return f"Your {user_value:.1f}% {name} is in the bottom {percentile_value}% of peers"


def compare_metrics(user: SiteMetrics, peers: Sequence[SiteMetrics]) -> list[MetricComparison]:
    comparisons = []
    for key, name, higher_is_better in BENCHMARK_METRICS:
        user_value = getattr(user, key)
        peer_values = [getattr(p, key) for p in peers]
        peer_average = float(np.mean(peer_values)) if peer_values else 0.0
        percentile, percentile_value = calculate_percentile(user_value, peer_values, higher_is_better)

        if user_value > peer_average:
            performance = "above"
        elif user_value < peer_average:
            performance = "below"
        else:
            performance = "at"

        comparisons.append(
            MetricComparison(
                metric=name.capitalize(),
                user_value=round(user_value, 2),
                peer_average=round(peer_average, 2),
                percentile=percentile,
                percentile_value=percentile_value,
                performance=performance,
                explanation=explain_metric(name, user_value, peer_average, percentile_value),
            )
        )
    return comparisons


async def calculate_peer_metrics(store: Store, peers: Sequence[Business]) -> list[SiteMetrics]:
    """Metrics for every peer with enough recent sessions."""
    qualifying = []
    for peer in peers:
        sessions = await store.get_sessions(peer.site_id, limit=RECENT_SESSION_LIMIT)
        if len(sessions) < MIN_PEER_SESSIONS:
            continue
        qualifying.append(calculate_site_metrics(sessions))
    return qualifying


def _insufficient(business: Business, peer_count: int, tier: str | None, message: str) -> BenchmarkReport:
    return BenchmarkReport(
        business_id=business.business_id,
        sufficient_data=False,
        peer_count=peer_count,
        tier=tier,
        description=peer_group_description(peer_count, business.industry, business.revenue_range),
        message=message,
    )


def peer_group_description(peer_count: int, industry: str, revenue_range: str) -> str:
    return f"Compared to {peer_count} {industry} businesses, {revenue_range} revenue"


async def build_benchmark(store: Store, user_id: str, business_id: uuid.UUID) -> BenchmarkReport:
    business = await get_owned_business(store, user_id, business_id)

    group = await store.get_peer_group(business.peer_group_id) if business.peer_group_id else None
    if group is None:
        return _insufficient(business, 0, None, "Peer group not calculated yet")

    tier = (group.criteria or {}).get("tier")
    peer_ids = [uuid.UUID(str(pid)) for pid in group.business_ids if str(pid) != str(business.business_id)]
    peers = [p for p in [await store.get_business(pid) for pid in peer_ids] if p is not None]

    own_sessions = await store.get_sessions(business.site_id, limit=RECENT_SESSION_LIMIT)
    if len(own_sessions) < MIN_BUSINESS_SESSIONS:
        return _insufficient(
            business,
            len(peers),
            tier,
            f"Need at least {MIN_BUSINESS_SESSIONS} sessions to benchmark (have {len(own_sessions)})",
        )

    peer_metrics = await calculate_peer_metrics(store, peers)
    if len(peer_metrics) < MIN_PEER_GROUP_SIZE_FOR_BENCHMARK:
        logger.info(
            "benchmarks.insufficient_peers",
            business_id=str(business_id),
            qualifying=len(peer_metrics),
            required=MIN_PEER_GROUP_SIZE_FOR_BENCHMARK,
        )
        return _insufficient(
            business,
            len(peer_metrics),
            tier,
            f"Need at least {MIN_PEER_GROUP_SIZE_FOR_BENCHMARK} peers with enough traffic",
        )

    return BenchmarkReport(
        business_id=business.business_id,
        sufficient_data=True,
        peer_count=len(peer_metrics),
        tier=tier,
        description=peer_group_description(len(peer_metrics), business.industry, business.revenue_range),
        comparisons=compare_metrics(calculate_site_metrics(own_sessions), peer_metrics),
    )
