"""
Journey funnel — Entry → Product View → Cart → Checkout → Purchase.

Stages are detected from URLs in each session's journey path; Purchase is
the session's ``converted`` flag. A session that reaches a stage is counted
at every earlier stage too, so funnel counts never grow from one stage to
the next.
"""

import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from db.models import VisitorSession

FUNNEL_STAGES = ["Entry", "Product View", "Cart", "Checkout", "Purchase"]

JOURNEY_TYPES = ["all", "homepage", "search", "direct-to-product", "other"]
JOURNEY_TYPE_LABELS = {
    "all": "All Visitors",
    "homepage": "Homepage Visitors",
    "search": "Search & Collection Visitors",
    "direct-to-product": "Direct-to-Product Visitors",
    "other": "Other Entry Points",
}

TOP_PAGES_PER_STAGE = 5

_PRODUCT_SEGMENT = re.compile(r"(^|/)p(/|$)")


def is_product_page(url: str) -> bool:
    url = url.lower()
    return "/product" in url or "/item" in url or bool(_PRODUCT_SEGMENT.search(url))


def is_cart_page(url: str) -> bool:
    url = url.lower()
    return "/cart" in url or "/basket" in url


def is_checkout_page(url: str) -> bool:
    url = url.lower()
    return "/checkout" in url or "/payment" in url


def is_purchase_page(url: str) -> bool:
    url = url.lower()
    return any(marker in url for marker in ("/confirm", "/thank", "/success", "/order-complete"))


_STAGE_MATCHERS = {
    "Product View": is_product_page,
    "Cart": is_cart_page,
    "Checkout": is_checkout_page,
    "Purchase": is_purchase_page,
}


@dataclass
class StagePage:
    url: str
    count: int


@dataclass
class FunnelStage:
    name: str
    count: int
    percentage: float
    drop_off_rate: float | None = None
    conversion_rate: float | None = None
    avg_time_spent: int | None = None
    top_pages: list[StagePage] = field(default_factory=list)


@dataclass
class FunnelData:
    stages: list[FunnelStage]
    total_sessions: int
    overall_conversion: float
    journey_type: str


@dataclass
class FunnelInsight:
    primary: str
    secondary: str | None = None
    biggest_drop_off_stage: str | None = None
    biggest_drop_off_rate: float | None = None
    best_performing_stage: str | None = None
    best_conversion_rate: float | None = None


@dataclass
class JourneyTypeStats:
    type: str
    label: str
    count: int
    percentage: float


def _round1(value: float) -> float:
    return round(value, 1)


def session_depth(session: VisitorSession) -> int:
    """Index of the deepest funnel stage the session reached."""
    if session.converted:
        return FUNNEL_STAGES.index("Purchase")
    path = session.journey_path or []
    depth = 0
    for index, stage in enumerate(FUNNEL_STAGES[1:4], start=1):
        if any(_STAGE_MATCHERS[stage](url) for url in path):
            depth = index
    return depth


def _stage_pages(session: VisitorSession, stage: str) -> list[str]:
    path = session.journey_path or []
    if stage == "Entry":
        return [session.entry_page] if session.entry_page else path[:1]
    return [url for url in path if _STAGE_MATCHERS[stage](url)]


def detect_journey_type(session: VisitorSession) -> str:
    entry = (session.entry_page or "").lower()
    if entry in ("", "/") or "/home" in entry:
        return "homepage"
    if "/search" in entry or "/collections" in entry:
        return "search"
    if is_product_page(entry):
        return "direct-to-product"
    return "other"


def calculate_funnel(sessions: Sequence[VisitorSession], journey_type: str = "all") -> FunnelData:
    if journey_type not in JOURNEY_TYPES:
        raise ValueError(f"Unknown journey type: {journey_type}")
    if journey_type != "all":
        sessions = [s for s in sessions if detect_journey_type(s) == journey_type]

    total = len(sessions)
    reached = [0] * len(FUNNEL_STAGES)
    pages = [Counter() for _ in FUNNEL_STAGES]
    durations: list[list[float]] = [[] for _ in FUNNEL_STAGES]

    for session in sessions:
        depth = session_depth(session)
        for index in range(depth + 1):
            reached[index] += 1
            pages[index].update(_stage_pages(session, FUNNEL_STAGES[index]))
            if session.duration:
                durations[index].append(session.duration / (depth + 1))

    stages = []
    for index, name in enumerate(FUNNEL_STAGES):
        count = reached[index]
        previous = reached[index - 1] if index > 0 else None
        following = reached[index + 1] if index < len(FUNNEL_STAGES) - 1 else None

        stage = FunnelStage(
            name=name,
            count=count,
            percentage=_round1(count / total * 100) if total else 0.0,
            top_pages=[StagePage(url, n) for url, n in pages[index].most_common(TOP_PAGES_PER_STAGE)],
        )
        if previous:
            stage.drop_off_rate = _round1((previous - count) / previous * 100)
        if following is not None and count:
            stage.conversion_rate = _round1(following / count * 100)
        if durations[index]:
            stage.avg_time_spent = round(sum(durations[index]) / len(durations[index]))
        stages.append(stage)

    return FunnelData(
        stages=stages,
        total_sessions=total,
        overall_conversion=_round1(reached[-1] / total * 100) if total else 0.0,
        journey_type=journey_type,
    )


def journey_type_stats(sessions: Sequence[VisitorSession]) -> list[JourneyTypeStats]:
    counts = Counter(detect_journey_type(s) for s in sessions)
    counts["all"] = len(sessions)
    total = len(sessions)
    return [
        JourneyTypeStats(
            type=journey_type,
            label=JOURNEY_TYPE_LABELS[journey_type],
            count=counts[journey_type],
            percentage=_round1(counts[journey_type] / total * 100) if total else 0.0,
        )
        for journey_type in JOURNEY_TYPES
    ]


def generate_insight(funnel: FunnelData) -> FunnelInsight:
    if funnel.total_sessions == 0:
        return FunnelInsight(primary="No data yet. Start collecting sessions to see journey insights.")

    worst = max(funnel.stages, key=lambda s: s.drop_off_rate or 0)
    best = max(funnel.stages, key=lambda s: s.conversion_rate or 0)
    insight = FunnelInsight(primary="Great! No significant drop-offs detected in your funnel.")

    if worst.drop_off_rate:
        insight.primary = f"Your biggest opportunity: {worst.drop_off_rate:.1f}% abandon at {worst.name}"
        insight.biggest_drop_off_stage = worst.name
        insight.biggest_drop_off_rate = worst.drop_off_rate
    if best.conversion_rate:
        insight.secondary = (
            f"Strong performance: {best.conversion_rate:.1f}% convert from {best.name} to next stage"
        )
        insight.best_performing_stage = best.name
        insight.best_conversion_rate = best.conversion_rate
    return insight
