"""
Recommendation Engine — turns stored patterns into ranked action items.

Pipeline:
  1. Load the site's patterns inside the analysis window above the severity floor
  2. Map each pattern through the first matching rule
  3. Keep the strongest candidate per dedup key, rank by impact score
     (severity × rule weight, newest detection first on ties), truncate
  4. Optionally attach a peer-success narrative
  5. Store, skipping candidates that duplicate an open (NEW) recommendation
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from analytics.pattern_detector import StoreResult
from analytics.thresholds import PatternType
from db.models import Business, Pattern, utcnow
from db.store import Store
from recommendations.levels import (
    PeerSuccessStats,
    RecommendationStatus,
    calculate_impact_score,
    format_peer_success,
    map_confidence_level,
    map_impact_level,
)
from recommendations.rules import find_matching_rule, interpolate_template

logger = structlog.get_logger()

_SUBJECT_KEYS = {
    PatternType.ABANDONMENT: "stage",
    PatternType.HESITATION: "field",
    PatternType.LOW_ENGAGEMENT: "page",
}


@dataclass
class GenerationOptions:
    site_id: str
    business_id: uuid.UUID
    analysis_window_days: int = 7
    min_severity: float = 0.3
    max_recommendations: int = 5
    include_peer_data: bool = True


@dataclass
class RecommendationCandidate:
    business_id: uuid.UUID
    site_id: str
    pattern_id: uuid.UUID | None
    pattern_type: PatternType
    dedup_key: str
    title: str
    problem_statement: str
    action_steps: list[str]
    expected_impact: str
    impact_level: str
    confidence_level: str
    impact_score: float
    detected_at: datetime
    peer_success_data: str | None = None

    def to_row(self) -> dict:
        return {
            "business_id": self.business_id,
            "site_id": self.site_id,
            "pattern_id": self.pattern_id,
            "pattern_type": self.pattern_type.value,
            "dedup_key": self.dedup_key,
            "title": self.title,
            "problem_statement": self.problem_statement,
            "action_steps": list(self.action_steps),
            "expected_impact": self.expected_impact,
            "impact_level": self.impact_level,
            "confidence_level": self.confidence_level,
            "impact_score": self.impact_score,
            "peer_success_data": self.peer_success_data,
            "status": RecommendationStatus.NEW.value,
        }


@dataclass
class GenerationResult:
    business_id: uuid.UUID
    site_id: str
    generated: int = 0
    stored: int = 0
    skipped: int = 0
    patterns_processed: int = 0
    execution_time_ms: int = 0
    errors: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


def recommendation_dedup_key(pattern_type: PatternType | str, metadata: dict) -> str:
    """``{PATTERN_TYPE}:{stage|field|page}``: one open recommendation per friction point."""
    pattern_type = PatternType(pattern_type)
    subject = (metadata or {}).get(_SUBJECT_KEYS[pattern_type], "")
    return f"{pattern_type.value}:{subject}"


def build_candidate(pattern: Pattern, business_id: uuid.UUID) -> RecommendationCandidate | None:
    metadata = pattern.pattern_metadata or {}
    rule = find_matching_rule(pattern.pattern_type, metadata)
    if rule is None:
        logger.warning("recommendations.no_rule", pattern_type=pattern.pattern_type)
        return None

    return RecommendationCandidate(
        business_id=business_id,
        site_id=pattern.site_id,
        pattern_id=pattern.pattern_id,
        pattern_type=PatternType(pattern.pattern_type),
        dedup_key=recommendation_dedup_key(pattern.pattern_type, metadata),
        title=interpolate_template(rule.title, metadata),
        problem_statement=interpolate_template(rule.problem_template, metadata),
        action_steps=list(rule.action_steps),
        expected_impact=interpolate_template(rule.expected_impact, metadata),
        impact_level=map_impact_level(pattern.severity).value,
        confidence_level=map_confidence_level(pattern.confidence_score).value,
        impact_score=calculate_impact_score(pattern.severity, rule.weight),
        detected_at=pattern.detected_at,
    )


def rank_candidates(candidates: list[RecommendationCandidate], limit: int) -> list[RecommendationCandidate]:
    """Strongest candidate per dedup key, impact score desc then newest, top ``limit``."""
    best: dict[str, RecommendationCandidate] = {}
    for candidate in candidates:
        current = best.get(candidate.dedup_key)
        if current is None or (candidate.impact_score, candidate.detected_at) > (
            current.impact_score,
            current.detected_at,
        ):
            best[candidate.dedup_key] = candidate

    ranked = sorted(best.values(), key=lambda c: (c.impact_score, c.detected_at), reverse=True)
    return ranked[:limit]


async def query_peer_success(store: Store, business: Business, title: str) -> PeerSuccessStats | None:
    """How many peers implemented a recommendation sharing this title's first three words."""
    if business.peer_group_id is None:
        return None
    group = await store.get_peer_group(business.peer_group_id)
    if group is None:
        return None

    peer_ids = [uuid.UUID(str(pid)) for pid in group.business_ids if str(pid) != str(business.business_id)]
    if not peer_ids:
        return None

    prefix = " ".join(title.split()[:3]).lower()
    implemented = [r for r in await store.list_implemented_recommendations(peer_ids) if prefix in r.title.lower()]
    if not implemented:
        return None

    return PeerSuccessStats(similar_business_count=len(peer_ids), implementation_count=len(implemented))


async def generate_recommendations(store: Store, options: GenerationOptions) -> list[RecommendationCandidate]:
    since = utcnow() - timedelta(days=options.analysis_window_days)
    patterns = await store.get_patterns(options.site_id, since=since, min_severity=options.min_severity)
    if not patterns:
        logger.info("recommendations.no_patterns", site_id=options.site_id, business_id=str(options.business_id))
        return []

    candidates = [c for c in (build_candidate(p, options.business_id) for p in patterns) if c is not None]
    ranked = rank_candidates(candidates, options.max_recommendations)

    if options.include_peer_data and ranked:
        business = await store.get_business(options.business_id)
        if business is not None:
            for candidate in ranked:
                stats = await query_peer_success(store, business, candidate.title)
                candidate.peer_success_data = format_peer_success(stats)

    logger.info(
        "recommendations.generated",
        site_id=options.site_id,
        patterns=len(patterns),
        candidates=len(candidates),
        kept=len(ranked),
    )
    return ranked


async def store_recommendations(
    store: Store, business_id: uuid.UUID, candidates: list[RecommendationCandidate]
) -> StoreResult:
    result = StoreResult()
    if not candidates:
        return result

    open_keys = {r.dedup_key for r in await store.list_recommendations(business_id, status=RecommendationStatus.NEW.value)}
    rows = []
    for candidate in candidates:
        if candidate.dedup_key in open_keys:
            result.skipped += 1
            continue
        open_keys.add(candidate.dedup_key)
        rows.append(candidate.to_row())

    if not rows:
        return result

    try:
        result.created = await store.insert_recommendations(rows)
        await store.commit()
    except Exception as exc:
        await store.rollback()
        logger.error("recommendations.store_failed", business_id=str(business_id), rows=len(rows), exc_info=True)
        result.errors.append(str(exc))
    return result


async def generate_and_store_recommendations(store: Store, options: GenerationOptions) -> GenerationResult:
    """Generate and persist in one step. Failures are reported in ``errors``."""
    started = time.perf_counter()
    result = GenerationResult(business_id=options.business_id, site_id=options.site_id)

    try:
        candidates = await generate_recommendations(store, options)
        stored = await store_recommendations(store, options.business_id, candidates)
    except Exception as exc:
        logger.error("recommendations.generation_failed", site_id=options.site_id, exc_info=True)
        result.errors.append(str(exc))
    else:
        result.generated = len(candidates)
        result.patterns_processed = len(candidates)
        result.stored = stored.created
        result.skipped = stored.skipped
        result.errors.extend(stored.errors)

    result.execution_time_ms = int((time.perf_counter() - started) * 1000)
    return result
