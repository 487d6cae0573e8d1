"""
Impact/confidence level mapping and the two recommendation orderings.

Generation ranks by ``impact_score`` (continuous severity × rule weight).
Display ranks by ``impact weight × confidence weight`` over the discretized
levels. Near a level boundary the two orderings can disagree; both are kept.
"""

from dataclasses import dataclass
from enum import Enum


class ImpactLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ConfidenceLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RecommendationStatus(str, Enum):
    NEW = "NEW"
    PLANNED = "PLANNED"
    IMPLEMENTED = "IMPLEMENTED"
    DISMISSED = "DISMISSED"


# Lower bound of each level
IMPACT_THRESHOLDS = {
    ImpactLevel.HIGH: 0.71,
    ImpactLevel.MEDIUM: 0.41,
}

CONFIDENCE_THRESHOLDS = {
    ConfidenceLevel.HIGH: 0.86,
    ConfidenceLevel.MEDIUM: 0.66,
}

LEVEL_WEIGHTS = {"HIGH": 3, "MEDIUM": 2, "LOW": 1}

# Assumed outcome figures for peer narratives until implementation impact is tracked.
ASSUMED_PEER_SUCCESS_RATE = 0.75
ASSUMED_PEER_IMPROVEMENT_PERCENT = 18


def map_impact_level(severity: float) -> ImpactLevel:
    if severity >= IMPACT_THRESHOLDS[ImpactLevel.HIGH]:
        return ImpactLevel.HIGH
    if severity >= IMPACT_THRESHOLDS[ImpactLevel.MEDIUM]:
        return ImpactLevel.MEDIUM
    return ImpactLevel.LOW


def map_confidence_level(confidence_score: float) -> ConfidenceLevel:
    if confidence_score >= CONFIDENCE_THRESHOLDS[ConfidenceLevel.HIGH]:
        return ConfidenceLevel.HIGH
    if confidence_score >= CONFIDENCE_THRESHOLDS[ConfidenceLevel.MEDIUM]:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def calculate_impact_score(severity: float, weight: float) -> float:
    return severity * weight


def _level_value(level) -> str:
    return level.value if isinstance(level, Enum) else str(level)


def display_priority(impact_level, confidence_level) -> int:
    """Impact weight × confidence weight, from 1 (LOW/LOW) to 9 (HIGH/HIGH)."""
    return LEVEL_WEIGHTS[_level_value(impact_level)] * LEVEL_WEIGHTS[_level_value(confidence_level)]


def rank_for_display(recommendations: list, descending: bool = True) -> list:
    """Highest display priority first (lowest when ascending); newest first within a priority."""
    by_newest = sorted(recommendations, key=lambda r: r.created_at, reverse=True)
    return sorted(
        by_newest, key=lambda r: display_priority(r.impact_level, r.confidence_level), reverse=descending
    )


@dataclass
class PeerSuccessStats:
    similar_business_count: int
    implementation_count: int
    success_rate: float = ASSUMED_PEER_SUCCESS_RATE
    average_improvement_percent: float = ASSUMED_PEER_IMPROVEMENT_PERCENT


def format_peer_success(stats: PeerSuccessStats | None) -> str | None:
    if stats is None or stats.implementation_count == 0:
        return None
    noun = "store" if stats.implementation_count == 1 else "stores"
    return (
        f"{stats.implementation_count} similar {noun} implemented this and saw "
        f"{round(stats.average_improvement_percent)}% average improvement"
    )
