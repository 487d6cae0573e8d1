"""
Pattern types, statistical thresholds and scoring shared by detection and
recommendation generation.

Severity combines rate and volume:

    severity = rate * 0.7 + (affected / total) * 0.3      (clamped to [0, 1])

Confidence is a step function of sample size; anything under 100 sessions
scores 0 and is never persisted.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum


class PatternType(str, Enum):
    ABANDONMENT = "ABANDONMENT"
    HESITATION = "HESITATION"
    LOW_ENGAGEMENT = "LOW_ENGAGEMENT"


PATTERN_THRESHOLDS = {
    "min_sessions": 100,
    "abandonment_rate": 30.0,  # percent of visits that stop at a stage
    "hesitation_rate": 20.0,  # percent of sessions re-entering a field
    "low_engagement_ratio": 0.7,  # page average below 70% of site average
    "min_pageviews_per_url": 50,
}

# (minimum sample size, score), highest bucket first
CONFIDENCE_LEVELS = [
    (500, 1.0),
    (200, 0.8),
    (100, 0.6),
]

RATE_WEIGHT = 0.7
VOLUME_WEIGHT = 0.3


def calculate_severity(rate: float, affected_count: float, total_count: float) -> float:
    """Blend a 0-1 rate with the affected share of the population."""
    volume = affected_count / total_count if total_count > 0 else 0.0
    severity = rate * RATE_WEIGHT + volume * VOLUME_WEIGHT
    return max(0.0, min(1.0, severity))


def calculate_confidence_score(sample_size: int) -> float:
    for minimum, score in CONFIDENCE_LEVELS:
        if sample_size >= minimum:
            return score
    return 0.0


def round_rate(value: float) -> float:
    return round(value, 2)


def format_number(value: float) -> str:
    """Render 43.0 as "43" and 43.25 as "43.25"."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


@dataclass
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("DateRange start must not be after end")


# ─── Pattern Metadata (tagged by pattern type) ──────────────────────────────


@dataclass
class AbandonmentMetadata:
    stage: str
    drop_off_rate: float
    affected_sessions: int
    sample_size: int
    pattern_type: PatternType = field(default=PatternType.ABANDONMENT, init=False)

    @property
    def subject(self) -> str:
        return self.stage

    @property
    def rate(self) -> float:
        return self.drop_off_rate

    def summary(self) -> str:
        return (
            f"{format_number(self.drop_off_rate)}% of users abandon at {self.stage} "
            f"({self.affected_sessions} sessions)"
        )


@dataclass
class HesitationMetadata:
    field: str
    re_entry_rate: float
    affected_sessions: int
    sample_size: int
    avg_re_entries: float = 0.0
    pattern_type: PatternType = field(default=PatternType.HESITATION, init=False)

    @property
    def subject(self) -> str:
        return self.field

    @property
    def rate(self) -> float:
        return self.re_entry_rate

    def summary(self) -> str:
        return (
            f'{format_number(self.re_entry_rate)}% of users re-enter "{self.field}" field '
            f"(hesitation indicator, {self.affected_sessions} sessions)"
        )


@dataclass
class EngagementMetadata:
    page: str
    time_on_page: float
    site_average: float
    engagement_gap: float
    affected_sessions: int
    sample_size: int
    pattern_type: PatternType = field(default=PatternType.LOW_ENGAGEMENT, init=False)

    @property
    def subject(self) -> str:
        return self.page

    @property
    def rate(self) -> float:
        return self.engagement_gap

    def summary(self) -> str:
        return (
            f"{self.page} has {format_number(self.engagement_gap)}% lower time-on-page than site average "
            f"({format_number(self.time_on_page)}s vs {format_number(self.site_average)}s, "
            f"{self.affected_sessions} pageviews)"
        )


PatternMetadata = AbandonmentMetadata | HesitationMetadata | EngagementMetadata

_METADATA_TYPES: dict[PatternType, type] = {
    PatternType.ABANDONMENT: AbandonmentMetadata,
    PatternType.HESITATION: HesitationMetadata,
    PatternType.LOW_ENGAGEMENT: EngagementMetadata,
}


def metadata_to_dict(metadata: PatternMetadata) -> dict:
    data = asdict(metadata)
    data["pattern_type"] = metadata.pattern_type.value
    return data


def metadata_from_dict(pattern_type: PatternType | str, data: dict) -> PatternMetadata:
    """Rebuild typed metadata from a stored JSON bag, ignoring unknown keys."""
    cls = _METADATA_TYPES[PatternType(pattern_type)]
    known = {name for name, f in cls.__dataclass_fields__.items() if f.init}
    return cls(**{key: value for key, value in data.items() if key in known})


def generate_pattern_summary(metadata: PatternMetadata) -> str:
    return metadata.summary()


# ─── Detector Output ────────────────────────────────────────────────────────


@dataclass
class PatternCandidate:
    site_id: str
    metadata: PatternMetadata
    severity: float
    session_count: int
    confidence_score: float
    detected_at: datetime

    @property
    def pattern_type(self) -> PatternType:
        return self.metadata.pattern_type

    @property
    def description(self) -> str:
        return self.metadata.summary()

    @property
    def dedup_key(self) -> str:
        """Same site, type, subject and detection day collapse into one stored pattern."""
        return f"{self.pattern_type.value}:{self.metadata.subject}:{self.detected_at.date().isoformat()}"

    def to_row(self) -> dict:
        return {
            "site_id": self.site_id,
            "pattern_type": self.pattern_type.value,
            "description": self.description,
            "severity": self.severity,
            "session_count": self.session_count,
            "confidence_score": self.confidence_score,
            "pattern_metadata": metadata_to_dict(self.metadata),
            "dedup_key": self.dedup_key,
            "detected_at": self.detected_at,
        }
