"""
Recommendation rules, level mapping and display ranking.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from analytics.thresholds import PatternType
from recommendations.levels import (
    ConfidenceLevel,
    ImpactLevel,
    PeerSuccessStats,
    display_priority,
    format_peer_success,
    map_confidence_level,
    map_impact_level,
    rank_for_display,
)
from recommendations.rules import RECOMMENDATION_RULES, find_matching_rule, interpolate_template


class TestRuleMatching:
    @pytest.mark.parametrize(
        "pattern_type, metadata, title",
        [
            ("ABANDONMENT", {"stage": "/checkout/shipping"}, "Show shipping costs earlier in checkout"),
            ("ABANDONMENT", {"stage": "/checkout/payment"}, "Simplify payment process"),
            ("ABANDONMENT", {"stage": "/cart"}, "Optimize shopping cart experience"),
            ("ABANDONMENT", {"stage": "/about-us"}, "Reduce checkout abandonment"),
            ("HESITATION", {"field": "shipping_address"}, "Add address autocomplete functionality"),
            ("HESITATION", {"field": "credit-card-number"}, "Improve payment field clarity"),
            ("HESITATION", {"field": "Email"}, "Optimize email input experience"),
            ("HESITATION", {"field": "coupon"}, "Improve form field usability"),
            ("LOW_ENGAGEMENT", {"page": "/collections/summer"}, "Improve category browsing experience"),
            ("LOW_ENGAGEMENT", {"page": "/blog"}, "Increase page engagement"),
        ],
    )
    def test_first_matching_rule_wins(self, pattern_type, metadata, title):
        assert find_matching_rule(pattern_type, metadata).title == title

    def test_every_type_has_a_fallback(self):
        for pattern_type in PatternType:
            assert find_matching_rule(pattern_type, {}) is not None

    def test_specific_rules_precede_fallbacks(self):
        for pattern_type in PatternType:
            rules = [r for r in RECOMMENDATION_RULES if r.pattern_type is pattern_type]
            assert rules[-1].matcher({}) is True
            assert all(not r.matcher({}) for r in rules[:-1])

    def test_weights(self):
        weights = {r.title: r.weight for r in RECOMMENDATION_RULES}
        assert weights["Simplify payment process"] == 3.0
        assert weights["Improve form field usability"] == 2.0
        assert weights["Increase page engagement"] == 1.5


class TestInterpolation:
    def test_numbers_round_half_up(self):
        assert interpolate_template("{rate}% drop", {"rate": 42.5}) == "43% drop"
        assert interpolate_template("{rate}% drop", {"rate": 42.4}) == "42% drop"

    def test_missing_values_are_marked(self):
        assert interpolate_template("{re_entry_rate}% at {field}", {"field": "email"}) == (
            "[data unavailable]% at email"
        )

    def test_strings_pass_through(self):
        assert interpolate_template("at {stage}", {"stage": "/cart"}) == "at /cart"


class TestLevels:
    @pytest.mark.parametrize(
        "severity, level",
        [(0.0, ImpactLevel.LOW), (0.40, ImpactLevel.LOW), (0.41, ImpactLevel.MEDIUM), (0.70, ImpactLevel.MEDIUM),
         (0.71, ImpactLevel.HIGH), (1.0, ImpactLevel.HIGH)],
    )
    def test_impact_levels(self, severity, level):
        assert map_impact_level(severity) is level

    @pytest.mark.parametrize(
        "score, level",
        [(0.6, ConfidenceLevel.LOW), (0.66, ConfidenceLevel.MEDIUM), (0.8, ConfidenceLevel.MEDIUM),
         (0.86, ConfidenceLevel.HIGH), (1.0, ConfidenceLevel.HIGH)],
    )
    def test_confidence_levels(self, score, level):
        assert map_confidence_level(score) is level

    def test_display_priority_is_product_of_weights(self):
        assert display_priority("HIGH", "HIGH") == 9
        assert display_priority(ImpactLevel.MEDIUM, ConfidenceLevel.LOW) == 2
        assert display_priority("LOW", "LOW") == 1


class TestDisplayRanking:
    def test_priority_then_newest(self):
        now = datetime(2026, 5, 4, 12, 0)
        recs = [
            SimpleNamespace(name="low", impact_level="LOW", confidence_level="LOW", created_at=now),
            SimpleNamespace(name="high-old", impact_level="HIGH", confidence_level="MEDIUM",
                            created_at=now - timedelta(days=2)),
            SimpleNamespace(name="high-new", impact_level="MEDIUM", confidence_level="HIGH", created_at=now),
            SimpleNamespace(name="top", impact_level="HIGH", confidence_level="HIGH",
                            created_at=now - timedelta(days=5)),
        ]

        assert [r.name for r in rank_for_display(recs)] == ["top", "high-new", "high-old", "low"]
        assert [r.name for r in rank_for_display(recs, descending=False)] == ["low", "high-new", "high-old", "top"]

    def test_ranking_is_non_increasing(self):
        now = datetime(2026, 5, 4)
        levels = ["LOW", "MEDIUM", "HIGH"]
        recs = [
            SimpleNamespace(impact_level=i, confidence_level=c, created_at=now - timedelta(hours=n))
            for n, (i, c) in enumerate((i, c) for i in levels for c in levels)
        ]
        priorities = [display_priority(r.impact_level, r.confidence_level) for r in rank_for_display(recs)]
        assert priorities == sorted(priorities, reverse=True)


class TestPeerSuccess:
    def test_no_implementations_no_narrative(self):
        assert format_peer_success(None) is None
        assert format_peer_success(PeerSuccessStats(similar_business_count=10, implementation_count=0)) is None

    def test_narrative(self):
        stats = PeerSuccessStats(similar_business_count=12, implementation_count=3)
        assert format_peer_success(stats) == "3 similar stores implemented this and saw 18% average improvement"
