"""
Recommendation rules — ordered (matcher, template) entries per pattern type.

Lookup walks the rules for a pattern type in order and returns the first
whose matcher accepts the pattern's metadata. Every pattern type ends with a
catch-all rule, so a lookup for a known type always succeeds.

Templates use ``{placeholder}`` names from the pattern metadata; numbers are
rounded to whole values and missing keys render as ``[data unavailable]``.
"""

import math
import re
from collections.abc import Callable
from dataclasses import dataclass

from analytics.thresholds import PatternType

CONVERSION_VALUE_WEIGHTS = {
    "HIGH": 3.0,
    "MEDIUM": 2.0,
    "LOW_MEDIUM": 1.5,
}

MISSING_VALUE = "[data unavailable]"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class RecommendationRule:
    pattern_type: PatternType
    matcher: Callable[[dict], bool]
    title: str
    problem_template: str
    action_steps: tuple[str, ...]
    expected_impact: str
    conversion_value: str

    @property
    def weight(self) -> float:
        return CONVERSION_VALUE_WEIGHTS[self.conversion_value]


def _contains(key: str, *needles: str) -> Callable[[dict], bool]:
    def match(metadata: dict) -> bool:
        value = str(metadata.get(key) or "").lower()
        return any(needle in value for needle in needles)

    return match


def _always(metadata: dict) -> bool:
    return True


RECOMMENDATION_RULES: list[RecommendationRule] = [
    # ── Abandonment ─────────────────────────────────────────────────────
    RecommendationRule(
        pattern_type=PatternType.ABANDONMENT,
        matcher=_contains("stage", "shipping"),
        title="Show shipping costs earlier in checkout",
        problem_template="{drop_off_rate}% of customers abandon during shipping step",
        action_steps=(
            "Display estimated shipping cost on product page",
            "Add shipping calculator before checkout",
            "Show free shipping threshold in cart",
        ),
        expected_impact="Reduce shipping page abandonment by 15-25%",
        conversion_value="HIGH",
    ),
    RecommendationRule(
        pattern_type=PatternType.ABANDONMENT,
        matcher=_contains("stage", "payment"),
        title="Simplify payment process",
        problem_template="{drop_off_rate}% of customers abandon during payment step",
        action_steps=(
            "Add more trusted payment badges near form",
            "Reduce required payment form fields",
            "Enable express checkout options (Apple Pay, Google Pay)",
        ),
        expected_impact="Reduce payment abandonment by 10-20%",
        conversion_value="HIGH",
    ),
    RecommendationRule(
        pattern_type=PatternType.ABANDONMENT,
        matcher=_contains("stage", "product"),
        title="Improve product page content",
        problem_template="{drop_off_rate}% of visitors leave product pages without adding to cart",
        action_steps=(
            "Add more product images (minimum 5 angles)",
            "Enhance product descriptions with key benefits",
            "Add customer reviews and ratings prominently",
        ),
        expected_impact="Increase add-to-cart rate by 8-15%",
        conversion_value="HIGH",
    ),
    RecommendationRule(
        pattern_type=PatternType.ABANDONMENT,
        matcher=_contains("stage", "cart"),
        title="Optimize shopping cart experience",
        problem_template="{drop_off_rate}% of customers abandon their cart",
        action_steps=(
            "Add urgency indicators (low stock, time-limited offers)",
            "Display clear savings summary",
            "Show free shipping threshold progress",
        ),
        expected_impact="Reduce cart abandonment by 10-18%",
        conversion_value="HIGH",
    ),
    RecommendationRule(
        pattern_type=PatternType.ABANDONMENT,
        matcher=_always,
        title="Reduce checkout abandonment",
        problem_template="{drop_off_rate}% of customers abandon during checkout",
        action_steps=(
            "Simplify checkout process and reduce steps",
            "Add trust signals and security badges",
            "Offer guest checkout option",
        ),
        expected_impact="Reduce abandonment by 10-15%",
        conversion_value="HIGH",
    ),
    # ── Hesitation ──────────────────────────────────────────────────────
    RecommendationRule(
        pattern_type=PatternType.HESITATION,
        matcher=_contains("field", "address"),
        title="Add address autocomplete functionality",
        problem_template="{re_entry_rate}% of users re-enter address information {avg_re_entries} times",
        action_steps=(
            "Implement address autocomplete",
            "Add clear format examples (e.g., '123 Main St')",
            "Show real-time validation feedback",
        ),
        expected_impact="Reduce form completion time by 30-40%",
        conversion_value="MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.HESITATION,
        matcher=_contains("field", "card", "credit"),
        title="Improve payment field clarity",
        problem_template="{re_entry_rate}% of users struggle with payment field entry",
        action_steps=(
            "Add input format hints (e.g., 'XXXX XXXX XXXX XXXX')",
            "Make security badge more visible near card field",
            "Enable card type auto-detection with icons",
        ),
        expected_impact="Reduce payment form errors by 20-30%",
        conversion_value="MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.HESITATION,
        matcher=_contains("field", "email"),
        title="Optimize email input experience",
        problem_template="{re_entry_rate}% of users re-enter email address",
        action_steps=(
            "Add inline validation with clear error messages",
            "Clarify why email is needed (e.g., 'For order confirmation')",
            "Enable email autofill hints",
        ),
        expected_impact="Reduce email field errors by 15-25%",
        conversion_value="MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.HESITATION,
        matcher=_contains("field", "phone"),
        title="Simplify phone number entry",
        problem_template="{re_entry_rate}% of users re-enter phone number",
        action_steps=(
            "Add phone format auto-formatting",
            "Show clear format example (e.g., '(555) 123-4567')",
            "Make phone field optional if not critical",
        ),
        expected_impact="Reduce form abandonment by 8-12%",
        conversion_value="MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.HESITATION,
        matcher=_always,
        title="Improve form field usability",
        problem_template="{re_entry_rate}% of users struggle with form field entry",
        action_steps=(
            "Add clear field labels and format examples",
            "Implement inline validation with helpful messages",
            "Enable autofill and autocomplete where possible",
        ),
        expected_impact="Reduce form errors by 15-20%",
        conversion_value="MEDIUM",
    ),
    # ── Low engagement ──────────────────────────────────────────────────
    RecommendationRule(
        pattern_type=PatternType.LOW_ENGAGEMENT,
        matcher=_contains("page", "/product"),
        title="Enhance product page engagement",
        problem_template=(
            "Product page engagement {engagement_gap}% below site average ({time_on_page}s vs {site_average}s)"
        ),
        action_steps=(
            "Add customer reviews and Q&A section",
            "Include video demos or 360° product views",
            "Add size guides and detailed specifications",
        ),
        expected_impact="Increase time-on-page by 20-30%",
        conversion_value="LOW_MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.LOW_ENGAGEMENT,
        matcher=_contains("page", "/category", "/collection"),
        title="Improve category browsing experience",
        problem_template="Category page engagement {engagement_gap}% below site average",
        action_steps=(
            "Enhance filtering and sorting options",
            "Add product comparison feature",
            "Display better product preview images",
        ),
        expected_impact="Increase product discovery by 15-20%",
        conversion_value="LOW_MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.LOW_ENGAGEMENT,
        matcher=_contains("page", "/cart"),
        title="Make cart more engaging",
        problem_template="Cart page time-on-page {engagement_gap}% below expected",
        action_steps=(
            "Add related products or frequently bought together",
            "Show clear savings and discount summaries",
            "Add urgency indicators (limited stock, trending items)",
        ),
        expected_impact="Increase cart engagement by 10-15%",
        conversion_value="MEDIUM",
    ),
    RecommendationRule(
        pattern_type=PatternType.LOW_ENGAGEMENT,
        matcher=_always,
        title="Increase page engagement",
        problem_template="Page engagement {engagement_gap}% below site average",
        action_steps=(
            "Improve content quality and visual appeal",
            "Add interactive elements (reviews, videos, comparisons)",
            "Optimize page loading speed",
        ),
        expected_impact="Increase engagement by 10-20%",
        conversion_value="LOW_MEDIUM",
    ),
]


def find_matching_rule(pattern_type: PatternType | str, metadata: dict) -> RecommendationRule | None:
    pattern_type = PatternType(pattern_type)
    for rule in RECOMMENDATION_RULES:
        if rule.pattern_type is pattern_type and rule.matcher(metadata or {}):
            return rule
    return None


def _format_value(value) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        # half-up, so 42.5 renders as 43
        return str(math.floor(value + 0.5))
    return str(value)


def interpolate_template(template: str, metadata: dict) -> str:
    def replace(match: re.Match) -> str:
        value = (metadata or {}).get(match.group(1))
        if value is None:
            return MISSING_VALUE
        return _format_value(value)

    return _PLACEHOLDER.sub(replace, template)
