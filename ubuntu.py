"""Family-support ("Ubuntu") dependency ratio.

Money sent to family is treated as a normal part of a budget rather than a
leak: the ratio is reported with supportive framing, and family
emergencies come with adjustment options instead of warnings.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional, Protocol

from models import Frequency, RelationshipType


logger = logging.getLogger(__name__)

MONTHLY_MULTIPLIERS: dict[Frequency, float] = {
    Frequency.daily: 30,
    Frequency.weekly: 4.33,
    Frequency.biweekly: 2.17,
    Frequency.monthly: 1,
    Frequency.quarterly: 0.33,
    Frequency.annually: 0.083,
    Frequency.one_time: 0,
}

RELATIONSHIP_GROUPS: dict[str, tuple[RelationshipType, ...]] = {
    "parent_support": (RelationshipType.parent, RelationshipType.spouse),
    "sibling_education": (RelationshipType.sibling, RelationshipType.child),
    "extended_family": (RelationshipType.extended_family,),
    "community_contribution": (RelationshipType.community, RelationshipType.other),
}

GREEN_MAX = 0.10
ORANGE_MAX = 0.35
TREND_THRESHOLD = 0.01

EMERGENCY_FUND_TAP_THRESHOLD = 0.5
GOAL_TIMELINE_EXTENSION_WEEKS = 8
TEMPORARY_SAVINGS_REDUCTION = 0.5
TIMELINE_EXTENSION_PROBABILITY_DROP = 0.03
RECOVERY_WEEKS = {
    "EMERGENCY_FUND_TAP": 12,
    "GOAL_TIMELINE_EXTEND": 8,
    "SAVINGS_RATE_REDUCE": 8,
}

UBUNTU_MESSAGES: dict[str, dict[str, str]] = {
    "GREEN": {
        "headline": "Your family support is well-balanced",
        "subtext": (
            "You are caring for the people you love while keeping your own "
            "goals moving. Keep it up."
        ),
    },
    "ORANGE": {
        "headline": "Family comes first - and so does your future",
        "subtext": (
            "Your support is meaningful. A small emergency buffer for family "
            "needs will help protect your goals too."
        ),
    },
    "RED": {
        "headline": "You are carrying a heavy load for your family",
        "subtext": (
            "Your generosity is a strength. Let's find a rhythm that lets you "
            "keep supporting them while you build your own safety net."
        ),
    },
}

ADJUSTMENT_MESSAGES = {
    "EMERGENCY_FUND_TAP": (
        "Your family is important, and so is your future. "
        "You've used your emergency fund wisely - that's exactly what it's for."
    ),
    "GOAL_TIMELINE_EXTEND": (
        "Taking care of family is part of building wealth in our culture. "
        "Your goal is still on track, just with a little more time."
    ),
    "SAVINGS_RATE_REDUCE": (
        "Sometimes we need to slow down to support those we love. "
        "Your commitment to your goals remains strong."
    ),
}


class SupportRecord(Protocol):
    amount: float
    frequency: Frequency
    relationship: RelationshipType
    is_active: bool


@dataclass
class DependencyRatioResult:
    total_ratio: float
    risk_level: str
    components: dict[str, float]
    monthly_total: float
    monthly_income: float
    currency: str
    message: dict[str, str]
    trend: str


@dataclass
class EmergencyImpact:
    new_probability: float
    recovery_weeks: int


@dataclass
class AdjustmentOption:
    type: str
    label: str
    description: str
    recovery_weeks: int
    new_goal_probability: float
    recommended: bool
    available: bool
    unavailable_reason: Optional[str] = None
    details: dict[str, object] = field(default_factory=dict)
    message: Optional[str] = None


def to_monthly(amount: float, frequency: Frequency) -> float:
    return float(amount) * MONTHLY_MULTIPLIERS.get(Frequency(frequency), 1)


def risk_level(ratio: float) -> str:
    if ratio <= GREEN_MAX:
        return "GREEN"
    if ratio <= ORANGE_MAX:
        return "ORANGE"
    return "RED"


def ratio_trend(current: float, previous: Optional[float]) -> str:
    if previous is None:
        return "stable"
    diff = current - previous
    if diff < -TREND_THRESHOLD:
        return "improving"
    if diff > TREND_THRESHOLD:
        return "increasing"
    return "stable"


def calculate_dependency_ratio(
    support: Iterable[SupportRecord],
    monthly_income: float,
    currency: str = "NGN",
    previous_ratio: Optional[float] = None,
) -> DependencyRatioResult:
    active = [record for record in support if record.is_active]
    components: dict[str, float] = {}
    for group, relationships in RELATIONSHIP_GROUPS.items():
        components[group] = sum(
            to_monthly(record.amount, record.frequency)
            for record in active
            if RelationshipType(record.relationship) in relationships
        )
    monthly_total = sum(components.values())
    ratio = monthly_total / monthly_income if monthly_income > 0 else 0.0
    level = risk_level(ratio)
    trend = ratio_trend(ratio, previous_ratio)
    logger.debug(
        f"dependency_ratio: ratio={ratio:.4f} monthly={monthly_total} "
        f"income={monthly_income} risk={level} trend={trend}"
    )
    return DependencyRatioResult(
        total_ratio=round(ratio, 4),
        risk_level=level,
        components=components,
        monthly_total=monthly_total,
        monthly_income=monthly_income,
        currency=currency,
        message=dict(UBUNTU_MESSAGES[level]),
        trend=trend,
    )


def calculate_emergency_impact(
    amount: float,
    current_probability: float,
    emergency_fund: float,
    monthly_income: float,
) -> EmergencyImpact:
    if emergency_fund >= amount and emergency_fund > 0:
        drop = amount / emergency_fund * 0.05
        weeks = math.ceil(amount / (monthly_income * 0.1)) if monthly_income > 0 else 0
        return EmergencyImpact(max(0.0, current_probability - drop), weeks)

    shortfall = amount - emergency_fund
    if monthly_income > 0:
        drop = min(0.15, shortfall / monthly_income * 0.05)
        weeks = math.ceil(amount / (monthly_income * 0.15))
    else:
        drop, weeks = 0.15, 0
    return EmergencyImpact(max(0.0, current_probability - drop), weeks)


def adjustment_options(
    amount: float,
    emergency_fund: float,
    monthly_income: float,
    current_probability: float,
    savings_rate: float,
    goal_deadline: Optional[date] = None,
    today: Optional[date] = None,
) -> list[AdjustmentOption]:
    """The three ways to absorb a family emergency, with their goal impact."""
    today = today or date.today()
    threshold = amount * EMERGENCY_FUND_TAP_THRESHOLD
    fund_available = emergency_fund >= threshold
    covers_all = emergency_fund >= amount
    coverage = round(emergency_fund / amount * 100) if amount > 0 else 100
    shortfall = max(0.0, amount - emergency_fund)

    if covers_all:
        description = "Your emergency fund can cover this need completely."
    elif fund_available:
        description = (
            f"Your emergency fund covers {coverage}% of this need. "
            f"You'll need to find {shortfall:,.0f} elsewhere."
        )
    else:
        description = (
            f"Your emergency fund only covers {coverage}% of this need, "
            "which is below the 50% minimum threshold."
        )
    tap = calculate_emergency_impact(
        amount, current_probability, emergency_fund, monthly_income
    )
    options = [
        AdjustmentOption(
            type="EMERGENCY_FUND_TAP",
            message=ADJUSTMENT_MESSAGES["EMERGENCY_FUND_TAP"],
            label="Use Emergency Fund",
            description=description,
            recovery_weeks=RECOVERY_WEEKS["EMERGENCY_FUND_TAP"],
            new_goal_probability=tap.new_probability,
            recommended=fund_available and covers_all,
            available=fund_available,
            unavailable_reason=None
            if fund_available
            else (
                f"Emergency fund ({emergency_fund:,.0f}) is less than 50% of the "
                f"required amount ({threshold:,.0f})."
            ),
            details={
                "available_fund": emergency_fund,
                "amount_to_tap": min(amount, emergency_fund),
                "remaining_fund": max(0.0, emergency_fund - amount),
                "coverage_percent": coverage,
                "shortfall": shortfall or None,
                "is_partial_coverage": not covers_all and fund_available,
            },
        )
    ]

    deadline = goal_deadline or today + timedelta(weeks=12)
    options.append(
        AdjustmentOption(
            type="GOAL_TIMELINE_EXTEND",
            message=ADJUSTMENT_MESSAGES["GOAL_TIMELINE_EXTEND"],
            label="Extend Goal Deadline",
            description=(
                f"Add {GOAL_TIMELINE_EXTENSION_WEEKS} weeks to your goal deadline "
                "to free up savings."
            ),
            recovery_weeks=RECOVERY_WEEKS["GOAL_TIMELINE_EXTEND"],
            new_goal_probability=max(
                0.0, current_probability - TIMELINE_EXTENSION_PROBABILITY_DROP
            ),
            recommended=not fund_available,
            available=True,
            details={
                "current_deadline": deadline,
                "new_deadline": deadline + timedelta(weeks=GOAL_TIMELINE_EXTENSION_WEEKS),
                "extension_weeks": GOAL_TIMELINE_EXTENSION_WEEKS,
            },
        )
    )

    spread = calculate_emergency_impact(
        amount * 0.5, current_probability, emergency_fund, monthly_income
    )
    options.append(
        AdjustmentOption(
            type="SAVINGS_RATE_REDUCE",
            message=ADJUSTMENT_MESSAGES["SAVINGS_RATE_REDUCE"],
            label="Temporarily Reduce Savings",
            description=(
                "Reduce your savings rate by 50% for "
                f"{RECOVERY_WEEKS['SAVINGS_RATE_REDUCE']} weeks."
            ),
            recovery_weeks=RECOVERY_WEEKS["SAVINGS_RATE_REDUCE"],
            new_goal_probability=spread.new_probability,
            recommended=False,
            available=True,
            details={
                "current_rate": savings_rate,
                "temporary_rate": savings_rate * TEMPORARY_SAVINGS_REDUCTION,
                "duration_weeks": RECOVERY_WEEKS["SAVINGS_RATE_REDUCE"],
            },
        )
    )
    return options
