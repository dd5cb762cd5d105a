from datetime import date

import pytest

from models import FamilySupport, Frequency, RelationshipType
from ubuntu import (
    adjustment_options,
    calculate_dependency_ratio,
    calculate_emergency_impact,
    ratio_trend,
    risk_level,
    to_monthly,
)


def _support(
    relationship: RelationshipType,
    amount: float,
    frequency: Frequency = Frequency.monthly,
    is_active: bool = True,
) -> FamilySupport:
    return FamilySupport(
        name=relationship.value.title(),
        relationship=relationship,
        amount=amount,
        frequency=frequency,
        is_active=is_active,
    )


def test_to_monthly_uses_frequency_multiplier() -> None:
    assert to_monthly(100, Frequency.weekly) == pytest.approx(433)
    assert to_monthly(100, Frequency.one_time) == 0
    assert to_monthly(100, "MONTHLY") == 100


def test_dependency_ratio_groups_relationships() -> None:
    records = [
        _support(RelationshipType.parent, 50_000),
        _support(RelationshipType.sibling, 10_000, Frequency.weekly),
        _support(RelationshipType.community, 12_000, Frequency.annually),
        _support(RelationshipType.extended_family, 100_000, is_active=False),
    ]
    result = calculate_dependency_ratio(records, 500_000)

    assert result.components["parent_support"] == pytest.approx(50_000)
    assert result.components["sibling_education"] == pytest.approx(43_300)
    assert result.components["community_contribution"] == pytest.approx(996)
    assert result.components["extended_family"] == 0
    assert result.total_ratio == pytest.approx(0.1886, abs=1e-4)
    assert result.risk_level == "ORANGE"
    assert result.message["headline"].startswith("Family comes first")
    assert result.trend == "stable"


def test_dependency_ratio_without_income_is_green() -> None:
    result = calculate_dependency_ratio([_support(RelationshipType.parent, 1000)], 0)
    assert result.total_ratio == 0
    assert result.risk_level == "GREEN"


def test_risk_level_boundaries() -> None:
    assert risk_level(0.10) == "GREEN"
    assert risk_level(0.35) == "ORANGE"
    assert risk_level(0.3501) == "RED"


def test_ratio_trend() -> None:
    assert ratio_trend(0.2, None) == "stable"
    assert ratio_trend(0.2, 0.25) == "improving"
    assert ratio_trend(0.2, 0.195) == "stable"
    assert ratio_trend(0.3, 0.2) == "increasing"


def test_emergency_impact_covered_by_fund() -> None:
    impact = calculate_emergency_impact(50_000, 0.8, 100_000, 200_000)
    assert impact.new_probability == pytest.approx(0.775)
    assert impact.recovery_weeks == 3


def test_emergency_impact_with_shortfall() -> None:
    impact = calculate_emergency_impact(150_000, 0.8, 50_000, 200_000)
    assert impact.new_probability == pytest.approx(0.775)
    assert impact.recovery_weeks == 5

    no_income = calculate_emergency_impact(150_000, 0.1, 0, 0)
    assert no_income.new_probability == 0.0
    assert no_income.recovery_weeks == 0


def test_adjustment_options_partial_fund() -> None:
    options = adjustment_options(
        100_000,
        60_000,
        200_000,
        0.8,
        0.2,
        goal_deadline=date(2025, 1, 1),
        today=date(2024, 1, 1),
    )
    tap, extend, reduce = options

    assert tap.type == "EMERGENCY_FUND_TAP"
    assert tap.available
    assert not tap.recommended
    assert "covers 60%" in tap.description
    assert "40,000" in tap.description
    assert tap.details["is_partial_coverage"] is True

    assert extend.details["new_deadline"] == date(2025, 2, 26)
    assert extend.new_goal_probability == pytest.approx(0.77)
    assert reduce.details["temporary_rate"] == pytest.approx(0.1)


def test_adjustment_options_small_fund_recommends_extension() -> None:
    tap, extend, _ = adjustment_options(100_000, 10_000, 200_000, 0.8, 0.2)
    assert not tap.available
    assert "less than 50%" in tap.unavailable_reason
    assert extend.recommended


def test_adjustment_options_full_cover_recommends_fund() -> None:
    tap, extend, _ = adjustment_options(50_000, 80_000, 200_000, 0.8, 0.2)
    assert tap.recommended
    assert tap.details["remaining_fund"] == 30_000
    assert tap.details["shortfall"] is None
    assert not extend.recommended
    assert tap.message.startswith("Your family is important")
