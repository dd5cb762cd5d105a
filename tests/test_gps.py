import random
from datetime import date

import pytest

from errors import BannedWordViolation
from gps import (
    CATEGORY_REBALANCE,
    FREEZE_PROTOCOL,
    RATE_ADJUSTMENT,
    SUPPORTIVE_MESSAGES,
    TIME_ADJUSTMENT,
    RebalanceSource,
    RecoveryPlanner,
    adjust_simulation_input,
    budget_status,
    daily_actions,
    freeze_weeks,
    goal_impact,
    multi_goal_impact,
    rebalance_candidates,
    savings_boost,
    supportive_message,
    template_category,
    timeline_extension_weeks,
    validate_no_banned_words,
)
from periods import Period
from simulation import SimulationEngine, SimulationInput


PERIOD = Period("MONTHLY", date(2024, 3, 1), date(2024, 3, 31))


def _input() -> SimulationInput:
    return SimulationInput(
        current_savings_rate=0.2,
        monthly_income=1000,
        current_net_worth=2000,
        goal_amount=20_000,
        goal_deadline=date(2029, 1, 1),
        expected_return_rate=0.10,
        inflation_rate=0.05,
        monthly_expenses=600,
        random_seed=7,
    )


def test_budget_status_triggers() -> None:
    exceeded = budget_status("food-dining", 1000, 1100, PERIOD)
    assert exceeded.trigger == "BUDGET_EXCEEDED"
    assert exceeded.overage_percent == 10.0
    assert exceeded.overspend == 100
    assert exceeded.remaining == -100

    assert budget_status("food-dining", 1000, 1200, PERIOD).trigger == "BUDGET_CRITICAL"
    warning = budget_status("food-dining", 1000, 800, PERIOD)
    assert warning.trigger == "BUDGET_WARNING"
    assert warning.overage_percent == 0
    assert warning.overspend == 0


def test_budget_status_with_zero_budget() -> None:
    status = budget_status("misc", 0, 50, PERIOD)
    assert status.spent_ratio == 0.0
    assert status.trigger == "BUDGET_WARNING"


def test_timeline_extension_weeks() -> None:
    assert timeline_extension_weeks(50, 1000) == 1
    assert timeline_extension_weeks(150, 1000) == 3
    assert timeline_extension_weeks(500, 1000) == 4
    assert timeline_extension_weeks(500, 0) == 2


def test_savings_boost_is_capped() -> None:
    add, weeks = savings_boost(200, 1000, 0.2)
    assert add == pytest.approx(0.05)
    assert weeks == 8
    assert savings_boost(10, 1000, 0.2)[0] == pytest.approx(0.03)
    assert savings_boost(100, 0, 0.2) == (0.05, 4)


def test_freeze_weeks() -> None:
    assert freeze_weeks(50, 1000) == 2
    assert freeze_weeks(150, 1000) == 3
    assert freeze_weeks(300, 1000) == 4
    assert freeze_weeks(300, 0) == 4


def test_adjust_simulation_input() -> None:
    adjusted = adjust_simulation_input(
        _input(), weeks_extension=2, additional_savings_rate=0.05, additional_monthly_savings=100
    )
    assert adjusted.current_savings_rate == pytest.approx(0.35)
    assert adjusted.goal_deadline == date(2029, 1, 15)


def test_banned_words_are_rejected() -> None:
    validate_no_banned_words("Let's recalculate your route")
    with pytest.raises(BannedWordViolation, match="failed"):
        validate_no_banned_words("You FAILED this month")


def test_all_message_templates_are_clean() -> None:
    for templates in SUPPORTIVE_MESSAGES.values():
        for text in (*templates["headlines"], *templates["subtexts"]):
            validate_no_banned_words(text)


def test_daily_actions_by_overage() -> None:
    assert daily_actions("food-dining", 60) == [
        "Pack lunch instead of eating out this week",
        "Cook at home 4+ nights this week",
    ]
    assert len(daily_actions("unknown-category", 0)) == 1


@pytest.mark.parametrize(
    "category, expected",
    [
        ("Food & Dining", "food-dining"),
        ("  food-dining ", "food-dining"),
        ("Groceries", "food-dining"),
        ("Transport", "transportation"),
        ("Uber rides", "transportation"),
        ("Misc", "other"),
    ],
)
def test_template_category_normalises_free_text(category: str, expected: str) -> None:
    assert template_category(category) == expected


def test_daily_actions_for_free_text_category() -> None:
    assert daily_actions("Food & Dining", 0) == ["Pack lunch instead of eating out this week"]


def test_supportive_message_fills_goal_name() -> None:
    status = budget_status("shopping", 1000, 2100, PERIOD)
    message = supportive_message(status, "Lagos Apartment", rng=random.Random(3))
    assert message.headline in SUPPORTIVE_MESSAGES["BUDGET_CRITICAL"]["headlines"]
    assert "{goal}" not in message.subtext
    assert message.tone == "Supportive"
    assert len(message.actions) == 3


def test_goal_impact_messages() -> None:
    assert goal_impact(1, "Car", 0.8, 0.75).message == (
        "Your goal probability decreased by 5.0 percentage points"
    )
    assert "increased" in goal_impact(1, "Car", 0.5, 0.6).message
    assert goal_impact(1, "Car", 0.5, 0.5).message == "Your goal probability remained unchanged"


def test_multi_goal_impact_orders_by_drop() -> None:
    impacts = [
        goal_impact(1, "Car", 0.8, 0.78),
        goal_impact(2, "House", 0.6, 0.5),
        goal_impact(3, "School", 0.9, 0.9),
    ]
    result = multi_goal_impact(impacts)
    assert result.primary_goal.goal_name == "House"
    assert [i.goal_name for i in result.other_goals] == ["Car", "School"]
    assert result.summary["total_goals_affected"] == 3
    assert result.summary["least_affected_goal"] == "School"

    with pytest.raises(ValueError):
        multi_goal_impact([])


def test_rebalance_candidates_filters_and_sorts() -> None:
    status = budget_status("food-dining", 1000, 1250, PERIOD)
    sources = [
        RebalanceSource("transportation", 300, 1000),
        RebalanceSource("entertainment", 500, 10_000),
        RebalanceSource("food-dining", 900, 1000),
        RebalanceSource("shopping", 400, 2000),
    ]
    picked = rebalance_candidates(status, sources, rebalances_this_period=0)
    assert [s.category for s in picked] == ["shopping", "transportation"]
    assert rebalance_candidates(status, sources, rebalances_this_period=2) == []


def test_recovery_planner_ranks_paths() -> None:
    planner = RecoveryPlanner(SimulationEngine(iterations=100, optimization_iterations=50))
    status = budget_status("food-dining", 200, 300, PERIOD)

    paths = planner.generate_paths(
        _input(),
        status,
        average_monthly_category_spend=200,
        rebalance_sources=[RebalanceSource("shopping", 400, 2000)],
        previous_probability=0.99,
    )

    ids = {path.id for path in paths}
    assert ids == {TIME_ADJUSTMENT, RATE_ADJUSTMENT, FREEZE_PROTOCOL, CATEGORY_REBALANCE}
    probabilities = [path.new_probability for path in paths]
    assert probabilities == sorted(probabilities, reverse=True)
    assert paths[0].id == CATEGORY_REBALANCE
    assert paths[0].details["from_category"] == "shopping"


def test_recovery_planner_measures_impact() -> None:
    planner = RecoveryPlanner(SimulationEngine(iterations=100, optimization_iterations=50))
    status = budget_status("food-dining", 200, 400, PERIOD)
    impact = planner.measure_impact(_input(), status, goal_id=1, goal_name="House")
    assert impact.previous_probability >= impact.new_probability
    assert impact.goal_name == "House"
