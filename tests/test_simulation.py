from dataclasses import replace
from datetime import date

import numpy as np

from simulation import (
    MAX_GOALS,
    SimulationEngine,
    SimulationGoal,
    SimulationInput,
    build_goals,
    economic_defaults,
    percentile,
)


TODAY = date(2024, 1, 1)


def _input(**overrides) -> SimulationInput:
    data = SimulationInput(
        current_savings_rate=0.2,
        monthly_income=500_000,
        current_net_worth=1_000_000,
        goal_amount=5_000_000,
        goal_deadline=date(2029, 1, 1),
        expected_return_rate=0.10,
        inflation_rate=0.05,
        monthly_expenses=300_000,
        random_seed=42,
    )
    return replace(data, **overrides)


def _engine() -> SimulationEngine:
    return SimulationEngine(iterations=200, optimization_iterations=100)


def test_economic_defaults_fall_back_to_default_country() -> None:
    assert economic_defaults("nigeria")["expected_return"] == 0.10
    assert economic_defaults("atlantis") == economic_defaults(None)


def test_percentile_uses_ceiling_rank() -> None:
    values = np.arange(1, 11, dtype=float)
    assert percentile(values, 10) == 1.0
    assert percentile(values, 90) == 9.0
    assert percentile(np.array([]), 50) == 0.0


def test_build_goals_defaults_to_primary_goal() -> None:
    goals = build_goals(_input())
    assert len(goals) == 1
    assert goals[0].id == "primary"
    assert goals[0].amount == 5_000_000


def test_build_goals_orders_by_priority_and_caps() -> None:
    extra = [
        SimulationGoal(amount=1000 * i, deadline=date(2030, 1, 1), priority=10 - i)
        for i in range(MAX_GOALS + 2)
    ]
    goals = build_goals(_input(goals=extra))
    assert len(goals) == MAX_GOALS
    assert [g.priority for g in goals] == sorted(g.priority for g in goals)
    assert goals[0].amount == 6000


def test_goal_already_exceeded_is_certain() -> None:
    engine = _engine()
    data = _input(current_net_worth=50_000_000)
    assert engine.goal_probability(data, today=TODAY) == 1.0


def test_goal_unreachable_without_income_or_assets() -> None:
    engine = _engine()
    data = _input(monthly_income=0, current_net_worth=0, monthly_expenses=0)
    assert engine.goal_probability(data, today=TODAY) == 0.0


def test_seeded_simulation_is_reproducible() -> None:
    engine = _engine()
    first = engine.goal_probability(_input(), today=TODAY)
    second = engine.goal_probability(_input(), today=TODAY)
    assert first == second


def test_higher_savings_rate_never_hurts_probability() -> None:
    engine = _engine()
    low = engine.goal_probability(_input(current_savings_rate=0.05), today=TODAY)
    high = engine.goal_probability(_input(current_savings_rate=0.6), today=TODAY)
    assert high >= low


def test_optimal_rate_keeps_current_when_on_target() -> None:
    engine = _engine()
    assert engine.find_optimal_savings_rate(_input(), 0.9, today=TODAY) == 0.2


def test_market_regimes_run() -> None:
    engine = _engine()
    probability = engine.goal_probability(_input(enable_market_regimes=True), today=TODAY)
    assert 0.0 <= probability <= 1.0


def test_dual_path_output_shape_and_cache() -> None:
    engine = _engine()
    data = _input()
    result = engine.run_dual_path(data, "NGN", user_id=1, today=TODAY)

    assert set(result.current_path.projected_net_worth) == {"6mo", "1yr", "5yr", "10yr", "20yr"}
    for horizon, interval in result.current_path.confidence_intervals.items():
        assert interval["low"] <= interval["high"]
    assert all(value >= 0 for value in result.wealth_difference.values())
    assert result.optimized_path.required_savings_rate is not None
    assert result.optimized_path.required_savings_rate >= data.current_savings_rate
    assert result.metadata["currency"] == "NGN"
    assert result.metadata["iterations"] == 200

    assert engine.run_dual_path(data, "NGN", user_id=1, today=TODAY) is result


def test_dual_path_cache_is_keyed_by_day_and_goal_identity() -> None:
    engine = _engine()
    car = SimulationGoal(amount=2_000_000, deadline=date(2026, 1, 1), id="car", name="Car")
    data = _input(goals=[car])
    first = engine.run_dual_path(data, "NGN", user_id=1, today=TODAY)

    next_day = engine.run_dual_path(data, "NGN", user_id=1, today=date(2024, 1, 2))
    assert next_day is not first

    renamed = _input(goals=[replace(car, id="bike", name="Bike")])
    other_goal = engine.run_dual_path(renamed, "NGN", user_id=1, today=TODAY)
    assert other_goal is not first
    assert [g.goal_id for g in other_goal.current_path.goal_results] == ["bike"]

    assert engine.run_dual_path(data, "USD", user_id=1, today=TODAY) is not first


def test_multi_goal_results_reported_per_goal() -> None:
    engine = _engine()
    goals = [
        SimulationGoal(amount=2_000_000, deadline=date(2026, 1, 1), id="car", priority=1),
        SimulationGoal(amount=20_000_000, deadline=date(2034, 1, 1), id="house", priority=2),
    ]
    result = engine.run_dual_path(_input(goals=goals), "NGN", today=TODAY)

    ids = [g.goal_id for g in result.current_path.goal_results]
    assert ids == ["car", "house"]
    assert result.current_path.all_goals_probability <= min(
        g.probability for g in result.current_path.goal_results
    )
