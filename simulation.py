"""Dual-path Monte-Carlo projection of net worth and goal achievement.

The "current path" simulates the user's present savings behaviour. The
"optimised path" uses the lowest savings rate that reaches
``TARGET_PROBABILITY`` (found by bisection) plus the expense, return and
income-growth improvements the app expects to unlock.

All iterations of a path are simulated together as numpy arrays, month by
month, for a 20 year horizon.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional

import numpy as np

from config import get_settings
from errors import SimulationCalculationError
from local_cache import LocalCache
from periods import add_months, months_between


logger = logging.getLogger(__name__)

OPTIMIZATION_ITERATIONS = 1_000
RETURN_STD_DEV = 0.15
MAX_SAVINGS_RATE = 0.35
MIN_SAVINGS_RATE = 0.01
TARGET_PROBABILITY = 0.85
OPTIMIZATION_TOLERANCE = 0.005
MAX_OPTIMIZATION_ITERATIONS = 20
CACHE_TTL_SECONDS = 300
CACHE_MAX_SIZE = 100
DEFAULT_INCOME_GROWTH_RATE = 0.03
DEFAULT_TAX_RATE = 0.0
MAX_GOALS = 5

EXPENSE_GROWTH_REDUCTION = 0.40
RETURN_BONUS = 0.01
EXPENSE_REDUCTION = 0.15
INCOME_GROWTH_BONUS = 0.02

TIME_HORIZON_MONTHS: dict[str, int] = {
    "6mo": 6,
    "1yr": 12,
    "5yr": 60,
    "10yr": 120,
    "20yr": 240,
}
MAX_MONTHS = TIME_HORIZON_MONTHS["20yr"]

ECONOMIC_DEFAULTS: dict[str, dict[str, float]] = {
    "NIGERIA": {"inflation_rate": 0.05, "expected_return": 0.10, "income_growth": 0.05},
    "GHANA": {"inflation_rate": 0.08, "expected_return": 0.12, "income_growth": 0.04},
    "KENYA": {"inflation_rate": 0.06, "expected_return": 0.09, "income_growth": 0.04},
    "SOUTH_AFRICA": {"inflation_rate": 0.05, "expected_return": 0.08, "income_growth": 0.03},
    "USA": {"inflation_rate": 0.02, "expected_return": 0.07, "income_growth": 0.03},
    "UK": {"inflation_rate": 0.02, "expected_return": 0.06, "income_growth": 0.025},
    "DEFAULT": {"inflation_rate": 0.05, "expected_return": 0.07, "income_growth": 0.03},
}


def economic_defaults(country: Optional[str]) -> dict[str, float]:
    return ECONOMIC_DEFAULTS.get((country or "").upper(), ECONOMIC_DEFAULTS["DEFAULT"])


@dataclass(frozen=True)
class MarketRegime:
    return_adjustment: float
    volatility_multiplier: float
    average_duration: int
    transitions: tuple[float, float, float]  # bull, normal, bear


REGIME_ORDER = ("bull", "normal", "bear")
MARKET_REGIMES: dict[str, MarketRegime] = {
    "bull": MarketRegime(0.03, 0.8, 36, (0.85, 0.12, 0.03)),
    "normal": MarketRegime(0.0, 1.0, 24, (0.15, 0.70, 0.15)),
    "bear": MarketRegime(-0.05, 1.5, 12, (0.10, 0.30, 0.60)),
}


@dataclass
class SimulationGoal:
    amount: float
    deadline: date
    id: Optional[str] = None
    name: Optional[str] = None
    priority: Optional[int] = None


@dataclass
class SimulationInput:
    current_savings_rate: float
    monthly_income: float
    current_net_worth: float
    goal_amount: float
    goal_deadline: date
    expected_return_rate: float
    inflation_rate: float
    monthly_expenses: float = 0.0
    goals: list[SimulationGoal] = field(default_factory=list)
    income_growth_rate: Optional[float] = None
    expense_growth_rate: Optional[float] = None
    tax_rate_on_returns: Optional[float] = None
    enable_market_regimes: bool = False
    monthly_withdrawal: float = 0.0
    random_seed: Optional[int] = None


@dataclass
class GoalPathResult:
    goal_id: str
    goal_name: Optional[str]
    target_amount: float
    probability: float
    achieve_date: Optional[date]


@dataclass
class PathResult:
    probability: float
    projected_net_worth: dict[str, int]
    achieve_goal_date: Optional[date]
    confidence_intervals: dict[str, dict[str, int]]
    all_goals_probability: float
    goal_results: list[GoalPathResult]
    required_savings_rate: Optional[float] = None


@dataclass
class SimulationOutput:
    current_path: PathResult
    optimized_path: PathResult
    wealth_difference: dict[str, int]
    metadata: dict[str, object]


@dataclass
class _PathRun:
    achieved: np.ndarray
    achieved_month: np.ndarray
    goal_achieved: np.ndarray
    goal_month: np.ndarray
    horizons: dict[str, np.ndarray]

    @property
    def probability(self) -> float:
        return float(self.achieved.mean()) if self.achieved.size else 0.0


def build_goals(data: SimulationInput) -> list[SimulationGoal]:
    if data.goals:
        ordered = sorted(
            data.goals, key=lambda g: g.priority if g.priority is not None else 999
        )[:MAX_GOALS]
        return [
            SimulationGoal(
                amount=g.amount,
                deadline=g.deadline,
                id=g.id or f"goal-{idx}",
                name=g.name or f"Goal {idx + 1}",
                priority=g.priority if g.priority is not None else idx + 1,
            )
            for idx, g in enumerate(ordered)
        ]
    return [
        SimulationGoal(
            amount=data.goal_amount,
            deadline=data.goal_deadline,
            id="primary",
            name="Primary Goal",
            priority=1,
        )
    ]


def percentile(sorted_values: np.ndarray, p: float) -> float:
    n = len(sorted_values)
    if n == 0:
        return 0.0
    index = math.ceil(p / 100 * n) - 1
    return float(sorted_values[max(0, min(index, n - 1))])


def _median(values: np.ndarray) -> Optional[float]:
    if values.size == 0:
        return None
    return float(np.median(values))


def _next_regimes(
    regimes: np.ndarray, months_in_regime: np.ndarray, rng: np.random.Generator
) -> np.ndarray:
    """Move each path to a new market regime with a duration-dependent chance."""
    durations = np.array([MARKET_REGIMES[r].average_duration for r in REGIME_ORDER])
    transition_chance = np.minimum(0.5, months_in_regime / durations[regimes] * 0.3)
    switching = rng.random(regimes.size) < transition_chance
    pick = rng.random(regimes.size)

    updated = regimes.copy()
    for current, name in enumerate(REGIME_ORDER):
        mask = switching & (regimes == current)
        if not mask.any():
            continue
        cumulative = np.cumsum(MARKET_REGIMES[name].transitions)
        chosen = np.full(regimes.size, -1)
        for target in range(len(REGIME_ORDER)):
            if target == current:
                continue
            hit = mask & (chosen < 0) & (pick < cumulative[target])
            chosen[hit] = target
        changed = chosen >= 0
        updated[changed] = chosen[changed]
    return updated


class SimulationEngine:
    def __init__(
        self,
        iterations: Optional[int] = None,
        optimization_iterations: int = OPTIMIZATION_ITERATIONS,
        cache: Optional[LocalCache] = None,
    ) -> None:
        self.iterations = iterations or get_settings().simulation_iterations
        self.optimization_iterations = min(optimization_iterations, self.iterations)
        self.cache = cache or LocalCache(
            max_size=CACHE_MAX_SIZE,
            default_ttl_seconds=CACHE_TTL_SECONDS,
            cleanup_interval_seconds=None,
        )

    def simulate(
        self,
        data: SimulationInput,
        savings_rate: float,
        iterations: int,
        today: Optional[date] = None,
    ) -> _PathRun:
        today = today or date.today()
        rng = np.random.default_rng(data.random_seed)
        goals = build_goals(data)

        tax_rate = (
            data.tax_rate_on_returns
            if data.tax_rate_on_returns is not None
            else DEFAULT_TAX_RATE
        )
        real_return = data.expected_return_rate * (1 - tax_rate) - data.inflation_rate
        monthly_return = real_return / 12
        monthly_volatility = RETURN_STD_DEV / math.sqrt(12)
        income_growth = (
            data.income_growth_rate
            if data.income_growth_rate is not None
            else DEFAULT_INCOME_GROWTH_RATE
        ) / 12
        expense_growth = (
            data.expense_growth_rate
            if data.expense_growth_rate is not None
            else data.inflation_rate
        ) / 12

        goal_amounts = np.array([g.amount for g in goals], dtype=float)
        goal_deadlines = np.array([months_between(today, g.deadline) for g in goals])
        primary_amount = goal_amounts[0]
        primary_deadline = goal_deadlines[0]

        net_worth = np.full(iterations, float(data.current_net_worth))
        achieved = np.zeros(iterations, dtype=bool)
        achieved_month = np.zeros(iterations, dtype=int)
        goal_achieved = np.zeros((len(goals), iterations), dtype=bool)
        goal_month = np.zeros((len(goals), iterations), dtype=int)
        horizons: dict[str, np.ndarray] = {}
        horizon_by_month = {m: h for h, m in TIME_HORIZON_MONTHS.items()}

        regimes = np.full(iterations, REGIME_ORDER.index("normal"))
        months_in_regime = np.zeros(iterations)
        regime_returns = np.array([MARKET_REGIMES[r].return_adjustment for r in REGIME_ORDER])
        regime_vol = np.array([MARKET_REGIMES[r].volatility_multiplier for r in REGIME_ORDER])

        savings = data.monthly_income * savings_rate
        expenses = data.monthly_expenses or 0.0

        for month in range(1, MAX_MONTHS + 1):
            if data.enable_market_regimes:
                updated = _next_regimes(regimes, months_in_regime, rng)
                months_in_regime[updated != regimes] = 0
                regimes = updated
                months_in_regime += 1
                mu = monthly_return + regime_returns[regimes] / 12
                sigma = monthly_volatility * regime_vol[regimes]
            else:
                mu = monthly_return
                sigma = monthly_volatility

            if month > 1 and income_growth > 0:
                savings *= 1 + income_growth
            if month > 1 and expenses > 0:
                previous = expenses
                expenses *= 1 + expense_growth
                savings = max(0.0, savings - (expenses - previous))

            contribution = np.full(iterations, savings)
            if data.monthly_withdrawal > 0:
                contribution[achieved] -= data.monthly_withdrawal

            shock = rng.standard_normal(iterations) * sigma + mu
            net_worth = np.maximum(0.0, (net_worth + contribution) * (1 + shock))

            if month <= primary_deadline:
                newly = ~achieved & (net_worth >= primary_amount)
                achieved |= newly
                achieved_month[newly] = month
            for idx in range(len(goals)):
                if month > goal_deadlines[idx]:
                    continue
                newly = ~goal_achieved[idx] & (net_worth >= goal_amounts[idx])
                goal_achieved[idx] |= newly
                goal_month[idx][newly] = month

            if month in horizon_by_month:
                horizons[horizon_by_month[month]] = net_worth.copy()

        return _PathRun(achieved, achieved_month, goal_achieved, goal_month, horizons)

    def _path_result(
        self, run: _PathRun, goals: list[SimulationGoal], today: date
    ) -> PathResult:
        projected: dict[str, int] = {}
        intervals: dict[str, dict[str, int]] = {}
        for horizon in TIME_HORIZON_MONTHS:
            values = np.sort(run.horizons[horizon])
            projected[horizon] = round(float(np.median(values)))
            intervals[horizon] = {
                "low": round(percentile(values, 10)),
                "high": round(percentile(values, 90)),
            }

        median_month = _median(run.achieved_month[run.achieved])
        achieve_date = add_months(today, int(median_month)) if median_month is not None else None

        goal_results = []
        for idx, goal in enumerate(goals):
            goal_median = _median(run.goal_month[idx][run.goal_achieved[idx]])
            goal_results.append(
                GoalPathResult(
                    goal_id=goal.id or f"goal-{idx}",
                    goal_name=goal.name,
                    target_amount=goal.amount,
                    probability=round(float(run.goal_achieved[idx].mean()), 2),
                    achieve_date=(
                        add_months(today, int(goal_median))
                        if goal_median is not None
                        else None
                    ),
                )
            )

        return PathResult(
            probability=round(run.probability, 2),
            projected_net_worth=projected,
            achieve_goal_date=achieve_date,
            confidence_intervals=intervals,
            all_goals_probability=round(float(run.goal_achieved.all(axis=0).mean()), 2),
            goal_results=goal_results,
        )

    def goal_probability(
        self,
        data: SimulationInput,
        iterations: Optional[int] = None,
        today: Optional[date] = None,
    ) -> float:
        run = self.simulate(
            data, data.current_savings_rate, iterations or self.iterations, today
        )
        return run.probability

    def find_optimal_savings_rate(
        self,
        data: SimulationInput,
        current_probability: float,
        today: Optional[date] = None,
    ) -> float:
        current = data.current_savings_rate
        if current_probability >= TARGET_PROBABILITY:
            return current

        high = max(MAX_SAVINGS_RATE, min(current, 0.95))
        low = max(current, MIN_SAVINGS_RATE)
        if low >= high:
            return current

        ceiling = self.simulate(data, high, self.optimization_iterations, today)
        if ceiling.probability < TARGET_PROBABILITY:
            logger.debug(
                f"simulation_optimize: max_rate={high:.3f} "
                f"probability={ceiling.probability:.3f} below target"
            )
            return high

        best = high
        probes = 0
        while high - low > OPTIMIZATION_TOLERANCE and probes < MAX_OPTIMIZATION_ITERATIONS:
            mid = (low + high) / 2
            run = self.simulate(data, mid, self.optimization_iterations, today)
            if run.probability >= TARGET_PROBABILITY:
                best = mid
                high = mid
            else:
                low = mid
            probes += 1
        logger.debug(f"simulation_optimize: rate={best:.3f} probes={probes}")
        return best

    def _cache_key(
        self,
        user_id: Optional[int],
        data: SimulationInput,
        today: date,
        currency: str,
    ) -> str:
        goals = "|".join(
            f"{g.id}:{g.name}:{g.priority}:{g.amount}:{g.deadline.isoformat()}"
            for g in data.goals
        )
        parts = [
            "sim",
            user_id,
            today.isoformat(),
            currency,
            data.current_savings_rate,
            data.monthly_income,
            data.monthly_expenses,
            data.current_net_worth,
            data.goal_amount,
            data.goal_deadline.isoformat(),
            data.expected_return_rate,
            data.inflation_rate,
            data.income_growth_rate,
            data.expense_growth_rate,
            data.tax_rate_on_returns,
            data.monthly_withdrawal,
            data.enable_market_regimes,
            data.random_seed,
            self.iterations,
            goals,
        ]
        return ":".join(str(p) for p in parts)

    def run_dual_path(
        self,
        data: SimulationInput,
        currency: str,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> SimulationOutput:
        today = today or date.today()
        key = self._cache_key(user_id, data, today, currency)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"simulation_cache_hit: user={user_id}")
            return cached

        started = time.perf_counter()
        try:
            goals = build_goals(data)
            current_run = self.simulate(
                data, data.current_savings_rate, self.iterations, today
            )
            optimal = self.find_optimal_savings_rate(
                data, current_run.probability, today
            )

            expense_growth = (
                data.expense_growth_rate
                if data.expense_growth_rate is not None
                else data.inflation_rate
            )
            income_growth = (
                data.income_growth_rate
                if data.income_growth_rate is not None
                else DEFAULT_INCOME_GROWTH_RATE
            )
            adjusted_rate = optimal
            if data.monthly_income > 0:
                adjusted_rate = min(
                    0.95,
                    optimal
                    + (data.monthly_expenses or 0) * EXPENSE_REDUCTION / data.monthly_income,
                )
            optimized_input = replace(
                data,
                expense_growth_rate=expense_growth * (1 - EXPENSE_GROWTH_REDUCTION),
                expected_return_rate=data.expected_return_rate + RETURN_BONUS,
                income_growth_rate=income_growth + INCOME_GROWTH_BONUS,
            )
            optimized_run = self.simulate(
                optimized_input, adjusted_rate, self.iterations, today
            )

            current_path = self._path_result(current_run, goals, today)
            optimized_path = self._path_result(optimized_run, goals, today)
            optimized_path.required_savings_rate = adjusted_rate
            wealth_difference = {
                h: max(
                    0,
                    round(
                        optimized_path.projected_net_worth[h]
                        - current_path.projected_net_worth[h]
                    ),
                )
                for h in TIME_HORIZON_MONTHS
            }
        except Exception as exc:
            logger.error(f"simulation_failed: user={user_id} error={exc}")
            raise SimulationCalculationError(
                str(exc) or "Simulation failed", {"user_id": user_id}
            ) from exc

        duration_ms = round((time.perf_counter() - started) * 1000)
        result = SimulationOutput(
            current_path=current_path,
            optimized_path=optimized_path,
            wealth_difference=wealth_difference,
            metadata={
                "iterations": self.iterations,
                "duration_ms": duration_ms,
                "simulated_at": datetime.utcnow(),
                "currency": currency,
            },
        )
        self.cache.set(key, result)
        logger.info(
            f"simulation_run: user={user_id} current={current_path.probability:.2f} "
            f"optimized={optimized_path.probability:.2f} rate={adjusted_rate:.3f} "
            f"duration_ms={duration_ms}"
        )
        return result
