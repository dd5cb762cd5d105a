import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence


logger = logging.getLogger(__name__)

WEIGHTS: dict[str, float] = {
    "savings_rate": 0.30,
    "runway_months": 0.25,
    "debt_to_income": 0.20,
    "income_stability": 0.15,
    "dependency_ratio": 0.10,
}

SCORE_LABELS: list[tuple[int, str, str]] = [
    (80, "Excellent", "#10B981"),
    (60, "Good", "#84CC16"),
    (40, "Fair", "#F59E0B"),
    (20, "Needs Attention", "#F97316"),
    (0, "Critical", "#EF4444"),
]


@dataclass
class FinancialData:
    monthly_income: float = 0.0
    monthly_expenses: float = 0.0
    monthly_savings: float = 0.0
    monthly_debt_payments: float = 0.0
    total_family_support: float = 0.0
    emergency_fund: float = 0.0
    liquid_savings: float = 0.0
    investments: float = 0.0
    total_debt: float = 0.0
    net_income: float = 0.0
    last_6_months_income: list[float] = field(default_factory=list)
    income_variance_weighted: Optional[float] = None
    currency: str = "NGN"


@dataclass(frozen=True)
class ComponentScore:
    value: float
    score: int


@dataclass
class CashFlowScore:
    final_score: int
    label: str
    color: str
    components: dict[str, ComponentScore]
    calculation: str
    calculated_at: datetime


def score_label(score: float) -> tuple[str, str]:
    for threshold, label, color in SCORE_LABELS:
        if score >= threshold:
            return label, color
    return SCORE_LABELS[-1][1], SCORE_LABELS[-1][2]


def savings_rate_score(data: FinancialData) -> ComponentScore:
    if data.monthly_income == 0:
        return ComponentScore(0, 20)
    rate = data.monthly_savings / data.monthly_income * 100
    if rate >= 20:
        score = 100
    elif rate >= 15:
        score = 80
    elif rate >= 10:
        score = 60
    elif rate >= 5:
        score = 40
    else:
        score = 20
    return ComponentScore(round(rate, 2), score)


def runway_score(data: FinancialData) -> ComponentScore:
    if data.monthly_expenses == 0:
        # no spending: runway is unbounded, shown as two years
        return ComponentScore(24, 100)
    months = data.emergency_fund / data.monthly_expenses
    if months >= 9:
        score = 100
    elif months >= 6:
        score = 80
    elif months >= 3:
        score = 60
    elif months >= 1:
        score = 40
    else:
        score = 20
    return ComponentScore(round(months, 1), score)


def debt_to_income_score(data: FinancialData) -> ComponentScore:
    if data.monthly_income == 0:
        return ComponentScore(100, 20)
    ratio = data.monthly_debt_payments / data.monthly_income * 100
    if ratio <= 10:
        score = 100
    elif ratio <= 20:
        score = 80
    elif ratio <= 35:
        score = 60
    elif ratio <= 50:
        score = 40
    else:
        score = 20
    return ComponentScore(round(ratio, 2), score)


def _stability_band(variance: float) -> int:
    if variance < 15:
        return 100
    if variance <= 30:
        return 60
    return 20


def income_stability_score(data: FinancialData) -> ComponentScore:
    if data.income_variance_weighted is not None:
        variance = data.income_variance_weighted
        return ComponentScore(round(variance, 2), _stability_band(variance))

    incomes = data.last_6_months_income
    if len(incomes) < 2:
        return ComponentScore(0, 60)
    mean = sum(incomes) / len(incomes)
    if mean == 0:
        return ComponentScore(100, 20)
    variance = sum((value - mean) ** 2 for value in incomes) / len(incomes)
    cv = math.sqrt(variance) / mean * 100
    return ComponentScore(round(cv, 2), _stability_band(cv))


def dependency_ratio_score(data: FinancialData) -> ComponentScore:
    if data.net_income == 0:
        return ComponentScore(0, 100)
    ratio = data.total_family_support / data.net_income * 100
    if ratio <= 10:
        score = 100
    elif ratio <= 35:
        score = 80
    else:
        score = 40
    return ComponentScore(round(ratio, 2), score)


def calculate_cash_flow_score(
    data: FinancialData, now: Optional[datetime] = None
) -> CashFlowScore:
    """Weighted 0-100 health score over five cash-flow components."""
    components = {
        "savings_rate": savings_rate_score(data),
        "runway_months": runway_score(data),
        "debt_to_income": debt_to_income_score(data),
        "income_stability": income_stability_score(data),
        "dependency_ratio": dependency_ratio_score(data),
    }
    weighted = sum(components[name].score * weight for name, weight in WEIGHTS.items())
    final = round(max(0.0, min(100.0, weighted)))
    calculation = " + ".join(
        f"({components[name].score} * {weight})" for name, weight in WEIGHTS.items()
    )
    label, color = score_label(final)
    return CashFlowScore(
        final_score=final,
        label=label,
        color=color,
        components=components,
        calculation=f"{calculation} = {final}",
        calculated_at=now or datetime.utcnow(),
    )


@dataclass
class ScoreHistory:
    points: list[tuple[date, int]]
    trend: str
    change: int
    average: float
    minimum: int
    maximum: int


def score_history(snapshots: Sequence[tuple[date, int]]) -> ScoreHistory:
    points = sorted(snapshots, key=lambda item: item[0])
    if not points:
        return ScoreHistory([], "stable", 0, 0.0, 0, 0)
    scores = [score for _, score in points]
    change = scores[-1] - scores[0]
    if change > 2:
        trend = "up"
    elif change < -2:
        trend = "down"
    else:
        trend = "stable"
    return ScoreHistory(
        points=list(points),
        trend=trend,
        change=change,
        average=round(sum(scores) / len(scores), 1),
        minimum=min(scores),
        maximum=max(scores),
    )
