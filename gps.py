"""GPS Re-Router: turns a budget overspend into recovery options.

An overspend is treated like a missed turn. The planner measures how much
it moved the goal probability, then simulates a handful of ways back to
the original route and ranks them by the probability they restore.
"""

from __future__ import annotations

import logging
import math
import random
import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Optional, Sequence

from errors import BannedWordViolation
from merchants import get_category_for_merchant
from periods import Period
from simulation import SimulationEngine, SimulationInput


logger = logging.getLogger(__name__)

BUDGET_WARNING_THRESHOLD = 0.8
BUDGET_EXCEEDED_THRESHOLD = 1.0
BUDGET_CRITICAL_THRESHOLD = 1.2

MAX_REBALANCES_PER_PERIOD = 2
MIN_SURPLUS_RATIO = 0.1

TIME_ADJUSTMENT = "time_adjustment"
RATE_ADJUSTMENT = "rate_adjustment"
FREEZE_PROTOCOL = "freeze_protocol"
CATEGORY_REBALANCE = "category_rebalance"

RECOVERY_PATH_NAMES = {
    CATEGORY_REBALANCE: "Smart Swap",
    TIME_ADJUSTMENT: "Timeline Flex",
    RATE_ADJUSTMENT: "Savings Boost",
    FREEZE_PROTOCOL: "Category Pause",
}

BANNED_WORDS = (
    "failed",
    "failure",
    "mistake",
    "problem",
    "wrong",
    "bad",
    "terrible",
    "awful",
    "shame",
    "shameful",
    "disappoint",
    "disappointed",
    "disappointing",
    "fault",
    "blame",
    "irresponsible",
    "reckless",
    "careless",
    "stupid",
    "dumb",
    "idiot",
)
_BANNED_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(word) for word in BANNED_WORDS) + r")\b", re.I
)

SUPPORTIVE_MESSAGES: dict[str, dict[str, tuple[str, ...]]] = {
    "BUDGET_WARNING": {
        "headlines": (
            "You're approaching your limit",
            "Quick check-in on your budget",
            "Heads up on your spending",
        ),
        "subtexts": (
            "You're close to your budget limit. Here's how things look.",
            "A quick update on where you stand this period.",
            "Keeping you informed so you can stay in control.",
        ),
    },
    "BUDGET_EXCEEDED": {
        "headlines": (
            "Let's recalculate your route",
            "Time for a quick course correction",
            "Your GPS is recalculating",
            "Let's find your new path forward",
        ),
        "subtexts": (
            "Spending more than planned happens to everyone. Here are three ways to get back on track.",
            "One detour doesn't change your destination. Let's explore your options.",
            "You've taken a different turn - here's how to reach {goal}.",
            "This is a detour, not a dead end. Let's recalculate together.",
        ),
    },
    "BUDGET_CRITICAL": {
        "headlines": (
            "Let's take the scenic route back",
            "Your GPS found new routes",
            "Time to pick a new route together",
        ),
        "subtexts": (
            "This month took a bigger turn than planned. A few focused weeks will bring {goal} back into view.",
            "You're still in the driver's seat. Pick the route that fits your week.",
            "Big detours are part of every long journey. Here's the fastest way back.",
        ),
    },
}

ACTION_TEMPLATES: dict[str, list[tuple[float, str]]] = {
    "food-dining": [
        (0, "Pack lunch instead of eating out this week"),
        (50, "Cook at home 4+ nights this week"),
        (100, "Skip delivery apps for 2 weeks"),
        (200, "Meal prep on Sunday to cover weekday meals"),
    ],
    "entertainment": [
        (0, "Free entertainment this weekend (parks, library, etc.)"),
        (50, "Pause one streaming subscription temporarily"),
        (100, "Host a potluck instead of going out"),
    ],
    "shopping": [
        (0, "Apply the 48-hour rule: wait before non-essential purchases"),
        (50, "Unsubscribe from promotional emails to reduce impulse buys"),
        (100, "No-spend challenge for the rest of the week"),
    ],
    "transportation": [
        (0, "Combine errands to reduce trips"),
        (50, "Use public transit or carpool 2 days this week"),
    ],
    "other": [
        (0, "Review this week's spending and pick one area to trim"),
        (50, "Set a daily spending cap and track it"),
        (100, "Challenge yourself to a 3-day no-spend period"),
    ],
}

CATEGORY_ALIASES = {
    "food": "food-dining",
    "dining": "food-dining",
    "eating-out": "food-dining",
    "restaurants": "food-dining",
    "groceries": "food-dining",
    "transport": "transportation",
    "travel": "transportation",
    "fun": "entertainment",
    "leisure": "entertainment",
    "clothing": "shopping",
}


@dataclass
class BudgetStatus:
    category: str
    budgeted: float
    spent: float
    remaining: float
    overage_percent: float
    trigger: str
    period: Period
    currency: str = "NGN"
    budget_id: Optional[int] = None

    @property
    def overspend(self) -> float:
        return max(0.0, self.spent - self.budgeted)

    @property
    def spent_ratio(self) -> float:
        return self.spent / self.budgeted if self.budgeted > 0 else 0.0


@dataclass
class RecoveryPath:
    id: str
    name: str
    description: str
    new_probability: float
    timeline_impact: str
    effort: str
    weekly_savings: Optional[float] = None
    estimated_recovery: Optional[float] = None
    details: dict[str, object] = field(default_factory=dict)


@dataclass
class GoalImpact:
    goal_id: Optional[int]
    goal_name: str
    previous_probability: float
    new_probability: float
    probability_drop: float
    message: str


@dataclass
class MultiGoalImpact:
    primary_goal: GoalImpact
    other_goals: list[GoalImpact]
    summary: dict[str, object]


@dataclass
class SupportiveMessage:
    headline: str
    subtext: str
    tone: str = "Supportive"
    actions: list[str] = field(default_factory=list)


@dataclass
class RebalanceSource:
    category: str
    surplus: float
    budget_amount: float


def trigger_for(ratio: float) -> str:
    if ratio >= BUDGET_CRITICAL_THRESHOLD:
        return "BUDGET_CRITICAL"
    if ratio >= BUDGET_EXCEEDED_THRESHOLD:
        return "BUDGET_EXCEEDED"
    return "BUDGET_WARNING"


def budget_status(
    category: str,
    budgeted: float,
    spent: float,
    period: Period,
    currency: str = "NGN",
    budget_id: Optional[int] = None,
) -> BudgetStatus:
    ratio = spent / budgeted if budgeted > 0 else 0.0
    return BudgetStatus(
        category=category,
        budgeted=budgeted,
        spent=spent,
        remaining=budgeted - spent,
        overage_percent=round(max(0.0, (ratio - 1) * 100), 2),
        trigger=trigger_for(ratio),
        period=period,
        currency=currency,
        budget_id=budget_id,
    )


def timeline_extension_weeks(overspend: float, monthly_income: float) -> int:
    if monthly_income <= 0:
        return 2
    ratio = overspend / monthly_income
    if ratio < 0.1:
        return max(1, math.ceil(ratio * 20))
    if ratio < 0.2:
        return min(3, math.ceil(ratio * 15))
    return min(4, math.ceil(ratio * 10))


def savings_boost(
    overspend: float, monthly_income: float, current_rate: float
) -> tuple[float, int]:
    """Extra savings rate and how many weeks it has to run to absorb the overspend."""
    if monthly_income <= 0:
        return 0.05, 4
    ratio = overspend / monthly_income
    max_add = min(0.15, 1 - current_rate - 0.1)
    add = max(0.03, min(ratio / 4, max_add))
    weekly = add * monthly_income / 4
    weeks = math.ceil(overspend / weekly) if weekly > 0 else 8
    return add, max(2, min(8, weeks))


def freeze_weeks(overspend: float, monthly_income: float) -> int:
    if monthly_income <= 0:
        return 4
    ratio = overspend / monthly_income
    if ratio < 0.1:
        return 2
    if ratio < 0.2:
        return 3
    return 4


def adjust_simulation_input(
    data: SimulationInput,
    weeks_extension: int = 0,
    additional_savings_rate: float = 0.0,
    additional_monthly_savings: float = 0.0,
) -> SimulationInput:
    rate = data.current_savings_rate
    if additional_savings_rate:
        rate = min(1.0, rate + additional_savings_rate)
    if additional_monthly_savings and data.monthly_income > 0:
        rate = min(1.0, rate + additional_monthly_savings / data.monthly_income)
    deadline = data.goal_deadline + timedelta(weeks=weeks_extension)
    goals = [
        replace(goal, deadline=goal.deadline + timedelta(weeks=weeks_extension))
        for goal in data.goals
    ]
    return replace(data, current_savings_rate=rate, goal_deadline=deadline, goals=goals)


def validate_no_banned_words(text: str) -> None:
    match = _BANNED_PATTERN.search(text)
    if match:
        logger.error(f"gps_banned_word: word={match.group(1).lower()}")
        raise BannedWordViolation(match.group(1).lower(), text)


def template_category(category: str) -> str:
    """Map a free-text budget category onto an ACTION_TEMPLATES key."""
    slug = re.sub(r"[^a-z0-9]+", "-", category.lower().replace("&", " ")).strip("-")
    slug = CATEGORY_ALIASES.get(slug, slug)
    if slug in ACTION_TEMPLATES:
        return slug
    merchant_category = get_category_for_merchant(category)
    if merchant_category in ACTION_TEMPLATES:
        return merchant_category
    return "other"


def daily_actions(category: str, overage_percent: float) -> list[str]:
    templates = ACTION_TEMPLATES[template_category(category)]
    return [action for minimum, action in templates if overage_percent >= minimum]


def supportive_message(
    status: BudgetStatus,
    goal_name: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> SupportiveMessage:
    rng = rng or random.Random()
    templates = SUPPORTIVE_MESSAGES[status.trigger]
    headline = rng.choice(templates["headlines"])
    subtext = rng.choice(templates["subtexts"]).format(goal=goal_name or "your goal")
    message = SupportiveMessage(
        headline=headline,
        subtext=subtext,
        actions=daily_actions(status.category, status.overage_percent),
    )
    validate_no_banned_words(" ".join([message.headline, message.subtext, *message.actions]))
    return message


def goal_impact(
    goal_id: Optional[int],
    goal_name: str,
    previous_probability: float,
    new_probability: float,
) -> GoalImpact:
    drop = new_probability - previous_probability
    points = f"{abs(drop * 100):.1f}"
    if drop < 0:
        message = f"Your goal probability decreased by {points} percentage points"
    elif drop > 0:
        message = f"Your goal probability increased by {points} percentage points"
    else:
        message = "Your goal probability remained unchanged"
    validate_no_banned_words(message)
    return GoalImpact(
        goal_id=goal_id,
        goal_name=goal_name,
        previous_probability=previous_probability,
        new_probability=new_probability,
        probability_drop=drop,
        message=message,
    )


def multi_goal_impact(impacts: Sequence[GoalImpact]) -> MultiGoalImpact:
    if not impacts:
        raise ValueError("At least one goal impact is required")
    ordered = sorted(impacts, key=lambda impact: impact.probability_drop)
    average = sum(i.probability_drop for i in ordered) / len(ordered)
    summary = {
        "total_goals_affected": len(ordered),
        "average_probability_drop": average,
        "most_affected_goal": ordered[0].goal_name,
        "least_affected_goal": ordered[-1].goal_name,
        "message": (
            f"This overspend touches {len(ordered)} goal(s); "
            f"{ordered[0].goal_name} is affected the most."
        ),
    }
    return MultiGoalImpact(ordered[0], list(ordered[1:]), summary)


def rebalance_candidates(
    status: BudgetStatus,
    sources: Sequence[RebalanceSource],
    rebalances_this_period: int,
) -> list[RebalanceSource]:
    if rebalances_this_period >= MAX_REBALANCES_PER_PERIOD or status.overspend <= 0:
        return []
    eligible = [
        source
        for source in sources
        if source.category != status.category
        and source.budget_amount > 0
        and source.surplus >= source.budget_amount * MIN_SURPLUS_RATIO
        and source.surplus >= status.overspend
    ]
    return sorted(eligible, key=lambda source: source.surplus, reverse=True)


class RecoveryPlanner:
    def __init__(self, engine: SimulationEngine) -> None:
        self.engine = engine

    def measure_impact(
        self,
        data: SimulationInput,
        status: BudgetStatus,
        goal_id: Optional[int] = None,
        goal_name: str = "your goal",
    ) -> GoalImpact:
        """Compare the goal probability with and without this overspend."""
        previous = data
        if data.monthly_income > 0:
            previous = replace(
                data,
                current_savings_rate=max(
                    0.0, data.current_savings_rate + status.overspend / data.monthly_income
                ),
            )
        return goal_impact(
            goal_id,
            goal_name,
            self.engine.goal_probability(previous),
            self.engine.goal_probability(data),
        )

    def generate_paths(
        self,
        data: SimulationInput,
        status: BudgetStatus,
        average_monthly_category_spend: float,
        rebalance_sources: Sequence[RebalanceSource] = (),
        rebalances_this_period: int = 0,
        previous_probability: Optional[float] = None,
    ) -> list[RecoveryPath]:
        overspend = status.overspend
        income = data.monthly_income
        paths: list[RecoveryPath] = []

        weeks = timeline_extension_weeks(overspend, income)
        paths.append(
            RecoveryPath(
                id=TIME_ADJUSTMENT,
                name=RECOVERY_PATH_NAMES[TIME_ADJUSTMENT],
                description=f"Extend your goal deadline by {weeks} weeks",
                new_probability=self.engine.goal_probability(
                    adjust_simulation_input(data, weeks_extension=weeks)
                ),
                timeline_impact=f"+{weeks} weeks",
                effort="Low",
            )
        )

        add_rate, boost_weeks = savings_boost(overspend, income, data.current_savings_rate)
        weekly = add_rate * income / 4
        paths.append(
            RecoveryPath(
                id=RATE_ADJUSTMENT,
                name=RECOVERY_PATH_NAMES[RATE_ADJUSTMENT],
                description=(
                    f"Increase your savings rate by {add_rate * 100:.0f}% "
                    f"for {boost_weeks} weeks"
                ),
                new_probability=self.engine.goal_probability(
                    adjust_simulation_input(data, additional_savings_rate=add_rate)
                ),
                timeline_impact=f"+{add_rate * 100:.0f}% for {boost_weeks} weeks",
                effort="Medium",
                weekly_savings=round(weekly, 2),
                estimated_recovery=round(weekly * boost_weeks, 2),
            )
        )

        pause_weeks = freeze_weeks(overspend, income)
        freed = average_monthly_category_spend / 4 * pause_weeks
        paths.append(
            RecoveryPath(
                id=FREEZE_PROTOCOL,
                name=RECOVERY_PATH_NAMES[FREEZE_PROTOCOL],
                description=f"Pause spending in {status.category} for {pause_weeks} weeks",
                new_probability=self.engine.goal_probability(
                    adjust_simulation_input(data, additional_monthly_savings=freed)
                ),
                timeline_impact=f"Pause {status.category} for {pause_weeks} weeks",
                effort="High",
                weekly_savings=round(average_monthly_category_spend / 4, 2),
                estimated_recovery=round(freed, 2),
            )
        )

        candidates = rebalance_candidates(status, rebalance_sources, rebalances_this_period)
        if candidates:
            source = candidates[0]
            restored = (
                previous_probability
                if previous_probability is not None
                else max(p.new_probability for p in paths)
            )
            paths.append(
                RecoveryPath(
                    id=CATEGORY_REBALANCE,
                    name=RECOVERY_PATH_NAMES[CATEGORY_REBALANCE],
                    description=f"Cover this with your {source.category} surplus",
                    new_probability=restored,
                    timeline_impact="No change",
                    effort="None",
                    details={
                        "from_category": source.category,
                        "amount": round(overspend, 2),
                        "available_surplus": round(source.surplus, 2),
                    },
                )
            )

        paths.sort(key=lambda path: path.new_probability, reverse=True)
        for path in paths:
            validate_no_banned_words(f"{path.name} {path.description}")
        logger.info(
            f"gps_paths: category={status.category} overspend={overspend:.2f} "
            f"paths={[p.id for p in paths]}"
        )
        return paths
