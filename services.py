from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional

from pydantic import BaseModel
from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cash_flow import (
    CashFlowScore,
    FinancialData,
    ScoreHistory,
    calculate_cash_flow_score,
    score_history,
)
from commitment import (
    OPEN_STATUSES,
    CommitmentRisk,
    assess_commitment_risk,
    expire_overdue,
    validate_stake,
)
from config import get_settings
from database import get_current_user_id
from debrief import DebriefAgent
from errors import (
    AmbiguousBudgetCategory,
    BudgetAlreadyExists,
    CommitmentAlreadyResolved,
    CommitmentNotFound,
    FamilySupportNotFound,
    GoalNotFound,
    NoActiveGoal,
    NoBudgetFound,
    RebalanceNotAllowed,
    RecordNotFound,
)
from gps import (
    BUDGET_WARNING_THRESHOLD,
    MAX_REBALANCES_PER_PERIOD,
    BudgetStatus,
    GoalImpact,
    MultiGoalImpact,
    RebalanceSource,
    RecoveryPath,
    RecoveryPlanner,
    SupportiveMessage,
    budget_status,
    multi_goal_impact,
    supportive_message,
)
from llm import AnthropicClient
from models import (
    Budget,
    BudgetRebalance,
    CommitmentContract,
    CommitmentDebrief,
    CommitmentStatus,
    Debt,
    Expense,
    FamilySupport,
    Goal,
    GoalStatus,
    ImportedTransaction,
    IncomeSource,
    SavingsAccount,
    SavingsType,
    ScoreSnapshot,
)
from periods import Period, add_months, resolve_budget_period
from schemas import CommitmentIn, SimulationIn
from simulation import (
    SimulationEngine,
    SimulationInput,
    SimulationOutput,
    economic_defaults,
)
from ubuntu import (
    AdjustmentOption,
    DependencyRatioResult,
    EmergencyImpact,
    adjustment_options,
    calculate_dependency_ratio,
    calculate_emergency_impact,
    to_monthly,
)


logger = logging.getLogger(__name__)

DEFAULT_GOAL_HORIZON_MONTHS = 60
EXPENSE_WINDOW_DAYS = 30
INCOME_HISTORY_MONTHS = 6
CATEGORY_AVERAGE_MONTHS = 3
LIQUID_TYPES = (SavingsType.bank, SavingsType.mobile_money, SavingsType.cooperative)
INVESTMENT_TYPES = (SavingsType.investment, SavingsType.pension)


@lru_cache(maxsize=1)
def get_simulation_engine() -> SimulationEngine:
    return SimulationEngine()


class _RecordService:
    """List/get/create/update/delete over one user-owned table."""

    model: Any = None
    label = "Record"
    not_found = RecordNotFound
    order_by: tuple = ()

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _select(self):
        stmt = select(self.model).where(self.model.user_id == self.user_id)
        if hasattr(self.model, "is_active"):
            stmt = stmt.where(self.model.is_active.is_(True))
        return stmt.order_by(*self.order_by, self.model.id)

    def list_all(self) -> list[Any]:
        return self.session.scalars(self._select()).all()

    def get(self, record_id: int) -> Any:
        record = self.session.get(self.model, record_id)
        if not record or record.user_id != self.user_id:
            raise self.not_found(
                f"{self.label} {record_id} not found", {"id": record_id}
            )
        return record

    def create(self, data: BaseModel) -> Any:
        record = self.model(user_id=self.user_id, **data.model_dump())
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(f"record_created: table={self.model.__tablename__} id={record.id}")
        return record

    def update(self, record_id: int, data: BaseModel) -> Any:
        record = self.get(record_id)
        for key, value in data.model_dump().items():
            setattr(record, key, value)
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete(self, record_id: int) -> None:
        record = self.get(record_id)
        if hasattr(record, "is_active"):
            record.is_active = False
        else:
            self.session.delete(record)
        self.session.commit()
        logger.info(f"record_deleted: table={self.model.__tablename__} id={record_id}")


class IncomeService(_RecordService):
    model = IncomeSource
    label = "Income source"
    order_by = (IncomeSource.name,)


class ExpenseService(_RecordService):
    model = Expense
    label = "Expense"
    order_by = (Expense.date.desc(),)

    def delete(self, record_id: int) -> None:
        expense = self.get(record_id)
        # the import hash stays so the statement row is not re-imported
        self.session.execute(
            update(ImportedTransaction)
            .where(ImportedTransaction.expense_id == expense.id)
            .values(expense_id=None)
        )
        super().delete(record_id)


class DebtService(_RecordService):
    model = Debt
    label = "Debt"
    order_by = (Debt.name,)


class SavingsService(_RecordService):
    model = SavingsAccount
    label = "Savings account"
    order_by = (SavingsAccount.name,)


class FamilySupportService(_RecordService):
    model = FamilySupport
    label = "Family support record"
    not_found = FamilySupportNotFound
    order_by = (FamilySupport.name,)


class FinanceService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
        engine: Optional[SimulationEngine] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today or date.today()
        self._engine = engine
        self.currency = get_settings().default_currency

    @property
    def engine(self) -> SimulationEngine:
        if self._engine is None:
            self._engine = get_simulation_engine()
        return self._engine

    def _active(self, model: Any) -> list[Any]:
        return self.session.scalars(
            select(model).where(model.user_id == self.user_id, model.is_active.is_(True))
        ).all()

    def monthly_income(self) -> float:
        return sum(to_monthly(i.amount, i.frequency) for i in self._active(IncomeSource))

    def monthly_expenses(self) -> float:
        start = self.today - timedelta(days=EXPENSE_WINDOW_DAYS)
        total = self.session.scalar(
            select(func.coalesce(func.sum(Expense.amount), 0)).where(
                Expense.user_id == self.user_id,
                Expense.date.between(start, self.today),
            )
        )
        return float(total or 0)

    def income_history(self, months: int = INCOME_HISTORY_MONTHS) -> list[float]:
        """Monthly income for the last ``months`` months, oldest first.

        A source counts from the month of its ``start_date`` onwards.
        """
        sources = self._active(IncomeSource)
        history = []
        for offset in range(months - 1, -1, -1):
            month_start = add_months(self.today.replace(day=1), -offset)
            month_end = add_months(month_start, 1) - timedelta(days=1)
            history.append(
                sum(
                    to_monthly(s.amount, s.frequency)
                    for s in sources
                    if s.start_date is None or s.start_date <= month_end
                )
            )
        return history

    def net_worth(self) -> float:
        savings = sum(float(s.balance) for s in self._active(SavingsAccount))
        debt = sum(float(d.remaining_balance) for d in self._active(Debt))
        return savings - debt

    def aggregate_financial_data(self) -> FinancialData:
        income = self.monthly_income()
        expenses = self.monthly_expenses()
        debts = self._active(Debt)
        savings = self._active(SavingsAccount)
        support = self._active(FamilySupport)
        debt_payments = sum(float(d.minimum_payment) for d in debts)

        history = self.income_history()
        return FinancialData(
            monthly_income=income,
            monthly_expenses=expenses,
            monthly_savings=income - expenses,
            monthly_debt_payments=debt_payments,
            total_family_support=sum(to_monthly(s.amount, s.frequency) for s in support),
            emergency_fund=sum(float(s.balance) for s in savings if s.is_emergency_fund),
            liquid_savings=sum(
                float(s.balance)
                for s in savings
                if SavingsType(s.type) in LIQUID_TYPES and not s.is_emergency_fund
            ),
            investments=sum(
                float(s.balance) for s in savings if SavingsType(s.type) in INVESTMENT_TYPES
            ),
            total_debt=sum(float(d.remaining_balance) for d in debts),
            net_income=income - debt_payments,
            last_6_months_income=history if any(history) else [],
            currency=self.currency,
        )

    def cash_flow_score(self) -> CashFlowScore:
        return calculate_cash_flow_score(self.aggregate_financial_data())

    def snapshot_score(self) -> ScoreSnapshot:
        """Store today's score; a second call on the same day overwrites it."""
        result = self.cash_flow_score()
        snapshot = self.session.scalar(
            select(ScoreSnapshot).where(
                ScoreSnapshot.user_id == self.user_id,
                ScoreSnapshot.calculated_on == self.today,
            )
        )
        if snapshot is None:
            snapshot = ScoreSnapshot(user_id=self.user_id, calculated_on=self.today)
            self.session.add(snapshot)
        snapshot.score = result.final_score
        snapshot.label = result.label
        snapshot.components = {
            name: {"value": component.value, "score": component.score}
            for name, component in result.components.items()
        }
        self.session.commit()
        logger.info(
            f"score_snapshot: user={self.user_id} day={self.today} score={result.final_score}"
        )
        return snapshot

    def score_history(self, days: int = 30) -> ScoreHistory:
        since = self.today - timedelta(days=days)
        rows = self.session.scalars(
            select(ScoreSnapshot).where(
                ScoreSnapshot.user_id == self.user_id,
                ScoreSnapshot.calculated_on >= since,
            )
        ).all()
        return score_history([(row.calculated_on, row.score) for row in rows])

    def simulation_input(
        self, goal_amount: float, goal_deadline: Optional[date] = None
    ) -> SimulationInput:
        """Inputs from the user's own numbers; the deadline defaults to five years out."""
        income = self.monthly_income()
        expenses = self.monthly_expenses()
        rate = 0.0
        if income > 0:
            rate = min(1.0, max(0.0, (income - expenses) / income))

        defaults = economic_defaults(get_settings().country)
        return SimulationInput(
            current_savings_rate=rate,
            monthly_income=income,
            current_net_worth=self.net_worth(),
            goal_amount=goal_amount,
            goal_deadline=goal_deadline
            or add_months(self.today, DEFAULT_GOAL_HORIZON_MONTHS),
            expected_return_rate=defaults["expected_return"],
            inflation_rate=defaults["inflation_rate"],
            monthly_expenses=expenses,
            income_growth_rate=defaults["income_growth"],
        )

    def simulation(self, params: Optional[SimulationIn] = None) -> SimulationOutput:
        params = params or SimulationIn()
        overrides = params.model_dump(exclude={"goal_id"}, exclude_none=True)
        goals = GoalService(self.session, self.user_id, today=self.today)
        try:
            data = goals.simulation_input(params.goal_id)
        except NoActiveGoal:
            if "goal_amount" not in overrides:
                raise
            data = self.simulation_input(overrides["goal_amount"])
        data = replace(data, **overrides)
        return self.engine.run_dual_path(
            data, self.currency, user_id=self.user_id, today=self.today
        )


class GoalService(_RecordService):
    model = Goal
    label = "Goal"
    not_found = GoalNotFound
    order_by = (Goal.priority, Goal.created_at)

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> None:
        super().__init__(session, user_id)
        self.today = today or date.today()

    def delete(self, record_id: int) -> None:
        goal = self.get(record_id)
        goal.status = GoalStatus.abandoned
        self.session.commit()
        logger.info(f"goal_abandoned: user={self.user_id} goal={record_id}")

    def active_goals(self) -> list[Goal]:
        return self.session.scalars(
            select(Goal)
            .where(Goal.user_id == self.user_id, Goal.status == GoalStatus.active)
            .order_by(Goal.created_at, Goal.id)
        ).all()

    def primary_goal(self, goal_id: Optional[int] = None) -> Goal:
        if goal_id is not None:
            return self.get(goal_id)
        goals = self.active_goals()
        if not goals:
            raise NoActiveGoal(self.user_id)
        return goals[0]

    def simulation_input(
        self, goal_id: Optional[int] = None, goal: Optional[Goal] = None
    ) -> SimulationInput:
        goal = goal or self.primary_goal(goal_id)
        finance = FinanceService(self.session, self.user_id, today=self.today)
        return finance.simulation_input(float(goal.target_amount), goal.target_date)


class BudgetService(_RecordService):
    model = Budget
    label = "Budget"
    order_by = (Budget.category,)

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> None:
        super().__init__(session, user_id)
        self.today = today or date.today()

    def _existing(self, category: str, exclude_id: Optional[int] = None) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            func.lower(Budget.category) == category.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.scalar(stmt)

    def create(self, data: BaseModel) -> Budget:
        existing = self._existing(data.category)
        if existing and existing.is_active:
            raise BudgetAlreadyExists(
                f"A budget for '{existing.category}' already exists",
                {"category": existing.category},
            )
        if existing:
            # reactivate instead of tripping the unique constraint
            for key, value in data.model_dump().items():
                setattr(existing, key, value)
            existing.is_active = True
            self.session.commit()
            self.session.refresh(existing)
            return existing
        return super().create(data)

    def update(self, record_id: int, data: BaseModel) -> Budget:
        if self._existing(data.category, exclude_id=record_id):
            raise BudgetAlreadyExists(
                f"A budget for '{data.category}' already exists",
                {"category": data.category},
            )
        return super().update(record_id, data)

    def find(self, category: str) -> Budget:
        """Exact name first, then case-insensitive, then one typo away."""
        raw = (category or "").strip()
        budgets = self.list_all()
        for budget in budgets:
            if budget.category == raw:
                return budget
        input_lower = raw.lower()
        for budget in budgets:
            if budget.category.lower() == input_lower:
                return budget

        best_distance: Optional[int] = None
        best: list[Budget] = []
        for budget in budgets:
            dist = int(Levenshtein.distance(input_lower, budget.category.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [budget]
            elif dist == best_distance:
                best.append(budget)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = sorted(b.category for b in best)
                raise AmbiguousBudgetCategory(
                    f"Category '{raw}' is ambiguous; matches: {', '.join(options)}",
                    {"category": raw, "matches": options},
                )
            logger.debug(f"budget_fuzzy_match: input={raw} match={best[0].category}")
            return best[0]
        raise NoBudgetFound(raw, sorted(b.category for b in budgets))

    def period_for(self, budget: Budget) -> Period:
        return resolve_budget_period(budget.period, today=self.today)

    def spent(self, category: str, period: Period) -> float:
        total = self.session.scalar(
            select(func.coalesce(func.sum(Expense.amount), 0)).where(
                Expense.user_id == self.user_id,
                func.lower(Expense.category) == category.lower(),
                Expense.date.between(period.start, period.end),
            )
        )
        return float(total or 0)

    def _rebalances(self, period: Period) -> list[BudgetRebalance]:
        return self.session.scalars(
            select(BudgetRebalance).where(
                BudgetRebalance.user_id == self.user_id,
                BudgetRebalance.period_start == period.start,
            )
        ).all()

    def rebalance_delta(self, category: str, period: Period) -> float:
        delta = 0.0
        key = category.lower()
        for move in self._rebalances(period):
            if move.to_category.lower() == key:
                delta += float(move.amount)
            if move.from_category.lower() == key:
                delta -= float(move.amount)
        return delta

    def rebalances_this_period(self, period: Period) -> int:
        return len(self._rebalances(period))

    def status_for(self, budget: Budget) -> BudgetStatus:
        period = self.period_for(budget)
        return budget_status(
            budget.category,
            float(budget.amount) + self.rebalance_delta(budget.category, period),
            self.spent(budget.category, period),
            period,
            currency=budget.currency.value if budget.currency else "NGN",
            budget_id=budget.id,
        )

    def status(self, category: str) -> BudgetStatus:
        return self.status_for(self.find(category))

    def all_statuses(self) -> list[BudgetStatus]:
        """Budgets at or past the warning threshold, most stretched first."""
        statuses = [self.status_for(budget) for budget in self.list_all()]
        flagged = [s for s in statuses if s.spent_ratio >= BUDGET_WARNING_THRESHOLD]
        return sorted(flagged, key=lambda s: s.spent_ratio, reverse=True)

    def average_monthly_spend(self, category: str) -> float:
        start = add_months(self.today, -CATEGORY_AVERAGE_MONTHS)
        total = self.session.scalar(
            select(func.coalesce(func.sum(Expense.amount), 0)).where(
                Expense.user_id == self.user_id,
                func.lower(Expense.category) == category.lower(),
                Expense.date.between(start, self.today),
            )
        )
        return float(total or 0) / CATEGORY_AVERAGE_MONTHS

    def rebalance_sources(self, exclude: str) -> list[RebalanceSource]:
        sources = []
        for budget in self.list_all():
            if budget.category.lower() == exclude.lower():
                continue
            status = self.status_for(budget)
            sources.append(
                RebalanceSource(
                    category=budget.category,
                    surplus=max(0.0, status.remaining),
                    budget_amount=status.budgeted,
                )
            )
        return sources

    def rebalance(self, from_category: str, to_category: str, amount: float) -> BudgetRebalance:
        source = self.find(from_category)
        target = self.find(to_category)
        if source.id == target.id:
            raise RebalanceNotAllowed(
                "Choose two different budgets to move money between",
                {"category": source.category},
            )
        if source.period != target.period:
            raise RebalanceNotAllowed(
                "Both budgets must use the same period",
                {"from_period": source.period.value, "to_period": target.period.value},
            )

        period = self.period_for(target)
        used = self.rebalances_this_period(period)
        if used >= MAX_REBALANCES_PER_PERIOD:
            raise RebalanceNotAllowed(
                f"You can move money between budgets {MAX_REBALANCES_PER_PERIOD} times "
                "per period",
                {"used": used, "limit": MAX_REBALANCES_PER_PERIOD},
            )
        surplus = max(0.0, self.status_for(source).remaining)
        if amount > surplus:
            raise RebalanceNotAllowed(
                f"{source.category} only has {surplus:,.2f} left this period",
                {"available_surplus": round(surplus, 2), "requested": amount},
            )

        move = BudgetRebalance(
            user_id=self.user_id,
            from_category=source.category,
            to_category=target.category,
            amount=amount,
            period_start=period.start,
        )
        self.session.add(move)
        self.session.commit()
        self.session.refresh(move)
        logger.info(
            f"budget_rebalanced: user={self.user_id} from={source.category} "
            f"to={target.category} amount={amount} period={period.start}"
        )
        return move


@dataclass
class GpsAnalysis:
    budget_status: BudgetStatus
    goal_impact: GoalImpact
    recovery_paths: list[RecoveryPath]
    commitment_risk: CommitmentRisk
    message: SupportiveMessage
    multi_goal_impact: Optional[MultiGoalImpact] = None


class GpsService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        engine: Optional[SimulationEngine] = None,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.engine = engine or get_simulation_engine()
        self.today = today or date.today()
        self.now = now
        self.rng = rng
        self.budgets = BudgetService(session, self.user_id, today=self.today)
        self.goals = GoalService(session, self.user_id, today=self.today)

    def open_contracts(self) -> list[CommitmentContract]:
        return self.session.scalars(
            select(CommitmentContract).where(
                CommitmentContract.user_id == self.user_id,
                CommitmentContract.status.in_(OPEN_STATUSES),
            )
        ).all()

    def analyze(self, category: str, goal_id: Optional[int] = None) -> GpsAnalysis:
        status = self.budgets.status(category)
        goal = self.goals.primary_goal(goal_id)
        data = self.goals.simulation_input(goal=goal)
        planner = RecoveryPlanner(self.engine)

        impact = planner.measure_impact(data, status, goal.id, goal.name)
        others = [g for g in self.goals.active_goals() if g.id != goal.id]
        multi = None
        if others:
            impacts = [impact] + [
                planner.measure_impact(
                    self.goals.simulation_input(goal=other), status, other.id, other.name
                )
                for other in others
            ]
            multi = multi_goal_impact(impacts)

        period = status.period
        paths = planner.generate_paths(
            data,
            status,
            self.budgets.average_monthly_spend(status.category),
            rebalance_sources=self.budgets.rebalance_sources(status.category),
            rebalances_this_period=self.budgets.rebalances_this_period(period),
            previous_probability=impact.previous_probability,
        )
        risk = assess_commitment_risk(self.open_contracts(), now=self.now)
        message = supportive_message(status, goal.name, self.rng)
        logger.info(
            f"gps_analyze: user={self.user_id} category={status.category} "
            f"trigger={status.trigger} drop={impact.probability_drop:.3f} "
            f"risk={risk.risk_level}"
        )
        return GpsAnalysis(status, impact, paths, risk, message, multi)


@dataclass
class EmergencyAssessment:
    amount: float
    current_probability: float
    impact: EmergencyImpact
    options: list[AdjustmentOption] = field(default_factory=list)


class UbuntuService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        engine: Optional[SimulationEngine] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today or date.today()
        self.engine = engine
        self.finance = FinanceService(session, self.user_id, today=self.today, engine=engine)

    def dependency_ratio(self, previous_ratio: Optional[float] = None) -> DependencyRatioResult:
        support = self.session.scalars(
            select(FamilySupport).where(FamilySupport.user_id == self.user_id)
        ).all()
        return calculate_dependency_ratio(
            support,
            self.finance.monthly_income(),
            currency=self.finance.currency,
            previous_ratio=previous_ratio,
        )

    def emergency_impact(
        self, amount: float, goal_id: Optional[int] = None
    ) -> EmergencyAssessment:
        data = self.finance.aggregate_financial_data()
        goals = GoalService(self.session, self.user_id, today=self.today)
        probability = 0.0
        deadline: Optional[date] = None
        try:
            sim_input = goals.simulation_input(goal_id)
        except NoActiveGoal:
            logger.info(f"ubuntu_no_goal: user={self.user_id}")
        else:
            probability = self.finance.engine.goal_probability(sim_input)
            deadline = sim_input.goal_deadline

        impact = calculate_emergency_impact(
            amount, probability, data.emergency_fund, data.monthly_income
        )
        savings_rate = (
            max(0.0, data.monthly_savings / data.monthly_income)
            if data.monthly_income > 0
            else 0.0
        )
        options = adjustment_options(
            amount,
            data.emergency_fund,
            data.monthly_income,
            probability,
            savings_rate,
            goal_deadline=deadline,
            today=self.today,
        )
        logger.info(
            f"ubuntu_emergency: user={self.user_id} amount={amount} "
            f"probability={probability:.2f}->{impact.new_probability:.2f}"
        )
        return EmergencyAssessment(amount, probability, impact, options)


class CommitmentService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
        llm: Optional[AnthropicClient] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.now = now
        self.llm = llm

    def _now(self) -> datetime:
        return self.now or datetime.utcnow()

    def list(self, status: Optional[CommitmentStatus] = None) -> list[CommitmentContract]:
        stmt = select(CommitmentContract).where(CommitmentContract.user_id == self.user_id)
        if status is not None:
            stmt = stmt.where(CommitmentContract.status == status)
        return self.session.scalars(stmt.order_by(CommitmentContract.deadline)).all()

    def get(self, contract_id: int) -> CommitmentContract:
        contract = self.session.get(CommitmentContract, contract_id)
        if not contract or contract.user_id != self.user_id:
            raise CommitmentNotFound(
                f"Commitment {contract_id} not found", {"contract_id": contract_id}
            )
        return contract

    def create(self, data: CommitmentIn) -> CommitmentContract:
        goal = GoalService(self.session, self.user_id).get(data.goal_id)
        if goal.status != GoalStatus.active:
            raise GoalNotFound(
                f"Goal {goal.id} is not active", {"goal_id": goal.id}
            )
        open_for_goal = self.session.scalar(
            select(func.count(CommitmentContract.id)).where(
                CommitmentContract.user_id == self.user_id,
                CommitmentContract.goal_id == goal.id,
                CommitmentContract.status.in_(OPEN_STATUSES),
            )
        )
        deadline = data.deadline
        if deadline.tzinfo is not None:
            deadline = deadline.astimezone(timezone.utc).replace(tzinfo=None)
        validate_stake(
            data.stake_type,
            data.stake_amount,
            deadline,
            open_for_goal=open_for_goal or 0,
            now=self._now(),
            anti_charity_cause=data.anti_charity_cause,
        )
        contract = CommitmentContract(
            user_id=self.user_id,
            goal=goal,
            stake_type=data.stake_type,
            stake_amount=data.stake_amount,
            anti_charity_cause=data.anti_charity_cause,
            deadline=deadline,
            created_at=self._now(),
        )
        self.session.add(contract)
        self.session.commit()
        self.session.refresh(contract)
        logger.info(
            f"commitment_created: user={self.user_id} contract={contract.id} "
            f"goal={goal.id} stake={data.stake_type.value} amount={data.stake_amount}"
        )
        return contract

    def verify(self, contract_id: int, achieved: bool) -> CommitmentContract:
        contract = self.get(contract_id)
        if contract.status not in OPEN_STATUSES:
            raise CommitmentAlreadyResolved(
                f"Commitment {contract_id} is already resolved",
                {"status": CommitmentStatus(contract.status).value},
            )
        contract.status = CommitmentStatus.succeeded if achieved else CommitmentStatus.failed
        contract.resolved_at = self._now()
        if achieved:
            contract.goal.status = GoalStatus.achieved
        self.session.commit()
        logger.info(
            f"commitment_resolved: user={self.user_id} contract={contract_id} "
            f"status={CommitmentStatus(contract.status).value}"
        )
        return contract

    def cancel(self, contract_id: int) -> CommitmentContract:
        contract = self.get(contract_id)
        if contract.status != CommitmentStatus.active:
            raise CommitmentAlreadyResolved(
                "Only active commitments can be cancelled",
                {"status": CommitmentStatus(contract.status).value},
            )
        contract.status = CommitmentStatus.cancelled
        contract.resolved_at = self._now()
        self.session.commit()
        logger.info(f"commitment_cancelled: user={self.user_id} contract={contract_id}")
        return contract

    def risk(self, goal_id: Optional[int] = None) -> CommitmentRisk:
        contracts = self.session.scalars(
            select(CommitmentContract).where(
                CommitmentContract.user_id == self.user_id,
                CommitmentContract.status.in_(OPEN_STATUSES),
            )
        ).all()
        return assess_commitment_risk(contracts, goal_id=goal_id, now=self._now())

    def sweep_expired(self) -> int:
        """Move every user's overdue ACTIVE contracts to PENDING_VERIFICATION."""
        overdue = self.session.scalars(
            select(CommitmentContract).where(
                CommitmentContract.status == CommitmentStatus.active,
                CommitmentContract.deadline < self._now(),
            )
        ).all()
        moved = expire_overdue(overdue, now=self._now())
        self.session.commit()
        if moved:
            logger.info(f"commitment_sweep: moved={len(moved)}")
        return len(moved)

    def debrief(self, contract_id: int) -> CommitmentDebrief:
        return DebriefAgent(self.session, llm=self.llm, user_id=self.user_id).generate(
            contract_id
        )


def active_user_ids(session: Session) -> list[int]:
    """Users with any income, expense or budget on record."""
    ids: set[int] = set()
    for model in (IncomeSource, Expense, Budget):
        ids.update(session.scalars(select(model.user_id).distinct()).all())
    return sorted(ids)
