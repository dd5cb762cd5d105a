import datetime as dt
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    BudgetPeriod,
    CurrencyCode,
    Frequency,
    GoalStatus,
    RelationshipType,
    SavingsType,
    StakeType,
    StoryCardType,
    SwipeAction,
)


class IncomeSourceIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0)
    currency: CurrencyCode = CurrencyCode.ngn
    frequency: Frequency = Frequency.monthly
    is_active: bool = True
    start_date: Optional[date] = None


class ExpenseIn(BaseModel):
    date: dt.date
    amount: float = Field(..., ge=0)
    currency: CurrencyCode = CurrencyCode.ngn
    category: str = Field(default="other", min_length=1, max_length=50)
    merchant: Optional[str] = Field(default=None, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    is_recurring: bool = False
    frequency: Optional[Frequency] = None


class DebtIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    remaining_balance: float = Field(..., ge=0)
    interest_rate: float = Field(default=0.0, ge=0, le=1)
    minimum_payment: float = Field(default=0.0, ge=0)
    currency: CurrencyCode = CurrencyCode.ngn
    is_active: bool = True


class SavingsAccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: SavingsType = SavingsType.bank
    balance: float = Field(default=0.0, ge=0)
    currency: CurrencyCode = CurrencyCode.ngn
    is_emergency_fund: bool = False
    is_active: bool = True


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: float = Field(..., gt=0)
    current_amount: float = Field(default=0.0, ge=0)
    currency: CurrencyCode = CurrencyCode.ngn
    target_date: Optional[date] = None
    priority: int = Field(default=1, ge=1, le=100)
    status: GoalStatus = GoalStatus.active


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    amount: float = Field(..., ge=0)
    currency: CurrencyCode = CurrencyCode.ngn
    period: BudgetPeriod = BudgetPeriod.monthly
    is_active: bool = True


class FamilySupportIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    relationship: RelationshipType
    amount: float = Field(..., gt=0)
    frequency: Frequency = Frequency.monthly
    currency: CurrencyCode = CurrencyCode.ngn
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class SimulationIn(BaseModel):
    """Overrides on top of the inputs derived from the user's own data."""

    model_config = ConfigDict(extra="forbid")

    goal_id: Optional[int] = None
    current_savings_rate: Optional[float] = Field(default=None, ge=0, le=1)
    monthly_income: Optional[float] = Field(default=None, ge=0)
    monthly_expenses: Optional[float] = Field(default=None, ge=0)
    current_net_worth: Optional[float] = None
    goal_amount: Optional[float] = Field(default=None, gt=0)
    goal_deadline: Optional[date] = None
    expected_return_rate: Optional[float] = Field(default=None, ge=-1, le=1)
    inflation_rate: Optional[float] = Field(default=None, ge=0, le=1)
    income_growth_rate: Optional[float] = Field(default=None, ge=-1, le=1)
    expense_growth_rate: Optional[float] = Field(default=None, ge=-1, le=1)
    tax_rate_on_returns: Optional[float] = Field(default=None, ge=0, le=1)
    enable_market_regimes: bool = False
    monthly_withdrawal: float = Field(default=0.0, ge=0)
    random_seed: Optional[int] = None


class GpsAnalyzeIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    goal_id: Optional[int] = None


class RebalanceIn(BaseModel):
    from_category: str = Field(..., min_length=1, max_length=50)
    to_category: str = Field(..., min_length=1, max_length=50)
    amount: float = Field(..., gt=0)


class EmergencyImpactIn(BaseModel):
    amount: float = Field(..., gt=0)
    goal_id: Optional[int] = None


class SwipeIn(BaseModel):
    subscription_id: int
    action: SwipeAction
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelSubscriptionIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CommitmentIn(BaseModel):
    goal_id: int
    stake_type: StakeType
    stake_amount: Optional[float] = Field(default=None, gt=0)
    deadline: datetime
    anti_charity_cause: Optional[str] = Field(default=None, max_length=200)


class CommitmentVerifyIn(BaseModel):
    achieved: bool


class RawTransactionIn(BaseModel):
    date: str = Field(..., max_length=10)
    amount: float = Field(..., allow_inf_nan=False)
    type: Optional[Literal["debit", "credit"]] = None
    description: Optional[str] = Field(default=None, max_length=500)
    merchant: Optional[str] = Field(default=None, max_length=120)
    is_recurring: bool = False
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class ImportTransactionsIn(BaseModel):
    transactions: list[RawTransactionIn] = Field(..., min_length=1, max_length=1000)
    currency: CurrencyCode = CurrencyCode.ngn


class CsvImportIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=2_000_000)
    currency: CurrencyCode = CurrencyCode.ngn


class FutureSelfCardIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=20_000)
    future_age: int = Field(..., ge=1, le=150)
    wealth_difference_20yr: float = Field(..., ge=0)
    current_net_worth: float = Field(..., gt=0)


class RecoveryCardIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    selected_path: str = Field(default="Recovery Path", max_length=50)
    previous_probability: float = Field(..., ge=0, le=1)
    new_probability: float = Field(..., ge=0, le=1)


class StoryCardIn(BaseModel):
    type: StoryCardType
    source_id: Optional[int] = None
    future_self: Optional[FutureSelfCardIn] = None
    recovery: Optional[RecoveryCardIn] = None
    anonymize_amounts: bool = True
    reveal_actual_numbers: bool = False


class MetricEvaluationIn(BaseModel):
    input: str = Field(default="", max_length=10_000)
    output: str = Field(..., min_length=1, max_length=50_000)
