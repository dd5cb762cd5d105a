from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


def Money() -> Numeric:
    return Numeric(14, 2, asdecimal=False)


class CurrencyCode(str, Enum):
    ngn = "NGN"
    usd = "USD"
    gbp = "GBP"
    eur = "EUR"
    ghs = "GHS"
    kes = "KES"
    zar = "ZAR"


CURRENCY_CODE_ENUM = _value_enum(CurrencyCode, "currencycode")


class Frequency(str, Enum):
    daily = "DAILY"
    weekly = "WEEKLY"
    biweekly = "BIWEEKLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    annually = "ANNUALLY"
    one_time = "ONE_TIME"


FREQUENCY_ENUM = _value_enum(Frequency, "frequency")


class SavingsType(str, Enum):
    bank = "BANK"
    mobile_money = "MOBILE_MONEY"
    cooperative = "COOPERATIVE"
    investment = "INVESTMENT"
    pension = "PENSION"


class GoalStatus(str, Enum):
    active = "ACTIVE"
    achieved = "ACHIEVED"
    paused = "PAUSED"
    abandoned = "ABANDONED"


class BudgetPeriod(str, Enum):
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    yearly = "YEARLY"


class RelationshipType(str, Enum):
    parent = "PARENT"
    spouse = "SPOUSE"
    sibling = "SIBLING"
    child = "CHILD"
    extended_family = "EXTENDED_FAMILY"
    community = "COMMUNITY"
    other = "OTHER"


class SubscriptionCategory(str, Enum):
    streaming = "STREAMING"
    tv_cable = "TV_CABLE"
    fitness = "FITNESS"
    cloud_storage = "CLOUD_STORAGE"
    software = "SOFTWARE"
    vpn = "VPN"
    learning = "LEARNING"
    telecom = "TELECOM"
    utilities = "UTILITIES"
    insurance = "INSURANCE"
    gaming = "GAMING"
    other = "OTHER"


class SubscriptionStatus(str, Enum):
    active = "ACTIVE"
    zombie = "ZOMBIE"
    unknown = "UNKNOWN"
    cancelled = "CANCELLED"


class SwipeAction(str, Enum):
    keep = "KEEP"
    cancel = "CANCEL"
    review_later = "REVIEW_LATER"


class StakeType(str, Enum):
    social = "SOCIAL"
    anti_charity = "ANTI_CHARITY"
    loss_pool = "LOSS_POOL"


class CommitmentStatus(str, Enum):
    active = "ACTIVE"
    pending_verification = "PENDING_VERIFICATION"
    succeeded = "SUCCEEDED"
    failed = "FAILED"
    cancelled = "CANCELLED"


class StoryCardType(str, Enum):
    future_self = "FUTURE_SELF"
    commitment = "COMMITMENT"
    milestone = "MILESTONE"
    recovery = "RECOVERY"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class IncomeSource(Base, TimestampMixin):
    __tablename__ = "income_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    frequency: Mapped[Frequency] = mapped_column(
        FREQUENCY_ENUM, nullable=False, default=Frequency.monthly
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_income_amount_positive"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    merchant: Mapped[Optional[str]] = mapped_column(String(120))
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[Optional[Frequency]] = mapped_column(FREQUENCY_ENUM)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    remaining_balance: Mapped[float] = mapped_column(Money(), nullable=False)
    interest_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    minimum_payment: Mapped[float] = mapped_column(Money(), nullable=False, default=0)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class SavingsAccount(Base, TimestampMixin):
    __tablename__ = "savings_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[SavingsType] = mapped_column(
        _value_enum(SavingsType, "savingstype"),
        nullable=False,
        default=SavingsType.bank,
    )
    balance: Mapped[float] = mapped_column(Money(), nullable=False, default=0)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    is_emergency_fund: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    target_amount: Mapped[float] = mapped_column(Money(), nullable=False)
    current_amount: Mapped[float] = mapped_column(Money(), nullable=False, default=0)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[GoalStatus] = mapped_column(
        _value_enum(GoalStatus, "goalstatus"),
        nullable=False,
        default=GoalStatus.active,
    )

    commitments: Mapped[list["CommitmentContract"]] = relationship(
        "CommitmentContract", back_populates="goal"
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    period: Mapped[BudgetPeriod] = mapped_column(
        _value_enum(BudgetPeriod, "budgetperiod"),
        nullable=False,
        default=BudgetPeriod.monthly,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class FamilySupport(Base, TimestampMixin):
    __tablename__ = "family_support"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    relationship: Mapped[RelationshipType] = mapped_column(
        _value_enum(RelationshipType, "relationshiptype"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    frequency: Mapped[Frequency] = mapped_column(
        FREQUENCY_ENUM, nullable=False, default=Frequency.monthly
    )
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "merchant_pattern", name="uq_subscription_user_merchant"
        ),
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    merchant_pattern: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[SubscriptionCategory] = mapped_column(
        _value_enum(SubscriptionCategory, "subscriptioncategory"),
        nullable=False,
        default=SubscriptionCategory.other,
    )
    monthly_cost: Mapped[float] = mapped_column(Money(), nullable=False)
    annual_cost: Mapped[float] = mapped_column(Money(), nullable=False)
    previous_monthly_cost: Mapped[Optional[float]] = mapped_column(Money())
    price_change_percent: Mapped[Optional[float]] = mapped_column(Float)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        _value_enum(SubscriptionStatus, "subscriptionstatus"),
        nullable=False,
        default=SubscriptionStatus.unknown,
    )
    last_usage_date: Mapped[Optional[date]] = mapped_column(Date)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    first_charge_date: Mapped[Optional[date]] = mapped_column(Date)
    last_charge_date: Mapped[Optional[date]] = mapped_column(Date)
    charge_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    swipe_decisions: Mapped[list["SwipeDecision"]] = relationship(
        "SwipeDecision",
        back_populates="subscription",
        order_by="desc(SwipeDecision.decided_at)",
        cascade="all, delete-orphan",
    )

    @property
    def last_decision(self) -> Optional["SwipeDecision"]:
        return self.swipe_decisions[0] if self.swipe_decisions else None


class SwipeDecision(Base):
    __tablename__ = "swipe_decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[SwipeAction] = mapped_column(
        _value_enum(SwipeAction, "swipeaction"), nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)
    review_after_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    decided_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    subscription: Mapped["Subscription"] = relationship(
        "Subscription", back_populates="swipe_decisions"
    )


class CommitmentContract(Base, TimestampMixin):
    __tablename__ = "commitment_contracts"
    __table_args__ = (
        Index("ix_commitments_user_status_deadline", "user_id", "status", "deadline"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    goal_id: Mapped[int] = mapped_column(ForeignKey("goals.id"), nullable=False)
    stake_type: Mapped[StakeType] = mapped_column(
        _value_enum(StakeType, "staketype"), nullable=False
    )
    stake_amount: Mapped[Optional[float]] = mapped_column(Money())
    anti_charity_cause: Mapped[Optional[str]] = mapped_column(String(200))
    status: Mapped[CommitmentStatus] = mapped_column(
        _value_enum(CommitmentStatus, "commitmentstatus"),
        nullable=False,
        default=CommitmentStatus.active,
    )
    deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    goal: Mapped["Goal"] = relationship("Goal", back_populates="commitments")
    debrief: Mapped[Optional["CommitmentDebrief"]] = relationship(
        "CommitmentDebrief", back_populates="contract", uselist=False
    )


class CommitmentDebrief(Base, TimestampMixin):
    __tablename__ = "commitment_debriefs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    contract_id: Mapped[int] = mapped_column(
        ForeignKey("commitment_contracts.id"), nullable=False, unique=True
    )
    analysis: Mapped[str] = mapped_column(Text, nullable=False)
    key_insights: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    suggested_stake_type: Mapped[Optional[str]] = mapped_column(String(20))
    suggested_stake_amount: Mapped[Optional[float]] = mapped_column(Money())
    suggested_deadline_days: Mapped[Optional[int]] = mapped_column(Integer)
    is_fallback: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    contract: Mapped["CommitmentContract"] = relationship(
        "CommitmentContract", back_populates="debrief"
    )


class ImportedTransaction(Base):
    __tablename__ = "imported_transactions"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "deduplication_hash", name="uq_imported_user_hash"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deduplication_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.ngn
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    merchant: Mapped[Optional[str]] = mapped_column(String(120))
    normalized_merchant: Mapped[Optional[str]] = mapped_column(String(120))
    expense_id: Mapped[Optional[int]] = mapped_column(ForeignKey("expenses.id"))
    imported_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class StoryCard(Base, TimestampMixin):
    __tablename__ = "story_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    card_type: Mapped[StoryCardType] = mapped_column(
        _value_enum(StoryCardType, "storycardtype"), nullable=False
    )
    headline: Mapped[str] = mapped_column(String(200), nullable=False)
    subheadline: Mapped[str] = mapped_column(String(300), nullable=False)
    key_metric_label: Mapped[str] = mapped_column(String(100), nullable=False)
    key_metric_value: Mapped[str] = mapped_column(String(50), nullable=False)
    quote: Mapped[Optional[str]] = mapped_column(Text)
    hashtags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    gradient_start: Mapped[str] = mapped_column(String(9), nullable=False)
    gradient_end: Mapped[str] = mapped_column(String(9), nullable=False)
    gradient_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ScoreSnapshot(Base):
    __tablename__ = "score_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "calculated_on", name="uq_score_user_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    calculated_on: Mapped[date] = mapped_column(Date, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(30), nullable=False)
    components: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class BudgetRebalance(Base):
    __tablename__ = "budget_rebalances"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_rebalance_amount_positive"),
        Index("ix_rebalance_user_period", "user_id", "period_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    from_category: Mapped[str] = mapped_column(String(50), nullable=False)
    to_category: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
