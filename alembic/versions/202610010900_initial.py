"""initial schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


CURRENCIES = ("NGN", "USD", "GBP", "EUR", "GHS", "KES", "ZAR")
FREQUENCIES = ("DAILY", "WEEKLY", "BIWEEKLY", "MONTHLY", "QUARTERLY", "ANNUALLY", "ONE_TIME")


def _money():
    return sa.Numeric(14, 2, asdecimal=False)


def _currency():
    return sa.Column(
        "currency", sa.Enum(*CURRENCIES, name="currencycode"), nullable=False, server_default="NGN"
    )


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _owner():
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
    ]


def upgrade():
    op.create_table(
        "income_sources",
        *_owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        _currency(),
        sa.Column(
            "frequency", sa.Enum(*FREQUENCIES, name="frequency"), nullable=False
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_income_amount_positive"),
    )

    op.create_table(
        "expenses",
        *_owner(),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        _currency(),
        sa.Column("category", sa.String(length=50), nullable=False, server_default="other"),
        sa.Column("merchant", sa.String(length=120)),
        sa.Column("description", sa.Text()),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frequency", sa.Enum(*FREQUENCIES, name="frequency")),
        sa.Column("source", sa.String(length=20), nullable=False, server_default="manual"),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category_date", "expenses", ["user_id", "category", "date"]
    )

    op.create_table(
        "debts",
        *_owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("remaining_balance", _money(), nullable=False),
        sa.Column("interest_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("minimum_payment", _money(), nullable=False, server_default="0"),
        _currency(),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "savings_accounts",
        *_owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "BANK", "MOBILE_MONEY", "COOPERATIVE", "INVESTMENT", "PENSION",
                name="savingstype",
            ),
            nullable=False,
        ),
        sa.Column("balance", _money(), nullable=False, server_default="0"),
        _currency(),
        sa.Column(
            "is_emergency_fund", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "goals",
        *_owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("target_amount", _money(), nullable=False),
        sa.Column("current_amount", _money(), nullable=False, server_default="0"),
        _currency(),
        sa.Column("target_date", sa.Date()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "ACHIEVED", "PAUSED", "ABANDONED", name="goalstatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        *_timestamps(),
    )

    op.create_table(
        "budgets",
        *_owner(),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        _currency(),
        sa.Column(
            "period",
            sa.Enum("WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY", name="budgetperiod"),
            nullable=False,
            server_default="MONTHLY",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        sa.CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
    )

    op.create_table(
        "family_support",
        *_owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "relationship",
            sa.Enum(
                "PARENT", "SPOUSE", "SIBLING", "CHILD", "EXTENDED_FAMILY", "COMMUNITY", "OTHER",
                name="relationshiptype",
            ),
            nullable=False,
        ),
        sa.Column("amount", _money(), nullable=False),
        sa.Column(
            "frequency", sa.Enum(*FREQUENCIES, name="frequency"), nullable=False
        ),
        _currency(),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "subscriptions",
        *_owner(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("merchant_pattern", sa.String(length=120), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "STREAMING", "TV_CABLE", "FITNESS", "CLOUD_STORAGE", "SOFTWARE", "VPN",
                "LEARNING", "TELECOM", "UTILITIES", "INSURANCE", "GAMING", "OTHER",
                name="subscriptioncategory",
            ),
            nullable=False,
            server_default="OTHER",
        ),
        sa.Column("monthly_cost", _money(), nullable=False),
        sa.Column("annual_cost", _money(), nullable=False),
        sa.Column("previous_monthly_cost", _money()),
        sa.Column("price_change_percent", sa.Float()),
        _currency(),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "ZOMBIE", "UNKNOWN", "CANCELLED", name="subscriptionstatus"),
            nullable=False,
            server_default="UNKNOWN",
        ),
        sa.Column("last_usage_date", sa.Date()),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
        sa.Column("first_charge_date", sa.Date()),
        sa.Column("last_charge_date", sa.Date()),
        sa.Column("charge_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "merchant_pattern", name="uq_subscription_user_merchant"
        ),
    )
    op.create_index(
        "ix_subscriptions_user_status", "subscriptions", ["user_id", "status"]
    )

    op.create_table(
        "swipe_decisions",
        *_owner(),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "action",
            sa.Enum("KEEP", "CANCEL", "REVIEW_LATER", name="swipeaction"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text()),
        sa.Column("review_after_date", sa.DateTime()),
        sa.Column("decided_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "commitment_contracts",
        *_owner(),
        sa.Column("goal_id", sa.Integer(), sa.ForeignKey("goals.id"), nullable=False),
        sa.Column(
            "stake_type",
            sa.Enum("SOCIAL", "ANTI_CHARITY", "LOSS_POOL", name="staketype"),
            nullable=False,
        ),
        sa.Column("stake_amount", _money()),
        sa.Column("anti_charity_cause", sa.String(length=200)),
        sa.Column(
            "status",
            sa.Enum(
                "ACTIVE", "PENDING_VERIFICATION", "SUCCEEDED", "FAILED", "CANCELLED",
                name="commitmentstatus",
            ),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column("deadline", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index(
        "ix_commitments_user_status_deadline",
        "commitment_contracts",
        ["user_id", "status", "deadline"],
    )

    op.create_table(
        "commitment_debriefs",
        *_owner(),
        sa.Column(
            "contract_id",
            sa.Integer(),
            sa.ForeignKey("commitment_contracts.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("analysis", sa.Text(), nullable=False),
        sa.Column("key_insights", sa.JSON(), nullable=False),
        sa.Column("suggested_stake_type", sa.String(length=20)),
        sa.Column("suggested_stake_amount", _money()),
        sa.Column("suggested_deadline_days", sa.Integer()),
        sa.Column("is_fallback", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "imported_transactions",
        *_owner(),
        sa.Column("deduplication_hash", sa.String(length=32), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        _currency(),
        sa.Column("description", sa.Text()),
        sa.Column("merchant", sa.String(length=120)),
        sa.Column("normalized_merchant", sa.String(length=120)),
        sa.Column("expense_id", sa.Integer(), sa.ForeignKey("expenses.id")),
        sa.Column("imported_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "deduplication_hash", name="uq_imported_user_hash"),
    )

    op.create_table(
        "story_cards",
        *_owner(),
        sa.Column(
            "card_type",
            sa.Enum("FUTURE_SELF", "COMMITMENT", "MILESTONE", "RECOVERY", name="storycardtype"),
            nullable=False,
        ),
        sa.Column("headline", sa.String(length=200), nullable=False),
        sa.Column("subheadline", sa.String(length=300), nullable=False),
        sa.Column("key_metric_label", sa.String(length=100), nullable=False),
        sa.Column("key_metric_value", sa.String(length=50), nullable=False),
        sa.Column("quote", sa.Text()),
        sa.Column("hashtags", sa.JSON(), nullable=False),
        sa.Column("gradient_start", sa.String(length=9), nullable=False),
        sa.Column("gradient_end", sa.String(length=9), nullable=False),
        sa.Column("gradient_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "score_snapshots",
        *_owner(),
        sa.Column("calculated_on", sa.Date(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=30), nullable=False),
        sa.Column("components", sa.JSON(), nullable=False),
        sa.UniqueConstraint("user_id", "calculated_on", name="uq_score_user_day"),
    )

    op.create_table(
        "budget_rebalances",
        *_owner(),
        sa.Column("from_category", sa.String(length=50), nullable=False),
        sa.Column("to_category", sa.String(length=50), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_rebalance_amount_positive"),
    )
    op.create_index(
        "ix_rebalance_user_period", "budget_rebalances", ["user_id", "period_start"]
    )


def downgrade():
    op.drop_index("ix_rebalance_user_period", table_name="budget_rebalances")
    op.drop_table("budget_rebalances")
    op.drop_table("score_snapshots")
    op.drop_table("story_cards")
    op.drop_table("imported_transactions")
    op.drop_table("commitment_debriefs")
    op.drop_index("ix_commitments_user_status_deadline", table_name="commitment_contracts")
    op.drop_table("commitment_contracts")
    op.drop_table("swipe_decisions")
    op.drop_index("ix_subscriptions_user_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("family_support")
    op.drop_table("budgets")
    op.drop_table("goals")
    op.drop_table("savings_accounts")
    op.drop_table("debts")
    op.drop_index("ix_expenses_user_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("income_sources")
