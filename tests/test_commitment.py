from datetime import datetime, timedelta
from typing import Optional

import pytest

from commitment import assess_commitment_risk, expire_overdue, validate_stake
from errors import InvalidStake
from models import CommitmentContract, CommitmentStatus, Goal, StakeType


NOW = datetime(2024, 3, 1, 12, 0)


def _contract(
    contract_id: int,
    days: float,
    stake_type: StakeType = StakeType.anti_charity,
    amount: Optional[float] = 10_000,
    status: CommitmentStatus = CommitmentStatus.active,
    goal_id: int = 1,
    goal_name: str = "Car",
) -> CommitmentContract:
    return CommitmentContract(
        id=contract_id,
        user_id=1,
        goal_id=goal_id,
        goal=Goal(id=goal_id, name=goal_name, target_amount=1_000_000),
        stake_type=stake_type,
        stake_amount=amount,
        status=status,
        deadline=NOW + timedelta(days=days),
    )


def test_validate_stake_accepts_valid_monetary_stake() -> None:
    validate_stake(
        StakeType.loss_pool, 5_000, NOW + timedelta(days=30), now=NOW
    )
    validate_stake(
        StakeType.anti_charity,
        5_000,
        NOW + timedelta(days=30),
        now=NOW,
        anti_charity_cause="A rival football club",
    )
    validate_stake(StakeType.social, None, NOW + timedelta(days=7), now=NOW)


def test_validate_stake_rejects_short_deadline() -> None:
    with pytest.raises(InvalidStake, match="at least 7 days"):
        validate_stake(StakeType.social, None, NOW + timedelta(days=6), now=NOW)


def test_validate_stake_rejects_second_commitment() -> None:
    with pytest.raises(InvalidStake, match="already has an active commitment"):
        validate_stake(
            StakeType.social, None, NOW + timedelta(days=30), open_for_goal=1, now=NOW
        )


@pytest.mark.parametrize("amount", [None, 999, 500_001])
def test_validate_stake_amount_bounds(amount: Optional[float]) -> None:
    with pytest.raises(InvalidStake):
        validate_stake(StakeType.loss_pool, amount, NOW + timedelta(days=30), now=NOW)


def test_anti_charity_requires_cause() -> None:
    with pytest.raises(InvalidStake, match="need a cause"):
        validate_stake(
            StakeType.anti_charity, 5_000, NOW + timedelta(days=30), now=NOW, anti_charity_cause=" "
        )


def test_risk_without_contracts() -> None:
    risk = assess_commitment_risk([], now=NOW)
    assert not risk.has_active_commitment
    assert risk.risk_level == "none"
    assert risk.total_stake_at_risk == 0


def test_high_risk_for_near_monetary_deadline() -> None:
    risk = assess_commitment_risk([_contract(1, 3)], now=NOW)
    assert risk.risk_level == "high"
    assert risk.total_stake_at_risk == 10_000
    assert risk.message == (
        "1 stake at risk! Car commitment deadline is in 3 days, 10,000 at stake."
    )


def test_medium_and_low_risk() -> None:
    assert assess_commitment_risk([_contract(1, 10)], now=NOW).risk_level == "medium"
    assert assess_commitment_risk([_contract(1, 30)], now=NOW).risk_level == "low"

    social = _contract(1, 2, stake_type=StakeType.social, amount=None)
    risk = assess_commitment_risk([social], now=NOW)
    assert risk.risk_level == "low"
    assert risk.message.startswith("You have 1 active commitment")


def test_risk_filters_by_goal_and_status_and_sorts() -> None:
    contracts = [
        _contract(1, 20, goal_id=1, goal_name="Car"),
        _contract(2, 12, goal_id=2, goal_name="House"),
        _contract(3, 5, status=CommitmentStatus.succeeded),
        _contract(4, -1),
    ]
    risk = assess_commitment_risk(contracts, now=NOW)
    assert [c.id for c in risk.contracts] == [2, 1]
    assert risk.risk_level == "medium"
    assert risk.message == (
        "Overspending may affect 2 active commitments. Nearest deadline: 12 days."
    )

    only_car = assess_commitment_risk(contracts, goal_id=1, now=NOW)
    assert [c.goal_name for c in only_car.contracts] == ["Car"]


def test_days_remaining_rounds_up() -> None:
    risk = assess_commitment_risk([_contract(1, 0.25)], now=NOW)
    assert risk.contracts[0].days_remaining == 1
    assert risk.message.endswith("is in 1 day, 10,000 at stake.")


def test_expire_overdue_moves_only_active_past_deadline() -> None:
    overdue = _contract(1, -1)
    future = _contract(2, 5)
    failed = _contract(3, -2, status=CommitmentStatus.failed)

    moved = expire_overdue([overdue, future, failed], now=NOW)

    assert moved == [overdue]
    assert overdue.status == CommitmentStatus.pending_verification
    assert future.status == CommitmentStatus.active
    assert failed.status == CommitmentStatus.failed
