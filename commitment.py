from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from errors import InvalidStake
from models import CommitmentContract, CommitmentStatus, StakeType


logger = logging.getLogger(__name__)

MINIMUM_STAKE_AMOUNT = 1_000
MAXIMUM_STAKE_AMOUNT = 500_000
MINIMUM_DEADLINE_DAYS = 7
MAX_COMMITMENTS_PER_GOAL = 1
HIGH_RISK_DAYS = 7
MEDIUM_RISK_DAYS = 14

MONETARY_STAKES = (StakeType.anti_charity, StakeType.loss_pool)
OPEN_STATUSES = (CommitmentStatus.active, CommitmentStatus.pending_verification)

STAKE_CONFIGS: dict[StakeType, dict[str, object]] = {
    StakeType.social: {
        "name": "Social Accountability",
        "description": "A referee you choose will verify your progress",
        "requires_amount": False,
        "success_rate_multiplier": 2.0,
    },
    StakeType.anti_charity: {
        "name": "Anti-Charity Stake",
        "description": "If you miss your goal, your stake goes to a cause you oppose",
        "requires_amount": True,
        "success_rate_multiplier": 3.0,
    },
    StakeType.loss_pool: {
        "name": "Loss Pool",
        "description": "Your stake is locked and only released when you achieve your goal",
        "requires_amount": True,
        "success_rate_multiplier": 2.5,
    },
}


@dataclass
class ContractAtRisk:
    id: int
    goal_id: int
    goal_name: str
    stake_type: StakeType
    stake_amount: Optional[float]
    days_remaining: int
    deadline: datetime


@dataclass
class CommitmentRisk:
    has_active_commitment: bool
    risk_level: str
    total_stake_at_risk: float
    message: str
    contracts: list[ContractAtRisk] = field(default_factory=list)


def validate_stake(
    stake_type: StakeType,
    stake_amount: Optional[float],
    deadline: datetime,
    open_for_goal: int = 0,
    now: Optional[datetime] = None,
    anti_charity_cause: Optional[str] = None,
) -> None:
    now = now or datetime.utcnow()
    stake_type = StakeType(stake_type)
    if open_for_goal >= MAX_COMMITMENTS_PER_GOAL:
        raise InvalidStake(
            "This goal already has an active commitment",
            {"max_commitments_per_goal": MAX_COMMITMENTS_PER_GOAL},
        )
    if deadline < now + timedelta(days=MINIMUM_DEADLINE_DAYS):
        raise InvalidStake(
            f"Deadline must be at least {MINIMUM_DEADLINE_DAYS} days from now",
            {"deadline": deadline.isoformat()},
        )
    if stake_type in MONETARY_STAKES:
        if stake_amount is None:
            raise InvalidStake(
                f"{STAKE_CONFIGS[stake_type]['name']} requires a stake amount",
                {"stake_type": stake_type.value},
            )
        if not MINIMUM_STAKE_AMOUNT <= stake_amount <= MAXIMUM_STAKE_AMOUNT:
            raise InvalidStake(
                f"Stake amount must be between {MINIMUM_STAKE_AMOUNT:,} "
                f"and {MAXIMUM_STAKE_AMOUNT:,}",
                {"stake_amount": stake_amount},
            )
    if stake_type == StakeType.anti_charity and not (anti_charity_cause or "").strip():
        raise InvalidStake("Anti-charity stakes need a cause", {"stake_type": stake_type.value})


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def _risk_message(contracts: list[ContractAtRisk], level: str, total: float) -> str:
    count = len(contracts)
    nearest = contracts[0]
    if level == "high":
        tail = f", {total:,.0f} at stake." if total > 0 else "."
        return (
            f"{count} {_plural(count, 'stake')} at risk! {nearest.goal_name} commitment "
            f"deadline is in {nearest.days_remaining} "
            f"{_plural(nearest.days_remaining, 'day')}{tail}"
        )
    if level == "medium":
        return (
            f"Overspending may affect {count} active {_plural(count, 'commitment')}. "
            f"Nearest deadline: {nearest.days_remaining} days."
        )
    return (
        f"You have {count} active {_plural(count, 'commitment')} that could be "
        "impacted by this overspend."
    )


def assess_commitment_risk(
    contracts: Iterable[CommitmentContract],
    goal_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> CommitmentRisk:
    """Which open stakes an overspend puts in danger, nearest deadline first."""
    now = now or datetime.utcnow()
    relevant = sorted(
        (
            contract
            for contract in contracts
            if contract.status in OPEN_STATUSES
            and contract.deadline >= now
            and (goal_id is None or contract.goal_id == goal_id)
        ),
        key=lambda contract: contract.deadline,
    )
    if not relevant:
        return CommitmentRisk(False, "none", 0.0, "")

    at_risk = [
        ContractAtRisk(
            id=contract.id,
            goal_id=contract.goal_id,
            goal_name=contract.goal.name if contract.goal else "Unknown Goal",
            stake_type=contract.stake_type,
            stake_amount=float(contract.stake_amount) if contract.stake_amount else None,
            days_remaining=max(
                0, math.ceil((contract.deadline - now).total_seconds() / 86400)
            ),
            deadline=contract.deadline,
        )
        for contract in relevant
    ]
    total = sum(item.stake_amount or 0 for item in at_risk)
    nearest_days = min(item.days_remaining for item in at_risk)
    monetary = any(item.stake_amount and item.stake_amount > 0 for item in at_risk)

    level = "low"
    if monetary and nearest_days <= HIGH_RISK_DAYS:
        level = "high"
    elif monetary and nearest_days <= MEDIUM_RISK_DAYS:
        level = "medium"

    logger.info(
        f"commitment_risk: contracts={len(at_risk)} risk={level} total_stake={total}"
    )
    return CommitmentRisk(True, level, total, _risk_message(at_risk, level, total), at_risk)


def expire_overdue(
    contracts: Iterable[CommitmentContract], now: Optional[datetime] = None
) -> list[CommitmentContract]:
    now = now or datetime.utcnow()
    moved = []
    for contract in contracts:
        if contract.status == CommitmentStatus.active and contract.deadline < now:
            contract.status = CommitmentStatus.pending_verification
            moved.append(contract)
    return moved
