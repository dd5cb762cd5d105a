"""Post-failure debrief for commitment contracts.

The model is given three read-only tools over the user's data and a bounded
number of turns to gather context before answering with a JSON debrief.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import get_current_user_id
from errors import CommitmentNotFound, ContractNotFailed, LLMRequestFailed, LLMUnavailable
from llm import AnthropicClient, get_llm_client
from models import (
    CommitmentContract,
    CommitmentDebrief,
    CommitmentStatus,
    Debt,
    IncomeSource,
    SavingsAccount,
    StakeType,
)


logger = logging.getLogger(__name__)

MAX_AGENT_TURNS = 5
AGENT_MAX_TOKENS = 2048
HISTORY_LIMIT = 10

FALLBACK_ANALYSIS = (
    "We were unable to generate a detailed debrief at this time. "
    "Consider adjusting your goal amount or timeline for your next attempt."
)
FALLBACK_INSIGHTS = [
    "Consider a longer timeline",
    "Try a smaller goal amount",
    "Use social accountability for support",
]

DEBRIEF_SYSTEM_PROMPT = """You are a supportive financial coach reviewing a savings commitment \
that did not reach its target. Use the tools to understand the contract, how the user's \
finances changed and their commitment history. Never shame the user; treat the outcome as \
information for the next attempt.

When you have enough context, reply with a single JSON object:
{"analysis": "...", "keyInsights": ["...", "..."], "suggestedStakeType": "SOCIAL|ANTI_CHARITY|LOSS_POOL", \
"suggestedStakeAmount": 0, "suggestedDeadlineDays": 0}"""

DEBRIEF_TOOLS: list[dict[str, Any]] = [
    {
        "name": "get_failed_contract_details",
        "description": "Goal, stake and timeline of the commitment being debriefed.",
        "input_schema": {
            "type": "object",
            "properties": {"contract_id": {"type": "integer"}},
            "required": [],
        },
    },
    {
        "name": "get_financial_changes",
        "description": "Current income, debt and savings totals for the user.",
        "input_schema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "get_commitment_history",
        "description": "The user's last ten commitments and their success rate.",
        "input_schema": {"type": "object", "properties": {}, "required": []},
    },
]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class DebriefResult:
    analysis: str
    key_insights: list[str] = field(default_factory=list)
    suggested_stake_type: Optional[str] = None
    suggested_stake_amount: Optional[float] = None
    suggested_deadline_days: Optional[int] = None
    is_fallback: bool = False


def fallback_result() -> DebriefResult:
    return DebriefResult(FALLBACK_ANALYSIS, list(FALLBACK_INSIGHTS), is_fallback=True)


def parse_debrief(text: str) -> Optional[DebriefResult]:
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not parsed.get("analysis"):
        return None

    stake_type = parsed.get("suggestedStakeType")
    if stake_type not in {member.value for member in StakeType}:
        stake_type = None
    amount = parsed.get("suggestedStakeAmount")
    days = parsed.get("suggestedDeadlineDays")
    insights = parsed.get("keyInsights") or []
    return DebriefResult(
        analysis=str(parsed["analysis"]),
        key_insights=[str(item) for item in insights if item],
        suggested_stake_type=stake_type,
        suggested_stake_amount=float(amount) if isinstance(amount, (int, float)) else None,
        suggested_deadline_days=int(days) if isinstance(days, (int, float)) else None,
    )


def _block_param(block: Any) -> dict[str, Any]:
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return {"type": "text", "text": getattr(block, "text", "")}


class DebriefAgent:
    def __init__(
        self,
        session: Session,
        llm: Optional[AnthropicClient] = None,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.llm = llm or get_llm_client()
        self.user_id = user_id or get_current_user_id()

    def _contract(self, contract_id: int) -> CommitmentContract:
        contract = self.session.scalar(
            select(CommitmentContract).where(
                CommitmentContract.id == contract_id,
                CommitmentContract.user_id == self.user_id,
            )
        )
        if contract is None:
            raise CommitmentNotFound(f"Commitment {contract_id} not found")
        return contract

    def contract_details(self, contract: CommitmentContract) -> dict[str, Any]:
        goal = contract.goal
        return {
            "goal_name": goal.name,
            "target_amount": float(goal.target_amount),
            "current_amount": float(goal.current_amount),
            "stake_type": StakeType(contract.stake_type).value,
            "stake_amount": float(contract.stake_amount) if contract.stake_amount else None,
            "deadline": contract.deadline.isoformat(),
            "created_at": contract.created_at.isoformat(),
            "days_allotted": round(
                (contract.deadline - contract.created_at).total_seconds() / 86400
            ),
        }

    def financial_changes(self) -> dict[str, Any]:
        incomes = self.session.scalars(
            select(IncomeSource).where(
                IncomeSource.user_id == self.user_id, IncomeSource.is_active.is_(True)
            )
        ).all()
        debts = self.session.scalars(
            select(Debt).where(Debt.user_id == self.user_id, Debt.is_active.is_(True))
        ).all()
        savings = self.session.scalars(
            select(SavingsAccount).where(
                SavingsAccount.user_id == self.user_id,
                SavingsAccount.is_active.is_(True),
            )
        ).all()
        total_debt = sum(float(d.remaining_balance) for d in debts)
        total_savings = sum(float(s.balance) for s in savings)
        return {
            "current_monthly_income": sum(float(i.amount) for i in incomes),
            "income_source_count": len(incomes),
            "total_debt": total_debt,
            "debt_count": len(debts),
            "total_savings": total_savings,
            "savings_account_count": len(savings),
            "net_worth": total_savings - total_debt,
        }

    def commitment_history(self) -> dict[str, Any]:
        history = self.session.scalars(
            select(CommitmentContract)
            .where(CommitmentContract.user_id == self.user_id)
            .order_by(CommitmentContract.created_at.desc(), CommitmentContract.id.desc())
            .limit(HISTORY_LIMIT)
        ).all()
        succeeded = sum(1 for c in history if c.status == CommitmentStatus.succeeded)
        failed = sum(1 for c in history if c.status == CommitmentStatus.failed)
        return {
            "total_commitments": len(history),
            "succeeded": succeeded,
            "failed": failed,
            "success_rate": round(succeeded / len(history) * 100) if history else 0,
            "recent_contracts": [
                {
                    "stake_type": StakeType(c.stake_type).value,
                    "status": CommitmentStatus(c.status).value,
                    "stake_amount": float(c.stake_amount) if c.stake_amount else None,
                    "date": c.created_at.isoformat(),
                }
                for c in history
            ],
        }

    def execute_tool(self, name: str, contract: CommitmentContract) -> dict[str, Any]:
        if name == "get_failed_contract_details":
            return self.contract_details(contract)
        if name == "get_financial_changes":
            return self.financial_changes()
        if name == "get_commitment_history":
            return self.commitment_history()
        return {"error": f"Unknown tool: {name}"}

    def _run_loop(self, contract: CommitmentContract) -> Optional[DebriefResult]:
        messages: list[dict[str, Any]] = [
            {
                "role": "user",
                "content": (
                    f"Generate a post-failure debrief for commitment {contract.id}. "
                    "Use the tools to gather context first, then provide your analysis."
                ),
            }
        ]
        for turn in range(MAX_AGENT_TURNS):
            response = self.llm.create_message(
                messages,
                system=DEBRIEF_SYSTEM_PROMPT,
                tools=DEBRIEF_TOOLS,
                max_tokens=AGENT_MAX_TOKENS,
            )
            tool_calls = [block for block in response.content if block.type == "tool_use"]
            if not tool_calls:
                text = "".join(
                    block.text for block in response.content if block.type == "text"
                )
                result = parse_debrief(text)
                if result is None:
                    logger.warning(f"debrief_unparsable: contract={contract.id} turn={turn}")
                return result

            messages.append(
                {"role": "assistant", "content": [_block_param(b) for b in response.content]}
            )
            results = []
            for call in tool_calls:
                logger.debug(f"debrief_tool: contract={contract.id} tool={call.name}")
                results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": json.dumps(self.execute_tool(call.name, contract)),
                    }
                )
            messages.append({"role": "user", "content": results})

        logger.warning(f"debrief_turns_exhausted: contract={contract.id}")
        return None

    def generate(self, contract_id: int) -> CommitmentDebrief:
        contract = self._contract(contract_id)
        if contract.status != CommitmentStatus.failed:
            raise ContractNotFailed(
                "Debriefs are only available for commitments that did not succeed",
                {"contract_id": contract_id, "status": CommitmentStatus(contract.status).value},
            )

        result: Optional[DebriefResult] = None
        if self.llm.is_available():
            try:
                result = self._run_loop(contract)
            except (LLMUnavailable, LLMRequestFailed) as exc:
                logger.warning(f"debrief_llm_failed: contract={contract_id} error={exc}")
        result = result or fallback_result()

        debrief = contract.debrief
        if debrief is None:
            debrief = CommitmentDebrief(user_id=self.user_id, contract=contract)
            self.session.add(debrief)
        debrief.analysis = result.analysis
        debrief.key_insights = result.key_insights
        debrief.suggested_stake_type = result.suggested_stake_type
        debrief.suggested_stake_amount = result.suggested_stake_amount
        debrief.suggested_deadline_days = result.suggested_deadline_days
        debrief.is_fallback = result.is_fallback
        self.session.commit()
        self.session.refresh(debrief)
        logger.info(
            f"debrief_saved: contract={contract_id} fallback={result.is_fallback} "
            f"insights={len(result.key_insights)}"
        )
        return debrief
