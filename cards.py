"""Story cards: shareable summaries of a future-self letter, a commitment,
an achieved goal or a budget recovery.

Card content is derived by :class:`CardContentCalculator` from a typed
source; :class:`StoryCardService` persists cards and hands out signed share
tokens that resolve to the public view of a card.
"""

from __future__ import annotations

import logging
import math
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from itsdangerous import BadSignature, URLSafeSerializer
from markupsafe import Markup
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from commitment import STAKE_CONFIGS
from config import get_settings
from database import get_current_user_id
from errors import (
    CommitmentNotFound,
    GoalNotFound,
    ShareTokenInvalid,
    StoryCardLimitExceeded,
    StoryCardNotFound,
)
from models import (
    CommitmentContract,
    Goal,
    GoalStatus,
    StakeType,
    StoryCard,
    StoryCardType,
)


logger = logging.getLogger(__name__)

MAX_CARDS_PER_DAY = 10
MAX_QUOTE_LENGTH = 500
MIN_SENTENCE_LENGTH = 30
BASE_COMMITMENT_SUCCESS_RATE = 0.26
MAX_COMMITMENT_SUCCESS_RATE = 0.85
SHARE_SALT = "story-card-share"

PLATFORM_DIMENSIONS = {
    "TWITTER": (1200, 675),
    "LINKEDIN": (1200, 627),
    "INSTAGRAM": (1080, 1080),
    "WHATSAPP": (800, 418),
}

GRADIENTS_BY_TYPE: dict[StoryCardType, list[tuple[str, str]]] = {
    StoryCardType.future_self: [
        ("#667EEA", "#764BA2"),
        ("#6B73FF", "#000DFF"),
        ("#A855F7", "#6366F1"),
    ],
    StoryCardType.commitment: [
        ("#F093FB", "#F5576C"),
        ("#FF6B6B", "#FFA07A"),
        ("#FF416C", "#FF4B2B"),
    ],
    StoryCardType.milestone: [
        ("#FA709A", "#FEE140"),
        ("#F2994A", "#F2C94C"),
        ("#FFD93D", "#FF9500"),
    ],
    StoryCardType.recovery: [
        ("#43E97B", "#38F9D7"),
        ("#11998E", "#38EF7D"),
        ("#00D2FF", "#3A7BD5"),
    ],
}

HASHTAGS_BY_TYPE: dict[StoryCardType, list[str]] = {
    StoryCardType.future_self: [
        "#FutureMe",
        "#FinancialJourney",
        "#IKPA",
        "#WealthBuilding",
        "#LetterFromFuture",
    ],
    StoryCardType.commitment: [
        "#Committed",
        "#GoalSetter",
        "#IKPA",
        "#FinancialGoals",
        "#Accountability",
    ],
    StoryCardType.milestone: [
        "#GoalCrusher",
        "#MilestoneAchieved",
        "#IKPA",
        "#FinancialWins",
        "#MoneyGoals",
    ],
    StoryCardType.recovery: [
        "#BackOnTrack",
        "#FinancialResilience",
        "#IKPA",
        "#MoneyMindset",
        "#BounceBack",
    ],
}

PLATFORMS_BY_TYPE: dict[StoryCardType, list[str]] = {
    StoryCardType.future_self: ["TWITTER", "LINKEDIN", "WHATSAPP"],
    StoryCardType.commitment: ["TWITTER", "LINKEDIN", "INSTAGRAM", "WHATSAPP"],
    StoryCardType.milestone: ["TWITTER", "LINKEDIN", "INSTAGRAM", "WHATSAPP"],
    StoryCardType.recovery: ["TWITTER", "LINKEDIN", "WHATSAPP"],
}

STAKE_LABELS = {
    StakeType.social: "Accountability partner",
    StakeType.anti_charity: "Anti-charity stake",
    StakeType.loss_pool: "Funds at stake",
}

_CURRENCY = "₦$€£¥₹"
EMOTIONAL_PATTERNS = [
    re.compile(rf"That [{_CURRENCY}][\d,]+.*?[.!]", re.I),
    re.compile(rf"[{_CURRENCY}][\d,]+.*?became.*?[.!]", re.I),
    re.compile(r"I'm so proud.*?[.!]", re.I),
    re.compile(r"Remember when.*?[.!]", re.I),
    re.compile(r"Your \w+ today.*?[.!]", re.I),
    re.compile(r"The \w+ you.*?[.!]", re.I),
    re.compile(r"Look at what.*?[.!]", re.I),
    re.compile(r"You did it.*?[.!]", re.I),
    re.compile(r"This is just the beginning.*?[.!]", re.I),
]
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")
_DEAR_PREFIX = re.compile(r"^(Dear.*?,\s*)", re.I)
_DASH_PREFIX = re.compile(r"^\s*-\s*")


@dataclass
class Privacy:
    anonymize_amounts: bool = True
    reveal_actual_numbers: bool = False

    @property
    def hide_amounts(self) -> bool:
        return self.anonymize_amounts and not self.reveal_actual_numbers


@dataclass
class FutureSelfSource:
    content: str
    future_age: int
    wealth_difference_20yr: float
    current_net_worth: float


@dataclass
class CommitmentSource:
    goal_name: str
    stake_type: StakeType
    stake_amount: Optional[float]
    deadline: datetime
    success_probability: float


@dataclass
class MilestoneSource:
    goal_name: str
    target_amount: float
    days_to_achieve: int


@dataclass
class RecoverySource:
    category: str
    selected_path: str
    previous_probability: float
    new_probability: float

    @property
    def probability_restored(self) -> float:
        return self.new_probability - self.previous_probability


CardSource = Union[FutureSelfSource, CommitmentSource, MilestoneSource, RecoverySource]


@dataclass
class CardContent:
    headline: str
    subheadline: str
    key_metric_label: str
    key_metric_value: str
    hashtags: list[str]
    gradient: tuple[str, str]
    gradient_index: int
    quote: Optional[str] = None
    platforms: list[str] = field(default_factory=list)


def format_compact_currency(amount: float) -> str:
    if amount >= 1_000_000_000:
        return f"₦{amount / 1_000_000_000:.1f}B"
    if amount >= 1_000_000:
        return f"₦{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"₦{amount / 1_000:.0f}K"
    return f"₦{amount:,.0f}" if float(amount).is_integer() else f"₦{amount:,.2f}"


def format_timeframe(days: int) -> str:
    if days < 0:
        return "record time"
    if days == 0:
        return "today"
    if days == 1:
        return "1 day"
    if days < 7:
        return f"{days} days"
    if days < 30:
        count, unit = round(days / 7), "week"
    elif days < 365:
        count, unit = round(days / 30), "month"
    else:
        count, unit = round(days / 365), "year"
    return f"1 {unit}" if count == 1 else f"{count} {unit}s"


def format_recovery_path(path: str) -> str:
    """``freeze_protocol`` and ``freezeProtocol`` both become ``Freeze Protocol``."""
    spaced = re.sub(r"([A-Z])", r" \1", path).replace("_", " ")
    return " ".join(word.capitalize() for word in spaced.split())


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    return Markup(text).striptags().strip()


def score_sentence(sentence: str) -> int:
    score = 0
    if re.search(r"you|your", sentence, re.I):
        score += 2
    if re.search(r"proud|amazing|incredible|achieve", sentence, re.I):
        score += 3
    if re.search(rf"[{_CURRENCY}]", sentence):
        score += 2
    if re.search(r"future|journey|goal", sentence, re.I):
        score += 1
    if sentence.endswith("!"):
        score += 1
    if re.search(r"dear|sincerely|regards", sentence, re.I):
        score -= 3
    if len(sentence) < 40:
        score -= 1
    return score


def _clean_quote(quote: str) -> str:
    cleaned = _DEAR_PREFIX.sub("", strip_html(quote))
    return _DASH_PREFIX.sub("", cleaned).strip()


def extract_quote(content: Optional[str]) -> Optional[str]:
    text = strip_html(content)
    for pattern in EMOTIONAL_PATTERNS:
        match = pattern.search(text)
        if match and len(match.group(0)) <= MAX_QUOTE_LENGTH:
            return _clean_quote(match.group(0).strip())

    candidates = [
        sentence.strip()
        for sentence in _SENTENCE.findall(text)
        if MIN_SENTENCE_LENGTH <= len(sentence.strip()) <= MAX_QUOTE_LENGTH
    ]
    if not candidates:
        return None
    # first sentence wins ties
    return max(candidates, key=score_sentence)


def commitment_success_probability(stake_type: StakeType) -> float:
    multiplier = float(STAKE_CONFIGS[StakeType(stake_type)]["success_rate_multiplier"])
    return min(BASE_COMMITMENT_SUCCESS_RATE * multiplier, MAX_COMMITMENT_SUCCESS_RATE)


class CardContentCalculator:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def select_gradient(self, card_type: StoryCardType) -> tuple[tuple[str, str], int]:
        gradients = GRADIENTS_BY_TYPE[card_type]
        index = self.rng.randrange(len(gradients))
        return gradients[index], index

    def _metric(
        self, amount: float, base: float, privacy: Privacy, signed: bool = False
    ) -> str:
        if privacy.hide_amounts:
            percentage = round(amount / base * 100) if base else 0
            return f"+{percentage}%" if signed else f"{percentage}%"
        return format_compact_currency(amount)

    def _content(
        self,
        card_type: StoryCardType,
        headline: str,
        subheadline: str,
        label: str,
        value: str,
        quote: Optional[str] = None,
    ) -> CardContent:
        gradient, index = self.select_gradient(card_type)
        return CardContent(
            headline=headline,
            subheadline=subheadline,
            key_metric_label=label,
            key_metric_value=value,
            quote=quote,
            hashtags=list(HASHTAGS_BY_TYPE[card_type]),
            gradient=gradient,
            gradient_index=index,
            platforms=list(PLATFORMS_BY_TYPE[card_type]),
        )

    def future_self(self, source: FutureSelfSource, privacy: Privacy) -> CardContent:
        return self._content(
            StoryCardType.future_self,
            "A Letter From My Future Self",
            f"Just received a letter from my {source.future_age}-year-old self",
            "Potential 20-year wealth gain",
            self._metric(
                source.wealth_difference_20yr, source.current_net_worth, privacy, signed=True
            ),
            extract_quote(source.content),
        )

    def commitment(self, source: CommitmentSource, privacy: Privacy) -> CardContent:
        stake_type = StakeType(source.stake_type)
        goal = source.goal_name
        if stake_type == StakeType.social:
            subheadline = f"Committed to my {goal} goal with an accountability partner"
        elif stake_type == StakeType.anti_charity:
            subheadline = f"Put money on the line for my {goal} goal"
        else:
            subheadline = f"Locked funds until I achieve my {goal} goal"

        rate = source.success_probability * 100
        if stake_type != StakeType.social and source.stake_amount:
            if privacy.hide_amounts:
                value = f"{round(rate * 3)}% more likely"
            else:
                value = format_compact_currency(source.stake_amount)
        else:
            value = f"{round(rate)}% success rate"

        return self._content(
            StoryCardType.commitment,
            "I Made a Commitment",
            subheadline,
            STAKE_LABELS.get(stake_type, "Commitment stake"),
            value,
        )

    def milestone(self, source: MilestoneSource, privacy: Privacy) -> CardContent:
        return self._content(
            StoryCardType.milestone,
            "Goal Achieved!",
            f"Reached my {source.goal_name} goal in {format_timeframe(source.days_to_achieve)}",
            "Goal Amount",
            self._metric(source.target_amount, source.target_amount, privacy),
        )

    def recovery(self, source: RecoverySource, privacy: Privacy) -> CardContent:
        # probabilities are not money, privacy does not apply
        restored = round(source.probability_restored * 100)
        return self._content(
            StoryCardType.recovery,
            "Back on Track",
            f"Recovered from a spending slip in {source.category}",
            "Goal probability restored",
            f"+{restored}%",
            f'Chose the "{format_recovery_path(source.selected_path)}" recovery path',
        )

    def generate(
        self,
        card_type: StoryCardType | str,
        source: CardSource,
        privacy: Optional[Privacy] = None,
    ) -> CardContent:
        privacy = privacy or Privacy()
        card_type = StoryCardType(card_type)
        builders = {
            StoryCardType.future_self: (FutureSelfSource, self.future_self),
            StoryCardType.commitment: (CommitmentSource, self.commitment),
            StoryCardType.milestone: (MilestoneSource, self.milestone),
            StoryCardType.recovery: (RecoverySource, self.recovery),
        }
        expected, builder = builders[card_type]
        if not isinstance(source, expected):
            raise TypeError(f"{card_type.value} cards need a {expected.__name__}")
        return builder(source, privacy)


class StoryCardService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        calculator: Optional[CardContentCalculator] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.calculator = calculator or CardContentCalculator()
        self.now = now
        settings = get_settings()
        self.serializer = URLSafeSerializer(settings.share_secret, salt=SHARE_SALT)
        self.share_base_url = settings.share_base_url

    def _now(self) -> datetime:
        return self.now or datetime.utcnow()

    def commitment_source(self, contract_id: int) -> CommitmentSource:
        contract = self.session.scalar(
            select(CommitmentContract).where(
                CommitmentContract.id == contract_id,
                CommitmentContract.user_id == self.user_id,
            )
        )
        if contract is None:
            raise CommitmentNotFound(f"Commitment {contract_id} not found")
        return CommitmentSource(
            goal_name=contract.goal.name,
            stake_type=StakeType(contract.stake_type),
            stake_amount=float(contract.stake_amount) if contract.stake_amount else None,
            deadline=contract.deadline,
            success_probability=commitment_success_probability(contract.stake_type),
        )

    def milestone_source(self, goal_id: int) -> MilestoneSource:
        goal = self.session.scalar(
            select(Goal).where(
                Goal.id == goal_id,
                Goal.user_id == self.user_id,
                Goal.status == GoalStatus.achieved,
            )
        )
        if goal is None:
            raise GoalNotFound(
                f"No achieved goal {goal_id} to celebrate", {"goal_id": goal_id}
            )
        elapsed = (goal.updated_at - goal.created_at).total_seconds()
        return MilestoneSource(
            goal_name=goal.name,
            target_amount=float(goal.target_amount),
            days_to_achieve=math.ceil(elapsed / 86400),
        )

    def cards_today(self) -> int:
        start = self._now().replace(hour=0, minute=0, second=0, microsecond=0)
        return self.session.scalar(
            select(func.count(StoryCard.id)).where(
                StoryCard.user_id == self.user_id,
                StoryCard.created_at >= start,
                StoryCard.created_at < start + timedelta(days=1),
            )
        ) or 0

    def share_token(self, card: StoryCard) -> str:
        return self.serializer.dumps({"card": card.id, "user": card.user_id})

    def share_url(self, card: StoryCard) -> str:
        return f"{self.share_base_url}/{self.share_token(card)}"

    def create(
        self,
        card_type: StoryCardType | str,
        source: CardSource,
        privacy: Optional[Privacy] = None,
    ) -> StoryCard:
        card_type = StoryCardType(card_type)
        if self.cards_today() >= MAX_CARDS_PER_DAY:
            raise StoryCardLimitExceeded(
                f"You can create up to {MAX_CARDS_PER_DAY} story cards per day",
                {"limit": MAX_CARDS_PER_DAY},
            )

        privacy = privacy or Privacy()
        if privacy.anonymize_amounts and privacy.reveal_actual_numbers:
            logger.warning(
                f"story_card_privacy_conflict: user={self.user_id} resolution=anonymized"
            )
            privacy = Privacy(anonymize_amounts=True, reveal_actual_numbers=False)

        content = self.calculator.generate(card_type, source, privacy)
        card = StoryCard(
            user_id=self.user_id,
            card_type=card_type,
            headline=content.headline,
            subheadline=content.subheadline,
            key_metric_label=content.key_metric_label,
            key_metric_value=content.key_metric_value,
            quote=content.quote,
            hashtags=content.hashtags,
            gradient_start=content.gradient[0],
            gradient_end=content.gradient[1],
            gradient_index=content.gradient_index,
            created_at=self._now(),
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        logger.info(
            f"story_card_created: user={self.user_id} card={card.id} "
            f"type={card_type.value} gradient={content.gradient_index}"
        )
        return card

    def get(self, card_id: int) -> StoryCard:
        card = self.session.scalar(
            select(StoryCard).where(
                StoryCard.id == card_id,
                StoryCard.user_id == self.user_id,
                StoryCard.is_active.is_(True),
            )
        )
        if card is None:
            raise StoryCardNotFound(f"Story card {card_id} not found", {"card_id": card_id})
        return card

    def deactivate(self, card_id: int) -> None:
        card = self.get(card_id)
        card.is_active = False
        self.session.commit()

    def resolve_share(self, token: str) -> StoryCard:
        """Public lookup behind a share link; counts the view."""
        try:
            payload = self.serializer.loads(token)
        except BadSignature as exc:
            raise ShareTokenInvalid("This share link is not valid") from exc

        card = self.session.get(StoryCard, payload.get("card"))
        if card is None or not card.is_active or card.user_id != payload.get("user"):
            raise ShareTokenInvalid("This share link is not valid")
        card.view_count += 1
        self.session.commit()
        return card

    def describe(self, card: StoryCard, include_share: bool = True) -> dict[str, Any]:
        card_type = StoryCardType(card.card_type)
        data: dict[str, Any] = {
            "id": card.id,
            "type": card_type.value,
            "headline": card.headline,
            "subheadline": card.subheadline,
            "key_metric": {"label": card.key_metric_label, "value": card.key_metric_value},
            "quote": card.quote,
            "hashtags": list(card.hashtags or []),
            "gradient": [card.gradient_start, card.gradient_end],
            "platforms": [
                {
                    "name": name,
                    "width": PLATFORM_DIMENSIONS[name][0],
                    "height": PLATFORM_DIMENSIONS[name][1],
                }
                for name in PLATFORMS_BY_TYPE[card_type]
            ],
            "view_count": card.view_count,
            "created_at": card.created_at.isoformat(),
        }
        if include_share:
            data["share_url"] = self.share_url(card)
        return data
