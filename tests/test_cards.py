import random
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from cards import (
    GRADIENTS_BY_TYPE,
    MAX_CARDS_PER_DAY,
    CardContentCalculator,
    CommitmentSource,
    FutureSelfSource,
    MilestoneSource,
    Privacy,
    RecoverySource,
    StoryCardService,
    commitment_success_probability,
    extract_quote,
    format_compact_currency,
    format_recovery_path,
    format_timeframe,
)
from database import Base
from errors import GoalNotFound, ShareTokenInvalid, StoryCardLimitExceeded, StoryCardNotFound
from models import CommitmentContract, Goal, GoalStatus, StakeType, StoryCardType


NOW = datetime(2024, 5, 10, 14, 0)
HIDDEN = Privacy()
REVEALED = Privacy(anonymize_amounts=False, reveal_actual_numbers=True)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _calculator() -> CardContentCalculator:
    return CardContentCalculator(rng=random.Random(0))


def _recovery() -> RecoverySource:
    return RecoverySource("food-dining", "freeze_protocol", 0.6, 0.85)


@pytest.mark.parametrize(
    "amount,expected",
    [
        (2_000_000_000, "₦2.0B"),
        (1_500_000, "₦1.5M"),
        (45_000, "₦45K"),
        (999, "₦999"),
        (12.5, "₦12.50"),
    ],
)
def test_format_compact_currency(amount: float, expected: str) -> None:
    assert format_compact_currency(amount) == expected


@pytest.mark.parametrize(
    "days,expected",
    [
        (-1, "record time"),
        (0, "today"),
        (1, "1 day"),
        (5, "5 days"),
        (10, "1 week"),
        (14, "2 weeks"),
        (90, "3 months"),
        (400, "1 year"),
    ],
)
def test_format_timeframe(days: int, expected: str) -> None:
    assert format_timeframe(days) == expected


def test_format_recovery_path() -> None:
    assert format_recovery_path("freeze_protocol") == "Freeze Protocol"
    assert format_recovery_path("freezeProtocol") == "Freeze Protocol"


def test_extract_quote_prefers_emotional_lines() -> None:
    letter = "Dear Ada, That ₦5,000 you saved became ₦2M. Keep going."
    assert extract_quote(letter) == "That ₦5,000 you saved became ₦2M."
    assert extract_quote("<p>I'm so proud of you!</p>") == "I'm so proud of you!"


def test_extract_quote_scores_sentences() -> None:
    letter = (
        "Hi there. We moved houses twice during those long years. "
        "Your journey toward the goal has been incredible to watch! Short one."
    )
    assert extract_quote(letter) == "Your journey toward the goal has been incredible to watch!"
    assert extract_quote("") is None
    assert extract_quote("Too short.") is None


def test_commitment_success_probability() -> None:
    assert commitment_success_probability(StakeType.social) == pytest.approx(0.52)
    assert commitment_success_probability(StakeType.anti_charity) == pytest.approx(0.78)
    assert commitment_success_probability("LOSS_POOL") == pytest.approx(0.65)


def test_future_self_card_hides_amounts_by_default() -> None:
    source = FutureSelfSource("I'm so proud of the choices you made!", 60, 2_000_000, 500_000)

    hidden = _calculator().generate(StoryCardType.future_self, source)
    assert hidden.key_metric_value == "+400%"
    assert hidden.subheadline == "Just received a letter from my 60-year-old self"
    assert hidden.quote == "I'm so proud of the choices you made!"
    assert hidden.gradient in GRADIENTS_BY_TYPE[StoryCardType.future_self]

    revealed = _calculator().generate("FUTURE_SELF", source, REVEALED)
    assert revealed.key_metric_value == "₦2.0M"


def test_commitment_card_values() -> None:
    anti = CommitmentSource("Car", StakeType.anti_charity, 10_000, NOW, 0.78)
    assert _calculator().commitment(anti, HIDDEN).key_metric_value == "234% more likely"
    assert _calculator().commitment(anti, REVEALED).key_metric_value == "₦10K"

    social = CommitmentSource("Car", StakeType.social, None, NOW, 0.52)
    content = _calculator().commitment(social, REVEALED)
    assert content.key_metric_value == "52% success rate"
    assert content.key_metric_label == "Accountability partner"
    assert content.subheadline == "Committed to my Car goal with an accountability partner"


def test_milestone_and_recovery_cards() -> None:
    milestone = MilestoneSource("Car", 1_000_000, 90)
    hidden = _calculator().milestone(milestone, HIDDEN)
    assert hidden.key_metric_value == "100%"
    assert hidden.subheadline == "Reached my Car goal in 3 months"
    assert _calculator().milestone(milestone, REVEALED).key_metric_value == "₦1.0M"

    recovery = _calculator().recovery(_recovery(), HIDDEN)
    assert recovery.key_metric_value == "+25%"
    assert recovery.quote == 'Chose the "Freeze Protocol" recovery path'
    assert "INSTAGRAM" not in recovery.platforms


def test_generate_rejects_mismatched_source() -> None:
    with pytest.raises(TypeError, match="MILESTONE cards need a MilestoneSource"):
        _calculator().generate(StoryCardType.milestone, _recovery())


def test_create_resolves_privacy_conflict_to_anonymized() -> None:
    with _session() as session:
        service = StoryCardService(session, calculator=_calculator(), now=NOW)
        source = FutureSelfSource("A letter.", 60, 2_000_000, 500_000)
        card = service.create(
            StoryCardType.future_self,
            source,
            Privacy(anonymize_amounts=True, reveal_actual_numbers=True),
        )
        assert card.key_metric_value == "+400%"
        assert card.hashtags[2] == "#IKPA"

        described = service.describe(card)
        assert described["type"] == "FUTURE_SELF"
        assert described["platforms"][0] == {"name": "TWITTER", "width": 1200, "height": 675}
        assert described["share_url"].endswith(service.share_token(card))


def test_daily_card_limit() -> None:
    with _session() as session:
        service = StoryCardService(session, calculator=_calculator(), now=NOW)
        for _ in range(MAX_CARDS_PER_DAY):
            service.create(StoryCardType.recovery, _recovery())

        with pytest.raises(StoryCardLimitExceeded, match="up to 10 story cards"):
            service.create(StoryCardType.recovery, _recovery())

        tomorrow = StoryCardService(session, now=NOW + timedelta(days=1))
        assert tomorrow.cards_today() == 0
        tomorrow.create(StoryCardType.recovery, _recovery())


def test_share_token_round_trip_and_views() -> None:
    with _session() as session:
        service = StoryCardService(session, calculator=_calculator(), now=NOW)
        card = service.create(StoryCardType.recovery, _recovery())
        token = service.share_token(card)

        public = StoryCardService(session, user_id=2)
        assert public.resolve_share(token).id == card.id
        assert public.resolve_share(token).view_count == 2

        with pytest.raises(ShareTokenInvalid):
            public.resolve_share(token + "x")

        service.deactivate(card.id)
        with pytest.raises(ShareTokenInvalid):
            public.resolve_share(token)
        with pytest.raises(StoryCardNotFound):
            service.get(card.id)


def test_cards_are_scoped_to_owner() -> None:
    with _session() as session:
        card = StoryCardService(session, calculator=_calculator(), now=NOW).create(
            StoryCardType.recovery, _recovery()
        )
        with pytest.raises(StoryCardNotFound):
            StoryCardService(session, user_id=2).get(card.id)


def test_sources_from_database() -> None:
    with _session() as session:
        achieved = Goal(
            user_id=1,
            name="Car",
            target_amount=1_000_000,
            status=GoalStatus.achieved,
            created_at=datetime(2024, 1, 1),
            updated_at=datetime(2024, 1, 11, 1, 0),
        )
        open_goal = Goal(user_id=1, name="House", target_amount=5_000_000)
        contract = CommitmentContract(
            user_id=1,
            goal=open_goal,
            stake_type=StakeType.loss_pool,
            stake_amount=20_000,
            deadline=NOW + timedelta(days=30),
        )
        session.add_all([achieved, open_goal, contract])
        session.commit()

        service = StoryCardService(session)
        milestone = service.milestone_source(achieved.id)
        assert milestone.days_to_achieve == 11
        assert milestone.target_amount == 1_000_000

        source = service.commitment_source(contract.id)
        assert source.goal_name == "House"
        assert source.stake_amount == 20_000
        assert source.success_probability == pytest.approx(0.65)

        with pytest.raises(GoalNotFound, match="No achieved goal"):
            service.milestone_source(open_goal.id)
