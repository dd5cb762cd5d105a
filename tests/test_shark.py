from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import (
    DuplicateSwipeDecision,
    InsufficientExpenseData,
    InvalidSwipeAction,
    SubscriptionCancellationError,
    SubscriptionNotFound,
)
from models import (
    CurrencyCode,
    Expense,
    Subscription,
    SubscriptionCategory,
    SubscriptionStatus,
    SwipeAction,
)
from shark import (
    AnnualizedFraming,
    SharkService,
    SubscriptionDetector,
    ZombieDetector,
    service_name,
    title_case,
)


TODAY = date(2024, 6, 1)
NOW = datetime(2024, 6, 1, 9, 0)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _charges(session: Session, merchant: str, amount: float, months=(3, 4, 5), user_id: int = 1) -> None:
    for month in months:
        session.add(
            Expense(
                user_id=user_id,
                date=date(2024, month, 2),
                amount=amount,
                merchant=merchant,
                category="subscriptions",
                is_recurring=True,
            )
        )
    session.commit()


def _service(session: Session, now: datetime = NOW) -> SharkService:
    return SharkService(session, today=TODAY, now=now)


def test_detector_matches_known_merchants() -> None:
    detector = SubscriptionDetector()
    netflix = detector.match_merchant("NETFLIX")
    assert netflix.matched
    assert netflix.category == SubscriptionCategory.streaming
    assert netflix.confidence == 1.0

    dstv = detector.match_merchant("dstv subscription")
    assert dstv.category == SubscriptionCategory.tv_cable
    assert dstv.confidence == pytest.approx(0.85)

    assert not detector.match_merchant("mama put").matched


def test_names_for_subscriptions() -> None:
    assert service_name("netflix") == "Netflix"
    assert service_name("dstv subscription") == "DStv"
    assert title_case("mama put") == "Mama Put"


def test_detect_groups_recurring_charges() -> None:
    expenses = [
        Expense(date=date(2024, m, 2), amount=4400, merchant="Netflix", is_recurring=True, currency=CurrencyCode.ngn)
        for m in (3, 4, 5)
    ]
    expenses.append(
        Expense(date=date(2024, 5, 9), amount=2500, merchant="mama put", is_recurring=True, currency=CurrencyCode.ngn)
    )
    expenses.append(
        Expense(date=date(2024, 5, 9), amount=900, merchant="spotify", is_recurring=False, currency=CurrencyCode.ngn)
    )

    detected = SubscriptionDetector().detect(expenses)

    assert len(detected) == 1
    found = detected[0]
    assert found.name == "Netflix"
    assert found.monthly_cost == 4400
    assert found.charge_count == 3
    assert found.first_charge_date == date(2024, 3, 2)
    assert found.last_charge_date == date(2024, 5, 2)


def test_zombie_detector_status_and_metrics() -> None:
    detector = ZombieDetector(TODAY)
    stale = Subscription(status=SubscriptionStatus.active, last_usage_date=TODAY - timedelta(days=120))
    fresh = Subscription(status=SubscriptionStatus.active, last_usage_date=TODAY - timedelta(days=10))
    unknown = Subscription(status=SubscriptionStatus.active, last_usage_date=None)
    gone = Subscription(status=SubscriptionStatus.cancelled, last_usage_date=None)

    assert detector.status_for(stale) == SubscriptionStatus.zombie
    assert detector.status_for(fresh) == SubscriptionStatus.active
    assert detector.status_for(unknown) == SubscriptionStatus.unknown
    assert detector.status_for(gone) == SubscriptionStatus.cancelled

    metrics = detector.calculate_metrics([stale, fresh, unknown, gone])
    assert metrics["zombie_count"] == 1
    assert metrics["zombie_rate"] == 25.0


def test_annualized_framing() -> None:
    framing = AnnualizedFraming().generate(4400, CurrencyCode.ngn, "Netflix")
    assert framing.monthly == "₦4,400/month"
    assert framing.annual == "₦52,800/year"
    assert framing.context == "That's several nice dinners out"
    assert framing.impact == "Cancelling Netflix could save you ₦52,800 this year"

    small = AnnualizedFraming().generate(10, "USD", "Zoom")
    assert small.annual == "$120/year"
    assert small.context == "That's money that could be growing in savings"


def test_audit_requires_recurring_expenses() -> None:
    with _session() as session:
        with pytest.raises(InsufficientExpenseData):
            _service(session).audit()


def test_audit_detects_and_flags_zombies() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _charges(session, "spotify", 900)
        _charges(session, "netflix", 4400, user_id=2)

        first = _service(session).audit()
        assert first.total_subscriptions == 2
        assert first.newly_detected == 2
        assert first.zombies_detected == 0
        assert first.currency == "NGN"

        netflix = session.query(Subscription).filter_by(user_id=1, merchant_pattern="netflix").one()
        assert netflix.status == SubscriptionStatus.unknown
        netflix.last_usage_date = TODAY - timedelta(days=120)
        session.commit()

        second = _service(session).audit()
        assert second.newly_detected == 0
        assert second.zombies_detected == 1
        assert second.potential_annual_savings == 52_800


def test_audit_tracks_price_changes() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _service(session).audit()
        _charges(session, "netflix", 5400, months=(6,))
        _service(session).audit()

        netflix = session.query(Subscription).one()
        assert netflix.previous_monthly_cost == 4400
        assert netflix.monthly_cost == 4650
        assert netflix.price_change_percent == 5.68
        assert netflix.charge_count == 4


def test_swipe_keep_then_cooldown_then_cancel() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _service(session).audit()
        sub_id = session.query(Subscription).one().id

        kept = _service(session).record_swipe(sub_id, "KEEP")
        assert kept.action == SwipeAction.keep
        assert kept.message.startswith("Marked Netflix as a keeper")
        sub = session.get(Subscription, sub_id)
        assert sub.status == SubscriptionStatus.active
        assert sub.last_decision.review_after_date == NOW + timedelta(days=90)

        with pytest.raises(DuplicateSwipeDecision):
            _service(session).record_swipe(sub_id, SwipeAction.review_later)

        later = NOW + timedelta(minutes=10)
        cancelled = _service(session, now=later).record_swipe(sub_id, SwipeAction.cancel)
        assert cancelled.message == "Netflix has been queued for cancellation."
        sub = session.get(Subscription, sub_id)
        assert sub.status == SubscriptionStatus.cancelled
        assert not sub.is_active


def test_kept_subscription_is_not_reflagged() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _service(session).audit()
        sub = session.query(Subscription).one()
        sub.last_usage_date = TODAY - timedelta(days=200)
        session.commit()

        _service(session).record_swipe(sub.id, SwipeAction.keep)
        result = _service(session, now=NOW + timedelta(days=1)).audit()

        assert result.zombies_detected == 0
        assert session.get(Subscription, sub.id).status == SubscriptionStatus.active


def test_invalid_swipe_and_missing_subscription() -> None:
    with _session() as session:
        with pytest.raises(InvalidSwipeAction, match="Unknown swipe action"):
            _service(session).record_swipe(1, "maybe")
        with pytest.raises(SubscriptionNotFound):
            _service(session).record_swipe(99, SwipeAction.keep)


def test_cancel_reports_savings() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _service(session).audit()
        sub_id = session.query(Subscription).one().id

        result = _service(session).cancel(sub_id, reason="Never watch it")
        assert result.annual_savings == 52_800
        assert result.message == "Subscription marked as cancelled. Annual savings: ₦52,800"

        with pytest.raises(SubscriptionCancellationError, match="already cancelled"):
            _service(session).cancel(sub_id)


def test_list_subscriptions_paginates_and_summarizes() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _charges(session, "spotify", 900)
        _charges(session, "dropbox", 2000)
        _service(session).audit()

        page = _service(session).list_subscriptions(limit=2, offset=1)
        assert [item["name"] for item in page.items] == ["Dropbox", "Spotify"]
        assert page.pagination == {"total": 3, "limit": 2, "offset": 1}
        assert page.summary["total"] == 3
        assert page.summary["counts"]["UNKNOWN"] == 3
        assert page.summary["total_monthly_cost"] == 7300
        assert page.summary["framing"]["monthly_total"] == "₦7,300/month"
        assert page.summary["framing"]["annual_total"] == "₦87,600/year"

        empty = _service(session).list_subscriptions(status=SubscriptionStatus.zombie)
        assert empty.items == []


def test_detect_overlaps_groups_by_category() -> None:
    with _session() as session:
        _charges(session, "netflix", 4400)
        _charges(session, "spotify", 900)
        _charges(session, "dropbox", 2000)
        _service(session).audit()

        overlaps = _service(session).detect_overlaps()
        assert len(overlaps) == 1
        assert overlaps[0]["category"] == "STREAMING"
        assert overlaps[0]["combined_monthly_cost"] == 5300
