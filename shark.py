"""Shark Auditor: finds recurring subscriptions and flags the unused ones."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from database import get_current_user_id
from errors import (
    AuditOperationFailed,
    DuplicateSwipeDecision,
    IkpaError,
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
    SwipeDecision,
)
from periods import add_months


logger = logging.getLogger(__name__)

ZOMBIE_THRESHOLD_DAYS = 90
MIN_CHARGES_FOR_SUBSCRIPTION = 2
MIN_CONFIDENCE_THRESHOLD = 0.75
MAX_EXPENSE_AGE_MONTHS = 12
PRICE_CHANGE_THRESHOLD = 0.01
SWIPE_COOLDOWN = timedelta(minutes=5)
KEEP_REVIEW_DAYS = 90

SUBSCRIPTION_PATTERNS: list[tuple[re.Pattern[str], SubscriptionCategory]] = [
    (re.compile(pattern, re.I), category)
    for pattern, category in (
        (
            r"adobe|microsoft\s*365|office\s*365|canva|figma|notion|slack|zoom|atlassian|"
            r"jetbrains|github|gitlab|vercel|netlify|aws|azure|gcp",
            SubscriptionCategory.software,
        ),
        (
            r"netflix|spotify|amazon\s*prime|youtube\s*premium|apple\s*music|disney\+?|hulu|"
            r"hbo\s*max|paramount\+?|peacock|tidal|deezer|audiomack",
            SubscriptionCategory.streaming,
        ),
        (
            r"dstv|gotv|showmax|multichoice|startimes|canal\+?|kwese|azam\s*tv",
            SubscriptionCategory.tv_cable,
        ),
        (
            r"gym|fitness|wellness|planet\s*fitness|equinox|orangetheory|peloton|classpass|"
            r"crossfit|yoga|pilates",
            SubscriptionCategory.fitness,
        ),
        (
            r"vpn|nordvpn|expressvpn|surfshark|protonvpn|tunnelbear|cyberghost|"
            r"private\s*internet|mullvad",
            SubscriptionCategory.vpn,
        ),
        (
            r"coursera|udemy|skillshare|linkedin\s*learning|masterclass|duolingo|brilliant|"
            r"codecademy|pluralsight|udacity|edx|khan\s*academy",
            SubscriptionCategory.learning,
        ),
        (
            r"at&?t|t-?mobile|verizon|sprint|comcast|xfinity|spectrum|cox|centurylink|frontier|"
            r"mint\s*mobile|visible|cricket|metro\s*pcs|boost\s*mobile|google\s*fi|us\s*cellular|"
            r"mtn|glo\s*mobile|airtel|9mobile|safaricom|vodacom",
            SubscriptionCategory.telecom,
        ),
        (
            r"energy|electric|power|utility|utilities|gas\s*company|water\s*bill|sewage|"
            r"austin\s*energy|pg&?e|duke\s*energy|con\s*edison|national\s*grid|ecotricity|"
            r"bulb\s*energy|octopus\s*energy|ikeja\s*electric|eko\s*electric|enugu\s*electric",
            SubscriptionCategory.utilities,
        ),
        (
            r"insurance|geico|allstate|progressive|state\s*farm|liberty\s*mutual|usaa|lemonade|"
            r"metlife|prudential|aetna|cigna|humana|united\s*health|kaiser|leadway|"
            r"axa\s*mansard|custodian|aiico",
            SubscriptionCategory.insurance,
        ),
        (
            r"xbox\s*game\s*pass|playstation\s*plus|ps\s*plus|nintendo\s*online|ea\s*play|"
            r"ubisoft\+?|epic\s*games|steam|twitch|game\s*pass|humble\s*bundle|geforce\s*now|stadia",
            SubscriptionCategory.gaming,
        ),
        (
            r"dropbox|icloud|google\s*one|onedrive|box\.com|pcloud|mega\.nz|cloud\s*storage|"
            r"backup\s*service",
            SubscriptionCategory.cloud_storage,
        ),
    )
]

PAYMENT_DESCRIPTORS = {
    "subscription",
    "payment",
    "monthly",
    "annual",
    "yearly",
    "charge",
    "renewal",
    "service",
    "services",
    "plan",
    "premium",
    "storage",
    "cloud",
    "account",
    "billing",
    "auto",
    "recurring",
    "membership",
    "member",
    "online",
    "digital",
    "inc",
    "ltd",
    "llc",
    "corp",
    "apple",
    "google",
    "microsoft",
    "amazon",
    "multichoice",
}

KNOWN_SERVICES = {
    "netflix": "Netflix",
    "spotify": "Spotify",
    "amazon prime": "Amazon Prime",
    "youtube premium": "YouTube Premium",
    "apple music": "Apple Music",
    "disney+": "Disney+",
    "hulu": "Hulu",
    "hbo max": "HBO Max",
    "dstv": "DStv",
    "gotv": "GOtv",
    "showmax": "Showmax",
    "multichoice": "MultiChoice",
    "startimes": "StarTimes",
    "dropbox": "Dropbox",
    "icloud": "iCloud",
    "google one": "Google One",
    "onedrive": "OneDrive",
    "adobe": "Adobe",
    "microsoft 365": "Microsoft 365",
    "canva": "Canva",
    "figma": "Figma",
    "notion": "Notion",
    "slack": "Slack",
    "zoom": "Zoom",
    "nordvpn": "NordVPN",
    "expressvpn": "ExpressVPN",
    "surfshark": "Surfshark",
    "coursera": "Coursera",
    "udemy": "Udemy",
    "skillshare": "Skillshare",
    "linkedin learning": "LinkedIn Learning",
    "masterclass": "MasterClass",
    "duolingo": "Duolingo",
}

CURRENCY_SYMBOLS = {CurrencyCode.usd: "$", CurrencyCode.ngn: "₦"}

CONTEXT_COMPARISONS: dict[CurrencyCode, list[tuple[float, str]]] = {
    CurrencyCode.usd: [
        (5000, "That's equivalent to a month's rent in many US cities"),
        (2000, "That's a weekend getaway"),
        (1000, "That's 2 months of groceries"),
        (200, "That's several nice dinners out"),
        (0, "That's money that could be growing in savings"),
    ],
    CurrencyCode.ngn: [
        (1_000_000, "That's a significant investment in your future"),
        (500_000, "That's equivalent to a month's rent in many cities"),
        (200_000, "That's a weekend getaway to Calabar"),
        (100_000, "That's 2 months of groceries for a small household"),
        (50_000, "That's several nice dinners out"),
        (0, "That's money that could be growing in savings"),
    ],
}

SWIPE_MESSAGES = {
    SwipeAction.keep: "Marked {name} as a keeper. It won't appear in zombie alerts.",
    SwipeAction.cancel: "{name} has been queued for cancellation.",
    SwipeAction.review_later: "{name} has been saved for later review.",
}


@dataclass
class MatchResult:
    matched: bool
    category: Optional[SubscriptionCategory] = None
    confidence: float = 0.0


@dataclass
class DetectedSubscription:
    name: str
    merchant_pattern: str
    category: SubscriptionCategory
    monthly_cost: float
    currency: CurrencyCode
    first_charge_date: date
    last_charge_date: date
    charge_count: int


@dataclass
class _MerchantGroup:
    total: float = 0.0
    count: int = 0
    first: Optional[date] = None
    last: Optional[date] = None
    currency: CurrencyCode = CurrencyCode.ngn

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


@dataclass
class Framing:
    monthly: str
    annual: str
    context: str
    impact: str


@dataclass
class AuditResult:
    total_subscriptions: int
    newly_detected: int
    zombies_detected: int
    potential_annual_savings: float
    currency: str
    audited_at: datetime


@dataclass
class SwipeResult:
    id: int
    subscription_id: int
    action: SwipeAction
    decided_at: datetime
    message: str


@dataclass
class CancellationResult:
    subscription_id: int
    annual_savings: float
    message: str
    cancelled_at: datetime


@dataclass
class SubscriptionPage:
    items: list[dict[str, object]]
    summary: dict[str, object]
    pagination: dict[str, int] = field(default_factory=dict)


def title_case(merchant: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in merchant.split())


def service_name(merchant: str) -> str:
    lowered = merchant.lower().strip()
    for key, name in KNOWN_SERVICES.items():
        if key in lowered:
            return name
    return title_case(merchant)


def match_confidence(merchant: str, pattern: re.Pattern[str]) -> float:
    match = pattern.search(merchant)
    if not match or not match.group(0):
        return 0.0

    ratio = len(match.group(0)) / len(merchant)
    if ratio > 0.8:
        return 1.0
    if ratio > 0.5:
        return 0.9
    if ratio > 0.3:
        return 0.8

    confidence = 0.7
    if match.start() == 0:
        confidence += 0.05
    others = merchant[: match.start()].split() + merchant[match.end() :].split()
    if others:
        descriptors = sum(1 for word in others if word.lower() in PAYMENT_DESCRIPTORS)
        share = descriptors / len(others)
        if share >= 0.5:
            confidence += 0.1
        elif share > 0:
            confidence += 0.05
    else:
        confidence += 0.1
    return min(confidence, 1.0)


class SubscriptionDetector:
    def match_merchant(self, merchant: str) -> MatchResult:
        normalized = merchant.lower().strip()
        for pattern, category in SUBSCRIPTION_PATTERNS:
            if not pattern.search(normalized):
                continue
            confidence = match_confidence(normalized, pattern)
            if confidence < MIN_CONFIDENCE_THRESHOLD:
                logger.debug(
                    f"shark_low_confidence: merchant={merchant} category={category.value} "
                    f"confidence={confidence:.2f}"
                )
                continue
            return MatchResult(True, category, confidence)
        return MatchResult(False)

    def detect(self, expenses: Iterable[Expense]) -> list[DetectedSubscription]:
        groups: dict[str, _MerchantGroup] = defaultdict(_MerchantGroup)
        for expense in expenses:
            merchant = (expense.merchant or "").lower().strip()
            if not expense.is_recurring or not merchant:
                continue
            group = groups[merchant]
            group.total += abs(float(expense.amount))
            group.count += 1
            group.currency = CurrencyCode(expense.currency)
            group.first = min(group.first or expense.date, expense.date)
            group.last = max(group.last or expense.date, expense.date)

        detected = []
        for merchant, group in groups.items():
            if group.count < MIN_CHARGES_FOR_SUBSCRIPTION:
                continue
            match = self.match_merchant(merchant)
            detected.append(
                DetectedSubscription(
                    name=service_name(merchant) if match.matched else title_case(merchant),
                    merchant_pattern=merchant,
                    category=match.category if match.matched else SubscriptionCategory.other,
                    monthly_cost=round(group.average, 2),
                    currency=group.currency,
                    first_charge_date=group.first,
                    last_charge_date=group.last,
                    charge_count=group.count,
                )
            )
        return detected


class ZombieDetector:
    def __init__(self, today: Optional[date] = None) -> None:
        self.today = today or date.today()

    def days_since(self, day: Optional[date]) -> Optional[int]:
        if day is None:
            return None
        return (self.today - day).days

    def status_for(self, subscription: Subscription) -> SubscriptionStatus:
        if subscription.status == SubscriptionStatus.cancelled:
            return SubscriptionStatus.cancelled
        days = self.days_since(subscription.last_usage_date)
        if days is None:
            return SubscriptionStatus.unknown
        if days > ZOMBIE_THRESHOLD_DAYS:
            return SubscriptionStatus.zombie
        return SubscriptionStatus.active

    def calculate_metrics(self, subscriptions: Sequence[Subscription]) -> dict[str, float]:
        statuses = [self.status_for(sub) for sub in subscriptions]
        zombies = statuses.count(SubscriptionStatus.zombie)
        return {
            "total_analyzed": len(statuses),
            "zombie_count": zombies,
            "active_count": statuses.count(SubscriptionStatus.active),
            "unknown_count": statuses.count(SubscriptionStatus.unknown),
            "zombie_rate": round(zombies / len(statuses) * 100, 2) if statuses else 0.0,
        }


class AnnualizedFraming:
    def format_currency(self, amount: float, currency: CurrencyCode | str) -> str:
        symbol = CURRENCY_SYMBOLS.get(CurrencyCode(currency), "$")
        return f"{symbol}{round(amount):,}"

    def context(self, annual_cost: float, currency: CurrencyCode | str) -> str:
        comparisons = CONTEXT_COMPARISONS.get(
            CurrencyCode(currency), CONTEXT_COMPARISONS[CurrencyCode.usd]
        )
        for threshold, text in comparisons:
            if annual_cost >= threshold:
                return text
        return "That's money that could be growing in savings"

    def generate(
        self, monthly_cost: float, currency: CurrencyCode | str, name: str
    ) -> Framing:
        annual = monthly_cost * 12
        annual_text = self.format_currency(annual, currency)
        return Framing(
            monthly=f"{self.format_currency(monthly_cost, currency)}/month",
            annual=f"{annual_text}/year",
            context=self.context(annual, currency),
            impact=f"Cancelling {name} could save you {annual_text} this year",
        )

    def total_annual_cost(self, monthly_costs: Iterable[float]) -> float:
        return sum(cost * 12 for cost in monthly_costs)

    def summary_framing(
        self, total_monthly_cost: float, currency: CurrencyCode | str
    ) -> dict[str, str]:
        annual = total_monthly_cost * 12
        return {
            "monthly_total": f"{self.format_currency(total_monthly_cost, currency)}/month",
            "annual_total": f"{self.format_currency(annual, currency)}/year",
            "context": self.context(annual, currency),
        }


class SharkService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today or date.today()
        self.now = now or datetime.utcnow()
        self.detector = SubscriptionDetector()
        self.zombies = ZombieDetector(self.today)
        self.framing = AnnualizedFraming()

    def _subscriptions(self, *criteria) -> list[Subscription]:
        return list(
            self.session.scalars(
                select(Subscription)
                .where(Subscription.user_id == self.user_id, *criteria)
                .options(selectinload(Subscription.swipe_decisions))
                .order_by(Subscription.monthly_cost.desc(), Subscription.id)
            )
        )

    def get(self, subscription_id: int) -> Subscription:
        subscription = self.session.scalar(
            select(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.user_id == self.user_id,
            )
        )
        if subscription is None:
            raise SubscriptionNotFound(subscription_id)
        return subscription

    def describe(self, subscription: Subscription) -> dict[str, object]:
        framing = self.framing.generate(
            float(subscription.monthly_cost), subscription.currency, subscription.name
        )
        decision = subscription.last_decision
        return {
            "id": subscription.id,
            "name": subscription.name,
            "merchant_pattern": subscription.merchant_pattern,
            "category": SubscriptionCategory(subscription.category).value,
            "status": SubscriptionStatus(subscription.status).value,
            "monthly_cost": float(subscription.monthly_cost),
            "annual_cost": float(subscription.annual_cost),
            "previous_monthly_cost": subscription.previous_monthly_cost,
            "price_change_percent": subscription.price_change_percent,
            "currency": CurrencyCode(subscription.currency).value,
            "charge_count": subscription.charge_count,
            "last_charge_date": subscription.last_charge_date,
            "framing": framing.__dict__,
            "last_decision": (
                {
                    "action": SwipeAction(decision.action).value,
                    "decided_at": decision.decided_at,
                }
                if decision
                else None
            ),
        }

    def list_subscriptions(
        self,
        status: Optional[SubscriptionStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> SubscriptionPage:
        everything = self._subscriptions()
        filtered = [s for s in everything if status is None or s.status == status]
        page = filtered[offset : offset + limit]

        counts = {member.value: 0 for member in SubscriptionStatus}
        for sub in everything:
            counts[SubscriptionStatus(sub.status).value] += 1
        live = [s for s in everything if s.status != SubscriptionStatus.cancelled]
        zombies = [s for s in live if s.status == SubscriptionStatus.zombie]
        total_monthly = round(sum(float(s.monthly_cost) for s in live), 2)
        currency = live[0].currency if live else CurrencyCode.ngn
        summary = {
            "total": len(everything),
            "counts": counts,
            "total_monthly_cost": total_monthly,
            "zombie_monthly_cost": round(sum(float(s.monthly_cost) for s in zombies), 2),
            "potential_annual_savings": round(
                self.framing.total_annual_cost(float(s.monthly_cost) for s in zombies), 2
            ),
            "framing": self.framing.summary_framing(total_monthly, currency),
        }
        return SubscriptionPage(
            items=[self.describe(sub) for sub in page],
            summary=summary,
            pagination={"total": len(filtered), "limit": limit, "offset": offset},
        )

    def _detect(self) -> int:
        since = add_months(self.today, -MAX_EXPENSE_AGE_MONTHS)
        expenses = self.session.scalars(
            select(Expense).where(
                Expense.user_id == self.user_id,
                Expense.is_recurring.is_(True),
                Expense.date >= since,
            )
        ).all()
        if len(expenses) < MIN_CHARGES_FOR_SUBSCRIPTION:
            raise InsufficientExpenseData(MIN_CHARGES_FOR_SUBSCRIPTION)

        existing = {s.merchant_pattern.lower(): s for s in self._subscriptions()}
        created = 0
        for found in self.detector.detect(expenses):
            current = existing.get(found.merchant_pattern.lower())
            if current is None:
                self.session.add(
                    Subscription(
                        user_id=self.user_id,
                        name=found.name,
                        merchant_pattern=found.merchant_pattern,
                        category=found.category,
                        monthly_cost=found.monthly_cost,
                        annual_cost=round(found.monthly_cost * 12, 2),
                        currency=found.currency,
                        status=SubscriptionStatus.unknown,
                        first_charge_date=found.first_charge_date,
                        last_charge_date=found.last_charge_date,
                        charge_count=found.charge_count,
                    )
                )
                created += 1
                continue

            old = float(current.monthly_cost)
            current.last_charge_date = found.last_charge_date
            current.charge_count = found.charge_count
            if old > 0 and abs(found.monthly_cost - old) / old > PRICE_CHANGE_THRESHOLD:
                current.previous_monthly_cost = old
                current.monthly_cost = found.monthly_cost
                current.annual_cost = round(found.monthly_cost * 12, 2)
                current.price_change_percent = round((found.monthly_cost - old) / old * 100, 2)
                logger.info(
                    f"shark_price_change: subscription={current.id} "
                    f"old={old} new={found.monthly_cost}"
                )
        self.session.flush()
        return created

    def _needs_review(self, subscription: Subscription) -> bool:
        decision = subscription.last_decision
        if decision is None or decision.action != SwipeAction.keep:
            return True
        return decision.review_after_date is not None and decision.review_after_date < self.now

    def _update_zombies(self) -> int:
        candidates = [
            sub
            for sub in self._subscriptions(
                Subscription.is_active.is_(True),
                Subscription.status != SubscriptionStatus.cancelled,
            )
            if self._needs_review(sub)
        ]
        zombies = 0
        for subscription in candidates:
            subscription.status = self.zombies.status_for(subscription)
            if subscription.status == SubscriptionStatus.zombie:
                zombies += 1
        return zombies

    def audit(self) -> AuditResult:
        try:
            newly = self._detect()
            zombies = self._update_zombies()
            self.session.commit()
        except IkpaError:
            self.session.rollback()
            raise
        except Exception as exc:
            self.session.rollback()
            logger.error(f"shark_audit_failed: user={self.user_id} error={exc}")
            raise AuditOperationFailed(f"Subscription audit failed: {exc}") from exc

        subscriptions = self._subscriptions(Subscription.is_active.is_(True))
        zombie_costs = [
            float(s.monthly_cost) for s in subscriptions if s.status == SubscriptionStatus.zombie
        ]
        currency = (
            CurrencyCode(subscriptions[0].currency).value if subscriptions else CurrencyCode.ngn.value
        )
        result = AuditResult(
            total_subscriptions=len(subscriptions),
            newly_detected=newly,
            zombies_detected=zombies,
            potential_annual_savings=round(self.framing.total_annual_cost(zombie_costs), 2),
            currency=currency,
            audited_at=self.now,
        )
        logger.info(
            f"shark_audit: user={self.user_id} total={result.total_subscriptions} "
            f"new={newly} zombies={zombies}"
        )
        return result

    def record_swipe(
        self, subscription_id: int, action: SwipeAction | str, reason: Optional[str] = None
    ) -> SwipeResult:
        try:
            action = SwipeAction(action)
        except ValueError as exc:
            raise InvalidSwipeAction(
                f"Unknown swipe action '{action}'",
                {"allowed": [member.value for member in SwipeAction]},
            ) from exc

        subscription = self.get(subscription_id)
        if action == SwipeAction.cancel and subscription.status == SubscriptionStatus.cancelled:
            raise SubscriptionCancellationError(
                "Subscription is already cancelled", {"subscription_id": subscription_id}
            )
        last = subscription.last_decision
        if last is not None and self.now - last.decided_at < SWIPE_COOLDOWN:
            raise DuplicateSwipeDecision(subscription_id)

        decision = SwipeDecision(
            user_id=self.user_id,
            action=action,
            reason=reason,
            review_after_date=(
                self.now + timedelta(days=KEEP_REVIEW_DAYS)
                if action == SwipeAction.keep
                else None
            ),
            decided_at=self.now,
        )
        subscription.swipe_decisions.insert(0, decision)
        if action == SwipeAction.cancel:
            subscription.status = SubscriptionStatus.cancelled
            subscription.is_active = False
        elif action == SwipeAction.keep:
            subscription.status = SubscriptionStatus.active
        self.session.commit()
        logger.info(
            f"shark_swipe: user={self.user_id} subscription={subscription_id} "
            f"action={action.value}"
        )
        return SwipeResult(
            id=decision.id,
            subscription_id=subscription_id,
            action=action,
            decided_at=decision.decided_at,
            message=SWIPE_MESSAGES[action].format(name=subscription.name),
        )

    def cancel(self, subscription_id: int, reason: Optional[str] = None) -> CancellationResult:
        subscription = self.get(subscription_id)
        if subscription.status == SubscriptionStatus.cancelled:
            raise SubscriptionCancellationError(
                "Subscription is already cancelled", {"subscription_id": subscription_id}
            )
        subscription.status = SubscriptionStatus.cancelled
        subscription.is_active = False
        subscription.swipe_decisions.insert(
            0,
            SwipeDecision(
                user_id=self.user_id,
                action=SwipeAction.cancel,
                reason=reason,
                decided_at=self.now,
            ),
        )
        self.session.commit()
        savings = float(subscription.annual_cost)
        formatted = self.framing.format_currency(savings, subscription.currency)
        logger.info(f"shark_cancel: subscription={subscription_id} savings={savings}")
        return CancellationResult(
            subscription_id=subscription_id,
            annual_savings=savings,
            message=f"Subscription marked as cancelled. Annual savings: {formatted}",
            cancelled_at=self.now,
        )

    def detect_overlaps(self) -> list[dict[str, object]]:
        grouped: dict[str, list[Subscription]] = defaultdict(list)
        for sub in self._subscriptions(Subscription.is_active.is_(True)):
            grouped[SubscriptionCategory(sub.category).value].append(sub)
        return [
            {
                "category": category,
                "subscriptions": [
                    {"id": s.id, "name": s.name, "monthly_cost": float(s.monthly_cost)}
                    for s in subs
                ],
                "combined_monthly_cost": round(sum(float(s.monthly_cost) for s in subs), 2),
            }
            for category, subs in grouped.items()
            if len(subs) >= 2
        ]

