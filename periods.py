from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from models import BudgetPeriod


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def resolve_budget_period(
    period: BudgetPeriod | str,
    *,
    today: Optional[date] = None,
) -> Period:
    """Return the calendar window of ``period`` that contains ``today``.

    Weeks start on Monday, quarters on January, April, July and October.
    """
    today = today or date.today()
    period = BudgetPeriod(period)

    if period == BudgetPeriod.weekly:
        start = today - timedelta(days=today.weekday())
        return Period(period.value, start, start + timedelta(days=6))
    if period == BudgetPeriod.quarterly:
        first_month = ((today.month - 1) // 3) * 3 + 1
        start = date(today.year, first_month, 1)
        return Period(period.value, start, _month_end(today.year, first_month + 2))
    if period == BudgetPeriod.yearly:
        return Period(period.value, date(today.year, 1, 1), date(today.year, 12, 31))

    # monthly
    start = today.replace(day=1)
    return Period(period.value, start, _month_end(today.year, today.month))


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end``, never negative."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    return max(0, months)


def add_months(day: date, count: int) -> date:
    month_index = day.year * 12 + (day.month - 1) + count
    year, month0 = divmod(month_index, 12)
    month = month0 + 1
    return date(year, month, min(day.day, _month_end(year, month).day))
