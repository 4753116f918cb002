from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _day_end(d: date) -> datetime:
    return datetime.combine(d, time.max)


def _next_month(first: date) -> date:
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Inclusive timestamps covering every instant of the days ``start``..``end``."""
    return _day_start(start), _day_end(end)


def month_period(moment: datetime) -> Period:
    first = moment.date().replace(day=1)
    last = _next_month(first) - timedelta(days=1)
    return Period(period_key(moment), _day_start(first), _day_end(last))


def period_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def period_label(moment: datetime) -> str:
    return moment.strftime("%B %Y")


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Optional[Period]:
    """Listing filter for the expense history; ``None`` means unbounded."""
    now = now or datetime.now()
    if not period or period == "all":
        return None
    if period == "last_month":
        first_this = now.date().replace(day=1)
        last_month_end = first_this - timedelta(days=1)
        return month_period(_day_start(last_month_end))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", *day_bounds(start_date, end_date))

    # this month
    return month_period(now)
