from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    first = month_start(day)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def shift_months(day: date, count: int) -> date:
    total = day.year * 12 + (day.month - 1) + count
    return date(total // 12, total % 12 + 1, 1)


def month_window(today: date, months: int) -> list[Period]:
    """The last ``months`` calendar months, oldest first, ending with today's."""
    periods: list[Period] = []
    for offset in range(months - 1, -1, -1):
        start = shift_months(today, -offset)
        periods.append(Period(start.strftime("%Y-%m"), start, month_end(start)))
    return periods


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), date.max)
    if period == "last_month":
        last_month_end = month_start(today) - date.resolution
        return Period("last_month", month_start(last_month_end), last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period == "this_month":
        return Period("this_month", month_start(today), month_end(today))
    raise ValueError(f"Unknown period: {period}")
