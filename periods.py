from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

PRESETS = ("all", "this_month", "last_month", "this_year", "last_3_months")


def local_today() -> date:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).date()


@dataclass(frozen=True)
class Period:
    """Inclusive date window; a ``None`` bound is open on that side."""

    slug: str
    start: Optional[date]
    end: Optional[date]


def _month_end(d: date) -> date:
    first = d.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def _months_back(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) - count
    year = month_index // 12
    month = (month_index % 12) + 1
    day = min(d.day, _month_end(date(year, month, 1)).day)
    return date(year, month, day)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if period:
        if period == "all":
            return Period("all", None, None)
        if period == "this_month":
            return Period("this_month", today.replace(day=1), _month_end(today))
        if period == "last_month":
            last_month_end = today.replace(day=1) - date.resolution
            return Period("last_month", last_month_end.replace(day=1), last_month_end)
        if period == "this_year":
            return Period("this_year", date(today.year, 1, 1), today)
        if period == "last_3_months":
            return Period("last_3_months", _months_back(today, 3), today)
        raise ValueError(
            f"Unknown period '{period}'; expected one of: {', '.join(PRESETS)}"
        )

    try:
        start_date = date.fromisoformat(start) if start else None
        end_date = date.fromisoformat(end) if end else None
    except ValueError as exc:
        raise ValueError("Invalid date format (use YYYY-MM-DD)") from exc
    if start_date and end_date and start_date > end_date:
        raise ValueError("Start date must be before end date")
    if start_date is None and end_date is None:
        return Period("all", None, None)
    return Period("custom", start_date, end_date)
