from datetime import date

import pytest

import periods
from periods import resolve_period


TODAY = date(2025, 5, 31)


def test_presets_resolve_against_today() -> None:
    assert resolve_period("this_month", None, None, today=TODAY).start == date(2025, 5, 1)
    assert resolve_period("this_month", None, None, today=TODAY).end == date(2025, 5, 31)

    last_month = resolve_period("last_month", None, None, today=TODAY)
    assert (last_month.start, last_month.end) == (date(2025, 4, 1), date(2025, 4, 30))

    this_year = resolve_period("this_year", None, None, today=TODAY)
    assert (this_year.start, this_year.end) == (date(2025, 1, 1), TODAY)

    # Feb has no 31st; the start clamps to the month end
    last_3 = resolve_period("last_3_months", None, None, today=TODAY)
    assert last_3.start == date(2025, 2, 28)


def test_last_month_wraps_year() -> None:
    period = resolve_period("last_month", None, None, today=date(2025, 1, 15))

    assert (period.start, period.end) == (date(2024, 12, 1), date(2024, 12, 31))


def test_no_bounds_means_all() -> None:
    period = resolve_period(None, None, None, today=TODAY)

    assert period.slug == "all"
    assert period.start is None and period.end is None


def test_custom_range_allows_one_sided_bounds() -> None:
    period = resolve_period(None, "2025-01-10", None, today=TODAY)

    assert period.slug == "custom"
    assert period.start == date(2025, 1, 10)
    assert period.end is None


def test_invalid_ranges_are_rejected() -> None:
    with pytest.raises(ValueError, match="Invalid date format"):
        resolve_period(None, "10/01/2025", None, today=TODAY)
    with pytest.raises(ValueError, match="before end date"):
        resolve_period(None, "2025-02-01", "2025-01-01", today=TODAY)
    with pytest.raises(ValueError, match="Unknown period"):
        resolve_period("fortnight", None, None, today=TODAY)


def test_presets_default_to_local_today(monkeypatch) -> None:
    monkeypatch.setattr(periods, "local_today", lambda: date(2024, 2, 10))

    window = resolve_period("this_month", None, None)

    assert (window.start, window.end) == (date(2024, 2, 1), date(2024, 2, 29))
