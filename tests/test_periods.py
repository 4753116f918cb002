from datetime import datetime, time

import pytest

from periods import month_period, period_key, period_label, resolve_period


def test_month_period_covers_the_last_day() -> None:
    period = month_period(datetime(2026, 2, 14, 9, 30))

    assert period.slug == "2026-02"
    assert period.start == datetime(2026, 2, 1)
    assert period.end.date().day == 28
    assert period.end.time() == time.max
    assert period.contains(datetime(2026, 2, 28, 23, 0))
    assert not period.contains(datetime(2026, 3, 1))


def test_month_period_rolls_over_the_year() -> None:
    period = month_period(datetime(2026, 12, 31, 23, 59))

    assert period.start == datetime(2026, 12, 1)
    assert period.end.date() == datetime(2026, 12, 31).date()


def test_period_key_and_label() -> None:
    moment = datetime(2026, 10, 19)
    assert period_key(moment) == "2026-10"
    assert period_label(moment) == "October 2026"


def test_resolve_period_variants() -> None:
    now = datetime(2026, 1, 10)

    assert resolve_period(None, None, None, now=now) is None
    assert resolve_period("all", None, None, now=now) is None
    assert resolve_period("this_month", None, None, now=now).slug == "2026-01"
    assert resolve_period("last_month", None, None, now=now).slug == "2025-12"

    custom = resolve_period("custom", "2026-01-02", "2026-01-05", now=now)
    assert custom.start == datetime(2026, 1, 2)
    assert custom.end.date().day == 5


def test_resolve_custom_period_requires_ordered_bounds() -> None:
    with pytest.raises(ValueError):
        resolve_period("custom", None, "2026-01-05")
    with pytest.raises(ValueError):
        resolve_period("custom", "2026-01-06", "2026-01-05")
