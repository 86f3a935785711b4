from datetime import date, time
from decimal import ROUND_HALF_UP, Decimal

import pytest

from chorebook.errors import ValidationError
from chorebook.pricing import duration_minutes, format_price, number_of_days, quote
from chorebook.schemas import DateRange


def test_single_date_example():
    q = quote(20, time(10, 0), time(12, 30))
    assert q.duration_minutes == 150
    assert q.hours == Decimal("2.5")
    assert q.number_of_days == 1
    assert q.total_price == Decimal("50.00")


def test_date_range_example():
    rng = DateRange(start_date=date(2024, 1, 1), end_date=date(2024, 1, 3))
    q = quote(20, time(10, 0), time(12, 30), rng)
    assert q.number_of_days == 3
    assert q.total_price == Decimal("150.00")


def test_range_of_one_day_counts_once():
    rng = DateRange(start_date=date(2024, 5, 4), end_date=date(2024, 5, 4))
    assert number_of_days(rng) == 1
    assert number_of_days(None) == 1


def test_inverted_range_rejected():
    with pytest.raises(ValidationError):
        number_of_days(DateRange(start_date=date(2024, 1, 3), end_date=date(2024, 1, 1)))


@pytest.mark.parametrize("start,end", [(time(10, 0), time(10, 0)), (time(12, 0), time(9, 30))])
def test_zero_or_inverted_duration_rejected(start, end):
    with pytest.raises(ValidationError):
        duration_minutes(start, end)


@pytest.mark.parametrize(
    "rate,start,end,days",
    [
        (15, time(8, 0), time(9, 0), 1),
        (12.5, time(9, 15), time(17, 45), 2),
        (33, time(0, 0), time(23, 59), 7),
        (20, time(13, 10), time(13, 11), 30),
    ],
)
def test_total_is_rate_times_hours_times_days(rate, start, end, days):
    rng = None
    if days > 1:
        rng = DateRange(start_date=date(2030, 3, 1), end_date=date(2030, 3, days))
    q = quote(rate, start, end, rng)
    assert q.duration_minutes > 0
    assert q.number_of_days == days
    expected = Decimal(str(rate)) * Decimal(q.duration_minutes) / Decimal(60) * days
    assert q.total_price == expected.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def test_format_price():
    assert format_price(50) == "£50.00"
    assert format_price(Decimal("1234.5")) == "£1,234.50"
