from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

from .errors import ValidationError
from .schemas import DateRange

# only the time-of-day part matters for duration
REFERENCE_DATE = date(2000, 1, 1)
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Quote:
    duration_minutes: int
    number_of_days: int
    total_price: Decimal

    @property
    def hours(self) -> Decimal:
        return Decimal(self.duration_minutes) / Decimal(60)


def duration_minutes(start_time: time, end_time: time) -> int:
    start = datetime.combine(REFERENCE_DATE, start_time)
    end = datetime.combine(REFERENCE_DATE, end_time)
    minutes = int((end - start).total_seconds() // 60)
    if minutes <= 0:
        raise ValidationError("End time must be after start time")
    return minutes


def number_of_days(date_range: DateRange | None = None) -> int:
    if date_range is None:
        return 1
    span = (date_range.end_date - date_range.start_date).days
    if span < 0:
        raise ValidationError("End date cannot be before start date")
    # inclusive of both endpoints
    return span + 1


def quote(
    rate,
    start_time: time,
    end_time: time,
    date_range: DateRange | None = None,
) -> Quote:
    minutes = duration_minutes(start_time, end_time)
    days = number_of_days(date_range)
    total = Decimal(str(rate)) * Decimal(minutes) / Decimal(60) * days
    return Quote(
        duration_minutes=minutes,
        number_of_days=days,
        total_price=total.quantize(CENTS, rounding=ROUND_HALF_UP),
    )


def format_price(amount) -> str:
    value = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return f"£{value:,.2f}"
