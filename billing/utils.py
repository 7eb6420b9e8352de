"""
Date and money helpers shared by the billing services.
"""

from datetime import date, timedelta, timezone as dt_timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from django.http import HttpRequest
from django.utils import timezone

CENT = Decimal('0.01')

FREQUENCY_INTERVALS = {
    "weekly": timedelta(days=7),
    "biweekly": timedelta(days=14),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
    "yearly": relativedelta(years=1),
}


def utc_today() -> date:
    """Trigger-time date in UTC, no time-of-day component."""
    return timezone.now().astimezone(dt_timezone.utc).date()


def is_valid_frequency(frequency: Any) -> bool:
    return frequency in FREQUENCY_INTERVALS


def add_interval(start: date, frequency: str, times: int = 1) -> date:
    """
    Advance ``start`` by ``times`` frequency intervals.

    Calendar-month frequencies keep the day of month and clamp to the month
    length (Jan 31 + 1 month is Feb 28/29).
    """
    try:
        interval = FREQUENCY_INTERVALS[frequency]
    except KeyError:
        raise ValueError(f"Unknown frequency: {frequency!r}")
    return start + interval * times


def compute_next_run_date(start_date: date, last_run_date: Optional[date], frequency: str) -> date:
    """First run happens on the start date; every later run one interval after the previous one."""
    if not is_valid_frequency(frequency):
        raise ValueError(f"Unknown frequency: {frequency!r}")
    if last_run_date is None:
        return start_date
    return add_interval(last_run_date, frequency)


def to_decimal(value: Any, default: Decimal = Decimal('0')) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def get_client_ip(request: HttpRequest) -> Optional[str]:
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')
