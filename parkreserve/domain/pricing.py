# File: parkreserve/domain/pricing.py
"""
Cost Calculator

Single source of truth for parking cost. Every amount in the code base
comes from calculate_cost:

    cost = ceil(max(minimum, hours_between(entry, exit)) * hourly_rate)

1. calculate_estimated_cost - reservation estimate and ticket display,
   one-hour minimum
2. calculate_stay_cost - settlement of a real stay at exit, billed on the
   elapsed time only

Arithmetic is done in Decimal so the ceiling never rounds float noise up.
"""

from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Union

MINIMUM_BILLABLE_HOURS = Decimal('1')
SECONDS_PER_HOUR = Decimal('3600')

Rate = Union[int, float, Decimal]


def hours_between(entry: datetime, exit: datetime) -> Decimal:
    """Elapsed hours between two instants; negative when exit precedes entry"""
    delta = exit - entry
    seconds = Decimal(delta.days) * Decimal('86400') + Decimal(delta.seconds) \
        + Decimal(delta.microseconds) / Decimal('1000000')
    return seconds / SECONDS_PER_HOUR


def billable_hours(entry: datetime, exit: datetime, minimum: Decimal = MINIMUM_BILLABLE_HOURS) -> Decimal:
    """Elapsed hours, never below minimum"""
    return max(minimum, hours_between(entry, exit))


def calculate_cost(entry: datetime, exit: datetime, hourly_rate: Rate, minimum_hours: Decimal) -> int:
    """
    Cost of a stay from entry to exit at hourly_rate, rounded up to a whole
    currency unit

    Raises: ValueError if hourly_rate is negative
    """
    rate = Decimal(str(hourly_rate))
    if rate < 0:
        raise ValueError(f"Hourly rate cannot be negative: {hourly_rate}")

    amount = billable_hours(entry, exit, minimum_hours) * rate
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


def calculate_estimated_cost(entry: datetime, exit: datetime, hourly_rate: Rate) -> int:
    """Estimate for a planned stay; minimum billable duration is one hour"""
    return calculate_cost(entry, exit, hourly_rate, MINIMUM_BILLABLE_HOURS)


def calculate_stay_cost(entry: datetime, exit: datetime, hourly_rate: Rate) -> int:
    """Amount charged at exit: ceil(elapsed hours * rate), never negative"""
    return calculate_cost(entry, exit, hourly_rate, Decimal('0'))
