"""Booking rules for tool rentals.

Everything here is a pure function of its arguments: no session, no clock.
Callers (the rental lifecycle engine) turn a failed check into a domain error.
"""

from __future__ import annotations

import math
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from tool_lending.settings import FRIDAY


CENTS = Decimal("0.01")
MAINTENANCE_IMPORTANCE_LEVELS = ("low", "medium", "high")
DEFAULT_BLOCKING_LEVELS = ("high",)


def is_allowed_anchor(value: date, anchor_weekday: int = FRIDAY) -> bool:
    return value.weekday() == anchor_weekday


def is_valid_interval(start_date: date, end_date: date, anchor_weekday: int = FRIDAY) -> bool:
    return (
        is_allowed_anchor(start_date, anchor_weekday)
        and is_allowed_anchor(end_date, anchor_weekday)
        and end_date > start_date
    )


def intervals_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap test.

    ``[a_start, a_end)`` and ``[b_start, b_end)`` overlap when each starts before
    the other ends. A rental ending on the day the next one starts is a hand-off,
    not a conflict. The three cases (starts inside, ends inside, contains) all
    reduce to this test.
    """
    return a_start < b_end and b_start < a_end


def first_conflict(
    start_date: date,
    end_date: date,
    existing: Iterable[tuple[date, date]],
) -> Optional[tuple[date, date]]:
    for existing_start, existing_end in existing:
        if intervals_overlap(start_date, end_date, existing_start, existing_end):
            return existing_start, existing_end
    return None


def has_conflict(start_date: date, end_date: date, existing: Iterable[tuple[date, date]]) -> bool:
    return first_conflict(start_date, end_date, existing) is not None


def months_since(earlier: date, later: date) -> int:
    """Complete calendar months between two dates (0 when ``later`` precedes ``earlier``)."""
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    if later.day < earlier.day:
        months -= 1
    return max(months, 0)


def is_maintenance_blocked(
    importance: Optional[str],
    interval_months: Optional[int],
    last_maintenance_date: Optional[date],
    today: date,
    blocking_levels: Sequence[str] = DEFAULT_BLOCKING_LEVELS,
) -> bool:
    if (importance or "low").lower() not in blocking_levels:
        return False
    if not interval_months:
        return False
    if last_maintenance_date is None:
        return True
    return months_since(last_maintenance_date, today) > interval_months


def rental_weeks(start_date: date, end_date: date) -> int:
    days = (end_date - start_date).days
    return max(1, math.ceil(days / 7))


def compute_price(
    weekly_rate: Decimal | float | int | None,
    start_date: date,
    end_date: date,
    override: Decimal | float | int | None = None,
) -> Decimal:
    if override is not None:
        return Decimal(str(override)).quantize(CENTS, rounding=ROUND_HALF_UP)
    rate = Decimal(str(weekly_rate or 0))
    return (rate * rental_weeks(start_date, end_date)).quantize(CENTS, rounding=ROUND_HALF_UP)
