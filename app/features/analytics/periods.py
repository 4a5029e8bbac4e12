"""Current vs previous period date math.

Both periods are whole local days in the analytics time zone. One query
covers ``[previous_period_start, end)``; the flat per-day rows are then split
at ``days_difference`` into the previous and current periods, which must come
out the same length.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta, tzinfo
from typing import TypeVar

from app.core.exceptions import TracePulseError
from app.core.problem_details import ERROR_TYPES

T = TypeVar("T")

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
ONE_DAY = timedelta(days=1)
DEFAULT_LIVE_WINDOW = timedelta(hours=1)


class PeriodLengthMismatchError(TracePulseError):
    """The date histogram did not yield the same number of days per period."""

    error_type_uri: str = ERROR_TYPES["PERIOD_LENGTH_MISMATCH"]

    def __init__(self, previous_count: int, current_count: int, days_difference: int) -> None:
        super().__init__(
            message=(
                f"Expected {days_difference} daily buckets per period, got "
                f"{previous_count} previous and {current_count} current"
            ),
            code="PERIOD_LENGTH_MISMATCH",
            status_code=500,
            details={
                "previous_count": previous_count,
                "current_count": current_count,
                "days_difference": days_difference,
            },
        )


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=value)


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return (value - EPOCH) // timedelta(milliseconds=1)


def day_floor(value: datetime, zone: tzinfo) -> datetime:
    """Local midnight at or before ``value``."""
    return datetime.combine(value.astimezone(zone).date(), time.min, tzinfo=zone)


def day_ceil(value: datetime, zone: tzinfo) -> datetime:
    """Local midnight at or after ``value``."""
    floor = day_floor(value, zone)
    if floor == value:
        return floor
    return datetime.combine(floor.date() + ONE_DAY, time.min, tzinfo=zone)


@dataclass(frozen=True)
class ComparisonDates:
    """Date boundaries for a current vs previous period query.

    Attributes:
        previous_period_start: Local midnight starting the comparison period.
        start: Local midnight starting the requested period.
        end: Exclusive upper bound of the query, snapped to now for live ranges.
        period_end: Local midnight ending the requested period (exclusive).
        days_difference: Length of each period in days.
    """

    previous_period_start: datetime
    start: datetime
    end: datetime
    period_end: datetime
    days_difference: int

    @property
    def previous_period_start_ms(self) -> int:
        return to_epoch_ms(self.previous_period_start)

    @property
    def end_ms(self) -> int:
        return to_epoch_ms(self.end)

    @property
    def last_day_ms(self) -> int:
        """Last millisecond of the requested period, inside its final day."""
        return to_epoch_ms(self.period_end) - 1


def snap_to_now(end: datetime, now: datetime, live_window: timedelta) -> datetime:
    """Move an end date that is within ``live_window`` of now to now.

    Keeps dashboards that end "today" picking up new traces on refetch.
    """
    if now - end < live_window:
        return now
    return end


def current_vs_previous_dates(
    start_date: int,
    end_date: int,
    now: datetime | None = None,
    live_window: timedelta = DEFAULT_LIVE_WINDOW,
    time_zone: tzinfo = UTC,
) -> ComparisonDates:
    """Compute the previous period preceding a requested range.

    The start is floored and the (snapped) end ceiled to local midnight, so
    ``days_difference`` counts every calendar day the range touches. For a
    midnight-to-midnight range this equals the range length in days.

    Args:
        start_date: Range start, epoch milliseconds.
        end_date: Range end, epoch milliseconds.
        now: Current time (defaults to the wall clock).
        live_window: Distance from now under which the end snaps to now.
        time_zone: Zone whose midnights separate days.

    Returns:
        Comparison boundaries. ``days_difference`` is at least 1.
    """
    now = now or datetime.now(UTC)
    start = day_floor(from_epoch_ms(start_date), time_zone)
    end = snap_to_now(from_epoch_ms(end_date), now, live_window)

    days_difference = max(1, (day_ceil(end, time_zone).date() - start.date()).days)

    # Same-zone arithmetic is wall-clock, so these stay on local midnights across DST
    return ComparisonDates(
        previous_period_start=start - days_difference * ONE_DAY,
        start=start,
        end=end,
        period_end=start + days_difference * ONE_DAY,
        days_difference=days_difference,
    )


def split_periods(rows: Sequence[T], days_difference: int) -> tuple[list[T], list[T]]:
    """Split date-ordered rows into (previous_period, current_period).

    Raises:
        PeriodLengthMismatchError: If the rows do not divide into two periods
            of equal length.
    """
    previous, current = list(rows[:days_difference]), list(rows[days_difference:])
    if len(previous) != len(current):
        raise PeriodLengthMismatchError(len(previous), len(current), days_difference)
    return previous, current
