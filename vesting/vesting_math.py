"""
vesting_math.py - Pure vesting calculations

Stateless functions over VestingSchedule snapshots:
1. vested_amount() - amount released by the schedule as of a time
2. claimable_amount() - vested minus already claimed
3. require_cliff_reached() - claim gate
4. validate_params() - schedule parameter validation, optionally against
   per-path DurationBounds

Vesting accrues linearly from start_time; the cliff only gates claiming.
All arithmetic is integer and truncating, so a schedule can never release
more than total_amount and rounding dust stays locked until the end.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional

from .core import (
    VestingSchedule, VestingParams, ScheduleStatus,
    InvalidVestingParams, CliffNotReached,
    TIME_RESOLUTION,
)
from .config import DurationBounds


def _ticks(span: timedelta) -> int:
    """Convert a timedelta to integer microseconds."""
    return span // TIME_RESOLUTION


def linear_release(
    total_amount: int,
    start_time: datetime,
    vesting_duration: timedelta,
    now: datetime,
) -> int:
    """
    Linear release of total_amount over vesting_duration, ignoring the cliff.

    Returns 0 before start_time and total_amount at or after the end.
    """
    if now <= start_time:
        return 0
    if now >= start_time + vesting_duration:
        return total_amount
    return total_amount * _ticks(now - start_time) // _ticks(vesting_duration)


def vested_amount(schedule: VestingSchedule, now: datetime) -> int:
    """
    Amount of a schedule that has vested as of `now`.

    - Cancelled: frozen at claimed_amount (no further accrual).
    - Exhausted: total_amount.
    - Active before the cliff: 0.
    - Active at or after start + vesting_duration: total_amount.
    - Otherwise: total_amount * (now - start) / vesting_duration, truncated.

    Args:
        schedule: Schedule snapshot
        now: Time of evaluation

    Returns:
        Vested amount in base units, never above total_amount
    """
    if schedule.status is ScheduleStatus.CANCELLED:
        return schedule.claimed_amount
    if schedule.status is ScheduleStatus.EXHAUSTED:
        return schedule.total_amount
    if now < schedule.cliff_end:
        return 0
    return linear_release(
        schedule.total_amount, schedule.start_time, schedule.vesting_duration, now
    )


def claimable_amount(schedule: VestingSchedule, now: datetime) -> int:
    """Vested but not yet claimed; 0 for terminal schedules and before the cliff."""
    return max(vested_amount(schedule, now) - schedule.claimed_amount, 0)


def require_cliff_reached(schedule: VestingSchedule, now: datetime) -> None:
    """
    Gate for claims.

    Raises:
        CliffNotReached: If now is strictly before start_time + cliff_duration
    """
    if now < schedule.cliff_end:
        raise CliffNotReached(
            f"Schedule {schedule.beneficiary}#{schedule.id}: cliff ends "
            f"{schedule.cliff_end.isoformat()}, now {now.isoformat()}"
        )


def validate_params(
    params: VestingParams,
    now: datetime,
    tolerance: timedelta,
    bounds: Optional[DurationBounds] = None,
) -> None:
    """
    Validate schedule parameters for creation at `now`.

    Args:
        params: Requested schedule parameters
        now: Current time supplied by the caller
        tolerance: Maximum allowed |start_time - now|
        bounds: Path-specific duration bounds; None skips the bounds check

    Raises:
        InvalidVestingParams: On zero/negative durations, vesting < cliff,
            a start_time outside the tolerance window, or durations outside
            the bounds
    """
    cliff = params.cliff_duration
    vesting = params.vesting_duration

    if cliff <= timedelta(0) or vesting <= timedelta(0):
        raise InvalidVestingParams(
            f"Durations must be positive: cliff={cliff}, vesting={vesting}"
        )
    if vesting < cliff:
        raise InvalidVestingParams(
            f"Vesting duration {vesting} shorter than cliff {cliff}"
        )
    if abs(params.start_time - now) > tolerance:
        raise InvalidVestingParams(
            f"Start time {params.start_time.isoformat()} deviates from "
            f"{now.isoformat()} by more than {tolerance}"
        )
    if bounds is not None:
        bounds.check(cliff, vesting)
