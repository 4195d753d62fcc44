"""
test_vesting_math.py - Unit tests for pure vesting calculations

Tests:
- linear_release: boundaries, truncation
- vested_amount / claimable_amount: cliff gate, linear ramp, terminal states
- require_cliff_reached
- validate_params: ordering, zero durations, start-time tolerance, bounds
"""

import pytest
from datetime import timedelta

from vesting import (
    VestingSchedule, VestingParams, ScheduleStatus, ScheduleOrigin,
    DurationBounds, InvalidVestingParams, CliffNotReached,
    linear_release, vested_amount, claimable_amount,
    require_cliff_reached, validate_params,
    DEFAULT_START_TIME_TOLERANCE,
)

from tests.helpers import T0, CLIFF, VESTING, eefi


TOTAL = eefi(1000)


def _schedule(**overrides) -> VestingSchedule:
    fields = dict(
        id=0, beneficiary="alice", asset="EEFI", total_amount=TOTAL,
        start_time=T0, cliff_duration=CLIFF, vesting_duration=VESTING,
        is_fixed=False, origin=ScheduleOrigin.GRANT,
    )
    fields.update(overrides)
    return VestingSchedule(**fields)


# ============================================================================
# linear_release
# ============================================================================

class TestLinearRelease:

    def test_zero_at_start(self):
        assert linear_release(1000, T0, VESTING, T0) == 0

    def test_zero_before_start(self):
        assert linear_release(1000, T0, VESTING, T0 - timedelta(days=1)) == 0

    def test_full_at_end(self):
        assert linear_release(1000, T0, VESTING, T0 + VESTING) == 1000

    def test_full_after_end(self):
        assert linear_release(1000, T0, VESTING, T0 + VESTING * 3) == 1000

    def test_truncates(self):
        """1000 * 1/3 rounds down to 333, never up."""
        span = timedelta(seconds=3)
        assert linear_release(1000, T0, span, T0 + timedelta(seconds=1)) == 333
        assert linear_release(1000, T0, span, T0 + timedelta(seconds=2)) == 666

    def test_microsecond_resolution(self):
        span = timedelta(microseconds=4)
        assert linear_release(8, T0, span, T0 + timedelta(microseconds=1)) == 2


# ============================================================================
# vested_amount / claimable_amount
# ============================================================================

class TestVestedAmount:
    """52 week cliff, 55 week vesting, 1000 EEFI."""

    def test_zero_before_cliff(self):
        schedule = _schedule()
        assert vested_amount(schedule, T0 + CLIFF - timedelta(microseconds=1)) == 0

    def test_at_cliff_accrued_from_start(self):
        assert vested_amount(_schedule(), T0 + CLIFF) == TOTAL * 52 // 55

    def test_linear_between_cliff_and_end(self):
        now = T0 + timedelta(weeks=53, days=3)
        elapsed = timedelta(weeks=53, days=3) // timedelta(microseconds=1)
        span = VESTING // timedelta(microseconds=1)
        assert vested_amount(_schedule(), now) == TOTAL * elapsed // span

    def test_full_at_end(self):
        assert vested_amount(_schedule(), T0 + VESTING) == TOTAL

    def test_never_exceeds_total(self):
        assert vested_amount(_schedule(), T0 + timedelta(weeks=500)) == TOTAL

    def test_cliff_equal_to_vesting(self):
        schedule = _schedule(cliff_duration=VESTING)
        assert vested_amount(schedule, T0 + VESTING - timedelta(seconds=1)) == 0
        assert vested_amount(schedule, T0 + VESTING) == TOTAL

    def test_cancelled_frozen_at_claimed(self):
        schedule = _schedule(claimed_amount=eefi(10), status=ScheduleStatus.CANCELLED)
        assert vested_amount(schedule, T0 + timedelta(weeks=100)) == eefi(10)

    def test_exhausted_is_total(self):
        schedule = _schedule(claimed_amount=TOTAL, status=ScheduleStatus.EXHAUSTED)
        assert vested_amount(schedule, T0) == TOTAL


class TestClaimableAmount:

    def test_subtracts_claimed(self):
        schedule = _schedule(claimed_amount=eefi(900))
        assert claimable_amount(schedule, T0 + VESTING) == eefi(100)

    def test_zero_before_cliff(self):
        assert claimable_amount(_schedule(), T0 + timedelta(weeks=1)) == 0

    def test_never_negative(self):
        schedule = _schedule(claimed_amount=eefi(999))
        assert claimable_amount(schedule, T0 + CLIFF) == 0

    @pytest.mark.parametrize("status", [ScheduleStatus.CANCELLED, ScheduleStatus.EXHAUSTED])
    def test_terminal_claims_nothing(self, status):
        claimed = TOTAL if status is ScheduleStatus.EXHAUSTED else eefi(5)
        schedule = _schedule(claimed_amount=claimed, status=status)
        assert claimable_amount(schedule, T0 + VESTING) == 0


class TestCliffGate:

    def test_before_cliff_raises(self):
        with pytest.raises(CliffNotReached, match="cliff ends"):
            require_cliff_reached(_schedule(), T0 + CLIFF - timedelta(seconds=1))

    def test_at_cliff_passes(self):
        require_cliff_reached(_schedule(), T0 + CLIFF)


# ============================================================================
# validate_params
# ============================================================================

def _params(cliff=CLIFF, vesting=VESTING, start=T0) -> VestingParams:
    return VestingParams("EEFI", False, cliff, vesting, start)


class TestValidateParams:

    def test_valid(self):
        validate_params(_params(), T0, DEFAULT_START_TIME_TOLERANCE)

    def test_vesting_shorter_than_cliff(self):
        with pytest.raises(InvalidVestingParams, match="shorter than cliff"):
            validate_params(_params(cliff=VESTING, vesting=CLIFF), T0,
                            DEFAULT_START_TIME_TOLERANCE)

    def test_zero_cliff(self):
        with pytest.raises(InvalidVestingParams, match="positive"):
            validate_params(_params(cliff=timedelta(0)), T0, DEFAULT_START_TIME_TOLERANCE)

    def test_zero_vesting(self):
        with pytest.raises(InvalidVestingParams):
            validate_params(_params(cliff=timedelta(0), vesting=timedelta(0)), T0,
                            DEFAULT_START_TIME_TOLERANCE)

    def test_equal_cliff_and_vesting_allowed(self):
        validate_params(_params(cliff=VESTING), T0, DEFAULT_START_TIME_TOLERANCE)

    def test_start_inside_tolerance(self):
        validate_params(_params(start=T0 + timedelta(hours=1)), T0, timedelta(hours=1))
        validate_params(_params(start=T0 - timedelta(hours=1)), T0, timedelta(hours=1))

    def test_start_too_far_in_past(self):
        with pytest.raises(InvalidVestingParams, match="deviates"):
            validate_params(_params(start=T0 - timedelta(days=30)), T0, timedelta(hours=1))

    def test_start_too_far_in_future(self):
        with pytest.raises(InvalidVestingParams, match="deviates"):
            validate_params(_params(start=T0 + timedelta(hours=1, seconds=1)), T0,
                            timedelta(hours=1))

    def test_bounds_applied_when_given(self):
        bounds = DurationBounds(min_cliff=timedelta(weeks=4), max_vesting=timedelta(weeks=52))
        with pytest.raises(InvalidVestingParams, match="above maximum"):
            validate_params(_params(), T0, DEFAULT_START_TIME_TOLERANCE, bounds)

    def test_bounds_ignored_when_none(self):
        validate_params(_params(cliff=timedelta(days=1)), T0, DEFAULT_START_TIME_TOLERANCE, None)
