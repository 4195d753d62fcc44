"""
Idempotency Conformance Tests

INVARIANT: Repeating a claim at the same instant releases nothing twice.

    ∀ schedule s, time t:
        claim(s, t) then claim(s, t) ⟹ second claim amount == 0
        state after second claim == state after first claim

Cancellation of an already cancelled schedule is rejected rather than
repeated.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta

from vesting import ScheduleNotActive

from tests.helpers import T0, VESTING, ADMIN, eefi, make_engine, make_params


class TestIdempotencyProperties:
    """Property-based idempotency tests."""

    @given(
        st.integers(min_value=1, max_value=eefi(5000)),
        st.integers(min_value=52 * 7 * 24, max_value=60 * 7 * 24),
        st.integers(min_value=2, max_value=5),
    )
    @settings(max_examples=50, deadline=None)
    def test_repeated_claim_releases_once(self, amount, hours, repeats):
        """
        PROPERTY: Claiming N times at the same instant equals claiming once.
        """
        engine = make_engine(5000)
        schedule = engine.grant(ADMIN, "alice", amount, make_params(), T0)
        now = T0 + timedelta(hours=hours)

        first = engine.claim(schedule.id, "alice", now)
        state = (engine.ledger.entry("EEFI"), engine.get_schedule("alice", schedule.id))
        transfers = list(engine.transfer_agent.transfers)

        for _ in range(repeats - 1):
            assert engine.claim(schedule.id, "alice", now).amount == 0

        assert (engine.ledger.entry("EEFI"), engine.get_schedule("alice", schedule.id)) == state
        assert engine.transfer_agent.transfers == transfers
        assert engine.transfer_agent.total("push", "EEFI", "alice") == first.amount


class TestIdempotencyExamples:
    """Explicit idempotency examples."""

    def test_claim_after_exhaustion(self):
        engine = make_engine(5000)
        schedule = engine.grant(ADMIN, "alice", eefi(1000), make_params(), T0)
        engine.claim(schedule.id, "alice", T0 + VESTING)
        for week in (56, 80, 200):
            assert engine.claim(schedule.id, "alice", T0 + timedelta(weeks=week)).amount == 0
        assert engine.transfer_agent.total("push", "EEFI", "alice") == eefi(1000)

    def test_cancel_is_not_repeated(self):
        engine = make_engine(5000)
        schedule = engine.grant(ADMIN, "alice", eefi(1000), make_params(), T0)
        engine.cancel(ADMIN, "alice", schedule.id, T0)
        held, locked = engine.held_amount("EEFI"), engine.locked_amount("EEFI")

        with pytest.raises(ScheduleNotActive):
            engine.cancel(ADMIN, "alice", schedule.id, T0)

        assert (engine.held_amount("EEFI"), engine.locked_amount("EEFI")) == (held, locked)
