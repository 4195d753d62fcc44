"""
helpers.py - Shared constants and builders for vesting tests

Kept out of conftest.py so test modules can import them directly:

    from tests.helpers import T0, ADMIN, EEFI, eefi, make_engine
"""

from datetime import datetime, timedelta

from hypothesis import strategies as st

from vesting import (
    Asset, VestingParams, ScheduleEngine, StaticAccessControl,
    RecordingTransferAgent,
)


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = datetime(2024, 1, 1, 12, 0, 0)
CLIFF = timedelta(weeks=52)
VESTING = timedelta(weeks=55)
ADMIN = "multisig"

EEFI = Asset("EEFI", 18, "Amplesense Elastic Finance")
USDC = Asset("USDC", 6, "USD Coin")
OLD = Asset("OLD", 18, "Legacy token")


# =============================================================================
# BUILDERS
# =============================================================================

def eefi(amount) -> int:
    """Whole (or Decimal/str) EEFI to base units."""
    return EEFI.to_base_units(amount)


def usdc(amount) -> int:
    return USDC.to_base_units(amount)


def make_params(
    asset: str = "EEFI",
    is_fixed: bool = False,
    cliff: timedelta = CLIFF,
    vesting: timedelta = VESTING,
    start: datetime = T0,
) -> VestingParams:
    """Schedule parameters with the standard 52w cliff / 55w vesting."""
    return VestingParams(asset, is_fixed, cliff, vesting, start)


def make_engine(deposit: int = 5000, agent=None) -> ScheduleEngine:
    """Engine with EEFI registered and `deposit` whole EEFI in custody."""
    engine = ScheduleEngine(
        transfer_agent=agent or RecordingTransferAgent(),
        access_control=StaticAccessControl({ADMIN}),
    )
    engine.register_asset(ADMIN, EEFI)
    if deposit:
        engine.deposit("EEFI", eefi(deposit), T0)
    return engine


def configure_purchase(engine: ScheduleEngine) -> ScheduleEngine:
    """EEFI priced at 12 USDC, threshold 3000 EEFI, 2% released above it."""
    engine.set_vesting_token_price(ADMIN, "EEFI", 12)
    engine.add_payment_asset(ADMIN, "EEFI", USDC)
    engine.set_purchase_amount_threshold(ADMIN, 3000)
    engine.set_release_percentage(ADMIN, 2)
    return engine


def configure_swap(engine: ScheduleEngine) -> ScheduleEngine:
    """OLD authorized at 1 OLD -> 0.25 EEFI, swapping switched on."""
    engine.set_swap_ratio(ADMIN, 1, 4)
    engine.add_authorized_swap_asset(ADMIN, OLD)
    engine.set_swapping_status(ADMIN, True)
    return engine


def assert_conserved(engine: ScheduleEngine) -> None:
    """Fail with the discrepancy list if locked/held bookkeeping is off."""
    report = engine.verify_conservation()
    assert report['valid'], report['discrepancies']


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

BENEFICIARIES = ["alice", "bob", "carol"]


@st.composite
def operation(draw):
    """Generate one engine operation as (kind, who, amount, index, fixed, weeks)."""
    kind = draw(st.sampled_from(
        ["grant", "purchase", "swap", "claim", "cancel", "withdraw", "deposit", "advance"]
    ))
    who = draw(st.sampled_from(BENEFICIARIES))
    amount = draw(st.integers(min_value=1, max_value=eefi(3000)))
    index = draw(st.integers(min_value=0, max_value=5))
    fixed = draw(st.booleans())
    weeks = draw(st.integers(min_value=0, max_value=20))
    return (kind, who, amount, index, fixed, weeks)


def apply_operation(engine: ScheduleEngine, op, now: datetime) -> datetime:
    """
    Apply one generated operation to an engine set up with configure_purchase
    and configure_swap; returns the possibly advanced time.
    """
    kind, who, amount, index, fixed, weeks = op
    params = make_params(is_fixed=fixed, start=now)
    if kind == "grant":
        engine.grant(ADMIN, who, amount, params, now)
    elif kind == "purchase":
        engine.purchase(who, usdc(1) + amount // 10**12, "USDC", params, now)
    elif kind == "swap":
        engine.swap(who, amount, "OLD", params, now)
    elif kind == "claim":
        engine.claim(index, who, now)
    elif kind == "cancel":
        engine.cancel(ADMIN, who, index, now)
    elif kind == "withdraw":
        engine.withdraw(ADMIN, amount, "EEFI", now=now)
    elif kind == "deposit":
        engine.deposit("EEFI", amount, now)
    else:
        return now + timedelta(weeks=weeks)
    return now
