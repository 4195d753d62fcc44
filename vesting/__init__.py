"""
vesting - Vesting Schedule Engine

Time-locked distribution of fungible assets to many beneficiaries with
cliff + linear release, fed by administrative grants, paid purchases and
asset swaps, over a ledger that never promises more than it holds.

Usage:
    from datetime import datetime, timedelta
    from vesting import ScheduleEngine, StaticAccessControl, Asset, VestingParams

    engine = ScheduleEngine(access_control=StaticAccessControl({"multisig"}))
    eefi = Asset("EEFI", 18)
    engine.register_asset("multisig", eefi)
    engine.deposit("EEFI", eefi.to_base_units(5000))

    now = datetime(2024, 1, 1)
    params = VestingParams("EEFI", False, timedelta(weeks=52), timedelta(weeks=55), now)
    schedule = engine.grant("multisig", "alice", eefi.to_base_units(1000), params, now)

    # Anyone may claim; funds go to the beneficiary
    result = engine.claim(schedule.id, "alice", now + timedelta(weeks=55))
"""

# Core types
from .core import (
    Asset,
    VestingParams,
    VestingSchedule,
    ScheduleStatus,
    ScheduleOrigin,
    TransferIntent,
    TransferKind,
    SwapDestination,
    EventType,
    EngineEvent,
    ClaimResult,
    CancelResult,
    PurchaseQuote,
    PurchaseResult,
    SwapQuote,
    SwapResult,
    WithdrawResult,
    TransferAgent,
    AccessControl,
    VestingError,
    InvalidVestingParams,
    CliffNotReached,
    InsufficientUnlockedSupply,
    UnapprovedExchangeAsset,
    UnauthorizedSwapAsset,
    VestingInactive,
    PurchaseInactive,
    SwappingInactive,
    FixedScheduleNotCancellable,
    NotClaimable,
    ScheduleNotFound,
    ScheduleNotActive,
    Unauthorized,
    AssetNotRegistered,
    OperationInProgress,
    TransferFailed,
    to_base_units,
    from_base_units,
    PRICE_DECIMALS,
    PRICE_SCALE,
    DEFAULT_START_TIME_TOLERANCE,
)

# Configuration
from .config import (
    VestingConfig,
    PriceEntry,
    SwapConfig,
    DurationBounds,
)

# Bookkeeping
from .asset_ledger import AssetLedger, LedgerEntry
from .schedule_store import ScheduleStore

# Pure calculations
from .vesting_math import (
    vested_amount,
    claimable_amount,
    linear_release,
    require_cliff_reached,
    validate_params,
)
from .pricing import (
    quote_purchase,
    convert_payment,
    compute_bonus,
    price_entry_for,
)
from .swap import (
    quote_swap,
    convert_swap,
    swap_destination,
)

# Collaborators and engine
from .collaborators import StaticAccessControl, RecordingTransferAgent
from .engine import ScheduleEngine


__all__ = [
    # Core
    'Asset', 'VestingParams', 'VestingSchedule', 'ScheduleStatus', 'ScheduleOrigin',
    'TransferIntent', 'TransferKind', 'SwapDestination', 'EventType', 'EngineEvent',
    'ClaimResult', 'CancelResult', 'PurchaseQuote', 'PurchaseResult',
    'SwapQuote', 'SwapResult', 'WithdrawResult',
    'TransferAgent', 'AccessControl',
    'to_base_units', 'from_base_units',
    'PRICE_DECIMALS', 'PRICE_SCALE', 'DEFAULT_START_TIME_TOLERANCE',
    # Exceptions
    'VestingError', 'InvalidVestingParams', 'CliffNotReached',
    'InsufficientUnlockedSupply', 'UnapprovedExchangeAsset', 'UnauthorizedSwapAsset',
    'VestingInactive', 'PurchaseInactive', 'SwappingInactive',
    'FixedScheduleNotCancellable', 'NotClaimable', 'ScheduleNotFound',
    'ScheduleNotActive', 'Unauthorized', 'AssetNotRegistered', 'OperationInProgress',
    'TransferFailed',
    # Configuration
    'VestingConfig', 'PriceEntry', 'SwapConfig', 'DurationBounds',
    # Bookkeeping
    'AssetLedger', 'LedgerEntry', 'ScheduleStore',
    # Vesting math
    'vested_amount', 'claimable_amount', 'linear_release',
    'require_cliff_reached', 'validate_params',
    # Pricing
    'quote_purchase', 'convert_payment', 'compute_bonus', 'price_entry_for',
    # Swap
    'quote_swap', 'convert_swap', 'swap_destination',
    # Engine
    'StaticAccessControl', 'RecordingTransferAgent', 'ScheduleEngine',
]

__version__ = '1.0.0'
