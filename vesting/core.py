"""
Core types and pure helpers for the vesting system.

This module provides the foundational data structures and protocols:
1. Protocols: TransferAgent and AccessControl for external collaborators
2. Immutable data structures: Asset, VestingParams, VestingSchedule, TransferIntent
3. Result records and audit events emitted by the engine
4. Exceptions: VestingError and the rejection taxonomy
5. Base-unit conversion helpers

Quantities are integers in an asset's base units. Times are datetimes and
durations are timedeltas; nothing in this module reads a wall clock.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, localcontext
from enum import Enum
from typing import (
    Dict, Optional, Any, Protocol, Tuple, Union, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for purchase prices (payment units per one target unit).
PRICE_DECIMALS = 4
PRICE_SCALE = 10 ** PRICE_DECIMALS

# Maximum percentage of a purchase that can be released as a bonus.
MAX_RELEASE_PERCENTAGE = 100

# Default window either side of `now` that a schedule's start_time may fall in.
DEFAULT_START_TIME_TOLERANCE = timedelta(hours=1)

# Resolution used for integer time arithmetic.
TIME_RESOLUTION = timedelta(microseconds=1)

# Decimal precision for base-unit conversion. Wide enough that 18-decimal
# assets with very large supplies convert without context rounding.
CONVERSION_PRECISION = 80


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Human-scale amount accepted by conversion helpers.
HumanAmount = Union[Decimal, int, str]

# Mapping from asset symbol to decimal exponent.
DecimalsMap = Dict[str, int]

# Key of a schedule in the store: (beneficiary, schedule id).
ScheduleKey = Tuple[str, int]


# ============================================================================
# ENUMS
# ============================================================================

class ScheduleStatus(Enum):
    """
    Lifecycle state of a vesting schedule.

    ACTIVE: Schedule is accruing and claimable after the cliff.
    EXHAUSTED: Everything granted has been claimed (terminal).
    CANCELLED: Schedule was cancelled by a privileged caller (terminal).
    """
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ScheduleStatus.ACTIVE


class ScheduleOrigin(Enum):
    """Origination path that created a schedule."""
    GRANT = "grant"
    PURCHASE = "purchase"
    SWAP = "swap"


class TransferKind(Enum):
    """Direction of an external asset movement relative to the engine."""
    PULL = "pull"    # counterparty -> engine custody
    PUSH = "push"    # engine custody -> counterparty


class SwapDestination(Enum):
    """Where swapped-in asset is routed."""
    LOCK = "lock"
    TREASURY = "treasury"


class EventType(Enum):
    """Kinds of audit events recorded by the engine."""
    ASSET_REGISTERED = "asset_registered"
    DEPOSITED = "deposited"
    SCHEDULE_CREATED = "schedule_created"
    BONUS_RELEASED = "bonus_released"
    SWAPPED = "swapped"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"
    WITHDRAWN = "withdrawn"
    CONFIG_CHANGED = "config_changed"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VestingError(Exception):
    """Base exception for every rejected vesting operation."""
    pass


class InvalidVestingParams(VestingError):
    """Raised when cliff/vesting ordering, durations, bounds or start time are invalid."""
    pass


class CliffNotReached(VestingError):
    """Raised when a claim is attempted before the schedule's cliff elapses."""
    pass


class InsufficientUnlockedSupply(VestingError):
    """Raised when a reservation or withdrawal exceeds the unlocked balance."""
    pass


class UnapprovedExchangeAsset(VestingError):
    """Raised when a purchase pays with an asset not approved for the target."""
    pass


class UnauthorizedSwapAsset(VestingError):
    """Raised when a swap offers an asset that is not on the authorized list."""
    pass


class VestingInactive(VestingError):
    """Raised when administrative grants are switched off."""
    pass


class PurchaseInactive(VestingError):
    """Raised when purchases are switched off."""
    pass


class SwappingInactive(VestingError):
    """Raised when swaps are switched off."""
    pass


class FixedScheduleNotCancellable(VestingError):
    """Raised when cancelling a schedule created with is_fixed=True."""
    pass


class NotClaimable(VestingError):
    """Raised when a claim names a schedule that does not exist for the beneficiary."""
    pass


class ScheduleNotFound(VestingError):
    """Raised when an administrative operation names a missing schedule."""
    pass


class ScheduleNotActive(VestingError):
    """Raised when cancelling a schedule that is already Cancelled or Exhausted."""
    pass


class Unauthorized(VestingError):
    """Raised when a privileged operation is attempted by a non-privileged caller."""
    pass


class AssetNotRegistered(VestingError):
    """Raised when operating on an asset that has no ledger entry."""
    pass


class OperationInProgress(VestingError):
    """
    Raised when an operation on an asset is started while another operation
    on the same asset is still running on this thread, e.g. from inside a
    transfer agent callback.
    """
    pass


class TransferFailed(VestingError):
    """
    Raised when an external transfer fails after internal validation passed.

    Staged ledger and schedule changes are rolled back before this is raised.

    Attributes:
        intent: The transfer that failed.
        completed: Transfers of the same operation that had already succeeded.
    """

    def __init__(
        self,
        message: str,
        intent: Optional['TransferIntent'] = None,
        completed: Tuple['TransferIntent', ...] = (),
    ):
        super().__init__(message)
        self.intent = intent
        self.completed = completed


# ============================================================================
# ASSETS AND BASE UNITS
# ============================================================================

def to_base_units(amount: HumanAmount, decimals: int) -> int:
    """
    Convert a human-scale amount to integer base units, rounding down.

    Args:
        amount: Amount as Decimal, int, or numeric string (floats are rejected)
        decimals: Decimal exponent of the asset

    Returns:
        Integer quantity in base units

    Example:
        to_base_units("2499.998", 18) == 2499998 * 10**15
    """
    if isinstance(amount, float):
        raise ValueError("amount must be Decimal, int or str, not float")
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    value = Decimal(amount) if not isinstance(amount, Decimal) else amount
    if value.is_nan() or value.is_infinite():
        raise ValueError(f"amount must be finite, got {amount}")
    with localcontext() as ctx:
        ctx.prec = CONVERSION_PRECISION
        scaled = value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert integer base units back to an exact human-scale Decimal."""
    with localcontext() as ctx:
        ctx.prec = CONVERSION_PRECISION
        return Decimal(raw).scaleb(-decimals)


@dataclass(frozen=True, slots=True)
class Asset:
    """
    Definition of a fungible asset known to the engine.

    Attributes:
        symbol: Short identifier (e.g., "EEFI", "USDC").
        decimals: Decimal exponent; one whole unit is 10**decimals base units.
        name: Human-readable name.
    """
    symbol: str
    decimals: int
    name: str = ""

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Asset symbol cannot be empty")
        if self.decimals < 0:
            raise ValueError(f"Asset decimals must be non-negative, got {self.decimals}")

    @property
    def one(self) -> int:
        """Base units in one whole unit."""
        return 10 ** self.decimals

    def to_base_units(self, amount: HumanAmount) -> int:
        return to_base_units(amount, self.decimals)

    def from_base_units(self, raw: int) -> Decimal:
        return from_base_units(raw, self.decimals)


# ============================================================================
# SCHEDULES
# ============================================================================

@dataclass(frozen=True, slots=True)
class VestingParams:
    """
    Caller-supplied parameters for a new schedule.

    Attributes:
        asset: Symbol of the asset being vested.
        is_fixed: If True, the schedule can never be cancelled.
        cliff_duration: Span from start_time before any claim is allowed.
        vesting_duration: Span from start_time to full release (>= cliff).
        start_time: Instant the windows are measured from (must be close to now).
    """
    asset: str
    is_fixed: bool
    cliff_duration: timedelta
    vesting_duration: timedelta
    start_time: datetime

    @property
    def cliff_end(self) -> datetime:
        return self.start_time + self.cliff_duration

    @property
    def vesting_end(self) -> datetime:
        return self.start_time + self.vesting_duration


@dataclass(frozen=True, slots=True)
class VestingSchedule:
    """
    Immutable snapshot of one beneficiary's vesting schedule.

    Mutation happens by replacing the record in the ScheduleStore
    (dataclasses.replace), never in place.

    Invariants:
        0 <= claimed_amount <= total_amount
        status == EXHAUSTED  iff  claimed_amount == total_amount
    """
    id: int
    beneficiary: str
    asset: str
    total_amount: int
    start_time: datetime
    cliff_duration: timedelta
    vesting_duration: timedelta
    is_fixed: bool
    origin: ScheduleOrigin
    claimed_amount: int = 0
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    cancelled_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.beneficiary or not self.beneficiary.strip():
            raise ValueError("Schedule beneficiary cannot be empty")
        if self.total_amount <= 0:
            raise ValueError(f"Schedule total_amount must be positive, got {self.total_amount}")
        if not 0 <= self.claimed_amount <= self.total_amount:
            raise ValueError(
                f"claimed_amount {self.claimed_amount} outside [0, {self.total_amount}]"
            )

    @property
    def key(self) -> ScheduleKey:
        return (self.beneficiary, self.id)

    @property
    def cliff_end(self) -> datetime:
        return self.start_time + self.cliff_duration

    @property
    def vesting_end(self) -> datetime:
        return self.start_time + self.vesting_duration

    @property
    def remaining(self) -> int:
        """Amount still locked on behalf of this schedule (0 once terminal)."""
        if self.status is ScheduleStatus.ACTIVE:
            return self.total_amount - self.claimed_amount
        return 0

    def __repr__(self) -> str:
        return (
            f"VestingSchedule({self.beneficiary}#{self.id} {self.asset} "
            f"{self.claimed_amount}/{self.total_amount} {self.status.value})"
        )


# ============================================================================
# TRANSFERS AND EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransferIntent:
    """
    An external asset movement the engine asks a TransferAgent to perform.

    Intents are dispatched only after the operation's state change is staged.
    """
    kind: TransferKind
    asset: str
    counterparty: str
    amount: int
    reason: str

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")
        if not self.counterparty or not self.counterparty.strip():
            raise ValueError("Transfer counterparty cannot be empty")

    def __repr__(self) -> str:
        arrow = "<-" if self.kind is TransferKind.PULL else "->"
        return f"TransferIntent({self.amount} {self.asset} {arrow} {self.counterparty}: {self.reason})"


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """
    Immutable audit record of a committed engine operation.

    Attributes:
        sequence: Monotonic sequence number within the engine.
        event_type: What happened.
        timestamp: Caller-supplied time of the operation (None for untimed ops).
        beneficiary: Schedule owner or counterparty, if any.
        asset: Asset affected, if any.
        amount: Quantity in base units, if any.
        schedule_id: Schedule affected, if any.
        metadata: Extra detail (origin, destination, changed setting, ...).
    """
    sequence: int
    event_type: EventType
    timestamp: Optional[datetime] = None
    beneficiary: Optional[str] = None
    asset: Optional[str] = None
    amount: Optional[int] = None
    schedule_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# RESULT RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Outcome of a claim; amount is 0 for a no-op claim."""
    schedule: VestingSchedule
    amount: int
    transfers: Tuple[TransferIntent, ...] = ()


@dataclass(frozen=True, slots=True)
class CancelResult:
    """Outcome of a cancellation; released is the amount returned to the unlocked pool."""
    schedule: VestingSchedule
    released: int


@dataclass(frozen=True, slots=True)
class PurchaseQuote:
    """Pure result of pricing a purchase."""
    payment_asset: str
    target_asset: str
    payment_amount: int
    desired_amount: int
    bonus_amount: int

    @property
    def vested_amount(self) -> int:
        return self.desired_amount - self.bonus_amount


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    schedule: VestingSchedule
    quote: PurchaseQuote
    transfers: Tuple[TransferIntent, ...] = ()


@dataclass(frozen=True, slots=True)
class SwapQuote:
    """Pure result of converting a swapped-in amount."""
    swap_asset: str
    target_asset: str
    swap_amount: int
    target_amount: int
    destination: SwapDestination


@dataclass(frozen=True, slots=True)
class SwapResult:
    schedule: VestingSchedule
    quote: SwapQuote
    transfers: Tuple[TransferIntent, ...] = ()


@dataclass(frozen=True, slots=True)
class WithdrawResult:
    asset: str
    amount: int
    recipient: str
    transfers: Tuple[TransferIntent, ...] = ()


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TransferAgent(Protocol):
    """
    External collaborator that moves value in and out of engine custody.

    Implementations raise any exception to signal failure; the engine
    converts it to TransferFailed after rolling back staged state.
    """

    def pull(self, asset: str, source: str, amount: int) -> None:
        """Move `amount` of `asset` from `source` into engine custody."""
        ...

    def push(self, asset: str, dest: str, amount: int) -> None:
        """Move `amount` of `asset` from engine custody to `dest`."""
        ...


@runtime_checkable
class AccessControl(Protocol):
    """Capability check consulted before privileged operations."""

    def is_privileged(self, caller: str) -> bool:
        ...
