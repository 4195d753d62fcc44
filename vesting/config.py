"""
config.py - Engine configuration records

The engine holds one immutable VestingConfig. Administrative setters on the
engine build a new config with dataclasses.replace() and swap it in, so an
operation that reads the config once sees a consistent view.

Classes:
- DurationBounds: min/max cliff and vesting for one origination path
- PriceEntry: purchase price and approved payment assets for a target asset
- SwapConfig: swap ratio, authorized swap assets and lock-mode routing
- VestingConfig: everything above plus the three activation switches
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Dict, Mapping, Optional
from types import MappingProxyType

from .core import (
    InvalidVestingParams,
    DEFAULT_START_TIME_TOLERANCE, MAX_RELEASE_PERCENTAGE,
)


def _frozen_map(values: Optional[Mapping[str, int]]) -> Mapping[str, int]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True, slots=True)
class DurationBounds:
    """
    Inclusive bounds on cliff and vesting durations for one origination path.

    A None bound is open on that side.
    """
    min_cliff: Optional[timedelta] = None
    min_vesting: Optional[timedelta] = None
    max_cliff: Optional[timedelta] = None
    max_vesting: Optional[timedelta] = None

    def __post_init__(self):
        if self.min_cliff is not None and self.max_cliff is not None:
            if self.min_cliff > self.max_cliff:
                raise ValueError(f"min_cliff {self.min_cliff} > max_cliff {self.max_cliff}")
        if self.min_vesting is not None and self.max_vesting is not None:
            if self.min_vesting > self.max_vesting:
                raise ValueError(
                    f"min_vesting {self.min_vesting} > max_vesting {self.max_vesting}"
                )

    def check(self, cliff: timedelta, vesting: timedelta) -> None:
        """
        Raises:
            InvalidVestingParams: If either duration falls outside the bounds
        """
        if self.min_cliff is not None and cliff < self.min_cliff:
            raise InvalidVestingParams(f"Cliff {cliff} below minimum {self.min_cliff}")
        if self.max_cliff is not None and cliff > self.max_cliff:
            raise InvalidVestingParams(f"Cliff {cliff} above maximum {self.max_cliff}")
        if self.min_vesting is not None and vesting < self.min_vesting:
            raise InvalidVestingParams(f"Vesting {vesting} below minimum {self.min_vesting}")
        if self.max_vesting is not None and vesting > self.max_vesting:
            raise InvalidVestingParams(f"Vesting {vesting} above maximum {self.max_vesting}")


@dataclass(frozen=True, slots=True)
class PriceEntry:
    """
    Purchase pricing for one target asset.

    Attributes:
        target_decimals: Decimal exponent of the target asset.
        price: Payment-asset units per one target unit, scaled by PRICE_SCALE.
        payment_decimals: Approved payment assets mapped to their decimal exponent.
    """
    target_decimals: int
    price: int
    payment_decimals: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if self.price <= 0:
            raise ValueError(f"price must be positive, got {self.price}")
        if self.target_decimals < 0:
            raise ValueError(f"target_decimals must be non-negative, got {self.target_decimals}")
        for symbol, decimals in self.payment_decimals.items():
            if decimals < 0:
                raise ValueError(f"decimals for {symbol} must be non-negative, got {decimals}")
        object.__setattr__(self, 'payment_decimals', _frozen_map(self.payment_decimals))

    def with_payment_asset(self, symbol: str, decimals: int) -> PriceEntry:
        return replace(self, payment_decimals={**self.payment_decimals, symbol: decimals})

    def without_payment_asset(self, symbol: str) -> PriceEntry:
        remaining = {k: v for k, v in self.payment_decimals.items() if k != symbol}
        return replace(self, payment_decimals=remaining)


@dataclass(frozen=True, slots=True)
class SwapConfig:
    """
    Swap conversion settings.

    Attributes:
        ratio_numerator / ratio_denominator: Target units per swapped unit.
        authorized_swap_assets: Swap-in assets mapped to their decimal exponent.
        lock_mode: Route swapped-in asset to the lock holder (True) or treasury (False).
    """
    ratio_numerator: int = 1
    ratio_denominator: int = 1
    authorized_swap_assets: Mapping[str, int] = field(default_factory=dict)
    lock_mode: bool = False

    def __post_init__(self):
        if self.ratio_numerator <= 0 or self.ratio_denominator <= 0:
            raise ValueError(
                f"swap ratio must be positive, got "
                f"{self.ratio_numerator}/{self.ratio_denominator}"
            )
        object.__setattr__(
            self, 'authorized_swap_assets', _frozen_map(self.authorized_swap_assets)
        )


@dataclass(frozen=True, slots=True)
class VestingConfig:
    """
    Complete engine configuration.

    Defaults mirror a freshly deployed executor: grants and purchases on,
    swapping off, no prices, no authorized swap assets, bounds not enforced.
    """
    vesting_active: bool = True
    purchase_active: bool = True
    swapping_active: bool = False
    purchase_amount_threshold: int = 0
    release_percentage: int = 0
    prices: Mapping[str, PriceEntry] = field(default_factory=dict)
    swap: SwapConfig = field(default_factory=SwapConfig)
    purchase_bounds: DurationBounds = field(default_factory=DurationBounds)
    swap_bounds: DurationBounds = field(default_factory=DurationBounds)
    enforce_duration_bounds: bool = False
    start_time_tolerance: timedelta = DEFAULT_START_TIME_TOLERANCE

    def __post_init__(self):
        if self.purchase_amount_threshold < 0:
            raise ValueError(
                f"purchase_amount_threshold must be non-negative, got "
                f"{self.purchase_amount_threshold}"
            )
        if not 0 <= self.release_percentage <= MAX_RELEASE_PERCENTAGE:
            raise ValueError(
                f"release_percentage must be within 0..{MAX_RELEASE_PERCENTAGE}, "
                f"got {self.release_percentage}"
            )
        if self.start_time_tolerance < timedelta(0):
            raise ValueError(
                f"start_time_tolerance must be non-negative, got {self.start_time_tolerance}"
            )
        object.__setattr__(self, 'prices', MappingProxyType(dict(self.prices)))

    def purchase_bounds_in_force(self) -> Optional[DurationBounds]:
        return self.purchase_bounds if self.enforce_duration_bounds else None

    def swap_bounds_in_force(self) -> Optional[DurationBounds]:
        return self.swap_bounds if self.enforce_duration_bounds else None


# Human-readable names of config fields, used in config-change log lines.
CONFIG_FIELDS: Dict[str, str] = {
    'vesting_active': "grant switch",
    'purchase_active': "purchase switch",
    'swapping_active': "swap switch",
    'purchase_amount_threshold': "purchase threshold",
    'release_percentage': "release percentage",
    'prices': "price table",
    'swap': "swap settings",
    'purchase_bounds': "purchase duration bounds",
    'swap_bounds': "swap duration bounds",
    'enforce_duration_bounds': "duration bounds enforcement",
    'start_time_tolerance': "start time tolerance",
}
