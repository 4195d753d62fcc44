"""
asset_ledger.py - Per-asset custody bookkeeping

The AssetLedger tracks, for every registered asset, how much the engine
holds and how much of that is locked behind Active schedules.

Invariant (checked on every mutation):
    0 <= locked(asset) <= held(asset)

unlocked = held - locked is the pool that backs new grants, purchases,
swaps, bonus releases and administrative withdrawals.

The ledger itself does not lock. Callers serialise access per asset
(see ScheduleEngine) because reserve/release/withdraw read-modify-write
the same (held, locked) pair.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, List

from .core import (
    Asset,
    InsufficientUnlockedSupply, AssetNotRegistered, VestingError,
)


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    Custody totals for one asset, in base units.

    Attributes:
        asset: The registered asset.
        held: Quantity in engine custody.
        locked: Sum of remaining amounts over Active schedules.
    """
    asset: Asset
    held: int = 0
    locked: int = 0

    def __post_init__(self):
        if self.locked < 0:
            raise VestingError(f"{self.asset.symbol}: locked {self.locked} < 0")
        if self.locked > self.held:
            raise VestingError(
                f"{self.asset.symbol}: locked {self.locked} exceeds held {self.held}"
            )

    @property
    def unlocked(self) -> int:
        return self.held - self.locked


def _require_positive(amount: int, what: str) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValueError(f"{what} amount must be an int in base units, got {type(amount)}")
    if amount <= 0:
        raise ValueError(f"{what} amount must be positive, got {amount}")


class AssetLedger:
    """
    Held vs. locked accounting across multiple assets.

    Entries are immutable LedgerEntry records replaced on every change, so a
    caller can take a snapshot with entry() and put it back with restore().

    Example:
        ledger = AssetLedger()
        ledger.register(Asset("EEFI", 18))
        ledger.deposit("EEFI", 5000 * 10**18)
        ledger.reserve("EEFI", 2500 * 10**18)
        ledger.available_unlocked("EEFI")   # 2500 * 10**18
    """

    def __init__(self):
        self._entries: Dict[str, LedgerEntry] = {}

    # ========================================================================
    # QUERIES
    # ========================================================================

    def is_registered(self, symbol: str) -> bool:
        return symbol in self._entries

    def list_assets(self) -> List[str]:
        return sorted(self._entries)

    def entry(self, symbol: str) -> LedgerEntry:
        """
        Return the current entry for an asset.

        Raises:
            AssetNotRegistered: If the asset has no entry
        """
        try:
            return self._entries[symbol]
        except KeyError:
            raise AssetNotRegistered(f"Asset {symbol} not registered") from None

    def asset(self, symbol: str) -> Asset:
        return self.entry(symbol).asset

    def held(self, symbol: str) -> int:
        return self.entry(symbol).held

    def locked(self, symbol: str) -> int:
        return self.entry(symbol).locked

    def available_unlocked(self, symbol: str) -> int:
        return self.entry(symbol).unlocked

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def register(self, asset: Asset) -> LedgerEntry:
        """
        Create an empty entry for an asset.

        Raises:
            ValueError: If the asset is already registered
        """
        if asset.symbol in self._entries:
            raise ValueError(f"Asset {asset.symbol} already registered")
        entry = LedgerEntry(asset=asset)
        self._entries[asset.symbol] = entry
        return entry

    def deposit(self, symbol: str, amount: int) -> LedgerEntry:
        """Record an inbound transfer completed outside the engine."""
        _require_positive(amount, "Deposit")
        entry = self.entry(symbol)
        return self._put(replace(entry, held=entry.held + amount))

    def reserve(self, symbol: str, amount: int) -> LedgerEntry:
        """
        Lock `amount` of unlocked supply for a new schedule.

        Raises:
            InsufficientUnlockedSupply: If amount exceeds the unlocked pool
        """
        _require_positive(amount, "Reserve")
        entry = self.entry(symbol)
        if amount > entry.unlocked:
            raise InsufficientUnlockedSupply(
                f"{symbol}: cannot lock {amount}, only {entry.unlocked} unlocked "
                f"(held {entry.held}, locked {entry.locked})"
            )
        return self._put(replace(entry, locked=entry.locked + amount))

    def release(self, symbol: str, amount: int) -> LedgerEntry:
        """
        Unlock `amount` previously reserved; it stays held and becomes unlocked.

        Raises:
            VestingError: If amount exceeds the locked total (bookkeeping bug)
        """
        _require_positive(amount, "Release")
        entry = self.entry(symbol)
        if amount > entry.locked:
            raise VestingError(
                f"{symbol}: cannot release {amount}, only {entry.locked} locked"
            )
        return self._put(replace(entry, locked=entry.locked - amount))

    def payout(self, symbol: str, amount: int) -> LedgerEntry:
        """
        Release `amount` from the lock and remove it from custody in one step.

        Used for claims, where the released amount leaves the engine.
        """
        _require_positive(amount, "Payout")
        entry = self.entry(symbol)
        if amount > entry.locked:
            raise VestingError(
                f"{symbol}: cannot pay out {amount}, only {entry.locked} locked"
            )
        return self._put(replace(entry, held=entry.held - amount, locked=entry.locked - amount))

    def withdraw(self, symbol: str, amount: int) -> LedgerEntry:
        """
        Remove unlocked supply from custody.

        Raises:
            InsufficientUnlockedSupply: If amount exceeds the unlocked pool
        """
        _require_positive(amount, "Withdraw")
        entry = self.entry(symbol)
        if amount > entry.unlocked:
            raise InsufficientUnlockedSupply(
                f"{symbol}: cannot withdraw {amount}, only {entry.unlocked} unlocked"
            )
        return self._put(replace(entry, held=entry.held - amount))

    def restore(self, entry: LedgerEntry) -> None:
        """Put back a snapshot taken with entry(); used to roll back a staged operation."""
        if entry.asset.symbol not in self._entries:
            raise AssetNotRegistered(f"Asset {entry.asset.symbol} not registered")
        self._entries[entry.asset.symbol] = entry

    def _put(self, entry: LedgerEntry) -> LedgerEntry:
        self._entries[entry.asset.symbol] = entry
        return entry
