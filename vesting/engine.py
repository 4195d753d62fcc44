"""
engine.py - Schedule Engine

The ScheduleEngine is the only component that mutates vesting state. It
funnels every origination path (grant, purchase, swap) and every schedule
transition (claim, cancel) through the AssetLedger and ScheduleStore, and
keeps the global invariant

    locked(asset) == sum of remaining amounts over Active schedules of asset
    locked(asset) <= held(asset)

after every operation.

Key responsibilities:
    - Validates schedule parameters and activation switches
    - Reserves supply and inserts schedules atomically
    - Dispatches external transfers only after state is staged, rolling the
      staged state back if a transfer fails
    - Gates privileged operations through an AccessControl collaborator
    - Records an audit event for every committed operation

Time is never read from a clock: every time-sensitive operation takes `now`.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from .core import (
    # Types
    Asset, VestingParams, VestingSchedule, ScheduleStatus, ScheduleOrigin,
    TransferIntent, TransferKind, SwapDestination, EventType, EngineEvent,
    ClaimResult, CancelResult, PurchaseResult, SwapResult, WithdrawResult,
    TransferAgent, AccessControl, HumanAmount,
    # Constants
    PRICE_DECIMALS,
    # Exceptions
    VestingError, VestingInactive, PurchaseInactive, SwappingInactive,
    NotClaimable, ScheduleNotFound, ScheduleNotActive,
    FixedScheduleNotCancellable, Unauthorized, TransferFailed,
    AssetNotRegistered, OperationInProgress,
    # Helpers
    to_base_units,
)
from .config import VestingConfig, PriceEntry, DurationBounds, CONFIG_FIELDS
from .asset_ledger import AssetLedger, LedgerEntry
from .schedule_store import ScheduleStore
from .vesting_math import (
    vested_amount, claimable_amount, require_cliff_reached, validate_params,
)
from .pricing import quote_purchase
from .swap import quote_swap
from .collaborators import RecordingTransferAgent, StaticAccessControl

logger = logging.getLogger(__name__)


@dataclass
class _Stage:
    """Snapshots needed to undo one operation on one asset."""
    entry: LedgerEntry
    inserted: List[VestingSchedule] = field(default_factory=list)
    replaced: List[VestingSchedule] = field(default_factory=list)


class ScheduleEngine:
    """
    Vesting schedule engine over an AssetLedger and a ScheduleStore.

    Thread Safety:
        Operations touching the same asset are serialised by a per-asset
        lock created at registration. An operation started on an asset that
        is already mid-operation on the same thread (a transfer agent calling
        back into the engine) is refused with OperationInProgress.
        Configuration is an immutable VestingConfig swapped in whole by the
        setters and read once per operation.

    Example:
        engine = ScheduleEngine(access_control=StaticAccessControl({"admin"}))
        engine.register_asset("admin", Asset("EEFI", 18))
        engine.deposit("EEFI", 5000 * 10**18)

        params = VestingParams("EEFI", False, timedelta(weeks=52),
                               timedelta(weeks=55), now)
        schedule = engine.grant("admin", "alice", 1000 * 10**18, params, now)
        engine.claim(schedule.id, "alice", now + timedelta(weeks=53))
    """

    def __init__(
        self,
        transfer_agent: Optional[TransferAgent] = None,
        access_control: Optional[AccessControl] = None,
        config: Optional[VestingConfig] = None,
        lock_wallet: str = "lock",
        treasury_wallet: str = "treasury",
    ):
        """
        Create an engine.

        Args:
            transfer_agent: Moves value in/out of custody (default: RecordingTransferAgent)
            access_control: Privilege check (default: nobody is privileged)
            config: Initial configuration (default: VestingConfig())
            lock_wallet: Destination of swapped-in asset while lock mode is on
            treasury_wallet: Destination of swapped-in asset otherwise
        """
        self.transfer_agent: TransferAgent = transfer_agent or RecordingTransferAgent()
        self.access_control: AccessControl = access_control or StaticAccessControl()
        self.lock_wallet = lock_wallet
        self.treasury_wallet = treasury_wallet
        self.ledger = AssetLedger()
        self.store = ScheduleStore()
        self.event_log: List[EngineEvent] = []

        self._config = config or VestingConfig()
        self._config_lock = threading.Lock()
        self._asset_locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._in_flight: Set[str] = set()
        self._log_lock = threading.Lock()
        self._next_sequence = 0

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def config(self) -> VestingConfig:
        """Current configuration snapshot."""
        return self._config

    def schedule_info(self, beneficiary: str) -> List[VestingSchedule]:
        """All schedules of a beneficiary in creation order, terminal ones included."""
        return self.store.for_beneficiary(beneficiary)

    def get_schedule(self, beneficiary: str, schedule_id: int) -> VestingSchedule:
        """
        Raises:
            ScheduleNotFound: If the beneficiary has no such schedule
        """
        schedule = self.store.get(beneficiary, schedule_id)
        if schedule is None:
            raise ScheduleNotFound(f"No schedule {beneficiary}#{schedule_id}")
        return schedule

    def locked_amount(self, asset: str) -> int:
        return self.ledger.locked(asset)

    def held_amount(self, asset: str) -> int:
        return self.ledger.held(asset)

    def available_unlocked(self, asset: str) -> int:
        return self.ledger.available_unlocked(asset)

    def claimable_amount(self, schedule_id: int, beneficiary: str, now: datetime) -> int:
        """
        Amount a claim at `now` would release (0 before the cliff).

        Raises:
            NotClaimable: If the beneficiary has no such schedule
        """
        return claimable_amount(self._claimable_schedule(schedule_id, beneficiary), now)

    def vested_amount(self, schedule_id: int, beneficiary: str, now: datetime) -> int:
        return vested_amount(self._claimable_schedule(schedule_id, beneficiary), now)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check the ledger against the schedule store for every asset.

        Intended for quiescent engines (tests, audits); it takes no locks.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every asset balances
            - 'entries': Dict[str, LedgerEntry] - current entry per asset
            - 'discrepancies': List[Dict] - asset, held, locked, expected_locked
        """
        entries = {symbol: self.ledger.entry(symbol) for symbol in self.ledger.list_assets()}
        expected: Dict[str, int] = {symbol: 0 for symbol in entries}
        for schedule in self.store:
            expected[schedule.asset] = expected.get(schedule.asset, 0) + schedule.remaining

        discrepancies = []
        for symbol, expected_locked in expected.items():
            entry = entries.get(symbol)
            held = entry.held if entry else 0
            locked = entry.locked if entry else 0
            if locked != expected_locked or locked > held:
                discrepancies.append({
                    'asset': symbol,
                    'held': held,
                    'locked': locked,
                    'expected_locked': expected_locked,
                })

        return {
            'valid': len(discrepancies) == 0,
            'entries': entries,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # ASSETS
    # ========================================================================

    def register_asset(self, caller: str, asset: Asset) -> None:
        """
        Register an asset that schedules can be created in.

        Raises:
            Unauthorized: If caller is not privileged
            ValueError: If the asset is already registered
        """
        self._require_privileged(caller, "register_asset")
        with self._locks_guard:
            self.ledger.register(asset)
            self._asset_locks[asset.symbol] = threading.RLock()
        self._record(EventType.ASSET_REGISTERED, asset=asset.symbol,
                     metadata={'decimals': asset.decimals})
        logger.info("Registered asset %s (%d decimals)", asset.symbol, asset.decimals)

    def deposit(self, asset: str, amount: int, now: Optional[datetime] = None) -> LedgerEntry:
        """
        Record asset that has arrived in custody through an external transfer.

        Returns:
            The updated ledger entry
        """
        with self._exclusive(asset):
            entry = self.ledger.deposit(asset, amount)
            self._record(EventType.DEPOSITED, timestamp=now, asset=asset, amount=amount)
        logger.info("Deposit of %d %s, held now %d", amount, asset, entry.held)
        return entry

    # ========================================================================
    # ORIGINATION
    # ========================================================================

    def grant(
        self,
        caller: str,
        beneficiary: str,
        amount: int,
        params: VestingParams,
        now: datetime,
    ) -> VestingSchedule:
        """
        Create an administrative grant out of the unlocked pool.

        Raises:
            Unauthorized: If caller is not privileged
            VestingInactive: If grants are switched off
            InvalidVestingParams: If params fail validation
            InsufficientUnlockedSupply: If amount exceeds the unlocked pool
        """
        self._require_privileged(caller, "grant")
        config = self.config
        if not config.vesting_active:
            raise VestingInactive("Vesting not active")
        _require_amount(amount, "Grant")
        validate_params(params, now, config.start_time_tolerance)

        with self._transaction(params.asset) as stage:
            schedule = self._open_schedule(stage, beneficiary, amount, params, ScheduleOrigin.GRANT)
            self._record_created(schedule, now)
        logger.info("Granted %r", schedule)
        return schedule

    def purchase(
        self,
        purchaser: str,
        payment_amount: int,
        payment_asset: str,
        params: VestingParams,
        now: datetime,
    ) -> PurchaseResult:
        """
        Buy params.asset with an approved payment asset and vest it.

        Above the purchase threshold, release_percentage of the purchased
        amount is pushed to the purchaser immediately and the rest is vested.

        Raises:
            PurchaseInactive: If purchases are switched off
            InvalidVestingParams: If params fail validation or purchase bounds
            UnapprovedExchangeAsset: If the payment asset is not approved
            InsufficientUnlockedSupply: If the purchase exceeds the unlocked pool
            TransferFailed: If pulling payment or pushing the bonus fails
        """
        config = self.config
        if not config.purchase_active:
            raise PurchaseInactive("Purchase not active")
        validate_params(
            params, now, config.start_time_tolerance, config.purchase_bounds_in_force()
        )
        quote = quote_purchase(config, payment_amount, payment_asset, params.asset)
        if quote.vested_amount <= 0:
            raise ValueError(
                f"Purchase of {quote.desired_amount} {params.asset} leaves nothing to vest"
            )

        with self._transaction(params.asset) as stage:
            schedule = self._open_schedule(
                stage, purchaser, quote.vested_amount, params, ScheduleOrigin.PURCHASE
            )
            intents = [TransferIntent(
                TransferKind.PULL, payment_asset, purchaser, payment_amount, "purchase_payment"
            )]
            if quote.bonus_amount:
                self.ledger.withdraw(params.asset, quote.bonus_amount)
                intents.append(TransferIntent(
                    TransferKind.PUSH, params.asset, purchaser, quote.bonus_amount, "purchase_bonus"
                ))
            transfers = self._dispatch(intents)
            self._record_created(schedule, now, payment_asset=payment_asset,
                                 payment_amount=payment_amount)
            if quote.bonus_amount:
                self._record(EventType.BONUS_RELEASED, timestamp=now, beneficiary=purchaser,
                             asset=params.asset, amount=quote.bonus_amount,
                             schedule_id=schedule.id)
        logger.info(
            "Purchase by %s: %d %s for %d %s (bonus %d)",
            purchaser, payment_amount, payment_asset,
            quote.desired_amount, params.asset, quote.bonus_amount,
        )
        return PurchaseResult(schedule=schedule, quote=quote, transfers=transfers)

    def swap(
        self,
        swapper: str,
        swap_amount: int,
        swap_asset: str,
        params: VestingParams,
        now: datetime,
        beneficiary: Optional[str] = None,
    ) -> SwapResult:
        """
        Convert an authorized swap asset into params.asset and vest it.

        The swapped-in asset is routed to the lock wallet while lock mode is
        on and to the treasury wallet otherwise.

        Args:
            swapper: Account the swap asset is pulled from
            swap_amount: Raw amount of swap_asset
            swap_asset: Symbol of the asset offered
            params: Schedule parameters (params.asset is the target)
            now: Current time
            beneficiary: Schedule owner (default: swapper)

        Raises:
            SwappingInactive: If swaps are switched off
            InvalidVestingParams: If params fail validation or swap bounds
            UnauthorizedSwapAsset: If swap_asset is not authorized
            InsufficientUnlockedSupply: If the target amount exceeds the unlocked pool
            TransferFailed: If moving the swap asset fails
        """
        config = self.config
        if not config.swapping_active:
            raise SwappingInactive("Swapping not active")
        validate_params(
            params, now, config.start_time_tolerance, config.swap_bounds_in_force()
        )
        beneficiary = beneficiary or swapper

        with self._transaction(params.asset) as stage:
            target = self.ledger.asset(params.asset)
            quote = quote_swap(config.swap, swap_amount, swap_asset, params.asset, target.decimals)
            schedule = self._open_schedule(
                stage, beneficiary, quote.target_amount, params, ScheduleOrigin.SWAP
            )
            destination = (
                self.lock_wallet if quote.destination is SwapDestination.LOCK
                else self.treasury_wallet
            )
            transfers = self._dispatch([
                TransferIntent(TransferKind.PULL, swap_asset, swapper, swap_amount, "swap_in"),
                TransferIntent(TransferKind.PUSH, swap_asset, destination, swap_amount,
                               f"swap_route_{quote.destination.value}"),
            ])
            self._record_created(schedule, now, swap_asset=swap_asset, swap_amount=swap_amount)
            self._record(EventType.SWAPPED, timestamp=now, beneficiary=beneficiary,
                         asset=swap_asset, amount=swap_amount, schedule_id=schedule.id,
                         metadata={'destination': quote.destination.value,
                                   'target_amount': quote.target_amount})
        logger.info(
            "Swap by %s: %d %s -> %d %s, routed to %s",
            swapper, swap_amount, swap_asset, quote.target_amount, params.asset, destination,
        )
        return SwapResult(schedule=schedule, quote=quote, transfers=transfers)

    # ========================================================================
    # SCHEDULE TRANSITIONS
    # ========================================================================

    def claim(self, schedule_id: int, beneficiary: str, now: datetime) -> ClaimResult:
        """
        Release everything vested and unclaimed to the schedule's beneficiary.

        Anyone may call this; funds always go to the beneficiary. A claim on a
        terminal schedule, or with nothing newly vested, is a no-op with amount 0.

        Raises:
            NotClaimable: If the beneficiary has no such schedule
            CliffNotReached: If the schedule is Active and its cliff has not passed
            TransferFailed: If pushing the claimed amount fails
        """
        asset = self._claimable_schedule(schedule_id, beneficiary).asset
        with self._transaction(asset) as stage:
            schedule = self._claimable_schedule(schedule_id, beneficiary)
            if schedule.status is ScheduleStatus.ACTIVE:
                require_cliff_reached(schedule, now)
            amount = claimable_amount(schedule, now)
            if amount == 0:
                logger.debug("Nothing to claim on %r at %s", schedule, now)
                return ClaimResult(schedule=schedule, amount=0)

            claimed = schedule.claimed_amount + amount
            status = (
                ScheduleStatus.EXHAUSTED if claimed == schedule.total_amount
                else ScheduleStatus.ACTIVE
            )
            updated = replace(schedule, claimed_amount=claimed, status=status)
            self.ledger.payout(asset, amount)
            self._replace_schedule(stage, schedule, updated)
            transfers = self._dispatch([
                TransferIntent(TransferKind.PUSH, asset, beneficiary, amount, "claim"),
            ])
            self._record(EventType.CLAIMED, timestamp=now, beneficiary=beneficiary,
                         asset=asset, amount=amount, schedule_id=schedule_id,
                         metadata={'status': status.value})
        logger.info("Claimed %d %s on %r", amount, asset, updated)
        return ClaimResult(schedule=updated, amount=amount, transfers=transfers)

    def claim_all(self, beneficiary: str, now: datetime) -> List[ClaimResult]:
        """
        Claim every Active schedule of a beneficiary whose cliff has passed.

        Each claim is its own atomic operation; a TransferFailed on one
        schedule propagates and leaves earlier claims committed.
        """
        results = []
        for schedule in self.schedule_info(beneficiary):
            if schedule.status is not ScheduleStatus.ACTIVE or now < schedule.cliff_end:
                continue
            result = self.claim(schedule.id, beneficiary, now)
            if result.amount:
                results.append(result)
        return results

    def cancel(
        self,
        caller: str,
        beneficiary: str,
        schedule_id: int,
        now: Optional[datetime] = None,
    ) -> CancelResult:
        """
        Cancel an Active, non-fixed schedule.

        The unclaimed remainder is unlocked (it stays in custody and is not
        sent to anyone); the claimed amount is frozen.

        Raises:
            Unauthorized: If caller is not privileged
            ScheduleNotFound: If the beneficiary has no such schedule
            FixedScheduleNotCancellable: If the schedule is fixed
            ScheduleNotActive: If the schedule is already terminal
        """
        self._require_privileged(caller, "cancel")
        asset = self.get_schedule(beneficiary, schedule_id).asset
        with self._transaction(asset) as stage:
            schedule = self.get_schedule(beneficiary, schedule_id)
            if schedule.is_fixed:
                raise FixedScheduleNotCancellable(
                    f"Schedule {beneficiary}#{schedule_id} is fixed"
                )
            if schedule.status.is_terminal:
                raise ScheduleNotActive(
                    f"Schedule {beneficiary}#{schedule_id} is {schedule.status.value}"
                )
            remainder = schedule.total_amount - schedule.claimed_amount
            updated = replace(schedule, status=ScheduleStatus.CANCELLED, cancelled_at=now)
            self.ledger.release(asset, remainder)
            self._replace_schedule(stage, schedule, updated)
            self._record(EventType.CANCELLED, timestamp=now, beneficiary=beneficiary,
                         asset=asset, amount=remainder, schedule_id=schedule_id,
                         metadata={'caller': caller})
        logger.info("Cancelled %r, unlocked %d %s", updated, remainder, asset)
        return CancelResult(schedule=updated, released=remainder)

    def withdraw(
        self,
        caller: str,
        amount: int,
        asset: str,
        recipient: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WithdrawResult:
        """
        Send unlocked supply out of custody.

        Args:
            caller: Privileged account requesting the withdrawal
            amount: Raw amount to withdraw
            asset: Asset symbol
            recipient: Destination account (default: caller)
            now: Optional time for the audit record

        Raises:
            Unauthorized: If caller is not privileged
            InsufficientUnlockedSupply: If amount exceeds the unlocked pool
            TransferFailed: If pushing the asset fails
        """
        self._require_privileged(caller, "withdraw")
        recipient = recipient or caller
        with self._transaction(asset):
            entry = self.ledger.withdraw(asset, amount)
            transfers = self._dispatch([
                TransferIntent(TransferKind.PUSH, asset, recipient, amount, "withdrawal"),
            ])
            self._record(EventType.WITHDRAWN, timestamp=now, beneficiary=recipient,
                         asset=asset, amount=amount, metadata={'caller': caller})
        logger.info("Withdrew %d %s to %s, held now %d", amount, asset, recipient, entry.held)
        return WithdrawResult(asset=asset, amount=amount, recipient=recipient,
                              transfers=transfers)

    # ========================================================================
    # CONFIGURATION (privileged)
    # ========================================================================

    def set_vesting_status(self, caller: str, active: bool) -> None:
        self._update_config(caller, vesting_active=active)

    def set_purchase_status(self, caller: str, active: bool) -> None:
        self._update_config(caller, purchase_active=active)

    def set_swapping_status(self, caller: str, active: bool) -> None:
        self._update_config(caller, swapping_active=active)

    def set_purchase_amount_threshold(self, caller: str, threshold: int) -> None:
        """Threshold in whole target units at or above which the bonus applies."""
        self._update_config(caller, purchase_amount_threshold=threshold)

    def set_release_percentage(self, caller: str, percentage: int) -> None:
        self._update_config(caller, release_percentage=percentage)

    def set_vesting_token_price(self, caller: str, target_asset: str, price: HumanAmount) -> None:
        """
        Set the purchase price of a registered target asset.

        Args:
            caller: Privileged account
            target_asset: Registered asset being sold
            price: Payment units per one target unit, e.g. 12 or "0.25";
                   precision beyond PRICE_DECIMALS places is truncated

        Raises:
            AssetNotRegistered: If target_asset is not registered
            ValueError: If the price truncates to zero
        """
        self._require_privileged(caller, "set_vesting_token_price")
        decimals = self.ledger.asset(target_asset).decimals
        scaled = to_base_units(price, PRICE_DECIMALS)
        with self._config_lock:
            current = self._config.prices.get(target_asset)
            if current is None:
                entry = PriceEntry(target_decimals=decimals, price=scaled)
            else:
                entry = replace(current, price=scaled)
            self._swap_config(caller, 'prices', prices={**self._config.prices, target_asset: entry})

    def add_payment_asset(self, caller: str, target_asset: str, payment_asset: Asset) -> None:
        """
        Approve a payment asset for purchases of target_asset.

        Raises:
            ValueError: If target_asset has no price yet
        """
        self._require_privileged(caller, "add_payment_asset")
        with self._config_lock:
            entry = self._price_entry(target_asset)
            updated = entry.with_payment_asset(payment_asset.symbol, payment_asset.decimals)
            self._swap_config(caller, 'prices', prices={**self._config.prices, target_asset: updated})

    def remove_payment_asset(self, caller: str, target_asset: str, payment_asset: str) -> None:
        self._require_privileged(caller, "remove_payment_asset")
        with self._config_lock:
            entry = self._price_entry(target_asset)
            updated = entry.without_payment_asset(payment_asset)
            self._swap_config(caller, 'prices', prices={**self._config.prices, target_asset: updated})

    def set_swap_ratio(self, caller: str, numerator: int, denominator: int) -> None:
        self._require_privileged(caller, "set_swap_ratio")
        with self._config_lock:
            swap = replace(self._config.swap, ratio_numerator=numerator,
                           ratio_denominator=denominator)
            self._swap_config(caller, 'swap', swap=swap)

    def add_authorized_swap_asset(self, caller: str, asset: Asset) -> None:
        self._require_privileged(caller, "add_authorized_swap_asset")
        with self._config_lock:
            current = self._config.swap
            authorized = {**current.authorized_swap_assets, asset.symbol: asset.decimals}
            self._swap_config(caller, 'swap',
                              swap=replace(current, authorized_swap_assets=authorized))

    def remove_authorized_swap_asset(self, caller: str, symbol: str) -> None:
        self._require_privileged(caller, "remove_authorized_swap_asset")
        with self._config_lock:
            current = self._config.swap
            authorized = {k: v for k, v in current.authorized_swap_assets.items() if k != symbol}
            self._swap_config(caller, 'swap',
                              swap=replace(current, authorized_swap_assets=authorized))

    def set_lock_mode(self, caller: str, enabled: bool) -> None:
        self._require_privileged(caller, "set_lock_mode")
        with self._config_lock:
            self._swap_config(caller, 'swap', swap=replace(self._config.swap, lock_mode=enabled))

    def set_purchase_bounds(self, caller: str, bounds: DurationBounds) -> None:
        self._update_config(caller, purchase_bounds=bounds)

    def set_swap_bounds(self, caller: str, bounds: DurationBounds) -> None:
        self._update_config(caller, swap_bounds=bounds)

    def set_duration_bounds_enforced(self, caller: str, enforced: bool) -> None:
        self._update_config(caller, enforce_duration_bounds=enforced)

    def set_start_time_tolerance(self, caller: str, tolerance: timedelta) -> None:
        self._update_config(caller, start_time_tolerance=tolerance)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_privileged(self, caller: str, action: str) -> None:
        if not self.access_control.is_privileged(caller):
            logger.warning("Unauthorized %s attempt by %s", action, caller)
            raise Unauthorized(f"{caller} is not allowed to {action}")

    def _lock_for(self, asset: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._asset_locks.get(asset)
        if lock is None:
            raise AssetNotRegistered(f"Asset {asset} not registered")
        return lock

    @contextmanager
    def _exclusive(self, asset: str) -> Iterator[None]:
        """
        Hold the asset's lock and mark the asset as mid-operation.

        The lock is re-entrant, so a nested call on the same thread gets past
        it; the in-flight mark turns that call into OperationInProgress.
        """
        with self._lock_for(asset):
            if asset in self._in_flight:
                logger.warning("Refused nested operation on %s", asset)
                raise OperationInProgress(f"An operation on {asset} is already in progress")
            self._in_flight.add(asset)
            try:
                yield
            finally:
                self._in_flight.discard(asset)

    @contextmanager
    def _transaction(self, asset: str) -> Iterator[_Stage]:
        """
        Serialise an operation on one asset and undo its staged changes on failure.

        Any exception raised inside the block restores the asset's ledger
        entry and every schedule inserted or replaced through the stage.
        No other change to the asset can land while the block runs.
        """
        with self._exclusive(asset):
            stage = _Stage(entry=self.ledger.entry(asset))
            try:
                yield stage
            except Exception as exc:
                self._rollback(stage)
                if isinstance(exc, TransferFailed):
                    logger.warning("Transfer failed on %s, rolled back: %s", asset, exc)
                elif isinstance(exc, VestingError):
                    logger.warning("Rejected operation on %s: %s", asset, exc)
                raise

    def _rollback(self, stage: _Stage) -> None:
        self.ledger.restore(stage.entry)
        for previous in reversed(stage.replaced):
            self.store.update(previous)
        for schedule in reversed(stage.inserted):
            self.store.discard(schedule)

    def _open_schedule(
        self,
        stage: _Stage,
        beneficiary: str,
        amount: int,
        params: VestingParams,
        origin: ScheduleOrigin,
    ) -> VestingSchedule:
        """Reserve supply and insert the schedule; both are undone with the stage."""
        self.ledger.reserve(params.asset, amount)
        schedule = self.store.insert(VestingSchedule(
            id=0,
            beneficiary=beneficiary,
            asset=params.asset,
            total_amount=amount,
            start_time=params.start_time,
            cliff_duration=params.cliff_duration,
            vesting_duration=params.vesting_duration,
            is_fixed=params.is_fixed,
            origin=origin,
        ))
        stage.inserted.append(schedule)
        return schedule

    def _replace_schedule(
        self, stage: _Stage, previous: VestingSchedule, updated: VestingSchedule
    ) -> None:
        self.store.update(updated)
        stage.replaced.append(previous)

    def _claimable_schedule(self, schedule_id: int, beneficiary: str) -> VestingSchedule:
        schedule = self.store.get(beneficiary, schedule_id)
        if schedule is None:
            raise NotClaimable(f"{beneficiary} has no schedule {schedule_id}")
        return schedule

    def _dispatch(self, intents: List[TransferIntent]) -> Tuple[TransferIntent, ...]:
        """
        Hand intents to the transfer agent in order.

        Raises:
            TransferFailed: On the first failing intent, chained to its cause
        """
        completed: List[TransferIntent] = []
        for intent in intents:
            try:
                if intent.kind is TransferKind.PULL:
                    self.transfer_agent.pull(intent.asset, intent.counterparty, intent.amount)
                else:
                    self.transfer_agent.push(intent.asset, intent.counterparty, intent.amount)
            except Exception as exc:
                raise TransferFailed(
                    f"{intent!r} failed: {exc}", intent=intent, completed=tuple(completed)
                ) from exc
            completed.append(intent)
        return tuple(completed)

    def _record(self, event_type: EventType, timestamp: Optional[datetime] = None,
                **fields: Any) -> EngineEvent:
        with self._log_lock:
            event = EngineEvent(
                sequence=self._next_sequence,
                event_type=event_type,
                timestamp=timestamp,
                **fields,
            )
            self._next_sequence += 1
            self.event_log.append(event)
        return event

    def _record_created(self, schedule: VestingSchedule, now: datetime,
                        **metadata: Any) -> EngineEvent:
        return self._record(
            EventType.SCHEDULE_CREATED,
            timestamp=now,
            beneficiary=schedule.beneficiary,
            asset=schedule.asset,
            amount=schedule.total_amount,
            schedule_id=schedule.id,
            metadata={'origin': schedule.origin.value, 'is_fixed': schedule.is_fixed,
                      **metadata},
        )

    def _price_entry(self, target_asset: str) -> PriceEntry:
        entry = self._config.prices.get(target_asset)
        if entry is None:
            raise ValueError(f"No purchase price configured for {target_asset}")
        return entry

    def _update_config(self, caller: str, **changes: Any) -> None:
        self._require_privileged(caller, "update configuration")
        with self._config_lock:
            (name,) = changes
            self._swap_config(caller, name, **changes)

    def _swap_config(self, caller: str, name: str, **changes: Any) -> None:
        """Replace the config; caller must hold _config_lock."""
        self._config = replace(self._config, **changes)
        self._record(EventType.CONFIG_CHANGED, metadata={'field': name, 'caller': caller})
        logger.info("Config change by %s: %s = %r", caller, CONFIG_FIELDS[name], changes[name])


def _require_amount(amount: int, what: str) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValueError(f"{what} amount must be an int in base units, got {type(amount)}")
    if amount <= 0:
        raise ValueError(f"{what} amount must be positive, got {amount}")
