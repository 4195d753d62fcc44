"""
pricing.py - Purchase pricing

Pure functions that turn a payment in an approved asset into a quantity of
the target asset and split it into an immediate bonus and a vested part.

Conversion (all integers, one floor division at the end):

    desired = payment_raw * 10**target_decimals * PRICE_SCALE
              // (price * 10**payment_decimals)

Bonus:

    bonus = desired * release_percentage // 100   if desired >= threshold
            0                                     otherwise

where threshold is in whole target units.
"""

from __future__ import annotations
import logging

from .core import (
    PurchaseQuote,
    UnapprovedExchangeAsset,
    PRICE_SCALE,
)
from .config import PriceEntry, VestingConfig

logger = logging.getLogger(__name__)


def price_entry_for(config: VestingConfig, payment_asset: str, target_asset: str) -> PriceEntry:
    """
    Look up the price entry for a target asset and check the payment asset is approved.

    Raises:
        UnapprovedExchangeAsset: If the target has no price or the payment
            asset is not approved for it
    """
    entry = config.prices.get(target_asset)
    if entry is None:
        raise UnapprovedExchangeAsset(f"No purchase price configured for {target_asset}")
    if payment_asset not in entry.payment_decimals:
        raise UnapprovedExchangeAsset(
            f"{payment_asset} is not an approved payment asset for {target_asset}"
        )
    return entry


def convert_payment(payment_amount: int, payment_decimals: int, entry: PriceEntry) -> int:
    """Convert a raw payment amount to raw target units, rounding down."""
    numerator = payment_amount * (10 ** entry.target_decimals) * PRICE_SCALE
    denominator = entry.price * (10 ** payment_decimals)
    return numerator // denominator


def compute_bonus(
    desired_amount: int,
    target_decimals: int,
    threshold: int,
    release_percentage: int,
) -> int:
    """
    Immediate-release bonus for a purchase.

    Args:
        desired_amount: Purchased quantity in raw target units
        target_decimals: Decimal exponent of the target asset
        threshold: Purchase threshold in whole target units
        release_percentage: Percentage released immediately (0..100)

    Returns:
        Bonus in raw target units (0 below the threshold)
    """
    if desired_amount < threshold * (10 ** target_decimals):
        return 0
    return desired_amount * release_percentage // 100


def quote_purchase(
    config: VestingConfig,
    payment_amount: int,
    payment_asset: str,
    target_asset: str,
) -> PurchaseQuote:
    """
    Price a purchase without touching any state.

    Args:
        config: Engine configuration (prices, threshold, release percentage)
        payment_amount: Raw amount of payment_asset offered
        payment_asset: Symbol of the asset paid with
        target_asset: Symbol of the asset being bought

    Returns:
        PurchaseQuote with desired and bonus amounts

    Raises:
        UnapprovedExchangeAsset: If the pair is not configured
        ValueError: If payment_amount is not positive or buys nothing

    Example:
        # 3600 USDC at 12.0000 USDC per EEFI buys 300 EEFI
        quote_purchase(config, 3600 * 10**6, "USDC", "EEFI").desired_amount == 300 * 10**18
    """
    if payment_amount <= 0:
        raise ValueError(f"payment_amount must be positive, got {payment_amount}")

    entry = price_entry_for(config, payment_asset, target_asset)
    desired = convert_payment(payment_amount, entry.payment_decimals[payment_asset], entry)
    if desired <= 0:
        raise ValueError(
            f"Payment of {payment_amount} {payment_asset} buys no {target_asset}"
        )

    bonus = compute_bonus(
        desired,
        entry.target_decimals,
        config.purchase_amount_threshold,
        config.release_percentage,
    )
    quote = PurchaseQuote(
        payment_asset=payment_asset,
        target_asset=target_asset,
        payment_amount=payment_amount,
        desired_amount=desired,
        bonus_amount=bonus,
    )
    logger.debug(
        "Purchase quote: %s %s -> %s %s (bonus %s)",
        payment_amount, payment_asset, desired, target_asset, bonus,
    )
    return quote
