"""
swap.py - Swap-and-vest conversion

Converts an amount of an authorized swap asset into the target asset at the
configured ratio and decides where the swapped-in asset goes.

    target = swap_raw * numerator * 10**target_decimals
             // (denominator * 10**swap_decimals)
"""

from __future__ import annotations
import logging

from .core import (
    SwapQuote, SwapDestination,
    UnauthorizedSwapAsset,
)
from .config import SwapConfig

logger = logging.getLogger(__name__)


def swap_destination(swap: SwapConfig) -> SwapDestination:
    """Lock holder while lock mode is on, treasury otherwise."""
    return SwapDestination.LOCK if swap.lock_mode else SwapDestination.TREASURY


def convert_swap(
    swap_amount: int,
    swap_decimals: int,
    target_decimals: int,
    swap: SwapConfig,
) -> int:
    """Convert raw swap units to raw target units at the configured ratio, rounding down."""
    numerator = swap_amount * swap.ratio_numerator * (10 ** target_decimals)
    denominator = swap.ratio_denominator * (10 ** swap_decimals)
    return numerator // denominator


def quote_swap(
    swap: SwapConfig,
    swap_amount: int,
    swap_asset: str,
    target_asset: str,
    target_decimals: int,
) -> SwapQuote:
    """
    Price a swap without touching any state.

    Raises:
        UnauthorizedSwapAsset: If swap_asset is not authorized
        ValueError: If swap_amount is not positive or converts to nothing

    Example:
        # 252.36585 OLD at 1/4 -> 63.0914625 NEW (both 18 decimals)
    """
    if swap_amount <= 0:
        raise ValueError(f"swap_amount must be positive, got {swap_amount}")
    if swap_asset not in swap.authorized_swap_assets:
        raise UnauthorizedSwapAsset(f"{swap_asset} is not an authorized swap asset")

    target = convert_swap(
        swap_amount,
        swap.authorized_swap_assets[swap_asset],
        target_decimals,
        swap,
    )
    if target <= 0:
        raise ValueError(f"Swap of {swap_amount} {swap_asset} converts to no {target_asset}")

    quote = SwapQuote(
        swap_asset=swap_asset,
        target_asset=target_asset,
        swap_amount=swap_amount,
        target_amount=target,
        destination=swap_destination(swap),
    )
    logger.debug(
        "Swap quote: %s %s -> %s %s via %s",
        swap_amount, swap_asset, target, target_asset, quote.destination.value,
    )
    return quote
