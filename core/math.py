# PATH: core/math.py
"""
Math utilities for CYCLEARB.

Safe conversions and calculations (no float money).
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Union

from core.constants import WEI_PER_ETHER, WEI_PER_GWEI

Number = Union[str, int, float, Decimal, None]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def safe_decimal(value: Number, default: Decimal = ZERO) -> Decimal:
    """
    Safely convert value to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its
    binary expansion.
    """
    if value is None:
        return default

    try:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def from_raw(amount: Union[str, int, Decimal], decimals: int) -> Decimal:
    """
    Normalize an on-chain integer amount to token units.

    Args:
        amount: Amount in smallest unit
        decimals: Token decimals

    Returns:
        Amount in token units
    """
    return safe_decimal(amount) / (Decimal(10) ** decimals)


def to_raw(amount: Number, decimals: int) -> int:
    """
    Convert token units to the on-chain integer, rounding down.

    Rounding down keeps min-out and amount-in values on the safe side.
    """
    scaled = safe_decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def gwei_to_wei(gwei: Number) -> int:
    """Convert gwei to wei."""
    return int((safe_decimal(gwei) * WEI_PER_GWEI).to_integral_value(rounding=ROUND_DOWN))


def wei_to_gwei(wei: Union[int, str, Decimal]) -> Decimal:
    """Convert wei to gwei."""
    return safe_decimal(wei) / WEI_PER_GWEI


def wei_to_native(wei: Union[int, str, Decimal]) -> Decimal:
    """Convert wei to native units (18 decimals)."""
    return safe_decimal(wei) / WEI_PER_ETHER


def percent_of(part: Number, whole: Number) -> Decimal:
    """part / whole * 100, zero when whole is zero."""
    whole_d = safe_decimal(whole)
    if whole_d == 0:
        return ZERO
    return safe_decimal(part) / whole_d * HUNDRED


def relative_deviation_percent(reference: Number, actual: Number) -> Decimal:
    """
    |reference - actual| / reference * 100.

    Returns zero when the reference is zero.
    """
    ref = safe_decimal(reference)
    if ref == 0:
        return ZERO
    return abs(ref - safe_decimal(actual)) / ref * HUNDRED


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def apply_slippage(amount: Number, slippage_percent: Number) -> Decimal:
    """Reduce amount by slippage_percent (0.5 -> keep 99.5%)."""
    return safe_decimal(amount) * (HUNDRED - safe_decimal(slippage_percent)) / HUNDRED
