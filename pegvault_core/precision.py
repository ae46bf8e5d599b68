"""
Precision constants and integer fee/price math for PegVault.

Every amount handled by the vault is an integer count of base units with
6 decimal places, matching TRON's sun model:

    1 TRX  = 1,000,000 sun
    1 TRST = 1,000,000 units (pegged to 1 USD)

Prices are USD per TRX scaled by ``PRICE_PRECISION``, so a price of
``80_000`` means $0.08 per TRX.

All helpers multiply before they divide and truncate with floor division.
The order of operations is part of the contract: changing it changes
results by one unit on non-exact inputs.
"""

from __future__ import annotations

from pegvault_core.errors import InvalidInput

# Number of decimal places for TRX, TRST and USDT amounts.
TOKEN_DECIMALS: int = 6

# Smallest unit per whole token (1 TRX = 1_000_000 sun).
UNITS_PER_TOKEN: int = 10 ** TOKEN_DECIMALS

# Fixed-point scale of the TRX/USD price.
PRICE_PRECISION: int = 1_000_000

# 10_000 bps = 100 %.
BPS_DENOMINATOR: int = 10_000

# Fee ceiling for both buy and sell fees (5 %).
MAX_FEE_BPS: int = 500

# Hard ceiling for any configurable deviation bound (30 %).
MAX_DEVIATION_CEILING_BPS: int = 3000

DEFAULT_MAX_DEVIATION_BPS: int = 1000
DEFAULT_MIN_UPDATE_INTERVAL: int = 3600
DEFAULT_BUY_FEE_BPS: int = 50
DEFAULT_SELL_FEE_BPS: int = 50


def _require_non_negative(value: int, name: str) -> None:
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative, got {value}")


def fee_for(amount: int, bps: int) -> int:
    """Fee charged on *amount* at *bps* basis points, floored.

    >>> fee_for(3_000_000, 50)
    15000
    >>> fee_for(199, 50)
    0
    """
    _require_non_negative(amount, "amount")
    _require_non_negative(bps, "bps")
    return amount * bps // BPS_DENOMINATOR


def apply_fee(amount: int, bps: int) -> tuple[int, int]:
    """Return ``(net, fee)`` where ``net = amount - fee_for(amount, bps)``."""
    fee = fee_for(amount, bps)
    return amount - fee, fee


def native_to_usd(native_amount: int, rate: int) -> int:
    """USD value (6 decimals) of *native_amount* sun at *rate*."""
    _require_non_negative(native_amount, "native_amount")
    if rate <= 0:
        raise InvalidInput("rate must be positive")
    return native_amount * rate // PRICE_PRECISION


def usd_to_native(usd_amount: int, rate: int) -> int:
    """Sun obtained for *usd_amount* (6 decimals) at *rate*."""
    _require_non_negative(usd_amount, "usd_amount")
    if rate <= 0:
        raise InvalidInput("rate must be positive")
    return usd_amount * PRICE_PRECISION // rate


def exceeds_deviation(old_rate: int, new_rate: int, max_bps: int) -> bool:
    """True when the move from *old_rate* to *new_rate* is beyond *max_bps*.

    Compared as ``|new - old| * 10000 > max_bps * old`` so no truncation
    can let a slightly-too-large move through.
    """
    if old_rate <= 0:
        raise InvalidInput("old_rate must be positive")
    return abs(new_rate - old_rate) * BPS_DENOMINATOR > max_bps * old_rate


def deviation_bps(old_rate: int, new_rate: int) -> int:
    """Relative move in whole basis points, floored (for logs and events)."""
    if old_rate <= 0:
        raise InvalidInput("old_rate must be positive")
    return abs(new_rate - old_rate) * BPS_DENOMINATOR // old_rate


def format_amount(units: int, symbol: str = "TRST") -> str:
    """Return a human-readable string with 6 decimal places."""
    sign = "-" if units < 0 else ""
    whole, frac = divmod(abs(units), UNITS_PER_TOKEN)
    return f"{sign}{whole}.{frac:0{TOKEN_DECIMALS}d} {symbol}"


def format_price(rate: int) -> str:
    """Render a scaled TRX/USD rate as dollars."""
    whole, frac = divmod(rate, PRICE_PRECISION)
    return f"${whole}.{frac:06d}"
