"""
shares.py - Conversion between supply-asset amounts and pool shares.

A share is a claim on the pooled deposits of one market. The exchange rate
(deposits per share, scaled by SCALING_FACTOR) never falls below par. Minting
rounds up and redemption rounds down, so neither direction pays the user
more than the pool holds for them.
"""

from __future__ import annotations

from .accounts import Market
from .core import SCALING_FACTOR
from .fixed_point import checked_mul, checked_div, ceil_div


def exchange_rate(market: Market) -> int:
    """
    Deposits per share, scaled by SCALING_FACTOR.

    Par (SCALING_FACTOR) when the market has no shares or no deposits, and
    floored at par otherwise.

    Raises:
        MathOverflow: If deposits * SCALING_FACTOR exceeds u128
    """
    if market.total_share_supply == 0 or market.total_supply_deposits == 0:
        return SCALING_FACTOR
    rate = checked_div(
        checked_mul(market.total_supply_deposits, SCALING_FACTOR),
        market.total_share_supply,
    )
    return max(rate, SCALING_FACTOR)


def shares_for_deposit(amount: int, rate: int) -> int:
    """
    Shares minted for depositing ``amount`` at ``rate``: ceil(amount * SCALE / rate).

    Raises:
        MathOverflow: On u128 overflow of the numerator
        DivisionByZero: If rate is zero
    """
    return ceil_div(checked_mul(amount, SCALING_FACTOR), rate)


def underlying_for_shares(shares: int, rate: int) -> int:
    """
    Underlying paid for redeeming ``shares`` at ``rate``: floor(shares * rate / SCALE).

    Raises:
        MathOverflow: On u128 overflow of shares * rate
    """
    return checked_div(checked_mul(shares, rate), SCALING_FACTOR)
