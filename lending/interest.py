"""
interest.py - Flat per-tick interest accrual for markets and positions.

Market accrual advances the two cumulative rate accumulators; position
accrual adds simple interest to an individual debt. Both saturate at u128
rather than fail: growth is monotonic, and for markets bounded by the
per-call tick clamp.

Position accrual runs only inside borrow and repay. Withdraw and liquidate
accrue the market alone.
"""

from __future__ import annotations
from dataclasses import replace

from .accounts import Market, UserPosition
from .config import LendingConfig, DEFAULT_CONFIG
from .core import SCALING_FACTOR
from .fixed_point import saturating_add, saturating_mul, saturating_sub


def accrual_ticks(last_update_tick: int, now: int, max_ticks: int) -> int:
    """Ticks elapsed since last_update_tick, clamped to max_ticks; never negative."""
    return min(saturating_sub(now, last_update_tick), max_ticks)


def accrue_market_interest(market: Market, now: int, config: LendingConfig = DEFAULT_CONFIG) -> Market:
    """
    Bring the market's rate accumulators up to tick ``now``.

    No-op when no tick has elapsed. Otherwise each accumulator grows by
    elapsed * rate_per_tick, where elapsed is clamped to max_accrual_ticks,
    and last_update_tick becomes ``now``.
    """
    if now <= market.last_update_tick:
        return market
    ticks = accrual_ticks(market.last_update_tick, now, config.max_accrual_ticks)
    return replace(
        market,
        cumulative_borrow_rate=saturating_add(
            market.cumulative_borrow_rate, saturating_mul(ticks, config.borrow_rate_per_tick)
        ),
        cumulative_supply_rate=saturating_add(
            market.cumulative_supply_rate, saturating_mul(ticks, config.supply_rate_per_tick)
        ),
        last_update_tick=now,
    )


def calculate_position_interest(borrowed: int, rate_per_tick: int, elapsed: int) -> int:
    """Simple interest: borrowed * rate_per_tick * elapsed / SCALING_FACTOR, saturating."""
    return saturating_mul(saturating_mul(borrowed, rate_per_tick), elapsed) // SCALING_FACTOR


def accrue_position_interest(
    position: UserPosition,
    now: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> UserPosition:
    """
    Add interest owed since the position's last update and stamp it with ``now``.

    The tick is advanced even when there is no debt, so interest never
    accrues for a period in which nothing was borrowed.
    """
    elapsed = saturating_sub(now, position.last_update_tick)
    if elapsed == 0:
        return position
    increment = 0
    if position.borrowed_amount > 0:
        increment = calculate_position_interest(
            position.borrowed_amount, config.borrow_rate_per_tick, elapsed
        )
    return replace(
        position,
        borrowed_amount=saturating_add(position.borrowed_amount, increment),
        last_update_tick=now,
    )
