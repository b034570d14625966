"""
health.py - Collateralization and position health.

Values are quantity * oracle price, in the oracle's price units. A position
is healthy while its borrow value is at most its collateral value times the
liquidation threshold. The collateral factor (at most the threshold) caps new
borrowing, leaving a buffer between the borrowing limit and liquidation.

The calculate_* functions are pure; compute_position_health is the adapter
that reads the position and both oracles from a view.
"""

from __future__ import annotations
from dataclasses import dataclass

from .accounts import Market, UserPosition, load_market, load_position
from .config import LendingConfig, DEFAULT_CONFIG
from .core import LedgerView, BPS_SCALE, SCALING_FACTOR, HEALTH_FACTOR_MAX
from .fixed_point import checked_mul, mul_div, saturating_sub
from .oracle import read_price


@dataclass(frozen=True, slots=True)
class PositionHealth:
    """
    Snapshot of a position's collateralization.

    health_factor is threshold_value * SCALING_FACTOR / borrow_value, or
    HEALTH_FACTOR_MAX with no debt; below SCALING_FACTOR the position is
    liquidatable.

    Values use the collateral oracle for collateral and the supply oracle for
    debt. The liquidate instruction prices both legs with a single oracle, so
    a position reported healthy here may still be accepted for liquidation
    (and the reverse) whenever the two prices differ.
    """
    collateral_value: int
    borrow_value: int
    max_borrow_value: int
    threshold_value: int
    health_factor: int
    healthy: bool
    within_borrow_limit: bool

    @property
    def liquidatable(self) -> bool:
        return not self.healthy


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def collateral_value(collateral_amount: int, collateral_price: int) -> int:
    return checked_mul(collateral_amount, collateral_price)


def borrow_value(borrowed_amount: int, borrow_price: int) -> int:
    return checked_mul(borrowed_amount, borrow_price)


def max_borrow_value(collateral_val: int, collateral_factor: int) -> int:
    """Borrowing limit: collateral_value * collateral_factor / 10000."""
    return mul_div(collateral_val, collateral_factor, BPS_SCALE)


def threshold_value(collateral_val: int, liquidation_threshold: int) -> int:
    """Liquidation line: collateral_value * liquidation_threshold / 10000."""
    return mul_div(collateral_val, liquidation_threshold, BPS_SCALE)


def is_liquidatable(collateral_val: int, borrow_val: int, liquidation_threshold: int) -> bool:
    """Strictly above the liquidation line."""
    return borrow_val > threshold_value(collateral_val, liquidation_threshold)


def is_healthy(collateral_val: int, borrow_val: int, liquidation_threshold: int) -> bool:
    return not is_liquidatable(collateral_val, borrow_val, liquidation_threshold)


def health_factor(collateral_val: int, borrow_val: int, liquidation_threshold: int) -> int:
    if borrow_val == 0:
        return HEALTH_FACTOR_MAX
    return min(
        mul_div(threshold_value(collateral_val, liquidation_threshold), SCALING_FACTOR, borrow_val),
        HEALTH_FACTOR_MAX,
    )


def max_additional_borrow(
    collateral_amount: int,
    collateral_price: int,
    borrowed_amount: int,
    borrow_price: int,
    collateral_factor: int,
) -> int:
    """Largest extra borrow (in supply-asset units) the collateral factor still allows."""
    limit = max_borrow_value(collateral_value(collateral_amount, collateral_price), collateral_factor)
    headroom = saturating_sub(limit, borrow_value(borrowed_amount, borrow_price))
    return headroom // borrow_price if borrow_price else 0


def calculate_position_health(
    position: UserPosition,
    market: Market,
    collateral_price: int,
    borrow_price: int,
) -> PositionHealth:
    """Value ``position`` with independent collateral and borrow prices."""
    cv = collateral_value(position.collateral_deposited, collateral_price)
    bv = borrow_value(position.borrowed_amount, borrow_price)
    limit = max_borrow_value(cv, market.collateral_factor)
    line = threshold_value(cv, market.liquidation_threshold)
    return PositionHealth(
        collateral_value=cv,
        borrow_value=bv,
        max_borrow_value=limit,
        threshold_value=line,
        health_factor=health_factor(cv, bv, market.liquidation_threshold),
        healthy=bv <= line,
        within_borrow_limit=bv <= limit,
    )


# ============================================================================
# VIEW ADAPTER
# ============================================================================

def compute_position_health(
    view: LedgerView,
    position_address: str,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PositionHealth:
    """
    Health of the position at ``position_address`` at the view's current tick.

    Reads the collateral oracle and the supply-asset oracle of the position's
    market.

    Raises:
        InvalidOracleData: If either price is unusable
    """
    position = load_position(view, position_address)
    market = load_market(view, position.market)
    return calculate_position_health(
        position,
        market,
        collateral_price=read_price(view, market.collateral_oracle, config),
        borrow_price=read_price(view, market.supply_oracle, config),
    )
