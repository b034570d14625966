"""
risk.py - Read-only risk monitoring for a market.

Vectorized views over all positions of a market: per-position health, and
how many positions (and how much debt) would cross the liquidation line if
the collateral price fell by a given fraction. Valuation uses both oracles,
as the borrow path does.

Floats appear only in these reports. Liquidatable flags in the snapshot come
from the exact integer health check; the stress test is an approximation.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .accounts import UserPosition, load_market, load_position
from .config import LendingConfig, DEFAULT_CONFIG
from .core import LedgerView, BPS_SCALE, UNIT_TYPE_POSITION
from .health import calculate_position_health
from .oracle import read_price


@dataclass(frozen=True)
class HealthSnapshot:
    """
    Health of every position with debt or collateral in a market.

    Arrays are aligned with ``positions``. health_factor is threshold value /
    borrow value as a float (inf for positions without debt).

    ``liquidatable`` follows PositionHealth, which prices each asset with its
    own oracle. It is not the trigger used by the liquidate instruction.
    """
    market: str
    tick: int
    positions: Tuple[str, ...]
    collateral_value: np.ndarray
    borrow_value: np.ndarray
    health_factor: np.ndarray
    liquidatable: np.ndarray

    @property
    def liquidatable_positions(self) -> Tuple[str, ...]:
        return tuple(p for p, flag in zip(self.positions, self.liquidatable) if flag)

    @property
    def total_borrow_value(self) -> float:
        return float(self.borrow_value.sum())


@dataclass(frozen=True)
class StressResult:
    """Positions and borrowed amount crossing the liquidation line per collateral shock."""
    shocks: np.ndarray
    liquidatable_count: np.ndarray
    debt_at_risk: np.ndarray


def market_positions(view: LedgerView, address: str) -> List[UserPosition]:
    """All open positions of the market at ``address``, ordered by address."""
    positions = []
    for symbol in view.list_units():
        if view.get_unit(symbol).unit_type != UNIT_TYPE_POSITION:
            continue
        position = load_position(view, symbol)
        if position.market == address:
            positions.append(position)
    return positions


def market_health_snapshot(
    view: LedgerView,
    address: str,
    config: LendingConfig = DEFAULT_CONFIG,
) -> HealthSnapshot:
    """
    Health of every position in the market at the view's current tick.

    Raises:
        InvalidOracleData: If either market oracle is unusable
    """
    market = load_market(view, address)
    collateral_price = read_price(view, market.collateral_oracle, config)
    borrow_price = read_price(view, market.supply_oracle, config)
    active = [p for p in market_positions(view, address)
              if p.collateral_deposited or p.borrowed_amount]
    health = [calculate_position_health(p, market, collateral_price, borrow_price) for p in active]

    collateral = np.array([h.collateral_value for h in health], dtype=np.float64)
    borrowed = np.array([h.borrow_value for h in health], dtype=np.float64)
    threshold = np.array([h.threshold_value for h in health], dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        factor = np.where(borrowed > 0, threshold / borrowed, np.inf)

    return HealthSnapshot(
        market=address,
        tick=view.current_tick,
        positions=tuple(p.address for p in active),
        collateral_value=collateral,
        borrow_value=borrowed,
        health_factor=factor,
        liquidatable=np.array([h.liquidatable for h in health], dtype=bool),
    )


def stress_liquidations(
    view: LedgerView,
    address: str,
    collateral_shocks: Sequence[float],
    config: LendingConfig = DEFAULT_CONFIG,
) -> StressResult:
    """
    Count positions that become liquidatable under collateral price shocks.

    Args:
        view: Read-only ledger access
        address: Market address
        collateral_shocks: Fractional price drops, e.g. [0.1, 0.3, 0.5]
        config: Protocol constants (oracle validity)

    Returns:
        StressResult with one entry per shock. debt_at_risk is the sum of
        borrowed_amount (supply-asset units) over the liquidatable positions.

    Raises:
        ValueError: If a shock is outside [0, 1]
    """
    shocks = np.asarray(collateral_shocks, dtype=np.float64)
    if shocks.ndim != 1:
        raise ValueError("collateral_shocks must be a flat sequence")
    if np.any(shocks < 0) or np.any(shocks > 1):
        raise ValueError(f"collateral shocks must lie in [0, 1], got {collateral_shocks}")

    market = load_market(view, address)
    collateral_price = read_price(view, market.collateral_oracle, config)
    borrow_price = read_price(view, market.supply_oracle, config)
    positions = [p for p in market_positions(view, address) if p.borrowed_amount]

    collateral = np.array([p.collateral_deposited for p in positions], dtype=np.float64)
    debt = np.array([p.borrowed_amount for p in positions], dtype=np.float64)

    # (shocks x positions) grid of shocked threshold values
    shocked_price = collateral_price * (1.0 - shocks)
    threshold = np.outer(shocked_price, collateral) * market.liquidation_threshold / BPS_SCALE
    unsafe = debt * borrow_price > threshold

    return StressResult(
        shocks=shocks,
        liquidatable_count=unsafe.sum(axis=1).astype(np.int64),
        debt_at_risk=(unsafe * debt).sum(axis=1),
    )
