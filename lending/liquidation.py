"""
liquidation.py - Repaying an unsafe position's debt in exchange for its collateral.

A liquidator repays part of a borrower's debt into the supply vault and
receives collateral worth liquidation_bonus / liquidation_bonus_divisor times
the repaid amount (1100 / 1000, a 10% premium) out of the collateral vault.

Liquidation values both legs with ONE oracle price, unlike the borrow and
withdraw checks which price collateral and debt independently. With a single
price the price cancels out and the trigger reduces to comparing quantities.
price_both_legs_with_single_oracle names this simplification so it can be
replaced by two-oracle pricing without touching the rest of the flow.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional, Tuple

from .accounts import Market, UserPosition, load_market, load_position, record_change
from .config import LendingConfig, DEFAULT_CONFIG
from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    build_transaction,
    ExcessiveLiquidation, InvalidAccount, PositionHealthy,
)
from .fixed_point import checked_sub, mul_div, require_positive
from .health import borrow_value, collateral_value, threshold_value
from .interest import accrue_market_interest
from .oracle import read_price


def price_both_legs_with_single_oracle(position: UserPosition, price: int) -> Tuple[int, int]:
    """(collateral_value, borrow_value) of ``position`` with one price for both assets."""
    return (
        collateral_value(position.collateral_deposited, price),
        borrow_value(position.borrowed_amount, price),
    )


def collateral_to_seize(
    liquidation_amount: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> int:
    """liquidation_amount * liquidation_bonus / liquidation_bonus_divisor."""
    return mul_div(liquidation_amount, config.liquidation_bonus, config.liquidation_bonus_divisor)


def check_liquidatable(position: UserPosition, market: Market, price: int) -> None:
    """
    Raises:
        PositionHealthy: Unless borrow value is strictly above
            collateral value * liquidation_threshold / 10000
    """
    cv, bv = price_both_legs_with_single_oracle(position, price)
    line = threshold_value(cv, market.liquidation_threshold)
    if bv <= line:
        raise PositionHealthy(f"{position.address} borrow value {bv} within threshold {line}")


def compute_liquidation(
    view: LedgerView,
    address: str,
    borrower_position: str,
    liquidator: str,
    liquidation_amount: int,
    oracle: Optional[str] = None,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Repay ``liquidation_amount`` of the borrower's debt and seize bonus collateral.

    Args:
        view: Read-only ledger access
        address: Market address
        borrower_position: Address of the position being liquidated
        liquidator: Wallet paying the debt and receiving the collateral
        liquidation_amount: Debt repaid, in supply-asset units
        oracle: Oracle used to price both legs; one of the market's two
            oracles, the collateral oracle by default

    Raises:
        InvalidAccount: If the position belongs to another market or the
            oracle is not one of the market's
        PositionHealthy: If the position is not above its liquidation line
        ExcessiveLiquidation: If the amount exceeds the debt or the seizure
            exceeds the posted collateral
    """
    require_positive(liquidation_amount, "liquidation_amount")
    market = load_market(view, address)
    position = load_position(view, borrower_position, market=market.address)
    oracle = oracle or market.collateral_oracle
    if oracle not in (market.collateral_oracle, market.supply_oracle):
        raise InvalidAccount(f"{oracle} is not an oracle of {market.address}")

    market = accrue_market_interest(market, view.current_tick, config)
    check_liquidatable(position, market, read_price(view, oracle, config))

    seize = collateral_to_seize(liquidation_amount, config)
    if liquidation_amount > position.borrowed_amount:
        raise ExcessiveLiquidation(
            f"repaying {liquidation_amount} of {position.borrowed_amount} owed"
        )
    if seize > position.collateral_deposited:
        raise ExcessiveLiquidation(
            f"seizing {seize} of {position.collateral_deposited} posted collateral"
        )

    position = replace(
        position,
        borrowed_amount=position.borrowed_amount - liquidation_amount,
        collateral_deposited=position.collateral_deposited - seize,
    )
    market = replace(
        market,
        total_borrows=checked_sub(market.total_borrows, liquidation_amount),
        total_collateral_deposits=checked_sub(market.total_collateral_deposits, seize),
    )

    moves = [Move(liquidation_amount, market.supply_asset, liquidator, market.supply_vault, liquidator)]
    if seize > 0:
        moves.append(Move(seize, market.collateral_asset, market.collateral_vault,
                          liquidator, market.address))
    origin = TransactionOrigin(OriginType.USER_ACTION, liquidator, position.address, "LIQUIDATE")
    return build_transaction(
        view, moves, [record_change(view, market), record_change(view, position)], origin
    )
