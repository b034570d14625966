"""
borrow.py - Borrowing against collateral, repaying, and withdrawing collateral.

Borrowers post the collateral asset into the market's collateral vault and
borrow the supply asset out of the supply vault, up to collateral value times
the collateral factor. Collateral and debt are priced by their own oracles.

Interest accrued on a position's debt inside borrow and repay is owed to the
pool: it is added to the market's total_borrows and total_supply_deposits as
well as to the position, so repayments never exceed the market total and the
exchange rate reflects the earned interest.
"""

from __future__ import annotations
from dataclasses import replace
from typing import List, Tuple

from .accounts import Market, UserPosition, load_market, load_user_position, record_change
from .config import LendingConfig, DEFAULT_CONFIG
from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    build_transaction,
    HasBorrows, InsufficientBalance, InsufficientCollateral, InsufficientLiquidity,
)
from .fixed_point import checked_add, checked_sub, require_positive, require_u64, saturating_add
from .health import borrow_value, collateral_value, max_borrow_value
from .interest import accrue_market_interest, accrue_position_interest
from .market import available_liquidity, require_open
from .oracle import read_price


def _accrue_debt(
    market: Market,
    position: UserPosition,
    now: int,
    config: LendingConfig,
) -> Tuple[Market, UserPosition]:
    """Accrue position interest and book it on the market totals."""
    accrued = accrue_position_interest(position, now, config)
    interest = accrued.borrowed_amount - position.borrowed_amount
    if interest:
        market = replace(
            market,
            total_borrows=saturating_add(market.total_borrows, interest),
            total_supply_deposits=saturating_add(market.total_supply_deposits, interest),
        )
    return market, accrued


def compute_borrow(
    view: LedgerView,
    address: str,
    user: str,
    collateral_amount: int,
    borrow_amount: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Post ``collateral_amount`` of collateral and borrow ``borrow_amount``.

    Either amount may be zero, not both. The new total debt, valued with the
    supply-asset oracle, must not exceed the posted collateral, valued with
    the collateral oracle, times the collateral factor.

    Raises:
        MarketPaused / MarketNotActive: If the market is closed to new risk
        InvalidOracleData: If either price is unusable
        InsufficientCollateral: If the borrow exceeds the collateral limit
        InsufficientLiquidity: If the vault cannot fund the borrow
    """
    require_u64(collateral_amount, "collateral_amount")
    require_u64(borrow_amount, "borrow_amount")
    if collateral_amount == 0 and borrow_amount == 0:
        raise ValueError("collateral_amount and borrow_amount cannot both be zero")
    market = load_market(view, address)
    require_open(view, market)
    position = load_user_position(view, market, user)
    now = view.current_tick

    market = accrue_market_interest(market, now, config)
    collateral_price = read_price(view, market.collateral_oracle, config)
    borrow_price = read_price(view, market.supply_oracle, config)

    moves: List[Move] = []
    if collateral_amount > 0:
        moves.append(Move(collateral_amount, market.collateral_asset, user,
                          market.collateral_vault, user))
        position = replace(
            position,
            collateral_deposited=checked_add(position.collateral_deposited, collateral_amount),
        )
        market = replace(
            market,
            total_collateral_deposits=checked_add(market.total_collateral_deposits, collateral_amount),
        )

    market, position = _accrue_debt(market, position, now, config)

    new_borrowed = checked_add(position.borrowed_amount, borrow_amount)
    limit = max_borrow_value(
        collateral_value(position.collateral_deposited, collateral_price),
        market.collateral_factor,
    )
    new_debt = borrow_value(new_borrowed, borrow_price)
    if new_debt > limit:
        raise InsufficientCollateral(
            f"borrow value {new_debt} exceeds limit {limit} for {position.address}"
        )
    liquidity = available_liquidity(view, market)
    if borrow_amount > liquidity:
        raise InsufficientLiquidity(
            f"borrow of {borrow_amount} exceeds available liquidity {liquidity}"
        )

    if borrow_amount > 0:
        moves.append(Move(borrow_amount, market.supply_asset, market.supply_vault,
                          user, market.address))
        position = replace(position, borrowed_amount=new_borrowed)
        market = replace(market, total_borrows=checked_add(market.total_borrows, borrow_amount))

    origin = TransactionOrigin(OriginType.USER_ACTION, user, market.address, "BORROW")
    return build_transaction(
        view, moves, [record_change(view, market), record_change(view, position)], origin
    )


def compute_repay(
    view: LedgerView,
    address: str,
    user: str,
    amount: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Repay up to ``amount`` of the position's debt.

    Only min(amount, debt after interest) is taken from the user; repaying
    with no debt outstanding just accrues.
    """
    require_positive(amount)
    market = load_market(view, address)
    position = load_user_position(view, market, user)
    now = view.current_tick

    market = accrue_market_interest(market, now, config)
    market, position = _accrue_debt(market, position, now, config)

    repaid = min(amount, position.borrowed_amount)
    moves: List[Move] = []
    if repaid > 0:
        moves.append(Move(repaid, market.supply_asset, user, market.supply_vault, user))
        position = replace(position, borrowed_amount=position.borrowed_amount - repaid)
        market = replace(market, total_borrows=checked_sub(market.total_borrows, repaid))

    origin = TransactionOrigin(OriginType.USER_ACTION, user, market.address, "REPAY")
    return build_transaction(
        view, moves, [record_change(view, market), record_change(view, position)], origin
    )


def compute_withdraw_collateral(
    view: LedgerView,
    address: str,
    user: str,
    amount: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Return ``amount`` of posted collateral to the user.

    Collateral is locked while any debt is outstanding.

    Raises:
        HasBorrows: If the position owes anything
        InsufficientBalance: If less than amount is posted
    """
    require_positive(amount)
    market = load_market(view, address)
    position = load_user_position(view, market, user)

    market = accrue_market_interest(market, view.current_tick, config)
    if position.borrowed_amount > 0:
        raise HasBorrows(f"{position.address} owes {position.borrowed_amount}")
    if position.collateral_deposited < amount:
        raise InsufficientBalance(
            f"{position.address} has {position.collateral_deposited} collateral, {amount} requested"
        )

    position = replace(position, collateral_deposited=position.collateral_deposited - amount)
    market = replace(
        market,
        total_collateral_deposits=checked_sub(market.total_collateral_deposits, amount),
    )
    moves = [Move(amount, market.collateral_asset, market.collateral_vault, user, market.address)]
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market.address, "WITHDRAW_COLLATERAL")
    return build_transaction(
        view, moves, [record_change(view, market), record_change(view, position)], origin
    )
