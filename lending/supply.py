"""
supply.py - Supplying to and withdrawing from a market's lending pool.

Suppliers move the supply asset into the market's supply vault and receive
shares at the current exchange rate; withdrawing burns shares for the
underlying they are worth.

Each supply first grows the market's deposits by deposits / supply_yield_divisor,
a deterministic stand-in for externally earned interest. It is what moves
the exchange rate above par.
"""

from __future__ import annotations
from dataclasses import replace
from typing import List

from .accounts import Market, load_market, load_user_position, record_change
from .config import LendingConfig, DEFAULT_CONFIG
from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    build_transaction,
    InsufficientBalance, InsufficientCollateral, InsufficientLiquidity,
)
from .fixed_point import checked_add, checked_sub, require_positive, require_u64, saturating_add
from .health import borrow_value, collateral_value, max_borrow_value
from .interest import accrue_market_interest
from .market import available_liquidity, require_open
from .oracle import read_price
from .shares import exchange_rate, shares_for_deposit, underlying_for_shares


def apply_supply_yield(market: Market, config: LendingConfig = DEFAULT_CONFIG) -> Market:
    """Grow total_supply_deposits by total_supply_deposits / supply_yield_divisor."""
    if market.total_supply_deposits == 0:
        return market
    bump = market.total_supply_deposits // config.supply_yield_divisor
    return replace(market, total_supply_deposits=saturating_add(market.total_supply_deposits, bump))


def compute_supply(
    view: LedgerView,
    address: str,
    user: str,
    amount: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Deposit ``amount`` of the supply asset and mint shares for it.

    Raises:
        MarketPaused / MarketNotActive: If the market is closed to new risk
        MathOverflow: If a total would exceed u128
    """
    require_positive(amount)
    market = load_market(view, address)
    require_open(view, market)
    position = load_user_position(view, market, user)

    market = accrue_market_interest(market, view.current_tick, config)
    market = apply_supply_yield(market, config)
    shares = shares_for_deposit(amount, exchange_rate(market))

    position = replace(
        position,
        supply_deposited=checked_add(position.supply_deposited, amount),
        share_balance=checked_add(position.share_balance, shares),
    )
    market = replace(
        market,
        total_supply_deposits=checked_add(market.total_supply_deposits, amount),
        total_share_supply=checked_add(market.total_share_supply, shares),
    )

    moves = [Move(amount, market.supply_asset, user, market.supply_vault, user)]
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market.address, "SUPPLY")
    return build_transaction(
        view, moves, [record_change(view, market), record_change(view, position)], origin
    )


def compute_withdraw(
    view: LedgerView,
    address: str,
    user: str,
    share_amount: int,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Burn ``share_amount`` shares and pay out the underlying they are worth.

    A position with debt must still be within its borrowing limit, valued
    with the collateral and supply-asset oracles. The payout must be covered
    by deposits that are not lent out.

    Raises:
        InsufficientBalance: If the position holds fewer shares
        InsufficientCollateral: If the position's debt exceeds its borrowing limit
        InsufficientLiquidity: If the payout exceeds available liquidity
    """
    require_positive(share_amount, "share_amount")
    market = load_market(view, address)
    position = load_user_position(view, market, user)

    market = accrue_market_interest(market, view.current_tick, config)
    if position.share_balance < share_amount:
        raise InsufficientBalance(
            f"{position.address} holds {position.share_balance} shares, {share_amount} requested"
        )
    amount = underlying_for_shares(share_amount, exchange_rate(market))

    if position.borrowed_amount > 0:
        limit = max_borrow_value(
            collateral_value(position.collateral_deposited,
                             read_price(view, market.collateral_oracle, config)),
            market.collateral_factor,
        )
        debt = borrow_value(position.borrowed_amount, read_price(view, market.supply_oracle, config))
        if debt > limit:
            raise InsufficientCollateral(f"{position.address} debt {debt} above limit {limit}")

    remaining_shares = checked_sub(market.total_share_supply, share_amount)
    last_out = remaining_shares == 0 and market.total_borrows == 0
    if last_out:
        # The simulated supply yield is not backed by tokens; the last
        # redemption takes what the vault holds.
        amount = min(amount, view.get_balance(market.supply_vault, market.supply_asset))

    require_u64(amount, "withdraw amount")
    liquidity = available_liquidity(view, market)
    if amount > liquidity:
        raise InsufficientLiquidity(
            f"withdrawal of {amount} exceeds available liquidity {liquidity}"
        )

    remaining_deposits = checked_sub(market.total_supply_deposits, amount)
    if last_out:
        # Rounding dust has no owner left.
        remaining_deposits = 0

    share_balance = position.share_balance - share_amount
    supply_deposited = position.supply_deposited - min(amount, position.supply_deposited)
    if share_balance == 0:
        # A position without shares has no principal left to claim.
        supply_deposited = 0
    position = replace(
        position,
        supply_deposited=supply_deposited,
        share_balance=share_balance,
    )
    market = replace(
        market,
        total_supply_deposits=remaining_deposits,
        total_share_supply=remaining_shares,
    )

    moves: List[Move] = []
    if amount > 0:
        moves.append(Move(amount, market.supply_asset, market.supply_vault, user, market.address))
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market.address, "WITHDRAW")
    return build_transaction(
        view, moves, [record_change(view, market), record_change(view, position)], origin
    )
