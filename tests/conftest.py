"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, conformance and functional tests:
- Ledgers with the two market tokens and funded user wallets
- A LendingProgram over that ledger
- Markets at the reference prices (collateral 100, borrow asset 1)
- Markets with supplied liquidity
- Comparison utilities for atomicity checks
- Random operation sequences for property-based conformance tests
"""

import pytest
from hypothesis import strategies as st
from typing import Any, Dict

from lending import (
    Ledger, LendingError, LendingProgram, token,
    UNIT_TYPE_POSITION,
)


SUPPLY_ASSET = "USDC"
COLLATERAL_ASSET = "ETH"
ADMIN = "admin"
USERS = ("alice", "bob", "carol", "liquidator")
INITIAL_BALANCE = 10**12

# Reference prices: one collateral unit is worth 100 borrow-asset units.
COLLATERAL_PRICE = 100
BORROW_PRICE = 1

COLLATERAL_FACTOR = 8000
LIQUIDATION_THRESHOLD = 8500

SUPPLIED_LIQUIDITY = 100_000


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def ledger_state(ledger: Ledger) -> Dict[str, Any]:
    """Everything an instruction may change, in comparable form."""
    return {
        "balances": {w: {u: q for u, q in b.items() if q} for w, b in ledger.balances.items()},
        "units": {s: (u.unit_type, u.state) for s, u in ledger.units.items()},
        "wallets": set(ledger.registered_wallets),
        "log_length": len(ledger.transaction_log),
        "tick": ledger.current_tick,
    }


def token_totals(ledger: Ledger) -> Dict[str, int]:
    return ledger.verify_double_entry()["supplies"]


def position_records(ledger: Ledger):
    """State dicts of every open position."""
    return [
        ledger.get_unit_state(symbol)
        for symbol in ledger.list_units()
        if ledger.get_unit(symbol).unit_type == UNIT_TYPE_POSITION
    ]


def fund(ledger: Ledger, wallet: str, amount: int = INITIAL_BALANCE) -> None:
    ledger.set_balance(wallet, SUPPLY_ASSET, amount)
    ledger.set_balance(wallet, COLLATERAL_ASSET, amount)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def ledger():
    """Ledger with both market tokens, an admin and funded users."""
    ledger = Ledger("test", verbose=False, test_mode=True)
    ledger.register_unit(token(SUPPLY_ASSET, "USD Coin", 6))
    ledger.register_unit(token(COLLATERAL_ASSET, "Ether", 6))
    ledger.register_wallet(ADMIN)
    for user in USERS:
        ledger.register_wallet(user)
        fund(ledger, user)
    return ledger


@pytest.fixture
def program(ledger):
    return LendingProgram(ledger)


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market(program):
    """Initialized protocol with oracles and one USDC/ETH market; returns its address."""
    program.initialize(ADMIN)
    program.create_oracle(ADMIN, SUPPLY_ASSET, BORROW_PRICE, 6)
    program.create_oracle(ADMIN, COLLATERAL_ASSET, COLLATERAL_PRICE, 6)
    return program.create_market(
        ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, COLLATERAL_FACTOR, LIQUIDATION_THRESHOLD
    )


@pytest.fixture
def funded_market(program, market):
    """Market where alice supplied SUPPLIED_LIQUIDITY and every user holds a position."""
    for user in USERS:
        program.open_position(user, market)
    program.supply("alice", market, SUPPLIED_LIQUIDITY)
    return market


@pytest.fixture
def borrowed_market(program, funded_market):
    """funded_market where bob posted 100 ETH and borrowed the full 8000 USDC limit."""
    program.borrow("bob", funded_market, 100, 8000)
    return funded_market


# =============================================================================
# OPERATION SEQUENCES
# =============================================================================
# Hypothesis cannot share function-scoped fixtures between examples, so
# property tests build a fresh world per example with new_world().

def new_world(name: str = "test"):
    """Fresh (program, market address) equivalent to the funded_market fixture."""
    ledger = Ledger(name, verbose=False, test_mode=True)
    ledger.register_unit(token(SUPPLY_ASSET, "USD Coin", 6))
    ledger.register_unit(token(COLLATERAL_ASSET, "Ether", 6))
    ledger.register_wallet(ADMIN)
    for user in USERS:
        ledger.register_wallet(user)
        fund(ledger, user)
    program = LendingProgram(ledger)
    program.initialize(ADMIN)
    program.create_oracle(ADMIN, SUPPLY_ASSET, BORROW_PRICE, 6)
    program.create_oracle(ADMIN, COLLATERAL_ASSET, COLLATERAL_PRICE, 6)
    market = program.create_market(
        ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, COLLATERAL_FACTOR, LIQUIDATION_THRESHOLD
    )
    for user in USERS:
        program.open_position(user, market)
    program.supply("alice", market, SUPPLIED_LIQUIDITY)
    return program, market


_borrowers = st.sampled_from(USERS[:3])
_amounts = st.integers(min_value=1, max_value=20_000)

lending_operations = st.one_of(
    st.tuples(st.just("supply"), _borrowers, _amounts),
    st.tuples(st.just("withdraw"), _borrowers, _amounts),
    st.tuples(st.just("borrow"), _borrowers, st.integers(0, 200), st.integers(0, 20_000)),
    st.tuples(st.just("repay"), _borrowers, _amounts),
    st.tuples(st.just("withdraw_collateral"), _borrowers, st.integers(1, 200)),
    st.tuples(st.just("liquidate"), _borrowers, _amounts),
    st.tuples(st.just("flash_loan"), _amounts, st.integers(0, 100)),
    st.tuples(st.just("price"), st.sampled_from([40, 60, 90, 100, 150])),
    st.tuples(st.just("advance"), st.integers(1, 150)),
)


def apply_operation(program: LendingProgram, market: str, op) -> bool:
    """
    Run one generated operation; return False if the program rejected it.

    Rejections are expected: the generators do not try to produce only
    valid instructions.
    """
    kind, *args = op
    try:
        if kind == "supply":
            program.supply(args[0], market, args[1])
        elif kind == "withdraw":
            held = program.position(args[0], market).share_balance
            program.withdraw(args[0], market, min(args[1], held) or args[1])
        elif kind == "borrow":
            program.borrow(args[0], market, args[1], args[2])
        elif kind == "repay":
            program.repay(args[0], market, args[1])
        elif kind == "withdraw_collateral":
            program.withdraw_collateral(args[0], market, args[1])
        elif kind == "liquidate":
            program.liquidate("liquidator", market, args[0], args[1])
        elif kind == "flash_loan":
            amount, repaid_fee = args

            def callback(ctx):
                ctx.transfer(ctx.recipient, ctx.vault, ctx.amount + repaid_fee)

            program.flash_loan(market, "carol", amount, callback, ["carol"])
        elif kind == "price":
            program.update_oracle_price(ADMIN, COLLATERAL_ASSET, args[0])
        elif kind == "advance":
            program.ledger.advance(args[0])
            program.update_oracle_price(ADMIN, SUPPLY_ASSET, BORROW_PRICE)
            program.update_oracle_price(ADMIN, COLLATERAL_ASSET, COLLATERAL_PRICE)
        else:
            raise AssertionError(f"unknown operation {kind}")
    except (LendingError, ValueError):
        return False
    return True
