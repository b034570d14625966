"""
Conservation Law Conformance Tests

INVARIANT: For all tokens u, at all ticks t:
    Σ_{w ∈ wallets} balance(w, u, t) = constant

and the market records agree with custody and with each other:

    balance(collateral_vault) = total_collateral_deposits
                              = Σ_{positions} collateral_deposited
    total_borrows             = Σ_{positions} borrowed_amount
    total_share_supply        = Σ_{positions} share_balance

Instructions move tokens between users and vaults but never create or
destroy them. These tests run arbitrary instruction sequences, most of
which the program rejects, and check the laws after every step.
"""

from hypothesis import given, settings, note
from hypothesis import strategies as st

from tests.conftest import (
    SUPPLY_ASSET, COLLATERAL_ASSET,
    apply_operation, lending_operations, new_world, position_records, token_totals,
)


def assert_books_balance(program, market, expected_totals):
    ledger = program.ledger
    assert ledger.verify_double_entry(expected_totals)["valid"]

    record = program.market(market)
    positions = [p for p in position_records(ledger) if p["market"] == market]
    collateral_vault = ledger.get_balance(record.collateral_vault, COLLATERAL_ASSET)

    assert collateral_vault == record.total_collateral_deposits
    assert sum(p["collateral_deposited"] for p in positions) == record.total_collateral_deposits
    assert sum(p["borrowed_amount"] for p in positions) == record.total_borrows
    assert sum(p["share_balance"] for p in positions) == record.total_share_supply


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(st.lists(lending_operations, min_size=1, max_size=25))
    @settings(max_examples=50, deadline=None)
    def test_books_balance_after_every_instruction(self, operations):
        """
        PROPERTY: Token supplies are constant and the records match custody.
        """
        program, market = new_world()
        totals = token_totals(program.ledger)
        assert_books_balance(program, market, totals)
        for op in operations:
            applied = apply_operation(program, market, op)
            note(f"{op} -> {'applied' if applied else 'rejected'}")
            assert_books_balance(program, market, totals)

    @given(st.lists(lending_operations, min_size=1, max_size=25))
    @settings(max_examples=30, deadline=None)
    def test_supply_vault_never_negative(self, operations):
        """
        PROPERTY: No instruction sequence overdraws a vault.
        """
        program, market = new_world()
        record = program.market(market)
        for op in operations:
            apply_operation(program, market, op)
            assert program.ledger.get_balance(record.supply_vault, SUPPLY_ASSET) >= 0
            assert program.ledger.get_balance(record.collateral_vault, COLLATERAL_ASSET) >= 0


class TestConservationExamples:
    """Explicit conservation examples."""

    def test_borrow_repay_cycle(self, program, ledger, funded_market):
        totals = token_totals(ledger)
        program.borrow("bob", funded_market, 100, 8000)
        program.repay("bob", funded_market, 8000)
        program.withdraw_collateral("bob", funded_market, 100)
        assert token_totals(ledger) == totals
        assert_books_balance(program, funded_market, totals)

    def test_liquidation(self, program, ledger, funded_market):
        totals = token_totals(ledger)
        program.borrow("bob", funded_market, 2000, 8000)
        program.update_oracle_price("admin", COLLATERAL_ASSET, 4)
        program.liquidate("liquidator", funded_market, "bob", 1000)
        assert_books_balance(program, funded_market, totals)

    def test_flash_loan_fee_stays_in_vault(self, program, ledger, funded_market):
        totals = token_totals(ledger)
        program.flash_loan(funded_market, "carol", 5000, lambda ctx: ctx.repay(), ["carol"])
        assert token_totals(ledger) == totals
        assert_books_balance(program, funded_market, totals)
