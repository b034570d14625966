"""
test_risk.py - Unit tests for market risk reports

Tests:
- Health snapshot over all positions with collateral or debt
- Collateral price shock grid
- Shock validation
"""

import numpy as np
import pytest

from lending import InvalidOracleData, market_health_snapshot, stress_liquidations
from lending.risk import market_positions
from tests.conftest import ADMIN, COLLATERAL_ASSET


class TestHealthSnapshot:
    """Tests for market_health_snapshot."""

    def test_snapshot(self, program, ledger, borrowed_market):
        program.borrow("carol", borrowed_market, 10, 500)
        snapshot = market_health_snapshot(ledger, borrowed_market)
        assert snapshot.market == borrowed_market
        assert len(snapshot.positions) == 2
        by_position = dict(zip(snapshot.positions, snapshot.health_factor))
        bob = program.position("bob", borrowed_market).address
        carol = program.position("carol", borrowed_market).address
        assert by_position[bob] == pytest.approx(8500 / 8000)
        assert by_position[carol] == pytest.approx(850 / 500)
        assert snapshot.total_borrow_value == pytest.approx(8500)
        assert snapshot.liquidatable_positions == ()

    def test_reported_health_is_not_the_liquidation_trigger(self, program, ledger, borrowed_market):
        """Two-oracle health may call a position safe that liquidate still accepts."""
        snapshot = market_health_snapshot(ledger, borrowed_market)
        assert snapshot.liquidatable_positions == ()
        assert program.position_health("bob", borrowed_market).healthy
        # one price for both legs: 8000 debt against an 85 unit line
        assert program.liquidate("liquidator", borrowed_market, "bob", 50) == 55

    def test_supply_only_positions_excluded(self, ledger, funded_market):
        snapshot = market_health_snapshot(ledger, funded_market)
        assert snapshot.positions == ()
        assert snapshot.total_borrow_value == 0.0

    def test_no_debt_is_infinite(self, program, ledger, funded_market):
        program.borrow("bob", funded_market, 10, 0)
        snapshot = market_health_snapshot(ledger, funded_market)
        assert np.isinf(snapshot.health_factor[0])
        assert not snapshot.liquidatable[0]

    def test_liquidatable_flag(self, program, ledger, borrowed_market):
        program.update_oracle_price(ADMIN, COLLATERAL_ASSET, 90)
        snapshot = market_health_snapshot(ledger, borrowed_market)
        assert snapshot.liquidatable_positions == (program.position("bob", borrowed_market).address,)

    def test_stale_oracle(self, ledger, borrowed_market):
        ledger.advance(101)
        with pytest.raises(InvalidOracleData):
            market_health_snapshot(ledger, borrowed_market)

    def test_market_positions(self, program, ledger, funded_market):
        positions = market_positions(ledger, funded_market)
        assert {p.user for p in positions} == {"alice", "bob", "carol", "liquidator"}


class TestStress:
    """Tests for stress_liquidations."""

    def test_shock_grid(self, ledger, borrowed_market):
        """bob sits at 8000 debt against an 8500 line; a 10% drop moves the line to 7650."""
        result = stress_liquidations(ledger, borrowed_market, [0.0, 0.05, 0.1, 1.0])
        assert list(result.liquidatable_count) == [0, 0, 1, 1]
        assert list(result.debt_at_risk) == [0.0, 0.0, 8000.0, 8000.0]

    def test_no_borrowers(self, ledger, funded_market):
        result = stress_liquidations(ledger, funded_market, [0.5])
        assert list(result.liquidatable_count) == [0]
        assert list(result.debt_at_risk) == [0.0]

    @pytest.mark.parametrize("shocks", [[-0.1], [1.5], [[0.1, 0.2]]])
    def test_invalid_shocks(self, ledger, borrowed_market, shocks):
        with pytest.raises(ValueError):
            stress_liquidations(ledger, borrowed_market, shocks)
