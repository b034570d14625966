"""
test_market_admin.py - Unit tests for protocol, market and position lifecycle

Tests:
- Protocol initialization
- Market creation validation and provisioning
- Risk parameter updates (admin only)
- Pause switch and market activation gating
- Position open/close lifecycle
"""

import pytest

from lending import (
    token, market_address, supply_vault_address, collateral_vault_address, oracle_address,
    AccountAlreadyInitialized, HasBorrows, HasDeposits, InvalidAccount, InvalidMarketState,
    MarketNotActive, MarketNotFound, MarketPaused, Unauthorized, UserDepositAlreadyExists,
    UserPosition, compute_close_position,
)
from lending.accounts import create_record_unit, load_market, position_address_for
from lending.market import validate_risk_parameters
from tests.conftest import (
    ADMIN, SUPPLY_ASSET, COLLATERAL_ASSET, COLLATERAL_FACTOR, LIQUIDATION_THRESHOLD,
    ledger_state,
)
from tests.fake_view import FakeView


@pytest.fixture
def protocol(program):
    """Initialized protocol with both oracles but no market."""
    program.initialize(ADMIN)
    program.create_oracle(ADMIN, SUPPLY_ASSET, 1, 6)
    program.create_oracle(ADMIN, COLLATERAL_ASSET, 100, 6)
    return program


# ============================================================================
# PROTOCOL
# ============================================================================

class TestInitialize:
    """Tests for protocol initialization."""

    def test_initialize(self, program):
        protocol = program.initialize(ADMIN)
        assert protocol.admin == ADMIN
        assert protocol.total_markets == 0
        assert not protocol.is_paused

    def test_initialize_twice(self, program):
        program.initialize(ADMIN)
        with pytest.raises(AccountAlreadyInitialized):
            program.initialize("alice")
        assert program.protocol().admin == ADMIN

    def test_market_requires_protocol(self, program):
        program.create_oracle(ADMIN, SUPPLY_ASSET, 1, 6)
        program.create_oracle(ADMIN, COLLATERAL_ASSET, 100, 6)
        with pytest.raises(InvalidAccount):
            program.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)


# ============================================================================
# MARKET CREATION
# ============================================================================

class TestCreateMarket:
    """Tests for market creation."""

    def test_create_market(self, protocol, ledger):
        address = protocol.create_market("alice", 7, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)
        assert address == market_address(7, SUPPLY_ASSET, COLLATERAL_ASSET)
        market = protocol.market(address)
        assert market.admin == "alice"
        assert market.supply_oracle == oracle_address(SUPPLY_ASSET)
        assert market.collateral_oracle == oracle_address(COLLATERAL_ASSET)
        assert market.total_supply_deposits == 0
        assert market.is_active
        assert ledger.is_registered(supply_vault_address(7, SUPPLY_ASSET))
        assert ledger.is_registered(collateral_vault_address(7, COLLATERAL_ASSET))
        assert protocol.protocol().total_markets == 1

    def test_market_starts_at_current_tick(self, protocol, ledger):
        ledger.advance(30)
        protocol.update_oracle_price(ADMIN, SUPPLY_ASSET, 1)
        address = protocol.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)
        assert protocol.market(address).last_update_tick == 30

    def test_duplicate_market(self, protocol, ledger):
        protocol.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)
        before = ledger_state(ledger)
        with pytest.raises(AccountAlreadyInitialized):
            protocol.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)
        assert ledger_state(ledger) == before

    def test_reversed_pair_is_a_different_market(self, protocol):
        a = protocol.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)
        b = protocol.create_market(ADMIN, 1, COLLATERAL_ASSET, SUPPLY_ASSET, 8000, 8500)
        assert a != b
        assert protocol.protocol().total_markets == 2

    def test_same_asset_twice(self, protocol):
        with pytest.raises(InvalidAccount):
            protocol.create_market(ADMIN, 1, SUPPLY_ASSET, SUPPLY_ASSET, 8000, 8500)

    def test_asset_without_oracle(self, protocol, ledger):
        ledger.register_unit(token("SOL", "Solana", 9))
        with pytest.raises(InvalidAccount):
            protocol.create_market(ADMIN, 1, SUPPLY_ASSET, "SOL", 8000, 8500)

    @pytest.mark.parametrize("cf, lt", [(9000, 8500), (8000, 10_001), (-1, 8500)])
    def test_invalid_risk_parameters(self, protocol, ledger, cf, lt):
        before = ledger_state(ledger)
        with pytest.raises(InvalidMarketState):
            protocol.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, cf, lt)
        assert ledger_state(ledger) == before

    def test_parameter_types(self):
        with pytest.raises(ValueError):
            validate_risk_parameters(8000.0, 8500)
        validate_risk_parameters(0, 0)
        validate_risk_parameters(10_000, 10_000)

    def test_paused_protocol_blocks_creation(self, protocol):
        protocol.set_paused(ADMIN, True)
        with pytest.raises(MarketPaused):
            protocol.create_market(ADMIN, 1, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)

    def test_unknown_market(self, protocol):
        with pytest.raises(MarketNotFound):
            protocol.market(market_address(99, SUPPLY_ASSET, COLLATERAL_ASSET))


# ============================================================================
# MARKET ADMINISTRATION
# ============================================================================

class TestMarketAdministration:
    """Tests for risk parameter updates, pausing and activation."""

    def test_update_params(self, program, market):
        updated = program.update_market_params(ADMIN, market, 7000, 9000)
        assert updated.collateral_factor == 7000
        assert updated.liquidation_threshold == 9000

    def test_update_params_unauthorized(self, program, market):
        with pytest.raises(Unauthorized):
            program.update_market_params("alice", market, 7000, 9000)
        assert program.market(market).collateral_factor == COLLATERAL_FACTOR

    def test_update_params_invalid(self, program, market):
        with pytest.raises(InvalidMarketState):
            program.update_market_params(ADMIN, market, 9000, 8000)
        assert program.market(market).liquidation_threshold == LIQUIDATION_THRESHOLD

    def test_pause_requires_admin(self, program, market):
        with pytest.raises(Unauthorized):
            program.set_paused("alice", True)

    def test_pause_gates_new_risk(self, program, funded_market):
        """Supply and borrow stop while paused; withdraw and repay continue."""
        program.borrow("bob", funded_market, 100, 1000)
        program.set_paused(ADMIN, True)
        with pytest.raises(MarketPaused):
            program.supply("carol", funded_market, 10)
        with pytest.raises(MarketPaused):
            program.borrow("bob", funded_market, 0, 1)
        assert program.repay("bob", funded_market, 1000) == 1000
        assert program.withdraw("alice", funded_market, 10) == 10
        program.set_paused(ADMIN, False)
        program.supply("carol", funded_market, 10)

    def test_market_activation(self, program, funded_market):
        with pytest.raises(Unauthorized):
            program.set_market_active("bob", funded_market, False)
        market = program.set_market_active(ADMIN, funded_market, False)
        assert not market.is_active
        with pytest.raises(MarketNotActive):
            program.supply("carol", funded_market, 10)
        assert program.withdraw("alice", funded_market, 10) == 10

    def test_market_admin_may_deactivate(self, protocol):
        address = protocol.create_market("carol", 2, SUPPLY_ASSET, COLLATERAL_ASSET, 8000, 8500)
        assert not protocol.set_market_active("carol", address, False).is_active
        assert protocol.set_market_active(ADMIN, address, True).is_active


# ============================================================================
# POSITIONS
# ============================================================================

class TestPositions:
    """Tests for position open/close."""

    def test_open_position(self, program, market):
        address = program.open_position("alice", market)
        position = program.position("alice", market)
        assert position.address == address
        assert position.user == "alice"
        assert position.market == market
        assert position.share_balance == 0

    def test_open_twice(self, program, market):
        program.open_position("alice", market)
        with pytest.raises(UserDepositAlreadyExists):
            program.open_position("alice", market)

    def test_open_in_unknown_market(self, program, market):
        with pytest.raises(MarketNotFound):
            program.open_position("alice", market_address(5, SUPPLY_ASSET, COLLATERAL_ASSET))

    def test_instruction_without_position(self, program, market):
        with pytest.raises(InvalidAccount):
            program.supply("alice", market, 100)

    def test_close_with_deposits(self, program, funded_market):
        with pytest.raises(HasDeposits):
            program.close_position("alice", funded_market)

    def test_close_with_collateral(self, program, funded_market):
        program.borrow("bob", funded_market, 5, 0)
        with pytest.raises(HasDeposits):
            program.close_position("bob", funded_market)

    def test_close_with_debt(self, ledger, market):
        """Debt without any deposit left still blocks closure."""
        market_record = load_market(ledger, market)
        position = UserPosition(
            address=position_address_for(market_record, "bob"), user="bob",
            market=market, borrowed_amount=3,
        )
        view = FakeView(units=[create_record_unit(market_record), create_record_unit(position)])
        with pytest.raises(HasBorrows):
            compute_close_position(view, "bob", market)

    def test_close_empty_position(self, program, funded_market):
        program.close_position("carol", funded_market)
        with pytest.raises(InvalidAccount):
            program.position("carol", funded_market)
        program.open_position("carol", funded_market)

    def test_close_after_full_exit(self, program, funded_market):
        program.withdraw("alice", funded_market, program.position("alice", funded_market).share_balance)
        program.close_position("alice", funded_market)
        assert not program.ledger.has_unit(position_address_for(program.market(funded_market), "alice"))
