"""
test_accounts.py - Unit tests for record addressing and adapters

Tests:
- Deterministic, distinct addresses
- Record <-> unit state round trip
- Adapters verify existence, record type, market and owner
"""

import pytest

from lending import (
    Market, UserPosition, Oracle, ProtocolState,
    protocol_address, market_address, position_address, oracle_address,
    supply_vault_address, collateral_vault_address,
    load_market, load_position, load_oracle, load_protocol,
    InvalidAccount, MarketNotFound, Unauthorized,
    SCALING_FACTOR, UNIT_TYPE_MARKET,
)
from lending.accounts import create_record_unit, record_change, to_state_dict, position_address_for
from tests.fake_view import FakeView


def _market(**overrides) -> Market:
    fields = dict(
        address=market_address(1, "USDC", "ETH"),
        market_id=1,
        admin="admin",
        supply_asset="USDC",
        collateral_asset="ETH",
        supply_vault=supply_vault_address(1, "USDC"),
        collateral_vault=collateral_vault_address(1, "ETH"),
        supply_oracle=oracle_address("USDC"),
        collateral_oracle=oracle_address("ETH"),
        collateral_factor=8000,
        liquidation_threshold=8500,
    )
    fields.update(overrides)
    return Market(**fields)


def _position(market: Market, user: str = "alice", **overrides) -> UserPosition:
    return UserPosition(
        address=position_address_for(market, user), user=user, market=market.address, **overrides
    )


class TestAddresses:
    """Tests for deterministic addressing."""

    def test_addresses_are_deterministic(self):
        assert market_address(1, "USDC", "ETH") == "market:1:USDC:ETH"
        assert position_address("alice", 1, "USDC", "ETH") == "position:alice:1:USDC:ETH"
        assert oracle_address("ETH") == "oracle:ETH"
        assert protocol_address() == "protocol"

    def test_addresses_distinguish_keys(self):
        """Swapping assets or ids gives a different market and different vaults."""
        assert market_address(1, "USDC", "ETH") != market_address(1, "ETH", "USDC")
        assert market_address(1, "USDC", "ETH") != market_address(2, "USDC", "ETH")
        assert supply_vault_address(1, "USDC") != collateral_vault_address(1, "USDC")

    def test_vaults_carry_vault_prefix(self):
        assert supply_vault_address(3, "USDC").startswith("vault:")
        assert collateral_vault_address(3, "ETH").startswith("vault:")


class TestRecords:
    """Tests for record conversion."""

    def test_market_defaults(self):
        market = _market()
        assert market.cumulative_borrow_rate == SCALING_FACTOR
        assert market.is_active
        assert market.available_liquidity == 0
        assert market.utilization_bps == 0

    def test_market_liquidity_and_utilization(self):
        market = _market(total_supply_deposits=1000, total_borrows=250)
        assert market.available_liquidity == 750
        assert market.utilization_bps == 2500

    def test_state_dict_omits_address(self):
        state = to_state_dict(_market())
        assert "address" not in state
        assert state["collateral_factor"] == 8000

    def test_record_unit_round_trip(self):
        market = _market(total_borrows=5)
        view = FakeView(units=[create_record_unit(market)])
        assert view.get_unit(market.address).unit_type == UNIT_TYPE_MARKET
        assert load_market(view, market.address) == market

    def test_record_change(self):
        market = _market()
        view = FakeView(units=[create_record_unit(market)])
        updated = Market(**{**to_state_dict(market), "address": market.address, "total_borrows": 9})
        change = record_change(view, updated)
        assert change.changed_fields() == {"total_borrows": (0, 9)}

    def test_has_deposits(self):
        market = _market()
        assert not _position(market).has_deposits()
        assert _position(market, share_balance=1).has_deposits()
        assert _position(market, collateral_deposited=1).has_deposits()
        assert not _position(market, borrowed_amount=1).has_deposits()


class TestAdapters:
    """Tests for load_* identity verification."""

    def test_missing_market(self):
        with pytest.raises(MarketNotFound):
            load_market(FakeView(), market_address(1, "USDC", "ETH"))

    def test_wrong_record_type(self):
        """A position address passed where a market is expected is refused."""
        market = _market()
        position = _position(market)
        view = FakeView(units=[create_record_unit(market), create_record_unit(position)])
        with pytest.raises(InvalidAccount, match="expected MARKET"):
            load_market(view, position.address)

    def test_position_of_other_market(self):
        market = _market()
        other = _market(address=market_address(2, "USDC", "ETH"), market_id=2)
        position = _position(market)
        view = FakeView(units=[create_record_unit(position)])
        with pytest.raises(InvalidAccount, match="belongs to"):
            load_position(view, position.address, market=other.address)

    def test_position_of_other_owner(self):
        market = _market()
        position = _position(market)
        view = FakeView(units=[create_record_unit(position)])
        with pytest.raises(Unauthorized):
            load_position(view, position.address, owner="mallory")
        assert load_position(view, position.address, owner="alice") == position

    def test_missing_oracle_and_protocol(self):
        with pytest.raises(InvalidAccount):
            load_oracle(FakeView(), oracle_address("ETH"))
        with pytest.raises(InvalidAccount):
            load_protocol(FakeView())

    def test_load_oracle_and_protocol(self):
        oracle = Oracle(oracle_address("ETH"), "ETH", "admin", 100, 6, 1, 0)
        protocol = ProtocolState(protocol_address(), "admin", total_markets=2)
        view = FakeView(units=[create_record_unit(oracle), create_record_unit(protocol)])
        assert load_oracle(view, oracle.address) == oracle
        assert load_protocol(view).total_markets == 2
