"""
accounts.py - Record addressing and typed record adapters.

Every persistent record of the protocol (protocol state, markets, user
positions, price oracles) is a record unit in the ledger whose symbol is a
deterministic address derived from its identifying keys. The adapters in this
module are the only code that reads record state from a LedgerView: they
verify that the record exists, that it has the expected type and, for
positions, who owns it and which market it belongs to, before returning a
frozen dataclass to the pure calculation code.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Type, TypeVar, Union

from .core import (
    LedgerView, Unit, UnitStateChange, record_unit,
    BPS_SCALE, SCALING_FACTOR, VAULT_PREFIX,
    UNIT_TYPE_PROTOCOL, UNIT_TYPE_MARKET, UNIT_TYPE_POSITION, UNIT_TYPE_ORACLE,
    InvalidAccount, MarketNotFound, Unauthorized,
)
from .fixed_point import saturating_sub


# ============================================================================
# ADDRESSES
# ============================================================================

def protocol_address() -> str:
    return "protocol"


def market_address(market_id: int, supply_asset: str, collateral_asset: str) -> str:
    return f"market:{market_id}:{supply_asset}:{collateral_asset}"


def position_address(user: str, market_id: int, supply_asset: str, collateral_asset: str) -> str:
    return f"position:{user}:{market_id}:{supply_asset}:{collateral_asset}"


def oracle_address(asset: str) -> str:
    return f"oracle:{asset}"


def supply_vault_address(market_id: int, supply_asset: str) -> str:
    return f"{VAULT_PREFIX}supply:{market_id}:{supply_asset}"


def collateral_vault_address(market_id: int, collateral_asset: str) -> str:
    return f"{VAULT_PREFIX}collateral:{market_id}:{collateral_asset}"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class ProtocolState:
    """Protocol-wide settings: the admin, the number of markets, the pause switch."""
    address: str
    admin: str
    total_markets: int = 0
    is_paused: bool = False


@dataclass(frozen=True, slots=True)
class Market:
    """
    Aggregate state of one supply-asset / collateral-asset pair.

    Totals are in native units of their asset. collateral_factor and
    liquidation_threshold are basis points. The cumulative rates are scaled
    by SCALING_FACTOR and start at 1.0.
    """
    address: str
    market_id: int
    admin: str
    supply_asset: str
    collateral_asset: str
    supply_vault: str
    collateral_vault: str
    supply_oracle: str
    collateral_oracle: str
    collateral_factor: int
    liquidation_threshold: int
    total_supply_deposits: int = 0
    total_borrows: int = 0
    total_collateral_deposits: int = 0
    total_share_supply: int = 0
    cumulative_borrow_rate: int = SCALING_FACTOR
    cumulative_supply_rate: int = SCALING_FACTOR
    last_update_tick: int = 0
    is_active: bool = True

    @property
    def available_liquidity(self) -> int:
        """Deposits not lent out."""
        return saturating_sub(self.total_supply_deposits, self.total_borrows)

    @property
    def utilization_bps(self) -> int:
        if self.total_supply_deposits == 0:
            return 0
        return self.total_borrows * BPS_SCALE // self.total_supply_deposits


@dataclass(frozen=True, slots=True)
class UserPosition:
    """One user's balances in one market."""
    address: str
    user: str
    market: str
    supply_deposited: int = 0
    collateral_deposited: int = 0
    borrowed_amount: int = 0
    share_balance: int = 0
    last_update_tick: int = 0

    def has_deposits(self) -> bool:
        return self.supply_deposited > 0 or self.collateral_deposited > 0 or self.share_balance > 0


@dataclass(frozen=True, slots=True)
class Oracle:
    """
    Price record for one asset.

    price and confidence share the asset's native precision (``decimals``).
    ``source`` is the hex encoding of the feed identifier the price comes from.
    """
    address: str
    asset: str
    authority: str
    price: int
    decimals: int
    confidence: int
    valid_tick: int
    source: str = ""


Record = Union[ProtocolState, Market, UserPosition, Oracle]
R = TypeVar("R", ProtocolState, Market, UserPosition, Oracle)

_RECORD_TYPES: Dict[type, str] = {
    ProtocolState: UNIT_TYPE_PROTOCOL,
    Market: UNIT_TYPE_MARKET,
    UserPosition: UNIT_TYPE_POSITION,
    Oracle: UNIT_TYPE_ORACLE,
}


def to_state_dict(record: Record) -> Dict[str, Any]:
    """
    Convert a record to the state dict stored on its unit.

    The address is the unit symbol and is not repeated in the state.
    """
    return {f.name: getattr(record, f.name) for f in fields(record) if f.name != "address"}


def _from_state(cls: Type[R], address: str, state: Dict[str, Any]) -> R:
    names = {f.name for f in fields(cls)} - {"address"}
    return cls(address=address, **{k: v for k, v in state.items() if k in names})


def record_change(view: LedgerView, record: Record) -> UnitStateChange:
    """State change replacing the stored record with ``record``."""
    return UnitStateChange(
        unit=record.address,
        old_state=view.get_unit_state(record.address),
        new_state=to_state_dict(record),
    )


def create_record_unit(record: Record) -> Unit:
    """Build the record unit that stores ``record`` at its address."""
    unit_type = _RECORD_TYPES[type(record)]
    return record_unit(record.address, unit_type, f"{unit_type.lower()} {record.address}",
                       to_state_dict(record))


# ============================================================================
# ADAPTERS
# ============================================================================

def _load(view: LedgerView, address: str, cls: Type[R], missing: Type[Exception]) -> R:
    unit_type = _RECORD_TYPES[cls]
    if not view.has_unit(address):
        raise missing(f"{unit_type.lower()} {address} not initialized")
    unit = view.get_unit(address)
    if unit.unit_type != unit_type:
        raise InvalidAccount(f"{address} is a {unit.unit_type}, expected {unit_type}")
    return _from_state(cls, address, view.get_unit_state(address))


def load_protocol(view: LedgerView) -> ProtocolState:
    return _load(view, protocol_address(), ProtocolState, InvalidAccount)


def load_market(view: LedgerView, address: str) -> Market:
    """
    Load a market record.

    Raises:
        MarketNotFound: If no record exists at address
        InvalidAccount: If the record at address is not a market
    """
    return _load(view, address, Market, MarketNotFound)


def load_oracle(view: LedgerView, address: str) -> Oracle:
    return _load(view, address, Oracle, InvalidAccount)


def load_position(
    view: LedgerView,
    address: str,
    owner: Optional[str] = None,
    market: Optional[str] = None,
) -> UserPosition:
    """
    Load a user position and verify its identity.

    Args:
        view: Read-only ledger access
        address: Position address
        owner: If given, the user who must own the position
        market: If given, the market address the position must belong to

    Raises:
        InvalidAccount: If the position is missing, not a position, or
            belongs to another market
        Unauthorized: If the position is owned by someone other than owner
    """
    position = _load(view, address, UserPosition, InvalidAccount)
    if market is not None and position.market != market:
        raise InvalidAccount(f"position {address} belongs to {position.market}, not {market}")
    if owner is not None and position.user != owner:
        raise Unauthorized(f"position {address} is owned by {position.user}")
    return position


def position_address_for(market: Market, user: str) -> str:
    return position_address(user, market.market_id, market.supply_asset, market.collateral_asset)


def load_user_position(view: LedgerView, market: Market, user: str) -> UserPosition:
    """The position ``user`` holds in ``market``, verified for owner and market."""
    return load_position(view, position_address_for(market, user), owner=user, market=market.address)

