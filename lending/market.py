"""
market.py - Protocol, market and position lifecycle.

Transaction builders for the administrative instructions (initialize the
protocol, create markets, change their risk parameters, pause or deactivate
them) and for opening and closing user positions.

Markets are keyed by (market_id, supply_asset, collateral_asset). Creating one
registers its record; the program registers its two vault wallets.
"""

from __future__ import annotations
from dataclasses import replace

from .accounts import (
    Market, ProtocolState, UserPosition,
    protocol_address, market_address, oracle_address,
    supply_vault_address, collateral_vault_address, position_address_for,
    load_protocol, load_market, load_oracle, load_position,
    create_record_unit, record_change,
)
from .core import (
    LedgerView, PendingTransaction, TransactionOrigin, OriginType,
    build_transaction, BPS_SCALE, UNIT_TYPE_TOKEN,
    AccountAlreadyInitialized, HasBorrows, HasDeposits, InvalidAccount,
    InvalidMarketState, MarketNotActive, MarketPaused, Unauthorized,
    UserDepositAlreadyExists,
)
from .fixed_point import checked_add, require_u64


# ============================================================================
# VALIDATION
# ============================================================================

def validate_risk_parameters(collateral_factor: int, liquidation_threshold: int) -> None:
    """
    Require 0 <= collateral_factor <= liquidation_threshold <= 10000.

    Raises:
        InvalidMarketState: If the parameters are out of order or out of range
    """
    for name, value in (("collateral_factor", collateral_factor),
                        ("liquidation_threshold", liquidation_threshold)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an int, got {value!r}")
        if not 0 <= value <= BPS_SCALE:
            raise InvalidMarketState(f"{name} {value} outside [0, {BPS_SCALE}]")
    if collateral_factor > liquidation_threshold:
        raise InvalidMarketState(
            f"collateral_factor {collateral_factor} exceeds "
            f"liquidation_threshold {liquidation_threshold}"
        )


def require_open(view: LedgerView, market: Market) -> None:
    """
    Require the protocol to be unpaused and the market active.

    Gates the instructions that take on new risk: supply, borrow and flash
    loans. Exits (withdraw, repay, withdraw_collateral) and liquidations stay
    available.

    Raises:
        MarketPaused: If the protocol is paused
        MarketNotActive: If the market has been deactivated
    """
    if load_protocol(view).is_paused:
        raise MarketPaused()
    if not market.is_active:
        raise MarketNotActive(market.address)


def _require_token(view: LedgerView, asset: str) -> None:
    if not view.has_unit(asset) or view.get_unit(asset).unit_type != UNIT_TYPE_TOKEN:
        raise InvalidAccount(f"{asset} is not a registered token")


# ============================================================================
# PROTOCOL AND MARKET ADMINISTRATION
# ============================================================================

def compute_initialize(view: LedgerView, admin: str) -> PendingTransaction:
    """
    Create the protocol record with ``admin`` as protocol admin.

    Raises:
        AccountAlreadyInitialized: If the protocol already exists
    """
    if view.has_unit(protocol_address()):
        raise AccountAlreadyInitialized("protocol already initialized")
    protocol = ProtocolState(address=protocol_address(), admin=admin)
    origin = TransactionOrigin(OriginType.ADMIN, admin, protocol.address, "INITIALIZE")
    return build_transaction(view, [], origin=origin, units_to_create=(create_record_unit(protocol),))


def compute_create_market(
    view: LedgerView,
    creator: str,
    market_id: int,
    supply_asset: str,
    collateral_asset: str,
    collateral_factor: int,
    liquidation_threshold: int,
) -> PendingTransaction:
    """
    Create a market lending ``supply_asset`` against ``collateral_asset``.

    The creator becomes the market admin. Both assets must already have an
    oracle. The protocol's market count is incremented.

    Raises:
        MarketPaused: If the protocol is paused
        InvalidAccount: If an asset is not a token or has no oracle, or both
            assets are the same
        InvalidMarketState: If the risk parameters are invalid
        AccountAlreadyInitialized: If the market already exists
    """
    require_u64(market_id, "market_id")
    protocol = load_protocol(view)
    if protocol.is_paused:
        raise MarketPaused()
    _require_token(view, supply_asset)
    _require_token(view, collateral_asset)
    if supply_asset == collateral_asset:
        raise InvalidAccount(f"supply and collateral asset are both {supply_asset}")
    validate_risk_parameters(collateral_factor, liquidation_threshold)
    supply_oracle = load_oracle(view, oracle_address(supply_asset))
    collateral_oracle = load_oracle(view, oracle_address(collateral_asset))

    address = market_address(market_id, supply_asset, collateral_asset)
    if view.has_unit(address):
        raise AccountAlreadyInitialized(f"market {address} already exists")

    market = Market(
        address=address,
        market_id=market_id,
        admin=creator,
        supply_asset=supply_asset,
        collateral_asset=collateral_asset,
        supply_vault=supply_vault_address(market_id, supply_asset),
        collateral_vault=collateral_vault_address(market_id, collateral_asset),
        supply_oracle=supply_oracle.address,
        collateral_oracle=collateral_oracle.address,
        collateral_factor=collateral_factor,
        liquidation_threshold=liquidation_threshold,
        last_update_tick=view.current_tick,
    )
    updated_protocol = replace(protocol, total_markets=checked_add(protocol.total_markets, 1))
    origin = TransactionOrigin(OriginType.ADMIN, creator, address, "CREATE_MARKET")
    return build_transaction(
        view, [], [record_change(view, updated_protocol)], origin,
        units_to_create=(create_record_unit(market),),
    )


def compute_update_market_params(
    view: LedgerView,
    authority: str,
    address: str,
    collateral_factor: int,
    liquidation_threshold: int,
) -> PendingTransaction:
    """
    Change a market's collateral factor and liquidation threshold.

    Raises:
        Unauthorized: If authority is not the market admin
        InvalidMarketState: If the new parameters are invalid
    """
    market = load_market(view, address)
    if authority != market.admin:
        raise Unauthorized(f"{authority} is not the admin of {address}")
    validate_risk_parameters(collateral_factor, liquidation_threshold)
    updated = replace(
        market,
        collateral_factor=collateral_factor,
        liquidation_threshold=liquidation_threshold,
    )
    origin = TransactionOrigin(OriginType.ADMIN, authority, address, "UPDATE_MARKET_PARAMS")
    return build_transaction(view, [], [record_change(view, updated)], origin)


def compute_set_paused(view: LedgerView, admin: str, paused: bool) -> PendingTransaction:
    """Pause or resume the protocol. Only the protocol admin may do this."""
    protocol = load_protocol(view)
    if admin != protocol.admin:
        raise Unauthorized(f"{admin} is not the protocol admin")
    updated = replace(protocol, is_paused=bool(paused))
    origin = TransactionOrigin(OriginType.ADMIN, admin, protocol.address,
                               "PAUSE" if paused else "UNPAUSE")
    return build_transaction(view, [], [record_change(view, updated)], origin)


def compute_set_market_active(
    view: LedgerView,
    authority: str,
    address: str,
    active: bool,
) -> PendingTransaction:
    """
    Activate or deactivate a market.

    The market admin or the protocol admin may do this.
    """
    market = load_market(view, address)
    if authority not in (market.admin, load_protocol(view).admin):
        raise Unauthorized(f"{authority} cannot change the status of {address}")
    updated = replace(market, is_active=bool(active))
    origin = TransactionOrigin(OriginType.ADMIN, authority, address,
                               "ACTIVATE_MARKET" if active else "DEACTIVATE_MARKET")
    return build_transaction(view, [], [record_change(view, updated)], origin)


# ============================================================================
# POSITION LIFECYCLE
# ============================================================================

def compute_open_position(view: LedgerView, user: str, address: str) -> PendingTransaction:
    """
    Create ``user``'s empty position in the market at ``address``.

    Raises:
        MarketNotFound: If the market does not exist
        UserDepositAlreadyExists: If the user already has a position there
    """
    market = load_market(view, address)
    position_addr = position_address_for(market, user)
    if view.has_unit(position_addr):
        raise UserDepositAlreadyExists(position_addr)
    position = UserPosition(
        address=position_addr,
        user=user,
        market=market.address,
        last_update_tick=view.current_tick,
    )
    origin = TransactionOrigin(OriginType.USER_ACTION, user, position_addr, "OPEN_POSITION")
    return build_transaction(view, [], origin=origin, units_to_create=(create_record_unit(position),))


def compute_close_position(view: LedgerView, user: str, address: str) -> PendingTransaction:
    """
    Remove ``user``'s position from the market at ``address``.

    Raises:
        HasDeposits: If the position still holds supply, shares or collateral
        HasBorrows: If the position still owes debt
    """
    market = load_market(view, address)
    position = load_position(view, position_address_for(market, user), owner=user, market=market.address)
    if position.has_deposits():
        raise HasDeposits(position.address)
    if position.borrowed_amount > 0:
        raise HasBorrows(position.address)
    origin = TransactionOrigin(OriginType.USER_ACTION, user, position.address, "CLOSE_POSITION")
    return build_transaction(view, [], origin=origin, units_to_close=(position.address,))


def available_liquidity(view: LedgerView, market: Market) -> int:
    """
    Supply asset that can leave the vault: deposits not lent out, capped by
    what the vault actually holds.
    """
    return min(market.available_liquidity, view.get_balance(market.supply_vault, market.supply_asset))
