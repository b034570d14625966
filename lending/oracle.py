"""
oracle.py - Price oracle records.

One oracle per asset holds the latest price, its confidence interval and the
tick at which it was set. A price is usable only while it is fresh and its
confidence interval is narrow relative to the price.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional

from .accounts import (
    Oracle, oracle_address, load_oracle, create_record_unit, record_change,
)
from .config import LendingConfig, DEFAULT_CONFIG
from .core import (
    LedgerView, PendingTransaction, TransactionOrigin, OriginType,
    build_transaction, UNIT_TYPE_TOKEN, U128_MAX,
    AccountAlreadyInitialized, InvalidAccount, InvalidOracleData, Unauthorized,
)
from .fixed_point import require_u64


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def is_stale(oracle: Oracle, now: int, config: LendingConfig = DEFAULT_CONFIG) -> bool:
    return now > oracle.valid_tick + config.max_staleness_ticks


def confidence_too_wide(oracle: Oracle, config: LendingConfig = DEFAULT_CONFIG) -> bool:
    return oracle.confidence > oracle.price // config.max_confidence_divisor


def get_price(oracle: Oracle, now: int, config: LendingConfig = DEFAULT_CONFIG) -> int:
    """
    Return the oracle price if it may be used at tick ``now``.

    Raises:
        InvalidOracleData: If the price is stale, zero, or its confidence
            interval exceeds price / max_confidence_divisor
    """
    if is_stale(oracle, now, config):
        raise InvalidOracleData(
            f"{oracle.asset} price set at tick {oracle.valid_tick} is stale at tick {now}"
        )
    if oracle.price == 0:
        raise InvalidOracleData(f"{oracle.asset} price is zero")
    if confidence_too_wide(oracle, config):
        raise InvalidOracleData(
            f"{oracle.asset} confidence {oracle.confidence} exceeds "
            f"1/{config.max_confidence_divisor} of price {oracle.price}"
        )
    return oracle.price


def _validate_price(price: int, name: str) -> int:
    require_u64(price, name)
    if price == 0:
        raise InvalidOracleData(f"{name} must be positive")
    return price


def _validate_confidence(confidence: Optional[int], price: int, config: LendingConfig) -> int:
    if confidence is None:
        return price // config.confidence_band_divisor
    if isinstance(confidence, bool) or not isinstance(confidence, int) or confidence < 0:
        raise ValueError(f"confidence must be a non-negative int, got {confidence!r}")
    if confidence > U128_MAX:
        raise InvalidOracleData(f"confidence {confidence} out of range")
    return confidence


def new_oracle(
    asset: str,
    authority: str,
    price: int,
    decimals: int,
    now: int,
    source: str = "",
    config: LendingConfig = DEFAULT_CONFIG,
) -> Oracle:
    """Build a fresh oracle record with a price band of price / confidence_band_divisor."""
    _validate_price(price, "initial_price")
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 255:
        raise ValueError(f"decimals must be an int in [0, 255], got {decimals!r}")
    return Oracle(
        address=oracle_address(asset),
        asset=asset,
        authority=authority,
        price=price,
        decimals=decimals,
        confidence=price // config.confidence_band_divisor,
        valid_tick=now,
        source=source,
    )


def set_price(
    oracle: Oracle,
    new_price: int,
    authority: str,
    now: int,
    confidence: Optional[int] = None,
    config: LendingConfig = DEFAULT_CONFIG,
) -> Oracle:
    """
    Return the oracle with a new price observed at ``now``.

    The confidence defaults to new_price / confidence_band_divisor; feeds that
    publish their own interval pass it explicitly.

    Raises:
        Unauthorized: If authority is not the oracle's authority
    """
    if authority != oracle.authority:
        raise Unauthorized(f"{authority} cannot update {oracle.address}")
    _validate_price(new_price, "new_price")
    return replace(
        oracle,
        price=new_price,
        confidence=_validate_confidence(confidence, new_price, config),
        valid_tick=now,
    )


# ============================================================================
# VIEW ADAPTERS
# ============================================================================

def read_price(view: LedgerView, address: str, config: LendingConfig = DEFAULT_CONFIG) -> int:
    """Load the oracle at ``address`` and return its usable price."""
    return get_price(load_oracle(view, address), view.current_tick, config)


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def compute_create_oracle(
    view: LedgerView,
    authority: str,
    asset: str,
    initial_price: int,
    decimals: int,
    source: bytes = b"",
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Create the oracle record for ``asset`` with ``authority`` as its updater.

    Raises:
        InvalidAccount: If asset is not a registered token
        AccountAlreadyInitialized: If the asset already has an oracle
        InvalidOracleData: If the initial price is zero
    """
    if not view.has_unit(asset) or view.get_unit(asset).unit_type != UNIT_TYPE_TOKEN:
        raise InvalidAccount(f"{asset} is not a registered token")
    address = oracle_address(asset)
    if view.has_unit(address):
        raise AccountAlreadyInitialized(f"oracle for {asset} already exists")
    oracle = new_oracle(asset, authority, initial_price, decimals,
                        view.current_tick, bytes(source).hex(), config)
    origin = TransactionOrigin(OriginType.ADMIN, authority, address, "CREATE_ORACLE")
    return build_transaction(view, [], origin=origin, units_to_create=(create_record_unit(oracle),))


def compute_update_oracle_price(
    view: LedgerView,
    authority: str,
    asset: str,
    new_price: int,
    confidence: Optional[int] = None,
    config: LendingConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """Record a new price for ``asset``, signed by the oracle's authority."""
    oracle = load_oracle(view, oracle_address(asset))
    updated = set_price(oracle, new_price, authority, view.current_tick, confidence, config)
    origin = TransactionOrigin(OriginType.ADMIN, authority, oracle.address, "UPDATE_ORACLE_PRICE")
    return build_transaction(view, [], [record_change(view, updated)], origin)
