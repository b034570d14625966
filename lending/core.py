"""
Core types and pure functions for the lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, LendingError and the lending error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: vault custody validation for token moves
6. Unit factories: token() and record_unit()

Amounts are Python ints in asset-native smallest units. All functions in this
module are pure and operate on read-only views.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Wallets whose address starts with this prefix are market custody vaults.
VAULT_PREFIX = "vault:"

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_PROTOCOL = "PROTOCOL"
UNIT_TYPE_MARKET = "MARKET"
UNIT_TYPE_POSITION = "POSITION"
UNIT_TYPE_ORACLE = "ORACLE"

RECORD_UNIT_TYPES = frozenset({
    UNIT_TYPE_PROTOCOL, UNIT_TYPE_MARKET, UNIT_TYPE_POSITION, UNIT_TYPE_ORACLE,
})

# Fixed-point scale for rates and the share exchange rate (1.0 == 10**9).
SCALING_FACTOR = 10**9

# Basis point denominator for collateral factor and liquidation threshold.
BPS_SCALE = 10_000

# Integer widths of the accounting model.
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

# Health factor reported for positions with no debt.
HEALTH_FACTOR_MAX = U128_MAX


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]

# Internal state for a unit: the fields of a market, position, oracle or
# protocol record.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Compute functions accept a LedgerView to declare their read-only intent.
    The Ledger class implements this protocol but also provides mutation
    methods. For testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_tick(self) -> int:
        """Return the current logical tick of the ledger clock."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Return the balance of a specific unit in a wallet.

        Returns 0 if the wallet holds none of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def list_units(self) -> List[str]:
        """Return the sorted symbols of all registered units."""
        ...

    def has_unit(self, symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation (insufficient funds, balance
              constraints, transfer rules, stale record state).
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Instruction signed by a user
    MARKET = "market"                     # Transfer signed by a market's own authority
    ADMIN = "admin"                       # Protocol or market administration
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would cause a wallet balance to exceed the unit's maximum."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class StaleState(LedgerError):
    """Raised when a state change was built against a record that has since changed."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class LendingError(LedgerError):
    """
    Base class for lending instruction failures.

    Every subclass carries a stable ``code`` naming the violated precondition
    and a default human-readable ``message``. The optional detail passed to the
    constructor is appended to the message.
    """
    code = "LendingError"
    message = "Lending instruction failed"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class Unauthorized(LendingError):
    code = "Unauthorized"
    message = "Unauthorized access"


class ReentrantInstruction(Unauthorized):
    """An instruction was started while another was still running."""
    code = "ReentrantInstruction"
    message = "Instruction started inside another instruction"


class MathOverflow(LendingError):
    code = "MathOverflow"
    message = "Math overflow"


class DivisionByZero(LendingError):
    code = "DivisionByZero"
    message = "Division by zero"


class InsufficientBalance(LendingError):
    code = "InsufficientBalance"
    message = "Insufficient balance"


class InsufficientCollateral(LendingError):
    code = "InsufficientCollateral"
    message = "Insufficient collateral"


class InsufficientLiquidity(LendingError):
    code = "InsufficientLiquidity"
    message = "Insufficient liquidity"


class HasDeposits(LendingError):
    code = "HasDeposits"
    message = "Position still has deposits"


class HasBorrows(LendingError):
    code = "HasBorrows"
    message = "Position still has outstanding borrows"


class PositionHealthy(LendingError):
    code = "PositionHealthy"
    message = "Position is healthy and cannot be liquidated"


class ExcessiveLiquidation(LendingError):
    code = "ExcessiveLiquidation"
    message = "Liquidation amount exceeds what the position allows"


class FlashLoanNotRepaid(LendingError):
    code = "FlashLoanNotRepaid"
    message = "Flash loan not repaid with fee"


class InvalidOracleData(LendingError):
    code = "InvalidOracleData"
    message = "Invalid oracle data"


class MarketNotFound(LendingError):
    code = "MarketNotFound"
    message = "Market not found"


class MarketPaused(LendingError):
    code = "MarketPaused"
    message = "Protocol is paused"


class MarketNotActive(LendingError):
    code = "MarketNotActive"
    message = "Market is not active"


class InvalidMarketState(LendingError):
    code = "InvalidMarketState"
    message = "Invalid market state"


class InvalidAccount(LendingError):
    """Account identity mismatch: wrong record type, wrong market, missing record."""
    code = "InvalidAccount"
    message = "Invalid account address"


class UserDepositAlreadyExists(LendingError):
    code = "UserDepositAlreadyExists"
    message = "User position already exists"


class AccountAlreadyInitialized(LendingError):
    code = "AccountAlreadyInitialized"
    message = "Account already initialized"


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Signer of the instruction (user wallet, admin, market address)
        unit_symbol: Record the instruction targets (market, oracle, position)
        event_type: Instruction name (e.g., "SUPPLY", "LIQUIDATE")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a record-unit state change.

    old_state is the state the change was computed against; the ledger
    rejects the transaction if the record no longer matches it.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change
        new_state: Complete state after the change
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old_value, new_value)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a fungible asset between two wallets.

    Attributes:
        quantity: Positive integer amount in the asset's smallest unit.
        unit_symbol: The symbol of the token being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Authority signing the move: the user wallet for user
            transfers, the market address for vault transfers.
        metadata: Optional additional information about the move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order or nesting depth.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, bytes):
        return f"B:{value.hex()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
    units_to_close: Tuple[str, ...] = (),
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    The hash depends only on the semantic content of the transaction, never
    on the tick or ledger. It identifies the instruction in the audit trail.
    """
    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(
            f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}"
        )
    for symbol in sorted(units_to_close):
        content_parts.append(f"unit_close:{symbol}")

    for m in sorted(moves, key=lambda m: (m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id)):
        content_parts.append(f"move:{m.quantity}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution - represents INTENT.

    Created by compute functions and submitted to the ledger for execution.

    Attributes:
        moves: Tuple of token transfers between wallets
        state_changes: Tuple of record state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        tick: Ledger tick at which the transaction was computed
        units_to_create: Record units to register together with the moves
        units_to_close: Symbols of record units to remove
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    tick: int
    units_to_create: Tuple['Unit', ...] = ()
    units_to_close: Tuple[str, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin,
                self.units_to_create, self.units_to_close,
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction changes nothing."""
        return (not self.moves and not self.state_changes
                and not self.units_to_create and not self.units_to_close)

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    units_to_close: Optional[Tuple[str, ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and record state changes.

    This is the standard way to create transactions.

    Args:
        view: Read-only ledger view (provides current_tick)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to a SYSTEM origin)
        units_to_create: Optional tuple of record units to register
        units_to_close: Optional tuple of record unit symbols to remove

    Example:
        def compute_repay(view, market, user, amount):
            old_state = view.get_unit_state(market)
            new_state = {**old_state, "total_borrows": old_state["total_borrows"] - amount}
            moves = [Move(amount, "USDC", user, vault, user)]
            changes = [UnitStateChange(unit=market, old_state=old_state, new_state=new_state)]
            return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(origin_type=OriginType.SYSTEM, source_id="system")

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        tick=view.current_tick,
        units_to_create=units_to_create or (),
        units_to_close=units_to_close or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Created by the ledger when executing a PendingTransaction.

    Attributes:
        moves: Tuple of token transfers between wallets
        state_changes: Tuple of record state changes
        origin: Who/what created this transaction and why
        tick: Tick at which the PendingTransaction was computed
        intent_id: Content hash from PendingTransaction
        exec_id: Unique execution identifier (ledger + sequence + tick)
        ledger_name: Name of the ledger that executed this
        execution_tick: Tick at which this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of signing authorities from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    tick: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_tick: int
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    units_to_close: Tuple[str, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if (not self.moves and not self.state_changes
                and not self.units_to_create and not self.units_to_close):
            raise ValueError("Transaction must change balances or records")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   tick           : ' + str(self.tick))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"│{pad('   signers        : ' + str(sorted(self.contract_ids)))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Records Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' [' + unit.unit_type + ']')}│")
        if self.units_to_close:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Records Closed (' + str(len(self.units_to_close)) + '):')}│")
            for symbol in self.units_to_close:
                lines.append(f"│{pad('   ' + symbol)}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: a fungible token or a record.

    Tokens are held in wallets and moved by Moves. Records (market, position,
    oracle, protocol) hold no balances; their fields live in the frozen state
    and change only through UnitStateChange.

    Attributes:
        symbol: Identifier of the unit (token symbol or record address).
        name: Human-readable name for the unit.
        unit_type: TOKEN or one of the record types.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet (None = unbounded).
        decimals: Display precision of the token's native units.
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: int = 0
    max_balance: Optional[int] = None
    decimals: int = 0
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    @property
    def is_record(self) -> bool:
        return self.unit_type in RECORD_UNIT_TYPES


# ============================================================================
# TRANSFER RULES
# ============================================================================

def vault_custody_rule(view: LedgerView, move: Move) -> None:
    """
    Only the owning market may sign transfers out of a vault.

    A move whose source is a vault wallet must carry, as its contract_id,
    the address of a market record whose supply or collateral vault is that
    wallet. Transfers into a vault are unrestricted.

    Raises:
        TransferRuleViolation: If a vault is debited without its market's authority.
    """
    if not move.source.startswith(VAULT_PREFIX):
        return
    if not view.has_unit(move.contract_id) or \
            view.get_unit(move.contract_id).unit_type != UNIT_TYPE_MARKET:
        raise TransferRuleViolation(
            f"{move.unit_symbol}: {move.source} debited without market authority "
            f"(signer {move.contract_id})"
        )
    state = view.get_unit_state(move.contract_id)
    if move.source not in (state.get('supply_vault'), state.get('collateral_vault')):
        raise TransferRuleViolation(
            f"{move.unit_symbol}: market {move.contract_id} does not own {move.source}"
        )


def record_transfer_rule(view: LedgerView, move: Move) -> None:
    """Records are not fungible and can never be moved between wallets."""
    raise TransferRuleViolation(f"Record {move.unit_symbol} cannot be transferred")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimals: int = 6) -> Unit:
    """
    Create a fungible token unit.

    Balances are non-negative integers in native units (10**decimals per
    whole token). Vault debits are guarded by vault_custody_rule.
    """
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 255:
        raise ValueError(f"decimals must be an int in [0, 255], got {decimals!r}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimals=decimals,
        transfer_rule=vault_custody_rule,
    )


def record_unit(address: str, unit_type: str, name: str, state: UnitState) -> Unit:
    """Create a record unit holding ``state`` at ``address``."""
    if unit_type not in RECORD_UNIT_TYPES:
        raise ValueError(f"Unknown record type {unit_type!r}")
    return Unit(
        symbol=address,
        name=name,
        unit_type=unit_type,
        max_balance=0,
        transfer_rule=record_transfer_rule,
        _frozen_state=_freeze_state(state),
    )
