"""
ledger.py - Stateful Double-Entry Custody Ledger

The Ledger class is the central state manager for the lending engine.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by compute functions
    - Executes transactions atomically (all moves and record changes succeed or all fail)
    - Maintains wallet balances, token definitions and record units
    - Owns the logical tick clock
    - Provides atomic() so a multi-transaction instruction is all-or-nothing
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Set, Optional, Any
import copy

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    # Constants
    SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    TransferRuleViolation, StaleState, UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    _freeze_state,
)


@dataclass(frozen=True)
class _Snapshot:
    balances: Dict[str, Dict[str, int]]
    units: Dict[str, Unit]
    registered_wallets: Set[str]
    log_length: int
    next_sequence: int
    current_tick: int
    positions_by_unit: Dict[str, Dict[str, int]]


class Ledger:
    """
    Double-entry custody ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    compute functions that access only read-only methods.

    Design Principles:
        - Always validates: every transaction is checked against registration,
          transfer rules, balance constraints and the record state it was
          computed from.
        - Always logs: every applied transaction is recorded in the audit trail.

    Thread Safety:
        Not thread-safe. Instructions are applied one at a time.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("USDC", "USD Coin", 6))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [
            Move(100, "USDC", "alice", "bob", "alice")
        ])
        result = ledger.execute(tx)
    """

    def __init__(
        self,
        name: str,
        initial_tick: int = 0,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_tick: Starting tick of the clock (default: 0)
            verbose: Print every applied transaction (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        if isinstance(initial_tick, bool) or not isinstance(initial_tick, int) or initial_tick < 0:
            raise ValueError(f"initial_tick must be a non-negative int, got {initial_tick!r}")
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_tick: int = initial_tick
        self.verbose = verbose
        self._test_mode = test_mode
        # Reason the last execute() returned REJECTED
        self.last_rejection: Optional[LedgerError] = None
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, int]] = defaultdict(dict)

        # Auto-register the system wallet (used for token issuance)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_tick(self) -> int:
        """Current logical tick of the ledger clock."""
        return self._current_tick

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return copy.deepcopy(self.units[unit_symbol].state)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def has_unit(self, symbol: str) -> bool:
        return symbol in self.units

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> int:
        """
        Total quantity of a unit across all wallets.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(self.balances[w].get(unit_symbol, 0) for w in sorted(self.registered_wallets))

    def verify_double_entry(self, expected_supplies: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all tokens.

        Double-entry accounting requires that for every token, the sum of all
        balances across all wallets equals a constant (the total supply).

        Args:
            expected_supplies: Optional dict mapping token symbols to expected totals.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Current total supply for each token
            - 'discrepancies': List[Dict] - unit, expected, actual, difference

        Example:
            result = ledger.verify_double_entry({'USDC': 1_000_000})
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []

        for unit_symbol, unit in self.units.items():
            if unit.is_record:
                continue
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                if current_supply != expected:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': current_supply - expected,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': 0,
                        'difference': -expected,
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # CLOCK
    # ========================================================================

    def advance_to(self, tick: int) -> None:
        """
        Move the clock to ``tick``.

        Raises:
            ValueError: If tick is before the current tick
        """
        if isinstance(tick, bool) or not isinstance(tick, int):
            raise ValueError(f"tick must be an int, got {tick!r}")
        if tick < self._current_tick:
            raise ValueError(
                f"Cannot move the clock backwards: {tick} < {self._current_tick}"
            )
        self._current_tick = tick

    def advance(self, ticks: int = 1) -> int:
        """Advance the clock by ``ticks`` and return the new tick."""
        self.advance_to(self._current_tick + ticks)
        return self._current_tick

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (token or record) in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This method bypasses double-entry accounting and is only
        available in test mode. Use build_transaction() and execute() instead.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValueError(f"Balance must be an int, got {quantity!r}")
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{tick}"""
        return f"exec:{self.name}:{sequence:012d}:{self._current_tick}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Everything is validated before anything is applied:
        - Tick (a transaction computed in the future is rejected)
        - Record creation and closure targets
        - Unit and wallet registration
        - Transfer rules
        - Balance constraints (min/max balance limits)
        - Record state: each state change's old_state must match the record

        Identical instructions are legitimate (two supplies of the same amount
        in the same tick), so there is no deduplication by intent_id.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed (reason in last_rejection)
        """
        self.last_rejection = None
        if pending.is_empty():
            return ExecuteResult.APPLIED

        error = self._validate_pending(pending)
        if error is not None:
            self.last_rejection = error
            if self.verbose:
                print(f"✗ REJECTED: {error}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            tick=pending.tick,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_tick=self._current_tick,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
            units_to_close=pending.units_to_close,
        )

        for unit in tx.units_to_create:
            self.register_unit(unit)

        self._execute_moves(tx.moves)

        # Since Unit is frozen, we create new Unit instances with updated state
        for sc in tx.state_changes:
            old_unit = self.units[sc.unit]
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        for symbol in tx.units_to_close:
            del self.units[symbol]
            self._positions_by_unit.pop(symbol, None)

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details (Transaction.__repr__) with a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Optional[LedgerError]:
        """
        Validate pending transaction against all constraints.

        Returns:
            None if the transaction can be applied, otherwise the error
            describing the first violated constraint.
        """
        if pending.tick > self._current_tick:
            return LedgerError(f"future tick {pending.tick} > {self._current_tick}")

        creating: Dict[str, Unit] = {}
        for unit in pending.units_to_create:
            if unit.symbol in self.units or unit.symbol in creating:
                return LedgerError(f"unit already registered: {unit.symbol}")
            creating[unit.symbol] = unit

        for symbol in pending.units_to_close:
            if symbol not in self.units:
                return UnitNotRegistered(f"cannot close unregistered unit: {symbol}")
            if not self.units[symbol].is_record:
                return LedgerError(f"only records can be closed: {symbol}")

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return UnitNotRegistered(f"unit not registered: {move.unit_symbol}")
            if not self.is_registered(move.source):
                return WalletNotRegistered(f"wallet not registered: {move.source}")
            if not self.is_registered(move.dest):
                return WalletNotRegistered(f"wallet not registered: {move.dest}")

            # Transfer rule check (pass self as LedgerView)
            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return e

        net: Dict[tuple, int] = defaultdict(int)
        for move in pending.moves:
            net[(move.source, move.unit_symbol)] -= move.quantity
            net[(move.dest, move.unit_symbol)] += move.quantity

        # SYSTEM_WALLET is exempt from balance validation
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[unit_sym]
            proposed = self.balances[wallet][unit_sym] + delta
            if proposed < unit.min_balance:
                return InsufficientFunds(
                    f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
                )
            if unit.max_balance is not None and proposed > unit.max_balance:
                return BalanceConstraintViolation(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

        # Optimistic concurrency: a change computed against an older version
        # of the record is rejected rather than overwriting the newer one.
        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return UnitNotRegistered(f"state change on unregistered unit: {sc.unit}")
            if sc.unit in pending.units_to_close:
                return LedgerError(f"state change on closing unit: {sc.unit}")
            current_state = self.units[sc.unit].state
            if sc.old_state is not None and sc.old_state != current_state:
                return StaleState(f"{sc.unit} changed since the transaction was computed")

        return None

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        """Keep the unit -> {wallet -> quantity} index in sync; zero balances are dropped."""
        if quantity != 0:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances and update the position index."""
        for move in moves:
            new_src_balance = self.balances[move.source][move.unit_symbol] - move.quantity
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = self.balances[move.dest][move.unit_symbol] + move.quantity
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # ATOMIC INSTRUCTIONS
    # ========================================================================

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(
            balances={w: dict(b) for w, b in self.balances.items()},
            units=dict(self.units),
            registered_wallets=set(self.registered_wallets),
            log_length=len(self.transaction_log),
            next_sequence=self._next_sequence,
            current_tick=self._current_tick,
            positions_by_unit={u: dict(p) for u, p in self._positions_by_unit.items()},
        )

    def _restore(self, snapshot: _Snapshot) -> None:
        self.balances = {w: defaultdict(int, b) for w, b in snapshot.balances.items()}
        self.units = dict(snapshot.units)
        self.registered_wallets = set(snapshot.registered_wallets)
        del self.transaction_log[snapshot.log_length:]
        self._next_sequence = snapshot.next_sequence
        self._current_tick = snapshot.current_tick
        self._positions_by_unit = defaultdict(dict, {
            u: dict(p) for u, p in snapshot.positions_by_unit.items()
        })

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Run a block of ledger mutations as one all-or-nothing unit.

        If the block raises, balances, units, wallet registrations, the
        transaction log and the clock are restored to their state on entry and
        the exception propagates. Nested blocks restore only their own changes.

        Example:
            with ledger.atomic():
                ledger.execute(loan_out)
                callback(ctx)
                if ledger.get_balance(vault, "USDC") < required:
                    raise FlashLoanNotRepaid()
        """
        snapshot = self._snapshot()
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        Modifications to the clone will not affect the original ledger, and
        vice versa. Units are immutable and shared.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.last_rejection = None
        cloned.transaction_log = list(self.transaction_log)
        cloned._restore(self._snapshot())
        return cloned
