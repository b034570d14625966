"""
program.py - The lending program's instruction surface.

LendingProgram binds a Ledger to a LendingConfig and exposes one method per
instruction. Each instruction is one atomic unit: it runs inside
Ledger.atomic(), builds its PendingTransaction with the compute function of
its module, and executes it. Any failure, whether raised by a compute
function, by the ledger rejecting the transaction, or by a flash loan
callback, restores the ledger to its state before the instruction and
propagates as a LendingError (or ValueError for malformed arguments).

Instructions do not nest. A flash loan callback may read the program's
queries but any instruction it starts raises ReentrantInstruction, which
unwinds the loan. Exceptions raised by the callback itself reach the caller
unchanged.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional

from .accounts import (
    Market, Oracle, ProtocolState, UserPosition,
    market_address, oracle_address, position_address_for,
    load_market, load_oracle, load_protocol, load_position,
)
from .borrow import compute_borrow, compute_repay, compute_withdraw_collateral
from .config import LendingConfig, DEFAULT_CONFIG
from .core import (
    ExecuteResult, InsufficientBalance, InsufficientFunds, LedgerError,
    PendingTransaction, ReentrantInstruction, Transaction,
)
from .flash_loan import FlashLoanContext, execute_flash_loan
from .health import PositionHealth, compute_position_health
from .ledger import Ledger
from .liquidation import compute_liquidation
from .market import (
    compute_initialize, compute_create_market, compute_update_market_params,
    compute_set_paused, compute_set_market_active,
    compute_open_position, compute_close_position,
)
from .oracle import compute_create_oracle, compute_update_oracle_price
from .supply import compute_supply, compute_withdraw

logger = logging.getLogger(__name__)


class LendingProgram:
    """
    Instruction surface of the lending protocol over one ledger.

    Example:
        program = LendingProgram(ledger)
        program.initialize("admin")
        program.create_oracle("admin", "USDC", 1_000_000, 6)
        program.create_oracle("admin", "ETH", 3_000_000_000, 6)
        market = program.create_market("admin", 1, "USDC", "ETH", 8000, 8500)
        program.open_position("alice", market)
        shares = program.supply("alice", market, 1_000_000)
    """

    def __init__(self, ledger: Ledger, config: Optional[LendingConfig] = None):
        self.ledger = ledger
        self.config = (config or DEFAULT_CONFIG).validate()
        # Name of the instruction in progress, if any
        self._executing: Optional[str] = None

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _commit(self, pending: PendingTransaction) -> Optional[Transaction]:
        """Execute ``pending``; a ledger rejection becomes a LendingError."""
        if self.ledger.execute(pending) != ExecuteResult.APPLIED:
            rejection = self.ledger.last_rejection
            if isinstance(rejection, InsufficientFunds):
                raise InsufficientBalance(str(rejection))
            raise rejection or LedgerError("transaction rejected")
        if pending.is_empty():
            return None
        return self.ledger.transaction_log[-1]

    @contextmanager
    def _instruction(self, instruction: str) -> Iterator[None]:
        """Hold the program for one instruction inside a ledger atomic block."""
        if self._executing is not None:
            raise ReentrantInstruction(f"{instruction} started during {self._executing}")
        self._executing = instruction
        try:
            with self.ledger.atomic():
                yield
        finally:
            self._executing = None

    def _run(self, instruction: str, build: Callable[[], PendingTransaction]) -> Optional[Transaction]:
        try:
            with self._instruction(instruction):
                return self._commit(build())
        except (LedgerError, ValueError) as e:
            logger.warning("%s rejected: %s", instruction, e)
            raise

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def initialize(self, admin: str) -> ProtocolState:
        self._run("initialize", lambda: compute_initialize(self.ledger, admin))
        logger.info("Protocol initialized with admin %s", admin)
        return self.protocol()

    def create_oracle(
        self,
        authority: str,
        asset: str,
        initial_price: int,
        decimals: int,
        source: bytes = b"",
    ) -> str:
        """Create the price oracle for ``asset`` and return its address."""
        self._run("create_oracle", lambda: compute_create_oracle(
            self.ledger, authority, asset, initial_price, decimals, source, self.config))
        logger.info("Oracle created for %s at price %d", asset, initial_price)
        return oracle_address(asset)

    def update_oracle_price(
        self,
        authority: str,
        asset: str,
        new_price: int,
        confidence: Optional[int] = None,
    ) -> Oracle:
        self._run("update_oracle_price", lambda: compute_update_oracle_price(
            self.ledger, authority, asset, new_price, confidence, self.config))
        oracle = self.oracle(asset)
        logger.info("Oracle %s price updated to %d (confidence %d) at tick %d",
                    asset, oracle.price, oracle.confidence, oracle.valid_tick)
        return oracle

    def create_market(
        self,
        creator: str,
        market_id: int,
        supply_asset: str,
        collateral_asset: str,
        collateral_factor: int,
        liquidation_threshold: int,
    ) -> str:
        """
        Create a market and its two vault wallets; return the market address.

        The vaults are registered inside the same atomic block as the market
        record, so a failed creation leaves no wallets behind.
        """
        def build() -> PendingTransaction:
            pending = compute_create_market(
                self.ledger, creator, market_id, supply_asset, collateral_asset,
                collateral_factor, liquidation_threshold,
            )
            (record,) = pending.units_to_create
            state = record.state
            for vault in (state["supply_vault"], state["collateral_vault"]):
                if not self.ledger.is_registered(vault):
                    self.ledger.register_wallet(vault)
            return pending

        self._run("create_market", build)
        address = market_address(market_id, supply_asset, collateral_asset)
        logger.info("Market %s created: supply %s, collateral %s, cf %d bps, lt %d bps",
                    address, supply_asset, collateral_asset,
                    collateral_factor, liquidation_threshold)
        return address

    def update_market_params(
        self,
        authority: str,
        market: str,
        collateral_factor: int,
        liquidation_threshold: int,
    ) -> Market:
        self._run("update_market_params", lambda: compute_update_market_params(
            self.ledger, authority, market, collateral_factor, liquidation_threshold))
        logger.info("Market %s parameters updated: cf %d bps, lt %d bps",
                    market, collateral_factor, liquidation_threshold)
        return self.market(market)

    def set_paused(self, admin: str, paused: bool) -> ProtocolState:
        self._run("set_paused", lambda: compute_set_paused(self.ledger, admin, paused))
        logger.info("Protocol %s by %s", "paused" if paused else "resumed", admin)
        return self.protocol()

    def set_market_active(self, authority: str, market: str, active: bool) -> Market:
        self._run("set_market_active", lambda: compute_set_market_active(
            self.ledger, authority, market, active))
        logger.info("Market %s %s by %s", market, "activated" if active else "deactivated", authority)
        return self.market(market)

    # ========================================================================
    # POSITIONS
    # ========================================================================

    def open_position(self, user: str, market: str) -> str:
        """Create ``user``'s position in ``market`` and return its address."""
        self._run("open_position", lambda: compute_open_position(self.ledger, user, market))
        address = position_address_for(self.market(market), user)
        logger.info("Position %s opened", address)
        return address

    def close_position(self, user: str, market: str) -> None:
        self._run("close_position", lambda: compute_close_position(self.ledger, user, market))
        logger.info("Position of %s in %s closed", user, market)

    def supply(self, user: str, market: str, amount: int) -> int:
        """Supply ``amount`` and return the shares minted."""
        before = self.position(user, market).share_balance
        self._run("supply", lambda: compute_supply(self.ledger, market, user, amount, self.config))
        minted = self.position(user, market).share_balance - before
        logger.info("Supply successful: %d tokens -> %d shares (%s in %s)",
                    amount, minted, user, market)
        return minted

    def withdraw(self, user: str, market: str, share_amount: int) -> int:
        """Redeem ``share_amount`` shares and return the underlying paid out."""
        tx = self._run("withdraw", lambda: compute_withdraw(
            self.ledger, market, user, share_amount, self.config))
        amount = sum(m.quantity for m in tx.moves) if tx else 0
        logger.info("Withdraw successful: %d shares -> %d tokens (%s in %s)",
                    share_amount, amount, user, market)
        return amount

    def borrow(self, user: str, market: str, collateral_amount: int, borrow_amount: int) -> int:
        """Post collateral and borrow; return the position's debt afterwards."""
        self._run("borrow", lambda: compute_borrow(
            self.ledger, market, user, collateral_amount, borrow_amount, self.config))
        debt = self.position(user, market).borrowed_amount
        logger.info("Borrow successful: %d collateral deposited, %d borrowed, debt %d (%s in %s)",
                    collateral_amount, borrow_amount, debt, user, market)
        return debt

    def repay(self, user: str, market: str, amount: int) -> int:
        """Repay up to ``amount`` and return what was actually repaid."""
        tx = self._run("repay", lambda: compute_repay(self.ledger, market, user, amount, self.config))
        repaid = sum(m.quantity for m in tx.moves) if tx else 0
        logger.info("Repay successful: %d repaid (%s in %s)", repaid, user, market)
        return repaid

    def withdraw_collateral(self, user: str, market: str, amount: int) -> None:
        self._run("withdraw_collateral", lambda: compute_withdraw_collateral(
            self.ledger, market, user, amount, self.config))
        logger.info("Collateral withdrawn: %d (%s in %s)", amount, user, market)

    def liquidate(
        self,
        liquidator: str,
        market: str,
        borrower: str,
        liquidation_amount: int,
        oracle: Optional[str] = None,
    ) -> int:
        """
        Liquidate ``borrower``'s position in ``market``; return the collateral seized.

        ``oracle`` prices both legs (the market's collateral oracle by default).
        """
        position = position_address_for(self.market(market), borrower)
        return self.liquidate_position(liquidator, market, position, liquidation_amount, oracle)

    def liquidate_position(
        self,
        liquidator: str,
        market: str,
        position: str,
        liquidation_amount: int,
        oracle: Optional[str] = None,
    ) -> int:
        """liquidate() addressed by position; the position must belong to ``market``."""
        tx = self._run("liquidate", lambda: compute_liquidation(
            self.ledger, market, position, liquidator, liquidation_amount, oracle, self.config))
        collateral_asset = self.market(market).collateral_asset
        seized = sum(m.quantity for m in tx.moves if m.unit_symbol == collateral_asset)
        logger.info("Liquidation successful: %d repaid, %d collateral seized from %s by %s",
                    liquidation_amount, seized, position, liquidator)
        return seized

    def flash_loan(
        self,
        market: str,
        recipient: str,
        amount: int,
        callback: Callable[[FlashLoanContext], None],
        callback_accounts: Iterable[str] = (),
        callback_data: bytes = b"",
    ) -> int:
        """
        Run a flash loan; return the fee paid into the vault.

        Whatever ``callback`` raises is re-raised unchanged after the rollback.
        """
        try:
            with self._instruction("flash_loan"):
                fee = execute_flash_loan(
                    self.ledger, market, recipient, amount, callback,
                    callback_accounts, callback_data, self.config,
                )
        except Exception as e:
            logger.warning("flash_loan rejected: %s: %s", type(e).__name__, e)
            raise
        logger.info("Flash loan successful: %d lent to %s, fee %d", amount, recipient, fee)
        return fee

    # ========================================================================
    # QUERIES
    # ========================================================================

    def protocol(self) -> ProtocolState:
        return load_protocol(self.ledger)

    def market(self, market: str) -> Market:
        return load_market(self.ledger, market)

    def oracle(self, asset: str) -> Oracle:
        return load_oracle(self.ledger, oracle_address(asset))

    def position(self, user: str, market: str) -> UserPosition:
        market_record = self.market(market)
        return load_position(self.ledger, position_address_for(market_record, user),
                             owner=user, market=market_record.address)

    def position_health(self, user: str, market: str) -> PositionHealth:
        return compute_position_health(
            self.ledger, position_address_for(self.market(market), user), self.config)
