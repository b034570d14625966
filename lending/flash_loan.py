"""
flash_loan.py - Uncollateralized loans repaid within one atomic instruction.

The market lends out of its supply vault, hands control to a caller-supplied
callback, and afterwards requires the vault to hold at least what it held
before plus the fee. The callback is untrusted: it receives a
FlashLoanContext, which can read the ledger and move funds only out of the
wallets the caller listed in callback_accounts. It has no way to debit a
vault or mutate records. Rollback of everything the callback did, on any
failure, is the job of the enclosing Ledger.atomic() block.
"""

from __future__ import annotations
from typing import Callable, FrozenSet, Iterable, List, Optional, Set

from .accounts import load_market
from .config import LendingConfig, DEFAULT_CONFIG
from .core import (
    LedgerView, Move, TransactionOrigin, OriginType, ExecuteResult,
    Positions, Unit, UnitState, build_transaction, BPS_SCALE, VAULT_PREFIX,
    FlashLoanNotRepaid, InsufficientBalance, InsufficientLiquidity, Unauthorized,
    WalletNotRegistered,
)
from .fixed_point import ceil_div, checked_add, checked_mul, require_positive
from .ledger import Ledger
from .market import require_open


def flash_loan_fee(amount: int, config: LendingConfig = DEFAULT_CONFIG) -> int:
    """
    Fee owed on a flash loan of ``amount``: ceil(amount * fee_bps / 10000).

    Rounded up so that a vault ending below initial + amount * fee_bps / 10000
    is never accepted.
    """
    return ceil_div(checked_mul(amount, config.flash_loan_fee_bps), BPS_SCALE)


class _ReadOnlyView:
    """LedgerView over a ledger, without its mutation methods."""

    __slots__ = ("__ledger",)

    def __init__(self, ledger: Ledger):
        self.__ledger = ledger

    @property
    def current_tick(self) -> int:
        return self.__ledger.current_tick

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        return self.__ledger.get_balance(wallet_id, unit_symbol)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        return self.__ledger.get_unit_state(unit_symbol)

    def get_positions(self, unit_symbol: str) -> Positions:
        return self.__ledger.get_positions(unit_symbol)

    def list_wallets(self) -> Set[str]:
        return self.__ledger.list_wallets()

    def list_units(self) -> List[str]:
        return self.__ledger.list_units()

    def has_unit(self, symbol: str) -> bool:
        return self.__ledger.has_unit(symbol)

    def get_unit(self, symbol: str) -> Unit:
        return self.__ledger.get_unit(symbol)


class FlashLoanContext:
    """
    Capability handed to a flash loan callback.

    Exposes the loan terms, the caller's opaque ``data``, a read-only ledger
    ``view``, and transfer(), which may only debit wallets in ``accounts``.
    """

    __slots__ = ("view", "market", "asset", "amount", "fee", "recipient",
                 "vault", "data", "accounts", "__ledger")

    def __init__(
        self,
        ledger: Ledger,
        market: str,
        asset: str,
        amount: int,
        fee: int,
        recipient: str,
        vault: str,
        data: bytes,
        accounts: FrozenSet[str],
    ):
        self.__ledger = ledger
        self.view: LedgerView = _ReadOnlyView(ledger)
        self.market = market
        self.asset = asset
        self.amount = amount
        self.fee = fee
        self.recipient = recipient
        self.vault = vault
        self.data = data
        self.accounts = accounts

    @property
    def amount_owed(self) -> int:
        return self.amount + self.fee

    def balance(self, wallet: str, asset: Optional[str] = None) -> int:
        return self.__ledger.get_balance(wallet, asset or self.asset)

    def transfer(self, source: str, dest: str, amount: int, asset: Optional[str] = None) -> None:
        """
        Move ``amount`` of ``asset`` (the loan asset by default) from ``source`` to ``dest``.

        Raises:
            Unauthorized: If source is not one of the callback accounts
            InsufficientBalance: If the ledger rejects the transfer
        """
        if source not in self.accounts:
            raise Unauthorized(f"flash loan callback cannot debit {source}")
        require_positive(amount)
        pending = build_transaction(
            self.__ledger,
            [Move(amount, asset or self.asset, source, dest, source)],
            origin=TransactionOrigin(OriginType.USER_ACTION, source, self.market, "FLASH_LOAN_CALLBACK"),
        )
        if self.__ledger.execute(pending) != ExecuteResult.APPLIED:
            raise InsufficientBalance(str(self.__ledger.last_rejection))

    def repay(self, source: Optional[str] = None) -> None:
        """Send amount + fee from ``source`` (the recipient by default) back to the vault."""
        self.transfer(source or self.recipient, self.vault, self.amount_owed)


FlashLoanCallback = Callable[[FlashLoanContext], None]


def execute_flash_loan(
    ledger: Ledger,
    address: str,
    recipient: str,
    amount: int,
    callback: FlashLoanCallback,
    callback_accounts: Iterable[str] = (),
    callback_data: bytes = b"",
    config: LendingConfig = DEFAULT_CONFIG,
) -> int:
    """
    Lend ``amount`` out of the market's supply vault for the duration of ``callback``.

    Must run inside ``ledger.atomic()``: on failure the loan transfer and
    whatever the callback did are rolled back by the caller's atomic block.

    Returns:
        The fee retained by the vault.

    Raises:
        MarketPaused / MarketNotActive: If the market is closed to new risk
        InsufficientLiquidity: If the vault holds less than amount
        Unauthorized: If callback_accounts names a vault
        FlashLoanNotRepaid: If the vault ends below initial balance + fee
    """
    require_positive(amount)
    market = load_market(ledger, address)
    require_open(ledger, market)
    if not ledger.is_registered(recipient):
        raise WalletNotRegistered(f"Wallet {recipient} not registered")
    accounts = frozenset(callback_accounts)
    vaults = sorted(a for a in accounts if a.startswith(VAULT_PREFIX))
    if vaults:
        raise Unauthorized(f"vaults cannot be flash loan callback accounts: {vaults}")

    fee = flash_loan_fee(amount, config)
    initial_balance = ledger.get_balance(market.supply_vault, market.supply_asset)
    if amount > initial_balance:
        raise InsufficientLiquidity(
            f"flash loan of {amount} exceeds vault balance {initial_balance}"
        )

    loan = build_transaction(
        ledger,
        [Move(amount, market.supply_asset, market.supply_vault, recipient, market.address)],
        origin=TransactionOrigin(OriginType.MARKET, market.address, market.address, "FLASH_LOAN"),
    )
    if ledger.execute(loan) != ExecuteResult.APPLIED:
        raise InsufficientBalance(str(ledger.last_rejection))

    callback(FlashLoanContext(
        ledger=ledger,
        market=market.address,
        asset=market.supply_asset,
        amount=amount,
        fee=fee,
        recipient=recipient,
        vault=market.supply_vault,
        data=bytes(callback_data),
        accounts=accounts,
    ))

    final_balance = ledger.get_balance(market.supply_vault, market.supply_asset)
    required = checked_add(initial_balance, fee)
    if final_balance < required:
        raise FlashLoanNotRepaid(f"vault holds {final_balance}, {required} required")
    return fee
