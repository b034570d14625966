"""
lending - Collateralized Lending Market Engine

Isolated lending markets on a double-entry custody ledger. Each market pools
one supply asset, lends it against one collateral asset, prices both through
oracle records, and accounts for suppliers with shares.

Usage:
    from lending import Ledger, LendingProgram, token, SYSTEM_WALLET

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", 6))
    ledger.register_unit(token("ETH", "Ether", 6))
    ledger.register_wallet("admin")
    ledger.register_wallet("alice")

    program = LendingProgram(ledger)
    program.initialize("admin")
    program.create_oracle("admin", "USDC", 1_000_000, 6)
    program.create_oracle("admin", "ETH", 3_000_000_000, 6)
    market = program.create_market("admin", 1, "USDC", "ETH", 8000, 8500)

    program.open_position("alice", market)
    program.supply("alice", market, 1_000_000_000)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    record_unit,
    vault_custody_rule,
    record_transfer_rule,
    SYSTEM_WALLET,
    VAULT_PREFIX,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_PROTOCOL,
    UNIT_TYPE_MARKET,
    UNIT_TYPE_POSITION,
    UNIT_TYPE_ORACLE,
    SCALING_FACTOR,
    BPS_SCALE,
    U64_MAX,
    U128_MAX,
    HEALTH_FACTOR_MAX,
)

# Exceptions
from .core import (
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    StaleState,
    UnitNotRegistered,
    WalletNotRegistered,
    LendingError,
    Unauthorized,
    ReentrantInstruction,
    MathOverflow,
    DivisionByZero,
    InsufficientBalance,
    InsufficientCollateral,
    InsufficientLiquidity,
    HasDeposits,
    HasBorrows,
    PositionHealthy,
    ExcessiveLiquidation,
    FlashLoanNotRepaid,
    InvalidOracleData,
    MarketNotFound,
    MarketPaused,
    MarketNotActive,
    InvalidMarketState,
    InvalidAccount,
    UserDepositAlreadyExists,
    AccountAlreadyInitialized,
)

# Ledger
from .ledger import Ledger

# Configuration
from .config import LendingConfig, DEFAULT_CONFIG

# Records and addressing
from .accounts import (
    ProtocolState,
    Market,
    UserPosition,
    Oracle,
    protocol_address,
    market_address,
    position_address,
    oracle_address,
    supply_vault_address,
    collateral_vault_address,
    load_protocol,
    load_market,
    load_position,
    load_oracle,
)

# Oracle
from .oracle import (
    get_price,
    set_price,
    read_price,
    compute_create_oracle,
    compute_update_oracle_price,
)

# Interest and shares
from .interest import accrue_market_interest, accrue_position_interest
from .shares import exchange_rate, shares_for_deposit, underlying_for_shares

# Health
from .health import (
    PositionHealth,
    calculate_position_health,
    compute_position_health,
    health_factor,
    is_healthy,
    is_liquidatable,
)

# Markets and positions
from .market import (
    compute_initialize,
    compute_create_market,
    compute_update_market_params,
    compute_set_paused,
    compute_set_market_active,
    compute_open_position,
    compute_close_position,
)

# Instructions
from .supply import compute_supply, compute_withdraw
from .borrow import compute_borrow, compute_repay, compute_withdraw_collateral
from .liquidation import (
    compute_liquidation,
    collateral_to_seize,
    price_both_legs_with_single_oracle,
)
from .flash_loan import FlashLoanContext, execute_flash_loan, flash_loan_fee

# Program
from .program import LendingProgram

# Risk monitoring
from .risk import HealthSnapshot, StressResult, market_health_snapshot, stress_liquidations


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'token', 'record_unit', 'vault_custody_rule', 'record_transfer_rule',
    'SYSTEM_WALLET', 'VAULT_PREFIX',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_PROTOCOL', 'UNIT_TYPE_MARKET',
    'UNIT_TYPE_POSITION', 'UNIT_TYPE_ORACLE',
    'SCALING_FACTOR', 'BPS_SCALE', 'U64_MAX', 'U128_MAX', 'HEALTH_FACTOR_MAX',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'StaleState', 'UnitNotRegistered', 'WalletNotRegistered',
    'LendingError', 'Unauthorized', 'ReentrantInstruction', 'MathOverflow', 'DivisionByZero',
    'InsufficientBalance', 'InsufficientCollateral', 'InsufficientLiquidity',
    'HasDeposits', 'HasBorrows', 'PositionHealthy', 'ExcessiveLiquidation',
    'FlashLoanNotRepaid', 'InvalidOracleData', 'MarketNotFound', 'MarketPaused',
    'MarketNotActive', 'InvalidMarketState', 'InvalidAccount',
    'UserDepositAlreadyExists', 'AccountAlreadyInitialized',
    # Ledger and config
    'Ledger', 'LendingConfig', 'DEFAULT_CONFIG',
    # Records
    'ProtocolState', 'Market', 'UserPosition', 'Oracle',
    'protocol_address', 'market_address', 'position_address', 'oracle_address',
    'supply_vault_address', 'collateral_vault_address',
    'load_protocol', 'load_market', 'load_position', 'load_oracle',
    # Oracle
    'get_price', 'set_price', 'read_price',
    'compute_create_oracle', 'compute_update_oracle_price',
    # Interest, shares, health
    'accrue_market_interest', 'accrue_position_interest',
    'exchange_rate', 'shares_for_deposit', 'underlying_for_shares',
    'PositionHealth', 'calculate_position_health', 'compute_position_health',
    'health_factor', 'is_healthy', 'is_liquidatable',
    # Markets and instructions
    'compute_initialize', 'compute_create_market', 'compute_update_market_params',
    'compute_set_paused', 'compute_set_market_active',
    'compute_open_position', 'compute_close_position',
    'compute_supply', 'compute_withdraw',
    'compute_borrow', 'compute_repay', 'compute_withdraw_collateral',
    'compute_liquidation', 'collateral_to_seize', 'price_both_legs_with_single_oracle',
    'FlashLoanContext', 'execute_flash_loan', 'flash_loan_fee',
    # Program and risk
    'LendingProgram',
    'HealthSnapshot', 'StressResult', 'market_health_snapshot', 'stress_liquidations',
]

__version__ = '0.1.0'
