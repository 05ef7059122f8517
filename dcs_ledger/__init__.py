"""
dcs_ledger - Dual-currency-settlement vault ledger

Pooled deposits, one auctioned trade per epoch, conditional conversion
between two assets at expiry, queued withdrawals, fees, disputes and
rollover, all executed as atomic double-entry transactions.

Usage:
    from dcs_ledger import (
        Ledger, VaultLifecycleEngine, StaticRoleAuthority, TimeSeriesPriceOracle,
        asset, create_product_unit, create_vault_unit, OptionType,
    )

    ledger = Ledger("main", initial_time=datetime(2024, 1, 1))
    ledger.register_unit(asset("USDC", "USD Coin", 6))
    ledger.register_unit(asset("WETH", "Wrapped Ether", 18))
    engine = VaultLifecycleEngine(ledger, oracle, StaticRoleAuthority({"admin"}))

    engine.create_product("admin", create_product_unit(
        "P1", "USDC", "WETH", OptionType.BUY_LOW,
        tenor_in_seconds=30 * 86400, strike_barrier_bps=9500,
    ))
    engine.create_vault("admin", create_vault_unit("V1", "P1"))
    engine.add_to_deposit_queue("alice", "P1", Decimal(100_000 * 10**6))
    engine.open_vault_deposits("admin", "V1")
    engine.process_deposit_queue("admin", "V1")
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
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    asset,
    native_asset,
    asset_decimals,
    SYSTEM_WALLET,
    NATIVE_ASSET,
    SHARE_DECIMALS,
    BPS_DENOMINATOR,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    UNIT_TYPE_ASSET,
    UNIT_TYPE_DCS_PRODUCT,
    UNIT_TYPE_DCS_VAULT,
    UNIT_TYPE_POSITION_RECEIPT,
    # Errors
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    DCSError,
    InvalidVault,
    InvalidProduct,
    InvalidVaultStatus,
    InvalidSettlementStatus,
    VaultInZombieState,
    TradeDefaulted,
    VaultInDispute,
    VaultNotInDispute,
    OutsideDisputePeriod,
    TradeHasNoWinner,
    TradeNotConverted,
    TradeConverted,
    InvalidTradeEndDate,
    InvalidPrice,
    ValueTooSmall,
    ValueTooLarge,
    ValueIsZero,
    NotTradeWinner,
    NotTradeWinnerOrAdmin,
    TradeNotStarted,
    NoProxyForRedeposit,
    Unauthorized,
    ReentrantCall,
)

# Ledger
from .ledger import Ledger

# Prices and roles
from .pricing_source import (
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
    resolve_price,
    DEFAULT_DATA_SOURCE,
)
from .authority import RoleAuthority, StaticRoleAuthority

# DCS components
from .dcs import (
    VaultStatus,
    SettlementStatus,
    OptionType,
    EngineConfig,
    ALLOWED_STATUS_PAIRS,
    create_product_unit,
    create_vault_unit,
    get_vault,
    get_product,
    deposit_asset,
    counter_asset,
    payoff_asset,
    shares_outstanding,
    receipt_owner,
    contributes_to_product,
    is_allowed_pair,
    convert_to_counter_asset,
    convert_to_deposit_asset,
    is_triggered,
    calculate_fees,
    calculate_strike,
    calculate_yield,
    calculate_late_fee,
    shares_for_deposit,
    Direct,
    Redeposit,
)

# Engine
from .lifecycle_engine import VaultLifecycleEngine

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'asset', 'native_asset', 'asset_decimals',
    'SYSTEM_WALLET', 'NATIVE_ASSET', 'SHARE_DECIMALS', 'BPS_DENOMINATOR',
    'SECONDS_PER_DAY', 'SECONDS_PER_YEAR',
    'UNIT_TYPE_ASSET', 'UNIT_TYPE_DCS_PRODUCT', 'UNIT_TYPE_DCS_VAULT', 'UNIT_TYPE_POSITION_RECEIPT',
    # Errors
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'DCSError', 'InvalidVault', 'InvalidProduct', 'InvalidVaultStatus', 'InvalidSettlementStatus',
    'VaultInZombieState', 'TradeDefaulted', 'VaultInDispute', 'VaultNotInDispute',
    'OutsideDisputePeriod', 'TradeHasNoWinner', 'TradeNotConverted', 'TradeConverted',
    'InvalidTradeEndDate', 'InvalidPrice', 'ValueTooSmall', 'ValueTooLarge', 'ValueIsZero',
    'NotTradeWinner', 'NotTradeWinnerOrAdmin', 'TradeNotStarted', 'NoProxyForRedeposit',
    'Unauthorized', 'ReentrantCall',
    # Ledger
    'Ledger',
    # Prices and roles
    'PriceOracle', 'StaticPriceOracle', 'TimeSeriesPriceOracle', 'resolve_price',
    'DEFAULT_DATA_SOURCE', 'RoleAuthority', 'StaticRoleAuthority',
    # DCS
    'VaultStatus', 'SettlementStatus', 'OptionType', 'EngineConfig', 'ALLOWED_STATUS_PAIRS',
    'create_product_unit', 'create_vault_unit', 'get_vault', 'get_product',
    'deposit_asset', 'counter_asset', 'payoff_asset', 'shares_outstanding', 'receipt_owner',
    'contributes_to_product', 'is_allowed_pair',
    'convert_to_counter_asset', 'convert_to_deposit_asset', 'is_triggered',
    'calculate_fees', 'calculate_strike', 'calculate_yield', 'calculate_late_fee',
    'shares_for_deposit', 'Direct', 'Redeposit',
    # Engine
    'VaultLifecycleEngine',
]

__version__ = '1.0.0'
