"""
vault.py - DCS vault data model, status machine and admin setters

A vault is one deployed instance of a product. It is a ledger unit of type
DCS_VAULT: wallet balances of the unit are the vault's shares, and the unit
state holds the vault record and the current epoch's settlement record:

    product_id, total_assets, vault_status, is_disputed, epoch,
    auction_winner, auction_winner_token_id, oracle_data_source,
    management_fee_bps, yield_fee_bps,
    trade_start_date, trade_end_date,
    initial_spot_price, strike_price, apr_bps,
    underlying_amount, yield_amount,
    settlement_status, is_payoff_in_deposit_asset,
    withdrawal_queue, price_overrides

Status pairs are checked against ALLOWED_STATUS_PAIRS on every admin write;
the phase operations only move between allowed pairs.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    SYSTEM_WALLET, UNIT_TYPE_DCS_PRODUCT, UNIT_TYPE_DCS_VAULT, UNIT_TYPE_POSITION_RECEIPT,
    QUANTITY_EPSILON, ZERO,
    InvalidVault, InvalidProduct, InvalidVaultStatus, InvalidSettlementStatus,
    VaultInDispute, ValueTooLarge, UnitNotRegistered,
    build_transaction, _freeze_state,
)
from ..pricing_source import DEFAULT_DATA_SOURCE


class VaultStatus(str, Enum):
    DEPOSITS_CLOSED = "DepositsClosed"
    DEPOSITS_OPEN = "DepositsOpen"
    NOT_TRADED = "NotTraded"
    TRADED = "Traded"
    TRADE_EXPIRED = "TradeExpired"
    FEES_COLLECTED = "FeesCollected"
    WITHDRAWAL_QUEUE_PROCESSED = "WithdrawalQueueProcessed"
    ZOMBIE = "Zombie"


class SettlementStatus(str, Enum):
    NOT_AUCTIONED = "NotAuctioned"
    AUCTIONED = "Auctioned"
    INITIAL_PREMIUM_PAID = "InitialPremiumPaid"
    AWAITING_SETTLEMENT = "AwaitingSettlement"
    SETTLED = "Settled"
    DEFAULTED = "Defaulted"


class OptionType(str, Enum):
    """
    BUY_LOW: deposits in the quote asset, converted to the base asset when
             the final price is below the strike.
    SELL_HIGH: deposits in the base asset, converted to the quote asset when
               the final price is above the strike.
    """
    BUY_LOW = "BuyLow"
    SELL_HIGH = "SellHigh"


_SETTLED_OR_DEFAULTED = frozenset({SettlementStatus.SETTLED, SettlementStatus.DEFAULTED})

ALLOWED_STATUS_PAIRS: Dict[VaultStatus, FrozenSet[SettlementStatus]] = {
    VaultStatus.DEPOSITS_CLOSED: frozenset({SettlementStatus.NOT_AUCTIONED}),
    VaultStatus.DEPOSITS_OPEN: frozenset({SettlementStatus.NOT_AUCTIONED}),
    VaultStatus.NOT_TRADED: frozenset({SettlementStatus.NOT_AUCTIONED, SettlementStatus.AUCTIONED}),
    VaultStatus.TRADED: frozenset({SettlementStatus.INITIAL_PREMIUM_PAID}),
    VaultStatus.TRADE_EXPIRED: frozenset({
        SettlementStatus.AWAITING_SETTLEMENT,
        SettlementStatus.SETTLED,
        SettlementStatus.DEFAULTED,
    }),
    VaultStatus.FEES_COLLECTED: _SETTLED_OR_DEFAULTED,
    VaultStatus.WITHDRAWAL_QUEUE_PROCESSED: _SETTLED_OR_DEFAULTED,
    VaultStatus.ZOMBIE: _SETTLED_OR_DEFAULTED,
}


@dataclass(frozen=True)
class EngineConfig:
    """
    Deployment-wide wallets and precision.

    Attributes:
        treasury_wallet: Holds every product's deposits, premiums and payoffs.
        fee_receiver: Receives management, yield and late fees.
        escrow_wallet: Holds shares queued for withdrawal until burned.
        wrapping_proxy_wallet: Unwrap-and-forward proxy for withdrawals that
            opt in; None disables proxied withdrawals.
        price_decimals: Fixed-point decimals of oracle prices.
    """
    treasury_wallet: str = "treasury"
    fee_receiver: str = "fee_receiver"
    escrow_wallet: str = "share_escrow"
    wrapping_proxy_wallet: Optional[str] = None
    price_decimals: int = 8

    def __post_init__(self):
        wallets = [self.treasury_wallet, self.fee_receiver, self.escrow_wallet]
        if SYSTEM_WALLET in wallets or len(set(wallets)) != len(wallets):
            raise ValueError("treasury, fee receiver and escrow must be distinct non-system wallets")
        if self.price_decimals < 0:
            raise ValueError(f"price_decimals must be non-negative, got {self.price_decimals}")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def empty_withdrawal_queue() -> Dict[str, Any]:
    return {
        'withdrawers': [],
        'amounts': {},
        'total_shares': ZERO,
        'processed_index': 0,
    }


def epoch_fields() -> Dict[str, Any]:
    """Per-epoch fields in their pre-auction state."""
    return {
        'auction_winner': None,
        'auction_winner_token_id': None,
        'trade_start_date': None,
        'trade_end_date': None,
        'initial_spot_price': ZERO,
        'strike_price': ZERO,
        'apr_bps': 0,
        'yield_amount': ZERO,
        'settlement_status': SettlementStatus.NOT_AUCTIONED,
        'is_payoff_in_deposit_asset': True,
        'is_disputed': False,
    }


def create_vault_unit(
    vault_id: str,
    product_id: str,
    management_fee_bps: int = 0,
    yield_fee_bps: int = 0,
    oracle_data_source: str = DEFAULT_DATA_SOURCE,
) -> Unit:
    """
    Create a DCS vault unit. Its balances are vault shares (18 decimals,
    integer base units).

    Raises:
        ValueError: If a fee rate is outside [0, 10000] bps
    """
    for label, bps in (("management_fee_bps", management_fee_bps), ("yield_fee_bps", yield_fee_bps)):
        if bps < 0 or bps > 10_000:
            raise ValueError(f"{label} must be between 0 and 10000, got {bps}")

    return Unit(
        symbol=vault_id,
        name=f"DCS Vault {vault_id} ({product_id})",
        unit_type=UNIT_TYPE_DCS_VAULT,
        min_balance=ZERO,
        decimal_places=0,
        _frozen_state=_freeze_state({
            'product_id': product_id,
            'total_assets': ZERO,
            'underlying_amount': ZERO,
            'vault_status': VaultStatus.DEPOSITS_CLOSED,
            'epoch': 0,
            'management_fee_bps': management_fee_bps,
            'yield_fee_bps': yield_fee_bps,
            'oracle_data_source': oracle_data_source,
            'withdrawal_queue': empty_withdrawal_queue(),
            'price_overrides': {},
            **epoch_fields(),
        }),
    )


def create_position_receipt_unit(token_id: str, metadata: Dict[str, Any]) -> Unit:
    """
    Non-fungible position receipt: a unit with a single unit of supply.
    Whoever holds it may settle the vault.
    """
    return Unit(
        symbol=token_id,
        name=f"DCS Position Receipt {token_id}",
        unit_type=UNIT_TYPE_POSITION_RECEIPT,
        min_balance=ZERO,
        max_balance=Decimal("1"),
        decimal_places=0,
        _frozen_state=_freeze_state(dict(metadata)),
    )


# ============================================================================
# READ HELPERS
# ============================================================================

def get_vault(view: LedgerView, vault_id: str) -> Dict[str, Any]:
    """
    Raises:
        InvalidVault: If vault_id is not a registered vault
    """
    try:
        unit = view.get_unit(vault_id)
    except UnitNotRegistered:
        raise InvalidVault(f"Unknown vault {vault_id}") from None
    if unit.unit_type != UNIT_TYPE_DCS_VAULT:
        raise InvalidVault(f"{vault_id} is not a DCS vault")
    return view.get_unit_state(vault_id)


def get_product(view: LedgerView, product_id: str) -> Dict[str, Any]:
    """
    Raises:
        InvalidProduct: If product_id is not a registered product
    """
    try:
        unit = view.get_unit(product_id)
    except UnitNotRegistered:
        raise InvalidProduct(f"Unknown product {product_id}") from None
    if unit.unit_type != UNIT_TYPE_DCS_PRODUCT:
        raise InvalidProduct(f"{product_id} is not a DCS product")
    return view.get_unit_state(product_id)


def deposit_asset(product: Dict[str, Any]) -> str:
    if product['option_type'] == OptionType.BUY_LOW:
        return product['quote_asset']
    return product['base_asset']


def counter_asset(product: Dict[str, Any]) -> str:
    if product['option_type'] == OptionType.BUY_LOW:
        return product['base_asset']
    return product['quote_asset']


def payoff_asset(product: Dict[str, Any], vault: Dict[str, Any]) -> str:
    """Asset the vault's total_assets are currently denominated in."""
    if vault['is_payoff_in_deposit_asset']:
        return deposit_asset(product)
    return counter_asset(product)


def shares_outstanding(view: LedgerView, vault_id: str) -> Decimal:
    """Total vault shares held outside the system wallet (escrow included)."""
    return sum(
        (qty for wallet, qty in view.get_positions(vault_id).items() if wallet != SYSTEM_WALLET),
        ZERO,
    )


def receipt_owner(view: LedgerView, token_id: Optional[str]) -> Optional[str]:
    """Current holder of a position receipt, or None."""
    if not token_id:
        return None
    for wallet, qty in view.get_positions(token_id).items():
        if wallet != SYSTEM_WALLET and qty > QUANTITY_EPSILON:
            return wallet
    return None


def contributes_to_product(vault: Dict[str, Any]) -> bool:
    """
    True while the vault's total_assets count toward the product's
    sum_vault_underlying_amounts.

    A converted payoff stays counted until settle_vault exchanges the assets;
    a default removes the contribution until the vault rolls over.
    """
    status = vault['settlement_status']
    if status == SettlementStatus.DEFAULTED:
        return False
    if status == SettlementStatus.AWAITING_SETTLEMENT:
        return True
    return vault['is_payoff_in_deposit_asset']


def is_allowed_pair(vault_status: VaultStatus, settlement_status: SettlementStatus) -> bool:
    return settlement_status in ALLOWED_STATUS_PAIRS[vault_status]


def require_vault_status(vault: Dict[str, Any], *allowed: VaultStatus) -> None:
    if vault['vault_status'] not in allowed:
        raise InvalidVaultStatus(
            f"vault status {vault['vault_status'].value}, expected one of "
            f"{[s.value for s in allowed]}"
        )


def require_settlement_status(vault: Dict[str, Any], *allowed: SettlementStatus) -> None:
    if vault['settlement_status'] not in allowed:
        raise InvalidSettlementStatus(
            f"settlement status {vault['settlement_status'].value}, expected one of "
            f"{[s.value for s in allowed]}"
        )


def require_not_disputed(vault: Dict[str, Any]) -> None:
    if vault['is_disputed']:
        raise VaultInDispute("vault is in dispute")


def dcs_origin(caller: str, symbol: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.CONTRACT,
        source_id=caller,
        unit_symbol=symbol,
        event_type=event_type,
    )


def check_max_underlying(product: Dict[str, Any], additional: Decimal) -> None:
    """
    Raises:
        ValueTooLarge: If committed plus queued underlying would exceed the cap
    """
    limit = product['max_underlying_amount']
    if limit <= ZERO:
        return
    committed = product['sum_vault_underlying_amounts'] + product['deposit_queue']['total']
    if committed + additional > limit:
        raise ValueTooLarge(
            f"underlying {committed + additional} exceeds product limit {limit}"
        )


# ============================================================================
# STATUS OPERATIONS
# ============================================================================

def compute_open_vault_deposits(view: LedgerView, vault_id: str, caller: str) -> PendingTransaction:
    """
    Start an epoch's deposit window: DepositsClosed -> DepositsOpen.

    Raises:
        InvalidVaultStatus: If the vault is not DepositsClosed
    """
    vault = get_vault(view, vault_id)
    require_vault_status(vault, VaultStatus.DEPOSITS_CLOSED)
    new_vault = {**vault, 'vault_status': VaultStatus.DEPOSITS_OPEN}
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "OPEN_VAULT_DEPOSITS"),
    )


def compute_set_vault_status(
    view: LedgerView, vault_id: str, status: VaultStatus, caller: str,
) -> PendingTransaction:
    """
    Admin override of the lifecycle status.

    Raises:
        InvalidVaultStatus: If the result is not an allowed pair with the
            current settlement status
    """
    vault = get_vault(view, vault_id)
    status = VaultStatus(status)
    if not is_allowed_pair(status, vault['settlement_status']):
        raise InvalidVaultStatus(
            f"{status.value} is not valid with settlement status {vault['settlement_status'].value}"
        )
    new_vault = {**vault, 'vault_status': status}
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "SET_VAULT_STATUS"),
    )


def compute_set_settlement_status(
    view: LedgerView, vault_id: str, status: SettlementStatus, caller: str,
) -> PendingTransaction:
    """
    Admin override of the settlement status.

    Raises:
        InvalidSettlementStatus: If the result is not an allowed pair with
            the current vault status
    """
    vault = get_vault(view, vault_id)
    status = SettlementStatus(status)
    if not is_allowed_pair(vault['vault_status'], status):
        raise InvalidSettlementStatus(
            f"{status.value} is not valid with vault status {vault['vault_status'].value}"
        )
    new_vault = {**vault, 'settlement_status': status}
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "SET_SETTLEMENT_STATUS"),
    )


def compute_set_payoff_denomination(
    view: LedgerView, vault_id: str, is_payoff_in_deposit_asset: bool, caller: str,
) -> PendingTransaction:
    """
    Admin override of the payoff denomination flag.

    Only allowed before settlement has exchanged assets, so the stored
    totals keep matching the flagged asset.

    Raises:
        InvalidVaultStatus: Unless the vault is TradeExpired
        InvalidSettlementStatus: Unless settlement is AwaitingSettlement
    """
    vault = get_vault(view, vault_id)
    require_vault_status(vault, VaultStatus.TRADE_EXPIRED)
    require_settlement_status(vault, SettlementStatus.AWAITING_SETTLEMENT)
    new_vault = {**vault, 'is_payoff_in_deposit_asset': bool(is_payoff_in_deposit_asset)}
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "SET_PAYOFF_DENOMINATION"),
    )
