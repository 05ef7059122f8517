"""
product.py - DCS product terms, vault registration and deposit intake

A product is the template for a recurring offering. It is a state-only
ledger unit (type DCS_PRODUCT) holding the terms, the running total of
underlying committed across its vaults, and the product-wide deposit queue:

    deposit_queue = {
        'depositors': [wallet, ...],          # append-only, in arrival order
        'amounts': {wallet: pending amount},
        'total': sum of pending amounts,
        'processed_index': cursor into depositors,
    }

Deposited assets move into the treasury when queued; shares are minted
later by the deposit queue processor.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core import (
    LedgerView, PendingTransaction, Unit, Move, UnitStateChange,
    UNIT_TYPE_ASSET, UNIT_TYPE_DCS_PRODUCT, UNIT_TYPE_DCS_VAULT, BPS_DENOMINATOR, ZERO,
    InvalidProduct, InvalidVault, ValueIsZero, ValueTooSmall, UnitNotRegistered,
    build_transaction, _freeze_state,
)
from .vault import (
    OptionType, get_product, deposit_asset, check_max_underlying, dcs_origin,
)


DEFAULT_DAYS_TO_START_LATE_FEES = 1
DEFAULT_DAYS_TO_START_AUCTION_DEFAULT = 5
DEFAULT_DAYS_TO_START_SETTLEMENT_DEFAULT = 5
DEFAULT_DISPUTE_PERIOD_IN_HOURS = 24


def _is_count(v) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def _is_positive(v) -> bool:
    return _is_count(v) and v > 0


def _is_bps(v) -> bool:
    return _is_count(v) and v <= BPS_DENOMINATOR


def _is_amount(v) -> bool:
    return isinstance(v, (int, Decimal)) and not isinstance(v, bool) and v >= 0


# Terms an admin may change after creation, with their validators.
CONFIGURABLE_TERMS = {
    'is_deposit_queue_open': lambda v: isinstance(v, bool),
    'min_deposit_amount': _is_amount,
    'min_withdrawal_amount': _is_amount,
    'max_underlying_amount': _is_amount,
    'late_fee_bps': _is_bps,
    'days_to_start_late_fees': _is_count,
    'days_to_start_auction_default': _is_count,
    'days_to_start_settlement_default': _is_count,
    'dispute_period_in_hours': _is_count,
    'strike_barrier_bps': _is_positive,
    'tenor_in_seconds': _is_positive,
}


def empty_deposit_queue() -> Dict[str, Any]:
    return {
        'depositors': [],
        'amounts': {},
        'total': ZERO,
        'processed_index': 0,
    }


def create_product_unit(
    product_id: str,
    quote_asset: str,
    base_asset: str,
    option_type: OptionType,
    tenor_in_seconds: int,
    strike_barrier_bps: int,
    min_deposit_amount: Decimal = ZERO,
    min_withdrawal_amount: Decimal = ZERO,
    max_underlying_amount: Decimal = ZERO,
    late_fee_bps: int = 0,
    days_to_start_late_fees: int = DEFAULT_DAYS_TO_START_LATE_FEES,
    days_to_start_auction_default: int = DEFAULT_DAYS_TO_START_AUCTION_DEFAULT,
    days_to_start_settlement_default: int = DEFAULT_DAYS_TO_START_SETTLEMENT_DEFAULT,
    dispute_period_in_hours: int = DEFAULT_DISPUTE_PERIOD_IN_HOURS,
    is_deposit_queue_open: bool = True,
) -> Unit:
    """
    Create a DCS product unit.

    Args:
        product_id: Unique product symbol.
        quote_asset: Asset prices are quoted in (e.g. "USDC").
        base_asset: Asset being priced (e.g. "WETH").
        option_type: BUY_LOW deposits the quote asset, SELL_HIGH the base asset.
        tenor_in_seconds: Trade length.
        strike_barrier_bps: Strike as a fraction of the initial spot (9500 = 95%).
        max_underlying_amount: Cap on committed plus queued underlying; 0 disables.

    Raises:
        ValueError: If a term is out of range or the assets coincide
    """
    if not product_id:
        raise ValueError("product_id cannot be empty")
    if quote_asset == base_asset:
        raise ValueError(f"quote and base asset must differ, both are {quote_asset}")
    terms = {
        'tenor_in_seconds': tenor_in_seconds,
        'strike_barrier_bps': strike_barrier_bps,
        'min_deposit_amount': Decimal(min_deposit_amount),
        'min_withdrawal_amount': Decimal(min_withdrawal_amount),
        'max_underlying_amount': Decimal(max_underlying_amount),
        'late_fee_bps': late_fee_bps,
        'days_to_start_late_fees': days_to_start_late_fees,
        'days_to_start_auction_default': days_to_start_auction_default,
        'days_to_start_settlement_default': days_to_start_settlement_default,
        'dispute_period_in_hours': dispute_period_in_hours,
        'is_deposit_queue_open': is_deposit_queue_open,
    }
    for key, value in terms.items():
        if not CONFIGURABLE_TERMS[key](value):
            raise ValueError(f"invalid {key}: {value!r}")

    return Unit(
        symbol=product_id,
        name=f"DCS Product {product_id} ({base_asset}/{quote_asset} {OptionType(option_type).value})",
        unit_type=UNIT_TYPE_DCS_PRODUCT,
        _frozen_state=_freeze_state({
            'quote_asset': quote_asset,
            'base_asset': base_asset,
            'option_type': OptionType(option_type),
            **terms,
            'sum_vault_underlying_amounts': ZERO,
            'vaults': [],
            'deposit_queue': empty_deposit_queue(),
        }),
    )


def _is_registered(view: LedgerView, symbol: str) -> bool:
    try:
        view.get_unit(symbol)
    except UnitNotRegistered:
        return False
    return True


def compute_create_product(view: LedgerView, product: Unit, caller: str) -> PendingTransaction:
    """
    Register a product unit.

    Raises:
        InvalidProduct: If the unit is not a product, its symbol is taken or
            an asset is unknown
    """
    if product.unit_type != UNIT_TYPE_DCS_PRODUCT:
        raise InvalidProduct(f"{product.symbol} is not a DCS product unit")
    if _is_registered(view, product.symbol):
        raise InvalidProduct(f"{product.symbol} is already registered")
    state = product.state
    for symbol in (state['quote_asset'], state['base_asset']):
        try:
            unit = view.get_unit(symbol)
        except UnitNotRegistered:
            raise InvalidProduct(f"asset {symbol} is not registered") from None
        if unit.unit_type != UNIT_TYPE_ASSET:
            raise InvalidProduct(f"{symbol} is not an asset")
    return build_transaction(
        view, [],
        origin=dcs_origin(caller, product.symbol, "CREATE_PRODUCT"),
        units_to_create=(product,),
    )


def compute_create_vault(view: LedgerView, vault: Unit, caller: str) -> PendingTransaction:
    """
    Register a vault unit and list it under its product.

    Raises:
        InvalidProduct: If the vault's product is unknown
        InvalidVault: If the unit is not a vault or its symbol is taken
    """
    if vault.unit_type != UNIT_TYPE_DCS_VAULT:
        raise InvalidVault(f"{vault.symbol} is not a DCS vault unit")
    if _is_registered(view, vault.symbol):
        raise InvalidVault(f"{vault.symbol} is already registered")
    product_id = vault.state['product_id']
    product = get_product(view, product_id)
    new_product = {**product, 'vaults': product['vaults'] + [vault.symbol]}
    return build_transaction(
        view, [],
        [UnitStateChange(product_id, product, new_product)],
        origin=dcs_origin(caller, vault.symbol, "CREATE_VAULT"),
        units_to_create=(vault,),
    )


def compute_configure_product(
    view: LedgerView, product_id: str, caller: str, **terms: Any,
) -> PendingTransaction:
    """
    Change one or more product terms.

    Raises:
        InvalidProduct: If the product is unknown
        ValueError: If a term is unknown or its value out of range
    """
    product = get_product(view, product_id)
    for key, value in terms.items():
        validator = CONFIGURABLE_TERMS.get(key)
        if validator is None:
            raise ValueError(f"{key} is not a configurable product term")
        if not validator(value):
            raise ValueError(f"invalid {key}: {value!r}")
    normalized = {
        k: Decimal(v) if k.endswith('_amount') else v
        for k, v in terms.items()
    }
    new_product = {**product, **normalized}
    return build_transaction(
        view, [],
        [UnitStateChange(product_id, product, new_product)],
        origin=dcs_origin(caller, product_id, "CONFIGURE_PRODUCT"),
    )


def enqueue_deposit(product: Dict[str, Any], receiver: str, amount: Decimal) -> None:
    """Append a pending deposit to a product state dict in place."""
    queue = product['deposit_queue']
    pending = queue['amounts'].get(receiver, ZERO)
    if pending == ZERO:
        queue['depositors'].append(receiver)
    queue['amounts'][receiver] = pending + amount
    queue['total'] = queue['total'] + amount


def compute_add_to_deposit_queue(
    view: LedgerView,
    product_id: str,
    depositor: str,
    amount: Decimal,
    treasury_wallet: str,
    receiver: Optional[str] = None,
) -> PendingTransaction:
    """
    Queue a deposit and move the deposit asset into the treasury.

    Raises:
        InvalidProduct: If the product is unknown or its deposit queue is closed
        ValueIsZero: If amount is zero
        ValueTooSmall: If amount is below the product minimum
        ValueTooLarge: If the product's underlying cap would be exceeded
    """
    product = get_product(view, product_id)
    amount = Decimal(amount)
    receiver = receiver or depositor
    if not product['is_deposit_queue_open']:
        raise InvalidProduct(f"deposit queue of {product_id} is closed")
    if amount <= ZERO:
        raise ValueIsZero("deposit amount must be positive")
    if amount < product['min_deposit_amount']:
        raise ValueTooSmall(f"deposit {amount} below minimum {product['min_deposit_amount']}")
    check_max_underlying(product, amount)

    enqueue_deposit(product, receiver, amount)
    asset_symbol = deposit_asset(product)
    move = Move(
        amount, asset_symbol, depositor, treasury_wallet, f"deposit_{product_id}",
        metadata={
            'event': 'DepositQueued',
            'product_id': product_id,
            'depositor': depositor,
            'receiver': receiver,
            'amount': amount,
        },
    )
    old_product = get_product(view, product_id)
    return build_transaction(
        view, [move],
        [UnitStateChange(product_id, old_product, product)],
        origin=dcs_origin(depositor, product_id, "ADD_TO_DEPOSIT_QUEUE"),
    )
