"""
dispute.py - Price disputes and overrides

A dispute freezes the vault's phase progress until an operator processes
it. Two windows exist, each dispute_period_in_hours long:

- pre-trade, from the trade start date while the vault is auctioned but
  not yet traded; raised by the auction winner or a trader admin;
- post-expiry, from the trade end date before settle_vault has exchanged
  assets; raised by the receipt holder or a trader admin.

Processing with a corrected price writes an override for the disputed
timestamp and re-derives whatever that price fed: the spot and strike
before the trade, the expiry outcome after it.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal

from ..core import (
    LedgerView, PendingTransaction, UnitStateChange, ZERO,
    InvalidPrice, InvalidSettlementStatus, InvalidVaultStatus,
    NotTradeWinnerOrAdmin, OutsideDisputePeriod, TradeConverted,
    VaultInDispute, VaultNotInDispute,
    build_transaction,
)
from .vault import (
    VaultStatus, SettlementStatus,
    get_vault, get_product, receipt_owner, dcs_origin,
)
from .auction import calculate_strike
from .settlement import apply_expiry_price


def _check_window(start: datetime, now: datetime, hours: int) -> None:
    if not (start <= now < start + timedelta(hours=hours)):
        raise OutsideDisputePeriod(f"dispute window is {hours}h from {start}, now {now}")


def compute_dispute_vault(
    view: LedgerView,
    vault_id: str,
    caller: str,
    caller_is_trader_admin: bool,
) -> PendingTransaction:
    """
    Raise a dispute on the vault's strike (pre-trade) or expiry (post-trade) price.

    Raises:
        VaultInDispute: If already disputed
        NotTradeWinnerOrAdmin: If caller is neither the counterparty nor an admin
        OutsideDisputePeriod: Outside the dispute window
        TradeConverted: If settle_vault already exchanged the assets
        InvalidVaultStatus / InvalidSettlementStatus: Outside a disputable phase
    """
    vault = get_vault(view, vault_id)
    if vault['is_disputed']:
        raise VaultInDispute(f"{vault_id} is already disputed")
    product = get_product(view, vault['product_id'])
    now = view.current_time
    hours = product['dispute_period_in_hours']

    if vault['vault_status'] == VaultStatus.NOT_TRADED:
        if vault['settlement_status'] != SettlementStatus.AUCTIONED:
            raise InvalidSettlementStatus("nothing to dispute before the auction ends")
        if caller != vault['auction_winner'] and not caller_is_trader_admin:
            raise NotTradeWinnerOrAdmin(f"{caller} may not dispute {vault_id}")
        _check_window(vault['trade_start_date'], now, hours)

    elif vault['vault_status'] == VaultStatus.TRADE_EXPIRED:
        holder = receipt_owner(view, vault['auction_winner_token_id'])
        if caller != holder and not caller_is_trader_admin:
            raise NotTradeWinnerOrAdmin(f"{caller} may not dispute {vault_id}")
        _check_window(vault['trade_end_date'], now, hours)
        status = vault['settlement_status']
        if status == SettlementStatus.SETTLED and not vault['is_payoff_in_deposit_asset']:
            raise TradeConverted(f"{vault_id} has already been settled")
        if status not in (SettlementStatus.AWAITING_SETTLEMENT, SettlementStatus.SETTLED):
            raise InvalidSettlementStatus(f"{vault_id} settlement is {status.value}")

    else:
        raise InvalidVaultStatus(f"{vault_id} is {vault['vault_status'].value}; nothing to dispute")

    new_vault = {**vault, 'is_disputed': True}
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "DISPUTE_VAULT"),
    )


def compute_process_dispute(
    view: LedgerView,
    vault_id: str,
    new_price: Decimal,
    caller: str,
) -> PendingTransaction:
    """
    Close a dispute. A zero new_price keeps the oracle answer.

    Raises:
        VaultNotInDispute: If the vault is not disputed
        InvalidPrice: If new_price is negative
    """
    vault = get_vault(view, vault_id)
    if not vault['is_disputed']:
        raise VaultNotInDispute(f"{vault_id} is not disputed")
    new_price = Decimal(new_price)
    if new_price < ZERO:
        raise InvalidPrice(f"price must not be negative, got {new_price}")

    new_vault = {**vault, 'is_disputed': False, 'price_overrides': dict(vault['price_overrides'])}
    if new_price > ZERO:
        product = get_product(view, vault['product_id'])
        if vault['vault_status'] == VaultStatus.NOT_TRADED:
            new_vault['price_overrides'][vault['trade_start_date']] = new_price
            new_vault['initial_spot_price'] = new_price
            new_vault['strike_price'] = calculate_strike(new_price, product['strike_barrier_bps'])
        else:
            new_vault['price_overrides'][vault['trade_end_date']] = new_price
            new_vault = apply_expiry_price(new_vault, product, new_price)

    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "PROCESS_DISPUTE"),
    )


def compute_override_price(
    view: LedgerView,
    vault_id: str,
    timestamp: datetime,
    price: Decimal,
    caller: str,
) -> PendingTransaction:
    """
    Record a price override for (vault, timestamp).

    Raises:
        InvalidPrice: If price is not positive
    """
    vault = get_vault(view, vault_id)
    price = Decimal(price)
    if price <= ZERO:
        raise InvalidPrice(f"override price must be positive, got {price}")
    overrides = dict(vault['price_overrides'])
    overrides[timestamp] = price
    new_vault = {**vault, 'price_overrides': overrides}
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "OVERRIDE_PRICE"),
    )
