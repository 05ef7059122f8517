"""
settlement.py - Trade expiry, settlement default and payoff conversion

At expiry the final spot decides whether the payoff converts:

    BUY_LOW   triggered when final < strike (quote deposits become base)
    SELL_HIGH triggered when final > strike (base deposits become quote)

A triggered vault waits in AwaitingSettlement until the position-receipt
holder calls settle_vault, which swaps the deposit-asset notional for the
counter-asset amount at the strike. If nobody settles within the product's
settlement-default window the vault defaults and keeps the deposit asset.

Conversion at strike K (price_decimals fixed-point, quote per one base):

    quote -> base:  base  = quote * 10**base_dec * 10**price_dec // (K * 10**quote_dec)
    base -> quote:  quote = base * K * 10**quote_dec // (10**price_dec * 10**base_dec)
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from ..core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    SECONDS_PER_DAY, ZERO,
    InvalidPrice, TradeHasNoWinner, NotTradeWinner, TradeNotConverted,
    asset_decimals, build_transaction, empty_pending_transaction,
)
from ..pricing_source import PriceOracle, resolve_price
from .vault import (
    VaultStatus, SettlementStatus, OptionType,
    get_vault, get_product, deposit_asset, counter_asset, receipt_owner,
    require_vault_status, require_settlement_status, require_not_disputed,
    dcs_origin,
)


def _pow10(n: int) -> Decimal:
    return Decimal(10) ** n


def _quote_to_base(amount, strike, quote_dec, base_dec, price_dec) -> Decimal:
    return amount * _pow10(base_dec) * _pow10(price_dec) // (strike * _pow10(quote_dec))


def _base_to_quote(amount, strike, quote_dec, base_dec, price_dec) -> Decimal:
    return amount * strike * _pow10(quote_dec) // (_pow10(price_dec) * _pow10(base_dec))


def convert_to_counter_asset(
    view: LedgerView,
    product: Dict[str, Any],
    amount: Decimal,
    strike: Decimal,
    price_decimals: int,
) -> Decimal:
    """Deposit-asset base units to counter-asset base units at the strike."""
    if strike <= ZERO:
        raise InvalidPrice(f"strike must be positive, got {strike}")
    quote_dec = asset_decimals(view, product['quote_asset'])
    base_dec = asset_decimals(view, product['base_asset'])
    if product['option_type'] == OptionType.BUY_LOW:
        return _quote_to_base(amount, strike, quote_dec, base_dec, price_decimals)
    return _base_to_quote(amount, strike, quote_dec, base_dec, price_decimals)


def convert_to_deposit_asset(
    view: LedgerView,
    product: Dict[str, Any],
    amount: Decimal,
    strike: Decimal,
    price_decimals: int,
) -> Decimal:
    """Counter-asset base units back to deposit-asset base units at the strike."""
    if strike <= ZERO:
        raise InvalidPrice(f"strike must be positive, got {strike}")
    quote_dec = asset_decimals(view, product['quote_asset'])
    base_dec = asset_decimals(view, product['base_asset'])
    if product['option_type'] == OptionType.BUY_LOW:
        return _base_to_quote(amount, strike, quote_dec, base_dec, price_decimals)
    return _quote_to_base(amount, strike, quote_dec, base_dec, price_decimals)


def is_triggered(option_type: OptionType, final_price: Decimal, strike: Decimal) -> bool:
    if option_type == OptionType.BUY_LOW:
        return final_price < strike
    return final_price > strike


def apply_expiry_price(
    vault: Dict[str, Any], product: Dict[str, Any], final_price: Decimal,
) -> Dict[str, Any]:
    """
    Vault state after expiry at final_price: TradeExpired with settlement
    AwaitingSettlement (converting) or Settled (payoff stays in the deposit asset).
    """
    triggered = is_triggered(product['option_type'], final_price, vault['strike_price'])
    return {
        **vault,
        'vault_status': VaultStatus.TRADE_EXPIRED,
        'settlement_status': (
            SettlementStatus.AWAITING_SETTLEMENT if triggered else SettlementStatus.SETTLED
        ),
        'is_payoff_in_deposit_asset': not triggered,
    }


def compute_check_trade_expiry(
    view: LedgerView,
    oracle: PriceOracle,
    vault_id: str,
    caller: str,
) -> PendingTransaction:
    """
    Expire a traded vault once start + tenor has passed.

    Idempotent: returns an empty transaction before expiry or when the vault
    is no longer Traded.

    Raises:
        InvalidPrice: If no price is available at the end date
    """
    vault = get_vault(view, vault_id)
    if vault['vault_status'] != VaultStatus.TRADED:
        return empty_pending_transaction(view)
    end = vault['trade_end_date']
    if end is None or view.current_time < end:
        return empty_pending_transaction(view)

    product = get_product(view, vault['product_id'])
    final_price = resolve_price(view, oracle, vault_id, end)
    new_vault = apply_expiry_price(vault, product, final_price)
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "CHECK_TRADE_EXPIRY"),
    )


def settlement_default_date(vault: Dict[str, Any], product: Dict[str, Any]) -> datetime:
    return vault['trade_end_date'] + timedelta(
        seconds=product['days_to_start_settlement_default'] * SECONDS_PER_DAY
    )


def compute_check_settlement_default(
    view: LedgerView,
    vault_id: str,
    caller: str,
) -> PendingTransaction:
    """
    Default a vault left in AwaitingSettlement past the settlement-default
    window. The payoff stays in the deposit asset and the vault's assets leave
    the product total. A disputed vault does not default until the dispute
    is processed.

    Idempotent: an empty transaction when the condition does not hold.
    """
    vault = get_vault(view, vault_id)
    if (vault['vault_status'] != VaultStatus.TRADE_EXPIRED
            or vault['settlement_status'] != SettlementStatus.AWAITING_SETTLEMENT
            or vault['is_disputed']):
        return empty_pending_transaction(view)
    product_id = vault['product_id']
    product = get_product(view, product_id)
    if view.current_time < settlement_default_date(vault, product):
        return empty_pending_transaction(view)

    new_vault = {
        **vault,
        'settlement_status': SettlementStatus.DEFAULTED,
        'is_payoff_in_deposit_asset': True,
    }
    new_product = {
        **product,
        'sum_vault_underlying_amounts': product['sum_vault_underlying_amounts'] - vault['total_assets'],
    }
    return build_transaction(
        view, [],
        [
            UnitStateChange(vault_id, vault, new_vault),
            UnitStateChange(product_id, product, new_product),
        ],
        origin=dcs_origin(caller, vault_id, "CHECK_SETTLEMENT_DEFAULT"),
    )


def compute_settle_vault(
    view: LedgerView,
    vault_id: str,
    caller: str,
    treasury_wallet: str,
    price_decimals: int,
) -> PendingTransaction:
    """
    Exchange a converting vault's deposit-asset notional for the counter asset.

    The receipt holder receives the deposit-asset total from the treasury and
    pays the converted underlying plus converted yield into it.

    Raises:
        TradeHasNoWinner: If the vault has no position receipt
        NotTradeWinner: If caller does not hold the receipt
        VaultInDispute: If the vault is disputed
        TradeNotConverted: If the payoff stays in the deposit asset
        InvalidSettlementStatus: Unless settlement is AwaitingSettlement
    """
    vault = get_vault(view, vault_id)
    holder = receipt_owner(view, vault['auction_winner_token_id'])
    if holder is None:
        raise TradeHasNoWinner(f"{vault_id} has no position receipt holder")
    if caller != holder:
        raise NotTradeWinner(f"{caller} does not hold receipt {vault['auction_winner_token_id']}")
    require_not_disputed(vault)
    if vault['is_payoff_in_deposit_asset']:
        raise TradeNotConverted(f"{vault_id} payoff is in the deposit asset")
    require_vault_status(vault, VaultStatus.TRADE_EXPIRED)
    require_settlement_status(vault, SettlementStatus.AWAITING_SETTLEMENT)

    product_id = vault['product_id']
    product = get_product(view, product_id)
    strike = vault['strike_price']
    converted_underlying = convert_to_counter_asset(
        view, product, vault['underlying_amount'], strike, price_decimals)
    converted_yield = convert_to_counter_asset(
        view, product, vault['yield_amount'], strike, price_decimals)
    converted_total = converted_underlying + converted_yield
    deposit_total = vault['total_assets']

    new_vault = {
        **vault,
        'underlying_amount': converted_underlying,
        'yield_amount': converted_yield,
        'total_assets': converted_total,
        'settlement_status': SettlementStatus.SETTLED,
    }
    new_product = {
        **product,
        'sum_vault_underlying_amounts': product['sum_vault_underlying_amounts'] - deposit_total,
    }

    moves = []
    if deposit_total > ZERO:
        moves.append(Move(
            deposit_total, deposit_asset(product), treasury_wallet, holder, f"settle_{vault_id}",
            metadata={
                'event': 'VaultSettled',
                'vault_id': vault_id,
                'holder': holder,
                'deposit_amount': deposit_total,
                'converted_amount': converted_total,
            },
        ))
    if converted_total > ZERO:
        moves.append(Move(
            converted_total, counter_asset(product), holder, treasury_wallet, f"settle_{vault_id}",
        ))

    return build_transaction(
        view, moves,
        [
            UnitStateChange(vault_id, vault, new_vault),
            UnitStateChange(product_id, product, new_product),
        ],
        origin=dcs_origin(caller, vault_id, "SETTLE_VAULT"),
    )
