"""
auction.py - Auction result and trade start

end_auction records the winning counterparty and the epoch's terms; the
strike is fixed from the spot at the trade start date:

    strike = spot * strike_barrier_bps // 10000

start_trade is called by the winner once the start date has passed. The
winner pays the full-tenor coupon into the treasury and a late fee to the
fee receiver, and receives the epoch's position receipt:

    yield    = notional * apr_bps * tenor_seconds // (10000 * 365 days)
    late_fee = yield * late_fee_bps * days_past_grace // 10000
    days_past_grace = max(0, min(days_elapsed, auction_default_days) - late_fee_days)
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    SYSTEM_WALLET, BPS_DENOMINATOR, SECONDS_PER_DAY, SECONDS_PER_YEAR, ZERO,
    InvalidTradeEndDate, NotTradeWinner, TradeDefaulted, TradeHasNoWinner,
    TradeNotStarted, ValueIsZero,
    build_transaction,
)
from ..pricing_source import PriceOracle, resolve_price
from .vault import (
    VaultStatus, SettlementStatus,
    get_vault, get_product, deposit_asset, receipt_owner, create_position_receipt_unit,
    require_vault_status, require_settlement_status, require_not_disputed,
    dcs_origin,
)
from .settlement import convert_to_counter_asset


def calculate_strike(spot: Decimal, strike_barrier_bps: int) -> Decimal:
    return spot * strike_barrier_bps // BPS_DENOMINATOR


def calculate_yield(notional: Decimal, apr_bps: int, tenor_in_seconds: int) -> Decimal:
    return notional * apr_bps * tenor_in_seconds // (BPS_DENOMINATOR * SECONDS_PER_YEAR)


def calculate_late_fee(
    yield_amount: Decimal,
    late_fee_bps: int,
    days_elapsed: int,
    days_to_start_late_fees: int,
    days_to_start_auction_default: int,
) -> Decimal:
    days_past_grace = min(days_elapsed, days_to_start_auction_default) - days_to_start_late_fees
    if days_past_grace <= 0:
        return ZERO
    return yield_amount * late_fee_bps * days_past_grace // BPS_DENOMINATOR


def days_since(start: datetime, now: datetime) -> int:
    """Whole days elapsed from start to now (0 if now is before start)."""
    seconds = int((now - start).total_seconds())
    return max(0, seconds // SECONDS_PER_DAY)


def receipt_token_id(vault_id: str, epoch: int) -> str:
    return f"{vault_id}#R{epoch}"


def compute_end_auction(
    view: LedgerView,
    oracle: PriceOracle,
    vault_id: str,
    auction_winner: str,
    trade_start_date: datetime,
    apr_bps: int,
    caller: str,
    oracle_data_source: Optional[str] = None,
) -> PendingTransaction:
    """
    Record the auction result and fix the strike from the start-date spot.

    May be called again while the vault is still NotTraded to replace an
    earlier result.

    Raises:
        InvalidVaultStatus: Unless the vault is NotTraded
        InvalidSettlementStatus: Unless settlement is NotAuctioned or Auctioned
        VaultInDispute: If the vault is disputed
        TradeHasNoWinner: If no winner is given
        ValueIsZero: If the trade start date is missing
        InvalidTradeEndDate: If start + tenor is not in the future
        InvalidPrice: If no spot price exists at the start date
    """
    vault = get_vault(view, vault_id)
    require_vault_status(vault, VaultStatus.NOT_TRADED)
    require_settlement_status(vault, SettlementStatus.NOT_AUCTIONED, SettlementStatus.AUCTIONED)
    require_not_disputed(vault)
    if not auction_winner:
        raise TradeHasNoWinner("auction winner is required")
    if trade_start_date is None:
        raise ValueIsZero("trade start date is required")
    if apr_bps < 0:
        raise ValueError(f"apr_bps must be non-negative, got {apr_bps}")

    product = get_product(view, vault['product_id'])
    trade_end_date = trade_start_date + timedelta(seconds=product['tenor_in_seconds'])
    if trade_end_date <= view.current_time:
        raise InvalidTradeEndDate(f"trade would end at {trade_end_date}, not after {view.current_time}")

    data_source = oracle_data_source or vault['oracle_data_source']
    spot = resolve_price(view, oracle, vault_id, trade_start_date, data_source)
    new_vault = {
        **vault,
        'auction_winner': auction_winner,
        'trade_start_date': trade_start_date,
        'trade_end_date': trade_end_date,
        'apr_bps': apr_bps,
        'oracle_data_source': data_source,
        'initial_spot_price': spot,
        'strike_price': calculate_strike(spot, product['strike_barrier_bps']),
        'settlement_status': SettlementStatus.AUCTIONED,
    }
    return build_transaction(
        view, [],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(caller, vault_id, "END_AUCTION"),
    )


def compute_start_trade(
    view: LedgerView,
    vault_id: str,
    caller: str,
    treasury_wallet: str,
    fee_receiver: str,
    price_decimals: int,
) -> PendingTransaction:
    """
    Start the trade: collect coupon and late fee from the winner and mint the
    epoch's position receipt to them.

    Raises:
        InvalidSettlementStatus: Unless settlement is Auctioned
        NotTradeWinner: If caller is not the recorded winner
        VaultInDispute: If the vault is disputed
        TradeNotStarted: Before the trade start date
        TradeDefaulted: Once the auction-default threshold has passed
    """
    vault = get_vault(view, vault_id)
    require_settlement_status(vault, SettlementStatus.AUCTIONED)
    require_vault_status(vault, VaultStatus.NOT_TRADED)
    if caller != vault['auction_winner']:
        raise NotTradeWinner(f"{caller} is not the auction winner of {vault_id}")
    require_not_disputed(vault)

    now = view.current_time
    start = vault['trade_start_date']
    if now < start:
        raise TradeNotStarted(f"trade starts at {start}")

    product_id = vault['product_id']
    product = get_product(view, product_id)
    days_elapsed = days_since(start, now)
    if days_elapsed >= product['days_to_start_auction_default']:
        raise TradeDefaulted(f"{days_elapsed} days since trade start")

    notional = vault['total_assets']
    yield_amount = calculate_yield(notional, vault['apr_bps'], product['tenor_in_seconds'])
    late_fee = calculate_late_fee(
        yield_amount,
        product['late_fee_bps'],
        days_elapsed,
        product['days_to_start_late_fees'],
        product['days_to_start_auction_default'],
    )
    deposit_symbol = deposit_asset(product)

    token_id = receipt_token_id(vault_id, vault['epoch'])
    receipt = create_position_receipt_unit(token_id, {
        'vault_id': vault_id,
        'product_id': product_id,
        'epoch': vault['epoch'],
        'strike_price': vault['strike_price'],
        'initial_spot_price': vault['initial_spot_price'],
        'underlying_amount': notional,
        'yield_amount': yield_amount,
        'converted_amount': convert_to_counter_asset(
            view, product, notional + yield_amount, vault['strike_price'], price_decimals),
        'apr_bps': vault['apr_bps'],
        'trade_start_date': start,
        'trade_end_date': vault['trade_end_date'],
        'transfers': 0,
    })

    contract_id = f"trade_{vault_id}_{vault['epoch']}"
    moves: List[Move] = []
    if late_fee > ZERO:
        moves.append(Move(late_fee, deposit_symbol, caller, fee_receiver, contract_id))
    if yield_amount > ZERO:
        moves.append(Move(yield_amount, deposit_symbol, caller, treasury_wallet, contract_id))
    moves.append(Move(
        Decimal(1), token_id, SYSTEM_WALLET, caller, contract_id,
        metadata={
            'event': 'TradeStarted',
            'vault_id': vault_id,
            'token_id': token_id,
            'yield_amount': yield_amount,
            'late_fee': late_fee,
        },
    ))

    new_vault = {
        **vault,
        'underlying_amount': notional,
        'yield_amount': yield_amount,
        'total_assets': notional + yield_amount,
        'auction_winner_token_id': token_id,
        'vault_status': VaultStatus.TRADED,
        'settlement_status': SettlementStatus.INITIAL_PREMIUM_PAID,
    }
    new_product = {
        **product,
        'sum_vault_underlying_amounts': product['sum_vault_underlying_amounts'] + yield_amount,
    }
    return build_transaction(
        view, moves,
        [
            UnitStateChange(vault_id, vault, new_vault),
            UnitStateChange(product_id, product, new_product),
        ],
        origin=dcs_origin(caller, vault_id, "START_TRADE"),
        units_to_create=(receipt,),
    )


def compute_transfer_receipt(
    view: LedgerView,
    token_id: str,
    holder: str,
    to: str,
) -> PendingTransaction:
    """
    Hand a position receipt, and with it the right to settle, to another wallet.

    Each transfer bumps the receipt's transfer counter, so handing the receipt
    back and forth never repeats an earlier transaction.

    Raises:
        NotTradeWinner: If holder does not hold the receipt
        ValueError: If holder and to are the same wallet
    """
    if holder == to:
        raise ValueError("receipt holder and recipient must differ")
    if receipt_owner(view, token_id) != holder:
        raise NotTradeWinner(f"{holder} does not hold receipt {token_id}")
    state = view.get_unit_state(token_id)
    new_state = {**state, 'transfers': state.get('transfers', 0) + 1}
    move = Move(
        Decimal(1), token_id, holder, to, f"receipt_{token_id}",
        metadata={'event': 'ReceiptTransferred', 'token_id': token_id, 'from': holder, 'to': to},
    )
    return build_transaction(
        view, [move],
        [UnitStateChange(token_id, state, new_state)],
        origin=dcs_origin(holder, token_id, "TRANSFER_RECEIPT"),
    )
