"""
fees.py - Management and yield fee collection

    management_fee = underlying * tenor_seconds * management_fee_bps // (365 days * 10000)
    yield_fee      = yield * yield_fee_bps // 10000

Both are computed on the epoch's pre-fee totals in the payoff asset and paid
once per epoch from the treasury to the fee receiver.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    BPS_DENOMINATOR, SECONDS_PER_YEAR, ZERO,
    build_transaction,
)
from .vault import (
    VaultStatus, SettlementStatus,
    get_vault, get_product, payoff_asset, contributes_to_product,
    require_vault_status, require_settlement_status, require_not_disputed,
    dcs_origin,
)


def calculate_fees(vault: Dict[str, Any], product: Dict[str, Any]) -> Tuple[Decimal, Decimal]:
    """Return (management_fee, yield_fee) for the vault's current epoch."""
    management_fee = (
        vault['underlying_amount'] * product['tenor_in_seconds'] * vault['management_fee_bps']
        // (SECONDS_PER_YEAR * BPS_DENOMINATOR)
    )
    yield_fee = vault['yield_amount'] * vault['yield_fee_bps'] // BPS_DENOMINATOR
    return management_fee, yield_fee


def compute_collect_fees(
    view: LedgerView,
    vault_id: str,
    caller: str,
    treasury_wallet: str,
    fee_receiver: str,
) -> PendingTransaction:
    """
    Collect the epoch's fees and move the vault to FeesCollected.

    The product total shrinks by the fee only while the vault still counts
    toward it; a defaulted vault already left the total at default time and a
    converted vault left it at settlement.

    Withdrawals processed earlier on a defaulted vault were paid net of the
    fee, so the full fee is still in total_assets.

    Raises:
        InvalidVaultStatus: Unless the vault is TradeExpired
        InvalidSettlementStatus: Unless settlement is Settled or Defaulted
        VaultInDispute: If the vault is disputed
    """
    vault = get_vault(view, vault_id)
    require_vault_status(vault, VaultStatus.TRADE_EXPIRED)
    require_settlement_status(vault, SettlementStatus.SETTLED, SettlementStatus.DEFAULTED)
    require_not_disputed(vault)

    product_id = vault['product_id']
    product = get_product(view, product_id)
    management_fee, yield_fee = calculate_fees(vault, product)
    total_fee = management_fee + yield_fee

    new_vault = {
        **vault,
        'total_assets': vault['total_assets'] - total_fee,
        'vault_status': VaultStatus.FEES_COLLECTED,
    }
    changes = [UnitStateChange(vault_id, vault, new_vault)]
    if total_fee > ZERO and contributes_to_product(vault):
        new_product = {
            **product,
            'sum_vault_underlying_amounts': product['sum_vault_underlying_amounts'] - total_fee,
        }
        changes.append(UnitStateChange(product_id, product, new_product))

    moves = []
    if total_fee > ZERO:
        moves.append(Move(
            total_fee, payoff_asset(product, vault), treasury_wallet, fee_receiver,
            f"fees_{vault_id}_{vault['epoch']}",
            metadata={
                'event': 'FeesCollected',
                'vault_id': vault_id,
                'management_fee': management_fee,
                'yield_fee': yield_fee,
            },
        ))

    return build_transaction(
        view, moves, changes,
        origin=dcs_origin(caller, vault_id, "COLLECT_FEES"),
    )
