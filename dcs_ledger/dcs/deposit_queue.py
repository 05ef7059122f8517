"""
deposit_queue.py - Deposit queue processing

Converts a product's queued deposits into shares of one of its vaults.

Share math uses the vault's running supply and assets, updated after every
depositor, so splitting the queue into batches of any size mints exactly
the same shares as one full pass:

    supply == 0:  shares = amount * 10**(18 - deposit_decimals)
    otherwise:    shares = supply * amount // total_assets
"""

from __future__ import annotations
from decimal import Decimal
from typing import List

from ..core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    SYSTEM_WALLET, SHARE_DECIMALS, ZERO,
    VaultInZombieState,
    asset_decimals, build_transaction,
)
from .vault import (
    VaultStatus, get_vault, get_product, deposit_asset, shares_outstanding,
    require_vault_status, dcs_origin,
)


def shares_for_deposit(
    amount: Decimal,
    supply: Decimal,
    total_assets: Decimal,
    deposit_decimals: int,
) -> Decimal:
    """Shares minted for a deposit at the current share:asset ratio."""
    if supply == ZERO:
        return amount * Decimal(10) ** (SHARE_DECIMALS - deposit_decimals)
    return supply * amount // total_assets


def compute_process_deposit_queue(
    view: LedgerView,
    vault_id: str,
    max_deposits: int,
    caller: str,
) -> PendingTransaction:
    """
    Process up to max_deposits queued deposits (0 processes all).

    Each processed depositor receives freshly minted vault shares and a
    DepositProcessed event. When the cursor reaches the end of the queue the
    vault moves to NotTraded.

    Raises:
        InvalidVaultStatus: If the vault is not DepositsOpen
        VaultInZombieState: If shares are outstanding but the vault holds no assets
    """
    if max_deposits < 0:
        raise ValueError(f"max_deposits must be non-negative, got {max_deposits}")

    vault = get_vault(view, vault_id)
    require_vault_status(vault, VaultStatus.DEPOSITS_OPEN)

    supply = shares_outstanding(view, vault_id)
    total_assets = vault['total_assets']
    if total_assets == ZERO and supply > ZERO:
        raise VaultInZombieState(f"{vault_id} has {supply} shares outstanding and no assets")

    product_id = vault['product_id']
    product = get_product(view, product_id)
    queue = product['deposit_queue']
    decimals = asset_decimals(view, deposit_asset(product))

    start = queue['processed_index']
    remaining = len(queue['depositors']) - start
    count = remaining if max_deposits == 0 else min(max_deposits, remaining)

    moves: List[Move] = []
    batch_total = ZERO
    for depositor in queue['depositors'][start:start + count]:
        amount = queue['amounts'].pop(depositor, ZERO)
        if amount == ZERO:
            continue
        shares = shares_for_deposit(amount, supply, total_assets, decimals)
        supply += shares
        total_assets += amount
        batch_total += amount
        # Rounded to zero shares: the amount still accrues to the vault
        if shares > ZERO:
            moves.append(Move(
                shares, vault_id, SYSTEM_WALLET, depositor, f"deposit_{vault_id}",
                metadata={
                    'event': 'DepositProcessed',
                    'vault_id': vault_id,
                    'depositor': depositor,
                    'amount': amount,
                    'shares': shares,
                },
            ))

    queue['processed_index'] = start + count
    queue['total'] = queue['total'] - batch_total
    product['sum_vault_underlying_amounts'] = product['sum_vault_underlying_amounts'] + batch_total

    new_vault = {**vault, 'total_assets': vault['total_assets'] + batch_total}
    if queue['processed_index'] == len(queue['depositors']):
        new_vault['vault_status'] = VaultStatus.NOT_TRADED

    return build_transaction(
        view, moves,
        [
            UnitStateChange(vault_id, vault, new_vault),
            UnitStateChange(product_id, get_product(view, product_id), product),
        ],
        origin=dcs_origin(caller, vault_id, "PROCESS_DEPOSIT_QUEUE"),
    )
