"""
rollover.py - Epoch rollover

Once the withdrawal queue has been processed, a vault whose payoff stayed
in the deposit asset starts a fresh epoch; a vault whose payoff converted
can not take deposits of the original asset again and becomes Zombie.
"""

from __future__ import annotations

from ..core import (
    LedgerView, PendingTransaction, UnitStateChange, ZERO,
    build_transaction,
)
from .vault import (
    VaultStatus, SettlementStatus,
    get_vault, get_product, epoch_fields, require_vault_status, dcs_origin,
)


def compute_rollover_vault(view: LedgerView, vault_id: str, caller: str) -> PendingTransaction:
    """
    Raises:
        InvalidVaultStatus: Unless the vault is WithdrawalQueueProcessed
    """
    vault = get_vault(view, vault_id)
    require_vault_status(vault, VaultStatus.WITHDRAWAL_QUEUE_PROCESSED)

    if not vault['is_payoff_in_deposit_asset']:
        new_vault = {**vault, 'vault_status': VaultStatus.ZOMBIE}
        return build_transaction(
            view, [],
            [UnitStateChange(vault_id, vault, new_vault)],
            origin=dcs_origin(caller, vault_id, "ROLLOVER_VAULT"),
        )

    overrides = dict(vault['price_overrides'])
    for ts in (vault['trade_start_date'], vault['trade_end_date']):
        overrides.pop(ts, None)

    new_vault = {
        **vault,
        **epoch_fields(),
        'price_overrides': overrides,
        'underlying_amount': ZERO,
        'vault_status': VaultStatus.DEPOSITS_CLOSED,
        'epoch': vault['epoch'] + 1,
    }
    changes = [UnitStateChange(vault_id, vault, new_vault)]

    # A default took the vault out of the product total; it rejoins with
    # whatever assets remain.
    if vault['settlement_status'] == SettlementStatus.DEFAULTED and vault['total_assets'] > ZERO:
        product_id = vault['product_id']
        product = get_product(view, product_id)
        new_product = {
            **product,
            'sum_vault_underlying_amounts': product['sum_vault_underlying_amounts'] + vault['total_assets'],
        }
        changes.append(UnitStateChange(product_id, product, new_product))

    return build_transaction(
        view, [], changes,
        origin=dcs_origin(caller, vault_id, "ROLLOVER_VAULT"),
    )
