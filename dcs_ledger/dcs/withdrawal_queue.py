"""
withdrawal_queue.py - Withdrawal requests and queue processing

Queued shares move into the escrow wallet at request time and are burned
when the request is processed. Each processed request is paid out through
one of two routes:

- Direct: the payoff asset goes from the treasury to the owner, or to the
  wrapping proxy (tagged with the owner) when that request opted in.
- Redeposit: the amount stays in the treasury and is queued as a deposit of
  the owner into a follow-on product whose deposit asset is the payoff asset.

Payouts use the running share:asset ratio, so batch splits do not change
what any withdrawer receives:

    assets = shares * total_assets // supply

On a defaulted vault whose fees are not collected yet the epoch fee is
held back, so the order of withdrawals and collect_fees does not matter:

    assets = shares * (total_assets - epoch_fee) // supply
"""

from __future__ import annotations
from dataclasses import dataclass
import copy
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from ..core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    SYSTEM_WALLET, ZERO,
    InvalidProduct, InvalidVaultStatus, NoProxyForRedeposit, ValueIsZero, ValueTooSmall,
    build_transaction,
)
from .vault import (
    EngineConfig, VaultStatus, SettlementStatus,
    get_vault, get_product, deposit_asset, payoff_asset, shares_outstanding,
    contributes_to_product, check_max_underlying, dcs_origin,
)
from .product import enqueue_deposit
from .fees import calculate_fees


@dataclass(frozen=True)
class Direct:
    receiver: str
    use_proxy: bool = False


@dataclass(frozen=True)
class Redeposit:
    product_id: str
    receiver: str


WithdrawalRoute = Union[Direct, Redeposit]


def queue_key(owner: str, next_product_id: Optional[str]) -> str:
    return f"{owner}|{next_product_id or ''}"


def withdrawal_route(record: Dict[str, Any]) -> WithdrawalRoute:
    if record['next_product_id']:
        return Redeposit(record['next_product_id'], record['owner'])
    return Direct(record['owner'], record.get('use_proxy', False))


def is_withdrawal_eligible(vault: Dict[str, Any]) -> bool:
    status = vault['vault_status']
    if status in (VaultStatus.FEES_COLLECTED, VaultStatus.ZOMBIE):
        return True
    return (
        status == VaultStatus.TRADE_EXPIRED
        and vault['settlement_status'] == SettlementStatus.DEFAULTED
    )


def compute_add_to_withdrawal_queue(
    view: LedgerView,
    vault_id: str,
    owner: str,
    shares: Decimal,
    config: EngineConfig,
    next_product_id: Optional[str] = None,
    use_proxy: bool = False,
) -> PendingTransaction:
    """
    Queue shares for withdrawal and pull them into escrow.

    Raises:
        ValueIsZero: If shares is zero
        ValueTooSmall: If shares is below the product minimum
        NoProxyForRedeposit: If both a redeposit target and the proxy are requested
        InvalidProduct: If the redeposit target product is unknown
        ValueError: If the proxy is requested but none is configured
    """
    vault = get_vault(view, vault_id)
    product = get_product(view, vault['product_id'])
    shares = Decimal(shares)
    if shares <= ZERO:
        raise ValueIsZero("withdrawal shares must be positive")
    if shares < product['min_withdrawal_amount']:
        raise ValueTooSmall(f"withdrawal {shares} below minimum {product['min_withdrawal_amount']}")
    if next_product_id and use_proxy:
        raise NoProxyForRedeposit("a redeposit can not go through the wrapping proxy")
    if next_product_id:
        get_product(view, next_product_id)
    if use_proxy and config.wrapping_proxy_wallet is None:
        raise ValueError("no wrapping proxy is configured")

    new_vault = copy.deepcopy(vault)
    queue = new_vault['withdrawal_queue']
    key = queue_key(owner, next_product_id)
    pending = queue['amounts'].get(key, ZERO)
    if pending == ZERO:
        queue['withdrawers'].append(
            {'owner': owner, 'next_product_id': next_product_id, 'use_proxy': use_proxy})
    elif use_proxy:
        # an unprocessed record still holds the pending amount
        for record in queue['withdrawers'][queue['processed_index']:]:
            if queue_key(record['owner'], record['next_product_id']) == key:
                record['use_proxy'] = True
    queue['amounts'][key] = pending + shares
    queue['total_shares'] = queue['total_shares'] + shares

    move = Move(
        shares, vault_id, owner, config.escrow_wallet, f"withdraw_{vault_id}",
        metadata={
            'event': 'WithdrawalQueued',
            'vault_id': vault_id,
            'owner': owner,
            'shares': shares,
            'next_product_id': next_product_id,
        },
    )
    return build_transaction(
        view, [move],
        [UnitStateChange(vault_id, vault, new_vault)],
        origin=dcs_origin(owner, vault_id, "ADD_TO_WITHDRAWAL_QUEUE"),
    )


def compute_process_withdrawal_queue(
    view: LedgerView,
    vault_id: str,
    max_withdrawals: int,
    caller: str,
    config: EngineConfig,
) -> PendingTransaction:
    """
    Process up to max_withdrawals queued requests (0 processes all).

    At the end of the queue the vault moves to WithdrawalQueueProcessed; a
    Zombie vault stays Zombie. A defaulted vault processed before
    collect_fees pays out net of the epoch fee and stays TradeExpired while
    that fee is owed. Escrow short of the burned shares makes the
    ledger reject the whole batch.

    Raises:
        InvalidVaultStatus: If the vault is not withdrawal-eligible
        InvalidProduct: If a redeposit target can not take the payoff asset
    """
    if max_withdrawals < 0:
        raise ValueError(f"max_withdrawals must be non-negative, got {max_withdrawals}")

    vault = get_vault(view, vault_id)
    if not is_withdrawal_eligible(vault):
        raise InvalidVaultStatus(
            f"withdrawals need FeesCollected, Zombie or a defaulted settlement; "
            f"vault is {vault['vault_status'].value}/{vault['settlement_status'].value}"
        )

    product_id = vault['product_id']
    products: Dict[str, Dict[str, Any]] = {product_id: get_product(view, product_id)}
    asset_symbol = payoff_asset(products[product_id], vault)

    new_vault = copy.deepcopy(vault)
    queue = new_vault['withdrawal_queue']

    supply = shares_outstanding(view, vault_id)
    total_assets = vault['total_assets']
    # a defaulted vault can pay out before collect_fees; the epoch fee stays behind
    fee_owed = ZERO
    if vault['vault_status'] == VaultStatus.TRADE_EXPIRED:
        management_fee, yield_fee = calculate_fees(vault, products[product_id])
        fee_owed = management_fee + yield_fee
    start = queue['processed_index']
    remaining = len(queue['withdrawers']) - start
    count = remaining if max_withdrawals == 0 else min(max_withdrawals, remaining)

    moves: List[Move] = []
    contract_id = f"withdraw_{vault_id}"
    batch_shares = ZERO
    batch_assets = ZERO
    for record in queue['withdrawers'][start:start + count]:
        shares = queue['amounts'].pop(queue_key(record['owner'], record['next_product_id']), ZERO)
        if shares == ZERO:
            continue
        assets = shares * max(total_assets - fee_owed, ZERO) // supply
        supply -= shares
        total_assets -= assets
        batch_shares += shares
        batch_assets += assets

        route = withdrawal_route(record)
        moves.append(Move(
            shares, vault_id, config.escrow_wallet, SYSTEM_WALLET, contract_id,
            metadata={
                'event': 'WithdrawalProcessed',
                'vault_id': vault_id,
                'owner': record['owner'],
                'shares': shares,
                'amount': assets,
                'next_product_id': record['next_product_id'],
            },
        ))
        if assets == ZERO:
            continue

        if isinstance(route, Redeposit):
            if route.product_id not in products:
                products[route.product_id] = get_product(view, route.product_id)
            target = products[route.product_id]
            if deposit_asset(target) != asset_symbol:
                raise InvalidProduct(
                    f"{route.product_id} takes {deposit_asset(target)}, payoff is in {asset_symbol}"
                )
            if not target['is_deposit_queue_open']:
                raise InvalidProduct(f"deposit queue of {route.product_id} is closed")
            check_max_underlying(target, assets)
            enqueue_deposit(target, route.receiver, assets)
        elif route.use_proxy:
            moves.append(Move(
                assets, asset_symbol, config.treasury_wallet, config.wrapping_proxy_wallet,
                contract_id, metadata={'receiver': route.receiver},
            ))
        else:
            moves.append(Move(
                assets, asset_symbol, config.treasury_wallet, route.receiver, contract_id,
            ))

    queue['processed_index'] = start + count
    queue['total_shares'] = queue['total_shares'] - batch_shares
    new_vault['total_assets'] = vault['total_assets'] - batch_assets
    if contributes_to_product(vault):
        own = products[product_id]
        own['sum_vault_underlying_amounts'] = own['sum_vault_underlying_amounts'] - batch_assets
    if (queue['processed_index'] == len(queue['withdrawers'])
            and vault['vault_status'] != VaultStatus.ZOMBIE
            and fee_owed == ZERO):
        new_vault['vault_status'] = VaultStatus.WITHDRAWAL_QUEUE_PROCESSED

    changes = [UnitStateChange(vault_id, vault, new_vault)]
    for pid, state in products.items():
        old_product = get_product(view, pid)
        if state != old_product:
            changes.append(UnitStateChange(pid, old_product, state))

    return build_transaction(
        view, moves, changes,
        origin=dcs_origin(caller, vault_id, "PROCESS_WITHDRAWAL_QUEUE"),
    )
