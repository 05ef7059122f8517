"""
DCS vault lifecycle components.

Each module exposes pure compute_*(view, ...) functions returning a
PendingTransaction; VaultLifecycleEngine executes them against a Ledger.
"""

from .vault import (
    VaultStatus, SettlementStatus, OptionType, EngineConfig,
    ALLOWED_STATUS_PAIRS,
    create_vault_unit, create_position_receipt_unit,
    get_vault, get_product, deposit_asset, counter_asset, payoff_asset,
    shares_outstanding, receipt_owner, contributes_to_product, is_allowed_pair,
    compute_open_vault_deposits, compute_set_vault_status,
    compute_set_settlement_status, compute_set_payoff_denomination,
)
from .product import (
    create_product_unit, compute_create_product, compute_create_vault,
    compute_configure_product, compute_add_to_deposit_queue,
    CONFIGURABLE_TERMS,
)
from .deposit_queue import compute_process_deposit_queue, shares_for_deposit
from .auction import (
    compute_end_auction, compute_start_trade,
    compute_transfer_receipt,
    calculate_strike, calculate_yield, calculate_late_fee, receipt_token_id,
)
from .settlement import (
    compute_check_trade_expiry, compute_check_settlement_default, compute_settle_vault,
    convert_to_counter_asset, convert_to_deposit_asset, is_triggered,
)
from .fees import compute_collect_fees, calculate_fees
from .withdrawal_queue import (
    Direct, Redeposit, WithdrawalRoute,
    compute_add_to_withdrawal_queue, compute_process_withdrawal_queue,
    is_withdrawal_eligible,
)
from .dispute import compute_dispute_vault, compute_process_dispute, compute_override_price
from .rollover import compute_rollover_vault
