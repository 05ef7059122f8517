"""
lifecycle_engine.py - DCS Vault Lifecycle Engine

The operation surface of the DCS system. Every public method:
1. Checks the caller's role against the injected RoleAuthority
2. Builds a PendingTransaction with a pure compute_* function
3. Executes it on the ledger in one atomic step

An operation either applies in full or raises; a ledger rejection (a
counterparty without funds, short escrow) surfaces as InsufficientFunds.

There is no internal clock. step() advances the ledger time and polls the
idempotent time-driven checks (trade expiry, settlement default) for every
vault, the way contracts are polled for lifecycle events.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .core import (
    PendingTransaction, Transaction, Unit,
    ExecuteResult, InsufficientFunds, ReentrantCall,
    UNIT_TYPE_DCS_VAULT,
)
from .ledger import Ledger
from .pricing_source import PriceOracle
from .authority import RoleAuthority, require_cega_admin, require_trader_admin
from .dcs.vault import (
    EngineConfig, VaultStatus, SettlementStatus,
    get_vault, get_product, shares_outstanding, receipt_owner,
    compute_open_vault_deposits, compute_set_vault_status,
    compute_set_settlement_status, compute_set_payoff_denomination,
)
from .dcs.product import (
    compute_create_product, compute_create_vault, compute_configure_product,
    compute_add_to_deposit_queue,
)
from .dcs.deposit_queue import compute_process_deposit_queue
from .dcs.auction import compute_end_auction, compute_start_trade, compute_transfer_receipt
from .dcs.settlement import (
    compute_check_trade_expiry, compute_check_settlement_default, compute_settle_vault,
)
from .dcs.fees import compute_collect_fees
from .dcs.withdrawal_queue import (
    compute_add_to_withdrawal_queue, compute_process_withdrawal_queue,
)
from .dcs.dispute import compute_dispute_vault, compute_process_dispute, compute_override_price
from .dcs.rollover import compute_rollover_vault


class VaultLifecycleEngine:
    """
    Role-checked, atomic entry point for every DCS operation.

    Roles:
    - cega admin: product and vault creation, product terms, status overrides
    - trader admin: auction results, queue processing, fees, rollover,
      dispute processing, price overrides
    - auction winner: start_trade; receipt holder: settle_vault
    - anyone: deposits, withdrawal requests, expiry and default checks

    Example:
        engine = VaultLifecycleEngine(ledger, oracle, StaticRoleAuthority({"admin"}))
        engine.create_product("admin", create_product_unit(...))
        engine.create_vault("admin", create_vault_unit("V1", "P1"))
        engine.add_to_deposit_queue("alice", "P1", Decimal(100_000_000_000))
    """

    def __init__(
        self,
        ledger: Ledger,
        oracle: PriceOracle,
        authority: RoleAuthority,
        config: Optional[EngineConfig] = None,
    ):
        self.ledger = ledger
        self.oracle = oracle
        self.authority = authority
        self.config = config or EngineConfig()
        self.verbose = ledger.verbose
        self._in_flight: Optional[str] = None

        for wallet in (
            self.config.treasury_wallet,
            self.config.fee_receiver,
            self.config.escrow_wallet,
            self.config.wrapping_proxy_wallet,
        ):
            if wallet and not ledger.is_registered(wallet):
                ledger.register_wallet(wallet)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _run(
        self,
        operation: str,
        target: str,
        build: Callable[[], PendingTransaction],
    ) -> Optional[Transaction]:
        """
        Build and execute one operation atomically.

        Returns the applied Transaction, or None when there was nothing to do.
        """
        if self._in_flight is not None:
            raise ReentrantCall(f"{operation} on {target} while {self._in_flight} is in flight")
        self._in_flight = operation
        try:
            pending = build()
            if pending.is_empty():
                return None
            for move in pending.moves:
                if not self.ledger.is_registered(move.dest):
                    self.ledger.register_wallet(move.dest)

            result = self.ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                raise InsufficientFunds(
                    f"{operation} on {target} rejected: {self.ledger.last_rejection_reason}"
                )
            if result == ExecuteResult.ALREADY_APPLIED:
                return None
            if self.verbose:
                print(f"[DCS] {operation} {target}")
            return self.ledger.transaction_log[-1]
        finally:
            self._in_flight = None

    # ========================================================================
    # PRODUCTS AND VAULTS
    # ========================================================================

    def create_product(self, caller: str, product: Unit) -> Optional[Transaction]:
        require_cega_admin(self.authority, caller)
        return self._run("create_product", product.symbol,
                         lambda: compute_create_product(self.ledger, product, caller))

    def create_vault(self, caller: str, vault: Unit) -> Optional[Transaction]:
        require_cega_admin(self.authority, caller)
        return self._run("create_vault", vault.symbol,
                         lambda: compute_create_vault(self.ledger, vault, caller))

    def configure_product(self, caller: str, product_id: str, **terms: Any) -> Optional[Transaction]:
        """Change product terms, e.g. configure_product(admin, "P1", is_deposit_queue_open=False)."""
        require_cega_admin(self.authority, caller)
        return self._run("configure_product", product_id,
                         lambda: compute_configure_product(self.ledger, product_id, caller, **terms))

    # ========================================================================
    # DEPOSITS
    # ========================================================================

    def add_to_deposit_queue(
        self,
        depositor: str,
        product_id: str,
        amount: Decimal,
        receiver: Optional[str] = None,
    ) -> Optional[Transaction]:
        return self._run("add_to_deposit_queue", product_id, lambda: compute_add_to_deposit_queue(
            self.ledger, product_id, depositor, amount, self.config.treasury_wallet, receiver))

    def open_vault_deposits(self, caller: str, vault_id: str) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("open_vault_deposits", vault_id,
                         lambda: compute_open_vault_deposits(self.ledger, vault_id, caller))

    def process_deposit_queue(self, caller: str, vault_id: str, max_deposits: int = 0) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("process_deposit_queue", vault_id, lambda: compute_process_deposit_queue(
            self.ledger, vault_id, max_deposits, caller))

    # ========================================================================
    # AUCTION, TRADE AND SETTLEMENT
    # ========================================================================

    def end_auction(
        self,
        caller: str,
        vault_id: str,
        auction_winner: str,
        trade_start_date: datetime,
        apr_bps: int,
        oracle_data_source: Optional[str] = None,
    ) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("end_auction", vault_id, lambda: compute_end_auction(
            self.ledger, self.oracle, vault_id, auction_winner, trade_start_date,
            apr_bps, caller, oracle_data_source))

    def start_trade(self, caller: str, vault_id: str) -> Optional[Transaction]:
        return self._run("start_trade", vault_id, lambda: compute_start_trade(
            self.ledger, vault_id, caller, self.config.treasury_wallet,
            self.config.fee_receiver, self.config.price_decimals))

    def check_trade_expiry(self, caller: str, vault_id: str) -> Optional[Transaction]:
        return self._run("check_trade_expiry", vault_id,
                         lambda: compute_check_trade_expiry(self.ledger, self.oracle, vault_id, caller))

    def check_settlement_default(self, caller: str, vault_id: str) -> Optional[Transaction]:
        return self._run("check_settlement_default", vault_id,
                         lambda: compute_check_settlement_default(self.ledger, vault_id, caller))

    def settle_vault(self, caller: str, vault_id: str) -> Optional[Transaction]:
        return self._run("settle_vault", vault_id, lambda: compute_settle_vault(
            self.ledger, vault_id, caller, self.config.treasury_wallet, self.config.price_decimals))

    def transfer_receipt(self, holder: str, token_id: str, to: str) -> Optional[Transaction]:
        return self._run("transfer_receipt", token_id,
                         lambda: compute_transfer_receipt(self.ledger, token_id, holder, to))

    # ========================================================================
    # FEES, WITHDRAWALS AND ROLLOVER
    # ========================================================================

    def collect_fees(self, caller: str, vault_id: str) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("collect_fees", vault_id, lambda: compute_collect_fees(
            self.ledger, vault_id, caller, self.config.treasury_wallet, self.config.fee_receiver))

    def add_to_withdrawal_queue(
        self,
        owner: str,
        vault_id: str,
        shares: Decimal,
        next_product_id: Optional[str] = None,
        use_proxy: bool = False,
    ) -> Optional[Transaction]:
        return self._run("add_to_withdrawal_queue", vault_id, lambda: compute_add_to_withdrawal_queue(
            self.ledger, vault_id, owner, shares, self.config, next_product_id, use_proxy))

    def process_withdrawal_queue(
        self, caller: str, vault_id: str, max_withdrawals: int = 0,
    ) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("process_withdrawal_queue", vault_id, lambda: compute_process_withdrawal_queue(
            self.ledger, vault_id, max_withdrawals, caller, self.config))

    def rollover_vault(self, caller: str, vault_id: str) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("rollover_vault", vault_id,
                         lambda: compute_rollover_vault(self.ledger, vault_id, caller))

    # ========================================================================
    # DISPUTES AND ADMIN OVERRIDES
    # ========================================================================

    def dispute_vault(self, caller: str, vault_id: str) -> Optional[Transaction]:
        is_admin = self.authority.is_trader_admin(caller)
        return self._run("dispute_vault", vault_id,
                         lambda: compute_dispute_vault(self.ledger, vault_id, caller, is_admin))

    def process_dispute(self, caller: str, vault_id: str, new_price: Decimal) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("process_dispute", vault_id,
                         lambda: compute_process_dispute(self.ledger, vault_id, new_price, caller))

    def override_price(
        self, caller: str, vault_id: str, timestamp: datetime, price: Decimal,
    ) -> Optional[Transaction]:
        require_trader_admin(self.authority, caller)
        return self._run("override_price", vault_id,
                         lambda: compute_override_price(self.ledger, vault_id, timestamp, price, caller))

    def set_vault_status(self, caller: str, vault_id: str, status: VaultStatus) -> Optional[Transaction]:
        require_cega_admin(self.authority, caller)
        return self._run("set_vault_status", vault_id,
                         lambda: compute_set_vault_status(self.ledger, vault_id, status, caller))

    def set_settlement_status(
        self, caller: str, vault_id: str, status: SettlementStatus,
    ) -> Optional[Transaction]:
        require_cega_admin(self.authority, caller)
        return self._run("set_settlement_status", vault_id,
                         lambda: compute_set_settlement_status(self.ledger, vault_id, status, caller))

    def set_payoff_denomination(
        self, caller: str, vault_id: str, is_payoff_in_deposit_asset: bool,
    ) -> Optional[Transaction]:
        require_cega_admin(self.authority, caller)
        return self._run("set_payoff_denomination", vault_id, lambda: compute_set_payoff_denomination(
            self.ledger, vault_id, is_payoff_in_deposit_asset, caller))

    # ========================================================================
    # POLLING
    # ========================================================================

    def step(self, timestamp: datetime, caller: str = "keeper") -> List[Transaction]:
        """
        Advance time and run the time-driven checks for every vault.

        Vaults are visited in symbol order. Expiry runs before the default
        check, so one step can expire a vault and, once the default window
        has also passed, default it.

        Returns:
            Transactions applied during this step
        """
        self.ledger.advance_time(timestamp)
        executed: List[Transaction] = []
        for vault_id in self.ledger.list_units(UNIT_TYPE_DCS_VAULT):
            for check in (self.check_trade_expiry, self.check_settlement_default):
                tx = check(caller, vault_id)
                if tx is not None:
                    executed.append(tx)
        return executed

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def vault(self, vault_id: str) -> Dict[str, Any]:
        return get_vault(self.ledger, vault_id)

    def product(self, product_id: str) -> Dict[str, Any]:
        return get_product(self.ledger, product_id)

    def shares_outstanding(self, vault_id: str) -> Decimal:
        return shares_outstanding(self.ledger, vault_id)

    def receipt_owner(self, vault_id: str) -> Optional[str]:
        return receipt_owner(self.ledger, get_vault(self.ledger, vault_id)['auction_winner_token_id'])
