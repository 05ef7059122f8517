"""
scenario.py - DCS test environments and phase helpers

Builds a ledger with a 6-decimal quote asset (USDC) and an 18-decimal base
asset (DAI), one product P1 and one vault V1, and drives the vault through
its phases so tests can start from any point of the lifecycle.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from dcs_ledger import (
    Ledger, VaultLifecycleEngine, StaticRoleAuthority, TimeSeriesPriceOracle,
    EngineConfig, OptionType, asset, create_product_unit, create_vault_unit,
    SECONDS_PER_DAY,
)


T0 = datetime(2024, 1, 1)
TENOR_DAYS = 30
TENOR = TENOR_DAYS * SECONDS_PER_DAY

USDC = "USDC"
DAI = "DAI"
ONE_USDC = Decimal(10) ** 6
ONE_DAI = Decimal(10) ** 18
PRICE_ONE = Decimal(10) ** 8

ADMIN = "admin"
DESK = "desk"
MM = "market_maker"
PROXY = "weth_gateway"
DEPOSITORS = ("alice", "bob", "carol", "dave")


def usdc(amount) -> Decimal:
    return Decimal(amount) * ONE_USDC


def dai(amount) -> Decimal:
    return Decimal(amount) * ONE_DAI


def price(value) -> Decimal:
    """Fixed-point price from a human value, e.g. price("0.95")."""
    return Decimal(str(value)) * PRICE_ONE


@dataclass
class DCSEnv:
    ledger: Ledger
    engine: VaultLifecycleEngine
    oracle: TimeSeriesPriceOracle
    authority: StaticRoleAuthority
    product_id: str = "P1"
    vault_id: str = "V1"

    @property
    def vault(self) -> dict:
        return self.engine.vault(self.vault_id)

    @property
    def product(self) -> dict:
        return self.engine.product(self.product_id)

    @property
    def config(self) -> EngineConfig:
        return self.engine.config

    def balance(self, wallet: str, unit: str) -> Decimal:
        return self.ledger.get_balance(wallet, unit)

    def advance(self, **delta) -> datetime:
        self.ledger.advance_time(self.ledger.current_time + timedelta(**delta))
        return self.ledger.current_time


def make_env(
    option_type: OptionType = OptionType.BUY_LOW,
    management_fee_bps: int = 0,
    yield_fee_bps: int = 0,
    late_fee_bps: int = 100,
    min_deposit_amount: Decimal = Decimal(0),
    min_withdrawal_amount: Decimal = Decimal(0),
    max_underlying_amount: Decimal = Decimal(0),
    dispute_period_in_hours: int = 24,
) -> DCSEnv:
    ledger = Ledger("dcs", T0, verbose=False, test_mode=True)
    ledger.register_unit(asset(USDC, "USD Coin", 6))
    ledger.register_unit(asset(DAI, "Dai Stablecoin", 18))
    for wallet in DEPOSITORS + (MM,):
        ledger.register_wallet(wallet)
        ledger.fund(wallet, USDC, usdc(10_000_000))
        ledger.fund(wallet, DAI, dai(10_000_000))

    oracle = TimeSeriesPriceOracle()
    authority = StaticRoleAuthority(cega_admins={ADMIN}, trader_admins={DESK})
    engine = VaultLifecycleEngine(
        ledger, oracle, authority, EngineConfig(wrapping_proxy_wallet=PROXY),
    )
    engine.create_product(ADMIN, create_product_unit(
        "P1", USDC, DAI, option_type,
        tenor_in_seconds=TENOR,
        strike_barrier_bps=9500,
        min_deposit_amount=min_deposit_amount,
        min_withdrawal_amount=min_withdrawal_amount,
        max_underlying_amount=max_underlying_amount,
        late_fee_bps=late_fee_bps,
        days_to_start_late_fees=1,
        days_to_start_auction_default=5,
        days_to_start_settlement_default=5,
        dispute_period_in_hours=dispute_period_in_hours,
    ))
    engine.create_vault(ADMIN, create_vault_unit(
        "V1", "P1", management_fee_bps=management_fee_bps, yield_fee_bps=yield_fee_bps,
    ))
    return DCSEnv(ledger, engine, oracle, authority)


# ============================================================================
# PHASE HELPERS
# ============================================================================

def deposit_asset_of(env: DCSEnv) -> str:
    return USDC if env.product['option_type'] == OptionType.BUY_LOW else DAI


def fill_vault(env: DCSEnv, deposits: Dict[str, Decimal]) -> None:
    """Queue deposits, open the vault and process the whole queue (-> NotTraded)."""
    for wallet, amount in deposits.items():
        env.engine.add_to_deposit_queue(wallet, env.product_id, amount)
    env.engine.open_vault_deposits(DESK, env.vault_id)
    env.engine.process_deposit_queue(DESK, env.vault_id)


def auction(env: DCSEnv, spot: Decimal = PRICE_ONE, apr_bps: int = 1000,
            start: Optional[datetime] = None) -> None:
    """Record MM as the winner with the trade starting now (-> Auctioned)."""
    start = start or env.ledger.current_time
    env.oracle.add_price(DAI, USDC, start, spot)
    env.engine.end_auction(DESK, env.vault_id, MM, start, apr_bps)


def trade(env: DCSEnv, spot: Decimal = PRICE_ONE, apr_bps: int = 1000) -> None:
    auction(env, spot, apr_bps)
    env.engine.start_trade(MM, env.vault_id)


def expire(env: DCSEnv, final_price: Decimal) -> None:
    """Advance to the trade end date and run the expiry check."""
    end = env.vault['trade_end_date']
    env.oracle.add_price(DAI, USDC, end, final_price)
    env.ledger.advance_time(end)
    env.engine.check_trade_expiry(DESK, env.vault_id)


def build_traded_env(deposits: Optional[Dict[str, Decimal]] = None, **kwargs) -> DCSEnv:
    env = make_env(**kwargs)
    if deposits is None:
        unit = usdc if kwargs.get('option_type', OptionType.BUY_LOW) == OptionType.BUY_LOW else dai
        deposits = {"alice": unit(100_000)}
    fill_vault(env, deposits)
    trade(env)
    return env
