#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: One DCS Vault Epoch Step by Step

Walks a single vault through a full epoch on a fresh ledger. Press Enter to
advance.

WHAT YOU'LL LEARN:
  1-2:  Setup       - Assets, product terms, a vault
  3-4:  Deposits    - Queueing deposits and minting shares
  5-6:  The Trade   - Auction, strike, coupon and position receipt
  7-8:  Settlement  - Expiry, conversion and the market maker's exchange
  9-10: Exit        - Fees, withdrawals, rollover and the conservation proof

Run:
    python demo.py                   # Interactive mode
    python demo.py --quick           # Run all steps without pausing
    python demo.py --quick --convert # Final price below strike
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import sys

from dcs_ledger import (
    Ledger, VaultLifecycleEngine, StaticRoleAuthority, TimeSeriesPriceOracle,
    EngineConfig, OptionType, asset, create_product_unit, create_vault_unit,
    SECONDS_PER_DAY,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    tenor_days: int = 30

    alice_deposit_usdc: int = 60_000
    bob_deposit_usdc: int = 40_000

    spot_price: Decimal = Decimal("1.00")
    strike_barrier_bps: int = 9500
    apr_bps: int = 1200
    management_fee_bps: int = 200
    yield_fee_bps: int = 1000

    final_price_settled: Decimal = Decimal("0.98")
    final_price_converted: Decimal = Decimal("0.91")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv
CONVERT = "--convert" in sys.argv

ONE_USDC = Decimal(10) ** 6
ONE_DAI = Decimal(10) ** 18
PRICE_SCALE = Decimal(10) ** 8


def wait_for_enter():
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def fmt_usdc(amount: Decimal) -> str:
    return f"{amount / ONE_USDC:,.6f} USDC"


def fmt_dai(amount: Decimal) -> str:
    return f"{amount / ONE_DAI:,.6f} DAI"


def fmt_price(value: Decimal) -> str:
    return f"{value / PRICE_SCALE:.8f}"


def show_vault(engine: VaultLifecycleEngine):
    vault = engine.vault("V1")
    print(f"vault_status:        {vault['vault_status'].value}")
    print(f"settlement_status:   {vault['settlement_status'].value}")
    print(f"epoch:               {vault['epoch']}")
    print(f"total_assets:        {vault['total_assets']}")
    print(f"shares outstanding:  {engine.shares_outstanding('V1')}")


# ============================================================================
# PHASE 1: SETUP
# ============================================================================

def step_01_ledger_and_assets():
    step_header(1, "Ledger, Assets and Roles",
        "Register two assets with their on-chain decimals and fund the players.")

    ledger = Ledger("dcs_demo", CONFIG.start_time, verbose=False)
    ledger.register_unit(asset("USDC", "USD Coin", 6))
    ledger.register_unit(asset("DAI", "Dai Stablecoin", 18))
    for wallet in ("alice", "bob", "market_maker"):
        ledger.register_wallet(wallet)
        ledger.fund(wallet, "USDC", Decimal(1_000_000) * ONE_USDC)
        ledger.fund(wallet, "DAI", Decimal(1_000_000) * ONE_DAI)

    oracle = TimeSeriesPriceOracle()
    authority = StaticRoleAuthority(cega_admins={"admin"}, trader_admins={"desk"})
    engine = VaultLifecycleEngine(ledger, oracle, authority, EngineConfig())

    print("Amounts are integer base units: 1 USDC = 10^6, 1 DAI = 10^18.")
    print(f"Wallets: {sorted(ledger.registered_wallets)}")
    return ledger, oracle, engine


def step_02_product_and_vault(engine: VaultLifecycleEngine):
    step_header(2, "Product and Vault",
        "A BuyLow product takes USDC and pays DAI if DAI/USDC ends below the strike.")

    engine.create_product("admin", create_product_unit(
        "P1", "USDC", "DAI", OptionType.BUY_LOW,
        tenor_in_seconds=CONFIG.tenor_days * SECONDS_PER_DAY,
        strike_barrier_bps=CONFIG.strike_barrier_bps,
    ))
    engine.create_vault("admin", create_vault_unit(
        "V1", "P1",
        management_fee_bps=CONFIG.management_fee_bps,
        yield_fee_bps=CONFIG.yield_fee_bps,
    ))
    product = engine.product("P1")
    print(f"Deposit asset:  {product['quote_asset']}")
    print(f"Counter asset:  {product['base_asset']}")
    print(f"Strike barrier: {product['strike_barrier_bps']} bps of spot")
    show_vault(engine)


# ============================================================================
# PHASE 2: DEPOSITS
# ============================================================================

def step_03_queue_deposits(ledger: Ledger, engine: VaultLifecycleEngine):
    step_header(3, "Queue Deposits",
        "Deposits move into the treasury immediately and wait in the product queue.")

    engine.add_to_deposit_queue("alice", "P1", Decimal(CONFIG.alice_deposit_usdc) * ONE_USDC)
    engine.add_to_deposit_queue("bob", "P1", Decimal(CONFIG.bob_deposit_usdc) * ONE_USDC)
    queue = engine.product("P1")["deposit_queue"]
    print(f"Queued depositors: {queue['depositors']}")
    print(f"Queued total:      {fmt_usdc(queue['total'])}")
    print(f"Treasury:          {fmt_usdc(ledger.get_balance('treasury', 'USDC'))}")


def step_04_mint_shares(ledger: Ledger, engine: VaultLifecycleEngine):
    step_header(4, "Mint Shares",
        "The desk opens the vault and processes the queue, one batch at a time.")

    engine.open_vault_deposits("desk", "V1")
    engine.process_deposit_queue("desk", "V1", max_deposits=1)
    section_header("After the first batch")
    show_vault(engine)
    engine.process_deposit_queue("desk", "V1", max_deposits=1)
    section_header("After the second batch")
    show_vault(engine)
    for wallet in ("alice", "bob"):
        print(f"{wallet} shares: {ledger.get_balance(wallet, 'V1')}")


# ============================================================================
# PHASE 3: THE TRADE
# ============================================================================

def step_05_auction(oracle: TimeSeriesPriceOracle, engine: VaultLifecycleEngine):
    step_header(5, "End the Auction",
        "Fix the winner, the coupon rate and the strike from the start-date spot.")

    start = engine.ledger.current_time
    oracle.add_price("DAI", "USDC", start, CONFIG.spot_price * PRICE_SCALE)
    engine.end_auction("desk", "V1", "market_maker", start, CONFIG.apr_bps)
    vault = engine.vault("V1")
    print(f"Initial spot: {fmt_price(vault['initial_spot_price'])}")
    print(f"Strike:       {fmt_price(vault['strike_price'])}")
    print(f"Trade ends:   {vault['trade_end_date']}")


def step_06_start_trade(ledger: Ledger, engine: VaultLifecycleEngine):
    step_header(6, "Start the Trade",
        "The winner pays the coupon and receives the epoch's position receipt.")

    engine.start_trade("market_maker", "V1")
    vault = engine.vault("V1")
    print(f"Coupon paid:    {fmt_usdc(vault['yield_amount'])}")
    print(f"Receipt:        {vault['auction_winner_token_id']} held by {engine.receipt_owner('V1')}")
    print(f"Treasury:       {fmt_usdc(ledger.get_balance('treasury', 'USDC'))}")
    show_vault(engine)


# ============================================================================
# PHASE 4: SETTLEMENT
# ============================================================================

def step_07_expiry(oracle: TimeSeriesPriceOracle, engine: VaultLifecycleEngine):
    final = CONFIG.final_price_converted if CONVERT else CONFIG.final_price_settled
    step_header(7, "Expiry",
        f"A keeper steps the clock to the end date; DAI/USDC fixes at {final}.")

    end = engine.vault("V1")["trade_end_date"]
    oracle.add_price("DAI", "USDC", end, final * PRICE_SCALE)
    txs = engine.step(end)
    print(f"Transactions applied by step(): {len(txs)}")
    show_vault(engine)


def step_08_settle(ledger: Ledger, engine: VaultLifecycleEngine):
    step_header(8, "Settle",
        "A converted vault swaps its USDC for DAI at the strike with the receipt holder.")

    vault = engine.vault("V1")
    if vault["is_payoff_in_deposit_asset"]:
        print("Final price at or above strike: the payoff stays in USDC, nothing to exchange.")
        return
    engine.settle_vault("market_maker", "V1")
    print(f"Treasury USDC: {fmt_usdc(ledger.get_balance('treasury', 'USDC'))}")
    print(f"Treasury DAI:  {fmt_dai(ledger.get_balance('treasury', 'DAI'))}")
    show_vault(engine)


# ============================================================================
# PHASE 5: EXIT
# ============================================================================

def step_09_fees_and_withdrawals(ledger: Ledger, engine: VaultLifecycleEngine):
    step_header(9, "Fees and Withdrawals",
        "Fees come out of the payoff asset, then queued shares are burned for assets.")

    engine.collect_fees("desk", "V1")
    if engine.vault("V1")["is_payoff_in_deposit_asset"]:
        asset_symbol, fmt = "USDC", fmt_usdc
    else:
        asset_symbol, fmt = "DAI", fmt_dai
    print(f"Fee receiver: {fmt(ledger.get_balance('fee_receiver', asset_symbol))}")

    before = ledger.get_balance("alice", asset_symbol)
    engine.add_to_withdrawal_queue("alice", "V1", ledger.get_balance("alice", "V1"))
    engine.process_withdrawal_queue("desk", "V1")
    print(f"alice received: {fmt(ledger.get_balance('alice', asset_symbol) - before)}")

    engine.rollover_vault("desk", "V1")
    section_header("After rollover")
    show_vault(engine)


def step_10_conservation(ledger: Ledger):
    step_header(10, "Conservation Proof",
        "Every unit, vault shares and receipts included, nets to zero across wallets.")

    result = ledger.verify_double_entry()
    for unit, total in sorted(result["supplies"].items()):
        print(f"  {unit:10s} {total}")
    print(f"\nValid: {result['valid']}   Transactions logged: {len(ledger.transaction_log)}")


def main():
    print("=" * 70)
    print("       DCS LEDGER - ONE EPOCH TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    wait_for_enter()

    ledger, oracle, engine = step_01_ledger_and_assets()
    wait_for_enter()
    step_02_product_and_vault(engine)
    wait_for_enter()
    step_03_queue_deposits(ledger, engine)
    wait_for_enter()
    step_04_mint_shares(ledger, engine)
    wait_for_enter()
    step_05_auction(oracle, engine)
    wait_for_enter()
    step_06_start_trade(ledger, engine)
    wait_for_enter()
    step_07_expiry(oracle, engine)
    wait_for_enter()
    step_08_settle(ledger, engine)
    wait_for_enter()
    step_09_fees_and_withdrawals(ledger, engine)
    wait_for_enter()
    step_10_conservation(ledger)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - Run with --convert to see the conversion branch
      - See dcs_ledger/dcs/*.py for each phase of the lifecycle
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
