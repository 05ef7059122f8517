"""
conftest.py - Shared pytest fixtures for DCS ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Bare ledgers with the two test assets registered
- DCS environments at various lifecycle phases (see tests/scenario.py)
- Ledger state comparison utilities
"""

import pytest
from decimal import Decimal

from dcs_ledger import Ledger, asset, SYSTEM_WALLET

from tests.scenario import (
    T0, USDC, DAI, make_env, fill_vault, trade, usdc,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def compare_ledger_states(ledger1: Ledger, ledger2: Ledger) -> dict:
    """Compare balances and unit states of two ledgers and list the differences."""
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units) | set(ledger2.units)
    for wallet in sorted(all_wallets):
        for unit in sorted(all_units):
            b1 = ledger1.balances.get(wallet, {}).get(unit, Decimal(0))
            b2 = ledger2.balances.get(wallet, {}).get(unit, Decimal(0))
            if b1 != b2:
                balance_diffs.append((wallet, unit, b1, b2))

    for unit in sorted(all_units):
        s1 = ledger1.units[unit].state if unit in ledger1.units else None
        s2 = ledger2.units[unit].state if unit in ledger2.units else None
        if s1 != s2:
            state_diffs.append(unit)

    return {
        "equal": not balance_diffs and not state_diffs,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


def ledger_state_equals(ledger1: Ledger, ledger2: Ledger) -> bool:
    return compare_ledger_states(ledger1, ledger2)["equal"]


def non_system_balances(ledger: Ledger, unit: str) -> dict:
    return {w: q for w, q in ledger.get_positions(unit).items() if w != SYSTEM_WALLET}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Test-mode ledger with USDC (6 decimals) and DAI (18 decimals)."""
    led = Ledger("test", T0, verbose=False, test_mode=True)
    led.register_unit(asset(USDC, "USD Coin", 6))
    led.register_unit(asset(DAI, "Dai Stablecoin", 18))
    return led


@pytest.fixture
def env():
    """Product P1 (BuyLow USDC/DAI) with an empty vault V1 in DepositsClosed."""
    return make_env()


@pytest.fixture
def funded_env():
    """V1 in NotTraded holding alice's and bob's deposits."""
    e = make_env()
    fill_vault(e, {"alice": usdc(60_000), "bob": usdc(40_000)})
    return e


@pytest.fixture
def traded_env():
    """V1 Traded: 100,000 USDC notional, spot 1.00, strike 0.95, 10% APR."""
    e = make_env()
    fill_vault(e, {"alice": usdc(60_000), "bob": usdc(40_000)})
    trade(e)
    return e
