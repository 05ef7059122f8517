"""
test_fees.py - Tests for management and yield fee collection

    management_fee = underlying * tenor_seconds * management_fee_bps // (365 days * 10000)
    yield_fee      = yield * yield_fee_bps // 10000
"""

import pytest
from decimal import Decimal

from dcs_ledger import (
    VaultStatus, calculate_fees,
    InvalidVaultStatus, InvalidSettlementStatus, VaultInDispute,
)

from tests.scenario import (
    USDC, DAI, DESK, MM, PRICE_ONE, build_traded_env, expire, price, usdc,
)


NOTIONAL = usdc(100_000)
YIELD = Decimal(821_917_808)
MGMT_FEE = Decimal(164_383_561)
YIELD_FEE = Decimal(82_191_780)


def _fee_env():
    return build_traded_env(management_fee_bps=200, yield_fee_bps=1000)


class TestCalculateFees:

    def test_fee_formulas(self):
        vault = {
            'underlying_amount': NOTIONAL,
            'yield_amount': YIELD,
            'management_fee_bps': 200,
            'yield_fee_bps': 1000,
        }
        assert calculate_fees(vault, {'tenor_in_seconds': 30 * 86400}) == (MGMT_FEE, YIELD_FEE)

    def test_zero_rates(self):
        vault = {
            'underlying_amount': NOTIONAL,
            'yield_amount': YIELD,
            'management_fee_bps': 0,
            'yield_fee_bps': 0,
        }
        assert calculate_fees(vault, {'tenor_in_seconds': 86400}) == (0, 0)


class TestCollectFees:

    def test_deposit_asset_payoff(self):
        env = _fee_env()
        expire(env, PRICE_ONE)
        tx = env.engine.collect_fees(DESK, "V1")

        total_fee = MGMT_FEE + YIELD_FEE
        assert env.balance("fee_receiver", USDC) == total_fee
        assert env.balance("treasury", USDC) == NOTIONAL + YIELD - total_fee
        assert env.vault["total_assets"] == NOTIONAL + YIELD - total_fee
        assert env.vault["vault_status"] == VaultStatus.FEES_COLLECTED
        assert env.product["sum_vault_underlying_amounts"] == NOTIONAL + YIELD - total_fee

        (event,) = tx.events()
        assert event["event"] == "FeesCollected"
        assert event["management_fee"] == MGMT_FEE
        assert event["yield_fee"] == YIELD_FEE

    def test_converted_payoff_pays_counter_asset(self):
        env = _fee_env()
        expire(env, price("0.90"))
        env.engine.settle_vault(MM, "V1")
        converted = env.vault["total_assets"]
        env.engine.collect_fees(DESK, "V1")

        fee = env.balance("fee_receiver", DAI)
        assert fee > 0
        assert env.balance("fee_receiver", USDC) == 0
        assert env.vault["total_assets"] == converted - fee
        assert env.balance("treasury", DAI) == converted - fee
        assert env.product["sum_vault_underlying_amounts"] == 0

    def test_defaulted_vault_leaves_product_total(self):
        env = _fee_env()
        expire(env, price("0.90"))
        env.advance(days=5)
        env.engine.check_settlement_default(DESK, "V1")
        env.engine.collect_fees(DESK, "V1")

        assert env.balance("fee_receiver", USDC) == MGMT_FEE + YIELD_FEE
        assert env.product["sum_vault_underlying_amounts"] == 0

    def test_zero_fees_only_change_status(self, traded_env):
        expire(traded_env, PRICE_ONE)
        tx = traded_env.engine.collect_fees(DESK, "V1")
        assert tx.moves == ()
        assert traded_env.vault["vault_status"] == VaultStatus.FEES_COLLECTED
        assert traded_env.product["sum_vault_underlying_amounts"] == NOTIONAL + YIELD

    def test_requires_expiry(self, traded_env):
        with pytest.raises(InvalidVaultStatus):
            traded_env.engine.collect_fees(DESK, "V1")

    def test_requires_settlement(self, traded_env):
        expire(traded_env, price("0.90"))
        with pytest.raises(InvalidSettlementStatus):
            traded_env.engine.collect_fees(DESK, "V1")

    def test_once_per_epoch(self, traded_env):
        expire(traded_env, PRICE_ONE)
        traded_env.engine.collect_fees(DESK, "V1")
        with pytest.raises(InvalidVaultStatus):
            traded_env.engine.collect_fees(DESK, "V1")

    def test_disputed(self, traded_env):
        expire(traded_env, PRICE_ONE)
        traded_env.engine.dispute_vault(DESK, "V1")
        with pytest.raises(VaultInDispute):
            traded_env.engine.collect_fees(DESK, "V1")

    def test_defaulted_vault_after_early_withdrawal(self):
        env = _fee_env()
        expire(env, price("0.90"))
        env.advance(days=5)
        env.engine.check_settlement_default(DESK, "V1")
        env.engine.add_to_withdrawal_queue("alice", "V1", env.balance("alice", "V1") // 2)
        env.engine.process_withdrawal_queue(DESK, "V1")
        remaining = env.vault["total_assets"]

        tx = env.engine.collect_fees(DESK, "V1")

        assert env.balance("fee_receiver", USDC) == MGMT_FEE + YIELD_FEE
        assert env.vault["total_assets"] == remaining - MGMT_FEE - YIELD_FEE
        assert env.balance("treasury", USDC) == env.vault["total_assets"]
        (event,) = tx.events()
        assert (event["management_fee"], event["yield_fee"]) == (MGMT_FEE, YIELD_FEE)
