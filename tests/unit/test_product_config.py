"""
test_product_config.py - Tests for products, vault registration and deposit intake

Tests:
- create_product_unit(): term validation
- create_product / create_vault through the engine
- configure_product(): configurable terms only, validated
- add_to_deposit_queue(): minimum, cap, closed queue, receiver
"""

import pytest
from decimal import Decimal

from dcs_ledger import (
    OptionType, create_product_unit, create_vault_unit, asset,
    InvalidProduct, InvalidVault, ValueIsZero, ValueTooSmall, ValueTooLarge,
)
from dcs_ledger.dcs.product import compute_add_to_deposit_queue, compute_create_product
from dcs_ledger.core import UNIT_TYPE_DCS_PRODUCT

from tests.fake_view import FakeView
from tests.scenario import ADMIN, USDC, DAI, make_env, usdc


class TestCreateProductUnit:

    def test_basic(self):
        unit = create_product_unit("P1", "USDC", "WETH", OptionType.BUY_LOW, 86400, 9500)
        state = unit.state
        assert unit.unit_type == UNIT_TYPE_DCS_PRODUCT
        assert state["option_type"] == OptionType.BUY_LOW
        assert state["sum_vault_underlying_amounts"] == 0
        assert state["vaults"] == []
        assert state["deposit_queue"]["depositors"] == []
        assert state["is_deposit_queue_open"] is True
        assert state["days_to_start_late_fees"] == 1
        assert state["dispute_period_in_hours"] == 24

    def test_option_type_from_string(self):
        unit = create_product_unit("P1", "USDC", "WETH", "SellHigh", 86400, 10500)
        assert unit.state["option_type"] == OptionType.SELL_HIGH

    def test_same_assets_rejected(self):
        with pytest.raises(ValueError, match="must differ"):
            create_product_unit("P1", "USDC", "USDC", OptionType.BUY_LOW, 86400, 9500)

    def test_zero_tenor_rejected(self):
        with pytest.raises(ValueError, match="tenor_in_seconds"):
            create_product_unit("P1", "USDC", "WETH", OptionType.BUY_LOW, 0, 9500)

    def test_late_fee_over_100_percent_rejected(self):
        with pytest.raises(ValueError, match="late_fee_bps"):
            create_product_unit("P1", "USDC", "WETH", OptionType.BUY_LOW, 86400, 9500, late_fee_bps=10_001)

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="product_id"):
            create_product_unit("", "USDC", "WETH", OptionType.BUY_LOW, 86400, 9500)

    def test_vault_fee_range(self):
        with pytest.raises(ValueError, match="management_fee_bps"):
            create_vault_unit("V1", "P1", management_fee_bps=-1)
        with pytest.raises(ValueError, match="yield_fee_bps"):
            create_vault_unit("V1", "P1", yield_fee_bps=10_001)


class TestCreateProductAndVault:

    def test_product_registered(self, env):
        assert env.product["quote_asset"] == USDC
        assert env.product["vaults"] == ["V1"]

    def test_unknown_asset_rejected(self):
        view = FakeView(units={"USDC": asset("USDC", "USD Coin", 6)})
        unit = create_product_unit("P9", "USDC", "WETH", OptionType.BUY_LOW, 86400, 9500)
        with pytest.raises(InvalidProduct, match="WETH"):
            compute_create_product(view, unit, ADMIN)

    def test_non_product_unit_rejected(self, env):
        with pytest.raises(InvalidProduct):
            env.engine.create_product(ADMIN, asset("WBTC", "Wrapped BTC", 8))

    def test_duplicate_product_rejected(self, env):
        unit = create_product_unit("P1", USDC, DAI, OptionType.BUY_LOW, 86400, 9500)
        with pytest.raises(InvalidProduct, match="already registered"):
            env.engine.create_product(ADMIN, unit)

    def test_duplicate_vault_rejected(self, env):
        with pytest.raises(InvalidVault, match="already registered"):
            env.engine.create_vault(ADMIN, create_vault_unit("V1", "P1"))

    def test_vault_for_unknown_product(self, env):
        with pytest.raises(InvalidProduct):
            env.engine.create_vault(ADMIN, create_vault_unit("V2", "P9"))

    def test_second_vault_listed(self, env):
        env.engine.create_vault(ADMIN, create_vault_unit("V2", "P1"))
        assert env.product["vaults"] == ["V1", "V2"]


class TestConfigureProduct:

    def test_update_terms(self, env):
        env.engine.configure_product(ADMIN, "P1", late_fee_bps=250, max_underlying_amount=usdc(5))
        assert env.product["late_fee_bps"] == 250
        assert env.product["max_underlying_amount"] == usdc(5)
        assert isinstance(env.product["max_underlying_amount"], Decimal)

    def test_unknown_term_rejected(self, env):
        with pytest.raises(ValueError, match="not a configurable"):
            env.engine.configure_product(ADMIN, "P1", quote_asset="DAI")

    def test_invalid_value_rejected(self, env):
        with pytest.raises(ValueError, match="is_deposit_queue_open"):
            env.engine.configure_product(ADMIN, "P1", is_deposit_queue_open="yes")

    def test_unknown_product(self, env):
        with pytest.raises(InvalidProduct):
            env.engine.configure_product(ADMIN, "P9", late_fee_bps=1)


class TestAddToDepositQueue:

    def test_assets_move_to_treasury(self, env):
        tx = env.engine.add_to_deposit_queue("alice", "P1", usdc(1_000))
        assert env.balance("treasury", USDC) == usdc(1_000)
        queue = env.product["deposit_queue"]
        assert queue["depositors"] == ["alice"]
        assert queue["amounts"] == {"alice": usdc(1_000)}
        assert queue["total"] == usdc(1_000)
        assert tx.events()[0]["event"] == "DepositQueued"

    def test_repeat_deposit_accumulates(self, env):
        env.engine.add_to_deposit_queue("alice", "P1", usdc(1_000))
        env.engine.add_to_deposit_queue("bob", "P1", usdc(500))
        env.engine.add_to_deposit_queue("alice", "P1", usdc(250))
        queue = env.product["deposit_queue"]
        assert queue["depositors"] == ["alice", "bob"]
        assert queue["amounts"]["alice"] == usdc(1_250)
        assert queue["total"] == usdc(1_750)

    def test_receiver_owns_the_entry(self, env):
        env.engine.add_to_deposit_queue("alice", "P1", usdc(1), receiver="bob")
        assert env.product["deposit_queue"]["amounts"] == {"bob": usdc(1)}

    def test_sell_high_deposits_base_asset(self):
        env = make_env(option_type=OptionType.SELL_HIGH)
        env.engine.add_to_deposit_queue("alice", "P1", Decimal(10) ** 18)
        assert env.balance("treasury", DAI) == Decimal(10) ** 18
        assert env.balance("treasury", USDC) == 0

    def test_zero_rejected(self, env):
        with pytest.raises(ValueIsZero):
            env.engine.add_to_deposit_queue("alice", "P1", Decimal(0))

    def test_below_minimum_rejected(self):
        env = make_env(min_deposit_amount=usdc(100))
        with pytest.raises(ValueTooSmall):
            env.engine.add_to_deposit_queue("alice", "P1", usdc(99))

    def test_cap_counts_queued_deposits(self):
        env = make_env(max_underlying_amount=usdc(1_000))
        env.engine.add_to_deposit_queue("alice", "P1", usdc(600))
        with pytest.raises(ValueTooLarge):
            env.engine.add_to_deposit_queue("bob", "P1", usdc(401))
        env.engine.add_to_deposit_queue("bob", "P1", usdc(400))
        assert env.product["deposit_queue"]["total"] == usdc(1_000)

    def test_closed_queue_rejected(self, env):
        env.engine.configure_product(ADMIN, "P1", is_deposit_queue_open=False)
        with pytest.raises(InvalidProduct, match="closed"):
            env.engine.add_to_deposit_queue("alice", "P1", usdc(1))

    def test_unknown_product(self, env):
        with pytest.raises(InvalidProduct):
            env.engine.add_to_deposit_queue("alice", "P9", usdc(1))

    def test_compute_does_not_touch_view(self, env):
        before = env.product
        compute_add_to_deposit_queue(env.ledger, "P1", "alice", usdc(5), "treasury")
        assert env.product == before
