"""
test_dispute.py - Tests for disputes and price overrides
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from dcs_ledger import (
    VaultStatus, SettlementStatus,
    InvalidPrice, InvalidSettlementStatus, InvalidVaultStatus, NotTradeWinnerOrAdmin,
    OutsideDisputePeriod, TradeConverted, VaultInDispute, VaultNotInDispute,
)

from tests.scenario import T0, DESK, MM, PRICE_ONE, auction, expire, price


class TestPreTradeDispute:

    def test_winner_disputes_strike(self, funded_env):
        auction(funded_env)
        funded_env.engine.dispute_vault(MM, "V1")
        assert funded_env.vault["is_disputed"] is True
        with pytest.raises(VaultInDispute):
            funded_env.engine.start_trade(MM, "V1")

    def test_process_with_new_price_resets_strike(self, funded_env):
        auction(funded_env)
        funded_env.engine.dispute_vault(MM, "V1")
        funded_env.engine.process_dispute(DESK, "V1", price("1.10"))

        vault = funded_env.vault
        assert vault["is_disputed"] is False
        assert vault["initial_spot_price"] == Decimal(110_000_000)
        assert vault["strike_price"] == Decimal(104_500_000)
        assert vault["price_overrides"] == {T0: Decimal(110_000_000)}
        funded_env.engine.start_trade(MM, "V1")

    def test_process_with_zero_keeps_oracle_price(self, funded_env):
        auction(funded_env)
        funded_env.engine.dispute_vault(DESK, "V1")
        funded_env.engine.process_dispute(DESK, "V1", Decimal(0))
        assert funded_env.vault["strike_price"] == Decimal(95_000_000)
        assert funded_env.vault["price_overrides"] == {}

    def test_third_party_rejected(self, funded_env):
        auction(funded_env)
        with pytest.raises(NotTradeWinnerOrAdmin):
            funded_env.engine.dispute_vault("alice", "V1")

    def test_window_closes(self, funded_env):
        auction(funded_env)
        funded_env.advance(hours=24)
        with pytest.raises(OutsideDisputePeriod):
            funded_env.engine.dispute_vault(MM, "V1")

    def test_before_auction(self, funded_env):
        with pytest.raises(InvalidSettlementStatus):
            funded_env.engine.dispute_vault(DESK, "V1")

    def test_already_disputed(self, funded_env):
        auction(funded_env)
        funded_env.engine.dispute_vault(MM, "V1")
        with pytest.raises(VaultInDispute):
            funded_env.engine.dispute_vault(DESK, "V1")


class TestPostExpiryDispute:

    def test_holder_disputes_and_price_flips_outcome(self, traded_env):
        expire(traded_env, PRICE_ONE)
        assert traded_env.vault["settlement_status"] == SettlementStatus.SETTLED

        traded_env.engine.dispute_vault(MM, "V1")
        traded_env.engine.process_dispute(DESK, "V1", price("0.90"))

        vault = traded_env.vault
        end = vault["trade_end_date"]
        assert vault["settlement_status"] == SettlementStatus.AWAITING_SETTLEMENT
        assert vault["is_payoff_in_deposit_asset"] is False
        assert vault["price_overrides"] == {end: Decimal(90_000_000)}
        traded_env.engine.settle_vault(MM, "V1")

    def test_correction_cancels_conversion(self, traded_env):
        expire(traded_env, price("0.90"))
        traded_env.engine.dispute_vault(DESK, "V1")
        traded_env.engine.process_dispute(DESK, "V1", price("0.99"))
        assert traded_env.vault["settlement_status"] == SettlementStatus.SETTLED
        assert traded_env.vault["is_payoff_in_deposit_asset"] is True

    def test_after_settlement_exchange(self, traded_env):
        expire(traded_env, price("0.90"))
        traded_env.engine.settle_vault(MM, "V1")
        with pytest.raises(TradeConverted):
            traded_env.engine.dispute_vault(MM, "V1")

    def test_window_from_end_date(self, traded_env):
        expire(traded_env, PRICE_ONE)
        traded_env.advance(hours=23, minutes=59)
        traded_env.engine.dispute_vault(MM, "V1")
        assert traded_env.vault["is_disputed"] is True

    def test_window_closes(self, traded_env):
        expire(traded_env, PRICE_ONE)
        traded_env.advance(hours=24)
        with pytest.raises(OutsideDisputePeriod):
            traded_env.engine.dispute_vault(MM, "V1")

    def test_non_holder_rejected(self, traded_env):
        expire(traded_env, PRICE_ONE)
        with pytest.raises(NotTradeWinnerOrAdmin):
            traded_env.engine.dispute_vault("alice", "V1")

    def test_during_trade(self, traded_env):
        with pytest.raises(InvalidVaultStatus):
            traded_env.engine.dispute_vault(MM, "V1")


class TestProcessDispute:

    def test_requires_dispute(self, traded_env):
        with pytest.raises(VaultNotInDispute):
            traded_env.engine.process_dispute(DESK, "V1", PRICE_ONE)

    def test_negative_price(self, funded_env):
        auction(funded_env)
        funded_env.engine.dispute_vault(MM, "V1")
        with pytest.raises(InvalidPrice):
            funded_env.engine.process_dispute(DESK, "V1", Decimal(-1))


class TestOverridePrice:

    def test_records_override(self, traded_env):
        end = traded_env.vault["trade_end_date"]
        traded_env.engine.override_price(DESK, "V1", end, price("0.50"))
        traded_env.oracle.add_price("DAI", "USDC", end, PRICE_ONE)
        traded_env.ledger.advance_time(end)
        traded_env.engine.check_trade_expiry(DESK, "V1")
        assert traded_env.vault["settlement_status"] == SettlementStatus.AWAITING_SETTLEMENT

    def test_non_positive_rejected(self, traded_env):
        with pytest.raises(InvalidPrice):
            traded_env.engine.override_price(DESK, "V1", T0, Decimal(0))

    def test_does_not_change_status(self, traded_env):
        traded_env.engine.override_price(DESK, "V1", T0 + timedelta(days=1), PRICE_ONE)
        assert traded_env.vault["vault_status"] == VaultStatus.TRADED
