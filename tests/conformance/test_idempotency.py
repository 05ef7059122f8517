"""
Idempotency Conformance Tests

INVARIANT: Repeating an operation never repeats its effect.

    ∀ pending transaction T:
        execute(T) = APPLIED ⟹ execute(T) again = ALREADY_APPLIED

    ∀ time-driven check C (expiry, settlement default, step):
        C applied once ⟹ C again returns nothing and changes nothing

Keepers can therefore retry freely.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta

from dcs_ledger import ExecuteResult, SettlementStatus
from dcs_ledger.dcs.fees import compute_collect_fees

from tests.conftest import ledger_state_equals
from tests.scenario import (
    DESK, PRICE_ONE, make_env, fill_vault, trade, expire, price, usdc,
)


def _traded():
    env = make_env()
    fill_vault(env, {"alice": usdc(60_000), "bob": usdc(40_000)})
    trade(env)
    return env


class TestIdempotencyProperties:

    @given(st.integers(min_value=1, max_value=5), st.booleans())
    @settings(max_examples=20, deadline=None)
    def test_repeated_checks_are_noops(self, repeats, converts):
        """
        PROPERTY: After the first expiry and default checks, further calls
        return None and leave the ledger unchanged.
        """
        env = _traded()
        expire(env, price("0.90") if converts else PRICE_ONE)
        env.advance(days=6)
        env.engine.check_settlement_default(DESK, "V1")
        snapshot = env.ledger.clone()

        for _ in range(repeats):
            assert env.engine.check_trade_expiry(DESK, "V1") is None
            assert env.engine.check_settlement_default(DESK, "V1") is None
        assert ledger_state_equals(snapshot, env.ledger)

    @given(st.integers(min_value=0, max_value=10))
    @settings(max_examples=20, deadline=None)
    def test_step_applies_each_transition_once(self, extra_days):
        """PROPERTY: Stepping to the same or a later time never re-expires a vault."""
        env = _traded()
        end = env.vault["trade_end_date"]
        env.oracle.add_price("DAI", "USDC", end, PRICE_ONE)

        assert len(env.engine.step(end)) == 1
        assert env.engine.step(end) == []
        assert env.engine.step(end + timedelta(days=extra_days)) == []


class TestIdempotencyExamples:

    def test_duplicate_pending_transaction(self):
        env = _traded()
        expire(env, PRICE_ONE)
        pending = compute_collect_fees(env.ledger, "V1", DESK, "treasury", "fee_receiver")

        assert env.ledger.execute(pending) == ExecuteResult.APPLIED
        snapshot = env.ledger.clone()
        assert env.ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger_state_equals(snapshot, env.ledger)

    def test_default_check_after_default(self):
        env = _traded()
        expire(env, price("0.90"))
        env.advance(days=5)
        assert env.engine.check_settlement_default(DESK, "V1") is not None
        assert env.vault["settlement_status"] == SettlementStatus.DEFAULTED
        assert env.engine.check_settlement_default(DESK, "V1") is None
