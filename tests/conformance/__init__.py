"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the DCS ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting and treasury backing
2. atomicity.py - All-or-nothing operation semantics
3. idempotency.py - Repeated checks and duplicate intents
4. batch_invariance.py - Queue batch sizes never change outcomes

These tests use hypothesis for property-based testing.
"""
