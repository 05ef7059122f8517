"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing the pure DCS
compute_* functions without a full Ledger instance.
"""

from __future__ import annotations
import copy
from datetime import datetime
from decimal import Decimal
from typing import Dict, Set, Optional, Any

from dcs_ledger.core import Unit, UnitNotRegistered, asset


# Type aliases (matching core.py)
Positions = Dict[str, Decimal]
UnitState = Dict[str, Any]


class FakeView:
    """
    Minimal LedgerView implementation for testing compute functions.

    Example:
        view = FakeView(
            balances={'alice': {'USDC': Decimal(1_000_000)}},
            units={'USDC': asset('USDC', 'USD Coin', 6)},
            time=datetime(2024, 1, 1),
        )

        view.get_positions('USDC')
        # Returns: {'alice': Decimal('1000000')}
    """

    def __init__(
        self,
        balances: Optional[Dict[str, Dict[str, Decimal]]] = None,
        states: Optional[Dict[str, UnitState]] = None,
        time: Optional[datetime] = None,
        units: Optional[Dict[str, Unit]] = None,
    ):
        self._balances = balances or {}
        self._units = dict(units or {})
        self._states = {sym: unit.state for sym, unit in self._units.items()}
        self._states.update(states or {})
        self._time = time or datetime(2024, 1, 1)

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        return self._balances.get(wallet, {}).get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        if unit not in self._states:
            raise UnitNotRegistered(f"Unit {unit} not registered")
        return copy.deepcopy(self._states[unit])

    def get_positions(self, unit: str) -> Positions:
        return {
            w: b[unit]
            for w, b in self._balances.items()
            if unit in b and b[unit] != 0
        }

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self._units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self._units[symbol]


def asset_view(**decimals: int) -> FakeView:
    """FakeView holding only asset units, e.g. asset_view(USDC=6, DAI=18)."""
    return FakeView(units={
        symbol: asset(symbol, symbol, d) for symbol, d in decimals.items()
    })
