"""
pricing_source.py - Price resolution for DCS vaults

Provides the oracle interface used for strike and settlement prices:
- PriceOracle: Protocol for pair prices at a timestamp, per data source
- StaticPriceOracle: Time-independent pair prices
- TimeSeriesPriceOracle: Historical pair prices (most recent at or before)
- resolve_price(): Oracle lookup with the vault's dispute overrides applied

Prices are integer fixed-point Decimals: quote-asset units per one base-asset
unit, scaled by 10**price_decimals (8 by default, see EngineConfig).
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, List, Tuple, Protocol, runtime_checkable
from bisect import bisect_right

from .core import LedgerView, InvalidPrice, ZERO


DEFAULT_DATA_SOURCE = "DEFAULT"

Pair = Tuple[str, str]


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    get_price() returns None when the source has no observation at or before
    the timestamp.
    """

    def get_price(
        self,
        base_asset: str,
        quote_asset: str,
        timestamp: datetime,
        data_source: str = DEFAULT_DATA_SOURCE,
    ) -> Optional[Decimal]:
        ...


class StaticPriceOracle:
    """Pair prices that do not depend on time or data source."""

    def __init__(self, prices: Optional[Dict[Pair, Decimal]] = None):
        self.prices: Dict[Pair, Decimal] = dict(prices or {})

    def get_price(
        self,
        base_asset: str,
        quote_asset: str,
        timestamp: datetime,
        data_source: str = DEFAULT_DATA_SOURCE,
    ) -> Optional[Decimal]:
        return self.prices.get((base_asset, quote_asset))

    def update_price(self, base_asset: str, quote_asset: str, price: Decimal):
        self.prices[(base_asset, quote_asset)] = price

    def __repr__(self):
        return f"StaticPriceOracle({len(self.prices)} pairs)"


class TimeSeriesPriceOracle:
    """
    Historical pair prices per data source.

    Uses the most recent observation at or before the requested timestamp,
    the way a round-based oracle answers historical queries.

    Example:
        oracle = TimeSeriesPriceOracle()
        oracle.add_price("WETH", "USDC", datetime(2024, 1, 1), Decimal(2_000_00000000))
        oracle.get_price("WETH", "USDC", datetime(2024, 1, 2))  # 200000000000
    """

    def __init__(
        self,
        price_paths: Optional[Dict[Pair, List[Tuple[datetime, Decimal]]]] = None,
        data_source: str = DEFAULT_DATA_SOURCE,
    ):
        self.price_history: Dict[Tuple[str, str, str], List[Tuple[datetime, Decimal]]] = {}
        if price_paths:
            for (base, quote), path in price_paths.items():
                if path:
                    self.price_history[(data_source, base, quote)] = sorted(path, key=lambda x: x[0])

    def add_price(
        self,
        base_asset: str,
        quote_asset: str,
        timestamp: datetime,
        price: Decimal,
        data_source: str = DEFAULT_DATA_SOURCE,
    ):
        key = (data_source, base_asset, quote_asset)
        history = self.price_history.setdefault(key, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def get_price(
        self,
        base_asset: str,
        quote_asset: str,
        timestamp: datetime,
        data_source: str = DEFAULT_DATA_SOURCE,
    ) -> Optional[Decimal]:
        history = self.price_history.get((data_source, base_asset, quote_asset))
        if not history:
            return None
        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def __repr__(self):
        total = sum(len(h) for h in self.price_history.values())
        return f"TimeSeriesPriceOracle({len(self.price_history)} series, {total} observations)"


def resolve_price(
    view: LedgerView,
    oracle: PriceOracle,
    vault_id: str,
    timestamp: datetime,
    data_source: Optional[str] = None,
) -> Decimal:
    """
    Price of the vault's product pair at a timestamp.

    A dispute override recorded for (vault, timestamp) wins over the oracle.
    data_source replaces the vault's stored source tag when given.

    Raises:
        InvalidPrice: If neither an override nor a positive oracle answer exists
    """
    vault = view.get_unit_state(vault_id)
    override = vault.get('price_overrides', {}).get(timestamp)
    if override is not None and override > ZERO:
        return override

    product = view.get_unit_state(vault['product_id'])
    price = oracle.get_price(
        product['base_asset'],
        product['quote_asset'],
        timestamp,
        data_source or vault.get('oracle_data_source') or DEFAULT_DATA_SOURCE,
    )
    if price is None or price <= ZERO:
        raise InvalidPrice(
            f"No price for {product['base_asset']}/{product['quote_asset']} at {timestamp}"
        )
    return Decimal(price)
