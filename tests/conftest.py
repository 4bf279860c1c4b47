# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for CYCLEARB tests.
"""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.constants import AmmKind, LiquidityTier  # noqa: E402
from core.exceptions import QuoteError  # noqa: E402
from core.models import Asset, Venue  # noqa: E402
from dex.adapters.base import VenueQuote  # noqa: E402
from discovery.registry import AssetRegistry, TradingGraph, VenueRegistry  # noqa: E402


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# =============================================================================
# UNIVERSE
# =============================================================================

ASSET_ROWS = [
    # symbol, address, tier, stable, native, loan_base, usd_price
    ("WBNB", "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c", "high", False, True, "5", "300"),
    ("BTCB", "0x7130d2A12B9BCbFAe4f2634d864A1Ee1Ce3Ead9c", "high", False, False, "0.1", "45000"),
    ("ETH", "0x2170Ed0880ac9A755fd29B2688956BD959F933F8", "high", False, False, "1.5", "2500"),
    ("USDT", "0x55d398326f99059fF775485246999027B3197955", "high", True, False, "3000", "1"),
    ("USDC", "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", "high", True, False, "3000", "1"),
    ("CAKE", "0x0E09FaBB73Bd3Ade0a17ECC321fD13a19e81cE82", "medium", False, False, "1000", "2.5"),
]

VENUE_ROWS = [
    # venue_id, kind, settlement_id, high_liquidity
    ("PANCAKESWAP_V2", AmmKind.CONSTANT_PRODUCT, 0, True),
    ("PANCAKESWAP_V3", AmmKind.CONCENTRATED_LIQUIDITY, 1, True),
    ("BISWAP", AmmKind.CONSTANT_PRODUCT, 2, True),
    ("MDEX", AmmKind.CONSTANT_PRODUCT, 3, False),
    ("UNISWAP_V3", AmmKind.CONCENTRATED_LIQUIDITY, 4, False),
    ("APESWAP", AmmKind.CONSTANT_PRODUCT, 5, False),
]

TRADING_PAIRS = {
    "WBNB": ["USDT", "USDC", "BTCB", "ETH", "CAKE"],
    "BTCB": ["WBNB", "USDT", "USDC", "ETH"],
    "ETH": ["WBNB", "USDT", "USDC", "BTCB"],
    "USDT": ["WBNB", "BTCB", "ETH", "USDC", "CAKE"],
    "USDC": ["WBNB", "BTCB", "ETH", "USDT", "CAKE"],
    "CAKE": ["WBNB", "USDT", "USDC"],
}


def make_asset(symbol, address, tier, stable, native, loan_base, usd_price) -> Asset:
    return Asset(
        symbol=symbol,
        address=address,
        decimals=18,
        is_stable=stable,
        is_native=native,
        liquidity_tier=LiquidityTier(tier),
        loan_base=Decimal(loan_base),
        usd_price=Decimal(usd_price),
    )


def make_venue(venue_id, kind, settlement_id, high_liquidity) -> Venue:
    concentrated = kind == AmmKind.CONCENTRATED_LIQUIDITY
    return Venue(
        venue_id=venue_id,
        name=venue_id.replace("_", " ").title(),
        kind=kind,
        router=f"0x{settlement_id + 1:040x}",
        settlement_id=settlement_id,
        quoter=f"0x{settlement_id + 100:040x}" if concentrated else None,
        fee=Decimal("0") if concentrated else Decimal("0.0025"),
        fee_tiers=(100, 500, 2500, 10000) if concentrated else (),
        high_liquidity=high_liquidity,
    )


@pytest.fixture
def assets() -> AssetRegistry:
    return AssetRegistry([make_asset(*row) for row in ASSET_ROWS], bridge_symbol="WBNB")


@pytest.fixture
def venues() -> VenueRegistry:
    return VenueRegistry([make_venue(*row) for row in VENUE_ROWS])


@pytest.fixture
def graph(assets) -> TradingGraph:
    return TradingGraph(TRADING_PAIRS, assets)


# =============================================================================
# QUOTING
# =============================================================================

class FakeQuoter:
    """
    Venue quoter backed by a fixed rate table.

    rates maps (token_in, token_out) symbols to a Decimal unit rate;
    a missing pair raises QuoteError like a reverting venue.
    """

    def __init__(self, venue: Venue, rates=None, error: Exception = None):
        self.venue = venue
        self.rates = dict(rates or {})
        self.error = error
        self.calls = []

    async def quote(self, token_in: Asset, token_out: Asset, amount_in: int) -> VenueQuote:
        self.calls.append((token_in.symbol, token_out.symbol, amount_in))
        if self.error is not None:
            raise self.error
        rate = self.rates.get((token_in.symbol, token_out.symbol))
        if rate is None:
            raise QuoteError(
                f"no pool {token_in.symbol}/{token_out.symbol}",
                details={"venue_id": self.venue.venue_id},
            )
        return VenueQuote(amount_in=amount_in, amount_out=int(Decimal(amount_in) * rate))


@pytest.fixture
def make_quoters(venues):
    """Build {venue_id: FakeQuoter} from {venue_id: rates}; other venues quote nothing."""
    def _make(rates_by_venue=None, error: Exception = None):
        rates_by_venue = rates_by_venue or {}
        return {
            v.venue_id: FakeQuoter(v, rates_by_venue.get(v.venue_id), error=error)
            for v in venues
        }
    return _make


# WBNB -> USDT -> BTCB -> WBNB: 10 WBNB ends as 10.05 WBNB
WBNB_CYCLE_RATES = {
    "PANCAKESWAP_V2": {("WBNB", "USDT"): Decimal("300")},
    "BISWAP": {("USDT", "BTCB"): Decimal("0.00002")},
    "APESWAP": {("BTCB", "WBNB"): Decimal("167.5")},
}


@pytest.fixture
def wbnb_cycle_rates():
    return {venue: dict(rates) for venue, rates in WBNB_CYCLE_RATES.items()}
