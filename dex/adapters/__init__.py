"""
dex/adapters/ - Venue-kind quoting strategies.

Adapters:
- constant_product: router getAmountsOut with bridge fallback
- concentrated: quoter quoteExactInputSingle over fee tiers

The strategy for each venue is chosen once, here, when the venue
registry is turned into a quoter map.
"""

from typing import Dict, Optional

from chains.providers import RPCProvider
from core.constants import AmmKind
from core.models import Asset
from dex.adapters.base import VenueQuote, VenueQuoter
from dex.adapters.concentrated import ConcentratedLiquidityQuoter
from dex.adapters.constant_product import ConstantProductQuoter
from discovery.registry import VenueRegistry


def build_quoters(
    venues: VenueRegistry,
    provider: RPCProvider,
    bridge: Optional[Asset] = None,
) -> Dict[str, VenueQuoter]:
    """Map venue id -> quoting strategy for every enabled venue."""
    quoters: Dict[str, VenueQuoter] = {}
    for venue in venues:
        if venue.kind == AmmKind.CONSTANT_PRODUCT:
            quoters[venue.venue_id] = ConstantProductQuoter(provider, venue, bridge=bridge)
        elif venue.kind == AmmKind.CONCENTRATED_LIQUIDITY:
            quoters[venue.venue_id] = ConcentratedLiquidityQuoter(provider, venue)
    return quoters


__all__ = [
    "ConcentratedLiquidityQuoter",
    "ConstantProductQuoter",
    "VenueQuote",
    "VenueQuoter",
    "build_quoters",
]
