"""
dex/adapters/base.py - Shared quoting types.

A quoter answers "how much token_out for amount_in of token_in" for one
venue, in raw on-chain units. Absence is an exception, never zero.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from core.models import Asset, Venue


@dataclass(frozen=True)
class VenueQuote:
    """Raw quote from one venue."""
    amount_in: int
    amount_out: int
    fee_tier: Optional[int] = None
    route: Tuple[str, ...] = ()


class VenueQuoter(Protocol):
    """Kind-specific quoting strategy bound to one venue."""

    venue: Venue

    async def quote(self, token_in: Asset, token_out: Asset, amount_in: int) -> VenueQuote:
        """Raise QuoteError when the venue cannot price the swap."""
        ...
