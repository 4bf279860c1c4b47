"""
dex - Venue quoting and price aggregation.
"""

from dex.price_aggregator import PriceAggregator, QuoteCache

__all__ = [
    "PriceAggregator",
    "QuoteCache",
]
