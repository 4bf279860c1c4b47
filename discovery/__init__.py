"""
discovery - Asset universe, venues and circular path generation.
"""

from discovery.registry import AssetRegistry, TradingGraph, VenueRegistry, load_universe
from discovery.path_generator import PathGenerator

__all__ = [
    "AssetRegistry",
    "TradingGraph",
    "VenueRegistry",
    "load_universe",
    "PathGenerator",
]
