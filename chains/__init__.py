"""
chains - Chain access over JSON-RPC.
"""

from chains.providers import RPCProvider, RPCResponse, RPCStats, build_provider

__all__ = [
    "RPCProvider",
    "RPCResponse",
    "RPCStats",
    "build_provider",
]
