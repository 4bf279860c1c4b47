"""
dex/adapters/constant_product.py - Constant-product (x*y=k) router adapter.

Quotes through the venue router's getAmountsOut. When the direct pair
has no pool the quote is retried through the bridge asset
(token_in -> bridge -> token_out); the bridge is skipped when either
side already is the bridge.
"""

from typing import Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from chains.providers import RPCProvider
from core.constants import ErrorCode
from core.exceptions import QuoteError, RPCError
from core.logging import get_logger
from core.models import Asset, Venue
from dex.adapters.base import VenueQuote

logger = get_logger(__name__)


# =============================================================================
# ABI ENCODING (UniswapV2-style router)
# =============================================================================

# getAmountsOut(uint256 amountIn, address[] path) returns (uint256[] amounts)
GET_AMOUNTS_OUT_SIGNATURE = "getAmountsOut(uint256,address[])"
SELECTOR_GET_AMOUNTS_OUT = function_signature_to_4byte_selector(GET_AMOUNTS_OUT_SIGNATURE)


def encode_get_amounts_out(amount_in: int, path: list[str]) -> str:
    """Encode getAmountsOut call data as 0x-hex."""
    args = encode(["uint256", "address[]"], [amount_in, path])
    return "0x" + (SELECTOR_GET_AMOUNTS_OUT + args).hex()


# Factory getPair(address,address) returns (address pair)
SELECTOR_GET_PAIR = function_signature_to_4byte_selector("getPair(address,address)")

# Pair getReserves() returns (uint112 reserve0, uint112 reserve1, uint32 blockTimestampLast)
SELECTOR_GET_RESERVES = function_signature_to_4byte_selector("getReserves()")


def encode_get_pair(token_a: str, token_b: str) -> str:
    """Encode factory getPair call data as 0x-hex."""
    return "0x" + (SELECTOR_GET_PAIR + encode(["address", "address"], [token_a, token_b])).hex()


def decode_amounts_out(hex_result: str) -> list[int]:
    """
    Decode getAmountsOut response.

    Returns:
        Amounts along the route; the last entry is the output
    """
    if not hex_result or hex_result == "0x":
        raise QuoteError("Empty getAmountsOut response", ErrorCode.QUOTE_REVERT)

    data = hex_result[2:] if hex_result.startswith("0x") else hex_result
    try:
        (amounts,) = decode(["uint256[]"], bytes.fromhex(data))
    except (DecodingError, ValueError) as e:
        raise QuoteError(
            f"Undecodable getAmountsOut response: {e}",
            ErrorCode.QUOTE_REVERT,
            {"raw": hex_result[:100]},
        ) from e

    if not amounts:
        raise QuoteError("getAmountsOut returned no amounts", ErrorCode.QUOTE_REVERT)
    return list(amounts)


class ConstantProductQuoter:
    """
    Router-based quoter for constant-product venues.

    Usage:
        quoter = ConstantProductQuoter(provider, venue, bridge=wbnb)
        result = await quoter.quote(usdt, btcb, 3000 * 10**18)
    """

    def __init__(
        self,
        provider: RPCProvider,
        venue: Venue,
        bridge: Optional[Asset] = None,
    ):
        self.provider = provider
        self.venue = venue
        self.bridge = bridge

    async def _amounts_out(self, amount_in: int, path: list[str]) -> int:
        data = encode_get_amounts_out(amount_in, path)
        try:
            response = await self.provider.eth_call(self.venue.router, data)
        except RPCError as e:
            raise QuoteError(
                f"getAmountsOut reverted on {self.venue.venue_id}",
                ErrorCode.QUOTE_REVERT,
                {"venue_id": self.venue.venue_id, "path": path, "error": e.message},
            ) from e

        amount_out = decode_amounts_out(response.result)[-1]
        if amount_out == 0:
            raise QuoteError(
                f"Zero output on {self.venue.venue_id}",
                ErrorCode.QUOTE_ZERO_OUTPUT,
                {"venue_id": self.venue.venue_id, "path": path},
            )
        return amount_out

    async def quote(self, token_in: Asset, token_out: Asset, amount_in: int) -> VenueQuote:
        """
        Quote direct, then through the bridge asset.

        Raises:
            QuoteError: Neither route priced the swap
        """
        try:
            amount_out = await self._amounts_out(amount_in, [token_in.address, token_out.address])
            return VenueQuote(
                amount_in=amount_in,
                amount_out=amount_out,
                route=(token_in.symbol, token_out.symbol),
            )
        except QuoteError as direct_error:
            bridge = self.bridge
            if bridge is None or bridge.symbol in (token_in.symbol, token_out.symbol):
                raise

            logger.debug(
                f"Direct {token_in.symbol}->{token_out.symbol} failed on {self.venue.venue_id}, "
                f"trying via {bridge.symbol}",
                extra={"context": {"venue_id": self.venue.venue_id, "error": direct_error.message}},
            )
            amount_out = await self._amounts_out(
                amount_in, [token_in.address, bridge.address, token_out.address]
            )
            return VenueQuote(
                amount_in=amount_in,
                amount_out=amount_out,
                route=(token_in.symbol, bridge.symbol, token_out.symbol),
            )

    async def get_reserves(self, token_a: Asset, token_b: Asset) -> Optional[dict]:
        """
        Pool reserves via factory getPair + pair getReserves.

        Returns:
            {"pair_address", "reserve0", "reserve1"} in raw units, or
            None when the factory has no pair
        """
        if not self.venue.factory:
            return None

        data = encode_get_pair(token_a.address, token_b.address)
        response = await self.provider.eth_call(self.venue.factory, data)
        (pair_address,) = decode(["address"], bytes.fromhex(response.result[2:]))
        if int(pair_address, 16) == 0:
            return None

        response = await self.provider.eth_call(pair_address, "0x" + SELECTOR_GET_RESERVES.hex())
        reserve0, reserve1, _ = decode(
            ["uint112", "uint112", "uint32"], bytes.fromhex(response.result[2:])
        )
        return {"pair_address": pair_address, "reserve0": reserve0, "reserve1": reserve1}
