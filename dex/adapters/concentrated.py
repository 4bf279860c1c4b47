"""
dex/adapters/concentrated.py - Concentrated-liquidity quoter adapter.

Quoter V1 interface:
    quoteExactInputSingle(address tokenIn, address tokenOut, uint24 fee,
                          uint256 amountIn, uint160 sqrtPriceLimitX96)
    returns (uint256 amountOut)

Fee tiers are tried in configured order; the first non-zero answer
wins. Quoters that return extra values (V2-style) still lead with
amountOut, so only the first word is decoded.
"""

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
# ABI ENCODING (Quoter V1)
# =============================================================================

QUOTE_EXACT_INPUT_SINGLE_SIGNATURE = "quoteExactInputSingle(address,address,uint24,uint256,uint160)"
SELECTOR_QUOTE_EXACT_INPUT_SINGLE = function_signature_to_4byte_selector(
    QUOTE_EXACT_INPUT_SINGLE_SIGNATURE
)


def encode_quote_exact_input_single(
    token_in: str,
    token_out: str,
    fee: int,
    amount_in: int,
    sqrt_price_limit_x96: int = 0,
) -> str:
    """Encode quoteExactInputSingle call data as 0x-hex."""
    args = encode(
        ["address", "address", "uint24", "uint256", "uint160"],
        [token_in, token_out, fee, amount_in, sqrt_price_limit_x96],
    )
    return "0x" + (SELECTOR_QUOTE_EXACT_INPUT_SINGLE + args).hex()


def decode_quote_amount_out(hex_result: str) -> int:
    """Decode amountOut from the first 32-byte word."""
    data = hex_result[2:] if hex_result and hex_result.startswith("0x") else (hex_result or "")
    if len(data) < 64:
        raise QuoteError(
            f"Quote response too short: {len(data)} chars",
            ErrorCode.QUOTE_REVERT,
            {"raw": (hex_result or "")[:100]},
        )
    try:
        (amount_out,) = decode(["uint256"], bytes.fromhex(data[:64]))
    except (DecodingError, ValueError) as e:
        raise QuoteError(f"Undecodable quote response: {e}", ErrorCode.QUOTE_REVERT) from e
    return amount_out


class ConcentratedLiquidityQuoter:
    """Fee-tier-scanning quoter for concentrated-liquidity venues."""

    def __init__(self, provider: RPCProvider, venue: Venue):
        if not venue.quoter:
            raise ValueError(f"Venue {venue.venue_id} has no quoter address")
        self.provider = provider
        self.venue = venue

    async def quote_tier(self, token_in: Asset, token_out: Asset, fee: int, amount_in: int) -> int:
        """Raw amount out for one fee tier."""
        data = encode_quote_exact_input_single(token_in.address, token_out.address, fee, amount_in)
        try:
            response = await self.provider.eth_call(self.venue.quoter, data)
        except RPCError as e:
            raise QuoteError(
                f"quoteExactInputSingle reverted on {self.venue.venue_id} fee {fee}",
                ErrorCode.QUOTE_REVERT,
                {"venue_id": self.venue.venue_id, "fee": fee, "error": e.message},
            ) from e
        return decode_quote_amount_out(response.result)

    async def quote(self, token_in: Asset, token_out: Asset, amount_in: int) -> VenueQuote:
        """
        Try each fee tier in order.

        Raises:
            QuoteError: No tier returned a non-zero amount
        """
        tried = []
        for fee in self.venue.fee_tiers:
            try:
                amount_out = await self.quote_tier(token_in, token_out, fee, amount_in)
            except QuoteError as e:
                tried.append({"fee": fee, "error": e.code.value})
                continue
            if amount_out > 0:
                return VenueQuote(
                    amount_in=amount_in,
                    amount_out=amount_out,
                    fee_tier=fee,
                    route=(token_in.symbol, token_out.symbol),
                )
            tried.append({"fee": fee, "error": ErrorCode.QUOTE_ZERO_OUTPUT.value})

        logger.debug(
            f"No fee tier priced {token_in.symbol}->{token_out.symbol} on {self.venue.venue_id}",
            extra={"context": {"venue_id": self.venue.venue_id, "tried": tried}},
        )
        raise QuoteError(
            f"No pool for {token_in.symbol}/{token_out.symbol} on {self.venue.venue_id}",
            ErrorCode.QUOTE_REVERT,
            {"venue_id": self.venue.venue_id, "tried": tried},
        )
