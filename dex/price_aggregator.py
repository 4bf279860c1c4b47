"""
dex/price_aggregator.py - Multi-venue quoting with a TTL cache.

Answers amount-out questions for (venue, token_in, token_out, amount)
in token units, dispatching to the venue's quoting strategy. Absence of
a quote is None, never zero, and is never cached.

The cache is the only state written back during a scan cycle. Entries
are written per key; a racing duplicate fetch of the same key is
harmless.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from core.exceptions import InfraError, QuoteError
from core.logging import get_logger
from core.math import from_raw, relative_deviation_percent, to_raw
from core.models import PriceQuote
from core.time import now_ms
from dex.adapters.base import VenueQuoter
from discovery.registry import AssetRegistry
from strategy.config import QuoteSettings

logger = get_logger(__name__)

CacheKey = Tuple[str, str, str, str]
Pair = Tuple[str, str]
BatchQuotes = Dict[Pair, Dict[str, Optional[PriceQuote]]]


@dataclass
class _CacheEntry:
    quote: PriceQuote
    stored_ms: int


class QuoteCache:
    """
    TTL cache of successful quotes.

    An entry older than ttl_ms is treated as absent and evicted on read.
    """

    def __init__(self, ttl_ms: int = 5000, clock: Callable[[], int] = now_ms):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: Dict[CacheKey, _CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(venue_id: str, token_in: str, token_out: str, amount_in: Decimal) -> CacheKey:
        # normalize() so 10 and 10.0 share an entry
        return (venue_id, token_in, token_out, str(amount_in.normalize()))

    def get(self, key: CacheKey) -> Optional[PriceQuote]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() - entry.stored_ms >= self.ttl_ms:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.quote

    def put(self, key: CacheKey, quote: PriceQuote) -> None:
        self._entries[key] = _CacheEntry(quote=quote, stored_ms=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "ttl_ms": self.ttl_ms,
            "hits": self.hits,
            "misses": self.misses,
        }


class PriceAggregator:
    """
    Venue-agnostic price source for the scanner.

    Usage:
        aggregator = PriceAggregator(assets, build_quoters(venues, provider, assets.bridge))
        quote = await aggregator.quote("BISWAP", "USDT", "BTCB", Decimal("3000"))
    """

    def __init__(
        self,
        assets: AssetRegistry,
        quoters: Dict[str, VenueQuoter],
        settings: Optional[QuoteSettings] = None,
        cache: Optional[QuoteCache] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.assets = assets
        self.quoters = quoters
        self.settings = settings or QuoteSettings()
        self.cache = cache or QuoteCache(self.settings.cache_ttl_ms, clock)
        self._clock = clock
        self._sleep = sleep

    @property
    def venue_ids(self) -> List[str]:
        return list(self.quoters)

    async def quote(
        self,
        venue_id: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
    ) -> Optional[PriceQuote]:
        """
        Amount out for amount_in on one venue.

        Returns:
            PriceQuote, or None when the venue cannot price the swap

        Raises:
            InfraError: The chain could not be reached at all
        """
        if amount_in <= 0:
            return None

        key = QuoteCache.key(venue_id, token_in, token_out, amount_in)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        quoter = self.quoters.get(venue_id)
        if quoter is None:
            logger.warning(
                f"No quoter for venue {venue_id}",
                extra={"context": {"venue_id": venue_id}},
            )
            return None

        asset_in = self.assets.get(token_in)
        asset_out = self.assets.get(token_out)
        raw_in = to_raw(amount_in, asset_in.decimals)
        if raw_in == 0:
            return None

        try:
            result = await quoter.quote(asset_in, asset_out, raw_in)
        except QuoteError as e:
            logger.debug(
                f"No quote {token_in}->{token_out} on {venue_id}: {e}",
                extra={"context": {"venue_id": venue_id, "code": e.code.value}},
            )
            return None

        quote = PriceQuote(
            venue_id=venue_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=from_raw(result.amount_out, asset_out.decimals),
            timestamp_ms=self._clock(),
            fee_tier=result.fee_tier,
            route=result.route,
        )
        self.cache.put(key, quote)
        return quote

    async def price_impact(
        self,
        venue_id: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
    ) -> Optional[Decimal]:
        """
        Percent deviation of the trade's unit price from a small reference trade.

        |p_ref - p| / p_ref * 100, where p_ref prices reference_amount.
        """
        reference = await self.quote(venue_id, token_in, token_out, self.settings.reference_amount)
        actual = await self.quote(venue_id, token_in, token_out, amount_in)
        if reference is None or actual is None or reference.price == 0:
            return None
        return relative_deviation_percent(reference.price, actual.price)

    async def batch_quote(
        self,
        pairs: Iterable[Pair],
        amount_in: Optional[Decimal] = None,
    ) -> BatchQuotes:
        """
        Quote every pair on every venue.

        Venues are queried concurrently per pair with a pacing delay
        between pairs. A failing (venue, pair) becomes None without
        affecting the others.

        Args:
            pairs: (token_in, token_out) symbols; duplicates are quoted once
            amount_in: Fixed amount, or None for each token_in's loan base

        Raises:
            InfraError: Every attempt failed on infrastructure
        """
        unique_pairs = list(dict.fromkeys(pairs))
        results: BatchQuotes = {}
        attempts = 0
        infra_failures = 0
        last_infra: Optional[InfraError] = None

        for index, (token_in, token_out) in enumerate(unique_pairs):
            if index > 0 and self.settings.pacing_ms > 0:
                await self._sleep(self.settings.pacing_ms / 1000)

            amount = amount_in if amount_in is not None else self.assets.get(token_in).loan_base
            venue_ids = self.venue_ids
            outcomes = await asyncio.gather(
                *(self.quote(v, token_in, token_out, amount) for v in venue_ids),
                return_exceptions=True,
            )

            per_venue: Dict[str, Optional[PriceQuote]] = {}
            for venue_id, outcome in zip(venue_ids, outcomes):
                attempts += 1
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, InfraError):
                        infra_failures += 1
                        last_infra = outcome
                    logger.debug(
                        f"Batch quote failed {token_in}->{token_out} on {venue_id}: {outcome}",
                        extra={"context": {"venue_id": venue_id}},
                    )
                    per_venue[venue_id] = None
                else:
                    per_venue[venue_id] = outcome
            results[(token_in, token_out)] = per_venue

        if attempts and infra_failures == attempts:
            raise InfraError(
                "Quote source unreachable for every venue",
                details={
                    "pairs": len(unique_pairs),
                    "attempts": attempts,
                    "last_error": str(last_infra),
                },
            )
        return results

    async def best_quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
    ) -> Optional[PriceQuote]:
        """Highest amount out across venues, or None when no venue quotes."""
        batch = await self.batch_quote([(token_in, token_out)], amount_in)
        quotes = [q for q in batch[(token_in, token_out)].values() if q is not None]
        if not quotes:
            return None
        return max(quotes, key=lambda q: q.amount_out)

    async def liquidity_info(self, venue_id: str, token_a: str, token_b: str) -> Optional[dict]:
        """Raw pool reserves where the venue exposes them (constant-product)."""
        quoter = self.quoters.get(venue_id)
        get_reserves = getattr(quoter, "get_reserves", None)
        if get_reserves is None:
            return None
        return await get_reserves(self.assets.get(token_a), self.assets.get(token_b))

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> dict:
        return self.cache.stats()
