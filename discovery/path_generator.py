"""
discovery/path_generator.py - Circular path-space construction.

Enumerates every closed token cycle of 2..10 hops over the trading graph
for each flash-loan asset, assigns venues with four bounded strategies
instead of the full cross product, scores and filters the result, and
serves a deterministic per-cycle slice to the scan loop.

The generated path set is immutable and is shared read-only with the
rest of the system.
"""

from collections import Counter, defaultdict
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from core.constants import HOP_BANDS, AmmKind
from core.logging import get_logger
from core.models import CircularPath
from discovery.registry import AssetRegistry, TradingGraph, VenueRegistry
from strategy.config import PathSettings

logger = get_logger(__name__)


class PathGenerator:
    """
    Builds and serves the circular path universe.

    Every asset in the universe is a flash-loan asset. Venue assignment
    strategies per token cycle of N hops:
      (a) rotation over all venues, distinct per hop when N <= venue count
      (b) rotation over the high-liquidity venue subset
      (c) alternating constant-product / concentrated-liquidity venues
      (d) single-venue baseline, once per venue
    """

    def __init__(
        self,
        assets: AssetRegistry,
        graph: TradingGraph,
        venues: VenueRegistry,
        settings: Optional[PathSettings] = None,
    ):
        self.assets = assets
        self.graph = graph
        self.venues = venues
        self.settings = settings or PathSettings()
        self.flash_loan_assets: List[str] = assets.symbols
        self._paths: Tuple[CircularPath, ...] = ()
        self._by_asset: Dict[str, List[CircularPath]] = {}
        self.raw_candidates = 0

    @property
    def paths(self) -> Tuple[CircularPath, ...]:
        return self._paths

    # =========================================================================
    # GENERATION
    # =========================================================================

    def generate_all(self) -> List[CircularPath]:
        """
        Generate, score and filter the full path set.

        Returns:
            Filtered paths; also retained for paths_for_cycle()
        """
        candidates: List[CircularPath] = []
        for asset in self.flash_loan_assets:
            for token_cycle in self.token_cycles(asset):
                for combo in self.venue_combinations(len(token_cycle) - 1):
                    if not self.is_plausible(token_cycle, combo):
                        continue
                    candidates.append(self.build_path(token_cycle, combo))

        self.raw_candidates = len(candidates)
        filtered = self.filter_and_optimize(candidates)

        self._paths = tuple(filtered)
        self._by_asset = defaultdict(list)
        for path in self._paths:
            self._by_asset[path.flash_loan_asset].append(path)

        stats = self.path_statistics()
        logger.info(
            f"Generated {len(filtered)} circular paths from {len(candidates)} candidates",
            extra={
                "context": {
                    "by_asset": stats["by_flash_loan_asset"],
                    "by_hops": stats["by_hops"],
                    "avg_liquidity_score": stats["average_liquidity_score"],
                }
            },
        )
        return filtered

    def token_cycles(self, start: str) -> Iterator[Tuple[str, ...]]:
        """
        Depth-first enumeration of simple cycles through start.

        Intermediate assets are never revisited. A cycle of N hops has
        N - 1 intermediates and is emitted only when the last
        intermediate has an edge back to start.
        """
        min_hops = self.settings.min_hops
        max_hops = self.settings.max_hops
        stack: List[str] = [start]
        visited = {start}

        def dfs(current: str) -> Iterator[Tuple[str, ...]]:
            hops_if_closed = len(stack)
            if hops_if_closed >= min_hops and self.graph.has_edge(current, start):
                yield tuple(stack) + (start,)
            if hops_if_closed >= max_hops:
                return
            for nxt in self.graph.neighbors(current):
                if nxt in visited:
                    continue
                visited.add(nxt)
                stack.append(nxt)
                yield from dfs(nxt)
                stack.pop()
                visited.discard(nxt)

        # The start asset alone is never a cycle; begin from its neighbours.
        for first in self.graph.neighbors(start):
            visited.add(first)
            stack.append(first)
            yield from dfs(first)
            stack.pop()
            visited.discard(first)

    def venue_combinations(self, hops: int) -> List[Tuple[str, ...]]:
        """Bounded venue assignments for a cycle of the given hop count."""
        all_ids = self.venues.ids
        high_ids = self.venues.high_liquidity_ids
        cp_ids = self.venues.ids_of_kind(AmmKind.CONSTANT_PRODUCT)
        cl_ids = self.venues.ids_of_kind(AmmKind.CONCENTRATED_LIQUIDITY)
        combos: List[Tuple[str, ...]] = []

        # (a) rotation over all venues
        n = len(all_ids)
        offsets = n - hops + 1 if hops <= n else n
        for i in range(offsets):
            combos.append(tuple(all_ids[(i + j) % n] for j in range(hops)))

        # (b) rotation over high-liquidity venues
        if high_ids:
            for i in range(min(len(high_ids), hops)):
                combos.append(tuple(high_ids[(i + j) % len(high_ids)] for j in range(hops)))

        # (c) alternate constant-product / concentrated-liquidity
        if cp_ids and cl_ids:
            for i in range(min(2, hops - 1)):
                combos.append(
                    tuple(
                        cp_ids[i % len(cp_ids)] if j % 2 == 0 else cl_ids[i % len(cl_ids)]
                        for j in range(hops)
                    )
                )

        # (d) single-venue baseline
        for venue_id in all_ids:
            combos.append((venue_id,) * hops)

        return combos

    def is_plausible(self, token_cycle: Sequence[str], venues: Sequence[str]) -> bool:
        """Every hop pair must be an edge of the trading graph."""
        return all(
            self.graph.has_edge(token_cycle[i], token_cycle[i + 1])
            for i in range(len(venues))
        )

    def build_path(self, token_cycle: Sequence[str], venues: Sequence[str]) -> CircularPath:
        assets = tuple(token_cycle)
        venue_ids = tuple(venues)
        return CircularPath(
            assets=assets,
            venues=venue_ids,
            liquidity_score=self.liquidity_score(assets),
            complexity=self.complexity(venue_ids),
        )

    # =========================================================================
    # SCORING
    # =========================================================================

    def liquidity_score(self, assets: Sequence[str]) -> int:
        """
        Reward deep assets, native presence and stable pairs.

        Counted over the full asset sequence, so the flash-loan asset
        contributes twice.
        """
        s = self.settings
        score = 0
        stable_entries = 0
        has_native = False
        for symbol in assets:
            asset = self.assets.get(symbol)
            score += s.tier_points.get(asset.liquidity_tier.value, 0)
            if asset.is_stable:
                stable_entries += 1
            if asset.is_native:
                has_native = True

        if self.assets.get(assets[0]).is_high_liquidity:
            score += s.high_liquidity_flash_bonus
        if has_native:
            score += s.native_asset_bonus
        if stable_entries >= 2:
            score += s.stable_pair_bonus

        hops = len(assets) - 1
        if hops > s.long_path_threshold:
            score -= (hops - s.long_path_threshold) * s.long_path_penalty

        return max(score, 0)

    def complexity(self, venues: Sequence[str]) -> int:
        s = self.settings
        cl_hops = sum(1 for v in venues if self.venues.get(v).is_concentrated)
        return (
            len(venues) * s.complexity_per_hop
            + len(set(venues)) * s.complexity_per_venue
            + cl_hops * s.complexity_per_cl_hop
        )

    # =========================================================================
    # FILTERING
    # =========================================================================

    def filter_and_optimize(self, paths: Sequence[CircularPath]) -> List[CircularPath]:
        """
        Deduplicate, quality-filter, rank and cap per flash-loan asset.

        Sorting is stable, so equal-score paths keep generation order.
        """
        s = self.settings
        seen = set()
        unique: List[CircularPath] = []
        for path in paths:
            key = path.dedupe_key()
            if key in seen:
                continue
            seen.add(key)
            unique.append(path)

        quality = [
            p for p in unique
            if p.is_circular
            and s.min_hops <= p.hops <= s.max_hops
            and p.liquidity_score >= s.min_liquidity_score
            and not (p.hops > 3 and p.distinct_venues < 2)
            and p.flash_loan_asset in self.assets
        ]

        ranked = sorted(quality, key=lambda p: p.rank_score, reverse=True)

        per_asset: Counter = Counter()
        balanced: List[CircularPath] = []
        for path in ranked:
            if per_asset[path.flash_loan_asset] >= s.max_paths_per_asset:
                continue
            per_asset[path.flash_loan_asset] += 1
            balanced.append(path)

        logger.debug(
            f"Path filter: {len(paths)} raw, {len(unique)} unique, "
            f"{len(quality)} quality, {len(balanced)} kept",
            extra={"context": {"per_asset": dict(per_asset)}},
        )
        return balanced

    # =========================================================================
    # QUERIES
    # =========================================================================

    def asset_for_cycle(self, cycle_index: int) -> str:
        return self.flash_loan_assets[cycle_index % len(self.flash_loan_assets)]

    def band_for_cycle(self, cycle_index: int) -> Tuple[int, int]:
        band = (cycle_index // len(self.flash_loan_assets)) % len(HOP_BANDS)
        return HOP_BANDS[band]

    def paths_for_asset(self, asset: str) -> List[CircularPath]:
        return list(self._by_asset.get(asset, []))

    def paths_for_cycle(self, cycle_index: int) -> List[CircularPath]:
        """
        Deterministic slice for one scan cycle.

        asset = assets[i mod K], band = (i div K) mod 4; returns the
        top paths_per_cycle paths of that asset inside the band.
        """
        asset = self.asset_for_cycle(cycle_index)
        low, high = self.band_for_cycle(cycle_index)
        matching = [p for p in self._by_asset.get(asset, []) if low <= p.hops <= high]
        return matching[: self.settings.paths_per_cycle]

    def path_statistics(self) -> Dict:
        """Counts by hop, asset, venue usage and liquidity bucket."""
        by_hops: Counter = Counter()
        by_asset: Counter = Counter()
        by_venue: Counter = Counter()
        buckets = {"high": 0, "medium": 0, "low": 0}
        total_complexity = 0
        total_liquidity = 0

        for path in self._paths:
            by_hops[path.hops] += 1
            by_asset[path.flash_loan_asset] += 1
            by_venue.update(path.venues)
            if path.liquidity_score >= 50:
                buckets["high"] += 1
            elif path.liquidity_score >= 30:
                buckets["medium"] += 1
            else:
                buckets["low"] += 1
            total_complexity += path.complexity
            total_liquidity += path.liquidity_score

        count = len(self._paths)
        return {
            "total_paths": count,
            "raw_candidates": self.raw_candidates,
            "by_hops": dict(sorted(by_hops.items())),
            "by_flash_loan_asset": dict(by_asset),
            "by_venue_usage": dict(by_venue),
            "by_liquidity_score": buckets,
            "average_complexity": round(total_complexity / count, 2) if count else 0,
            "average_liquidity_score": round(total_liquidity / count, 2) if count else 0,
        }
