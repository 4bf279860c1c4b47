"""
tests/unit/test_path_generator.py - Circular path enumeration, scoring and filtering.
"""

import pytest

from core.models import CircularPath
from discovery.path_generator import PathGenerator
from strategy.config import PathSettings


@pytest.fixture
def generator(assets, graph, venues):
    return PathGenerator(assets, graph, venues, PathSettings(max_paths_per_asset=40))


@pytest.fixture
def generated(generator):
    return generator.generate_all()


class TestTokenCycles:
    def test_cycles_are_simple_and_closed(self, generator, graph):
        cycles = list(generator.token_cycles("WBNB"))
        assert ("WBNB", "USDT", "WBNB") in cycles
        for cycle in cycles:
            assert cycle[0] == cycle[-1] == "WBNB"
            intermediates = cycle[1:-1]
            assert len(set(intermediates)) == len(intermediates)
            assert "WBNB" not in intermediates
            for a, b in zip(cycle, cycle[1:]):
                assert graph.has_edge(a, b)

    def test_hop_limits(self, assets, graph, venues):
        gen = PathGenerator(assets, graph, venues, PathSettings(min_hops=3, max_hops=3))
        cycles = list(gen.token_cycles("CAKE"))
        assert cycles
        assert all(len(c) - 1 == 3 for c in cycles)


class TestVenueCombinations:
    def test_count_for_three_hops(self, generator):
        # 4 rotations + 3 high-liquidity + 2 alternating + 6 single-venue
        combos = generator.venue_combinations(3)
        assert len(combos) == 15
        assert all(len(c) == 3 for c in combos)
        assert ("PANCAKESWAP_V2", "PANCAKESWAP_V3", "BISWAP") in combos
        assert ("PANCAKESWAP_V2", "PANCAKESWAP_V3", "PANCAKESWAP_V2") in combos
        assert ("MDEX", "MDEX", "MDEX") in combos

    def test_long_cycle_rotation_wraps(self, generator):
        combos = generator.venue_combinations(8)
        rotations = combos[:6]
        assert len(rotations) == 6
        assert rotations[0][6:] == ("PANCAKESWAP_V2", "PANCAKESWAP_V3")


class TestScoring:
    def test_liquidity_score_bonuses(self, generator):
        # 4 high entries (40) + high flash (25) + native (20)
        assert generator.liquidity_score(("WBNB", "USDT", "BTCB", "WBNB")) == 85
        # plus stable pair (15)
        assert generator.liquidity_score(("WBNB", "USDT", "USDC", "WBNB")) == 100
        # medium flash asset, no native, single stable
        assert generator.liquidity_score(("CAKE", "USDT", "CAKE")) == 20

    def test_long_path_penalty(self, generator):
        # 9 medium entries (45) minus (8 - 6) * 5
        assert generator.liquidity_score(("CAKE",) * 9) == 35

    def test_complexity(self, generator):
        # 3 hops * 10 + 3 venues * 5 + 1 concentrated hop * 15
        assert generator.complexity(("PANCAKESWAP_V2", "PANCAKESWAP_V3", "BISWAP")) == 60


class TestGenerateAll:
    def test_path_invariants(self, generated, graph, generator):
        assert generated
        for path in generated:
            assert path.is_circular
            assert generator.settings.min_hops <= path.hops <= generator.settings.max_hops
            assert len(path.venues) == path.hops
            assert path.liquidity_score >= generator.settings.min_liquidity_score
            if path.hops > 3:
                assert path.distinct_venues >= 2
            for a, b in path.hop_pairs:
                assert graph.has_edge(a, b)

    def test_no_duplicates(self, generated):
        keys = [p.dedupe_key() for p in generated]
        assert len(keys) == len(set(keys))

    def test_per_asset_cap_and_order(self, generator, generated):
        for asset in generator.flash_loan_assets:
            paths = generator.paths_for_asset(asset)
            assert len(paths) <= 40
            scores = [p.rank_score for p in paths]
            assert scores == sorted(scores, reverse=True)

    def test_deterministic(self, assets, graph, venues, generated):
        again = PathGenerator(assets, graph, venues, PathSettings(max_paths_per_asset=40)).generate_all()
        assert [p.path_id for p in again] == [p.path_id for p in generated]

    def test_statistics(self, generator, generated):
        stats = generator.path_statistics()
        assert stats["total_paths"] == len(generated)
        assert sum(stats["by_hops"].values()) == len(generated)
        assert sum(stats["by_liquidity_score"].values()) == len(generated)
        assert stats["raw_candidates"] >= len(generated)


class TestFilter:
    def test_duplicates_removed(self, generator):
        path = generator.build_path(("WBNB", "USDT", "WBNB"), ("BISWAP", "BISWAP"))
        twin = generator.build_path(("WBNB", "USDT", "WBNB"), ("BISWAP", "BISWAP"))
        assert generator.filter_and_optimize([path, twin]) == [path]

    def test_single_venue_long_path_dropped(self, generator):
        path = generator.build_path(
            ("WBNB", "USDT", "USDC", "BTCB", "WBNB"), ("MDEX",) * 4
        )
        assert generator.filter_and_optimize([path]) == []

    def test_low_liquidity_dropped(self, generator):
        path = CircularPath(("CAKE", "USDT", "CAKE"), ("MDEX", "MDEX"), liquidity_score=10)
        assert generator.filter_and_optimize([path]) == []


class TestCycleSelection:
    def test_rotation(self, generator, generated):
        assert generator.asset_for_cycle(0) == "WBNB"
        assert generator.asset_for_cycle(1) == "BTCB"
        assert generator.asset_for_cycle(6) == "WBNB"
        assert generator.band_for_cycle(0) == (2, 3)
        assert generator.band_for_cycle(6) == (4, 5)
        assert generator.band_for_cycle(12) == (6, 8)
        assert generator.band_for_cycle(18) == (9, 10)
        assert generator.band_for_cycle(24) == (2, 3)

    def test_paths_for_cycle(self, generator, generated):
        paths = generator.paths_for_cycle(0)
        assert 0 < len(paths) <= generator.settings.paths_per_cycle
        assert all(p.flash_loan_asset == "WBNB" and 2 <= p.hops <= 3 for p in paths)

    def test_empty_band(self, generator, generated):
        # six assets cannot form a simple cycle of nine or more hops
        assert generator.paths_for_cycle(18) == []
