"""
discovery/registry.py - Asset universe, trading graph and venue registry.

Built once at startup from config/tokens.yaml and config/dexes.yaml and
read-only afterwards. Disabled venues are dropped at load time, so a
venue change requires a restart.

Pipeline:
1. Parse assets (address, decimals, tier, loan base, reference price)
2. Parse directed trading pairs; every edge must join two known assets
3. Parse venues; reject unknown kinds and duplicate settlement ids
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from config import load_dexes, load_tokens
from core.constants import AmmKind, CL_FEE_TIERS, LiquidityTier
from core.exceptions import ConfigError
from core.logging import get_logger
from core.models import Asset, Venue

logger = get_logger(__name__)


# =============================================================================
# ASSETS
# =============================================================================

class AssetRegistry:
    """Symbol-keyed asset universe, in config order."""

    def __init__(self, assets: List[Asset], bridge_symbol: Optional[str] = None):
        self._assets: Dict[str, Asset] = {}
        for asset in assets:
            if asset.symbol in self._assets:
                raise ConfigError(f"Duplicate asset: {asset.symbol}")
            self._assets[asset.symbol] = asset

        if bridge_symbol is None:
            bridge_symbol = next((a.symbol for a in assets if a.is_native), None)
        if bridge_symbol is not None and bridge_symbol not in self._assets:
            raise ConfigError(f"Bridge asset {bridge_symbol} is not in the universe")
        self.bridge_symbol = bridge_symbol

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterator[Asset]:
        return iter(self._assets.values())

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._assets

    def get(self, symbol: str) -> Asset:
        try:
            return self._assets[symbol]
        except KeyError:
            raise ConfigError(f"Unknown asset: {symbol}") from None

    @property
    def symbols(self) -> List[str]:
        return list(self._assets)

    @property
    def native(self) -> Optional[Asset]:
        return next((a for a in self._assets.values() if a.is_native), None)

    @property
    def bridge(self) -> Optional[Asset]:
        return self._assets.get(self.bridge_symbol) if self.bridge_symbol else None

    def convert_native(self, amount: Decimal, symbol: str) -> Decimal:
        """
        Express a native-asset amount in another asset via reference prices.

        Returns amount unchanged for the native asset itself, or when
        either reference price is missing.
        """
        native = self.native
        target = self.get(symbol)
        if native is None or target.symbol == native.symbol:
            return amount
        if target.usd_price <= 0 or native.usd_price <= 0:
            logger.warning(
                f"No reference price to convert native amount into {symbol}",
                extra={"context": {"asset": symbol}},
            )
            return amount
        return amount * native.usd_price / target.usd_price


class TradingGraph:
    """
    Directed edges between assets that have at least one tradable pool.

    Neighbour order follows config order, which keeps path generation
    deterministic.
    """

    def __init__(self, edges: Dict[str, List[str]], assets: AssetRegistry):
        self._edges: Dict[str, Tuple[str, ...]] = {}
        for src, targets in edges.items():
            if src not in assets:
                raise ConfigError(f"Trading pair source {src} is not a known asset")
            cleaned = []
            for dst in targets:
                if dst not in assets:
                    raise ConfigError(f"Trading pair {src}->{dst} references unknown asset")
                if dst == src:
                    raise ConfigError(f"Trading pair {src}->{dst} is a self-loop")
                if dst not in cleaned:
                    cleaned.append(dst)
            self._edges[src] = tuple(cleaned)

    def neighbors(self, symbol: str) -> Tuple[str, ...]:
        return self._edges.get(symbol, ())

    def has_edge(self, src: str, dst: str) -> bool:
        return dst in self._edges.get(src, ())

    def edge_count(self) -> int:
        return sum(len(v) for v in self._edges.values())

    def pairs(self) -> List[Tuple[str, str]]:
        return [(src, dst) for src, dsts in self._edges.items() for dst in dsts]


# =============================================================================
# VENUES
# =============================================================================

class VenueRegistry:
    """Enabled venues keyed by venue id, in config order."""

    def __init__(self, venues: List[Venue]):
        self._venues: Dict[str, Venue] = {}
        settlement_ids: Dict[int, str] = {}
        for venue in venues:
            if not venue.enabled:
                logger.info(
                    f"Venue {venue.venue_id} disabled, skipping",
                    extra={"context": {"venue_id": venue.venue_id}},
                )
                continue
            if venue.venue_id in self._venues:
                raise ConfigError(f"Duplicate venue: {venue.venue_id}")
            if venue.settlement_id in settlement_ids:
                raise ConfigError(
                    f"Venues {settlement_ids[venue.settlement_id]} and {venue.venue_id} "
                    f"share settlement id {venue.settlement_id}"
                )
            settlement_ids[venue.settlement_id] = venue.venue_id
            self._venues[venue.venue_id] = venue

    def __len__(self) -> int:
        return len(self._venues)

    def __iter__(self) -> Iterator[Venue]:
        return iter(self._venues.values())

    def __contains__(self, venue_id: object) -> bool:
        return venue_id in self._venues

    def get(self, venue_id: str) -> Venue:
        try:
            return self._venues[venue_id]
        except KeyError:
            raise ConfigError(f"Unknown or disabled venue: {venue_id}") from None

    @property
    def ids(self) -> List[str]:
        return list(self._venues)

    @property
    def high_liquidity_ids(self) -> List[str]:
        return [v.venue_id for v in self._venues.values() if v.high_liquidity]

    def ids_of_kind(self, kind: AmmKind) -> List[str]:
        return [v.venue_id for v in self._venues.values() if v.kind == kind]


# =============================================================================
# LOADING
# =============================================================================

def parse_asset(symbol: str, data: Dict[str, Any]) -> Asset:
    """Build an Asset from a tokens.yaml entry."""
    try:
        return Asset(
            symbol=symbol,
            address=data["address"],
            decimals=int(data.get("decimals", 18)),
            is_stable=bool(data.get("is_stable", False)),
            is_native=bool(data.get("is_native", False)),
            liquidity_tier=LiquidityTier(data.get("liquidity_tier", "low")),
            loan_base=Decimal(str(data.get("loan_base", "1"))),
            usd_price=Decimal(str(data.get("usd_price", "0"))),
        )
    except (KeyError, ValueError, ArithmeticError) as e:
        raise ConfigError(f"Invalid asset {symbol}: {e}", {"symbol": symbol}) from e


def parse_venue(venue_id: str, data: Dict[str, Any]) -> Venue:
    """Build a Venue from a dexes.yaml entry."""
    try:
        kind = AmmKind(data["kind"])
        fee_tiers: Tuple[int, ...] = ()
        if kind == AmmKind.CONCENTRATED_LIQUIDITY:
            fee_tiers = tuple(int(t) for t in data.get("fee_tiers", CL_FEE_TIERS))
            if not data.get("quoter"):
                raise ValueError("concentrated-liquidity venue needs a quoter address")
        return Venue(
            venue_id=venue_id,
            name=data.get("name", venue_id),
            kind=kind,
            router=data["router"],
            settlement_id=int(data["settlement_id"]),
            quoter=data.get("quoter"),
            factory=data.get("factory"),
            fee=Decimal(str(data.get("fee", "0"))),
            fee_tiers=fee_tiers,
            high_liquidity=bool(data.get("high_liquidity", False)),
            enabled=bool(data.get("enabled", True)),
        )
    except (KeyError, ValueError, ArithmeticError) as e:
        raise ConfigError(f"Invalid venue {venue_id}: {e}", {"venue_id": venue_id}) from e


def load_universe(
    config_dir: Optional[Path] = None,
) -> Tuple[AssetRegistry, TradingGraph, VenueRegistry]:
    """
    Load assets, trading graph and venues from config.

    Returns:
        (assets, graph, venues)
    """
    tokens = load_tokens(config_dir)
    dexes = load_dexes(config_dir)

    assets = AssetRegistry(
        [parse_asset(sym, data) for sym, data in (tokens.get("assets") or {}).items()],
        bridge_symbol=tokens.get("bridge"),
    )
    graph = TradingGraph(tokens.get("trading_pairs") or {}, assets)
    venues = VenueRegistry(
        [parse_venue(vid, data) for vid, data in (dexes.get("venues") or {}).items()]
    )

    if len(assets) == 0:
        raise ConfigError("No assets configured")
    if len(venues) == 0:
        raise ConfigError("No enabled venues configured")

    logger.info(
        f"Universe loaded: {len(assets)} assets, {graph.edge_count()} edges, {len(venues)} venues",
        extra={
            "context": {
                "assets": assets.symbols,
                "venues": venues.ids,
                "bridge": assets.bridge_symbol,
            }
        },
    )
    return assets, graph, venues
