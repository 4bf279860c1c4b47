# PATH: core/models.py
"""
Core data models for CYCLEARB.

Assets and venues are loaded once at startup and never mutated. Paths
are immutable once generated. Quotes, legs and opportunities are
produced per scan cycle; none of them are shared across cycles except
through the quote cache.

PATH_ID CONTRACT:
  Format: "arb_{sha1(assets:venues)[:12]}"
  Example: "arb_3f9a0c1d2e4b" for WBNB-USDT-BTCB-WBNB:PANCAKESWAP_V2-BISWAP-PANCAKESWAP_V3
  Deterministic given the same asset and venue sequences.
"""

import hashlib
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from core.constants import (
    PATH_ID_PREFIX,
    AmmKind,
    FailureReason,
    LiquidityTier,
    ProfitSource,
    RiskLevel,
)


def generate_path_id(assets: Tuple[str, ...], venues: Tuple[str, ...]) -> str:
    """Stable path id derived from the asset and venue sequences."""
    key = f"{'-'.join(assets)}:{'-'.join(venues)}"
    return PATH_ID_PREFIX + hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]


# ============================================================================
# STATIC UNIVERSE
# ============================================================================

@dataclass(frozen=True)
class Asset:
    """Fungible token tradable on the chain."""
    symbol: str
    address: str
    decimals: int = 18
    is_stable: bool = False
    is_native: bool = False
    liquidity_tier: LiquidityTier = LiquidityTier.LOW
    loan_base: Decimal = Decimal("1")
    usd_price: Decimal = Decimal("0")

    @property
    def is_high_liquidity(self) -> bool:
        return self.liquidity_tier == LiquidityTier.HIGH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "address": self.address,
            "decimals": self.decimals,
            "is_stable": self.is_stable,
            "is_native": self.is_native,
            "liquidity_tier": self.liquidity_tier.value,
            "loan_base": str(self.loan_base),
            "usd_price": str(self.usd_price),
        }


@dataclass(frozen=True)
class Venue:
    """AMM instance addressable by a stable identifier."""
    venue_id: str
    name: str
    kind: AmmKind
    router: str
    settlement_id: int
    quoter: Optional[str] = None
    factory: Optional[str] = None
    fee: Decimal = Decimal("0")
    fee_tiers: Tuple[int, ...] = ()
    high_liquidity: bool = False
    enabled: bool = True

    @property
    def is_concentrated(self) -> bool:
        return self.kind == AmmKind.CONCENTRATED_LIQUIDITY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "name": self.name,
            "kind": self.kind.value,
            "router": self.router,
            "quoter": self.quoter,
            "settlement_id": self.settlement_id,
            "fee": str(self.fee),
            "fee_tiers": list(self.fee_tiers),
            "high_liquidity": self.high_liquidity,
            "enabled": self.enabled,
        }


# ============================================================================
# PATHS
# ============================================================================

@dataclass(frozen=True)
class CircularPath:
    """
    Candidate trade cycle.

    assets has hops + 1 entries and starts and ends on the flash-loan
    asset; venues has one entry per hop.
    """
    assets: Tuple[str, ...]
    venues: Tuple[str, ...]
    liquidity_score: int = 0
    complexity: int = 1
    path_id: str = field(default="", compare=False)

    def __post_init__(self):
        if len(self.assets) < 2:
            raise ValueError(f"Path needs at least two asset entries: {self.assets}")
        if len(self.venues) != len(self.assets) - 1:
            raise ValueError(
                f"Path has {len(self.assets) - 1} hops but {len(self.venues)} venues"
            )
        if not self.path_id:
            object.__setattr__(self, "path_id", generate_path_id(self.assets, self.venues))

    @property
    def hops(self) -> int:
        return len(self.venues)

    @property
    def flash_loan_asset(self) -> str:
        return self.assets[0]

    @property
    def is_circular(self) -> bool:
        return self.assets[0] == self.assets[-1]

    @property
    def hop_pairs(self) -> List[Tuple[str, str]]:
        return list(zip(self.assets[:-1], self.assets[1:]))

    @property
    def distinct_venues(self) -> int:
        return len(set(self.venues))

    @property
    def rank_score(self) -> float:
        """Liquidity per unit of complexity; the filter's sort key."""
        return self.liquidity_score / math.sqrt(max(self.complexity, 1))

    def dedupe_key(self) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        return (self.assets, self.venues)

    def describe(self) -> str:
        return " -> ".join(
            f"{a}[{v}]" for a, v in zip(self.assets[:-1], self.venues)
        ) + f" -> {self.assets[-1]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path_id": self.path_id,
            "assets": list(self.assets),
            "venues": list(self.venues),
            "hops": self.hops,
            "liquidity_score": self.liquidity_score,
            "complexity": self.complexity,
        }


# ============================================================================
# QUOTES / OPPORTUNITIES
# ============================================================================

@dataclass(frozen=True)
class PriceQuote:
    """Amount-out answer from one venue, in token units."""
    venue_id: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    timestamp_ms: int
    fee_tier: Optional[int] = None
    route: Tuple[str, ...] = ()

    @property
    def price(self) -> Decimal:
        if self.amount_in == 0:
            return Decimal("0")
        return self.amount_out / self.amount_in

    @property
    def via_bridge(self) -> bool:
        return len(self.route) > 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "price": str(self.price),
            "timestamp_ms": self.timestamp_ms,
            "fee_tier": self.fee_tier,
            "route": list(self.route),
        }


@dataclass(frozen=True)
class SwapLeg:
    """One evaluated hop of an opportunity."""
    index: int
    venue_id: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    price: Decimal
    price_impact: Decimal
    slippage: Decimal = Decimal("0")
    fee_tier: Optional[int] = None
    usd_notional: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "venue_id": self.venue_id,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "price": str(self.price),
            "price_impact": str(self.price_impact),
            "slippage": str(self.slippage),
            "fee_tier": self.fee_tier,
            "usd_notional": str(self.usd_notional),
        }


@dataclass
class Opportunity:
    """
    Scored evaluation of one path.

    Invariants: final_amount > loan_amount, net_profit > 0,
    total_costs == flash_loan_fee + gas_cost.
    """
    path: CircularPath
    legs: List[SwapLeg]
    loan_amount: Decimal
    final_amount: Decimal
    gross_profit: Decimal
    flash_loan_fee: Decimal
    gas_cost: Decimal
    net_profit: Decimal
    net_roi: Decimal
    confidence: Decimal
    risk_level: RiskLevel
    timestamp_ms: int
    gas_units: int = 0

    @property
    def total_costs(self) -> Decimal:
        return self.flash_loan_fee + self.gas_cost

    @property
    def flash_loan_asset(self) -> str:
        return self.path.flash_loan_asset

    @property
    def opportunity_id(self) -> str:
        return f"opp_{self.path.path_id}_{self.timestamp_ms}"

    @property
    def max_price_impact(self) -> Decimal:
        return max((leg.price_impact for leg in self.legs), default=Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "path": self.path.to_dict(),
            "legs": [leg.to_dict() for leg in self.legs],
            "flash_loan_asset": self.flash_loan_asset,
            "loan_amount": str(self.loan_amount),
            "final_amount": str(self.final_amount),
            "gross_profit": str(self.gross_profit),
            "flash_loan_fee": str(self.flash_loan_fee),
            "gas_cost": str(self.gas_cost),
            "total_costs": str(self.total_costs),
            "net_profit": str(self.net_profit),
            "net_roi": str(self.net_roi),
            "confidence": str(self.confidence),
            "risk_level": self.risk_level.value,
            "gas_units": self.gas_units,
            "timestamp_ms": self.timestamp_ms,
        }


# ============================================================================
# EXECUTION
# ============================================================================

@dataclass(frozen=True)
class SwapInstruction:
    """One hop as the settlement contract consumes it (raw units)."""
    venue_settlement_id: int
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int
    deadline: int

    def as_abi_tuple(self) -> Tuple[int, str, str, int, int, int]:
        return (
            self.venue_settlement_id,
            self.token_in,
            self.token_out,
            self.amount_in,
            self.min_amount_out,
            self.deadline,
        )


@dataclass
class ExecutionResult:
    """Outcome of one settlement attempt."""
    opportunity_id: str
    success: bool
    tx_hash: Optional[str] = None
    realized_profit: Optional[Decimal] = None
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    failure_reason: Optional[FailureReason] = None
    error_message: Optional[str] = None
    profit_source: Optional[ProfitSource] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "success": self.success,
            "tx_hash": self.tx_hash,
            "realized_profit": str(self.realized_profit) if self.realized_profit is not None else None,
            "gas_used": self.gas_used,
            "block_number": self.block_number,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error_message": self.error_message,
            "profit_source": self.profit_source.value if self.profit_source else None,
            "metadata": self.metadata,
        }
