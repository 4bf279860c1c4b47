"""
strategy/scanner.py - Circular path evaluation.

For one path: size the flash loan, walk every hop through the price
aggregator, reject excessive price impact, check the walk returns to the
flash-loan asset, subtract flash-loan fee and gas, and score confidence
and risk. Only strictly profitable results become Opportunities.

Per-path failures (no quote, price impact, non-circular walk) are
expected outcomes: they are counted and logged, never raised.

Leg slippage is the deviation of the hop's live unit price from the
cycle's snapshot price for the same venue and pair. It is zero when no
snapshot was taken or when the snapshot itself prices the hop.
"""

import asyncio
from collections import Counter
from dataclasses import fields
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from core.constants import (
    FLASH_LOAN_FEE_RATE,
    GAS_CIRCULAR_VALIDATION,
    GAS_CL_HOP_EXTRA,
    GAS_FLASH_LOAN_OVERHEAD,
    GAS_PER_EXTRA_HOP,
    GAS_PER_SWAP,
    ErrorCode,
    RiskLevel,
)
from core.exceptions import (
    InfraError,
    NoQuoteError,
    PathNotCircularError,
    PriceImpactExceededError,
)
from core.logging import get_logger
from core.math import HUNDRED, ZERO, clamp, percent_of, relative_deviation_percent, wei_to_native
from core.models import CircularPath, Opportunity, SwapLeg
from core.time import now_ms
from dex.price_aggregator import BatchQuotes, PriceAggregator
from discovery.registry import AssetRegistry, VenueRegistry
from strategy.config import ScannerSettings

logger = get_logger(__name__)


class OpportunityScanner:
    """
    Evaluates circular paths into scored opportunities.

    Usage:
        scanner = OpportunityScanner(assets, venues, aggregator, config.scanner)
        opportunities = await scanner.scan_batch(paths, quotes=snapshot)
    """

    def __init__(
        self,
        assets: AssetRegistry,
        venues: VenueRegistry,
        aggregator: PriceAggregator,
        settings: Optional[ScannerSettings] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.assets = assets
        self.venues = venues
        self.aggregator = aggregator
        self.settings = settings or ScannerSettings()
        self._clock = clock
        self._sleep = sleep
        self.reject_counts: Counter = Counter()
        self.paths_scanned = 0

    # =========================================================================
    # SINGLE PATH
    # =========================================================================

    async def scan(
        self,
        path: CircularPath,
        quotes: Optional[BatchQuotes] = None,
    ) -> Optional[Opportunity]:
        """
        Evaluate one path.

        Returns:
            Opportunity when net profit is strictly positive, else None
        """
        self.paths_scanned += 1
        try:
            return await self._evaluate(path, quotes)
        except PathNotCircularError as e:
            self.reject_counts[e.code.value] += 1
            logger.warning(
                f"Path {path.path_id} is not circular: {e.message}",
                extra={"context": {"path_id": path.path_id, **e.details}},
            )
        except (NoQuoteError, PriceImpactExceededError) as e:
            self.reject_counts[e.code.value] += 1
            logger.debug(
                f"Path {path.path_id} rejected: {e}",
                extra={"context": {"path_id": path.path_id, **e.details}},
            )
        except InfraError as e:
            self.reject_counts[e.code.value] += 1
            logger.debug(
                f"Path {path.path_id} skipped on infra error: {e}",
                extra={"context": {"path_id": path.path_id}},
            )
        return None

    async def _evaluate(
        self,
        path: CircularPath,
        quotes: Optional[BatchQuotes],
    ) -> Optional[Opportunity]:
        if not path.is_circular:
            raise PathNotCircularError(
                "first and last assets differ",
                {"first": path.assets[0], "last": path.assets[-1]},
            )

        flash_asset = path.flash_loan_asset
        loan_amount = self.optimal_loan_amount(path)
        amount = loan_amount
        current = flash_asset
        legs: List[SwapLeg] = []

        for index, (venue_id, next_asset) in enumerate(zip(path.venues, path.assets[1:])):
            leg = await self._quote_leg(index, venue_id, current, next_asset, amount, quotes)
            legs.append(leg)
            amount = leg.amount_out
            current = leg.token_out

        if current != flash_asset:
            raise PathNotCircularError(
                f"walk ended on {current}, expected {flash_asset}",
                {"expected": flash_asset, "actual": current},
            )

        final_amount = amount
        gross_profit = final_amount - loan_amount
        if gross_profit <= 0:
            self.reject_counts["NO_GROSS_PROFIT"] += 1
            return None

        flash_fee = self.flash_loan_fee(loan_amount)
        gas_units = self.gas_units(path)
        gas_cost = self.gas_cost(path, gas_units)
        net_profit = gross_profit - flash_fee - gas_cost
        if net_profit <= 0:
            self.reject_counts[ErrorCode.PNL_BELOW_THRESHOLD.value] += 1
            logger.debug(
                f"Path {path.path_id} gross {gross_profit} eaten by costs",
                extra={
                    "context": {
                        "path_id": path.path_id,
                        "gross_profit": str(gross_profit),
                        "flash_loan_fee": str(flash_fee),
                        "gas_cost": str(gas_cost),
                    }
                },
            )
            return None

        net_roi = percent_of(net_profit, loan_amount)
        confidence = self.confidence(path, legs, net_roi)
        risk = self.risk_level(path, legs, net_roi)

        opportunity = Opportunity(
            path=path,
            legs=legs,
            loan_amount=loan_amount,
            final_amount=final_amount,
            gross_profit=gross_profit,
            flash_loan_fee=flash_fee,
            gas_cost=gas_cost,
            net_profit=net_profit,
            net_roi=net_roi,
            confidence=confidence,
            risk_level=risk,
            timestamp_ms=self._clock(),
            gas_units=gas_units,
        )
        logger.info(
            f"Opportunity {path.path_id}: net {net_profit:.6f} {flash_asset} ({net_roi:.3f}%)",
            extra={
                "context": {
                    "path_id": path.path_id,
                    "route": path.describe(),
                    "net_profit": str(net_profit),
                    "net_roi": str(net_roi),
                    "confidence": str(confidence),
                    "risk": risk.value,
                }
            },
        )
        return opportunity

    async def _quote_leg(
        self,
        index: int,
        venue_id: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
        quotes: Optional[BatchQuotes],
    ) -> SwapLeg:
        snapshot_price = self.snapshot_price(quotes, venue_id, token_in, token_out)
        fee_tier = None

        if self.settings.use_quote_snapshot and snapshot_price is not None:
            amount_out = amount_in * snapshot_price
            price = snapshot_price
            slippage = ZERO
        else:
            quote = await self.aggregator.quote(venue_id, token_in, token_out, amount_in)
            if quote is None or quote.amount_out <= 0:
                raise NoQuoteError(
                    f"no quote for {token_in}->{token_out} on {venue_id}",
                    {"venue_id": venue_id, "token_in": token_in, "token_out": token_out, "hop": index},
                )
            amount_out = quote.amount_out
            price = quote.price
            fee_tier = quote.fee_tier
            slippage = (
                relative_deviation_percent(snapshot_price, price)
                if snapshot_price is not None
                else ZERO
            )

        impact = await self.aggregator.price_impact(venue_id, token_in, token_out, amount_in)
        impact = impact if impact is not None else ZERO
        if impact > self.settings.max_price_impact_percent:
            raise PriceImpactExceededError(
                f"price impact {impact:.3f}% on {token_in}->{token_out} via {venue_id}",
                {
                    "venue_id": venue_id,
                    "hop": index,
                    "price_impact": str(impact),
                    "max_price_impact": str(self.settings.max_price_impact_percent),
                },
            )

        return SwapLeg(
            index=index,
            venue_id=venue_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price=price,
            price_impact=impact,
            slippage=slippage,
            fee_tier=fee_tier,
            usd_notional=amount_in * self.assets.get(token_in).usd_price,
        )

    @staticmethod
    def snapshot_price(
        quotes: Optional[BatchQuotes],
        venue_id: str,
        token_in: str,
        token_out: str,
    ) -> Optional[Decimal]:
        """Unit price from a batch snapshot, inverting the reverse pair if needed."""
        if not quotes:
            return None
        direct = quotes.get((token_in, token_out), {}).get(venue_id)
        if direct is not None and direct.price > 0:
            return direct.price
        reverse = quotes.get((token_out, token_in), {}).get(venue_id)
        if reverse is not None and reverse.price > 0:
            return Decimal(1) / reverse.price
        return None

    # =========================================================================
    # SIZING AND COSTS
    # =========================================================================

    def optimal_loan_amount(self, path: CircularPath) -> Decimal:
        """Base loan of the flash asset scaled by hop count and liquidity score."""
        sizing = self.settings.loan_sizing
        amount = self.assets.get(path.flash_loan_asset).loan_base

        if path.hops <= sizing.short_path_max_hops:
            amount *= sizing.short_path_multiplier
        elif path.hops >= sizing.long_path_min_hops:
            amount *= sizing.long_path_multiplier

        if path.liquidity_score >= sizing.high_liquidity_score:
            amount *= sizing.high_liquidity_multiplier
        elif path.liquidity_score < sizing.low_liquidity_score:
            amount *= sizing.low_liquidity_multiplier

        return amount

    def gas_units(self, path: CircularPath) -> int:
        hops = path.hops
        cl_hops = sum(1 for v in path.venues if self.venues.get(v).is_concentrated)
        return (
            GAS_PER_SWAP * hops
            + GAS_PER_EXTRA_HOP * max(0, hops - 2)
            + GAS_FLASH_LOAN_OVERHEAD
            + GAS_CIRCULAR_VALIDATION
            + GAS_CL_HOP_EXTRA * cl_hops
        )

    def gas_cost(self, path: CircularPath, gas_units: Optional[int] = None) -> Decimal:
        """
        Gas cost expressed in the flash-loan asset.

        Native cost is converted through reference USD prices; the
        native asset itself converts 1:1.
        """
        units = self.gas_units(path) if gas_units is None else gas_units
        gas_price_gwei = self.settings.gas_price_gwei + self.settings.priority_fee_gwei
        native_cost = wei_to_native(Decimal(units) * gas_price_gwei * Decimal(10**9))
        return self.assets.convert_native(native_cost, path.flash_loan_asset)

    @staticmethod
    def flash_loan_fee(amount: Decimal) -> Decimal:
        return amount * FLASH_LOAN_FEE_RATE

    # =========================================================================
    # SCORING
    # =========================================================================

    def confidence(self, path: CircularPath, legs: Sequence[SwapLeg], net_roi: Decimal) -> Decimal:
        """0-100 score; higher means the numbers are more likely to hold on chain."""
        max_impact = max((leg.price_impact for leg in legs), default=ZERO)
        max_slippage = max((leg.slippage for leg in legs), default=ZERO)

        score = HUNDRED
        score -= max_impact * 8
        score -= Decimal(max(0, path.hops - 3) * 3)

        if net_roi < Decimal("0.5"):
            score -= 35
        elif net_roi < 1:
            score -= 25

        if path.is_circular:
            score += 15

        high_liquidity_entries = sum(
            1 for symbol in path.assets if self.assets.get(symbol).is_high_liquidity
        )
        score += high_liquidity_entries * 3

        if max_slippage > 2:
            score -= 30
        elif max_slippage > 1:
            score -= 20

        return clamp(score, ZERO, HUNDRED)

    @staticmethod
    def risk_level(path: CircularPath, legs: Sequence[SwapLeg], net_roi: Decimal) -> RiskLevel:
        max_impact = max((leg.price_impact for leg in legs), default=ZERO)
        max_slippage = max((leg.slippage for leg in legs), default=ZERO)
        hops = path.hops
        risk = 0

        if max_impact > Decimal("1.5"):
            risk += 3
        elif max_impact > 1:
            risk += 2
        elif max_impact > Decimal("0.5"):
            risk += 1

        if hops > 6:
            risk += 3
        elif hops > 4:
            risk += 2
        elif hops > 3:
            risk += 1

        if net_roi < Decimal("0.3"):
            risk += 3
        elif net_roi < Decimal("0.5"):
            risk += 2
        elif net_roi < 1:
            risk += 1

        if max_slippage > 2:
            risk += 2
        elif max_slippage > 1:
            risk += 1

        if risk >= 6:
            return RiskLevel.HIGH
        if risk >= 4:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    # =========================================================================
    # BATCHES
    # =========================================================================

    async def scan_batch(
        self,
        paths: Sequence[CircularPath],
        max_concurrent: Optional[int] = None,
        quotes: Optional[BatchQuotes] = None,
    ) -> List[Opportunity]:
        """
        Evaluate paths in fixed-size concurrent batches.

        Results are collected by input position, then stably sorted by
        net profit (descending), so ties keep input order.
        """
        batch_size = max(1, max_concurrent or self.settings.max_concurrent_scans)
        circular = [p for p in paths if p.is_circular]
        results: List[Optional[Opportunity]] = [None] * len(circular)

        for start in range(0, len(circular), batch_size):
            batch = circular[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(self.scan(path, quotes) for path in batch),
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    # cancellation still ends the batch
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(
                        f"Path scan failed: {outcome!r}",
                        extra={
                            "context": {
                                "path_id": batch[offset].path_id,
                                "error_type": type(outcome).__name__,
                            }
                        },
                    )
                    continue
                results[start + offset] = outcome

            if start + batch_size < len(circular) and self.settings.batch_pacing_ms > 0:
                await self._sleep(self.settings.batch_pacing_ms / 1000)

        found = [o for o in results if o is not None]
        found.sort(key=lambda o: o.net_profit, reverse=True)
        return found

    async def find_best(
        self,
        paths: Sequence[CircularPath],
        quotes: Optional[BatchQuotes] = None,
    ) -> Optional[Opportunity]:
        opportunities = await self.scan_batch(paths, quotes=quotes)
        return opportunities[0] if opportunities else None

    # =========================================================================
    # PARAMETERS
    # =========================================================================

    def update_parameters(self, **params: Any) -> None:
        """Adjust scanner settings at runtime (Decimal fields accept strings)."""
        known = {f.name for f in fields(self.settings)}
        for name, value in params.items():
            if name not in known or name == "loan_sizing":
                raise ValueError(f"Unknown scanner parameter: {name}")
            current = getattr(self.settings, name)
            if isinstance(current, Decimal):
                value = Decimal(str(value))
            setattr(self.settings, name, value)
        logger.info(
            "Scanner parameters updated",
            extra={"context": {k: str(v) for k, v in params.items()}},
        )

    def parameters(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "max_price_impact_percent": str(s.max_price_impact_percent),
            "gas_price_gwei": str(s.gas_price_gwei),
            "priority_fee_gwei": str(s.priority_fee_gwei),
            "flash_loan_fee_rate": str(FLASH_LOAN_FEE_RATE),
            "max_concurrent_scans": s.max_concurrent_scans,
            "use_quote_snapshot": s.use_quote_snapshot,
        }

    def hop_pairs(self, paths: Sequence[CircularPath]) -> List[Tuple[str, str]]:
        """Distinct (token_in, token_out) pairs across paths, first-seen order."""
        seen: Dict[Tuple[str, str], None] = {}
        for path in paths:
            for pair in path.hop_pairs:
                seen.setdefault(pair, None)
        return list(seen)
