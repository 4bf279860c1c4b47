# PATH: strategy/orchestrator.py
"""
Scan orchestrator: the continuous discovery loop.

ORCHESTRATOR STATE CONTRACT:
============================

States (OrchestratorState):
  IDLE      -> constructed, preconditions not yet checked
  SCANNING  -> loop running
  STOPPED   -> terminal

Transitions:
  IDLE     -> SCANNING  (start, after chain + settlement checks pass)
  IDLE     -> STOPPED   (stop before start)
  SCANNING -> STOPPED   (stop flag, cycle limit, consecutive error limit)

Cycle i:
  1. paths_for_cycle(i): asset i mod K, hop band (i div K) mod 4
  2. batch-quote the distinct hop pairs once
  3. scan_batch -> opportunities sorted by net profit
  4. top N: selection gates (risk, confidence), execution gate, execute
     (or log would-execute when execution is disabled)
  5. stats, then sleep calculate_scan_delay()

A failed cycle (any Exception; non-domain ones wrapped as UNKNOWN)
increments the consecutive error counter and sleeps
min(base * 2^(errors-1), cap). The counter is checked at the top of the
next cycle; reaching the limit stops the loop. A good cycle resets it.
============================
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chains.providers import RPCProvider
from core.constants import ErrorCode, OrchestratorState
from core.exceptions import ConsecutiveFailureLimitExceeded, CycleArbError, InfraError
from core.logging import get_logger, log_error, log_opportunity
from core.models import Opportunity
from core.time import now_iso
from dex.price_aggregator import PriceAggregator
from discovery.path_generator import PathGenerator
from execution.executor import FlashLoanExecutor
from execution.settlement import SettlementContract
from monitoring.scan_stats import ScanStats
from strategy.config import StrategyConfig
from strategy.gates import ExecutionGate, apply_selection_gates
from strategy.scanner import OpportunityScanner

logger = get_logger(__name__)


VALID_TRANSITIONS: Dict[OrchestratorState, List[OrchestratorState]] = {
    OrchestratorState.IDLE: [OrchestratorState.SCANNING, OrchestratorState.STOPPED],
    OrchestratorState.SCANNING: [OrchestratorState.STOPPED],
    OrchestratorState.STOPPED: [],  # Terminal state
}


class InvalidTransitionError(Exception):
    """Raised when an invalid orchestrator state transition is attempted."""
    pass


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: OrchestratorState
    to_state: OrchestratorState
    timestamp: str = field(default_factory=now_iso)
    reason: str = ""


@dataclass
class ScanContext:
    """Mutable loop state, owned by one run."""
    cycle_index: int = 0
    consecutive_errors: int = 0
    stats: ScanStats = field(default_factory=ScanStats)
    stop_requested: bool = False
    last_error: Optional[CycleArbError] = None


class ScanOrchestrator:
    """
    Drives path selection, quoting, scanning, gating and execution.

    Usage:
        orchestrator = ScanOrchestrator(provider, generator, aggregator,
                                        scanner, gate, executor, settlement, config)
        stats = await orchestrator.run()
    """

    def __init__(
        self,
        provider: RPCProvider,
        generator: PathGenerator,
        aggregator: PriceAggregator,
        scanner: OpportunityScanner,
        gate: ExecutionGate,
        executor: FlashLoanExecutor,
        settlement: SettlementContract,
        config: Optional[StrategyConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.generator = generator
        self.aggregator = aggregator
        self.scanner = scanner
        self.gate = gate
        self.executor = executor
        self.settlement = settlement
        self.config = config or StrategyConfig()
        self._sleep = sleep

        self.state = OrchestratorState.IDLE
        self.history: List[StateTransition] = []
        self.context: Optional[ScanContext] = None
        self._stop_before_start = False

    # =========================================================================
    # STATE
    # =========================================================================

    def _transition(self, new_state: OrchestratorState, reason: str = "") -> None:
        if new_state not in VALID_TRANSITIONS.get(self.state, []):
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid transitions: {[s.value for s in VALID_TRANSITIONS.get(self.state, [])]}"
            )
        self.history.append(StateTransition(self.state, new_state, reason=reason))
        logger.info(
            f"Orchestrator {self.state.value} -> {new_state.value}",
            extra={"context": {"reason": reason}},
        )
        self.state = new_state

    @property
    def is_running(self) -> bool:
        return self.state == OrchestratorState.SCANNING

    async def start(self) -> ScanContext:
        """
        Check preconditions and enter SCANNING.

        Raises:
            InvalidTransitionError: Not IDLE
            InfraError: Chain unreachable or settlement contract missing
        """
        if self.state != OrchestratorState.IDLE:
            raise InvalidTransitionError(f"Cannot start from {self.state.value}")

        chain_id = await self.provider.get_chain_id()
        if chain_id != self.provider.chain_id:
            raise InfraError(
                f"Connected to chain {chain_id}, expected {self.provider.chain_id}",
                details={"chain_id": chain_id, "expected": self.provider.chain_id},
            )
        if not await self.settlement.is_deployed():
            raise InfraError(
                f"Settlement contract not deployed at {self.settlement.address or '<unset>'}",
                code=ErrorCode.INFRA_NOT_DEPLOYED,
                details={"address": self.settlement.address},
            )

        paths = self.generator.paths or tuple(self.generator.generate_all())

        ctx = ScanContext()
        ctx.stats.paths_generated = len(paths)
        ctx.stop_requested = self._stop_before_start
        self.context = ctx
        self._transition(OrchestratorState.SCANNING, reason=f"chain {chain_id} ready")
        return ctx

    def stop(self) -> None:
        """Ask the loop to stop at the top of the next cycle."""
        if self.context is not None:
            self.context.stop_requested = True
        else:
            self._stop_before_start = True
        logger.info("Stop requested")

    # =========================================================================
    # LOOP
    # =========================================================================

    async def run(self, max_cycles: Optional[int] = None) -> ScanStats:
        """Run until stopped, the error limit is hit, or max_cycles complete."""
        ctx = await self.start()
        loop = self.config.loop
        cycles = 0
        stop_reason = "stop requested"

        try:
            while True:
                if ctx.stop_requested:
                    break
                if ctx.consecutive_errors >= loop.max_consecutive_errors:
                    limit_error = ConsecutiveFailureLimitExceeded(
                        ctx.consecutive_errors,
                        details={"last_error": str(ctx.last_error)},
                    )
                    ctx.last_error = limit_error
                    log_error(logger, limit_error.code.value, limit_error.message,
                              consecutive_errors=ctx.consecutive_errors)
                    stop_reason = limit_error.message
                    break

                try:
                    await self.run_cycle(ctx)
                except Exception as exc:
                    e = exc if isinstance(exc, CycleArbError) else self._wrap_unexpected(exc)
                    ctx.consecutive_errors += 1
                    ctx.last_error = e
                    ctx.stats.record_error(e)
                    delay_ms = self.backoff_delay(ctx.consecutive_errors)
                    log_error(
                        logger,
                        e.code.value,
                        f"Scan cycle {ctx.cycle_index} failed: {e.message}",
                        consecutive_errors=ctx.consecutive_errors,
                        backoff_ms=delay_ms,
                    )
                else:
                    ctx.consecutive_errors = 0
                    delay_ms = self.calculate_scan_delay(ctx)

                ctx.cycle_index += 1
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    stop_reason = f"completed {cycles} cycles"
                    break
                await self._sleep(delay_ms / 1000)
        finally:
            self._transition(OrchestratorState.STOPPED, reason=stop_reason)
            ctx.stats.log_summary()

        return ctx.stats

    @staticmethod
    def _wrap_unexpected(exc: Exception) -> CycleArbError:
        """Non-domain errors count against the same limit as domain ones."""
        logger.exception(f"Unexpected error in scan cycle: {exc!r}")
        wrapped = CycleArbError(
            f"{type(exc).__name__}: {exc}",
            ErrorCode.UNKNOWN,
            {"error_type": type(exc).__name__},
        )
        wrapped.__cause__ = exc
        return wrapped

    async def run_cycle(self, ctx: ScanContext) -> List[Opportunity]:
        """
        One scan cycle for ctx.cycle_index.

        Raises:
            InfraError: Quoting was unreachable for every venue
        """
        asset = self.generator.asset_for_cycle(ctx.cycle_index)
        low, high = self.generator.band_for_cycle(ctx.cycle_index)
        paths = self.generator.paths_for_cycle(ctx.cycle_index)

        if not paths:
            logger.debug(
                f"No {asset} paths in band {low}-{high}",
                extra={"context": {"cycle": ctx.cycle_index, "asset": asset}},
            )
            ctx.stats.record_cycle(asset, 0, [])
            return []

        rejections_before = Counter(self.scanner.reject_counts)
        quotes = await self.aggregator.batch_quote(self.scanner.hop_pairs(paths))
        opportunities = await self.scanner.scan_batch(paths, quotes=quotes)
        rejections = Counter(self.scanner.reject_counts)
        rejections.subtract(rejections_before)

        ctx.stats.record_cycle(asset, len(paths), opportunities, +rejections)
        logger.info(
            f"Cycle {ctx.cycle_index}: {asset} {low}-{high} hops, "
            f"{len(paths)} paths, {len(opportunities)} opportunities",
            extra={
                "context": {
                    "cycle": ctx.cycle_index,
                    "asset": asset,
                    "paths": len(paths),
                    "opportunities": len(opportunities),
                    "best_net_profit": str(opportunities[0].net_profit) if opportunities else None,
                }
            },
        )

        for opportunity in opportunities[: self.config.loop.execute_top_n]:
            await self._consider(opportunity, ctx)
        return opportunities

    async def _consider(self, opportunity: Opportunity, ctx: ScanContext) -> None:
        result = apply_selection_gates(opportunity, self.config.gates)
        if result.passed:
            result = await self.gate.check(opportunity)

        if not result.passed:
            ctx.stats.record_gate_rejection(result.reject_code.value)
            log_opportunity(
                logger,
                opportunity.opportunity_id,
                str(opportunity.net_profit),
                str(opportunity.net_roi),
                "rejected",
                reject_reason=result.reject_code.value,
                asset=opportunity.flash_loan_asset,
            )
            return

        if not self.config.execution.execution_enabled:
            log_opportunity(
                logger,
                opportunity.opportunity_id,
                str(opportunity.net_profit),
                str(opportunity.net_roi),
                "would_execute",
                asset=opportunity.flash_loan_asset,
                path=opportunity.path.describe(),
                confidence=str(opportunity.confidence),
            )
            return

        execution = await self.executor.execute(opportunity)
        ctx.stats.record_execution(opportunity.flash_loan_asset, execution)

    # =========================================================================
    # PACING
    # =========================================================================

    def calculate_scan_delay(self, ctx: ScanContext) -> int:
        """
        Adaptive delay in ms.

        The rate is opportunities per scan cycle. Slower when they are
        frequent, faster (down to the floor) once enough cycles show they
        are rare.
        """
        loop = self.config.loop
        stats = ctx.stats
        delay = Decimal(loop.base_delay_ms)

        if stats.scan_cycles > 0:
            rate = stats.cycle_hit_rate
            if rate > loop.busy_ratio:
                delay = delay * loop.busy_multiplier
            elif stats.scan_cycles > loop.quiet_min_cycles and rate < loop.quiet_ratio:
                delay = max(delay * loop.quiet_multiplier, Decimal(loop.min_delay_ms))
        return int(delay)

    def backoff_delay(self, consecutive_errors: int) -> int:
        """min(base * 2^(errors-1), cap) in ms."""
        loop = self.config.loop
        exponent = max(consecutive_errors - 1, 0)
        return min(loop.backoff_base_ms * (2 ** exponent), loop.backoff_cap_ms)

    def status(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "state": self.state.value,
            "cycle_index": ctx.cycle_index if ctx else 0,
            "consecutive_errors": ctx.consecutive_errors if ctx else 0,
            "stats": ctx.stats.to_dict() if ctx else None,
            "scanner": self.scanner.parameters(),
            "cache": self.aggregator.cache_stats(),
            "rpc": self.provider.get_stats_summary(),
        }
