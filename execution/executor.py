# PATH: execution/executor.py
"""
Flash-loan executor.

Turns an approved Opportunity into one settlement transaction and
reports the outcome as an ExecutionResult.

EXECUTION CONTRACT:
- At most one execution in flight (asyncio.Lock)
- One transaction per opportunity, never retried
- min_amount_out per hop = expected out x (1 - slippage buffer), rounded down
- deadline = now + deadline_seconds for every hop
- Realized profit from the ArbitrageExecuted event when present,
  otherwise gross - flash fee - observed gas (profit_source=estimated)
- Failures are classified by revert message into FailureReason
"""

import asyncio
from typing import Callable, List, Optional

from core.constants import FAILURE_PATTERNS, FailureReason, ProfitSource
from core.exceptions import ExecutionRevertedError, InfraError
from core.logging import get_logger, log_trade
from core.math import HUNDRED, from_raw, to_raw, wei_to_native
from core.models import ExecutionResult, Opportunity, SwapInstruction
from core.time import now_seconds
from discovery.registry import AssetRegistry, VenueRegistry
from execution.settlement import SettlementContract, hex_to_int
from strategy.config import ExecutionSettings

logger = get_logger(__name__)


def classify_failure(message: Optional[str]) -> FailureReason:
    """Map a revert or node error message onto a FailureReason."""
    text = (message or "").lower()
    for needle, reason in FAILURE_PATTERNS:
        if needle in text:
            return reason
    return FailureReason.UNKNOWN


class FlashLoanExecutor:
    """
    Serialized executor for approved opportunities.

    Usage:
        executor = FlashLoanExecutor(settlement, assets, venues, config.execution)
        result = await executor.execute(opportunity)
    """

    def __init__(
        self,
        settlement: SettlementContract,
        assets: AssetRegistry,
        venues: VenueRegistry,
        settings: Optional[ExecutionSettings] = None,
        clock_seconds: Callable[[], int] = now_seconds,
    ):
        self.settlement = settlement
        self.assets = assets
        self.venues = venues
        self.settings = settings or ExecutionSettings()
        self._clock_seconds = clock_seconds
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def build_instructions(
        self,
        opportunity: Opportunity,
        now: Optional[int] = None,
    ) -> List[SwapInstruction]:
        """One instruction per leg, in raw units of each leg's tokens."""
        now = self._clock_seconds() if now is None else now
        deadline = now + self.settings.deadline_seconds
        keep = 1 - self.settings.slippage_buffer_percent / HUNDRED

        instructions = []
        for leg in opportunity.legs:
            token_in = self.assets.get(leg.token_in)
            token_out = self.assets.get(leg.token_out)
            instructions.append(
                SwapInstruction(
                    venue_settlement_id=self.venues.get(leg.venue_id).settlement_id,
                    token_in=token_in.address,
                    token_out=token_out.address,
                    amount_in=to_raw(leg.amount_in, token_in.decimals),
                    min_amount_out=to_raw(leg.amount_out * keep, token_out.decimals),
                    deadline=deadline,
                )
            )
        return instructions

    async def execute(self, opportunity: Opportunity) -> ExecutionResult:
        """Submit the opportunity and wait for the receipt."""
        async with self._lock:
            return await self._execute(opportunity)

    async def _execute(self, opportunity: Opportunity) -> ExecutionResult:
        opp_id = opportunity.opportunity_id
        flash = self.assets.get(opportunity.flash_loan_asset)
        instructions = self.build_instructions(opportunity)

        logger.info(
            f"Executing {opp_id}: {opportunity.path.describe()}",
            extra={
                "context": {
                    "opportunity_id": opp_id,
                    "loan_amount": str(opportunity.loan_amount),
                    "expected_net_profit": str(opportunity.net_profit),
                }
            },
        )

        tx_hash = None
        try:
            tx_hash = await self.settlement.submit(
                flash.address,
                to_raw(opportunity.loan_amount, flash.decimals),
                instructions,
            )
            receipt = await self.settlement.wait_for_receipt(tx_hash)
            if not self.settlement.receipt_succeeded(receipt):
                raise ExecutionRevertedError(
                    f"Transaction {tx_hash} reverted",
                    reason=FailureReason.UNKNOWN,
                    details={"tx_hash": tx_hash, "block_number": receipt.get("blockNumber")},
                )
        except ExecutionRevertedError as e:
            return self._failure(opp_id, tx_hash, e.reason, e.message)
        except InfraError as e:
            return self._failure(opp_id, tx_hash, classify_failure(e.message), e.message)

        gas_used = hex_to_int(receipt.get("gasUsed"))
        block_number = hex_to_int(receipt.get("blockNumber"))

        profit_raw = self.settlement.realized_profit_raw(receipt)
        if profit_raw is not None:
            realized = from_raw(profit_raw, flash.decimals)
            source = ProfitSource.EVENT
        else:
            gas_native = wei_to_native(self.settlement.receipt_gas_cost_wei(receipt))
            observed_gas = self.assets.convert_native(gas_native, flash.symbol)
            realized = opportunity.gross_profit - opportunity.flash_loan_fee - observed_gas
            source = ProfitSource.ESTIMATED

        result = ExecutionResult(
            opportunity_id=opp_id,
            success=True,
            tx_hash=tx_hash,
            realized_profit=realized,
            gas_used=gas_used,
            block_number=block_number,
            profit_source=source,
            metadata={"asset": flash.symbol, "hops": len(instructions)},
        )
        log_trade(
            logger,
            opp_id,
            "success",
            tx_hash=tx_hash,
            gas_used=gas_used,
            realized_profit=str(realized),
            profit_source=source.value,
            asset=flash.symbol,
        )
        return result

    def _failure(
        self,
        opp_id: str,
        tx_hash: Optional[str],
        reason: FailureReason,
        message: str,
    ) -> ExecutionResult:
        if reason == FailureReason.UNKNOWN:
            reason = classify_failure(message)
        log_trade(
            logger,
            opp_id,
            "failed",
            tx_hash=tx_hash,
            failure_reason=reason.value,
            error=message,
        )
        return ExecutionResult(
            opportunity_id=opp_id,
            success=False,
            tx_hash=tx_hash,
            failure_reason=reason,
            error_message=message,
        )
