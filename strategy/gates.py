"""
strategy/gates.py - Pre-execution safety gates.

Gates validate an opportunity immediately before submission.
Each gate returns GateResult(passed, reject_code, details). The
ExecutionGate runs them in a fixed order and stops at the first
failure; it only reads chain state and never changes anything.
"""

from decimal import Decimal
from typing import NamedTuple, Optional

from chains.providers import RPCProvider
from core.constants import ErrorCode, RiskLevel
from core.exceptions import InfraError
from core.logging import get_logger
from core.math import wei_to_gwei, wei_to_native
from core.models import Opportunity
from strategy.config import GateThresholds

logger = get_logger(__name__)


# =============================================================================
# GATE RESULT
# =============================================================================

class GateResult(NamedTuple):
    """Result of a gate check."""
    passed: bool
    reject_code: ErrorCode | None = None
    details: dict | None = None


# =============================================================================
# INDIVIDUAL GATES
# =============================================================================

def gate_native_balance(balance: Decimal, min_reserve: Decimal) -> GateResult:
    """Reject if the sender cannot pay for gas."""
    if balance < min_reserve:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.INSUFFICIENT_BALANCE,
            details={"balance": str(balance), "min_reserve": str(min_reserve)},
        )
    return GateResult(passed=True)


def gate_gas_price(gas_price_gwei: Decimal, max_gas_price_gwei: Decimal) -> GateResult:
    """Reject if the network gas price is above the ceiling."""
    if gas_price_gwei > max_gas_price_gwei:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.GAS_PRICE_TOO_HIGH,
            details={
                "gas_price_gwei": str(gas_price_gwei),
                "max_gas_price_gwei": str(max_gas_price_gwei),
            },
        )
    return GateResult(passed=True)


def gate_circular(opportunity: Opportunity) -> GateResult:
    """Reject unless the path starts and ends on the flash-loan asset."""
    path = opportunity.path
    flash = opportunity.flash_loan_asset
    if not path.is_circular or path.assets[0] != flash or path.assets[-1] != flash:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.PATH_NOT_CIRCULAR,
            details={"first": path.assets[0], "last": path.assets[-1], "flash_loan_asset": flash},
        )
    if opportunity.legs and opportunity.legs[-1].token_out != flash:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.PATH_NOT_CIRCULAR,
            details={"last_leg_out": opportunity.legs[-1].token_out, "flash_loan_asset": flash},
        )
    return GateResult(passed=True)


def gate_min_roi(opportunity: Opportunity, min_roi_percent: Decimal) -> GateResult:
    """Reject if net ROI is below the profit threshold."""
    if opportunity.net_roi < min_roi_percent:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.PNL_BELOW_THRESHOLD,
            details={"net_roi": str(opportunity.net_roi), "min_roi_percent": str(min_roi_percent)},
        )
    return GateResult(passed=True)


def gate_risk(opportunity: Opportunity) -> GateResult:
    """Reject HIGH-risk opportunities before they reach the chain checks."""
    if opportunity.risk_level == RiskLevel.HIGH:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.RISK_TOO_HIGH,
            details={"risk_level": opportunity.risk_level.value},
        )
    return GateResult(passed=True)


def gate_confidence(opportunity: Opportunity, min_confidence: Decimal) -> GateResult:
    """Reject unless confidence is strictly above the floor."""
    if opportunity.confidence <= min_confidence:
        return GateResult(
            passed=False,
            reject_code=ErrorCode.CONFIDENCE_TOO_LOW,
            details={"confidence": str(opportunity.confidence), "min_confidence": str(min_confidence)},
        )
    return GateResult(passed=True)


def apply_selection_gates(opportunity: Opportunity, thresholds: GateThresholds) -> GateResult:
    """Cheap, chain-free gates used to pick candidates for execution."""
    for result in (
        gate_risk(opportunity),
        gate_confidence(opportunity, thresholds.min_confidence),
    ):
        if not result.passed:
            return result
    return GateResult(passed=True)


# =============================================================================
# EXECUTION GATE
# =============================================================================

class ExecutionGate:
    """
    Ordered pre-execution checks against live chain state.

    Order: native balance, gas price, circularity, minimum ROI. The first
    failure wins. A failed chain read rejects with INFRA_RPC_ERROR.
    """

    def __init__(
        self,
        provider: RPCProvider,
        sender_address: Optional[str],
        thresholds: Optional[GateThresholds] = None,
    ):
        self.provider = provider
        self.sender_address = sender_address
        self.thresholds = thresholds or GateThresholds()

    async def check(self, opportunity: Opportunity) -> GateResult:
        t = self.thresholds

        if not self.sender_address:
            return GateResult(
                passed=False,
                reject_code=ErrorCode.INSUFFICIENT_BALANCE,
                details={"error": "no sender address configured"},
            )

        try:
            balance = wei_to_native(await self.provider.get_balance(self.sender_address))
        except InfraError as e:
            return self._infra_reject("eth_getBalance", e)
        result = gate_native_balance(balance, t.min_gas_reserve)
        if not result.passed:
            return self._log_reject(opportunity, result)

        try:
            gas_price_gwei = wei_to_gwei(await self.provider.get_gas_price())
        except InfraError as e:
            return self._infra_reject("eth_gasPrice", e)
        result = gate_gas_price(gas_price_gwei, t.max_gas_price_gwei)
        if not result.passed:
            return self._log_reject(opportunity, result)

        for result in (gate_circular(opportunity), gate_min_roi(opportunity, t.min_roi_percent)):
            if not result.passed:
                return self._log_reject(opportunity, result)

        return GateResult(
            passed=True,
            details={"balance": str(balance), "gas_price_gwei": str(gas_price_gwei)},
        )

    def _infra_reject(self, method: str, error: InfraError) -> GateResult:
        logger.warning(
            f"Gate chain read failed: {method}",
            extra={"context": {"method": method, "error": str(error)}},
        )
        return GateResult(
            passed=False,
            reject_code=ErrorCode.INFRA_RPC_ERROR,
            details={"method": method, "error": str(error)},
        )

    @staticmethod
    def _log_reject(opportunity: Opportunity, result: GateResult) -> GateResult:
        logger.info(
            f"Gate rejected {opportunity.path.path_id}: {result.reject_code.value}",
            extra={"context": {"path_id": opportunity.path.path_id, **(result.details or {})}},
        )
        return result
