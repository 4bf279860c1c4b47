"""
tests/unit/test_gates.py - Tests for pre-execution gates.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.constants import ErrorCode, RiskLevel
from core.exceptions import InfraError, RPCTimeoutError
from core.models import CircularPath, Opportunity, SwapLeg
from strategy.config import GateThresholds
from strategy.gates import (
    ExecutionGate,
    GateResult,
    apply_selection_gates,
    gate_circular,
    gate_confidence,
    gate_gas_price,
    gate_min_roi,
    gate_native_balance,
    gate_risk,
)

SENDER = "0x00000000000000000000000000000000000000aa"


# =============================================================================
# FIXTURES
# =============================================================================

def make_opportunity(
    net_roi: str = "0.8",
    confidence: str = "80",
    risk: RiskLevel = RiskLevel.LOW,
    assets=("WBNB", "USDT", "WBNB"),
    last_out: str = "WBNB",
) -> Opportunity:
    path = CircularPath(tuple(assets), ("BISWAP", "MDEX"))
    legs = [
        SwapLeg(0, "BISWAP", assets[0], assets[1], Decimal("10"), Decimal("3000"),
                Decimal("300"), Decimal("0.1")),
        SwapLeg(1, "MDEX", assets[1], last_out, Decimal("3000"), Decimal("10.1"),
                Decimal("0.00336"), Decimal("0.1")),
    ]
    return Opportunity(
        path=path,
        legs=legs,
        loan_amount=Decimal("10"),
        final_amount=Decimal("10.1"),
        gross_profit=Decimal("0.1"),
        flash_loan_fee=Decimal("0.009"),
        gas_cost=Decimal("0.011"),
        net_profit=Decimal("0.08"),
        net_roi=Decimal(net_roi),
        confidence=Decimal(confidence),
        risk_level=risk,
        timestamp_ms=1700000000000,
    )


@pytest.fixture
def opportunity():
    return make_opportunity()


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.get_balance = AsyncMock(return_value=10**17)      # 0.1 BNB
    provider.get_gas_price = AsyncMock(return_value=3 * 10**9)  # 3 gwei
    return provider


# =============================================================================
# INDIVIDUAL GATES
# =============================================================================

class TestNativeBalanceGate:
    def test_pass(self):
        assert gate_native_balance(Decimal("0.005"), Decimal("0.005")).passed

    def test_reject(self):
        result = gate_native_balance(Decimal("0.004"), Decimal("0.005"))
        assert result == GateResult(
            False, ErrorCode.INSUFFICIENT_BALANCE, {"balance": "0.004", "min_reserve": "0.005"}
        )


class TestGasPriceGate:
    def test_at_ceiling_passes(self):
        assert gate_gas_price(Decimal("20"), Decimal("20")).passed

    def test_above_ceiling(self):
        result = gate_gas_price(Decimal("20.1"), Decimal("20"))
        assert not result.passed
        assert result.reject_code == ErrorCode.GAS_PRICE_TOO_HIGH


class TestCircularGate:
    def test_pass(self, opportunity):
        assert gate_circular(opportunity).passed

    def test_path_not_closed(self):
        opp = make_opportunity(assets=("WBNB", "USDT", "BTCB"), last_out="BTCB")
        result = gate_circular(opp)
        assert result.reject_code == ErrorCode.PATH_NOT_CIRCULAR
        assert result.details["last"] == "BTCB"

    def test_last_leg_mismatch(self):
        opp = make_opportunity(last_out="ETH")
        result = gate_circular(opp)
        assert result.reject_code == ErrorCode.PATH_NOT_CIRCULAR
        assert result.details["last_leg_out"] == "ETH"


class TestRoiGate:
    def test_at_threshold_passes(self):
        assert gate_min_roi(make_opportunity(net_roi="0.5"), Decimal("0.5")).passed

    def test_below_threshold(self):
        result = gate_min_roi(make_opportunity(net_roi="0.3788"), Decimal("0.5"))
        assert result.reject_code == ErrorCode.PNL_BELOW_THRESHOLD
        assert result.details == {"net_roi": "0.3788", "min_roi_percent": "0.5"}


class TestSelectionGates:
    def test_high_risk(self):
        assert gate_risk(make_opportunity(risk=RiskLevel.HIGH)).reject_code == ErrorCode.RISK_TOO_HIGH
        assert gate_risk(make_opportunity(risk=RiskLevel.MEDIUM)).passed

    def test_confidence_must_exceed_floor(self):
        assert not gate_confidence(make_opportunity(confidence="60"), Decimal("60")).passed
        assert gate_confidence(make_opportunity(confidence="60.1"), Decimal("60")).passed

    def test_risk_checked_first(self):
        opp = make_opportunity(risk=RiskLevel.HIGH, confidence="10")
        result = apply_selection_gates(opp, GateThresholds())
        assert result.reject_code == ErrorCode.RISK_TOO_HIGH

    def test_all_pass(self, opportunity):
        assert apply_selection_gates(opportunity, GateThresholds()) == GateResult(True)


# =============================================================================
# EXECUTION GATE
# =============================================================================

class TestExecutionGate:
    @pytest.mark.asyncio
    async def test_all_gates_pass(self, provider, opportunity):
        gate = ExecutionGate(provider, SENDER)
        result = await gate.check(opportunity)
        assert result.passed
        assert result.details == {"balance": "0.1", "gas_price_gwei": "3"}
        provider.get_balance.assert_awaited_once_with(SENDER)

    @pytest.mark.asyncio
    async def test_balance_checked_before_gas_price(self, provider, opportunity):
        provider.get_balance.return_value = 10**15
        gate = ExecutionGate(provider, SENDER)

        result = await gate.check(opportunity)

        assert result.reject_code == ErrorCode.INSUFFICIENT_BALANCE
        provider.get_gas_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gas_price_ceiling(self, provider, opportunity):
        provider.get_gas_price.return_value = 25 * 10**9
        result = await ExecutionGate(provider, SENDER).check(opportunity)
        assert result.reject_code == ErrorCode.GAS_PRICE_TOO_HIGH
        assert result.details["gas_price_gwei"] == "25"

    @pytest.mark.asyncio
    async def test_circularity_before_roi(self, provider):
        opp = make_opportunity(net_roi="0.1", last_out="ETH")
        result = await ExecutionGate(provider, SENDER).check(opp)
        assert result.reject_code == ErrorCode.PATH_NOT_CIRCULAR

    @pytest.mark.asyncio
    async def test_roi_threshold_is_last(self, provider):
        opp = make_opportunity(net_roi="0.3788")
        result = await ExecutionGate(provider, SENDER).check(opp)
        assert result.reject_code == ErrorCode.PNL_BELOW_THRESHOLD

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, provider):
        gate = ExecutionGate(provider, SENDER, GateThresholds(min_roi_percent=Decimal("0.3")))
        assert (await gate.check(make_opportunity(net_roi="0.3788"))).passed

    @pytest.mark.asyncio
    async def test_no_sender(self, provider, opportunity):
        result = await ExecutionGate(provider, None).check(opportunity)
        assert result.reject_code == ErrorCode.INSUFFICIENT_BALANCE
        provider.get_balance.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [InfraError("connection reset"), RPCTimeoutError("timed out")])
    async def test_chain_read_failure(self, provider, opportunity, error):
        provider.get_gas_price.side_effect = error
        result = await ExecutionGate(provider, SENDER).check(opportunity)
        assert result.reject_code == ErrorCode.INFRA_RPC_ERROR
        assert result.details["method"] == "eth_gasPrice"
