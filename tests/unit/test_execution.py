"""
tests/unit/test_execution.py - Settlement encoding, submission and executor outcomes.
"""

import asyncio
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode

from core.constants import FailureReason, ProfitSource, RiskLevel
from core.exceptions import RPCError, RPCTimeoutError
from core.models import CircularPath, Opportunity, SwapInstruction, SwapLeg
from execution.executor import FlashLoanExecutor, classify_failure
from execution.settlement import (
    SELECTOR_EXECUTE_ARBITRAGE,
    TOPIC_ARBITRAGE_EXECUTED,
    SettlementContract,
    decode_instructions,
    encode_execute_arbitrage,
    encode_instructions,
    hex_to_int,
    parse_arbitrage_executed,
)
from strategy.config import ExecutionSettings

CONTRACT = "0x00000000000000000000000000000000000000c0"
SENDER = "0x00000000000000000000000000000000000000aa"
TX_HASH = "0x" + "ab" * 32
NOW = 1_700_000_000


class FakeClock:
    def __init__(self, start_ms: int = NOW * 1000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def profit_log(profit: int, address: str = CONTRACT) -> dict:
    data = encode(["uint256", "uint256", "uint256"], [10**19, profit, NOW])
    return {
        "address": address,
        "topics": [TOPIC_ARBITRAGE_EXECUTED, "0x" + "00" * 32],
        "data": "0x" + data.hex(),
    }


def receipt(status: str = "0x1", logs=None) -> dict:
    return {
        "transactionHash": TX_HASH,
        "status": status,
        "blockNumber": "0x1c9c380",
        "gasUsed": "0x927c0",                  # 600000
        "effectiveGasPrice": "0xb2d05e00",     # 3 gwei
        "logs": logs or [],
    }


def wbnb_opportunity() -> Opportunity:
    path = CircularPath(
        ("WBNB", "USDT", "BTCB", "WBNB"),
        ("PANCAKESWAP_V2", "BISWAP", "APESWAP"),
        liquidity_score=40,
    )
    legs = [
        SwapLeg(0, "PANCAKESWAP_V2", "WBNB", "USDT", Decimal("10"), Decimal("3000"),
                Decimal("300"), Decimal("0")),
        SwapLeg(1, "BISWAP", "USDT", "BTCB", Decimal("3000"), Decimal("0.06"),
                Decimal("0.00002"), Decimal("0")),
        SwapLeg(2, "APESWAP", "BTCB", "WBNB", Decimal("0.06"), Decimal("10.05"),
                Decimal("167.5"), Decimal("0")),
    ]
    return Opportunity(
        path=path,
        legs=legs,
        loan_amount=Decimal("10"),
        final_amount=Decimal("10.05"),
        gross_profit=Decimal("0.05"),
        flash_loan_fee=Decimal("0.009"),
        gas_cost=Decimal("0.00312"),
        net_profit=Decimal("0.03788"),
        net_roi=Decimal("0.3788"),
        confidence=Decimal("92"),
        risk_level=RiskLevel.LOW,
        timestamp_ms=NOW * 1000,
        gas_units=780_000,
    )


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.get_code = AsyncMock(return_value="0x6080604052")
    provider.estimate_gas = AsyncMock(return_value=400_000)
    provider.send_transaction = AsyncMock(return_value=TX_HASH)
    provider.get_transaction_receipt = AsyncMock(return_value=receipt())
    return provider


@pytest.fixture
def settlement(provider):
    return SettlementContract(provider, CONTRACT, SENDER, sleep=AsyncMock())


@pytest.fixture
def executor(settlement, assets, venues):
    return FlashLoanExecutor(settlement, assets, venues, clock_seconds=lambda: NOW)


# =============================================================================
# ENCODING
# =============================================================================

class TestEncoding:
    def test_instructions_round_trip(self):
        instructions = [
            SwapInstruction(0, f"0x{1:040x}", f"0x{2:040x}", 10**19, 2985 * 10**18, NOW + 300),
            SwapInstruction(5, f"0x{2:040x}", f"0x{1:040x}", 2985 * 10**18, 99 * 10**17, NOW + 300),
        ]
        decoded = decode_instructions(encode_instructions(instructions))
        assert len(decoded) == 2
        venue_id, token_in, token_out, amount_in, min_out, deadline = decoded[1]
        assert (venue_id, amount_in, min_out, deadline) == (5, 2985 * 10**18, 99 * 10**17, NOW + 300)
        assert token_in.lower() == f"0x{2:040x}"
        assert token_out.lower() == f"0x{1:040x}"

    def test_execute_arbitrage_calldata(self):
        data = encode_execute_arbitrage(f"0x{1:040x}", 10**19, [])
        assert data.startswith("0x" + SELECTOR_EXECUTE_ARBITRAGE.hex())
        assert len(SELECTOR_EXECUTE_ARBITRAGE) == 4

    @pytest.mark.parametrize(
        "value,expected",
        [(None, None), (7, 7), ("0x1", 1), ("0x927c0", 600_000)],
    )
    def test_hex_to_int(self, value, expected):
        assert hex_to_int(value) == expected


class TestArbitrageExecutedEvent:
    def test_profit_from_log(self):
        assert parse_arbitrage_executed(receipt(logs=[profit_log(4 * 10**16)]), CONTRACT) == 4 * 10**16

    def test_address_compared_case_insensitively(self):
        log = profit_log(5, address=CONTRACT.upper().replace("0X", "0x"))
        assert parse_arbitrage_executed(receipt(logs=[log]), CONTRACT) == 5

    def test_other_contract_ignored(self):
        log = profit_log(5, address=f"0x{9:040x}")
        assert parse_arbitrage_executed(receipt(logs=[log]), CONTRACT) is None

    def test_other_topic_ignored(self):
        log = profit_log(5)
        log["topics"] = ["0x" + "11" * 32]
        assert parse_arbitrage_executed(receipt(logs=[log]), CONTRACT) is None

    def test_no_logs(self):
        assert parse_arbitrage_executed({"logs": None}, CONTRACT) is None


# =============================================================================
# SETTLEMENT CONTRACT
# =============================================================================

class TestSettlementContract:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,expected", [("0x6080", True), ("0x", False), ("0x0", False)])
    async def test_is_deployed(self, provider, settlement, code, expected):
        provider.get_code.return_value = code
        assert await settlement.is_deployed() is expected

    @pytest.mark.asyncio
    async def test_no_address_is_not_deployed(self, provider):
        assert await SettlementContract(provider, "", SENDER).is_deployed() is False
        provider.get_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_estimate_gas_buffer(self, settlement):
        assert await settlement.estimate_gas("0x") == 480_000

    @pytest.mark.asyncio
    async def test_estimate_gas_fallback(self, provider, settlement):
        provider.estimate_gas.side_effect = RPCError("execution reverted")
        assert await settlement.estimate_gas("0x") == 500_000

    @pytest.mark.asyncio
    async def test_submit(self, provider, settlement):
        tx_hash = await settlement.submit(f"0x{1:040x}", 10**19, [], gas_price_wei=3 * 10**9)

        assert tx_hash == TX_HASH
        tx = provider.send_transaction.await_args.args[0]
        assert tx["from"] == SENDER
        assert tx["to"] == CONTRACT
        assert tx["gas"] == hex(480_000)
        assert tx["gasPrice"] == hex(3 * 10**9)
        assert tx["data"].startswith("0x" + SELECTOR_EXECUTE_ARBITRAGE.hex())

    @pytest.mark.asyncio
    async def test_wait_for_receipt_polls(self, provider, settlement):
        provider.get_transaction_receipt.side_effect = [None, None, receipt()]
        result = await settlement.wait_for_receipt(TX_HASH)
        assert result["status"] == "0x1"
        assert settlement._sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_wait_for_receipt_timeout(self, provider):
        clock = FakeClock()
        sleep = AsyncMock(side_effect=lambda seconds: clock.advance(int(seconds * 1000)))
        provider.get_transaction_receipt.return_value = None
        settlement = SettlementContract(
            provider, CONTRACT, SENDER,
            receipt_timeout_seconds=10, poll_interval_seconds=2,
            sleep=sleep, clock=clock,
        )

        with pytest.raises(RPCTimeoutError):
            await settlement.wait_for_receipt(TX_HASH)
        assert provider.get_transaction_receipt.await_count == 6

    def test_receipt_helpers(self):
        assert SettlementContract.receipt_succeeded(receipt("0x1"))
        assert not SettlementContract.receipt_succeeded(receipt("0x0"))
        assert SettlementContract.receipt_gas_cost_wei(receipt()) == 600_000 * 3 * 10**9

    @pytest.mark.asyncio
    async def test_emergency_withdraw(self, provider, settlement):
        await settlement.emergency_withdraw(f"0x{1:040x}")
        tx = provider.send_transaction.await_args.args[0]
        assert tx["to"] == CONTRACT
        assert len(tx["data"]) == 2 + 8 + 64


# =============================================================================
# EXECUTOR
# =============================================================================

class TestClassifyFailure:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("execution reverted: UniswapV2Library: INSUFFICIENT_LIQUIDITY", FailureReason.INSUFFICIENT_LIQUIDITY),
            ("PancakeRouter: INSUFFICIENT_OUTPUT_AMOUNT", FailureReason.EXCESSIVE_SLIPPAGE),
            ("Too little received", FailureReason.EXCESSIVE_SLIPPAGE),
            ("Pancake: EXPIRED", FailureReason.DEADLINE_EXCEEDED),
            ("Transaction too old: deadline passed", FailureReason.DEADLINE_EXCEEDED),
            ("gas required exceeds allowance", FailureReason.GAS_ESTIMATION_FAILED),
            ("nonce too low", FailureReason.UNKNOWN),
            (None, FailureReason.UNKNOWN),
        ],
    )
    def test_patterns(self, message, expected):
        assert classify_failure(message) == expected


class TestBuildInstructions:
    def test_min_out_and_deadline(self, executor, assets):
        instructions = executor.build_instructions(wbnb_opportunity())

        assert [i.venue_settlement_id for i in instructions] == [0, 2, 5]
        assert instructions[0].token_in == assets.get("WBNB").address
        assert instructions[0].amount_in == 10 * 10**18
        assert instructions[0].min_amount_out == 2985 * 10**18
        assert instructions[1].min_amount_out == 597 * 10**14
        assert instructions[2].min_amount_out == 999975 * 10**13
        assert {i.deadline for i in instructions} == {NOW + 300}

    def test_min_out_rounds_down(self, executor):
        opp = wbnb_opportunity()
        opp.legs[0] = replace(opp.legs[0], amount_out=Decimal("1.000000000000000001"))
        instructions = executor.build_instructions(opp, now=0)
        # 0.995000000000000000995 truncated to 18 decimals
        assert instructions[0].min_amount_out == 995 * 10**15
        assert instructions[0].deadline == 300

    def test_custom_buffer(self, settlement, assets, venues):
        settings = ExecutionSettings(slippage_buffer_percent=Decimal("1"), deadline_seconds=60)
        executor = FlashLoanExecutor(settlement, assets, venues, settings, clock_seconds=lambda: NOW)
        instructions = executor.build_instructions(wbnb_opportunity())
        assert instructions[0].min_amount_out == 2970 * 10**18
        assert instructions[0].deadline == NOW + 60


class TestExecute:
    @pytest.mark.asyncio
    async def test_profit_from_event(self, provider, executor):
        provider.get_transaction_receipt.return_value = receipt(logs=[profit_log(4 * 10**16)])

        result = await executor.execute(wbnb_opportunity())

        assert result.success
        assert result.tx_hash == TX_HASH
        assert result.realized_profit == Decimal("0.04")
        assert result.profit_source == ProfitSource.EVENT
        assert result.gas_used == 600_000
        assert result.block_number == 30_000_000
        assert provider.send_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_estimated_profit_without_event(self, executor):
        result = await executor.execute(wbnb_opportunity())

        # 0.05 gross - 0.009 fee - 0.0018 observed gas
        assert result.success
        assert result.realized_profit == Decimal("0.0392")
        assert result.profit_source == ProfitSource.ESTIMATED

    @pytest.mark.asyncio
    async def test_loan_amount_in_raw_units(self, provider, executor):
        await executor.execute(wbnb_opportunity())
        data = provider.send_transaction.await_args.args[0]["data"]
        # selector, then asset word, then amount word
        amount_word = data[2 + 8 + 64: 2 + 8 + 128]
        assert int(amount_word, 16) == 10 * 10**18

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, provider, executor):
        provider.get_transaction_receipt.return_value = receipt(status="0x0")

        result = await executor.execute(wbnb_opportunity())

        assert not result.success
        assert result.tx_hash == TX_HASH
        assert result.failure_reason == FailureReason.UNKNOWN
        assert provider.send_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_submission_is_classified(self, provider, executor):
        provider.send_transaction.side_effect = RPCError(
            "execution reverted: PancakeRouter: INSUFFICIENT_OUTPUT_AMOUNT"
        )

        result = await executor.execute(wbnb_opportunity())

        assert not result.success
        assert result.tx_hash is None
        assert result.failure_reason == FailureReason.EXCESSIVE_SLIPPAGE
        assert "INSUFFICIENT_OUTPUT_AMOUNT" in result.error_message

    @pytest.mark.asyncio
    async def test_receipt_timeout_is_failure(self, provider, executor):
        executor.settlement.wait_for_receipt = AsyncMock(side_effect=RPCTimeoutError("deadline passed"))

        result = await executor.execute(wbnb_opportunity())

        assert not result.success
        assert result.tx_hash == TX_HASH
        assert result.failure_reason == FailureReason.DEADLINE_EXCEEDED

    @pytest.mark.asyncio
    async def test_one_execution_in_flight(self, provider, executor):
        in_flight = 0
        peak = 0

        async def slow_send(tx):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            assert executor.busy
            await asyncio.sleep(0)
            in_flight -= 1
            return TX_HASH

        provider.send_transaction.side_effect = slow_send

        results = await asyncio.gather(
            executor.execute(wbnb_opportunity()),
            executor.execute(wbnb_opportunity()),
        )

        assert all(r.success for r in results)
        assert peak == 1
        assert not executor.busy
