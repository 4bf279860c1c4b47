# PATH: execution/settlement.py
"""
Flash-loan settlement contract client.

SETTLEMENT CONTRACT INTERFACE:
==============================

  executeArbitrage(address asset, uint256 amount, bytes params)
    params = abi.encode(
      (uint8 dexId, address tokenIn, address tokenOut,
       uint256 amountIn, uint256 amountOutMin, uint256 deadline)[]
    )
    Borrows `amount` of `asset`, runs the swaps in order, repays the
    loan plus fee and keeps the remainder. Reverts if any swap returns
    less than amountOutMin or the loan cannot be repaid.

  event ArbitrageExecuted(address indexed asset, uint256 amount,
                          uint256 profit, uint256 timestamp)

  emergencyWithdraw(address token)

Transactions are sent with eth_sendTransaction from a node-managed
account; this client never holds keys.
==============================
"""

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak

from chains.providers import RPCProvider
from core.exceptions import InfraError, RPCError, RPCTimeoutError
from core.logging import get_logger
from core.models import SwapInstruction
from core.time import now_ms
from strategy.config import ExecutionSettings

logger = get_logger(__name__)


# =============================================================================
# ABI
# =============================================================================

INSTRUCTION_TUPLE = "(uint8,address,address,uint256,uint256,uint256)"

EXECUTE_ARBITRAGE_SIGNATURE = "executeArbitrage(address,uint256,bytes)"
SELECTOR_EXECUTE_ARBITRAGE = function_signature_to_4byte_selector(EXECUTE_ARBITRAGE_SIGNATURE)

EMERGENCY_WITHDRAW_SIGNATURE = "emergencyWithdraw(address)"
SELECTOR_EMERGENCY_WITHDRAW = function_signature_to_4byte_selector(EMERGENCY_WITHDRAW_SIGNATURE)

ARBITRAGE_EXECUTED_SIGNATURE = "ArbitrageExecuted(address,uint256,uint256,uint256)"
TOPIC_ARBITRAGE_EXECUTED = "0x" + keccak(text=ARBITRAGE_EXECUTED_SIGNATURE).hex()


def encode_instructions(instructions: Sequence[SwapInstruction]) -> bytes:
    """ABI-encode the swap instruction array carried in `params`."""
    return encode([f"{INSTRUCTION_TUPLE}[]"], [[i.as_abi_tuple() for i in instructions]])


def decode_instructions(params: bytes) -> List[tuple]:
    """Inverse of encode_instructions (used for logging and checks)."""
    (items,) = decode([f"{INSTRUCTION_TUPLE}[]"], params)
    return list(items)


def encode_execute_arbitrage(
    asset: str,
    amount: int,
    instructions: Sequence[SwapInstruction],
) -> str:
    """Full call data for executeArbitrage as 0x-hex."""
    args = encode(
        ["address", "uint256", "bytes"],
        [asset, amount, encode_instructions(instructions)],
    )
    return "0x" + (SELECTOR_EXECUTE_ARBITRAGE + args).hex()


def parse_arbitrage_executed(receipt: dict, contract_address: str) -> Optional[int]:
    """
    Raw profit from the first ArbitrageExecuted log emitted by the contract.

    Returns:
        Profit in the asset's smallest unit, or None when no such log
    """
    for log in receipt.get("logs") or []:
        topics = log.get("topics") or []
        if not topics or topics[0].lower() != TOPIC_ARBITRAGE_EXECUTED:
            continue
        if (log.get("address") or "").lower() != contract_address.lower():
            continue
        data = log.get("data") or "0x"
        _amount, profit, _timestamp = decode(
            ["uint256", "uint256", "uint256"], bytes.fromhex(data[2:])
        )
        return profit
    return None


def hex_to_int(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


class SettlementContract:
    """
    Client for the deployed settlement contract.

    Usage:
        settlement = SettlementContract(provider, address, sender, config.execution)
        tx_hash = await settlement.submit(asset_address, amount_raw, instructions)
        receipt = await settlement.wait_for_receipt(tx_hash)
    """

    def __init__(
        self,
        provider: RPCProvider,
        address: str,
        sender: str,
        settings: Optional[ExecutionSettings] = None,
        receipt_timeout_seconds: float = 120,
        poll_interval_seconds: float = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
    ):
        self.provider = provider
        self.address = address
        self.sender = sender
        self.settings = settings or ExecutionSettings()
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._clock = clock

    async def is_deployed(self) -> bool:
        """True when bytecode exists at the configured address."""
        if not self.address:
            return False
        code = await self.provider.get_code(self.address)
        return bool(code) and code not in ("0x", "0x0")

    async def estimate_gas(self, data: str) -> int:
        """
        Gas limit for the call: node estimate times the buffer.

        Falls back to the configured limit when estimation fails.
        """
        tx = {"from": self.sender, "to": self.address, "data": data}
        try:
            estimate = await self.provider.estimate_gas(tx)
        except (RPCError, InfraError) as e:
            logger.warning(
                f"Gas estimation failed, using fallback {self.settings.fallback_gas_limit}",
                extra={"context": {"error": str(e)}},
            )
            return self.settings.fallback_gas_limit
        return int(Decimal(estimate) * self.settings.gas_estimate_buffer)

    async def submit(
        self,
        asset: str,
        amount: int,
        instructions: Sequence[SwapInstruction],
        gas_price_wei: Optional[int] = None,
    ) -> str:
        """
        Send executeArbitrage; returns the transaction hash.

        Raises:
            RPCError: The node rejected the transaction
            InfraError: No endpoint accepted the request
        """
        data = encode_execute_arbitrage(asset, amount, instructions)
        gas_limit = await self.estimate_gas(data)
        tx = {
            "from": self.sender,
            "to": self.address,
            "data": data,
            "gas": hex(gas_limit),
        }
        if gas_price_wei is not None:
            tx["gasPrice"] = hex(gas_price_wei)

        tx_hash = await self.provider.send_transaction(tx)
        logger.info(
            f"Settlement transaction submitted: {tx_hash}",
            extra={
                "context": {
                    "tx_hash": tx_hash,
                    "asset": asset,
                    "amount": amount,
                    "hops": len(instructions),
                    "gas_limit": gas_limit,
                }
            },
        )
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> dict:
        """
        Poll until the transaction is mined.

        Raises:
            RPCTimeoutError: Not mined within receipt_timeout_seconds
        """
        deadline = self._clock() + int(self.receipt_timeout_seconds * 1000)
        while True:
            receipt = await self.provider.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if self._clock() >= deadline:
                raise RPCTimeoutError(
                    f"Receipt for {tx_hash} not available after {self.receipt_timeout_seconds}s",
                    details={"tx_hash": tx_hash},
                )
            await self._sleep(self.poll_interval_seconds)

    @staticmethod
    def receipt_succeeded(receipt: dict) -> bool:
        return hex_to_int(receipt.get("status")) == 1

    @staticmethod
    def receipt_gas_cost_wei(receipt: dict) -> int:
        gas_used = hex_to_int(receipt.get("gasUsed")) or 0
        gas_price = hex_to_int(receipt.get("effectiveGasPrice")) or 0
        return gas_used * gas_price

    def realized_profit_raw(self, receipt: dict) -> Optional[int]:
        return parse_arbitrage_executed(receipt, self.address)

    async def emergency_withdraw(self, token: str) -> str:
        """Ask the contract to return a stuck token balance to its owner."""
        data = "0x" + (SELECTOR_EMERGENCY_WITHDRAW + encode(["address"], [token])).hex()
        tx_hash = await self.provider.send_transaction(
            {"from": self.sender, "to": self.address, "data": data}
        )
        logger.warning(
            f"Emergency withdraw submitted: {tx_hash}",
            extra={"context": {"token": token, "tx_hash": tx_hash}},
        )
        return tx_hash
