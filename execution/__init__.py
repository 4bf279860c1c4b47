# PATH: execution/__init__.py
"""
CYCLEARB execution layer.

- settlement: client for the flash-loan settlement contract
- executor: serialized single-transaction executor
"""

from execution.settlement import (
    SettlementContract,
    encode_execute_arbitrage,
    encode_instructions,
    decode_instructions,
    parse_arbitrage_executed,
    TOPIC_ARBITRAGE_EXECUTED,
)
from execution.executor import (
    FlashLoanExecutor,
    classify_failure,
)

__all__ = [
    # Settlement
    "SettlementContract",
    "encode_execute_arbitrage",
    "encode_instructions",
    "decode_instructions",
    "parse_arbitrage_executed",
    "TOPIC_ARBITRAGE_EXECUTED",
    # Executor
    "FlashLoanExecutor",
    "classify_failure",
]
