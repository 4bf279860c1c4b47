"""
core - Core utilities and models for CYCLEARB.

This package contains:
- models.py: Data models (Asset, Venue, CircularPath, Opportunity, ...)
- constants.py: Enums, protocol constants and defaults
- exceptions.py: Typed exceptions with error codes
- math.py: Safe Decimal utilities (no float money)
- time.py: Millisecond clocks and freshness
- logging.py: Structured JSON logging
"""

from core.constants import (
    AmmKind,
    ErrorCode,
    FailureReason,
    LiquidityTier,
    OrchestratorState,
    ProfitSource,
    RiskLevel,
)
from core.exceptions import (
    ConfigError,
    ConsecutiveFailureLimitExceeded,
    CycleArbError,
    ExecutionRevertedError,
    InfraError,
    NoQuoteError,
    PathNotCircularError,
    PriceImpactExceededError,
    QuoteError,
    RPCError,
    RPCTimeoutError,
)
from core.logging import get_logger, setup_logging
from core.models import (
    Asset,
    CircularPath,
    ExecutionResult,
    Opportunity,
    PriceQuote,
    SwapInstruction,
    SwapLeg,
    Venue,
)

__all__ = [
    # Constants
    "AmmKind",
    "ErrorCode",
    "FailureReason",
    "LiquidityTier",
    "OrchestratorState",
    "ProfitSource",
    "RiskLevel",
    # Exceptions
    "ConfigError",
    "ConsecutiveFailureLimitExceeded",
    "CycleArbError",
    "ExecutionRevertedError",
    "InfraError",
    "NoQuoteError",
    "PathNotCircularError",
    "PriceImpactExceededError",
    "QuoteError",
    "RPCError",
    "RPCTimeoutError",
    # Models
    "Asset",
    "CircularPath",
    "ExecutionResult",
    "Opportunity",
    "PriceQuote",
    "SwapInstruction",
    "SwapLeg",
    "Venue",
    # Logging
    "get_logger",
    "setup_logging",
]
