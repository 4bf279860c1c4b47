# PATH: core/constants.py
"""
Constants for CYCLEARB.

Contains enums, defaults, and protocol constants shared by every layer.
Tunable heuristics live in strategy/config.py; the values here are the
defaults those settings fall back to.
"""

from decimal import Decimal
from enum import Enum
from typing import Final, List

# =============================================================================
# PROTOCOL CONSTANTS
# =============================================================================

# Flash-loan fee charged by the lending pool (0.09%)
FLASH_LOAN_FEE_RATE: Final = Decimal("0.0009")

# Concentrated-liquidity fee tiers (hundredths of a bip), tried in order
CL_FEE_TIERS: List[int] = [100, 500, 2500, 10000]

# Unit prefix for path ids
PATH_ID_PREFIX: Final = "arb_"

WEI_PER_GWEI: Final = 10**9
WEI_PER_ETHER: Final = 10**18

# =============================================================================
# GAS MODEL
# =============================================================================

GAS_PER_SWAP: Final = 150_000
GAS_PER_EXTRA_HOP: Final = 30_000
GAS_FLASH_LOAN_OVERHEAD: Final = 250_000
GAS_CIRCULAR_VALIDATION: Final = 50_000
GAS_CL_HOP_EXTRA: Final = 50_000

DEFAULT_GAS_PRICE_GWEI = "3"
DEFAULT_PRIORITY_FEE_GWEI = "1"
DEFAULT_GAS_LIMIT = 500_000
GAS_ESTIMATE_BUFFER: Final = Decimal("1.2")

# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_MIN_ROI_PERCENT = "0.5"
DEFAULT_MAX_GAS_PRICE_GWEI = "20"
DEFAULT_MIN_GAS_RESERVE = "0.005"
DEFAULT_MAX_PRICE_IMPACT_PERCENT = "2"
DEFAULT_SLIPPAGE_BUFFER_PERCENT = "0.5"
DEFAULT_DEADLINE_SECONDS = 300
DEFAULT_CACHE_TTL_MS = 5000
DEFAULT_REFERENCE_AMOUNT = "0.1"
DEFAULT_MAX_CONCURRENT_SCANS = 6
DEFAULT_QUOTE_PACING_MS = 100
DEFAULT_BATCH_PACING_MS = 200

DEFAULT_SCAN_DELAY_MS = 3000
DEFAULT_MIN_SCAN_DELAY_MS = 2000
DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_CAP_MS = 30000
DEFAULT_MAX_CONSECUTIVE_ERRORS = 5

MIN_HOPS: Final = 2
MAX_HOPS: Final = 10

# Hop-count bands rotated by the orchestrator (inclusive bounds)
HOP_BANDS: List[tuple[int, int]] = [(2, 3), (4, 5), (6, 8), (9, 10)]


class AmmKind(str, Enum):
    """Pricing model of a venue."""
    CONSTANT_PRODUCT = "CONSTANT_PRODUCT"
    CONCENTRATED_LIQUIDITY = "CONCENTRATED_LIQUIDITY"


class LiquidityTier(str, Enum):
    """Depth classification of an asset."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskLevel(str, Enum):
    """Bucketed risk of an opportunity."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ErrorCode(str, Enum):
    """Error and reject codes."""
    # Quotes
    NO_QUOTE = "NO_QUOTE"
    QUOTE_REVERT = "QUOTE_REVERT"
    QUOTE_ZERO_OUTPUT = "QUOTE_ZERO_OUTPUT"
    PRICE_IMPACT_EXCEEDED = "PRICE_IMPACT_EXCEEDED"

    # Path shape
    PATH_NOT_CIRCULAR = "PATH_NOT_CIRCULAR"
    PATH_INVALID = "PATH_INVALID"

    # Gate
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    GAS_PRICE_TOO_HIGH = "GAS_PRICE_TOO_HIGH"
    PNL_BELOW_THRESHOLD = "PNL_BELOW_THRESHOLD"
    RISK_TOO_HIGH = "RISK_TOO_HIGH"
    CONFIDENCE_TOO_LOW = "CONFIDENCE_TOO_LOW"

    # Execution
    EXECUTION_REVERTED = "EXECUTION_REVERTED"

    # Infrastructure
    INFRA_RPC_ERROR = "INFRA_RPC_ERROR"
    INFRA_TIMEOUT = "INFRA_TIMEOUT"
    INFRA_NOT_DEPLOYED = "INFRA_NOT_DEPLOYED"
    CONSECUTIVE_FAILURE_LIMIT = "CONSECUTIVE_FAILURE_LIMIT"

    # Configuration
    CONFIG_INVALID = "CONFIG_INVALID"

    UNKNOWN = "UNKNOWN"


class FailureReason(str, Enum):
    """Classified cause of a failed settlement transaction."""
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    EXCESSIVE_SLIPPAGE = "EXCESSIVE_SLIPPAGE"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    GAS_ESTIMATION_FAILED = "GAS_ESTIMATION_FAILED"
    UNKNOWN = "UNKNOWN"


class ProfitSource(str, Enum):
    """Where realized profit was read from."""
    EVENT = "event"
    ESTIMATED = "estimated"


class OrchestratorState(str, Enum):
    """Lifecycle of the scan loop."""
    IDLE = "IDLE"
    SCANNING = "SCANNING"
    STOPPED = "STOPPED"


# Substrings searched (lower-cased) in revert messages, checked in order
FAILURE_PATTERNS: List[tuple[str, FailureReason]] = [
    ("insufficient liquidity", FailureReason.INSUFFICIENT_LIQUIDITY),
    ("insufficient_liquidity", FailureReason.INSUFFICIENT_LIQUIDITY),
    ("slippage", FailureReason.EXCESSIVE_SLIPPAGE),
    ("insufficient_output_amount", FailureReason.EXCESSIVE_SLIPPAGE),
    ("too little received", FailureReason.EXCESSIVE_SLIPPAGE),
    ("deadline", FailureReason.DEADLINE_EXCEEDED),
    ("expired", FailureReason.DEADLINE_EXCEEDED),
    ("gas", FailureReason.GAS_ESTIMATION_FAILED),
]
