# PATH: core/exceptions.py
"""
Typed exceptions for CYCLEARB.

Every error carries an ErrorCode and a details dict so it can be logged
and counted without string matching. Revert-type failures (quotes, path
shape, settlement) are kept apart from infrastructure failures (RPC).
"""

from typing import Optional

from core.constants import ErrorCode, FailureReason


class CycleArbError(Exception):
    """Base exception for CYCLEARB."""

    def __init__(
        self,
        message: str = "",
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class ConfigError(CycleArbError):
    """Configuration file is missing or inconsistent."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.CONFIG_INVALID, details)


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

class InfraError(CycleArbError):
    """Infrastructure-related errors (RPC, timeouts). Transient by nature."""

    def __init__(
        self,
        message: str = "",
        code: ErrorCode = ErrorCode.INFRA_RPC_ERROR,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class RPCError(InfraError):
    """Node answered with a JSON-RPC error object."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INFRA_RPC_ERROR, details)


class RPCTimeoutError(InfraError):
    """Operation timed out."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INFRA_TIMEOUT, details)


# =============================================================================
# QUOTES / PATHS
# =============================================================================

class QuoteError(CycleArbError):
    """Quote-related errors for venue adapters."""

    def __init__(
        self,
        message: str = "",
        code: ErrorCode = ErrorCode.QUOTE_REVERT,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class NoQuoteError(QuoteError):
    """A hop could not be priced on its venue."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.NO_QUOTE, details)


class PriceImpactExceededError(CycleArbError):
    """A hop moves the price more than the configured ceiling."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.PRICE_IMPACT_EXCEEDED, details)


class PathNotCircularError(CycleArbError):
    """The hop walk did not return to the flash-loan asset."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.PATH_NOT_CIRCULAR, details)


# =============================================================================
# EXECUTION / LOOP
# =============================================================================

class ExecutionRevertedError(CycleArbError):
    """Settlement transaction failed on chain or before submission."""

    def __init__(
        self,
        message: str,
        reason: FailureReason = FailureReason.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message, ErrorCode.EXECUTION_REVERTED, details)
        self.reason = reason

    def __str__(self):
        return f"[{self.code.value}:{self.reason.value}] {self.message}"


class ConsecutiveFailureLimitExceeded(CycleArbError):
    """The scan loop hit its consecutive-error ceiling."""

    def __init__(self, errors: int, details: Optional[dict] = None):
        super().__init__(
            f"{errors} consecutive scan cycle failures",
            ErrorCode.CONSECUTIVE_FAILURE_LIMIT,
            details,
        )
        self.errors = errors
