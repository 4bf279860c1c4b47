# PATH: core/logging.py
"""
Structured logging for CYCLEARB.

All contextual fields are passed only via extra={"context": {...}}.
JSON output for long-running loops, a compact console format for humans.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Context added to every log entry (chain, run mode, ...)
_global_context: dict[str, Any] = {}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Output format:
    {
        "timestamp": "2026-01-04T12:00:00.000+00:00",
        "level": "INFO",
        "logger": "scanner",
        "message": "Opportunity found",
        "context": {"path_id": "arb_1f2e3d4c5b6a", "net_roi": "0.38"}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(_global_context)
        if getattr(record, "context", None):
            context.update(record.context)

        if record.exc_info:
            context["exception"] = self.formatException(record.exc_info)

        if context:
            log_entry["context"] = context

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    max_fields = 4

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} | {record.levelname:<8} | {record.name} | {record.getMessage()}"

        context = getattr(record, "context", None)
        if context:
            items = list(context.items())
            ctx_str = ", ".join(f"{k}={v}" for k, v in items[: self.max_fields])
            if len(items) > self.max_fields:
                ctx_str += f", ... (+{len(items) - self.max_fields} more)"
            base += f" | {ctx_str}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that merges its default context into each entry."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra") or {}
        context = {**self.extra, **extra.get("context", {})}
        kwargs["extra"] = {"context": context}
        return msg, kwargs


def set_global_context(**kwargs: Any) -> None:
    """
    Set context that gets added to all JSON log entries.

    Example:
        set_global_context(chain_id=56, mode="dry_run")
    """
    _global_context.update(kwargs)


def clear_global_context() -> None:
    """Clear global logging context."""
    _global_context.clear()


def get_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Get a logger with optional default context.

    Example:
        logger = get_logger("cyclearb.scan", chain_id=56)
        logger.info("Cycle done", extra={"context": {"paths": 25}})
    """
    return ContextAdapter(logging.getLogger(name), context)


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines (True) or console format (False)
        log_file: Optional file path; always JSON
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def log_opportunity(
    logger: ContextAdapter,
    opportunity_id: str,
    net_profit: str,
    net_roi: str,
    status: str,
    reject_reason: Optional[str] = None,
    **extra: Any,
) -> None:
    """Log an opportunity evaluation with standard context."""
    logger.info(
        f"Opportunity: {opportunity_id} | {status} | net: {net_profit}",
        extra={
            "context": {
                "opportunity_id": opportunity_id,
                "net_profit": net_profit,
                "net_roi": net_roi,
                "status": status,
                "reject_reason": reject_reason,
                **extra,
            }
        },
    )


def log_trade(
    logger: ContextAdapter,
    opportunity_id: str,
    status: str,
    tx_hash: Optional[str] = None,
    gas_used: Optional[int] = None,
    **extra: Any,
) -> None:
    """Log a settlement attempt with standard context."""
    logger.info(
        f"Trade: {opportunity_id} | {status}",
        extra={
            "context": {
                "opportunity_id": opportunity_id,
                "status": status,
                "tx_hash": tx_hash,
                "gas_used": gas_used,
                **extra,
            }
        },
    )


def log_error(
    logger: ContextAdapter,
    error_code: str,
    message: str,
    **extra: Any,
) -> None:
    """Log an error with standard context."""
    logger.error(
        f"[{error_code}] {message}",
        extra={"context": {"error_code": error_code, **extra}},
    )
