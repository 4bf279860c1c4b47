"""
strategy/config.py - Strategy configuration.

Every scoring heuristic and threshold used by the path generator,
scanner, gate, executor and scan loop, with defaults that match
config/strategy.yaml. Decimal fields are parsed from strings.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

import yaml

from core.constants import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_CAP_MS,
    DEFAULT_BATCH_PACING_MS,
    DEFAULT_CACHE_TTL_MS,
    DEFAULT_DEADLINE_SECONDS,
    DEFAULT_GAS_LIMIT,
    DEFAULT_GAS_PRICE_GWEI,
    DEFAULT_MAX_CONCURRENT_SCANS,
    DEFAULT_MAX_CONSECUTIVE_ERRORS,
    DEFAULT_MAX_GAS_PRICE_GWEI,
    DEFAULT_MAX_PRICE_IMPACT_PERCENT,
    DEFAULT_MIN_GAS_RESERVE,
    DEFAULT_MIN_ROI_PERCENT,
    DEFAULT_MIN_SCAN_DELAY_MS,
    DEFAULT_PRIORITY_FEE_GWEI,
    DEFAULT_QUOTE_PACING_MS,
    DEFAULT_REFERENCE_AMOUNT,
    DEFAULT_SCAN_DELAY_MS,
    DEFAULT_SLIPPAGE_BUFFER_PERCENT,
    GAS_ESTIMATE_BUFFER,
    MAX_HOPS,
    MIN_HOPS,
)
from core.exceptions import ConfigError
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PathSettings:
    """Path-space construction and filtering."""
    min_hops: int = MIN_HOPS
    max_hops: int = MAX_HOPS
    min_liquidity_score: int = 15
    max_paths_per_asset: int = 200
    paths_per_cycle: int = 25
    tier_points: Dict[str, int] = field(
        default_factory=lambda: {"high": 10, "medium": 5, "low": 1}
    )
    high_liquidity_flash_bonus: int = 25
    native_asset_bonus: int = 20
    stable_pair_bonus: int = 15
    long_path_threshold: int = 6
    long_path_penalty: int = 5
    complexity_per_hop: int = 10
    complexity_per_venue: int = 5
    complexity_per_cl_hop: int = 15


@dataclass
class LoanSizing:
    """Multipliers applied to an asset's base loan size."""
    short_path_max_hops: int = 3
    short_path_multiplier: Decimal = Decimal("2")
    long_path_min_hops: int = 6
    long_path_multiplier: Decimal = Decimal("0.5")
    high_liquidity_score: int = 50
    high_liquidity_multiplier: Decimal = Decimal("1.5")
    low_liquidity_score: int = 30
    low_liquidity_multiplier: Decimal = Decimal("0.7")


@dataclass
class QuoteSettings:
    """Price aggregator behaviour."""
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    reference_amount: Decimal = Decimal(DEFAULT_REFERENCE_AMOUNT)
    pacing_ms: int = DEFAULT_QUOTE_PACING_MS
    timeout_seconds: int = 10


@dataclass
class ScannerSettings:
    """Opportunity scanner behaviour."""
    max_price_impact_percent: Decimal = Decimal(DEFAULT_MAX_PRICE_IMPACT_PERCENT)
    max_concurrent_scans: int = DEFAULT_MAX_CONCURRENT_SCANS
    batch_pacing_ms: int = DEFAULT_BATCH_PACING_MS
    use_quote_snapshot: bool = False
    gas_price_gwei: Decimal = Decimal(DEFAULT_GAS_PRICE_GWEI)
    priority_fee_gwei: Decimal = Decimal(DEFAULT_PRIORITY_FEE_GWEI)
    loan_sizing: LoanSizing = field(default_factory=LoanSizing)


@dataclass
class GateThresholds:
    """Pre-execution gate thresholds."""
    min_gas_reserve: Decimal = Decimal(DEFAULT_MIN_GAS_RESERVE)
    max_gas_price_gwei: Decimal = Decimal(DEFAULT_MAX_GAS_PRICE_GWEI)
    min_roi_percent: Decimal = Decimal(DEFAULT_MIN_ROI_PERCENT)
    min_confidence: Decimal = Decimal("60")


@dataclass
class ExecutionSettings:
    """Settlement submission behaviour. Disabled means would-execute only."""
    execution_enabled: bool = False
    slippage_buffer_percent: Decimal = Decimal(DEFAULT_SLIPPAGE_BUFFER_PERCENT)
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    fallback_gas_limit: int = DEFAULT_GAS_LIMIT
    gas_estimate_buffer: Decimal = GAS_ESTIMATE_BUFFER


@dataclass
class LoopSettings:
    """Scan loop pacing and failure policy."""
    base_delay_ms: int = DEFAULT_SCAN_DELAY_MS
    min_delay_ms: int = DEFAULT_MIN_SCAN_DELAY_MS
    busy_ratio: Decimal = Decimal("0.05")
    busy_multiplier: Decimal = Decimal("1.5")
    quiet_ratio: Decimal = Decimal("0.01")
    quiet_multiplier: Decimal = Decimal("0.8")
    quiet_min_cycles: int = 50
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS
    max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS
    execute_top_n: int = 3


@dataclass
class StrategyConfig:
    """Full strategy configuration."""
    paths: PathSettings = field(default_factory=PathSettings)
    quotes: QuoteSettings = field(default_factory=QuoteSettings)
    scanner: ScannerSettings = field(default_factory=ScannerSettings)
    gates: GateThresholds = field(default_factory=GateThresholds)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)

    def to_dict(self) -> Dict[str, Any]:
        def dump(obj: Any) -> Dict[str, Any]:
            out = {}
            for f in fields(obj):
                value = getattr(obj, f.name)
                if hasattr(value, "__dataclass_fields__"):
                    out[f.name] = dump(value)
                elif isinstance(value, Decimal):
                    out[f.name] = str(value)
                else:
                    out[f.name] = value
            return out

        return dump(self)


def _coerce(current: Any, raw: Any, key: str) -> Any:
    """Convert a YAML value to the type of the field's default."""
    try:
        if isinstance(current, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in ("1", "true", "yes", "on")
            return bool(raw)
        if isinstance(current, Decimal):
            return Decimal(str(raw))
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, dict):
            return {**current, **dict(raw)}
    except (ArithmeticError, ValueError, TypeError) as e:
        raise ConfigError(
            f"Invalid value for {key}: {raw!r}",
            {"key": key, "value": raw, "error": str(e)},
        ) from e
    return raw


def _apply(section: Any, data: Dict[str, Any], prefix: str) -> None:
    """Overlay a YAML mapping on a settings dataclass in place."""
    known = {f.name for f in fields(section)}
    for key, raw in (data or {}).items():
        if key not in known:
            logger.warning(
                f"Unknown strategy setting ignored: {prefix}.{key}",
                extra={"context": {"key": f"{prefix}.{key}"}},
            )
            continue
        current = getattr(section, key)
        if hasattr(current, "__dataclass_fields__"):
            _apply(current, raw, f"{prefix}.{key}")
        else:
            setattr(section, key, _coerce(current, raw, f"{prefix}.{key}"))


def _apply_env_overrides(config: StrategyConfig) -> None:
    """MIN_PROFIT_PERCENT, MAX_GAS_PRICE (gwei), EXECUTION_ENABLED."""
    env_map = {
        "MIN_PROFIT_PERCENT": (config.gates, "min_roi_percent"),
        "MAX_GAS_PRICE": (config.gates, "max_gas_price_gwei"),
        "EXECUTION_ENABLED": (config.execution, "execution_enabled"),
    }
    for env_key, (section, attr) in env_map.items():
        raw = os.getenv(env_key)
        if raw is None or raw == "":
            continue
        setattr(section, attr, _coerce(getattr(section, attr), raw, env_key))


def load_strategy_config(config_path: Path | None = None) -> StrategyConfig:
    """
    Load strategy configuration from YAML file.

    Args:
        config_path: Path to strategy.yaml (default: config/strategy.yaml)

    Returns:
        StrategyConfig with YAML values over defaults, then env overrides
    """
    if config_path is None:
        config_path = Path(__file__).parent.parent / "config" / "strategy.yaml"

    config = StrategyConfig()

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        for section_name in ("paths", "quotes", "scanner", "gates", "execution", "loop"):
            _apply(getattr(config, section_name), data.get(section_name, {}), section_name)
    else:
        logger.info(
            "Strategy config not found, using defaults",
            extra={"context": {"path": str(config_path)}},
        )

    _apply_env_overrides(config)
    return config
