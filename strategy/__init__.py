# PATH: strategy/__init__.py
"""
Strategy package for CYCLEARB.

- config: thresholds and heuristics (StrategyConfig)
- scanner: per-path profit, confidence and risk evaluation
- gates: pre-execution safety checks
- orchestrator: the scan loop

Only config is re-exported here; scanner, gates and orchestrator pull in
the quoting and execution layers and are imported directly.
"""

from strategy.config import StrategyConfig, load_strategy_config

__all__ = [
    "StrategyConfig",
    "load_strategy_config",
]
