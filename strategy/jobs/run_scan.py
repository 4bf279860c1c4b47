#!/usr/bin/env python3
"""
strategy/jobs/run_scan.py - CLI entrypoint for the circular arbitrage scanner.

Features:
- Path set generated once at startup from tokens.yaml + dexes.yaml
- Per-cycle asset / hop-band rotation with batched quoting
- Risk, confidence and chain-state gates before any execution
- Dry-run by default; --execute (or EXECUTION_ENABLED=true) submits
- Graceful stop on SIGINT / SIGTERM, final stats summary

Usage:
    python -m strategy.jobs.run_scan --once
    python -m strategy.jobs.run_scan --cycles 100 --console-logs
    cyclearb-scan --execute
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from chains.providers import build_provider
from config import CONFIG_DIR, get_chain_config
from core.exceptions import ConsecutiveFailureLimitExceeded, CycleArbError
from core.logging import get_logger, set_global_context, setup_logging
from dex.adapters import build_quoters
from dex.price_aggregator import PriceAggregator
from discovery.path_generator import PathGenerator
from discovery.registry import load_universe
from execution.executor import FlashLoanExecutor
from execution.settlement import SettlementContract
from monitoring.scan_stats import print_scan_stats
from strategy.config import StrategyConfig, load_strategy_config
from strategy.gates import ExecutionGate
from strategy.orchestrator import ScanOrchestrator
from strategy.scanner import OpportunityScanner

logger = get_logger("cyclearb.scan")

__version__ = "0.3.0"


def build_orchestrator(
    config: StrategyConfig,
    config_dir: Optional[Path] = None,
    chain_key: str = "bsc",
) -> ScanOrchestrator:
    """Wire every component from config files."""
    chain_config = get_chain_config(chain_key, config_dir)
    assets, graph, venues = load_universe(config_dir)

    provider = build_provider(chain_config)
    quoters = build_quoters(venues, provider, bridge=assets.bridge)
    aggregator = PriceAggregator(assets, quoters, config.quotes)
    generator = PathGenerator(assets, graph, venues, config.paths)
    scanner = OpportunityScanner(assets, venues, aggregator, config.scanner)

    sender = chain_config.get("sender_address") or None
    settlement = SettlementContract(
        provider,
        chain_config.get("settlement_address") or "",
        sender,
        config.execution,
        receipt_timeout_seconds=float(chain_config.get("receipt_timeout_seconds", 120)),
        poll_interval_seconds=float(chain_config.get("receipt_poll_interval_seconds", 2)),
    )
    gate = ExecutionGate(provider, sender, config.gates)
    executor = FlashLoanExecutor(settlement, assets, venues, config.execution)

    return ScanOrchestrator(
        provider=provider,
        generator=generator,
        aggregator=aggregator,
        scanner=scanner,
        gate=gate,
        executor=executor,
        settlement=settlement,
        config=config,
    )


@click.command()
@click.option("--config-dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              default=None, help="Directory holding chains/tokens/dexes/strategy YAML")
@click.option("--chain", "chain_key", default="bsc", help="Chain key in chains.yaml")
@click.option("--cycles", "-n", type=int, default=None, help="Stop after N scan cycles")
@click.option("--once", is_flag=True, help="Run a single scan cycle and exit")
@click.option("--log-level", "-l", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.option("--json-logs/--console-logs", default=True)
@click.option("--execute/--dry-run", default=None,
              help="Submit settlement transactions (overrides strategy.yaml)")
def main(
    config_dir: Optional[Path],
    chain_key: str,
    cycles: Optional[int],
    once: bool,
    log_level: str,
    json_logs: bool,
    execute: Optional[bool],
) -> None:
    """Scan circular flash-loan arbitrage paths across configured venues."""
    setup_logging(level=log_level, json_output=json_logs)
    set_global_context(service="cyclearb-scan", version=__version__, chain=chain_key)

    strategy_path = (config_dir or CONFIG_DIR) / "strategy.yaml"
    try:
        config = load_strategy_config(strategy_path)
        if execute is not None:
            config.execution.execution_enabled = execute
        orchestrator = build_orchestrator(config, config_dir, chain_key)
    except CycleArbError as e:
        logger.error(f"Startup failed: {e}", extra={"context": {"error_code": e.code.value}})
        sys.exit(2)

    def handle_shutdown(signum: int, frame: object) -> None:
        logger.info("Shutdown requested", extra={"context": {"signal": signum}})
        orchestrator.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    max_cycles = 1 if once else cycles
    logger.info(
        "Starting CYCLEARB scanner",
        extra={
            "context": {
                "chain": chain_key,
                "max_cycles": max_cycles,
                "execution_enabled": config.execution.execution_enabled,
                "min_roi_percent": str(config.gates.min_roi_percent),
            }
        },
    )

    async def run():
        try:
            return await orchestrator.run(max_cycles=max_cycles)
        finally:
            await orchestrator.provider.close()

    try:
        stats = asyncio.run(run())
    except CycleArbError as e:
        logger.error(f"Scanner stopped: {e}", extra={"context": {"error_code": e.code.value}})
        sys.exit(1)

    print_scan_stats(stats)
    if isinstance(orchestrator.context.last_error, ConsecutiveFailureLimitExceeded):
        logger.error(f"Scanner stopped: {orchestrator.context.last_error}")
        sys.exit(1)
    logger.info("Scanner stopped")


if __name__ == "__main__":
    main()
