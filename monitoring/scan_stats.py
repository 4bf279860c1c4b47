"""
monitoring/scan_stats.py - Running statistics for the scan loop.

One ScanStats instance lives inside the loop context. It is only mutated
by the loop task, so it needs no locking.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from core.logging import get_logger
from core.models import ExecutionResult, Opportunity
from core.time import now_iso

logger = get_logger(__name__)


@dataclass
class ScanStats:
    """Counters reported by the stats surface."""
    started_at: str = field(default_factory=now_iso)
    total_scans: int = 0
    scan_cycles: int = 0
    opportunities_found: int = 0
    executions_attempted: int = 0
    executions_succeeded: int = 0
    errors: int = 0
    paths_generated: int = 0
    total_profit: Dict[str, Decimal] = field(default_factory=dict)
    scan_cycles_by_asset: Counter = field(default_factory=Counter)
    gate_rejections: Counter = field(default_factory=Counter)
    execution_failures: Counter = field(default_factory=Counter)
    path_rejections: Counter = field(default_factory=Counter)
    last_error: Optional[str] = None

    @property
    def hit_rate(self) -> Decimal:
        """Opportunities found per path scanned."""
        if self.total_scans == 0:
            return Decimal("0")
        return Decimal(self.opportunities_found) / Decimal(self.total_scans)

    @property
    def cycle_hit_rate(self) -> Decimal:
        """Opportunities found per scan cycle. Drives loop pacing."""
        if self.scan_cycles == 0:
            return Decimal("0")
        return Decimal(self.opportunities_found) / Decimal(self.scan_cycles)

    @property
    def success_rate(self) -> Decimal:
        if self.executions_attempted == 0:
            return Decimal("0")
        return Decimal(self.executions_succeeded) / Decimal(self.executions_attempted)

    def record_cycle(
        self,
        asset: str,
        paths_scanned: int,
        opportunities: Sequence[Opportunity],
        path_rejections: Optional[Dict[str, int]] = None,
    ) -> None:
        self.scan_cycles += 1
        self.scan_cycles_by_asset[asset] += 1
        self.total_scans += paths_scanned
        self.opportunities_found += len(opportunities)
        if path_rejections:
            self.path_rejections.update(path_rejections)

    def record_gate_rejection(self, code: str) -> None:
        self.gate_rejections[code] += 1

    def record_execution(self, asset: str, result: ExecutionResult) -> None:
        self.executions_attempted += 1
        if result.success:
            self.executions_succeeded += 1
            if result.realized_profit is not None:
                self.total_profit[asset] = (
                    self.total_profit.get(asset, Decimal("0")) + result.realized_profit
                )
        else:
            reason = result.failure_reason.value if result.failure_reason else "UNKNOWN"
            self.execution_failures[reason] += 1

    def record_error(self, error: BaseException) -> None:
        self.errors += 1
        self.last_error = str(error)

    def top_rejections(self, limit: int = 3) -> List[tuple]:
        combined = self.path_rejections + self.gate_rejections
        return combined.most_common(limit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "total_scans": self.total_scans,
            "scan_cycles": self.scan_cycles,
            "opportunities_found": self.opportunities_found,
            "executions_attempted": self.executions_attempted,
            "executions_succeeded": self.executions_succeeded,
            "errors": self.errors,
            "paths_generated": self.paths_generated,
            "hit_rate": str(self.hit_rate),
            "cycle_hit_rate": str(self.cycle_hit_rate),
            "success_rate": str(self.success_rate),
            "total_profit": {k: str(v) for k, v in self.total_profit.items()},
            "scan_cycles_by_asset": dict(self.scan_cycles_by_asset),
            "gate_rejections": dict(self.gate_rejections),
            "execution_failures": dict(self.execution_failures),
            "path_rejections": dict(self.path_rejections),
            "last_error": self.last_error,
        }

    def log_summary(self) -> None:
        logger.info(
            f"Scan stats: {self.scan_cycles} cycles, {self.total_scans} paths, "
            f"{self.opportunities_found} found, "
            f"{self.executions_succeeded}/{self.executions_attempted} executed",
            extra={"context": self.to_dict()},
        )


def print_scan_stats(stats: ScanStats) -> None:
    """Print the stats summary to the console."""
    print("\n" + "=" * 60)
    print("SCAN SUMMARY")
    print("=" * 60)
    print(f"Started: {stats.started_at}")
    print(f"Cycles: {stats.scan_cycles} | Paths generated: {stats.paths_generated}")
    print(f"Paths scanned: {stats.total_scans}")
    print(f"Opportunities found: {stats.opportunities_found} ({stats.hit_rate * 100:.2f}%)")
    print(f"Executions: {stats.executions_succeeded}/{stats.executions_attempted} succeeded")
    print(f"Errors: {stats.errors}")

    print("\nCycles by asset:")
    for asset, count in sorted(stats.scan_cycles_by_asset.items()):
        print(f"  {asset}: {count}")

    print("\nTop reject reasons:")
    for reason, count in stats.top_rejections():
        print(f"  {reason}: {count}")

    if stats.execution_failures:
        print("\nExecution failures:")
        for reason, count in stats.execution_failures.most_common():
            print(f"  {reason}: {count}")

    print("\n--- REALIZED PROFIT ---")
    if not stats.total_profit:
        print("  none")
    for asset, amount in sorted(stats.total_profit.items()):
        print(f"  {asset}: {amount}")
    print("=" * 60 + "\n")
