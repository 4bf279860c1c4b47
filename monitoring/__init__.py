# PATH: monitoring/__init__.py
"""
Monitoring package for CYCLEARB.

Exports:
- ScanStats
- print_scan_stats
"""

from monitoring.scan_stats import ScanStats, print_scan_stats

__all__ = [
    "ScanStats",
    "print_scan_stats",
]
