# PATH: strategy/jobs/__init__.py
"""
Strategy jobs package.

Available entry points:
    python -m strategy.jobs.run_scan    # Scan loop (dry run unless --execute)

run_scan is not imported here to avoid side effects when importing the
package.
"""

__all__: list[str] = []
