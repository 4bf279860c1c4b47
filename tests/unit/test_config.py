# PATH: tests/unit/test_config.py
"""
Unit tests for configuration loading.
"""

import os
import unittest
from decimal import Decimal
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from config import expand_env, get_chain_config, load_chains, load_dexes, load_tokens, load_yaml
from core.exceptions import ConfigError
from strategy.config import StrategyConfig, load_strategy_config

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class TestConfigLoading(unittest.TestCase):
    """Tests for the shipped config files."""

    def test_config_dir_exists(self):
        self.assertTrue(CONFIG_DIR.exists())

    def test_load_chains(self):
        chains = load_chains()
        self.assertIn("bsc", chains)
        self.assertEqual(chains["bsc"]["chain_id"], 56)
        self.assertTrue(chains["bsc"]["rpc_urls"][0])

    def test_load_dexes(self):
        venues = load_dexes()["venues"]
        self.assertEqual(len(venues), 6)
        self.assertEqual(
            sorted(v["settlement_id"] for v in venues.values()),
            [0, 1, 2, 3, 4, 5],
        )

    def test_load_tokens(self):
        tokens = load_tokens()
        self.assertEqual(tokens["bridge"], "WBNB")
        self.assertEqual(
            set(tokens["assets"]),
            {"WBNB", "BTCB", "ETH", "USDT", "USDC", "CAKE"},
        )

    def test_unknown_chain(self):
        with self.assertRaises(ConfigError):
            get_chain_config("solana")

    def test_missing_file(self):
        with TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigError):
                load_yaml("chains.yaml", Path(tmp))


class TestEnvExpansion(unittest.TestCase):
    @patch.dict(os.environ, {"BSC_RPC_URL": "https://node.example"})
    def test_variable_is_substituted(self):
        self.assertEqual(expand_env("${BSC_RPC_URL}"), "https://node.example")

    @patch.dict(os.environ, {}, clear=True)
    def test_default_used_when_unset(self):
        self.assertEqual(expand_env("${MISSING:-fallback}"), "fallback")
        self.assertEqual(expand_env("${MISSING}"), "")

    @patch.dict(os.environ, {"A": "1"})
    def test_nested_structures(self):
        data = {"list": ["${A}", 2], "map": {"k": "x${A}y"}}
        self.assertEqual(expand_env(data), {"list": ["1", 2], "map": {"k": "x1y"}})


class TestStrategyConfig(unittest.TestCase):
    """Tests for strategy.yaml overlay and env overrides."""

    def _write(self, tmp: str, body: str) -> Path:
        path = Path(tmp) / "strategy.yaml"
        path.write_text(body, encoding="utf-8")
        return path

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        config = StrategyConfig()
        self.assertEqual(config.gates.min_roi_percent, Decimal("0.5"))
        self.assertEqual(config.gates.max_gas_price_gwei, Decimal("20"))
        self.assertEqual(config.gates.min_gas_reserve, Decimal("0.005"))
        self.assertEqual(config.scanner.gas_price_gwei, Decimal("3"))
        self.assertEqual(config.scanner.priority_fee_gwei, Decimal("1"))
        self.assertEqual(config.quotes.cache_ttl_ms, 5000)
        self.assertEqual(config.scanner.max_concurrent_scans, 6)
        self.assertEqual(config.execution.slippage_buffer_percent, Decimal("0.5"))
        self.assertEqual(config.execution.deadline_seconds, 300)
        self.assertFalse(config.execution.execution_enabled)

    @patch.dict(os.environ, {}, clear=True)
    def test_shipped_file_matches_defaults(self):
        self.assertEqual(load_strategy_config().to_dict(), StrategyConfig().to_dict())

    @patch.dict(os.environ, {}, clear=True)
    def test_yaml_overlay_keeps_decimals(self):
        with TemporaryDirectory() as tmp:
            path = self._write(tmp, (
                "gates:\n"
                "  min_roi_percent: '0.75'\n"
                "scanner:\n"
                "  loan_sizing:\n"
                "    short_path_multiplier: '3'\n"
                "loop:\n"
                "  max_consecutive_errors: 7\n"
            ))
            config = load_strategy_config(path)

        self.assertEqual(config.gates.min_roi_percent, Decimal("0.75"))
        self.assertIsInstance(config.gates.min_roi_percent, Decimal)
        self.assertEqual(config.scanner.loan_sizing.short_path_multiplier, Decimal("3"))
        self.assertEqual(config.loop.max_consecutive_errors, 7)
        self.assertEqual(config.loop.backoff_base_ms, 1000)

    @patch.dict(os.environ, {}, clear=True)
    def test_unknown_keys_ignored(self):
        with TemporaryDirectory() as tmp:
            path = self._write(tmp, "gates:\n  no_such_setting: 1\n")
            config = load_strategy_config(path)
        self.assertFalse(hasattr(config.gates, "no_such_setting"))

    @patch.dict(os.environ, {}, clear=True)
    def test_invalid_value_raises(self):
        with TemporaryDirectory() as tmp:
            path = self._write(tmp, "gates:\n  min_roi_percent: abc\n")
            with self.assertRaises(ConfigError):
                load_strategy_config(path)

    @patch.dict(os.environ, {
        "MIN_PROFIT_PERCENT": "1.25",
        "MAX_GAS_PRICE": "8",
        "EXECUTION_ENABLED": "true",
    }, clear=True)
    def test_env_overrides(self):
        with TemporaryDirectory() as tmp:
            config = load_strategy_config(Path(tmp) / "absent.yaml")
        self.assertEqual(config.gates.min_roi_percent, Decimal("1.25"))
        self.assertEqual(config.gates.max_gas_price_gwei, Decimal("8"))
        self.assertTrue(config.execution.execution_enabled)
