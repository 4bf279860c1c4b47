# PATH: config/__init__.py
"""
Configuration loading utilities for CYCLEARB.

YAML files live beside this module. String values may reference
environment variables as ${VAR} or ${VAR:-default}; a .env file in the
working directory is loaded first.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigError

CONFIG_DIR = Path(__file__).parent

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

load_dotenv()


def expand_env(value: Any) -> Any:
    """Recursively substitute ${VAR} references in strings."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(
            lambda m: os.getenv(m.group(1), m.group(2) or ""), value
        )
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_yaml(filename: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load a YAML configuration file with env substitution.

    Args:
        filename: Name of file in config directory
        config_dir: Directory override (tests, alternate deployments)

    Returns:
        Parsed YAML as dict
    """
    filepath = (config_dir or CONFIG_DIR) / filename
    if not filepath.exists():
        raise ConfigError(f"Config file not found: {filepath}", {"path": str(filepath)})

    with open(filepath, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {filepath}", {"path": str(filepath)})
    return expand_env(data)


def load_chains(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load chains configuration."""
    return load_yaml("chains.yaml", config_dir)


def load_dexes(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load venues configuration."""
    return load_yaml("dexes.yaml", config_dir)


def load_tokens(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load assets and trading graph configuration."""
    return load_yaml("tokens.yaml", config_dir)


def get_chain_config(chain_key: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Get configuration for a specific chain.

    Args:
        chain_key: Chain identifier (e.g., 'bsc')

    Returns:
        Chain configuration dict
    """
    chains = load_chains(config_dir)
    if chain_key not in chains:
        raise ConfigError(f"Unknown chain: {chain_key}", {"known": sorted(chains)})
    return chains[chain_key]
