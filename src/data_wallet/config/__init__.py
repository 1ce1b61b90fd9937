"""
Data Wallet Configuration Module

Provides centralized configuration management for the data wallet demo.
"""

from .schema import (
    AgentConfig,
    ConfirmationConfig,
    NetworkConfig,
    WalletConfig,
    NETWORK_DEFAULTS,
)
from .loader import find_config_file, load_config, load_config_from_file, interpolate_env_vars

__all__ = [
    "AgentConfig",
    "ConfirmationConfig",
    "NetworkConfig",
    "WalletConfig",
    "NETWORK_DEFAULTS",
    "find_config_file",
    "load_config",
    "load_config_from_file",
    "interpolate_env_vars",
]
