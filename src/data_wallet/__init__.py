"""
Data Wallet

Policy-gated encrypted storage for agent data:

- Whitelists on a smart-contract chain decide who may decrypt
- Payloads are threshold-encrypted under (package, whitelist) and stored
  together as one blob
- Agents decrypt with a short-lived session credential and a policy check
  that key servers evaluate against chain state
"""

__version__ = "0.1.0"

from .config import WalletConfig, load_config
from .network import Services, build_services
from .scenario import AccessControlScenario

__all__ = [
    "WalletConfig",
    "load_config",
    "Services",
    "build_services",
    "AccessControlScenario",
]
