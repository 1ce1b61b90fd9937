"""
Data Wallet Configuration Loader

Reads wallet.yaml, substitutes environment variables and builds a
WalletConfig. Keys are usually supplied through the environment:

```yaml
owner:
  key: "${DATA_WALLET_OWNER_KEY}"
network:
  name: testnet
  seal_bridge_url: "${SEAL_BRIDGE_URL:-http://localhost:3100}"
```

${NAME} is required; ${NAME:-fallback} uses the fallback when NAME is unset.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..core.errors import ConfigError
from .schema import WalletConfig

logger = logging.getLogger(__name__)

ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

CONFIG_FILENAME = "wallet.yaml"

PathLike = Union[str, Path]


def _substitute(match: "re.Match") -> str:
    name, fallback = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value is not None:
        return value
    if fallback is not None:
        return fallback
    raise ConfigError(
        f"Environment variable '{name}' is not set. "
        f"Export it or give a fallback: ${{{name}:-value}}"
    )


def interpolate_env_vars(value: Any) -> Any:
    """Substitute ${VAR} references in every string of a parsed YAML tree"""
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_substitute, value)
    if isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def find_config_file(working_dir: Optional[PathLike] = None) -> Optional[Path]:
    """First wallet.yaml found in working_dir, then the current directory"""
    roots: List[Path] = []
    if working_dir:
        roots.append(Path(working_dir))
    roots.append(Path.cwd())

    for root in roots:
        for candidate in (root / CONFIG_FILENAME, root / "config" / CONFIG_FILENAME):
            if candidate.exists():
                return candidate
    return None


def load_config_from_file(
    config_path: PathLike,
    interpolate: bool = True,
    network: Optional[str] = None,
) -> WalletConfig:
    """
    Build a WalletConfig from a YAML file.

    Agent input paths resolve against the file's directory unless the file
    sets working_dir. A network name replaces the configured network
    section; its endpoints then come from the network defaults.

    Raises:
        FileNotFoundError: The file does not exist
        ConfigError: A required variable is unset or a value is invalid
        yaml.YAMLError: The file is not valid YAML
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root must be a mapping: {config_path}")

    if interpolate:
        raw = interpolate_env_vars(raw)
    if network is not None:
        logger.info(f"Using network {network!r} instead of the configured one")
        raw["network"] = network

    raw.setdefault("working_dir", str(config_path.parent.absolute()))
    return WalletConfig.from_dict(raw)


def load_config(
    config_path: Optional[PathLike] = None,
    working_dir: Optional[PathLike] = None,
    network: Optional[str] = None,
) -> WalletConfig:
    """
    Load configuration from an explicit path, a discovered wallet.yaml, or
    defaults (local network).

    Args:
        config_path: Explicit wallet.yaml; skips discovery
        working_dir: Directory searched before the current one
        network: Network name replacing the configured one
    """
    path = Path(config_path) if config_path else find_config_file(working_dir)
    if path is not None:
        return load_config_from_file(path, network=network)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    data: Dict[str, Any] = {"working_dir": str(Path(working_dir) if working_dir else Path.cwd())}
    if network is not None:
        data["network"] = network
    return WalletConfig.from_dict(data)
