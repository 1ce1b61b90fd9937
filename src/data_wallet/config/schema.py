"""
Data Wallet Configuration Schema

Defines the configuration structure for the access-control demo.
All configuration can be specified via wallet.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path

from ..core.errors import ConfigError

DEFAULT_PACKAGE_ID = "0x178a15e9921f9988d7bf092b4252d203700e0de9e2384f80fbb9a5dae22ae26c"

# Public endpoints per network. "local" runs everything in-process.
NETWORK_DEFAULTS: Dict[str, Dict[str, Optional[str]]] = {
    "local": {
        "rpc_url": None,
        "publisher_url": None,
        "aggregator_url": None,
        "seal_bridge_url": None,
    },
    "testnet": {
        "rpc_url": "https://fullnode.testnet.sui.io:443",
        "publisher_url": "https://publisher.walrus-testnet.walrus.space",
        "aggregator_url": "https://aggregator.walrus-testnet.walrus.space",
        "seal_bridge_url": "http://localhost:3100",
    },
    "mainnet": {
        "rpc_url": "https://fullnode.mainnet.sui.io:443",
        "publisher_url": None,
        "aggregator_url": "https://aggregator.walrus-mainnet.walrus.space",
        "seal_bridge_url": "http://localhost:3100",
    },
}


@dataclass
class AgentConfig:
    """A recipient agent: its key and the payload encrypted for it"""
    name: str
    input_path: str
    # Base64 or hex secret seed; generated for the local network when unset
    key: Optional[str] = None


@dataclass
class ConfirmationConfig:
    """Bounded polling for transaction finality"""
    timeout: float = 30.0
    initial_interval: float = 0.5
    backoff: float = 2.0
    max_interval: float = 5.0


@dataclass
class NetworkConfig:
    """Endpoints of the chain, blob store and encryption service"""
    name: str = "local"
    rpc_url: Optional[str] = None
    publisher_url: Optional[str] = None
    aggregator_url: Optional[str] = None
    seal_bridge_url: Optional[str] = None
    # Key server object ids; empty means "ask the bridge for the allowlist"
    key_server_ids: List[str] = field(default_factory=list)
    verify_key_servers: bool = True
    request_timeout: float = 60.0
    # Walrus price estimate inputs (FROST per MiB per epoch / per MiB written)
    storage_price_per_unit: int = 11_000
    write_price_per_unit: int = 20_000
    # Number of key servers the local network runs
    local_key_servers: int = 2

    @classmethod
    def for_network(cls, name: str, overrides: Optional[Dict[str, Any]] = None) -> "NetworkConfig":
        if name not in NETWORK_DEFAULTS:
            raise ConfigError(
                f"Unknown network '{name}'. Choose one of: {', '.join(NETWORK_DEFAULTS)}"
            )
        values: Dict[str, Any] = dict(NETWORK_DEFAULTS[name])
        values.update({k: v for k, v in (overrides or {}).items() if v is not None})
        values.pop("name", None)
        known = set(cls.__dataclass_fields__)
        unknown = set(values) - known
        if unknown:
            raise ConfigError(f"Unknown network settings: {', '.join(sorted(unknown))}")
        return cls(name=name, **values)

    @property
    def is_local(self) -> bool:
        return self.name == "local"


def _default_agents() -> List[AgentConfig]:
    return [
        AgentConfig(name="email", input_path="data/email_1.json"),
        AgentConfig(name="discord", input_path="data/discord.json"),
    ]


@dataclass
class WalletConfig:
    """
    Central configuration for the data wallet demo.

    This configuration can be loaded from:
    - wallet.yaml (primary)
    - Environment variables (interpolated into wallet.yaml)
    - Programmatic defaults

    Example wallet.yaml:
    ```yaml
    network:
      name: testnet

    policy:
      package_id: "0x178a...e26c"
      module: access_policy
      threshold: 1

    owner:
      key: "${DATA_WALLET_OWNER_KEY}"

    agents:
      - name: email
        key: "${DATA_WALLET_EMAIL_KEY}"
        input: data/email_1.json
      - name: discord
        key: "${DATA_WALLET_DISCORD_KEY}"
        input: data/discord.json
    ```
    """
    network: NetworkConfig = field(default_factory=NetworkConfig)

    # Policy
    package_id: str = DEFAULT_PACKAGE_ID
    module_name: str = "access_policy"
    threshold: int = 1
    gas_budget: int = 10_000_000

    # Principals
    owner_key: Optional[str] = None
    agents: List[AgentConfig] = field(default_factory=_default_agents)

    # Sessions
    ttl_minutes: int = 10
    broadcast_policy_check: bool = False

    # Storage
    retry_ceiling: int = 3
    epochs: int = 1
    deletable: bool = True

    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)

    # Input paths are resolved against this directory
    working_dir: Path = field(default_factory=Path.cwd)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check cross-field constraints"""
        if self.threshold < 1:
            raise ConfigError("threshold must be at least 1")
        if self.ttl_minutes < 1:
            raise ConfigError("ttl_minutes must be at least 1")
        if self.retry_ceiling < 1:
            raise ConfigError("retry_ceiling must be at least 1")
        if self.epochs < 1:
            raise ConfigError("epochs must be at least 1")
        if not self.agents:
            raise ConfigError("at least one agent is required")

        names = [a.name for a in self.agents]
        if len(set(names)) != len(names):
            raise ConfigError(f"agent names must be unique: {names}")

        if not self.network.is_local:
            missing = [a.name for a in self.agents if not a.key]
            if not self.owner_key:
                missing.insert(0, "owner")
            if missing:
                raise ConfigError(
                    f"Keys are required on {self.network.name}: {', '.join(missing)}"
                )

    def resolve_input(self, agent: AgentConfig) -> Path:
        path = Path(agent.input_path)
        return path if path.is_absolute() else self.working_dir / path

    def get_agent(self, name: str) -> Optional[AgentConfig]:
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletConfig":
        """Create WalletConfig from dictionary (e.g., parsed YAML)"""
        # Parse network config
        network_value = data.get("network") or {}
        if isinstance(network_value, str):
            network_data = {"name": network_value}
        else:
            network_data = dict(network_value)
        network = NetworkConfig.for_network(
            network_data.pop("name", "local"),
            network_data,
        )

        # Parse policy config
        policy_data = data.get("policy") or {}

        # Parse agents
        agents = []
        for agent_data in data.get("agents") or []:
            if not isinstance(agent_data, dict) or "name" not in agent_data:
                raise ConfigError(f"Invalid agent entry: {agent_data!r}")
            agents.append(AgentConfig(
                name=agent_data["name"],
                input_path=agent_data.get("input", f"data/{agent_data['name']}.json"),
                key=agent_data.get("key") or None,
            ))

        session_data = data.get("session") or {}
        storage_data = data.get("storage") or {}
        confirmation_data = data.get("confirmation") or {}

        return cls(
            network=network,
            package_id=policy_data.get("package_id", DEFAULT_PACKAGE_ID),
            module_name=policy_data.get("module", "access_policy"),
            threshold=int(policy_data.get("threshold", 1)),
            gas_budget=int(policy_data.get("gas_budget", 10_000_000)),
            owner_key=(data.get("owner") or {}).get("key") or None,
            agents=agents if agents else _default_agents(),
            ttl_minutes=int(session_data.get("ttl_minutes", 10)),
            broadcast_policy_check=bool(session_data.get("broadcast_policy_check", False)),
            retry_ceiling=int(storage_data.get("retry_ceiling", 3)),
            epochs=int(storage_data.get("epochs", 1)),
            deletable=bool(storage_data.get("deletable", True)),
            confirmation=ConfirmationConfig(
                timeout=float(confirmation_data.get("timeout", 30.0)),
                initial_interval=float(confirmation_data.get("initial_interval", 0.5)),
                backoff=float(confirmation_data.get("backoff", 2.0)),
                max_interval=float(confirmation_data.get("max_interval", 5.0)),
            ),
            working_dir=Path(data.get("working_dir", ".")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization). Keys are redacted."""
        return {
            "network": {
                "name": self.network.name,
                "rpc_url": self.network.rpc_url,
                "publisher_url": self.network.publisher_url,
                "aggregator_url": self.network.aggregator_url,
                "seal_bridge_url": self.network.seal_bridge_url,
                "key_server_ids": list(self.network.key_server_ids),
                "verify_key_servers": self.network.verify_key_servers,
            },
            "policy": {
                "package_id": self.package_id,
                "module": self.module_name,
                "threshold": self.threshold,
                "gas_budget": self.gas_budget,
            },
            "owner": {"key": "<redacted>" if self.owner_key else None},
            "agents": [
                {
                    "name": a.name,
                    "input": a.input_path,
                    "key": "<redacted>" if a.key else None,
                }
                for a in self.agents
            ],
            "session": {
                "ttl_minutes": self.ttl_minutes,
                "broadcast_policy_check": self.broadcast_policy_check,
            },
            "storage": {
                "retry_ceiling": self.retry_ceiling,
                "epochs": self.epochs,
                "deletable": self.deletable,
            },
            "confirmation": {
                "timeout": self.confirmation.timeout,
                "initial_interval": self.confirmation.initial_interval,
                "backoff": self.confirmation.backoff,
                "max_interval": self.confirmation.max_interval,
            },
            "working_dir": str(self.working_dir),
        }
