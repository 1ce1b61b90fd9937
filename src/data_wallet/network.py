"""
Network Factory

Builds the chain, encryption and blob storage collaborators for the
configured network.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config.schema import WalletConfig
from .core.errors import ConfigError
from .services.base import BlobStore, ChainClient, EncryptionService
from .services.local import LocalNetwork
from .services.seal_bridge import SealBridgeClient
from .services.sui_rpc import SuiRpcClient
from .services.walrus_http import WalrusHttpStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    chain: ChainClient
    encryption: EncryptionService
    blob_store: BlobStore
    # Set for the in-process network
    local: Optional[LocalNetwork] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        try:
            await self.encryption.close()
        finally:
            try:
                await self.blob_store.close()
            finally:
                await self.chain.close()


def _require(value: Optional[str], setting: str, network: str) -> str:
    if not value:
        raise ConfigError(f"network.{setting} must be set for {network}")
    return value


async def build_services(config: WalletConfig) -> Services:
    """Create (and for remote networks, connect) the collaborators"""
    network = config.network

    if network.is_local:
        local = LocalNetwork(
            config.package_id,
            config.module_name,
            key_servers=network.local_key_servers,
            confirmation=config.confirmation,
        )
        local.blob_store.storage_price_per_unit = network.storage_price_per_unit
        local.blob_store.write_price_per_unit = network.write_price_per_unit
        logger.info(
            f"Using local network: package {local.ledger.package_id}, "
            f"{network.local_key_servers} key servers"
        )
        return Services(local.ledger, local.key_servers, local.blob_store, local=local)

    rpc_url = _require(network.rpc_url, "rpc_url", network.name)
    aggregator_url = _require(network.aggregator_url, "aggregator_url", network.name)
    bridge_url = _require(network.seal_bridge_url, "seal_bridge_url", network.name)

    chain = SuiRpcClient(
        rpc_url,
        confirmation=config.confirmation,
        timeout=network.request_timeout,
    )
    blob_store = WalrusHttpStore(
        network.publisher_url,
        aggregator_url,
        timeout=network.request_timeout,
        storage_price_per_unit=network.storage_price_per_unit,
        write_price_per_unit=network.write_price_per_unit,
    )
    encryption = SealBridgeClient(
        bridge_url,
        key_server_ids=network.key_server_ids,
        timeout=network.request_timeout,
    )
    try:
        await encryption.connect()
    except Exception:
        await blob_store.close()
        await chain.close()
        raise

    logger.info(f"Using {network.name}: rpc {network.rpc_url}, bridge {network.seal_bridge_url}")
    return Services(chain, encryption, blob_store)
