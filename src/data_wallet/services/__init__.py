"""
Data Wallet Services

Collaborator interfaces and their implementations:

- SuiRpcClient: Sui full node over JSON-RPC (httpx)
- WalrusHttpStore: Walrus publisher/aggregator (httpx)
- SealBridgeClient: Seal SDK sidecar (aiohttp)
- LocalNetwork: in-process chain, key servers and blob store
"""

from .base import (
    BlobStore,
    ChainClient,
    CreatedObject,
    DevInspectResult,
    EncryptionService,
    ObjectInfo,
    StorageCost,
    TransactionResult,
    estimate_storage_cost,
)
from .local import LocalKeyServers, LocalLedger, LocalNetwork, MemoryBlobStore
from .seal_bridge import SealBridgeClient
from .sui_rpc import RpcError, SuiRpcClient
from .walrus_http import WalrusHttpStore

__all__ = [
    "BlobStore",
    "ChainClient",
    "CreatedObject",
    "DevInspectResult",
    "EncryptionService",
    "ObjectInfo",
    "StorageCost",
    "TransactionResult",
    "estimate_storage_cost",
    "LocalKeyServers",
    "LocalLedger",
    "LocalNetwork",
    "MemoryBlobStore",
    "SealBridgeClient",
    "RpcError",
    "SuiRpcClient",
    "WalrusHttpStore",
]
