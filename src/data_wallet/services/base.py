"""
Service Collaborators

Abstract interfaces for the three remote services the wallet orchestrates:

- ChainClient        smart-contract chain (transactions, objects, dev-inspect)
- EncryptionService  threshold encryption key servers
- BlobStore          decentralized blob storage

Each has a remote implementation (JSON-RPC / HTTP) and an in-process one
(see services.local) sharing the same contract.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from ..config.schema import ConfirmationConfig
from ..core.errors import ConfirmationTimeout

if TYPE_CHECKING:
    from ..core.identity import Identity
    from ..core.session import SessionCredential

logger = logging.getLogger(__name__)


# =============================================================================
# Chain
# =============================================================================

@dataclass
class CreatedObject:
    """An object created by a transaction"""
    object_id: str
    object_type: str


@dataclass
class TransactionResult:
    """Effects of an executed transaction"""
    digest: str
    success: bool
    error: Optional[str] = None
    created: List[CreatedObject] = field(default_factory=list)


@dataclass
class ObjectInfo:
    """Current state of an on-chain object"""
    object_id: str
    object_type: str
    version: int
    # Set for shared objects
    initial_shared_version: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_shared(self) -> bool:
        return self.initial_shared_version is not None


@dataclass
class DevInspectResult:
    """Outcome of evaluating an unsigned transaction kind"""
    success: bool
    error: Optional[str] = None


class ChainClient(ABC):
    """
    Smart-contract chain collaborator.

    Move call arguments are plain Python values: object ids and addresses
    as hex strings, vector<u8> as bytes.
    """

    def __init__(self, confirmation: Optional[ConfirmationConfig] = None):
        self.confirmation = confirmation or ConfirmationConfig()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def execute_move_call(
        self,
        signer: Identity,
        target: str,
        arguments: Sequence[Any],
        gas_budget: int,
    ) -> TransactionResult:
        """Build, sign and submit a single Move call"""
        pass

    @abstractmethod
    async def get_transaction(self, digest: str) -> Optional[TransactionResult]:
        """Read transaction effects, or None if the node has not indexed it yet"""
        pass

    @abstractmethod
    async def get_object(self, object_id: str) -> ObjectInfo:
        """Read an object's current state"""
        pass

    @abstractmethod
    async def dev_inspect(self, sender: str, tx_kind_bytes: bytes) -> DevInspectResult:
        """Evaluate an unsigned transaction kind against current state"""
        pass

    async def close(self) -> None:
        pass

    async def wait_for_transaction(self, digest: str) -> TransactionResult:
        """
        Poll until the transaction's effects are readable.

        Intervals grow by the configured backoff factor up to max_interval.

        Raises:
            ConfirmationTimeout: If the deadline passes first
        """
        cfg = self.confirmation
        deadline = time.monotonic() + cfg.timeout
        interval = cfg.initial_interval
        attempts = 0

        while True:
            attempts += 1
            result = await self.get_transaction(digest)
            if result is not None:
                logger.debug(f"Transaction {digest} confirmed after {attempts} polls")
                return result

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeout(digest, cfg.timeout, attempts)

            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * cfg.backoff, cfg.max_interval)


# =============================================================================
# Encryption
# =============================================================================

class EncryptionService(ABC):
    """Threshold encryption collaborator (key servers plus client-side crypto)"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def encrypt(
        self,
        data: bytes,
        package_id: str,
        data_id: bytes,
        threshold: int,
    ) -> Tuple[bytes, bytes]:
        """
        Encrypt data under (package_id, data_id).

        Returns:
            (encrypted_object, backup_key)
        """
        pass

    @abstractmethod
    async def decrypt(
        self,
        encrypted_object: bytes,
        credential: SessionCredential,
        policy_check_bytes: bytes,
    ) -> bytes:
        """
        Decrypt if the policy check authorizes the credential's address.

        Raises:
            Unauthorized: The policy check does not authorize the address
            Expired: The credential's time-to-live has elapsed
        """
        pass

    @abstractmethod
    async def key_servers(self) -> List[str]:
        """Object ids of the participating key servers"""
        pass

    @abstractmethod
    async def verify_key_servers(self) -> List[str]:
        """Check every key server is reachable and registered; return their ids"""
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# Blob storage
# =============================================================================

@dataclass
class StorageCost:
    """Estimated cost of storing a blob (in FROST)"""
    storage_cost: int
    write_cost: int
    encoded_size: int

    @property
    def total(self) -> int:
        return self.storage_cost + self.write_cost


# Erasure coding expands a blob roughly fivefold plus fixed per-shard metadata
ENCODING_EXPANSION = 5
METADATA_OVERHEAD = 64 * 1000
UNIT_SIZE = 1024 * 1024


def estimate_storage_cost(
    size: int,
    epochs: int,
    storage_price_per_unit: int,
    write_price_per_unit: int,
) -> StorageCost:
    """Price a blob from its estimated encoded size, rounded up to whole units"""
    encoded_size = max(size, 1) * ENCODING_EXPANSION + METADATA_OVERHEAD
    units = -(-encoded_size // UNIT_SIZE)
    return StorageCost(
        storage_cost=units * storage_price_per_unit * epochs,
        write_cost=units * write_price_per_unit,
        encoded_size=encoded_size,
    )


class BlobStore(ABC):
    """Blob storage collaborator"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def storage_cost(self, size: int, epochs: int) -> StorageCost:
        pass

    @abstractmethod
    async def write_blob(
        self,
        data: bytes,
        epochs: int,
        deletable: bool,
        owner: Identity,
    ) -> str:
        """Store data, returning its blob id. All-or-nothing per call."""
        pass

    @abstractmethod
    async def read_blob(self, blob_id: str) -> bytes:
        """
        Raises:
            BlobNotFound: No blob with this id
            TransportError: The network could not be reached
        """
        pass

    async def close(self) -> None:
        pass
