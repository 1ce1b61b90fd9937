"""
Local Network

In-process stand-ins for the chain, the key servers and the blob store,
so the scenario and the tests run without network access.

- LocalLedger interprets the access_policy Move module
  (create_whitelist_entry, add, seal_approve) and answers dev-inspect
  requests the way a full node would.
- LocalKeyServers wraps a per-object data key for each server under a key
  derived from the server's master secret and (package, id). A server
  releases its share only after verifying the signed key request against
  the certified session key and dev-inspecting the policy check with the
  requester's address as sender. No secret sharing is performed.
- MemoryBlobStore keeps blobs in a dict keyed by content hash.
"""

from __future__ import annotations

import base64
import hashlib
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import nacl.utils
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from ..config.schema import ConfirmationConfig
from ..core.bcs import (
    Deserializer,
    ProgrammableTransaction,
    PureArg,
    Serializer,
    SharedObjectArg,
    address_to_bytes,
    decode_vector_u8,
    normalize_address,
)
from ..core.encryption import EncryptedObject
from ..core.errors import (
    BlobNotFound,
    DecryptionFailed,
    Expired,
    ObjectNotFound,
    Unauthorized,
)
from ..core.identity import verify_transaction
from ..core.policy import DEFAULT_MODULE
from ..core.session import APPROVE_FUNCTION
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

if TYPE_CHECKING:
    from ..core.identity import Identity
    from ..core.session import KeyRequest, SessionCredential

logger = logging.getLogger(__name__)

KEY_SERVER_TYPE = "0x2::key_server::KeyServer"

# Abort codes of the access_policy module
E_INVALID_CAP = 0
E_NO_ACCESS = 1
E_DUPLICATE = 2


class MoveAbort(Exception):
    """A Move function aborted; becomes a failed transaction"""

    def __init__(self, function: str, code: int):
        self.function = function
        self.code = code
        super().__init__(f"MoveAbort in {function} with code {code}")


@dataclass
class _Object:
    object_id: str
    object_type: str
    version: int
    owner: Optional[str] = None  # None for shared objects
    initial_shared_version: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    def info(self) -> ObjectInfo:
        return ObjectInfo(
            object_id=self.object_id,
            object_type=self.object_type,
            version=self.version,
            initial_shared_version=self.initial_shared_version,
            fields=json.loads(json.dumps(self.fields)),
        )


class LocalLedger(ChainClient):
    """
    In-memory chain with one published access_policy package.

    index_delay_polls makes each transaction invisible to get_transaction
    for that many reads, mimicking full-node indexing lag.
    """

    def __init__(
        self,
        package_id: str,
        module_name: str = DEFAULT_MODULE,
        confirmation: Optional[ConfirmationConfig] = None,
        index_delay_polls: int = 0,
    ):
        super().__init__(confirmation)
        self.package_id = normalize_address(package_id)
        self.module_name = module_name
        self.index_delay_polls = index_delay_polls

        self._objects: Dict[str, _Object] = {}
        self._transactions: Dict[str, TransactionResult] = {}
        self._pending_polls: Dict[str, int] = {}
        self._ids = itertools.count(1)
        self._version = 0

    # -------------------------------------------------------------------------
    # Object store
    # -------------------------------------------------------------------------

    def _new_id(self) -> str:
        seed = f"{self.package_id}:{next(self._ids)}".encode("utf-8")
        return "0x" + hashlib.blake2b(seed, digest_size=32).hexdigest()

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _struct(self, name: str) -> str:
        return f"{self.package_id}::{self.module_name}::{name}"

    def create_object(
        self,
        object_type: str,
        fields: Dict[str, Any],
        owner: Optional[str] = None,
    ) -> str:
        """Insert an object directly (owner None makes it shared)"""
        version = self._next_version()
        obj = _Object(
            object_id=self._new_id(),
            object_type=object_type,
            version=version,
            owner=owner,
            initial_shared_version=version if owner is None else None,
            fields=fields,
        )
        self._objects[obj.object_id] = obj
        return obj.object_id

    def _load(self, object_id: str, expected_type: Optional[str] = None) -> _Object:
        obj = self._objects.get(normalize_address(object_id))
        if obj is None:
            raise ObjectNotFound(object_id)
        if expected_type and obj.object_type != expected_type:
            raise TypeError(f"Object {object_id} is {obj.object_type}, expected {expected_type}")
        return obj

    def whitelist_members(self, whitelist_id: str) -> List[str]:
        return list(self._load(whitelist_id, self._struct("Whitelist")).fields["list"])

    # -------------------------------------------------------------------------
    # access_policy module
    # -------------------------------------------------------------------------

    def _create_whitelist_entry(self, sender: str) -> List[CreatedObject]:
        whitelist_id = self.create_object(self._struct("Whitelist"), {"list": []})
        cap_id = self.create_object(self._struct("Cap"), {"wl_id": whitelist_id}, owner=sender)
        return [
            CreatedObject(whitelist_id, self._struct("Whitelist")),
            CreatedObject(cap_id, self._struct("Cap")),
        ]

    def _add(self, sender: str, whitelist_id: str, cap_id: str, address: str) -> None:
        whitelist = self._load(whitelist_id, self._struct("Whitelist"))
        cap = self._load(cap_id, self._struct("Cap"))
        if cap.owner != sender:
            raise PermissionError(f"Cap {cap_id} is not owned by {sender}")
        if cap.fields["wl_id"] != whitelist.object_id:
            raise MoveAbort("add", E_INVALID_CAP)

        address = normalize_address(address)
        if address in whitelist.fields["list"]:
            raise MoveAbort("add", E_DUPLICATE)
        whitelist.fields["list"].append(address)
        whitelist.version = self._next_version()

    def _seal_approve(self, sender: str, data_id: bytes, whitelist_id: str) -> None:
        whitelist = self._load(whitelist_id, self._struct("Whitelist"))
        prefix = address_to_bytes(whitelist.object_id)
        if not data_id.startswith(prefix) or sender not in whitelist.fields["list"]:
            raise MoveAbort(APPROVE_FUNCTION, E_NO_ACCESS)

    def _dispatch(self, sender: str, function: str, args: Sequence[Any]) -> List[CreatedObject]:
        if function == "create_whitelist_entry" and not args:
            return self._create_whitelist_entry(sender)
        if function == "add" and len(args) == 3:
            self._add(sender, *args)
            return []
        if function == APPROVE_FUNCTION and len(args) == 2:
            self._seal_approve(sender, bytes(args[0]), args[1])
            return []
        raise LookupError(f"No function {function} taking {len(args)} arguments")

    def _split_target(self, target: str) -> Tuple[str, str, str]:
        package, module, function = target.split("::")
        return normalize_address(package), module, function

    # -------------------------------------------------------------------------
    # ChainClient
    # -------------------------------------------------------------------------

    async def execute_move_call(
        self,
        signer: Identity,
        target: str,
        arguments: Sequence[Any],
        gas_budget: int,
    ) -> TransactionResult:
        tx_data = json.dumps(
            {
                "target": target,
                "arguments": [a.hex() if isinstance(a, bytes) else a for a in arguments],
                "sender": signer.address,
                "gas_budget": gas_budget,
                "nonce": next(self._ids),
            },
            sort_keys=True,
        ).encode("utf-8")
        sender = verify_transaction(tx_data, signer.sign_transaction(tx_data))
        digest = base64.urlsafe_b64encode(
            hashlib.blake2b(tx_data, digest_size=32).digest()
        ).decode("ascii").rstrip("=")

        try:
            package, module, function = self._split_target(target)
            if (package, module) != (self.package_id, self.module_name):
                raise LookupError(f"Package {package}::{module} is not published")
            created = self._dispatch(sender, function, list(arguments))
            result = TransactionResult(digest=digest, success=True, created=created)
        except (MoveAbort, LookupError, PermissionError, TypeError, ValueError, ObjectNotFound) as e:
            result = TransactionResult(digest=digest, success=False, error=str(e))

        logger.debug(f"Executed {target} from {sender}: success={result.success} ({digest})")
        self._transactions[digest] = result
        self._pending_polls[digest] = self.index_delay_polls
        return result

    async def get_transaction(self, digest: str) -> Optional[TransactionResult]:
        if digest not in self._transactions:
            return None
        if self._pending_polls.get(digest, 0) > 0:
            self._pending_polls[digest] -= 1
            return None
        return self._transactions[digest]

    async def get_object(self, object_id: str) -> ObjectInfo:
        return self._load(object_id).info()

    async def dev_inspect(self, sender: str, tx_kind_bytes: bytes) -> DevInspectResult:
        try:
            tx = ProgrammableTransaction.from_bytes(tx_kind_bytes)
        except ValueError as e:
            return DevInspectResult(success=False, error=f"Malformed transaction: {e}")

        sender = normalize_address(sender)
        try:
            for call in tx.commands:
                if (normalize_address(call.package), call.module) != (self.package_id, self.module_name):
                    raise LookupError(f"Package {call.package}::{call.module} is not published")
                args = []
                for arg in tx.resolve(call):
                    if isinstance(arg, PureArg):
                        args.append(decode_vector_u8(arg.value))
                    elif isinstance(arg, SharedObjectArg):
                        obj = self._load(arg.object_id)
                        if obj.initial_shared_version != arg.initial_shared_version:
                            raise ValueError(f"Stale shared object reference {arg.object_id}")
                        args.append(obj.object_id)
                    else:
                        raise ValueError("Only pure and shared object inputs are supported")
                if call.function != APPROVE_FUNCTION:
                    raise LookupError(f"{call.function} is not an approval function")
                self._dispatch(sender, call.function, args)
        except (MoveAbort, LookupError, TypeError, ValueError, ObjectNotFound) as e:
            return DevInspectResult(success=False, error=str(e))

        return DevInspectResult(success=True)


# =============================================================================
# Key servers
# =============================================================================

@dataclass
class LocalKeyServer:
    object_id: str
    master_secret: bytes

    def derive_key(self, package_id: str, data_id: bytes) -> bytes:
        return hashlib.blake2b(
            address_to_bytes(package_id) + data_id,
            key=self.master_secret,
            digest_size=SecretBox.KEY_SIZE,
        ).digest()


def _encode_body(shares: List[bytes], ciphertext: bytes) -> bytes:
    ser = Serializer().uleb128(len(shares))
    for share in shares:
        ser.bytes(share)
    ser.bytes(ciphertext)
    return ser.output()


def _decode_body(body: bytes) -> Tuple[List[bytes], bytes]:
    de = Deserializer(body)
    shares = [de.bytes() for _ in range(de.uleb128())]
    ciphertext = de.bytes()
    de.finish()
    return shares, ciphertext


class LocalKeyServers(EncryptionService):
    """A committee of in-process key servers registered on a LocalLedger"""

    def __init__(self, ledger: LocalLedger, count: int = 2):
        if count < 1:
            raise ValueError("At least one key server is required")
        self.ledger = ledger
        self.servers: List[LocalKeyServer] = []
        for index in range(count):
            object_id = ledger.create_object(
                KEY_SERVER_TYPE,
                {"name": f"local-{index}", "url": f"local://key-server/{index}"},
            )
            self.servers.append(LocalKeyServer(object_id, nacl.utils.random(32)))

    def _server(self, object_id: str) -> LocalKeyServer:
        for server in self.servers:
            if server.object_id == normalize_address(object_id):
                return server
        raise Unauthorized(f"Unknown key server {object_id}")

    async def key_servers(self) -> List[str]:
        return [s.object_id for s in self.servers]

    async def verify_key_servers(self) -> List[str]:
        verified = []
        for server in self.servers:
            info = await self.ledger.get_object(server.object_id)
            if info.object_type != KEY_SERVER_TYPE:
                raise ValueError(f"{server.object_id} is not a key server object")
            verified.append(server.object_id)
        return verified

    async def encrypt(
        self,
        data: bytes,
        package_id: str,
        data_id: bytes,
        threshold: int,
    ) -> Tuple[bytes, bytes]:
        data_key = nacl.utils.random(SecretBox.KEY_SIZE)
        ciphertext = SecretBox(data_key).encrypt(data)
        shares = [
            SecretBox(server.derive_key(package_id, data_id)).encrypt(data_key)
            for server in self.servers
        ]
        obj = EncryptedObject(
            package_id=normalize_address(package_id),
            id=data_id,
            threshold=threshold,
            services=[(s.object_id, i) for i, s in enumerate(self.servers)],
            body=_encode_body(shares, ciphertext),
        )
        return obj.to_bytes(), data_key

    def _requested_ids(self, package_id: str, tx_bytes: bytes) -> List[bytes]:
        try:
            tx = ProgrammableTransaction.from_bytes(tx_bytes)
        except ValueError as e:
            raise Unauthorized(f"Malformed policy check transaction: {e}") from e
        if not tx.commands:
            raise Unauthorized("Policy check transaction has no calls")

        ids = []
        for call in tx.commands:
            if normalize_address(call.package) != package_id or not call.function.startswith("seal_approve"):
                raise Unauthorized(f"{call.target} is not an approval call of package {package_id}")
            first = tx.resolve(call)[0] if call.arguments else None
            if not isinstance(first, PureArg):
                raise Unauthorized(f"{call.target} does not name a data id")
            ids.append(decode_vector_u8(first.value))
        return ids

    async def decrypt(
        self,
        encrypted_object: bytes,
        credential: SessionCredential,
        policy_check_bytes: bytes,
    ) -> bytes:
        obj = EncryptedObject.from_bytes(encrypted_object)
        return await self.fetch_and_decrypt(obj, credential.key_request(policy_check_bytes))

    async def fetch_and_decrypt(self, obj: EncryptedObject, request: KeyRequest) -> bytes:
        """Server side of decrypt: only the public key request crosses over"""
        if request.is_expired():
            raise Expired(f"Session credential for {request.address} has expired")
        request.verify()
        if request.package_id != obj.package_id:
            raise Unauthorized(
                f"Credential is scoped to package {request.package_id}, data to {obj.package_id}"
            )
        if obj.id not in self._requested_ids(obj.package_id, request.policy_check_bytes):
            raise Unauthorized("Policy check does not cover this object's data id")

        shares, ciphertext = _decode_body(obj.body)

        data_key = None
        approvals = 0
        for object_id, index in obj.services:
            server = self._server(object_id)
            result = await self.ledger.dev_inspect(request.address, request.policy_check_bytes)
            if not result.success:
                raise Unauthorized(
                    f"Key server {server.object_id} denied {request.address}: {result.error}"
                )

            try:
                data_key = SecretBox(server.derive_key(obj.package_id, obj.id)).decrypt(shares[index])
            except (CryptoError, IndexError) as e:
                raise DecryptionFailed(f"Key share {index} is corrupt") from e

            approvals += 1
            if approvals >= obj.threshold:
                break

        if approvals < obj.threshold:
            raise Unauthorized(f"Only {approvals} of {obj.threshold} key servers approved")

        try:
            return SecretBox(data_key).decrypt(ciphertext)
        except CryptoError as e:
            raise DecryptionFailed("Ciphertext failed authentication") from e


# =============================================================================
# Blob store
# =============================================================================

class MemoryBlobStore(BlobStore):
    """Content-addressed dict of blobs"""

    def __init__(self, storage_price_per_unit: int = 11_000, write_price_per_unit: int = 20_000):
        self.storage_price_per_unit = storage_price_per_unit
        self.write_price_per_unit = write_price_per_unit
        self.blobs: Dict[str, bytes] = {}
        self.owners: Dict[str, str] = {}

    async def storage_cost(self, size: int, epochs: int) -> StorageCost:
        return estimate_storage_cost(
            size, epochs, self.storage_price_per_unit, self.write_price_per_unit
        )

    async def write_blob(
        self,
        data: bytes,
        epochs: int,
        deletable: bool,
        owner: Identity,
    ) -> str:
        digest = hashlib.blake2b(data, digest_size=32).digest()
        blob_id = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        self.blobs[blob_id] = bytes(data)
        self.owners[blob_id] = owner.address
        return blob_id

    async def read_blob(self, blob_id: str) -> bytes:
        if blob_id not in self.blobs:
            raise BlobNotFound(blob_id)
        return self.blobs[blob_id]


class LocalNetwork:
    """The three local collaborators wired together"""

    def __init__(
        self,
        package_id: str,
        module_name: str = DEFAULT_MODULE,
        key_servers: int = 2,
        confirmation: Optional[ConfirmationConfig] = None,
        index_delay_polls: int = 0,
    ):
        self.ledger = LocalLedger(
            package_id,
            module_name,
            confirmation=confirmation,
            index_delay_polls=index_delay_polls,
        )
        self.key_servers = LocalKeyServers(self.ledger, count=key_servers)
        self.blob_store = MemoryBlobStore()
