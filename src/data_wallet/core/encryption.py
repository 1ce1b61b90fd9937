"""
Encryption Gateway

Client-side wrapper around an EncryptionService. Encrypts payloads under a
policy tuple and decrypts them with a session credential plus policy check
bytes.

Encrypted objects start with a BCS header that names the policy:

    version: u8
    package_id: address
    id: vector<u8>
    services: vector<(address, u8)>
    threshold: u8

followed by a service-specific body (key shares and ciphertext), kept
opaque here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Tuple

from .bcs import ADDRESS_LENGTH, Deserializer, Serializer, bytes_to_address
from .errors import Expired, Unauthorized
from .policy import PolicyTuple

if TYPE_CHECKING:
    from ..services.base import EncryptionService
    from .session import SessionCredential

logger = logging.getLogger(__name__)

ENCRYPTED_OBJECT_VERSION = 0


@dataclass
class EncryptedObject:
    """Ciphertext plus the metadata needed to re-derive its policy"""
    package_id: str
    id: bytes
    threshold: int
    services: List[Tuple[str, int]] = field(default_factory=list)
    body: bytes = b""
    version: int = ENCRYPTED_OBJECT_VERSION

    @property
    def policy_tuple(self) -> PolicyTuple:
        """The whitelist is named by the first 32 bytes of the id"""
        if len(self.id) < ADDRESS_LENGTH:
            raise ValueError(f"Data id is shorter than an object id ({len(self.id)} bytes)")
        return PolicyTuple(self.package_id, bytes_to_address(self.id[:ADDRESS_LENGTH]))

    def to_bytes(self) -> bytes:
        ser = Serializer()
        ser.u8(self.version)
        ser.address(self.package_id)
        ser.bytes(self.id)
        ser.uleb128(len(self.services))
        for object_id, index in self.services:
            ser.address(object_id).u8(index)
        ser.u8(self.threshold)
        ser.fixed_bytes(self.body)
        return ser.output()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedObject":
        de = Deserializer(data)
        version = de.u8()
        if version != ENCRYPTED_OBJECT_VERSION:
            raise ValueError(f"Unsupported encrypted object version {version}")
        package_id = de.address()
        data_id = de.bytes()
        services = [(de.address(), de.u8()) for _ in range(de.uleb128())]
        threshold = de.u8()
        body = de.fixed_bytes(de.remaining)
        return cls(
            package_id=package_id,
            id=data_id,
            threshold=threshold,
            services=services,
            body=body,
            version=version,
        )


@dataclass
class EncryptionResult:
    encrypted_object: bytes
    # Symmetric key that can decrypt without the key servers
    backup_key: bytes


class EncryptionGateway:
    """
    Encryption Gateway Client.

    Usage:
        gateway = EncryptionGateway(service)
        result = await gateway.encrypt(payload, registry.policy_tuple(wl_id), threshold=1)
        plaintext = await gateway.decrypt(result.encrypted_object, credential, tx_bytes)
    """

    def __init__(self, service: "EncryptionService"):
        self.service = service

    async def encrypt(self, data: bytes, policy: PolicyTuple, threshold: int = 1) -> EncryptionResult:
        if not data:
            raise ValueError("Cannot encrypt an empty payload")

        servers = await self.service.key_servers()
        if not 1 <= threshold <= len(servers):
            raise ValueError(
                f"Threshold {threshold} must be between 1 and the number of key servers ({len(servers)})"
            )

        encrypted, backup_key = await self.service.encrypt(
            data, policy.package_id, policy.data_id, threshold
        )
        logger.info(
            f"Encrypted {len(data)} bytes under whitelist {policy.whitelist_id} "
            f"(threshold {threshold}/{len(servers)}, {len(encrypted)} bytes out)"
        )
        return EncryptionResult(encrypted_object=encrypted, backup_key=backup_key)

    async def decrypt(
        self,
        encrypted_object: bytes,
        credential: "SessionCredential",
        policy_check_bytes: bytes,
    ) -> bytes:
        """
        Raises:
            Expired: The credential's time-to-live has elapsed
            Unauthorized: The credential is unsigned or the policy check
                does not authorize its address
        """
        if credential.is_expired():
            raise Expired(
                f"Session credential for {credential.address} expired after {credential.ttl_minutes} min"
            )
        if not credential.is_signed:
            raise Unauthorized(f"Session credential for {credential.address} is not signed")

        header = EncryptedObject.from_bytes(encrypted_object)
        logger.debug(
            f"Decrypting object {header.id.hex()} of package {header.package_id} "
            f"as {credential.address}"
        )
        return await self.service.decrypt(encrypted_object, credential, policy_check_bytes)

    async def verify_key_servers(self) -> List[str]:
        servers = await self.service.verify_key_servers()
        logger.info(f"Verified {len(servers)} key servers")
        return servers
