"""
Session Authorization

Builds the two artifacts a decryption request needs:

- SessionCredential: short-lived, address-bound. An ephemeral session key
  is certified by the identity signing a personal message that names the
  package, the time-to-live and the session public key.
- Policy check bytes: an unsigned TransactionKind calling
  <package>::<module>::seal_approve(data_id, whitelist). Key servers
  evaluate it against current chain state; it is never broadcast.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .bcs import MoveCall, ProgrammableTransaction, PureArg, SharedObjectArg, normalize_address
from .errors import DataWalletError, Unauthorized
from .identity import verify_personal_message

if TYPE_CHECKING:
    from ..services.base import ChainClient
    from .identity import Identity

logger = logging.getLogger(__name__)

APPROVE_FUNCTION = "seal_approve"
DEFAULT_TTL_MINUTES = 10


def now_ms() -> int:
    return int(time.time() * 1000)


def personal_message(
    package_id: str,
    ttl_minutes: int,
    created_at_ms: int,
    session_public_key: bytes,
) -> bytes:
    created = datetime.fromtimestamp(created_at_ms / 1000, tz=timezone.utc)
    session_key = base64.b64encode(session_public_key).decode("ascii")
    return (
        f"Accessing keys of package {package_id} for {ttl_minutes} mins "
        f"from {created.strftime('%Y-%m-%d %H:%M:%S')} UTC, session key {session_key}"
    ).encode("utf-8")


@dataclass
class SessionCredential:
    """A time-limited, address-scoped authorization to request keys"""
    address: str
    package_id: str
    ttl_minutes: int
    created_at_ms: int
    session_key: SigningKey
    personal_message_signature: Optional[str] = None

    @classmethod
    def create(
        cls,
        address: str,
        package_id: str,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        created_at_ms: Optional[int] = None,
    ) -> "SessionCredential":
        if ttl_minutes < 1:
            raise ValueError("ttl_minutes must be at least 1")
        return cls(
            address=normalize_address(address),
            package_id=normalize_address(package_id),
            ttl_minutes=ttl_minutes,
            created_at_ms=created_at_ms if created_at_ms is not None else now_ms(),
            session_key=SigningKey.generate(),
        )

    @property
    def session_public_key(self) -> bytes:
        return bytes(self.session_key.verify_key)

    @property
    def expires_at_ms(self) -> int:
        return self.created_at_ms + self.ttl_minutes * 60_000

    def is_expired(self, at_ms: Optional[int] = None) -> bool:
        return (at_ms if at_ms is not None else now_ms()) >= self.expires_at_ms

    def personal_message(self) -> bytes:
        """The message the identity signs to certify the session key"""
        return personal_message(
            self.package_id, self.ttl_minutes, self.created_at_ms, self.session_public_key
        )

    def set_personal_message_signature(self, signature: str) -> None:
        """
        Attach the identity's signature over personal_message().

        Raises:
            ValueError: The signature does not verify or was made by a
                different address
        """
        signer = verify_personal_message(self.personal_message(), signature)
        if signer != self.address:
            raise ValueError(f"Signature made by {signer}, credential is for {self.address}")
        self.personal_message_signature = signature

    @property
    def is_signed(self) -> bool:
        return self.personal_message_signature is not None

    def signer_address(self) -> Optional[str]:
        """Address that signed the personal message, None when unsigned or invalid"""
        if not self.personal_message_signature:
            return None
        try:
            return verify_personal_message(self.personal_message(), self.personal_message_signature)
        except ValueError:
            return None

    def key_request(self, policy_check_bytes: bytes) -> "KeyRequest":
        """
        The public half of this credential plus the policy check, signed
        with the session key. This is what a key server sees.
        """
        return KeyRequest(
            address=self.address,
            package_id=self.package_id,
            ttl_minutes=self.ttl_minutes,
            created_at_ms=self.created_at_ms,
            session_public_key=self.session_public_key,
            personal_message_signature=self.personal_message_signature,
            policy_check_bytes=policy_check_bytes,
            request_signature=self.session_key.sign(policy_check_bytes).signature,
        )

    def export(self) -> Dict[str, Any]:
        """Serializable form handed to an encryption service bridge"""
        return {
            "address": self.address,
            "packageId": self.package_id,
            "ttlMin": self.ttl_minutes,
            "creationTimeMs": self.created_at_ms,
            "sessionKey": base64.b64encode(bytes(self.session_key)).decode("ascii"),
            "personalMessageSignature": self.personal_message_signature,
        }


@dataclass
class KeyRequest:
    """A decryption key request as received by a key server"""
    address: str
    package_id: str
    ttl_minutes: int
    created_at_ms: int
    session_public_key: bytes
    personal_message_signature: Optional[str]
    policy_check_bytes: bytes
    request_signature: bytes

    def is_expired(self, at_ms: Optional[int] = None) -> bool:
        expires_at_ms = self.created_at_ms + self.ttl_minutes * 60_000
        return (at_ms if at_ms is not None else now_ms()) >= expires_at_ms

    def verify(self) -> None:
        """
        Check the session key was certified by the requesting address and
        that it signed this policy check.

        Raises:
            Unauthorized: Either signature is missing or does not verify
        """
        if not self.personal_message_signature:
            raise Unauthorized(f"Session key for {self.address} is not certified")
        message = personal_message(
            self.package_id, self.ttl_minutes, self.created_at_ms, self.session_public_key
        )
        try:
            signer = verify_personal_message(message, self.personal_message_signature)
        except ValueError as e:
            raise Unauthorized(f"Session key certificate does not verify: {e}") from e
        if signer != self.address:
            raise Unauthorized(f"Session key certified by {signer}, request is from {self.address}")

        try:
            VerifyKey(self.session_public_key).verify(self.policy_check_bytes, self.request_signature)
        except BadSignatureError as e:
            raise Unauthorized("Key request is not signed by the certified session key") from e


@dataclass
class SessionAuthorization:
    policy_check_bytes: bytes
    credential: SessionCredential


class SessionAuthorizationBuilder:
    """
    Session Authorization Builder.

    Usage:
        builder = SessionAuthorizationBuilder(chain, ttl_minutes=10)
        auth = await builder.build(agent, package_id, "access_policy", data_id, whitelist_id)
        plaintext = await gateway.decrypt(obj, auth.credential, auth.policy_check_bytes)
    """

    def __init__(
        self,
        chain: "ChainClient",
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        broadcast: bool = False,
        gas_budget: int = 10_000_000,
    ):
        self.chain = chain
        self.ttl_minutes = ttl_minutes
        self.broadcast = broadcast
        self.gas_budget = gas_budget

    async def build(
        self,
        identity: "Identity",
        package_id: str,
        module_name: str,
        data_id: bytes,
        whitelist_id: str,
    ) -> SessionAuthorization:
        credential = SessionCredential.create(identity.address, package_id, self.ttl_minutes)
        credential.set_personal_message_signature(
            identity.sign_personal_message(credential.personal_message())
        )
        logger.info(
            f"Session credential for {identity.name} valid {self.ttl_minutes} min "
            f"(package {credential.package_id})"
        )

        tx_bytes = await self.build_policy_check(package_id, module_name, data_id, whitelist_id)

        if self.broadcast:
            await self._broadcast_policy_check(identity, package_id, module_name, data_id, whitelist_id)

        return SessionAuthorization(policy_check_bytes=tx_bytes, credential=credential)

    async def build_policy_check(
        self,
        package_id: str,
        module_name: str,
        data_id: bytes,
        whitelist_id: str,
    ) -> bytes:
        """Unsigned TransactionKind bytes invoking the approval entry point"""
        whitelist = await self.chain.get_object(whitelist_id)
        if not whitelist.is_shared:
            raise ValueError(f"Whitelist {whitelist_id} is not a shared object")

        tx = ProgrammableTransaction(
            inputs=[
                PureArg.vector_u8(data_id),
                SharedObjectArg(
                    object_id=normalize_address(whitelist_id),
                    initial_shared_version=whitelist.initial_shared_version,
                    mutable=False,
                ),
            ],
            commands=[MoveCall(normalize_address(package_id), module_name, APPROVE_FUNCTION, [0, 1])],
        )
        return tx.to_bytes()

    async def _broadcast_policy_check(
        self,
        identity: "Identity",
        package_id: str,
        module_name: str,
        data_id: bytes,
        whitelist_id: str,
    ) -> None:
        """Execute the approval call on chain. Diagnostic only; never fatal."""
        target = f"{normalize_address(package_id)}::{module_name}::{APPROVE_FUNCTION}"
        try:
            submitted = await self.chain.execute_move_call(
                identity, target, [data_id, whitelist_id], self.gas_budget
            )
            effects = await self.chain.wait_for_transaction(submitted.digest)
        except DataWalletError as e:
            logger.warning(f"Broadcast of {APPROVE_FUNCTION} for {identity.name} failed: {e}")
            return

        if effects.success:
            logger.info(f"{APPROVE_FUNCTION} executed on chain for {identity.name} (tx {effects.digest})")
        else:
            logger.warning(
                f"{APPROVE_FUNCTION} aborted on chain for {identity.name}: {effects.error}"
            )
