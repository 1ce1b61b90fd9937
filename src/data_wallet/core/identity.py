"""
Identity

Ed25519 keypairs acting as principals for policy and authorization
checks. An identity derives a stable Sui address and signs two kinds of
payload, each wrapped in an intent prefix before hashing:

- transactions      intent [0, 0, 0] + transaction data bytes
- personal messages intent [3, 0, 0] + BCS vector<u8> of the message

The signed digest is blake2b-256(intent || payload). Serialized
signatures are base64(flag || signature || public key) with flag 0x00
for Ed25519.
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .bcs import Serializer

logger = logging.getLogger(__name__)

ED25519_FLAG = 0x00
SEED_LENGTH = 32
SIGNATURE_LENGTH = 64

TRANSACTION_INTENT = bytes([0, 0, 0])
PERSONAL_MESSAGE_INTENT = bytes([3, 0, 0])


def address_from_public_key(public_key: bytes) -> str:
    """Sui address of an Ed25519 public key"""
    digest = hashlib.blake2b(bytes([ED25519_FLAG]) + public_key, digest_size=32).digest()
    return "0x" + digest.hex()


def _intent_digest(intent: bytes, payload: bytes) -> bytes:
    return hashlib.blake2b(intent + payload, digest_size=32).digest()


def _decode_secret(secret: str) -> bytes:
    """Accept hex (0x...), standard base64 or URL-safe base64 seeds"""
    text = secret.strip()
    if text.startswith("0x"):
        raw = bytes.fromhex(text[2:])
    else:
        padded = text + "=" * (-len(text) % 4)
        try:
            raw = base64.b64decode(padded, validate=True)
        except binascii.Error:
            raw = base64.urlsafe_b64decode(padded)

    # Sui exports sometimes prefix the scheme flag
    if len(raw) == SEED_LENGTH + 1 and raw[0] == ED25519_FLAG:
        raw = raw[1:]
    if len(raw) != SEED_LENGTH:
        raise ValueError(f"Ed25519 secret key must be {SEED_LENGTH} bytes, got {len(raw)}")
    return raw


@dataclass(frozen=True)
class SignatureParts:
    """Components of a serialized signature"""
    signature: bytes
    public_key: bytes

    @property
    def address(self) -> str:
        return address_from_public_key(self.public_key)

    @classmethod
    def parse(cls, serialized: str) -> "SignatureParts":
        try:
            raw = base64.b64decode(serialized, validate=True)
        except binascii.Error as e:
            raise ValueError("Signature is not valid base64") from e

        if len(raw) != 1 + SIGNATURE_LENGTH + SEED_LENGTH or raw[0] != ED25519_FLAG:
            raise ValueError("Unsupported signature scheme or length")
        return cls(signature=raw[1:1 + SIGNATURE_LENGTH], public_key=raw[1 + SIGNATURE_LENGTH:])


class Identity:
    """
    A named Ed25519 keypair.

    Usage:
        owner = Identity.from_secret_key("BtJfLV7M...", name="owner")
        print(owner.address)
        signature = owner.sign_personal_message(b"hello")
    """

    def __init__(self, signing_key: SigningKey, name: Optional[str] = None):
        self._signing_key = signing_key
        self.name = name or "anonymous"
        self.public_key: bytes = bytes(signing_key.verify_key)
        self.address: str = address_from_public_key(self.public_key)

    @classmethod
    def from_secret_key(cls, secret: str, name: Optional[str] = None) -> "Identity":
        return cls(SigningKey(_decode_secret(secret)), name=name)

    @classmethod
    def generate(cls, name: Optional[str] = None) -> "Identity":
        return cls(SigningKey.generate(), name=name)

    def _serialize(self, signature: bytes) -> str:
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key).decode("ascii")

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Sign full transaction data bytes, returning a serialized signature"""
        digest = _intent_digest(TRANSACTION_INTENT, tx_bytes)
        return self._serialize(self._signing_key.sign(digest).signature)

    def sign_personal_message(self, message: bytes) -> str:
        """Sign an off-chain message, returning a serialized signature"""
        payload = Serializer().bytes(message).output()
        digest = _intent_digest(PERSONAL_MESSAGE_INTENT, payload)
        return self._serialize(self._signing_key.sign(digest).signature)

    def __repr__(self) -> str:
        return f"Identity(name={self.name!r}, address={self.address})"


def verify_personal_message(message: bytes, serialized_signature: str) -> str:
    """
    Verify a personal-message signature.

    Returns:
        The signer's address

    Raises:
        ValueError: If the signature is malformed or does not verify
    """
    parts = SignatureParts.parse(serialized_signature)
    payload = Serializer().bytes(message).output()
    digest = _intent_digest(PERSONAL_MESSAGE_INTENT, payload)
    try:
        VerifyKey(parts.public_key).verify(digest, parts.signature)
    except BadSignatureError as e:
        raise ValueError("Personal message signature does not verify") from e
    return parts.address


def verify_transaction(tx_bytes: bytes, serialized_signature: str) -> str:
    """Verify a transaction signature and return the signer's address"""
    parts = SignatureParts.parse(serialized_signature)
    digest = _intent_digest(TRANSACTION_INTENT, tx_bytes)
    try:
        VerifyKey(parts.public_key).verify(digest, parts.signature)
    except BadSignatureError as e:
        raise ValueError("Transaction signature does not verify") from e
    return parts.address
